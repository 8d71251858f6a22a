"""
SPH hydrodynamic derivative computation.

This module implements the per-particle physics core of the galaxy model:
grad-h corrected pressure forces and compression heating, artificial viscosity
with signal-speed limiting, thermal conduction with a regularised denominator
and the star-formation sink (Price 2012, Monaghan 1997, Price 2008).

Each ``compute_*`` function evaluates one particle ``i`` of a ``ParticleSystem``
against its neighbour set, resets and writes only that particle's derivative
slot, and returns the value. The neighbour state (positions, densities,
pressures, sound speeds) is read-only during a pass, so particles can be
evaluated in any order or in parallel.

``compute_hydro_derivatives`` loops the reference functions over all
particles; ``compute_hydro_derivatives_numba`` is the compiled batch path for
the cubic spline kernel, operating on flat CSR neighbour arrays.

Kernel conventions are documented in ``galaxy_sph.sph.kernels``.
"""

from typing import Optional
import numpy as np
from numba import njit, prange

from galaxy_sph.core.constants import G, FLOAT
from galaxy_sph.core.interfaces import SPHKernel, NDArrayFloat, NDArrayInt
from galaxy_sph.sph.kernels import (
    CubicSplineKernel,
    default_kernel,
    dw_dr_cubic,
    pair_gradients,
    pair_derivatives,
)


def _unit(vectors: NDArrayFloat) -> NDArrayFloat:
    """Row-wise unit vectors; a zero vector stays zero."""
    norm = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return np.divide(vectors, norm, out=np.zeros_like(vectors), where=norm > 0.0)


def _pair_signal_speeds(particles, i: int, neighbours: NDArrayInt, params):
    """
    Signal speeds v_sig and v_sig_u of particle i against each neighbour.

    v_r = (v_q - v_p) · unit(x_q - x_p); a pair is approaching when v_r ≤ 0.
    Receding pairs, and every pair when viscosity is disabled, get 0.
    """
    n = len(neighbours)
    if not params.phys_visc or n == 0:
        return np.zeros(n, dtype=FLOAT), np.zeros(n, dtype=FLOAT)

    x_qp = particles.positions[neighbours] - particles.positions[i]
    v_qp = particles.velocities[neighbours] - particles.velocities[i]
    v_r = np.sum(v_qp * _unit(x_qp), axis=1)
    approaching = v_r <= 0.0

    c_p = particles.sound_speed[i]
    c_q = particles.sound_speed[neighbours]
    v_sig = np.where(approaching, 0.5 * (c_p + c_q - params.beta * v_r), 0.0)

    P_p = particles.pressure[i]
    P_q = particles.pressure[neighbours]
    rho_sum = particles.density[i] + particles.density[neighbours]
    v_sig_u = np.where(
        approaching,
        np.sqrt(2.0 * np.abs(P_p - P_q) / rho_sum),
        0.0,
    )
    return v_sig, v_sig_u


def signal_speed(particles, i: int, j: int, params) -> float:
    """
    Viscous signal speed between particles i and j.

    Returns ½(c_i + c_j - β v_r) for an approaching pair, 0 for a receding
    pair or when viscosity is disabled.
    """
    v_sig, _ = _pair_signal_speeds(particles, i, np.array([j], dtype=np.int64), params)
    return float(v_sig[0])


def energy_signal_speed(particles, i: int, j: int, params) -> float:
    """
    Pressure-jump signal speed sqrt(2|P_i - P_j| / (ρ_i + ρ_j)) for an
    approaching pair; 0 otherwise or when viscosity is disabled.
    """
    _, v_sig_u = _pair_signal_speeds(particles, i, np.array([j], dtype=np.int64), params)
    return float(v_sig_u[0])


def compute_pressure_acceleration(
    particles, i: int, params, kernel: Optional[SPHKernel] = None
) -> NDArrayFloat:
    """
    Grad-h pressure acceleration of particle p = i.

        dv_P(p) = ∑_q -m_q (-P_p / ρ_p² / Ω_p ∇W(p, q) + P_q / ρ_q² / Ω_q ∇W(q, p))

    Parameters
    ----------
    particles : ParticleSystem
        Particle arena; ``pressure``, ``density`` and ``omega`` must be current.
    i : int
        Particle index.
    params : Params
        Run parameters (unused, kept for a uniform signature).
    kernel : SPHKernel, optional
        Interpolation kernel (default cubic spline).

    Returns
    -------
    dv_P : NDArrayFloat, shape (3,)
        The value written to ``particles.dv_P[i]``.
    """
    kernel = kernel or default_kernel
    particles.dv_P[i] = 0.0
    neighbours = particles.neighbour_lists[i]
    if len(neighbours) == 0:
        return particles.dv_P[i]

    grad_pq, grad_qp = pair_gradients(kernel, particles, i, neighbours)

    term_p = particles.pressure[i] / particles.density[i]**2 / particles.omega[i]
    term_q = (
        particles.pressure[neighbours]
        / particles.density[neighbours]**2
        / particles.omega[neighbours]
    )
    m_q = particles.masses[neighbours]

    particles.dv_P[i] = np.sum(
        -m_q[:, np.newaxis] * (-term_p * grad_pq + term_q[:, np.newaxis] * grad_qp),
        axis=0,
    )
    return particles.dv_P[i]


def compute_pressure_heating(
    particles, i: int, params, kernel: Optional[SPHKernel] = None
) -> float:
    """
    Compression heating of particle p = i.

        du_P(p) = P_p / (Ω_p ρ_p²) ∑_q m_q (v_q - v_p) · ∇W(p, q)

    The prefactor is applied once to the neighbour sum. A particle without
    neighbours gets exactly 0.
    """
    kernel = kernel or default_kernel
    neighbours = particles.neighbour_lists[i]
    if len(neighbours) == 0:
        particles.du_P[i] = 0.0
        return 0.0

    grad_pq, _ = pair_gradients(kernel, particles, i, neighbours)
    v_qp = particles.velocities[neighbours] - particles.velocities[i]
    s = np.sum(particles.masses[neighbours] * np.sum(v_qp * grad_pq, axis=1))

    particles.du_P[i] = (
        particles.pressure[i] / particles.omega[i] / particles.density[i]**2 * s
    )
    return float(particles.du_P[i])


def compute_viscous_heating(
    particles, i: int, params, kernel: Optional[SPHKernel] = None
) -> float:
    """
    Artificial-viscosity heating of particle p = i.

        du_visc(p) = ∑_q m_q / ρ_pq (½ α v_sig² + α v_sig_u (u_p - u_q))
                     (dW(p, q) + dW(q, p)) / 2

    with ρ_pq = (ρ_p + ρ_q) / 2. Returns 0 (and zeroes the slot) when
    viscosity is disabled.
    """
    kernel = kernel or default_kernel
    particles.du_visc[i] = 0.0
    if not params.phys_visc:
        return 0.0
    neighbours = particles.neighbour_lists[i]
    if len(neighbours) == 0:
        return 0.0

    v_sig, v_sig_u = _pair_signal_speeds(particles, i, neighbours, params)
    dw_pq, dw_qp = pair_derivatives(kernel, particles, i, neighbours)

    rho_pq = 0.5 * (particles.density[i] + particles.density[neighbours])
    du = particles.internal_energy[i] - particles.internal_energy[neighbours]

    particles.du_visc[i] = np.sum(
        particles.masses[neighbours] / rho_pq
        * (0.5 * params.alpha * v_sig**2 + params.alpha * v_sig_u * du)
        * (dw_pq + dw_qp) / 2.0
    )
    return float(particles.du_visc[i])


def compute_viscous_acceleration(
    particles, i: int, params, kernel: Optional[SPHKernel] = None
) -> NDArrayFloat:
    """
    Artificial-viscosity acceleration of particle p = i.

        dv_visc(p) = ∑_q -m_q / ρ_pq v_sig(p, q) vr (∇W(p, q) - ∇W(q, p))

    where vr = (v_p - v_q) · unit(x_p - x_q). The signal speed vanishes for
    receding pairs and when viscosity is disabled.
    """
    kernel = kernel or default_kernel
    particles.dv_visc[i] = 0.0
    neighbours = particles.neighbour_lists[i]
    if len(neighbours) == 0:
        return particles.dv_visc[i]

    v_sig, _ = _pair_signal_speeds(particles, i, neighbours, params)
    grad_pq, grad_qp = pair_gradients(kernel, particles, i, neighbours)

    x_pq = particles.positions[i] - particles.positions[neighbours]
    v_pq = particles.velocities[i] - particles.velocities[neighbours]
    vr = np.sum(v_pq * _unit(x_pq), axis=1)
    rho_pq = 0.5 * (particles.density[i] + particles.density[neighbours])

    weight = -particles.masses[neighbours] / rho_pq * v_sig * vr
    particles.dv_visc[i] = np.sum(weight[:, np.newaxis] * (grad_pq - grad_qp), axis=0)
    return particles.dv_visc[i]


def compute_conduction_heating(
    particles, i: int, params, kernel: Optional[SPHKernel] = None
) -> float:
    """
    Thermal conduction of particle p = i.

        du_cond(p) = ∑_q -m_q (k_p + k_q)(u_p - u_q) (x_q - x_p) · ∇W(p, q)
                     / (ρ_pq |x_p - x_q|² + eps h_p²)

    with k = K_cond / ρ. The eps h_p² term keeps the denominator positive for
    coincident particles.
    """
    kernel = kernel or default_kernel
    particles.du_cond[i] = 0.0
    neighbours = particles.neighbour_lists[i]
    if len(neighbours) == 0:
        return 0.0

    grad_pq, _ = pair_gradients(kernel, particles, i, neighbours)
    x_qp = particles.positions[neighbours] - particles.positions[i]
    dist2 = np.sum(x_qp**2, axis=1)

    rho_p = particles.density[i]
    rho_q = particles.density[neighbours]
    k_p = params.K_cond / rho_p
    k_q = params.K_cond / rho_q
    rho_pq = 0.5 * (rho_p + rho_q)
    h_p = particles.smoothing_length[i]

    numerator = (
        -particles.masses[neighbours] * (k_p + k_q)
        * (particles.internal_energy[i] - particles.internal_energy[neighbours])
        * np.sum(x_qp * grad_pq, axis=1)
    )
    particles.du_cond[i] = np.sum(numerator / (rho_pq * dist2 + params.eps * h_p**2))
    return float(particles.du_cond[i])


def compute_star_formation_rate(particles, i: int, params) -> float:
    """
    Star formation rate of particle i.

        t_ff = sqrt(3π / (32 G ρ_gas)),   dm_star = η_eff m_gas / t_ff

    Returns 0 when star formation is disabled or the gas density is not
    positive (infinite free-fall time).
    """
    particles.dm_star[i] = 0.0
    if not params.phys_star_formation:
        return 0.0
    rho_gas = particles.gas_density[i]
    if rho_gas <= 0.0:
        return 0.0

    t_ff = np.sqrt(3.0 * np.pi / (32.0 * G * rho_gas))
    particles.dm_star[i] = params.eta_eff * particles.gas_masses[i] / t_ff
    return float(particles.dm_star[i])


def compute_particle_derivatives(
    particles, i: int, params, kernel: Optional[SPHKernel] = None
) -> None:
    """Evaluate every hydro derivative of particle i (reference path)."""
    compute_pressure_acceleration(particles, i, params, kernel)
    compute_viscous_acceleration(particles, i, params, kernel)
    compute_pressure_heating(particles, i, params, kernel)
    compute_viscous_heating(particles, i, params, kernel)
    compute_conduction_heating(particles, i, params, kernel)
    compute_star_formation_rate(particles, i, params)


def compute_hydro_derivatives(
    particles, params, kernel: Optional[SPHKernel] = None
) -> None:
    """
    Evaluate the hydro derivatives of all particles with the reference functions.

    Writes ``dv_P``, ``dv_visc``, ``du_P``, ``du_visc``, ``du_cond`` and
    ``dm_star`` in place. Works with any ``SPHKernel``.
    """
    kernel = kernel or default_kernel
    for i in range(particles.n_particles):
        compute_particle_derivatives(particles, i, params, kernel)


@njit(parallel=True, fastmath=True)
def _compute_hydro_numba(
    positions, velocities, masses, densities, omegas, pressures, sound_speeds,
    internal_energy, smoothing_lengths, neighbour_indices, neighbour_offsets,
    alpha, beta, K_cond, eps, phys_visc
):
    """Numba implementation of the pressure, viscosity and conduction sums."""
    N = len(positions)
    dv_P = np.zeros((N, 3), dtype=np.float64)
    dv_visc = np.zeros((N, 3), dtype=np.float64)
    du_P = np.zeros(N, dtype=np.float64)
    du_visc = np.zeros(N, dtype=np.float64)
    du_cond = np.zeros(N, dtype=np.float64)

    for i in prange(N):
        start = neighbour_offsets[i]
        end = neighbour_offsets[i+1]
        if end == start:
            continue

        rho_i = densities[i]
        P_i = pressures[i]
        h_i = smoothing_lengths[i]
        u_i = internal_energy[i]
        term_i = P_i / (rho_i * rho_i) / omegas[i]
        k_i = K_cond / rho_i

        apx = 0.0
        apy = 0.0
        apz = 0.0
        avx = 0.0
        avy = 0.0
        avz = 0.0
        s_P = 0.0
        s_visc = 0.0
        s_cond = 0.0

        for k in range(start, end):
            j = neighbour_indices[k]

            # Separation x_q - x_p and relative velocity v_q - v_p
            dx = positions[j, 0] - positions[i, 0]
            dy = positions[j, 1] - positions[i, 1]
            dz = positions[j, 2] - positions[i, 2]
            dvx = velocities[j, 0] - velocities[i, 0]
            dvy = velocities[j, 1] - velocities[i, 1]
            dvz = velocities[j, 2] - velocities[i, 2]

            r2 = dx*dx + dy*dy + dz*dz
            r = np.sqrt(r2)

            dW_ij = dw_dr_cubic(r, h_i)
            dW_ji = dw_dr_cubic(r, smoothing_lengths[j])

            if r > 0.0:
                ex = dx / r
                ey = dy / r
                ez = dz / r
            else:
                ex = 0.0
                ey = 0.0
                ez = 0.0

            # ∇W(p, q) along +e, ∇W(q, p) along -e
            gx_ij = dW_ij * ex
            gy_ij = dW_ij * ey
            gz_ij = dW_ij * ez
            gx_ji = -dW_ji * ex
            gy_ji = -dW_ji * ey
            gz_ji = -dW_ji * ez

            m_j = masses[j]
            rho_j = densities[j]
            P_j = pressures[j]
            term_j = P_j / (rho_j * rho_j) / omegas[j]
            rho_ij = 0.5 * (rho_i + rho_j)

            # Pressure force and compression heating
            apx += -m_j * (-term_i * gx_ij + term_j * gx_ji)
            apy += -m_j * (-term_i * gy_ij + term_j * gy_ji)
            apz += -m_j * (-term_i * gz_ij + term_j * gz_ji)
            s_P += m_j * (dvx*gx_ij + dvy*gy_ij + dvz*gz_ij)

            # Artificial viscosity
            if phys_visc:
                v_r = dvx*ex + dvy*ey + dvz*ez
                if v_r <= 0.0:
                    v_sig = 0.5 * (sound_speeds[i] + sound_speeds[j] - beta * v_r)
                    v_sig_u = np.sqrt(2.0 * abs(P_i - P_j) / (rho_i + rho_j))
                else:
                    v_sig = 0.0
                    v_sig_u = 0.0

                s_visc += m_j / rho_ij * (
                    0.5 * alpha * v_sig * v_sig + alpha * v_sig_u * (u_i - internal_energy[j])
                ) * (dW_ij + dW_ji) / 2.0

                # (v_p - v_q) · unit(x_p - x_q)
                vr = (-dvx)*(-ex) + (-dvy)*(-ey) + (-dvz)*(-ez)
                w = -m_j / rho_ij * v_sig * vr
                avx += w * (gx_ij - gx_ji)
                avy += w * (gy_ij - gy_ji)
                avz += w * (gz_ij - gz_ji)

            # Thermal conduction
            k_j = K_cond / rho_j
            s_cond += -m_j * (k_i + k_j) * (u_i - internal_energy[j]) * (
                dx*gx_ij + dy*gy_ij + dz*gz_ij
            ) / (rho_ij * r2 + eps * h_i * h_i)

        dv_P[i, 0] = apx
        dv_P[i, 1] = apy
        dv_P[i, 2] = apz
        dv_visc[i, 0] = avx
        dv_visc[i, 1] = avy
        dv_visc[i, 2] = avz
        du_P[i] = term_i * s_P
        du_visc[i] = s_visc
        du_cond[i] = s_cond

    return dv_P, dv_visc, du_P, du_visc, du_cond


def compute_hydro_derivatives_numba(
    particles, params, kernel: Optional[SPHKernel] = None
) -> None:
    """
    Compiled batch evaluation of the hydro derivatives of all particles.

    Produces the same values as ``compute_hydro_derivatives`` for the 3D cubic
    spline kernel, which is inlined in the compiled loop.

    Raises
    ------
    ValueError
        If a kernel other than the 3D cubic spline is requested.
    """
    if kernel is not None and not (
        isinstance(kernel, CubicSplineKernel) and kernel.dim == 3
    ):
        raise ValueError(
            f"Numba hydro path only supports the 3D cubic spline kernel, got {kernel!r}"
        )

    indices, offsets = particles.neighbour_csr()
    dv_P, dv_visc, du_P, du_visc, du_cond = _compute_hydro_numba(
        np.ascontiguousarray(particles.positions, dtype=FLOAT),
        np.ascontiguousarray(particles.velocities, dtype=FLOAT),
        np.ascontiguousarray(particles.masses, dtype=FLOAT),
        np.ascontiguousarray(particles.density, dtype=FLOAT),
        np.ascontiguousarray(particles.omega, dtype=FLOAT),
        np.ascontiguousarray(particles.pressure, dtype=FLOAT),
        np.ascontiguousarray(particles.sound_speed, dtype=FLOAT),
        np.ascontiguousarray(particles.internal_energy, dtype=FLOAT),
        np.ascontiguousarray(particles.smoothing_length, dtype=FLOAT),
        indices,
        offsets,
        float(params.alpha),
        float(params.beta),
        float(params.K_cond),
        float(params.eps),
        bool(params.phys_visc),
    )

    particles.dv_P[:] = dv_P
    particles.dv_visc[:] = dv_visc
    particles.du_P[:] = du_P
    particles.du_visc[:] = du_visc
    particles.du_cond[:] = du_cond

    for i in range(particles.n_particles):
        compute_star_formation_rate(particles, i, params)
