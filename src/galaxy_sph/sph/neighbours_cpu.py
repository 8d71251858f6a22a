"""
CPU neighbour search and density estimation for SPH particles.

This module is the density / neighbour collaborator of the physics core. It
supplies, for every particle, its neighbour set, the SPH density ρ, the gas
density ρ_gas, the grad-h correction factor Ω and a self-consistent smoothing
length h.

The neighbour search is an O(N²) pairwise pass compiled with Numba (count,
then fill into CSR arrays). This is adequate for the particle counts of galaxy
test problems and is the reference for any tree-based replacement.
"""

from typing import List, Optional, Tuple
import numpy as np
from numba import njit, prange

from galaxy_sph.core.constants import FLOAT
from galaxy_sph.core.interfaces import SPHKernel, NDArrayFloat, NDArrayInt
from galaxy_sph.sph.kernels import default_kernel


def _estimate_smoothing_length_bounds(
    positions: NDArrayFloat,
    smoothing_lengths: NDArrayFloat,
    min_scale: float = 1e-2,
    max_scale: float = 32.0,
) -> Tuple[float, float]:
    """Heuristically bound smoothing lengths using current particle layout.

    The lower bound prevents catastrophic shrinkage (which would spike densities),
    while the upper bound scales with both the current smoothing length range and
    the physical extent of the particle cloud.
    """
    finite_mask = np.isfinite(smoothing_lengths) & (smoothing_lengths > 0.0)
    valid_h = smoothing_lengths[finite_mask]

    if valid_h.size == 0:
        return 1e-6, 1.0

    base_min = float(np.min(valid_h))
    base_max = float(np.max(valid_h))

    centroid = np.mean(positions, axis=0)
    extent = float(np.max(np.linalg.norm(positions - centroid, axis=1)))
    if not np.isfinite(extent):
        extent = 0.0

    h_min_bound = base_min * min_scale
    h_max_candidates = [base_max * max_scale, h_min_bound * 10.0]
    if extent > 0.0:
        h_max_candidates.append(extent)
    h_max_bound = max(h_max_candidates)

    return float(h_min_bound), float(h_max_bound)


@njit(parallel=True, fastmath=True)
def _count_neighbours_numba(positions, smoothing_lengths, support_radius, symmetrize):
    """Count neighbours for each particle."""
    N = len(positions)
    counts = np.zeros(N, dtype=np.int64)

    for i in prange(N):
        h_i = smoothing_lengths[i]
        count = 0
        for j in range(N):
            if i == j:
                continue

            dx = positions[i, 0] - positions[j, 0]
            dy = positions[i, 1] - positions[j, 1]
            dz = positions[i, 2] - positions[j, 2]
            r2 = dx*dx + dy*dy + dz*dz

            if symmetrize:
                h_effective = max(h_i, smoothing_lengths[j])
            else:
                h_effective = h_i

            dist_max = support_radius * h_effective
            if r2 < dist_max*dist_max:
                count += 1
        counts[i] = count
    return counts


@njit(parallel=True, fastmath=True)
def _fill_neighbours_numba(positions, smoothing_lengths, support_radius, offsets, indices, symmetrize):
    """Fill neighbour indices array."""
    N = len(positions)

    for i in prange(N):
        h_i = smoothing_lengths[i]
        offset = offsets[i]
        current = 0

        for j in range(N):
            if i == j:
                continue

            dx = positions[i, 0] - positions[j, 0]
            dy = positions[i, 1] - positions[j, 1]
            dz = positions[i, 2] - positions[j, 2]
            r2 = dx*dx + dy*dy + dz*dz

            if symmetrize:
                h_effective = max(h_i, smoothing_lengths[j])
            else:
                h_effective = h_i

            dist_max = support_radius * h_effective
            if r2 < dist_max*dist_max:
                indices[offset + current] = j
                current += 1


def find_neighbours_bruteforce(
    positions: NDArrayFloat,
    smoothing_lengths: NDArrayFloat,
    support_radius: float = 2.0,
    symmetrize: bool = True,
) -> List[NDArrayInt]:
    """
    Find neighbours within kernel support using brute-force pairwise search.

    For each particle i, finds all particles j ≠ i with
    |r_i - r_j| < support_radius × h_i (Price 2012, Section 3.1).

    Parameters
    ----------
    positions : NDArrayFloat, shape (N, 3)
        Particle positions.
    smoothing_lengths : NDArrayFloat, shape (N,)
        Smoothing lengths h for each particle.
    support_radius : float, optional
        Kernel support radius in units of h (default 2.0 for cubic spline).
    symmetrize : bool, optional
        When True (default), include pair (i, j) if either particle's kernel
        contains the separation. When False, only particle i's smoothing length
        defines the neighbour volume (used by the smoothing-length iteration).

    Returns
    -------
    neighbour_lists : List[NDArrayInt]
        neighbour_lists[i] contains indices j of all neighbours of particle i.
    """
    positions = np.ascontiguousarray(positions, dtype=FLOAT)
    smoothing_lengths = np.ascontiguousarray(smoothing_lengths, dtype=FLOAT)

    counts = _count_neighbours_numba(positions, smoothing_lengths, support_radius, symmetrize)

    offsets = np.zeros(len(counts) + 1, dtype=np.int64)
    offsets[1:] = np.cumsum(counts)

    indices = np.empty(offsets[-1], dtype=np.int64)
    _fill_neighbours_numba(positions, smoothing_lengths, support_radius, offsets, indices, symmetrize)

    return [indices[offsets[i]:offsets[i+1]] for i in range(len(positions))]


def compute_density_summation(
    positions: NDArrayFloat,
    masses: NDArrayFloat,
    gas_masses: NDArrayFloat,
    smoothing_lengths: NDArrayFloat,
    neighbour_lists: List[NDArrayInt],
    kernel: Optional[SPHKernel] = None,
) -> Tuple[NDArrayFloat, NDArrayFloat, NDArrayFloat]:
    """
    Compute SPH densities and the grad-h correction factor.

    Implements the standard SPH estimators (Price 2012, Eqs. 13 and 27):
        ρ_i     = ∑_j m_j W(|r_i - r_j|, h_i)           (self term included)
        ρ_gas,i = ∑_j m_gas,j W(|r_i - r_j|, h_i)
        Ω_i     = 1 + h_i / (3 ρ_i) ∑_j m_j ∂W/∂h(|r_i - r_j|, h_i)

    Parameters
    ----------
    positions : NDArrayFloat, shape (N, 3)
        Particle positions.
    masses, gas_masses : NDArrayFloat, shape (N,)
        Total and gas-phase particle masses.
    smoothing_lengths : NDArrayFloat, shape (N,)
        Smoothing lengths.
    neighbour_lists : List[NDArrayInt]
        Neighbour indices (self excluded).
    kernel : SPHKernel, optional
        Interpolation kernel (default cubic spline).

    Returns
    -------
    density, gas_density, omega : NDArrayFloat, shape (N,)

    Notes
    -----
    An isolated particle has Ω = 0 by construction (its own kernel is the
    only contribution). Ω only enters the neighbour sums, which are empty for
    such a particle, so it is reported as 1 there. Any other non-positive Ω
    (strongly clustered configurations) is also reset to 1.
    """
    kernel = kernel or default_kernel
    n_particles = positions.shape[0]
    density = np.zeros(n_particles, dtype=FLOAT)
    gas_density = np.zeros(n_particles, dtype=FLOAT)
    omega = np.ones(n_particles, dtype=FLOAT)

    for i in range(n_particles):
        h_i = smoothing_lengths[i]

        # Self-contribution
        W_self = float(kernel.kernel(0.0, h_i))
        rho_i = masses[i] * W_self
        rho_gas_i = gas_masses[i] * W_self
        drho_dh = masses[i] * float(kernel.dw_dh(0.0, h_i))

        neighbours = neighbour_lists[i]
        if len(neighbours) > 0:
            r_ij = np.linalg.norm(positions[i] - positions[neighbours], axis=1)
            W_ij = kernel.kernel(r_ij, h_i)
            rho_i += np.sum(masses[neighbours] * W_ij)
            rho_gas_i += np.sum(gas_masses[neighbours] * W_ij)
            drho_dh += np.sum(masses[neighbours] * kernel.dw_dh(r_ij, h_i))

            if rho_i > 0.0:
                omega_i = 1.0 + h_i / (3.0 * rho_i) * drho_dh
                if omega_i > 0.0:
                    omega[i] = omega_i

        density[i] = rho_i
        gas_density[i] = rho_gas_i

    return density, gas_density, omega


def update_smoothing_lengths(
    positions: NDArrayFloat,
    masses: NDArrayFloat,
    smoothing_lengths: NDArrayFloat,
    eta: float = 1.2,
    max_iterations: int = 10,
    tolerance: float = 1e-2,
    kernel: Optional[SPHKernel] = None,
) -> NDArrayFloat:
    """
    Iterate smoothing lengths towards h = η (m / ρ)^(1/3).

    Each iteration recomputes neighbours with the particle's own support
    (non-symmetric search) and the summation density, then updates h. Isolated
    particles (no neighbours) grow their h by 2^(1/3) per iteration so that
    they eventually find neighbours; all values are clipped to bounds derived
    from the current h range and the extent of the particle cloud.

    Parameters
    ----------
    positions : NDArrayFloat, shape (N, 3)
        Particle positions.
    masses : NDArrayFloat, shape (N,)
        Particle masses.
    smoothing_lengths : NDArrayFloat, shape (N,)
        Initial smoothing lengths.
    eta : float, optional
        Smoothing length factor (default 1.2).
    max_iterations : int, optional
        Maximum number of iterations (default 10).
    tolerance : float, optional
        Maximum fractional change of h accepted as converged (default 1%).
    kernel : SPHKernel, optional
        Interpolation kernel (default cubic spline).

    Returns
    -------
    h_new : NDArrayFloat, shape (N,)
        Updated smoothing lengths.

    References
    ----------
    Price, D. J., & Monaghan, J. J. (2007), "An energy-conserving
    formalism for adaptive gravitational force softening in smoothed
    particle hydrodynamics and N-body codes", MNRAS, 374, 1347.
    """
    kernel = kernel or default_kernel
    h_new = np.array(smoothing_lengths, dtype=FLOAT, copy=True)
    support = kernel.support_radius

    h_min_bound, h_max_bound = _estimate_smoothing_length_bounds(positions, h_new)

    for _ in range(max_iterations):
        neighbour_lists = find_neighbours_bruteforce(
            positions, h_new, support_radius=support, symmetrize=False
        )
        isolated = np.array([len(nb) == 0 for nb in neighbour_lists], dtype=bool)

        density, _, _ = compute_density_summation(
            positions, masses, masses, h_new, neighbour_lists, kernel=kernel
        )

        h_target = eta * np.cbrt(masses / np.maximum(density, 1e-300))
        h_target[isolated] = h_new[isolated] * 2.0**(1.0 / 3.0)
        np.clip(h_target, h_min_bound, h_max_bound, out=h_target)

        change = np.max(np.abs(h_target - h_new) / h_new) if len(h_new) else 0.0
        h_new = h_target
        if change < tolerance and not np.any(isolated):
            break

    return h_new


def update_density(
    particles,
    kernel: Optional[SPHKernel] = None,
    eta: float = 1.2,
    max_iterations: int = 10,
    tolerance: float = 1e-2,
) -> None:
    """
    Run the full density pass on a ParticleSystem in place.

    Solves for h, builds symmetric neighbour lists for the force pass and
    stores ρ, ρ_gas and Ω on the arena. Once this returns, the neighbour graph
    and densities are a read-only snapshot for the force evaluation.
    """
    kernel = kernel or default_kernel

    if particles.n_particles > 1:
        particles.smoothing_lengths = update_smoothing_lengths(
            particles.positions,
            particles.masses,
            particles.smoothing_length,
            eta=eta,
            max_iterations=max_iterations,
            tolerance=tolerance,
            kernel=kernel,
        )

    neighbour_lists = find_neighbours_bruteforce(
        particles.positions,
        particles.smoothing_length,
        support_radius=kernel.support_radius,
        symmetrize=True,
    )
    particles.set_neighbours(neighbour_lists)

    density, gas_density, omega = compute_density_summation(
        particles.positions,
        particles.masses,
        particles.gas_masses,
        particles.smoothing_length,
        particles.neighbour_lists,
        kernel=kernel,
    )
    particles.density = density
    particles.gas_density = gas_density
    particles.omega = omega
