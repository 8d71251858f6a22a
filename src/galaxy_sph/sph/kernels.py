"""
SPH kernel functions for density estimation and gradient computation.

This module implements the M4 cubic spline kernel (Monaghan & Lattanzio 1985)
with compact support radius 2h, together with the pair helpers the physics
core uses to evaluate ∇W(p, q) and dW(p, q).

Pair convention
---------------
``∇W(p, q)`` is the gradient of p's kernel (smoothing length h_p) evaluated at
the separation ``x_q - x_p``; ``∇W(q, p)`` uses h_q and ``x_p - x_q``. With
different smoothing lengths the two are not negatives of each other, which is
why the force sums in ``hydro_forces`` carry both orientations explicitly.
``dW(p, q)`` is ∂W/∂r at |x_p - x_q| with h_p.
"""

import numpy as np
from numba import njit

from galaxy_sph.core.constants import FLOAT
from galaxy_sph.core.interfaces import SPHKernel, NDArrayFloat, NDArrayInt

# 3D normalisation of the M4 kernel
SIGMA_3D = 1.0 / np.pi


@njit(fastmath=True)
def w_cubic(q):
    """Dimensionless cubic spline w(q)."""
    if q < 1.0:
        return 1.0 - 1.5 * q * q + 0.75 * q * q * q
    elif q < 2.0:
        return 0.25 * (2.0 - q) ** 3
    return 0.0


@njit(fastmath=True)
def dw_dq_cubic(q):
    """Derivative dw/dq of the dimensionless cubic spline."""
    if q < 1.0:
        return -3.0 * q + 2.25 * q * q
    elif q < 2.0:
        return -0.75 * (2.0 - q) ** 2
    return 0.0


@njit(fastmath=True)
def dw_dr_cubic(r, h):
    """Radial derivative ∂W/∂r of the 3D cubic spline."""
    return SIGMA_3D / h**4 * dw_dq_cubic(r / h)


class CubicSplineKernel(SPHKernel):
    """
    M4 cubic spline SPH kernel.

    The kernel is defined as:
        W(r, h) = σ_d / h^d × w(q)
    where q = r/h, d is dimension, and:
        w(q) = { 1 - (3/2)q² + (3/4)q³,     0 ≤ q < 1
               { (1/4)(2 - q)³,              1 ≤ q < 2
               { 0,                          q ≥ 2

    Normalization constants (Price 2012, Table 1):
        σ_1 = 2/3, σ_2 = 10/(7π), σ_3 = 1/π

    References
    ----------
    .. [1] Monaghan, J. J., & Lattanzio, J. C. (1985),
           "A refined particle method for astrophysical problems",
           Astronomy and Astrophysics, 149, 135.
    .. [2] Price, D. J. (2012), "Smoothed particle hydrodynamics and
           magnetohydrodynamics", Journal of Computational Physics, 231, 759.
    """

    def __init__(self, dim: int = 3):
        """
        Initialize cubic spline kernel.

        Parameters
        ----------
        dim : int, optional
            Spatial dimension (1, 2, or 3). Default is 3.
        """
        self.dim = dim
        self.support_radius = 2.0

        if dim == 1:
            self.sigma = 2.0 / 3.0
        elif dim == 2:
            self.sigma = 10.0 / (7.0 * np.pi)
        elif dim == 3:
            self.sigma = SIGMA_3D
        else:
            raise ValueError(f"Unsupported dimension: {dim}. Must be 1, 2, or 3.")

    def w(self, q: NDArrayFloat) -> NDArrayFloat:
        """Dimensionless kernel function w(q) (unnormalized)."""
        q = np.asarray(q, dtype=FLOAT)
        return np.where(
            q < 1.0,
            1.0 - 1.5 * q**2 + 0.75 * q**3,
            np.where(q < 2.0, 0.25 * (2.0 - q)**3, 0.0),
        )

    def dw_dq(self, q: NDArrayFloat) -> NDArrayFloat:
        """Derivative of the dimensionless kernel dw/dq."""
        q = np.asarray(q, dtype=FLOAT)
        return np.where(
            q < 1.0,
            -3.0 * q + 2.25 * q**2,
            np.where(q < 2.0, -0.75 * (2.0 - q)**2, 0.0),
        )

    def kernel(self, r: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Compute SPH kernel W(r, h) = σ_d / h^d × w(r/h).

        Broadcasts over r and h.
        """
        r, h = np.broadcast_arrays(np.asarray(r, dtype=FLOAT), np.asarray(h, dtype=FLOAT))
        return self.sigma / h**self.dim * self.w(r / h)

    def dw_dr(self, r: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Radial derivative ∂W/∂r = σ_d / h^(d+1) × dw/dq.
        """
        r, h = np.broadcast_arrays(np.asarray(r, dtype=FLOAT), np.asarray(h, dtype=FLOAT))
        return self.sigma / h**(self.dim + 1) * self.dw_dq(r / h)

    def dw_dh(self, r: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Smoothing-length derivative ∂W/∂h = -σ_d / h^(d+1) × (d·w(q) + q·dw/dq).
        """
        r, h = np.broadcast_arrays(np.asarray(r, dtype=FLOAT), np.asarray(h, dtype=FLOAT))
        q = r / h
        return -self.sigma / h**(self.dim + 1) * (self.dim * self.w(q) + q * self.dw_dq(q))

    def kernel_gradient(self, r_vec: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Compute gradient of kernel ∇W(r, h) with respect to r_vec.

        Parameters
        ----------
        r_vec : NDArrayFloat, shape (..., 3)
            Separation vector(s).
        h : NDArrayFloat, shape (...)
            Smoothing length(s), must broadcast with r_vec[..., 0].

        Returns
        -------
        grad_W : NDArrayFloat, shape (..., 3)
            (∂W/∂r) × r_vec / |r_vec|; zero for coincident particles.
        """
        r_vec = np.asarray(r_vec, dtype=FLOAT)
        r = np.linalg.norm(r_vec, axis=-1)
        dW = self.dw_dr(r, h)

        # r == 0 has no direction; the gradient is zero there
        safe_r = np.where(r > 0.0, r, 1.0)
        factor = np.where(r > 0.0, dW / safe_r, 0.0)
        return factor[..., np.newaxis] * r_vec


def pair_gradients(kernel: SPHKernel, particles, i: int, neighbours: NDArrayInt):
    """
    Kernel gradients ∇W(p, q) and ∇W(q, p) for particle i against its neighbours.

    Parameters
    ----------
    kernel : SPHKernel
        Kernel providing ``kernel_gradient``.
    particles : ParticleSystem
        Particle arena.
    i : int
        Index of particle p.
    neighbours : NDArrayInt
        Indices of the neighbours q.

    Returns
    -------
    grad_pq : NDArrayFloat, shape (k, 3)
        ∇W(p, q): h_p, separation x_q - x_p.
    grad_qp : NDArrayFloat, shape (k, 3)
        ∇W(q, p): h_q, separation x_p - x_q.
    """
    x_qp = particles.positions[neighbours] - particles.positions[i]
    h_p = np.full(len(neighbours), particles.smoothing_length[i], dtype=FLOAT)
    h_q = particles.smoothing_length[neighbours]

    grad_pq = kernel.kernel_gradient(x_qp, h_p)
    grad_qp = kernel.kernel_gradient(-x_qp, h_q)
    return grad_pq, grad_qp


def pair_derivatives(kernel: SPHKernel, particles, i: int, neighbours: NDArrayInt):
    """
    Radial kernel derivatives dW(p, q) (h_p) and dW(q, p) (h_q).
    """
    dist = np.linalg.norm(particles.positions[neighbours] - particles.positions[i], axis=1)
    dw_pq = kernel.dw_dr(dist, particles.smoothing_length[i])
    dw_qp = kernel.dw_dr(dist, particles.smoothing_length[neighbours])
    return dw_pq, dw_qp


# Default kernel instance for 3D
default_kernel = CubicSplineKernel(dim=3)
