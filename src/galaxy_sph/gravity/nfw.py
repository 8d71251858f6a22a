"""
Static NFW dark-matter halo centred on the origin.

The halo is a fixed external potential: it accelerates gas particles but is
not itself evolved. For a halo of total mass M_tot, scale radius R_s and
concentration normalisation A_NFW = ln(1 + c) - c / (1 + c):

    a(r) = G M_tot / A_NFW · (1 / r²) · (r / (r + R_s) - ln(1 + r / R_s))
    Φ(r) = -G M_tot / A_NFW · ln(1 + r / R_s) / r

a(r) is negative (attractive) for r > 0 and tends to the finite value
-G M_tot / (2 A_NFW R_s²) as r → 0; it is defined as exactly 0 at r = 0,
where the direction is undefined.

References:
    Navarro, Frenk & White (1996), ApJ 462, 563
    Łokas & Mamon (2001), MNRAS 321, 155 - NFW dynamical properties
"""

import numpy as np

from galaxy_sph.core.constants import G, FLOAT
from galaxy_sph.core.interfaces import GravitySolver, NDArrayFloat


def nfw_acceleration(r, params):
    """
    Radial NFW acceleration a(r).

    Parameters
    ----------
    r : float or NDArrayFloat
        Distance(s) from the halo centre [cm].
    params : Params
        Run parameters; uses ``M_tot``, ``A_NFW`` and ``Rs``.

    Returns
    -------
    a : float or NDArrayFloat
        Signed radial acceleration [cm/s^2]; 0 where r == 0.
    """
    r_arr = np.asarray(r, dtype=FLOAT)
    r_safe = np.where(r_arr > 0.0, r_arr, 1.0)
    a = (
        G * params.M_tot / params.A_NFW / r_safe**2
        * (r_safe / (r_safe + params.Rs) - np.log1p(r_safe / params.Rs))
    )
    a = np.where(r_arr > 0.0, a, 0.0)
    return float(a) if a.ndim == 0 else a


def nfw_potential(r, params):
    """
    Specific NFW potential Φ(r) [erg/g], with the finite limit at r = 0.
    """
    r_arr = np.asarray(r, dtype=FLOAT)
    r_safe = np.where(r_arr > 0.0, r_arr, 1.0)
    prefactor = -G * params.M_tot / params.A_NFW
    phi = np.where(
        r_arr > 0.0,
        prefactor * np.log1p(r_safe / params.Rs) / r_safe,
        prefactor / params.Rs,
    )
    return float(phi) if phi.ndim == 0 else phi


def compute_halo_acceleration(particles, i: int, params) -> None:
    """
    Write the halo acceleration of particle i into ``particles.dv_DM[i]``.

    dv_DM = a(|x|) x / |x|, zero for a particle sitting on the halo centre.
    """
    x = particles.positions[i]
    r = float(np.linalg.norm(x))
    if r == 0.0:
        particles.dv_DM[i] = 0.0
        return
    particles.dv_DM[i] = nfw_acceleration(r, params) * x / r


class NFWHalo(GravitySolver):
    """
    Vectorised NFW halo gravity solver.

    Parameters
    ----------
    params : Params
        Run parameters providing ``M_tot``, ``A_NFW`` and ``Rs``.

    Notes
    -----
    Particle masses and smoothing lengths are accepted for interface
    compatibility only; the halo is a fixed background and there is no gas
    self-gravity.

    Examples
    --------
    >>> halo = NFWHalo(config.to_params())
    >>> accel = halo.compute_acceleration(pos, masses, h)
    """

    def __init__(self, params):
        if params.Rs <= 0.0:
            raise ValueError(f"NFW scale radius must be positive, got {params.Rs}")
        if params.A_NFW <= 0.0:
            raise ValueError(f"A_NFW must be positive, got {params.A_NFW}")
        self.params = params

    def compute_acceleration(
        self,
        positions: NDArrayFloat,
        masses: NDArrayFloat,
        smoothing_lengths: NDArrayFloat,
    ) -> NDArrayFloat:
        """
        Halo acceleration for every particle.

        Returns
        -------
        accel : NDArrayFloat, shape (N, 3)
            a(|x|) x / |x| per particle, zero at the origin.
        """
        positions = np.asarray(positions, dtype=FLOAT)
        r = np.linalg.norm(positions, axis=1)
        a = nfw_acceleration(r, self.params)
        r_safe = np.where(r > 0.0, r, 1.0)
        return (a / r_safe)[:, np.newaxis] * positions

    def compute_potential(
        self,
        positions: NDArrayFloat,
        masses: NDArrayFloat,
        smoothing_lengths: NDArrayFloat,
    ) -> NDArrayFloat:
        """Specific halo potential Φ(|x|) for every particle."""
        positions = np.asarray(positions, dtype=FLOAT)
        return nfw_potential(np.linalg.norm(positions, axis=1), self.params)

    def __repr__(self) -> str:
        return (
            f"NFWHalo(M_tot={self.params.M_tot:.3e}, Rs={self.params.Rs:.3e}, "
            f"A_NFW={self.params.A_NFW:.4f})"
        )
