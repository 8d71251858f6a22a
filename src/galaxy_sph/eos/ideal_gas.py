"""
Ideal gas equation of state for galaxy SPH thermodynamics.

This module provides the thermodynamic closure of a monatomic ideal gas
(γ = 5/3) with a per-particle mean molecular weight μ in g/mol:

    P   = (2/3) u ρ
    T   = 2 μ / (3 R) u
    c_s = sqrt((5/3) R T / μ)

where R is the ideal gas constant in CGS units. Two surfaces are offered:
per-particle functions operating on one slot of a ``ParticleSystem`` (used by
the hydro core) and the vectorised ``IdealGas`` EOS used by the simulation
driver to refresh all particles at once.

References:
    Kippenhahn & Weigert - Stellar Structure and Evolution
    Price (2012) - SPH review, thermodynamics section
"""

import numpy as np

from galaxy_sph.core.constants import R_ig, GAMMA, FLOAT
from galaxy_sph.core.interfaces import EOS, NDArrayFloat


class DomainError(ValueError):
    """
    Raised when a thermodynamic function is evaluated outside its domain.

    Attributes
    ----------
    state : dict
        Snapshot of the offending particle (see ``ParticleSystem.describe``),
        or an empty dict when raised from the vectorised EOS.
    """

    def __init__(self, message: str, state=None):
        self.state = dict(state or {})
        if self.state:
            message = f"{message}; particle state: {self.state}"
        super().__init__(message)


def pressure(particles, i: int) -> float:
    """Pressure of particle i: P = (2/3) u ρ."""
    return 2.0 / 3.0 * particles.internal_energy[i] * particles.density[i]


def temperature(particles, i: int) -> float:
    """Temperature of particle i: T = 2 μ / (3 R) u."""
    return 2.0 * particles.mean_molecular_weight[i] / (3.0 * R_ig) * particles.internal_energy[i]


def sound_speed(particles, i: int) -> float:
    """
    Adiabatic sound speed of particle i from its stored temperature.

    Raises
    ------
    DomainError
        If T < 0. The message carries the particle state.
    """
    T = particles.temperature[i]
    if T < 0.0:
        raise DomainError(
            f"negative temperature T={T:.6e} K in sound speed",
            particles.describe(i),
        )
    return float(np.sqrt(GAMMA * R_ig * T / particles.mean_molecular_weight[i]))


class IdealGas(EOS):
    """
    Vectorised γ = 5/3 ideal gas equation of state.

    Parameters
    ----------
    gamma : float, optional
        Adiabatic index (default 5/3). Only the monatomic value is consistent
        with the temperature relation used throughout the package, so other
        values are rejected.

    Notes
    -----
    Unlike many SPH codes this EOS does not clamp negative internal energies.
    A negative u produces a negative temperature, and ``sound_speed`` raises
    ``DomainError`` instead of silently returning zero.
    """

    def __init__(self, gamma: float = GAMMA):
        if not np.isclose(gamma, GAMMA):
            raise ValueError(f"IdealGas only supports gamma = 5/3, got {gamma}")
        self.gamma = float(gamma)
        self._gamma_minus_1 = self.gamma - 1.0

    def pressure(
        self,
        density: NDArrayFloat,
        internal_energy: NDArrayFloat,
        **kwargs
    ) -> NDArrayFloat:
        """
        Compute gas pressure P = (γ - 1) ρ u.

        Parameters
        ----------
        density : NDArrayFloat, shape (N,)
            Mass density ρ [g/cm^3].
        internal_energy : NDArrayFloat, shape (N,)
            Specific internal energy u [erg/g].

        Returns
        -------
        pressure : NDArrayFloat, shape (N,)
            Gas pressure P [dyn/cm^2].
        """
        density = np.asarray(density, dtype=FLOAT)
        internal_energy = np.asarray(internal_energy, dtype=FLOAT)
        return self._gamma_minus_1 * internal_energy * density

    def temperature(
        self,
        internal_energy: NDArrayFloat,
        mean_molecular_weight: NDArrayFloat,
        **kwargs
    ) -> NDArrayFloat:
        """
        Compute temperature T = 2 μ u / (3 R).

        Parameters
        ----------
        internal_energy : NDArrayFloat, shape (N,)
            Specific internal energy u [erg/g].
        mean_molecular_weight : NDArrayFloat, shape (N,)
            Mean molecular weight μ [g/mol].

        Returns
        -------
        T : NDArrayFloat, shape (N,)
            Temperature [K].
        """
        internal_energy = np.asarray(internal_energy, dtype=FLOAT)
        mu = np.asarray(mean_molecular_weight, dtype=FLOAT)
        return self._gamma_minus_1 * mu / R_ig * internal_energy

    def internal_energy_from_temperature(
        self,
        temperature: NDArrayFloat,
        mean_molecular_weight: NDArrayFloat,
    ) -> NDArrayFloat:
        """Inverse of ``temperature``: u = 3 R T / (2 μ)."""
        T = np.asarray(temperature, dtype=FLOAT)
        mu = np.asarray(mean_molecular_weight, dtype=FLOAT)
        return R_ig * T / (self._gamma_minus_1 * mu)

    def sound_speed(
        self,
        temperature: NDArrayFloat,
        mean_molecular_weight: NDArrayFloat,
        **kwargs
    ) -> NDArrayFloat:
        """
        Compute adiabatic sound speed c_s = sqrt(γ R T / μ).

        Raises
        ------
        DomainError
            If any temperature is negative.
        """
        T = np.asarray(temperature, dtype=FLOAT)
        mu = np.asarray(mean_molecular_weight, dtype=FLOAT)
        negative = T < 0.0
        if np.any(negative):
            first = int(np.flatnonzero(negative)[0]) if T.ndim else 0
            raise DomainError(
                f"negative temperature in sound speed for {int(np.sum(negative))} "
                f"particle(s), first at index {first} (T={float(T.flat[first]):.6e} K)"
            )
        return np.sqrt(self.gamma * R_ig * T / mu)

    def __repr__(self) -> str:
        return f"IdealGas(gamma={self.gamma:.4f})"
