"""
Sedov-Taylor blast wave initial conditions.

A cold, uniform-temperature gas sphere with one hot particle at its centre.
The overpressure of the hot particle drives a blast wave through the cloud,
which exercises the pressure, viscosity and conduction terms of the solver
without any halo or cosmological setup.

Particles are placed at radius R_max·sqrt(U), U ~ Uniform(0, 1), along
isotropic random directions. This is denser towards the centre than a uniform
sphere (ρ ∝ 1/r), which keeps the hot particle well resolved.

References
----------
- Sedov, L. I. (1959), "Similarity and Dimensional Methods in Mechanics"
- Taylor, G. I. (1950), Proc. R. Soc. A, 201, 159
"""

from typing import Optional, Tuple
import numpy as np

from galaxy_sph.core.constants import Msun, pc, FLOAT
from galaxy_sph.core.interfaces import ICGenerator, NDArrayFloat
from galaxy_sph.eos import IdealGas
from galaxy_sph.sph import ParticleSystem


def random_unit_vector(rng: np.random.Generator, n: int) -> NDArrayFloat:
    """
    Draw n isotropically distributed unit vectors.

    Parameters
    ----------
    rng : np.random.Generator
        Random number generator.
    n : int
        Number of vectors.

    Returns
    -------
    unit : NDArrayFloat, shape (n, 3)
    """
    phi = rng.uniform(0.0, 2.0 * np.pi, n)
    cos_theta = rng.uniform(-1.0, 1.0, n)
    sin_theta = np.sqrt(1.0 - cos_theta**2)

    return np.column_stack([
        sin_theta * np.cos(phi),
        sin_theta * np.sin(phi),
        cos_theta,
    ]).astype(FLOAT)


class SedovBlast(ICGenerator):
    """
    Generate a Sedov-Taylor blast wave setup.

    Attributes
    ----------
    R_max : float
        Cloud radius [cm].
    M_tot : float
        Mass of the N ambient particles [g].
    T0 : float
        Ambient temperature [K].
    T_hot : float
        Temperature of the central particle [K].
    mu : float
        Mean molecular weight [g/mol].
    eta : float
        Smoothing length factor for the initial h guess.
    """

    def __init__(
        self,
        R_max: float = 3.0 * pc,
        M_tot: float = 1000.0 * Msun,
        T0: float = 100.0,
        T_hot: float = 1e5,
        mu: float = 0.6,
        eta: float = 1.2,
        random_seed: Optional[int] = 42,
    ):
        if R_max <= 0.0:
            raise ValueError(f"R_max must be positive, got {R_max}")
        if M_tot <= 0.0:
            raise ValueError(f"M_tot must be positive, got {M_tot}")
        if T0 < 0.0 or T_hot < 0.0:
            raise ValueError(f"Temperatures must be non-negative, got T0={T0}, T_hot={T_hot}")

        self.R_max = R_max
        self.M_tot = M_tot
        self.T0 = T0
        self.T_hot = T_hot
        self.mu = mu
        self.eta = eta
        self.random_seed = random_seed
        self.eos = IdealGas()

    @classmethod
    def from_config(cls, config, **kwargs) -> "SedovBlast":
        """Build a generator using T0, mu, η and the seed of a SimulationConfig."""
        options = dict(
            T0=config.T0,
            mu=config.mu,
            eta=config.smoothing_length_eta,
            random_seed=config.random_seed,
        )
        options.update(kwargs)
        return cls(**options)

    def generate(
        self,
        n_particles: int,
        **kwargs
    ) -> Tuple[NDArrayFloat, NDArrayFloat, NDArrayFloat, NDArrayFloat]:
        """
        Generate n_particles ambient particles plus the hot central one.

        The hot particle comes first (index 0, at the origin). All particles
        have mass M_tot / n_particles and zero velocity.

        Returns
        -------
        positions : NDArrayFloat, shape (n_particles + 1, 3)
        velocities : NDArrayFloat, shape (n_particles + 1, 3)
        masses : NDArrayFloat, shape (n_particles + 1,)
        temperatures : NDArrayFloat, shape (n_particles + 1,)
        """
        if n_particles < 1:
            raise ValueError(f"n_particles must be >= 1, got {n_particles}")

        rng = np.random.default_rng(self.random_seed)
        m = self.M_tot / n_particles

        radii = self.R_max * np.sqrt(rng.uniform(0.0, 1.0, n_particles))
        ambient = radii[:, np.newaxis] * random_unit_vector(rng, n_particles)

        positions = np.vstack([np.zeros((1, 3), dtype=FLOAT), ambient])
        velocities = np.zeros_like(positions)
        masses = np.full(n_particles + 1, m, dtype=FLOAT)
        temperatures = np.full(n_particles + 1, self.T0, dtype=FLOAT)
        temperatures[0] = self.T_hot

        return positions, velocities, masses, temperatures

    def initial_smoothing_length(self, n_particles: int) -> float:
        """h = η (m / ρ_mean)^(1/3) for the mean density of the cloud."""
        rho_mean = self.M_tot / (4.0 / 3.0 * np.pi * self.R_max**3)
        m = self.M_tot / n_particles
        return float(self.eta * np.cbrt(m / rho_mean))

    def build_particles(self, n_particles: int) -> ParticleSystem:
        """
        Generate the blast wave and wrap it in a ParticleSystem.

        Internal energies follow from the temperatures via the ideal gas EOS;
        particle ids are 0 (hot centre) to n_particles.
        """
        positions, velocities, masses, temperatures = self.generate(n_particles)
        mu = np.full(len(masses), self.mu, dtype=FLOAT)

        particles = ParticleSystem(
            n_particles=len(masses),
            positions=positions,
            velocities=velocities,
            masses=masses,
            internal_energy=self.eos.internal_energy_from_temperature(temperatures, mu),
            smoothing_length=self.initial_smoothing_length(n_particles),
            mean_molecular_weight=mu,
        )
        particles.temperature = temperatures.copy()
        return particles
