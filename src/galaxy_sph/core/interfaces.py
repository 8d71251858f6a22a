"""
Abstract base classes defining interfaces for pluggable galaxy_sph modules.

The physics core only talks to its collaborators (kernel, gravity, EOS,
integrator, initial conditions) through these contracts so that each one can
be swapped for an alternative implementation in tests or production runs.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
import numpy as np
import numpy.typing as npt


# Type aliases for clarity
NDArrayFloat = npt.NDArray[np.float64]
NDArrayInt = npt.NDArray[np.int64]


class SPHKernel(ABC):
    """
    Abstract base class for SPH interpolation kernels.

    The physics core consumes kernels only through ``kernel_gradient`` and
    ``dw_dr``; density estimation additionally uses ``kernel`` and ``dw_dh``.
    """

    support_radius: float = 2.0

    @abstractmethod
    def kernel(self, r: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Compute the kernel W(r, h).

        Parameters
        ----------
        r : NDArrayFloat
            Separation(s) between particles.
        h : NDArrayFloat
            Smoothing length(s), broadcastable against r.

        Returns
        -------
        W : NDArrayFloat
            Kernel value(s).
        """
        pass

    @abstractmethod
    def dw_dr(self, r: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Compute the radial derivative ∂W/∂r.

        Parameters
        ----------
        r : NDArrayFloat
            Separation(s) between particles.
        h : NDArrayFloat
            Smoothing length(s).

        Returns
        -------
        dW : NDArrayFloat
            Radial derivative of the kernel (non-positive for a bell kernel).
        """
        pass

    @abstractmethod
    def dw_dh(self, r: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Compute the smoothing-length derivative ∂W/∂h (used for grad-h terms).
        """
        pass

    @abstractmethod
    def kernel_gradient(self, r_vec: NDArrayFloat, h: NDArrayFloat) -> NDArrayFloat:
        """
        Compute the kernel gradient with respect to the separation vector.

        Parameters
        ----------
        r_vec : NDArrayFloat, shape (..., 3)
            Separation vector(s).
        h : NDArrayFloat, shape (...)
            Smoothing length(s).

        Returns
        -------
        grad_W : NDArrayFloat, shape (..., 3)
            ∂W/∂r · r_vec / |r_vec| (zero where r_vec vanishes).
        """
        pass


class GravitySolver(ABC):
    """
    Abstract base class for gravity solvers.

    Implementations: NFWHalo (fixed external dark-matter potential).
    """

    @abstractmethod
    def compute_acceleration(
        self,
        positions: NDArrayFloat,
        masses: NDArrayFloat,
        smoothing_lengths: NDArrayFloat,
    ) -> NDArrayFloat:
        """
        Compute gravitational acceleration on all particles.

        Parameters
        ----------
        positions : NDArrayFloat, shape (N, 3)
            Particle positions.
        masses : NDArrayFloat, shape (N,)
            Particle masses.
        smoothing_lengths : NDArrayFloat, shape (N,)
            Smoothing lengths (available for softening).

        Returns
        -------
        accel : NDArrayFloat, shape (N, 3)
            Gravitational acceleration on each particle.
        """
        pass

    @abstractmethod
    def compute_potential(
        self,
        positions: NDArrayFloat,
        masses: NDArrayFloat,
        smoothing_lengths: NDArrayFloat
    ) -> NDArrayFloat:
        """
        Compute the specific gravitational potential at each particle.

        Returns
        -------
        potential : NDArrayFloat, shape (N,)
            Gravitational potential at each particle.
        """
        pass

    def potential_energy(
        self,
        positions: NDArrayFloat,
        masses: NDArrayFloat,
        smoothing_lengths: Optional[NDArrayFloat] = None,
    ) -> float:
        """Total potential energy ∑ m Φ of the particles in the external field."""
        phi = self.compute_potential(positions, masses, smoothing_lengths)
        return float(np.sum(np.asarray(masses, dtype=np.float64) * phi))


class EOS(ABC):
    """
    Abstract base class for equation of state.

    Implementations: IdealGas (γ = 5/3 with per-particle mean molecular weight).
    """

    @abstractmethod
    def pressure(
        self,
        density: NDArrayFloat,
        internal_energy: NDArrayFloat,
        **kwargs
    ) -> NDArrayFloat:
        """
        Compute pressure from density and internal energy.

        Parameters
        ----------
        density : NDArrayFloat, shape (N,)
            Mass density ρ.
        internal_energy : NDArrayFloat, shape (N,)
            Specific internal energy u.
        **kwargs : additional EOS parameters.

        Returns
        -------
        pressure : NDArrayFloat, shape (N,)
            Pressure P.
        """
        pass

    @abstractmethod
    def sound_speed(
        self,
        temperature: NDArrayFloat,
        mean_molecular_weight: NDArrayFloat,
        **kwargs
    ) -> NDArrayFloat:
        """
        Compute sound speed from temperature and mean molecular weight.

        Returns
        -------
        cs : NDArrayFloat, shape (N,)
            Sound speed.
        """
        pass

    @abstractmethod
    def temperature(
        self,
        internal_energy: NDArrayFloat,
        mean_molecular_weight: NDArrayFloat,
        **kwargs
    ) -> NDArrayFloat:
        """
        Compute temperature from internal energy and mean molecular weight.

        Returns
        -------
        T : NDArrayFloat, shape (N,)
            Temperature.
        """
        pass


class TimeIntegrator(ABC):
    """
    Abstract base class for time integration schemes.

    Implementations: Leapfrog.
    """

    @abstractmethod
    def step(
        self,
        particles: Any,  # ParticleSystem type
        dt: float,
        forces: Dict[str, NDArrayFloat],
        **kwargs
    ) -> None:
        """
        Advance particle system by one timestep.

        Parameters
        ----------
        particles : ParticleSystem
            Particle system to evolve.
        dt : float
            Timestep.
        forces : Dict[str, NDArrayFloat]
            Dictionary of derivative contributions (accelerations, du/dt, dm_star/dt).
        **kwargs : integrator-specific parameters.
        """
        pass

    @abstractmethod
    def estimate_timestep(
        self,
        particles: Any,
        cfl_factor: float = 0.3,
        **kwargs
    ) -> float:
        """
        Estimate appropriate timestep based on CFL and other criteria.

        Returns
        -------
        dt : float
            Suggested timestep.
        """
        pass


class ICGenerator(ABC):
    """
    Abstract base class for initial conditions generators.

    Implementations: SedovBlast.
    """

    @abstractmethod
    def generate(
        self,
        n_particles: int,
        **kwargs
    ) -> Tuple[NDArrayFloat, NDArrayFloat, NDArrayFloat, NDArrayFloat]:
        """
        Generate initial particle distribution.

        Parameters
        ----------
        n_particles : int
            Number of particles to generate.
        **kwargs : model-specific parameters.

        Returns
        -------
        positions : NDArrayFloat, shape (n_particles, 3)
            Initial positions.
        velocities : NDArrayFloat, shape (n_particles, 3)
            Initial velocities.
        masses : NDArrayFloat, shape (n_particles,)
            Particle masses.
        temperatures : NDArrayFloat, shape (n_particles,)
            Initial temperatures.
        """
        pass
