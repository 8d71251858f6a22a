"""
Leapfrog (kick-drift) time integrator for galaxy SPH simulations.

Implements the classic staggered leapfrog scheme:
    v^(n+1/2) = v^(n-1/2) + a^n * dt
    x^(n+1) = x^n + v^(n+1/2) * dt

together with a forward update of the specific internal energy and the
transfer of gas into stars at the star-formation rate.

References
----------
- Price, D. J. (2012), JCP, 231, 759 - "Smoothed particle hydrodynamics and magnetohydrodynamics"
- Springel, V. (2005), MNRAS, 364, 1105 - "The cosmological simulation code GADGET-2"
"""

import numpy as np
from typing import Any, Dict, Optional

from galaxy_sph.core.constants import FLOAT
from galaxy_sph.core.interfaces import TimeIntegrator, NDArrayFloat


class LeapfrogIntegrator(TimeIntegrator):
    """
    Leapfrog integrator for SPH gas in a static halo.

    The leapfrog scheme staggers positions and velocities by half a timestep,
    providing second-order accuracy and good long-term energy conservation
    for the conservative part of the dynamics.

    Attributes
    ----------
    half_step_initialized : bool
        Whether the initial half-step kick has been performed.
    cfl_factor : float
        Default CFL safety factor for timestep estimation.
    accel_factor : float
        Safety factor for acceleration-based timestep constraint.

    Notes
    -----
    The first call to step() kicks velocities by half a step to set up the
    staggering, then drifts. Subsequent calls use full-step kicks.

    Internal energy is not floored. A negative u is a physical inconsistency
    and surfaces as a ``DomainError`` at the next sound-speed evaluation.
    """

    def __init__(
        self,
        cfl_factor: float = 0.3,
        accel_factor: float = 0.25,
        internal_energy_evolution: bool = True,
        star_formation: bool = True,
    ):
        """
        Initialize leapfrog integrator.

        Parameters
        ----------
        cfl_factor : float, default 0.3
            CFL safety factor for timestep estimation (typically 0.2-0.5).
        accel_factor : float, default 0.25
            Safety factor for acceleration-based timestep (typically 0.25-0.5).
        internal_energy_evolution : bool, default True
            Whether to evolve internal energy.
        star_formation : bool, default True
            Whether to convert gas mass into stars using forces['dm_star'].
        """
        self.half_step_initialized = False
        self.cfl_factor = cfl_factor
        self.accel_factor = accel_factor
        self.internal_energy_evolution = internal_energy_evolution
        self.star_formation = star_formation

    def step(
        self,
        particles: Any,
        dt: float,
        forces: Dict[str, NDArrayFloat],
        **kwargs
    ) -> None:
        """
        Advance particle system by one timestep.

        Parameters
        ----------
        particles : ParticleSystem
            Particle system to advance in place.
        dt : float
            Timestep duration [s].
        forces : Dict[str, NDArrayFloat]
            Derivative contributions:
            - 'total' : NDArrayFloat, shape (N, 3) - total acceleration
            - 'du_dt' : NDArrayFloat, shape (N,) - rate of internal energy change
            - 'dm_star' : NDArrayFloat, shape (N,) - star formation rate [g/s]
            If 'total' is missing, every (N, 3) entry is summed instead.
        **kwargs
            Unused.

        Notes
        -----
        Star formation moves min(dm_star * dt, m_gas) from ``gas_masses`` to
        ``star_masses``; the total particle mass is unchanged.
        """
        if forces.get('total') is not None:
            total_accel = np.asarray(forces['total'], dtype=FLOAT)
        else:
            total_accel = np.zeros_like(particles.positions, dtype=FLOAT)
            for key, accel in forces.items():
                if accel is not None and np.shape(accel) == particles.positions.shape:
                    total_accel += accel

        # Kick: half step on the first call to stagger velocities
        if not self.half_step_initialized:
            particles.velocities = particles.velocities + 0.5 * dt * total_accel
            self.half_step_initialized = True
        else:
            particles.velocities = particles.velocities + dt * total_accel

        # Drift: x^(n+1) = x^n + v^(n+1/2) * dt
        particles.positions = particles.positions + dt * particles.velocities

        if self.internal_energy_evolution and forces.get('du_dt') is not None:
            particles.internal_energy = particles.internal_energy + dt * forces['du_dt']

        if self.star_formation and forces.get('dm_star') is not None:
            converted = np.minimum(forces['dm_star'] * dt, particles.gas_masses)
            converted = np.maximum(converted, 0.0)
            particles.gas_masses = particles.gas_masses - converted
            particles.star_masses = particles.star_masses + converted

    def estimate_timestep(
        self,
        particles: Any,
        cfl_factor: Optional[float] = None,
        **kwargs
    ) -> float:
        """
        Estimate appropriate timestep based on CFL condition and acceleration.

        1. CFL condition: dt_cfl = C * min(h / (c_s + |v|))
        2. Acceleration constraint: dt_acc = C_a * min(sqrt(h / |a|))

        The minimum of the constraints is returned.

        Parameters
        ----------
        particles : ParticleSystem
            Particle system with sound speeds, velocities and smoothing lengths.
        cfl_factor : Optional[float]
            Override default CFL factor if provided.
        **kwargs
            Additional constraint parameters:
            - 'accelerations' : NDArrayFloat, shape (N, 3) - current total acceleration
            - 'min_dt' : float - absolute minimum timestep floor
            - 'max_dt' : float - absolute maximum timestep ceiling

        Returns
        -------
        dt : float
            Recommended timestep [s].

        References
        ----------
        - Price (2012), Eq. 60-62: SPH timestep criteria
        """
        if cfl_factor is None:
            cfl_factor = self.cfl_factor

        c_s = np.asarray(particles.sound_speed, dtype=FLOAT)
        v_mag = np.linalg.norm(particles.velocities, axis=1)
        h = np.asarray(particles.smoothing_length, dtype=FLOAT)

        # 1. CFL timestep: dt_cfl = C * h / (c_s + |v|)
        signal_speed = np.maximum(c_s + v_mag, 1e-300)
        dt_cfl_min = float(np.min(cfl_factor * h / signal_speed))

        # 2. Acceleration timestep: dt_acc = C * sqrt(h / |a|)
        accel = kwargs.get('accelerations')
        if accel is not None:
            accel_mag = np.maximum(np.linalg.norm(accel, axis=1), 1e-300)
            dt_acc_min = float(np.min(self.accel_factor * np.sqrt(h / accel_mag)))
        else:
            dt_acc_min = np.inf

        dt_candidate = min(dt_cfl_min, dt_acc_min)

        # Apply absolute bounds if provided
        if kwargs.get('min_dt') is not None:
            dt_candidate = max(dt_candidate, float(kwargs['min_dt']))
        if kwargs.get('max_dt') is not None:
            dt_candidate = min(dt_candidate, float(kwargs['max_dt']))

        return float(dt_candidate)

    def reset(self) -> None:
        """
        Reset integrator state (e.g., for restarting simulation).
        """
        self.half_step_initialized = False
