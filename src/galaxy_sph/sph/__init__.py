"""
SPH module: particles, kernels, neighbour search, density and hydrodynamic derivatives.
"""

from .particles import ParticleSystem
from .kernels import CubicSplineKernel, default_kernel, pair_gradients, pair_derivatives
from .neighbours_cpu import (
    find_neighbours_bruteforce,
    compute_density_summation,
    update_smoothing_lengths,
    update_density,
)
from .hydro_forces import (
    signal_speed,
    energy_signal_speed,
    compute_pressure_acceleration,
    compute_pressure_heating,
    compute_viscous_acceleration,
    compute_viscous_heating,
    compute_conduction_heating,
    compute_star_formation_rate,
    compute_particle_derivatives,
    compute_hydro_derivatives,
    compute_hydro_derivatives_numba,
)

__all__ = [
    # Particle management
    "ParticleSystem",

    # Kernels
    "CubicSplineKernel",
    "default_kernel",
    "pair_gradients",
    "pair_derivatives",

    # Neighbour search and density
    "find_neighbours_bruteforce",
    "compute_density_summation",
    "update_smoothing_lengths",
    "update_density",

    # Hydrodynamic derivatives
    "signal_speed",
    "energy_signal_speed",
    "compute_pressure_acceleration",
    "compute_pressure_heating",
    "compute_viscous_acceleration",
    "compute_viscous_heating",
    "compute_conduction_heating",
    "compute_star_formation_rate",
    "compute_particle_derivatives",
    "compute_hydro_derivatives",
    "compute_hydro_derivatives_numba",
]
