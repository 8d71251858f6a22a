"""
galaxy_sph: SPH simulator for galactic gas in a static NFW dark-matter halo.

Particles carry mass, position, velocity, internal energy and density. Each
timestep evaluates halo gravity, grad-h pressure forces, artificial viscosity,
thermal conduction and star formation, then integrates forward in time. All
quantities are in CGS units.
"""

__version__ = "1.0.0"
__author__ = "galaxy_sph Dev Team"

# Core imports for convenience
from galaxy_sph.core.interfaces import (
    SPHKernel,
    GravitySolver,
    EOS,
    TimeIntegrator,
    ICGenerator,
)

__all__ = [
    "SPHKernel",
    "GravitySolver",
    "EOS",
    "TimeIntegrator",
    "ICGenerator",
]
