"""
Gravity module: static NFW dark-matter halo.
"""

from .nfw import NFWHalo, nfw_acceleration, nfw_potential, compute_halo_acceleration

__all__ = [
    "NFWHalo",
    "nfw_acceleration",
    "nfw_potential",
    "compute_halo_acceleration",
]
