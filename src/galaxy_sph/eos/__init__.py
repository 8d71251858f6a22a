"""
EOS module: ideal gas equation of state and thermodynamic domain errors.
"""

from .ideal_gas import IdealGas, DomainError, pressure, temperature, sound_speed

__all__ = ["IdealGas", "DomainError", "pressure", "temperature", "sound_speed"]
