"""
Integration module: time-stepping schemes.
"""

from .leapfrog import LeapfrogIntegrator

__all__ = ["LeapfrogIntegrator"]
