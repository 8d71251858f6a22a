"""
Initial conditions module: test-problem generators.
"""

from galaxy_sph.ICs.sedov import SedovBlast, random_unit_vector

__all__ = ["SedovBlast", "random_unit_vector"]
