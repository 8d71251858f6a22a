"""
Physical constants for galaxy_sph.

Everything in the simulator is expressed in CGS units. Configuration values
written in astronomer-friendly units (Msun, pc, yr, m_p) are converted with
these factors by ``SimulationConfig.to_params``.
"""

import numpy as np

# Ideal gas constant [erg / K / mol]
R_ig = 8.314e7

# Gravitational constant [cm^3 g^-1 s^-2]
G = 6.67e-8

# Solar mass [g]
Msun = 1.989e33

# Parsec [cm]
pc = 3.086e18

# Year [s]
yr = 3.15e7

# Proton mass [g]
m_p = 1.6726e-24

# Adiabatic index of the monatomic gas closure used by the EOS
GAMMA = 5.0 / 3.0

# Working precision for all particle arrays. CGS densities (~1e-24 g/cm^3)
# squared underflow float32.
FLOAT = np.float64
