"""
Core module: interfaces, constants, configuration and simulation orchestrator.
"""

from .interfaces import SPHKernel, GravitySolver, EOS, TimeIntegrator, ICGenerator
from .simulation import Params, SimulationConfig, SimulationState, Simulation

__all__ = [
    "SPHKernel",
    "GravitySolver",
    "EOS",
    "TimeIntegrator",
    "ICGenerator",
    "Params",
    "SimulationConfig",
    "SimulationState",
    "Simulation",
]
