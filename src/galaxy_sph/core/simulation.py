"""
Simulation orchestrator for the galaxy_sph framework.

This module implements the main Simulation class that coordinates the physics
modules to evolve gas in a static dark-matter halo. It follows a "system +
component" architecture:

- Simulation orchestrates pluggable components (kernel, EOS, gravity solver,
  integrator), each swappable via dependency injection
- SimulationConfig holds user-facing parameters in natural units
  (Msun, pc, yr, m_p) and converts them to the immutable CGS ``Params``
  consumed by the physics core
"""

from typing import Dict, Optional
from dataclasses import dataclass, field
import warnings
import time as time_module
import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from galaxy_sph.core.constants import Msun, pc, yr, m_p
from galaxy_sph.core.interfaces import (
    SPHKernel,
    GravitySolver,
    EOS,
    TimeIntegrator,
    NDArrayFloat,
)
from galaxy_sph.eos import IdealGas, DomainError
from galaxy_sph.gravity import NFWHalo
from galaxy_sph.integration import LeapfrogIntegrator
from galaxy_sph.sph import (
    ParticleSystem,
    CubicSplineKernel,
    update_density,
    compute_hydro_derivatives,
    compute_hydro_derivatives_numba,
)


class Params(BaseModel):
    """
    Immutable per-run physical parameters in CGS units.

    Every physics-core function receives this object read-only. Build it with
    ``SimulationConfig.to_params()`` or directly (e.g. in tests).

    Attributes
    ----------
    M_tot, M_bary : float
        Halo and baryonic mass [g].
    R_virial, R_bary : float
        Virial and baryonic radius [cm].
    rho_0 : float
        Reference gas density [g/cm^3].
    A_NFW : float
        NFW normalisation ln(1 + c) - c / (1 + c).
    Rs : float
        NFW scale radius R_virial / c [cm].
    K_cond : float
        Thermal conduction coefficient.
    eps : float
        Conduction denominator regulariser (dimensionless, times h²).
    alpha, beta : float
        Artificial viscosity coefficients.
    eta_eff : float
        Star formation efficiency per free-fall time.
    phys_star_formation, phys_visc : bool
        Feature gates.
    t_end, dt_min : float
        End time and minimum timestep [s].
    """

    M_tot: float = Field(default=0.0, ge=0.0)
    M_bary: float = Field(default=0.0, ge=0.0)
    R_virial: float = Field(default=1.0, gt=0.0)
    R_bary: float = Field(default=1.0, gt=0.0)
    rho_0: float = Field(default=0.0, ge=0.0)
    A_NFW: float = Field(default=1.0, gt=0.0)
    Rs: float = Field(default=1.0, gt=0.0)
    K_cond: float = Field(default=0.0, ge=0.0)
    eps: float = Field(default=0.01, ge=0.0)
    alpha: float = Field(default=1.0, ge=0.0)
    beta: float = Field(default=2.0, ge=0.0)
    eta_eff: float = Field(default=0.0, ge=0.0)
    phys_star_formation: bool = False
    phys_visc: bool = True
    t_end: float = Field(default=1.0, gt=0.0)
    dt_min: float = Field(default=0.0, ge=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class SimulationConfig(BaseModel):
    """
    Configuration for galaxy SPH simulations with Pydantic validation.

    Values are given in natural units (see field descriptions) and converted to
    CGS by ``to_params``.
    """

    # Particles
    N: int = Field(default=1000, gt=0, description="Number of gas particles")

    # Halo and baryons
    M_tot: float = Field(default=1e12, ge=0.0, description="Halo mass [Msun]")
    M_bary: float = Field(default=1e11, ge=0.0, description="Baryonic mass [Msun]")
    R_virial: float = Field(default=2e5, gt=0.0, description="Virial radius [pc]")
    R_bary: float = Field(default=1e4, gt=0.0, description="Baryonic radius [pc]")
    c: float = Field(default=10.0, gt=0.0, description="NFW concentration")
    rho_0: float = Field(default=1.0, ge=0.0, description="Reference density [m_p / cm^3]")
    T0: float = Field(default=1e4, ge=0.0, description="Initial gas temperature [K]")

    # Time evolution
    t_end: float = Field(default=1e6, gt=0.0, description="End time [yr]")
    dt_initial: float = Field(default=10.0, gt=0.0, description="Initial timestep [yr]")
    dt_min: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Absolute minimum allowable timestep [yr]"
    )
    dt_max: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Absolute maximum allowable timestep [yr]"
    )
    dt_change_limit: float = Field(
        default=4.0,
        ge=1.0,
        description="Maximum factor by which dt may change between consecutive steps"
    )
    cfl_factor: float = Field(default=0.3, gt=0.0, le=1.0, description="CFL safety factor")

    # Physics
    K_cond: float = Field(default=0.0, ge=0.0, description="Thermal conduction coefficient")
    eps: float = Field(default=0.01, ge=0.0, description="Conduction regulariser")
    alpha: float = Field(default=1.0, ge=0.0, description="Artificial viscosity α")
    beta: float = Field(default=2.0, ge=0.0, description="Artificial viscosity β")
    eta_eff: float = Field(default=0.01, ge=0.0, description="Star formation efficiency")
    phys_star_formation: bool = Field(default=False, description="Enable star formation")
    phys_visc: bool = Field(default=True, description="Enable artificial viscosity")
    phys_halo: bool = Field(default=True, description="Enable NFW halo gravity")
    mu: float = Field(default=0.6, gt=0.0, description="Mean molecular weight [g/mol]")

    # SPH parameters
    smoothing_length_eta: float = Field(
        default=1.2,
        gt=0.0,
        description="Smoothing length parameter η"
    )
    h_max_iterations: int = Field(default=10, ge=1, description="Smoothing length iterations")
    h_tolerance: float = Field(default=1e-2, gt=0.0, description="Smoothing length tolerance")
    use_numba: bool = Field(default=True, description="Use the compiled hydro batch path")

    # Diagnostics
    log_interval: float = Field(default=1e4, gt=0.0, description="Log output interval [yr]")
    energy_tolerance: float = Field(
        default=0.01,
        gt=0.0,
        description="Fractional energy drift tolerance"
    )

    # Misc
    random_seed: Optional[int] = Field(
        default=42,
        description="Seed for the initial-condition generator"
    )
    verbose: bool = Field(
        default=True,
        description="Enable verbose logging"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",  # Raise error on unknown fields
    )

    @field_validator('mu')
    @classmethod
    def validate_mu(cls, v: float) -> float:
        """Mean molecular weight of astrophysical gas lies between ~0.5 and ~2.4."""
        if not 0.1 <= v <= 10.0:
            raise ValueError(f"mu must be in [0.1, 10] g/mol, got {v}")
        return v

    @model_validator(mode='after')
    def validate_configuration_consistency(self):
        """
        Cross-field validation to ensure parameter consistency.
        """
        if self.phys_star_formation and self.eta_eff == 0.0:
            warnings.warn(
                "Star formation enabled with eta_eff=0: no gas will be converted. "
                "Set eta_eff > 0 or phys_star_formation=False."
            )

        if self.phys_halo and self.M_tot == 0.0:
            warnings.warn(
                "NFW halo enabled with M_tot=0: halo acceleration will vanish. "
                "Set M_tot > 0 or phys_halo=False."
            )

        if self.M_bary > self.M_tot > 0.0:
            warnings.warn(
                f"Baryonic mass ({self.M_bary:.3e} Msun) exceeds halo mass "
                f"({self.M_tot:.3e} Msun)."
            )

        # Timestep bounds and limits
        if self.dt_min is None:
            object.__setattr__(self, 'dt_min', self.dt_initial * 1e-2)
        if self.dt_max is None:
            object.__setattr__(self, 'dt_max', self.dt_initial * 1e2)

        if self.dt_max <= self.dt_min:
            raise ValueError(
                f"dt_max ({self.dt_max}) must be greater than dt_min ({self.dt_min})"
            )

        if not (self.dt_min <= self.dt_initial <= self.dt_max):
            raise ValueError(
                "dt_initial must lie within [dt_min, dt_max]; "
                f"got dt_initial={self.dt_initial}, dt_min={self.dt_min}, dt_max={self.dt_max}"
            )

        return self

    def to_params(self) -> Params:
        """
        Convert to CGS and derive the NFW constants.

        Masses × Msun, radii × pc, ρ₀ × m_p, times × yr,
        A_NFW = ln(1 + c) - c / (1 + c), Rs = R_virial / c.
        """
        return Params(
            M_tot=self.M_tot * Msun,
            M_bary=self.M_bary * Msun,
            R_virial=self.R_virial * pc,
            R_bary=self.R_bary * pc,
            rho_0=self.rho_0 * m_p,
            A_NFW=float(np.log(1.0 + self.c) - self.c / (1.0 + self.c)),
            Rs=self.R_virial * pc / self.c,
            K_cond=self.K_cond,
            eps=self.eps,
            alpha=self.alpha,
            beta=self.beta,
            eta_eff=self.eta_eff,
            phys_star_formation=self.phys_star_formation,
            phys_visc=self.phys_visc,
            t_end=self.t_end * yr,
            dt_min=self.dt_min * yr,
        )


@dataclass
class SimulationState:
    """
    Current state of the simulation. Times are in seconds.
    """
    time: float = 0.0
    step: int = 0
    dt: float = 0.0

    # Energy tracking
    kinetic_energy: float = 0.0
    potential_energy: float = 0.0
    internal_energy: float = 0.0
    total_energy: float = 0.0
    stellar_mass: float = 0.0
    initial_energy: Optional[float] = None
    last_dt_candidate: float = 0.0
    last_dt_limiter: str = "none"
    last_log_time: float = 0.0

    # Timing diagnostics
    timing_density: float = 0.0
    timing_thermodynamics: float = 0.0
    timing_gravity: float = 0.0
    timing_hydro: float = 0.0
    timing_compute_forces: float = 0.0
    timing_integration: float = 0.0
    timing_timestep_estimation: float = 0.0
    timing_total: float = 0.0

    # Timing
    wall_time_start: float = field(default_factory=time_module.time)
    wall_time_elapsed: float = 0.0


class Simulation:
    """
    Main simulation orchestrator for galaxy SPH.

    Each step runs the density pass to completion (neighbours, h, ρ, ρ_gas, Ω),
    refreshes P, T and c from the EOS, evaluates the halo and hydro
    derivatives, and hands them to the integrator.

    Usage:
        >>> from galaxy_sph.ICs import SedovBlast
        >>> config = SimulationConfig(N=200, phys_halo=False)
        >>> particles = SedovBlast.from_config(config).build_particles(config.N)
        >>> sim = Simulation(particles, config)
        >>> sim.run()

    References:
        - Price (2012) - SPH framework
        - Springel & Hernquist (2002) - grad-h SPH formulation
    """

    def __init__(
        self,
        particles: ParticleSystem,
        config: Optional[SimulationConfig] = None,
        kernel: Optional[SPHKernel] = None,
        eos: Optional[EOS] = None,
        gravity_solver: Optional[GravitySolver] = None,
        integrator: Optional[TimeIntegrator] = None,
    ):
        """
        Initialize simulation.

        Parameters
        ----------
        particles : ParticleSystem
            Initial particle configuration.
        config : Optional[SimulationConfig]
            Simulation configuration. If None, uses defaults.
        kernel : Optional[SPHKernel]
            Interpolation kernel (default 3D cubic spline).
        eos : Optional[EOS]
            Equation of state (default IdealGas).
        gravity_solver : Optional[GravitySolver]
            External gravity (default NFWHalo when ``phys_halo`` is set).
        integrator : Optional[TimeIntegrator]
            Time integration scheme (default LeapfrogIntegrator).
        """
        self.particles = particles
        self.config = config or SimulationConfig()
        self.params = self.config.to_params()
        self.state = SimulationState()

        self.kernel = kernel or CubicSplineKernel(dim=3)
        self.eos = eos or IdealGas()
        self.integrator = integrator or LeapfrogIntegrator(
            cfl_factor=self.config.cfl_factor,
            star_formation=self.config.phys_star_formation,
        )

        if self.config.phys_halo:
            self.gravity_solver = gravity_solver or NFWHalo(self.params)
        else:
            if gravity_solver is not None:
                warnings.warn(
                    "gravity_solver given with phys_halo=False: solver will be ignored. "
                    "Set phys_halo=True to use it."
                )
            self.gravity_solver = None

        self.use_numba = self.config.use_numba and (
            isinstance(self.kernel, CubicSplineKernel) and self.kernel.dim == 3
        )

        # Initialize state
        self.state.time = 0.0
        self.state.dt = self.config.dt_initial * yr

        if self.config.verbose:
            self._log("Initialized galaxy SPH simulation")
            self._log(f"  Particles: {self.particles.n_particles}")
            self._log(f"  Halo: {self.gravity_solver!r}")
            self._log(
                f"  Physics: visc={self.config.phys_visc} "
                f"star_formation={self.config.phys_star_formation} "
                f"K_cond={self.config.K_cond}"
            )
            if self.config.use_numba and not self.use_numba:
                self._log("  Custom kernel: using reference hydro loop instead of Numba")

    def _log(self, message: str):
        """Log message if verbose."""
        if self.config.verbose:
            print(f"[{self.state.time / yr:.4e}] {message}")

    def compute_energies(self) -> Dict[str, float]:
        """
        Compute kinetic, potential, internal, and total energies.

        The potential is that of the gas in the external halo (∑ m Φ, no pair
        double counting).

        Returns
        -------
        energies : Dict[str, float]
            'kinetic', 'potential', 'internal', 'total' energies [erg] and
            'stellar_mass' [g].
        """
        E_kin = self.particles.kinetic_energy()

        if self.gravity_solver is not None:
            E_pot = self.gravity_solver.potential_energy(
                self.particles.positions,
                self.particles.masses,
                self.particles.smoothing_lengths
            )
        else:
            E_pot = 0.0

        E_int = self.particles.thermal_energy()

        return {
            'kinetic': float(E_kin),
            'potential': float(E_pot),
            'internal': float(E_int),
            'total': float(E_kin + E_pot + E_int),
            'stellar_mass': float(np.sum(self.particles.star_masses)),
        }

    def _record_energies(self) -> Dict[str, float]:
        energies = self.compute_energies()
        self.state.kinetic_energy = energies['kinetic']
        self.state.potential_energy = energies['potential']
        self.state.internal_energy = energies['internal']
        self.state.total_energy = energies['total']
        self.state.stellar_mass = energies['stellar_mass']
        return energies

    def update_thermodynamics(self):
        """
        Update thermodynamic quantities (pressure, temperature, sound speed) from EOS.

        Raises
        ------
        DomainError
            If any particle has a negative temperature; the message carries
            the state of the first offending particle.
        """
        p = self.particles
        p.pressure = self.eos.pressure(p.density, p.internal_energy)
        p.temperature = self.eos.temperature(p.internal_energy, p.mean_molecular_weight)

        negative = np.flatnonzero(p.temperature < 0.0)
        if negative.size > 0:
            i = int(negative[0])
            self._log(f"ERROR: {negative.size} particle(s) with negative temperature")
            raise DomainError(
                f"negative temperature T={p.temperature[i]:.6e} K in sound speed",
                p.describe(i),
            )

        p.sound_speed = self.eos.sound_speed(p.temperature, p.mean_molecular_weight)

    def compute_forces(self) -> Dict[str, NDArrayFloat]:
        """
        Compute all derivatives acting on particles.

        Returns
        -------
        forces : Dict[str, NDArrayFloat]
            'gravity', 'pressure', 'viscosity' and 'total' accelerations (N, 3),
            'du_dt' (N,) and 'dm_star' (N,).
        """
        t0_forces_total = time_module.time()
        p = self.particles

        # 1. Density pass: h, neighbours, ρ, ρ_gas, Ω. Must complete before forces.
        t0_density = time_module.time()
        update_density(
            p,
            kernel=self.kernel,
            eta=self.config.smoothing_length_eta,
            max_iterations=self.config.h_max_iterations,
            tolerance=self.config.h_tolerance,
        )
        self.state.timing_density = time_module.time() - t0_density

        # 2. Thermodynamics (P, T, c_s)
        t0_thermo = time_module.time()
        self.update_thermodynamics()
        self.state.timing_thermodynamics = time_module.time() - t0_thermo

        p.reset_derivatives()

        # 3. Halo gravity
        t0_grav = time_module.time()
        if self.gravity_solver is not None:
            p.dv_DM[:] = self.gravity_solver.compute_acceleration(
                p.positions, p.masses, p.smoothing_lengths
            )
        self.state.timing_gravity = time_module.time() - t0_grav

        # 4. Hydro derivatives
        t0_hydro = time_module.time()
        if self.use_numba:
            compute_hydro_derivatives_numba(p, self.params, self.kernel)
        else:
            compute_hydro_derivatives(p, self.params, self.kernel)
        self.state.timing_hydro = time_module.time() - t0_hydro

        a_total = p.dv_DM + p.dv_P + p.dv_visc
        du_dt = p.du_P + p.du_visc + p.du_cond
        if not np.all(np.isfinite(a_total)):
            self._log("ERROR: Accelerations contain NaN or inf")
            raise ValueError("Invalid accelerations")
        if not np.all(np.isfinite(du_dt)):
            self._log("ERROR: du/dt contains NaN or inf")
            raise ValueError("Invalid internal energy derivatives")

        self.state.timing_compute_forces = time_module.time() - t0_forces_total

        return {
            'gravity': p.dv_DM.copy(),
            'pressure': p.dv_P.copy(),
            'viscosity': p.dv_visc.copy(),
            'total': a_total,
            'du_dt': du_dt,
            'dm_star': p.dm_star.copy(),
        }

    def _enforce_timestep_limits(self, candidate_dt: float) -> float:
        """Clamp timestep proposals (seconds) using absolute and per-step limits."""
        dt_min = float(self.config.dt_min) * yr
        dt_max = float(self.config.dt_max) * yr
        change_limit = max(float(self.config.dt_change_limit), 1.0)
        prev_dt = max(float(self.state.dt), dt_min)

        lower_change = prev_dt / change_limit
        upper_change = prev_dt * change_limit

        effective_min = max(dt_min, lower_change)
        effective_max = min(dt_max, upper_change)

        limited_dt = min(max(candidate_dt, effective_min), effective_max)

        reasons = []
        tol = 1e-12 * prev_dt
        if candidate_dt < dt_min - tol:
            reasons.append('dt_min')
        if candidate_dt > dt_max + tol:
            reasons.append('dt_max')
        if candidate_dt < lower_change - tol:
            reasons.append('decrease_limit')
        if candidate_dt > upper_change + tol:
            reasons.append('increase_limit')

        reason_str = 'none' if not reasons else ','.join(sorted(set(reasons)))

        self.state.last_dt_candidate = candidate_dt
        self.state.last_dt_limiter = reason_str

        if reason_str != 'none' and self.config.verbose:
            self._log(
                "dt clamp applied (%s): proposed %.3e yr -> %.3e yr"
                % (reason_str, candidate_dt / yr, limited_dt / yr)
            )

        return limited_dt

    def step(self):
        """
        Advance simulation by one timestep.
        """
        t0_step = time_module.time()

        forces = self.compute_forces()

        # Advance particles
        t0_integrate = time_module.time()
        self.integrator.step(self.particles, self.state.dt, forces)
        self.state.timing_integration = time_module.time() - t0_integrate

        # Update time
        self.state.time += self.state.dt
        if not np.isfinite(self.state.time):
            self._log(f"ERROR: Time became NaN, dt={self.state.dt}")
            raise ValueError("Time became NaN")
        self.state.step += 1

        # Estimate next timestep
        t0_dt_est = time_module.time()
        proposed_dt = self.integrator.estimate_timestep(
            self.particles,
            cfl_factor=self.config.cfl_factor,
            accelerations=forces['total'],
            min_dt=self.config.dt_min * yr,
            max_dt=self.config.dt_max * yr,
        )
        self.state.dt = self._enforce_timestep_limits(proposed_dt)
        if not np.isfinite(self.state.dt) or self.state.dt <= 0:
            self._log(f"ERROR: Invalid timestep dt={self.state.dt}, proposed={proposed_dt}")
            raise ValueError(f"Timestep became invalid: dt={self.state.dt}")
        self.state.timing_timestep_estimation = time_module.time() - t0_dt_est

        self._record_energies()
        self.state.timing_total = time_module.time() - t0_step

    def check_energy_conservation(self) -> bool:
        """
        Check if energy is conserved within tolerance.

        Returns
        -------
        conserved : bool
            True if energy drift is within tolerance.
        """
        if self.state.initial_energy is None or self.state.initial_energy == 0:
            return True

        drift = abs(self.state.total_energy - self.state.initial_energy) / abs(self.state.initial_energy)

        if drift > self.config.energy_tolerance:
            self._log(f"WARNING: Energy drift {drift:.2%} exceeds tolerance {self.config.energy_tolerance:.2%}")
            return False

        return True

    def run(self, max_steps: Optional[int] = None) -> SimulationState:
        """
        Run the simulation from t = 0 to t_end.

        Parameters
        ----------
        max_steps : Optional[int]
            Stop after this many steps even if t_end has not been reached.

        Returns
        -------
        state : SimulationState
            Final simulation state.
        """
        t_end = self.config.t_end * yr
        log_interval = self.config.log_interval * yr

        self._log("=" * 60)
        self._log("Starting simulation")
        self._log("=" * 60)

        energies = self._record_energies()
        self.state.initial_energy = energies['total']
        self._log(f"Initial energy: {self.state.initial_energy:.6e} erg")

        while self.state.time < t_end:
            self.step()

            if self.state.time - self.state.last_log_time >= log_interval:
                drift = 0.0
                if self.state.initial_energy:
                    drift = (self.state.total_energy - self.state.initial_energy) / self.state.initial_energy

                self._log(
                    f"Step {self.state.step:6d}  "
                    f"dt={self.state.dt / yr:.2e} yr  "
                    f"E_tot={self.state.total_energy:.6e}  "
                    f"ΔE/E={drift:.2e}  "
                    f"M_star={self.state.stellar_mass / Msun:.3e} Msun"
                )
                self.state.last_log_time = self.state.time

            self.check_energy_conservation()

            if max_steps is not None and self.state.step >= max_steps:
                self._log(f"Stopping after max_steps={max_steps}")
                break

            # Safety: prevent runaway
            if self.state.step > 1e7:
                self._log("WARNING: Maximum step count reached")
                break

        # Summary
        self.state.wall_time_elapsed = time_module.time() - self.state.wall_time_start
        self._log("=" * 60)
        self._log("Simulation complete")
        self._log(f"  Steps: {self.state.step}")
        self._log(f"  Final time: {self.state.time / yr:.4e} yr")
        self._log(f"  Wall time: {self.state.wall_time_elapsed:.2f} s")
        self._log("=" * 60)

        return self.state
