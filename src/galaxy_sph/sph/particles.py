"""
Particle arena for SPH galaxy simulations.

This module implements the ParticleSystem class that owns all particle state
as a struct of arrays. A "particle" is an index into these arrays; neighbour
sets are stored as integer index arrays into the same arena, so particles never
hold references to one another.

Derivative arrays (dv_P, du_visc, ...) are transient accumulators: they are
reset at the start of each force evaluation, filled by the physics core and
consumed by the integrator.
"""

from typing import Any, Dict, List, Optional
import numpy as np

from galaxy_sph.core.constants import FLOAT
from galaxy_sph.core.interfaces import NDArrayFloat, NDArrayInt


class ParticleSystem:
    """
    Container for SPH particle data and derivative accumulators.

    Attributes
    ----------
    n_particles : int
        Number of particles in the system.
    ids : NDArrayInt, shape (N,)
        Unique particle identifiers.
    positions, velocities : NDArrayFloat, shape (N, 3)
        Kinematic state [cm, cm/s].
    masses : NDArrayFloat, shape (N,)
        Total particle mass [g].
    gas_masses : NDArrayFloat, shape (N,)
        Gas-phase mass available for star formation [g].
    star_masses : NDArrayFloat, shape (N,)
        Mass already converted into stars [g].
    internal_energy : NDArrayFloat, shape (N,)
        Specific internal energy u [erg/g].
    mean_molecular_weight : NDArrayFloat, shape (N,)
        Mean molecular weight μ [g/mol].
    temperature, pressure, sound_speed : NDArrayFloat, shape (N,)
        Thermodynamic quantities derived from the EOS.
    density, gas_density, omega, smoothing_length : NDArrayFloat, shape (N,)
        Quantities supplied by the density estimator.
    neighbour_lists : List[NDArrayInt]
        neighbour_lists[i] holds the arena indices of particle i's neighbours.
    dv_DM, dv_P, dv_visc : NDArrayFloat, shape (N, 3)
        Halo, pressure and viscous accelerations.
    du_P, du_visc, du_cond, dm_star : NDArrayFloat, shape (N,)
        Pressure, viscous and conductive heating rates, star formation rate.
    """

    SCALAR_DERIVATIVES = ("du_P", "du_visc", "du_cond", "dm_star")
    VECTOR_DERIVATIVES = ("dv_DM", "dv_P", "dv_visc")

    def __init__(
        self,
        n_particles: int,
        positions: Optional[NDArrayFloat] = None,
        velocities: Optional[NDArrayFloat] = None,
        masses: Optional[NDArrayFloat] = None,
        internal_energy: Optional[NDArrayFloat] = None,
        smoothing_length: Optional[NDArrayFloat] = None,
        mean_molecular_weight: Optional[NDArrayFloat] = None,
        gas_masses: Optional[NDArrayFloat] = None,
        ids: Optional[NDArrayInt] = None,
    ):
        """
        Initialize particle system.

        Parameters
        ----------
        n_particles : int
            Number of particles.
        positions : NDArrayFloat, shape (N, 3), optional
            Initial positions. If None, initialized to zeros.
        velocities : NDArrayFloat, shape (N, 3), optional
            Initial velocities. If None, initialized to zeros.
        masses : NDArrayFloat, shape (N,), optional
            Particle masses. If None, initialized to equal unit total mass.
        internal_energy : NDArrayFloat, shape (N,), optional
            Specific internal energies. If None, initialized to zeros.
        smoothing_length : NDArrayFloat, shape (N,), optional
            Smoothing lengths. If None, initialized to 0.1.
        mean_molecular_weight : NDArrayFloat or float, optional
            Mean molecular weight per particle. If None, 0.6 (ionized gas).
        gas_masses : NDArrayFloat, shape (N,), optional
            Gas-phase masses. If None, all mass starts as gas.
        ids : NDArrayInt, shape (N,), optional
            Particle identifiers. If None, 0..N-1.
        """
        self.n_particles = n_particles

        # Primary state variables
        self.positions = self._as_array(positions, (n_particles, 3), 0.0)
        self.velocities = self._as_array(velocities, (n_particles, 3), 0.0)
        self.masses = (
            self._as_array(masses, (n_particles,), 0.0) if masses is not None
            else np.full(n_particles, 1.0 / max(n_particles, 1), dtype=FLOAT)
        )
        self.internal_energy = self._as_array(internal_energy, (n_particles,), 0.0)
        self.smoothing_length = self._as_array(smoothing_length, (n_particles,), 0.1)
        self.mean_molecular_weight = self._as_array(
            mean_molecular_weight, (n_particles,), 0.6
        )
        self.gas_masses = (
            self._as_array(gas_masses, (n_particles,), 0.0) if gas_masses is not None
            else self.masses.copy()
        )
        self.star_masses = np.zeros(n_particles, dtype=FLOAT)
        self.ids = (
            np.asarray(ids, dtype=np.int64) if ids is not None
            else np.arange(n_particles, dtype=np.int64)
        )

        # Quantities supplied by the density estimator
        self.density = np.zeros(n_particles, dtype=FLOAT)
        self.gas_density = np.zeros(n_particles, dtype=FLOAT)
        self.omega = np.ones(n_particles, dtype=FLOAT)
        self.neighbour_lists: List[NDArrayInt] = [
            np.empty(0, dtype=np.int64) for _ in range(n_particles)
        ]

        # Derived thermodynamics
        self.pressure = np.zeros(n_particles, dtype=FLOAT)
        self.temperature = np.zeros(n_particles, dtype=FLOAT)
        self.sound_speed = np.zeros(n_particles, dtype=FLOAT)

        # Derivative accumulators
        for name in self.VECTOR_DERIVATIVES:
            setattr(self, name, np.zeros((n_particles, 3), dtype=FLOAT))
        for name in self.SCALAR_DERIVATIVES:
            setattr(self, name, np.zeros(n_particles, dtype=FLOAT))

        self._validate_shapes()

    @staticmethod
    def _as_array(values, shape, fill) -> NDArrayFloat:
        if values is None:
            return np.full(shape, fill, dtype=FLOAT)
        arr = np.array(values, dtype=FLOAT)
        if arr.ndim == 0:
            return np.full(shape, float(arr), dtype=FLOAT)
        return arr

    def _validate_shapes(self) -> None:
        """Validate that all arrays have consistent shapes."""
        n = self.n_particles
        for name in ("positions", "velocities") + self.VECTOR_DERIVATIVES:
            shape = getattr(self, name).shape
            assert shape == (n, 3), f"{name} shape mismatch: {shape}"
        for name in (
            "masses", "gas_masses", "star_masses", "internal_energy",
            "smoothing_length", "mean_molecular_weight", "density",
            "gas_density", "omega", "pressure", "temperature", "sound_speed",
            "ids",
        ) + self.SCALAR_DERIVATIVES:
            shape = getattr(self, name).shape
            assert shape == (n,), f"{name} shape mismatch: {shape}"

    def set_neighbours(self, neighbour_lists: List[NDArrayInt]) -> None:
        """Store neighbour index arrays produced by the neighbour finder."""
        assert len(neighbour_lists) == self.n_particles
        self.neighbour_lists = [np.asarray(nb, dtype=np.int64) for nb in neighbour_lists]

    def neighbour_counts(self) -> NDArrayInt:
        """Number of neighbours of each particle."""
        return np.array([len(nb) for nb in self.neighbour_lists], dtype=np.int64)

    def neighbour_csr(self):
        """
        Flatten neighbour lists into CSR form.

        Returns
        -------
        indices : NDArrayInt
            Concatenated neighbour indices.
        offsets : NDArrayInt, shape (N + 1,)
            neighbours of i are indices[offsets[i]:offsets[i+1]].
        """
        counts = self.neighbour_counts()
        offsets = np.zeros(self.n_particles + 1, dtype=np.int64)
        offsets[1:] = np.cumsum(counts)
        if offsets[-1] > 0:
            indices = np.concatenate(self.neighbour_lists).astype(np.int64)
        else:
            indices = np.empty(0, dtype=np.int64)
        return indices, offsets

    def reset_derivatives(self) -> None:
        """Zero every derivative accumulator before a new evaluation pass."""
        for name in self.VECTOR_DERIVATIVES + self.SCALAR_DERIVATIVES:
            getattr(self, name).fill(0.0)

    def describe(self, i: int) -> Dict[str, Any]:
        """Snapshot of one particle's state, used in diagnostic messages."""
        return {
            "id": int(self.ids[i]),
            "x": self.positions[i].tolist(),
            "v": self.velocities[i].tolist(),
            "m": float(self.masses[i]),
            "m_gas": float(self.gas_masses[i]),
            "u": float(self.internal_energy[i]),
            "mu": float(self.mean_molecular_weight[i]),
            "T": float(self.temperature[i]),
            "rho": float(self.density[i]),
            "rho_gas": float(self.gas_density[i]),
            "h": float(self.smoothing_length[i]),
            "omega": float(self.omega[i]),
            "c": float(self.sound_speed[i]),
            "P": float(self.pressure[i]),
            "n_neighbours": int(len(self.neighbour_lists[i])),
        }

    @property
    def smoothing_lengths(self) -> NDArrayFloat:
        """Alias for smoothing length array (plural for API consistency)."""
        return self.smoothing_length

    @smoothing_lengths.setter
    def smoothing_lengths(self, value: NDArrayFloat) -> None:
        value = np.asarray(value, dtype=FLOAT)
        assert value.shape == (self.n_particles,)
        self.smoothing_length = value

    def kinetic_energy(self) -> float:
        """
        Compute total kinetic energy of the system.

        Returns
        -------
        E_kin : float
            Total kinetic energy: ∑ (1/2) m v².
        """
        v_squared = np.sum(self.velocities**2, axis=1)
        return float(0.5 * np.sum(self.masses * v_squared))

    def thermal_energy(self) -> float:
        """
        Compute total thermal (internal) energy of the system.

        Returns
        -------
        E_thermal : float
            Total thermal energy: ∑ m u.
        """
        return float(np.sum(self.masses * self.internal_energy))

    def total_mass(self) -> float:
        """Total mass ∑ m."""
        return float(np.sum(self.masses))

    def total_momentum(self) -> NDArrayFloat:
        """Total linear momentum ∑ m v."""
        return np.sum(self.masses[:, np.newaxis] * self.velocities, axis=0)

    def center_of_mass(self) -> NDArrayFloat:
        """
        Compute center of mass position.

        Returns
        -------
        r_com : NDArrayFloat, shape (3,)
            Center of mass position.
        """
        total_mass = self.total_mass()
        if total_mass == 0:
            return np.zeros(3, dtype=FLOAT)
        return np.sum(self.masses[:, np.newaxis] * self.positions, axis=0) / total_mass

    def __repr__(self) -> str:
        """String representation of particle system."""
        return (
            f"ParticleSystem(n_particles={self.n_particles}, "
            f"total_mass={self.total_mass():.3e}, "
            f"E_kin={self.kinetic_energy():.3e}, "
            f"E_thermal={self.thermal_energy():.3e})"
        )
