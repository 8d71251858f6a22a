"""
Tests for the leapfrog integrator.
"""

import numpy as np
import pytest

from galaxy_sph.integration import LeapfrogIntegrator
from galaxy_sph.sph import ParticleSystem


def _particles(n=2):
    particles = ParticleSystem(
        n,
        masses=np.full(n, 2.0),
        internal_energy=np.ones(n),
        smoothing_length=np.full(n, 0.5),
    )
    particles.sound_speed[:] = 1.0
    return particles


class TestLeapfrogStep:

    def setup_method(self):
        self.integrator = LeapfrogIntegrator()

    def test_first_step_is_half_kick_then_drift(self):
        particles = _particles()
        accel = np.tile([1.0, 0.0, 0.0], (2, 1))

        self.integrator.step(particles, 0.1, {'total': accel})

        np.testing.assert_allclose(particles.velocities[:, 0], 0.05)
        np.testing.assert_allclose(particles.positions[:, 0], 0.005)
        assert self.integrator.half_step_initialized

    def test_later_steps_use_full_kick(self):
        particles = _particles()
        accel = np.tile([1.0, 0.0, 0.0], (2, 1))

        self.integrator.step(particles, 0.1, {'total': accel})
        self.integrator.step(particles, 0.1, {'total': accel})

        np.testing.assert_allclose(particles.velocities[:, 0], 0.15)
        np.testing.assert_allclose(particles.positions[:, 0], 0.005 + 0.015)

    def test_reset_restores_half_kick(self):
        particles = _particles()
        accel = np.tile([0.0, 2.0, 0.0], (2, 1))

        self.integrator.step(particles, 0.1, {'total': accel})
        self.integrator.reset()
        particles.velocities[:] = 0.0
        self.integrator.step(particles, 0.1, {'total': accel})

        np.testing.assert_allclose(particles.velocities[:, 1], 0.1)

    def test_sums_vector_contributions_without_total(self):
        particles = _particles()
        forces = {
            'gravity': np.tile([1.0, 0.0, 0.0], (2, 1)),
            'pressure': np.tile([0.0, 1.0, 0.0], (2, 1)),
            'du_dt': np.zeros(2),
        }

        self.integrator.step(particles, 0.2, forces)

        np.testing.assert_allclose(particles.velocities, np.tile([0.1, 0.1, 0.0], (2, 1)))

    def test_internal_energy_update_is_not_floored(self):
        particles = _particles()
        forces = {'total': np.zeros((2, 3)), 'du_dt': np.array([-20.0, 5.0])}

        self.integrator.step(particles, 0.1, forces)

        np.testing.assert_allclose(particles.internal_energy, [-1.0, 1.5])

    def test_star_formation_transfers_gas_to_stars(self):
        particles = _particles()
        forces = {'total': np.zeros((2, 3)), 'dm_star': np.array([5.0, 0.0])}

        self.integrator.step(particles, 0.1, forces)

        np.testing.assert_allclose(particles.gas_masses, [1.5, 2.0])
        np.testing.assert_allclose(particles.star_masses, [0.5, 0.0])
        np.testing.assert_allclose(particles.masses, [2.0, 2.0])

    def test_star_formation_capped_by_gas_mass(self):
        particles = _particles()
        forces = {'total': np.zeros((2, 3)), 'dm_star': np.array([1e3, 1e3])}

        self.integrator.step(particles, 1.0, forces)

        np.testing.assert_array_equal(particles.gas_masses, 0.0)
        np.testing.assert_allclose(particles.star_masses, particles.masses)

    def test_star_formation_disabled(self):
        integrator = LeapfrogIntegrator(star_formation=False)
        particles = _particles()
        forces = {'total': np.zeros((2, 3)), 'dm_star': np.array([5.0, 5.0])}

        integrator.step(particles, 0.1, forces)

        np.testing.assert_array_equal(particles.star_masses, 0.0)


class TestTimestepEstimate:

    def setup_method(self):
        self.integrator = LeapfrogIntegrator(cfl_factor=0.3, accel_factor=0.25)

    def test_cfl_limit(self):
        particles = _particles()
        assert self.integrator.estimate_timestep(particles) == pytest.approx(0.15)

    def test_velocity_adds_to_signal_speed(self):
        particles = _particles()
        particles.velocities[1] = [0.0, 0.0, 2.0]

        assert self.integrator.estimate_timestep(particles) == pytest.approx(0.05)

    def test_acceleration_limit(self):
        particles = _particles()
        accel = np.tile([0.0, 0.0, 50.0], (2, 1))

        dt = self.integrator.estimate_timestep(particles, accelerations=accel)

        assert dt == pytest.approx(0.025)

    def test_cfl_override_and_bounds(self):
        particles = _particles()

        assert self.integrator.estimate_timestep(particles, cfl_factor=0.1) == pytest.approx(0.05)
        assert self.integrator.estimate_timestep(particles, min_dt=1.0) == pytest.approx(1.0)
        assert self.integrator.estimate_timestep(particles, max_dt=0.01) == pytest.approx(0.01)
