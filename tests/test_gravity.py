"""
Unit tests for the static NFW halo.

Validates:
- a(0) = 0 and the finite small-radius limit -G M / (2 A R_s²)
- a(r) = -dΦ/dr
- Attractive, decaying acceleration at large radius
- Agreement of the vectorised NFWHalo with the per-particle function
"""

import numpy as np
import pytest

from galaxy_sph.core import Params
from galaxy_sph.core.constants import G, Msun, pc
from galaxy_sph.gravity import (
    NFWHalo,
    nfw_acceleration,
    nfw_potential,
    compute_halo_acceleration,
)
from galaxy_sph.sph import ParticleSystem


def _halo_params(c=10.0):
    R_virial = 2.0e5 * pc
    return Params(
        M_tot=1.0e12 * Msun,
        R_virial=R_virial,
        A_NFW=np.log(1.0 + c) - c / (1.0 + c),
        Rs=R_virial / c,
    )


class TestNFWProfile:

    def setup_method(self):
        self.params = _halo_params()

    def test_zero_at_origin(self):
        assert nfw_acceleration(0.0, self.params) == 0.0

    def test_small_radius_limit(self):
        p = self.params
        expected = -G * p.M_tot / (2.0 * p.A_NFW * p.Rs**2)

        assert nfw_acceleration(1e-4 * p.Rs, p) == pytest.approx(expected, rel=1e-3)

    def test_attractive_everywhere(self):
        r = np.logspace(-3, 2, 50) * self.params.Rs
        assert np.all(nfw_acceleration(r, self.params) < 0.0)

    def test_magnitude_decays_at_large_radius(self):
        r = np.array([5.0, 10.0, 50.0, 100.0]) * self.params.Rs
        a = np.abs(nfw_acceleration(r, self.params))

        assert np.all(np.diff(a) < 0.0)

    def test_acceleration_is_minus_potential_gradient(self):
        p = self.params
        r = np.array([0.1, 1.0, 3.0, 20.0]) * p.Rs
        delta = 1e-5 * r
        dphi_dr = (nfw_potential(r + delta, p) - nfw_potential(r - delta, p)) / (2.0 * delta)

        np.testing.assert_allclose(nfw_acceleration(r, p), -dphi_dr, rtol=1e-6)

    def test_potential_finite_at_origin(self):
        p = self.params
        assert nfw_potential(0.0, p) == pytest.approx(-G * p.M_tot / (p.A_NFW * p.Rs))
        assert nfw_potential(1e-8 * p.Rs, p) == pytest.approx(nfw_potential(0.0, p), rel=1e-6)

    def test_scalar_input_returns_float(self):
        assert isinstance(nfw_acceleration(self.params.Rs, self.params), float)
        assert isinstance(nfw_potential(self.params.Rs, self.params), float)


class TestHaloAcceleration:

    def setup_method(self):
        self.params = _halo_params()
        rng = np.random.default_rng(7)
        positions = rng.normal(0.0, self.params.Rs, size=(20, 3))
        positions[0] = 0.0
        self.particles = ParticleSystem(20, positions=positions)

    def test_per_particle_direction_and_magnitude(self):
        i = 3
        compute_halo_acceleration(self.particles, i, self.params)

        x = self.particles.positions[i]
        r = np.linalg.norm(x)
        a = self.particles.dv_DM[i]

        assert np.linalg.norm(a) == pytest.approx(abs(nfw_acceleration(r, self.params)))
        assert np.dot(a, x) < 0.0

    def test_particle_at_centre_feels_nothing(self):
        self.particles.dv_DM[0] = 1.0
        compute_halo_acceleration(self.particles, 0, self.params)

        np.testing.assert_array_equal(self.particles.dv_DM[0], 0.0)

    def test_solver_matches_per_particle_function(self):
        halo = NFWHalo(self.params)
        p = self.particles
        accel = halo.compute_acceleration(p.positions, p.masses, p.smoothing_length)

        for i in range(p.n_particles):
            compute_halo_acceleration(p, i, self.params)

        np.testing.assert_allclose(accel, p.dv_DM, rtol=1e-12, atol=0.0)

    def test_potential_energy(self):
        halo = NFWHalo(self.params)
        p = self.particles
        phi = nfw_potential(np.linalg.norm(p.positions, axis=1), self.params)

        assert halo.potential_energy(p.positions, p.masses) == pytest.approx(np.sum(p.masses * phi))

    def test_repr(self):
        assert "NFWHalo" in repr(NFWHalo(self.params))
