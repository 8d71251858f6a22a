"""
Tests for the SPH hydrodynamic derivatives.

The closed-form checks use a two-particle system with a stub kernel that
returns a constant gradient, so each sum reduces to a single hand-computable
term. Conservation and the compiled batch path are checked on a random cloud
with the cubic spline kernel.
"""

import numpy as np
import pytest

from galaxy_sph.core import Params
from galaxy_sph.core.constants import G
from galaxy_sph.core.interfaces import SPHKernel
from galaxy_sph.sph import (
    ParticleSystem,
    CubicSplineKernel,
    find_neighbours_bruteforce,
    compute_density_summation,
    signal_speed,
    energy_signal_speed,
    compute_pressure_acceleration,
    compute_pressure_heating,
    compute_viscous_acceleration,
    compute_viscous_heating,
    compute_conduction_heating,
    compute_star_formation_rate,
    compute_hydro_derivatives,
    compute_hydro_derivatives_numba,
)


GRADIENT = np.array([0.5, -0.25, 1.0])
DW = -0.3


class FixedKernel(SPHKernel):
    """Kernel stub with a constant gradient and radial derivative."""

    def kernel(self, r, h):
        r, h = np.broadcast_arrays(np.asarray(r, dtype=float), np.asarray(h, dtype=float))
        return np.ones_like(r)

    def dw_dr(self, r, h):
        r, h = np.broadcast_arrays(np.asarray(r, dtype=float), np.asarray(h, dtype=float))
        return np.full_like(r, DW)

    def dw_dh(self, r, h):
        r, h = np.broadcast_arrays(np.asarray(r, dtype=float), np.asarray(h, dtype=float))
        return np.zeros_like(r)

    def kernel_gradient(self, r_vec, h):
        r_vec = np.asarray(r_vec, dtype=float)
        return np.broadcast_to(GRADIENT, r_vec.shape).copy()


def _pair(x_q=(1.0, 0.0, 0.0), v_p=(0.0, 0.0, 0.0), v_q=(0.0, 0.0, 0.0)):
    """Particle p at the origin and particle q at x_q, both with P = ρ = Ω = c = 1."""
    particles = ParticleSystem(
        2,
        positions=np.array([[0.0, 0.0, 0.0], x_q]),
        velocities=np.array([v_p, v_q]),
        masses=np.ones(2),
        internal_energy=np.full(2, 1.5),
        smoothing_length=np.ones(2),
    )
    particles.density[:] = 1.0
    particles.omega[:] = 1.0
    particles.pressure[:] = 1.0
    particles.sound_speed[:] = 1.0
    particles.set_neighbours([np.array([1]), np.array([0])])
    return particles


def _random_cloud(n=40, seed=3):
    """Random cloud with varying h, symmetric neighbours and consistent density."""
    rng = np.random.default_rng(seed)
    positions = rng.uniform(-1.0, 1.0, size=(n, 3))
    h = rng.uniform(0.35, 0.6, size=n)
    masses = rng.uniform(0.5, 1.5, size=n)

    particles = ParticleSystem(
        n,
        positions=positions,
        velocities=rng.normal(0.0, 1.0, size=(n, 3)),
        masses=masses,
        internal_energy=rng.uniform(0.5, 2.0, size=n),
        smoothing_length=h,
    )
    particles.set_neighbours(find_neighbours_bruteforce(positions, h))
    density, gas_density, omega = compute_density_summation(
        positions, masses, particles.gas_masses, h, particles.neighbour_lists
    )
    particles.density[:] = density
    particles.gas_density[:] = gas_density
    particles.omega[:] = omega
    particles.pressure[:] = 2.0 / 3.0 * density * particles.internal_energy
    particles.sound_speed[:] = np.sqrt(5.0 / 3.0 * particles.pressure / density)
    return particles


class TestSignalSpeeds:

    def setup_method(self):
        self.params = Params(alpha=1.0, beta=2.0)

    def test_approaching_pair(self):
        particles = _pair(v_p=(1.0, 0.0, 0.0), v_q=(-1.0, 0.0, 0.0))
        # v_r = -2, v_sig = (1 + 1 + 2 * 2) / 2
        assert signal_speed(particles, 0, 1, self.params) == pytest.approx(3.0)
        assert signal_speed(particles, 1, 0, self.params) == pytest.approx(3.0)

    def test_receding_pair(self):
        particles = _pair(v_p=(-1.0, 0.0, 0.0), v_q=(1.0, 0.0, 0.0))
        assert signal_speed(particles, 0, 1, self.params) == 0.0
        assert energy_signal_speed(particles, 0, 1, self.params) == 0.0

    def test_energy_signal_speed_uses_pressure_jump(self):
        particles = _pair(v_p=(1.0, 0.0, 0.0), v_q=(-1.0, 0.0, 0.0))
        particles.pressure[:] = [3.0, 1.0]

        assert energy_signal_speed(particles, 0, 1, self.params) == pytest.approx(np.sqrt(2.0))

    def test_coincident_particles(self):
        particles = _pair(x_q=(0.0, 0.0, 0.0), v_q=(0.0, 2.0, 0.0))
        particles.sound_speed[:] = [1.0, 3.0]

        assert signal_speed(particles, 0, 1, self.params) == pytest.approx(2.0)

    def test_disabled_viscosity(self):
        params = Params(phys_visc=False)
        particles = _pair(v_p=(1.0, 0.0, 0.0), v_q=(-1.0, 0.0, 0.0))
        particles.pressure[:] = [3.0, 1.0]

        assert signal_speed(particles, 0, 1, params) == 0.0
        assert energy_signal_speed(particles, 0, 1, params) == 0.0


class TestPairFormulas:
    """Closed-form values with the constant-gradient kernel."""

    def setup_method(self):
        self.kernel = FixedKernel()
        self.params = Params(alpha=1.0, beta=2.0)

    def test_pressure_force_vanishes_for_equal_pressures(self):
        particles = _pair()
        dv = compute_pressure_acceleration(particles, 0, self.params, self.kernel)

        np.testing.assert_allclose(dv, 0.0, atol=1e-15)

    def test_pressure_force_from_pressure_difference(self):
        particles = _pair()
        particles.pressure[0] = 2.0

        dv = compute_pressure_acceleration(particles, 0, self.params, self.kernel)

        np.testing.assert_allclose(dv, GRADIENT)
        np.testing.assert_allclose(particles.dv_P[0], GRADIENT)

    def test_pressure_heating(self):
        particles = _pair(v_q=(1.0, 1.0, 0.0))
        du = compute_pressure_heating(particles, 0, self.params, self.kernel)

        # P/(Ω ρ²) m (v_q - v_p) · g = 0.5 - 0.25
        assert du == pytest.approx(0.25)
        assert particles.du_P[0] == pytest.approx(0.25)

    def test_conduction(self):
        params = Params(K_cond=2.0, eps=0.1)
        particles = _pair()
        particles.internal_energy[:] = [3.0, 1.0]

        du = compute_conduction_heating(particles, 0, params, self.kernel)

        # -m (k_p + k_q)(u_p - u_q)(x_q - x_p)·g / (ρ_pq r² + eps h²)
        assert du == pytest.approx(-4.0 / 1.1)

    def test_conduction_finite_for_coincident_particles(self):
        params = Params(K_cond=2.0, eps=0.1)
        particles = _pair(x_q=(0.0, 0.0, 0.0))
        particles.internal_energy[:] = [3.0, 1.0]

        du = compute_conduction_heating(particles, 0, params, self.kernel)

        assert np.isfinite(du)
        assert du == 0.0

    def test_viscous_heating(self):
        particles = _pair(v_p=(1.0, 0.0, 0.0), v_q=(-1.0, 0.0, 0.0))
        du = compute_viscous_heating(particles, 0, self.params, self.kernel)

        # m / ρ_pq × ½ α v_sig² × (dW + dW) / 2 with v_sig = 3
        assert du == pytest.approx(-1.35)

    def test_viscous_heating_disabled(self):
        particles = _pair(v_p=(1.0, 0.0, 0.0), v_q=(-1.0, 0.0, 0.0))
        particles.du_visc[0] = 5.0

        du = compute_viscous_heating(particles, 0, Params(phys_visc=False), self.kernel)

        assert du == 0.0
        assert particles.du_visc[0] == 0.0

    def test_viscous_acceleration_vanishes_for_receding_pair(self):
        particles = _pair(v_p=(-1.0, 0.0, 0.0), v_q=(1.0, 0.0, 0.0))
        dv = compute_viscous_acceleration(particles, 0, self.params, CubicSplineKernel())

        np.testing.assert_array_equal(dv, 0.0)

    def test_viscous_acceleration_opposes_approach(self):
        particles = _pair(x_q=(0.5, 0.0, 0.0), v_p=(1.0, 0.0, 0.0), v_q=(-1.0, 0.0, 0.0))
        kernel = CubicSplineKernel()

        dv_p = compute_viscous_acceleration(particles, 0, self.params, kernel).copy()
        dv_q = compute_viscous_acceleration(particles, 1, self.params, kernel).copy()

        assert dv_p[0] < 0.0
        assert dv_q[0] > 0.0
        np.testing.assert_allclose(dv_p + dv_q, 0.0, atol=1e-12)

    def test_isolated_particle_gets_zero_derivatives(self):
        particles = _pair()
        particles.set_neighbours([np.array([], dtype=np.int64), np.array([], dtype=np.int64)])
        for name in ("dv_P", "dv_visc", "du_P", "du_visc", "du_cond"):
            getattr(particles, name)[0] = 1.0

        np.testing.assert_array_equal(
            compute_pressure_acceleration(particles, 0, self.params, self.kernel), 0.0
        )
        np.testing.assert_array_equal(
            compute_viscous_acceleration(particles, 0, self.params, self.kernel), 0.0
        )
        assert compute_pressure_heating(particles, 0, self.params, self.kernel) == 0.0
        assert compute_viscous_heating(particles, 0, self.params, self.kernel) == 0.0
        assert compute_conduction_heating(particles, 0, self.params, self.kernel) == 0.0

        for name in ("dv_P", "dv_visc", "du_P", "du_visc", "du_cond"):
            np.testing.assert_array_equal(getattr(particles, name)[0], 0.0, err_msg=name)


class TestStarFormation:

    def _particles(self, rho_gas):
        particles = ParticleSystem(1, masses=np.array([2.0e33]))
        particles.gas_density[0] = rho_gas
        return particles

    def test_rate_from_free_fall_time(self):
        params = Params(phys_star_formation=True, eta_eff=0.01)
        particles = self._particles(1.0e-24)

        t_ff = np.sqrt(3.0 * np.pi / (32.0 * G * 1.0e-24))
        rate = compute_star_formation_rate(particles, 0, params)

        assert rate == pytest.approx(0.01 * 2.0e33 / t_ff)
        assert particles.dm_star[0] == pytest.approx(rate)

    def test_disabled(self):
        particles = self._particles(1.0e-24)
        assert compute_star_formation_rate(particles, 0, Params(eta_eff=0.01)) == 0.0

    def test_zero_gas_density(self):
        params = Params(phys_star_formation=True, eta_eff=0.01)
        particles = self._particles(0.0)

        assert compute_star_formation_rate(particles, 0, params) == 0.0


class TestConservation:
    """Pairwise symmetry of the force sums on a random cloud."""

    def setup_method(self):
        self.params = Params(alpha=1.0, beta=2.0, K_cond=0.1, eps=0.01)

    def test_momentum_conserved(self):
        particles = _random_cloud()
        compute_hydro_derivatives(particles, self.params)

        m = particles.masses[:, np.newaxis]
        total = np.sum(m * (particles.dv_P + particles.dv_visc), axis=0)
        scale = np.sum(np.abs(m * particles.dv_P))

        assert scale > 0.0
        np.testing.assert_allclose(total, 0.0, atol=1e-10 * scale)

    def test_pressure_work_balances_heating(self):
        particles = _random_cloud()
        compute_hydro_derivatives(particles, self.params)

        kinetic_rate = np.sum(particles.masses * np.sum(particles.velocities * particles.dv_P, axis=1))
        thermal_rate = np.sum(particles.masses * particles.du_P)
        scale = np.sum(np.abs(particles.masses * particles.du_P))

        assert kinetic_rate + thermal_rate == pytest.approx(0.0, abs=1e-10 * scale)

    def test_viscosity_never_heats_negatively_summed(self):
        particles = _random_cloud()
        particles.pressure[:] = 1.0
        compute_hydro_derivatives(particles, self.params)

        # With equal pressures only the ½ α v_sig² term remains, and dW ≤ 0
        assert np.all(particles.du_visc <= 0.0)


class TestNumbaPath:

    def test_matches_reference(self):
        params = Params(alpha=1.0, beta=2.0, K_cond=0.1, eps=0.01,
                        phys_star_formation=True, eta_eff=0.02)
        reference = _random_cloud()
        compiled = _random_cloud()

        compute_hydro_derivatives(reference, params)
        compute_hydro_derivatives_numba(compiled, params)

        for name in ParticleSystem.VECTOR_DERIVATIVES + ParticleSystem.SCALAR_DERIVATIVES:
            expected = getattr(reference, name)
            scale = max(np.max(np.abs(expected)), 1.0)
            np.testing.assert_allclose(
                getattr(compiled, name), expected, rtol=1e-7, atol=1e-10 * scale, err_msg=name
            )

    def test_matches_reference_without_viscosity(self):
        params = Params(phys_visc=False, K_cond=0.1)
        reference = _random_cloud(seed=11)
        compiled = _random_cloud(seed=11)

        compute_hydro_derivatives(reference, params)
        compute_hydro_derivatives_numba(compiled, params)

        np.testing.assert_array_equal(compiled.dv_visc, 0.0)
        np.testing.assert_array_equal(compiled.du_visc, 0.0)
        np.testing.assert_allclose(compiled.dv_P, reference.dv_P, rtol=1e-7, atol=1e-10)

    @pytest.mark.parametrize("separation", [0.5, 0.0])
    def test_matches_reference_for_one_sided_lists(self, separation):
        params = Params(alpha=1.0, beta=2.0, K_cond=0.1, eps=0.01)

        def build():
            particles = ParticleSystem(
                3,
                positions=np.array([[0.0, 0.0, 0.0], [separation, 0.0, 0.0], [0.0, 0.7, 0.0]]),
                velocities=np.array([[1.0, 0.0, 0.0], [-1.0, 0.5, 0.0], [0.0, -0.3, 0.2]]),
                masses=np.array([1.0, 0.8, 1.2]),
                internal_energy=np.array([3.0, 1.0, 2.0]),
                smoothing_length=np.array([0.6, 0.4, 0.5]),
            )
            particles.density[:] = [1.5, 1.0, 1.2]
            particles.pressure[:] = 2.0 / 3.0 * particles.density * particles.internal_energy
            particles.sound_speed[:] = [1.0, 0.8, 0.9]
            # 0 sees 1 and 2, 1 sees nobody, 2 sees only 0
            particles.set_neighbours([np.array([1, 2]), np.array([], dtype=np.int64), np.array([0])])
            return particles

        reference = build()
        compiled = build()
        compute_hydro_derivatives(reference, params)
        compute_hydro_derivatives_numba(compiled, params)

        for name in ParticleSystem.VECTOR_DERIVATIVES + ParticleSystem.SCALAR_DERIVATIVES:
            expected = getattr(reference, name)
            assert np.all(np.isfinite(expected)), name
            np.testing.assert_allclose(
                getattr(compiled, name), expected, rtol=1e-9, atol=1e-12, err_msg=name
            )

        np.testing.assert_array_equal(reference.dv_P[1], 0.0)
        assert reference.du_cond[1] == 0.0

    def test_rejects_other_kernels(self):
        particles = _random_cloud(n=5)
        with pytest.raises(ValueError, match="cubic spline"):
            compute_hydro_derivatives_numba(particles, Params(), FixedKernel())
