"""
Tests for the configuration system.

Validates:
- SimulationConfig Pydantic validation and consistency warnings
- Conversion to CGS run parameters
- YAML/JSON loading, section flattening and overrides
"""

import json
import warnings
from pathlib import Path

import numpy as np
import pytest
import yaml

from galaxy_sph.core import Params, SimulationConfig
from galaxy_sph.core.constants import Msun, pc, yr, m_p
from galaxy_sph.config import load_config, save_config, config_from_dict, flatten_config


CONFIG_DIR = Path(__file__).parent.parent / "configs"


class TestSimulationConfigValidation:
    """Test Pydantic validation rules for SimulationConfig."""

    def test_defaults(self):
        config = SimulationConfig()
        assert config.N == 1000
        assert config.alpha == 1.0
        assert config.beta == 2.0
        assert config.phys_visc is True
        assert config.phys_star_formation is False
        assert config.dt_min == pytest.approx(config.dt_initial * 1e-2)
        assert config.dt_max == pytest.approx(config.dt_initial * 1e2)

    def test_cfl_factor_bounds(self):
        SimulationConfig(cfl_factor=0.3)

        with pytest.raises(ValueError):
            SimulationConfig(cfl_factor=0.0)

        with pytest.raises(ValueError):
            SimulationConfig(cfl_factor=1.5)

    def test_mu_bounds(self):
        SimulationConfig(mu=1.3)

        with pytest.raises(ValueError, match="mu must be in"):
            SimulationConfig(mu=50.0)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            SimulationConfig(bh_mass=1.0)

    def test_assignment_is_validated(self):
        config = SimulationConfig()
        with pytest.raises(ValueError):
            config.alpha = -1.0

    def test_timestep_bounds(self):
        with pytest.raises(ValueError, match="dt_max"):
            SimulationConfig(dt_initial=1.0, dt_min=2.0, dt_max=1.0)

        with pytest.raises(ValueError, match="dt_initial must lie within"):
            SimulationConfig(dt_initial=10.0, dt_min=1.0, dt_max=5.0)

    def test_star_formation_without_efficiency_warns(self):
        with pytest.warns(UserWarning, match="eta_eff=0"):
            SimulationConfig(phys_star_formation=True, eta_eff=0.0)

    def test_massless_halo_warns(self):
        with pytest.warns(UserWarning, match="M_tot=0"):
            SimulationConfig(phys_halo=True, M_tot=0.0)

    def test_baryons_heavier_than_halo_warn(self):
        with pytest.warns(UserWarning, match="exceeds halo mass"):
            SimulationConfig(M_tot=1e10, M_bary=1e11)

    def test_consistent_config_does_not_warn(self):
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            SimulationConfig(phys_star_formation=True, eta_eff=0.02)
            assert len(w) == 0


class TestParams:

    def test_to_params_converts_units(self):
        config = SimulationConfig(
            M_tot=1e12, M_bary=1e11, R_virial=2e5, R_bary=1e4, c=10.0,
            rho_0=2.0, t_end=1e6, dt_initial=10.0, dt_min=1.0,
            K_cond=0.5, eps=0.02, alpha=0.8, beta=1.6, eta_eff=0.03,
            phys_star_formation=True, phys_visc=False,
        )
        params = config.to_params()

        assert params.M_tot == pytest.approx(1e12 * Msun)
        assert params.M_bary == pytest.approx(1e11 * Msun)
        assert params.R_virial == pytest.approx(2e5 * pc)
        assert params.R_bary == pytest.approx(1e4 * pc)
        assert params.rho_0 == pytest.approx(2.0 * m_p)
        assert params.A_NFW == pytest.approx(np.log(11.0) - 10.0 / 11.0)
        assert params.Rs == pytest.approx(2e5 * pc / 10.0)
        assert params.t_end == pytest.approx(1e6 * yr)
        assert params.dt_min == pytest.approx(1.0 * yr)
        assert params.K_cond == 0.5
        assert params.eps == 0.02
        assert params.alpha == 0.8
        assert params.beta == 1.6
        assert params.eta_eff == 0.03
        assert params.phys_star_formation is True
        assert params.phys_visc is False

    def test_params_are_immutable(self):
        params = Params()
        with pytest.raises(ValueError):
            params.alpha = 3.0

    def test_params_reject_unknown_fields(self):
        with pytest.raises(ValueError):
            Params(gamma=1.4)


class TestConfigLoaders:
    """Test YAML/JSON configuration loading."""

    def test_load_sedov_config(self):
        config = load_config(CONFIG_DIR / "sedov.yaml")

        assert config.N == 200
        assert config.T0 == 100.0
        assert config.phys_halo is False
        assert config.alpha == 1.0
        assert config.energy_tolerance == 0.05

    def test_config_overrides(self):
        config = load_config(CONFIG_DIR / "sedov.yaml", N=50, phys_visc=False)

        assert config.N == 50
        assert config.phys_visc is False

    def test_save_and_load_roundtrip(self, tmp_path):
        original = SimulationConfig(N=321, K_cond=0.2, phys_star_formation=True, verbose=False)

        for name in ("config.yaml", "config.json"):
            path = tmp_path / name
            save_config(original, path)
            assert load_config(path).model_dump() == original.model_dump()

    def test_saved_file_is_sectioned(self, tmp_path):
        path = tmp_path / "config.yaml"
        save_config(SimulationConfig(alpha=0.5), path)

        with open(path) as f:
            data = yaml.safe_load(f)

        assert set(data) == {'simulation', 'halo', 'physics', 'viscosity', 'sph', 'misc'}
        assert data['viscosity']['alpha'] == 0.5

    def test_json_loading(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'simulation': {'N': 64}, 'viscosity': {'beta': 3.0}}))

        config = load_config(path)
        assert config.N == 64
        assert config.beta == 3.0

    def test_nested_dict_flattening_with_aliases(self):
        nested_dict = {
            'simulation': {'n_particles': 500, 't_end': 100.0},
            'halo': {'mass': 5e11, 'concentration': 12.0},
            'physics': {'star_formation': True, 'viscosity': False, 'temperature': 50.0},
            'sph': {'eta': 1.3},
        }

        config = config_from_dict(nested_dict)
        assert config.N == 500
        assert config.t_end == 100.0
        assert config.M_tot == 5e11
        assert config.c == 12.0
        assert config.phys_star_formation is True
        assert config.phys_visc is False
        assert config.T0 == 50.0
        assert config.smoothing_length_eta == 1.3

    def test_flatten_keeps_unaliased_keys(self):
        assert flatten_config({'physics': {'K_cond': 1.0}, 'alpha': 0.5}) == {'K_cond': 1.0, 'alpha': 0.5}

    def test_invalid_config_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

        bad_suffix = tmp_path / "config.txt"
        bad_suffix.write_text("invalid config")
        with pytest.raises(ValueError, match="Unsupported config file format"):
            load_config(bad_suffix)

    def test_invalid_values_are_reported(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("viscosity:\n  alpha: -1.0\n")

        with pytest.raises(ValueError, match="Configuration validation failed"):
            load_config(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path).model_dump() == SimulationConfig().model_dump()
