"""
Configuration loaders for YAML and JSON files.

This module provides functions to load and validate simulation configurations
from YAML/JSON files. Files are organised in sections (``simulation``,
``halo``, ``physics``, ``viscosity``, ``sph``, ``misc``) that are flattened
onto the fields of ``SimulationConfig``.
"""

from typing import Dict, Any, Union
from pathlib import Path
import yaml
import json

from galaxy_sph.core.simulation import SimulationConfig


# Section layout used when writing configs; reading accepts any section.
SECTIONS = {
    'simulation': [
        'N', 't_end', 'dt_initial', 'dt_min', 'dt_max', 'dt_change_limit',
        'cfl_factor', 'log_interval',
    ],
    'halo': ['M_tot', 'M_bary', 'R_virial', 'R_bary', 'c', 'rho_0'],
    'physics': [
        'T0', 'mu', 'K_cond', 'eps', 'eta_eff',
        'phys_star_formation', 'phys_visc', 'phys_halo',
    ],
    'viscosity': ['alpha', 'beta'],
    'sph': ['smoothing_length_eta', 'h_max_iterations', 'h_tolerance', 'use_numba'],
    'misc': ['energy_tolerance', 'random_seed', 'verbose'],
}

# Readable aliases accepted inside sections
FIELD_MAPPINGS = {
    'simulation': {
        'n_particles': 'N',
    },
    'halo': {
        'mass': 'M_tot',
        'concentration': 'c',
        'virial_radius': 'R_virial',
    },
    'physics': {
        'star_formation': 'phys_star_formation',
        'viscosity': 'phys_visc',
        'halo': 'phys_halo',
        'conduction': 'K_cond',
        'temperature': 'T0',
        'mean_molecular_weight': 'mu',
    },
    'sph': {
        'eta': 'smoothing_length_eta',
    },
}


def load_config(filename: Union[str, Path], **overrides) -> SimulationConfig:
    """
    Load simulation configuration from YAML or JSON file.

    Supports nested sections and flattens them to match SimulationConfig fields.
    Also supports command-line style overrides.

    Parameters
    ----------
    filename : str or Path
        Path to configuration file (.yaml, .yml, or .json)
    **overrides : keyword arguments
        Override specific config values (e.g., N=500, phys_visc=False)

    Returns
    -------
    config : SimulationConfig
        Validated simulation configuration

    Raises
    ------
    FileNotFoundError
        If configuration file does not exist
    ValueError
        If file format is unsupported or config is invalid

    Examples
    --------
    >>> config = load_config("configs/sedov.yaml")
    >>> config = load_config("configs/sedov.yaml", N=200, verbose=False)
    """
    filepath = Path(filename)

    if not filepath.exists():
        raise FileNotFoundError(f"Configuration file not found: {filepath}")

    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        config_dict = load_yaml(filepath)
    elif suffix == '.json':
        config_dict = load_json(filepath)
    else:
        raise ValueError(
            f"Unsupported config file format: {suffix}. "
            "Use .yaml, .yml, or .json"
        )

    flat_config = flatten_config(config_dict)
    flat_config.update(overrides)

    try:
        config = SimulationConfig(**flat_config)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed for {filepath}: {e}"
        ) from e

    return config


def load_yaml(filepath: Path) -> Dict[str, Any]:
    """Load YAML configuration file (an empty file gives an empty dict)."""
    with open(filepath, 'r') as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        config_dict = {}

    return config_dict


def load_json(filepath: Path) -> Dict[str, Any]:
    """Load JSON configuration file."""
    with open(filepath, 'r') as f:
        config_dict = json.load(f)

    return config_dict


def flatten_config(config_dict: Dict[str, Any], parent_key: str = '') -> Dict[str, Any]:
    """
    Flatten nested configuration dictionary.

    Converts nested structures like:
        {'halo': {'mass': 1e12, 'concentration': 10}}
    to:
        {'M_tot': 1e12, 'c': 10}

    Parameters
    ----------
    config_dict : Dict[str, Any]
        Nested configuration dictionary
    parent_key : str
        Parent key for recursion

    Returns
    -------
    flat_dict : Dict[str, Any]
        Flattened configuration dictionary
    """
    flat = {}
    mappings = FIELD_MAPPINGS.get(parent_key, {})

    for key, value in config_dict.items():
        if isinstance(value, dict):
            flat.update(flatten_config(value, parent_key=key))
        else:
            flat[mappings.get(key, key)] = value

    return flat


def save_config(config: SimulationConfig, filename: Union[str, Path]) -> None:
    """
    Save SimulationConfig to a YAML or JSON file in sectioned form.

    Parameters
    ----------
    config : SimulationConfig
        Configuration to save
    filename : str or Path
        Output file path (.yaml, .yml or .json)
    """
    filepath = Path(filename)
    config_dict = config.model_dump()

    organized = {
        section: {name: config_dict[name] for name in names}
        for section, names in SECTIONS.items()
    }

    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        with open(filepath, 'w') as f:
            yaml.dump(organized, f, default_flow_style=False, sort_keys=False)
    elif suffix == '.json':
        with open(filepath, 'w') as f:
            json.dump(organized, f, indent=2)
    else:
        raise ValueError(f"Unsupported output format: {suffix}. Use .yaml or .json")


def config_from_dict(config_dict: Dict[str, Any]) -> SimulationConfig:
    """
    Create SimulationConfig from dictionary (helper for programmatic use).
    """
    flat = flatten_config(config_dict)
    return SimulationConfig(**flat)
