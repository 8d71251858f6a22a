#!/usr/bin/env python3
"""
Command-line entrypoint for galaxy_sph simulations.

Runs a Sedov-Taylor blast wave:
1. Load configuration (YAML/JSON file and/or command-line overrides)
2. Place a cold gas cloud with one hot central particle
3. Evolve with SPH pressure, viscosity, conduction and optional halo gravity
4. Report energies and stellar mass

Usage:
    python scripts/run_simulation.py
    python scripts/run_simulation.py --config configs/sedov.yaml
    python scripts/run_simulation.py --particles 500 --tend 2e4 --halo
    python scripts/run_simulation.py --help
"""

import argparse
import sys
from pathlib import Path

# Add src to path if running from repository root
src_path = Path(__file__).parent.parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from galaxy_sph.core import Simulation, SimulationConfig
from galaxy_sph.core.constants import pc, Msun
from galaxy_sph.config import load_config
from galaxy_sph.ICs import SedovBlast


def main():
    """Main entrypoint."""
    parser = argparse.ArgumentParser(
        description="Run a galaxy_sph Sedov-Taylor blast wave",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--config", "-c", type=str, default=None,
                        help="YAML or JSON configuration file")

    # Simulation parameters
    parser.add_argument("--particles", "-n", type=int, default=None,
                        help="Number of ambient gas particles")
    parser.add_argument("--tend", "-t", type=float, default=None,
                        help="End time [yr]")
    parser.add_argument("--dt-init", type=float, default=None,
                        help="Initial timestep [yr]")
    parser.add_argument("--max-steps", type=int, default=None,
                        help="Stop after this many steps")

    # Blast parameters
    parser.add_argument("--radius", type=float, default=3.0,
                        help="Cloud radius [pc]")
    parser.add_argument("--mass", type=float, default=1000.0,
                        help="Cloud mass [Msun]")
    parser.add_argument("--t-hot", type=float, default=1e5,
                        help="Temperature of the central particle [K]")

    # Physics toggles
    parser.add_argument("--halo", action="store_true",
                        help="Enable the NFW halo")
    parser.add_argument("--star-formation", action="store_true",
                        help="Enable star formation")
    parser.add_argument("--no-viscosity", action="store_true",
                        help="Disable artificial viscosity")
    parser.add_argument("--reference", action="store_true",
                        help="Use the reference Python hydro loop instead of Numba")

    # Misc
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress verbose output")

    args = parser.parse_args()

    overrides = {}
    if args.particles is not None:
        overrides['N'] = args.particles
    if args.tend is not None:
        overrides['t_end'] = args.tend
    if args.dt_init is not None:
        overrides['dt_initial'] = args.dt_init
    if args.seed is not None:
        overrides['random_seed'] = args.seed
    if args.halo:
        overrides['phys_halo'] = True
    if args.star_formation:
        overrides['phys_star_formation'] = True
    if args.no_viscosity:
        overrides['phys_visc'] = False
    if args.reference:
        overrides['use_numba'] = False
    if args.quiet:
        overrides['verbose'] = False

    if args.config is not None:
        config = load_config(args.config, **overrides)
    else:
        defaults = dict(
            N=200, T0=100.0, t_end=1e4, dt_initial=1.0, log_interval=1e3,
            phys_halo=False,
        )
        defaults.update(overrides)
        config = SimulationConfig(**defaults)

    if config.verbose:
        print("=" * 70)
        print("galaxy_sph: Sedov-Taylor blast wave")
        print("=" * 70)
        print()

    blast = SedovBlast.from_config(
        config,
        R_max=args.radius * pc,
        M_tot=args.mass * Msun,
        T_hot=args.t_hot,
    )
    particles = blast.build_particles(config.N)

    if config.verbose:
        print(f"  Particles: {particles.n_particles} ({config.N} ambient + 1 hot)")
        print(f"  Cloud: R={args.radius} pc, M={args.mass:.3e} Msun, T0={config.T0} K")
        print(f"  Initial h: {particles.smoothing_length[0] / pc:.3e} pc")
        print()

    sim = Simulation(particles, config)
    state = sim.run(max_steps=args.max_steps)

    energies = sim.compute_energies()
    print("\n" + "=" * 70)
    print("Simulation complete!")
    print(f"Steps: {state.step}")
    print(f"E_kin={energies['kinetic']:.4e}  E_int={energies['internal']:.4e}  "
          f"E_pot={energies['potential']:.4e} erg")
    print(f"Stellar mass: {energies['stellar_mass'] / Msun:.4e} Msun")
    print("=" * 70)

    return 0


if __name__ == "__main__":
    sys.exit(main())
