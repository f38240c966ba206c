"""Command-line entry point: run one scenario from a YAML config.

Usage:
    farm-epi configs/base.yaml
    farm-epi configs/base.yaml --scenario configs/ring_outbreak.yaml --seed 7
    python -m farm_epi configs/base.yaml --output-dir outputs/run1

Writes into the output directory:
    farm_states.csv         scenario_tick;farm_id;susceptible;infected;recovered
    infection_events.csv    scenario_tick;batch_id;origin_farm_id;target_farm_id;new_infections
    daily_summary.csv       population-wide daily totals
    run_metadata.yaml       seed, config hash, git hash
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from farm_epi import __version__
from farm_epi.config import load_config, save_config
from farm_epi.errors import FarmEpiError
from farm_epi.model import Scenario
from farm_epi.population import population_from_config
from farm_epi.recorder import (
    FarmStateCSVRecorder,
    InfectedFarmsTracker,
    InfectionEventCSVRecorder,
    Recorder,
)
from farm_epi.scenario_time import run_criterion
from farm_epi.utils import run_metadata, write_run_metadata

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="farm-epi",
        description="Simulate livestock disease spread and surveillance over a farm network.",
        epilog="Example: farm-epi configs/base.yaml --seed 7 --output-dir outputs/run1",
    )
    parser.add_argument(
        "config",
        help="Base YAML configuration file",
    )
    parser.add_argument(
        "--scenario", type=str, default=None,
        help="Scenario YAML merged over the base configuration",
    )
    parser.add_argument(
        "--population", type=str, default=None,
        help="Population file (YAML, JSON or CSV); overrides population.population_file",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Override scenario.seed",
    )
    parser.add_argument(
        "--max-timesteps", type=int, default=None,
        help="Override scenario.max_timesteps",
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Override output.directory",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    return parser


def _overrides(args: argparse.Namespace) -> Dict:
    overrides: Dict = {}
    if args.population is not None:
        overrides.setdefault("population", {})["population_file"] = args.population
    if args.seed is not None:
        overrides.setdefault("scenario", {})["seed"] = args.seed
    if args.max_timesteps is not None:
        overrides.setdefault("scenario", {})["max_timesteps"] = args.max_timesteps
    if args.output_dir is not None:
        overrides.setdefault("output", {})["directory"] = args.output_dir
    return overrides


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.scenario, _overrides(args))
    out_dir = Path(config.output.directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    population = population_from_config(config)
    logger.info("Loaded %d farms (%d directed links)",
                population.n_farms, population.adjacency.nnz)

    save_config(config, out_dir / "config.yaml")
    write_run_metadata(
        run_metadata(config, config.population.population_file),
        out_dir / "run_metadata.yaml",
    )

    recorders: List[Recorder] = [InfectedFarmsTracker()]
    delimiter = config.output.delimiter
    if config.output.farm_states:
        recorders.append(FarmStateCSVRecorder(
            out_dir / "farm_states.csv", delimiter,
            run_criterion(config.output.record_interval),
        ))
    if config.output.infection_events:
        recorders.append(InfectionEventCSVRecorder(
            out_dir / "infection_events.csv", delimiter,
        ))

    result = Scenario(config, population, recorders).run()
    result.to_dataframe().to_csv(out_dir / "daily_summary.csv", sep=delimiter)

    print(f"Stopped after {result.n_days} days ({result.stop_reason})")
    print(f"  Infection event batches: {result.n_batches}")
    print(f"  Between-herd infections: {result.total_between_herd_infections}")
    print(f"  Detections:              {len(result.detections)}")
    print(f"  Peak infected animals:   {result.peak_infected} (day {result.peak_infected_day})")
    print(f"  Infected farms at end:   {result.final_infected_farms}")
    print(f"  Outputs:                 {out_dir}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    try:
        return run(args)
    except (FarmEpiError, FileNotFoundError) as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
