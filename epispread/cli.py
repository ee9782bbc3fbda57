"""Command-line entry point.

Usage:
    epispread run.yaml
    epispread legacy.cfg thetaOne=0.2 maxGen=5
    epispread run.yaml kernel.scale=1.5 --workers 4 --seed 7 --profile
    python -m epispread run.yaml --plots figures/

Positional ``key=value`` pairs override the configuration file; keys are
either dotted (``simulation.max_time``) or the flat legacy names.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from epispread.config import load_config, parse_overrides
from epispread.engine import SimulationEngine
from epispread.perf import PerfMonitor
from epispread.population import load_hosts
from epispread.reporting import CsvReporter, MemoryReporter, TeeReporter
from epispread.types import ConfigurationError

logger = logging.getLogger("epispread")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="epispread",
        description="Spatial stochastic SIS/SIR epidemic simulation (Gillespie algorithm).",
    )
    parser.add_argument("config", help="YAML (.yaml/.yml) or legacy key=value (.cfg) config file")
    parser.add_argument("overrides", nargs="*", metavar="key=value",
                        help="Configuration overrides")
    parser.add_argument("--workers", type=int, default=None,
                        help="Run iterations on N threads (overrides simulation.parallel_workers)")
    parser.add_argument("--seed", type=int, default=None, help="Master RNG seed")
    parser.add_argument("--check-rates", type=int, default=None, metavar="N",
                        help="Verify every rate against a full re-derivation every N events")
    parser.add_argument("--plots", type=Path, default=None, metavar="DIR",
                        help="Save summary figures to DIR after the run")
    parser.add_argument("--profile", action="store_true", help="Print component timings")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Debug output (per-iteration detail)")
    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.DEBUG if verbosity > 0 else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _save_plots(directory: Path, memory: MemoryReporter, config, population) -> None:
    from epispread.viz import plot_generation_counts, plot_host_map, plot_time_course

    directory.mkdir(parents=True, exist_ok=True)
    logs = [memory.logs[i] for i in sorted(memory.logs)]
    plot_generation_counts(logs, config.simulation.max_generation,
                           save_path=str(directory / "generations.png"))
    if config.simulation.max_time is not None:
        plot_time_course(logs, config.simulation.max_time, config.output.n_time_steps,
                         save_path=str(directory / "time_course.png"))
    if logs:
        plot_host_map(logs[0], population, save_path=str(directory / "host_map_it0.png"))
    logger.info("Saved figures to %s", directory)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        overrides = [parse_overrides(args.overrides)]
        cli_sim = {}
        if args.workers is not None:
            cli_sim['parallel_workers'] = args.workers
        if args.seed is not None:
            cli_sim['seed'] = args.seed
        if args.check_rates is not None:
            cli_sim['check_rates_every'] = args.check_rates
        if cli_sim:
            overrides.append({'simulation': cli_sim})
        config = load_config(args.config, overrides=overrides)
        if not config.population.host_file:
            raise ConfigurationError("population.host_file (xyFile) is required")
        population = load_hosts(config.population.host_file)
        perf = PerfMonitor(enabled=args.profile)
        engine = SimulationEngine(config, population, perf=perf)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error("Configuration error: %s", e)
        return 1

    memory = MemoryReporter() if args.plots is not None else None
    with CsvReporter(config, population) as csv_reporter:
        summary = engine.run(TeeReporter(csv_reporter, memory))
    logger.info("Results written to %s", config.output.out_file)

    if memory is not None:
        _save_plots(args.plots, memory, config, population)
    if args.profile:
        print(perf.report())

    return 0 if summary.success else 1


if __name__ == "__main__":
    sys.exit(main())
