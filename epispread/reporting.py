"""Aggregation and output of finished epidemic logs.

Aggregations:
  - generation_counts: infections per class at each generation 0..max_generation
  - time_course_counts: hosts infected per class at evenly spaced times
  - host_timeline: first infection record of every host (diagnostic dump)

Output files (CsvReporter), named from output.out_file:
  <out_file>                main table, one block per iteration
  <stem>_param.csv          run parameters (legacy column names)
  <stem>_it=<n>.csv         per-host timeline for iteration n (optional)
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

from epispread.config import SimulationConfig, legacy_parameter_row
from epispread.engine import IterationResult
from epispread.epidemic import EpidemicLog
from epispread.population import HostPopulation
from epispread.types import NOT_SET, DumpType, HostClass

logger = logging.getLogger(__name__)

_CLASSES = (HostClass.TYPE_I.value, HostClass.TYPE_II.value)


# ═══════════════════════════════════════════════════════════════════════
# AGGREGATIONS
# ═══════════════════════════════════════════════════════════════════════

def generation_counts(log: EpidemicLog, max_generation: int) -> np.ndarray:
    """Infections by generation and class.

    Returns:
        (max_generation + 1, 2) int array; column 0 is Type I, column 1
        Type II. Generations beyond max_generation are not counted.
    """
    entries = log.entries
    counts = np.zeros((max_generation + 1, 2), dtype=np.int64)
    for col, host_class in enumerate(_CLASSES):
        gens = entries['generation'][entries['host_class'] == host_class]
        gens = gens[(gens >= 0) & (gens <= max_generation)]
        counts[:, col] = np.bincount(gens, minlength=max_generation + 1)[:max_generation + 1]
    return counts


def time_course_counts(
    log: EpidemicLog,
    max_time: float,
    n_steps: int = 100,
) -> Tuple[np.ndarray, np.ndarray]:
    """Hosts infected per class at n_steps + 1 evenly spaced times on [0, max_time].

    A host is infected at t when infect_time ≤ t and its entry is still
    open or was closed after t.

    Returns:
        (times, counts) with counts of shape (n_steps + 1, 2).
    """
    times = np.arange(n_steps + 1) * (max_time / n_steps)
    entries = log.entries
    t = times[:, None]
    removal = entries['removal_time'][None, :]
    infected = (entries['infect_time'][None, :] <= t) & ((removal == NOT_SET) | (removal > t))
    counts = np.zeros((len(times), 2), dtype=np.int64)
    for col, host_class in enumerate(_CLASSES):
        counts[:, col] = infected[:, entries['host_class'] == host_class].sum(axis=1)
    return times, counts


def host_timeline(log: EpidemicLog, population: HostPopulation) -> pd.DataFrame:
    """One row per host with its first infection, or NA if never infected."""
    frame = pd.DataFrame({
        'hostID': np.arange(population.count),
        'hostX': population.hosts['x'],
        'hostY': population.hosts['y'],
        'hostType': population.classes.astype(int),
    })
    entries = log.to_dataframe().drop_duplicates('host_id', keep='first').set_index('host_id')
    first = entries.reindex(frame['hostID'])
    frame['tI'] = first['infect_time'].to_numpy()
    frame['tR'] = first['removal_time'].to_numpy()
    frame['gen'] = pd.array(first['generation'].to_numpy(dtype=float), dtype='Int64')
    return frame


# ═══════════════════════════════════════════════════════════════════════
# REPORTERS
# ═══════════════════════════════════════════════════════════════════════

class MemoryReporter:
    """Keeps every finished log, keyed by iteration."""

    def __init__(self):
        self.logs: Dict[int, EpidemicLog] = {}
        self.results: List[IterationResult] = []

    def report(self, result: IterationResult) -> None:
        self.logs[result.iteration] = result.log
        self.results.append(result)


def _stem(out_file: Path) -> Path:
    return out_file.with_suffix('')


class CsvReporter:
    """Writes iteration results to CSV files.

    Use as a context manager so the main file is closed:

        with CsvReporter(config, population) as reporter:
            engine.run(reporter)
    """

    def __init__(self, config: SimulationConfig, population: HostPopulation):
        self.config = config
        self.population = population
        self.out_file = Path(config.output.out_file)
        self._handle = None
        self._writer = None
        self._header_written = False

    # ── file naming ──────────────────────────────────────────────────

    @property
    def parameter_file(self) -> Path:
        stem = _stem(self.out_file)
        return stem.with_name(f"{stem.name}_param.csv")

    def host_status_file(self, iteration: int) -> Path:
        stem = _stem(self.out_file)
        return stem.with_name(f"{stem.name}_it={iteration}.csv")

    # ── lifecycle ────────────────────────────────────────────────────

    def open(self) -> "CsvReporter":
        self.out_file.parent.mkdir(parents=True, exist_ok=True)
        if self.config.output.dump_parameters:
            self.write_parameters()
        self._handle = open(self.out_file, 'w', newline='')
        self._writer = csv.writer(self._handle, lineterminator='\n')
        return self

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            self._writer = None

    def __enter__(self) -> "CsvReporter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def write_parameters(self) -> Path:
        row = legacy_parameter_row(self.config)
        with open(self.parameter_file, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=list(row), lineterminator='\n')
            writer.writeheader()
            writer.writerow(row)
        return self.parameter_file

    # ── per-iteration output ─────────────────────────────────────────

    def report(self, result: IterationResult) -> None:
        if self._writer is None:
            raise RuntimeError("CsvReporter.report() called before open()")
        dump_type = self.config.dump_type
        if dump_type is DumpType.GENERATIONS:
            self._write_generations(result)
        elif self.config.simulation.max_time is not None:
            self._write_time_course(result)
        if self.config.output.dump_host_status:
            self.write_host_status(result)
        self._handle.flush()

    def _write_generations(self, result: IterationResult) -> None:
        max_gen = self.config.simulation.max_generation
        counts = generation_counts(result.log, max_gen)
        if not self._header_written:
            header = ['<it>']
            for g in range(max_gen + 1):
                header += [f'I_1({g})', f'I_2({g})']
            self._writer.writerow(header)
            self._header_written = True
        self._writer.writerow([result.iteration] + [int(n) for n in counts.ravel()])
        logger.debug("Iteration %d infections by generation: %s", result.iteration, counts.tolist())

    def _write_time_course(self, result: IterationResult) -> None:
        times, counts = time_course_counts(
            result.log, self.config.simulation.max_time, self.config.output.n_time_steps)
        if not self._header_written:
            self._writer.writerow(['<it>', '<dT>', '<n1>', '<n2>', '<n1+n2>'])
            self._header_written = True
        for t, (n1, n2) in zip(times, counts):
            self._writer.writerow([result.iteration, f"{t:.6f}", int(n1), int(n2), int(n1 + n2)])

    def write_host_status(self, result: IterationResult) -> Path:
        path = self.host_status_file(result.iteration)
        host_timeline(result.log, self.population).to_csv(
            path, index=False, na_rep='NA', float_format='%.4f')
        return path


def read_host_status(path) -> pd.DataFrame:
    """Load a per-host timeline file written by CsvReporter."""
    return pd.read_csv(path, na_values=['NA'])


class TeeReporter:
    """Forwards each result to several reporters, in order."""

    def __init__(self, *reporters):
        self.reporters = [r for r in reporters if r is not None]

    def report(self, result: IterationResult) -> None:
        for reporter in self.reporters:
            reporter.report(result)
