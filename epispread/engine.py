"""Gillespie event loop over repeated independent realizations.

Each iteration:
  1. Seeds the configured number of infections per class (generation 0),
     chosen uniformly without replacement among hosts of that class.
  2. While TotalRate > 0 and (no cap, or time ≤ cap):
       - advance time by an exponential waiting time, -ln(u) / TotalRate
       - pick the event host by a cumulative scan over rates in index order
       - susceptible host → infection; the infector is drawn from the
         per-infective contributions with the same cumulative scan
       - infected host → recovery
       - removed host → InvariantViolation (bookkeeping is broken)
       - snap TotalRate to zero below NUMERIC_UNDERFLOW
  3. Finalizes the log and hands it to the reporter.

Iterations share only the read-only population and kernel, so they may run
on a thread pool; each has its own SeedSequence stream, ledger and log,
and results are reported in iteration order.
"""

from __future__ import annotations

import logging
import math
import time as wallclock
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np

from epispread.config import SimulationConfig
from epispread.epidemic import EpidemicLog
from epispread.kernel import TransmissionKernel
from epispread.ledger import RateLedger
from epispread.perf import PerfMonitor
from epispread.population import HostPopulation
from epispread.rng import UniformSource, create_iteration_streams, get_iteration_source
from epispread.types import ConfigurationError, HostClass, HostStatus, InvariantViolation

logger = logging.getLogger(__name__)

EXTINCT = "extinct"
TIME_CAP = "time_cap"


def cumulative_select(weights: np.ndarray, threshold: float) -> int:
    """Index of the first element at which the running sum exceeds threshold.

    Equivalent to a linear scan accumulating weights in index order.
    Zero-weight elements are never selected. If rounding leaves the
    threshold at or beyond the full sum, the last positive-weight element
    is returned.
    """
    cumulative = np.cumsum(weights)
    index = int(np.searchsorted(cumulative, threshold, side='right'))
    if index >= len(weights):
        positive = np.flatnonzero(weights > 0.0)
        index = int(positive[-1]) if positive.size else len(weights) - 1
    return index


@dataclass
class IterationResult:
    """A completed realization."""
    iteration: int
    log: EpidemicLog
    n_events: int
    final_time: float
    termination: str          # EXTINCT or TIME_CAP

    @property
    def n_infections(self) -> int:
        return len(self.log)


@dataclass
class IterationSummary:
    iteration: int
    n_events: int = 0
    n_infections: int = 0
    final_time: float = 0.0
    termination: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RunSummary:
    """Outcome of all iterations of a run."""
    iterations: List[IterationSummary] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def failures(self) -> Dict[int, str]:
        return {s.iteration: s.error for s in self.iterations if s.error is not None}

    @property
    def success(self) -> bool:
        return not self.failures


class Reporter(Protocol):
    def report(self, result: IterationResult) -> None:
        ...


class SimulationEngine:
    """Runs independent realizations of the spatial SIS/SIR process.

    Args:
        config: Validated configuration.
        population: Hosts.
        kernel: Prebuilt kernel; built from config.kernel if omitted.
        perf: Optional timing monitor.

    Raises:
        ConfigurationError: If a class requests more initial infections
            than it has hosts.
    """

    def __init__(
        self,
        config: SimulationConfig,
        population: HostPopulation,
        kernel: Optional[TransmissionKernel] = None,
        perf: Optional[PerfMonitor] = None,
    ):
        self.config = config
        self.population = population
        self.perf = perf if perf is not None else PerfMonitor(enabled=False)
        self._check_seeding()
        if kernel is None:
            with self.perf.track("kernel"):
                kernel = TransmissionKernel.from_config(population, config.kernel)
        elif kernel.n_hosts != population.count:
            raise ConfigurationError(
                f"Kernel covers {kernel.n_hosts} hosts but population has {population.count}"
            )
        self.kernel = kernel

    def _seed_counts(self) -> Dict[HostClass, int]:
        tr = self.config.transmission
        return {HostClass.TYPE_I: tr.init_one, HostClass.TYPE_II: tr.init_two}

    def _check_seeding(self) -> None:
        available = self.population.class_counts()
        for host_class, wanted in self._seed_counts().items():
            if wanted > available[host_class]:
                raise ConfigurationError(
                    f"{wanted} initial infections requested for class {host_class.value} "
                    f"but only {available[host_class]} hosts of that class"
                )
        if sum(self._seed_counts().values()) == 0:
            logger.warning("No initial infections configured; every iteration will be empty")

    # ── single iteration ─────────────────────────────────────────────

    def new_ledger(self, iteration: Optional[int] = None) -> RateLedger:
        """Fresh ledger and log with every host susceptible."""
        return RateLedger(
            self.population,
            self.kernel,
            self.config.transmission,
            max_generation=self.config.simulation.max_generation,
            model=self.config.model_type,
            log=EpidemicLog(),
            iteration=iteration,
        )

    def seed_infections(self, ledger: RateLedger, source: UniformSource) -> None:
        for host_class, count in self._seed_counts().items():
            if count <= 0:
                continue
            pool = self.population.indices_of_class(host_class)
            for host in source.choice_without_replacement(pool, count):
                ledger.infect(int(host), 0.0, None)

    def _choose_infector(self, ledger: RateLedger, host: int,
                         source: UniformSource, now: float) -> int:
        ids, contributions = ledger.infection_pressure(host)
        total = float(contributions.sum())
        if ids.size == 0 or total <= 0.0:
            raise InvariantViolation(
                f"Infection event on host {host} with no infectious pressure",
                iteration=ledger.iteration, time=now,
            )
        return int(ids[cumulative_select(contributions, source.uniform() * total)])

    def step(self, ledger: RateLedger, source: UniformSource, now: float) -> Tuple[float, int]:
        """Sample and apply one event.

        Returns:
            (new time, event host)
        """
        now += -math.log(source.positive_uniform()) / ledger.total_rate
        host = cumulative_select(ledger.rates, source.uniform() * ledger.total_rate)
        status = ledger.status[host]
        if status == HostStatus.SUSCEPTIBLE:
            ledger.infect(host, now, self._choose_infector(ledger, host, source, now))
        elif status == HostStatus.INFECTED:
            ledger.recover(host, now)
        else:
            generation = int(ledger.generation[host])
            raise InvariantViolation(
                f"Event triggered by removed host {host}",
                iteration=ledger.iteration,
                generation=generation if generation >= 0 else None,
                time=now,
            )
        ledger.snap_underflow()
        return now, host

    def run_iteration(self, iteration: int, source: UniformSource) -> IterationResult:
        """Run one realization from seeding to extinction or the time cap.

        Raises:
            InvariantViolation: If rate bookkeeping becomes inconsistent.
        """
        max_time = self.config.simulation.max_time
        check_every = self.config.simulation.check_rates_every
        logger.debug("Initialising epidemic %d", iteration)

        ledger = self.new_ledger(iteration)
        with self.perf.track("seed"):
            self.seed_infections(ledger, source)
            ledger.snap_underflow()

        now = 0.0
        n_events = 0
        t0 = wallclock.perf_counter()
        while ledger.total_rate > 0.0 and (max_time is None or now <= max_time):
            now, _ = self.step(ledger, source, now)
            n_events += 1
            if check_every and n_events % check_every == 0:
                ledger.assert_consistent(time=now)
        self.perf.record("event_loop", wallclock.perf_counter() - t0, events=n_events)

        termination = EXTINCT if ledger.total_rate == 0.0 else TIME_CAP
        result = IterationResult(
            iteration=iteration,
            log=ledger.log.finalize(),
            n_events=n_events,
            final_time=now,
            termination=termination,
        )
        logger.debug(
            "Iteration %d: %d events, %d infections, t=%.4g (%s)",
            iteration, n_events, result.n_infections, now, termination,
        )
        return result

    # ── whole run ────────────────────────────────────────────────────

    def _run_safely(self, iteration: int, rngs) -> Tuple[Optional[IterationResult], IterationSummary]:
        source = get_iteration_source(rngs, iteration)
        try:
            result = self.run_iteration(iteration, source)
        except InvariantViolation as e:
            if e.iteration is None:
                e.iteration = iteration
            logger.error("Iteration %d aborted: %s", iteration, e)
            return None, IterationSummary(iteration=iteration, error=str(e))
        return result, IterationSummary(
            iteration=iteration,
            n_events=result.n_events,
            n_infections=result.n_infections,
            final_time=result.final_time,
            termination=result.termination,
        )

    def run(self, reporter: Optional[Reporter] = None) -> RunSummary:
        """Run all configured iterations.

        Completed logs are passed to reporter.report() in iteration order.
        A failed iteration is logged and recorded; the others still run.
        """
        sim = self.config.simulation
        rngs = create_iteration_streams(sim.seed, sim.n_iterations)
        summary = RunSummary()
        t0 = wallclock.perf_counter()
        logger.info(
            "Running %d %s iteration(s) over %d hosts (max generation %d)",
            sim.n_iterations, sim.model, self.population.count, sim.max_generation,
        )

        def handle(outcome: Tuple[Optional[IterationResult], IterationSummary]) -> None:
            result, iteration_summary = outcome
            summary.iterations.append(iteration_summary)
            if result is not None and reporter is not None:
                with self.perf.track("report"):
                    reporter.report(result)

        iterations = range(sim.n_iterations)
        if sim.parallel_workers > 1:
            with ThreadPoolExecutor(max_workers=sim.parallel_workers) as pool:
                # map yields in submission order, whatever the completion order
                for outcome in pool.map(lambda i: self._run_safely(i, rngs), iterations):
                    handle(outcome)
        else:
            for i in iterations:
                handle(self._run_safely(i, rngs))

        summary.elapsed = wallclock.perf_counter() - t0
        if summary.success:
            logger.info("Completed %d iteration(s) in %.2fs", sim.n_iterations, summary.elapsed)
        else:
            logger.error("%d of %d iteration(s) failed", len(summary.failures), sim.n_iterations)
        return summary
