"""Rate ledger: per-host event rates for one realization.

Holds every host's status, instantaneous event rate, generation and open
log entry, together with the aggregate TotalRate. Infections and
recoveries update only the rates affected by the change in infectious
pressure from a single host, so each event is O(n).

Rate invariant (between events):
  SUSCEPTIBLE host h:  rate = Σ θ(j)·ρ(h)·k(h, j) over INFECTED j with
                       generation(j) < max_generation
  INFECTED host:       rate = μ(class)
  REMOVED host:        rate = 0
  TotalRate = Σ rates  (clamped at 0, snapped to 0 below NUMERIC_UNDERFLOW)

A host infected at generation ≥ max_generation still occupies an
infectious period and recovers at μ, but exerts no force of infection.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from epispread.config import TransmissionSection
from epispread.epidemic import EpidemicLog
from epispread.kernel import TransmissionKernel
from epispread.population import HostPopulation
from epispread.types import (
    NOT_SET,
    NUMERIC_UNDERFLOW,
    RATE_CHECK_TOLERANCE,
    HostClass,
    HostStatus,
    InvariantViolation,
    ModelType,
)

_S = HostStatus.SUSCEPTIBLE.value
_I = HostStatus.INFECTED.value
_R = HostStatus.REMOVED.value


def class_parameters(
    transmission: TransmissionSection,
    classes: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-host (θ, ρ, μ) vectors from per-class rates."""
    type_one = classes == HostClass.TYPE_I.value
    theta = np.where(type_one, transmission.theta_one, transmission.theta_two).astype(np.float64)
    rho = np.where(type_one, transmission.rho_one, transmission.rho_two).astype(np.float64)
    mu = np.where(type_one, transmission.mu_one, transmission.mu_two).astype(np.float64)
    return theta, rho, mu


class RateLedger:
    """Incrementally maintained event rates for one iteration.

    Args:
        population: Hosts (shared, read-only).
        kernel: Transmission kernel (shared, read-only).
        transmission: Per-class rates.
        max_generation: Generation at which hosts stop infecting.
        model: SIS or SIR.
        log: Epidemic log owned by this iteration.
        iteration: Iteration index, used in error diagnostics.
    """

    def __init__(
        self,
        population: HostPopulation,
        kernel: TransmissionKernel,
        transmission: TransmissionSection,
        max_generation: int,
        model: ModelType,
        log: Optional[EpidemicLog] = None,
        iteration: Optional[int] = None,
    ):
        if kernel.n_hosts != population.count:
            raise ValueError(
                f"Kernel covers {kernel.n_hosts} hosts but population has {population.count}"
            )
        self.population = population
        self.kernel = kernel
        self.max_generation = int(max_generation)
        self.model = ModelType(model)
        self.log = log if log is not None else EpidemicLog()
        self.iteration = iteration

        self.theta, self.rho, self.mu = class_parameters(transmission, population.classes)
        n = population.count
        self.status = np.full(n, _S, dtype=np.int8)
        self.rates = np.zeros(n, dtype=np.float64)
        self.generation = np.full(n, NOT_SET, dtype=np.int32)
        self.entry_index = np.full(n, NOT_SET, dtype=np.int32)
        self.total_rate = 0.0

    # ── queries ──────────────────────────────────────────────────────

    @property
    def n_hosts(self) -> int:
        return len(self.status)

    def count(self, status: HostStatus) -> int:
        return int(np.count_nonzero(self.status == int(status)))

    def outgoing_theta(self, host: int) -> float:
        """Infectivity host exerts now: zero unless INFECTED below the cutoff."""
        if self.status[host] != _I or self.generation[host] >= self.max_generation:
            return 0.0
        return float(self.theta[host])

    def _active_infectives(self) -> np.ndarray:
        return np.flatnonzero((self.status == _I) & (self.generation < self.max_generation))

    def infection_pressure(self, host: int) -> Tuple[np.ndarray, np.ndarray]:
        """Per-infective force of infection on one host.

        Returns:
            (ids, contributions) over all currently INFECTED hosts in
            index order; contributions are zero for hosts at or past the
            generation cutoff.
        """
        ids = np.flatnonzero(self.status == _I)
        theta = np.where(self.generation[ids] < self.max_generation, self.theta[ids], 0.0)
        weights = self.kernel.column(host)[ids]
        return ids, theta * self.rho[host] * weights

    # ── errors ───────────────────────────────────────────────────────

    def _violation(self, message: str, host: Optional[int] = None,
                   time: Optional[float] = None) -> InvariantViolation:
        generation = None
        if host is not None and self.generation[host] != NOT_SET:
            generation = int(self.generation[host])
        return InvariantViolation(message, iteration=self.iteration,
                                  generation=generation, time=time)

    def _clamp_total(self, time: float, host: int) -> None:
        if self.total_rate < 0.0:
            if self.total_rate < -RATE_CHECK_TOLERANCE:
                raise self._violation(
                    f"TotalRate went negative ({self.total_rate:.3g}) after event on host {host}",
                    host=host, time=time,
                )
            self.total_rate = 0.0

    # ── transitions ──────────────────────────────────────────────────

    def infect(self, host: int, time: float, infector: Optional[int] = None) -> int:
        """SUSCEPTIBLE → INFECTED.

        Args:
            host: Host to infect.
            time: Infection time.
            infector: Host that transmitted, or None for a seed infection.

        Returns:
            Index of the new epidemic log entry.
        """
        if self.status[host] != _S:
            raise self._violation(
                f"Cannot infect host {host}: status is {HostStatus(int(self.status[host])).name}",
                host=host, time=time,
            )
        if infector is None:
            gen = 0
        else:
            if self.status[infector] != _I:
                raise self._violation(
                    f"Infector {infector} of host {host} is not INFECTED", host=infector, time=time)
            if self.generation[infector] >= self.max_generation:
                raise self._violation(
                    f"Infector {infector} is past the generation cutoff", host=infector, time=time)
            gen = int(self.generation[infector]) + 1

        self.total_rate -= float(self.rates[host])
        self.rates[host] = self.mu[host]
        self.total_rate += float(self.rates[host])
        self.status[host] = _I
        self.generation[host] = gen

        theta = self.theta[host] if gen < self.max_generation else 0.0
        if theta > 0.0:
            susceptible = self.status == _S
            extra = theta * self.rho[susceptible] * self.kernel.column(host)[susceptible]
            self.rates[susceptible] += extra
            self.total_rate += float(extra.sum())

        entry = self.log.append(gen, time, host, int(self.population.classes[host]))
        self.entry_index[host] = entry
        return entry

    def recover(self, host: int, time: float) -> None:
        """INFECTED → SUSCEPTIBLE (SIS) or REMOVED (SIR)."""
        if self.status[host] != _I:
            raise self._violation(
                f"Cannot recover host {host}: status is {HostStatus(int(self.status[host])).name}",
                host=host, time=time,
            )
        self.total_rate -= float(self.mu[host])

        if self.generation[host] < self.max_generation:
            susceptible = self.status == _S
            extra = self.theta[host] * self.rho[susceptible] * self.kernel.column(host)[susceptible]
            updated = self.rates[susceptible] - extra
            if updated.size and updated.min() < -RATE_CHECK_TOLERANCE:
                raise self._violation(
                    f"Rate of a susceptible host went negative ({updated.min():.3g}) "
                    f"when host {host} recovered",
                    host=host, time=time,
                )
            self.rates[susceptible] = np.maximum(updated, 0.0)
            self.total_rate -= float(extra.sum())

        self.log.close(int(self.entry_index[host]), time)
        self.entry_index[host] = NOT_SET
        self.rates[host] = 0.0

        if self.model is ModelType.SIS:
            self.status[host] = _S
            # re-derive from scratch rather than reverse the earlier subtractions
            active = self._active_infectives()
            if active.size:
                pressure = float(np.sum(
                    self.theta[active] * self.rho[host] * self.kernel.column(host)[active]
                ))
                self.rates[host] = pressure
                self.total_rate += pressure
        else:
            self.status[host] = _R

        self._clamp_total(time, host)

    def snap_underflow(self) -> None:
        """Treat a TotalRate at or below NUMERIC_UNDERFLOW as exactly zero."""
        if self.total_rate <= NUMERIC_UNDERFLOW:
            self.total_rate = 0.0

    # ── consistency checks ───────────────────────────────────────────

    def expected_rates(self) -> np.ndarray:
        """Every host's rate re-derived from statuses, generations and the kernel."""
        expected = np.zeros(self.n_hosts, dtype=np.float64)
        infected = self.status == _I
        expected[infected] = self.mu[infected]
        susceptible = self.status == _S
        pressure = np.zeros(self.n_hosts, dtype=np.float64)
        for j in self._active_infectives():
            pressure += self.theta[j] * self.kernel.column(j)
        expected[susceptible] = self.rho[susceptible] * pressure[susceptible]
        return expected

    def recompute_rate(self, host: int) -> float:
        return float(self.expected_rates()[host])

    def check_rates(self, tolerance: float = RATE_CHECK_TOLERANCE) -> np.ndarray:
        """Indices of hosts whose stored rate differs from the re-derived one."""
        return np.flatnonzero(np.abs(self.rates - self.expected_rates()) > tolerance)

    def assert_consistent(self, time: Optional[float] = None,
                          tolerance: float = RATE_CHECK_TOLERANCE) -> None:
        """Raise InvariantViolation if any rate or TotalRate has drifted."""
        bad = self.check_rates(tolerance)
        if bad.size:
            host = int(bad[0])
            raise self._violation(
                f"{bad.size} host rate(s) inconsistent; host {host} has "
                f"{self.rates[host]:.6g}, expected {self.recompute_rate(host):.6g}",
                host=host, time=time,
            )
        if (self.rates < 0.0).any() or self.total_rate < 0.0:
            raise self._violation("Negative rate in ledger", time=time)
        total = float(self.rates.sum())
        if self.total_rate == 0.0:
            if total > NUMERIC_UNDERFLOW + tolerance:
                raise self._violation(
                    f"TotalRate collapsed to 0 while sum of rates is {total:.6g}",
                    time=time,
                )
        elif abs(self.total_rate - total) > tolerance:
            raise self._violation(
                f"TotalRate {self.total_rate:.6g} differs from sum of rates {total:.6g}",
                time=time,
            )
