"""Component timing for epispread runs.

Tracks wall-clock time for named phases of a run (kernel build, seeding,
event loop, reporting). Disabled monitors are no-ops. Safe to share
between iterations running on a thread pool.

Usage:
    perf = PerfMonitor(enabled=True)
    with perf.track("event_loop"):
        ...
    print(perf.report())
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict


@dataclass
class ComponentStats:
    total_time: float = 0.0
    call_count: int = 0
    max_time: float = 0.0
    events: int = 0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count > 0 else 0.0


class PerfMonitor:
    """Lightweight per-component wall-clock monitor."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, ComponentStats] = defaultdict(ComponentStats)
        self._lock = threading.Lock()

    @contextmanager
    def track(self, component: str):
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.record(component, time.perf_counter() - t0)

    def record(self, component: str, elapsed: float, events: int = 0) -> None:
        if not self.enabled:
            return
        with self._lock:
            stats = self._stats[component]
            stats.total_time += elapsed
            stats.call_count += 1
            stats.max_time = max(stats.max_time, elapsed)
            stats.events += events

    def get_stats(self) -> Dict[str, ComponentStats]:
        with self._lock:
            return dict(self._stats)

    def report(self, title: str = "Run timing") -> str:
        stats = self.get_stats()
        total = sum(s.total_time for s in stats.values())
        lines = [
            f"\n{'='*64}",
            f" {title}",
            f"{'='*64}",
            f"{'Component':<16} {'Total (s)':>10} {'Calls':>7} {'Mean (ms)':>10} {'Events':>10} {'%':>6}",
        ]
        for name, s in sorted(stats.items(), key=lambda x: -x[1].total_time):
            pct = (s.total_time / total * 100) if total > 0 else 0.0
            lines.append(
                f"{name:<16} {s.total_time:>10.4f} {s.call_count:>7} "
                f"{s.mean_time*1000:>10.3f} {s.events:>10} {pct:>5.1f}%"
            )
        lines.append(f"{'TOTAL':<16} {total:>10.4f}")
        lines.append(f"{'='*64}\n")
        return '\n'.join(lines)
