"""Epidemic log: append-only record of one realization.

One entry per infection event. Entries are never removed or reordered;
the only mutation after appending is closing an entry with its removal
time. A SIS host that is reinfected gets a new entry.

Storage is a structured array (ENTRY_DTYPE) grown in LOG_BLOCK_SIZE
chunks, so appends are amortized O(1) and aggregations are vectorized.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np
import pandas as pd

from epispread.types import ENTRY_DTYPE, LOG_BLOCK_SIZE, NOT_SET, InvariantViolation


@dataclass(frozen=True)
class EpidemicEntry:
    """A single infection event (row view of the log)."""
    generation: int
    infect_time: float
    removal_time: Optional[float]   # None while still infected
    host_id: int
    host_class: int

    @property
    def is_open(self) -> bool:
        return self.removal_time is None


class EpidemicLog:
    """Chronological infection/removal record for one iteration."""

    def __init__(self, capacity: int = LOG_BLOCK_SIZE):
        self._data = np.zeros(max(int(capacity), 1), dtype=ENTRY_DTYPE)
        self._count = 0
        self._frozen = False

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[EpidemicEntry]:
        for i in range(self._count):
            yield self[i]

    def __getitem__(self, index: int) -> EpidemicEntry:
        if index < 0:
            index += self._count
        if not 0 <= index < self._count:
            raise IndexError(f"entry {index} out of range (log has {self._count} entries)")
        row = self._data[index]
        removal = float(row['removal_time'])
        return EpidemicEntry(
            generation=int(row['generation']),
            infect_time=float(row['infect_time']),
            removal_time=None if removal == NOT_SET else removal,
            host_id=int(row['host_id']),
            host_class=int(row['host_class']),
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def entries(self) -> np.ndarray:
        """Read-only structured view of the filled entries."""
        view = self._data[:self._count]
        view.flags.writeable = False
        return view

    def _grow(self) -> None:
        grown = np.zeros(len(self._data) + LOG_BLOCK_SIZE, dtype=ENTRY_DTYPE)
        grown[:self._count] = self._data[:self._count]
        self._data = grown

    def append(self, generation: int, infect_time: float, host_id: int, host_class: int) -> int:
        """Record a new infection with its removal time unset.

        Returns:
            Index of the new entry.
        """
        if self._frozen:
            raise InvariantViolation("Cannot append to a finalized epidemic log")
        if self._count == len(self._data):
            self._grow()
        index = self._count
        self._data[index] = (generation, infect_time, NOT_SET, host_id, host_class)
        self._count += 1
        return index

    def close(self, index: int, removal_time: float) -> None:
        """Set the removal time of an open entry."""
        if self._frozen:
            raise InvariantViolation("Cannot close an entry of a finalized epidemic log")
        if not 0 <= index < self._count:
            raise InvariantViolation(f"No epidemic entry {index} to close", time=removal_time)
        if self._data['removal_time'][index] != NOT_SET:
            raise InvariantViolation(
                f"Epidemic entry {index} (host {int(self._data['host_id'][index])}) is already closed",
                generation=int(self._data['generation'][index]),
                time=removal_time,
            )
        self._data['removal_time'][index] = removal_time

    def finalize(self) -> "EpidemicLog":
        """Trim spare capacity and make the log read-only. Returns self."""
        self._data = self._data[:self._count].copy()
        self._data.flags.writeable = False
        self._frozen = True
        return self

    def to_dataframe(self) -> pd.DataFrame:
        """Entries as a DataFrame; open removal times are NaN."""
        frame = pd.DataFrame(self.entries.copy())
        frame['removal_time'] = frame['removal_time'].where(frame['removal_time'] != NOT_SET)
        return frame
