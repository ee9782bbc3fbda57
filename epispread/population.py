"""Host population: positions and classes, immutable for a run.

Host files are delimited text with one header line followed by
``x y class`` rows. Fields may be separated by commas, tabs or spaces
(any mix); class is 1 (Type I) or 2 (Type II).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Union

import numpy as np
import pandas as pd

from epispread.types import HOST_DTYPE, ConfigurationError, HostClass

logger = logging.getLogger(__name__)

_SEPARATORS = r'[,\t ]+'


class HostPopulation:
    """Immutable host table indexed 0..n-1.

    Attributes:
        hosts: Read-only structured array with HOST_DTYPE.
    """

    def __init__(self, hosts: np.ndarray):
        if hosts.dtype != HOST_DTYPE:
            raise TypeError(f"hosts must have HOST_DTYPE, got {hosts.dtype}")
        if len(hosts) == 0:
            raise ConfigurationError("Host population is empty")
        valid = np.isin(hosts['host_class'], [c.value for c in HostClass])
        if not np.all(valid):
            bad = int(np.flatnonzero(~valid)[0])
            raise ConfigurationError(
                f"Host {bad} has invalid class {hosts['host_class'][bad]} "
                f"(must be {HostClass.TYPE_I.value} or {HostClass.TYPE_II.value})"
            )
        self.hosts = hosts.copy()
        self.hosts.flags.writeable = False

    @classmethod
    def from_arrays(cls, x, y, classes) -> "HostPopulation":
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        classes = np.asarray(classes)
        if not (x.shape == y.shape == classes.shape) or x.ndim != 1:
            raise ConfigurationError(
                f"x, y and classes must be 1D arrays of equal length, "
                f"got shapes {x.shape}, {y.shape}, {classes.shape}"
            )
        hosts = np.zeros(len(x), dtype=HOST_DTYPE)
        hosts['x'] = x
        hosts['y'] = y
        hosts['host_class'] = classes
        return cls(hosts)

    @property
    def count(self) -> int:
        return len(self.hosts)

    def __len__(self) -> int:
        return len(self.hosts)

    @property
    def positions(self) -> np.ndarray:
        """(n, 2) array of host coordinates."""
        return np.column_stack((self.hosts['x'], self.hosts['y']))

    @property
    def classes(self) -> np.ndarray:
        return self.hosts['host_class']

    def indices_of_class(self, host_class: int) -> np.ndarray:
        """Host indices of one class, in ascending order."""
        return np.flatnonzero(self.hosts['host_class'] == int(host_class))

    def class_counts(self) -> Dict[HostClass, int]:
        return {c: int(np.count_nonzero(self.hosts['host_class'] == c.value)) for c in HostClass}


def load_hosts(path: Union[str, Path]) -> HostPopulation:
    """Read a host file.

    Raises:
        ConfigurationError: If the file is missing, empty, or has a row
            without exactly three numeric fields or with an invalid class.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Host file not found: {path}")

    try:
        frame = pd.read_csv(
            path,
            sep=_SEPARATORS,
            engine='python',
            header=None,
            skiprows=1,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        raise ConfigurationError(f"No hosts in {path}") from None
    except pd.errors.ParserError as e:
        raise ConfigurationError(f"Malformed host file {path}: {e}") from e

    # a trailing separator produces an all-empty final column
    frame = frame.dropna(axis=1, how='all')
    if frame.shape[1] != 3:
        raise ConfigurationError(
            f"Host file {path} must have 3 fields per row (x, y, class), "
            f"found {frame.shape[1]}"
        )
    try:
        values = frame.to_numpy(dtype=np.float64)
    except ValueError as e:
        raise ConfigurationError(f"Non-numeric value in host file {path}: {e}") from e
    if np.isnan(values).any():
        row = int(np.flatnonzero(np.isnan(values).any(axis=1))[0])
        raise ConfigurationError(f"Host file {path}: row {row + 2} is incomplete")
    classes = values[:, 2]
    if not np.all(classes == np.round(classes)):
        raise ConfigurationError(f"Host file {path}: host class must be an integer")

    population = HostPopulation.from_arrays(values[:, 0], values[:, 1], classes.astype(np.int8))
    logger.info("Read in %d hosts from %s", population.count, path)
    return population
