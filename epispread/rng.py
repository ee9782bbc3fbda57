"""Seeded random streams for reproducible realizations.

Uses NumPy's SeedSequence → PCG64 hierarchy to guarantee:
  - Statistical independence between per-iteration streams
  - Bit-exact replay of any iteration with the same master seed,
    whether iterations run serially or on a worker pool
  - Changing the iteration count doesn't affect earlier iterations' streams

A master seed of None draws fresh entropy from the OS, so separate
processes started together still get different streams.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np


class UniformSource:
    """Uniform variates for the event loop, backed by a numpy Generator."""

    def __init__(self, generator: np.random.Generator):
        self.generator = generator

    def uniform(self) -> float:
        """Uniform on [0, 1)."""
        return float(self.generator.random())

    def positive_uniform(self) -> float:
        """Uniform on (0, 1): zeros are redrawn."""
        u = self.generator.random()
        while u <= 0.0:
            u = self.generator.random()
        return float(u)

    def choice_without_replacement(self, pool: np.ndarray, k: int) -> np.ndarray:
        """k distinct elements of pool, in draw order."""
        return self.generator.choice(pool, size=k, replace=False)


def create_iteration_streams(
    master_seed: Optional[int],
    n_iterations: int,
) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams for each iteration + global use.

    Streams created:
      - 'global': anything outside an iteration
      - 'iteration_0' .. 'iteration_{n-1}': one per realization

    Args:
        master_seed: Non-negative integer, or None for OS entropy.
        n_iterations: Number of realizations.

    Returns:
        Dictionary mapping stream names to numpy Generator instances.
    """
    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(n_iterations + 1)

    rngs: Dict[str, np.random.Generator] = {
        'global': np.random.Generator(np.random.PCG64(child_seeds[0])),
    }
    for i in range(n_iterations):
        rngs[f'iteration_{i}'] = np.random.Generator(np.random.PCG64(child_seeds[1 + i]))
    return rngs


def get_iteration_source(
    rngs: Dict[str, np.random.Generator],
    iteration: int,
) -> UniformSource:
    """UniformSource over the stream for one iteration.

    Raises:
        KeyError: If the iteration has no stream.
    """
    key = f'iteration_{iteration}'
    if key not in rngs:
        raise KeyError(
            f"No RNG stream for iteration {iteration} "
            f"({sum(1 for k in rngs if k.startswith('iteration_'))} streams available)"
        )
    return UniformSource(rngs[key])
