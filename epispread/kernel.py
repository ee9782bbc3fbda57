"""Spatial transmission kernel.

Two shapes:
  - power-exponential: k(r) = c·exp(-(r/α)^c) / (2π α² Γ(2/c)),
    normalized so that ∫ k(r) 2πr dr = 1
  - flat: k(r) = 1 for every pair of distinct hosts (testing shape)

Weights between hosts are symmetric and zero on the diagonal. With
caching on, the full n×n table is computed once per run and shared
read-only by every iteration; with caching off, weights are computed
from host positions on each lookup.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.spatial.distance import pdist, squareform

from epispread.config import KernelSection
from epispread.population import HostPopulation
from epispread.types import KernelShape

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# GAMMA FUNCTION
# ═══════════════════════════════════════════════════════════════════════

# Lanczos coefficients (Numerical Recipes gammln), |error| < 2e-10 for x > 0
_LANCZOS_COEFFS = (
    76.18009172947146,
    -86.50532032941677,
    24.01409824083091,
    -1.231739572450155,
    0.1208650973866179e-2,
    -0.5395239384953e-5,
)
_LANCZOS_SERIES_0 = 1.000000000190015
_SQRT_2PI = 2.5066282746310005


def log_gamma(x: float) -> float:
    """ln Γ(x) for x > 0 by the Lanczos approximation."""
    if x <= 0:
        raise ValueError(f"log_gamma requires x > 0, got {x}")
    t = x + 5.5
    t -= (x + 0.5) * math.log(t)
    s = _LANCZOS_SERIES_0
    y = x
    for c in _LANCZOS_COEFFS:
        y += 1.0
        s += c / y
    return -t + math.log(_SQRT_2PI * s / x)


def gamma(x: float) -> float:
    return math.exp(log_gamma(x))


# ═══════════════════════════════════════════════════════════════════════
# KERNEL SHAPES
# ═══════════════════════════════════════════════════════════════════════

def power_exponential_norm(scale: float, power: float) -> float:
    """Normalizing constant c / (2π α² Γ(2/c))."""
    return power / (2.0 * math.pi * scale * scale * gamma(2.0 / power))


def kernel_weight(r, scale: float, power: float, shape: KernelShape) -> np.ndarray:
    """Kernel value at distance(s) r.

    Args:
        r: Scalar or array of distances (≥ 0).
        scale: α > 0.
        power: c > 0.
        shape: KernelShape.

    Returns:
        Array of weights with the shape of r.
    """
    r = np.asarray(r, dtype=np.float64)
    shape = KernelShape(shape)
    if shape is KernelShape.FLAT:
        return np.ones_like(r)
    norm = power_exponential_norm(scale, power)
    return norm * np.exp(-np.power(r / scale, power))


# ═══════════════════════════════════════════════════════════════════════
# HOST-PAIR KERNEL
# ═══════════════════════════════════════════════════════════════════════

class TransmissionKernel:
    """Symmetric host-pair transmission weights k(i, j), k(i, i) = 0.

    Args:
        population: Host population (positions).
        shape: Kernel shape.
        scale: α.
        power: c.
        cache: If True, build the full table now; otherwise compute
            weights on demand.
    """

    def __init__(
        self,
        population: HostPopulation,
        shape: KernelShape = KernelShape.POWER_EXPONENTIAL,
        scale: float = 0.5,
        power: float = 1.0,
        cache: bool = True,
    ):
        self.population = population
        self.shape = KernelShape(shape)
        self.scale = float(scale)
        self.power = float(power)
        self.cached = bool(cache)
        self._positions = population.positions
        self._table = None
        if self.cached:
            self._table = self._build_table()
            logger.info("Set up %d x %d %s kernel", self.n_hosts, self.n_hosts, self.shape.value)

    @classmethod
    def from_config(cls, population: HostPopulation, cfg: KernelSection) -> "TransmissionKernel":
        return cls(population, shape=KernelShape(cfg.shape), scale=cfg.scale,
                   power=cfg.power, cache=cfg.cache)

    @property
    def n_hosts(self) -> int:
        return len(self._positions)

    def _build_table(self) -> np.ndarray:
        # condensed upper triangle → squareform mirrors it exactly and zeros the diagonal
        distances = pdist(self._positions, metric='euclidean')
        weights = kernel_weight(distances, self.scale, self.power, self.shape)
        table = squareform(weights, checks=False)
        table.flags.writeable = False
        return table

    @property
    def table(self) -> np.ndarray:
        """Full n×n weight table (assembled column by column when not cached)."""
        if self._table is None:
            return np.column_stack([self.column(j) for j in range(self.n_hosts)])
        return self._table

    def lookup(self, i: int, j: int) -> float:
        if self._table is not None:
            return float(self._table[i, j])
        if i == j:
            return 0.0
        dx = self._positions[i, 0] - self._positions[j, 0]
        dy = self._positions[i, 1] - self._positions[j, 1]
        return float(kernel_weight(math.hypot(dx, dy), self.scale, self.power, self.shape))

    def column(self, j: int) -> np.ndarray:
        """Weights k(i, j) for every host i (read-only when cached)."""
        if self._table is not None:
            return self._table[:, j]
        delta = self._positions - self._positions[j]
        weights = kernel_weight(np.hypot(delta[:, 0], delta[:, 1]), self.scale, self.power, self.shape)
        weights[j] = 0.0
        return weights
