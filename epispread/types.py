"""Core data types for epispread.

This module is the single source of truth for:
  - HostStatus, HostClass, KernelShape, ModelType, DumpType enumerations
  - HOST_DTYPE: NumPy structured dtype for the immutable host table
  - ENTRY_DTYPE: NumPy structured dtype for epidemic log entries
  - Numeric constants shared by the kernel, ledger and engine
  - The error taxonomy (ConfigurationError, InvariantViolation)

All modules import these types from here.
"""

from enum import Enum, IntEnum
from typing import Optional

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class HostStatus(IntEnum):
    """Per-iteration host status.

    SUSCEPTIBLE → INFECTED → SUSCEPTIBLE (SIS)
                           → REMOVED     (SIR, terminal)
    """
    SUSCEPTIBLE = 0
    INFECTED = 1
    REMOVED = 2


class HostClass(IntEnum):
    """Host classes. Values match the class column of host files."""
    TYPE_I = 1
    TYPE_II = 2


class KernelShape(str, Enum):
    POWER_EXPONENTIAL = "power_exponential"
    FLAT = "flat"


class ModelType(str, Enum):
    SIS = "SIS"
    SIR = "SIR"


class DumpType(str, Enum):
    """Layout of the main output file."""
    GENERATIONS = "generations"   # infections per class per generation
    TIMES = "times"               # concurrently infected at fixed times


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

NOT_SET = -1

# TotalRate at or below this is treated as exactly zero. Every infected
# host recovers at rate mu, so a genuine nonzero total stays above this
# value only while mu does; config validation warns when mu is smaller.
NUMERIC_UNDERFLOW = 1e-5

# Tolerance for the independent rate re-derivation check.
RATE_CHECK_TOLERANCE = 1e-5

# Growth quantum (entries) for the epidemic log buffer.
LOG_BLOCK_SIZE = 256


# ═══════════════════════════════════════════════════════════════════════
# STRUCTURED DTYPES
# ═══════════════════════════════════════════════════════════════════════

HOST_DTYPE = np.dtype([
    ('x',           np.float64),   # position X
    ('y',           np.float64),   # position Y
    ('host_class',  np.int8),      # HostClass value (1 or 2)
])

ENTRY_DTYPE = np.dtype([
    ('generation',   np.int32),    # hops from a seed infection (seed = 0)
    ('infect_time',  np.float64),
    ('removal_time', np.float64),  # NOT_SET until closed
    ('host_id',      np.int32),
    ('host_class',   np.int8),
])


# ═══════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════

class ConfigurationError(ValueError):
    """Invalid configuration or inputs, detected before simulation starts."""


class InvariantViolation(RuntimeError):
    """Rate bookkeeping is inconsistent; the current iteration is unusable.

    Carries enough context to locate the failure in the realization.
    """

    def __init__(
        self,
        message: str,
        iteration: Optional[int] = None,
        generation: Optional[int] = None,
        time: Optional[float] = None,
    ):
        self.iteration = iteration
        self.generation = generation
        self.time = time
        super().__init__(message)

    def __str__(self) -> str:
        msg = super().__str__()
        context = []
        if self.iteration is not None:
            context.append(f"iteration={self.iteration}")
        if self.generation is not None:
            context.append(f"generation={self.generation}")
        if self.time is not None:
            context.append(f"time={self.time:.6g}")
        if context:
            msg = f"{msg} ({', '.join(context)})"
        return msg
