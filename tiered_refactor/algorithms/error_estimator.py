"""Mapping of per-level errors onto one global error estimate.

Every estimator is a per-level linear weighting: ``estimate_error`` scales a
level's raw error into global units and ``estimate_error_gain`` returns the
reduction in the global estimate when a level moves from one error value to
another. The scheduler only depends on these two operations.
"""

from __future__ import annotations

import math
from typing import Protocol


class ErrorEstimator(Protocol):
    name: str

    def estimate_error(self, error: float, level: int) -> float: ...

    def estimate_error_gain(
        self, accumulated_error: float, error_before: float, error_after: float, level: int
    ) -> float: ...


class _WeightedEstimator:
    name = "weighted"

    def weight(self, level: int) -> float:
        raise NotImplementedError

    def estimate_error(self, error: float, level: int) -> float:
        return self.weight(level) * error

    def estimate_error_gain(
        self, accumulated_error: float, error_before: float, error_after: float, level: int
    ) -> float:
        # Gain is independent of the accumulated error for linear weightings
        return self.weight(level) * (error_before - error_after)


class MaxErrorEstimatorOB(_WeightedEstimator):
    """L-infinity bound for orthogonal bases: each level scaled by (1 + sqrt(3)/2)**d."""

    name = "max_ob"

    def __init__(self, num_dims: int):
        if num_dims < 1:
            raise ValueError(f"num_dims must be >= 1, got {num_dims}")
        self.num_dims = num_dims
        self._weight = (1.0 + math.sqrt(3.0) / 2.0) ** num_dims

    def weight(self, level: int) -> float:
        return self._weight


class MaxErrorEstimatorHB(_WeightedEstimator):
    """L-infinity bound for hierarchical bases: plain sum of level maxima."""

    name = "max_hb"

    def weight(self, level: int) -> float:
        return 1.0


class SNormErrorEstimator(_WeightedEstimator):
    """Squared s-norm: level i weighted by 2**(2 s i).

    Intended for squared error sequences; ``s = 0`` gives the plain L2 sum.
    """

    name = "snorm"

    def __init__(self, num_dims: int, target_level: int, s: float = 0.0):
        self.num_dims = num_dims
        self.target_level = target_level
        self.s = s
        self._weights = [2.0 ** (2.0 * s * i) for i in range(target_level + 1)]

    def weight(self, level: int) -> float:
        if not 0 <= level < len(self._weights):
            raise IndexError(f"level {level} outside [0, {len(self._weights)})")
        return self._weights[level]
