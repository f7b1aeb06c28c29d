"""Per-level error sequences indexed by the number of planes retained."""

from __future__ import annotations

import math
from typing import Protocol, Sequence

import numpy as np

from tiered_refactor.algorithms.bitplane import (
    dequantize_magnitude,
    quantize_magnitude,
    truncation_squared_errors,
)
from tiered_refactor.errors import EncodingInvariantViolation


def check_monotone(errors: Sequence[float], level: int | None = None) -> None:
    """Raise EncodingInvariantViolation unless errors are non-increasing."""
    for k in range(1, len(errors)):
        if errors[k] > errors[k - 1]:
            where = f"level {level}: " if level is not None else ""
            raise EncodingInvariantViolation(
                f"{where}error sequence increases at plane {k} "
                f"({errors[k - 1]!r} -> {errors[k]!r})"
            )


def analytic_max_errors(num_planes: int, level_max_error: float) -> list[float]:
    """[max, 2**(e-1), 2**(e-2), ...] where max = m * 2**e, 0.5 <= m < 1."""
    if level_max_error == 0:
        return [0.0] * (num_planes + 1)
    _, exponent = math.frexp(level_max_error)
    errors = [float(level_max_error)]
    errors.extend(math.ldexp(1.0, exponent - k) for k in range(1, num_planes + 1))
    return errors


class ErrorCollector(Protocol):
    name: str

    def collect_level_error(
        self,
        data: np.ndarray | None,
        count: int,
        num_planes: int,
        level_max_error: float,
    ) -> list[float]: ...


class MaxErrorCollector:
    """L-infinity error after retaining k planes.

    Without data the bound is derived from the level's maximum magnitude
    alone, which is what scheduling uses when only encoded planes exist.
    """

    name = "max"

    def collect_level_error(
        self,
        data: np.ndarray | None,
        count: int,
        num_planes: int,
        level_max_error: float,
    ) -> list[float]:
        if data is None or level_max_error == 0:
            return analytic_max_errors(num_planes, level_max_error)

        values = np.asarray(data, dtype=np.float64).reshape(-1)[:count]
        _, exponent = math.frexp(level_max_error)
        mag, negative, scale = quantize_magnitude(values, exponent, num_planes)
        errors = []
        for k in range(num_planes + 1):
            drop = np.uint64(num_planes - k)
            kept = (mag >> drop) << drop
            diff = np.abs(values - dequantize_magnitude(kept, negative, scale))
            errors.append(float(diff.max()) if diff.size else 0.0)
        return errors


class SquaredErrorCollector:
    """Sum of squared errors after retaining k planes."""

    name = "squared"

    def collect_level_error(
        self,
        data: np.ndarray | None,
        count: int,
        num_planes: int,
        level_max_error: float,
    ) -> list[float]:
        if data is None or level_max_error == 0:
            return [count * e * e for e in analytic_max_errors(num_planes, level_max_error)]
        values = np.asarray(data, dtype=np.float64).reshape(-1)[:count]
        _, exponent = math.frexp(level_max_error)
        return truncation_squared_errors(values, exponent, num_planes)
