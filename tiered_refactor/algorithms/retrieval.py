"""Greedy retrieval-order scheduling across tolerance tiers.

Given every level's plane sizes and error sequence, ``compute_retrieval_order``
picks the planes to fetch, in order, until the estimated global error drops
below a tolerance. Selection is greedy on unit gain: estimated error reduction
of a level's next plane divided by the plane's byte size.

Progress is explicit: each call takes a :class:`RetrievalProgress` and returns
the advanced one inside its result. Threading the returned progress into the
next call makes every tier strictly incremental, so tiers must be scheduled in
order and never concurrently on the same progress.
"""

from __future__ import annotations

import heapq
import logging
import math
from dataclasses import dataclass
from typing import Sequence

from tiered_refactor.algorithms.error_collector import check_monotone
from tiered_refactor.algorithms.error_estimator import ErrorEstimator
from tiered_refactor.core.serialization import QueryRow
from tiered_refactor.errors import ConfigurationError

logger = logging.getLogger(__name__)

FetchPlan = list[tuple[int, int]]


@dataclass(frozen=True)
class RetrievalProgress:
    """Number of leading planes already selected, per level."""

    cursors: tuple[int, ...]

    @classmethod
    def initial(cls, num_levels: int) -> RetrievalProgress:
        return cls(tuple([0] * num_levels))

    def __len__(self) -> int:
        return len(self.cursors)

    def __getitem__(self, level: int) -> int:
        return self.cursors[level]


@dataclass(frozen=True)
class RetrievalResult:
    """Outcome of one scheduling call.

    Attributes:
        order: (level, plane) pairs in fetch order
        progress: Progress after this call; pass it to the next tier
        estimated_error: Global error estimate once ``order`` is fetched
        tolerance: The requested tolerance
        tolerance_met: False when every active plane was exhausted first
        active_levels: Levels considered after the prefix early exit
    """

    order: FetchPlan
    progress: RetrievalProgress
    estimated_error: float
    tolerance: float
    tolerance_met: bool
    active_levels: int


def _validate(
    level_sizes: Sequence[Sequence[int]],
    level_errors: Sequence[Sequence[float]],
    tolerance: float,
    progress: RetrievalProgress,
) -> None:
    if tolerance <= 0 or math.isnan(tolerance):
        raise ConfigurationError(f"Tolerance must be positive, got {tolerance}", "tolerance")
    if len(level_sizes) != len(level_errors):
        raise ValueError(
            f"Got sizes for {len(level_sizes)} levels but errors for {len(level_errors)}"
        )
    if len(progress) != len(level_sizes):
        raise ValueError(
            f"Progress tracks {len(progress)} levels, data has {len(level_sizes)}"
        )
    for level, (sizes, errors) in enumerate(zip(level_sizes, level_errors)):
        if len(errors) != len(sizes) + 1:
            raise ValueError(
                f"Level {level}: expected {len(sizes) + 1} error values, got {len(errors)}"
            )
        if not 0 <= progress[level] <= len(sizes):
            raise ValueError(
                f"Level {level}: progress {progress[level]} outside [0, {len(sizes)}]"
            )
        check_monotone(errors, level)


def _unit_gain(
    estimator: ErrorEstimator,
    accumulated_error: float,
    sizes: Sequence[int],
    errors: Sequence[float],
    level: int,
    cursor: int,
) -> float:
    gain = estimator.estimate_error_gain(
        accumulated_error, errors[cursor], errors[cursor + 1], level
    )
    size = sizes[cursor]
    if size == 0:
        return math.inf if gain > 0 else 0.0
    return gain / size


def compute_retrieval_order(
    level_sizes: Sequence[Sequence[int]],
    level_errors: Sequence[Sequence[float]],
    tolerance: float,
    progress: RetrievalProgress,
    estimator: ErrorEstimator,
) -> RetrievalResult:
    """Select the planes needed to bring the estimated error below tolerance.

    The bootstrap pass walks levels coarsest first, fetching plane 0 of every
    level that has nothing selected yet and seeding the heap with each level's
    next unit gain. It stops early once fully fetching the levels seen so far
    would already meet the tolerance; finer levels are then never touched.
    The main loop pops the best unit gain until the tolerance is met or the
    heap is empty. Equal unit gains go to the lower level.

    Args:
        level_sizes: Per-level plane byte sizes
        level_errors: Per-level non-increasing errors, one more than planes
        tolerance: Target global estimated error (strictly positive)
        progress: Planes already selected by earlier tiers
        estimator: Maps level errors onto the global estimate

    Returns:
        RetrievalResult with the fetch order and the advanced progress

    Raises:
        ConfigurationError: If tolerance is not positive
        ValueError: If the inputs disagree in length or progress is out of range
        EncodingInvariantViolation: If an error sequence increases
    """
    _validate(level_sizes, level_errors, tolerance, progress)

    cursors = list(progress.cursors)
    num_levels = len(cursors)
    order: FetchPlan = []

    def estimate(level: int, cursor: int) -> float:
        return estimator.estimate_error(level_errors[level][cursor], level)

    accumulated_error = sum(estimate(i, cursors[i]) for i in range(num_levels))
    heap: list[tuple[float, int]] = []

    min_error = accumulated_error
    for level in range(num_levels):
        sizes = level_sizes[level]
        errors = level_errors[level]
        min_error -= estimate(level, cursors[level])
        min_error += estimate(level, len(errors) - 1)

        # Coarsest precision of every active level is mandatory
        if cursors[level] == 0 and sizes:
            accumulated_error -= estimate(level, 0)
            accumulated_error += estimate(level, 1)
            order.append((level, 0))
            cursors[level] = 1

        if cursors[level] < len(sizes):
            gain = _unit_gain(estimator, accumulated_error, sizes, errors, level, cursors[level])
            heapq.heappush(heap, (-gain, level))

        if min_error < tolerance:
            num_levels = level + 1
            break

    tolerance_met = accumulated_error < tolerance
    while not tolerance_met and heap:
        _, level = heapq.heappop(heap)
        sizes = level_sizes[level]
        errors = level_errors[level]
        plane = cursors[level]
        accumulated_error -= estimate(level, plane)
        accumulated_error += estimate(level, plane + 1)
        tolerance_met = accumulated_error < tolerance
        order.append((level, plane))
        cursors[level] = plane + 1
        if cursors[level] < len(sizes):
            gain = _unit_gain(estimator, accumulated_error, sizes, errors, level, cursors[level])
            heapq.heappush(heap, (-gain, level))

    if not tolerance_met:
        logger.warning(
            f"Tolerance {tolerance:g} unreachable; best estimated error is "
            f"{accumulated_error:g} after {len(order)} planes"
        )
    logger.debug(
        f"Scheduled {len(order)} planes over {num_levels} active levels "
        f"(estimated error {accumulated_error:g}, tolerance {tolerance:g})"
    )
    return RetrievalResult(
        order=order,
        progress=RetrievalProgress(tuple(cursors)),
        estimated_error=accumulated_error,
        tolerance=tolerance,
        tolerance_met=tolerance_met,
        active_levels=num_levels,
    )


def schedule_tiers(
    level_sizes: Sequence[Sequence[int]],
    level_errors: Sequence[Sequence[float]],
    tolerances: Sequence[float],
    estimator: ErrorEstimator,
    progress: RetrievalProgress | None = None,
) -> list[RetrievalResult]:
    """Schedule every tier in the given order, threading progress through."""
    if progress is None:
        progress = RetrievalProgress.initial(len(level_sizes))
    results = []
    for tolerance in tolerances:
        result = compute_retrieval_order(
            level_sizes, level_errors, tolerance, progress, estimator
        )
        results.append(result)
        progress = result.progress
    return results


def build_tier(
    tier_index: int,
    order: FetchPlan,
    planes: Sequence[Sequence[bytes]],
    sizes: Sequence[Sequence[int]],
) -> tuple[bytes, list[QueryRow]]:
    """Concatenate a tier's planes in fetch order and record where each lands.

    Returns:
        (blob, rows) with one manifest row per fetched plane
    """
    chunks = []
    rows = []
    offset = 0
    for level, plane in order:
        data = planes[level][plane]
        length = sizes[level][plane]
        if len(data) != length:
            raise ValueError(
                f"Level {level} plane {plane}: recorded size {length}, "
                f"buffer holds {len(data)} bytes"
            )
        chunks.append(data)
        rows.append(QueryRow(level, plane, tier_index, offset, length))
        offset += length
    return b"".join(chunks), rows
