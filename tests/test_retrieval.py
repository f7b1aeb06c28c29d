"""Tests for retrieval-order scheduling."""

from __future__ import annotations

import logging
import math

import numpy as np
import pytest

from tiered_refactor.algorithms.error_estimator import MaxErrorEstimatorHB, MaxErrorEstimatorOB
from tiered_refactor.algorithms.retrieval import (
    RetrievalProgress,
    build_tier,
    compute_retrieval_order,
    schedule_tiers,
)
from tiered_refactor.errors import ConfigurationError, EncodingInvariantViolation

SIZES_A = [[10, 10, 10, 10]]
ERRORS_A = [[100.0, 50.0, 25.0, 12.0, 6.0]]


@pytest.fixture
def estimator() -> MaxErrorEstimatorHB:
    return MaxErrorEstimatorHB()


def random_levels(
    rng: np.random.Generator, num_levels: int, num_planes: int
) -> tuple[list[list[int]], list[list[float]]]:
    """Random sizes and non-increasing error sequences ending at zero."""
    sizes = [rng.integers(1, 64, size=num_planes).tolist() for _ in range(num_levels)]
    errors = []
    for level in range(num_levels):
        raw = np.sort(rng.random(num_planes))[::-1] * 100.0 / (level + 1)
        errors.append(raw.tolist() + [0.0])
    return sizes, errors


class TestScenarios:
    """Reference scenarios for a single level and for tier chaining."""

    def test_single_level_tolerance(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that plane 0 is mandatory and one greedy plane meets 40."""
        result = compute_retrieval_order(
            SIZES_A, ERRORS_A, 40.0, RetrievalProgress.initial(1), estimator
        )
        assert result.order == [(0, 0), (0, 1)]
        assert result.estimated_error == 25.0
        assert result.tolerance_met
        assert result.progress.cursors == (2,)

    def test_second_tier_continues(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that a stricter second tier only fetches planes past the first."""
        first = compute_retrieval_order(
            SIZES_A, ERRORS_A, 40.0, RetrievalProgress.initial(1), estimator
        )
        second = compute_retrieval_order(SIZES_A, ERRORS_A, 10.0, first.progress, estimator)

        assert all(plane >= first.progress[level] for level, plane in second.order)
        assert second.order == [(0, 2), (0, 3)]
        assert second.estimated_error < 10.0
        assert second.progress.cursors == (4,)

    def test_fully_fetched_level_skipped(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that a level already at num_planes is never scheduled."""
        sizes = [[10, 10, 10, 10], [5, 5, 5]]
        errors = [[100.0, 50.0, 25.0, 12.0, 6.0], [40.0, 20.0, 10.0, 5.0]]
        progress = RetrievalProgress((4, 0))

        result = compute_retrieval_order(sizes, errors, 12.0, progress, estimator)

        assert all(level == 1 for level, _ in result.order)
        assert result.order == [(1, 0), (1, 1), (1, 2)]
        assert result.progress.cursors == (4, 3)
        assert result.tolerance_met

    def test_input_progress_unchanged(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that the caller's progress object is not modified."""
        progress = RetrievalProgress.initial(1)
        compute_retrieval_order(SIZES_A, ERRORS_A, 40.0, progress, estimator)
        assert progress.cursors == (0,)


class TestBootstrap:
    """Tests for the bootstrap pass."""

    def test_prefix_early_exit(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that levels past a sufficient prefix are never touched."""
        sizes = [[10], [10], [10]]
        errors = [[100.0, 1.0], [50.0, 0.5], [0.1, 0.0]]

        result = compute_retrieval_order(
            sizes, errors, 2.0, RetrievalProgress.initial(3), estimator
        )

        assert result.order == [(0, 0), (1, 0)]
        assert result.active_levels == 2
        assert result.progress.cursors == (1, 1, 0)
        assert result.estimated_error == pytest.approx(1.6)
        assert result.tolerance_met

    def test_plane_zero_mandatory_even_with_zero_gain(
        self, estimator: MaxErrorEstimatorHB
    ) -> None:
        """Test that plane 0 is fetched for an active level whose errors are all zero."""
        sizes = [[4, 4], [4, 4]]
        errors = [[10.0, 5.0, 2.0], [0.0, 0.0, 0.0]]

        result = compute_retrieval_order(
            sizes, errors, 1.0, RetrievalProgress.initial(2), estimator
        )

        assert (1, 0) in result.order
        assert result.order[:2] == [(0, 0), (1, 0)]

    def test_empty_level_is_skipped(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that a level without planes contributes its only error term."""
        sizes = [[], [10, 10]]
        errors = [[0.5], [8.0, 4.0, 1.0]]

        result = compute_retrieval_order(
            sizes, errors, 2.0, RetrievalProgress.initial(2), estimator
        )

        assert result.order == [(1, 0), (1, 1)]
        assert result.estimated_error == pytest.approx(1.5)


class TestGreedy:
    """Tests for the greedy main loop."""

    def test_prefers_higher_unit_gain(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that the cheaper plane per unit of error is taken first."""
        sizes = [[1, 100], [1, 1]]
        errors = [[10.0, 8.0, 0.0], [10.0, 8.0, 4.0]]

        result = compute_retrieval_order(
            sizes, errors, 9.0, RetrievalProgress.initial(2), estimator
        )

        # Level 0 plane 1 gains 8 for 100 bytes, level 1 plane 1 gains 4 for 1 byte
        assert result.order == [(0, 0), (1, 0), (1, 1), (0, 1)]
        assert result.estimated_error == pytest.approx(4.0)

    def test_tie_goes_to_lower_level(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that equal unit gains are resolved in favour of the lower level."""
        sizes = [[10, 10], [10, 10]]
        errors = [[8.0, 4.0, 2.0], [8.0, 4.0, 2.0]]

        result = compute_retrieval_order(
            sizes, errors, 0.5, RetrievalProgress.initial(2), estimator
        )

        assert result.order == [(0, 0), (1, 0), (0, 1), (1, 1)]

    def test_zero_size_plane_first(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that a free plane with positive gain is fetched before any other."""
        sizes = [[10, 10], [10, 0]]
        errors = [[100.0, 50.0, 30.0], [50.0, 40.0, 39.0]]

        result = compute_retrieval_order(
            sizes, errors, 60.0, RetrievalProgress.initial(2), estimator
        )

        assert result.order[2] == (1, 1)

    def test_unreachable_tolerance(
        self, estimator: MaxErrorEstimatorHB, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that exhausting every plane is reported, not raised."""
        sizes = [[10, 10, 10, 10], [5, 5, 5]]
        errors = [[100.0, 50.0, 25.0, 12.0, 6.0], [40.0, 20.0, 10.0, 5.0]]

        with caplog.at_level(logging.WARNING, logger="tiered_refactor.algorithms.retrieval"):
            result = compute_retrieval_order(
                sizes, errors, 1.0, RetrievalProgress.initial(2), estimator
            )

        assert not result.tolerance_met
        assert result.estimated_error == pytest.approx(11.0)
        assert result.progress.cursors == (4, 3)
        assert len(result.order) == 7
        assert "unreachable" in caplog.text

    def test_weighted_estimator(self) -> None:
        """Test that the estimator weight scales the accumulated error."""
        estimator = MaxErrorEstimatorOB(2)
        weight = (1.0 + math.sqrt(3.0) / 2.0) ** 2

        result = compute_retrieval_order(
            SIZES_A, ERRORS_A, 40.0 * weight, RetrievalProgress.initial(1), estimator
        )

        assert result.order == [(0, 0), (0, 1)]
        assert result.estimated_error == pytest.approx(25.0 * weight)


class TestProperties:
    """Properties that hold for any non-increasing error model."""

    @pytest.mark.parametrize("seed", range(8))
    def test_progress_monotone_and_no_duplicates(
        self, seed: int, estimator: MaxErrorEstimatorHB
    ) -> None:
        """Test progress growth and contiguous per-level fetches across tiers."""
        rng = np.random.default_rng(seed)
        sizes, errors = random_levels(rng, num_levels=4, num_planes=6)
        tolerances = [80.0, 20.0, 5.0, 0.5]

        results = schedule_tiers(sizes, errors, tolerances, estimator)

        previous = (0, 0, 0, 0)
        fetched: dict[int, list[int]] = {level: [] for level in range(4)}
        for result in results:
            assert all(a <= b <= 6 for a, b in zip(previous, result.progress.cursors))
            previous = result.progress.cursors
            for level, plane in result.order:
                fetched[level].append(plane)

        pairs = [pair for result in results for pair in result.order]
        assert len(pairs) == len(set(pairs))
        for level, planes in fetched.items():
            assert planes == list(range(previous[level]))

    @pytest.mark.parametrize("seed", range(8))
    def test_minimal_at_margin(self, seed: int, estimator: MaxErrorEstimatorHB) -> None:
        """Test that dropping the last greedy plane breaks the tolerance."""
        rng = np.random.default_rng(100 + seed)
        sizes, errors = random_levels(rng, num_levels=3, num_planes=8)
        tolerance = 10.0

        result = compute_retrieval_order(
            sizes, errors, tolerance, RetrievalProgress.initial(3), estimator
        )

        assert result.tolerance_met
        assert result.estimated_error < tolerance
        level, plane = result.order[-1]
        if plane > 0:
            without_last = result.estimated_error + errors[level][plane] - errors[level][plane + 1]
            assert without_last >= tolerance

    def test_accumulated_error_matches_progress(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that the reported error is the sum of errors at the final cursors."""
        rng = np.random.default_rng(7)
        sizes, errors = random_levels(rng, num_levels=3, num_planes=5)

        result = compute_retrieval_order(
            sizes, errors, 3.0, RetrievalProgress.initial(3), estimator
        )

        expected = sum(errors[i][c] for i, c in enumerate(result.progress.cursors))
        assert result.estimated_error == pytest.approx(expected)


class TestValidation:
    """Tests for input validation."""

    @pytest.mark.parametrize("tolerance", [0.0, -1.0, float("nan")])
    def test_bad_tolerance(self, tolerance: float, estimator: MaxErrorEstimatorHB) -> None:
        """Test that a non-positive tolerance is a configuration error."""
        with pytest.raises(ConfigurationError, match="Tolerance") as exc_info:
            compute_retrieval_order(
                SIZES_A, ERRORS_A, tolerance, RetrievalProgress.initial(1), estimator
            )
        assert exc_info.value.parameter == "tolerance"

    def test_increasing_errors(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that a non-monotone error sequence is fatal."""
        with pytest.raises(EncodingInvariantViolation, match="level 0"):
            compute_retrieval_order(
                [[1, 1]], [[4.0, 5.0, 1.0]], 1.0, RetrievalProgress.initial(1), estimator
            )

    def test_error_length_mismatch(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that errors must have one more entry than sizes."""
        with pytest.raises(ValueError, match="error values"):
            compute_retrieval_order(
                [[1, 1]], [[4.0, 2.0]], 1.0, RetrievalProgress.initial(1), estimator
            )

    def test_progress_length_mismatch(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that progress must track every level."""
        with pytest.raises(ValueError, match="Progress tracks"):
            compute_retrieval_order(
                SIZES_A, ERRORS_A, 1.0, RetrievalProgress.initial(2), estimator
            )

    def test_progress_out_of_range(self, estimator: MaxErrorEstimatorHB) -> None:
        """Test that a cursor past num_planes is rejected."""
        with pytest.raises(ValueError, match="outside"):
            compute_retrieval_order(SIZES_A, ERRORS_A, 1.0, RetrievalProgress((5,)), estimator)


class TestBuildTier:
    """Tests for blob and manifest row construction."""

    def test_rows_are_contiguous(self) -> None:
        """Test that rows tile the blob in fetch order."""
        planes = [[b"aa", b"bbb"], [b"c", b""]]
        sizes = [[2, 3], [1, 0]]

        blob, rows = build_tier(1, [(0, 0), (1, 0), (0, 1), (1, 1)], planes, sizes)

        assert blob == b"aacbbb"
        assert [(r.level, r.plane, r.tier, r.offset, r.length) for r in rows] == [
            (0, 0, 1, 0, 2),
            (1, 0, 1, 2, 1),
            (0, 1, 1, 3, 3),
            (1, 1, 1, 6, 0),
        ]

    def test_empty_order(self) -> None:
        """Test that an empty plan gives an empty blob."""
        blob, rows = build_tier(0, [], [[b"x"]], [[1]])
        assert blob == b""
        assert rows == []

    def test_size_mismatch(self) -> None:
        """Test that a recorded size must match the plane buffer."""
        with pytest.raises(ValueError, match="recorded size"):
            build_tier(0, [(0, 0)], [[b"abc"]], [[2]])
