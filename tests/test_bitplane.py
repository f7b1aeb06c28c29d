"""Tests for bitplane encoders."""

from __future__ import annotations

import math

import numpy as np
import pytest

from tiered_refactor.algorithms.bitplane import (
    BitplaneStreams,
    GroupedBitplaneEncoder,
    NegaBinaryBitplaneEncoder,
    quantize_magnitude,
    suffix_centre,
    truncation_squared_errors,
)


def exponent_of(data: np.ndarray) -> int:
    return math.frexp(float(np.max(np.abs(data))))[1]


@pytest.fixture
def level_data() -> np.ndarray:
    """Coefficients spanning a few orders of magnitude."""
    rng = np.random.default_rng(0)
    return rng.standard_normal(257) * np.logspace(-3, 1, 257)


class TestBitplaneStreams:
    """Test the encoder output container."""

    def test_sizes_filled_from_planes(self) -> None:
        """Test that sizes default to the plane lengths."""
        streams = BitplaneStreams(planes=[b"ab", b"", b"cde"])
        assert streams.sizes == [2, 0, 3]


class TestGroupedEncoder:
    """Test the sign-magnitude grouped encoder."""

    def test_plane_count_and_sizes(self, level_data: np.ndarray) -> None:
        """Test that num_planes planes with matching sizes are produced."""
        encoder = GroupedBitplaneEncoder()
        streams = encoder.encode(level_data, level_data.size, exponent_of(level_data), 16)

        assert len(streams.planes) == 16
        assert streams.sizes == [len(p) for p in streams.planes]
        assert len(streams.squared_errors) == 17
        # At least one packed bit per element in every plane
        assert all(size >= (level_data.size + 7) // 8 for size in streams.sizes)

    def test_errors_non_increasing(self, level_data: np.ndarray) -> None:
        """Test that reported errors never grow with more planes."""
        streams = GroupedBitplaneEncoder().encode(
            level_data, level_data.size, exponent_of(level_data), 24
        )
        errors = streams.squared_errors
        assert all(b <= a for a, b in zip(errors, errors[1:]))
        assert errors[0] == pytest.approx(float(np.dot(level_data, level_data)))

    @pytest.mark.parametrize("k", [0, 1, 5, 12, 20])
    def test_prefix_decode_matches_reported_error(self, level_data: np.ndarray, k: int) -> None:
        """Test that decoding k planes reproduces the k-th reported error."""
        encoder = GroupedBitplaneEncoder()
        exponent = exponent_of(level_data)
        streams = encoder.encode(level_data, level_data.size, exponent, 20)

        approx = encoder.decode(streams.planes[:k], level_data.size, exponent, 20)
        diff = level_data - approx
        assert float(np.dot(diff, diff)) == pytest.approx(streams.squared_errors[k], abs=1e-15)

    def test_full_decode_precision(self, level_data: np.ndarray) -> None:
        """Test that all planes recover every value to within one quantum."""
        encoder = GroupedBitplaneEncoder()
        exponent = exponent_of(level_data)
        streams = encoder.encode(level_data, level_data.size, exponent, 32)

        approx = encoder.decode(streams.planes, level_data.size, exponent, 32)
        assert np.max(np.abs(level_data - approx)) < math.ldexp(1.0, exponent - 32)
        assert np.all(np.sign(approx[approx != 0]) == np.sign(level_data[approx != 0]))

    def test_all_zero_level(self) -> None:
        """Test that an all-zero level still emits every plane with zero error."""
        data = np.zeros(10)
        streams = GroupedBitplaneEncoder().encode(data, 10, 0, 8)

        assert len(streams.planes) == 8
        assert all(size >= 0 for size in streams.sizes)
        assert streams.squared_errors == [0.0] * 9

    def test_only_count_values_encoded(self) -> None:
        """Test that values past count are ignored."""
        data = np.array([0.5, -0.25, 99.0])
        encoder = GroupedBitplaneEncoder()
        streams = encoder.encode(data, 2, 0, 8)
        approx = encoder.decode(streams.planes, 2, 0, 8)
        np.testing.assert_allclose(approx, [0.5, -0.25])

    def test_short_buffer(self) -> None:
        """Test that a buffer smaller than count is rejected."""
        with pytest.raises(ValueError, match="expected 5"):
            GroupedBitplaneEncoder().encode(np.ones(3), 5, 1, 8)

    @pytest.mark.parametrize("num_planes", [0, 61])
    def test_plane_count_range(self, num_planes: int) -> None:
        """Test that num_planes must lie in [1, 60]."""
        with pytest.raises(ValueError, match="num_planes"):
            GroupedBitplaneEncoder().encode(np.ones(3), 3, 1, num_planes)

    def test_truncated_plane(self, level_data: np.ndarray) -> None:
        """Test that a plane shorter than its bit array is rejected."""
        encoder = GroupedBitplaneEncoder()
        exponent = exponent_of(level_data)
        streams = encoder.encode(level_data, level_data.size, exponent, 8)
        with pytest.raises(ValueError, match="truncated"):
            encoder.decode([streams.planes[0][:5]], level_data.size, exponent, 8)

    def test_too_many_planes(self) -> None:
        """Test that more planes than encoded are rejected."""
        with pytest.raises(ValueError, match="Got 3 planes"):
            GroupedBitplaneEncoder().decode([b"\x00"] * 3, 4, 0, 2)


class TestNegaBinaryEncoder:
    """Test the negabinary encoder."""

    @pytest.mark.parametrize("seed", range(20))
    def test_errors_non_increasing(self, seed: int) -> None:
        """Test that reported errors never grow with more planes."""
        data = np.random.default_rng(seed).standard_normal(64)
        streams = NegaBinaryBitplaneEncoder().encode(data, 64, exponent_of(data), 16)
        errors = streams.squared_errors
        assert all(b <= a for a, b in zip(errors, errors[1:]))
        assert errors[0] >= float(np.dot(data, data))
        assert errors[-1] < errors[0]

    @pytest.mark.parametrize("dropped, centre", [(0, 0.0), (1, 0.5), (2, -0.5), (3, 1.5), (4, -2.5)])
    def test_suffix_centre(self, dropped: int, centre: float) -> None:
        """Test the midpoint of the values the low digits can take."""
        assert suffix_centre(dropped) == centre

    def test_planes_have_no_sign_bytes(self, level_data: np.ndarray) -> None:
        """Test that every plane is exactly one packed bit per element."""
        streams = NegaBinaryBitplaneEncoder().encode(
            level_data, level_data.size, exponent_of(level_data), 16
        )
        assert streams.sizes == [(level_data.size + 7) // 8] * 16

    @pytest.mark.parametrize("k", [0, 3, 10, 24])
    def test_prefix_decode_within_reported_error(self, level_data: np.ndarray, k: int) -> None:
        """Test that decoding k planes stays within the k-th reported error."""
        encoder = NegaBinaryBitplaneEncoder()
        exponent = exponent_of(level_data)
        streams = encoder.encode(level_data, level_data.size, exponent, 24)

        approx = encoder.decode(streams.planes[:k], level_data.size, exponent, 24)
        diff = level_data - approx
        assert float(np.dot(diff, diff)) <= streams.squared_errors[k] * (1 + 1e-12)
        if k == 24:
            assert float(np.dot(diff, diff)) == pytest.approx(streams.squared_errors[k], abs=1e-15)

    def test_prefix_decode_bound(self, level_data: np.ndarray) -> None:
        """Test that k planes leave at most 2**(e + 1 - k) plus one quantum per value."""
        encoder = NegaBinaryBitplaneEncoder()
        exponent = exponent_of(level_data)
        streams = encoder.encode(level_data, level_data.size, exponent, 24)

        for k in range(1, 25):
            approx = encoder.decode(streams.planes[:k], level_data.size, exponent, 24)
            limit = math.ldexp(1.0, exponent + 1 - k) + math.ldexp(1.0, exponent + 2 - 24)
            assert np.max(np.abs(level_data - approx)) <= limit

    def test_full_decode_precision(self, level_data: np.ndarray) -> None:
        """Test that all planes recover values to within the headroom-scaled quantum."""
        encoder = NegaBinaryBitplaneEncoder()
        exponent = exponent_of(level_data)
        streams = encoder.encode(level_data, level_data.size, exponent, 40)

        approx = encoder.decode(streams.planes, level_data.size, exponent, 40)
        assert np.max(np.abs(level_data - approx)) < math.ldexp(1.0, exponent + 2 - 40)

    def test_negative_values(self) -> None:
        """Test that negative values survive without sign bits."""
        data = np.array([-0.75, 0.5, -0.125, 0.0])
        encoder = NegaBinaryBitplaneEncoder()
        streams = encoder.encode(data, 4, 0, 12)
        np.testing.assert_allclose(encoder.decode(streams.planes, 4, 0, 12), data)


class TestQuantization:
    """Test the shared fixed-point helpers."""

    def test_quantize_magnitude(self) -> None:
        """Test magnitudes, signs and scale for a simple case."""
        mag, negative, scale = quantize_magnitude(np.array([0.5, -0.75]), 0, 4)
        assert scale == 16.0
        assert mag.tolist() == [8, 12]
        assert negative.tolist() == [False, True]

    def test_truncation_errors(self) -> None:
        """Test squared errors for a value with two set bits."""
        # 0.75 = 0.11b: both planes needed
        errors = truncation_squared_errors(np.array([0.75]), 0, 2)
        assert errors == pytest.approx([0.5625, 0.0625, 0.0])
