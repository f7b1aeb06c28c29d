"""Bitplane encoders: one level's coefficients -> ordered precision increments.

Coefficients are converted to fixed point relative to the level's exponent
(``|x| < 2**max_exponent``) and split into ``num_planes`` byte streams, most
significant first. Decoding any leading prefix of the streams yields an
approximation whose squared error is at most the value the encoder reported
for that prefix length. Reported errors never increase with the prefix length.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol, Sequence

import numpy as np

MAX_PLANES = 60


@dataclass
class BitplaneStreams:
    """Encoder output for one level.

    Attributes:
        planes: ``num_planes`` byte buffers, most significant first
        sizes: Byte size of each plane (parallel to planes)
        squared_errors: ``num_planes + 1`` values; index k is the squared error
            after retaining the first k planes
    """

    planes: list[bytes]
    sizes: list[int] = field(default_factory=list)
    squared_errors: list[float] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.sizes:
            self.sizes = [len(p) for p in self.planes]


class BitplaneEncoder(Protocol):
    name: str

    def encode(
        self, buffer: np.ndarray, count: int, max_exponent: int, num_planes: int
    ) -> BitplaneStreams: ...

    def decode(
        self, planes: Sequence[bytes], count: int, max_exponent: int, num_planes: int
    ) -> np.ndarray: ...


def _check_planes(num_planes: int) -> None:
    if not 1 <= num_planes <= MAX_PLANES:
        raise ValueError(f"num_planes must be in [1, {MAX_PLANES}], got {num_planes}")


def _level_data(buffer: np.ndarray, count: int) -> np.ndarray:
    data = np.asarray(buffer, dtype=np.float64).reshape(-1)
    if data.size < count:
        raise ValueError(f"Buffer holds {data.size} values, expected {count}")
    return data[:count]


def quantize_magnitude(
    data: np.ndarray, max_exponent: int, num_planes: int
) -> tuple[np.ndarray, np.ndarray, float]:
    """Sign-magnitude fixed point: (magnitudes, negative mask, scale)."""
    scale = math.ldexp(1.0, num_planes - max_exponent)
    scaled = np.minimum(np.floor(np.abs(data) * scale), float(2**num_planes))
    mag = np.minimum(scaled.astype(np.uint64), np.uint64((1 << num_planes) - 1))
    return mag, np.signbit(data), scale


def dequantize_magnitude(mag: np.ndarray, negative: np.ndarray, scale: float) -> np.ndarray:
    values = mag.astype(np.float64) / scale
    return np.where(negative, -values, values)


def truncation_squared_errors(
    data: np.ndarray, max_exponent: int, num_planes: int
) -> list[float]:
    """Squared error of sign-magnitude truncation after 0..num_planes planes."""
    mag, negative, scale = quantize_magnitude(data, max_exponent, num_planes)
    errors = []
    for k in range(num_planes + 1):
        drop = np.uint64(num_planes - k)
        kept = (mag >> drop) << drop
        diff = data - dequantize_magnitude(kept, negative, scale)
        errors.append(float(np.dot(diff, diff)))
    return errors


class GroupedBitplaneEncoder:
    """Sign-magnitude bitplanes with signs emitted on significance.

    Plane k holds one packed bit per element, followed by the packed sign bits
    of the elements whose first set bit is in plane k. Truncation moves every
    magnitude monotonically towards its true value, so the reported errors are
    non-increasing by construction.
    """

    name = "grouped"

    def encode(
        self, buffer: np.ndarray, count: int, max_exponent: int, num_planes: int
    ) -> BitplaneStreams:
        _check_planes(num_planes)
        data = _level_data(buffer, count)
        mag, negative, _ = quantize_magnitude(data, max_exponent, num_planes)

        planes = []
        for k in range(num_planes):
            shift = np.uint64(num_planes - 1 - k)
            bits = ((mag >> shift) & np.uint64(1)).astype(np.uint8)
            higher = mag >> (shift + np.uint64(1))
            newly = (bits == 1) & (higher == 0)
            planes.append(
                np.packbits(bits).tobytes() + np.packbits(negative[newly]).tobytes()
            )

        errors = truncation_squared_errors(data, max_exponent, num_planes)
        return BitplaneStreams(planes=planes, squared_errors=errors)

    def decode(
        self, planes: Sequence[bytes], count: int, max_exponent: int, num_planes: int
    ) -> np.ndarray:
        _check_planes(num_planes)
        if len(planes) > num_planes:
            raise ValueError(f"Got {len(planes)} planes, encoder produced {num_planes}")
        scale = math.ldexp(1.0, num_planes - max_exponent)
        mag = np.zeros(count, dtype=np.uint64)
        negative = np.zeros(count, dtype=bool)
        nbytes = (count + 7) // 8

        for k, plane in enumerate(planes):
            raw = np.frombuffer(plane, dtype=np.uint8)
            if raw.size < nbytes:
                raise ValueError(f"Plane {k} is truncated: {raw.size} < {nbytes} bytes")
            bits = np.unpackbits(raw[:nbytes], count=count).astype(np.uint64)
            newly = (bits == 1) & (mag == 0)
            n_new = int(newly.sum())
            if raw.size - nbytes < (n_new + 7) // 8:
                raise ValueError(f"Plane {k} is missing sign bits")
            negative[newly] = np.unpackbits(raw[nbytes:], count=n_new).astype(bool)
            mag |= bits << np.uint64(num_planes - 1 - k)

        return dequantize_magnitude(mag, negative, scale)


# Digits at odd positions carry negative weight
_NEGABINARY_MASK = np.uint64(0xAAAAAAAAAAAAAAAA)
_POSITIVE_DIGITS = 0x5555555555555555
_NEGATIVE_DIGITS = 0xAAAAAAAAAAAAAAAA


def _to_negabinary(q: np.ndarray) -> np.ndarray:
    return (q.astype(np.uint64) + _NEGABINARY_MASK) ^ _NEGABINARY_MASK


def _from_negabinary(nb: np.ndarray) -> np.ndarray:
    return ((nb ^ _NEGABINARY_MASK) - _NEGABINARY_MASK).view(np.int64)


def suffix_centre(dropped: int) -> float:
    """Midpoint of the integers the ``dropped`` low negabinary digits can encode."""
    low = (1 << dropped) - 1
    return ((_POSITIVE_DIGITS & low) - (_NEGATIVE_DIGITS & low)) / 2


class NegaBinaryBitplaneEncoder:
    """Base -2 fixed point digits, one packed bit per element per plane.

    No sign bits are needed. Two planes of headroom keep every value
    representable with ``num_planes`` digits. A prefix of k > 0 planes is
    decoded at the centre of the range its missing digits can span. That
    choice is not monotone per element, so the reported error for k planes
    is the largest actual error over all prefixes of at least k planes: an
    upper bound that never increases, exact once every plane is kept.
    """

    name = "negabinary"
    headroom = 2

    def _scale(self, max_exponent: int, num_planes: int) -> float:
        return math.ldexp(1.0, num_planes - max_exponent - self.headroom)

    def _reconstruct(self, kept: np.ndarray, k: int, num_planes: int, scale: float) -> np.ndarray:
        if k == 0:
            return np.zeros(kept.shape, dtype=np.float64)
        return (_from_negabinary(kept) + suffix_centre(num_planes - k)) / scale

    def encode(
        self, buffer: np.ndarray, count: int, max_exponent: int, num_planes: int
    ) -> BitplaneStreams:
        _check_planes(num_planes)
        data = _level_data(buffer, count)
        scale = self._scale(max_exponent, num_planes)
        bound = float(2 ** max(num_planes - self.headroom, 0))
        q = np.clip(np.rint(data * scale), -bound + 1, bound - 1).astype(np.int64)
        nb = _to_negabinary(q)

        planes = []
        for k in range(num_planes):
            shift = np.uint64(num_planes - 1 - k)
            bits = ((nb >> shift) & np.uint64(1)).astype(np.uint8)
            planes.append(np.packbits(bits).tobytes())

        errors = []
        for k in range(num_planes + 1):
            drop = np.uint64(num_planes - k)
            kept = (nb >> drop) << drop
            diff = data - self._reconstruct(kept, k, num_planes, scale)
            errors.append(float(np.dot(diff, diff)))
        for k in range(num_planes - 1, -1, -1):
            errors[k] = max(errors[k], errors[k + 1])
        return BitplaneStreams(planes=planes, squared_errors=errors)

    def decode(
        self, planes: Sequence[bytes], count: int, max_exponent: int, num_planes: int
    ) -> np.ndarray:
        _check_planes(num_planes)
        if len(planes) > num_planes:
            raise ValueError(f"Got {len(planes)} planes, encoder produced {num_planes}")
        scale = self._scale(max_exponent, num_planes)
        nb = np.zeros(count, dtype=np.uint64)
        nbytes = (count + 7) // 8
        for k, plane in enumerate(planes):
            raw = np.frombuffer(plane, dtype=np.uint8)
            if raw.size < nbytes:
                raise ValueError(f"Plane {k} is truncated: {raw.size} < {nbytes} bytes")
            bits = np.unpackbits(raw[:nbytes], count=count).astype(np.uint64)
            nb |= bits << np.uint64(num_planes - 1 - k)
        return self._reconstruct(nb, len(planes), num_planes, scale)
