"""Hierarchical decomposition of N-d fields into nested coefficient boxes.

Both decomposers lay coefficients out so that level ``i`` (0 = coarsest) is
identified purely by geometry: it owns every coefficient inside box
``level_shapes[i]`` that is not inside ``level_shapes[i - 1]``. Box shapes are
nested and the last box is the full coefficient array.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol, Sequence

import numpy as np
import pywt

from tiered_refactor.errors import ConfigurationError

logger = logging.getLogger(__name__)

Shape = tuple[int, ...]


def max_target_level(shape: Sequence[int]) -> int:
    """Deepest decomposition the geometry allows: floor(log2(min(shape))) - 1."""
    smallest = min(shape)
    if smallest < 1:
        return -1
    return int(math.floor(math.log2(smallest))) - 1


def check_target_level(shape: Sequence[int], target_level: int) -> None:
    """Raise ConfigurationError if target_level exceeds the geometry limit."""
    if target_level < 0:
        raise ConfigurationError(
            f"target_level must be non-negative, got {target_level}", "levels"
        )
    limit = max_target_level(shape)
    if target_level > limit:
        raise ConfigurationError(
            f"Target level {target_level} is higher than {limit} "
            f"for shape {tuple(shape)}",
            "levels",
        )


def level_element_counts(level_shapes: Sequence[Shape]) -> list[int]:
    """Number of coefficients newly introduced at each level."""
    counts = []
    previous = 0
    for level_shape in level_shapes:
        total = int(np.prod(level_shape))
        counts.append(total - previous)
        previous = total
    return counts


class Decomposer(Protocol):
    name: str

    def level_shapes(self, shape: Sequence[int], target_level: int) -> list[Shape]: ...

    def decompose(self, field: np.ndarray, target_level: int) -> np.ndarray: ...

    def compose(
        self, coeffs: np.ndarray, shape: Sequence[int], target_level: int
    ) -> np.ndarray: ...


class WaveletDecomposer:
    """Orthogonal multilevel wavelet transform via PyWavelets.

    Uses ``wavedecn`` in periodization mode and packs the result with
    ``coeffs_to_array``: the approximation occupies the leading box and the
    details of each finer level fill the remainder of the next box. For odd
    extents the packed array can be slightly larger than the field.
    """

    name = "wavelet"

    def __init__(self, wavelet: str = "haar"):
        if wavelet not in pywt.wavelist(kind="discrete"):
            raise ConfigurationError(f"Unknown discrete wavelet {wavelet!r}", "wavelet")
        self.wavelet = wavelet
        self.mode = "periodization"

    def _zero_coeffs(self, shape: Sequence[int], target_level: int) -> list:
        shapes = pywt.wavedecn_shapes(
            tuple(shape), self.wavelet, mode=self.mode, level=target_level
        )
        coeffs: list = [np.zeros(shapes[0])]
        for detail in shapes[1:]:
            coeffs.append({key: np.zeros(s) for key, s in detail.items()})
        return coeffs

    def level_shapes(self, shape: Sequence[int], target_level: int) -> list[Shape]:
        check_target_level(shape, target_level)
        if target_level == 0:
            return [tuple(int(s) for s in shape)]
        shapes = pywt.wavedecn_shapes(
            tuple(shape), self.wavelet, mode=self.mode, level=target_level
        )
        ndim = len(shape)
        boxes = [tuple(int(s) for s in shapes[0])]
        for detail in shapes[1:]:
            d_shape = detail["d" * ndim]
            boxes.append(tuple(b + int(d) for b, d in zip(boxes[-1], d_shape)))
        return boxes

    def decompose(self, field: np.ndarray, target_level: int) -> np.ndarray:
        check_target_level(field.shape, target_level)
        data = np.asarray(field, dtype=np.float64)
        if target_level == 0:
            return data.copy()
        coeffs = pywt.wavedecn(data, self.wavelet, mode=self.mode, level=target_level)
        packed, _ = pywt.coeffs_to_array(coeffs)
        return np.ascontiguousarray(packed, dtype=np.float64)

    def compose(
        self, coeffs: np.ndarray, shape: Sequence[int], target_level: int
    ) -> np.ndarray:
        if target_level == 0:
            return np.asarray(coeffs, dtype=np.float64).copy()
        # Slices depend only on geometry; rebuild them from an all-zero pyramid
        _, coeff_slices = pywt.coeffs_to_array(self._zero_coeffs(shape, target_level))
        pyramid = pywt.array_to_coeffs(coeffs, coeff_slices, output_format="wavedecn")
        recon = pywt.waverecn(pyramid, self.wavelet, mode=self.mode)
        crop = tuple(slice(0, s) for s in shape)
        return np.ascontiguousarray(recon[crop], dtype=np.float64)


class HierarchicalDecomposer:
    """Hierarchical interpolation (lifting) scheme.

    At each step and along each axis of the active box, odd samples are
    replaced by their residual from linear interpolation of the neighbouring
    even samples, then the even samples are gathered at the front. The box for
    the next (coarser) step is the leading ``ceil(n / 2)`` samples per axis.
    The transform is exactly invertible and keeps the field's shape.
    """

    name = "hierarchical"

    def level_shapes(self, shape: Sequence[int], target_level: int) -> list[Shape]:
        check_target_level(shape, target_level)
        boxes = [tuple(int(s) for s in shape)]
        for _ in range(target_level):
            boxes.append(tuple((s + 1) // 2 for s in boxes[-1]))
        boxes.reverse()
        return boxes

    @staticmethod
    def _predict(even: np.ndarray, n_odd: int) -> np.ndarray:
        left = even[:n_odd]
        if len(even) > n_odd:
            right = even[1 : n_odd + 1]
        else:
            # Last odd sample has no right neighbour
            right = np.concatenate([even[1:], even[-1:]], axis=0)
        return 0.5 * (left + right)

    def _forward_axis(self, box: np.ndarray, axis: int) -> None:
        view = np.moveaxis(box, axis, 0)
        even = view[0::2].copy()
        odd = view[1::2].copy()
        odd -= self._predict(even, len(odd))
        view[: len(even)] = even
        view[len(even) :] = odd

    def _inverse_axis(self, box: np.ndarray, axis: int) -> None:
        view = np.moveaxis(box, axis, 0)
        n_even = (view.shape[0] + 1) // 2
        even = view[:n_even].copy()
        odd = view[n_even:].copy()
        odd += self._predict(even, len(odd))
        view[0::2] = even
        view[1::2] = odd

    def decompose(self, field: np.ndarray, target_level: int) -> np.ndarray:
        boxes = self.level_shapes(field.shape, target_level)
        coeffs = np.array(field, dtype=np.float64, copy=True)
        # Finest box first
        for box_shape in reversed(boxes[1:]):
            box = coeffs[tuple(slice(0, s) for s in box_shape)]
            for axis in range(coeffs.ndim):
                if box.shape[axis] > 1:
                    self._forward_axis(box, axis)
        return coeffs

    def compose(
        self, coeffs: np.ndarray, shape: Sequence[int], target_level: int
    ) -> np.ndarray:
        boxes = self.level_shapes(shape, target_level)
        field = np.array(coeffs, dtype=np.float64, copy=True).reshape(tuple(shape))
        for box_shape in boxes[1:]:
            box = field[tuple(slice(0, s) for s in box_shape)]
            for axis in reversed(range(field.ndim)):
                if box.shape[axis] > 1:
                    self._inverse_axis(box, axis)
        return field
