"""Extraction of one level's coefficients from the full coefficient buffer.

An interleaver selects the coefficients inside ``level_shape`` and outside
``prev_level_shape`` and lays them out in a fixed order. All strategies pick
the same set of coefficients; they differ only in ordering (and therefore in
the locality the bitplane encoder sees). ``reposition`` is the inverse.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Sequence

import numpy as np

Shape = tuple[int, ...]


def _level_coordinates(
    level_shape: Sequence[int], prev_level_shape: Sequence[int]
) -> tuple[np.ndarray, ...]:
    """Row-major coordinates of the coefficients new at this level."""
    mask = np.ones(tuple(level_shape), dtype=bool)
    if all(p > 0 for p in prev_level_shape):
        mask[tuple(slice(0, p) for p in prev_level_shape)] = False
    return np.nonzero(mask)


class Interleaver:
    """Base class: subclasses define the ordering of a level's coordinates."""

    name = "base"

    def _order(self, coords: tuple[np.ndarray, ...]) -> np.ndarray:
        """Permutation applied to row-major coordinates."""
        raise NotImplementedError

    def level_indices(
        self,
        shape: Sequence[int],
        level_shape: Sequence[int],
        prev_level_shape: Sequence[int],
    ) -> np.ndarray:
        """Flat indices into the full coefficient array, in interleaved order."""
        return _cached_indices(
            self, tuple(shape), tuple(level_shape), tuple(prev_level_shape)
        )

    def interleave(
        self,
        coeffs: np.ndarray,
        shape: Sequence[int],
        level_shape: Sequence[int],
        prev_level_shape: Sequence[int],
        out: np.ndarray | None = None,
    ) -> np.ndarray:
        """Copy the level's new coefficients into a contiguous 1-d buffer.

        Args:
            coeffs: Full coefficient array (any layout that reshapes to shape)
            shape: Shape of the full coefficient array
            level_shape: Box owned by this level and all coarser ones
            prev_level_shape: Box of the previous level (zeros for level 0)
            out: Optional preallocated buffer of the level's element count

        Returns:
            1-d buffer holding exactly the level's coefficients
        """
        flat = np.asarray(coeffs).reshape(-1)
        if flat.size != int(np.prod(shape)):
            raise ValueError(f"Coefficient buffer of size {flat.size} does not match shape {tuple(shape)}")
        indices = self.level_indices(shape, level_shape, prev_level_shape)
        if out is None:
            return flat[indices]
        if out.shape != indices.shape:
            raise ValueError(f"out has shape {out.shape}, expected {indices.shape}")
        out[...] = flat[indices]
        return out

    def reposition(
        self,
        buffer: np.ndarray,
        coeffs: np.ndarray,
        shape: Sequence[int],
        level_shape: Sequence[int],
        prev_level_shape: Sequence[int],
    ) -> None:
        """Write a level buffer back into the full coefficient array in place."""
        indices = self.level_indices(shape, level_shape, prev_level_shape)
        if buffer.size != indices.size:
            raise ValueError(
                f"Level buffer has {buffer.size} elements, expected {indices.size}"
            )
        coeffs.reshape(-1)[indices] = buffer

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


@lru_cache(maxsize=64)
def _cached_indices(
    interleaver: Interleaver, shape: Shape, level_shape: Shape, prev_level_shape: Shape
) -> np.ndarray:
    coords = _level_coordinates(level_shape, prev_level_shape)
    order = interleaver._order(coords)
    ordered = tuple(c[order] for c in coords)
    indices = np.ravel_multi_index(ordered, shape).astype(np.int64)
    indices.setflags(write=False)
    return indices


class DirectInterleaver(Interleaver):
    """Row-major order over the level's coefficients."""

    name = "direct"

    def _order(self, coords: tuple[np.ndarray, ...]) -> np.ndarray:
        return np.arange(len(coords[0]))


class SFCInterleaver(Interleaver):
    """Morton (Z-order) space-filling-curve order."""

    name = "sfc"

    def _order(self, coords: tuple[np.ndarray, ...]) -> np.ndarray:
        ndim = len(coords)
        if len(coords[0]) == 0:
            return np.arange(0)
        bits = max(int(c.max()).bit_length() for c in coords)
        if bits * ndim > 63:
            raise ValueError("Shape too large for a 64-bit Morton code")
        code = np.zeros(len(coords[0]), dtype=np.uint64)
        for bit in range(bits):
            for axis, c in enumerate(coords):
                b = (c.astype(np.uint64) >> np.uint64(bit)) & np.uint64(1)
                code |= b << np.uint64(bit * ndim + (ndim - 1 - axis))
        return np.argsort(code, kind="stable")


class BlockedInterleaver(Interleaver):
    """Row-major over fixed-size tiles, row-major inside each tile."""

    name = "blocked"

    def __init__(self, block_size: int = 8):
        if block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {block_size}")
        self.block_size = block_size

    def _order(self, coords: tuple[np.ndarray, ...]) -> np.ndarray:
        blocks = [c // self.block_size for c in coords]
        inner = [c % self.block_size for c in coords]
        # lexsort sorts by the last key first
        keys = list(reversed(inner)) + list(reversed(blocks))
        return np.lexsort(keys)

    def __repr__(self) -> str:
        return f"BlockedInterleaver(block_size={self.block_size})"
