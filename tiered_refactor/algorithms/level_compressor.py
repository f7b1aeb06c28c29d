"""Optional lossless post-compression of a level's planes.

``compress_level`` rewrites leading planes in place and returns the stopping
index: the number of leading planes that were compressed. Planes from the
stopping index onward are exactly as the encoder produced them. The index
must be persisted so ``decompress_level`` knows which planes to expand.
"""

from __future__ import annotations

import logging
from typing import Protocol

from tiered_refactor.algorithms.lossless import compress_bytes, decompress_bytes

logger = logging.getLogger(__name__)


class LevelCompressor(Protocol):
    name: str

    def compress_level(self, planes: list[bytes], sizes: list[int]) -> int: ...

    def decompress_level(self, planes: list[bytes], stopping_index: int) -> list[bytes]: ...


class NullLevelCompressor:
    """Leaves every plane untouched."""

    name = "null"

    def compress_level(self, planes: list[bytes], sizes: list[int]) -> int:
        return 0

    def decompress_level(self, planes: list[bytes], stopping_index: int) -> list[bytes]:
        if stopping_index != 0:
            raise ValueError(f"Null compressor expects stopping index 0, got {stopping_index}")
        return list(planes)


class DefaultLevelCompressor:
    """Compresses every plane unconditionally."""

    name = "default"

    def compress_level(self, planes: list[bytes], sizes: list[int]) -> int:
        for i, plane in enumerate(planes):
            planes[i] = compress_bytes(plane)
            sizes[i] = len(planes[i])
        return len(planes)

    def decompress_level(self, planes: list[bytes], stopping_index: int) -> list[bytes]:
        return _expand_prefix(planes, stopping_index)


class AdaptiveLevelCompressor:
    """Compresses leading planes while it pays off.

    Stops at the first plane whose compression ratio falls below
    ``min_ratio`` or once ``latency`` planes have been compressed. Low-order
    planes are close to random, so compressing them rarely helps.
    """

    name = "adaptive"

    def __init__(self, latency: int = 32, min_ratio: float = 1.05):
        if latency < 0:
            raise ValueError(f"latency must be >= 0, got {latency}")
        self.latency = latency
        self.min_ratio = min_ratio

    def compress_level(self, planes: list[bytes], sizes: list[int]) -> int:
        for i, plane in enumerate(planes):
            if i >= self.latency:
                return i
            compressed = compress_bytes(plane)
            ratio = len(plane) / len(compressed)
            logger.debug(f"Plane {i}: {len(plane)} -> {len(compressed)} bytes (ratio {ratio:.3f})")
            if ratio < self.min_ratio:
                return i
            planes[i] = compressed
            sizes[i] = len(compressed)
        return len(planes)

    def decompress_level(self, planes: list[bytes], stopping_index: int) -> list[bytes]:
        return _expand_prefix(planes, stopping_index)


def _expand_prefix(planes: list[bytes], stopping_index: int) -> list[bytes]:
    """Decompress the planes below stopping_index that are present.

    ``planes`` may be a leading subset of the level (progressive retrieval).
    """
    if stopping_index < 0:
        raise ValueError(f"stopping_index must be >= 0, got {stopping_index}")
    return [
        decompress_bytes(p) if i < stopping_index else p for i, p in enumerate(planes)
    ]
