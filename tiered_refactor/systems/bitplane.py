"""Per-level interleave + bitplane encode system.

Encode mode: CoefficientHierarchy → EncodedLevels
Decode mode: EncodedLevels → CoefficientHierarchy

Levels share no mutable state, so they are encoded on a thread pool; results
are kept in level order.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Literal

import numpy as np

from tiered_refactor.algorithms.bitplane import BitplaneEncoder, BitplaneStreams
from tiered_refactor.algorithms.decomposer import level_element_counts
from tiered_refactor.algorithms.error_collector import check_monotone
from tiered_refactor.algorithms.interleaver import Interleaver
from tiered_refactor.components.hierarchy import CoefficientHierarchy
from tiered_refactor.components.levels import EncodedLevels
from tiered_refactor.core.system import System

if TYPE_CHECKING:
    from tiered_refactor.core.world import World

logger = logging.getLogger(__name__)


def level_exponent(level_max_error: float) -> int:
    """Binary exponent e with level_max_error < 2**e (0 for an all-zero level)."""
    return math.frexp(level_max_error)[1]


class EncodeLevels(System):
    """Split coefficients into levels and encode each as bitplanes.

    Args:
        interleaver: Level extraction order
        encoder: Bitplane encoder strategy
        num_planes: Planes per level
        max_workers: Thread pool size (None lets the executor decide)
        mode: 'encode' or 'decode'
    """

    def __init__(
        self,
        interleaver: Interleaver,
        encoder: BitplaneEncoder,
        num_planes: int = 32,
        max_workers: int | None = None,
        mode: Literal["encode", "decode"] = "encode",
    ):
        super().__init__(mode=mode)
        if not 1 <= num_planes <= 60:
            raise ValueError(f"num_planes must be in [1, 60], got {num_planes}")
        self.interleaver = interleaver
        self.encoder = encoder
        self.num_planes = num_planes
        self.max_workers = max_workers

    def required_components(self) -> list[type]:
        if self.is_forward:
            return [CoefficientHierarchy]
        return [EncodedLevels]

    def produced_components(self) -> list[type]:
        if self.is_forward:
            return [EncodedLevels]
        return [CoefficientHierarchy]

    def run(self, world: World, eids: list[int]) -> None:
        if self.is_forward:
            self._run_encode(world, eids)
        else:
            self._run_decode(world, eids)

    def _encode_level(
        self, hierarchy: CoefficientHierarchy, level: int, count: int
    ) -> tuple[float, BitplaneStreams]:
        coeff_shape = hierarchy.coeffs.shape
        level_shape = hierarchy.level_shapes[level]
        prev_shape = (
            hierarchy.level_shapes[level - 1] if level > 0 else (0,) * len(coeff_shape)
        )
        # Buffer is owned by this call and released once encoded
        buffer = self.interleaver.interleave(
            hierarchy.coeffs, coeff_shape, level_shape, prev_shape
        )
        bound = float(np.max(np.abs(buffer))) if buffer.size else 0.0
        streams = self.encoder.encode(buffer, count, level_exponent(bound), self.num_planes)
        check_monotone(streams.squared_errors, level)
        logger.debug(
            f"Level {level}: {count} coefficients, bound {bound:g}, "
            f"{sum(streams.sizes)} bytes over {self.num_planes} planes"
        )
        return bound, streams

    def _run_encode(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            hierarchy = world.get_component(eid, CoefficientHierarchy)
            counts = level_element_counts(hierarchy.level_shapes)

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [
                    executor.submit(self._encode_level, hierarchy, level, count)
                    for level, count in enumerate(counts)
                ]
                results = [future.result() for future in futures]

            world.add_component(
                eid,
                EncodedLevels(
                    shape=hierarchy.shape,
                    coeff_shape=tuple(int(s) for s in hierarchy.coeffs.shape),
                    level_shapes=hierarchy.level_shapes,
                    level_error_bounds=[bound for bound, _ in results],
                    num_planes=self.num_planes,
                    planes=[list(streams.planes) for _, streams in results],
                    sizes=[list(streams.sizes) for _, streams in results],
                    squared_errors=[list(streams.squared_errors) for _, streams in results],
                ),
            )

    def _run_decode(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            levels = world.get_component(eid, EncodedLevels)
            counts = level_element_counts(levels.level_shapes)
            coeffs = np.zeros(levels.coeff_shape, dtype=np.float64)
            no_prev = (0,) * len(levels.coeff_shape)

            for level, count in enumerate(counts):
                buffer = self.encoder.decode(
                    levels.planes[level],
                    count,
                    level_exponent(levels.level_error_bounds[level]),
                    levels.num_planes,
                )
                prev_shape = levels.level_shapes[level - 1] if level > 0 else no_prev
                self.interleaver.reposition(
                    buffer, coeffs, levels.coeff_shape, levels.level_shapes[level], prev_shape
                )

            world.add_component(
                eid,
                CoefficientHierarchy(
                    coeffs=coeffs,
                    shape=levels.shape,
                    level_shapes=levels.level_shapes,
                    target_level=levels.target_level,
                ),
            )
