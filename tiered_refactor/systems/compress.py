"""Lossless level compression system.

Forward mode: EncodedLevels → CompressedLevels
Inverse mode: RetrievedLevels → EncodedLevels
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from tiered_refactor.algorithms.level_compressor import LevelCompressor
from tiered_refactor.components.levels import CompressedLevels, EncodedLevels, RetrievedLevels
from tiered_refactor.core.system import System

if TYPE_CHECKING:
    from tiered_refactor.core.world import World

logger = logging.getLogger(__name__)


class CompressLevels(System):
    """Compress (or expand) every level's planes with a level compressor."""

    def __init__(
        self,
        compressor: LevelCompressor,
        mode: Literal["forward", "inverse"] = "forward",
    ):
        super().__init__(mode=mode)
        self.compressor = compressor

    def required_components(self) -> list[type]:
        if self.is_forward:
            return [EncodedLevels]
        return [RetrievedLevels]

    def produced_components(self) -> list[type]:
        if self.is_forward:
            return [CompressedLevels]
        return [EncodedLevels]

    def run(self, world: World, eids: list[int]) -> None:
        if self.is_forward:
            self._run_forward(world, eids)
        else:
            self._run_inverse(world, eids)

    def _run_forward(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            encoded = world.get_component(eid, EncodedLevels)
            planes = [list(level) for level in encoded.planes]
            sizes = [list(level) for level in encoded.sizes]
            stopping_indices = []
            for level in range(encoded.num_levels):
                before = sum(sizes[level])
                stopping_indices.append(
                    self.compressor.compress_level(planes[level], sizes[level])
                )
                logger.debug(
                    f"Level {level}: {before} -> {sum(sizes[level])} bytes, "
                    f"stopping index {stopping_indices[-1]}"
                )

            world.add_component(
                eid,
                CompressedLevels(
                    **encoded.model_dump(exclude={"planes", "sizes"}),
                    planes=planes,
                    sizes=sizes,
                    stopping_indices=stopping_indices,
                ),
            )

    def _run_inverse(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            retrieved = world.get_component(eid, RetrievedLevels)
            planes = [
                self.compressor.decompress_level(level_planes, stop)
                for level_planes, stop in zip(retrieved.planes, retrieved.stopping_indices)
            ]
            world.metadata[eid]["tiers_used"] = retrieved.tiers_used
            world.add_component(
                eid,
                EncodedLevels(
                    **retrieved.model_dump(exclude={"planes", "stopping_indices", "tiers_used"}),
                    planes=planes,
                    sizes=[[len(p) for p in level] for level in planes],
                ),
            )
