"""Hierarchical decomposition system.

Forward mode: FieldData → CoefficientHierarchy
Inverse mode: CoefficientHierarchy → ReconstructedField
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

import numpy as np

from tiered_refactor.algorithms.decomposer import Decomposer
from tiered_refactor.components.field import FieldData, ReconstructedField
from tiered_refactor.components.hierarchy import CoefficientHierarchy
from tiered_refactor.core.system import System

if TYPE_CHECKING:
    from tiered_refactor.core.world import World

logger = logging.getLogger(__name__)


class Decompose(System):
    """Apply a decomposer to every field entity.

    Args:
        decomposer: Strategy from :mod:`tiered_refactor.algorithms.decomposer`
        target_level: Decomposition depth (levels - 1); forward mode only
        mode: 'forward' to decompose, 'inverse' to compose
    """

    def __init__(
        self,
        decomposer: Decomposer,
        target_level: int = 0,
        mode: Literal["forward", "inverse"] = "forward",
    ):
        super().__init__(mode=mode)
        if target_level < 0:
            raise ValueError(f"target_level must be >= 0, got {target_level}")
        self.decomposer = decomposer
        self.target_level = target_level

    def required_components(self) -> list[type]:
        if self.is_forward:
            return [FieldData]
        return [CoefficientHierarchy]

    def produced_components(self) -> list[type]:
        if self.is_forward:
            return [CoefficientHierarchy]
        return [ReconstructedField]

    def run(self, world: World, eids: list[int]) -> None:
        if self.is_forward:
            self._run_forward(world, eids)
        else:
            self._run_inverse(world, eids)

    def _run_forward(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            field = world.get_component(eid, FieldData)
            level_shapes = self.decomposer.level_shapes(field.shape, self.target_level)
            coeffs = self.decomposer.decompose(field.data, self.target_level)
            logger.info(
                f"Decomposed {field.name!r} {field.shape} into {len(level_shapes)} levels "
                f"({self.decomposer.name})"
            )
            world.add_component(
                eid,
                CoefficientHierarchy(
                    coeffs=coeffs,
                    shape=field.shape,
                    level_shapes=level_shapes,
                    target_level=self.target_level,
                ),
            )

    def _run_inverse(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            hierarchy = world.get_component(eid, CoefficientHierarchy)
            data = self.decomposer.compose(
                hierarchy.coeffs, hierarchy.shape, hierarchy.target_level
            )
            tiers_used = world.metadata[eid].get("tiers_used", 0)
            world.add_component(
                eid,
                ReconstructedField(data=np.asarray(data, dtype=np.float64), tiers_used=tiers_used),
            )
