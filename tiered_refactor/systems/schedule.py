"""Tier scheduling system.

Forward mode: CompressedLevels → TierPlans

Tiers are scheduled strictly in the configured order, each continuing from the
progress the previous one returned.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, Sequence

from tiered_refactor.algorithms.decomposer import level_element_counts
from tiered_refactor.algorithms.error_collector import ErrorCollector
from tiered_refactor.algorithms.error_estimator import ErrorEstimator
from tiered_refactor.algorithms.retrieval import (
    RetrievalProgress,
    build_tier,
    compute_retrieval_order,
)
from tiered_refactor.components.levels import CompressedLevels
from tiered_refactor.components.tiers import Tier, TierPlans
from tiered_refactor.core.serialization import QueryTable
from tiered_refactor.core.system import System

if TYPE_CHECKING:
    from tiered_refactor.core.world import World

logger = logging.getLogger(__name__)


class ScheduleTiers(System):
    """Build one incremental fetch plan and blob per tolerance.

    The error model comes from the collector applied to each level's bound
    (no raw data is consulted) and is mapped to global units by the estimator.

    Args:
        collector: Per-level error sequence strategy
        estimator: Global error estimator
        tolerances: One tolerance per tier, in processing order
    """

    def __init__(
        self,
        collector: ErrorCollector,
        estimator: ErrorEstimator,
        tolerances: Sequence[float],
        mode: Literal["forward"] = "forward",
    ):
        super().__init__(mode=mode)
        if mode != "forward":
            raise ValueError("ScheduleTiers only supports forward mode")
        if not tolerances:
            raise ValueError("At least one tolerance is required")
        self.collector = collector
        self.estimator = estimator
        self.tolerances = list(tolerances)

    def required_components(self) -> list[type]:
        return [CompressedLevels]

    def produced_components(self) -> list[type]:
        return [TierPlans]

    def run(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            levels = world.get_component(eid, CompressedLevels)
            counts = level_element_counts(levels.level_shapes)
            level_errors = [
                self.collector.collect_level_error(None, count, levels.num_planes, bound)
                for count, bound in zip(counts, levels.level_error_bounds)
            ]

            progress = RetrievalProgress.initial(levels.num_levels)
            manifest = QueryTable()
            tiers = []
            for index, tolerance in enumerate(self.tolerances):
                result = compute_retrieval_order(
                    levels.sizes, level_errors, tolerance, progress, self.estimator
                )
                progress = result.progress
                blob, rows = build_tier(index, result.order, levels.planes, levels.sizes)
                manifest.extend(rows)
                tiers.append(
                    Tier(
                        index=index,
                        tolerance=tolerance,
                        order=result.order,
                        blob=blob,
                        estimated_error=result.estimated_error,
                        tolerance_met=result.tolerance_met,
                        active_levels=result.active_levels,
                    )
                )
                logger.info(
                    f"Tier {index}: {len(result.order)} planes, {len(blob)} bytes, "
                    f"estimated error {result.estimated_error:g} (tolerance {tolerance:g})"
                )

            world.add_component(
                eid,
                TierPlans(
                    tiers=tiers,
                    manifest=manifest,
                    progress=progress,
                    scheduling_errors=level_errors,
                ),
            )
