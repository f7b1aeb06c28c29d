"""Erasure-coding fan-out system.

Forward mode: TierPlans → TierFragments
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, Sequence

from tiered_refactor.components.tiers import StoredTier, TierFragments, TierPlans
from tiered_refactor.config import TierConfig
from tiered_refactor.core.system import System
from tiered_refactor.storage.erasure import CoderFactory, make_erasure_coder, validate_fragments
from tiered_refactor.storage.sinks import FragmentSink, fragment_name

if TYPE_CHECKING:
    from tiered_refactor.core.world import World

logger = logging.getLogger(__name__)


class FragmentTiers(System):
    """Encode every tier blob into k data + m parity fragments and write them.

    Fragments are named after ``world.metadata[eid]["prefix"]`` (falling back
    to the field name) and written through ``sink`` when one is given.

    Args:
        tiers: Per-tier erasure-coding parameters and paths
        backend: Erasure-coding backend name
        sink: Fragment destination; None keeps fragments in memory only
        coder_factory: Builds a coder from (backend, k, m, w)
    """

    def __init__(
        self,
        tiers: Sequence[TierConfig],
        backend: str = "null",
        sink: FragmentSink | None = None,
        coder_factory: CoderFactory | None = None,
        mode: Literal["forward"] = "forward",
    ):
        super().__init__(mode=mode)
        if mode != "forward":
            raise ValueError("FragmentTiers only supports forward mode")
        self.tiers = list(tiers)
        self.backend = backend
        self.sink = sink
        self.coder_factory = coder_factory or make_erasure_coder

    def required_components(self) -> list[type]:
        return [TierPlans]

    def produced_components(self) -> list[type]:
        return [TierFragments]

    def run(self, world: World, eids: list[int]) -> None:
        for eid in eids:
            plans = world.get_component(eid, TierPlans)
            if len(plans.tiers) != len(self.tiers):
                raise ValueError(
                    f"Entity {eid} has {len(plans.tiers)} tiers, "
                    f"{len(self.tiers)} tier configurations given"
                )
            prefix = world.metadata[eid].get("prefix") or world.metadata[eid].get("name", str(eid))

            stored = []
            for tier, tier_config in zip(plans.tiers, self.tiers):
                coder = self.coder_factory(
                    self.backend, tier_config.ec_k, tier_config.ec_m, tier_config.ec_w
                )
                encoded = coder.encode(tier.blob)
                validate_fragments(coder, encoded, len(tier.blob))

                data_locations: list[str] = []
                parity_locations: list[str] = []
                if self.sink is not None:
                    for j, fragment in enumerate(encoded.data):
                        name = fragment_name(prefix, tier.index, "data", j)
                        data_locations.append(self.sink.write(tier_config.path, name, fragment))
                    for j, fragment in enumerate(encoded.parity):
                        name = fragment_name(prefix, tier.index, "parity", j)
                        parity_locations.append(self.sink.write(tier_config.path, name, fragment))

                logger.debug(
                    f"Tier {tier.index}: {len(encoded.data)}+{len(encoded.parity)} fragments "
                    f"of {encoded.fragment_length} bytes ({self.backend})"
                )
                stored.append(
                    StoredTier(
                        index=tier.index,
                        backend=self.backend,
                        k=tier_config.ec_k,
                        m=tier_config.ec_m,
                        w=tier_config.ec_w,
                        hd=tier_config.ec_hd,
                        fragment_length=encoded.fragment_length,
                        data=encoded.data,
                        parity=encoded.parity,
                        data_locations=data_locations,
                        parity_locations=parity_locations,
                    )
                )

            world.add_component(eid, TierFragments(tiers=stored))
