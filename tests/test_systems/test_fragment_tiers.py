"""Tests for the erasure-coding fan-out system."""

from __future__ import annotations

import pytest

from tiered_refactor.algorithms.retrieval import RetrievalProgress
from tiered_refactor.components.tiers import Tier, TierFragments, TierPlans
from tiered_refactor.config import TierConfig
from tiered_refactor.core.serialization import QueryTable
from tiered_refactor.core.world import World
from tiered_refactor.errors import FragmentingFailure
from tiered_refactor.storage.erasure import NullErasureCoder
from tiered_refactor.storage.sinks import MemorySink
from tiered_refactor.systems.fragment import FragmentTiers

BLOBS = [b"coarse planes", b"finer planes of the field"]


def _planned_world(name="temperature", prefix=None):
    world = World()
    eid = world.new_entity()
    world.metadata[eid]["name"] = name
    if prefix is not None:
        world.metadata[eid]["prefix"] = prefix
    tiers = [
        Tier(
            index=i,
            tolerance=10.0 ** -i,
            order=[],
            blob=blob,
            estimated_error=0.0,
            tolerance_met=True,
            active_levels=1,
        )
        for i, blob in enumerate(BLOBS)
    ]
    world.add_component(
        eid,
        TierPlans(
            tiers=tiers,
            manifest=QueryTable(),
            progress=RetrievalProgress.initial(1),
            scheduling_errors=[[1.0, 0.0]],
        ),
    )
    return world, eid


TIERS = [TierConfig(path="fast", tolerance=1.0), TierConfig(path="slow", tolerance=0.1)]


class TestFragmentTiers:
    """Test FragmentTiers system."""

    def test_components(self):
        """Test required and produced components."""
        system = FragmentTiers(TIERS)
        assert system.required_components() == [TierPlans]
        assert system.produced_components() == [TierFragments]

    def test_forward_only(self):
        """Test that there is no inverse mode."""
        with pytest.raises(ValueError, match="forward mode"):
            FragmentTiers(TIERS, mode="inverse")

    def test_fragments_without_sink(self):
        """Test encoding without writing anywhere."""
        world, eid = _planned_world()

        FragmentTiers(TIERS).run(world, [eid])

        fragments = world.get_component(eid, TierFragments)
        assert [stored.index for stored in fragments.tiers] == [0, 1]
        coder = NullErasureCoder()
        for stored, blob in zip(fragments.tiers, BLOBS):
            assert stored.backend == "null"
            assert (stored.k, stored.m, stored.w, stored.hd) == (1, 0, 8, 1)
            assert stored.parity == []
            assert stored.data_locations == []
            assert stored.fragment_length == len(stored.data[0])
            assert coder.decode(stored.data) == blob

    def test_sink_locations(self):
        """Test that fragments are written under their tier path and named by field."""
        world, eid = _planned_world()
        sink = MemorySink()

        FragmentTiers(TIERS, sink=sink).run(world, [eid])

        fragments = world.get_component(eid, TierFragments)
        assert fragments.tiers[0].data_locations == [
            "memory://fast/temperature.refactored.tier.0.data.0"
        ]
        assert fragments.tiers[1].data_locations == [
            "memory://slow/temperature.refactored.tier.1.data.0"
        ]
        assert sink.read(fragments.tiers[1].data_locations[0]) == fragments.tiers[1].data[0]

    def test_prefix_overrides_name(self):
        """Test that an explicit prefix names the fragments."""
        world, eid = _planned_world(prefix="run42.temperature")
        sink = MemorySink()

        FragmentTiers(TIERS, sink=sink).run(world, [eid])

        location = world.get_component(eid, TierFragments).tiers[0].data_locations[0]
        assert location.endswith("/run42.temperature.refactored.tier.0.data.0")

    def test_tier_count_mismatch(self):
        """Test that every scheduled tier needs a configuration."""
        world, eid = _planned_world()
        with pytest.raises(ValueError, match="2 tiers, 1 tier configurations"):
            FragmentTiers(TIERS[:1]).run(world, [eid])

    def test_coder_factory(self):
        """Test that the factory receives each tier's layout."""
        calls = []

        def factory(backend, k, m, w):
            calls.append((backend, k, m, w))
            return NullErasureCoder(k, m, w)

        world, eid = _planned_world()
        tiers = [TierConfig(tolerance=1.0, ec_w=16), TierConfig(tolerance=0.1)]

        FragmentTiers(tiers, coder_factory=factory).run(world, [eid])

        assert calls == [("null", 1, 0, 16), ("null", 1, 0, 8)]

    def test_invalid_fragments(self):
        """Test that a coder producing bad headers is a fragmenting failure."""

        class LyingCoder(NullErasureCoder):
            def encode(self, data):
                return super().encode(data + b"!")

        world, eid = _planned_world()
        with pytest.raises(FragmentingFailure, match="original size"):
            FragmentTiers(TIERS, coder_factory=lambda b, k, m, w: LyingCoder()).run(world, [eid])
