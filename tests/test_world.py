"""Tests for World and entity management."""

import numpy as np
import pytest

from tiered_refactor.components.field import Component, FieldData
from tiered_refactor.core.world import World


# Mock component for testing
class MockComponent(Component):
    """Mock component for testing."""

    value: int


class TestWorld:
    """Tests for World ECS manager."""

    def test_creation(self) -> None:
        """Test World creation."""
        world = World()
        assert len(world.metadata) == 0

    def test_new_entity(self) -> None:
        """Test entity creation."""
        world = World()
        eid1 = world.new_entity()
        eid2 = world.new_entity()

        assert eid1 == 0
        assert eid2 == 1
        assert eid1 in world.metadata
        assert eid2 in world.metadata

    def test_add_component(self) -> None:
        """Test adding component to entity."""
        world = World()
        eid = world.new_entity()

        world.add_component(eid, MockComponent(value=42))

        assert world.has_component(eid, MockComponent)
        assert world.get_component(eid, MockComponent).value == 42

    def test_add_component_replaces(self) -> None:
        """Test that adding a component of the same type replaces it."""
        world = World()
        eid = world.new_entity()
        world.add_component(eid, MockComponent(value=1))
        world.add_component(eid, MockComponent(value=2))
        assert world.get_component(eid, MockComponent).value == 2

    def test_add_component_nonexistent_entity(self) -> None:
        """Test adding component to non-existent entity raises error."""
        world = World()
        with pytest.raises(ValueError, match="does not exist"):
            world.add_component(999, MockComponent(value=42))

    def test_get_component_missing(self) -> None:
        """Test getting a component that is not attached."""
        world = World()
        eid = world.new_entity()
        with pytest.raises(KeyError, match="MockComponent"):
            world.get_component(eid, MockComponent)

    def test_remove_component(self) -> None:
        """Test removing a component."""
        world = World()
        eid = world.new_entity()
        world.add_component(eid, MockComponent(value=1))

        world.remove_component(eid, MockComponent)

        assert not world.has_component(eid, MockComponent)
        with pytest.raises(KeyError):
            world.remove_component(eid, MockComponent)

    def test_query(self) -> None:
        """Test querying entities by component types."""
        world = World()
        eid1 = world.spawn_field("a", np.ones(4))
        eid2 = world.spawn_field("b", np.ones(4))
        world.add_component(eid2, MockComponent(value=3))

        assert world.query(FieldData) == [eid1, eid2]
        assert world.query(FieldData, MockComponent) == [eid2]
        assert world.query() == [eid1, eid2]

    def test_destroy_entity(self) -> None:
        """Test destroying an entity removes its components."""
        world = World()
        eid = world.spawn_field("a", np.ones(4))

        world.destroy_entity(eid)

        assert eid not in world.metadata
        assert world.query(FieldData) == []
        with pytest.raises(ValueError):
            world.destroy_entity(eid)

    def test_clear(self) -> None:
        """Test clearing all entities."""
        world = World()
        world.spawn_field("a", np.ones(4))
        world.clear()
        assert len(world.metadata) == 0
        assert world.new_entity() == 0


class TestSpawnField:
    """Tests for field ingestion."""

    def test_spawn_field(self) -> None:
        """Test that a field gets FieldData and metadata."""
        world = World()
        data = np.arange(12, dtype=np.float32).reshape(3, 4)

        eid = world.spawn_field("temperature", data)

        field = world.get_component(eid, FieldData)
        assert field.name == "temperature"
        assert field.shape == (3, 4)
        assert world.metadata[eid] == {
            "name": "temperature",
            "shape": (3, 4),
            "dtype": "float32",
        }

    def test_integer_field(self) -> None:
        """Test that integer fields are accepted."""
        world = World()
        eid = world.spawn_field("counts", np.arange(8, dtype=np.int16))
        assert world.metadata[eid]["dtype"] == "int16"

    @pytest.mark.parametrize("data", [np.array(3.0), np.zeros((0, 4))])
    def test_empty_or_scalar(self, data: np.ndarray) -> None:
        """Test that scalars and empty arrays are rejected."""
        with pytest.raises(ValueError, match="non-empty"):
            World().spawn_field("x", data)

    def test_non_numeric(self) -> None:
        """Test that non-numeric arrays are rejected."""
        with pytest.raises(ValueError, match="non-numeric"):
            World().spawn_field("x", np.array(["a", "b"]))

    def test_empty_name(self) -> None:
        """Test that the field name must not be empty."""
        with pytest.raises(ValueError):
            World().spawn_field("", np.ones(3))

    def test_repr(self) -> None:
        """Test the World representation."""
        world = World()
        world.spawn_field("a", np.ones(2))
        assert repr(world) == "World(entities=1, component_types=1)"
