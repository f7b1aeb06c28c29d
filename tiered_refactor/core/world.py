"""World: Entity-Component-System registry.

One entity per scientific field (variable). The World manages:
- Entity creation (integer IDs)
- Component storage (type -> entity -> component mapping)
- Component queries (find entities with specific component combinations)
- Per-entity metadata (field name, shape, dtype)

Example:
    >>> world = World()
    >>> eid = world.spawn_field("temperature", data)
    >>> hierarchy = world.pipe(eid).to(Decompose(decomposer)).out(CoefficientHierarchy)
    >>> world.query(FieldData, CoefficientHierarchy)
    [0]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import numpy as np
from pydantic import BaseModel

if TYPE_CHECKING:
    from tiered_refactor.core.pipeline import Pipe

Component = BaseModel

T = TypeVar("T", bound=Component)


class World:
    """Central ECS registry for fields and their components.

    Attributes:
        metadata: Per-entity metadata dict
    """

    def __init__(self) -> None:
        self._next_eid = 0
        self._components: dict[type[Component], dict[int, Component]] = {}
        self.metadata: dict[int, dict[str, Any]] = {}

    def new_entity(self) -> int:
        """Create a new entity and return its ID."""
        eid = self._next_eid
        self._next_eid += 1
        self.metadata[eid] = {}
        return eid

    def spawn_field(self, name: str, data: np.ndarray) -> int:
        """Ingest one named field.

        Args:
            name: Variable name, used as the key prefix when persisting
            data: N-d numeric array

        Returns:
            Entity ID with a FieldData component attached

        Raises:
            ValueError: If the field is empty, zero-dimensional or not numeric
        """
        from tiered_refactor.components.field import FieldData

        array = np.asarray(data)
        if array.ndim == 0 or array.size == 0:
            raise ValueError(f"Field {name!r} must be a non-empty array, got shape {array.shape}")
        if not (np.issubdtype(array.dtype, np.integer) or np.issubdtype(array.dtype, np.floating)):
            raise ValueError(f"Field {name!r} has non-numeric dtype {array.dtype}")

        eid = self.new_entity()
        self.add_component(eid, FieldData(name=name, data=array))
        self.metadata[eid]["name"] = name
        self.metadata[eid]["shape"] = tuple(array.shape)
        self.metadata[eid]["dtype"] = str(array.dtype)
        return eid

    def clear(self) -> None:
        """Drop all entities and components."""
        self._next_eid = 0
        self._components.clear()
        self.metadata.clear()

    def add_component(self, eid: int, component: Component) -> None:
        """Attach a component to an entity, replacing one of the same type.

        Raises:
            ValueError: If entity does not exist
        """
        if eid not in self.metadata:
            raise ValueError(f"Entity {eid} does not exist")
        self._components.setdefault(type(component), {})[eid] = component

    def get_component(self, eid: int, comp_type: type[T]) -> T:
        """Retrieve a component from an entity.

        Raises:
            KeyError: If entity does not have the component
        """
        if comp_type not in self._components:
            raise KeyError(f"No entities have component type {comp_type.__name__}")
        if eid not in self._components[comp_type]:
            raise KeyError(f"Entity {eid} does not have component {comp_type.__name__}")
        return self._components[comp_type][eid]  # type: ignore

    def has_component(self, eid: int, comp_type: type[Component]) -> bool:
        return comp_type in self._components and eid in self._components[comp_type]

    def remove_component(self, eid: int, comp_type: type[Component]) -> None:
        """Remove a component from an entity.

        Raises:
            KeyError: If entity does not have the component
        """
        if not self.has_component(eid, comp_type):
            raise KeyError(f"Entity {eid} does not have component {comp_type.__name__}")
        del self._components[comp_type][eid]

    def query(self, *comp_types: type[Component]) -> list[int]:
        """Entities that have ALL specified component types, sorted.

        Example:
            >>> eids = world.query(FieldData, EncodedLevels)
        """
        if not comp_types:
            return list(self.metadata.keys())

        result_set = set(self._components.get(comp_types[0], {}).keys())
        for comp_type in comp_types[1:]:
            if comp_type not in self._components:
                return []
            result_set &= set(self._components[comp_type].keys())
        return sorted(result_set)

    def destroy_entity(self, eid: int) -> None:
        """Remove entity and all its components."""
        if eid not in self.metadata:
            raise ValueError(f"Entity {eid} does not exist")
        for comp_store in self._components.values():
            comp_store.pop(eid, None)
        del self.metadata[eid]

    def pipe(self, entity: int) -> Pipe:
        """Start a fluent pipeline for the given entity.

        Example:
            >>> tiers = (
            ...     world.pipe(eid)
            ...     .to(Decompose(decomposer))
            ...     .to(EncodeLevels(interleaver, encoder, num_planes=32))
            ...     | CompressLevels(compressor)
            ...     | ScheduleTiers(collector, estimator, tolerances=[1.0, 0.1])
            ... ).out(TierPlans)
        """
        from tiered_refactor.core.pipeline import Pipe

        return Pipe(world=self, entity=entity)

    def __repr__(self) -> str:
        return (
            f"World(entities={len(self.metadata)}, "
            f"component_types={len(self._components)})"
        )
