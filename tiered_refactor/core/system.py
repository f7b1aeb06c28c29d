"""System base class for ECS transformations.

Systems are the logic layer: they read required components from entities and
attach the components they produce. Numerical work is delegated to the
strategy objects in :mod:`tiered_refactor.algorithms`, which systems receive
at construction.

Modes:
- 'forward' / 'encode': refactoring direction
- 'inverse' / 'decode': reconstruction direction

Example:
    >>> class MySystem(System):
    ...     def required_components(self):
    ...         return [InputComponent]
    ...     def produced_components(self):
    ...         return [OutputComponent]
    ...     def run(self, world, eids):
    ...         for eid in eids:
    ...             source = world.get_component(eid, InputComponent)
    ...             world.add_component(eid, OutputComponent(...))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from tiered_refactor.core.world import World

Mode = Literal["encode", "decode", "forward", "inverse"]


class System(ABC):
    """Base class for all ECS systems.

    Attributes:
        mode: Transformation direction ('encode'/'forward'/'decode'/'inverse')
    """

    def __init__(self, mode: Mode = "forward") -> None:
        self.mode = mode

    @property
    def is_forward(self) -> bool:
        return self.mode in ("forward", "encode")

    @abstractmethod
    def required_components(self) -> list[type]:
        """Component types this system needs as input (may depend on mode)."""

    @abstractmethod
    def produced_components(self) -> list[type]:
        """Component types this system attaches (may depend on mode)."""

    @abstractmethod
    def run(self, world: World, eids: list[int]) -> None:
        """Execute system on given entities.

        Args:
            world: World instance with entities and components
            eids: Entity IDs to process; all of them pass ``can_run``
        """

    def can_run(self, world: World, eid: int) -> bool:
        """Check if entity has all required components."""
        return all(world.has_component(eid, ct) for ct in self.required_components())

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(mode={self.mode})"
