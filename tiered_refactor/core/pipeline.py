"""Fluent pipeline builder.

Chains systems with ``.to()`` or ``|`` and runs them in order on ``.out()``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel

if TYPE_CHECKING:
    from tiered_refactor.core.system import System
    from tiered_refactor.core.world import World

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Pipe:
    """Ordered list of systems bound to one entity.

    Example:
        >>> world = World()
        >>> eid = world.spawn_field("pressure", data)
        >>> hierarchy = (
        ...     world.pipe(eid)
        ...     .to(Decompose(WaveletDecomposer(), target_level=3))
        ...     .out(CoefficientHierarchy)
        ... )
    """

    def __init__(self, world: World, entity: int) -> None:
        self.world = world
        self.entities = [entity]
        self.systems: list[System] = []

    def to(self, system: System) -> Pipe:
        """Append a system; returns self for chaining."""
        self.systems.append(system)
        return self

    def __or__(self, system: System) -> Pipe:
        """Pipe operator, equivalent to ``.to(system)``."""
        return self.to(system)

    def out(self, component_type: type[T]) -> T:
        """Execute pipeline and return component of specified type.

        Raises:
            RuntimeError: If any system cannot run (missing dependencies)
            KeyError: If the entity lacks the requested component afterwards
        """
        self.execute()
        return self.world.get_component(self.entities[0], component_type)

    def execute(self) -> None:
        """Run all systems in order with dependency checking.

        Raises:
            RuntimeError: If any system cannot run on any entity
        """
        for system in self.systems:
            runnable = [eid for eid in self.entities if system.can_run(self.world, eid)]

            if not runnable:
                required = [ct.__name__ for ct in system.required_components()]
                raise RuntimeError(
                    f"System {type(system).__name__} cannot run: "
                    f"entities missing required components {required}. "
                    f"Available entities: {self.entities}"
                )

            start = time.perf_counter()
            system.run(self.world, runnable)
            logger.debug(f"{system!r} finished in {time.perf_counter() - start:.3f}s")
