"""Coefficient hierarchy component."""

import numpy as np
from pydantic import BaseModel, Field


class Component(BaseModel):
    """Base class for all ECS components."""

    model_config = {"arbitrary_types_allowed": True}


class CoefficientHierarchy(Component):
    """Decomposed field with its nested level boxes.

    Attributes:
        coeffs: Coefficient array; may exceed the field shape for odd extents
        shape: Shape of the original field
        level_shapes: Nested boxes, coarsest first; the last is coeffs.shape
        target_level: Decomposition depth (levels - 1)
    """

    coeffs: np.ndarray
    shape: tuple[int, ...]
    level_shapes: list[tuple[int, ...]]
    target_level: int = Field(ge=0)

    @property
    def num_levels(self) -> int:
        return len(self.level_shapes)
