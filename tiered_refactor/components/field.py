"""Field components: FieldData, ReconstructedField."""

import numpy as np
from pydantic import BaseModel, Field


class Component(BaseModel):
    """Base class for all ECS components.

    Components are data containers using Pydantic for validation and type safety.
    Array data is held directly as numpy arrays, byte planes as ``bytes``.
    """

    model_config = {"arbitrary_types_allowed": True}


class FieldData(Component):
    """Original scientific field.

    Attributes:
        name: Variable name (key prefix for persisted metadata)
        data: N-d numeric array
    """

    name: str = Field(min_length=1)
    data: np.ndarray

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(int(s) for s in self.data.shape)


class ReconstructedField(Component):
    """Field rebuilt from a leading subset of tiers.

    Attributes:
        data: Reconstructed N-d array (float64)
        tiers_used: Number of tiers whose planes were available
    """

    data: np.ndarray
    tiers_used: int = Field(default=0, ge=0)
