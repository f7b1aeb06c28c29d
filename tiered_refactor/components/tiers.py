"""Tier components: TierPlans, TierFragments."""

from pydantic import BaseModel, Field

from tiered_refactor.algorithms.retrieval import RetrievalProgress
from tiered_refactor.core.serialization import QueryTable


class Component(BaseModel):
    """Base class for all ECS components."""

    model_config = {"arbitrary_types_allowed": True}


class Tier(Component):
    """One tolerance target and the planes it adds.

    Attributes:
        index: Position in tier processing order
        tolerance: Requested global error tolerance
        order: (level, plane) pairs in fetch order
        blob: Concatenated plane bytes in fetch order
        estimated_error: Global error estimate once this and all earlier
            tiers are fetched
        tolerance_met: False when the tolerance was unreachable
        active_levels: Levels considered by the scheduler for this tier
    """

    index: int = Field(ge=0)
    tolerance: float = Field(gt=0)
    order: list[tuple[int, int]]
    blob: bytes
    estimated_error: float
    tolerance_met: bool
    active_levels: int = Field(ge=0)

    @property
    def size(self) -> int:
        return len(self.blob)


class TierPlans(Component):
    """Every scheduled tier of a field plus its manifest.

    Attributes:
        tiers: Tiers in processing order
        manifest: Query table covering all tiers
        progress: Planes selected per level after the last tier
        scheduling_errors: Per-level error sequences the scheduler used
    """

    tiers: list[Tier]
    manifest: QueryTable
    progress: RetrievalProgress
    scheduling_errors: list[list[float]]


class StoredTier(Component):
    """Erasure-coded fragments of one tier and where they were written.

    Attributes:
        index: Tier index
        backend: Erasure-coding backend name
        k: Data fragment count
        m: Parity fragment count
        w: Word size
        hd: Hamming distance (m + 1)
        fragment_length: Length of every encoded fragment in bytes
        data: Data fragments
        parity: Parity fragments
        data_locations: Sink location per data fragment
        parity_locations: Sink location per parity fragment
    """

    index: int = Field(ge=0)
    backend: str
    k: int = Field(ge=1)
    m: int = Field(ge=0)
    w: int = Field(ge=1)
    hd: int = Field(ge=1)
    fragment_length: int = Field(ge=0)
    data: list[bytes]
    parity: list[bytes]
    data_locations: list[str] = Field(default_factory=list)
    parity_locations: list[str] = Field(default_factory=list)


class TierFragments(Component):
    """Fragments for every tier of a field."""

    tiers: list[StoredTier]
