"""Error-bounded progressive refactoring of scientific fields onto storage tiers.

This package splits an N-d field into a hierarchy of precision increments and
places them on tiers so that each tier, read together with all earlier ones,
meets its own error tolerance:
- Hierarchical decomposition (wavelet or interpolation lifting)
- Bitplane encoding with per-plane error sequences
- Lossless level compression (rANS via constriction)
- Greedy retrieval ordering that continues across tiers
- Erasure-coded fragments plus key-value metadata
- Entity-Component-System (ECS) architecture for composable stages

Quick Start:
    >>> from tiered_refactor import build_config, refactor_field, reconstruct_field
    >>> import numpy as np
    >>>
    >>> field = np.random.rand(64, 64)
    >>> config = build_config(levels=3, tiers=[{"tolerance": 0.5}, {"tolerance": 1e-3}])
    >>> result = refactor_field("velocity", field, config)
    >>>
    >>> # First tier only: coarse approximation
    >>> coarse = reconstruct_field(result.metadata, result.tier_blobs[:1])

For more control, use the fluent pipeline API:
    >>> from tiered_refactor import World
    >>> from tiered_refactor.systems.decompose import Decompose
    >>> from tiered_refactor.algorithms.decomposer import WaveletDecomposer
    >>> from tiered_refactor.components.hierarchy import CoefficientHierarchy
    >>>
    >>> world = World()
    >>> entity = world.spawn_field("velocity", field)
    >>> hierarchy = (
    ...     world.pipe(entity)
    ...     .to(Decompose(WaveletDecomposer("haar"), target_level=2))
    ...     .out(CoefficientHierarchy)
    ... )
"""

__version__ = "0.1.0"

from tiered_refactor.api import (
    RefactoredField,
    get_refactor_info,
    read_tier_blob,
    reconstruct_field,
    reconstruct_from_store,
    refactor_field,
    refactor_file,
)
from tiered_refactor.config import RefactorConfig, TierConfig, build_config, load_config
from tiered_refactor.core.world import World
from tiered_refactor.errors import (
    ConfigurationError,
    EncodingInvariantViolation,
    FragmentingFailure,
    PersistenceFailure,
    RefactorError,
)

__all__ = [
    "__version__",
    "refactor_field",
    "refactor_file",
    "reconstruct_field",
    "reconstruct_from_store",
    "read_tier_blob",
    "get_refactor_info",
    "RefactoredField",
    "RefactorConfig",
    "TierConfig",
    "build_config",
    "load_config",
    "World",
    "RefactorError",
    "ConfigurationError",
    "EncodingInvariantViolation",
    "PersistenceFailure",
    "FragmentingFailure",
]
