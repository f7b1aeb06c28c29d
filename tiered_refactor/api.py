"""High-level API for refactoring and progressive reconstruction.

Provides refactor_field() / refactor_file() to decompose, encode and tier a
field once, and reconstruct_field() / reconstruct_from_store() to rebuild it
from any leading subset of its tiers.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Sequence, cast

import numpy as np

from tiered_refactor.algorithms.registry import (
    make_collector,
    make_compressor,
    make_decomposer,
    make_encoder,
    make_estimator,
    make_interleaver,
    strategy_options,
)
from tiered_refactor.components.field import ReconstructedField
from tiered_refactor.components.levels import CompressedLevels, RetrievedLevels
from tiered_refactor.components.tiers import Tier, TierFragments, TierPlans
from tiered_refactor.config import RefactorConfig, load_config
from tiered_refactor.core.serialization import QueryTable
from tiered_refactor.core.world import World
from tiered_refactor.errors import ConfigurationError, PersistenceFailure
from tiered_refactor.storage.erasure import CoderFactory, make_erasure_coder
from tiered_refactor.storage.kvstore import DbmStore, KeyValueStore
from tiered_refactor.storage.metadata import (
    FieldMetadata,
    TierRecord,
    read_field_metadata,
    write_field_metadata,
)
from tiered_refactor.storage.sinks import DirectorySink, FragmentSink, MemorySink
from tiered_refactor.storage.source import read_fields
from tiered_refactor.systems.bitplane import EncodeLevels
from tiered_refactor.systems.compress import CompressLevels
from tiered_refactor.systems.decompose import Decompose
from tiered_refactor.systems.fragment import FragmentTiers
from tiered_refactor.systems.schedule import ScheduleTiers

logger = logging.getLogger(__name__)


@dataclass
class RefactoredField:
    """Everything produced for one field.

    Attributes:
        name: Variable name
        shape: Field shape
        dtype: Field dtype name
        levels: Compressed planes, sizes, errors and stop indices per level
        plans: Scheduled tiers and the manifest
        fragments: Erasure-coded fragments per tier
        metadata: The records written to the key-value store
    """

    name: str
    shape: tuple[int, ...]
    dtype: str
    levels: CompressedLevels
    plans: TierPlans
    fragments: TierFragments
    metadata: FieldMetadata

    @property
    def tiers(self) -> list[Tier]:
        return self.plans.tiers

    @property
    def manifest(self) -> QueryTable:
        return self.plans.manifest

    @property
    def tier_blobs(self) -> list[bytes]:
        return [tier.blob for tier in self.plans.tiers]


def _resolve_config(config: RefactorConfig | None, config_path: str | None) -> RefactorConfig:
    if config is not None:
        return config
    return load_config(config_path)


def _default_sink(config: RefactorConfig) -> FragmentSink:
    if all(tier.path for tier in config.tiers):
        return DirectorySink()
    return MemorySink()


def _decode_options(config: RefactorConfig) -> dict[str, Any]:
    options = strategy_options(config.model_dump())
    options["num_planes"] = config.num_planes
    return options


def refactor_field(
    name: str,
    data: np.ndarray,
    config: RefactorConfig | None = None,
    store: KeyValueStore | None = None,
    sink: FragmentSink | None = None,
    coder_factory: CoderFactory | None = None,
    prefix: str | None = None,
    config_path: str | None = None,
) -> RefactoredField:
    """Refactor one field into tiers and persist its metadata.

    Args:
        name: Variable name, used as the metadata key prefix
        data: N-d numeric array
        config: Refactoring configuration (loaded from TOML if None)
        store: Metadata store; falls back to ``config.kvstore_path`` and
            is skipped when neither is set
        sink: Fragment destination; defaults to files under each tier's
            path, or memory when a tier has no path
        coder_factory: Erasure coder factory (backend, k, m, w)
        prefix: Fragment name prefix (defaults to ``name``)
        config_path: Path to tiered_refactor.toml when config is None

    Returns:
        RefactoredField with levels, tiers, manifest, fragments and metadata

    Raises:
        ConfigurationError: If the configuration is invalid for this field
        PersistenceFailure: If the store or sink fails
        FragmentingFailure: If erasure coding fails validation

    Example:
        >>> config = build_config(levels=3, tiers=[{"tolerance": 1.0}, {"tolerance": 0.01}])
        >>> result = refactor_field("temperature", field, config)
        >>> [tier.size for tier in result.tiers]
        [1532, 20417]
    """
    config = _resolve_config(config, config_path)
    data = np.asarray(data)
    sink = sink if sink is not None else _default_sink(config)

    decomposer = make_decomposer(config.decomposer, config.wavelet)
    estimator = make_estimator(
        config.estimator, data.ndim, config.target_level, config.snorm_s
    )

    world = World()
    try:
        entity = world.spawn_field(name, data)
        world.metadata[entity]["prefix"] = prefix or name

        pipe = (
            world.pipe(entity)
            .to(Decompose(decomposer, target_level=config.target_level))
            .to(
                EncodeLevels(
                    make_interleaver(config.interleaver, config.block_size),
                    make_encoder(config.encoder),
                    num_planes=config.num_planes,
                    max_workers=config.max_workers,
                )
            )
            | CompressLevels(
                make_compressor(
                    config.compressor, config.adaptive_latency, config.adaptive_min_ratio
                )
            )
            | ScheduleTiers(make_collector(config.collector), estimator, config.tolerances)
            | FragmentTiers(config.tiers, config.ec_backend, sink, coder_factory)
        )
        fragments = pipe.out(TierFragments)
        levels = world.get_component(entity, CompressedLevels)
        plans = world.get_component(entity, TierPlans)
    finally:
        world.clear()

    metadata = FieldMetadata(
        name=name,
        dimensions=tuple(int(s) for s in data.shape),
        dtype=str(data.dtype),
        levels=levels.num_levels,
        error_bounds=list(levels.level_error_bounds),
        stop_indices=list(levels.stopping_indices),
        squared_errors=np.array(levels.squared_errors, dtype=np.float64),
        query_table=plans.manifest,
        tiers=[
            TierRecord(
                k=t.k,
                m=t.m,
                w=t.w,
                hd=t.hd,
                backend=t.backend,
                fragment_length=t.fragment_length,
                data_locations=t.data_locations,
                parity_locations=t.parity_locations,
            )
            for t in fragments.tiers
        ],
        options=_decode_options(config),
    )

    if store is not None:
        write_field_metadata(store, metadata)
    elif config.kvstore_path:
        with DbmStore(config.kvstore_path) as db:
            write_field_metadata(db, metadata)

    unmet = [t.index for t in plans.tiers if not t.tolerance_met]
    logger.info(
        f"Refactored {name!r}: {levels.num_levels} levels, "
        f"{len(plans.tiers)} tiers, {sum(t.size for t in plans.tiers)} bytes"
        + (f", tolerance unreachable for tiers {unmet}" if unmet else "")
    )
    return RefactoredField(
        name=name,
        shape=metadata.dimensions,
        dtype=metadata.dtype,
        levels=levels,
        plans=plans,
        fragments=fragments,
        metadata=metadata,
    )


def refactor_file(
    path: str,
    config: RefactorConfig | None = None,
    store: KeyValueStore | None = None,
    sink: FragmentSink | None = None,
    coder_factory: CoderFactory | None = None,
    config_path: str | None = None,
) -> list[RefactoredField]:
    """Refactor every variable of a ``.npy`` / ``.npz`` file.

    Fields are independent; each gets its own progress and fragments named
    ``{file stem}.{variable}.refactored.tier.{i}...``.
    """
    config = _resolve_config(config, config_path)
    stem = os.path.splitext(os.path.basename(path))[0]
    results = []
    for name, data in read_fields(path):
        results.append(
            refactor_field(
                name,
                data,
                config,
                store=store,
                sink=sink,
                coder_factory=coder_factory,
                prefix=f"{stem}.{name}",
            )
        )
    return results


def _retrieved_levels(metadata: FieldMetadata, tier_blobs: Sequence[bytes]) -> RetrievedLevels:
    """Split tier blobs into per-level plane prefixes using the manifest."""
    num_tiers = len(tier_blobs)
    if num_tiers > len(metadata.tiers):
        raise ValueError(
            f"Got {num_tiers} tier blobs, field {metadata.name!r} has {len(metadata.tiers)} tiers"
        )
    expected_sizes = metadata.query_table.tier_sizes()
    for tier, blob in enumerate(tier_blobs):
        if len(blob) != expected_sizes.get(tier, 0):
            raise ValueError(
                f"Tier {tier} blob is {len(blob)} bytes, manifest expects "
                f"{expected_sizes.get(tier, 0)}"
            )

    planes: list[list[bytes]] = [[] for _ in range(metadata.levels)]
    for row in metadata.query_table:
        if row.tier >= num_tiers:
            continue
        if row.plane != len(planes[row.level]):
            raise ValueError(
                f"Manifest fetches level {row.level} plane {row.plane} before "
                f"plane {len(planes[row.level])}"
            )
        blob = tier_blobs[row.tier]
        planes[row.level].append(bytes(blob[row.offset : row.offset + row.length]))

    options = metadata.options
    decomposer = make_decomposer(options["decomposer"], options["wavelet"])
    level_shapes = decomposer.level_shapes(metadata.dimensions, metadata.levels - 1)
    return RetrievedLevels(
        shape=metadata.dimensions,
        coeff_shape=level_shapes[-1],
        level_shapes=level_shapes,
        level_error_bounds=metadata.error_bounds,
        num_planes=metadata.num_planes,
        planes=planes,
        stopping_indices=metadata.stop_indices,
        tiers_used=num_tiers,
    )


def reconstruct_field(metadata: FieldMetadata, tier_blobs: Sequence[bytes]) -> np.ndarray:
    """Rebuild a field from the blobs of its first ``len(tier_blobs)`` tiers.

    Args:
        metadata: Field metadata (from refactor_field or read_field_metadata)
        tier_blobs: Leading tier blobs, in tier order

    Returns:
        Approximation of the field; floating dtypes are preserved, other
        dtypes come back as float64

    Raises:
        ValueError: If the blobs disagree with the manifest
        ConfigurationError: If the recorded strategy options are unknown
    """
    try:
        options = strategy_options(metadata.options)
    except ConfigurationError as e:
        raise ConfigurationError(f"Field {metadata.name!r}: {e}", e.parameter) from e

    retrieved = _retrieved_levels(metadata, tier_blobs)
    world = World()
    try:
        entity = world.new_entity()
        world.add_component(entity, retrieved)
        recon = (
            world.pipe(entity)
            .to(CompressLevels(make_compressor(options["compressor"]), mode="inverse"))
            .to(
                EncodeLevels(
                    make_interleaver(options["interleaver"], options["block_size"]),
                    make_encoder(options["encoder"]),
                    num_planes=metadata.num_planes,
                    mode="decode",
                )
            )
            | Decompose(
                make_decomposer(options["decomposer"], options["wavelet"]),
                target_level=metadata.levels - 1,
                mode="inverse",
            )
        ).out(ReconstructedField)
        data = recon.data
    finally:
        world.clear()

    logger.debug(f"Reconstructed {metadata.name!r} from {len(tier_blobs)} tiers")
    dtype = np.dtype(metadata.dtype)
    if np.issubdtype(dtype, np.floating):
        return cast(np.ndarray, data.astype(dtype))
    return cast(np.ndarray, data)


def read_tier_blob(
    metadata: FieldMetadata,
    tier: int,
    sink: FragmentSink | None = None,
    coder_factory: CoderFactory | None = None,
) -> bytes:
    """Read a tier's fragments back through the sink and decode its blob.

    Raises:
        PersistenceFailure: If a fragment cannot be read
        FragmentingFailure: If the fragments do not decode
    """
    record = metadata.tiers[tier]
    sink = sink or DirectorySink()
    factory = coder_factory or make_erasure_coder
    coder = factory(record.backend, record.k, record.m, record.w)
    fragments = [sink.read(loc) for loc in record.data_locations + record.parity_locations]
    if not fragments:
        raise PersistenceFailure(f"Tier {tier} of {metadata.name!r} has no fragment locations")
    return coder.decode(fragments)


def reconstruct_from_store(
    store: KeyValueStore,
    name: str,
    num_tiers: int | None = None,
    sink: FragmentSink | None = None,
    coder_factory: CoderFactory | None = None,
) -> np.ndarray:
    """Read metadata and the first ``num_tiers`` tiers, then reconstruct.

    Example:
        >>> approx = reconstruct_from_store(store, "temperature", num_tiers=1)
    """
    metadata = read_field_metadata(store, name)
    count = len(metadata.tiers) if num_tiers is None else num_tiers
    if not 0 <= count <= len(metadata.tiers):
        raise ValueError(f"num_tiers must be in [0, {len(metadata.tiers)}], got {count}")
    blobs = [read_tier_blob(metadata, i, sink, coder_factory) for i in range(count)]
    return reconstruct_field(metadata, blobs)


def get_refactor_info(store: KeyValueStore, name: str) -> dict[str, Any]:
    """Summarize a refactored field without reading any fragments.

    Returns:
        Dictionary with keys: name, shape, dtype, levels, num_planes,
        error_bounds, options, tiers (index, planes, size, k, m, backend,
        fragment_length)
    """
    metadata = read_field_metadata(store, name)
    sizes = metadata.query_table.tier_sizes()
    return {
        "name": metadata.name,
        "shape": metadata.dimensions,
        "dtype": metadata.dtype,
        "levels": metadata.levels,
        "num_planes": metadata.num_planes,
        "error_bounds": metadata.error_bounds,
        "options": metadata.options,
        "tiers": [
            {
                "index": i,
                "planes": len(metadata.query_table.tier_rows(i)),
                "size": sizes.get(i, 0),
                "k": record.k,
                "m": record.m,
                "backend": record.backend,
                "fragment_length": record.fragment_length,
            }
            for i, record in enumerate(metadata.tiers)
        ],
    }
