"""Per-field metadata records in a key-value store.

Keys are prefixed by the variable name::

    {var}:Dimensions              uint32[ndim]
    {var}:Type                    utf-8 dtype name
    {var}:Levels                  uint32
    {var}:ErrorBounds             float64[levels]
    {var}:StopIndices             uint8[levels]
    {var}:SquaredErrors:Shape     uint64[2] = [levels, planes + 1]
    {var}:SquaredErrors           float64[levels * (planes + 1)]
    {var}:QueryTable:Shape        uint64[2] = [rows, 5]
    {var}:QueryTable              uint64[rows * 5]
    {var}:Tiers                   uint32
    {var}:Options                 utf-8 JSON (strategies needed to decode)
    {var}:Tier:{i}:K|M|W|HD       int32
    {var}:Tier:{i}:ECBackendName  utf-8
    {var}:Tier:{i}:EncodedFragmentLength   uint64
    {var}:Tier:{i}:Data:{j}:Location       utf-8
    {var}:Tier:{i}:Parity:{j}:Location     utf-8
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from tiered_refactor.core.serialization import (
    QueryTable,
    pack_query_table,
    pack_scalar,
    pack_vector,
    unpack_query_table,
    unpack_scalar,
    unpack_vector,
)
from tiered_refactor.errors import PersistenceFailure
from tiered_refactor.storage.kvstore import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class TierRecord:
    k: int
    m: int
    w: int
    hd: int
    backend: str
    fragment_length: int
    data_locations: list[str] = field(default_factory=list)
    parity_locations: list[str] = field(default_factory=list)


@dataclass
class FieldMetadata:
    """Everything needed to locate and decode a refactored field."""

    name: str
    dimensions: tuple[int, ...]
    dtype: str
    levels: int
    error_bounds: list[float]
    stop_indices: list[int]
    squared_errors: np.ndarray
    query_table: QueryTable
    tiers: list[TierRecord]
    options: dict[str, Any]

    @property
    def num_planes(self) -> int:
        return int(self.squared_errors.shape[1]) - 1


def _text(value: str) -> bytes:
    return value.encode("utf-8")


def _read_text(store: KeyValueStore, key: str) -> str:
    try:
        return store.get(key).decode("utf-8")
    except UnicodeDecodeError as e:
        raise PersistenceFailure(f"{key} is not valid UTF-8") from e


def write_field_metadata(store: KeyValueStore, metadata: FieldMetadata) -> None:
    """Write every record of a field.

    Raises:
        PersistenceFailure: If the store rejects a write
    """
    var = metadata.name
    errors = np.asarray(metadata.squared_errors, dtype=np.float64)
    table_shape, table_rows = pack_query_table(metadata.query_table)

    store.put(f"{var}:QueryTable:Shape", table_shape)
    store.put(f"{var}:QueryTable", table_rows)
    store.put(f"{var}:Dimensions", pack_vector(metadata.dimensions, np.uint32))
    store.put(f"{var}:Type", _text(metadata.dtype))
    store.put(f"{var}:Levels", pack_scalar(metadata.levels, np.uint32))
    store.put(f"{var}:ErrorBounds", pack_vector(metadata.error_bounds, np.float64))
    store.put(f"{var}:StopIndices", pack_vector(metadata.stop_indices, np.uint8))
    store.put(f"{var}:SquaredErrors:Shape", pack_vector(errors.shape, np.uint64))
    store.put(f"{var}:SquaredErrors", pack_vector(errors, np.float64))
    store.put(f"{var}:Options", _text(json.dumps(metadata.options, sort_keys=True)))
    store.put(f"{var}:Tiers", pack_scalar(len(metadata.tiers), np.uint32))

    for i, tier in enumerate(metadata.tiers):
        prefix = f"{var}:Tier:{i}"
        store.put(f"{prefix}:K", pack_scalar(tier.k, np.int32))
        store.put(f"{prefix}:M", pack_scalar(tier.m, np.int32))
        store.put(f"{prefix}:W", pack_scalar(tier.w, np.int32))
        store.put(f"{prefix}:HD", pack_scalar(tier.hd, np.int32))
        store.put(f"{prefix}:ECBackendName", _text(tier.backend))
        store.put(f"{prefix}:EncodedFragmentLength", pack_scalar(tier.fragment_length, np.uint64))
        for j, location in enumerate(tier.data_locations):
            store.put(f"{prefix}:Data:{j}:Location", _text(location))
        for j, location in enumerate(tier.parity_locations):
            store.put(f"{prefix}:Parity:{j}:Location", _text(location))

    logger.debug(f"Wrote metadata for {var!r} ({len(metadata.tiers)} tiers)")


def read_field_metadata(store: KeyValueStore, name: str) -> FieldMetadata:
    """Read back what :func:`write_field_metadata` wrote.

    Raises:
        PersistenceFailure: If a record is missing or malformed
    """
    var = name
    try:
        query_table = unpack_query_table(
            store.get(f"{var}:QueryTable:Shape"), store.get(f"{var}:QueryTable")
        )
        dimensions = tuple(int(d) for d in unpack_vector(store.get(f"{var}:Dimensions"), np.uint32))
        levels = int(unpack_scalar(store.get(f"{var}:Levels"), np.uint32))
        error_bounds = unpack_vector(store.get(f"{var}:ErrorBounds"), np.float64).tolist()
        stop_indices = unpack_vector(store.get(f"{var}:StopIndices"), np.uint8).tolist()
        errors_shape = unpack_vector(store.get(f"{var}:SquaredErrors:Shape"), np.uint64)
        squared_errors = unpack_vector(store.get(f"{var}:SquaredErrors"), np.float64)
        squared_errors = squared_errors.reshape(tuple(int(s) for s in errors_shape))
        num_tiers = int(unpack_scalar(store.get(f"{var}:Tiers"), np.uint32))

        tiers = []
        for i in range(num_tiers):
            prefix = f"{var}:Tier:{i}"
            k = int(unpack_scalar(store.get(f"{prefix}:K"), np.int32))
            m = int(unpack_scalar(store.get(f"{prefix}:M"), np.int32))
            tiers.append(
                TierRecord(
                    k=k,
                    m=m,
                    w=int(unpack_scalar(store.get(f"{prefix}:W"), np.int32)),
                    hd=int(unpack_scalar(store.get(f"{prefix}:HD"), np.int32)),
                    backend=_read_text(store, f"{prefix}:ECBackendName"),
                    fragment_length=int(
                        unpack_scalar(store.get(f"{prefix}:EncodedFragmentLength"), np.uint64)
                    ),
                    data_locations=[
                        _read_text(store, f"{prefix}:Data:{j}:Location") for j in range(k)
                    ],
                    parity_locations=[
                        _read_text(store, f"{prefix}:Parity:{j}:Location") for j in range(m)
                    ],
                )
            )
        options = json.loads(_read_text(store, f"{var}:Options"))
    except (ValueError, json.JSONDecodeError) as e:
        raise PersistenceFailure(f"Malformed metadata for {var!r}: {e}") from e

    if len(error_bounds) != levels or len(stop_indices) != levels:
        raise PersistenceFailure(
            f"Metadata for {var!r} records {levels} levels but "
            f"{len(error_bounds)} error bounds and {len(stop_indices)} stop indices"
        )

    return FieldMetadata(
        name=var,
        dimensions=dimensions,
        dtype=_read_text(store, f"{var}:Type"),
        levels=levels,
        error_bounds=error_bounds,
        stop_indices=stop_indices,
        squared_errors=squared_errors,
        query_table=query_table,
        tiers=tiers,
        options=options,
    )
