"""Fixed-width binary records for refactoring metadata.

Every persisted value is a little-endian array of one numeric type, so the
records are readable from any language without a schema.

Query table (manifest) layout::

    shape record : uint64[2]        = [rows, 5]
    rows record  : uint64[rows * 5] row-major, one row per fetched plane
                   (level, plane, tier, offset_in_tier_blob, byte_length)

Rows are in fetch order within each tier and tiers are concatenated in the
order they were scheduled.
"""

from __future__ import annotations

from typing import Iterable, Iterator, NamedTuple, Sequence

import numpy as np

QUERY_TABLE_COLUMNS = 5


class QueryRow(NamedTuple):
    level: int
    plane: int
    tier: int
    offset: int
    length: int


class QueryTable:
    """Ordered manifest rows for one field."""

    def __init__(self, rows: Iterable[QueryRow] = ()):
        self.rows: list[QueryRow] = [QueryRow(*(int(v) for v in row)) for row in rows]

    def extend(self, rows: Iterable[QueryRow]) -> None:
        self.rows.extend(QueryRow(*(int(v) for v in row)) for row in rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[QueryRow]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> QueryRow:
        return self.rows[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueryTable):
            return NotImplemented
        return self.rows == other.rows

    def __repr__(self) -> str:
        return f"QueryTable(rows={len(self.rows)})"

    def tier_rows(self, tier: int) -> list[QueryRow]:
        return [row for row in self.rows if row.tier == tier]

    def tiers(self) -> list[int]:
        """Tier indices in first-appearance order."""
        seen: dict[int, None] = {}
        for row in self.rows:
            seen.setdefault(row.tier, None)
        return list(seen)

    def to_array(self) -> np.ndarray:
        """Rows as a ``(rows, 5)`` uint64 array."""
        if not self.rows:
            return np.zeros((0, QUERY_TABLE_COLUMNS), dtype=np.uint64)
        return np.array(self.rows, dtype=np.uint64)

    @classmethod
    def from_array(cls, array: np.ndarray) -> QueryTable:
        array = np.asarray(array)
        if array.ndim != 2 or array.shape[1] != QUERY_TABLE_COLUMNS:
            raise ValueError(
                f"Query table must have shape (rows, {QUERY_TABLE_COLUMNS}), got {array.shape}"
            )
        return cls(QueryRow(*(int(v) for v in row)) for row in array)

    def validate(self) -> None:
        """Check that each tier's rows tile its blob without gaps or overlap.

        Raises:
            ValueError: If a tier's first offset is not 0 or offsets are not
                contiguous
        """
        next_offset: dict[int, int] = {}
        for i, row in enumerate(self.rows):
            expected = next_offset.get(row.tier, 0)
            if row.offset != expected:
                raise ValueError(
                    f"Row {i} (tier {row.tier}): offset {row.offset}, expected {expected}"
                )
            next_offset[row.tier] = row.offset + row.length

    def tier_sizes(self) -> dict[int, int]:
        """Blob size implied by the rows of each tier."""
        sizes: dict[int, int] = {}
        for row in self.rows:
            sizes[row.tier] = sizes.get(row.tier, 0) + row.length
        return sizes


def pack_vector(values: Sequence | np.ndarray, dtype: np.dtype | type | str) -> bytes:
    """Pack a 1-d sequence as little-endian fixed-width values."""
    array = np.asarray(values, dtype=np.dtype(dtype).newbyteorder("<"))
    return array.reshape(-1).tobytes()


def unpack_vector(data: bytes, dtype: np.dtype | type | str) -> np.ndarray:
    """Inverse of :func:`pack_vector`.

    Raises:
        ValueError: If the byte length is not a multiple of the item size
    """
    le = np.dtype(dtype).newbyteorder("<")
    if len(data) % le.itemsize:
        raise ValueError(
            f"Record of {len(data)} bytes is not a multiple of {le.itemsize} ({le.name})"
        )
    return np.frombuffer(data, dtype=le).astype(np.dtype(dtype).newbyteorder("="))


def pack_scalar(value: int | float, dtype: np.dtype | type | str) -> bytes:
    return pack_vector([value], dtype)


def unpack_scalar(data: bytes, dtype: np.dtype | type | str) -> int | float:
    """Unpack exactly one value.

    Raises:
        ValueError: If the record does not hold exactly one value
    """
    values = unpack_vector(data, dtype)
    if values.size != 1:
        raise ValueError(f"Expected one {np.dtype(dtype).name} value, got {values.size}")
    return values[0].item()


def pack_query_table(table: QueryTable) -> tuple[bytes, bytes]:
    """Serialize a manifest into its (shape, rows) records."""
    array = table.to_array()
    return pack_vector(array.shape, np.uint64), pack_vector(array, np.uint64)


def unpack_query_table(shape_data: bytes, rows_data: bytes) -> QueryTable:
    """Rebuild a manifest from its (shape, rows) records.

    Raises:
        ValueError: If the shape record is malformed or disagrees with the rows
    """
    shape = unpack_vector(shape_data, np.uint64)
    if shape.size != 2 or int(shape[1]) != QUERY_TABLE_COLUMNS:
        raise ValueError(f"Invalid query table shape record {shape.tolist()}")
    rows = unpack_vector(rows_data, np.uint64)
    n_rows = int(shape[0])
    if rows.size != n_rows * QUERY_TABLE_COLUMNS:
        raise ValueError(
            f"Query table holds {rows.size} values, shape says {n_rows} x {QUERY_TABLE_COLUMNS}"
        )
    return QueryTable.from_array(rows.reshape(n_rows, QUERY_TABLE_COLUMNS))
