"""Key-value persistence for refactoring metadata.

Keys are strings and values raw bytes. Any backend failure is raised as
:class:`~tiered_refactor.errors.PersistenceFailure`; nothing is retried.
"""

from __future__ import annotations

import dbm
import logging
from typing import Protocol

from tiered_refactor.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def put(self, key: str, value: bytes) -> None: ...

    def get(self, key: str) -> bytes: ...


class MemoryStore:
    """Dict-backed store."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def put(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def get(self, key: str) -> bytes:
        try:
            return self._data[key]
        except KeyError as e:
            raise PersistenceFailure(f"Key {key!r} not found") from e

    def keys(self) -> list[str]:
        return list(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class DbmStore:
    """Store backed by the standard library ``dbm`` database.

    Example:
        >>> with DbmStore("/tmp/refactor.db") as store:
        ...     store.put("temperature:Levels", b"\\x04\\x00\\x00\\x00")
    """

    def __init__(self, path: str):
        self.path = path
        try:
            self._db = dbm.open(path, "c")
        except OSError as e:
            raise PersistenceFailure(f"Cannot open key-value store at {path}: {e}") from e
        logger.debug(f"Opened key-value store {path}")

    def put(self, key: str, value: bytes) -> None:
        try:
            self._db[key.encode("utf-8")] = value
        except (OSError, dbm.error) as e:
            raise PersistenceFailure(f"Failed to put {key!r}: {e}") from e

    def get(self, key: str) -> bytes:
        try:
            return self._db[key.encode("utf-8")]
        except KeyError as e:
            raise PersistenceFailure(f"Key {key!r} not found in {self.path}") from e
        except (OSError, dbm.error) as e:
            raise PersistenceFailure(f"Failed to get {key!r}: {e}") from e

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> DbmStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
