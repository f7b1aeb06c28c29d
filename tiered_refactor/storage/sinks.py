"""Destinations for encoded fragments.

Fragment names follow ``{prefix}.refactored.tier.{i}.data.{j}`` and
``{prefix}.refactored.tier.{i}.parity.{j}``; the sink decides where a name
lands and returns that location for the metadata record.
"""

from __future__ import annotations

import os
from typing import Literal, Protocol

from tiered_refactor.errors import PersistenceFailure

FragmentKind = Literal["data", "parity"]


def fragment_name(prefix: str, tier: int, kind: FragmentKind, index: int) -> str:
    return f"{prefix}.refactored.tier.{tier}.{kind}.{index}"


class FragmentSink(Protocol):
    def write(self, tier_path: str | None, name: str, data: bytes) -> str: ...

    def read(self, location: str) -> bytes: ...


class DirectorySink:
    """Writes each fragment to a file under the tier's directory.

    Relative tier paths (and tiers without a path) resolve against ``root``.
    """

    def __init__(self, root: str = "."):
        self.root = root

    def write(self, tier_path: str | None, name: str, data: bytes) -> str:
        directory = os.path.join(self.root, tier_path or "")
        location = os.path.join(directory, name)
        try:
            os.makedirs(directory, exist_ok=True)
            with open(location, "wb") as f:
                f.write(data)
        except OSError as e:
            raise PersistenceFailure(f"Failed to write fragment {location}: {e}") from e
        return location

    def read(self, location: str) -> bytes:
        try:
            with open(location, "rb") as f:
                return f.read()
        except OSError as e:
            raise PersistenceFailure(f"Failed to read fragment {location}: {e}") from e


class MemorySink:
    """Keeps fragments in a dict keyed by ``memory://`` locations."""

    def __init__(self) -> None:
        self.fragments: dict[str, bytes] = {}

    def write(self, tier_path: str | None, name: str, data: bytes) -> str:
        location = f"memory://{tier_path or ''}/{name}"
        self.fragments[location] = bytes(data)
        return location

    def read(self, location: str) -> bytes:
        try:
            return self.fragments[location]
        except KeyError as e:
            raise PersistenceFailure(f"No fragment at {location}") from e
