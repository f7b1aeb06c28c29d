"""Erasure-coded fan-out of tier blobs into data and parity fragments.

Coding itself is delegated: ``null`` is a single pass-through fragment with a
small header, every other backend name goes to liberasurecode through
``pyeclib`` (optional dependency, ``pip install tiered-refactor[ec]``).
Every fragment produced is validated against its own header before it is
handed on.
"""

from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

from tiered_refactor.config import EC_MAX_FRAGMENTS
from tiered_refactor.errors import FragmentingFailure

logger = logging.getLogger(__name__)


@dataclass
class FragmentHeader:
    """What a fragment reports about itself."""

    index: int
    size: int
    orig_data_size: int
    backend: str
    checksum_mismatch: bool


@dataclass
class EncodedFragments:
    data: list[bytes]
    parity: list[bytes]
    fragment_length: int

    @property
    def all(self) -> list[bytes]:
        return self.data + self.parity


class ErasureCoder(Protocol):
    backend: str
    k: int
    m: int
    w: int

    def encode(self, data: bytes) -> EncodedFragments: ...

    def decode(self, fragments: Sequence[bytes]) -> bytes: ...

    def fragment_header(self, fragment: bytes) -> FragmentHeader: ...


# magic, index, payload size, original size, crc32
_NULL_HEADER = struct.Struct("<4sIQQI")
_NULL_MAGIC = b"TRNF"


class NullErasureCoder:
    """Backend ``null``: one data fragment, no parity."""

    backend = "null"

    def __init__(self, k: int = 1, m: int = 0, w: int = 8):
        if k != 1 or m != 0:
            raise FragmentingFailure(f"null backend requires k=1, m=0, got k={k}, m={m}")
        self.k = k
        self.m = m
        self.w = w

    def encode(self, data: bytes) -> EncodedFragments:
        header = _NULL_HEADER.pack(_NULL_MAGIC, 0, len(data), len(data), zlib.crc32(data))
        fragment = header + data
        return EncodedFragments(data=[fragment], parity=[], fragment_length=len(fragment))

    def fragment_header(self, fragment: bytes) -> FragmentHeader:
        if len(fragment) < _NULL_HEADER.size:
            raise FragmentingFailure("Fragment is shorter than its header")
        magic, index, size, orig_size, crc = _NULL_HEADER.unpack_from(fragment, 0)
        if magic != _NULL_MAGIC:
            raise FragmentingFailure(f"Not a null-backend fragment (magic {magic!r})")
        payload = fragment[_NULL_HEADER.size :]
        return FragmentHeader(
            index=index,
            size=size,
            orig_data_size=orig_size,
            backend=self.backend,
            checksum_mismatch=len(payload) != size or zlib.crc32(payload) != crc,
        )

    def decode(self, fragments: Sequence[bytes]) -> bytes:
        if not fragments:
            raise FragmentingFailure("No fragments to decode")
        header = self.fragment_header(fragments[0])
        if header.checksum_mismatch:
            raise FragmentingFailure("Fragment checksum mismatch")
        return bytes(fragments[0][_NULL_HEADER.size :])


class PyECLibCoder:
    """Any liberasurecode backend via ``pyeclib.ec_iface.ECDriver``."""

    def __init__(self, backend: str, k: int, m: int, w: int = 8):
        try:
            from pyeclib.ec_iface import ECDriver, ECDriverError
        except ImportError as e:
            raise FragmentingFailure(
                f"Backend {backend!r} needs pyeclib; install tiered-refactor[ec]"
            ) from e

        self._error = ECDriverError
        self.backend = backend
        self.k = k
        self.m = m
        self.w = w
        options: dict[str, Any] = {"k": k, "m": m, "ec_type": backend}
        if backend == "flat_xor_hd":
            options["hd"] = m + 1
        try:
            self._driver = ECDriver(**options)
        except ECDriverError as e:
            raise FragmentingFailure(f"Cannot create {backend!r} coder (k={k}, m={m}): {e}") from e

    def encode(self, data: bytes) -> EncodedFragments:
        try:
            fragments = self._driver.encode(data)
        except self._error as e:
            raise FragmentingFailure(f"{self.backend} encode failed: {e}") from e
        return EncodedFragments(
            data=list(fragments[: self.k]),
            parity=list(fragments[self.k :]),
            fragment_length=len(fragments[0]),
        )

    def fragment_header(self, fragment: bytes) -> FragmentHeader:
        try:
            info = self._driver.get_metadata(fragment, formatted=True)
        except self._error as e:
            raise FragmentingFailure(f"Unreadable fragment header: {e}") from e
        return FragmentHeader(
            index=int(info["index"]),
            size=int(info["size"]),
            orig_data_size=int(info["orig_data_size"]),
            backend=str(info.get("backend_id", self.backend)),
            checksum_mismatch=bool(info.get("chksum_mismatch", 0)),
        )

    def decode(self, fragments: Sequence[bytes]) -> bytes:
        try:
            return bytes(self._driver.decode(list(fragments)))
        except self._error as e:
            raise FragmentingFailure(f"{self.backend} decode failed: {e}") from e


CoderFactory = Callable[[str, int, int, int], ErasureCoder]


def make_erasure_coder(backend: str, k: int, m: int, w: int = 8) -> ErasureCoder:
    """Build a coder for the backend name.

    Raises:
        FragmentingFailure: If k + m exceeds the fragment limit or the
            backend cannot be created
    """
    if k + m > EC_MAX_FRAGMENTS:
        raise FragmentingFailure(f"k + m must be <= {EC_MAX_FRAGMENTS}, got {k + m}")
    logger.debug(f"Creating {backend} erasure coder (k={k}, m={m}, w={w})")
    if backend == "null":
        return NullErasureCoder(k, m, w)
    return PyECLibCoder(backend, k, m, w)


def validate_fragments(
    coder: ErasureCoder, encoded: EncodedFragments, orig_data_size: int
) -> None:
    """Check every fragment's header against what was encoded.

    Raises:
        FragmentingFailure: On a wrong index, backend, original size, payload
            size or a checksum mismatch
    """
    if len(encoded.data) != coder.k or len(encoded.parity) != coder.m:
        raise FragmentingFailure(
            f"Expected {coder.k}+{coder.m} fragments, got "
            f"{len(encoded.data)}+{len(encoded.parity)}"
        )
    for expected_index, fragment in enumerate(encoded.all):
        header = coder.fragment_header(fragment)
        if len(fragment) != encoded.fragment_length:
            raise FragmentingFailure(
                f"Fragment {expected_index} is {len(fragment)} bytes, "
                f"expected {encoded.fragment_length}"
            )
        if header.index != expected_index:
            raise FragmentingFailure(
                f"Fragment {expected_index} reports index {header.index}"
            )
        if header.backend != coder.backend:
            raise FragmentingFailure(
                f"Fragment {expected_index} comes from backend {header.backend!r}, "
                f"expected {coder.backend!r}"
            )
        if header.orig_data_size != orig_data_size:
            raise FragmentingFailure(
                f"Fragment {expected_index} reports original size "
                f"{header.orig_data_size}, expected {orig_data_size}"
            )
        if header.size > encoded.fragment_length:
            raise FragmentingFailure(
                f"Fragment {expected_index} payload {header.size} exceeds "
                f"fragment length {encoded.fragment_length}"
            )
        if header.checksum_mismatch:
            raise FragmentingFailure(f"Fragment {expected_index} checksum mismatch")
