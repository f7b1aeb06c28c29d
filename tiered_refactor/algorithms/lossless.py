"""Lossless byte codec using rANS from constriction.

Each compressed blob is self-describing::

    <Q original length> <H alphabet size n>
    <n x uint8 symbols present> <n x uint32 symbol counts>
    <uint32 rANS words>

The categorical model covers only the symbols that occur, so no smoothing is
needed. A blob with a single distinct symbol carries no rANS payload.
"""

from __future__ import annotations

import struct

import constriction
import numpy as np

_HEADER = struct.Struct("<QH")


def _model(counts: np.ndarray) -> constriction.stream.model.Categorical:
    probs = counts.astype(np.float64) / counts.sum()
    return constriction.stream.model.Categorical(probs, perfect=False)


def compress_bytes(data: bytes) -> bytes:
    """Entropy-code a byte string."""
    symbols = np.frombuffer(data, dtype=np.uint8)
    hist = np.bincount(symbols, minlength=256)
    alphabet = np.flatnonzero(hist).astype(np.uint8)
    counts = hist[alphabet].astype(np.uint32)

    header = _HEADER.pack(len(symbols), len(alphabet)) + alphabet.tobytes() + counts.tobytes()
    if len(alphabet) <= 1:
        return header

    # Dense indices into the present-symbol model
    lookup = np.zeros(256, dtype=np.int32)
    lookup[alphabet] = np.arange(len(alphabet), dtype=np.int32)

    encoder = constriction.stream.stack.AnsCoder()
    encoder.encode_reverse(lookup[symbols], _model(counts))
    compressed = np.asarray(encoder.get_compressed(), dtype=np.uint32)
    return header + compressed.tobytes()


def decompress_bytes(blob: bytes) -> bytes:
    """Inverse of :func:`compress_bytes`.

    Raises:
        ValueError: If the blob is truncated or malformed
    """
    if len(blob) < _HEADER.size:
        raise ValueError("Compressed blob is shorter than its header")
    length, n_symbols = _HEADER.unpack_from(blob, 0)
    offset = _HEADER.size
    table_end = offset + n_symbols * 5
    if len(blob) < table_end:
        raise ValueError("Compressed blob has a truncated symbol table")

    alphabet = np.frombuffer(blob, dtype=np.uint8, count=n_symbols, offset=offset)
    counts = np.frombuffer(blob, dtype=np.uint32, count=n_symbols, offset=offset + n_symbols)
    if int(counts.sum()) != length:
        raise ValueError(f"Symbol counts sum to {int(counts.sum())}, expected {length}")

    if length == 0:
        return b""
    if n_symbols == 1:
        return bytes(alphabet) * length

    payload = blob[table_end:]
    if len(payload) % 4:
        raise ValueError("rANS payload is not a whole number of 32-bit words")
    words = np.frombuffer(payload, dtype=np.uint32)
    decoder = constriction.stream.stack.AnsCoder(words.copy())
    indices = np.asarray(decoder.decode(_model(counts), length), dtype=np.int64)
    return alphabet[indices].tobytes()
