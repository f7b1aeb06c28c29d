"""Reading named fields from numpy files."""

from __future__ import annotations

import os
from typing import Iterator

import numpy as np


def read_fields(path: str) -> Iterator[tuple[str, np.ndarray]]:
    """Yield ``(name, array)`` for every variable in a ``.npy`` or ``.npz`` file.

    A ``.npy`` file holds one variable named after the file stem.

    Raises:
        FileNotFoundError: If the path does not exist
        ValueError: If the extension is not supported
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Field file not found: {path}")
    stem, ext = os.path.splitext(os.path.basename(path))
    if ext == ".npy":
        yield stem, np.load(path, allow_pickle=False)
    elif ext == ".npz":
        with np.load(path, allow_pickle=False) as archive:
            for name in archive.files:
                yield name, archive[name]
    else:
        raise ValueError(f"Unsupported field file {path!r}; expected .npy or .npz")
