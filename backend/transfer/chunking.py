"""Partition a buffer into ordered, size-bounded chunks."""

import math
from typing import Iterator


def chunk_count(size: int, chunk_size: int) -> int:
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    return math.ceil(size / chunk_size)


def iter_chunks(data: bytes, chunk_size: int) -> Iterator[bytes]:
    """Yield ceil(len(data) / chunk_size) slices; only the last may be short."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    view = memoryview(data)
    for start in range(0, len(data), chunk_size):
        yield bytes(view[start:start + chunk_size])
