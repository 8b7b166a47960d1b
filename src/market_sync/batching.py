from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items, preserving order."""
    if size <= 0:
        raise ValueError("size must be > 0")

    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def chunk_count(total: int, size: int) -> int:
    if size <= 0:
        raise ValueError("size must be > 0")
    return (total + size - 1) // size
