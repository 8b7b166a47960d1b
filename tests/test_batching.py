from __future__ import annotations

import pytest

from market_sync.batching import chunk_count, chunked


@pytest.mark.parametrize(
    ("total", "size"),
    [(0, 50), (1, 50), (49, 50), (50, 50), (51, 50), (1001, 500), (7, 1)],
)
def test_chunking_is_lossless_and_bounded(total: int, size: int) -> None:
    items = list(range(total))

    chunks = list(chunked(items, size))

    assert [item for chunk in chunks for item in chunk] == items
    assert all(0 < len(chunk) <= size for chunk in chunks)
    assert len(chunks) == chunk_count(total, size)


def test_chunked_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        list(chunked([1, 2, 3], 0))
