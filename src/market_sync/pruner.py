from __future__ import annotations

import logging
import time
from collections.abc import Sequence

import psycopg

from market_sync.batching import chunked
from market_sync.models import PruneResult
from market_sync.source import SourceStore

LOGGER = logging.getLogger(__name__)


class LogPruner:
    """Deletes consumed change-log ids from the source in fixed-size chunks.

    A failing chunk is logged and skipped; its ids stay in the log and are
    picked up again by the next cycle.
    """

    def __init__(self, *, store: SourceStore, chunk_size: int, chunk_delay_ms: int) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if chunk_delay_ms < 0:
            raise ValueError("chunk_delay_ms must be >= 0")

        self._store = store
        self._chunk_size = chunk_size
        self._chunk_delay_s = chunk_delay_ms / 1000.0

    def prune(self, ids: Sequence[int]) -> PruneResult:
        result = PruneResult()
        unique_ids = list(dict.fromkeys(ids))

        for index, chunk in enumerate(chunked(unique_ids, self._chunk_size)):
            if index:
                time.sleep(self._chunk_delay_s)

            try:
                self._store.delete_change_log_ids(chunk)
            except psycopg.Error as exc:
                LOGGER.error(
                    "prune_chunk_failed",
                    extra={"chunk": index, "ids": len(chunk), "error": str(exc)},
                )
                result.failed_ids.extend(chunk)
                continue

            result.pruned += len(chunk)

        if unique_ids:
            LOGGER.info(
                "prune_complete",
                extra={"pruned": result.pruned, "failed": len(result.failed_ids)},
            )
        return result
