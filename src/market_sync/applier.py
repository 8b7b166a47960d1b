from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

from market_sync.batching import chunk_count, chunked
from market_sync.entities import EntityDefinition
from market_sync.errors import (
    BatchAbortedError,
    ConnectivityError,
    DataShapeError,
    RemoteRejection,
)
from market_sync.gateway import CommandGateway
from market_sync.models import ApplyResult, FailurePolicy
from market_sync.settings import EntitySyncConfig
from market_sync.statements import build_delete_statement, build_insert_statement

LOGGER = logging.getLogger(__name__)

_CHUNK_ERRORS = (ConnectivityError, RemoteRejection, DataShapeError)


class RemoteBatchApplier:
    """Applies deletes then inserts for one entity as size-bounded remote commands."""

    def __init__(self, *, gateway: CommandGateway, chunk_delay_ms: int) -> None:
        if chunk_delay_ms < 0:
            raise ValueError("chunk_delay_ms must be >= 0")

        self._gateway = gateway
        self._chunk_delay_s = chunk_delay_ms / 1000.0

    def apply(
        self,
        definition: EntityDefinition,
        config: EntitySyncConfig,
        *,
        inserts: Sequence[Mapping[str, Any]],
        delete_keys: Sequence[Any],
    ) -> ApplyResult:
        result = ApplyResult()
        rows, collapsed_keys = _collapse_on_conflict_key(definition, inserts)

        steps: list[tuple[str, list[Any]]] = [
            ("delete", chunk) for chunk in chunked(delete_keys, config.delete_chunk_size)
        ]
        steps.extend(("insert", chunk) for chunk in chunked(rows, config.insert_chunk_size))
        if not steps:
            return result

        LOGGER.info(
            "apply_start",
            extra={
                "entity": definition.name,
                "delete_keys": len(delete_keys),
                "delete_chunks": chunk_count(len(delete_keys), config.delete_chunk_size),
                "inserts": len(rows),
                "insert_chunks": chunk_count(len(rows), config.insert_chunk_size),
                "failure_policy": config.failure_policy.value,
            },
        )

        for index, (action, chunk) in enumerate(steps):
            if index:
                time.sleep(self._chunk_delay_s)

            statement = self._statement_for(definition, action, chunk)
            error = self._execute_with_retries(
                statement,
                config=config,
                entity=definition.name,
                action=action,
                chunk_index=index,
                chunk_size=len(chunk),
            )
            if error is None:
                if action == "delete":
                    result.deleted_rows += len(chunk)
                else:
                    result.inserted_rows += len(chunk)
                continue

            _record_failure(result, definition, action, chunk, collapsed_keys)
            result.failed_chunks += 1

            if config.failure_policy is FailurePolicy.ABORT_ON_FIRST_FAILURE:
                for pending_action, pending_chunk in steps[index + 1 :]:
                    _record_failure(
                        result, definition, pending_action, pending_chunk, collapsed_keys
                    )
                    result.skipped_chunks += 1
                result.aborted = True
                LOGGER.error(
                    "apply_aborted",
                    extra={
                        "entity": definition.name,
                        "failed_chunk": index,
                        "skipped_chunks": len(steps) - index - 1,
                        "failed_rows": result.failed_rows,
                    },
                )
                raise BatchAbortedError(
                    f"{definition.name}: {action} chunk {index} failed, "
                    f"{len(steps) - index - 1} remaining chunks skipped: {error}",
                    result=result,
                ) from error

        LOGGER.info(
            "apply_complete",
            extra={
                "entity": definition.name,
                "deleted": result.deleted_rows,
                "inserted": result.inserted_rows,
                "failed_rows": result.failed_rows,
                "failed_chunks": result.failed_chunks,
            },
        )
        return result

    def _statement_for(self, definition: EntityDefinition, action: str, chunk: list[Any]) -> str:
        if action == "delete":
            return build_delete_statement(
                table=definition.remote_table,
                key_columns=definition.delete_key_columns,
                keys=chunk,
            )
        return build_insert_statement(
            table=definition.remote_table,
            columns=definition.columns,
            rows=chunk,
            conflict_columns=definition.conflict_columns,
            touch_columns=definition.touch_columns,
        )

    def _execute_with_retries(
        self,
        statement: str,
        *,
        config: EntitySyncConfig,
        entity: str,
        action: str,
        chunk_index: int,
        chunk_size: int,
    ) -> Exception | None:
        attempt = 1
        while True:
            try:
                self._gateway.execute_command(statement)
                return None
            except _CHUNK_ERRORS as exc:
                if attempt >= config.max_attempts:
                    LOGGER.error(
                        "chunk_failed",
                        extra={
                            "entity": entity,
                            "action": action,
                            "chunk": chunk_index,
                            "rows": chunk_size,
                            "attempt": attempt,
                            "error": str(exc),
                        },
                    )
                    return exc

                LOGGER.warning(
                    "chunk_retry",
                    extra={
                        "entity": entity,
                        "action": action,
                        "chunk": chunk_index,
                        "attempt": attempt,
                        "error": str(exc),
                    },
                )
                time.sleep(config.retry_delay_ms / 1000.0 * attempt)
                attempt += 1


def _record_failure(
    result: ApplyResult,
    definition: EntityDefinition,
    action: str,
    chunk: list[Any],
    collapsed_keys: dict[tuple[Any, ...], list[Any]],
) -> None:
    """Count a chunk's rows as failed; rows folded into a failed upsert row fail with it."""
    result.failed_rows += len(chunk)
    if action == "delete":
        result.failed_keys.extend(chunk)
        return

    for row in chunk:
        result.failed_keys.append(definition.key_of(row))
        result.failed_keys.extend(collapsed_keys.get(_conflict_key(definition, row), ()))


def _conflict_key(definition: EntityDefinition, row: Mapping[str, Any]) -> tuple[Any, ...]:
    return tuple(row[column] for column in definition.conflict_columns)


def _collapse_on_conflict_key(
    definition: EntityDefinition,
    rows: Sequence[Mapping[str, Any]],
) -> tuple[list[Mapping[str, Any]], dict[tuple[Any, ...], list[Any]]]:
    """Keep the last row per conflict key and remember the keys of the rows it replaced.

    One upsert statement cannot touch the same conflict key twice.
    """
    if not definition.conflict_columns:
        return list(rows), {}

    collapsed: dict[tuple[Any, ...], Mapping[str, Any]] = {}
    replaced: dict[tuple[Any, ...], list[Any]] = {}
    for row in rows:
        conflict = _conflict_key(definition, row)
        previous = collapsed.get(conflict)
        if previous is not None:
            replaced.setdefault(conflict, []).append(definition.key_of(previous))
        collapsed[conflict] = row

    if len(collapsed) < len(rows):
        LOGGER.warning(
            "duplicate_conflict_keys_collapsed",
            extra={"entity": definition.name, "dropped": len(rows) - len(collapsed)},
        )
    return list(collapsed.values()), replaced
