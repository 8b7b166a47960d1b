"""Full-extent comparison for tables the change log does not cover.

Both sides are loaded completely and keyed by the natural key. Local-only rows
become inserts, remote-only keys become deletes, and rows present on both
sides become updates when any compared column differs. Numeric columns differ
only when they are further apart than ``epsilon``; text columns are compared
after stripping surrounding whitespace.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from market_sync.entities import EntityDefinition
from market_sync.errors import DataShapeError
from market_sync.gateway import CommandGateway
from market_sync.models import ReconcileDiff
from market_sync.source import SnapshotReader
from market_sync.statements import build_page_select_statement

LOGGER = logging.getLogger(__name__)


def diff_extents(
    local: Sequence[Mapping[str, Any]],
    remote: Sequence[Mapping[str, Any]],
    *,
    key_columns: Sequence[str],
    compared_columns: Sequence[str],
    numeric_columns: Sequence[str] = (),
    epsilon: float = 0.001,
) -> ReconcileDiff:
    if not key_columns:
        raise ValueError("key_columns must not be empty")
    if epsilon < 0:
        raise ValueError("epsilon must be >= 0")

    local_by_key = _index(local, key_columns, side="local")
    remote_by_key = _index(remote, key_columns, side="remote")
    numeric = set(numeric_columns)

    diff = ReconcileDiff()
    for key, row in local_by_key.items():
        other = remote_by_key.get(key)
        if other is None:
            diff.inserts.append(dict(row))
        elif _differs(row, other, compared_columns, numeric, epsilon):
            diff.updates.append(dict(row))

    diff.deletes.extend(key for key in remote_by_key if key not in local_by_key)
    return diff


def _index(
    rows: Sequence[Mapping[str, Any]],
    key_columns: Sequence[str],
    *,
    side: str,
) -> dict[tuple[Any, ...], Mapping[str, Any]]:
    indexed: dict[tuple[Any, ...], Mapping[str, Any]] = {}
    for position, row in enumerate(rows):
        missing = [column for column in key_columns if row.get(column) is None]
        if missing:
            raise DataShapeError(
                f"{side} row {position} is missing key columns: {', '.join(missing)}"
            )
        indexed[tuple(row[column] for column in key_columns)] = row
    return indexed


def _differs(
    local: Mapping[str, Any],
    remote: Mapping[str, Any],
    columns: Sequence[str],
    numeric: set[str],
    epsilon: float,
) -> bool:
    for column in columns:
        if column in numeric:
            delta = _as_number(local.get(column), column) - _as_number(remote.get(column), column)
            if abs(delta) > epsilon:
                return True
        elif _as_text(local.get(column)) != _as_text(remote.get(column)):
            return True
    return False


def _as_number(value: Any, column: str) -> float:
    # NULL numerics read as zero, matching the COALESCE in the source queries.
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise DataShapeError(f"Column {column} holds a boolean, expected a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DataShapeError(f"Column {column} holds non-numeric value {value!r}") from None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class FullSnapshotReconciler:
    def __init__(
        self,
        *,
        gateway: CommandGateway,
        reader: SnapshotReader,
        page_size: int,
        epsilon: float,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")

        self._gateway = gateway
        self._reader = reader
        self._page_size = page_size
        self._epsilon = epsilon

    def reconcile(self, definition: EntityDefinition) -> ReconcileDiff:
        remote = self.fetch_remote_extent(definition)
        local = [record.remote_row() for record in self._reader.read_extent(definition)]

        diff = diff_extents(
            local,
            remote,
            key_columns=definition.delete_key_columns,
            compared_columns=definition.compared_columns,
            numeric_columns=definition.numeric_columns,
            epsilon=self._epsilon,
        )
        LOGGER.info(
            "reconcile_diff",
            extra={
                "entity": definition.name,
                "local_rows": len(local),
                "remote_rows": len(remote),
                "inserts": len(diff.inserts),
                "updates": len(diff.updates),
                "deletes": len(diff.deletes),
            },
        )
        return diff

    def fetch_remote_extent(self, definition: EntityDefinition) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            statement = build_page_select_statement(
                table=definition.remote_table,
                columns=definition.columns,
                order_by=definition.delete_key_columns,
                limit=self._page_size,
                offset=offset,
            )
            page = self._gateway.execute_select(statement).rows()
            rows.extend(page)
            LOGGER.debug(
                "remote_page_loaded",
                extra={"entity": definition.name, "offset": offset, "rows": len(page)},
            )
            if len(page) < self._page_size:
                return rows
            offset += self._page_size
