from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from pydantic import BaseModel, ValidationError

from market_sync.entities import EntityDefinition
from market_sync.errors import SourceReadError
from market_sync.models import ChangeLogRecord, EntityKind

LOGGER = logging.getLogger(__name__)


class SourceStore(Protocol):
    def fetch_change_log(self, kind: EntityKind) -> list[ChangeLogRecord]:
        ...

    def fetch_one(self, query: str, params: Sequence[Any]) -> dict[str, Any] | None:
        ...

    def fetch_all(self, query: str) -> list[dict[str, Any]]:
        ...

    def delete_change_log_ids(self, ids: Sequence[int]) -> int:
        ...


class PostgresSourceStore:
    """Source database access over a single autocommit psycopg connection."""

    def __init__(self, *, connection: psycopg.Connection[Any], change_log_table: str) -> None:
        self._connection = connection
        self._change_log_table = change_log_table

    @classmethod
    def connect(cls, *, conninfo: str, change_log_table: str) -> PostgresSourceStore:
        connection = psycopg.connect(conninfo=conninfo, autocommit=True)
        return cls(connection=connection, change_log_table=change_log_table)

    def close(self) -> None:
        self._connection.close()

    def fetch_change_log(self, kind: EntityKind) -> list[ChangeLogRecord]:
        query = sql.SQL(
            "SELECT id, table_id, active_code, row_order_ref FROM {table} "
            "WHERE table_id = %s ORDER BY id"
        ).format(table=sql.Identifier(self._change_log_table))

        try:
            with self._connection.cursor(row_factory=dict_row) as cursor:
                cursor.execute(query, (int(kind),))
                rows = cursor.fetchall()
        except psycopg.Error as exc:
            raise SourceReadError(f"Reading change log for {kind.config_name} failed: {exc}") from exc

        records: list[ChangeLogRecord] = []
        for row in rows:
            try:
                records.append(
                    ChangeLogRecord(
                        id=row["id"],
                        entity_kind=row["table_id"],
                        operation=row["active_code"],
                        row_ref=row["row_order_ref"],
                    )
                )
            except ValidationError as exc:
                raise SourceReadError(f"Malformed change-log row id={row.get('id')}: {exc}") from exc
        return records

    def fetch_one(self, query: str, params: Sequence[Any]) -> dict[str, Any] | None:
        try:
            with self._connection.cursor(row_factory=dict_row) as cursor:
                cursor.execute(query, tuple(params))
                return cursor.fetchone()
        except psycopg.Error as exc:
            raise SourceReadError(f"Source query failed: {exc}") from exc

    def fetch_all(self, query: str) -> list[dict[str, Any]]:
        try:
            with self._connection.cursor(row_factory=dict_row) as cursor:
                cursor.execute(query)
                return cursor.fetchall()
        except psycopg.Error as exc:
            raise SourceReadError(f"Source query failed: {exc}") from exc

    def delete_change_log_ids(self, ids: Sequence[int]) -> int:
        """Delete change-log rows by id. Database errors propagate to the caller."""
        if not ids:
            return 0

        query = sql.SQL("DELETE FROM {table} WHERE id IN ({placeholders})").format(
            table=sql.Identifier(self._change_log_table),
            placeholders=sql.SQL(", ").join(sql.Placeholder() * len(ids)),
        )
        with self._connection.cursor() as cursor:
            cursor.execute(query, tuple(ids))
            return cursor.rowcount if cursor.rowcount >= 0 else len(ids)


class SnapshotReader:
    """Reads the current values of one source row and validates them into a record."""

    def __init__(self, store: SourceStore) -> None:
        self._store = store

    def read(self, definition: EntityDefinition, row_ref: int) -> BaseModel | None:
        row = self._store.fetch_one(definition.source_query, (row_ref,))
        if row is None:
            return None

        try:
            return definition.record_type.model_validate(row)
        except ValidationError as exc:
            raise SourceReadError(
                f"{definition.name} row {row_ref} failed validation: {exc}"
            ) from exc

    def read_extent(self, definition: EntityDefinition) -> list[BaseModel]:
        rows = self._store.fetch_all(definition.source_query)
        records: list[BaseModel] = []
        for index, row in enumerate(rows):
            try:
                records.append(definition.record_type.model_validate(row))
            except ValidationError as exc:
                raise SourceReadError(
                    f"{definition.name} extent row {index} failed validation: {exc}"
                ) from exc

        LOGGER.info(
            "source_extent_loaded",
            extra={"entity": definition.name, "rows": len(records)},
        )
        return records
