"""SQL text builders for the remote command endpoint.

The gateway only accepts a plain query string, so every value is rendered
through ``psycopg.sql.Literal`` and every name through ``psycopg.sql.Identifier``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from psycopg import sql


def render(statement: sql.Composable) -> str:
    return statement.as_string(None)


def _identifiers(names: Sequence[str]) -> sql.Composable:
    return sql.SQL(", ").join(sql.Identifier(name) for name in names)


def _values_tuple(values: Sequence[Any]) -> sql.Composable:
    return sql.SQL("({})").format(sql.SQL(", ").join(sql.Literal(value) for value in values))


def build_insert_statement(
    *,
    table: str,
    columns: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
    conflict_columns: Sequence[str] = (),
    touch_columns: Sequence[str] = (),
) -> str:
    """Multi-row INSERT, upserting on ``conflict_columns`` when given.

    ``touch_columns`` are set to ``CURRENT_TIMESTAMP`` whenever a conflicting row is updated.
    """
    if not rows:
        raise ValueError("rows must not be empty")
    if not columns:
        raise ValueError("columns must not be empty")

    values = sql.SQL(", ").join(_values_tuple([row[column] for column in columns]) for row in rows)
    statement = sql.SQL("INSERT INTO {table} ({columns}) VALUES {values}").format(
        table=sql.Identifier(table),
        columns=_identifiers(columns),
        values=values,
    )

    if conflict_columns:
        update_columns = [column for column in columns if column not in conflict_columns]
        assignments = [
            sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(column))
            for column in update_columns
        ]
        assignments.extend(
            sql.SQL("{col} = CURRENT_TIMESTAMP").format(col=sql.Identifier(column))
            for column in touch_columns
        )
        if assignments:
            conflict_action = sql.SQL("DO UPDATE SET {}").format(sql.SQL(", ").join(assignments))
        else:
            conflict_action = sql.SQL("DO NOTHING")
        statement = sql.SQL("{insert} ON CONFLICT ({conflict}) {action}").format(
            insert=statement,
            conflict=_identifiers(conflict_columns),
            action=conflict_action,
        )

    return render(statement)


def build_delete_statement(
    *,
    table: str,
    key_columns: Sequence[str],
    keys: Sequence[Any],
) -> str:
    """DELETE by key; composite keys are matched with a row constructor."""
    if not keys:
        raise ValueError("keys must not be empty")
    if not key_columns:
        raise ValueError("key_columns must not be empty")

    if len(key_columns) == 1:
        target = sql.Identifier(key_columns[0])
        candidates = sql.SQL(", ").join(sql.Literal(_scalar_key(key)) for key in keys)
    else:
        target = sql.SQL("({})").format(_identifiers(key_columns))
        candidates = sql.SQL(", ").join(
            _values_tuple(_composite_key(key, width=len(key_columns))) for key in keys
        )

    statement = sql.SQL("DELETE FROM {table} WHERE {target} IN ({candidates})").format(
        table=sql.Identifier(table),
        target=target,
        candidates=candidates,
    )
    return render(statement)


def build_page_select_statement(
    *,
    table: str,
    columns: Sequence[str],
    order_by: Sequence[str],
    limit: int,
    offset: int,
) -> str:
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if offset < 0:
        raise ValueError("offset must be >= 0")

    statement = sql.SQL(
        "SELECT {columns} FROM {table} ORDER BY {order_by} LIMIT {limit} OFFSET {offset}"
    ).format(
        columns=_identifiers(columns),
        table=sql.Identifier(table),
        order_by=_identifiers(order_by),
        limit=sql.Literal(limit),
        offset=sql.Literal(offset),
    )
    return render(statement)


def _scalar_key(key: Any) -> Any:
    if isinstance(key, tuple):
        if len(key) != 1:
            raise ValueError(f"Expected a single-column key, got {key!r}")
        return key[0]
    return key


def _composite_key(key: Any, *, width: int) -> tuple[Any, ...]:
    if not isinstance(key, tuple) or len(key) != width:
        raise ValueError(f"Expected a {width}-column key tuple, got {key!r}")
    return key
