from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

import pytest

from market_sync.entities import BALANCE
from market_sync.errors import DataShapeError
from market_sync.gateway import GatewayResponse
from market_sync.models import ReconcileDiff
from market_sync.reconciler import FullSnapshotReconciler, diff_extents
from market_sync.source import SnapshotReader

_KEY = ("ic_code", "wh_code", "unit_code")
_OFFSET = re.compile(r"LIMIT (\d+) OFFSET (\d+)")


def _balance(ic_code: str, qty: Any, wh_code: str = "W1", unit_code: str = "PCS") -> dict[str, Any]:
    return {"ic_code": ic_code, "wh_code": wh_code, "unit_code": unit_code, "balance_qty": qty}


def _diff(local: Sequence[dict[str, Any]], remote: Sequence[dict[str, Any]]) -> ReconcileDiff:
    return diff_extents(
        local,
        remote,
        key_columns=_KEY,
        compared_columns=("balance_qty",),
        numeric_columns=("balance_qty",),
        epsilon=0.001,
    )


class _PagedRemote:
    def __init__(self, rows: Sequence[dict[str, Any]]) -> None:
        self.rows = list(rows)
        self.queries: list[str] = []

    def execute_select(self, query: str) -> GatewayResponse:
        self.queries.append(query)
        match = _OFFSET.search(query)
        assert match is not None
        limit, offset = int(match.group(1)), int(match.group(2))
        return GatewayResponse(success=True, data=self.rows[offset : offset + limit])

    def execute_command(self, query: str) -> GatewayResponse:
        raise AssertionError("reconciler must not mutate the remote store")


class _ExtentStore:
    def __init__(self, rows: Sequence[dict[str, Any]]) -> None:
        self._rows = list(rows)

    def fetch_all(self, query: str) -> list[dict[str, Any]]:
        return list(self._rows)


def test_difference_within_epsilon_is_not_an_update() -> None:
    diff = _diff([_balance("A", 10.0005)], [_balance("A", 10.0)])

    assert diff.is_empty


def test_difference_beyond_epsilon_is_an_update() -> None:
    diff = _diff([_balance("A", 10.01)], [_balance("A", 10.0)])

    assert diff.updates == [_balance("A", 10.01)]
    assert diff.inserts == []
    assert diff.deletes == []


def test_local_only_is_insert_and_remote_only_is_delete() -> None:
    diff = _diff(
        [_balance("A", 1.0), _balance("B", 2.0)],
        [_balance("B", 2.0), _balance("C", 3.0, wh_code="W2")],
    )

    assert diff.inserts == [_balance("A", 1.0)]
    assert diff.updates == []
    assert diff.deletes == [("C", "W2", "PCS")]


def test_remote_numeric_strings_are_compared_as_numbers() -> None:
    diff = _diff([_balance("A", 5.0)], [_balance("A", "5.000")])

    assert diff.is_empty


def test_text_columns_are_compared_after_strip() -> None:
    diff = diff_extents(
        [{"code": "C1", "price_level": "A"}],
        [{"code": "C1", "price_level": "A  "}],
        key_columns=("code",),
        compared_columns=("price_level",),
    )

    assert diff.is_empty


def test_remote_row_missing_key_is_data_shape_error() -> None:
    with pytest.raises(DataShapeError):
        _diff([], [{"ic_code": "A", "balance_qty": 1.0}])


def test_remote_non_numeric_value_is_data_shape_error() -> None:
    with pytest.raises(DataShapeError):
        _diff([_balance("A", 1.0)], [_balance("A", "lots")])


def test_applying_the_diff_reaches_a_fixed_point() -> None:
    local = [_balance("A", 1.0), _balance("B", 2.5), _balance("D", 0.0)]
    remote = [_balance("B", 2.0), _balance("C", 7.0), _balance("D", 0.0004)]

    diff = _diff(local, remote)
    remote_by_key = {tuple(row[column] for column in _KEY): row for row in remote}
    for key in diff.deletes:
        del remote_by_key[key]
    for row in diff.inserts + diff.updates:
        remote_by_key[tuple(row[column] for column in _KEY)] = row

    assert _diff(local, list(remote_by_key.values())).is_empty


def test_reconciler_pages_remote_and_reads_local_extent() -> None:
    remote = _PagedRemote([_balance("A", 1.0), _balance("B", 2.0), _balance("C", 3.0)])
    local_rows = [_balance("A", 1.0), _balance("B", 4.0)]
    reconciler = FullSnapshotReconciler(
        gateway=remote,
        reader=SnapshotReader(_ExtentStore(local_rows)),  # type: ignore[arg-type]
        page_size=2,
        epsilon=0.001,
    )

    diff = reconciler.reconcile(BALANCE)

    assert len(remote.queries) == 2
    assert "OFFSET 0" in remote.queries[0]
    assert "OFFSET 2" in remote.queries[1]
    assert diff.updates == [_balance("B", 4.0)]
    assert diff.deletes == [("C", "W1", "PCS")]
    assert diff.inserts == []


def test_full_last_page_triggers_one_more_request() -> None:
    remote = _PagedRemote([_balance("A", 1.0), _balance("B", 2.0)])
    reconciler = FullSnapshotReconciler(
        gateway=remote,
        reader=SnapshotReader(_ExtentStore([])),  # type: ignore[arg-type]
        page_size=2,
        epsilon=0.001,
    )

    rows = reconciler.fetch_remote_extent(BALANCE)

    assert len(rows) == 2
    assert len(remote.queries) == 2
