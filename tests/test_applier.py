from __future__ import annotations

from typing import Any

import pytest

from market_sync.applier import RemoteBatchApplier
from market_sync.entities import BALANCE, CUSTOMER
from market_sync.errors import BatchAbortedError, ConnectivityError, RemoteRejection
from market_sync.gateway import GatewayResponse
from market_sync.models import FailurePolicy
from market_sync.settings import EntitySyncConfig


class _StubGateway:
    """Records commands; calls whose index is in ``failing_calls`` raise."""

    def __init__(self, failing_calls: set[int] | None = None, *, always_fail: bool = False) -> None:
        self._failing_calls = failing_calls or set()
        self._always_fail = always_fail
        self.commands: list[str] = []

    def execute_select(self, query: str) -> GatewayResponse:
        raise AssertionError("applier must not select")

    def execute_command(self, query: str) -> GatewayResponse:
        call = len(self.commands)
        self.commands.append(query)
        if self._always_fail or call in self._failing_calls:
            raise RemoteRejection("relation is locked", status_code=500)
        return GatewayResponse(success=True, message="OK")


@pytest.fixture()
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr("market_sync.applier.time.sleep", recorded.append)
    return recorded


def _rows(*refs: int) -> list[dict[str, Any]]:
    return [{"row_order_ref": ref, "code": f"C{ref}", "price_level": "A"} for ref in refs]


def _resilient(**overrides: Any) -> EntitySyncConfig:
    values: dict[str, Any] = {"insert_chunk_size": 2, "delete_chunk_size": 2}
    values.update(overrides)
    return EntitySyncConfig(**values)


def _strict(**overrides: Any) -> EntitySyncConfig:
    return _resilient(
        failure_policy=FailurePolicy.ABORT_ON_FIRST_FAILURE,
        max_attempts=1,
        **overrides,
    )


def test_deletes_precede_inserts_and_chunks_are_paced(sleeps: list[float]) -> None:
    gateway = _StubGateway()
    applier = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=100)

    result = applier.apply(CUSTOMER, _resilient(), inserts=_rows(1, 2, 3), delete_keys=[1, 2, 3])

    assert [command.split()[0] for command in gateway.commands] == [
        "DELETE",
        "DELETE",
        "INSERT",
        "INSERT",
    ]
    assert sleeps == [0.1, 0.1, 0.1]
    assert result.deleted_rows == 3
    assert result.inserted_rows == 3
    assert result.ok


def test_nothing_to_apply_issues_no_commands(sleeps: list[float]) -> None:
    gateway = _StubGateway()

    result = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=100).apply(
        CUSTOMER, _resilient(), inserts=[], delete_keys=[]
    )

    assert gateway.commands == []
    assert result.ok


def test_resilient_chunk_is_retried_with_growing_delay(sleeps: list[float]) -> None:
    gateway = _StubGateway(failing_calls={0, 1})
    applier = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0)

    result = applier.apply(CUSTOMER, _resilient(), inserts=_rows(1), delete_keys=[])

    assert len(gateway.commands) == 3
    assert sleeps == [0.4, 0.8]
    assert result.inserted_rows == 1
    assert result.ok


def test_resilient_exhausted_chunk_is_recorded_and_cycle_continues(sleeps: list[float]) -> None:
    gateway = _StubGateway(failing_calls={0, 1, 2})
    applier = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0)

    result = applier.apply(CUSTOMER, _resilient(), inserts=_rows(1, 2, 3), delete_keys=[])

    assert len(gateway.commands) == 4
    assert result.failed_chunks == 1
    assert result.failed_rows == 2
    assert result.failed_keys == [1, 2]
    assert result.inserted_rows == 1
    assert not result.aborted
    assert not result.ok


def test_strict_policy_aborts_on_first_failure(sleeps: list[float]) -> None:
    gateway = _StubGateway(failing_calls={1})
    applier = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0)

    with pytest.raises(BatchAbortedError) as exc_info:
        applier.apply(CUSTOMER, _strict(), inserts=_rows(1, 2, 3, 4, 5), delete_keys=[9])

    result = exc_info.value.result
    assert len(gateway.commands) == 2
    assert result.aborted
    assert result.deleted_rows == 1
    assert result.inserted_rows == 0
    assert result.failed_rows == 5
    assert result.failed_keys == [1, 2, 3, 4, 5]
    assert isinstance(exc_info.value.__cause__, RemoteRejection)


def test_connectivity_errors_are_chunk_failures(sleeps: list[float]) -> None:
    class _DownGateway(_StubGateway):
        def execute_command(self, query: str) -> GatewayResponse:
            self.commands.append(query)
            raise ConnectivityError("connection refused")

    gateway = _DownGateway()

    result = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0).apply(
        CUSTOMER, _resilient(max_attempts=2), inserts=[], delete_keys=[5]
    )

    assert len(gateway.commands) == 2
    assert result.failed_keys == [5]


def test_rows_sharing_a_conflict_key_collapse_to_the_last(sleeps: list[float]) -> None:
    gateway = _StubGateway()
    rows = [
        {"row_order_ref": 1, "code": "C1", "price_level": "A"},
        {"row_order_ref": 2, "code": "C1", "price_level": "B"},
    ]

    result = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0).apply(
        CUSTOMER, _resilient(), inserts=rows, delete_keys=[]
    )

    assert len(gateway.commands) == 1
    assert "'B'" in gateway.commands[0]
    assert "'A'" not in gateway.commands[0]
    assert result.inserted_rows == 1


def test_composite_keys_are_reported_as_tuples(sleeps: list[float]) -> None:
    gateway = _StubGateway(always_fail=True)
    config = EntitySyncConfig(insert_chunk_size=10, delete_chunk_size=10, max_attempts=1)
    rows = [{"ic_code": "A", "wh_code": "W1", "unit_code": "PCS", "balance_qty": 4.0}]

    result = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0).apply(
        BALANCE, config, inserts=rows, delete_keys=[("B", "W1", "PCS")]
    )

    assert result.failed_keys == [("B", "W1", "PCS"), ("A", "W1", "PCS")]
    assert '("ic_code", "wh_code", "unit_code") IN' in gateway.commands[0]


def test_chunks_skipped_after_abort_are_not_counted_as_failed_chunks(sleeps: list[float]) -> None:
    gateway = _StubGateway(failing_calls={0})
    config = _strict(delete_chunk_size=1)

    with pytest.raises(BatchAbortedError) as exc_info:
        RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0).apply(
            CUSTOMER, config, inserts=[], delete_keys=[1, 2, 3]
        )

    result = exc_info.value.result
    assert len(gateway.commands) == 1
    assert result.failed_chunks == 1
    assert result.skipped_chunks == 2
    assert result.failed_rows == 3
    assert result.failed_keys == [1, 2, 3]


def test_collapsed_rows_fail_with_the_row_that_replaced_them(sleeps: list[float]) -> None:
    gateway = _StubGateway(always_fail=True)
    rows = [
        {"row_order_ref": 1, "code": "C1", "price_level": "A"},
        {"row_order_ref": 2, "code": "C1", "price_level": "B"},
        {"row_order_ref": 3, "code": "C3", "price_level": "A"},
    ]

    result = RemoteBatchApplier(gateway=gateway, chunk_delay_ms=0).apply(
        CUSTOMER, _resilient(max_attempts=1), inserts=rows, delete_keys=[]
    )

    assert result.failed_rows == 2
    assert sorted(result.failed_keys) == [1, 2, 3]
