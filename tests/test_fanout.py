from __future__ import annotations

import logging
import threading
import time

import pytest

from ado_mcp.server.ado_connector_api import AdoApiError
from ado_mcp.server.errors import ErrorKind
from ado_mcp.server.fanout import fan_out, require_found


SCOPES = ["A", "B", "C"]
RECORDS = {
    "A": [{"id": 1, "name": "zeta"}, {"id": 2, "name": "Alpha"}],
    "C": [{"id": 2, "name": "Alpha"}, {"id": 3, "name": "beta"}],
}


def _lookup(scope: str) -> list[dict]:
    if scope == "B":
        raise AdoApiError("forbidden", status_code=403)
    return RECORDS.get(scope, [])


@pytest.mark.parametrize("workers", [1, 4])
def test_failing_scope_is_skipped_and_reported(workers: int, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="ado_mcp.server.fanout"):
        result = fan_out(
            SCOPES,
            _lookup,
            identity=lambda record: record["id"],
            scope_name=lambda scope: scope,
            sort_key=lambda record: record["name"],
            max_workers=workers,
            capability_hint="Agent Pools (Read)",
        )

    assert [record["name"] for record in result.records] == ["Alpha", "beta", "zeta"]
    assert result.skipped_names == ["B"]
    assert result.skipped[0].error.kind is ErrorKind.PERMISSION
    assert result.warnings == ["Limited results: could not access 1 scope(s): B"]
    assert result.scopes_searched == 3
    assert "Skipping scope 'B'" in caplog.text


def test_merge_follows_scope_order_not_completion_order() -> None:
    started = threading.Event()

    def _slow_first(scope: str) -> list[dict]:
        if scope == "A":
            started.wait(timeout=2)
            time.sleep(0.05)
            return [{"id": 1, "name": "from-A"}]
        started.set()
        return [{"id": 1, "name": "from-C"}]

    result = fan_out(
        ["A", "C"],
        _slow_first,
        identity=lambda record: record["id"],
        scope_name=lambda scope: scope,
        max_workers=2,
    )

    assert [record["name"] for record in result.records] == ["from-A"]


def test_scope_and_record_filters_apply() -> None:
    visited: list[str] = []

    def _tracking(scope: str) -> list[dict]:
        visited.append(scope)
        return RECORDS.get(scope, [])

    result = fan_out(
        SCOPES,
        _tracking,
        identity=lambda record: record["id"],
        scope_name=lambda scope: scope,
        scope_filter=lambda scope: scope != "B",
        record_filter=lambda record: record["id"] != 1,
        max_workers=1,
    )

    assert visited == ["A", "C"]
    assert [record["id"] for record in result.records] == [2, 3]
    assert result.warnings == []


def test_empty_scope_list_returns_empty_result() -> None:
    result = fan_out([], _lookup, identity=lambda r: r, scope_name=str)
    assert result.records == []
    assert result.skipped == []


def test_require_found_reports_not_found_with_partial_visibility() -> None:
    result = fan_out(
        SCOPES,
        lambda scope: _lookup(scope) if scope == "B" else [],
        identity=lambda record: record["id"],
        scope_name=lambda scope: scope,
        max_workers=1,
    )

    found = require_found(result, "Agent", "build-01", visibility_note="Needs org access")

    assert found.error is not None
    assert found.error.kind is ErrorKind.NOT_FOUND
    assert "Agent 'build-01' not found" in found.error.message
    assert "(B)" in found.error.message
    assert "partial permissions" in found.error.message
    assert found.error.message.endswith("Needs org access")


def test_require_found_passes_records_and_warnings_through() -> None:
    result = fan_out(
        SCOPES,
        _lookup,
        identity=lambda record: record["id"],
        scope_name=lambda scope: scope,
        max_workers=1,
    )

    found = require_found(result, "Agent", "zeta")

    assert found.ok
    assert len(found.value) == 3
    assert found.warnings == ("Limited results: could not access 1 scope(s): B",)
