from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from fastmcp import FastMCP
from typer.testing import CliRunner

from ado_mcp.cli import app as cli_app
from ado_mcp.server.ado_connector import AdoClients, build_clients
from ado_mcp.server.app import collect_tools, create_server
from ado_mcp.shared.settings import AdoSettings


@dataclass
class FakeResponse:
    status_code: int
    payload: Any = None
    headers: dict[str, str] | None = None

    @property
    def content(self) -> bytes:
        return b"" if self.payload is None else b"json"

    def json(self) -> Any:
        return self.payload


class RoutedSession:
    def __init__(self, routes: dict[str, FakeResponse]) -> None:
        self.routes = routes
        self.calls: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        for suffix, response in self.routes.items():
            if kwargs["url"].endswith(suffix):
                return response
        raise RuntimeError(f"No fake route for {kwargs['url']}")


EXPECTED_TOOLS = {
    "project_health_check",
    "project_list_queues",
    "project_get_queue",
    "org_find_agent",
    "org_list_agents",
    "build_get_timeline",
    "build_list",
    "build_list_definitions",
    "build_queue",
    "build_download_job_logs",
    "build_list_artifacts",
    "build_download_artifact",
    "build_download_logs_by_name",
    "list_downloads",
    "cleanup_downloads",
    "get_download_location",
}

QUEUES = FakeResponse(
    200,
    {
        "value": [
            {"id": 11, "name": "Linux", "pool": {"id": 1, "name": "Linux Pool"}},
            {"id": 13, "name": "Windows", "pool": {"id": 2, "name": "Windows Pool"}},
        ]
    },
)


def _settings(tmp_path: Path) -> AdoSettings:
    return AdoSettings(
        organization="https://dev.azure.com/contoso",
        project="Fabrikam",
        pat="secret-token-1234",
        fanout_concurrency=1,
        temp_root=tmp_path / "temp",
    )


def _tools(tmp_path: Path, routes: dict[str, FakeResponse]) -> tuple[dict[str, Any], AdoClients, RoutedSession]:
    session = RoutedSession(routes)
    clients = build_clients(_settings(tmp_path), session=session)  # type: ignore[arg-type]
    return collect_tools(clients), clients, session


def test_every_tool_is_collected_and_registered(tmp_path: Path) -> None:
    tools, clients, _session = _tools(tmp_path, {})

    assert set(tools) == EXPECTED_TOOLS
    server = create_server(_settings(tmp_path), clients)
    assert isinstance(server, FastMCP)


def test_health_check_reports_connection(tmp_path: Path) -> None:
    tools, _clients, _session = _tools(tmp_path, {"distributedtask/queues": QUEUES})

    response = tools["project_health_check"]()

    assert response["ok"] is True
    assert response["status"] == "connected"
    assert response["queueCount"] == 2


def test_org_find_agent_permission_error_envelope(tmp_path: Path) -> None:
    tools, _clients, _session = _tools(
        tmp_path, {"distributedtask/pools": FakeResponse(403, {"message": "denied"})}
    )

    response = tools["org_find_agent"]("build-01")

    assert response["ok"] is False
    assert response["error"]["kind"] == "permission"
    assert response["error"]["requiredCapability"] == "Agent Pools (Read)"
    assert response["text"].startswith("Permission Error")


def test_org_list_agents_summarizes_and_warns(tmp_path: Path) -> None:
    tools, _clients, _session = _tools(
        tmp_path,
        {
            "distributedtask/queues": QUEUES,
            "distributedtask/pools/1/agents": FakeResponse(
                200, {"value": [{"id": 1, "name": "lin-01", "status": "online"}]}
            ),
            "distributedtask/pools/2/agents": FakeResponse(403, {"message": "denied"}),
        },
    )

    response = tools["org_list_agents"]()

    assert response["ok"] is True
    assert response["agents"] == [
        {
            "name": "lin-01",
            "pool": "Linux Pool",
            "status": "Online",
            "enabled": True,
            "version": None,
            "queue": "Linux",
            "foundIn": {
                "scopeId": 1,
                "resourceId": 11,
                "resourceName": "Linux",
                "parentRef": {"scopeId": 0, "resourceId": 1, "resourceName": "Linux Pool"},
            },
        }
    ]
    assert response["summary"]["online"] == 1
    assert response["warnings"] == ["Limited results: could not access 1 scope(s): Windows"]
    assert response["hasMore"] is False


def test_project_get_queue_degrades_when_agents_are_hidden(tmp_path: Path) -> None:
    tools, _clients, _session = _tools(
        tmp_path,
        {
            "distributedtask/queues": QUEUES,
            "distributedtask/pools/2/agents": FakeResponse(403, {"message": "denied"}),
        },
    )

    response = tools["project_get_queue"]("Windows")

    assert response["ok"] is True
    assert response["queue"]["poolName"] == "Windows Pool"
    assert "agentCount" not in response
    assert response["warnings"][0].startswith("Agent count unavailable")


@pytest.mark.parametrize(
    ("kwargs", "fragment"),
    [
        ({"min_time": "yesterday"}, "Invalid min_time format"),
        ({"min_time": "2024-02-01", "max_time": "2024-01-01"}, "min_time must be before"),
        ({"status": "Sleeping"}, "Invalid status 'Sleeping'"),
        ({"result": "Meh"}, "Invalid result 'Meh'"),
    ],
)
def test_build_list_validates_before_calling_upstream(
    tmp_path: Path, kwargs: dict[str, str], fragment: str
) -> None:
    tools, _clients, session = _tools(tmp_path, {})

    response = tools["build_list"](**kwargs)

    assert response["ok"] is False
    assert response["error"]["kind"] == "api_error"
    assert fragment in response["error"]["message"]
    assert session.calls == []


def test_build_list_maps_filters_and_rows(tmp_path: Path) -> None:
    tools, _clients, session = _tools(
        tmp_path,
        {
            "build/builds": FakeResponse(
                200,
                {
                    "value": [
                        {
                            "id": 500,
                            "buildNumber": "20240305.1",
                            "status": "completed",
                            "result": "partiallySucceeded",
                            "reason": "individualCI",
                            "definition": {"id": 9, "name": "CI"},
                            "requestedFor": {"displayName": "Dana"},
                        }
                    ]
                },
            )
        },
    )

    response = tools["build_list"](
        definition_id=9, status="InProgress", result="PartiallySucceeded", min_time="2024-01-01", limit=5
    )

    params = session.calls[0]["params"]
    assert params["statusFilter"] == "inProgress"
    assert params["resultFilter"] == "partiallySucceeded"
    assert params["definitions"] == "9"
    assert params["minTime"].startswith("2024-01-01T00:00:00")
    build = response["builds"][0]
    assert build["status"] == "Completed"
    assert build["result"] == "PartiallySucceeded"
    assert build["reason"] == "IndividualCI"
    assert build["requestedFor"] == "Dana"
    assert response["pageInfo"] == {"returned": 1, "requested": 5}


def test_download_management_tools(tmp_path: Path) -> None:
    tools, clients, _session = _tools(tmp_path, {})
    old = clients.temp_manager.download_path("logs", 5, "old.log")
    old.write_bytes(b"12345")
    new = clients.temp_manager.download_path("artifacts", 6, "new.zip")
    new.write_bytes(b"zip")
    stale = time.time() - 72 * 3600
    os.utime(old, (stale, stale))

    listed = tools["list_downloads"]()
    assert listed["summary"] == {"totalFiles": 2, "totalSize": 8, "logs": 1, "artifacts": 1}

    location = tools["get_download_location"]()
    assert location["path"] == str(clients.temp_manager.base_dir)
    assert location["fileCount"] == 2

    cleaned = tools["cleanup_downloads"](older_than_hours=48)
    assert cleaned["filesRemoved"] == 1
    assert cleaned["spaceSaved"] == 5
    assert new.exists()


def test_cli_check_config_prints_redacted_settings(tmp_path: Path) -> None:
    runner = CliRunner()
    env = {
        "ADO_ORGANIZATION": "contoso",
        "ADO_PROJECT": "Fabrikam",
        "ADO_PAT": "secret-token-1234",
    }

    result = runner.invoke(cli_app, ["check-config", "--env-file", str(tmp_path / "missing.env")], env=env)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["organization"] == "https://dev.azure.com/contoso"
    assert payload["pat"] == "secr...1234"


def test_cli_check_config_lists_missing_settings(tmp_path: Path) -> None:
    runner = CliRunner()
    env = {"ADO_ORGANIZATION": "", "ADO_PROJECT": "", "ADO_PAT": ""}

    result = runner.invoke(cli_app, ["check-config", "--env-file", str(tmp_path / "missing.env")], env=env)

    assert result.exit_code == 1
    assert "ADO_PAT is required" in result.output


@pytest.mark.parametrize("tool", ["list_downloads", "cleanup_downloads", "get_download_location"])
def test_download_tools_return_error_envelope_when_temp_root_is_unusable(tmp_path: Path, tool: str) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    settings = AdoSettings(
        organization="https://dev.azure.com/contoso",
        project="Fabrikam",
        pat="secret-token-1234",
        temp_root=blocker,
    )
    tools = collect_tools(build_clients(settings, session=RoutedSession({})))  # type: ignore[arg-type]

    response = tools[tool]()

    assert response["ok"] is False
    assert response["error"]["kind"] == "api_error"
    assert response["text"]
