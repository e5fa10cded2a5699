"""Agent pools, project queues and agents."""

from __future__ import annotations

from typing import Any

from ado_mcp.server.ado_connector_api import AdoAPIConnector, AdoApiError
from ado_mcp.server.errors import (
    PERMISSION_STATUSES,
    ClassifiedFailure,
    Result,
    not_found_error,
    permission_error,
    run_operation,
)
from ado_mcp.server.enum_mappers import map_agent_status
from ado_mcp.server.fanout import DEFAULT_MAX_WORKERS, fan_out, require_found
from ado_mcp.server.models import AgentInfo, AgentMatch, ProjectAgentInfo, QueueInfo, pool_scope
from ado_mcp.server.pagination import Page, paginate_slice


AGENT_POOLS_READ = "Agent Pools (Read)"
DEFAULT_AGENT_PAGE_SIZE = 250
MAX_AGENT_PAGE_SIZE = 1000


class TaskAgentClient:
    def __init__(self, connector: AdoAPIConnector, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.connector = connector
        self.max_workers = max_workers

    def get_queues(self) -> Result[list[QueueInfo]]:
        return run_operation(
            "list project queues", self._fetch_queues, capability_hint=AGENT_POOLS_READ
        )

    def get_queue(self, queue_id_or_name: str | int) -> Result[QueueInfo]:
        return run_operation(
            "get queue",
            lambda: self._find_queue(queue_id_or_name),
            capability_hint=AGENT_POOLS_READ,
            resource=("Queue", queue_id_or_name),
        )

    def find_agent(self, agent_name: str) -> Result[list[AgentMatch]]:
        """Search every agent pool in the organization for an agent by name."""

        wanted = agent_name.strip().casefold()

        def _lookup(pool: dict[str, Any]) -> list[AgentMatch]:
            rows = self._pool_agents(int(pool["id"]), agent_name=agent_name)
            return [
                AgentMatch(
                    agent=_agent_from_row(row),
                    pool_name=str(pool.get("name") or "Unknown"),
                    pool_id=int(pool["id"]),
                    found_in=pool_scope(int(pool["id"]), str(pool.get("name") or "Unknown")),
                )
                for row in rows
                if _has_identity(row) and str(row["name"]).casefold() == wanted
            ]

        def _search() -> Result[list[AgentMatch]]:
            pools = self.connector.list_values("distributedtask/pools", scope="org")
            searched = fan_out(
                [pool for pool in pools if pool.get("id")],
                _lookup,
                identity=lambda match: (match.pool_id, match.agent.id),
                scope_name=lambda pool: str(pool.get("name") or pool.get("id")),
                sort_key=lambda match: match.pool_name,
                max_workers=self.max_workers,
                operation="search agent pool",
                capability_hint=AGENT_POOLS_READ,
            )
            return require_found(
                searched,
                "Agent",
                agent_name,
                visibility_note=(
                    "Searching agent pools requires organization-level "
                    f"'{AGENT_POOLS_READ}' permission"
                ),
            )

        return run_operation("search for agents", _search, capability_hint=AGENT_POOLS_READ)

    def get_agents_by_queue(self, queue_id: int) -> Result[list[AgentInfo]]:
        def _list() -> list[AgentInfo]:
            queue = self._find_queue(queue_id)
            try:
                rows = self._pool_agents(queue.pool_id)
            except AdoApiError as exc:
                if exc.status_code in PERMISSION_STATUSES:
                    raise ClassifiedFailure(
                        permission_error(f"list agents in queue '{queue.name}'", AGENT_POOLS_READ)
                    ) from exc
                raise
            agents = [_agent_from_row(row) for row in rows if _has_identity(row)]
            agents.sort(key=lambda agent: agent.name.casefold())
            return agents

        return run_operation(
            "list queue agents",
            _list,
            capability_hint=AGENT_POOLS_READ,
            resource=("Queue", queue_id),
        )

    def list_project_agents(
        self,
        name_filter: str | None = None,
        pool_name_filter: str | None = None,
        only_online: bool = False,
        limit: int | None = None,
        continuation_token: str | None = None,
    ) -> Result[Page[ProjectAgentInfo]]:
        """Union of agents across the pools behind every project queue."""

        name_needle = (name_filter or "").strip().casefold()
        pool_needle = (pool_name_filter or "").strip().casefold()

        def _lookup(queue: QueueInfo) -> list[ProjectAgentInfo]:
            rows = self._pool_agents(queue.pool_id)
            return [
                ProjectAgentInfo(
                    **_agent_from_row(row).model_dump(),
                    pool_id=queue.pool_id,
                    pool_name=queue.pool_name,
                    queue_id=queue.id,
                    queue_name=queue.name,
                    found_in=queue.as_scope(),
                )
                for row in rows
                if _has_identity(row)
            ]

        def _keep(agent: ProjectAgentInfo) -> bool:
            if name_needle and name_needle not in agent.name.casefold():
                return False
            if only_online and agent.status != "Online":
                return False
            return True

        def _list() -> Result[Page[ProjectAgentInfo]]:
            queues = self._fetch_queues()
            aggregated = fan_out(
                queues,
                _lookup,
                identity=lambda agent: (agent.pool_id, agent.id),
                scope_name=lambda queue: queue.name,
                scope_filter=lambda queue: bool(queue.pool_id)
                and (not pool_needle or pool_needle in queue.pool_name.casefold()),
                record_filter=_keep,
                sort_key=lambda agent: agent.name,
                max_workers=self.max_workers,
                operation="list agents in queue",
                capability_hint=AGENT_POOLS_READ,
            )
            page = paginate_slice(
                aggregated.records,
                limit=limit,
                continuation_token=continuation_token,
                default_limit=DEFAULT_AGENT_PAGE_SIZE,
                maximum=MAX_AGENT_PAGE_SIZE,
            )
            return Result.success(page, warnings=aggregated.warnings)

        return run_operation("list project agents", _list, capability_hint=AGENT_POOLS_READ)

    def _fetch_queues(self, action_filter: str = "use") -> list[QueueInfo]:
        rows = self.connector.list_values(
            "distributedtask/queues", params={"actionFilter": action_filter}
        )
        queues: list[QueueInfo] = []
        for row in rows:
            pool = row.get("pool")
            if row.get("id") is None or not row.get("name") or not isinstance(pool, dict):
                continue
            queues.append(
                QueueInfo(
                    id=int(row["id"]),
                    name=str(row["name"]),
                    pool_id=int(pool.get("id") or 0),
                    pool_name=str(pool.get("name") or "Unknown"),
                    is_hosted=bool(pool.get("isHosted", False)),
                )
            )
        return queues

    def _find_queue(self, queue_id_or_name: str | int) -> QueueInfo:
        key: str | int = queue_id_or_name
        if isinstance(key, str) and key.strip().isdigit():
            key = int(key.strip())
        for queue in self._fetch_queues():
            if isinstance(key, int) and queue.id == key:
                return queue
            if isinstance(key, str) and queue.name.casefold() == key.strip().casefold():
                return queue
        raise ClassifiedFailure(not_found_error("Queue", queue_id_or_name))

    def _pool_agents(self, pool_id: int, agent_name: str | None = None) -> list[dict[str, Any]]:
        return self.connector.list_values(
            f"distributedtask/pools/{pool_id}/agents",
            params={"agentName": agent_name},
            scope="org",
        )


def _has_identity(row: dict[str, Any]) -> bool:
    return row.get("id") is not None and bool(row.get("name"))


def _agent_from_row(row: dict[str, Any]) -> AgentInfo:
    return AgentInfo(
        id=int(row["id"]),
        name=str(row["name"]),
        status=map_agent_status(row.get("status")),
        enabled=bool(row.get("enabled", True)),
        version=row.get("version"),
        os_description=row.get("osDescription"),
    )
