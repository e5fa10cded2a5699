"""Project queue and organization agent tools."""

from __future__ import annotations

from typing import Any, Callable

from ado_mcp.server.ado_connector import AdoClients
from ado_mcp.server.formatters import format_error_response, format_success_response


ToolHandler = Callable[..., dict[str, Any]]


def create_agent_tools(clients: AdoClients) -> dict[str, ToolHandler]:
    task_agent = clients.task_agent

    def project_health_check() -> dict[str, Any]:
        """Check the connection to Azure DevOps and that project queues are readable."""

        result = task_agent.get_queues()
        if result.error is not None:
            return format_error_response(result.error)
        return format_success_response(
            {
                "status": "connected",
                "message": "Azure DevOps MCP server is running",
                "organization": clients.connector.organization,
                "project": clients.connector.project,
                "queueCount": len(result.value or []),
            }
        )

    def project_list_queues() -> dict[str, Any]:
        """List the agent queues available in the project with their pool information.

        Requires a PAT with Agent Pools (Read).
        """

        result = task_agent.get_queues()
        if result.error is not None:
            return format_error_response(result.error)
        queues = [queue.to_payload() for queue in result.value or []]
        return format_success_response({"queues": queues, "count": len(queues)})

    def project_get_queue(queue_id_or_name: str) -> dict[str, Any]:
        """Get one queue by numeric ID or name, with its pool and agent count.

        Queue IDs are more reliable than names; find them with project_list_queues.
        """

        result = task_agent.get_queue(queue_id_or_name)
        if result.error is not None:
            return format_error_response(result.error)
        queue = result.unwrap()

        payload: dict[str, Any] = {"queue": queue.to_payload()}
        warnings: list[str] = []
        agents = task_agent.get_agents_by_queue(queue.id)
        if agents.error is not None:
            warnings.append(f"Agent count unavailable: {agents.error.message}")
        else:
            payload["agentCount"] = len(agents.value or [])
        return format_success_response(payload, warnings)

    def org_find_agent(agent_name: str) -> dict[str, Any]:
        """Find which pool an agent belongs to by searching every pool in the organization.

        Requires organization-level Agent Pools (Read). Partial names are not matched.
        """

        result = task_agent.find_agent(agent_name)
        if result.error is not None:
            return format_error_response(result.error)
        matches = [match.to_payload() for match in result.value or []]
        return format_success_response({"matches": matches, "count": len(matches)}, result.warnings)

    def org_list_agents(
        name_filter: str | None = None,
        pool_name_filter: str | None = None,
        only_online: bool = False,
        limit: int | None = None,
        continuation_token: str | None = None,
    ) -> dict[str, Any]:
        """List agents from the pools behind the project's queues.

        ``name_filter`` and ``pool_name_filter`` are case-insensitive substring
        matches. Pools the token cannot read are skipped and reported in
        ``warnings``.
        """

        result = task_agent.list_project_agents(
            name_filter=name_filter,
            pool_name_filter=pool_name_filter,
            only_online=only_online,
            limit=limit,
            continuation_token=continuation_token,
        )
        if result.error is not None:
            return format_error_response(result.error)
        page = result.unwrap()
        agents = [
            {
                "name": agent.name,
                "pool": agent.pool_name,
                "status": agent.status,
                "enabled": agent.enabled,
                "version": agent.version,
                "queue": agent.queue_name,
                "foundIn": agent.found_in.to_payload() if agent.found_in else None,
            }
            for agent in page.items
        ]
        return format_success_response(
            {
                "agents": agents,
                "summary": {
                    "total": len(agents),
                    "online": sum(1 for agent in page.items if agent.status == "Online"),
                    "offline": sum(1 for agent in page.items if agent.status == "Offline"),
                    "pools": sorted({agent.pool_name for agent in page.items}),
                },
                "continuationToken": page.continuation_token,
                "hasMore": page.has_more,
            },
            result.warnings,
        )

    return {
        "project_health_check": project_health_check,
        "project_list_queues": project_list_queues,
        "project_get_queue": project_get_queue,
        "org_find_agent": org_find_agent,
        "org_list_agents": org_list_agents,
    }
