"""FastMCP application surface exposing the Azure DevOps tools."""

from __future__ import annotations

import logging
from typing import Any

from fastmcp import FastMCP

from ado_mcp.server.ado_connector import AdoClients, build_clients
from ado_mcp.server.tools import create_agent_tools, create_build_tools
from ado_mcp.shared.settings import AdoSettings


logger = logging.getLogger(__name__)

SERVER_NAME = "azure-devops-mcp"
SERVER_INSTRUCTIONS = (
    "Tools for Azure DevOps agents, queues, builds, logs and artifacts. "
    "Every tool returns an envelope with ok=true and its data, or ok=false with "
    "a classified error (permission, not_found, api_error)."
)


def collect_tools(clients: AdoClients) -> dict[str, Any]:
    tools: dict[str, Any] = {}
    tools.update(create_agent_tools(clients))
    tools.update(create_build_tools(clients, clients.temp_manager))
    return tools


def create_server(settings: AdoSettings, clients: AdoClients | None = None) -> FastMCP:
    clients = clients or build_clients(settings)
    mcp = FastMCP(SERVER_NAME, instructions=SERVER_INSTRUCTIONS)
    tools = collect_tools(clients)
    for name, handler in tools.items():
        mcp.tool(handler, name=name)
    logger.info("Registered %d tools for %s/%s", len(tools), settings.organization, settings.project)
    return mcp
