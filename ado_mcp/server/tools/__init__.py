"""MCP tool handlers grouped by Azure DevOps area."""

from .agent_tools import create_agent_tools
from .build_tools import create_build_tools

__all__ = ["create_agent_tools", "create_build_tools"]
