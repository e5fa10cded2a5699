"""Azure DevOps domain clients sharing one connector."""

from .build import BuildClient, LogsDownload
from .pipeline import PipelineClient
from .task_agent import TaskAgentClient

__all__ = ["BuildClient", "LogsDownload", "PipelineClient", "TaskAgentClient"]
