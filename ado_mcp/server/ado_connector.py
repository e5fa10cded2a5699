"""Wires one session, one connector and the domain clients for a server process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from ado_mcp.server.ado_auth import load_ado_auth
from ado_mcp.server.ado_connector_api import AdoAPIConnector
from ado_mcp.server.clients.build import BuildClient
from ado_mcp.server.clients.pipeline import PipelineClient
from ado_mcp.server.clients.task_agent import TaskAgentClient
from ado_mcp.server.downloads import StreamingDownloader
from ado_mcp.server.temp_manager import TempManager
from ado_mcp.shared.settings import AdoSettings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdoClients:
    connector: AdoAPIConnector
    task_agent: TaskAgentClient
    builds: BuildClient
    pipelines: PipelineClient
    temp_manager: TempManager
    downloader: StreamingDownloader


def build_clients(
    settings: AdoSettings,
    session: requests.Session | None = None,
    temp_manager: TempManager | None = None,
) -> AdoClients:
    """Build every client up front against a single authenticated connector."""

    auth = load_ado_auth(settings)
    connector = AdoAPIConnector(
        organization=settings.organization,
        project=settings.project,
        auth=auth,
        session=session,
        api_version=settings.api_version,
        timeout_s=settings.request_timeout_s,
    )
    temp = temp_manager or TempManager(root=settings.resolved_temp_root())
    downloader = StreamingDownloader(temp)
    pipelines = PipelineClient(connector)
    logger.info(
        "Connected to %s (project %s, api-version %s)",
        settings.organization,
        settings.project,
        settings.api_version,
    )
    return AdoClients(
        connector=connector,
        task_agent=TaskAgentClient(connector, max_workers=settings.fanout_concurrency),
        builds=BuildClient(connector, pipelines, downloader),
        pipelines=pipelines,
        temp_manager=temp,
        downloader=downloader,
    )
