"""Pydantic contracts for the records returned to MCP callers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ScopedResourceRef(_Record):
    """A resource living under a parent scope, e.g. a queue bound to a pool."""

    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    scope_id: int
    resource_id: int
    resource_name: str
    parent_ref: ScopedResourceRef | None = None


def pool_scope(pool_id: int, pool_name: str) -> ScopedResourceRef:
    """Reference to an agent pool, which lives directly under the organization."""
    return ScopedResourceRef(scope_id=0, resource_id=pool_id, resource_name=pool_name)


class QueueInfo(_Record):
    id: int
    name: str
    pool_id: int = 0
    pool_name: str = "Unknown"
    is_hosted: bool = False

    def as_scope(self) -> ScopedResourceRef:
        return ScopedResourceRef(
            scope_id=self.pool_id,
            resource_id=self.id,
            resource_name=self.name,
            parent_ref=pool_scope(self.pool_id, self.pool_name),
        )


class AgentInfo(_Record):
    id: int
    name: str
    status: str = "Unknown"
    enabled: bool = True
    version: str | None = None
    os_description: str | None = None


class ProjectAgentInfo(AgentInfo):
    pool_id: int | None = None
    pool_name: str = "Unknown"
    queue_id: int | None = None
    queue_name: str | None = None
    found_in: ScopedResourceRef | None = None


class AgentMatch(_Record):
    agent: AgentInfo
    pool_name: str
    pool_id: int | None = None
    queue_id: int | None = None
    found_in: ScopedResourceRef | None = None


class PipelineRunResult(_Record):
    id: int
    pipeline_id: int
    pipeline_name: str = ""
    state: str = "unknown"
    result: str | None = None
    created_date: str | None = None
    finished_date: str | None = None
    url: str = ""
    name: str = ""
    template_parameters: dict[str, Any] | None = None


class DownloadDescriptor(_Record):
    """A completed download on the local filesystem."""

    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    saved_path: str
    byte_size: int = Field(ge=0)
    source_identity: str
    derived_name: str
    duration: str | None = None
    is_temporary: bool = False
    downloaded_at: str
    details: dict[str, Any] = Field(default_factory=dict)
