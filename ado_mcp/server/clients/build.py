"""Builds, definitions, timelines, logs and artifacts."""

from __future__ import annotations

import os
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ado_mcp.server.ado_connector_api import AdoAPIConnector
from ado_mcp.server.clients.pipeline import BUILD_READ, PipelineClient
from ado_mcp.server.downloads import DownloadRequest, StreamingDownloader, sanitize_name
from ado_mcp.server.enum_mappers import map_timeline_state
from ado_mcp.server.errors import (
    ClassifiedError,
    ClassifiedFailure,
    ErrorKind,
    Result,
    api_error,
    not_found_error,
    run_operation,
)
from ado_mcp.server.formatters import format_duration
from ado_mcp.server.models import DownloadDescriptor
from ado_mcp.server.pagination import Page, clamp_limit, paginate_overfetch


DEFINITION_LOOKUP_LIMIT = 1000
LOG_RECORD_TYPES = ("Stage", "Phase", "Job", "Task")
CONTAINER_RECORD_TYPES = ("Stage", "Phase")
PIPELINE_ARTIFACT_TYPE = "PipelineArtifact"


@dataclass(frozen=True)
class LogsDownload:
    record_type: str
    matched_records: list[dict[str, Any]]
    downloaded_logs: list[DownloadDescriptor]
    skipped: list[dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "recordType": self.record_type,
            "matchedRecords": self.matched_records,
            "downloadedLogs": [log.to_payload() for log in self.downloaded_logs],
            "skipped": self.skipped,
        }


class BuildClient:
    def __init__(
        self,
        connector: AdoAPIConnector,
        pipelines: PipelineClient,
        downloader: StreamingDownloader,
    ) -> None:
        self.connector = connector
        self.pipelines = pipelines
        self.downloader = downloader

    def get_build(self, build_id: int) -> Result[dict[str, Any]]:
        return run_operation(
            "get build",
            lambda: self._fetch_build(build_id),
            capability_hint=BUILD_READ,
            resource=("Build", build_id),
        )

    def get_build_timeline(self, build_id: int, timeline_id: str | None = None) -> Result[dict[str, Any]]:
        return run_operation(
            "get build timeline",
            lambda: self._fetch_timeline(build_id, timeline_id),
            capability_hint=BUILD_READ,
            resource=("Timeline for build", build_id),
        )

    def get_definitions(
        self,
        name_filter: str | None = None,
        top: int | None = None,
        continuation_token: str | None = None,
    ) -> Result[Page[dict[str, Any]]]:
        # The definitions endpoint ignores continuation tokens, so page by offset.
        return run_operation(
            "list build definitions",
            lambda: paginate_overfetch(
                lambda count: self._fetch_definitions(name_filter, count),
                limit=top,
                continuation_token=continuation_token,
            ),
            capability_hint=BUILD_READ,
        )

    def get_builds(
        self,
        definition_ids: list[int] | None = None,
        definition_name_filter: str | None = None,
        status: str | None = None,
        result: str | None = None,
        branch_name: str | None = None,
        min_time: str | None = None,
        max_time: str | None = None,
        top: int | None = None,
        continuation_token: str | None = None,
    ) -> Result[Page[dict[str, Any]]]:
        def _list() -> Page[dict[str, Any]]:
            ids = list(definition_ids or [])
            if definition_name_filter and not ids:
                matches = self._fetch_definitions(definition_name_filter, DEFINITION_LOOKUP_LIMIT)
                ids = [int(row["id"]) for row in matches if row.get("id") is not None]
                if not ids:
                    return Page()

            rows, token = self.connector.list_page(
                "build/builds",
                params={
                    "definitions": ",".join(str(i) for i in ids) if ids else None,
                    "statusFilter": status,
                    "resultFilter": result,
                    "branchName": branch_name,
                    "minTime": min_time,
                    "maxTime": max_time,
                    "$top": clamp_limit(top),
                    "continuationToken": continuation_token,
                    "queryOrder": "finishTimeDescending",
                },
            )
            return Page(items=rows, continuation_token=token, has_more=bool(token))

        return run_operation("list builds", _list, capability_hint=BUILD_READ)

    def list_artifacts(self, build_id: int) -> Result[list[dict[str, Any]]]:
        return run_operation(
            "list build artifacts",
            lambda: self._fetch_artifacts(build_id),
            capability_hint=BUILD_READ,
            resource=("Build", build_id),
        )

    def download_job_log_by_name(
        self,
        build_id: int,
        job_name: str,
        output_path: str | None = None,
    ) -> Result[DownloadDescriptor]:
        def _download() -> DownloadDescriptor:
            records = self._timeline_records(build_id)
            wanted = job_name.strip().casefold()
            jobs = [record for record in records if record.get("type") == "Job"]
            job = next((r for r in jobs if str(r.get("name", "")).casefold() == wanted), None)
            if job is None:
                available = ", ".join(sorted(str(r.get("name")) for r in jobs)) or "none"
                raise ClassifiedFailure(
                    ClassifiedError(
                        kind=ErrorKind.NOT_FOUND,
                        message=(
                            f"Job '{job_name}' not found in build {build_id}. "
                            f"Available jobs: {available}"
                        ),
                    )
                )
            _ensure_log_ready(job)
            return self._save_record_log(build_id, job, output_path)

        return run_operation(
            "download job logs",
            _download,
            capability_hint=BUILD_READ,
            resource=("Build", build_id),
        )

    def download_logs_by_name(
        self,
        build_id: int,
        name: str,
        output_path: str | None = None,
        exact_match: bool = True,
    ) -> Result[LogsDownload]:
        def _download() -> LogsDownload:
            records = self._timeline_records(build_id)
            matches = [
                record
                for record in records
                if record.get("type") in LOG_RECORD_TYPES
                and _name_matches(str(record.get("name", "")), name, exact_match)
            ]
            if not matches:
                raise ClassifiedFailure(
                    ClassifiedError(
                        kind=ErrorKind.NOT_FOUND,
                        message=f"No stage, job, or task named '{name}' found in build {build_id}",
                    )
                )
            if len(matches) > 1:
                listed = "; ".join(
                    f"{record.get('type')} '{record.get('name')}' ({record.get('id')})"
                    for record in matches
                )
                raise ClassifiedFailure(
                    api_error(
                        f"Multiple records match '{name}': {listed}. "
                        "Use a more specific name or exact matching."
                    )
                )

            record = matches[0]
            if record.get("type") in CONTAINER_RECORD_TYPES:
                return self._save_container_logs(build_id, record, records, output_path)

            _ensure_log_ready(record)
            descriptor = self._save_record_log(build_id, record, output_path)
            return LogsDownload(
                record_type=str(record.get("type")),
                matched_records=[_record_summary(record)],
                downloaded_logs=[descriptor],
            )

        return run_operation(
            "download logs by name",
            _download,
            capability_hint=BUILD_READ,
            resource=("Build", build_id),
        )

    def download_artifact(
        self,
        build_id: int,
        artifact_name: str,
        definition_id: int | None = None,
        output_path: str | None = None,
    ) -> Result[DownloadDescriptor]:
        def _download() -> DownloadDescriptor:
            pipeline_id = definition_id
            if pipeline_id is None:
                definition = self._fetch_build(build_id).get("definition") or {}
                if definition.get("id") is None:
                    raise ClassifiedFailure(
                        api_error(f"Build {build_id} does not reference a pipeline definition")
                    )
                pipeline_id = int(definition["id"])

            artifacts = self._fetch_artifacts(build_id)
            artifact = next((a for a in artifacts if a.get("name") == artifact_name), None)
            if artifact is None:
                available = ", ".join(sorted(str(a.get("name")) for a in artifacts)) or "none"
                raise ClassifiedFailure(
                    ClassifiedError(
                        kind=ErrorKind.NOT_FOUND,
                        message=(
                            f"Artifact '{artifact_name}' not found in build {build_id}. "
                            f"Available artifacts: {available}"
                        ),
                    )
                )
            resource = artifact.get("resource") or {}
            artifact_type = resource.get("type")
            if artifact_type != PIPELINE_ARTIFACT_TYPE:
                raise ClassifiedFailure(
                    api_error(
                        f"Artifact '{artifact_name}' is a {artifact_type or 'unknown'} artifact. "
                        "Only Pipeline artifacts (PublishPipelineArtifact) can be downloaded."
                    )
                )

            signed_url = self.pipelines.resolve_signed_url(pipeline_id, build_id, artifact_name)
            request = DownloadRequest(
                category="artifacts",
                build_id=build_id,
                resource_name=artifact_name,
                source_identity=f"build {build_id} artifact '{artifact_name}'",
                output_path=output_path,
                extension=".zip",
                enforce_extension=True,
                details={
                    "artifactName": artifact_name,
                    "artifactId": artifact.get("id"),
                    "format": "ZIP archive",
                },
            )
            return self.downloader.save(
                lambda: self.connector.open_stream(
                    "", absolute_url=signed_url, accept="application/zip"
                ),
                request,
            )

        return run_operation(
            "download artifact",
            _download,
            capability_hint=BUILD_READ,
            resource=("Build", build_id),
        )

    def _save_container_logs(
        self,
        build_id: int,
        container: dict[str, Any],
        records: list[dict[str, Any]],
        output_path: str | None,
    ) -> LogsDownload:
        jobs = [r for r in _descendants(container, records) if r.get("type") == "Job"]
        ready: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        for job in jobs:
            problem = _log_problem(job)
            if problem:
                skipped.append({**_record_summary(job), "reason": problem})
            else:
                ready.append(job)
        if not ready:
            raise ClassifiedFailure(
                api_error(
                    f"No completed job logs available under {container.get('type')} "
                    f"'{container.get('name')}' in build {build_id}"
                )
            )

        folder = f"{sanitize_name(str(container.get('name', 'logs')))}-{build_id}"
        if output_path:
            base = Path(output_path)
        else:
            base = self.downloader.temp_manager.download_path("logs", build_id, folder).parent
        target_dir = f"{base / folder}{os.sep}"

        downloaded = [self._save_record_log(build_id, job, target_dir) for job in ready]
        return LogsDownload(
            record_type=str(container.get("type")),
            matched_records=[_record_summary(container)],
            downloaded_logs=downloaded,
            skipped=skipped,
        )

    def _save_record_log(
        self,
        build_id: int,
        record: dict[str, Any],
        output_path: str | None,
    ) -> DownloadDescriptor:
        log_id = int(record["log"]["id"])
        name = str(record.get("name", "log"))
        request = DownloadRequest(
            category="logs",
            build_id=build_id,
            resource_name=name,
            source_identity=f"build {build_id} {str(record.get('type', 'record')).lower()} '{name}' log {log_id}",
            output_path=output_path,
            extension=".log",
            duration=format_duration(record.get("startTime"), record.get("finishTime")),
            details={
                "recordType": record.get("type"),
                "jobName": name,
                "jobId": record.get("id"),
                "logId": log_id,
            },
        )
        return self.downloader.save(
            lambda: self.connector.open_stream(
                f"build/builds/{build_id}/logs/{log_id}", accept="text/plain"
            ),
            request,
        )

    def _fetch_build(self, build_id: int) -> dict[str, Any]:
        payload, _headers = self.connector.get_json(f"build/builds/{build_id}")
        if not isinstance(payload, dict) or payload.get("id") is None:
            raise ClassifiedFailure(not_found_error("Build", build_id))
        return payload

    def _fetch_timeline(self, build_id: int, timeline_id: str | None = None) -> dict[str, Any]:
        path = f"build/builds/{build_id}/timeline"
        if timeline_id:
            path = f"{path}/{timeline_id}"
        payload, _headers = self.connector.get_json(path)
        if not isinstance(payload, dict) or not payload:
            raise ClassifiedFailure(not_found_error("Timeline for build", build_id))
        return payload

    def _timeline_records(self, build_id: int) -> list[dict[str, Any]]:
        records = self._fetch_timeline(build_id).get("records") or []
        return [record for record in records if isinstance(record, dict)]

    def _fetch_definitions(self, name_filter: str | None, count: int) -> list[dict[str, Any]]:
        return self.connector.list_values(
            "build/definitions",
            params={
                "name": _wildcard(name_filter),
                "$top": count,
                "queryOrder": "lastModifiedDescending",
            },
        )

    def _fetch_artifacts(self, build_id: int) -> list[dict[str, Any]]:
        return self.connector.list_values(f"build/builds/{build_id}/artifacts")


def _wildcard(name_filter: str | None) -> str | None:
    if not name_filter:
        return None
    return name_filter if "*" in name_filter else f"*{name_filter}*"


def _name_matches(candidate: str, wanted: str, exact_match: bool) -> bool:
    if exact_match:
        return candidate == wanted
    return wanted.strip().casefold() in candidate.casefold()


def _log_problem(record: dict[str, Any]) -> str:
    state = map_timeline_state(record.get("state"))
    if state != "Completed":
        return f"not completed (state: {state})"
    log = record.get("log")
    if not isinstance(log, dict) or log.get("id") is None:
        return "no log available"
    return ""


def _ensure_log_ready(record: dict[str, Any]) -> None:
    problem = _log_problem(record)
    if problem:
        raise ClassifiedFailure(
            api_error(
                f"{record.get('type', 'Record')} '{record.get('name')}' has {problem}"
                if problem.startswith("no log")
                else f"{record.get('type', 'Record')} '{record.get('name')}' is {problem}. "
                "Logs can be downloaded once it finishes."
            )
        )


def _descendants(root: dict[str, Any], records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    children: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for record in records:
        parent = record.get("parentId")
        if parent:
            children[str(parent)].append(record)

    found: list[dict[str, Any]] = []
    pending = list(children.get(str(root.get("id")), []))
    while pending:
        record = pending.pop(0)
        found.append(record)
        pending.extend(children.get(str(record.get("id")), []))
    return found


def _record_summary(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": record.get("id"),
        "type": record.get("type"),
        "name": record.get("name"),
        "state": map_timeline_state(record.get("state")),
    }
