"""Build, log, artifact and download-management tools."""

from __future__ import annotations

from typing import Any, Callable

from ado_mcp.server.ado_connector import AdoClients
from ado_mcp.server.enum_mappers import (
    BUILD_RESULT,
    BUILD_STATUS,
    map_build_reason,
    map_build_result,
    map_build_status,
    map_task_result,
    map_timeline_state,
    to_api_value,
)
from ado_mcp.server.errors import ClassifiedError, api_error, run_operation
from ado_mcp.server.formatters import (
    format_error_response,
    format_success_response,
    parse_timestamp,
)
from ado_mcp.server.pagination import clamp_limit
from ado_mcp.server.temp_manager import TempManager


ToolHandler = Callable[..., dict[str, Any]]

DEFAULT_CLEANUP_HOURS = 24


def create_build_tools(clients: AdoClients, temp_manager: TempManager) -> dict[str, ToolHandler]:
    builds = clients.builds
    pipelines = clients.pipelines

    def build_get_timeline(build_id: int, timeline_id: str | None = None) -> dict[str, Any]:
        """Get a build's timeline: every stage, job and task and the agent that ran it."""

        result = builds.get_build_timeline(build_id, timeline_id)
        if result.error is not None:
            return format_error_response(result.error)
        timeline = result.unwrap()
        records = [r for r in timeline.get("records") or [] if isinstance(r, dict)]
        jobs = [r for r in records if r.get("type") == "Job"]
        tasks = [r for r in records if r.get("type") == "Task"]
        return format_success_response(
            {
                "timeline": {
                    "id": timeline.get("id"),
                    "changeId": timeline.get("changeId"),
                    "lastChangedBy": timeline.get("lastChangedBy"),
                    "lastChangedOn": timeline.get("lastChangedOn"),
                    "recordCount": len(records),
                },
                "jobs": [{**_record_view(job), "workerName": job.get("workerName")} for job in jobs],
                "tasks": [{**_record_view(task), "parentId": task.get("parentId")} for task in tasks],
                "summary": {
                    "totalRecords": len(records),
                    "jobs": len(jobs),
                    "tasks": len(tasks),
                    "phases": sum(1 for r in records if r.get("type") == "Phase"),
                    "stages": sum(1 for r in records if r.get("type") == "Stage"),
                },
            }
        )

    def build_list(
        limit: int | None = None,
        continuation_token: str | None = None,
        definition_name_filter: str | None = None,
        definition_id: int | None = None,
        status: str | None = None,
        result: str | None = None,
        branch_name: str | None = None,
        min_time: str | None = None,
        max_time: str | None = None,
    ) -> dict[str, Any]:
        """List builds, newest finished first.

        Filters: pipeline name (substring, wildcards added automatically),
        definition ID, status (None, InProgress, Completed, Cancelling,
        Postponed, NotStarted, All), result (None, Succeeded,
        PartiallySucceeded, Failed, Canceled), branch (refs/heads/main) and
        an ISO-8601 time window. Pass ``continuation_token`` from a previous
        response to get the next page.
        """

        problem = _validate_time_window(min_time, max_time)
        if problem is not None:
            return format_error_response(problem)

        status_filter = to_api_value(status, BUILD_STATUS) if status else None
        if status and status_filter is None:
            return format_error_response(
                api_error(f"Invalid status '{status}'. Expected one of: {_choices(BUILD_STATUS)}")
            )
        result_filter = to_api_value(result, BUILD_RESULT) if result else None
        if result and result_filter is None:
            return format_error_response(
                api_error(f"Invalid result '{result}'. Expected one of: {_choices(BUILD_RESULT)}")
            )

        outcome = builds.get_builds(
            definition_ids=[definition_id] if definition_id else None,
            definition_name_filter=definition_name_filter,
            status=status_filter,
            result=result_filter,
            branch_name=branch_name,
            min_time=_iso(min_time),
            max_time=_iso(max_time),
            top=limit,
            continuation_token=continuation_token,
        )
        if outcome.error is not None:
            return format_error_response(outcome.error)
        page = outcome.unwrap()
        rows = [_build_view(build) for build in page.items]
        return format_success_response(
            {
                "builds": rows,
                "continuationToken": page.continuation_token,
                "hasMore": page.has_more,
                "pageInfo": {"returned": len(rows), "requested": clamp_limit(limit)},
            }
        )

    def build_list_definitions(
        limit: int | None = None,
        continuation_token: str | None = None,
        name_filter: str | None = None,
    ) -> dict[str, Any]:
        """List pipeline definitions, optionally filtered by name. Useful for finding pipeline IDs."""

        outcome = builds.get_definitions(name_filter, limit, continuation_token)
        if outcome.error is not None:
            return format_error_response(outcome.error)
        page = outcome.unwrap()
        definitions = [
            {
                "id": row.get("id"),
                "name": row.get("name"),
                "path": row.get("path"),
                "type": row.get("type"),
                "queueStatus": row.get("queueStatus"),
                "revision": row.get("revision"),
                "createdDate": row.get("createdDate"),
                "project": (row.get("project") or {}).get("name"),
            }
            for row in page.items
        ]
        return format_success_response(
            {
                "definitions": definitions,
                "continuationToken": page.continuation_token,
                "hasMore": page.has_more,
                "pageInfo": {"returned": len(definitions), "requested": clamp_limit(limit)},
            }
        )

    def build_queue(
        definition_id: int,
        source_branch: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Queue a new run of a pipeline definition.

        Requires Build (Read & Execute). ``parameters`` are passed as template
        parameters and override pipeline defaults.
        """

        outcome = pipelines.run_pipeline(
            definition_id, source_branch=source_branch, template_parameters=parameters
        )
        if outcome.error is not None:
            return format_error_response(outcome.error)
        run = outcome.unwrap()
        return format_success_response(
            {
                "id": run.id,
                "buildNumber": run.name,
                "status": run.state,
                "reason": "Manual",
                "queueTime": run.created_date,
                "sourceBranch": source_branch,
                "definition": {"id": run.pipeline_id, "name": run.pipeline_name},
                "parameters": run.template_parameters,
                "url": run.url,
            }
        )

    def build_download_job_logs(
        build_id: int, job_name: str, output_path: str | None = None
    ) -> dict[str, Any]:
        """Download the log of one completed job, found by name, to a local file.

        ``output_path`` may be a file or a directory (trailing slash). Without
        it the log goes to the server's managed temporary directory.
        """

        outcome = builds.download_job_log_by_name(build_id, job_name, output_path)
        if outcome.error is not None:
            return format_error_response(outcome.error)
        saved = outcome.unwrap()
        return format_success_response(
            {
                "message": f'Successfully downloaded logs for job "{job_name}"',
                "download": saved.to_payload(),
            }
        )

    def build_list_artifacts(build_id: int) -> dict[str, Any]:
        """List the artifacts published by a build."""

        outcome = builds.list_artifacts(build_id)
        if outcome.error is not None:
            return format_error_response(outcome.error)
        artifacts = []
        for artifact in outcome.unwrap():
            resource = artifact.get("resource") or {}
            artifacts.append(
                {
                    "id": artifact.get("id"),
                    "name": artifact.get("name"),
                    "source": artifact.get("source"),
                    "downloadUrl": resource.get("downloadUrl"),
                    "type": resource.get("type"),
                    "data": resource.get("data"),
                    "properties": resource.get("properties"),
                }
            )
        return format_success_response(
            {"buildId": build_id, "artifactCount": len(artifacts), "artifacts": artifacts}
        )

    def build_download_artifact(
        build_id: int,
        artifact_name: str,
        definition_id: int | None = None,
        output_path: str | None = None,
    ) -> dict[str, Any]:
        """Download a Pipeline artifact (PublishPipelineArtifact) as a ZIP file."""

        outcome = builds.download_artifact(build_id, artifact_name, definition_id, output_path)
        if outcome.error is not None:
            return format_error_response(outcome.error)
        saved = outcome.unwrap()
        return format_success_response(
            {
                "message": f'Successfully downloaded artifact "{artifact_name}"',
                "download": saved.to_payload(),
            }
        )

    def build_download_logs_by_name(
        build_id: int,
        name: str,
        output_path: str | None = None,
        exact_match: bool = True,
    ) -> dict[str, Any]:
        """Download logs for a stage, job or task found by name in the build timeline.

        Stages download every completed child job log into their own
        sub-directory. Set ``exact_match`` to false for case-insensitive
        substring matching.
        """

        outcome = builds.download_logs_by_name(build_id, name, output_path, exact_match)
        if outcome.error is not None:
            return format_error_response(outcome.error)
        logs = outcome.unwrap()
        payload = logs.to_payload()
        return format_success_response(
            {
                "message": f'Successfully downloaded logs for {logs.record_type} "{name}"',
                **payload,
                "summary": {
                    "totalLogsDownloaded": len(logs.downloaded_logs),
                    "totalSize": sum(log.byte_size for log in logs.downloaded_logs),
                },
            }
        )

    def list_downloads() -> dict[str, Any]:
        """List files this server has downloaded into its temporary directory."""

        outcome = run_operation("list downloads", temp_manager.list_downloads)
        if outcome.error is not None:
            return format_error_response(outcome.error)
        downloads = outcome.unwrap()
        return format_success_response(
            {
                "message": f"Found {len(downloads)} downloaded file(s)",
                "tempDirectory": str(temp_manager.base_dir),
                "summary": {
                    "totalFiles": len(downloads),
                    "totalSize": sum(record.size for record in downloads),
                    "logs": sum(1 for record in downloads if record.category == "logs"),
                    "artifacts": sum(1 for record in downloads if record.category == "artifacts"),
                },
                "downloads": [record.to_payload() for record in downloads],
            }
        )

    def cleanup_downloads(older_than_hours: float = DEFAULT_CLEANUP_HOURS) -> dict[str, Any]:
        """Remove downloaded files older than the given number of hours (default 24)."""

        outcome = run_operation("clean up downloads", lambda: temp_manager.cleanup(older_than_hours))
        if outcome.error is not None:
            return format_error_response(outcome.error)
        cleaned = outcome.unwrap()
        return format_success_response(
            {
                "message": "Cleanup completed",
                "filesRemoved": cleaned.files_removed,
                "spaceSaved": cleaned.space_saved,
                "errors": cleaned.errors,
            }
        )

    def get_download_location() -> dict[str, Any]:
        """Describe the temporary directory where downloads are saved."""

        outcome = run_operation("get download location", temp_manager.info)
        if outcome.error is not None:
            return format_error_response(outcome.error)
        return format_success_response(
            {"message": "Temporary download directory information", **outcome.unwrap()}
        )

    return {
        "build_get_timeline": build_get_timeline,
        "build_list": build_list,
        "build_list_definitions": build_list_definitions,
        "build_queue": build_queue,
        "build_download_job_logs": build_download_job_logs,
        "build_list_artifacts": build_list_artifacts,
        "build_download_artifact": build_download_artifact,
        "build_download_logs_by_name": build_download_logs_by_name,
        "list_downloads": list_downloads,
        "cleanup_downloads": cleanup_downloads,
        "get_download_location": get_download_location,
    }


def _validate_time_window(min_time: str | None, max_time: str | None) -> ClassifiedError | None:
    for label, raw in (("min_time", min_time), ("max_time", max_time)):
        if raw and parse_timestamp(raw) is None:
            return api_error(
                f'Invalid {label} format: "{raw}". Use ISO 8601, e.g. "2024-01-01T00:00:00Z" '
                'or "2024-01-01".'
            )
    start, end = parse_timestamp(min_time), parse_timestamp(max_time)
    if start is not None and end is not None and start > end:
        return api_error("Invalid date range: min_time must be before or equal to max_time.")
    return None


def _iso(raw: str | None) -> str | None:
    parsed = parse_timestamp(raw)
    return parsed.isoformat() if parsed is not None else None


def _choices(names: dict[str, str]) -> str:
    return ", ".join(names.values())


def _record_view(record: dict[str, Any]) -> dict[str, Any]:
    log = record.get("log") if isinstance(record.get("log"), dict) else None
    return {
        "id": record.get("id"),
        "name": record.get("name"),
        "startTime": record.get("startTime"),
        "finishTime": record.get("finishTime"),
        "state": map_timeline_state(record.get("state")),
        "result": map_task_result(record.get("result")),
        "percentComplete": record.get("percentComplete"),
        "log": (
            {"id": log.get("id"), "type": log.get("type"), "url": log.get("url")}
            if log
            else None
        ),
    }


def _build_view(build: dict[str, Any]) -> dict[str, Any]:
    definition = build.get("definition") or {}
    return {
        "id": build.get("id"),
        "buildNumber": build.get("buildNumber"),
        "definition": {"id": definition.get("id"), "name": definition.get("name")},
        "status": map_build_status(build.get("status")),
        "result": map_build_result(build.get("result")),
        "reason": map_build_reason(build.get("reason")),
        "startTime": build.get("startTime"),
        "finishTime": build.get("finishTime"),
        "sourceBranch": build.get("sourceBranch"),
        "sourceVersion": build.get("sourceVersion"),
        "requestedBy": (build.get("requestedBy") or {}).get("displayName"),
        "requestedFor": (build.get("requestedFor") or {}).get("displayName"),
        "uri": build.get("uri"),
    }
