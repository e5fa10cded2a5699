"""Pipeline runs and signed artifact URLs."""

from __future__ import annotations

from typing import Any

from ado_mcp.server.ado_connector_api import AdoAPIConnector
from ado_mcp.server.errors import ClassifiedFailure, Result, api_error, not_found_error, run_operation
from ado_mcp.server.models import PipelineRunResult
from ado_mcp.server.pagination import Page, paginate_overfetch


BUILD_READ_EXECUTE = "Build (Read & Execute)"
BUILD_READ = "Build (Read)"


class PipelineClient:
    def __init__(self, connector: AdoAPIConnector) -> None:
        self.connector = connector

    def run_pipeline(
        self,
        pipeline_id: int,
        source_branch: str | None = None,
        template_parameters: dict[str, Any] | None = None,
        stages_to_skip: list[str] | None = None,
        pipeline_version: int | None = None,
    ) -> Result[PipelineRunResult]:
        def _run() -> PipelineRunResult:
            body: dict[str, Any] = {}
            if template_parameters:
                body["templateParameters"] = dict(template_parameters)
            if stages_to_skip:
                body["stagesToSkip"] = list(stages_to_skip)
            if source_branch:
                body["resources"] = {"repositories": {"self": {"refName": source_branch}}}

            payload, _headers = self.connector.post_json(
                f"pipelines/{pipeline_id}/runs",
                json=body,
                params={"pipelineVersion": pipeline_version},
            )
            if not isinstance(payload, dict) or payload.get("id") is None:
                raise ClassifiedFailure(api_error("Failed to run pipeline - no response from API"))
            return _run_from_row(payload, pipeline_id, template_parameters)

        return run_operation(
            "run pipeline",
            _run,
            capability_hint=BUILD_READ_EXECUTE,
            resource=("Pipeline", pipeline_id),
        )

    def get_pipeline_run(self, pipeline_id: int, run_id: int) -> Result[PipelineRunResult]:
        def _get() -> PipelineRunResult:
            payload, _headers = self.connector.get_json(f"pipelines/{pipeline_id}/runs/{run_id}")
            if not isinstance(payload, dict) or payload.get("id") is None:
                raise ClassifiedFailure(not_found_error("Pipeline run", run_id))
            return _run_from_row(payload, pipeline_id)

        return run_operation(
            "get pipeline run",
            _get,
            capability_hint=BUILD_READ,
            resource=("Pipeline run", run_id),
        )

    def list_pipeline_runs(
        self,
        pipeline_id: int,
        limit: int | None = None,
        continuation_token: str | None = None,
    ) -> Result[Page[PipelineRunResult]]:
        def _fetch(count: int) -> list[PipelineRunResult]:
            # The runs endpoint has no $top; it returns the most recent runs in one response.
            rows = self.connector.list_values(f"pipelines/{pipeline_id}/runs")
            return [_run_from_row(row, pipeline_id) for row in rows[:count] if row.get("id") is not None]

        return run_operation(
            "list pipeline runs",
            lambda: paginate_overfetch(_fetch, limit=limit, continuation_token=continuation_token),
            capability_hint=BUILD_READ,
            resource=("Pipeline", pipeline_id),
        )

    def get_artifact_signed_url(self, pipeline_id: int, run_id: int, artifact_name: str) -> Result[str]:
        return run_operation(
            "resolve artifact download URL",
            lambda: self.resolve_signed_url(pipeline_id, run_id, artifact_name),
            capability_hint=BUILD_READ,
            resource=("Artifact", artifact_name),
        )

    def resolve_signed_url(self, pipeline_id: int, run_id: int, artifact_name: str) -> str:
        payload, _headers = self.connector.get_json(
            f"pipelines/{pipeline_id}/runs/{run_id}/artifacts",
            params={"artifactName": artifact_name, "$expand": "signedContent"},
        )
        signed = payload.get("signedContent") if isinstance(payload, dict) else None
        url = signed.get("url") if isinstance(signed, dict) else None
        if not url:
            raise ClassifiedFailure(not_found_error("Signed download URL for artifact", artifact_name))
        return str(url)


def _run_from_row(
    row: dict[str, Any],
    pipeline_id: int,
    template_parameters: dict[str, Any] | None = None,
) -> PipelineRunResult:
    pipeline = row.get("pipeline") if isinstance(row.get("pipeline"), dict) else {}
    return PipelineRunResult(
        id=int(row["id"]),
        pipeline_id=int(pipeline.get("id") or pipeline_id),
        pipeline_name=str(pipeline.get("name") or ""),
        state=str(row.get("state") or "unknown"),
        result=str(row["result"]) if row.get("result") is not None else None,
        created_date=row.get("createdDate"),
        finished_date=row.get("finishedDate"),
        url=str(row.get("url") or ""),
        name=str(row.get("name") or ""),
        template_parameters=template_parameters,
    )
