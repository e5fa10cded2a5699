"""Azure DevOps REST API connector implementation."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator
from urllib.parse import quote, urlsplit

import requests

from ado_mcp.server.ado_auth import AdoAuth
from ado_mcp.shared.settings import DEFAULT_API_VERSION


CONTINUATION_HEADER = "x-ms-continuationtoken"
DEFAULT_CHUNK_SIZE = 64 * 1024


class AdoApiError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, path: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.path = path


class AdoAPIConnector:
    def __init__(
        self,
        organization: str,
        project: str,
        auth: AdoAuth | None = None,
        session: requests.Session | None = None,
        api_version: str = DEFAULT_API_VERSION,
        timeout_s: float = 30.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.organization = organization.rstrip("/")
        self.project = project
        self.auth = auth or AdoAuth(pat=None)
        self.session = session or requests.Session()
        self.api_version = api_version
        self.timeout_s = timeout_s
        self.chunk_size = max(1, int(chunk_size))

    def url_for(self, path: str, scope: str = "project") -> str:
        if scope == "org":
            return f"{self.organization}/_apis/{path.lstrip('/')}"
        if scope == "project":
            project = quote(self.project, safe="")
            return f"{self.organization}/{project}/_apis/{path.lstrip('/')}"
        raise ValueError(f"Unsupported scope: {scope}")

    def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        scope: str = "project",
    ) -> tuple[Any, dict[str, Any]]:
        return self._request_with_headers("GET", path, params=params, scope=scope)

    def post_json(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        scope: str = "project",
    ) -> tuple[Any, dict[str, Any]]:
        return self._request_with_headers("POST", path, json=json, params=params, scope=scope)

    def list_values(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        scope: str = "project",
    ) -> list[dict[str, Any]]:
        payload, _headers = self.get_json(path, params=params, scope=scope)
        return _unwrap_values(payload)

    def list_page(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        scope: str = "project",
    ) -> tuple[list[dict[str, Any]], str | None]:
        """List call that also returns the upstream continuation header, if any."""

        payload, headers = self.get_json(path, params=params, scope=scope)
        token = _header(headers, CONTINUATION_HEADER)
        return _unwrap_values(payload), token or None

    @contextmanager
    def open_stream(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        scope: str = "project",
        absolute_url: str | None = None,
        accept: str = "application/octet-stream",
    ) -> Iterator[Iterator[bytes]]:
        """Open a remote payload as an iterator of byte chunks.

        The response status is checked before anything is yielded, so callers
        never see a stream for a payload the server refused to deliver.
        """

        if absolute_url is not None:
            # Signed URLs carry their own credential in the query string.
            url = absolute_url
            identity = urlsplit(absolute_url)._replace(query="", fragment="").geturl()
            auth = None
            query = params
        else:
            url = self.url_for(path, scope=scope)
            identity = path
            auth = self.auth.basic_auth()
            query = self._with_version(params)

        response = self.session.request(
            method="GET",
            url=url,
            headers={"Accept": accept},
            auth=auth,
            params=query,
            stream=True,
            timeout=self.timeout_s,
        )
        try:
            _raise_for_status(response, identity)
            yield response.iter_content(chunk_size=self.chunk_size)
        finally:
            response.close()

    def _with_version(self, params: dict[str, Any] | None) -> dict[str, Any]:
        query = {key: value for key, value in (params or {}).items() if value is not None}
        query.setdefault("api-version", self.api_version)
        return query

    def _request_with_headers(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        scope: str = "project",
    ) -> tuple[Any, dict[str, Any]]:
        response = self.session.request(
            method=method,
            url=self.url_for(path, scope=scope),
            headers={"Accept": "application/json"},
            auth=self.auth.basic_auth(),
            json=json,
            params=self._with_version(params),
            timeout=self.timeout_s,
        )
        _raise_for_status(response, path)
        if not response.content:
            return {}, dict(response.headers or {})
        return response.json(), dict(response.headers or {})


def _raise_for_status(response: Any, path: str) -> None:
    status = int(response.status_code)
    if status < 400:
        return
    raise AdoApiError(
        _error_message(response) or f"Azure DevOps request failed for {path}",
        status_code=status,
        path=path,
    )


def _error_message(response: Any) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("message", "")).strip()
    return ""


def _unwrap_values(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict) and isinstance(payload.get("value"), list):
        rows = payload["value"]
    elif isinstance(payload, list):
        rows = payload
    else:
        return []
    return [row for row in rows if isinstance(row, dict)]


def _header(headers: dict[str, Any], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name:
            return str(value or "")
    return ""
