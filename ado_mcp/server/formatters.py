"""Timestamp, duration and error formatting for tool responses."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterable

from ado_mcp.server.errors import ClassifiedError, ErrorKind


_FRACTION = re.compile(r"\.(\d+)")

_ERROR_HEADINGS = {
    ErrorKind.PERMISSION: "Permission Error",
    ErrorKind.NOT_FOUND: "Not Found",
    ErrorKind.API_ERROR: "API Error",
}


def parse_timestamp(value: Any) -> datetime | None:
    """Parse Azure DevOps timestamps, which may carry 7 fractional digits and a Z suffix."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return None
    text = str(value).strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_duration(start: Any, finish: Any) -> str:
    started = parse_timestamp(start)
    if started is None:
        return "Not started"
    finished = parse_timestamp(finish)
    if finished is None:
        return "In progress"

    total_seconds = max(0, int((finished - started).total_seconds()))
    minutes, seconds = divmod(total_seconds, 60)
    if minutes > 60:
        hours, mins = divmod(minutes, 60)
        return f"{hours}h {mins}m"
    return f"{minutes}m {seconds}s"


def format_success_response(payload: dict[str, Any], warnings: Iterable[str] = ()) -> dict[str, Any]:
    response: dict[str, Any] = {"ok": True, **payload}
    warnings = list(warnings)
    if warnings:
        response["warnings"] = warnings
    return response


def format_error_response(error: ClassifiedError) -> dict[str, Any]:
    text = f"{_ERROR_HEADINGS[error.kind]}\n\n{error.message}"
    if error.remediation_hint:
        text += f"\n\nSuggestion: {error.remediation_hint}"
    return {"ok": False, "error": error.to_dict(), "text": text}
