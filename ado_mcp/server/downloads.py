"""Streams remote logs and artifacts to local files.

The remote payload is opened (and its HTTP status checked) before any local
directory or file is touched, then piped chunk by chunk so memory use stays
bounded regardless of payload size. A failure mid-pipe propagates to the
caller and leaves the partial file where it is.
"""

from __future__ import annotations

import logging
import os
import re
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from ado_mcp.server.models import DownloadDescriptor
from ado_mcp.server.temp_manager import TempManager


logger = logging.getLogger(__name__)

StreamOpener = Callable[[], AbstractContextManager[Iterable[bytes]]]

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class DownloadRequest:
    category: str
    build_id: int
    resource_name: str
    source_identity: str
    output_path: str | None = None
    extension: str = ".log"
    enforce_extension: bool = False
    duration: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def sanitize_name(name: str) -> str:
    return _NON_ALPHANUMERIC.sub("-", name)


def derive_filename(resource_name: str, identity: str | int, extension: str, today: date | None = None) -> str:
    day = (today or date.today()).isoformat()
    return f"{sanitize_name(resource_name)}-{identity}-{day}{extension}"


def is_directory_target(output_path: str) -> bool:
    separators = {"/", os.sep}
    if os.altsep:
        separators.add(os.altsep)
    return output_path[-1:] in separators or Path(output_path).is_dir()


def with_extension(path: Path, extension: str) -> Path:
    if path.name.lower().endswith(extension.lower()):
        return path
    return path.with_name(path.name + extension)


def resolve_output_path(output_path: str, derived_name: str, required_extension: str | None = None) -> Path:
    """Resolve a caller path to a concrete file path.

    A trailing separator or an existing directory means "put the file in
    there under its derived name"; anything else is taken as the file path.
    """

    if is_directory_target(output_path):
        return Path(output_path) / derived_name
    target = Path(output_path)
    if required_extension:
        target = with_extension(target, required_extension)
    return target


class StreamingDownloader:
    def __init__(self, temp_manager: TempManager, today: Callable[[], date] = date.today) -> None:
        self.temp_manager = temp_manager
        self._today = today

    def derived_name(self, request: DownloadRequest) -> str:
        return derive_filename(
            request.resource_name, request.build_id, request.extension, today=self._today()
        )

    def resolve_target(self, request: DownloadRequest) -> tuple[Path, bool]:
        derived = self.derived_name(request)
        if not request.output_path:
            path = self.temp_manager.download_path(request.category, request.build_id, derived)
            return path, True
        required = request.extension if request.enforce_extension else None
        path = resolve_output_path(request.output_path, derived, required)
        return path, self.temp_manager.is_managed(path)

    def save(self, open_stream: StreamOpener, request: DownloadRequest) -> DownloadDescriptor:
        with open_stream() as chunks:
            target, is_temporary = self.resolve_target(request)
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as handle:
                for chunk in chunks:
                    if chunk:
                        handle.write(chunk)

        size = target.stat().st_size
        logger.info("Saved %s (%d bytes) to %s", request.source_identity, size, target)
        return DownloadDescriptor(
            saved_path=str(target),
            byte_size=size,
            source_identity=request.source_identity,
            derived_name=target.name,
            duration=request.duration,
            is_temporary=is_temporary,
            downloaded_at=datetime.now(timezone.utc).isoformat(),
            details=dict(request.details),
        )
