"""Per-process managed directory for downloads without an explicit output path."""

from __future__ import annotations

import atexit
import logging
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)

CATEGORIES = ("logs", "artifacts")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9.\-_]")


@dataclass(frozen=True)
class DownloadRecord:
    path: Path
    category: str
    build_id: int
    filename: str
    size: int
    downloaded_at: datetime
    age_hours: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "category": self.category,
            "buildId": self.build_id,
            "filename": self.filename,
            "size": self.size,
            "downloadedAt": self.downloaded_at.isoformat(),
            "ageHours": round(self.age_hours, 1),
        }


@dataclass(frozen=True)
class CleanupResult:
    files_removed: int
    space_saved: int
    errors: list[str]


class TempManager:
    def __init__(self, root: Path | None = None, prefix: str = "ado-mcp-server") -> None:
        self.root = Path(root) if root is not None else Path(tempfile.gettempdir())
        self.prefix = prefix
        self._base_dir: Path | None = None

    @property
    def base_dir(self) -> Path:
        if self._base_dir is None:
            self._base_dir = self._initialize()
        return self._base_dir

    @property
    def downloads_dir(self) -> Path:
        return self.base_dir / "downloads"

    def _initialize(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        base = Path(tempfile.mkdtemp(prefix=f"{self.prefix}-{os.getpid()}-", dir=self.root))
        for category in CATEGORIES:
            (base / "downloads" / category).mkdir(parents=True, exist_ok=True)
        atexit.register(self.remove)
        self._remove_orphaned_dirs()
        return base

    def download_path(self, category: str, build_id: int, filename: str) -> Path:
        if category not in CATEGORIES:
            raise ValueError(f"Invalid category: {category}. Must be one of {', '.join(CATEGORIES)}.")
        if isinstance(build_id, bool) or not isinstance(build_id, int) or build_id <= 0:
            raise ValueError(f"Invalid buildId: {build_id}. Must be a positive integer.")
        if not filename or not filename.strip():
            raise ValueError("Filename must be a non-empty string.")

        category_dir = self.downloads_dir / category / str(build_id)
        category_dir.mkdir(parents=True, exist_ok=True)
        return category_dir / sanitize_filename(filename)

    def is_managed(self, path: Path) -> bool:
        if self._base_dir is None:
            return False
        try:
            Path(path).resolve().relative_to(self._base_dir.resolve())
        except ValueError:
            return False
        return True

    def list_downloads(self) -> list[DownloadRecord]:
        records: list[DownloadRecord] = []
        now = time.time()
        for category in CATEGORIES:
            category_dir = self.downloads_dir / category
            if not category_dir.is_dir():
                continue
            for build_dir in sorted(category_dir.iterdir()):
                if not build_dir.is_dir() or not build_dir.name.isdigit():
                    continue
                for file_path in sorted(build_dir.rglob("*")):
                    if not file_path.is_file():
                        continue
                    stats = file_path.stat()
                    records.append(
                        DownloadRecord(
                            path=file_path,
                            category=category,
                            build_id=int(build_dir.name),
                            filename=file_path.name,
                            size=stats.st_size,
                            downloaded_at=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
                            age_hours=max(0.0, (now - stats.st_mtime) / 3600),
                        )
                    )
        return records

    def cleanup(self, older_than_hours: float = 24) -> CleanupResult:
        removed = 0
        saved = 0
        errors: list[str] = []
        for record in self.list_downloads():
            if record.age_hours <= older_than_hours:
                continue
            try:
                record.path.unlink()
            except OSError as exc:
                errors.append(f"Failed to remove {record.path}: {exc}")
                continue
            removed += 1
            saved += record.size
            _remove_empty_parents(record.path.parent, stop=self.downloads_dir / record.category)
        return CleanupResult(files_removed=removed, space_saved=saved, errors=errors)

    def info(self) -> dict[str, Any]:
        downloads = self.list_downloads()
        oldest = max(downloads, key=lambda record: record.age_hours, default=None)
        return {
            "path": str(self.base_dir),
            "totalSize": sum(record.size for record in downloads),
            "fileCount": len(downloads),
            "oldestFile": (
                {"path": str(oldest.path), "ageHours": round(oldest.age_hours, 1)}
                if oldest is not None
                else None
            ),
        }

    def remove(self) -> None:
        if self._base_dir is not None:
            shutil.rmtree(self._base_dir, ignore_errors=True)

    def _remove_orphaned_dirs(self) -> None:
        pattern = re.compile(rf"^{re.escape(self.prefix)}-(\d+)-")
        for entry in self.root.iterdir():
            match = pattern.match(entry.name)
            if not match or not entry.is_dir():
                continue
            pid = int(match.group(1))
            if pid == os.getpid() or _process_running(pid):
                continue
            try:
                shutil.rmtree(entry)
            except OSError as exc:
                logger.warning("Failed to remove orphaned temp directory %s: %s", entry, exc)
            else:
                logger.info("Removed orphaned temp directory %s", entry)


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("-", filename.strip())


def _remove_empty_parents(directory: Path, stop: Path) -> None:
    current = directory
    while current != stop and stop in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent


def _process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
