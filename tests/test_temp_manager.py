import os
import time
from pathlib import Path

import pytest

from ado_mcp.server.temp_manager import TempManager, sanitize_filename


def test_download_path_creates_build_directory_and_sanitizes(tmp_path: Path) -> None:
    manager = TempManager(root=tmp_path)

    path = manager.download_path("logs", 42, "Build Job: 1?.log")

    assert path.name == "Build-Job--1-.log"
    assert path.parent == manager.downloads_dir / "logs" / "42"
    assert path.parent.is_dir()
    assert manager.base_dir.name.startswith(f"ado-mcp-server-{os.getpid()}-")
    assert manager.is_managed(path)
    assert not manager.is_managed(tmp_path / "elsewhere.log")


@pytest.mark.parametrize(
    ("category", "build_id", "filename"),
    [("videos", 1, "a.log"), ("logs", 0, "a.log"), ("logs", True, "a.log"), ("logs", 3, "  ")],
)
def test_download_path_rejects_bad_inputs(tmp_path: Path, category: str, build_id: int, filename: str) -> None:
    with pytest.raises(ValueError):
        TempManager(root=tmp_path).download_path(category, build_id, filename)


def test_cleanup_removes_only_files_past_the_threshold(tmp_path: Path) -> None:
    manager = TempManager(root=tmp_path)
    old = manager.download_path("logs", 7, "old.log")
    old.write_bytes(b"x" * 10)
    fresh = manager.download_path("artifacts", 8, "fresh.zip")
    fresh.write_bytes(b"y" * 5)
    two_days_ago = time.time() - 48 * 3600
    os.utime(old, (two_days_ago, two_days_ago))

    result = manager.cleanup(older_than_hours=24)

    assert result.files_removed == 1
    assert result.space_saved == 10
    assert result.errors == []
    assert not old.exists()
    assert not old.parent.exists()
    assert fresh.exists()


def test_list_downloads_and_info(tmp_path: Path) -> None:
    manager = TempManager(root=tmp_path)
    log = manager.download_path("logs", 9, "job.log")
    log.write_bytes(b"abc")
    nested = manager.download_path("logs", 9, "stage") / "child.log"
    nested.parent.mkdir(parents=True, exist_ok=True)
    nested.write_bytes(b"defg")

    downloads = manager.list_downloads()
    info = manager.info()

    assert sorted(record.filename for record in downloads) == ["child.log", "job.log"]
    assert all(record.build_id == 9 for record in downloads)
    assert downloads[0].to_payload()["category"] == "logs"
    assert info["fileCount"] == 2
    assert info["totalSize"] == 7
    assert info["oldestFile"] is not None


def test_orphaned_directories_from_dead_processes_are_removed(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    orphan = tmp_path / "ado-mcp-server-999999-abc"
    orphan.mkdir()
    unrelated = tmp_path / "something-else"
    unrelated.mkdir()
    monkeypatch.setattr("ado_mcp.server.temp_manager._process_running", lambda pid: False)

    manager = TempManager(root=tmp_path)
    _ = manager.base_dir

    assert not orphan.exists()
    assert unrelated.exists()
    manager.remove()
    assert not manager.base_dir.exists()


def test_sanitize_filename() -> None:
    assert sanitize_filename(" release notes v1.2_final.txt ") == "release-notes-v1.2_final.txt"


def test_base_dir_is_created_once_and_reused(tmp_path: Path) -> None:
    manager = TempManager(root=tmp_path)

    first = manager.base_dir

    assert manager.base_dir == first
    assert [entry.name for entry in tmp_path.iterdir()] == [first.name]
    assert (first / "downloads" / "artifacts").is_dir()


def test_unusable_root_raises_os_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file")

    with pytest.raises(OSError):
        _ = TempManager(root=blocker).base_dir
