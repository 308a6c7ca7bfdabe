"""Tests for the refresh-guard CLI."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from refresh_guard.cli.main import app
from refresh_guard.core.clock import monotonic_ms

runner = CliRunner()


@pytest.fixture(autouse=True)
def _file_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("REFRESH_GUARD_STORE_BACKEND", "file")
    monkeypatch.setenv("REFRESH_GUARD_STORE_STORE_PATH", str(tmp_path))
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
    monkeypatch.delenv("ECS_CONTAINER_METADATA_URI", raising=False)
    return tmp_path


@pytest.fixture(autouse=True)
def _restore_logging():
    """The CLI callback reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    package_level = logging.getLogger("refresh_guard").level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("refresh_guard").setLevel(package_level)


def _write(root: Path, key: str, document: dict) -> Path:
    path = root / key
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document))
    return path


class TestLockCommands:
    def test_status_without_lock(self) -> None:
        result = runner.invoke(app, ["lock", "status", "locks/books.lock"])
        assert result.exit_code == 0
        assert "No lock at" in result.output

    def test_status_of_live_lock(self, tmp_path: Path) -> None:
        _write(tmp_path, "locks/books.lock", {"holder_id": "worker-a", "acquired_at": monotonic_ms(), "ttl_ms": 600_000})

        result = runner.invoke(app, ["lock", "status", "locks/books.lock"])

        assert result.exit_code == 0
        assert "worker-a" in result.output
        assert "held" in result.output

    def test_status_of_expired_lock(self, tmp_path: Path) -> None:
        _write(tmp_path, "locks/books.lock", {"holder_id": "worker-a", "acquired_at": 1_000, "ttl_ms": 60_000})

        result = runner.invoke(app, ["lock", "status", "locks/books.lock"])

        assert result.exit_code == 0
        assert "EXPIRED" in result.output

    def test_status_of_unreadable_lock_fails(self, tmp_path: Path) -> None:
        (tmp_path / "locks").mkdir()
        (tmp_path / "locks" / "books.lock").write_text("not json")

        result = runner.invoke(app, ["lock", "status", "locks/books.lock"])

        assert result.exit_code == 1

    def test_release_by_owner(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "locks/books.lock", {"holder_id": "worker-a", "acquired_at": monotonic_ms(), "ttl_ms": 600_000})

        result = runner.invoke(app, ["lock", "release", "locks/books.lock", "--holder", "worker-a"])

        assert result.exit_code == 0
        assert "Released" in result.output
        assert not path.exists()

    def test_release_by_other_holder_is_refused(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "locks/books.lock", {"holder_id": "worker-a", "acquired_at": monotonic_ms(), "ttl_ms": 600_000})

        result = runner.invoke(app, ["lock", "release", "locks/books.lock", "--holder", "worker-b"])

        assert result.exit_code == 1
        assert "--force" in result.output
        assert path.exists()

    def test_forced_release(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "locks/books.lock", {"holder_id": "worker-a", "acquired_at": monotonic_ms(), "ttl_ms": 600_000})

        result = runner.invoke(app, ["lock", "release", "locks/books.lock", "--holder", "operator", "--force"])

        assert result.exit_code == 0
        assert not path.exists()

    def test_cleanup_removes_expired_lock(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "locks/books.lock", {"holder_id": "worker-a", "acquired_at": 1_000, "ttl_ms": 60_000})

        result = runner.invoke(app, ["lock", "cleanup", "locks/books.lock"])

        assert result.exit_code == 0
        assert "Removed stale lock" in result.output
        assert not path.exists()

    def test_cleanup_leaves_live_lock(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "locks/books.lock", {"holder_id": "worker-a", "acquired_at": monotonic_ms(), "ttl_ms": 600_000})

        result = runner.invoke(app, ["lock", "cleanup", "locks/books.lock"])

        assert result.exit_code == 0
        assert "Nothing to clean up" in result.output
        assert path.exists()


class TestSnapshotCommands:
    def test_show_without_snapshot(self) -> None:
        result = runner.invoke(app, ["snapshot", "show", "books"])
        assert result.exit_code == 0
        assert "No snapshot published" in result.output

    def test_show_pointer_and_heartbeat(self, tmp_path: Path) -> None:
        _write(
            tmp_path,
            "datasets/books/latest.json",
            {"version": "abc123def456", "key": "datasets/books/abc123def456.json", "generated_at": 1_700_000_000_000, "count": 2},
        )
        _write(
            tmp_path,
            "datasets/books/heartbeat.json",
            {"run_at": 1_700_000_000_000, "success": True, "change_detected": True},
        )

        result = runner.invoke(app, ["snapshot", "show", "books"])

        assert result.exit_code == 0
        assert "abc123def456" in result.output
        assert "Last refresh" in result.output
        assert "changed" in result.output


class TestCheck:
    def test_valid_settings(self) -> None:
        result = runner.invoke(app, ["check"])
        assert result.exit_code == 0
        assert "Settings OK" in result.output

    def test_s3_without_bucket_fails(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REFRESH_GUARD_STORE_BACKEND", "s3")
        monkeypatch.delenv("REFRESH_GUARD_STORE_S3_BUCKET", raising=False)

        result = runner.invoke(app, ["check"])

        assert result.exit_code == 1
        assert "REFRESH_GUARD_STORE_S3_BUCKET" in result.output

    def test_lock_commands_also_validate(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REFRESH_GUARD_STORE_BACKEND", "s3")
        monkeypatch.delenv("REFRESH_GUARD_STORE_S3_BUCKET", raising=False)

        result = runner.invoke(app, ["lock", "status", "locks/books.lock"])

        assert result.exit_code == 1
