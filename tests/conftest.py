"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

import os

# Keep Rich from wrapping CLI output at the default 80 columns (set before
# clipvault.cli creates its Console at import time).
os.environ.setdefault("COLUMNS", "200")

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
import yaml

from clipvault.exceptions import StorageError
from clipvault.lifecycle.coordinator import ArtifactLifecycle
from clipvault.lifecycle.policy import ExpiryPolicy
from clipvault.lifecycle.registry import TimerRegistry

EPOCH = datetime(2026, 2, 15, 12, 0, 0, tzinfo=timezone.utc)


class ManualHandle:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self) -> None:
        self.elapsed = 0.0
        self.handles: list[ManualHandle] = []

    def now(self) -> datetime:
        return EPOCH + timedelta(seconds=self.elapsed)

    def after(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.elapsed + delay, callback)
        self.handles.append(handle)
        return handle

    def live_handles(self) -> list[ManualHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        self.elapsed += seconds
        due = sorted(
            (h for h in self.handles if not h.cancelled and h.due <= self.elapsed),
            key=lambda h: h.due,
        )
        for handle in due:
            self.handles.remove(handle)
            handle.callback()


class MemoryStorage:
    """Dict-backed storage recording every call."""

    def __init__(self, bucket: str = "videos") -> None:
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_uploads = False
        self.fail_deletes = False
        self.closed = False

    def upload(self, key: str, data: bytes, content_type: str = "video/mp4") -> None:
        if self.fail_uploads:
            raise StorageError(f"Upload of {key} failed: bucket unavailable")
        self.objects[key] = data

    def download(self, key: str) -> bytes:
        try:
            return self.objects[key]
        except KeyError:
            raise StorageError(f"Object not found: {key}") from None

    def delete(self, key: str) -> None:
        self.deleted.append(key)
        if self.fail_deletes:
            raise StorageError(f"Delete of {key} failed: bucket unavailable")
        self.objects.pop(key, None)

    def url_for(self, key: str, expires_in: int) -> str:
        return f"memory://{self.bucket}/{key}?expires_in={expires_in}"

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def registry(scheduler: ManualScheduler) -> TimerRegistry:
    return TimerRegistry(scheduler=scheduler)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def lifecycle(storage: MemoryStorage, scheduler: ManualScheduler) -> ArtifactLifecycle:
    return ArtifactLifecycle(
        storage=storage,
        policy=ExpiryPolicy(timedelta(minutes=20)),
        scheduler=scheduler,
    )


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project directory using local storage."""
    project_dir = tmp_path / "test_project"
    project_dir.mkdir()
    (project_dir / "downloads").mkdir()
    (project_dir / "storage").mkdir()

    config = {
        "project_name": "test_project",
        "expiry_delay_seconds": 1200,
        "storage": {"backend": "local", "bucket": "videos", "root": "storage"},
    }
    with open(project_dir / "clipvault.yaml", "w") as f:
        yaml.dump(config, f)

    return project_dir


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a sample configuration dictionary."""
    return {
        "project_name": "test-project",
        "expiry_delay_seconds": 600,
        "duplicate_policy": "reject",
        "key_prefix": "clips",
        "storage": {
            "backend": "supabase",
            "bucket": "videos",
            "supabase_url": "https://abc.supabase.co",
            "supabase_key": "service-key",
        },
    }
