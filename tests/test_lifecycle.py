"""Tests for clipvault.lifecycle.coordinator and policy modules."""

from __future__ import annotations

import logging
import signal
from datetime import timedelta
from pathlib import Path

import pytest

from clipvault.config import ClipvaultConfig
from clipvault.exceptions import RegistryClosedError, SchedulingConflict, StorageError
from clipvault.lifecycle import coordinator
from clipvault.lifecycle.coordinator import ArtifactLifecycle
from clipvault.lifecycle.policy import ExpiryPolicy
from clipvault.lifecycle.registry import FireResult, TimerRegistry

from .conftest import EPOCH, ManualScheduler, MemoryStorage


class TestExpiryPolicy:
    def test_default_is_twenty_minutes(self) -> None:
        policy = ExpiryPolicy()
        assert policy.delay == timedelta(minutes=20)
        assert policy.delay_seconds == 1200

    def test_fire_time(self) -> None:
        policy = ExpiryPolicy(timedelta(seconds=90))
        assert policy.fire_time(EPOCH) == EPOCH + timedelta(seconds=90)

    def test_non_positive_delay_raises(self) -> None:
        with pytest.raises(ValueError):
            ExpiryPolicy(timedelta(0))
        with pytest.raises(ValueError):
            ExpiryPolicy(timedelta(seconds=-5))

    def test_from_config(self) -> None:
        policy = ExpiryPolicy.from_config(ClipvaultConfig(expiry_delay_seconds=45))
        assert policy.delay_seconds == 45


class TestOnUploadSucceeded:
    def test_schedules_one_job(
        self, lifecycle: ArtifactLifecycle, scheduler: ManualScheduler
    ) -> None:
        job = lifecycle.on_upload_succeeded("videos/1.mp4")

        assert job.fire_at == lifecycle.policy.fire_time(job.scheduled_at)
        assert lifecycle.registry.pending_keys() == ["videos/1.mp4"]
        assert len(scheduler.live_handles()) == 1

    def test_deletes_object_after_expiry(
        self,
        lifecycle: ArtifactLifecycle,
        scheduler: ManualScheduler,
        storage: MemoryStorage,
    ) -> None:
        storage.objects["videos/1.mp4"] = b"data"
        lifecycle.on_upload_succeeded("videos/1.mp4")

        scheduler.advance(1199)
        assert storage.deleted == []

        scheduler.advance(1)
        assert storage.deleted == ["videos/1.mp4"]
        assert "videos/1.mp4" not in storage.objects
        assert lifecycle.pending() == []

    def test_pending_sorted_by_fire_time(
        self, lifecycle: ArtifactLifecycle, scheduler: ManualScheduler
    ) -> None:
        lifecycle.on_upload_succeeded("videos/b.mp4")
        scheduler.advance(5)
        lifecycle.on_upload_succeeded("videos/a.mp4")
        scheduler.advance(5)
        lifecycle.on_upload_succeeded("videos/b.mp4")

        assert [job.key for job in lifecycle.pending()] == ["videos/a.mp4", "videos/b.mp4"]

    def test_reject_policy(self, storage: MemoryStorage, scheduler: ManualScheduler) -> None:
        lifecycle = ArtifactLifecycle(storage, scheduler=scheduler, duplicate_policy="reject")
        lifecycle.on_upload_succeeded("videos/1.mp4")
        with pytest.raises(SchedulingConflict):
            lifecycle.on_upload_succeeded("videos/1.mp4")


class TestDeleteFailure:
    def test_failure_is_recorded_not_retried(
        self,
        lifecycle: ArtifactLifecycle,
        scheduler: ManualScheduler,
        storage: MemoryStorage,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        storage.fail_deletes = True
        lifecycle.on_upload_succeeded("videos/1.mp4")

        with caplog.at_level(logging.ERROR, logger="clipvault"):
            scheduler.advance(1200)
            scheduler.advance(3600)

        assert storage.deleted == ["videos/1.mp4"]
        assert lifecycle.pending() == []
        assert len(lifecycle.history) == 1
        result = lifecycle.history[0]
        assert result.succeeded is False
        assert isinstance(result.error, StorageError)
        assert len([r for r in caplog.records if r.levelno >= logging.ERROR]) == 1

    def test_extra_reporter_receives_results(
        self, storage: MemoryStorage, scheduler: ManualScheduler
    ) -> None:
        seen: list[FireResult] = []
        lifecycle = ArtifactLifecycle(storage, scheduler=scheduler, reporter=seen.append)
        lifecycle.on_upload_succeeded("videos/1.mp4")

        scheduler.advance(1200)

        assert [r.key for r in seen] == ["videos/1.mp4"]
        assert seen[0].succeeded is True


class TestShutdownAndCleanup:
    def test_shutdown_cancels_everything(
        self,
        lifecycle: ArtifactLifecycle,
        scheduler: ManualScheduler,
        storage: MemoryStorage,
    ) -> None:
        for i in range(3):
            lifecycle.on_upload_succeeded(f"videos/{i}.mp4")

        assert lifecycle.on_shutdown() == 3

        scheduler.advance(3600)
        assert storage.deleted == []

    def test_shutdown_refuses_new_uploads(self, lifecycle: ArtifactLifecycle) -> None:
        lifecycle.on_shutdown()
        with pytest.raises(RegistryClosedError):
            lifecycle.on_upload_succeeded("videos/late.mp4")

    def test_cleanup_keeps_accepting(
        self,
        lifecycle: ArtifactLifecycle,
        scheduler: ManualScheduler,
        storage: MemoryStorage,
    ) -> None:
        lifecycle.on_upload_succeeded("videos/1.mp4")
        lifecycle.on_upload_succeeded("videos/2.mp4")

        assert lifecycle.on_cleanup_requested() == 2

        lifecycle.on_upload_succeeded("videos/3.mp4")
        scheduler.advance(1200)
        assert storage.deleted == ["videos/3.mp4"]

    def test_cleanup_does_not_delete_objects(
        self, lifecycle: ArtifactLifecycle, storage: MemoryStorage
    ) -> None:
        storage.objects["videos/1.mp4"] = b"data"
        lifecycle.on_upload_succeeded("videos/1.mp4")
        lifecycle.on_cleanup_requested()
        assert storage.objects == {"videos/1.mp4": b"data"}

    def test_cancel_single(
        self,
        lifecycle: ArtifactLifecycle,
        scheduler: ManualScheduler,
        storage: MemoryStorage,
    ) -> None:
        lifecycle.on_upload_succeeded("videos/1.mp4")
        assert lifecycle.cancel("videos/1.mp4") is True
        assert lifecycle.cancel("videos/1.mp4") is False
        scheduler.advance(1200)
        assert storage.deleted == []


class TestPublish:
    def test_publish_uploads_and_schedules(
        self,
        lifecycle: ArtifactLifecycle,
        storage: MemoryStorage,
        tmp_path: Path,
    ) -> None:
        video = tmp_path / "clip.mp4"
        video.write_bytes(b"fake video")

        artifact = lifecycle.publish(video, key="videos/clip.mp4")

        assert storage.objects["videos/clip.mp4"] == b"fake video"
        assert not video.exists()
        assert artifact.size_bytes == 10
        assert artifact.expires_at == EPOCH + timedelta(minutes=20)
        assert artifact.download_url == "memory://videos/videos/clip.mp4?expires_in=1200"
        assert "videos/clip.mp4" in lifecycle.registry

    def test_generated_key(self, lifecycle: ArtifactLifecycle, tmp_path: Path) -> None:
        video = tmp_path / "clip.mp4"
        video.write_bytes(b"x")

        artifact = lifecycle.publish(video, remove_local=False)

        assert artifact.key.startswith("videos/")
        assert artifact.key.endswith(".mp4")
        assert video.exists()

    def test_upload_failure_schedules_nothing(
        self,
        lifecycle: ArtifactLifecycle,
        storage: MemoryStorage,
        tmp_path: Path,
    ) -> None:
        storage.fail_uploads = True
        video = tmp_path / "clip.mp4"
        video.write_bytes(b"x")

        with pytest.raises(StorageError):
            lifecycle.publish(video)

        assert lifecycle.pending() == []
        assert not video.exists()

    def test_same_millisecond_gets_distinct_keys(
        self,
        lifecycle: ArtifactLifecycle,
        storage: MemoryStorage,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(coordinator.time, "time", lambda: 1718000000.0)
        first_video = tmp_path / "a.mp4"
        first_video.write_bytes(b"first")
        second_video = tmp_path / "b.mp4"
        second_video.write_bytes(b"second")

        first = lifecycle.publish(first_video)
        second = lifecycle.publish(second_video)

        assert first.key == "videos/1718000000000.mp4"
        assert second.key == "videos/1718000000001.mp4"
        assert storage.objects[first.key] == b"first"
        assert storage.objects[second.key] == b"second"
        assert [job.key for job in lifecycle.pending()] == [first.key, second.key]

    def test_conflicting_key_uploads_nothing(
        self, storage: MemoryStorage, scheduler: ManualScheduler, tmp_path: Path
    ) -> None:
        lifecycle = ArtifactLifecycle(storage, scheduler=scheduler, duplicate_policy="reject")
        lifecycle.on_upload_succeeded("videos/clip.mp4")
        video = tmp_path / "clip.mp4"
        video.write_bytes(b"x")

        with pytest.raises(SchedulingConflict):
            lifecycle.publish(video, key="videos/clip.mp4")

        assert storage.objects == {}
        assert video.exists()
        assert len(lifecycle.pending()) == 1

    def test_closed_registry_uploads_nothing(
        self, lifecycle: ArtifactLifecycle, storage: MemoryStorage, tmp_path: Path
    ) -> None:
        lifecycle.on_shutdown()
        video = tmp_path / "clip.mp4"
        video.write_bytes(b"x")

        with pytest.raises(RegistryClosedError):
            lifecycle.publish(video)

        assert storage.objects == {}
        assert video.exists()

    def test_shutdown_during_upload_removes_object(
        self, scheduler: ManualScheduler, tmp_path: Path
    ) -> None:
        class ShutdownDuringUpload(MemoryStorage):
            lifecycle: ArtifactLifecycle

            def upload(self, key: str, data: bytes, content_type: str = "video/mp4") -> None:
                super().upload(key, data, content_type)
                self.lifecycle.on_shutdown()

        storage = ShutdownDuringUpload()
        lifecycle = ArtifactLifecycle(storage, scheduler=scheduler)
        storage.lifecycle = lifecycle
        video = tmp_path / "clip.mp4"
        video.write_bytes(b"x")

        with pytest.raises(RegistryClosedError):
            lifecycle.publish(video, key="videos/clip.mp4")

        assert storage.objects == {}
        assert storage.deleted == ["videos/clip.mp4"]

    def test_close_releases_storage(
        self, lifecycle: ArtifactLifecycle, storage: MemoryStorage
    ) -> None:
        lifecycle.close()
        assert storage.closed


class TestConstruction:
    def test_injected_registry_gets_reporter(
        self, storage: MemoryStorage, scheduler: ManualScheduler
    ) -> None:
        registry = TimerRegistry(scheduler=scheduler)
        lifecycle = ArtifactLifecycle(storage, registry=registry)
        lifecycle.on_upload_succeeded("videos/1.mp4")

        scheduler.advance(1200)

        assert lifecycle.registry is registry
        assert len(lifecycle.history) == 1

    def test_from_config(self, storage: MemoryStorage, scheduler: ManualScheduler) -> None:
        config = ClipvaultConfig(
            expiry_delay_seconds=60,
            duplicate_policy="reject",
            key_prefix="/clips/",
        )
        lifecycle = ArtifactLifecycle.from_config(config, storage, scheduler=scheduler)

        assert lifecycle.policy.delay_seconds == 60
        assert lifecycle.registry.duplicate_policy == "reject"
        assert lifecycle.download_url("clips/a.mp4") == "memory://videos/clips/a.mp4?expires_in=60"
        assert lifecycle.make_key(Path("x.webm")).startswith("clips/")

    def test_fresh_registry_per_instance(self, storage: MemoryStorage) -> None:
        first = ArtifactLifecycle(storage, scheduler=ManualScheduler())
        second = ArtifactLifecycle(storage, scheduler=ManualScheduler())
        assert first.registry is not second.registry


class TestSignalHandlers:
    def test_sigterm_requests_shutdown(
        self, lifecycle: ArtifactLifecycle, storage: MemoryStorage
    ) -> None:
        previous = signal.getsignal(signal.SIGTERM)
        lifecycle.install_signal_handlers([signal.SIGTERM])
        try:
            lifecycle.on_upload_succeeded("videos/1.mp4")
            handler = signal.getsignal(signal.SIGTERM)
            handler(signal.SIGTERM, None)
            assert lifecycle.shutdown_requested
        finally:
            lifecycle.restore_signal_handlers()
        assert signal.getsignal(signal.SIGTERM) == previous

        assert lifecycle.shutdown_if_requested() == 1
        assert lifecycle.pending() == []
        assert lifecycle.registry.closed
        assert lifecycle.shutdown_if_requested() is None

    def test_no_signal_means_no_shutdown(self, lifecycle: ArtifactLifecycle) -> None:
        lifecycle.on_upload_succeeded("videos/1.mp4")
        assert lifecycle.shutdown_if_requested() is None
        assert not lifecycle.registry.closed

    def test_signal_while_registry_lock_is_held(self, lifecycle: ArtifactLifecycle) -> None:
        lifecycle.install_signal_handlers([signal.SIGTERM])
        try:
            lifecycle.on_upload_succeeded("videos/1.mp4")
            # The handler runs on this thread while it owns the lock.
            with lifecycle.registry._cond:
                signal.raise_signal(signal.SIGTERM)
            assert lifecycle.shutdown_requested
            assert "videos/1.mp4" in lifecycle.registry
        finally:
            lifecycle.restore_signal_handlers()

        assert lifecycle.shutdown_if_requested() == 1
        assert lifecycle.registry.closed

    def test_sigint_still_interrupts(self, lifecycle: ArtifactLifecycle) -> None:
        original = signal.signal(signal.SIGINT, signal.default_int_handler)
        lifecycle.install_signal_handlers([signal.SIGINT])
        try:
            lifecycle.on_upload_succeeded("videos/1.mp4")
            handler = signal.getsignal(signal.SIGINT)
            with pytest.raises(KeyboardInterrupt):
                handler(signal.SIGINT, None)
            assert lifecycle.shutdown_requested
        finally:
            lifecycle.restore_signal_handlers()
            signal.signal(signal.SIGINT, original if original is not None else signal.SIG_DFL)

        assert lifecycle.shutdown_if_requested() == 1
