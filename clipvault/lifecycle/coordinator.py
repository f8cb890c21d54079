"""
clipvault.lifecycle.coordinator - Upload-to-deletion lifecycle.

Ties storage, expiry policy and the timer registry together: every
successful upload gets exactly one deletion job, due after the expiry delay.
Deletion is best-effort. It is attempted once, a failure is logged and
reported, and nothing is retried.
"""

from __future__ import annotations

import math
import signal
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from clipvault.exceptions import ClipvaultError, StorageError
from clipvault.lifecycle.policy import ExpiryPolicy
from clipvault.lifecycle.registry import DeletionJob, FireResult, Reporter, TimerRegistry
from clipvault.logging import get_logger

if TYPE_CHECKING:
    from clipvault.config import ClipvaultConfig
    from clipvault.lifecycle.timers import Scheduler
    from clipvault.storage.base import StorageBackend

logger = get_logger("lifecycle")

HISTORY_SIZE = 100


@dataclass(frozen=True)
class PublishedArtifact:
    """An uploaded object and when it goes away."""

    key: str
    download_url: str
    expires_at: datetime
    size_bytes: int


class ArtifactLifecycle:
    """Owns the deletion registry for one storage backend.

    Args:
        storage: Backend the artifacts were uploaded to
        policy: Expiry delay; 20 minutes when omitted
        scheduler: Timer primitive handed to a fresh registry
        registry: Pre-built registry to use instead of a fresh one
        reporter: Extra consumer of fire results
        duplicate_policy: "replace" or "reject", for a fresh registry
        key_prefix: Folder new keys are placed under
    """

    def __init__(
        self,
        storage: StorageBackend,
        policy: ExpiryPolicy | None = None,
        scheduler: Scheduler | None = None,
        registry: TimerRegistry | None = None,
        reporter: Reporter | None = None,
        duplicate_policy: str = "replace",
        key_prefix: str = "videos",
    ) -> None:
        self.storage = storage
        self.policy = policy or ExpiryPolicy()
        self.reporter = reporter
        self.key_prefix = key_prefix.strip("/")
        self.history: deque[FireResult] = deque(maxlen=HISTORY_SIZE)

        if registry is None:
            registry = TimerRegistry(
                scheduler=scheduler,
                reporter=self._record,
                duplicate_policy=duplicate_policy,
            )
        elif registry.reporter is None:
            registry.reporter = self._record
        self.registry = registry

        self._previous_handlers: dict[int, Any] = {}
        self._shutdown_signal: int | None = None
        self._key_lock = threading.Lock()
        self._last_stamp = 0

    @classmethod
    def from_config(
        cls,
        config: ClipvaultConfig,
        storage: StorageBackend,
        scheduler: Scheduler | None = None,
    ) -> ArtifactLifecycle:
        return cls(
            storage=storage,
            policy=ExpiryPolicy.from_config(config),
            scheduler=scheduler,
            duplicate_policy=config.duplicate_policy,
            key_prefix=config.key_prefix,
        )

    def on_upload_succeeded(self, key: str) -> DeletionJob:
        """Schedule the deletion of a freshly uploaded object."""
        storage = self.storage

        def delete() -> None:
            storage.delete(key)

        return self.registry.schedule(key, self.policy.delay, delete)

    def on_shutdown(self) -> int:
        """Drop every pending deletion and refuse new ones."""
        cancelled = self.registry.close()
        logger.info("Shutdown: cancelled %d pending deletion(s)", cancelled)
        return cancelled

    def on_cleanup_requested(self) -> int:
        """Cancel every pending deletion. The objects themselves are kept."""
        cancelled = self.registry.cancel_all()
        logger.warning(
            "Cleanup requested: cancelled %d pending deletion(s); those objects will persist",
            cancelled,
        )
        return cancelled

    def cancel(self, key: str) -> bool:
        return self.registry.cancel_one(key)

    def pending(self) -> list[DeletionJob]:
        jobs = (self.registry.get(key) for key in self.registry.pending_keys())
        return sorted((job for job in jobs if job is not None), key=lambda job: job.fire_at)

    def wait(self, timeout: float | None = None) -> bool:
        return self.registry.wait_until_idle(timeout)

    def close(self) -> None:
        """Release the storage backend's resources."""
        self.storage.close()

    def make_key(self, local_path: Path) -> str:
        """Build a fresh key from the current time in milliseconds.

        The stamp never repeats within one coordinator, even for uploads
        made in the same millisecond.
        """
        with self._key_lock:
            stamp = max(int(time.time() * 1000), self._last_stamp + 1)
            self._last_stamp = stamp
        name = f"{stamp}{local_path.suffix}"
        return f"{self.key_prefix}/{name}" if self.key_prefix else name

    def download_url(self, key: str) -> str:
        """Link to the stored object, valid for the expiry delay."""
        return self.storage.url_for(key, expires_in=math.ceil(self.policy.delay_seconds))

    def publish(
        self,
        local_path: Path,
        key: str | None = None,
        content_type: str = "video/mp4",
        remove_local: bool = True,
    ) -> PublishedArtifact:
        """Upload a local file and schedule its deletion.

        Args:
            local_path: File to upload
            key: Object key; generated from the current time when omitted
            content_type: MIME type sent to the storage backend
            remove_local: Delete the local file afterwards, even if the
                upload failed

        Returns:
            The published artifact with its download link and expiry time

        Raises:
            SchedulingError: If the key cannot be scheduled; checked before
                anything is uploaded
            StorageError: If the upload fails; nothing is scheduled then
        """
        key = key or self.make_key(local_path)
        self.registry.ensure_schedulable(key)

        data = local_path.read_bytes()
        try:
            self.storage.upload(key, data, content_type=content_type)
        finally:
            if remove_local:
                local_path.unlink(missing_ok=True)

        try:
            download_url = self.download_url(key)
            job = self.on_upload_succeeded(key)
        except ClipvaultError:
            self._discard(key)
            raise

        return PublishedArtifact(
            key=key,
            download_url=download_url,
            expires_at=job.fire_at,
            size_bytes=len(data),
        )

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_signal is not None

    def install_signal_handlers(
        self, signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM)
    ) -> None:
        """Record a shutdown request when the process is told to stop.

        The handler only sets a flag; the caller finishes the shutdown with
        shutdown_if_requested(). The handler may interrupt the main thread
        while it holds the registry lock. Previously installed Python
        handlers still run afterwards, so the default SIGINT handler keeps
        raising KeyboardInterrupt.
        """
        for signum in signals:
            previous = signal.getsignal(signum)
            self._previous_handlers[signum] = previous

            def handler(received: int, frame: Any, previous: Any = previous) -> None:
                self._shutdown_signal = received
                if callable(previous):
                    previous(received, frame)

            signal.signal(signum, handler)

    def restore_signal_handlers(self) -> None:
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def shutdown_if_requested(self) -> int | None:
        """Run on_shutdown() if a signal asked for it; None otherwise."""
        signum = self._shutdown_signal
        if signum is None or self.registry.closed:
            return None
        logger.warning("Received %s, shutting down", signal.Signals(signum).name)
        return self.on_shutdown()

    def _discard(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except StorageError as e:
            logger.error("Could not remove %s after a failed publish: %s", key, e)
        else:
            logger.warning("Removed %s after a failed publish", key)

    def _record(self, result: FireResult) -> None:
        self.history.append(result)
        if result.succeeded:
            logger.info("Deleted expired object %s", result.key)
        if self.reporter is not None:
            self.reporter(result)
