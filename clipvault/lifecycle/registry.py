"""
clipvault.lifecycle.registry - Keyed registry of one-shot deletion jobs.

Maps an artifact key to the single job that will act on it. A job is in the
mapping from the moment it is scheduled until it fires or is cancelled;
whichever of fire and cancel takes the lock first decides the outcome, and
the loser sees the entry already gone.

Actions run on the scheduler's timer thread, outside the lock. A failing
action is logged and reported, never raised: the job is finished either way.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Callable

from clipvault.exceptions import RegistryClosedError, SchedulingConflict
from clipvault.lifecycle.timers import CancelHandle, Scheduler, ThreadingScheduler
from clipvault.logging import get_logger

logger = get_logger("registry")

Action = Callable[[], object]
Reporter = Callable[["FireResult"], None]

DUPLICATE_POLICIES = ("replace", "reject")


@dataclass(frozen=True, eq=False)
class DeletionJob:
    """A pending, cancellable action for one artifact key."""

    key: str
    scheduled_at: datetime
    fire_at: datetime
    job_id: int
    handle: CancelHandle = field(repr=False)
    action: Action = field(repr=False)


@dataclass(frozen=True)
class FireResult:
    """Outcome of running a job's action."""

    key: str
    succeeded: bool
    fired_at: datetime
    error: BaseException | None = None


class TimerRegistry:
    """In-memory map of artifact key to pending deletion job.

    Args:
        scheduler: Timer primitive; defaults to daemon threading timers
        reporter: Called with a FireResult after every action that ran
        duplicate_policy: "replace" supersedes a pending job for the same
            key, "reject" raises SchedulingConflict instead
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        reporter: Reporter | None = None,
        duplicate_policy: str = "replace",
    ) -> None:
        if duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(f"duplicate_policy must be one of: {DUPLICATE_POLICIES}")
        self.scheduler = scheduler or ThreadingScheduler()
        self.reporter = reporter
        self.duplicate_policy = duplicate_policy

        self._jobs: dict[str, DeletionJob] = {}
        self._running = 0
        self._closed = False
        self._ids = itertools.count(1)
        self._cond = threading.Condition(threading.Lock())

    def __len__(self) -> int:
        with self._cond:
            return len(self._jobs)

    def __contains__(self, key: object) -> bool:
        with self._cond:
            return key in self._jobs

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, key: str) -> DeletionJob | None:
        with self._cond:
            return self._jobs.get(key)

    def pending_keys(self) -> list[str]:
        with self._cond:
            return list(self._jobs)

    def schedule(self, key: str, delay: float | timedelta, action: Action) -> DeletionJob:
        """Run ``action`` once, ``delay`` from now, unless cancelled first.

        Raises:
            SchedulingConflict: If a job is pending for ``key`` and the
                policy is "reject"
            RegistryClosedError: If the registry has been closed
            ValueError: If ``delay`` is negative
        """
        seconds = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
        if seconds < 0:
            raise ValueError(f"delay must not be negative, got {seconds}")

        with self._cond:
            existing = self._check_schedulable_locked(key)
            if existing is not None:
                existing.handle.cancel()
                logger.debug("Replacing pending deletion for %s", key)

            job_id = next(self._ids)
            scheduled_at = self.scheduler.now()
            handle = self.scheduler.after(seconds, partial(self._fire, key, job_id))
            job = DeletionJob(
                key=key,
                scheduled_at=scheduled_at,
                fire_at=scheduled_at + timedelta(seconds=seconds),
                job_id=job_id,
                handle=handle,
                action=action,
            )
            self._jobs[key] = job

        logger.info("Scheduled deletion of %s in %.0fs", key, seconds)
        return job

    def ensure_schedulable(self, key: str) -> None:
        """Raise the error schedule(key) would raise right now, if any."""
        with self._cond:
            self._check_schedulable_locked(key)

    def cancel_one(self, key: str) -> bool:
        """Cancel the pending job for ``key``; False if there was none."""
        with self._cond:
            job = self._jobs.pop(key, None)
            if job is None:
                return False
            job.handle.cancel()
            self._cond.notify_all()
        logger.debug("Cancelled deletion job for %s", key)
        return True

    def cancel_all(self) -> int:
        """Cancel every pending job and return how many there were."""
        with self._cond:
            cancelled = self._cancel_all_locked()
        if cancelled:
            logger.info("Cancelled %d deletion job(s)", cancelled)
        return cancelled

    def close(self) -> int:
        """Cancel every pending job and refuse any further scheduling."""
        with self._cond:
            self._closed = True
            cancelled = self._cancel_all_locked()
        logger.info("Registry closed, %d deletion job(s) cancelled", cancelled)
        return cancelled

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is pending or running. False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._jobs and self._running == 0,
                timeout=timeout,
            )

    def _check_schedulable_locked(self, key: str) -> DeletionJob | None:
        if self._closed:
            raise RegistryClosedError(f"Cannot schedule {key}: registry is closed")
        existing = self._jobs.get(key)
        if existing is not None and self.duplicate_policy == "reject":
            raise SchedulingConflict(key)
        return existing

    def _cancel_all_locked(self) -> int:
        jobs = list(self._jobs.values())
        self._jobs.clear()
        for job in jobs:
            job.handle.cancel()
            logger.debug("Cancelled deletion job for %s", job.key)
        self._cond.notify_all()
        return len(jobs)

    def _fire(self, key: str, job_id: int) -> FireResult | None:
        with self._cond:
            job = self._jobs.get(key)
            # Cancelled, or superseded by a later schedule() for the same key.
            if job is None or job.job_id != job_id:
                return None
            del self._jobs[key]
            self._running += 1

        try:
            logger.info("Deletion job for %s is due", key)
            try:
                job.action()
            except Exception as e:
                logger.error("Deletion job for %s failed: %s", key, e, exc_info=True)
                result = FireResult(key, False, self.scheduler.now(), error=e)
            else:
                result = FireResult(key, True, self.scheduler.now())
            self._report(result)
            return result
        finally:
            with self._cond:
                self._running -= 1
                self._cond.notify_all()

    def _report(self, result: FireResult) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter(result)
        except Exception:
            logger.exception("Reporter failed for %s", result.key)
