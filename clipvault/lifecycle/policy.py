"""
clipvault.lifecycle.policy - How long an artifact lives.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from clipvault.config import DEFAULT_EXPIRY_SECONDS

if TYPE_CHECKING:
    from clipvault.config import ClipvaultConfig


@dataclass(frozen=True)
class ExpiryPolicy:
    """Fixed delay between a successful upload and its deletion attempt."""

    delay: timedelta = timedelta(seconds=DEFAULT_EXPIRY_SECONDS)

    def __post_init__(self) -> None:
        if self.delay <= timedelta(0):
            raise ValueError("Expiry delay must be positive")

    @property
    def delay_seconds(self) -> float:
        return self.delay.total_seconds()

    def fire_time(self, scheduled_at: datetime) -> datetime:
        """Return when a job scheduled at ``scheduled_at`` becomes due."""
        return scheduled_at + self.delay

    @classmethod
    def from_config(cls, config: ClipvaultConfig) -> ExpiryPolicy:
        return cls(delay=timedelta(seconds=config.expiry_delay_seconds))
