"""
clipvault.exceptions - Custom exception classes.

All Clipvault-specific exceptions inherit from ClipvaultError.
"""


class ClipvaultError(Exception):
    """Base exception for all Clipvault errors."""

    pass


class ConfigError(ClipvaultError):
    """Configuration loading or validation error."""

    pass


class ExtractionError(ClipvaultError):
    """Video download error."""

    pass


class StorageError(ClipvaultError):
    """Object storage upload or delete error."""

    pass


class SchedulingError(ClipvaultError):
    """Deletion job could not be scheduled."""

    pass


class SchedulingConflict(SchedulingError):
    """A deletion job is already pending for the key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Deletion already scheduled for {key}")


class RegistryClosedError(SchedulingError):
    """The timer registry has been shut down."""

    pass


class DependencyError(ClipvaultError):
    """Required dependency missing or misconfigured."""

    def __init__(self, dependency: str, message: str, install_hint: str | None = None):
        self.dependency = dependency
        self.message = message
        self.install_hint = install_hint
        super().__init__(f"{dependency}: {message}")
