"""
clipvault.storage.base - Storage backend interface and factory.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from clipvault.config import ClipvaultConfig


@runtime_checkable
class StorageBackend(Protocol):
    """Object store holding uploaded artifacts.

    Every operation raises StorageError on failure. Deleting a key that
    does not exist is not a failure; downloading one is.
    """

    bucket: str

    def upload(self, key: str, data: bytes, content_type: str = "video/mp4") -> None: ...

    def download(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def url_for(self, key: str, expires_in: int) -> str:
        """Link that fetches ``key`` for at least ``expires_in`` seconds."""
        ...

    def close(self) -> None: ...


def create_storage(config: ClipvaultConfig, project_dir: Path) -> StorageBackend:
    """Build the backend selected by ``config.storage.backend``."""
    from clipvault.exceptions import ConfigError

    settings = config.storage

    if settings.backend == "local":
        from clipvault.storage.local import LocalStorage

        root = Path(settings.root)
        if not root.is_absolute():
            root = project_dir / root
        return LocalStorage(root, bucket=settings.bucket)

    if settings.backend == "supabase":
        from clipvault.storage.supabase import SupabaseStorage

        if not settings.supabase_url or not settings.supabase_key:
            raise ConfigError(
                "Supabase storage needs supabase_url and supabase_key "
                "(or SUPABASE_URL and SUPABASE_SERVICE_KEY in the environment)"
            )
        return SupabaseStorage(
            url=settings.supabase_url,
            service_key=settings.supabase_key,
            bucket=settings.bucket,
            timeout=settings.timeout_seconds,
        )

    raise ConfigError(f"Unknown storage backend: {settings.backend}")
