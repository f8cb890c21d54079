"""
clipvault.storage.local - Directory-backed object store.

Objects are plain files at ``<root>/<bucket>/<key>``. Writes go to a temp
file first and are renamed into place so a reader never sees half a video.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from clipvault.exceptions import StorageError


class LocalStorage:
    """Stores artifacts under a local directory."""

    def __init__(self, root: Path, bucket: str = "videos") -> None:
        self.root = root
        self.bucket = bucket

    @property
    def bucket_dir(self) -> Path:
        return self.root / self.bucket

    def path_for(self, key: str) -> Path:
        """Resolve ``key`` to its file path, refusing keys outside the bucket."""
        bucket_dir = self.bucket_dir.resolve()
        path = (bucket_dir / key).resolve()
        if not key or not path.is_relative_to(bucket_dir) or path == bucket_dir:
            raise StorageError(f"Invalid object key: {key!r}")
        return path

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def upload(self, key: str, data: bytes, content_type: str = "video/mp4") -> None:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=path.parent,
                delete=False,
                suffix=".tmp",
            ) as tmp:
                tmp_path = Path(tmp.name)
                try:
                    tmp.write(data)
                except Exception:
                    tmp_path.unlink(missing_ok=True)
                    raise
            tmp_path.replace(path)
        except OSError as e:
            raise StorageError(f"Upload of {key} failed: {e}") from e

    def download(self, key: str) -> bytes:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {key}") from e
        except OSError as e:
            raise StorageError(f"Download of {key} failed: {e}") from e

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Delete of {key} failed: {e}") from e

    def url_for(self, key: str, expires_in: int) -> str:
        # Plain files do not expire on their own.
        return self.path_for(key).as_uri()

    def close(self) -> None:
        pass
