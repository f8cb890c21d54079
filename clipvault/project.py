"""
clipvault.project - Project directory management.

A project is a directory holding clipvault.yaml, a scratch downloads folder,
and (for the local backend) the storage tree itself.
"""

from __future__ import annotations

from pathlib import Path

from clipvault.config import (
    CONFIG_FILENAME,
    ClipvaultConfig,
    create_default_config,
    load_config,
    write_config,
)


class Project:
    """Represents a Clipvault project directory."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.config_path = path / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def load_config(self) -> ClipvaultConfig:
        return load_config(self.path)

    def downloads_dir(self, config: ClipvaultConfig) -> Path:
        downloads = Path(config.downloads_dir)
        return downloads if downloads.is_absolute() else self.path / downloads

    def create(self, backend: str = "local") -> None:
        """Create the project directory structure."""
        config = create_default_config(self.path.name, backend)

        self.path.mkdir(parents=True, exist_ok=True)
        (self.path / config["downloads_dir"]).mkdir(exist_ok=True)
        if backend == "local":
            (self.path / config["storage"]["root"]).mkdir(exist_ok=True)

        write_config(config, self.config_path)


def find_project_dir(start: Path | None = None) -> Path | None:
    """Find the project directory by looking for clipvault.yaml."""
    current = (start or Path.cwd()).resolve()
    while True:
        if (current / CONFIG_FILENAME).exists():
            return current
        if current == current.parent:
            return None
        current = current.parent
