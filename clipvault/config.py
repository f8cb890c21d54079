"""
clipvault.config - YAML config loading, environment overrides, validation.

Handles loading clipvault.yaml from a project directory, applying the
deployment environment variables, and validating all parameters.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from clipvault.exceptions import ConfigError

CONFIG_FILENAME = "clipvault.yaml"

DEFAULT_EXPIRY_SECONDS = 20 * 60

ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "SUPABASE_URL": ("storage", "supabase_url"),
    "SUPABASE_SERVICE_KEY": ("storage", "supabase_key"),
}


class StorageSettings(BaseModel):
    """Where uploaded artifacts live."""

    backend: str = "local"
    bucket: str = "videos"
    root: str = "storage"

    supabase_url: str | None = None
    supabase_key: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0.0)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        valid = {"local", "supabase"}
        if v not in valid:
            raise ValueError(f"storage backend must be one of: {valid}")
        return v

    @field_validator("bucket")
    @classmethod
    def validate_bucket(cls, v: str) -> str:
        if not v or "/" in v:
            raise ValueError("bucket must be a non-empty name without '/'")
        return v


class ClipvaultConfig(BaseModel):
    """Resolved configuration for a Clipvault project."""

    project_name: str = "untitled"

    expiry_delay_seconds: float = Field(default=DEFAULT_EXPIRY_SECONDS, gt=0.0)
    duplicate_policy: str = "replace"

    key_prefix: str = "videos"
    downloads_dir: str = "downloads"

    ytdlp_binary: str = "yt-dlp"
    cookies_file: str | None = None
    merge_output_format: str = "mp4"

    storage: StorageSettings = Field(default_factory=StorageSettings)

    config_path: Path | None = None

    @field_validator("duplicate_policy")
    @classmethod
    def validate_duplicate_policy(cls, v: str) -> str:
        valid = {"replace", "reject"}
        if v not in valid:
            raise ValueError(f"duplicate_policy must be one of: {valid}")
        return v

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        return v.strip("/")


def apply_env_overrides(
    config: dict[str, Any], environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """Overlay deployment environment variables onto a raw config dict."""
    environ = os.environ if environ is None else environ
    merged = dict(config)
    for var, path in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        target = merged
        for part in path[:-1]:
            section = dict(target.get(part) or {})
            target[part] = section
            target = section
        target[path[-1]] = value
    return merged


def load_config(project_dir: Path, environ: dict[str, str] | None = None) -> ClipvaultConfig:
    """Load and validate configuration from a project directory."""
    config_file = project_dir / CONFIG_FILENAME
    if not config_file.exists():
        raise FileNotFoundError(f"No {CONFIG_FILENAME} found in {project_dir}")

    try:
        with open(config_file) as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError(f"{config_file} must contain a mapping")

    merged = apply_env_overrides(raw_config, environ)
    merged["config_path"] = config_file

    try:
        return ClipvaultConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}:\n{e}") from e


def create_default_config(project_name: str, backend: str = "local") -> dict[str, Any]:
    """Create a default config for a new project."""
    return {
        "project_name": project_name,
        "expiry_delay_seconds": DEFAULT_EXPIRY_SECONDS,
        "duplicate_policy": "replace",
        "key_prefix": "videos",
        "downloads_dir": "downloads",
        "ytdlp_binary": "yt-dlp",
        "storage": {
            "backend": backend,
            "bucket": "videos",
            "root": "storage",
        },
    }


def write_config(config: dict[str, Any], path: Path) -> None:
    """Write configuration to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)
