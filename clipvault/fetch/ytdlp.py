"""
clipvault.fetch.ytdlp - yt-dlp download wrapper.

Runs the yt-dlp binary as a subprocess and reports where the file landed.
"""

from __future__ import annotations

import shutil
import subprocess
import time
from pathlib import Path
from typing import Any

from clipvault.exceptions import DependencyError, ExtractionError

INSTALL_HINT = "Install with: pip install yt-dlp (or brew install yt-dlp)"


def build_download_path(downloads_dir: Path, extension: str = "mp4") -> Path:
    """Return a fresh ``<epoch millis>.<ext>`` path inside ``downloads_dir``."""
    downloads_dir.mkdir(parents=True, exist_ok=True)
    stamp = int(time.time() * 1000)
    path = downloads_dir / f"{stamp}.{extension}"
    while path.exists():
        stamp += 1
        path = downloads_dir / f"{stamp}.{extension}"
    return path


def build_command(
    url: str,
    output_path: Path,
    format_id: str | None = None,
    binary: str = "yt-dlp",
    cookies_file: Path | None = None,
    merge_output_format: str = "mp4",
) -> list[str]:
    cmd = [
        binary,
        "--no-playlist",
        "--merge-output-format",
        merge_output_format,
        "--embed-thumbnail",
        "--add-metadata",
        "--audio-quality",
        "0",
        "-o",
        str(output_path),
    ]
    if format_id:
        cmd += ["-f", format_id]
    if cookies_file:
        cmd += ["--cookies", str(cookies_file)]
    cmd.append(url)
    return cmd


def download_video(
    url: str,
    output_path: Path,
    format_id: str | None = None,
    binary: str = "yt-dlp",
    cookies_file: Path | None = None,
    merge_output_format: str = "mp4",
    console=None,
) -> dict[str, Any]:
    """Download a video with yt-dlp.

    Args:
        url: Page or media URL understood by yt-dlp
        output_path: Where the merged file should be written
        format_id: yt-dlp format selector; best available when omitted
        binary: yt-dlp executable name or path
        cookies_file: Optional Netscape cookies file passed to yt-dlp
        merge_output_format: Container for merged audio/video streams
        console: Optional rich console for output

    Returns:
        Dict with download results

    Raises:
        DependencyError: If the yt-dlp binary cannot be found
        ExtractionError: If yt-dlp fails or produces no file
    """
    if shutil.which(binary) is None:
        raise DependencyError(binary, "executable not found on PATH", INSTALL_HINT)

    if cookies_file is not None and not cookies_file.exists():
        cookies_file = None

    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_command(url, output_path, format_id, binary, cookies_file, merge_output_format)

    if console:
        console.print(f"[dim]  Downloading {url}...[/dim]")

    try:
        proc = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise ExtractionError(f"Could not run {binary}: {e}") from e

    if proc.returncode != 0:
        raise ExtractionError(f"yt-dlp failed for {url}: {proc.stderr.strip()}")

    if not output_path.exists():
        raise ExtractionError(f"yt-dlp reported success but {output_path} was not written")

    return {
        "url": url,
        "path": str(output_path),
        "format_id": format_id,
        "size_bytes": output_path.stat().st_size,
    }


def check_ytdlp(binary: str = "yt-dlp") -> dict[str, str]:
    """Return the installed yt-dlp version.

    Raises:
        DependencyError: If the binary is missing or does not run
    """
    if shutil.which(binary) is None:
        raise DependencyError(binary, "executable not found on PATH", INSTALL_HINT)

    try:
        proc = subprocess.run([binary, "--version"], capture_output=True, text=True)
    except OSError as e:
        raise DependencyError(binary, f"failed to run: {e}", INSTALL_HINT) from e

    if proc.returncode != 0:
        raise DependencyError(binary, f"--version exited with {proc.returncode}", INSTALL_HINT)

    return {"ytdlp_version": proc.stdout.strip() or "unknown"}
