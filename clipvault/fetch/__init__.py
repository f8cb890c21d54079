"""
clipvault.fetch - Video download via yt-dlp.

Downloads a single video to a local file, merged into one container so it
can be uploaded as a single object.
"""

from __future__ import annotations
