"""
Clipvault - short-lived video drop box.

Fetches a video with yt-dlp, uploads it to object storage, and deletes it
again once its expiry delay has passed: download → upload → scheduled
deletion.
"""

__version__ = "0.1.0"
