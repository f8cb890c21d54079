"""
clipvault.storage - Object storage backends.

Uploaded videos live in a bucket, addressed by key. Backends:
- local: a directory tree on disk
- supabase: Supabase Storage over its REST API
"""

from __future__ import annotations
