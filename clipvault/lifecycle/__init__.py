"""
clipvault.lifecycle - Expiry scheduling for uploaded artifacts.

Every successful upload registers a one-shot deletion job keyed by the
object path. Jobs fire once after the expiry delay, can be cancelled one at
a time or all together, and are dropped without running on shutdown.
"""

from __future__ import annotations
