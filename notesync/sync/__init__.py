"""Sync engine for local-first notes.

Owns the dirty/tombstone protocol: local writes first, inline mirroring when
online, and full reconciliation passes on reconnect or on a schedule.
"""

from .engine import (
    PULL_KEEP_DIRTY,
    PULL_REMOTE_WINS,
    SyncEngine,
    SyncResult,
    SyncStatus,
)

__all__ = [
    "PULL_KEEP_DIRTY",
    "PULL_REMOTE_WINS",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
]
