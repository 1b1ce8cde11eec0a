"""Local persistence for notes.

Provides the Note record type and a SQLite-backed table scoped by owner,
with the dirty/tombstone bookkeeping the sync engine relies on.
"""

from .note import Note, new_note_id
from .record_store import DirtySet, RecordStore

__all__ = ["DirtySet", "Note", "RecordStore", "new_note_id"]
