"""notesync: local-first notes kept in sync with a remote collection."""

from .errors import NotAuthenticated, NotesyncError, RemoteError, StorageError
from .session import SessionContext
from .store import Note, RecordStore
from .sync import SyncEngine, SyncResult, SyncStatus

__version__ = "0.1.0"

__all__ = [
    "Note",
    "NotAuthenticated",
    "NotesyncError",
    "RecordStore",
    "RemoteError",
    "SessionContext",
    "StorageError",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
]
