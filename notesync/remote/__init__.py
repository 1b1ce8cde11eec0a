"""Remote collaborator boundary.

Defines the contract the sync engine consumes, the HTTP implementation,
and the adapter that turns remote row shapes into Note objects.
"""

from .adapter import normalize_rows, note_to_row
from .base import RemoteNotes
from .client import RemoteClient

__all__ = ["RemoteClient", "RemoteNotes", "normalize_rows", "note_to_row"]
