"""Contract for the remote notes collection."""

from abc import ABC, abstractmethod
from datetime import datetime

from ..store.note import Note


class RemoteNotes(ABC):
    """Authenticated CRUD over one remote collection, scoped by owner.

    Every method raises RemoteError on failure; timeouts and authorization
    failures included.
    """

    @abstractmethod
    async def fetch_active(self, owner_id: str) -> list[Note]:
        """Fetch the owner's non-deleted notes, most recently updated first."""
        pass

    @abstractmethod
    async def upsert_one(self, note: Note) -> None:
        """Create or overwrite the remote row with the note's id."""
        pass

    @abstractmethod
    async def mark_deleted(
        self,
        note_id: str,
        owner_id: str,
        updated_at: datetime | None = None,
    ) -> None:
        """Soft-delete a remote row.

        An absent or already deleted row counts as success.
        """
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None
