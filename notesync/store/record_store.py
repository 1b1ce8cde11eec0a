"""Local SQLite table of notes, keyed by id and scoped by owner."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from ..errors import StorageError
from .note import Note, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    body TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    synced INTEGER NOT NULL DEFAULT 0,
    deleted INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_notes_owner ON notes(owner_id);
CREATE INDEX IF NOT EXISTS idx_notes_owner_updated ON notes(owner_id, updated_at);
"""

_COLUMNS = "id, owner_id, title, body, created_at, updated_at, synced, deleted"


@dataclass
class DirtySet:
    """Unsynced rows for one owner, split by whether they are tombstones."""

    pending: list[Note] = field(default_factory=list)
    tombstones: list[Note] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.pending) + len(self.tombstones)

    def __bool__(self) -> bool:
        return len(self) > 0


class RecordStore:
    """Persistent note table.

    Every call goes through one lock, so the store can be shared between the
    event loop and callbacks arriving on other threads. Any SQLite failure is
    raised as StorageError.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the record store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser() if db_path != ":memory:" else None
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        with self._lock:
            if self._conn is not None:
                return
            try:
                if self.db_path is not None:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    target = str(self.db_path)
                else:
                    target = ":memory:"

                self._conn = sqlite3.connect(target, check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._conn.executescript(SCHEMA)
                self._conn.commit()
            except (sqlite3.Error, OSError) as e:
                self._conn = None
                raise StorageError(f"Failed to open note store: {e}") from e

        logger.info(f"RecordStore connected to {self.db_path or ':memory:'}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("RecordStore connection closed")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialize access and translate SQLite faults into StorageError."""
        with self._lock:
            if self._conn is None:
                self.connect()
            conn = self._conn
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(str(e)) from e

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        return Note(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            body=row["body"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            synced=bool(row["synced"]),
            deleted=bool(row["deleted"]),
        )

    # ==================== Writes ====================

    def upsert(self, note: Note) -> None:
        """Insert or fully replace the row with the note's id."""
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO notes ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    note.id,
                    note.owner_id,
                    note.title,
                    note.body or "",
                    format_timestamp(note.created_at),
                    format_timestamp(note.updated_at),
                    int(note.synced),
                    int(note.deleted),
                ),
            )

    def upsert_many(self, notes: list[Note]) -> int:
        """Upsert a batch of rows in a single transaction.

        Returns:
            Number of rows written.
        """
        if not notes:
            return 0

        with self._transaction() as conn:
            conn.executemany(
                f"""
                INSERT OR REPLACE INTO notes ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        n.id,
                        n.owner_id,
                        n.title,
                        n.body or "",
                        format_timestamp(n.created_at),
                        format_timestamp(n.updated_at),
                        int(n.synced),
                        int(n.deleted),
                    )
                    for n in notes
                ],
            )
        return len(notes)

    def mark_synced(self, note_id: str, updated_at: datetime | None = None) -> bool:
        """Flag a row as matching the remote copy.

        Args:
            note_id: Row to flag.
            updated_at: If given, only flag the row while it still carries
                this version; a newer local edit stays dirty.

        Returns:
            False if the row no longer exists or has moved on.
        """
        query = "UPDATE notes SET synced = 1 WHERE id = ?"
        params: list[Any] = [note_id]
        if updated_at is not None:
            query += " AND updated_at = ?"
            params.append(format_timestamp(updated_at))

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            updated = cursor.rowcount > 0

        if not updated:
            logger.debug(f"mark_synced: note {note_id} missing or changed since push")
        return updated

    def purge_owner(self, owner_id: str) -> int:
        """Physically delete every row for an owner.

        Returns:
            Number of rows deleted.
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM notes WHERE owner_id = ?", (owner_id,))
            deleted = cursor.rowcount

        logger.info(f"Purged {deleted} notes for owner {owner_id}")
        return deleted

    def purge_tombstones(
        self, owner_id: str, older_than: datetime | None = None
    ) -> int:
        """Physically delete tombstones whose deletion already reached the remote.

        Unsynced tombstones are kept so the deletion still propagates.

        Args:
            owner_id: Owner whose tombstones to remove.
            older_than: Only remove tombstones last updated before this time.

        Returns:
            Number of rows deleted.
        """
        query = "DELETE FROM notes WHERE owner_id = ? AND deleted = 1 AND synced = 1"
        params: list[Any] = [owner_id]
        if older_than is not None:
            query += " AND updated_at < ?"
            params.append(format_timestamp(older_than))

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            deleted = cursor.rowcount

        if deleted > 0:
            logger.info(f"Cleaned up {deleted} synced tombstones for owner {owner_id}")
        return deleted

    # ==================== Reads ====================

    def get(self, note_id: str) -> Note | None:
        """Fetch one row by id, tombstones included."""
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM notes WHERE id = ?", (note_id,)
            ).fetchone()
        return self._row_to_note(row) if row else None

    def list_active(self, owner_id: str) -> list[Note]:
        """Non-deleted rows for an owner, most recently updated first."""
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM notes
                WHERE owner_id = ? AND deleted = 0
                ORDER BY updated_at DESC
                """,
                (owner_id,),
            ).fetchall()
        return [self._row_to_note(row) for row in rows]

    def list_dirty(self, owner_id: str) -> DirtySet:
        """Unsynced rows for an owner, oldest update first."""
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM notes
                WHERE owner_id = ? AND synced = 0
                ORDER BY updated_at ASC
                """,
                (owner_id,),
            ).fetchall()

        dirty = DirtySet()
        for row in rows:
            note = self._row_to_note(row)
            if note.deleted:
                dirty.tombstones.append(note)
            else:
                dirty.pending.append(note)
        return dirty

    def get_stats(self, owner_id: str) -> dict[str, Any]:
        """Get row counts for an owner.

        Returns:
            Dictionary with total, active, dirty and tombstone counts.
        """
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(deleted = 0), 0) AS active,
                    COALESCE(SUM(synced = 0), 0) AS dirty,
                    COALESCE(SUM(deleted = 1), 0) AS tombstones
                FROM notes WHERE owner_id = ?
                """,
                (owner_id,),
            ).fetchone()

        stats = {
            "owner_id": owner_id,
            "total_notes": row["total"],
            "active_notes": row["active"],
            "unsynced_notes": row["dirty"],
            "tombstones": row["tombstones"],
        }

        if self.db_path is not None and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
