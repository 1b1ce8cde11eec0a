"""The Note record and helpers for allocating ids and timestamps."""

import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any


def new_note_id() -> str:
    """Allocate a client-side note id: nanosecond timestamp plus random suffix."""
    return f"{time.time_ns()}-{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(previous: datetime | None = None) -> datetime:
    """Return the current time, strictly later than ``previous``.

    Mutations on the same record must advance ``updated_at`` even when the
    wall clock has not moved (or went backwards).
    """
    now = utc_now()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def format_timestamp(ts: datetime) -> str:
    """Serialize to fixed-width UTC ISO-8601 so that text order is time order."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a stored or remote timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        ts = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass
class Note:
    """A single note owned by one user."""

    id: str
    owner_id: str
    title: str
    body: str
    created_at: datetime
    updated_at: datetime
    synced: bool = False
    deleted: bool = False

    @classmethod
    def create(cls, owner_id: str, title: str, body: str = "") -> "Note":
        """Build a brand new, unsynced note."""
        now = utc_now()
        return cls(
            id=new_note_id(),
            owner_id=owner_id,
            title=title,
            body=body or "",
            created_at=now,
            updated_at=now,
        )

    def edited(self, title: str, body: str) -> "Note":
        """Return a dirty copy carrying new content."""
        return replace(
            self,
            title=title,
            body=body or "",
            updated_at=next_timestamp(self.updated_at),
            synced=False,
        )

    def tombstoned(self) -> "Note":
        """Return a dirty, logically deleted copy."""
        return replace(
            self,
            deleted=True,
            updated_at=next_timestamp(self.updated_at),
            synced=False,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "body": self.body,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "synced": self.synced,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            title=data["title"],
            body=data.get("body") or "",
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            synced=bool(data.get("synced", False)),
            deleted=bool(data.get("deleted", False)),
        )
