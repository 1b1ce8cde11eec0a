"""Normalization of remote row shapes into Note objects.

The backend may hand rows back as a bare list, wrapped in ``data`` or
``rows``, or as the ``{"rows": {"_array": [...]}}`` shape some SQLite bridges
produce. Nothing past this module ever sees those containers.
"""

import logging
from typing import Any

from ..store.note import Note, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


def _unwrap(payload: Any) -> list[Any]:
    """Reduce any supported container to a plain list of row dicts."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "rows", "_array"):
            if key in payload:
                return _unwrap(payload[key])
        if "id" in payload:
            return [payload]
        return []
    raise TypeError(f"Unsupported remote payload type: {type(payload).__name__}")


def row_to_note(row: dict[str, Any]) -> Note:
    """Convert one remote row to a Note.

    Remote rows use ``user_id`` and ``content``; ``owner_id`` and ``body`` are
    accepted as well. Pulled rows are always live and in sync.
    """
    owner_id = row.get("user_id", row.get("owner_id"))
    body = row.get("content", row.get("body"))
    return Note(
        id=str(row["id"]),
        owner_id=str(owner_id),
        title=row.get("title") or "",
        body=body or "",
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        synced=True,
        deleted=False,
    )


def normalize_rows(payload: Any) -> list[Note]:
    """Convert a remote response body into notes, skipping malformed rows."""
    notes = []
    for row in _unwrap(payload):
        if not isinstance(row, dict):
            logger.warning(f"Skipping non-object remote row: {row!r}")
            continue
        try:
            notes.append(row_to_note(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed remote row {row.get('id')!r}: {e}")
    return notes


def note_to_row(note: Note) -> dict[str, Any]:
    """Convert a Note to the remote column layout."""
    return {
        "id": note.id,
        "user_id": note.owner_id,
        "title": note.title,
        "content": note.body or "",
        "created_at": format_timestamp(note.created_at),
        "updated_at": format_timestamp(note.updated_at),
        "deleted": note.deleted,
    }
