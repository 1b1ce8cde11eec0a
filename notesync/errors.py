"""Exception types shared across notesync components."""


class NotesyncError(Exception):
    """Base class for all notesync errors."""


class StorageError(NotesyncError):
    """Local persistence fault.

    Fatal to the single call that hit it, never retried automatically.
    """


class RemoteError(NotesyncError):
    """Network or backend fault (timeout, auth failure, server error)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class NotAuthenticated(NotesyncError):
    """An operation needed a current owner but nobody is signed in."""
