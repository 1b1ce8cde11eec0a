"""Current user identity and the sign-out purge of local notes."""

import logging
from typing import Callable

from .errors import NotAuthenticated, StorageError
from .store import RecordStore

logger = logging.getLogger(__name__)

OwnerChangeCallback = Callable[[str | None, str | None], None]


class SessionContext:
    """Holds who is signed in and keeps other identities' notes off the device.

    Acquiring and refreshing sessions happens elsewhere; this only records
    the result and purges local rows when the owner goes away.
    """

    def __init__(
        self,
        store: RecordStore,
        user_id: str | None = None,
        access_token: str | None = None,
    ):
        self._store = store
        self._user_id = user_id
        self._access_token = access_token
        self._listeners: list[OwnerChangeCallback] = []

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def require_owner(self) -> str:
        """Return the current owner id.

        Raises:
            NotAuthenticated: If nobody is signed in.
        """
        if self._user_id is None:
            raise NotAuthenticated("User not authenticated")
        return self._user_id

    def on_change(self, callback: OwnerChangeCallback) -> Callable[[], None]:
        """Register a callback for owner changes.

        Args:
            callback: Called with (old_owner, new_owner).

        Returns:
            Function that removes the callback.
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def sign_in(self, user_id: str, access_token: str | None = None) -> None:
        """Make ``user_id`` the current owner.

        Switching straight from another identity purges that identity's notes.
        """
        previous = self._user_id
        if previous is not None and previous != user_id:
            self._purge(previous)

        self._user_id = user_id
        self._access_token = access_token

        if previous != user_id:
            logger.info(f"Signed in as {user_id}")
            self._notify(previous, user_id)

    def sign_out(self) -> None:
        """Purge the current owner's local notes, then clear the identity."""
        previous = self._user_id
        if previous is None:
            return

        self._purge(previous)
        self._user_id = None
        self._access_token = None
        logger.info(f"Signed out {previous}")
        self._notify(previous, None)

    def _purge(self, owner_id: str) -> None:
        try:
            self._store.purge_owner(owner_id)
        except StorageError as e:
            logger.error(f"Error clearing notes for {owner_id}: {e}")

    def _notify(self, old: str | None, new: str | None) -> None:
        for callback in list(self._listeners):
            try:
                callback(old, new)
            except Exception as e:
                logger.error(f"Session listener failed: {e}", exc_info=True)
