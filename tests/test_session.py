"""Tests for the session context."""

from unittest.mock import MagicMock

import pytest

from notesync.errors import NotAuthenticated, StorageError
from notesync.session import SessionContext
from notesync.store import Note, RecordStore


@pytest.fixture
def store():
    store = RecordStore(":memory:")
    store.connect()
    yield store
    store.close()


class TestSessionContext:
    """Tests for identity tracking and sign-out purging."""

    def test_anonymous_by_default(self, store):
        """Test a fresh session has no owner."""
        session = SessionContext(store)

        assert session.is_authenticated is False
        with pytest.raises(NotAuthenticated):
            session.require_owner()

    def test_sign_in(self, store):
        """Test signing in sets owner and token and notifies listeners."""
        session = SessionContext(store)
        changes = []
        session.on_change(lambda old, new: changes.append((old, new)))

        session.sign_in("alice", "token-a")

        assert session.require_owner() == "alice"
        assert session.access_token == "token-a"
        assert changes == [(None, "alice")]

    def test_sign_in_same_user_refreshes_token_only(self, store):
        """Test re-signing in the same user keeps notes and stays quiet."""
        store.upsert(Note.create("alice", "mine"))
        session = SessionContext(store, user_id="alice", access_token="old")
        changes = []
        session.on_change(lambda old, new: changes.append((old, new)))

        session.sign_in("alice", "new")

        assert session.access_token == "new"
        assert changes == []
        assert len(store.list_active("alice")) == 1

    def test_sign_out_purges_owner_rows(self, store):
        """Test sign-out removes every local row of the outgoing owner."""
        store.upsert(Note.create("alice", "one"))
        store.upsert(Note.create("alice", "two").tombstoned())
        store.upsert(Note.create("bob", "other"))
        session = SessionContext(store, user_id="alice", access_token="t")
        changes = []
        session.on_change(lambda old, new: changes.append((old, new)))

        session.sign_out()

        assert store.get_stats("alice")["total_notes"] == 0
        assert len(store.list_active("bob")) == 1
        assert session.user_id is None
        assert session.access_token is None
        assert changes == [("alice", None)]

    def test_sign_out_when_anonymous(self, store):
        """Test sign-out without an owner is a no-op."""
        session = SessionContext(store)
        listener = MagicMock()
        session.on_change(listener)

        session.sign_out()

        listener.assert_not_called()

    def test_switching_identity_purges_previous(self, store):
        """Test signing in as someone else never surfaces the old rows."""
        store.upsert(Note.create("alice", "private"))
        session = SessionContext(store, user_id="alice")

        session.sign_in("bob")

        assert store.list_active("alice") == []
        assert session.require_owner() == "bob"

    def test_purge_failure_still_signs_out(self, store):
        """Test a storage fault during purge does not block sign-out."""
        broken = MagicMock(spec=RecordStore)
        broken.purge_owner.side_effect = StorageError("disk full")
        session = SessionContext(broken, user_id="alice")

        session.sign_out()

        assert session.is_authenticated is False

    def test_listener_removal_and_isolation(self, store):
        """Test removed listeners are skipped and failing ones are isolated."""
        session = SessionContext(store)
        removed = MagicMock()
        remove = session.on_change(removed)
        session.on_change(MagicMock(side_effect=RuntimeError("boom")))
        survivor = MagicMock()
        session.on_change(survivor)

        remove()
        session.sign_in("alice")

        removed.assert_not_called()
        survivor.assert_called_once_with(None, "alice")
