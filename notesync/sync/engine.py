"""Sync engine: local mutations, inline mirroring and reconciliation passes.

Each note carries two flags, ``synced`` and ``deleted``. Local mutations
clear ``synced``; it is set again only once the remote call for that exact
version has succeeded. A reconciliation pass pulls the remote collection,
pushes everything still dirty, and re-reads the local listing.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..connectivity import ConnectivityMonitor
from ..errors import NotAuthenticated, RemoteError, StorageError
from ..remote.base import RemoteNotes
from ..session import SessionContext
from ..store import Note, RecordStore

logger = logging.getLogger(__name__)

# Pull overwrites every returned row except pending local tombstones
PULL_REMOTE_WINS = "remote_wins"
# Pull leaves every unsynced local row alone
PULL_KEEP_DIRTY = "keep_dirty"

PULL_POLICIES = (PULL_REMOTE_WINS, PULL_KEEP_DIRTY)

MAX_BACKOFF_SECONDS = 3600

NotesCallback = Callable[[list[Note]], Any]


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some pushes failed
    FAILED = "failed"  # Pull failed, pass aborted
    OFFLINE = "offline"  # Remote unavailable
    COALESCED = "coalesced"  # Folded into the pass already running
    ABORTED = "aborted"  # Owner signed out or switched mid-pass


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    notes_pulled: int = 0
    notes_pushed: int = 0
    deletions_pushed: int = 0
    failures: int = 0
    error: str | None = None
    timestamp: datetime | None = None


class SyncEngine:
    """Keeps the local note table consistent with the remote collection.

    Supports:
    - create / update / remove: local write, then an inline mirror attempt
    - reconcile: pull, push all dirty rows, re-read
    - refresh: pull and re-read, falling back to the local table

    Remote failures never escape the mutation calls or the push phase; they
    leave rows dirty and are recorded as ``last_error``.
    """

    def __init__(
        self,
        store: RecordStore,
        remote: RemoteNotes,
        session: SessionContext,
        monitor: ConnectivityMonitor | None = None,
        pull_policy: str = PULL_REMOTE_WINS,
        sync_interval_minutes: float = 0,
        reconcile_on_reconnect: bool = True,
    ):
        """Initialize the sync engine.

        Args:
            store: Local record store.
            remote: Remote notes collection.
            session: Source of the current owner.
            monitor: Connectivity monitor. None means always try the remote.
            pull_policy: PULL_REMOTE_WINS or PULL_KEEP_DIRTY.
            sync_interval_minutes: Periodic reconcile interval, 0 disables it.
            reconcile_on_reconnect: Reconcile on every offline -> online edge.
        """
        if pull_policy not in PULL_POLICIES:
            raise ValueError(f"Unknown pull policy: {pull_policy}")

        self._store = store
        self._remote = remote
        self._session = session
        self._monitor = monitor
        self.pull_policy = pull_policy
        self.sync_interval_minutes = sync_interval_minutes
        self.reconcile_on_reconnect = reconcile_on_reconnect

        self._notes: list[Note] = []
        self._observers: list[NotesCallback] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._rerun: set[str] = set()
        self._last_error: str | None = None
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

        self._unsubscribe_monitor: Callable[[], None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task | None = None

        session.on_change(self._on_owner_change)

    # ==================== Observability ====================

    @property
    def notes(self) -> list[Note]:
        """The last listing read from the store."""
        return list(self._notes)

    @property
    def last_error(self) -> str | None:
        """Most recent sync failure, cleared by a fully successful pass."""
        return self._last_error

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last completed reconciliation."""
        return self._last_sync

    @property
    def syncing(self) -> bool:
        return any(lock.locked() for lock in self._locks.values())

    def subscribe(self, callback: NotesCallback) -> Callable[[], None]:
        """Register an observer for the refreshed listing.

        Returns:
            Function that removes the observer.
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics for the current owner.
        """
        owner = self._session.user_id
        status: dict[str, Any] = {
            "owner_id": owner,
            "online": self._monitor.state if self._monitor else None,
            "syncing": self.syncing,
            "pull_policy": self.pull_policy,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_error": self._last_error,
            "consecutive_failures": self._consecutive_failures,
        }
        if owner is not None:
            stats = self._store.get_stats(owner)
            status["pending_notes"] = stats["unsynced_notes"]
            status["active_notes"] = stats["active_notes"]
            status["tombstones"] = stats["tombstones"]
        return status

    # ==================== Helpers ====================

    def _resolve_owner(self, owner_id: str | None = None) -> str:
        current = self._session.require_owner()
        if owner_id is not None and owner_id != current:
            raise NotAuthenticated(f"{owner_id} is not the signed-in user")
        return current

    def _owner_changed(self, owner_id: str) -> bool:
        """True once the session no longer belongs to ``owner_id``."""
        return self._session.user_id != owner_id

    async def _is_online(self) -> bool:
        if self._monitor is None:
            return True
        return await self._monitor.is_online()

    def _reload(self, owner_id: str) -> list[Note]:
        """Re-read the listing from the store and notify observers."""
        self._notes = self._store.list_active(owner_id)
        self._notify()
        return list(self._notes)

    def _notify(self) -> None:
        for callback in list(self._observers):
            try:
                callback(list(self._notes))
            except Exception as e:
                logger.error(f"Notes observer failed: {e}", exc_info=True)

    def _on_owner_change(self, old: str | None, new: str | None) -> None:
        if old is not None:
            self._rerun.discard(old)
        self._notes = []
        self._last_error = None
        self._consecutive_failures = 0
        self._notify()

    async def _push(self, note: Note) -> None:
        """Send one note's current state to the remote."""
        if note.deleted:
            await self._remote.mark_deleted(note.id, note.owner_id, note.updated_at)
        else:
            await self._remote.upsert_one(note)

    async def _mirror(self, note: Note) -> Note:
        """Try to mirror a fresh local write; swallow remote failures."""
        if not await self._is_online():
            logger.debug(f"Offline, note {note.id} left unsynced")
            return note
        if self._owner_changed(note.owner_id):
            return note

        try:
            await self._push(note)
        except RemoteError as e:
            if not self._owner_changed(note.owner_id):
                logger.warning(f"Error syncing note {note.id}: {e}")
                self._last_error = str(e)
            return note

        if self._owner_changed(note.owner_id):
            return note
        if self._store.mark_synced(note.id, note.updated_at):
            return replace(note, synced=True)
        return note

    # ==================== Local mutations ====================

    async def create(self, title: str, body: str = "") -> Note:
        """Create a note locally and mirror it if online.

        Raises:
            NotAuthenticated: If nobody is signed in.
            StorageError: If the local write fails.
        """
        owner = self._resolve_owner()
        note = Note.create(owner, title, body)
        self._store.upsert(note)
        logger.debug(f"Created note {note.id}")

        note = await self._mirror(note)
        if not self._owner_changed(owner):
            self._reload(owner)
        return note

    async def update(self, note_id: str, title: str, body: str = "") -> Note | None:
        """Edit a note's content and mirror it if online.

        Returns:
            The updated note, or None if it does not exist or is deleted.
        """
        owner = self._resolve_owner()
        current = self._store.get(note_id)
        if current is None or current.owner_id != owner:
            logger.warning(f"Cannot update note {note_id}: not found")
            return None
        if current.deleted:
            logger.warning(f"Cannot update note {note_id}: note is deleted")
            return None

        note = current.edited(title, body)
        self._store.upsert(note)
        logger.debug(f"Updated note {note.id}")

        note = await self._mirror(note)
        if not self._owner_changed(owner):
            self._reload(owner)
        return note

    async def remove(self, note_id: str) -> Note | None:
        """Tombstone a note and mirror the deletion if online.

        Returns:
            The tombstoned note, or None if it does not exist.
        """
        owner = self._resolve_owner()
        current = self._store.get(note_id)
        if current is None or current.owner_id != owner:
            logger.warning(f"Cannot delete note {note_id}: not found")
            return None
        if current.deleted:
            return current

        note = current.tombstoned()
        self._store.upsert(note)
        logger.debug(f"Deleted note {note.id}")

        note = await self._mirror(note)
        if not self._owner_changed(owner):
            self._reload(owner)
        return note

    async def cleanup_tombstones(self, older_than: datetime | None = None) -> int:
        """Physically remove tombstones whose deletion reached the remote."""
        owner = self._resolve_owner()
        return self._store.purge_tombstones(owner, older_than)

    # ==================== Reconciliation ====================

    def _merge_pulled(self, owner_id: str, remote_notes: list[Note]) -> int:
        """Write pulled rows into the store according to the pull policy."""
        dirty = self._store.list_dirty(owner_id)
        protected = {n.id for n in dirty.tombstones}
        if self.pull_policy == PULL_KEEP_DIRTY:
            protected.update(n.id for n in dirty.pending)

        incoming = []
        for note in remote_notes:
            if note.owner_id != owner_id:
                logger.warning(f"Ignoring remote note {note.id} of another owner")
                continue
            if note.id in protected:
                logger.debug(f"Keeping local unsynced state of note {note.id}")
                continue
            incoming.append(replace(note, synced=True, deleted=False))

        return self._store.upsert_many(incoming)

    async def refresh(self, owner_id: str | None = None) -> list[Note]:
        """Pull the remote collection and return the local listing.

        Always succeeds offline by falling back to the local table.
        """
        owner = self._resolve_owner(owner_id)

        if await self._is_online():
            try:
                remote_notes = await self._remote.fetch_active(owner)
            except RemoteError as e:
                logger.warning(f"Error fetching remote notes: {e}")
            else:
                if self._owner_changed(owner):
                    logger.info(f"Owner {owner} signed out during refresh, discarding pull")
                    return []
                pulled = self._merge_pulled(owner, remote_notes)
                logger.debug(f"Refresh pulled {pulled} notes")

        if self._owner_changed(owner):
            return []
        return self._reload(owner)

    async def reconcile(self, owner_id: str | None = None) -> SyncResult:
        """Run a full pull-push-reread pass.

        A pass requested while another is running for the same owner is
        folded into a single follow-up pass and reported as COALESCED.
        """
        owner = self._resolve_owner(owner_id)
        lock = self._locks.setdefault(owner, asyncio.Lock())

        if lock.locked():
            self._rerun.add(owner)
            logger.debug(f"Reconcile already running for {owner}, queued one more")
            return SyncResult(status=SyncStatus.COALESCED)

        async with lock:
            result = await self._reconcile_pass(owner)
            while owner in self._rerun:
                self._rerun.discard(owner)
                result = await self._reconcile_pass(owner)
        return result

    def _aborted(self, owner_id: str) -> SyncResult:
        logger.info(f"Owner {owner_id} signed out mid-sync, pass abandoned")
        return SyncResult(status=SyncStatus.ABORTED)

    async def _reconcile_pass(self, owner_id: str) -> SyncResult:
        online = await self._is_online()
        if self._owner_changed(owner_id):
            return self._aborted(owner_id)

        if not online:
            self._last_error = "Cannot sync: device is offline"
            self._consecutive_failures += 1
            self._reload(owner_id)
            return SyncResult(status=SyncStatus.OFFLINE, error=self._last_error)

        # 1. Pull
        try:
            remote_notes = await self._remote.fetch_active(owner_id)
        except RemoteError as e:
            if self._owner_changed(owner_id):
                return self._aborted(owner_id)
            logger.warning(f"Error syncing notes: {e}")
            self._last_error = f"Failed to sync notes: {e}"
            self._consecutive_failures += 1
            self._reload(owner_id)
            return SyncResult(status=SyncStatus.FAILED, error=self._last_error)

        if self._owner_changed(owner_id):
            return self._aborted(owner_id)
        pulled = self._merge_pulled(owner_id, remote_notes)

        # 2. Push
        dirty = self._store.list_dirty(owner_id)
        pushed = 0
        deletions = 0
        errors: list[str] = []

        for note in dirty.pending + dirty.tombstones:
            if self._owner_changed(owner_id):
                return self._aborted(owner_id)
            try:
                await self._push(note)
            except RemoteError as e:
                kind = "deletion" if note.deleted else "note"
                logger.warning(f"Error syncing {kind} {note.id}: {e}")
                errors.append(f"{note.id}: {e}")
                continue

            if self._owner_changed(owner_id):
                return self._aborted(owner_id)
            self._store.mark_synced(note.id, note.updated_at)
            if note.deleted:
                deletions += 1
            else:
                pushed += 1

        if self._owner_changed(owner_id):
            return self._aborted(owner_id)

        # 3. Re-read
        self._reload(owner_id)
        self._last_sync = datetime.now()

        if errors:
            self._last_error = f"{len(errors)} notes failed to sync; first: {errors[0]}"
            status = SyncStatus.PARTIAL
        else:
            self._last_error = None
            self._consecutive_failures = 0
            status = SyncStatus.SUCCESS

        logger.info(
            f"Sync: {status.value}, pulled={pulled}, pushed={pushed}, "
            f"deleted={deletions}, failed={len(errors)}"
        )
        return SyncResult(
            status=status,
            notes_pulled=pulled,
            notes_pushed=pushed,
            deletions_pushed=deletions,
            failures=len(errors),
            error=self._last_error,
            timestamp=self._last_sync,
        )

    # ==================== Triggers ====================

    async def handle_connectivity(self, online: bool) -> SyncResult | None:
        """React to a connectivity transition."""
        if not online or not self.reconcile_on_reconnect:
            return None
        if not self._session.is_authenticated:
            return None

        logger.info("Back online, reconciling")
        try:
            return await self.reconcile()
        except StorageError as e:
            logger.error(f"Reconcile after reconnect failed: {e}")
            return None

    async def start(self) -> None:
        """Hook into connectivity events and start the periodic loop."""
        if self._monitor is not None and self._unsubscribe_monitor is None:
            self._unsubscribe_monitor = self._monitor.subscribe(self.handle_connectivity)
            await self._monitor.start()

        if self.sync_interval_minutes > 0 and self._loop_task is None:
            self._stop_event = asyncio.Event()
            self._loop_task = asyncio.create_task(
                self.sync_loop(
                    interval_seconds=self.sync_interval_minutes * 60,
                    stop_event=self._stop_event,
                )
            )

    async def stop(self) -> None:
        """Detach from connectivity events and let any running pass finish."""
        if self._unsubscribe_monitor is not None:
            self._unsubscribe_monitor()
            self._unsubscribe_monitor = None
        if self._monitor is not None:
            await self._monitor.stop()

        if self._loop_task is not None:
            self._stop_event.set()
            await self._loop_task
            self._loop_task = None
            self._stop_event = None

        for lock in list(self._locks.values()):
            async with lock:
                pass

    async def sync_loop(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Reconcile the signed-in owner every ``interval_seconds``.

        The wait doubles with each consecutive failed pass, up to
        MAX_BACKOFF_SECONDS, and drops back after the next successful one.
        Returns once ``stop_event`` is set.
        """
        logger.info(f"Periodic sync every {interval_seconds}s")

        while not (stop_event and stop_event.is_set()):
            if self._session.is_authenticated:
                try:
                    await self.reconcile()
                except NotAuthenticated:
                    pass
                except Exception as e:
                    logger.error(f"Periodic sync failed: {e}", exc_info=True)

            delay = self._next_delay(interval_seconds)
            if stop_event is None:
                await asyncio.sleep(delay)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue

        logger.info("Periodic sync stopped")

    def _next_delay(self, interval_seconds: float) -> float:
        if not self._consecutive_failures:
            return interval_seconds
        delay = min(
            interval_seconds * 2 ** self._consecutive_failures, MAX_BACKOFF_SECONDS
        )
        logger.debug(f"{self._consecutive_failures} failed passes, next sync in {delay}s")
        return delay
