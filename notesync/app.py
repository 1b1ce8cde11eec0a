"""Wiring of store, session, remote, monitor and sync engine."""

import asyncio
import logging

from .config import Config
from .connectivity import ConnectivityMonitor
from .remote import RemoteClient
from .session import SessionContext
from .store import RecordStore
from .sync import SyncEngine

logger = logging.getLogger(__name__)


class NotesApp:
    """One notesync instance built from configuration."""

    def __init__(self, config: Config, user_id: str | None = None):
        self.config = config

        self.store = RecordStore(config.store.db_path)
        self.session = SessionContext(
            self.store,
            user_id=user_id or config.session.user_id,
            access_token=config.session.access_token,
        )
        self.remote = RemoteClient(
            base_url=config.remote.base_url,
            api_key=config.remote.api_key,
            table=config.remote.table,
            token_provider=lambda: self.session.access_token,
            max_retries=config.remote.max_retries,
            timeout=config.remote.timeout_seconds,
        )
        self.monitor = ConnectivityMonitor(
            probe_url=config.probe_url,
            probe_interval_seconds=config.connectivity.probe_interval_seconds,
            probe_timeout_seconds=config.connectivity.probe_timeout_seconds,
            probe_cache_seconds=config.connectivity.probe_cache_seconds,
            initial_state=bool(config.remote.base_url),
        )
        self.engine = SyncEngine(
            store=self.store,
            remote=self.remote,
            session=self.session,
            monitor=self.monitor,
            pull_policy=config.sync.pull_policy,
            sync_interval_minutes=(
                config.sync.sync_interval_minutes if config.sync.enabled else 0
            ),
            reconcile_on_reconnect=config.sync.enabled
            and config.sync.reconcile_on_reconnect,
        )

    async def start(self) -> None:
        """Open the store and start background sync."""
        self.store.connect()
        await self.engine.start()
        logger.info(
            f"notesync started (user={self.session.user_id}, "
            f"remote={self.config.remote.base_url or 'none'})"
        )

    async def stop(self) -> None:
        """Stop background sync and release resources."""
        await self.engine.stop()
        await self.remote.close()
        self.store.close()
        logger.info("notesync stopped")

    async def __aenter__(self) -> "NotesApp":
        self.store.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.remote.close()
        self.store.close()


async def run_app(config: Config, user_id: str | None = None) -> None:
    """Run background sync until interrupted.

    Args:
        config: Configuration to build the app from.
        user_id: Overrides the configured session user.
    """
    app = NotesApp(config, user_id=user_id)

    try:
        await app.start()
        if app.session.is_authenticated and config.sync.enabled:
            await app.engine.reconcile()
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await app.stop()
