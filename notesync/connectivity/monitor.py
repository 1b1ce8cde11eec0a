"""Network reachability detection with edge-triggered transition events."""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], Any]


class ConnectivityMonitor:
    """Tracks whether the backend is reachable.

    State comes from two places: active HTTP probes of ``probe_url`` and
    samples reported by the host (``report``). Subscribers are notified only
    when the state flips, never on subscription.
    """

    def __init__(
        self,
        probe_url: str | None = None,
        probe_interval_seconds: float = 15.0,
        probe_timeout_seconds: float = 5.0,
        probe_cache_seconds: float = 2.0,
        initial_state: bool = True,
    ):
        """Initialize the monitor.

        Args:
            probe_url: URL to GET when probing. None disables probing.
            probe_interval_seconds: Delay between background probes.
            probe_timeout_seconds: Timeout for a single probe.
            probe_cache_seconds: How long a probe result may be reused.
            initial_state: Assumed state before the first sample.
        """
        self.probe_url = probe_url
        self.probe_interval = probe_interval_seconds
        self.probe_timeout = probe_timeout_seconds
        self.probe_cache = probe_cache_seconds
        self._state = initial_state
        self._last_probe: float | None = None
        self._subscribers: list[ConnectivityCallback] = []
        self._pending: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def state(self) -> bool:
        """Last known connectivity state."""
        return self._state

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a transition callback.

        Args:
            callback: Called with the new state on every transition. May be a
                coroutine function, in which case it is scheduled as a task.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def probe(self) -> bool:
        """Actively check reachability of the probe URL.

        Any HTTP response below 500 counts as reachable.
        """
        if not self.probe_url:
            return self._state

        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                response = await client.get(self.probe_url)
            online = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        self._last_probe = time.monotonic()
        return online

    async def is_online(self) -> bool:
        """Return the current state, probing unless a fresh result exists."""
        if not self.probe_url:
            return self._state

        if (
            self._last_probe is not None
            and time.monotonic() - self._last_probe < self.probe_cache
        ):
            return self._state

        online = await self.probe()
        self.report(online)
        return online

    def report(self, online: bool) -> None:
        """Record a connectivity sample, notifying subscribers on change."""
        online = bool(online)
        if online == self._state:
            return

        self._state = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self._emit(online)

    def report_threadsafe(self, online: bool) -> None:
        """Record a sample from a thread other than the monitor's event loop.

        Raises:
            RuntimeError: If start() has not bound the monitor to a running loop.
        """
        if self._loop is None or self._loop.is_closed():
            raise RuntimeError("ConnectivityMonitor.start() must run before report_threadsafe()")
        self._loop.call_soon_threadsafe(self.report, online)

    def _emit(self, online: bool) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(online)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_callback_done)
            except Exception as e:
                logger.error(f"Connectivity subscriber failed: {e}", exc_info=True)

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        if (exc := task.exception()) is not None:
            logger.error(
                f"Connectivity subscriber failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def start(self) -> None:
        """Start background probing."""
        self._loop = asyncio.get_running_loop()
        if self._running or not self.probe_url:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Connectivity monitor started (url={self.probe_url}, "
            f"interval={self.probe_interval}s)"
        )

    async def stop(self) -> None:
        """Stop background probing and wait for in-flight callbacks."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("Connectivity monitor stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                self.report(await self.probe())
            except Exception as e:
                logger.error(f"Connectivity probe loop error: {e}", exc_info=True)

            await asyncio.sleep(self.probe_interval)
