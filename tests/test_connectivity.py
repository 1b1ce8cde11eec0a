"""Tests for the connectivity monitor."""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from notesync.connectivity import ConnectivityMonitor


def patched_http(get_mock):
    """Patch httpx.AsyncClient so probes hit ``get_mock``."""
    mock_http = AsyncMock()
    mock_http.get = get_mock
    mock_cls = MagicMock()
    mock_cls.return_value.__aenter__ = AsyncMock(return_value=mock_http)
    mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return patch("notesync.connectivity.monitor.httpx.AsyncClient", mock_cls)


class TestTransitions:
    """Tests for edge-triggered delivery."""

    def test_initial_state(self):
        """Test the monitor starts from the given state."""
        assert ConnectivityMonitor(initial_state=False).state is False
        assert ConnectivityMonitor().state is True

    def test_no_event_on_subscribe(self):
        """Test subscribing does not deliver the current state."""
        monitor = ConnectivityMonitor()
        events = []
        monitor.subscribe(events.append)

        assert events == []

    def test_events_only_on_change(self):
        """Test repeated samples of the same state are not delivered."""
        monitor = ConnectivityMonitor(initial_state=True)
        events = []
        monitor.subscribe(events.append)

        monitor.report(True)
        monitor.report(False)
        monitor.report(False)
        monitor.report(True)
        monitor.report(True)

        assert events == [False, True]
        assert monitor.state is True

    def test_unsubscribe(self):
        """Test unsubscribed callbacks stop receiving events."""
        monitor = ConnectivityMonitor()
        events = []
        unsubscribe = monitor.subscribe(events.append)

        unsubscribe()
        monitor.report(False)

        assert events == []

    def test_failing_subscriber_isolated(self):
        """Test one failing callback does not block the others."""
        monitor = ConnectivityMonitor()
        events = []
        monitor.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        monitor.subscribe(events.append)

        monitor.report(False)

        assert events == [False]

    @pytest.mark.asyncio
    async def test_async_subscriber_scheduled(self):
        """Test coroutine callbacks run as tasks and are awaited on stop."""
        monitor = ConnectivityMonitor()
        received = []

        async def on_change(online):
            await asyncio.sleep(0)
            received.append(online)

        monitor.subscribe(on_change)
        monitor.report(False)
        await monitor.stop()

        assert received == [False]

    @pytest.mark.asyncio
    async def test_report_threadsafe(self):
        """Test samples from another thread land on the event loop."""
        monitor = ConnectivityMonitor()
        events = []
        monitor.subscribe(events.append)
        await monitor.start()  # no probe URL: only records the loop

        thread = threading.Thread(target=monitor.report_threadsafe, args=(False,))
        thread.start()
        thread.join()
        await asyncio.sleep(0)

        assert events == [False]
        await monitor.stop()

    def test_report_threadsafe_requires_start(self):
        """Test a foreign-thread sample before start() is rejected, not lost."""
        monitor = ConnectivityMonitor()
        events = []
        monitor.subscribe(events.append)

        with pytest.raises(RuntimeError):
            monitor.report_threadsafe(False)

        assert events == []
        assert monitor.state is True


class TestProbing:
    """Tests for active probing."""

    @pytest.mark.asyncio
    async def test_no_probe_url_uses_reported_state(self):
        """Test is_online falls back to the last sample."""
        monitor = ConnectivityMonitor(initial_state=False)
        assert await monitor.is_online() is False

        monitor.report(True)
        assert await monitor.is_online() is True

    @pytest.mark.asyncio
    async def test_probe_success(self):
        """Test a reachable probe URL means online."""
        monitor = ConnectivityMonitor("http://backend/health", initial_state=False)
        events = []
        monitor.subscribe(events.append)

        with patched_http(AsyncMock(return_value=MagicMock(status_code=200))):
            assert await monitor.is_online() is True

        assert events == [True]

    @pytest.mark.asyncio
    async def test_probe_client_error_still_reachable(self):
        """Test a 4xx response still proves the network is up."""
        monitor = ConnectivityMonitor("http://backend/health")

        with patched_http(AsyncMock(return_value=MagicMock(status_code=401))):
            assert await monitor.probe() is True

    @pytest.mark.asyncio
    async def test_probe_server_error_is_offline(self):
        """Test a 5xx response counts as unreachable."""
        monitor = ConnectivityMonitor("http://backend/health")

        with patched_http(AsyncMock(return_value=MagicMock(status_code=502))):
            assert await monitor.probe() is False

    @pytest.mark.asyncio
    async def test_probe_connect_error(self):
        """Test connection failures mean offline and emit a transition."""
        monitor = ConnectivityMonitor("http://backend/health", initial_state=True)
        events = []
        monitor.subscribe(events.append)

        with patched_http(AsyncMock(side_effect=httpx.ConnectError("down"))):
            assert await monitor.is_online() is False

        assert events == [False]

    @pytest.mark.asyncio
    async def test_probe_result_cached_briefly(self):
        """Test back-to-back checks reuse a fresh probe."""
        monitor = ConnectivityMonitor("http://backend/health", probe_cache_seconds=60)
        get = AsyncMock(return_value=MagicMock(status_code=200))

        with patched_http(get):
            await monitor.is_online()
            await monitor.is_online()

        assert get.call_count == 1

    @pytest.mark.asyncio
    async def test_probe_not_cached_when_disabled(self):
        """Test a zero cache window probes every time."""
        monitor = ConnectivityMonitor("http://backend/health", probe_cache_seconds=0)
        get = AsyncMock(return_value=MagicMock(status_code=200))

        with patched_http(get):
            await monitor.is_online()
            await monitor.is_online()

        assert get.call_count == 2

    @pytest.mark.asyncio
    async def test_background_loop_reports(self):
        """Test the polling loop feeds probe results into the state."""
        monitor = ConnectivityMonitor(
            "http://backend/health",
            probe_interval_seconds=0.01,
            initial_state=True,
        )
        events = []
        monitor.subscribe(events.append)

        with patch.object(monitor, "probe", new=AsyncMock(return_value=False)):
            await monitor.start()
            await asyncio.sleep(0.05)
            await monitor.stop()

        assert events == [False]
        assert monitor.state is False
