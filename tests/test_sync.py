"""Tests for sync module."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from vault_mcp.sync import RefreshScheduler


async def wait_for_condition(condition_fn, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Wait for a condition to become true, polling at interval.

    Args:
        condition_fn: Callable that returns True when condition is met.
        timeout: Maximum time to wait in seconds.
        interval: Time between checks in seconds.

    Returns:
        True if condition was met, False if timeout was reached.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if condition_fn():
            return True
        await asyncio.sleep(interval)
    return False


def make_index(side_effect=None):
    index = MagicMock()
    index.refresh = AsyncMock(return_value=1, side_effect=side_effect)
    return index


class TestRefreshScheduler:
    """Tests for RefreshScheduler class."""

    def test_init_requires_positive_interval(self):
        """Test RefreshScheduler requires positive interval."""
        index = make_index()
        with pytest.raises(ValueError, match="Refresh interval must be positive"):
            RefreshScheduler(index, 0)
        with pytest.raises(ValueError, match="Refresh interval must be positive"):
            RefreshScheduler(index, -1)

    def test_init_accepts_positive_interval(self):
        """Test RefreshScheduler accepts positive interval."""
        scheduler = RefreshScheduler(make_index(), 30)
        assert scheduler._interval == 30
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_start_creates_named_task(self):
        """Test start() creates the background task."""
        scheduler = RefreshScheduler(make_index(), 60)

        scheduler.start()
        try:
            assert scheduler.running
            assert scheduler._task.get_name() == "vault-index-refresh"
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_idempotent(self, caplog):
        """Test calling start() twice doesn't create duplicate tasks."""
        scheduler = RefreshScheduler(make_index(), 60)

        scheduler.start()
        task1 = scheduler._task
        scheduler.start()
        task2 = scheduler._task

        try:
            assert task1 is task2
            assert "already running" in caplog.text
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_terminates_task(self):
        """Test stop() terminates the refresh task."""
        scheduler = RefreshScheduler(make_index(), 60)

        scheduler.start()
        task = scheduler._task
        await scheduler.stop()

        assert scheduler._task is None
        assert task.done()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_stop_idempotent(self):
        """Test calling stop() when not running is safe."""
        scheduler = RefreshScheduler(make_index(), 60)
        await scheduler.stop()  # Should not raise

    @pytest.mark.asyncio
    async def test_refreshes_immediately_on_start(self):
        """Test the first refresh runs without waiting for the interval."""
        index = make_index()
        scheduler = RefreshScheduler(index, 60)

        scheduler.start()
        try:
            condition_met = await wait_for_condition(lambda: index.refresh.await_count >= 1)
            assert condition_met, "refresh() was not called on start"
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_waits_for_interval_without_refresh_on_start(self):
        index = make_index()
        scheduler = RefreshScheduler(index, 60, refresh_on_start=False)

        scheduler.start()
        try:
            await asyncio.sleep(0.05)
            assert index.refresh.await_count == 0
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_refresh_called_after_interval(self):
        """Test refresh() is called again after the interval elapses."""
        index = make_index()
        scheduler = RefreshScheduler(index, 0.05)

        scheduler.start()
        try:
            condition_met = await wait_for_condition(lambda: index.refresh.await_count >= 3)
            assert condition_met, "refresh() was not called repeatedly within timeout"
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_refresh_exception_doesnt_stop_task(self, caplog):
        """Test exceptions in refresh() don't stop the loop."""
        calls = 0

        def side_effect():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("Simulated error")
            return 1

        index = make_index(side_effect=side_effect)
        scheduler = RefreshScheduler(index, 0.05)

        scheduler.start()
        try:
            # Poll until refresh is called at least twice (after exception recovery)
            condition_met = await wait_for_condition(lambda: index.refresh.await_count >= 2)
            assert condition_met, "refresh() was not called twice within timeout"
            assert scheduler.running
            assert "Error during scheduled index refresh" in caplog.text
        finally:
            await scheduler.stop()
