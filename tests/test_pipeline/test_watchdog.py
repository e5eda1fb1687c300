"""Tests for TimeoutWatchdog — observational one-shot timer."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sentinelhub.errors import NotificationError
from sentinelhub.pipeline.watchdog import TimeoutWatchdog


class TestTimeoutWatchdog:

    @pytest.mark.asyncio
    async def test_fires_once_after_delay(self):
        callback = AsyncMock()
        watchdog = TimeoutWatchdog("pipeline_1", 0.01, callback).arm()

        await watchdog.wait()

        assert watchdog.fired
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disarm_before_expiry_prevents_notice(self):
        callback = AsyncMock()
        watchdog = TimeoutWatchdog("pipeline_1", 0.05, callback).arm()
        assert watchdog.armed

        watchdog.disarm()
        await watchdog.wait()
        await asyncio.sleep(0.1)

        assert not watchdog.fired
        assert not watchdog.armed
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disarm_after_sleep_before_check(self):
        """A disarm that lands after the sleep but before the flag check wins."""
        callback = AsyncMock()
        watchdog = TimeoutWatchdog("pipeline_1", 0, callback).arm()

        # The task has not started yet; set the flag without cancelling
        watchdog._disarmed = True
        await watchdog.wait()

        callback.assert_not_awaited()
        assert not watchdog.fired

    @pytest.mark.asyncio
    async def test_disarm_does_not_cancel_notice_in_flight(self):
        started = asyncio.Event()
        release = asyncio.Event()
        delivered = []

        async def slow_notice():
            started.set()
            await release.wait()
            delivered.append(True)

        watchdog = TimeoutWatchdog("pipeline_1", 0, slow_notice).arm()
        await started.wait()

        watchdog.disarm()
        release.set()
        await watchdog.wait()

        assert delivered == [True]

    @pytest.mark.asyncio
    async def test_notification_errors_are_swallowed(self):
        callback = AsyncMock(side_effect=NotificationError("mailer down"))
        watchdog = TimeoutWatchdog("pipeline_1", 0, callback).arm()

        await watchdog.wait()

        assert watchdog.fired
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_swallowed(self):
        watchdog = TimeoutWatchdog("pipeline_1", 0, AsyncMock(side_effect=RuntimeError("bug"))).arm()
        await watchdog.wait()
        assert watchdog.fired

    @pytest.mark.asyncio
    async def test_cannot_arm_twice(self):
        watchdog = TimeoutWatchdog("pipeline_1", 10, AsyncMock()).arm()
        try:
            with pytest.raises(RuntimeError, match="already armed"):
                watchdog.arm()
        finally:
            watchdog.disarm()
            await watchdog.wait()

    @pytest.mark.asyncio
    async def test_disarm_before_arm_is_harmless(self):
        watchdog = TimeoutWatchdog("pipeline_1", 10, AsyncMock())
        watchdog.disarm()
        await watchdog.wait()
        assert not watchdog.armed
