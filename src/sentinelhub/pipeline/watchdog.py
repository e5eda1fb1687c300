"""Timeout watchdog — a one-shot, observational timer per run.

Armed when a run starts, disarmed on any terminal transition. If the delay
elapses first, it calls the notice callback exactly once. It never touches the
run itself and never raises: delivery failures are logged and dropped.

Disarming sets a flag before cancelling the task, and the task re-checks the
flag after its sleep, so a run that finishes at the same loop tick as the
timer expiry does not produce a notice. Once the notice is in flight,
disarming leaves it to finish.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sentinelhub.errors import NotificationError

logger = logging.getLogger(__name__)


class TimeoutWatchdog:
    """Single-shot timer that fires a best-effort callback.

    Args:
        pipeline_id: Run the watchdog belongs to (for logging)
        timeout: Delay in seconds before firing
        on_timeout: Coroutine function invoked once on expiry; it decides
            whether a notice is actually sent

    ``fired`` records that the delay elapsed, not that a notice went out.
    """

    def __init__(
        self,
        pipeline_id: str,
        timeout: float,
        on_timeout: Callable[[], Awaitable[object]],
    ) -> None:
        self.pipeline_id = pipeline_id
        self.timeout = timeout
        self._on_timeout = on_timeout
        self._task: asyncio.Task | None = None
        self._disarmed = False
        self.fired = False

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._disarmed and not self.fired

    def arm(self) -> "TimeoutWatchdog":
        """Start the timer on the running loop."""
        if self._task is not None:
            raise RuntimeError(f"Watchdog for {self.pipeline_id} already armed")
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"watchdog-{self.pipeline_id}",
        )
        return self

    def disarm(self) -> None:
        """Stop the timer. Safe to call repeatedly or before arming."""
        self._disarmed = True
        if self._task is not None and not self.fired and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the timer task to settle (fired, cancelled or finished)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def _run(self) -> None:
        await asyncio.sleep(self.timeout)
        if self._disarmed:
            return
        self.fired = True
        logger.debug("Watchdog for %s elapsed after %.0fs", self.pipeline_id, self.timeout)
        try:
            await self._on_timeout()
        except NotificationError as e:
            logger.warning("Timeout notice for %s not delivered: %s", self.pipeline_id, e)
        except Exception:
            logger.exception("Timeout notice for %s raised unexpectedly", self.pipeline_id)
