"""Debounced async side effects.

Rescheduling within the window replaces the pending action instead of
stacking another one, and every caller in a burst shares the outcome of the
single action that finally runs.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]


class Debouncer:
    """Coalesces rapid ``schedule`` calls into one run of the latest action."""

    def __init__(
        self,
        delay_ms: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "debounce",
    ):
        self.delay_ms = delay_ms
        self.name = name
        self._sleep = sleep
        self._timer: Optional[asyncio.Task] = None
        self._action: Optional[Action] = None
        self._future: Optional[asyncio.Future] = None

    @property
    def pending(self) -> bool:
        return self._action is not None

    def schedule(self, action: Action) -> asyncio.Future:
        """Replace any pending action with ``action`` and restart the window.

        Must be called from a running event loop. The returned future resolves
        with the result of whichever action eventually runs for this burst.
        """
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._action = action
        if self._future is None or self._future.done():
            self._future = loop.create_future()
        future = self._future
        self._timer = loop.create_task(self._fire_later())
        return future

    async def call(self, action: Action) -> Any:
        """Schedule ``action`` and wait for the burst's result."""
        return await self.schedule(action)

    async def _fire_later(self) -> None:
        await self._sleep(self.delay_ms / 1000)
        await self._fire()

    async def _fire(self) -> None:
        action, future = self._action, self._future
        # Detach first so a reschedule during the run starts a new burst
        self._action = None
        self._future = None
        self._timer = None
        if action is None or future is None:
            return
        try:
            result = await action()
        except Exception as exc:
            logger.debug("%s action failed: %s", self.name, exc)
            if not future.done():
                future.set_exception(exc)
            return
        if not future.done():
            future.set_result(result)

    async def flush(self) -> Any:
        """Run the pending action now, skipping the rest of the window."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        future = self._future
        await self._fire()
        if future is not None and future.done() and not future.cancelled():
            return future.result()
        return None

    def cancel(self) -> None:
        """Drop the pending action without running it."""
        if self._timer is not None:
            self._timer.cancel()
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._timer = None
        self._action = None
        self._future = None
