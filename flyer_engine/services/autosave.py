"""
Debounced autosave.

Every ``trigger()`` cancels the pending timer and starts a new one, so the
callback runs once, ``delay`` seconds after the last trigger.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from flyer_engine.logging_config import logger


class Debouncer:
    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Run a pending callback now instead of waiting for the timer."""
        if not self.pending:
            return
        self.cancel()
        await self.callback()

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        self._task = None
        try:
            await self.callback()
        except Exception as e:
            logger.warning("Debounced callback failed", error=str(e))
