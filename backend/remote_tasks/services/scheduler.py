from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class Timer:
    """
    Handle for a repeating or one-shot callback.

    cancel() from inside the callback lets the running callback finish and
    then stops the timer; cancel() from anywhere else cancels the task.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _attach(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()


class AsyncioScheduler:
    """Timer factory backed by the running asyncio event loop."""

    def __init__(self) -> None:
        self._background: Set[asyncio.Task] = set()

    def call_every(self, interval: float, callback: AsyncCallback, *, name: str = "") -> Timer:
        """Run callback every `interval` seconds; the first run happens after one interval."""
        timer = Timer(name)

        async def _loop() -> None:
            while not timer.cancelled:
                await asyncio.sleep(interval)
                if timer.cancelled:
                    break
                try:
                    await callback()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Timer %s callback failed", name or "<anonymous>")

        timer._attach(asyncio.create_task(_loop(), name=name or None))
        return timer

    def call_later(self, delay: float, callback: AsyncCallback, *, name: str = "") -> Timer:
        """Run callback once after `delay` seconds unless cancelled first."""
        timer = Timer(name)

        async def _once() -> None:
            await asyncio.sleep(delay)
            if timer.cancelled:
                return
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Delayed callback %s failed", name or "<anonymous>")
            finally:
                timer._cancelled = True

        timer._attach(asyncio.create_task(_once(), name=name or None))
        return timer

    def spawn(self, coro: Awaitable[None], *, name: str = "") -> asyncio.Task:
        """Fire-and-forget a coroutine, keeping a reference until it finishes."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for spawned background work (used on shutdown)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
