"""
Timer Set

Named, cancellable asyncio timers owned by the lifecycle controller.

Scheduling under a name that is already in use cancels the previous timer,
so there is never more than one health check or fallback poll in flight.
Every teardown path calls `cancel_all()`.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Union[None, bool, Awaitable[Any]]]


class TimerSet:
    """Registry of named one-shot and repeating timers"""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> asyncio.Task:
        """Run `callback` once after `delay` seconds"""
        self.cancel(name)

        async def _runner():
            await asyncio.sleep(delay)
            if self._owns(name):
                self._tasks.pop(name, None)
                await self._invoke(name, callback)

        return self._register(name, _runner())

    def call_every(self, name: str, interval: float, callback: TimerCallback) -> asyncio.Task:
        """
        Run `callback` every `interval` seconds until cancelled.

        Returning False from the callback stops the timer. A callback that
        cancels its own timer (directly or through `cancel_all`) finishes its
        current run and the loop then exits.
        """
        self.cancel(name)

        async def _runner():
            while True:
                await asyncio.sleep(interval)
                if not self._owns(name):
                    return
                result = await self._invoke(name, callback)
                if result is False:
                    if self._owns(name):
                        self._tasks.pop(name, None)
                    return
                if not self._owns(name):
                    return

        return self._register(name, _runner())

    def cancel(self, name: str) -> bool:
        """Cancel a timer by name. Returns True if one was registered."""
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        # A timer cancelling itself only deregisters; the running callback completes
        if task is not _current_task() and not task.done():
            task.cancel()
        return True

    def cancel_all(self) -> None:
        for name in list(self._tasks):
            self.cancel(name)

    def is_active(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    @property
    def active_names(self) -> list[str]:
        return [name for name in self._tasks if self.is_active(name)]

    def __len__(self) -> int:
        return len(self.active_names)

    def _register(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks[name] = task
        return task

    def _owns(self, name: str) -> bool:
        return self._tasks.get(name) is _current_task()

    async def _invoke(self, name: str, callback: TimerCallback) -> Any:
        try:
            result = callback()
            if inspect.isawaitable(result):
                result = await result
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Timer '{name}' callback failed: {e}")
            return None


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
