"""Cancellable deferred tasks for expirations and debounce timers."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Hashable, Optional, Union

from switchboard.logging_config import get_logger

logger = get_logger("scheduler")

Callback = Callable[[], Union[None, Awaitable[Any]]]


class ScheduledTask:
    """One-shot timer: runs callback after delay_seconds unless cancelled."""

    def __init__(
        self,
        delay_seconds: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
        sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.delay_seconds = delay_seconds
        self.name = name
        self._callback = callback
        self._sleep = sleep_func
        self._task = asyncio.get_running_loop().create_task(self._run(), name=name)

    async def _run(self) -> None:
        await self._sleep(self.delay_seconds)
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error(
                "Scheduled task failed",
                extra={"context": {"task": self.name, "error": str(exc)}},
            )

    def cancel(self) -> None:
        """No-op when called from inside the timer's own callback."""
        if self._task.done() or self._is_current():
            return
        self._task.cancel()

    def _is_current(self) -> bool:
        try:
            return asyncio.current_task() is self._task
        except RuntimeError:
            return False

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class KeyedDebouncer:
    """Per-key timers where a new call cancels and restarts the pending one."""

    def __init__(self, sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self._timers: dict[Hashable, ScheduledTask] = {}
        self._sleep = sleep_func

    def debounce(self, key: Hashable, delay_seconds: float, callback: Callback) -> ScheduledTask:
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()

        timer: Optional[ScheduledTask] = None

        async def fire():
            if self._timers.get(key) is timer:
                del self._timers[key]
            result = callback()
            if inspect.isawaitable(result):
                await result

        timer = ScheduledTask(delay_seconds, fire, name=f"debounce:{key}", sleep_func=self._sleep)
        self._timers[key] = timer
        return timer

    def pending_keys(self) -> list[Hashable]:
        return list(self._timers)

    def cancel(self, key: Hashable) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
