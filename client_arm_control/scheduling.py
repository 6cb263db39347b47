"""
Scheduled tasks on the asyncio event loop.

A ScheduledTask owns exactly one asyncio task and is the only way to cancel
it. The transport client keeps one handle per timer (reconnect, stream,
heartbeat), so every timer it starts has a single owner that can stop it.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)

Interval = Union[float, Callable[[], float]]


class ScheduledTask:
    """
    Cancellable handle for a delayed or periodic callback.

    The ``cancelled`` flag is the cancellation token: it is set before the
    underlying task is cancelled, and the task checks it before every
    invocation, so no callback starts once cancel() has returned.
    """

    def __init__(self, name: str):
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        """True while the task has not been cancelled and has not finished."""
        return (
            not self._cancelled
            and self._task is not None
            and not self._task.done()
        )

    def cancel(self) -> bool:
        """
        Cancel the task.

        Returns:
            True if this call cancelled it, False if it was already cancelled
        """
        if self._cancelled:
            return False
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    async def wait(self) -> None:
        """Wait for the task to finish, absorbing its cancellation."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def _start(self, coro) -> 'ScheduledTask':
        self._task = asyncio.get_running_loop().create_task(coro, name=self.name)
        return self


async def _invoke(callback: Callable[[], Any]) -> Any:
    result = callback()
    if inspect.isawaitable(result):
        result = await result
    return result


def _resolve(interval: Interval) -> float:
    return interval() if callable(interval) else interval


def call_later(delay: float, callback: Callable[[], Any], name: str = "call_later") -> ScheduledTask:
    """
    Run ``callback`` once after ``delay`` seconds.

    The callback may be a plain function or a coroutine function. Exceptions
    it raises are logged, not propagated.
    """
    handle = ScheduledTask(name)

    async def _run():
        await asyncio.sleep(delay)
        if handle.cancelled:
            return
        try:
            await _invoke(callback)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled task {name} failed: {e}")

    return handle._start(_run())


def call_every(interval: Interval, callback: Callable[[], Any], name: str = "call_every") -> ScheduledTask:
    """
    Run ``callback`` every ``interval`` seconds until cancelled.

    ``interval`` may be a callable, re-read before each sleep so a cadence
    change applies from the next tick. Ticks are scheduled against deadlines
    on the loop clock, so the time spent in the callback does not stretch the
    period. Invocations never overlap: one that overruns its period is
    followed immediately by the next, and missed ticks are dropped rather
    than replayed. A failing invocation is logged and the next tick runs as
    usual.
    """
    handle = ScheduledTask(name)

    async def _run():
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while not handle.cancelled:
            deadline += _resolve(interval)
            delay = deadline - loop.time()
            if delay < 0:
                # overran; restart the schedule from now
                deadline = loop.time()
                delay = 0
            await asyncio.sleep(delay)
            if handle.cancelled:
                break
            try:
                await _invoke(callback)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic task {name} failed: {e}")

    return handle._start(_run())
