"""Background task helpers.

Provides:
- ``supervised_task`` — ``create_task`` wrapper that logs failures
- ``PeriodicTask``    — fixed-interval async loop (the scheduler's tick)
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger


def supervised_task(
    coro: Awaitable[Any],
    *,
    name: str = "",
) -> asyncio.Task:
    """Wrap ``asyncio.create_task`` with an error-logging callback.

    If the task raises an exception (other than ``CancelledError``),
    it is logged as an error instead of becoming an unhandled exception.
    """
    task = asyncio.create_task(coro, name=name or None)

    def _on_done(t: asyncio.Task) -> None:
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error(
                "[Tasks] supervised task {!r} failed: {!r}",
                t.get_name(), exc,
            )

    task.add_done_callback(_on_done)
    return task


class PeriodicTask:
    """Runs a callback at a fixed interval in an async task.

    Parameters
    ----------
    name:
        Human-readable label for logging.
    callback:
        Callable (sync or async) invoked each tick. Exceptions are logged,
        not propagated, so one bad tick does not stop the loop.
    interval:
        Seconds between ticks.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Any],
        interval: float = 60.0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self.name = name
        self._callback = callback
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _invoke(self) -> None:
        try:
            result = self._callback()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[Tasks/{}] tick error: {}", self.name, exc)

    async def _loop(self) -> None:
        logger.debug("[Tasks/{}] started (interval={:.0f}s)", self.name, self._interval)
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while True:
            # Ticks are due at fixed multiples of the interval from start, so
            # callback run time does not shift later ticks.
            deadline += self._interval
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            await self._invoke()
            behind = loop.time() - deadline
            if behind >= self._interval:
                logger.warning(
                    "[Tasks/{}] tick overran by {:.1f}s, skipping missed ticks",
                    self.name, behind,
                )
                deadline = loop.time()

    def start(self) -> None:
        """Start the loop as a background task (idempotent)."""
        if not self.running:
            self._task = supervised_task(self._loop(), name=f"periodic-{self.name}")

    def stop(self) -> None:
        """Cancel the loop."""
        if self.running:
            self._task.cancel()
            logger.debug("[Tasks/{}] stopped", self.name)
        self._task = None
