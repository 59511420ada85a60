"""Periodic timers driving each engine independently."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


async def interruptible_sleep(seconds: float, event: asyncio.Event) -> bool:
    """Sleep for *seconds* but wake early if *event* is set.

    Returns ``True`` when woken by the event.
    """
    try:
        await asyncio.wait_for(event.wait(), timeout=max(seconds, 0.0))
        return True
    except asyncio.TimeoutError:
        return False


class PeriodicTimer:
    """Runs an async callback every *interval* seconds on its own task.

    Each callback invocation is awaited to completion before the next
    interval starts, so ticks never overlap.  Exceptions are logged and
    the timer keeps running.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        *,
        initial_delay: float = 0.0,
    ) -> None:
        self._name = name
        self._interval = interval
        self._callback = callback
        self._initial_delay = initial_delay
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"timer:{self._name}")
        logger.debug("timer_started", timer=self._name, interval=self._interval)

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._stop.set()
        self._task = None
        # Called from inside our own callback: the loop exits on its own.
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("timer_stopped", timer=self._name)

    async def _run(self) -> None:
        if await interruptible_sleep(self._initial_delay, self._stop):
            return
        while not self._stop.is_set():
            try:
                await self._callback()
            except Exception:
                logger.exception("timer_callback_failed", timer=self._name)
            if await interruptible_sleep(self._interval, self._stop):
                return
