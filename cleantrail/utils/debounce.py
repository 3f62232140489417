"""
Single-slot debounced task scheduling.

``Debouncer.schedule()`` arms a timer; calling it again before the
timer fires replaces the pending timer instead of stacking a second
run.  Once the timer fires, the callback runs as its own task and
is never cancelled by a later ``schedule()``, which simply arms the
next run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from cleantrail.utils import errors, logger

log = logger.create_logger("Debounce")


class Debouncer:
    """Collapse bursts of triggers into one callback run."""

    def __init__(self, delay_seconds: float, callback: Callable[[], Awaitable[None]], *, name: str = "debounce") -> None:
        self._delay = delay_seconds
        self._callback = callback
        self._name = name
        self._timer: asyncio.TimerHandle | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        """True while a timer is armed and has not fired yet."""
        return self._timer is not None

    def schedule(self) -> None:
        """Arm (or re-arm) the timer.  Must be called from the event loop."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Disarm the pending timer, if any.  Running callbacks continue."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> None:
        """Run the callback now, replacing any armed timer."""
        self.cancel()
        await self._run()

    async def wait_idle(self) -> None:
        """Wait for callback runs that have already started."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as exc:
            log.error("Debounced callback failed", {"name": self._name, "error": errors.get_error_message(exc)})
