"""Expiry timer that splits long delays into bounded waits."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

# Largest single wait, in seconds: the signed 32-bit millisecond timer ceiling
MAX_TIMER_DELAY = (2**31 - 1) / 1000


class ExpiryTimer:
    """Fires `callback` once after `delay` seconds.

    Delays above `max_step` are served as a chain of shorter waits, each one
    decrementing the remaining duration, so very long TTLs never collapse into
    an immediate or overflowing timer.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        max_step: float = MAX_TIMER_DELAY,
    ) -> None:
        self._remaining = max(0.0, float(delay))
        self._callback = callback
        self._loop = loop or asyncio.get_running_loop()
        self._max_step = max_step
        self._handle: asyncio.TimerHandle | None = None
        self._steps = 0
        self._schedule()

    @property
    def remaining(self) -> float:
        """Duration not yet covered by completed waits."""
        return self._remaining

    @property
    def steps(self) -> int:
        """Number of waits scheduled so far."""
        return self._steps

    @property
    def active(self) -> bool:
        return self._handle is not None

    def _schedule(self) -> None:
        step = min(self._remaining, self._max_step)
        self._remaining -= step
        self._steps += 1
        self._handle = self._loop.call_later(step, self._tick)

    def _tick(self) -> None:
        if self._remaining > 0:
            self._schedule()
            return
        self._handle = None
        self._callback()

    def cancel(self) -> None:
        """Stop the timer; the callback will not run."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def schedule_expiry(
    delay: float,
    callback: Callable[[], None],
    *,
    loop: asyncio.AbstractEventLoop | None = None,
) -> ExpiryTimer:
    """Run `callback` after `delay` seconds, however long."""
    return ExpiryTimer(delay, callback, loop=loop)
