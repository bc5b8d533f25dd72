"""Debounce timers for `trigger: debounced` entries.

Each key has at most one pending timer; scheduling again resets it. Timers
use `loop.call_later` when an event loop is running. Without one they stay
pending until `flush()` runs them, which is how synchronous hosts and tests
drive debounced logic deterministically.
"""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Debouncer:
    def __init__(self, callback: Callable[[str], None]):
        self._callback = callback
        self._timers: dict[str, asyncio.TimerHandle | None] = {}

    def schedule(self, key: str, delay_ms: int) -> None:
        """Start or restart the timer for key."""
        self.cancel(key)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._timers[key] = None
            return
        self._timers[key] = loop.call_later(delay_ms / 1000, self._fire, key)
        logger.debug("Debounced '%s' for %dms", key, delay_ms)

    def cancel(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def cancel_where(self, predicate: Callable[[str], bool]) -> None:
        for key in [k for k in self._timers if predicate(k)]:
            self.cancel(key)

    def cancel_all(self) -> None:
        self.cancel_where(lambda key: True)

    def pending(self) -> list[str]:
        return list(self._timers)

    def flush(self) -> int:
        """Run every pending timer now. Returns how many ran."""
        ran = 0
        while self._timers:
            key = next(iter(self._timers))
            self.cancel(key)
            self._callback(key)
            ran += 1
        return ran

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self._callback(key)
