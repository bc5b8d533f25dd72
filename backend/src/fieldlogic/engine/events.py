"""Event bus the engine publishes field state and lifecycle events on.

Events:
- fieldStateChanged(path, state)
- submit(value)
- reset()
- clear()
- diagnostic(diagnostic)
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

FIELD_STATE_CHANGED = "fieldStateChanged"
SUBMIT = "submit"
RESET = "reset"
CLEAR = "clear"
DIAGNOSTIC = "diagnostic"

EVENTS = frozenset({FIELD_STATE_CHANGED, SUBMIT, RESET, CLEAR, DIAGNOSTIC})

Handler = Callable[..., Any]


class EventBus:
    """Synchronous publish/subscribe.

    A failing handler is logged and does not stop the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Subscribe to an event. Returns a function that unsubscribes."""
        if event not in EVENTS:
            raise ValueError(f"Unknown event '{event}'")
        self._handlers[event].append(handler)
        return lambda: self.off(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception:
                logger.exception("Handler for '%s' failed", event)
