"""
events.py

Publish/subscribe registry that delivers regulator events to the
monitoring application. Handlers are plain callables taking one argument.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

CONNECTION_STATUS_CHANGED = "connection_status_changed"
DATA_RECEIVED = "data_received"
PROTECTION_STATUS_UPDATED = "protection_status_updated"
COMMAND_ACKNOWLEDGED = "command_acknowledged"
ERROR_OCCURRED = "error_occurred"
COMMAND_RECEIVED = "command_received"

EVENT_NAMES = (
    CONNECTION_STATUS_CHANGED,
    DATA_RECEIVED,
    PROTECTION_STATUS_UPDATED,
    COMMAND_ACKNOWLEDGED,
    ERROR_OCCURRED,
    COMMAND_RECEIVED,
)


class EventBus:
    """
    Keeps a list of handlers per event name and calls them on publish.

    Publishing happens on whichever thread produced the event (usually the
    dispatcher). A handler that raises is logged and skipped so it cannot
    stop delivery to the others or kill the publishing thread.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._handlers: Dict[str, List[Callable[[Any], None]]] = {name: [] for name in EVENT_NAMES}
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: Callable[[Any], None]) -> None:
        """
        Registers a handler for an event.

        Args:
            event: One of EVENT_NAMES.
            handler: Callable invoked with the event payload.
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown event '{event}'")
        with self._lock:
            if handler not in self._handlers[event]:
                self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Callable[[Any], None]) -> None:
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: str, payload: Any = None) -> None:
        """
        Delivers a payload to every handler subscribed to the event.
        """
        with self._lock:
            handlers = list(self._handlers.get(event, []))

        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                self.logger.error(f"Event handler for '{event}' failed: {str(e)}", exc_info=True)

    def handler_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))
