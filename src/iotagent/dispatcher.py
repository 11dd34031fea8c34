"""Application callback table keyed by event type."""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

from core.logging import get_logger, log_exception, log_with_context
from iotagent.metrics import record_callback_error

logger = get_logger(__name__)

# callback(tenant, envelope)
EventCallback = Callable[[str, Dict[str, Any]], Any]


def dispatch_key(event_name: str) -> str:
    """Callback table key for a device lifecycle event name.

    Plain names are namespaced under "device." ("create" -> "device.create");
    names that already carry a namespace ("template.update") are kept.
    """
    if "." in event_name:
        return event_name
    return f"device.{event_name}"


class Dispatcher:
    """Invokes registered callbacks in registration order.

    The same callback registered twice runs twice. A callback that raises
    is logged and does not prevent the remaining callbacks from running.
    """

    def __init__(self):
        self._callbacks: Dict[str, List[EventCallback]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, event: str, callback: EventCallback) -> None:
        if not callable(callback):
            raise TypeError(f"callback for '{event}' must be callable")
        with self._lock:
            self._callbacks[event].append(callback)

    def callbacks(self, event: str) -> List[EventCallback]:
        with self._lock:
            return list(self._callbacks.get(event, ()))

    def dispatch(self, event: str, tenant: str, envelope: Dict[str, Any]) -> int:
        """Run the callbacks registered for ``event``; returns how many ran cleanly."""
        # Snapshot so callbacks may register further callbacks
        callbacks = self.callbacks(event)
        if not callbacks:
            log_with_context(
                logger,
                logging.DEBUG,
                "No callbacks registered for event",
                tenant=tenant,
                event_type=event,
            )
            return 0

        succeeded = 0
        for callback in callbacks:
            try:
                callback(tenant, envelope)
                succeeded += 1
            except Exception as e:
                record_callback_error(event)
                log_exception(
                    logger,
                    e,
                    "Callback raised while handling event",
                    tenant=tenant,
                    event_type=event,
                )
        return succeeded
