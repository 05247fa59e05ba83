# lanwatch/events.py
import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class Event:
    """An explicit list of subscribers, notified in registration order.

    Broadcasts are not queued: a handler subscribed after an emit does not
    receive it.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler) -> Handler:
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def emit(self, *args: Any) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(*args)
            except Exception as err:  # pylint: disable=broad-except
                logger.error("Subscriber %r failed handling %s: %s", handler, self.name, err)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)
