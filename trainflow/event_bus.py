"""Multi-subscriber "message observed" bus.

Every message the ingestion path routes is published here as
``(topic, value)``.  Subscribers are called in subscription order; one
subscriber raising does not stop delivery to the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from threading import Lock
from typing import Any

LOGGER = logging.getLogger(__name__)

MessageCallback = Callable[[str, Any], None]


class MessageBus:
    def __init__(self) -> None:
        self._subscribers: list[MessageCallback] = []
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, callback: MessageCallback) -> Callable[[], None]:
        """Register *callback*; the returned function unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: MessageCallback) -> None:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

    def publish(self, topic: str, value: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(topic, value)
            except Exception:
                LOGGER.warning(
                    "Message subscriber %r failed for topic %s",
                    callback,
                    topic,
                    exc_info=True,
                )
