from __future__ import annotations

import threading
from typing import Callable

from loguru import logger

from .models import Message


MessageCallback = Callable[[Message], None]


class MessageChannel:
    """In-process publish/subscribe for transcript messages.

    Delivery is at-least-once: subscribers de-duplicate on ``Message.id``.
    A failing subscriber is logged and does not affect the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[MessageCallback] = []

    def subscribe(self, callback: MessageCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, message: Message) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(message)
            except Exception as exc:
                logger.warning("Subscriber {} failed on message {}: {}", callback, message.id, exc)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
