"""Semantic notifier.

The notifier is how the router tells the rest of the system what it saw.
It is fire-and-forget: emit() never blocks, never raises, and returns
nothing. The router works the same whether zero or ten subscribers are
attached.

Three delivery paths, all optional:
    callbacks — plain functions called synchronously with each Notification
    queues    — asyncio.Queues fed with put_nowait (the live display reads one)
    history   — a bounded in-memory ring the HTTP API serves from

A failing subscriber is its own problem. Its exception is logged and the
remaining subscribers still receive the notification.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

from schemas.events import Notification, NotificationName

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 200

Subscriber = Callable[[Notification], None]


class Notifier:
    """Fans notifications out to callbacks, queues, and a history ring.

    Attributes:
        _subscribers: Callbacks invoked for every notification.
        _queues: asyncio.Queues fed without blocking. A full queue drops
            the notification for that queue only.
        _history: Most recent notifications, oldest dropped first.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._subscribers: list[Subscriber] = []
        self._queues: list[asyncio.Queue] = []
        self._history: deque[Notification] = deque(maxlen=history_size)

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callback to receive every future notification."""
        self._subscribers.append(callback)

    def attach_queue(self, queue: asyncio.Queue) -> None:
        """Feed every future notification into an asyncio.Queue."""
        self._queues.append(queue)

    def detach_queue(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def emit(self, name: NotificationName, payload: dict) -> None:
        """Deliver one notification to every subscriber.

        Never raises. Subscriber exceptions and full queues are logged and
        skipped so one bad consumer cannot affect routing or other consumers.

        Args:
            name:    Which notification this is.
            payload: Notification-specific fields.
        """
        try:
            notification = Notification(
                name=name,
                payload=payload,
                timestamp_ms=int(time.time() * 1000),
            )
        except Exception as exc:
            logger.error("Could not build notification '%s': %s", name, exc)
            return

        self._history.append(notification)

        for callback in list(self._subscribers):
            try:
                callback(notification)
            except Exception as exc:
                logger.error(
                    "Subscriber %r failed on '%s', skipping: %s",
                    callback,
                    notification.name.value,
                    exc,
                )

        for queue in list(self._queues):
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                logger.warning(
                    "Notification queue full, dropping '%s'.", notification.name.value
                )

    def recent(
        self,
        limit: int = DEFAULT_HISTORY_SIZE,
        name: NotificationName | None = None,
    ) -> list[Notification]:
        """Return the most recent notifications, newest first.

        Args:
            limit: Maximum number to return.
            name:  Only return notifications with this name, if given.
        """
        matches = [n for n in reversed(self._history) if name is None or n.name == name]
        return matches[:limit]
