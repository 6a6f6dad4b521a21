# src/securechat/services/events.py
"""In-process real-time event broker.

Stands in for the socket transport: endpoints and sweeps publish per-user
events, and connected clients (the WebSocket endpoint, or tests) subscribe.
Payloads carry ciphertext and metadata only.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)

NEW_MESSAGE = "new_message"
MESSAGE_EDITED = "message_edited"
MESSAGE_DELETED = "message_deleted"
MESSAGE_PINNED = "message_pinned"
MESSAGE_READ = "message_read"
NEW_FILE = "new_file"
NEW_GROUP_MESSAGE = "new_group_message"
GROUP_CREATED = "group_created"
GROUP_UPDATED = "group_updated"
GROUP_LEFT = "group_left"
USER_TYPING = "user_typing"


@dataclass(frozen=True)
class Event:
    """A single event addressed to one user."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)

    def as_json(self) -> dict[str, Any]:
        return {"event": self.name, "data": self.payload}


Subscriber = Callable[[Event], None]


class EventBroker:
    """Fan-out of events to the subscribers of each user."""

    def __init__(self) -> None:
        self._subscribers: dict[bytes, list[Subscriber]] = defaultdict(list)
        self._lock = Lock()

    def subscribe(self, user_id: bytes, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``user_id``'s events.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers[user_id].append(callback)

        def _unsubscribe() -> None:
            self._discard(user_id, callback)

        return _unsubscribe

    def publish(self, user_id: bytes, name: str, payload: dict[str, Any] | None = None) -> int:
        """Deliver an event to every current subscriber of ``user_id``.

        Returns:
            Number of subscribers the event was handed to
        """
        event = Event(name=name, payload=payload or {})
        with self._lock:
            callbacks = list(self._subscribers.get(user_id, []))
        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
            except RuntimeError as err:
                # Typically a subscriber whose event loop has already closed.
                logger.warning("Dropping stale subscriber after failed %s event: %s", name, err)
                self._discard(user_id, callback)
                continue
            delivered += 1
        return delivered

    def _discard(self, user_id: bytes, callback: Subscriber) -> None:
        with self._lock:
            callbacks = self._subscribers.get(user_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: bytes) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))


_BROKER = EventBroker()


def get_event_broker() -> EventBroker:
    """Return the process-wide event broker."""
    return _BROKER
