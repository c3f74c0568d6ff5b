"""Notification schema.

Notifications are raised by the router so downstream subscribers (pattern
detection, reflection, the live display) can react to what the mesh is
doing. Routing works the same whether or not anything is listening.
"""

from enum import Enum

from pydantic import BaseModel


class NotificationName(str, Enum):
    """The closed set of notification names the router can emit.

    Extends str so values serialize to plain strings ("file_event") rather
    than "NotificationName.FILE_EVENT".
    """

    SERVER_HEARTBEAT = "server_heartbeat"
    SERVER_SHUTDOWN = "server_shutdown"
    FILE_EVENT = "file_event"
    SEARCH_EVENT = "search_event"
    BUILD_EVENT = "build_event"
    LESSON_LEARNED = "lesson_learned"
    VERIFICATION_EVENT = "verification_event"
    VALIDATION_EVENT = "validation_event"
    PATTERN_CANDIDATE = "pattern_candidate"
    COORDINATION_EVENT = "coordination_event"
    ASTROSENTRY_EVENT = "astrosentry_event"
    ERROR_RECEIVED = "error_received"
    UNKNOWN_SIGNAL = "unknown_signal"


class Notification(BaseModel):
    """A single notification delivered to subscribers.

    Attributes:
        name: Which notification this is. See NotificationName.
        payload: Notification-specific fields. Most carry "server", "type"
            (the signal name) and "data" (the signal payload minus sender).
        timestamp_ms: Wall-clock time the notifier accepted the emit call,
            in milliseconds since epoch.
    """

    name: NotificationName
    payload: dict
    timestamp_ms: int
