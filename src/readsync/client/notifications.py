"""User-facing notifications for the sync client.

This module provides:
- NotificationType: Severity of a notification
- Notification: A dismissible notice (failed sync, unreachable source)
- NotificationCenter: Collects notices and forwards them to listeners

Notifications are kept until dismissed; listeners (the CLI prints them)
receive each one as it is published.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto

from readsync.core.timestamps import utc_now

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    id: int = field(default_factory=lambda: next(_ids))
    created_at: datetime = field(default_factory=utc_now)


NotificationListener = Callable[[Notification], None]


class NotificationCenter:
    """Thread-safe collection of pending notifications."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[int, Notification] = {}
        self._listeners: list[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, notification: Notification) -> Notification:
        """Store a notification and forward it to every listener."""
        with self._lock:
            self._pending[notification.id] = notification
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")
        return notification

    def info(self, title: str, message: str) -> Notification:
        return self.publish(Notification(title, message, NotificationType.INFO))

    def warning(self, title: str, message: str) -> Notification:
        return self.publish(Notification(title, message, NotificationType.WARNING))

    def error(self, title: str, message: str) -> Notification:
        return self.publish(Notification(title, message, NotificationType.ERROR))

    def dismiss(self, notification_id: int) -> bool:
        """Dismiss a notification.

        Returns:
            True if it was pending.
        """
        with self._lock:
            return self._pending.pop(notification_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    @property
    def pending(self) -> list[Notification]:
        """Pending notifications, oldest first."""
        with self._lock:
            return sorted(self._pending.values(), key=lambda n: n.id)
