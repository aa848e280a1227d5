"""
User-facing notifications ("toasts").

The monitors only emit domain events; this module turns them into short
messages for whatever UI is attached. Without a sink, notifications are just
logged and kept in a bounded history.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, List, Optional

from remote_tasks.models import HealthEvent, HealthEventType, TaskEvent, TaskEventType

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    LOADING = "loading"
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Notification:
    level: NotificationLevel
    message: str
    task_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


NotificationSink = Callable[[Notification], None]

_LOG_LEVELS = {
    NotificationLevel.LOADING: logging.INFO,
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.ERROR: logging.WARNING,
}


class NotificationCenter:
    """Fan-out point for toasts."""

    def __init__(self, history_size: int = 50):
        self._sinks: List[NotificationSink] = []
        self.history: Deque[Notification] = deque(maxlen=history_size)

    def add_sink(self, sink: NotificationSink) -> Callable[[], None]:
        self._sinks.append(sink)

        def remove() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return remove

    def notify(self, level: NotificationLevel, message: str, *, task_id: Optional[str] = None) -> Notification:
        notification = Notification(level=level, message=message, task_id=task_id)
        self.history.append(notification)
        logger.log(_LOG_LEVELS[level], "[%s] %s", level.value, message)
        for sink in list(self._sinks):
            try:
                sink(notification)
            except Exception:
                logger.exception("Notification sink %r failed", sink)
        return notification

    def loading(self, message: str, **kwargs) -> Notification:
        return self.notify(NotificationLevel.LOADING, message, **kwargs)

    def success(self, message: str, **kwargs) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message, **kwargs)

    def error(self, message: str, **kwargs) -> Notification:
        return self.notify(NotificationLevel.ERROR, message, **kwargs)

    def messages(self) -> List[str]:
        return [n.message for n in self.history]


def task_event_toasts(center: NotificationCenter) -> Callable[[TaskEvent], None]:
    """Listener for TaskMonitor.subscribe that reports retry problems."""

    def on_event(event: TaskEvent) -> None:
        if event.type == TaskEventType.RETRY_REJECTED:
            center.error("Maximum retry attempts reached", task_id=event.task_id)
        elif event.type == TaskEventType.RETRY_FAILED:
            center.error("Failed to retry task", task_id=event.task_id)

    return on_event


def health_event_toasts(center: NotificationCenter, admin_email: str = "") -> Callable[[HealthEvent], None]:
    """Listener for BackendHealthMonitor.subscribe."""

    def on_event(event: HealthEvent) -> None:
        if event.type == HealthEventType.BACKEND_DOWN:
            who = f"Admin ({admin_email})" if admin_email else "Admin"
            center.error(f"Backend service appears to be down. {who} has been notified.")
        elif event.type == HealthEventType.BACKEND_RECOVERED:
            center.success("Backend service is now available")

    return on_event
