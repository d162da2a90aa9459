"""
User-facing notification sink.

The ledger emits human-readable success/error/warning messages for every
mutating operation but does not care how they are displayed. The active sink
is module-global and swappable; the default writes to the log so messages are
never lost when no UI is attached.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from ops_ledger.utils.datetime_utils import utc_now

SUCCESS = "success"
ERROR = "error"
WARNING = "warning"
INFO = "info"

_LEVEL_TO_LOGGING = {
    SUCCESS: logging.INFO,
    INFO: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
}


class NotificationSink(Protocol):
    """Anything with a notify(level, message) method."""

    def notify(self, level: str, message: str) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: forwards notifications to the 'ops_ledger.notifications' logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("ops_ledger.notifications")

    def notify(self, level: str, message: str) -> None:
        self.logger.log(_LEVEL_TO_LOGGING.get(level, logging.INFO), f"[{level}] {message}")


@dataclass
class Notification:
    level: str
    message: str
    created_at: object = field(default_factory=utc_now)


class RecordingNotificationSink:
    """Sink that keeps every notification in memory.

    Used by tests, and by UI adapters that poll for new messages.
    """

    def __init__(self):
        self.notifications: List[Notification] = []
        self._lock = threading.Lock()

    def notify(self, level: str, message: str) -> None:
        with self._lock:
            self.notifications.append(Notification(level, message))

    def messages(self, level: Optional[str] = None) -> List[str]:
        with self._lock:
            return [n.message for n in self.notifications if level is None or n.level == level]

    def clear(self) -> None:
        with self._lock:
            self.notifications.clear()


_sink: NotificationSink = LoggingNotificationSink()


def set_notification_sink(sink: Optional[NotificationSink]) -> NotificationSink:
    """Install a sink (None restores the logging sink). Returns the previous sink."""
    global _sink
    previous = _sink
    _sink = sink if sink is not None else LoggingNotificationSink()
    return previous


def get_notification_sink() -> NotificationSink:
    return _sink


def notify_success(message: str) -> None:
    _sink.notify(SUCCESS, message)


def notify_error(message: str) -> None:
    _sink.notify(ERROR, message)


def notify_warning(message: str) -> None:
    _sink.notify(WARNING, message)


def notify_info(message: str) -> None:
    _sink.notify(INFO, message)
