"""
Notifier package.

Typed import events (progress, complete, failed) and the channels they are
delivered through. `Notifier` implements the `EventPublisher` protocol the
import worker publishes to.
"""

from .base import (
    EventPublisher,
    ImportCompleteEvent,
    ImportEvent,
    ImportFailedEvent,
    ImportProgressEvent,
    LogChannel,
    NotificationChannel,
    Notifier,
)
from .webhook import WebhookChannel

__all__ = [
    "EventPublisher",
    "ImportCompleteEvent",
    "ImportEvent",
    "ImportFailedEvent",
    "ImportProgressEvent",
    "LogChannel",
    "NotificationChannel",
    "Notifier",
    "WebhookChannel",
]
