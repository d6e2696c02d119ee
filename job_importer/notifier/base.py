from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportProgressEvent:
    """Emitted when a run starts and after every batch."""

    name: ClassVar[str] = "import:progress"

    import_run_id: str
    progress: int
    processed: int = 0
    total: int = 0
    message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "import_run_id": self.import_run_id,
            "progress": self.progress,
            "processed": self.processed,
            "total": self.total,
            "message": self.message,
        }


@dataclass(frozen=True)
class ImportCompleteEvent:
    """Emitted once a run has been classified."""

    name: ClassVar[str] = "import:complete"

    import_run_id: str
    status: str
    statistics: Mapping[str, int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "import_run_id": self.import_run_id,
            "status": self.status,
            "statistics": dict(self.statistics),
        }


@dataclass(frozen=True)
class ImportFailedEvent:
    """Emitted when a run aborts on a systemic error."""

    name: ClassVar[str] = "import:failed"

    import_run_id: str
    error: str

    def to_payload(self) -> dict[str, Any]:
        return {"import_run_id": self.import_run_id, "error": self.error}


ImportEvent = Union[ImportProgressEvent, ImportCompleteEvent, ImportFailedEvent]


class EventPublisher(Protocol):
    """Anything the import worker can hand events to."""

    def publish(self, event: ImportEvent) -> None:
        """Deliver the event; must not raise."""


class NotificationChannel(Protocol):
    """
    Protocol for a notification channel implementation.

    A concrete real-time transport (websocket, message bus) plugs in here.
    """

    def send(self, event: ImportEvent) -> None:
        """Send the event via this channel."""


class Notifier:
    """
    Fans import events out to one or more channels.
    """

    def __init__(self, channels: Sequence[NotificationChannel] = ()):
        self._channels = list(channels)

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def publish(self, event: ImportEvent) -> None:
        """
        Send an event through all configured channels.

        If one channel fails, the error is logged and processing continues
        with the next channel. Notifications are best effort and never fail
        an import.

        Args:
            event: The import event to send.
        """
        for channel in self._channels:
            try:
                channel.send(event)
            except Exception as e:
                channel_name = channel.__class__.__name__
                logger.error(
                    f"Channel {channel_name} failed to send {event.name}: {e}",
                    exc_info=True,
                )


class LogChannel:
    """Writes every event to the application log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def send(self, event: ImportEvent) -> None:
        logger.log(self.level, "Import event %s", event.name, extra={"event": event.to_payload()})
