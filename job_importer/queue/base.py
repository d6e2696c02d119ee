"""
Job queue interface.

Entries move through these states:

    waiting -> active -> completed
                      -> delayed (failed attempt, backoff pending) -> waiting
                      -> failed (attempts exhausted)
    delayed (added with a delay) -> waiting

`attempts_made` counts deliveries: it is incremented every time a worker
claims the entry, so a value above 1 means the entry is being redelivered.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..common.retry import backoff_delay

logger = logging.getLogger(__name__)

WAITING = "waiting"
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"
DELAYED = "delayed"
STATES = (WAITING, ACTIVE, COMPLETED, FAILED, DELAYED)

DEFAULT_JOB_LIMIT = 100


class QueueError(Exception):
    """Raised on queue misuse (unknown entry, wrong state, bad state name)."""
    pass


@dataclass(frozen=True)
class QueuePolicy:
    """Default options applied to every entry added to a queue."""

    attempts: int = 3
    backoff_seconds: float = 5.0
    keep_completed_seconds: float = 24 * 3600
    keep_completed_count: int = 100
    keep_failed_seconds: float = 7 * 24 * 3600

    def retry_delay(self, attempts_made: int, backoff_seconds: Optional[float] = None) -> float:
        """Exponential backoff before the next attempt: 5s, 10s, 20s, ..."""
        base = self.backoff_seconds if backoff_seconds is None else backoff_seconds
        return backoff_delay(attempts_made, initial_delay=base)


@dataclass
class QueueEntry:
    id: str
    name: str
    payload: dict[str, Any]
    created_at: datetime
    available_at: datetime
    state: str = WAITING
    priority: int = 0
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_seconds: float = 5.0
    progress: int = 0
    failed_reason: Optional[str] = None
    return_value: Any = None
    processed_at: Optional[datetime] = None
    heartbeat_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_redelivery(self) -> bool:
        return self.attempts_made > 1

    def to_dict(self) -> dict[str, Any]:
        def fmt(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "name": self.name,
            "payload": dict(self.payload),
            "state": self.state,
            "priority": self.priority,
            "progress": self.progress,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "failed_reason": self.failed_reason,
            "return_value": self.return_value,
            "created_at": fmt(self.created_at),
            "available_at": fmt(self.available_at),
            "processed_at": fmt(self.processed_at),
            "heartbeat_at": fmt(self.heartbeat_at),
            "finished_at": fmt(self.finished_at),
        }


def validate_state(state: str) -> str:
    if state not in STATES:
        raise QueueError(f"Invalid job state: {state!r} (expected one of {', '.join(STATES)})")
    return state


class JobQueue(ABC):
    """
    Durable queue of import entries.

    Backends implement the storage primitives; statistics, health and the
    cleaning helpers are shared.
    """

    def __init__(self, name: str = "job-import", policy: Optional[QueuePolicy] = None):
        self.name = name
        self.policy = policy or QueuePolicy()

    # Storage primitives

    @abstractmethod
    def add(
        self,
        name: str,
        payload: dict[str, Any],
        priority: int = 0,
        delay: float = 0,
        attempts: Optional[int] = None,
    ) -> QueueEntry:
        """
        Enqueue an entry.

        Args:
            name: Handler name the entry is dispatched to
            payload: JSON-serializable data for the handler
            priority: Lower values are taken first (default: 0)
            delay: Seconds before the entry becomes available
            attempts: Maximum deliveries (defaults to the queue policy)
        """

    @abstractmethod
    def claim(self) -> Optional[QueueEntry]:
        """
        Take the next available entry and mark it active.

        Returns None when nothing is available or the queue is paused.
        """

    @abstractmethod
    def update_progress(self, entry_id: str, progress: int) -> None:
        """Record the progress (0-100) of an active entry and refresh its heartbeat."""

    @abstractmethod
    def heartbeat(self, entry_id: str) -> None:
        """Mark an active entry as still being worked on."""

    @abstractmethod
    def complete(self, entry_id: str, return_value: Any = None) -> QueueEntry:
        """Mark an active entry completed."""

    @abstractmethod
    def fail(self, entry_id: str, reason: str) -> QueueEntry:
        """
        Record a failed attempt.

        The entry is delayed by the backoff policy while attempts remain,
        and moves to failed once they are exhausted.
        """

    @abstractmethod
    def get(self, entry_id: str) -> Optional[QueueEntry]:
        """Return the entry or None."""

    @abstractmethod
    def list_entries(self, state: str, limit: Optional[int] = DEFAULT_JOB_LIMIT) -> list[QueueEntry]:
        """Entries in one state; waiting/delayed in dequeue order, others newest first."""

    @abstractmethod
    def counts(self) -> dict[str, int]:
        """Number of entries per state."""

    @abstractmethod
    def remove(self, entry_id: str) -> bool:
        """Delete one entry; False if it did not exist."""

    @abstractmethod
    def retry(self, entry_id: str) -> QueueEntry:
        """
        Put a failed entry back to waiting, granting it one more attempt.

        Raises:
            QueueError: If the entry does not exist or is not failed
        """

    @abstractmethod
    def requeue_stalled(self, stalled_after: float) -> int:
        """
        Return active entries whose last heartbeat (or claim, before the
        first heartbeat) is older than `stalled_after` seconds to waiting,
        or to failed when their attempts are exhausted.

        Returns:
            Number of entries recovered
        """

    @abstractmethod
    def pause(self) -> None:
        """Stop handing out entries; active ones run to completion."""

    @abstractmethod
    def resume(self) -> None:
        """Resume handing out entries."""

    @abstractmethod
    def is_paused(self) -> bool:
        """Whether the queue is paused."""

    def close(self) -> None:
        """Release resources held by the queue."""

    # Shared operations

    def get_stats(self) -> dict[str, Any]:
        counts = self.counts()
        stats: dict[str, Any] = {state: counts.get(state, 0) for state in STATES}
        stats["paused"] = self.is_paused()
        stats["total"] = stats[WAITING] + stats[ACTIVE] + stats[DELAYED]
        return stats

    def check_health(self) -> dict[str, Any]:
        """
        Queue health for monitoring.

        Returns:
            {"is_healthy": True, "stats": {...}} or
            {"is_healthy": False, "error": "..."} when the backend is unreachable
        """
        try:
            stats = self.get_stats()
        except Exception as e:
            logger.error(
                "Queue health check failed",
                extra={"queue": self.name, "error": str(e), "error_type": type(e).__name__},
            )
            return {"is_healthy": False, "error": str(e)}

        stats.pop("paused", None)
        return {"is_healthy": True, "stats": stats}

    def get_jobs(self, state: str, limit: int = DEFAULT_JOB_LIMIT) -> list[dict[str, Any]]:
        """Entries in one state as plain mappings."""
        validate_state(state)
        return [entry.to_dict() for entry in self.list_entries(state, limit)]

    def clean_completed(self) -> int:
        """Remove every completed entry; returns the number removed."""
        return self._clean(COMPLETED)

    def clean_failed(self) -> int:
        """Remove every failed entry; returns the number removed."""
        return self._clean(FAILED)

    def _clean(self, state: str) -> int:
        removed = 0
        for entry in self.list_entries(state, limit=None):
            try:
                if self.remove(entry.id):
                    removed += 1
            except QueueError as e:
                logger.warning(
                    "Failed to remove queue entry",
                    extra={"queue": self.name, "entry_id": entry.id, "error": str(e)},
                )

        logger.info(
            "Queue entries cleaned",
            extra={"queue": self.name, "state": state, "removed": removed},
        )
        return removed
