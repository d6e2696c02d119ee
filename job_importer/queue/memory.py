"""In-process queue for tests and single-process runs."""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from .base import (
    ACTIVE,
    COMPLETED,
    DEFAULT_JOB_LIMIT,
    DELAYED,
    FAILED,
    WAITING,
    JobQueue,
    QueueEntry,
    QueueError,
    QueuePolicy,
    validate_state,
)

logger = logging.getLogger(__name__)


class InMemoryJobQueue(JobQueue):
    """
    Thread-safe JobQueue kept in a dict.

    Args:
        name: Queue name
        policy: Attempts, backoff and retention defaults
        clock: Returns the current time; tests pass a fake to step through backoff
    """

    def __init__(
        self,
        name: str = "job-import",
        policy: Optional[QueuePolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(name, policy)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._entries: dict[str, QueueEntry] = {}
        self._ids = itertools.count(1)
        self._paused = False

    def add(
        self,
        name: str,
        payload: dict[str, Any],
        priority: int = 0,
        delay: float = 0,
        attempts: Optional[int] = None,
    ) -> QueueEntry:
        now = self._clock()
        with self._lock:
            entry = QueueEntry(
                id=str(next(self._ids)),
                name=name,
                payload=copy.deepcopy(payload),
                created_at=now,
                available_at=now + timedelta(seconds=delay),
                state=DELAYED if delay > 0 else WAITING,
                priority=priority,
                max_attempts=attempts or self.policy.attempts,
                backoff_seconds=self.policy.backoff_seconds,
            )
            self._entries[entry.id] = entry
            return copy.deepcopy(entry)

    def _promote_due(self, now: datetime) -> None:
        for entry in self._entries.values():
            if entry.state == DELAYED and entry.available_at <= now:
                entry.state = WAITING

    def _dequeue_order(self, entries: list[QueueEntry]) -> list[QueueEntry]:
        return sorted(entries, key=lambda entry: (entry.priority, int(entry.id)))

    def claim(self) -> Optional[QueueEntry]:
        now = self._clock()
        with self._lock:
            if self._paused:
                return None
            self._promote_due(now)
            waiting = [entry for entry in self._entries.values() if entry.state == WAITING]
            if not waiting:
                return None

            entry = self._dequeue_order(waiting)[0]
            entry.state = ACTIVE
            entry.attempts_made += 1
            entry.processed_at = now
            entry.heartbeat_at = now
            entry.finished_at = None
            return copy.deepcopy(entry)

    def _require(self, entry_id: str, state: Optional[str] = None) -> QueueEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise QueueError(f"Job {entry_id} not found")
        if state is not None and entry.state != state:
            raise QueueError(f"Job {entry_id} is not {state} (state: {entry.state})")
        return entry

    def update_progress(self, entry_id: str, progress: int) -> None:
        now = self._clock()
        with self._lock:
            entry = self._require(entry_id)
            entry.progress = max(0, min(100, int(progress)))
            entry.heartbeat_at = now

    def heartbeat(self, entry_id: str) -> None:
        now = self._clock()
        with self._lock:
            entry = self._require(entry_id)
            if entry.state == ACTIVE:
                entry.heartbeat_at = now

    def complete(self, entry_id: str, return_value: Any = None) -> QueueEntry:
        now = self._clock()
        with self._lock:
            entry = self._require(entry_id, ACTIVE)
            entry.state = COMPLETED
            entry.return_value = copy.deepcopy(return_value)
            entry.finished_at = now
            result = copy.deepcopy(entry)
            self._apply_retention(now)
            return result

    def fail(self, entry_id: str, reason: str) -> QueueEntry:
        now = self._clock()
        with self._lock:
            entry = self._require(entry_id, ACTIVE)
            entry.failed_reason = reason
            if entry.attempts_made < entry.max_attempts:
                delay = self.policy.retry_delay(entry.attempts_made, entry.backoff_seconds)
                entry.state = DELAYED
                entry.available_at = now + timedelta(seconds=delay)
            else:
                entry.state = FAILED
                entry.finished_at = now
            result = copy.deepcopy(entry)
            self._apply_retention(now)
            return result

    def _apply_retention(self, now: datetime) -> None:
        completed_cutoff = now - timedelta(seconds=self.policy.keep_completed_seconds)
        failed_cutoff = now - timedelta(seconds=self.policy.keep_failed_seconds)

        completed = sorted(
            (entry for entry in self._entries.values() if entry.state == COMPLETED),
            key=lambda entry: entry.finished_at,
            reverse=True,
        )
        for index, entry in enumerate(completed):
            if index >= self.policy.keep_completed_count or entry.finished_at < completed_cutoff:
                del self._entries[entry.id]

        for entry in list(self._entries.values()):
            if entry.state == FAILED and entry.finished_at < failed_cutoff:
                del self._entries[entry.id]

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return copy.deepcopy(entry) if entry is not None else None

    def list_entries(self, state: str, limit: Optional[int] = DEFAULT_JOB_LIMIT) -> list[QueueEntry]:
        validate_state(state)
        with self._lock:
            self._promote_due(self._clock())
            entries = [entry for entry in self._entries.values() if entry.state == state]
            if state in (WAITING, DELAYED):
                entries = self._dequeue_order(entries)
            else:
                entries.sort(key=lambda entry: int(entry.id), reverse=True)
            if limit is not None:
                entries = entries[:limit]
            return copy.deepcopy(entries)

    def counts(self) -> dict[str, int]:
        with self._lock:
            self._promote_due(self._clock())
            counts: dict[str, int] = {}
            for entry in self._entries.values():
                counts[entry.state] = counts.get(entry.state, 0) + 1
            return counts

    def remove(self, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None

    def retry(self, entry_id: str) -> QueueEntry:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise QueueError("Job not found")
            if entry.state != FAILED:
                raise QueueError("Job is not in failed state")

            entry.state = WAITING
            entry.available_at = now
            entry.failed_reason = None
            entry.finished_at = None
            entry.max_attempts = max(entry.max_attempts, entry.attempts_made + 1)
            return copy.deepcopy(entry)

    def requeue_stalled(self, stalled_after: float) -> int:
        now = self._clock()
        cutoff = now - timedelta(seconds=stalled_after)
        recovered = 0
        with self._lock:
            for entry in self._entries.values():
                last_seen = entry.heartbeat_at or entry.processed_at
                if entry.state != ACTIVE or last_seen is None or last_seen > cutoff:
                    continue
                recovered += 1
                if entry.attempts_made < entry.max_attempts:
                    entry.state = WAITING
                    entry.available_at = now
                else:
                    entry.state = FAILED
                    entry.failed_reason = "job stalled more than allowable limit"
                    entry.finished_at = now
                logger.warning(
                    "Stalled queue entry recovered",
                    extra={"queue": self.name, "entry_id": entry.id, "state": entry.state},
                )
        return recovered

    def pause(self) -> None:
        with self._lock:
            self._paused = True
        logger.info("Queue paused", extra={"queue": self.name})

    def resume(self) -> None:
        with self._lock:
            self._paused = False
        logger.info("Queue resumed", extra={"queue": self.name})

    def is_paused(self) -> bool:
        with self._lock:
            return self._paused
