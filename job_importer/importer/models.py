"""
Import Run Model

One ImportRun records a single "fetch and merge one feed" execution: its
lifecycle, the statistics of the merge, bounded samples of the affected
records and a diagnostic error log.

Lifecycle:
    pending -> processing -> completed | partial | failed

A run only re-enters processing from failed (or from processing) when the
queue redelivers the same entry, either as a retry attempt or after a
stalled worker was detected. Operator retries create a new run instead.
"""

from __future__ import annotations

import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

SAMPLE_LIMIT = 100
ERROR_MESSAGE_LIMIT = 1000
ERROR_STACK_LIMIT = 2000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.PARTIAL)


class ImportRunError(Exception):
    """Raised when an import run is used in a way its state does not allow."""
    pass


class InvalidTransitionError(ImportRunError):
    """Raised on a lifecycle transition the state machine does not define."""

    def __init__(self, run_id: str, current: ImportStatus, target: ImportStatus):
        self.run_id = run_id
        self.current = current
        self.target = target
        super().__init__(
            f"Import run {run_id} cannot move from {current.value} to {target.value}"
        )


@dataclass
class ImportStatistics:
    total: int = 0
    new: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def imported(self) -> int:
        return self.new + self.updated

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ImportStatistics":
        data = data or {}
        return cls(
            total=int(data.get("total", 0)),
            new=int(data.get("new", 0)),
            updated=int(data.get("updated", 0)),
            failed=int(data.get("failed", 0)),
        )


def classify_run(statistics: ImportStatistics) -> ImportStatus:
    """
    Final status of a processed run.

    - nothing failed and something was imported -> completed
    - some records failed and something was imported -> partial
    - nothing imported (including an empty feed) -> failed
    """
    imported = statistics.imported
    if imported == 0:
        return ImportStatus.FAILED
    if statistics.failed == 0:
        return ImportStatus.COMPLETED
    return ImportStatus.PARTIAL


def success_rate(statistics: ImportStatistics) -> int:
    """Percentage of records that did not fail, 0 for an empty run."""
    if statistics.total == 0:
        return 0
    return round((statistics.total - statistics.failed) / statistics.total * 100)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class ImportRun:
    """Persistent record of one import execution."""

    source_url: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    queue_job_id: Optional[str] = None
    status: ImportStatus = ImportStatus.PENDING
    import_date_time: datetime = field(default_factory=utcnow)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    total_fetched: int = 0
    statistics: ImportStatistics = field(default_factory=ImportStatistics)
    new_jobs: list[dict[str, Any]] = field(default_factory=list)
    updated_jobs: list[dict[str, Any]] = field(default_factory=list)
    failed_jobs: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    processing_details: dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total_imported(self) -> int:
        return self.statistics.imported

    @property
    def success_rate(self) -> int:
        return success_rate(self.statistics)

    def _transition(self, target: ImportStatus, allowed: tuple[ImportStatus, ...]) -> None:
        if self.status not in allowed:
            raise InvalidTransitionError(self.id, self.status, target)
        self.status = target

    def start(self, redelivery: bool = False, now: Optional[datetime] = None) -> None:
        """
        Enter processing.

        Args:
            redelivery: True when the queue hands the same entry out again
                        (retry attempt or stalled-entry recovery)
            now: Start time (defaults to the current UTC time)

        Raises:
            InvalidTransitionError: If the run is not pending, or not
                failed/processing on a redelivery
        """
        allowed: tuple[ImportStatus, ...] = (ImportStatus.PENDING,)
        if redelivery:
            allowed += (ImportStatus.FAILED, ImportStatus.PROCESSING)
        self._transition(ImportStatus.PROCESSING, allowed)

        self.start_time = now or utcnow()
        self.end_time = None
        self.duration_ms = None
        self.total_fetched = 0
        self.statistics = ImportStatistics()
        self.new_jobs = []
        self.updated_jobs = []
        self.failed_jobs = []

    def record_fetched(self, count: int) -> None:
        if self.status is not ImportStatus.PROCESSING:
            raise ImportRunError(f"Import run {self.id} is not processing")
        self.total_fetched = count

    def _close(self, now: Optional[datetime]) -> None:
        self.end_time = now or utcnow()
        if self.start_time is not None:
            self.duration_ms = int((self.end_time - self.start_time).total_seconds() * 1000)

    def finish(self, now: Optional[datetime] = None) -> ImportStatus:
        """
        Classify a processed run and close it.

        Returns:
            The final status (completed, partial or failed)
        """
        target = classify_run(self.statistics)
        self._transition(target, (ImportStatus.PROCESSING,))
        self._close(now)
        return target

    def fail(
        self,
        error: BaseException,
        context: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Move to failed after a systemic error and record it."""
        self._transition(ImportStatus.FAILED, (ImportStatus.PENDING, ImportStatus.PROCESSING))
        self._close(now)
        self.add_error(error, error_type="import_error", data=context, now=now)

    def add_error(
        self,
        error: BaseException,
        error_type: str = "general",
        data: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Append a structured, truncated error entry to the run's error log."""
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        entry = {
            "timestamp": _format_datetime(now or utcnow()),
            "type": error_type,
            "message": str(error)[:ERROR_MESSAGE_LIMIT],
            "stack": stack[:ERROR_STACK_LIMIT],
            "data": data,
        }
        self.errors.append(entry)
        return entry

    def mark_retried(self, now: Optional[datetime] = None) -> None:
        """Bookkeeping on the original run when an operator re-triggers it."""
        if self.status not in (ImportStatus.FAILED, ImportStatus.PARTIAL):
            raise ImportRunError(
                f"Only failed or partial imports can be retried (status: {self.status.value})"
            )
        self.retry_count += 1
        self.last_retry_at = now or utcnow()

    def summary(self) -> dict[str, Any]:
        """Compact view without samples and errors, used for listings."""
        return {
            "id": self.id,
            "source_url": self.source_url,
            "status": self.status.value,
            "import_date_time": _format_datetime(self.import_date_time),
            "duration_ms": self.duration_ms,
            "total_fetched": self.total_fetched,
            "total_imported": self.total_imported,
            "statistics": self.statistics.to_dict(),
            "success_rate": self.success_rate,
            "retry_count": self.retry_count,
        }

    def to_record(self) -> dict[str, Any]:
        """Serializable mapping of every field (datetimes as ISO strings)."""
        return {
            "id": self.id,
            "source_url": self.source_url,
            "queue_job_id": self.queue_job_id,
            "status": self.status.value,
            "import_date_time": _format_datetime(self.import_date_time),
            "start_time": _format_datetime(self.start_time),
            "end_time": _format_datetime(self.end_time),
            "duration_ms": self.duration_ms,
            "total_fetched": self.total_fetched,
            "total_imported": self.total_imported,
            "statistics": self.statistics.to_dict(),
            "new_jobs": list(self.new_jobs),
            "updated_jobs": list(self.updated_jobs),
            "failed_jobs": list(self.failed_jobs),
            "errors": list(self.errors),
            "processing_details": dict(self.processing_details),
            "retry_count": self.retry_count,
            "last_retry_at": _format_datetime(self.last_retry_at),
            "metadata": dict(self.metadata),
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ImportRun":
        """Inverse of to_record(); accepts datetimes or ISO strings."""
        return cls(
            id=str(record["id"]),
            source_url=record["source_url"],
            queue_job_id=record.get("queue_job_id"),
            status=ImportStatus(record.get("status", ImportStatus.PENDING.value)),
            import_date_time=_parse_datetime(record.get("import_date_time")) or utcnow(),
            start_time=_parse_datetime(record.get("start_time")),
            end_time=_parse_datetime(record.get("end_time")),
            duration_ms=record.get("duration_ms"),
            total_fetched=int(record.get("total_fetched") or 0),
            statistics=ImportStatistics.from_dict(record.get("statistics")),
            new_jobs=list(record.get("new_jobs") or []),
            updated_jobs=list(record.get("updated_jobs") or []),
            failed_jobs=list(record.get("failed_jobs") or []),
            errors=list(record.get("errors") or []),
            processing_details=dict(record.get("processing_details") or {}),
            retry_count=int(record.get("retry_count") or 0),
            last_retry_at=_parse_datetime(record.get("last_retry_at")),
            metadata=dict(record.get("metadata") or {}),
        )
