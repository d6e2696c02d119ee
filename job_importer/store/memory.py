"""In-memory store used by the tests and by local runs without PostgreSQL."""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Optional

from ..importer.models import ImportRun, ImportStatus, utcnow
from .base import MUTABLE_JOB_FIELDS, JobStore, StoreError


class InMemoryJobStore(JobStore):
    """
    Thread-safe dict-backed store.

    Records and runs are deep-copied on the way in and out so callers never
    share state with the store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: dict[tuple[str, str], dict[str, Any]] = {}
        self._runs: dict[str, dict[str, Any]] = {}

    def upsert_job(self, record: dict[str, Any]) -> tuple[str, bool]:
        key = (record["source_id"], record["source_name"])
        now = utcnow()
        with self._lock:
            existing = self._jobs.get(key)
            if existing is not None:
                for name in MUTABLE_JOB_FIELDS:
                    if name in record:
                        existing[name] = copy.deepcopy(record[name])
                existing["import_count"] += 1
                existing["updated_at"] = now
                return existing["id"], False

            stored = copy.deepcopy(record)
            stored["id"] = str(uuid.uuid4())
            stored["import_count"] = 1
            stored["created_at"] = now
            stored["updated_at"] = now
            self._jobs[key] = stored
            return stored["id"], True

    def get_job(self, source_id: str, source_name: str) -> Optional[dict[str, Any]]:
        with self._lock:
            record = self._jobs.get((source_id, source_name))
            return copy.deepcopy(record) if record is not None else None

    def count_jobs(self) -> int:
        with self._lock:
            return len(self._jobs)

    def create_import_run(self, run: ImportRun) -> None:
        with self._lock:
            if run.id in self._runs:
                raise StoreError(f"Import run {run.id} already exists")
            self._runs[run.id] = copy.deepcopy(run.to_record())

    def save_import_run(self, run: ImportRun) -> None:
        with self._lock:
            if run.id not in self._runs:
                raise StoreError(f"Import run {run.id} not found")
            self._runs[run.id] = copy.deepcopy(run.to_record())

    def get_import_run(self, run_id: str) -> Optional[ImportRun]:
        with self._lock:
            record = self._runs.get(run_id)
            return ImportRun.from_record(copy.deepcopy(record)) if record else None

    def _all_runs(self) -> list[ImportRun]:
        with self._lock:
            records = copy.deepcopy(list(self._runs.values()))
        return [ImportRun.from_record(record) for record in records]

    def recent_import_runs(self, limit: int = 10) -> list[ImportRun]:
        runs = sorted(self._all_runs(), key=lambda run: run.import_date_time, reverse=True)
        return runs[:limit]

    def delete_import_runs_before(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [
                run_id
                for run_id, record in self._runs.items()
                if ImportRun.from_record(record).import_date_time < cutoff
            ]
            for run_id in expired:
                del self._runs[run_id]
        return len(expired)

    def import_statistics(self, start: datetime, end: datetime) -> dict[str, int]:
        runs = [run for run in self._all_runs() if start <= run.import_date_time <= end]
        return {
            "total_imports": len(runs),
            "successful_imports": sum(run.status is ImportStatus.COMPLETED for run in runs),
            "failed_imports": sum(run.status is ImportStatus.FAILED for run in runs),
            "partial_imports": sum(run.status is ImportStatus.PARTIAL for run in runs),
            "total_jobs_processed": sum(run.statistics.total for run in runs),
            "new_jobs_created": sum(run.statistics.new for run in runs),
            "jobs_updated": sum(run.statistics.updated for run in runs),
            "jobs_failed": sum(run.statistics.failed for run in runs),
        }
