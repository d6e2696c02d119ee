"""
Store interface.

A store keeps two collections: job records, unique by the natural key
(source_id, source_name), and import runs keyed by id. Both backends
(PostgreSQL and in-memory) implement JobStore; the pipeline only talks to
this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from ..importer.models import ImportRun

JOB_STATUSES = ("active", "expired", "filled", "deleted")

# Columns overwritten when an existing record is merged again
MUTABLE_JOB_FIELDS = (
    "source_feed_url",
    "title",
    "description",
    "company",
    "location",
    "categories",
    "job_type",
    "salary",
    "source_url",
    "apply_url",
    "published_date",
    "expiry_date",
    "raw_data",
    "status",
    "last_import_id",
)


class StoreError(Exception):
    """Raised when a store operation fails."""
    pass


class JobStore(ABC):
    """Persistence of job records and import runs."""

    @abstractmethod
    def upsert_job(self, record: dict[str, Any]) -> tuple[str, bool]:
        """
        Insert or merge a job record by (source_id, source_name).

        On insert the record gets import_count=1; on merge the mutable
        fields are overwritten and import_count is incremented.

        Args:
            record: Prepared job record (see MUTABLE_JOB_FIELDS plus the key)

        Returns:
            Tuple of (job_id, is_new)

        Raises:
            StoreError: If this record cannot be written (per-record failure)
            DatabaseError: If the backend itself is unavailable
        """

    @abstractmethod
    def get_job(self, source_id: str, source_name: str) -> Optional[dict[str, Any]]:
        """Return the record for a natural key, or None."""

    @abstractmethod
    def count_jobs(self) -> int:
        """Number of stored job records."""

    @abstractmethod
    def create_import_run(self, run: "ImportRun") -> None:
        """Persist a new import run."""

    @abstractmethod
    def save_import_run(self, run: "ImportRun") -> None:
        """Persist the current state of an existing import run."""

    @abstractmethod
    def get_import_run(self, run_id: str) -> Optional["ImportRun"]:
        """Return the import run with this id, or None."""

    @abstractmethod
    def recent_import_runs(self, limit: int = 10) -> list["ImportRun"]:
        """Most recent import runs first."""

    @abstractmethod
    def import_statistics(self, start: datetime, end: datetime) -> dict[str, int]:
        """
        Aggregate import runs created within [start, end].

        Returns:
            Mapping with total_imports, successful_imports, failed_imports,
            partial_imports, total_jobs_processed, new_jobs_created,
            jobs_updated and jobs_failed
        """

    @abstractmethod
    def delete_import_runs_before(self, cutoff: datetime) -> int:
        """Delete import runs created before `cutoff`; returns the number deleted."""

    def close(self) -> None:
        """Release resources held by the store."""
