"""
Upsert Engine

Validates one JobDraft, fills the defaults every stored record carries and
merges it into the store by its natural key (source_id, source_name).
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..feed_normalizer.extract import DEFAULT_COMPANY, DEFAULT_LOCATION
from ..feed_normalizer.models import JobDraft
from ..store.base import JobStore
from .models import utcnow

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when a draft lacks a field required to store it."""

    def __init__(self, message: str, source_id: Optional[str] = None, title: Optional[str] = None):
        self.source_id = source_id
        self.title = title
        super().__init__(message)


@dataclass(frozen=True)
class UpsertResult:
    job_id: str
    title: str
    company: str
    is_new: bool


def validate_draft(draft: JobDraft) -> str:
    """
    Check the fields the natural key and listing depend on.

    Returns:
        source_id coerced to a string

    Raises:
        ValidationError: If source_id, title or source is missing
    """
    source_id = "" if draft.source_id is None else str(draft.source_id).strip()
    title = (draft.title or "").strip()

    if not source_id or not title or draft.source is None or not draft.source.name:
        raise ValidationError(
            "Missing required fields: sourceId, title, or source",
            source_id=source_id or None,
            title=title or None,
        )
    return source_id


def prepare_record(draft: JobDraft, source_id: str, import_run_id: str) -> dict[str, Any]:
    """Stored representation of a validated draft, with defaults applied."""
    return {
        "source_id": source_id,
        "source_name": draft.source.name,
        "source_feed_url": draft.source.url,
        "title": draft.title.strip(),
        "description": draft.description or "",
        "company": draft.company or DEFAULT_COMPANY,
        "location": draft.location or DEFAULT_LOCATION,
        "categories": list(draft.categories or []),
        "job_type": draft.job_type,
        "salary": draft.salary.to_dict() if draft.salary else None,
        "source_url": draft.source_url or "",
        "apply_url": draft.apply_url or draft.source_url or "",
        "published_date": draft.published_date or utcnow(),
        "expiry_date": draft.expiry_date,
        "raw_data": draft.raw_data,
        "status": "active",
        "last_import_id": import_run_id,
    }


def upsert_job(store: JobStore, draft: JobDraft, import_run_id: str) -> UpsertResult:
    """
    Validate and merge one draft.

    Args:
        store: Target store
        draft: Normalized job
        import_run_id: Run recorded as the record's last_import_id

    Returns:
        UpsertResult; is_new is False when the natural key already existed

    Raises:
        ValidationError: If required fields are missing
        StoreError: If the store write fails
    """
    source_id = validate_draft(draft)
    record = prepare_record(draft, source_id, import_run_id)
    job_id, is_new = store.upsert_job(record)

    logger.debug(
        "Job upserted",
        extra={
            "job_id": job_id,
            "source_id": source_id,
            "source_name": record["source_name"],
            "is_new": is_new,
        },
    )
    return UpsertResult(job_id=job_id, title=record["title"], company=record["company"], is_new=is_new)
