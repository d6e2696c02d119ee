"""
Import pipeline.

- models: ImportRun state machine and statistics
- upsert: validation and natural-key merge of one draft
- batch: bounded-concurrency processing of all drafts of a run
- worker: queue handler executing one run
- trigger: run creation and enqueueing, operator retry
"""

# models first: the store package imports it
from .models import (
    ImportRun,
    ImportRunError,
    ImportStatistics,
    ImportStatus,
    InvalidTransitionError,
    classify_run,
)
from .upsert import UpsertResult, ValidationError, upsert_job
from .batch import BatchProcessor, BatchResult
from .worker import IMPORT_JOB_NAME, ImportJobProcessor
from .trigger import EnqueueResult, enqueue_all, enqueue_import, retry_import_run

__all__ = [
    "IMPORT_JOB_NAME",
    "BatchProcessor",
    "BatchResult",
    "EnqueueResult",
    "ImportJobProcessor",
    "ImportRun",
    "ImportRunError",
    "ImportStatistics",
    "ImportStatus",
    "InvalidTransitionError",
    "UpsertResult",
    "ValidationError",
    "classify_run",
    "enqueue_all",
    "enqueue_import",
    "retry_import_run",
    "upsert_job",
]
