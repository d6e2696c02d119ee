"""
Batch Processor

Drives the upsert engine over every draft of one run.

Drafts are split into fixed-size batches processed one after the other;
the records of a batch run concurrently on a thread pool and every future
is awaited, so one failing record never cancels its siblings.

Failure handling:
- ValidationError / StoreError: the record is counted as failed and
  sampled; the run goes on
- anything else is systemic: the batch settles, then the first such
  exception is re-raised to fail the run
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..feed_normalizer.models import JobDraft
from ..store.base import JobStore, StoreError
from .models import SAMPLE_LIMIT, ImportStatistics
from .upsert import UpsertResult, ValidationError, upsert_job

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

PROGRESS_AFTER_FETCH = 30
PROGRESS_BATCH_SPAN = 60

FAILED_REASON_LIMIT = 500
FAILED_SOURCE_ID_LIMIT = 200
FAILED_TITLE_LIMIT = 100

ProgressCallback = Callable[[int, int, int], None]


def batch_progress(batch_index: int, total_batches: int) -> int:
    """
    Progress percentage after batch `batch_index` (0-based) completes.

    Examples:
        >>> [batch_progress(i, 3) for i in range(3)]
        [50, 70, 90]
    """
    return round(PROGRESS_AFTER_FETCH + (batch_index + 1) / total_batches * PROGRESS_BATCH_SPAN)


@dataclass
class BatchResult:
    statistics: ImportStatistics = field(default_factory=ImportStatistics)
    new_jobs: list[dict[str, Any]] = field(default_factory=list)
    updated_jobs: list[dict[str, Any]] = field(default_factory=list)
    failed_jobs: list[dict[str, Any]] = field(default_factory=list)
    batches: int = 0

    def record_success(self, result: UpsertResult) -> None:
        sample = {"job_id": result.job_id, "title": result.title, "company": result.company}
        if result.is_new:
            self.statistics.new += 1
            samples = self.new_jobs
        else:
            self.statistics.updated += 1
            samples = self.updated_jobs
        if len(samples) < SAMPLE_LIMIT:
            samples.append(sample)

    def record_failure(self, draft: JobDraft, error: Exception) -> None:
        self.statistics.failed += 1
        if len(self.failed_jobs) >= SAMPLE_LIMIT:
            return

        source_id = getattr(error, "source_id", None) or draft.source_id
        title = getattr(error, "title", None) or draft.title
        self.failed_jobs.append(
            {
                "source_id": (str(source_id) if source_id else "unknown")[:FAILED_SOURCE_ID_LIMIT],
                "title": (title or "unknown")[:FAILED_TITLE_LIMIT],
                "reason": str(error)[:FAILED_REASON_LIMIT],
            }
        )


class BatchProcessor:
    """
    Bounded-concurrency merge of drafts into a store.

    Usage:
        processor = BatchProcessor(store, batch_size=50)
        result = processor.process(drafts, run.id, on_progress=report)
    """

    def __init__(self, store: JobStore, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size

    def process(
        self,
        drafts: list[JobDraft],
        import_run_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Merge every draft.

        Args:
            drafts: Drafts in source order
            import_run_id: Run id stamped on every record
            on_progress: Called after each batch with (progress, processed, total)

        Returns:
            BatchResult with statistics.total == len(drafts)

        Raises:
            Exception: The first systemic (non-record) error of a batch
        """
        total = len(drafts)
        result = BatchResult()
        result.statistics.total = total
        total_batches = math.ceil(total / self.batch_size)
        result.batches = total_batches

        for index in range(total_batches):
            start = index * self.batch_size
            end = min(start + self.batch_size, total)
            self._process_batch(drafts[start:end], import_run_id, result)

            progress = batch_progress(index, total_batches)
            logger.info(
                "Batch processed",
                extra={
                    "import_run_id": import_run_id,
                    "batch": index + 1,
                    "batches": total_batches,
                    "processed": end,
                    "total": total,
                    "progress": progress,
                },
            )
            if on_progress is not None:
                on_progress(progress, end, total)

        return result

    def _process_batch(self, batch: list[JobDraft], import_run_id: str, result: BatchResult) -> None:
        with ThreadPoolExecutor(
            max_workers=len(batch), thread_name_prefix="upsert"
        ) as executor:
            futures = [executor.submit(upsert_job, self.store, draft, import_run_id) for draft in batch]
            wait(futures)

        systemic: Optional[BaseException] = None
        for draft, future in zip(batch, futures):
            error = future.exception()
            if error is None:
                result.record_success(future.result())
            elif isinstance(error, (ValidationError, StoreError)):
                result.record_failure(draft, error)
                logger.warning(
                    "Failed to process job",
                    extra={
                        "import_run_id": import_run_id,
                        "source_id": draft.source_id,
                        "error": str(error),
                        "error_type": type(error).__name__,
                    },
                )
            elif systemic is None:
                systemic = error

        if systemic is not None:
            logger.error(
                "Systemic error during batch",
                extra={
                    "import_run_id": import_run_id,
                    "error": str(systemic),
                    "error_type": type(systemic).__name__,
                },
            )
            raise systemic
