"""
Import Job Processor

Queue handler that executes one import run end to end:

1. Load the run and move it to processing (progress 10)
2. Fetch and normalize the feed, record total_fetched (progress 30)
3. Merge the drafts batch by batch (progress 30 -> 90)
4. Classify and close the run (progress 100)

Any exception outside per-record failures marks the run failed, publishes
an `import:failed` event and is re-raised so the queue fails the attempt
and applies its retry policy.
"""

import logging
import time
from typing import Any, Callable, Optional

from ..common.db import DatabaseError
from ..feed_normalizer.fetcher import FETCH_TIMEOUT_SECONDS
from ..feed_normalizer.models import JobDraft
from ..feed_normalizer.normalize import fetch_and_parse_feed
from ..notifier.base import (
    EventPublisher,
    ImportCompleteEvent,
    ImportFailedEvent,
    ImportProgressEvent,
    Notifier,
)
from ..store.base import JobStore, StoreError
from .batch import DEFAULT_BATCH_SIZE, PROGRESS_AFTER_FETCH, BatchProcessor, BatchResult
from .models import ImportRun, ImportRunError, ImportStatus

logger = logging.getLogger(__name__)

IMPORT_JOB_NAME = "import-jobs"

PROGRESS_STARTED = 10
PROGRESS_DONE = 100

FeedFetcher = Callable[..., list[JobDraft]]


def _no_progress(progress: int) -> None:
    pass


class ImportJobProcessor:
    """
    Handler for `import-jobs` queue entries.

    Usage:
        processor = ImportJobProcessor(store, publisher=notifier, batch_size=50)
        pool = WorkerPool(queue, {IMPORT_JOB_NAME: processor})
    """

    def __init__(
        self,
        store: JobStore,
        publisher: Optional[EventPublisher] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        fetch: FeedFetcher = fetch_and_parse_feed,
    ):
        self.store = store
        self.publisher = publisher or Notifier()
        self.batch_processor = BatchProcessor(store, batch_size=batch_size)
        self.fetch_timeout = fetch_timeout
        self.fetch = fetch

    def __call__(self, entry: Any, report_progress: Callable[[int], None] = _no_progress) -> dict[str, Any]:
        payload = entry.payload
        return self.process(
            source_url=payload["source_url"],
            import_run_id=payload["import_run_id"],
            attempt=entry.attempts_made,
            redelivery=entry.is_redelivery,
            report_progress=report_progress,
        )

    def process(
        self,
        source_url: str,
        import_run_id: str,
        attempt: int = 1,
        redelivery: bool = False,
        report_progress: Callable[[int], None] = _no_progress,
    ) -> dict[str, Any]:
        """
        Run one import.

        Args:
            source_url: Feed to import
            import_run_id: Run created by the trigger
            attempt: Delivery number of the queue entry (1-based)
            redelivery: Whether the queue handed this entry out before
            report_progress: Receives the queue progress (0-100)

        Returns:
            Summary stored as the queue entry's return value

        Raises:
            ImportRunError: If the run does not exist or cannot start
            FetchError / ParseError: If the feed cannot be read
            Exception: Any systemic error raised while merging
        """
        run: Optional[ImportRun] = None
        started = time.monotonic()

        try:
            run = self.store.get_import_run(import_run_id)
            if run is None:
                raise ImportRunError(f"Import run {import_run_id} not found")

            # finished before the queue entry was acknowledged
            if redelivery and run.status in (ImportStatus.COMPLETED, ImportStatus.PARTIAL):
                logger.warning(
                    "Import run already finished, skipping redelivered entry",
                    extra={"import_run_id": run.id, "status": run.status.value, "attempt": attempt},
                )
                report_progress(PROGRESS_DONE)
                return self._result(run)

            run.start(redelivery=redelivery)
            run.processing_details = {
                "batch_size": self.batch_processor.batch_size,
                # a whole batch runs in parallel
                "concurrency": self.batch_processor.batch_size,
                "attempt": attempt,
            }
            self.store.save_import_run(run)

            self.publisher.publish(
                ImportProgressEvent(
                    import_run_id=run.id,
                    progress=PROGRESS_STARTED,
                    message=f"Starting import from {source_url}",
                )
            )
            report_progress(PROGRESS_STARTED)

            logger.info(f"Fetching jobs from: {source_url}", extra={"import_run_id": run.id})
            fetch_started = time.monotonic()
            drafts = self.fetch(source_url, timeout=self.fetch_timeout)
            run.processing_details["fetch_seconds"] = round(time.monotonic() - fetch_started, 3)

            run.record_fetched(len(drafts))
            self.store.save_import_run(run)
            report_progress(PROGRESS_AFTER_FETCH)

            def on_progress(progress: int, processed: int, total: int) -> None:
                report_progress(progress)
                self.publisher.publish(
                    ImportProgressEvent(
                        import_run_id=run.id,
                        progress=progress,
                        processed=processed,
                        total=total,
                    )
                )

            processing_started = time.monotonic()
            result = self.batch_processor.process(drafts, run.id, on_progress=on_progress)
            run.processing_details["processing_seconds"] = round(
                time.monotonic() - processing_started, 3
            )

            self._apply_result(run, result)
            status = run.finish()
            run.processing_details["total_seconds"] = round(time.monotonic() - started, 3)
            self.store.save_import_run(run)
            report_progress(PROGRESS_DONE)

        except Exception as e:
            logger.error(
                "Import job failed",
                extra={
                    "import_run_id": import_run_id,
                    "source_url": source_url,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            self._record_failure(run, e, source_url)
            self.publisher.publish(ImportFailedEvent(import_run_id=import_run_id, error=str(e)))
            raise

        statistics = run.statistics.to_dict()
        self.publisher.publish(
            ImportCompleteEvent(import_run_id=run.id, status=status.value, statistics=statistics)
        )
        logger.info(
            f"Import completed: {statistics['new']} new, {statistics['updated']} updated, "
            f"{statistics['failed']} failed",
            extra={"import_run_id": run.id, "status": status.value},
        )

        return self._result(run)

    @staticmethod
    def _result(run: ImportRun) -> dict[str, Any]:
        return {
            "success": True,
            "import_run_id": run.id,
            "status": run.status.value,
            "statistics": run.statistics.to_dict(),
            "duration_ms": run.duration_ms,
        }

    @staticmethod
    def _apply_result(run: ImportRun, result: BatchResult) -> None:
        run.statistics = result.statistics
        run.new_jobs = result.new_jobs
        run.updated_jobs = result.updated_jobs
        run.failed_jobs = result.failed_jobs

    def _record_failure(self, run: Optional[ImportRun], error: Exception, source_url: str) -> None:
        if run is None or run.status not in (ImportStatus.PENDING, ImportStatus.PROCESSING):
            return
        run.fail(error, context={"source_url": source_url})
        try:
            self.store.save_import_run(run)
        except (StoreError, DatabaseError) as e:
            # the original error is re-raised by the caller
            logger.error(
                "Could not record import failure",
                extra={"import_run_id": run.id, "error": str(e)},
            )
