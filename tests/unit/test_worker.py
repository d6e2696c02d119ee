"""
Unit tests for the import job processor.

The feed fetch is replaced by a function that parses a fixture body, so
the whole pipeline (parse, normalize, upsert, classify, events) runs
without network access.
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from job_importer.common.db import DatabaseError
from job_importer.feed_normalizer.fetcher import FetchError
from job_importer.feed_normalizer.normalize import parse_job_feed
from job_importer.importer.models import ImportRun, ImportRunError, ImportStatus, InvalidTransitionError
from job_importer.importer.trigger import enqueue_import
from job_importer.importer.worker import IMPORT_JOB_NAME, ImportJobProcessor
from job_importer.notifier.base import ImportCompleteEvent, ImportFailedEvent, ImportProgressEvent
from job_importer.queue.base import QueueEntry
from job_importer.queue.worker_pool import WorkerPool
from job_importer.store.base import StoreError
from job_importer.store.memory import InMemoryJobStore


def _feed(body: str):
    """Fetch replacement returning the drafts of a fixed body."""

    def fetch(source_url, timeout):
        return parse_job_feed(body, source_url)

    return fetch


def _pending_run(store, source_url) -> ImportRun:
    run = ImportRun(source_url=source_url)
    store.create_import_run(run)
    return run


class TestSuccessfulImport:
    """Runs that reach classification."""

    def test_partial_run_with_one_invalid_item(self, store, publisher, rss_feed, rss_feed_url):
        """Three items, one without a title: 2 new, 1 failed -> partial."""
        run = _pending_run(store, rss_feed_url)
        processor = ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed))

        result = processor.process(rss_feed_url, run.id)

        assert result["success"] is True
        assert result["status"] == "partial"
        assert result["statistics"] == {"total": 3, "new": 2, "updated": 0, "failed": 1}

        stored = store.get_import_run(run.id)
        assert stored.status is ImportStatus.PARTIAL
        assert stored.total_fetched == 3
        assert stored.total_imported == 2
        assert stored.failed_jobs[0]["source_id"] == "jobicy-1003"
        assert stored.failed_jobs[0]["title"] == "unknown"
        assert stored.duration_ms is not None
        assert store.count_jobs() == 2

    def test_records_reference_the_run(self, store, publisher, rss_feed, rss_feed_url):
        run = _pending_run(store, rss_feed_url)

        ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed)).process(rss_feed_url, run.id)

        assert store.get_job("jobicy-1001", "jobicy.com")["last_import_id"] == run.id

    def test_replay_updates_every_record(self, store, publisher, generic_feed, generic_feed_url):
        processor = ImportJobProcessor(store, publisher=publisher, fetch=_feed(generic_feed))

        first = processor.process(generic_feed_url, _pending_run(store, generic_feed_url).id)
        second = processor.process(generic_feed_url, _pending_run(store, generic_feed_url).id)

        assert first["statistics"] == {"total": 2, "new": 2, "updated": 0, "failed": 0}
        assert second["statistics"] == {"total": 2, "new": 0, "updated": 2, "failed": 0}
        assert second["status"] == "completed"
        assert store.count_jobs() == 2
        assert store.get_job("4711", "jobs.example.org")["import_count"] == 2

    def test_empty_feed_is_classified_failed(self, store, publisher, rss_feed_url):
        run = _pending_run(store, rss_feed_url)
        processor = ImportJobProcessor(
            store, publisher=publisher, fetch=_feed("<rss><channel></channel></rss>")
        )

        result = processor.process(rss_feed_url, run.id)

        assert result["status"] == "failed"
        assert store.get_import_run(run.id).status is ImportStatus.FAILED
        assert publisher.names()[-1] == "import:complete"

    def test_progress_and_events(self, store, publisher, rss_feed, rss_feed_url):
        run = _pending_run(store, rss_feed_url)
        reported = []

        ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed)).process(
            rss_feed_url, run.id, report_progress=reported.append
        )

        assert reported == [10, 30, 90, 100]
        assert publisher.names() == ["import:progress", "import:progress", "import:complete"]

        started, batch, complete = publisher.events
        assert started == ImportProgressEvent(
            import_run_id=run.id, progress=10, message=f"Starting import from {rss_feed_url}"
        )
        assert (batch.progress, batch.processed, batch.total) == (90, 3, 3)
        assert complete == ImportCompleteEvent(
            import_run_id=run.id,
            status="partial",
            statistics={"total": 3, "new": 2, "updated": 0, "failed": 1},
        )

    def test_processing_details(self, store, publisher, rss_feed, rss_feed_url):
        run = _pending_run(store, rss_feed_url)

        ImportJobProcessor(store, publisher=publisher, batch_size=2, fetch=_feed(rss_feed)).process(
            rss_feed_url, run.id, attempt=1
        )

        details = store.get_import_run(run.id).processing_details
        assert details["batch_size"] == 2
        assert details["concurrency"] == 2
        assert details["attempt"] == 1
        assert {"fetch_seconds", "processing_seconds", "total_seconds"} <= set(details)

    def test_fetch_receives_timeout(self, store, publisher, rss_feed_url):
        fetch = Mock(return_value=[])
        run = _pending_run(store, rss_feed_url)

        ImportJobProcessor(store, publisher=publisher, fetch_timeout=12, fetch=fetch).process(
            rss_feed_url, run.id
        )

        fetch.assert_called_once_with(rss_feed_url, timeout=12)


class TestFailedImport:
    """Systemic errors fail the run and propagate."""

    def test_fetch_failure(self, store, publisher, rss_feed_url):
        run = _pending_run(store, rss_feed_url)
        fetch = Mock(side_effect=FetchError("Feed returned HTTP 503", rss_feed_url, 503))
        processor = ImportJobProcessor(store, publisher=publisher, fetch=fetch)

        with pytest.raises(FetchError):
            processor.process(rss_feed_url, run.id)

        stored = store.get_import_run(run.id)
        assert stored.status is ImportStatus.FAILED
        assert stored.errors[0]["type"] == "import_error"
        assert stored.errors[0]["message"] == "Feed returned HTTP 503"
        assert stored.errors[0]["data"] == {"source_url": rss_feed_url}
        assert publisher.names() == ["import:progress", "import:failed"]
        assert publisher.events[-1] == ImportFailedEvent(
            import_run_id=run.id, error="Feed returned HTTP 503"
        )

    def test_systemic_batch_error(self, publisher, rss_feed, rss_feed_url):
        class BrokenStore(InMemoryJobStore):
            def upsert_job(self, record):
                raise RuntimeError("connection pool closed")

        store = BrokenStore()
        run = _pending_run(store, rss_feed_url)

        with pytest.raises(RuntimeError, match="connection pool closed"):
            ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed)).process(
                rss_feed_url, run.id
            )

        assert store.get_import_run(run.id).status is ImportStatus.FAILED

    def test_database_outage_is_systemic(self, publisher, rss_feed, rss_feed_url):
        """An unreachable database fails the run instead of every record."""

        class UnreachableStore(InMemoryJobStore):
            def upsert_job(self, record):
                raise DatabaseError("Database unavailable: server closed the connection unexpectedly")

        store = UnreachableStore()
        run = _pending_run(store, rss_feed_url)

        with pytest.raises(DatabaseError, match="server closed the connection"):
            ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed)).process(
                rss_feed_url, run.id
            )

        stored = store.get_import_run(run.id)
        assert stored.status is ImportStatus.FAILED
        assert stored.statistics.failed == 0
        assert stored.failed_jobs == []
        assert len(stored.errors) == 1
        assert publisher.names()[-1] == "import:failed"

    def test_database_outage_retries_queue_entry(self, queue, publisher, rss_feed, rss_feed_url):
        class UnreachableStore(InMemoryJobStore):
            def upsert_job(self, record):
                raise DatabaseError("Database unavailable: connection refused")

        store = UnreachableStore()
        processor = ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed))
        queued = enqueue_import(store, queue, rss_feed_url)

        WorkerPool(queue, {IMPORT_JOB_NAME: processor}).drain()

        entry = queue.get(queued.queue_entry_id)
        assert entry.state == "delayed"
        assert "connection refused" in entry.failed_reason

    def test_original_error_survives_failed_save(self, publisher, rss_feed, rss_feed_url):
        class DownStore(InMemoryJobStore):
            def upsert_job(self, record):
                raise DatabaseError("Database unavailable")

            def save_import_run(self, run):
                if run.status is ImportStatus.FAILED:
                    raise StoreError("Failed to save import run: connection refused")
                super().save_import_run(run)

        store = DownStore()
        run = _pending_run(store, rss_feed_url)

        with pytest.raises(DatabaseError):
            ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed)).process(
                rss_feed_url, run.id
            )

    def test_missing_run(self, store, publisher, rss_feed_url):
        processor = ImportJobProcessor(store, publisher=publisher, fetch=Mock())

        with pytest.raises(ImportRunError, match="not found"):
            processor.process(rss_feed_url, "missing")

        assert publisher.names() == ["import:failed"]
        processor.fetch.assert_not_called()

    def test_failed_run_is_not_restarted_without_redelivery(self, store, publisher, rss_feed, rss_feed_url):
        run = _pending_run(store, rss_feed_url)
        run.fail(RuntimeError("earlier failure"))
        store.save_import_run(run)

        with pytest.raises(InvalidTransitionError):
            ImportJobProcessor(store, publisher=publisher, fetch=_feed(rss_feed)).process(
                rss_feed_url, run.id
            )

        stored = store.get_import_run(run.id)
        assert stored.status is ImportStatus.FAILED
        assert len(stored.errors) == 1


class TestRedelivery:
    """Queue retries hand the same run out again."""

    def test_second_attempt_reuses_the_run(self, store, publisher, generic_feed, generic_feed_url):
        run = _pending_run(store, generic_feed_url)
        flaky = Mock(
            side_effect=[
                FetchError("timeout", generic_feed_url),
                parse_job_feed(generic_feed, generic_feed_url),
            ]
        )
        processor = ImportJobProcessor(store, publisher=publisher, fetch=flaky)

        with pytest.raises(FetchError):
            processor.process(generic_feed_url, run.id, attempt=1)
        result = processor.process(generic_feed_url, run.id, attempt=2, redelivery=True)

        stored = store.get_import_run(run.id)
        assert result["status"] == "completed"
        assert stored.status is ImportStatus.COMPLETED
        assert stored.processing_details["attempt"] == 2
        assert len(stored.errors) == 1

    def test_finished_run_is_not_imported_again(self, store, publisher, rss_feed, rss_feed_url):
        """The run finished but the entry was never acknowledged."""
        run = _pending_run(store, rss_feed_url)
        fetch = Mock(side_effect=_feed(rss_feed))
        processor = ImportJobProcessor(store, publisher=publisher, fetch=fetch)
        first = processor.process(rss_feed_url, run.id, attempt=1)
        events = len(publisher.events)
        reported = []

        again = processor.process(
            rss_feed_url, run.id, attempt=2, redelivery=True, report_progress=reported.append
        )

        assert again == first
        assert again["status"] == "partial"
        assert fetch.call_count == 1
        assert len(publisher.events) == events
        assert reported == [100]
        assert store.count_jobs() == 2

    def test_queue_entry_call(self, store, publisher, generic_feed, generic_feed_url):
        run = _pending_run(store, generic_feed_url)
        now = datetime.now(timezone.utc)
        entry = QueueEntry(
            id="1",
            name=IMPORT_JOB_NAME,
            payload={"source_url": generic_feed_url, "import_run_id": run.id},
            created_at=now,
            available_at=now,
            attempts_made=1,
        )
        reported = []

        result = ImportJobProcessor(store, publisher=publisher, fetch=_feed(generic_feed))(
            entry, reported.append
        )

        assert result["import_run_id"] == run.id
        assert reported[-1] == 100


# ============================================================================
# Mark all tests as unit tests
# ============================================================================

pytestmark = pytest.mark.unit
