"""
Unit tests for the in-memory job queue.

A fake clock steps through backoff delays and retention windows.
"""

import pytest

from job_importer.queue.base import QueueError, QueuePolicy
from job_importer.queue.memory import InMemoryJobQueue

NAME = "import-jobs"


def _add(queue, key, **options):
    return queue.add(NAME, {"key": key}, **options)


# ============================================================================
# Ordering
# ============================================================================


class TestOrdering:
    """Priority first, then insertion order."""

    def test_fifo_within_priority(self, queue):
        for key in ("a", "b", "c"):
            _add(queue, key)

        assert [queue.claim().payload["key"] for _ in range(3)] == ["a", "b", "c"]
        assert queue.claim() is None

    def test_lower_priority_value_first(self, queue):
        _add(queue, "normal")
        _add(queue, "urgent", priority=-1)
        _add(queue, "late", priority=5)

        assert [queue.claim().payload["key"] for _ in range(3)] == ["urgent", "normal", "late"]

    def test_claim_marks_active_and_counts_attempt(self, queue):
        added = _add(queue, "a")

        claimed = queue.claim()

        assert claimed.id == added.id
        assert claimed.state == "active"
        assert claimed.attempts_made == 1
        assert claimed.is_redelivery is False

    def test_delayed_entry_waits(self, queue, clock):
        entry = _add(queue, "later", delay=30)

        assert entry.state == "delayed"
        assert queue.claim() is None

        clock.advance(30)
        assert queue.claim().id == entry.id


# ============================================================================
# Retries and Backoff
# ============================================================================


class TestRetries:
    """Failed attempts are delayed by exponential backoff."""

    def test_backoff_then_exhaustion(self, queue, clock):
        entry = _add(queue, "flaky")

        queue.claim()
        failed = queue.fail(entry.id, "timeout")
        assert failed.state == "delayed"
        assert failed.failed_reason == "timeout"

        clock.advance(4.9)
        assert queue.claim() is None
        clock.advance(0.1)
        second = queue.claim()
        assert second.attempts_made == 2
        assert second.is_redelivery is True

        queue.fail(entry.id, "timeout")
        clock.advance(9.9)
        assert queue.claim() is None
        clock.advance(0.1)
        assert queue.claim().attempts_made == 3

        final = queue.fail(entry.id, "timeout")
        assert final.state == "failed"
        assert final.finished_at == clock.now

    def test_attempts_override(self, queue):
        entry = _add(queue, "once", attempts=1)

        queue.claim()

        assert queue.fail(entry.id, "boom").state == "failed"

    def test_fail_requires_active(self, queue):
        entry = _add(queue, "a")

        with pytest.raises(QueueError):
            queue.fail(entry.id, "boom")

    def test_complete_requires_active(self, queue):
        entry = _add(queue, "a")

        with pytest.raises(QueueError):
            queue.complete(entry.id)

    def test_complete_stores_return_value(self, queue):
        entry = _add(queue, "a")
        queue.claim()

        completed = queue.complete(entry.id, {"status": "completed"})

        assert completed.state == "completed"
        assert queue.get(entry.id).return_value == {"status": "completed"}


class TestOperatorRetry:
    """Tests for retry() of failed entries."""

    def test_unknown_entry(self, queue):
        with pytest.raises(QueueError, match="Job not found"):
            queue.retry("999")

    def test_entry_not_failed(self, queue):
        entry = _add(queue, "a")

        with pytest.raises(QueueError, match="Job is not in failed state"):
            queue.retry(entry.id)

    def test_failed_entry_gets_one_more_attempt(self, queue):
        entry = _add(queue, "a", attempts=1)
        queue.claim()
        queue.fail(entry.id, "boom")

        retried = queue.retry(entry.id)

        assert retried.state == "waiting"
        assert retried.failed_reason is None
        assert retried.max_attempts == 2

        claimed = queue.claim()
        assert claimed.attempts_made == 2
        assert queue.fail(entry.id, "boom again").state == "failed"


# ============================================================================
# Retention and Cleaning
# ============================================================================


class TestRetention:
    """Completed and failed entries are pruned as new outcomes are recorded."""

    def _finish(self, queue, key, succeed=True):
        entry = _add(queue, key, attempts=1)
        queue.claim()
        if succeed:
            return queue.complete(entry.id)
        return queue.fail(entry.id, "boom")

    def test_completed_count_limit(self, clock):
        queue = InMemoryJobQueue(policy=QueuePolicy(keep_completed_count=2), clock=clock)

        ids = []
        for key in ("a", "b", "c"):
            ids.append(self._finish(queue, key).id)
            clock.advance(1)

        assert [entry.id for entry in queue.list_entries("completed")] == [ids[2], ids[1]]

    def test_completed_age_limit(self, queue, clock):
        old = self._finish(queue, "old")
        clock.advance(24 * 3600 + 1)
        self._finish(queue, "new")

        assert queue.get(old.id) is None

    def test_failed_age_limit(self, queue, clock):
        old = self._finish(queue, "old", succeed=False)
        clock.advance(6 * 24 * 3600)
        self._finish(queue, "new", succeed=False)
        assert queue.get(old.id) is not None

        clock.advance(24 * 3600 + 1)
        self._finish(queue, "newer")
        assert queue.get(old.id) is None

    def test_clean_completed_and_failed(self, queue):
        self._finish(queue, "a")
        self._finish(queue, "b")
        self._finish(queue, "c", succeed=False)

        assert queue.clean_completed() == 2
        assert queue.clean_failed() == 1
        assert queue.get_stats()["completed"] == 0


# ============================================================================
# Administration
# ============================================================================


class TestAdministration:
    """Pause, stats, health, listings and stalled recovery."""

    def test_pause_and_resume(self, queue):
        _add(queue, "a")

        queue.pause()
        assert queue.is_paused() is True
        assert queue.claim() is None

        queue.resume()
        assert queue.claim() is not None

    def test_stats(self, queue):
        _add(queue, "a")
        _add(queue, "b")
        _add(queue, "c", delay=60)
        queue.claim()

        stats = queue.get_stats()

        assert stats == {
            "waiting": 1,
            "active": 1,
            "completed": 0,
            "failed": 0,
            "delayed": 1,
            "paused": False,
            "total": 3,
        }

    def test_health(self, queue):
        health = queue.check_health()

        assert health["is_healthy"] is True
        assert "paused" not in health["stats"]

    def test_unhealthy_when_backend_fails(self, queue, monkeypatch):
        def broken():
            raise QueueError("connection refused")

        monkeypatch.setattr(queue, "counts", broken)

        assert queue.check_health() == {"is_healthy": False, "error": "connection refused"}

    def test_get_jobs(self, queue):
        _add(queue, "a")
        _add(queue, "b")

        jobs = queue.get_jobs("waiting", limit=1)

        assert len(jobs) == 1
        assert jobs[0]["payload"] == {"key": "a"}
        assert jobs[0]["state"] == "waiting"

    def test_get_jobs_invalid_state(self, queue):
        with pytest.raises(QueueError, match="Invalid job state"):
            queue.get_jobs("running")

    def test_progress_is_clamped(self, queue):
        entry = _add(queue, "a")
        queue.claim()

        queue.update_progress(entry.id, 150)

        assert queue.get(entry.id).progress == 100

    def test_remove(self, queue):
        entry = _add(queue, "a")

        assert queue.remove(entry.id) is True
        assert queue.remove(entry.id) is False

    def test_stalled_entry_is_redelivered(self, queue, clock):
        entry = _add(queue, "a")
        queue.claim()

        clock.advance(601)
        assert queue.requeue_stalled(600) == 1

        redelivered = queue.claim()
        assert redelivered.id == entry.id
        assert redelivered.is_redelivery is True

    def test_recent_active_entry_is_not_stalled(self, queue, clock):
        _add(queue, "a")
        queue.claim()

        clock.advance(10)

        assert queue.requeue_stalled(600) == 0

    def test_heartbeat_keeps_long_entry_alive(self, queue, clock):
        entry = _add(queue, "a")
        queue.claim()

        clock.advance(500)
        queue.heartbeat(entry.id)
        clock.advance(200)

        assert queue.requeue_stalled(600) == 0
        assert queue.get(entry.id).state == "active"

        clock.advance(401)
        assert queue.requeue_stalled(600) == 1

    def test_progress_counts_as_heartbeat(self, queue, clock):
        entry = _add(queue, "a")
        queue.claim()

        clock.advance(500)
        queue.update_progress(entry.id, 40)
        clock.advance(200)

        assert queue.requeue_stalled(600) == 0

    def test_heartbeat_ignores_finished_entry(self, queue, clock):
        entry = _add(queue, "a")
        queue.claim()
        queue.complete(entry.id, {})
        finished = queue.get(entry.id).heartbeat_at

        clock.advance(30)
        queue.heartbeat(entry.id)

        assert queue.get(entry.id).heartbeat_at == finished

    def test_stalled_entry_without_attempts_fails(self, queue, clock):
        entry = _add(queue, "a", attempts=1)
        queue.claim()

        clock.advance(601)
        queue.requeue_stalled(600)

        stalled = queue.get(entry.id)
        assert stalled.state == "failed"
        assert stalled.failed_reason == "job stalled more than allowable limit"


# ============================================================================
# Mark all tests as unit tests
# ============================================================================

pytestmark = pytest.mark.unit
