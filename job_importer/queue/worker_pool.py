"""
Worker pool.

N threads share one queue. Each thread claims an entry, runs the handler
registered for the entry's name to completion, then reports the outcome to
the queue: a return value completes the entry, an exception fails the
attempt (the queue applies retries and backoff).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any, Callable, Optional

from .base import JobQueue, QueueEntry, QueueError

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[int], None]
Handler = Callable[[QueueEntry, ProgressReporter], Any]

DEFAULT_CONCURRENCY = 2
DEFAULT_HEARTBEAT_INTERVAL = 30.0


class WorkerPool:
    """
    Fixed-size pool of worker threads.

    Usage:
        pool = WorkerPool(queue, {"import-jobs": processor}, concurrency=2)
        pool.start()
        ...
        pool.stop()
    """

    def __init__(
        self,
        queue: JobQueue,
        handlers: Mapping[str, Handler],
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_interval: float = 1.0,
        stalled_after: Optional[float] = None,
        heartbeat_interval: Optional[float] = DEFAULT_HEARTBEAT_INTERVAL,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if heartbeat_interval is not None and heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")
        if (
            stalled_after is not None
            and heartbeat_interval is not None
            and heartbeat_interval >= stalled_after
        ):
            raise ValueError("heartbeat_interval must be shorter than stalled_after")
        self.queue = queue
        self.handlers = dict(handlers)
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.stalled_after = stalled_after
        self.heartbeat_interval = heartbeat_interval
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Recover stalled entries, then start the worker threads."""
        if self.running:
            return
        if self.stalled_after is not None:
            recovered = self.queue.requeue_stalled(self.stalled_after)
            if recovered:
                logger.warning(
                    "Recovered stalled queue entries",
                    extra={"queue": self.queue.name, "recovered": recovered},
                )

        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._run, name=f"worker-{index + 1}", daemon=True)
            for index in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()

        logger.info(
            f"Started {self.concurrency} worker(s)",
            extra={"queue": self.queue.name, "handlers": sorted(self.handlers)},
        )

    def request_stop(self) -> None:
        """Signal workers to stop after their current entry without waiting."""
        self._stop.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask workers to stop after their current entry and wait for them."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Workers stopped", extra={"queue": self.queue.name})

    def wait(self) -> None:
        """Block until the workers exit (after stop() from another thread)."""
        while self.running:
            for thread in list(self._threads):
                thread.join(self.poll_interval)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                processed = self.process_next()
            except QueueError as e:
                logger.error(
                    "Queue unavailable, retrying",
                    extra={"queue": self.queue.name, "error": str(e)},
                )
                processed = False
            if not processed:
                self._stop.wait(self.poll_interval)

    def process_next(self) -> bool:
        """
        Claim and execute one entry in the calling thread.

        Returns:
            False when no entry was available
        """
        entry = self.queue.claim()
        if entry is None:
            return False

        handler = self.handlers.get(entry.name)
        if handler is None:
            logger.error(
                "No handler registered for queue entry",
                extra={"queue": self.queue.name, "entry_id": entry.id, "handler": entry.name},
            )
            self.queue.fail(entry.id, f"No handler registered for {entry.name!r}")
            return True

        logger.info(
            f"Job {entry.id} started processing",
            extra={"queue": self.queue.name, "attempt": entry.attempts_made},
        )

        def report_progress(progress: int) -> None:
            self.queue.update_progress(entry.id, progress)

        beating = self._start_heartbeat(entry)
        try:
            result = handler(entry, report_progress)
        except Exception as e:
            failed = self.queue.fail(entry.id, str(e))
            logger.error(
                f"Job {entry.id} failed: {e}",
                extra={
                    "queue": self.queue.name,
                    "attempts_made": failed.attempts_made,
                    "max_attempts": failed.max_attempts,
                    "state": failed.state,
                },
            )
            return True
        finally:
            beating.set()

        self.queue.complete(entry.id, result)
        logger.info(f"Job {entry.id} completed", extra={"queue": self.queue.name})
        return True

    def _start_heartbeat(self, entry: QueueEntry) -> threading.Event:
        """Refresh the entry's heartbeat until the returned event is set."""
        done = threading.Event()
        if self.heartbeat_interval is None:
            return done

        def beat() -> None:
            while not done.wait(self.heartbeat_interval):
                try:
                    self.queue.heartbeat(entry.id)
                except QueueError as e:
                    logger.warning(
                        "Heartbeat failed",
                        extra={"queue": self.queue.name, "entry_id": entry.id, "error": str(e)},
                    )

        threading.Thread(target=beat, name=f"heartbeat-{entry.id}", daemon=True).start()
        return done

    def drain(self) -> int:
        """Process entries in the calling thread until none is available."""
        processed = 0
        while self.process_next():
            processed += 1
        return processed
