"""
Import triggers.

Every import starts here: the run is created in pending before its queue
entry exists, so a run can always be looked up by the id in the entry's
payload. The entry id is written back to the run afterwards.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Optional

from ..feed_normalizer.source_config import FeedSourceConfig
from ..queue.base import JobQueue
from ..store.base import JobStore
from .models import ImportRun, ImportRunError
from .worker import IMPORT_JOB_NAME

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnqueueResult:
    import_run_id: str
    queue_entry_id: str
    status: str = "queued"


def enqueue_import(
    store: JobStore,
    queue: JobQueue,
    source_url: str,
    priority: int = 0,
    delay: float = 0,
    metadata: Optional[dict[str, Any]] = None,
) -> EnqueueResult:
    """
    Create a pending run for `source_url` and queue it.

    Args:
        store: Store holding import runs
        queue: Queue the entry is added to
        source_url: Feed to import
        priority: Queue priority, lower runs first
        delay: Seconds before the entry becomes available
        metadata: Free-form mapping recorded on the run

    Returns:
        EnqueueResult with the run id and the queue entry id
    """
    run = ImportRun(source_url=source_url, metadata=dict(metadata or {}))
    store.create_import_run(run)

    entry = queue.add(
        IMPORT_JOB_NAME,
        {"source_url": source_url, "import_run_id": run.id},
        priority=priority,
        delay=delay,
    )

    run.queue_job_id = entry.id
    store.save_import_run(run)

    logger.info(
        f"Import job queued: {entry.id} for {source_url}",
        extra={"import_run_id": run.id, "priority": priority, "delay": delay},
    )
    return EnqueueResult(import_run_id=run.id, queue_entry_id=entry.id)


def enqueue_all(
    store: JobStore,
    queue: JobQueue,
    sources: Iterable[FeedSourceConfig],
    stagger: float = 0.0,
) -> list[EnqueueResult]:
    """
    Trigger an import for every enabled source.

    Args:
        sources: Configured feeds; disabled ones are skipped
        stagger: Extra queue delay in seconds between consecutive sources

    Returns:
        One EnqueueResult per enabled source, in configuration order
    """
    results = []
    enabled = [source for source in sources if source.enabled]
    for index, source in enumerate(enabled):
        results.append(
            enqueue_import(
                store,
                queue,
                source.url,
                priority=source.priority,
                delay=index * stagger,
                metadata=source.metadata,
            )
        )

    logger.info("Scheduled imports triggered", extra={"sources": len(results)})
    return results


def retry_import_run(store: JobStore, queue: JobQueue, import_run_id: str) -> EnqueueResult:
    """
    Re-trigger a failed or partial run.

    A new run is created with `metadata.retry_of` pointing to the original,
    and the original's retry_count/last_retry_at are updated.

    Raises:
        ImportRunError: If the run does not exist or is not failed/partial
    """
    original = store.get_import_run(import_run_id)
    if original is None:
        raise ImportRunError(f"Import run {import_run_id} not found")

    # Validates the status before anything is enqueued
    original.mark_retried()

    result = enqueue_import(
        store,
        queue,
        original.source_url,
        metadata={"retry_of": original.id},
    )
    store.save_import_run(original)

    logger.info(
        "Import retry triggered",
        extra={
            "import_run_id": result.import_run_id,
            "retry_of": original.id,
            "retry_count": original.retry_count,
        },
    )
    return result
