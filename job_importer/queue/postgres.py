"""
PostgreSQL Job Queue

Durable JobQueue stored in the `queue_entries` table. The table is the
source of truth for entry state; several worker processes can share one
queue because dequeuing uses `FOR UPDATE SKIP LOCKED`.

Key Features:
- Priority then FIFO ordering (`ORDER BY priority, id`)
- Delayed entries and exponential backoff through `available_at`
- Retention of completed/failed entries applied on every transition
- Queue-wide pause flag in `queue_settings`
"""

import logging
from typing import Any, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extras import Json

from ..common.db import Database
from .base import (
    DEFAULT_JOB_LIMIT,
    DELAYED,
    FAILED,
    WAITING,
    JobQueue,
    QueueEntry,
    QueueError,
    QueuePolicy,
    validate_state,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_entries (
    id BIGSERIAL PRIMARY KEY,
    queue_name TEXT NOT NULL,
    name TEXT NOT NULL,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    state TEXT NOT NULL
        CHECK (state IN ('waiting', 'active', 'completed', 'failed', 'delayed')),
    priority INTEGER NOT NULL DEFAULT 0,
    attempts_made INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    backoff_seconds DOUBLE PRECISION NOT NULL DEFAULT 5,
    progress INTEGER NOT NULL DEFAULT 0,
    failed_reason TEXT,
    return_value JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    available_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    processed_at TIMESTAMPTZ,
    heartbeat_at TIMESTAMPTZ,
    finished_at TIMESTAMPTZ
);

ALTER TABLE queue_entries ADD COLUMN IF NOT EXISTS heartbeat_at TIMESTAMPTZ;

CREATE INDEX IF NOT EXISTS idx_queue_entries_dequeue
    ON queue_entries (queue_name, state, priority, id);

CREATE TABLE IF NOT EXISTS queue_settings (
    queue_name TEXT PRIMARY KEY,
    paused BOOLEAN NOT NULL DEFAULT FALSE
);
"""

ENTRY_COLUMNS = """
    id, name, payload, state, priority, attempts_made, max_attempts,
    backoff_seconds, progress, failed_reason, return_value, created_at,
    available_at, processed_at, heartbeat_at, finished_at
"""

PROMOTE_DUE_SQL = """
    UPDATE queue_entries SET state = 'waiting'
    WHERE queue_name = %s AND state = 'delayed' AND available_at <= NOW()
"""

CLAIM_SQL = f"""
    UPDATE queue_entries SET
        state = 'active',
        attempts_made = attempts_made + 1,
        processed_at = NOW(),
        heartbeat_at = NOW(),
        finished_at = NULL
    WHERE id = (
        SELECT id FROM queue_entries
        WHERE queue_name = %s AND state = 'waiting'
        ORDER BY priority, id
        LIMIT 1
        FOR UPDATE SKIP LOCKED
    )
    RETURNING {ENTRY_COLUMNS}
"""

FAIL_SQL = f"""
    UPDATE queue_entries SET
        failed_reason = %(reason)s,
        state = CASE WHEN attempts_made < max_attempts THEN 'delayed' ELSE 'failed' END,
        available_at = CASE
            WHEN attempts_made < max_attempts
            THEN NOW() + make_interval(secs => backoff_seconds * power(2, attempts_made - 1))
            ELSE available_at
        END,
        finished_at = CASE WHEN attempts_made < max_attempts THEN NULL ELSE NOW() END
    WHERE id = %(id)s AND queue_name = %(queue)s AND state = 'active'
    RETURNING {ENTRY_COLUMNS}
"""

RETENTION_SQL = """
    DELETE FROM queue_entries
    WHERE queue_name = %(queue)s AND (
        (state = 'completed' AND finished_at < NOW() - make_interval(secs => %(keep_completed)s))
        OR (state = 'completed' AND id NOT IN (
            SELECT id FROM queue_entries
            WHERE queue_name = %(queue)s AND state = 'completed'
            ORDER BY finished_at DESC
            LIMIT %(keep_completed_count)s
        ))
        OR (state = 'failed' AND finished_at < NOW() - make_interval(secs => %(keep_failed)s))
    )
"""

REQUEUE_STALLED_SQL = f"""
    UPDATE queue_entries SET
        state = CASE WHEN attempts_made < max_attempts THEN 'waiting' ELSE 'failed' END,
        available_at = NOW(),
        failed_reason = CASE
            WHEN attempts_made < max_attempts THEN failed_reason
            ELSE 'job stalled more than allowable limit'
        END,
        finished_at = CASE WHEN attempts_made < max_attempts THEN NULL ELSE NOW() END
    WHERE queue_name = %s AND state = 'active'
        AND COALESCE(heartbeat_at, processed_at) < NOW() - make_interval(secs => %s)
    RETURNING {ENTRY_COLUMNS}
"""


def init_queue_schema(db: Database) -> None:
    """Create the queue tables if they do not exist."""
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA)
    logger.info("Queue schema initialized")


def _to_entry(row: dict[str, Any]) -> QueueEntry:
    return QueueEntry(
        id=str(row["id"]),
        name=row["name"],
        payload=dict(row["payload"] or {}),
        state=row["state"],
        priority=row["priority"],
        attempts_made=row["attempts_made"],
        max_attempts=row["max_attempts"],
        backoff_seconds=row["backoff_seconds"],
        progress=row["progress"],
        failed_reason=row["failed_reason"],
        return_value=row["return_value"],
        created_at=row["created_at"],
        available_at=row["available_at"],
        processed_at=row["processed_at"],
        heartbeat_at=row["heartbeat_at"],
        finished_at=row["finished_at"],
    )


class PostgresJobQueue(JobQueue):
    """
    JobQueue backed by PostgreSQL.

    Usage:
        with Database(settings.database_url) as db:
            queue = PostgresJobQueue(db, name="job-import")
            entry = queue.add("import-jobs", {"source_url": url})
    """

    def __init__(self, db: Database, name: str = "job-import", policy: Optional[QueuePolicy] = None):
        super().__init__(name, policy)
        self.db = db

    def _query(self, query: str, params: Any = None) -> list[dict[str, Any]]:
        try:
            with self.db.connection() as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute(query, params)
                    if cur.description is None:
                        return []
                    return [dict(row) for row in cur.fetchall()]
        except psycopg2.Error as e:
            logger.error(
                "Queue query failed",
                extra={"queue": self.name, "error": str(e), "pgcode": e.pgcode},
            )
            raise QueueError(f"Queue query failed: {e}") from e

    def _apply_retention(self) -> None:
        self._query(
            RETENTION_SQL,
            {
                "queue": self.name,
                "keep_completed": self.policy.keep_completed_seconds,
                "keep_completed_count": self.policy.keep_completed_count,
                "keep_failed": self.policy.keep_failed_seconds,
            },
        )

    def add(
        self,
        name: str,
        payload: dict[str, Any],
        priority: int = 0,
        delay: float = 0,
        attempts: Optional[int] = None,
    ) -> QueueEntry:
        rows = self._query(
            f"""
            INSERT INTO queue_entries (
                queue_name, name, payload, state, priority, max_attempts,
                backoff_seconds, available_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, NOW() + make_interval(secs => %s))
            RETURNING {ENTRY_COLUMNS}
            """,
            (
                self.name,
                name,
                Json(payload),
                DELAYED if delay > 0 else WAITING,
                priority,
                attempts or self.policy.attempts,
                self.policy.backoff_seconds,
                delay,
            ),
        )
        entry = _to_entry(rows[0])
        logger.info(
            "Queue entry added",
            extra={"queue": self.name, "entry_id": entry.id, "handler": name, "priority": priority},
        )
        return entry

    def claim(self) -> Optional[QueueEntry]:
        if self.is_paused():
            return None
        self._query(PROMOTE_DUE_SQL, (self.name,))
        rows = self._query(CLAIM_SQL, (self.name,))
        return _to_entry(rows[0]) if rows else None

    def update_progress(self, entry_id: str, progress: int) -> None:
        self._query(
            """
            UPDATE queue_entries SET progress = %s, heartbeat_at = NOW()
            WHERE id = %s AND queue_name = %s
            """,
            (max(0, min(100, int(progress))), int(entry_id), self.name),
        )

    def heartbeat(self, entry_id: str) -> None:
        self._query(
            """
            UPDATE queue_entries SET heartbeat_at = NOW()
            WHERE id = %s AND queue_name = %s AND state = 'active'
            """,
            (int(entry_id), self.name),
        )

    def complete(self, entry_id: str, return_value: Any = None) -> QueueEntry:
        rows = self._query(
            f"""
            UPDATE queue_entries SET state = 'completed', return_value = %s, finished_at = NOW()
            WHERE id = %s AND queue_name = %s AND state = 'active'
            RETURNING {ENTRY_COLUMNS}
            """,
            (Json(return_value), int(entry_id), self.name),
        )
        if not rows:
            raise QueueError(f"Job {entry_id} is not active")
        self._apply_retention()
        return _to_entry(rows[0])

    def fail(self, entry_id: str, reason: str) -> QueueEntry:
        rows = self._query(FAIL_SQL, {"reason": reason, "id": int(entry_id), "queue": self.name})
        if not rows:
            raise QueueError(f"Job {entry_id} is not active")
        self._apply_retention()
        return _to_entry(rows[0])

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        if not str(entry_id).isdigit():
            return None
        rows = self._query(
            f"SELECT {ENTRY_COLUMNS} FROM queue_entries WHERE id = %s AND queue_name = %s",
            (int(entry_id), self.name),
        )
        return _to_entry(rows[0]) if rows else None

    def list_entries(self, state: str, limit: Optional[int] = DEFAULT_JOB_LIMIT) -> list[QueueEntry]:
        validate_state(state)
        self._query(PROMOTE_DUE_SQL, (self.name,))
        order = "priority, id" if state in (WAITING, DELAYED) else "id DESC"
        rows = self._query(
            f"""
            SELECT {ENTRY_COLUMNS} FROM queue_entries
            WHERE queue_name = %s AND state = %s
            ORDER BY {order}
            LIMIT %s
            """,
            (self.name, state, limit),
        )
        return [_to_entry(row) for row in rows]

    def counts(self) -> dict[str, int]:
        self._query(PROMOTE_DUE_SQL, (self.name,))
        rows = self._query(
            "SELECT state, COUNT(*) AS count FROM queue_entries WHERE queue_name = %s GROUP BY state",
            (self.name,),
        )
        return {row["state"]: int(row["count"]) for row in rows}

    def remove(self, entry_id: str) -> bool:
        rows = self._query(
            "DELETE FROM queue_entries WHERE id = %s AND queue_name = %s RETURNING id",
            (int(entry_id), self.name),
        )
        return bool(rows)

    def retry(self, entry_id: str) -> QueueEntry:
        entry = self.get(entry_id)
        if entry is None:
            raise QueueError("Job not found")
        if entry.state != FAILED:
            raise QueueError("Job is not in failed state")

        rows = self._query(
            f"""
            UPDATE queue_entries SET
                state = 'waiting',
                available_at = NOW(),
                failed_reason = NULL,
                finished_at = NULL,
                max_attempts = GREATEST(max_attempts, attempts_made + 1)
            WHERE id = %s AND queue_name = %s AND state = 'failed'
            RETURNING {ENTRY_COLUMNS}
            """,
            (int(entry_id), self.name),
        )
        if not rows:
            raise QueueError("Job is not in failed state")
        return _to_entry(rows[0])

    def requeue_stalled(self, stalled_after: float) -> int:
        rows = self._query(REQUEUE_STALLED_SQL, (self.name, stalled_after))
        for row in rows:
            logger.warning(
                "Stalled queue entry recovered",
                extra={"queue": self.name, "entry_id": str(row["id"]), "state": row["state"]},
            )
        return len(rows)

    def _set_paused(self, paused: bool) -> None:
        self._query(
            """
            INSERT INTO queue_settings (queue_name, paused) VALUES (%s, %s)
            ON CONFLICT (queue_name) DO UPDATE SET paused = EXCLUDED.paused
            """,
            (self.name, paused),
        )
        logger.info("Queue paused" if paused else "Queue resumed", extra={"queue": self.name})

    def pause(self) -> None:
        self._set_paused(True)

    def resume(self) -> None:
        self._set_paused(False)

    def is_paused(self) -> bool:
        rows = self._query("SELECT paused FROM queue_settings WHERE queue_name = %s", (self.name,))
        return bool(rows and rows[0]["paused"])

    def close(self) -> None:
        self.db.close()
