"""
PostgreSQL Store

This module persists job records and import runs in PostgreSQL.

Key Features:
- Upsert logic: `INSERT ... ON CONFLICT (source_id, source_name) DO UPDATE`,
  the unique constraint is the only concurrency guard between workers
- New vs. updated is read from `RETURNING (xmax = 0)` in the same statement
- JSONB columns for categories, salary, raw data and run samples
- Idempotent schema creation (`init_schema`)
"""

import logging
from datetime import datetime
from typing import Any, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extras import Json

from ..common.db import Database, DatabaseError
from ..importer.models import ImportRun
from .base import MUTABLE_JOB_FIELDS, JobStore, StoreError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    source_id TEXT NOT NULL,
    source_name TEXT NOT NULL,
    source_feed_url TEXT,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    company TEXT NOT NULL,
    location TEXT NOT NULL DEFAULT 'Remote',
    categories JSONB NOT NULL DEFAULT '[]'::jsonb,
    job_type TEXT NOT NULL DEFAULT 'full-time',
    salary JSONB,
    source_url TEXT NOT NULL DEFAULT '',
    apply_url TEXT NOT NULL DEFAULT '',
    published_date TIMESTAMPTZ,
    expiry_date TIMESTAMPTZ,
    raw_data JSONB,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'expired', 'filled', 'deleted')),
    last_import_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT jobs_natural_key UNIQUE (source_id, source_name)
);

CREATE INDEX IF NOT EXISTS idx_jobs_published_date ON jobs (published_date DESC);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status);

CREATE TABLE IF NOT EXISTS import_runs (
    id TEXT PRIMARY KEY,
    source_url TEXT NOT NULL,
    queue_job_id TEXT,
    status TEXT NOT NULL
        CHECK (status IN ('pending', 'processing', 'completed', 'failed', 'partial')),
    import_date_time TIMESTAMPTZ NOT NULL,
    start_time TIMESTAMPTZ,
    end_time TIMESTAMPTZ,
    duration_ms BIGINT,
    total_fetched INTEGER NOT NULL DEFAULT 0,
    total_imported INTEGER NOT NULL DEFAULT 0,
    statistics JSONB NOT NULL,
    new_jobs JSONB NOT NULL DEFAULT '[]'::jsonb,
    updated_jobs JSONB NOT NULL DEFAULT '[]'::jsonb,
    failed_jobs JSONB NOT NULL DEFAULT '[]'::jsonb,
    errors JSONB NOT NULL DEFAULT '[]'::jsonb,
    processing_details JSONB NOT NULL DEFAULT '{}'::jsonb,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_retry_at TIMESTAMPTZ,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb
);

CREATE INDEX IF NOT EXISTS idx_import_runs_status_date
    ON import_runs (status, import_date_time DESC);
CREATE INDEX IF NOT EXISTS idx_import_runs_source_date
    ON import_runs (source_url, import_date_time DESC);
"""

JOB_JSON_FIELDS = ("categories", "salary", "raw_data")
RUN_JSON_FIELDS = (
    "statistics",
    "new_jobs",
    "updated_jobs",
    "failed_jobs",
    "errors",
    "processing_details",
    "metadata",
)
RUN_COLUMNS = (
    "id",
    "source_url",
    "queue_job_id",
    "status",
    "import_date_time",
    "start_time",
    "end_time",
    "duration_ms",
    "total_fetched",
    "total_imported",
) + RUN_JSON_FIELDS + ("retry_count", "last_retry_at")

UPSERT_JOB_SQL = """
    INSERT INTO jobs (source_id, source_name, {columns}, import_count)
    VALUES (%(source_id)s, %(source_name)s, {values}, 1)
    ON CONFLICT (source_id, source_name) DO UPDATE SET
        {updates},
        import_count = jobs.import_count + 1,
        updated_at = NOW()
    RETURNING id, (xmax = 0) AS inserted
""".format(
    columns=", ".join(MUTABLE_JOB_FIELDS),
    values=", ".join(f"%({name})s" for name in MUTABLE_JOB_FIELDS),
    updates=",\n        ".join(f"{name} = EXCLUDED.{name}" for name in MUTABLE_JOB_FIELDS),
)

INSERT_RUN_SQL = "INSERT INTO import_runs ({columns}) VALUES ({values})".format(
    columns=", ".join(RUN_COLUMNS),
    values=", ".join(f"%({name})s" for name in RUN_COLUMNS),
)

UPDATE_RUN_SQL = "UPDATE import_runs SET {updates} WHERE id = %(id)s".format(
    updates=", ".join(f"{name} = %({name})s" for name in RUN_COLUMNS if name != "id"),
)


def init_schema(db: Database) -> None:
    """Create the jobs and import_runs tables if they do not exist."""
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA)
    logger.info("Store schema initialized")


def _job_params(record: dict[str, Any]) -> dict[str, Any]:
    params = {name: record.get(name) for name in MUTABLE_JOB_FIELDS}
    params["source_id"] = record["source_id"]
    params["source_name"] = record["source_name"]
    for name in JOB_JSON_FIELDS:
        if params[name] is not None:
            params[name] = Json(params[name])
    return params


def _run_params(run: ImportRun) -> dict[str, Any]:
    record = run.to_record()
    params = {name: record[name] for name in RUN_COLUMNS}
    for name in RUN_JSON_FIELDS:
        params[name] = Json(params[name])
    return params


class PostgresJobStore(JobStore):
    """
    JobStore backed by PostgreSQL.

    Every call checks out its own pooled connection, so one instance is
    shared by all worker threads and record tasks.
    """

    def __init__(self, db: Database):
        self.db = db

    def upsert_job(self, record: dict[str, Any]) -> tuple[str, bool]:
        """
        Raises:
            StoreError: If PostgreSQL rejects this record (constraint or bad value)
            DatabaseError: If the database cannot be reached; not a record failure
        """
        try:
            with self.db.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(UPSERT_JOB_SQL, _job_params(record))
                    job_id, inserted = cur.fetchone()
        except (psycopg2.IntegrityError, psycopg2.DataError) as e:
            logger.error(
                "Failed to upsert job",
                extra={
                    "source_id": record.get("source_id"),
                    "source_name": record.get("source_name"),
                    "error": str(e),
                    "pgcode": e.pgcode,
                },
            )
            raise StoreError(f"Failed to upsert job: {e}") from e
        except psycopg2.Error as e:
            logger.error(
                "Database unavailable during upsert",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise DatabaseError(f"Database unavailable: {e}") from e

        return str(job_id), bool(inserted)

    def get_job(self, source_id: str, source_name: str) -> Optional[dict[str, Any]]:
        row = self._fetch_one(
            "SELECT * FROM jobs WHERE source_id = %s AND source_name = %s",
            (source_id, source_name),
        )
        if row is None:
            return None
        row["id"] = str(row["id"])
        return row

    def count_jobs(self) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS count FROM jobs")
        return int(row["count"])

    def create_import_run(self, run: ImportRun) -> None:
        self._execute(INSERT_RUN_SQL, _run_params(run), "create import run")

    def save_import_run(self, run: ImportRun) -> None:
        rowcount = self._execute(UPDATE_RUN_SQL, _run_params(run), "save import run")
        if rowcount == 0:
            raise StoreError(f"Import run {run.id} not found")

    def get_import_run(self, run_id: str) -> Optional[ImportRun]:
        row = self._fetch_one("SELECT * FROM import_runs WHERE id = %s", (run_id,))
        return ImportRun.from_record(row) if row else None

    def recent_import_runs(self, limit: int = 10) -> list[ImportRun]:
        rows = self._fetch_all(
            "SELECT * FROM import_runs ORDER BY import_date_time DESC LIMIT %s",
            (limit,),
        )
        return [ImportRun.from_record(row) for row in rows]

    def import_statistics(self, start: datetime, end: datetime) -> dict[str, int]:
        row = self._fetch_one(
            """
            SELECT
                COUNT(*) AS total_imports,
                COUNT(*) FILTER (WHERE status = 'completed') AS successful_imports,
                COUNT(*) FILTER (WHERE status = 'failed') AS failed_imports,
                COUNT(*) FILTER (WHERE status = 'partial') AS partial_imports,
                COALESCE(SUM((statistics->>'total')::int), 0) AS total_jobs_processed,
                COALESCE(SUM((statistics->>'new')::int), 0) AS new_jobs_created,
                COALESCE(SUM((statistics->>'updated')::int), 0) AS jobs_updated,
                COALESCE(SUM((statistics->>'failed')::int), 0) AS jobs_failed
            FROM import_runs
            WHERE import_date_time BETWEEN %s AND %s
            """,
            (start, end),
        )
        return {key: int(value) for key, value in row.items()}

    def delete_import_runs_before(self, cutoff: datetime) -> int:
        return self._execute(
            "DELETE FROM import_runs WHERE import_date_time < %(cutoff)s",
            {"cutoff": cutoff},
            "delete import runs",
        )

    def close(self) -> None:
        self.db.close()

    def _execute(self, query: str, params: dict[str, Any], action: str) -> int:
        try:
            with self.db.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    return cur.rowcount
        except psycopg2.Error as e:
            logger.error(
                f"Failed to {action}",
                extra={"import_run_id": params.get("id"), "error": str(e), "pgcode": e.pgcode},
            )
            raise StoreError(f"Failed to {action}: {e}") from e

    def _fetch_all(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        try:
            with self.db.connection() as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute(query, params)
                    return [dict(row) for row in cur.fetchall()]
        except psycopg2.Error as e:
            logger.error("Store query failed", extra={"error": str(e), "pgcode": e.pgcode})
            raise StoreError(f"Store query failed: {e}") from e

    def _fetch_one(self, query: str, params: tuple = ()) -> Optional[dict[str, Any]]:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None
