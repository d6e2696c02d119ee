"""
Job Feed Importer - Main Entry Point

Command-line interface for operating the import pipeline.

Usage:
    python -m job_importer.main [--verbose] COMMAND [OPTIONS]

Commands:
    init-db                      Create the store and queue tables
    enqueue [--source URL ...]   Queue imports (all enabled configured feeds by default)
    work                         Run the worker pool until interrupted
    run [--source URL ...]       Queue imports and process them in this process
    retry-run RUN_ID             Re-trigger a failed or partial import run
    runs recent|show|stats|cleanup
                                 Inspect and clean import runs
    queue stats|health|jobs|retry|clean|pause|resume
                                 Inspect and administer the queue

Examples:
    # Queue every enabled feed from config/sources.yml:
    python -m job_importer.main enqueue

    # Queue one feed ahead of the others:
    python -m job_importer.main enqueue --source https://jobicy.com/?feed=job_feed --priority -1

    # Start two workers:
    WORKER_CONCURRENCY=2 python -m job_importer.main work

    # Import one feed without PostgreSQL (in-memory store and queue):
    python -m job_importer.main run --in-memory --source https://jobicy.com/?feed=job_feed

Exit Codes:
    0: Success
    1: Operation refused (unknown run or entry, wrong state)
    2: Fatal error (configuration, database connection, etc.)
    130: Interrupted
"""

import argparse
import json
import logging
import signal
import sys
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from dotenv import load_dotenv

from .common.db import Database, DatabaseError
from .common.settings import Settings
from .feed_normalizer.source_config import load_sources_config
from .importer.models import ImportRunError
from .importer.trigger import enqueue_all, enqueue_import, retry_import_run
from .importer.worker import IMPORT_JOB_NAME, ImportJobProcessor
from .notifier.base import LogChannel, Notifier
from .notifier.webhook import WebhookChannel
from .queue.base import STATES, JobQueue, QueueError, QueuePolicy
from .queue.memory import InMemoryJobQueue
from .queue.postgres import PostgresJobQueue, init_queue_schema
from .queue.worker_pool import WorkerPool
from .store.base import JobStore, StoreError
from .store.memory import InMemoryJobStore
from .store.postgres import PostgresJobStore, init_schema

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

RUN_RETENTION_DAYS = 30


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Import job postings from remote feeds',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')

    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('init-db', help='Create the store and queue tables')

    for name, help_text in (
        ('enqueue', 'Queue imports'),
        ('run', 'Queue imports and process them in this process'),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument(
            '--source',
            action='append',
            dest='sources',
            help='Feed URL to import (repeatable; default: all enabled configured feeds)'
        )
        sub.add_argument('--priority', type=int, default=0, help='Queue priority, lower runs first')
        sub.add_argument('--delay', type=float, default=0, help='Seconds before the entry is available')
        sub.add_argument(
            '--stagger',
            type=float,
            default=0,
            help='Extra delay in seconds between configured feeds'
        )
        if name == 'run':
            sub.add_argument(
                '--in-memory',
                action='store_true',
                dest='in_memory',
                help='Use the in-memory store and queue instead of PostgreSQL'
            )

    commands.add_parser('work', help='Run the worker pool until interrupted')

    retry_run = commands.add_parser('retry-run', help='Re-trigger a failed or partial import run')
    retry_run.add_argument('run_id', help='Import run id')

    runs = commands.add_parser('runs', help='Inspect import runs')
    runs_commands = runs.add_subparsers(dest='runs_command', required=True)
    recent = runs_commands.add_parser('recent', help='Most recent import runs')
    recent.add_argument('--limit', type=int, default=10)
    show = runs_commands.add_parser('show', help='Full import run')
    show.add_argument('run_id', help='Import run id')
    stats = runs_commands.add_parser('stats', help='Aggregate statistics')
    stats.add_argument('--days', type=int, default=1, help='Window size in days (default: 1)')
    cleanup = runs_commands.add_parser('cleanup', help='Delete old import runs')
    cleanup.add_argument('--days', type=int, default=RUN_RETENTION_DAYS)

    queue = commands.add_parser('queue', help='Administer the import queue')
    queue_commands = queue.add_subparsers(dest='queue_command', required=True)
    queue_commands.add_parser('stats', help='Entry counts per state')
    queue_commands.add_parser('health', help='Queue health')
    jobs = queue_commands.add_parser('jobs', help='Entries in one state')
    jobs.add_argument('state', choices=STATES)
    jobs.add_argument('--limit', type=int, default=100)
    retry = queue_commands.add_parser('retry', help='Retry a failed entry')
    retry.add_argument('entry_id')
    clean = queue_commands.add_parser('clean', help='Remove completed or failed entries')
    clean.add_argument('state', choices=('completed', 'failed'))
    queue_commands.add_parser('pause', help='Stop handing out entries')
    queue_commands.add_parser('resume', help='Resume handing out entries')

    return parser.parse_args(argv)


def emit(data: Any) -> None:
    """Print a command result as JSON."""
    print(json.dumps(data, indent=2, default=str))


def build_publisher(settings: Settings) -> Notifier:
    """Notifier with the log channel and, when configured, the webhook channel."""
    channels: list = [LogChannel()]
    if settings.notify_webhook_url:
        channels.append(WebhookChannel(settings.notify_webhook_url))
    return Notifier(channels)


def build_policy(settings: Settings) -> QueuePolicy:
    return QueuePolicy(attempts=settings.queue_attempts, backoff_seconds=settings.queue_backoff_seconds)


def connect_database(settings: Settings) -> Database:
    """
    Open the connection pool.

    Raises:
        DatabaseError: If DATABASE_URL is missing or the database is unreachable
    """
    if not settings.database_url:
        raise DatabaseError("DATABASE_URL environment variable must be set")
    db = Database(settings.database_url)
    db.connect()
    return db


def build_processor(settings: Settings, store: JobStore) -> ImportJobProcessor:
    return ImportJobProcessor(
        store,
        publisher=build_publisher(settings),
        batch_size=settings.batch_size,
        fetch_timeout=settings.fetch_timeout_seconds,
    )


def trigger_imports(settings: Settings, store: JobStore, queue: JobQueue, args: argparse.Namespace) -> list[dict]:
    """Queue the feeds named on the command line, or every enabled configured feed."""
    if args.sources:
        results = [
            enqueue_import(store, queue, url, priority=args.priority, delay=args.delay)
            for url in args.sources
        ]
    else:
        sources = load_sources_config(settings.sources_config)
        results = enqueue_all(store, queue, sources, stagger=args.stagger)
    return [asdict(result) for result in results]


def run_work(settings: Settings, store: JobStore, queue: JobQueue) -> int:
    """Run the worker pool until SIGINT/SIGTERM."""
    pool = WorkerPool(
        queue,
        {IMPORT_JOB_NAME: build_processor(settings, store)},
        concurrency=settings.worker_concurrency,
        poll_interval=settings.queue_poll_interval_seconds,
        stalled_after=settings.queue_stalled_after_seconds,
        heartbeat_interval=settings.queue_heartbeat_interval_seconds,
    )

    def handle_sigterm(signum, frame):
        logger.info("SIGTERM received, stopping workers")
        pool.request_stop()

    signal.signal(signal.SIGTERM, handle_sigterm)
    pool.start()
    try:
        pool.wait()
    except KeyboardInterrupt:
        logger.warning("Interrupted by user, waiting for active imports")
        pool.stop()
        return 130
    pool.stop()
    return 0


def run_local(settings: Settings, store: JobStore, queue: JobQueue, args: argparse.Namespace) -> int:
    """Queue imports and drain the queue in the calling thread."""
    results = trigger_imports(settings, store, queue, args)
    pool = WorkerPool(queue, {IMPORT_JOB_NAME: build_processor(settings, store)})
    pool.drain()

    runs = [store.get_import_run(result['import_run_id']) for result in results]
    emit([run.summary() for run in runs if run is not None])
    return 0


def run_runs_command(store: JobStore, args: argparse.Namespace) -> int:
    if args.runs_command == 'recent':
        emit([run.summary() for run in store.recent_import_runs(args.limit)])
    elif args.runs_command == 'show':
        run = store.get_import_run(args.run_id)
        if run is None:
            logger.error(f"Import run {args.run_id} not found")
            return 1
        emit(run.to_record())
    elif args.runs_command == 'stats':
        end = datetime.now(timezone.utc)
        emit(store.import_statistics(end - timedelta(days=args.days), end))
    elif args.runs_command == 'cleanup':
        cutoff = datetime.now(timezone.utc) - timedelta(days=args.days)
        deleted = store.delete_import_runs_before(cutoff)
        logger.info(f"Deleted {deleted} old import runs")
        emit({'deleted': deleted})
    return 0


def run_queue_command(queue: JobQueue, args: argparse.Namespace) -> int:
    if args.queue_command == 'stats':
        emit(queue.get_stats())
    elif args.queue_command == 'health':
        health = queue.check_health()
        emit(health)
        return 0 if health['is_healthy'] else 2
    elif args.queue_command == 'jobs':
        emit(queue.get_jobs(args.state, args.limit))
    elif args.queue_command == 'retry':
        queue.retry(args.entry_id)
        emit({'message': f"Job {args.entry_id} has been retried"})
    elif args.queue_command == 'clean':
        count = queue.clean_completed() if args.state == 'completed' else queue.clean_failed()
        emit({'message': f"Cleared {count} {args.state} jobs"})
    elif args.queue_command == 'pause':
        queue.pause()
        emit({'message': 'Queue has been paused'})
    elif args.queue_command == 'resume':
        queue.resume()
        emit({'message': 'Queue has been resumed'})
    return 0


def dispatch(args: argparse.Namespace, settings: Settings, store: JobStore, queue: JobQueue) -> int:
    if args.command == 'enqueue':
        emit(trigger_imports(settings, store, queue, args))
        return 0
    if args.command == 'work':
        return run_work(settings, store, queue)
    if args.command == 'run':
        return run_local(settings, store, queue, args)
    if args.command == 'retry-run':
        emit(asdict(retry_import_run(store, queue, args.run_id)))
        return 0
    if args.command == 'runs':
        return run_runs_command(store, args)
    return run_queue_command(queue, args)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the importer CLI.

    Returns:
        Exit code (0 = success, 1 = operation refused, 2 = fatal error, 130 = interrupted)
    """
    args = parse_args(argv)

    # Set logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    db: Optional[Database] = None
    try:
        settings = Settings.from_env()

        if getattr(args, 'in_memory', False):
            store: JobStore = InMemoryJobStore()
            queue: JobQueue = InMemoryJobQueue(settings.queue_name, build_policy(settings))
            return dispatch(args, settings, store, queue)

        logger.info("Connecting to database")
        db = connect_database(settings)

        if args.command == 'init-db':
            init_schema(db)
            init_queue_schema(db)
            logger.info("Database schema ready")
            return 0

        store = PostgresJobStore(db)
        queue = PostgresJobQueue(db, settings.queue_name, build_policy(settings))
        return dispatch(args, settings, store, queue)

    except (QueueError, ImportRunError) as e:
        logger.error(f"Operation refused: {e}")
        return 1

    except (DatabaseError, StoreError) as e:
        logger.error(f"Database error: {e}")
        return 2

    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        return 2

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130  # Standard Unix exit code for SIGINT

    except Exception as e:
        logger.error(
            "Unexpected fatal error",
            extra={
                'error': str(e),
                'error_type': type(e).__name__,
            },
            exc_info=True
        )
        return 2

    finally:
        if db is not None:
            db.close()


if __name__ == '__main__':
    sys.exit(main())
