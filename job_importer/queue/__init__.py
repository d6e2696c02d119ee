"""Durable job queue with retry/backoff and the worker pool that consumes it."""

from .base import (
    ACTIVE,
    COMPLETED,
    DELAYED,
    FAILED,
    STATES,
    WAITING,
    JobQueue,
    QueueEntry,
    QueueError,
    QueuePolicy,
)
from .memory import InMemoryJobQueue
from .postgres import PostgresJobQueue, init_queue_schema
from .worker_pool import WorkerPool

__all__ = [
    "ACTIVE",
    "COMPLETED",
    "DELAYED",
    "FAILED",
    "STATES",
    "WAITING",
    "InMemoryJobQueue",
    "JobQueue",
    "PostgresJobQueue",
    "QueueEntry",
    "QueueError",
    "QueuePolicy",
    "WorkerPool",
    "init_queue_schema",
]
