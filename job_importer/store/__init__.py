"""Persistence of job records and import runs."""

from .base import JOB_STATUSES, JobStore, StoreError
from .memory import InMemoryJobStore
from .postgres import PostgresJobStore, init_schema

__all__ = [
    "JOB_STATUSES",
    "InMemoryJobStore",
    "JobStore",
    "PostgresJobStore",
    "StoreError",
    "init_schema",
]
