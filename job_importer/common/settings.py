"""
Runtime settings for the importer.

Values come from environment variables (optionally loaded from a `.env`
file by the CLI). Every component receives its settings explicitly; nothing
reads the environment after start-up.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

DEFAULT_QUEUE_NAME = "job-import"


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Importer configuration."""

    database_url: Optional[str] = None
    worker_concurrency: int = 2
    batch_size: int = 50
    fetch_timeout_seconds: float = 30.0
    queue_name: str = DEFAULT_QUEUE_NAME
    queue_attempts: int = 3
    queue_backoff_seconds: float = 5.0
    queue_poll_interval_seconds: float = 1.0
    queue_stalled_after_seconds: float = 600.0
    queue_heartbeat_interval_seconds: float = 30.0
    notify_webhook_url: Optional[str] = None
    sources_config: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)

        Returns:
            Settings instance

        Raises:
            ValueError: If a numeric variable cannot be parsed or is out of range
        """
        env = os.environ if env is None else env

        settings = cls(
            database_url=env.get("DATABASE_URL") or None,
            worker_concurrency=_int_env(env, "WORKER_CONCURRENCY", 2),
            batch_size=_int_env(env, "BATCH_SIZE", 50),
            fetch_timeout_seconds=_float_env(env, "FETCH_TIMEOUT_SECONDS", 30.0),
            queue_name=env.get("QUEUE_NAME") or DEFAULT_QUEUE_NAME,
            queue_attempts=_int_env(env, "QUEUE_ATTEMPTS", 3),
            queue_backoff_seconds=_float_env(env, "QUEUE_BACKOFF_SECONDS", 5.0),
            queue_poll_interval_seconds=_float_env(env, "QUEUE_POLL_INTERVAL_SECONDS", 1.0),
            queue_stalled_after_seconds=_float_env(env, "QUEUE_STALLED_AFTER_SECONDS", 600.0),
            queue_heartbeat_interval_seconds=_float_env(
                env, "QUEUE_HEARTBEAT_INTERVAL_SECONDS", 30.0
            ),
            notify_webhook_url=env.get("NOTIFY_WEBHOOK_URL") or None,
            sources_config=env.get("SOURCES_CONFIG") or None,
        )

        if settings.worker_concurrency < 1:
            raise ValueError("WORKER_CONCURRENCY must be at least 1")
        if settings.batch_size < 1:
            raise ValueError("BATCH_SIZE must be at least 1")
        if settings.queue_attempts < 1:
            raise ValueError("QUEUE_ATTEMPTS must be at least 1")
        if not 0 < settings.queue_heartbeat_interval_seconds < settings.queue_stalled_after_seconds:
            raise ValueError(
                "QUEUE_HEARTBEAT_INTERVAL_SECONDS must be positive and below QUEUE_STALLED_AFTER_SECONDS"
            )

        return settings
