"""
Feed source configuration loader.

This module reads the list of job feeds from `config/sources.yml`. The CLI
uses it to enqueue every enabled feed when no explicit source is given.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .extract import extract_source_name

logger = logging.getLogger(__name__)


@dataclass
class FeedSourceConfig:
    """Configuration for a single feed."""

    url: str
    enabled: bool = True
    priority: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return extract_source_name(self.url)


def _project_root() -> Path:
    """Return the project root path based on this file's location."""
    return Path(__file__).resolve().parent.parent.parent


def _feed_from_entry(index: int, entry: Any) -> FeedSourceConfig:
    """Build one FeedSourceConfig from a `feeds` list item (URL string or mapping)."""
    if isinstance(entry, str):
        entry = {"url": entry}
    if not isinstance(entry, Mapping):
        raise ValueError(f"Feed #{index} must be a URL or a mapping, got {type(entry).__name__}")

    url = entry.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError(f"Feed #{index} needs a non-empty `url`")
    url = url.strip()

    priority = entry.get("priority", 0)
    # bool is an int subclass
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValueError(f"Feed {url}: `priority` must be an integer")

    metadata = entry.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        raise ValueError(f"Feed {url}: `metadata` must be a mapping")

    return FeedSourceConfig(
        url=url,
        enabled=bool(entry.get("enabled", True)),
        priority=priority,
        metadata=dict(metadata),
    )


def load_sources_config(config_path: str | None = None) -> list[FeedSourceConfig]:
    """
    Read the feed list.

    Args:
        config_path: YAML file to read; `config/sources.yml` under the
            project root when omitted

    Returns:
        Feeds in file order, disabled ones included

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On invalid YAML or an invalid feed entry
    """
    path = Path(config_path) if config_path else _project_root() / "config" / "sources.yml"
    if not path.is_file():
        raise FileNotFoundError(f"Feed configuration not found: {path}")

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if document is None:
        logger.warning(f"Feed configuration {path} is empty")
        return []

    feeds = document.get("feeds") if isinstance(document, Mapping) else None
    if not isinstance(feeds, list):
        raise ValueError(f"{path}: `feeds` section must be a list")

    sources = [_feed_from_entry(index, entry) for index, entry in enumerate(feeds)]
    logger.info(
        f"Loaded {len(sources)} feeds from {path}",
        extra={"enabled_feeds": sum(1 for source in sources if source.enabled)},
    )
    return sources


__all__ = ["FeedSourceConfig", "load_sources_config"]
