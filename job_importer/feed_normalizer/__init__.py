"""Feed Normalizer.

Fetches one remote job feed and converts its entries into JobDraft objects.

Main components:
- fetch_feed: HTTP download with a bounded timeout (fetcher.py)
- parse_feed / sniff_entries: XML conversion and schema detection (feed_parser.py)
- normalize_rss_entry / normalize_generic_entry: per-shape field extraction (normalize.py)
- load_sources_config: list of configured feeds (source_config.py)
"""

from .feed_parser import ParseError, parse_feed, sniff_entries
from .fetcher import FetchError, fetch_feed
from .models import FeedSource, GenericEntry, JobDraft, RssEntry, Salary
from .normalize import fetch_and_parse_feed, parse_job_feed
from .source_config import FeedSourceConfig, load_sources_config

__all__ = [
    "FeedSource",
    "FeedSourceConfig",
    "FetchError",
    "GenericEntry",
    "JobDraft",
    "ParseError",
    "RssEntry",
    "Salary",
    "fetch_and_parse_feed",
    "fetch_feed",
    "load_sources_config",
    "parse_feed",
    "parse_job_feed",
    "sniff_entries",
]
