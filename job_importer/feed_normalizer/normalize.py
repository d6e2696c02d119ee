"""
Feed Entry Normalization

This module turns the entries of one feed into JobDraft objects, the
canonical shape consumed by the upsert engine.

Key Responsibilities:
- One normalization function per entry shape (RSS item, generic job)
- Tag every draft with the feed's source (host name + feed URL)
- Degrade gracefully: an entry whose extraction blows up still yields a
  draft with permissive defaults; only fetch and parse errors abort a feed
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .extract import (
    DEFAULT_COMPANY,
    DEFAULT_LOCATION,
    clean_html,
    clean_text,
    extract_categories,
    extract_company,
    extract_expiry_date,
    extract_job_type,
    extract_location,
    extract_salary,
    extract_source_name,
    generate_source_id,
    guid_text,
    node_text,
    normalize_job_type,
    parse_date,
)
from .feed_parser import parse_feed, sniff_entries
from .fetcher import FETCH_TIMEOUT_SECONDS, FeedBody, fetch_feed
from .models import FeedEntry, FeedSource, GenericEntry, JobDraft, RssEntry

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_rss_entry(entry: RssEntry, source: FeedSource) -> JobDraft:
    """
    Normalize one RSS item.

    Args:
        entry: RSS item produced by sniff_entries()
        source: Feed the item came from

    Returns:
        JobDraft; source_id falls back to link, then to a generated id
    """
    guid = guid_text(entry.guid)
    link = clean_text(entry.link)
    published = parse_date(entry.pubdate) or _now()

    return JobDraft(
        source_id=guid or link or generate_source_id(entry.title, entry.pubdate),
        title=clean_text(entry.title),
        description=clean_html(entry.description or entry.content_encoded),
        company=extract_company((entry.company, entry.employer, entry.creator), entry.title),
        location=extract_location(
            (entry.location, entry.job_location), entry.title, entry.description
        ),
        categories=extract_categories(entry.category),
        job_type=extract_job_type(entry.title, entry.description, entry.type),
        salary=extract_salary(entry.salary, entry.title, entry.description),
        source_url=link or guid,
        apply_url=link or guid,
        source=source,
        published_date=published,
        expiry_date=extract_expiry_date(entry.expiry, published),
        raw_data=entry.raw,
    )


def normalize_generic_entry(entry: GenericEntry, source: FeedSource) -> JobDraft:
    """
    Normalize one `<job>` of a generic jobs feed.

    The declared type goes through normalize_job_type(), so alternate
    spellings such as "fulltime" or "intern" land on the enumeration.
    """
    source_id = clean_text(entry.id)
    url = clean_text(entry.url)
    published = parse_date(entry.date) or _now()

    return JobDraft(
        source_id=source_id or generate_source_id(entry.title, entry.date),
        title=clean_text(entry.title),
        description=clean_html(entry.description),
        company=clean_text(entry.company) or DEFAULT_COMPANY,
        location=clean_text(entry.location) or DEFAULT_LOCATION,
        categories=extract_categories(entry.category),
        job_type=normalize_job_type(entry.type),
        salary=extract_salary(entry.salary, entry.title, entry.description),
        source_url=url,
        apply_url=clean_text(entry.apply_url) or url,
        source=source,
        published_date=published,
        expiry_date=extract_expiry_date(entry.expiry, published),
        raw_data=entry.raw,
    )


NORMALIZERS: dict[type, Callable[..., JobDraft]] = {
    RssEntry: normalize_rss_entry,
    GenericEntry: normalize_generic_entry,
}


def _fallback_draft(entry: FeedEntry, source: FeedSource) -> JobDraft:
    """Draft built from the bare minimum when the normal path fails."""
    raw = entry.raw if isinstance(entry.raw, dict) else {}
    title = node_text(raw.get("title") or raw.get("jobtitle")).strip()
    published = _now()
    return JobDraft(
        source_id=generate_source_id(title, None),
        title=title,
        source=source,
        published_date=published,
        expiry_date=extract_expiry_date(None, published),
        raw_data=raw,
    )


def normalize_entry(entry: FeedEntry, source: FeedSource) -> JobDraft:
    """Dispatch to the normalizer for the entry's shape, never raising."""
    normalizer = NORMALIZERS[type(entry)]
    try:
        return normalizer(entry, source)
    except Exception as e:
        logger.warning(
            "Failed to extract feed entry, using defaults",
            extra={
                "source": source.name,
                "entry_type": type(entry).__name__,
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        return _fallback_draft(entry, source)


def parse_job_feed(text: FeedBody, source_url: str) -> list[JobDraft]:
    """
    Parse a feed body into drafts.

    Raises:
        ParseError: If the body is not well-formed XML
    """
    source = FeedSource(name=extract_source_name(source_url), url=source_url)
    entries = sniff_entries(parse_feed(text))
    drafts = [normalize_entry(entry, source) for entry in entries]

    logger.info(
        "Parsed jobs from feed",
        extra={"source": source.name, "source_url": source_url, "jobs": len(drafts)},
    )
    return drafts


def fetch_and_parse_feed(
    source_url: str,
    timeout: float = FETCH_TIMEOUT_SECONDS,
    fetcher: Optional[Callable[..., FeedBody]] = None,
) -> list[JobDraft]:
    """
    Fetch one feed and normalize its entries.

    Args:
        source_url: Feed URL
        timeout: HTTP timeout in seconds (default: 30)
        fetcher: Replacement for fetch_feed (same signature)

    Returns:
        List of JobDraft in feed order

    Raises:
        FetchError: If the feed cannot be downloaded
        ParseError: If the body is not well-formed XML
    """
    text = (fetcher or fetch_feed)(source_url, timeout=timeout)
    return parse_job_feed(text, source_url)
