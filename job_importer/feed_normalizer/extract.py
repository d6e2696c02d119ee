"""
Field Extraction Heuristics

Feeds disagree on where they put the company, the location or the salary,
and many only mention them inside the title or description. The helpers in
this module read one field each and never raise on odd input: a value that
cannot be understood falls back to the documented default.

Key Responsibilities:
- Unwrap text nodes produced by the XML converter
- Strip HTML and the common named entities from text
- Find company, location, job type and salary in free text
- Parse the date formats found in feeds (RFC 822, ISO 8601, unix time)
"""

import json
import logging
import re
import time
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional
from urllib.parse import urlparse

from .feed_parser import TEXT_KEY
from .models import DEFAULT_JOB_TYPE, Salary

logger = logging.getLogger(__name__)

DEFAULT_COMPANY = "Unknown Company"
DEFAULT_LOCATION = "Remote"
EXPIRY_DAYS = 30

HTML_TAG_RE = re.compile(r"<[^>]*>?", re.MULTILINE)
HTML_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)

COMPANY_IN_TITLE_RE = re.compile(r"\sat\s(.+?)(?:\s-|\s\||$)", re.IGNORECASE)
LOCATION_IN_TEXT_RE = re.compile(r"(?:location|based in|office in):\s*([^,\n<]+)", re.IGNORECASE)
SALARY_RANGE_RE = re.compile(
    r"\$\s?([\d,]+)\s*-\s*\$?\s?([\d,]+)(?:\s*(?:per\s+|/\s*)([a-z]+))?",
    re.IGNORECASE,
)
SALARY_FIELD_RE = re.compile(r"\$?\s?([\d,]+)\s*-?\s*\$?\s?([\d,]+)?")

# Checked in order, first match wins
JOB_TYPE_KEYWORDS = (
    ("full-time", ("full-time", "full time")),
    ("part-time", ("part-time", "part time")),
    ("contract", ("contract",)),
    ("freelance", ("freelance",)),
    ("internship", ("internship",)),
    ("temporary", ("temporary",)),
)

JOB_TYPE_ALIASES = {
    "fulltime": "full-time",
    "parttime": "part-time",
    "contract": "contract",
    "contractor": "contract",
    "freelance": "freelance",
    "internship": "internship",
    "intern": "internship",
    "temporary": "temporary",
    "temp": "temporary",
}


def node_text(value: Any) -> str:
    """
    Return the text carried by a converted XML value.

    Handles plain strings, `{"_": text}` text nodes (elements with
    attributes), lists (first non-empty entry) and scalars.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        text = value.get(TEXT_KEY)
        return text if isinstance(text, str) else ""
    if isinstance(value, list):
        for item in value:
            text = node_text(item)
            if text.strip():
                return text
        return ""
    return str(value)


def clean_text(value: Any) -> str:
    """Unwrap, strip HTML and trim a text field."""
    return clean_html(node_text(value))


def clean_html(html: Any) -> str:
    """
    Remove HTML tags and unescape the common named entities.

    Examples:
        >>> clean_html("<p>Python &amp; SQL</p>")
        'Python & SQL'
    """
    text = node_text(html)
    if not text:
        return ""
    text = HTML_TAG_RE.sub("", text)
    for entity, replacement in HTML_ENTITIES:
        text = text.replace(entity, replacement)
    return text.strip()


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a feed date.

    Supports:
    - RFC 822 strings used by RSS (e.g., "Mon, 06 Oct 2025 10:00:00 +0000")
    - ISO 8601 strings (e.g., "2025-10-15T10:00:00Z")
    - Unix timestamps (seconds since epoch)
    - datetime objects (passed through)

    Returns:
        Timezone-aware datetime or None if invalid/missing
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            logger.warning("Failed to parse Unix timestamp", extra={"value": value})
            return None

    text = node_text(value).strip()
    if not text:
        return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            logger.debug("Failed to parse date string", extra={"value": text})
            return None

    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def generate_source_id(title: Any, published: Any) -> str:
    """
    Build an id for entries that carry neither guid nor link.

    The id is the title reduced to lowercase letters and digits, followed by
    the publish time in epoch milliseconds (now when the date is missing).
    """
    title_part = re.sub(r"[^a-z0-9]", "", node_text(title).lower())
    date = parse_date(published)
    millis = int(date.timestamp() * 1000) if date else int(time.time() * 1000)
    return f"{title_part}-{millis}"


def guid_text(guid: Any) -> str:
    """Unwrap an RSS guid; a guid mapping without text is serialized as JSON."""
    if guid is None:
        return ""
    if isinstance(guid, str):
        return guid.strip()
    if isinstance(guid, dict):
        text = guid.get(TEXT_KEY)
        if isinstance(text, str) and text.strip():
            return text.strip()
        return json.dumps(guid, sort_keys=True, default=str)
    return node_text(guid).strip()


def extract_company(explicit: tuple[Any, ...], title: Any) -> str:
    """First non-empty explicit field, else " at <Company>" in the title."""
    for value in explicit:
        company = clean_text(value)
        if company:
            return company

    match = COMPANY_IN_TITLE_RE.search(node_text(title))
    if match:
        company = clean_html(match.group(1))
        if company:
            return company

    return DEFAULT_COMPANY


def extract_location(explicit: tuple[Any, ...], title: Any, description: Any) -> str:
    """First non-empty explicit field, else a "Location: ..." phrase, else Remote."""
    for value in explicit:
        location = clean_text(value)
        if location:
            return location

    text = f"{node_text(title)} {node_text(description)}"
    match = LOCATION_IN_TEXT_RE.search(text)
    if match:
        location = clean_html(match.group(1))
        if location:
            return location

    return DEFAULT_LOCATION


def extract_categories(value: Any) -> list[str]:
    """Flatten category fields into a list of trimmed, non-empty strings."""
    if value is None:
        return []
    values = value if isinstance(value, list) else [value]
    categories = [clean_text(item) for item in values]
    return [category for category in categories if category]


def extract_job_type(*texts: Any) -> str:
    """
    Scan free text for an employment type keyword.

    Returns:
        The first keyword found in priority order, "full-time" otherwise
    """
    haystack = " ".join(node_text(text) for text in texts).lower()
    for job_type, keywords in JOB_TYPE_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return job_type
    return DEFAULT_JOB_TYPE


def normalize_job_type(value: Any) -> str:
    """
    Map a declared job type to the enumeration.

    Examples:
        >>> normalize_job_type("Full Time")
        'full-time'
        >>> normalize_job_type("INTERN")
        'internship'
    """
    normalized = re.sub(r"[^a-z]", "", node_text(value).lower())
    return JOB_TYPE_ALIASES.get(normalized, DEFAULT_JOB_TYPE)


def _parse_amount(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    digits = value.replace(",", "")
    if not digits.isdigit():
        return None
    return int(digits)


def _salary_from_mapping(value: dict[str, Any]) -> Optional[Salary]:
    if TEXT_KEY in value and not any(key in value for key in ("min", "max")):
        return parse_salary_text(value[TEXT_KEY])

    def amount(key: str) -> Optional[int]:
        raw = node_text(value.get(key)).strip()
        try:
            return int(float(raw.replace(",", ""))) if raw else None
        except ValueError:
            return None

    minimum, maximum = amount("min"), amount("max")
    if minimum is None and maximum is None:
        return None
    return Salary(
        min=minimum,
        max=maximum if maximum is not None else minimum,
        currency=clean_text(value.get("currency")) or "USD",
        period=clean_text(value.get("period")).lower() or "year",
    )


def parse_salary_text(text: Any) -> Optional[Salary]:
    """Parse an explicit salary field such as "$50,000 - $70,000" or "90000"."""
    match = SALARY_FIELD_RE.search(node_text(text))
    if not match:
        return None
    minimum = _parse_amount(match.group(1))
    if minimum is None:
        return None
    maximum = _parse_amount(match.group(2))
    return Salary(min=minimum, max=maximum if maximum is not None else minimum)


def extract_salary(explicit: Any, title: Any, description: Any) -> Optional[Salary]:
    """
    Read a salary range.

    An explicit salary field wins; otherwise title and description are
    scanned for "$N - $M [per <period>]".

    Examples:
        >>> extract_salary(None, "", "Pays $60,000 - $80,000 per year")
        Salary(min=60000, max=80000, currency='USD', period='year')
    """
    if explicit:
        if isinstance(explicit, dict):
            salary = _salary_from_mapping(explicit)
        else:
            salary = parse_salary_text(explicit)
        if salary is not None:
            return salary

    text = f"{node_text(title)} {node_text(description)}"
    match = SALARY_RANGE_RE.search(text)
    if not match:
        return None

    minimum = _parse_amount(match.group(1))
    maximum = _parse_amount(match.group(2))
    if minimum is None or maximum is None:
        return None

    return Salary(
        min=minimum,
        max=maximum,
        currency="USD",
        period=(match.group(3) or "year").lower(),
    )


def extract_expiry_date(explicit: Any, published: datetime) -> datetime:
    """Explicit expiry date if parseable, else published + 30 days."""
    expiry = parse_date(explicit)
    if expiry is not None:
        return expiry
    return published + timedelta(days=EXPIRY_DAYS)


def extract_source_name(url: str) -> str:
    """
    Feed host without a leading "www.".

    Examples:
        >>> extract_source_name("https://www.jobicy.com/?feed=job_feed")
        'jobicy.com'
    """
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return "unknown"
    if host.startswith("www."):
        host = host[len("www."):]
    return host or "unknown"
