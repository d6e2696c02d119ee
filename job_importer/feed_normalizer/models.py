"""Data classes for feed entries and normalized job drafts.

Feed entries are a tagged variant: `RssEntry` for RSS-shaped items
(`channel.item` or bare `item` lists) and `GenericEntry` for `jobs.job`
feeds. Each exposes the fields the normalizer knows about as explicit
optional attributes; anything else stays in `raw`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

JOB_TYPES = ("full-time", "part-time", "contract", "freelance", "internship", "temporary")
DEFAULT_JOB_TYPE = "full-time"


@dataclass(frozen=True)
class FeedSource:
    """Feed a draft was read from; `name` is half of the natural key."""

    name: str
    url: str


@dataclass
class Salary:
    min: Optional[int]
    max: Optional[int]
    currency: str = "USD"
    period: str = "year"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class JobDraft:
    """A normalized job posting that has not been merged into the store yet."""

    source_id: Optional[str]
    title: str
    source: Optional[FeedSource]
    description: str = ""
    company: str = "Unknown Company"
    location: str = "Remote"
    categories: list[str] = field(default_factory=list)
    job_type: str = DEFAULT_JOB_TYPE
    salary: Optional[Salary] = None
    source_url: str = ""
    apply_url: str = ""
    published_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    raw_data: Optional[dict[str, Any]] = None


@dataclass
class RssEntry:
    """An RSS `<item>` with the fields the RSS normalizer reads."""

    raw: dict[str, Any]
    guid: Any = None
    link: Any = None
    title: Any = None
    description: Any = None
    content_encoded: Any = None
    pubdate: Any = None
    company: Any = None
    employer: Any = None
    creator: Any = None
    location: Any = None
    job_location: Any = None
    category: Any = None
    type: Any = None
    expiry: Any = None
    salary: Any = None

    @classmethod
    def from_mapping(cls, item: Any) -> "RssEntry":
        item = item if isinstance(item, dict) else {"_": item}
        return cls(
            raw=item,
            guid=item.get("guid"),
            link=item.get("link"),
            title=item.get("title"),
            description=item.get("description"),
            content_encoded=item.get("content:encoded"),
            pubdate=item.get("pubdate"),
            company=item.get("company"),
            employer=item.get("employer"),
            creator=item.get("dc:creator"),
            location=item.get("location"),
            job_location=item.get("job:location"),
            category=item.get("category"),
            type=item.get("type"),
            expiry=item.get("expirydate") or item.get("expiry") or item.get("job:expiry"),
            salary=item.get("salary"),
        )


@dataclass
class GenericEntry:
    """A `<job>` element of a `<jobs>` feed."""

    raw: dict[str, Any]
    id: Any = None
    title: Any = None
    description: Any = None
    company: Any = None
    location: Any = None
    category: Any = None
    type: Any = None
    url: Any = None
    apply_url: Any = None
    date: Any = None
    expiry: Any = None
    salary: Any = None

    @classmethod
    def from_mapping(cls, item: Any) -> "GenericEntry":
        item = item if isinstance(item, dict) else {"_": item}
        return cls(
            raw=item,
            id=item.get("id") or item.get("jobid"),
            title=item.get("title") or item.get("jobtitle"),
            description=item.get("description") or item.get("jobdescription"),
            company=item.get("company") or item.get("employer"),
            location=item.get("location") or item.get("joblocation"),
            category=item.get("category"),
            type=item.get("type") or item.get("jobtype"),
            url=item.get("url") or item.get("link"),
            apply_url=item.get("applyurl") or item.get("url") or item.get("link"),
            date=item.get("date") or item.get("postdate"),
            expiry=item.get("expiry") or item.get("expirydate"),
            salary=item.get("salary"),
        )


FeedEntry = Union[RssEntry, GenericEntry]
