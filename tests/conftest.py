"""
Pytest configuration and shared fixtures

This file contains test fixtures that can be used across all tests.
Fixtures are reusable components that set up test preconditions.

Learn more: https://docs.pytest.org/en/stable/fixture.html
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from job_importer.feed_normalizer.models import FeedSource, JobDraft
from job_importer.queue.memory import InMemoryJobQueue
from job_importer.store.memory import InMemoryJobStore


RSS_FEED_URL = "https://www.jobicy.com/?feed=job_feed"
GENERIC_FEED_URL = "https://jobs.example.org/export.xml"

SAMPLE_RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:dc="http://purl.org/dc/elements/1.1/"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:job="https://jobicy.com/ns/job">
  <channel>
    <title>Remote Jobs</title>
    <item>
      <title>Senior Data Engineer at Acme Corp</title>
      <link>https://jobicy.com/jobs/1001-senior-data-engineer</link>
      <guid isPermaLink="false">jobicy-1001</guid>
      <pubDate>Mon, 06 Oct 2025 10:00:00 +0000</pubDate>
      <description><![CDATA[<p>Full-time role. Pay: $60,000 - $80,000 per year.</p>]]></description>
      <category>Data Science</category>
      <category>Engineering</category>
      <job:location>Canada</job:location>
    </item>
    <item>
      <title>Contract Copywriter</title>
      <link>https://jobicy.com/jobs/1002-copywriter</link>
      <guid>jobicy-1002</guid>
      <pubDate>Tue, 07 Oct 2025 08:30:00 +0000</pubDate>
      <dc:creator>Wordsmiths Ltd</dc:creator>
      <description>Location: Berlin, Germany &amp; remote friendly</description>
    </item>
    <item>
      <link>https://jobicy.com/jobs/1003-untitled</link>
      <guid>jobicy-1003</guid>
      <description>An entry that lost its title</description>
    </item>
  </channel>
</rss>
"""

SAMPLE_GENERIC_FEED = """<?xml version="1.0"?>
<jobs>
  <job>
    <id>4711</id>
    <title>Lab Intern</title>
    <company>Institute of Things</company>
    <location>Boston, MA</location>
    <type>Intern</type>
    <url>https://jobs.example.org/4711</url>
    <date>2025-10-15T10:00:00Z</date>
    <salary><min>20000</min><max>25000</max><currency>USD</currency></salary>
  </job>
  <job>
    <id>4712</id>
    <title>Professor of Physics</title>
    <type>fulltime</type>
    <url>https://jobs.example.org/4712</url>
  </job>
</jobs>
"""


class FakeClock:
    """Controllable clock for queue backoff and retention tests."""

    def __init__(self, start: datetime = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingPublisher:
    """EventPublisher that keeps every event for assertions."""

    def __init__(self):
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name for event in self.events]


@pytest.fixture(scope="session")
def database_url() -> str:
    """
    Provide database URL for integration tests.

    Integration tests create and drop tables, so they only run against the
    disposable database named by TEST_DATABASE_URL.

    Scope: session (created once per test run)

    Returns:
        str: PostgreSQL connection URL, or "" when not configured
    """
    return os.getenv("TEST_DATABASE_URL", "")


@pytest.fixture
def rss_feed() -> str:
    """RSS feed with three items; the last one has no title."""
    return SAMPLE_RSS_FEED


@pytest.fixture
def rss_feed_url() -> str:
    return RSS_FEED_URL


@pytest.fixture
def generic_feed() -> str:
    """`<jobs>` feed with two entries."""
    return SAMPLE_GENERIC_FEED


@pytest.fixture
def generic_feed_url() -> str:
    return GENERIC_FEED_URL


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock: FakeClock) -> InMemoryJobQueue:
    return InMemoryJobQueue(clock=clock)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def feed_source() -> FeedSource:
    return FeedSource(name="jobicy.com", url=RSS_FEED_URL)


@pytest.fixture
def make_draft(feed_source: FeedSource):
    """
    Factory for JobDraft objects.

    Usage:
        draft = make_draft("42", title="Data Engineer")
    """

    def _make(source_id="1", title="Data Engineer", **overrides) -> JobDraft:
        fields = {
            "source_id": source_id,
            "title": title,
            "source": feed_source,
            "company": "Acme Corp",
            "source_url": f"https://jobicy.com/jobs/{source_id}",
            "published_date": datetime(2025, 10, 6, 10, 0, tzinfo=timezone.utc),
        }
        fields.update(overrides)
        return JobDraft(**fields)

    return _make


# Mark tests based on their type for selective running
def pytest_configure(config):
    """
    Register custom pytest markers.

    This allows us to run specific test categories:
    - pytest -m unit        (run only unit tests)
    - pytest -m integration (run only integration tests)
    - pytest -m "not slow"  (skip slow tests)
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (isolated, fast)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires PostgreSQL)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>1 second)"
    )
