"""
Unit tests for feed entry normalization.

These tests run complete feed bodies through parse_job_feed() and check
the resulting JobDraft objects field by field.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from job_importer.feed_normalizer.feed_parser import ParseError
from job_importer.feed_normalizer.models import FeedSource, RssEntry, Salary
from job_importer.feed_normalizer.normalize import (
    NORMALIZERS,
    fetch_and_parse_feed,
    normalize_entry,
    parse_job_feed,
)


# ============================================================================
# RSS Feeds
# ============================================================================


class TestRssNormalization:
    """Tests for RSS items."""

    def test_one_draft_per_item(self, rss_feed, rss_feed_url):
        drafts = parse_job_feed(rss_feed, rss_feed_url)

        assert [draft.source_id for draft in drafts] == ["jobicy-1001", "jobicy-1002", "jobicy-1003"]

    def test_drafts_carry_feed_source(self, rss_feed, rss_feed_url):
        drafts = parse_job_feed(rss_feed, rss_feed_url)

        assert all(draft.source == FeedSource(name="jobicy.com", url=rss_feed_url) for draft in drafts)

    def test_fields_of_a_complete_item(self, rss_feed, rss_feed_url):
        draft = parse_job_feed(rss_feed, rss_feed_url)[0]

        assert draft.title == "Senior Data Engineer at Acme Corp"
        assert draft.company == "Acme Corp"
        assert draft.location == "Canada"
        assert draft.categories == ["Data Science", "Engineering"]
        assert draft.job_type == "full-time"
        assert draft.salary == Salary(min=60000, max=80000, currency="USD", period="year")
        assert draft.description == "Full-time role. Pay: $60,000 - $80,000 per year."
        assert draft.source_url == "https://jobicy.com/jobs/1001-senior-data-engineer"
        assert draft.apply_url == draft.source_url
        assert draft.published_date == datetime(2025, 10, 6, 10, 0, tzinfo=timezone.utc)
        assert draft.expiry_date == draft.published_date + timedelta(days=30)
        assert draft.raw_data["guid"]["_"] == "jobicy-1001"

    def test_creator_and_description_heuristics(self, rss_feed, rss_feed_url):
        draft = parse_job_feed(rss_feed, rss_feed_url)[1]

        assert draft.company == "Wordsmiths Ltd"
        assert draft.location == "Berlin"
        assert draft.job_type == "contract"
        assert draft.salary is None

    def test_item_without_title_is_kept(self, rss_feed, rss_feed_url):
        """Validation happens at upsert time, not while normalizing."""
        draft = parse_job_feed(rss_feed, rss_feed_url)[2]

        assert draft.title == ""
        assert draft.company == "Unknown Company"
        assert draft.location == "Remote"

    def test_link_is_used_without_guid(self, rss_feed_url):
        xml = "<rss><channel><item><title>Dev</title><link>https://x.test/1</link></item></channel></rss>"

        draft = parse_job_feed(xml, rss_feed_url)[0]

        assert draft.source_id == "https://x.test/1"

    def test_generated_id_without_guid_or_link(self, rss_feed_url):
        xml = (
            "<rss><channel><item><title>Dev Ops</title>"
            "<pubDate>2025-10-15T10:00:00Z</pubDate></item></channel></rss>"
        )

        draft = parse_job_feed(xml, rss_feed_url)[0]

        assert draft.source_id == "devops-1760522400000"
        assert draft.source_url == ""

    def test_content_encoded_used_without_description(self, rss_feed_url):
        xml = (
            '<rss xmlns:content="http://purl.org/rss/1.0/modules/content/"><channel><item>'
            "<title>Dev</title><guid>g1</guid>"
            "<content:encoded><![CDATA[<div>Rich body</div>]]></content:encoded>"
            "</item></channel></rss>"
        )

        draft = parse_job_feed(xml, rss_feed_url)[0]

        assert draft.description == "Rich body"

    def test_missing_date_defaults_to_now(self, rss_feed_url):
        xml = "<rss><channel><item><title>Dev</title><guid>g1</guid></item></channel></rss>"
        before = datetime.now(timezone.utc)

        draft = parse_job_feed(xml, rss_feed_url)[0]

        assert draft.published_date >= before


# ============================================================================
# Generic Feeds
# ============================================================================


class TestGenericNormalization:
    """Tests for `<jobs><job>` feeds."""

    def test_declared_fields(self, generic_feed, generic_feed_url):
        draft = parse_job_feed(generic_feed, generic_feed_url)[0]

        assert draft.source_id == "4711"
        assert draft.source.name == "jobs.example.org"
        assert draft.company == "Institute of Things"
        assert draft.location == "Boston, MA"
        assert draft.job_type == "internship"
        assert draft.salary == Salary(min=20000, max=25000, currency="USD", period="year")
        assert draft.source_url == "https://jobs.example.org/4711"
        assert draft.apply_url == "https://jobs.example.org/4711"
        assert draft.published_date == datetime(2025, 10, 15, 10, 0, tzinfo=timezone.utc)

    def test_defaults_for_missing_fields(self, generic_feed, generic_feed_url):
        draft = parse_job_feed(generic_feed, generic_feed_url)[1]

        assert draft.company == "Unknown Company"
        assert draft.location == "Remote"
        assert draft.job_type == "full-time"
        assert draft.salary is None


# ============================================================================
# Error Handling
# ============================================================================


class TestNormalizeErrors:
    """Tests for degraded entries and unreadable feeds."""

    def test_failing_extraction_yields_fallback_draft(self, feed_source):
        entry = RssEntry.from_mapping({"title": "Broken item", "guid": "g-9"})
        failing = Mock(side_effect=RuntimeError("boom"))

        with patch.dict(NORMALIZERS, {RssEntry: failing}):
            draft = normalize_entry(entry, feed_source)

        assert draft.title == "Broken item"
        assert draft.source == feed_source
        assert draft.source_id.startswith("brokenitem-")
        assert draft.raw_data == {"title": "Broken item", "guid": "g-9"}

    def test_malformed_feed_raises(self, rss_feed_url):
        with pytest.raises(ParseError):
            parse_job_feed("<rss><channel>", rss_feed_url)

    def test_unrecognized_feed_is_empty(self, rss_feed_url):
        assert parse_job_feed("<html><body/></html>", rss_feed_url) == []


class TestFetchAndParse:
    """Tests for fetch_and_parse_feed()."""

    def test_uses_injected_fetcher(self, rss_feed, rss_feed_url):
        fetcher = Mock(return_value=rss_feed)

        drafts = fetch_and_parse_feed(rss_feed_url, timeout=7, fetcher=fetcher)

        fetcher.assert_called_once_with(rss_feed_url, timeout=7)
        assert len(drafts) == 3

    @patch("job_importer.feed_normalizer.normalize.fetch_feed")
    def test_defaults_to_http_fetch(self, mock_fetch, generic_feed, generic_feed_url):
        mock_fetch.return_value = generic_feed

        drafts = fetch_and_parse_feed(generic_feed_url)

        mock_fetch.assert_called_once_with(generic_feed_url, timeout=30)
        assert [draft.source_id for draft in drafts] == ["4711", "4712"]


# ============================================================================
# Mark all tests as unit tests
# ============================================================================

pytestmark = pytest.mark.unit
