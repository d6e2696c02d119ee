"""
HTTP fetching of job feeds.

A fetch is a single attempt: errors are reported as FetchError and the
retry decision belongs to the queue entry that owns the import run.
"""

import logging
from typing import Optional, Union

import requests

logger = logging.getLogger(__name__)

# Constants
FETCH_TIMEOUT_SECONDS = 30
USER_AGENT = "Mozilla/5.0 (compatible; JobImporter/1.0)"
ACCEPT = "application/rss+xml, application/xml, text/xml"

FeedBody = Union[str, bytes]


class FetchError(Exception):
    """Raised when a feed cannot be downloaded (network error, timeout, non-2xx)."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def fetch_feed(url: str, timeout: float = FETCH_TIMEOUT_SECONDS) -> FeedBody:
    """
    Download one feed.

    Args:
        url: Feed URL
        timeout: Request timeout in seconds (default: 30)

    Returns:
        Response body: text when the Content-Type names a charset, otherwise
        the raw bytes, which the XML parser decodes from the XML declaration

    Raises:
        FetchError: On timeouts, connection problems and non-2xx responses
    """
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": ACCEPT,
    }

    logger.info("Fetching feed", extra={"source_url": url, "timeout": timeout})

    try:
        response = requests.get(url, headers=headers, timeout=timeout)
    except requests.exceptions.Timeout as e:
        logger.error(
            "Feed request timed out",
            extra={"source_url": url, "timeout": timeout},
        )
        raise FetchError(f"Timed out after {timeout}s fetching {url}", url) from e
    except requests.exceptions.RequestException as e:
        logger.error(
            "Feed request failed",
            extra={"source_url": url, "error": str(e), "error_type": type(e).__name__},
        )
        raise FetchError(f"Failed to fetch {url}: {e}", url) from e

    if not 200 <= response.status_code < 300:
        logger.error(
            "Feed returned an error status",
            extra={"source_url": url, "status_code": response.status_code},
        )
        raise FetchError(
            f"Feed {url} returned HTTP {response.status_code}",
            url,
            status_code=response.status_code,
        )

    content_type = response.headers.get("Content-Type", "")
    # requests falls back to ISO-8859-1 for text/* without a charset
    body: FeedBody = response.text if "charset=" in content_type.lower() else response.content

    logger.info(
        "Feed fetched",
        extra={
            "source_url": url,
            "status_code": response.status_code,
            "content_type": content_type,
            "size": len(body),
        },
    )
    return body
