"""Daily feed fetching and parsing for News Digest Bot."""

from datetime import UTC, datetime
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .errors import (
    FeedEmptyError,
    FeedMalformedError,
    FeedUnavailableError,
    RetryExhaustedError,
)
from .logging_config import create_execution_logger
from .models import FeedItem, is_absolute_url
from .retry import RetryPolicy

# Daily digest feeds list every story as an anchor inside the entry description
STORY_SELECTOR = "a.storylink, .storylink a"


class TransientStatusError(Exception):
    """HTTP status worth retrying (5xx or 429)."""

    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def is_transient_error(error: Exception) -> bool:
    """Timeouts, dropped connections and server-side statuses are retried."""
    return isinstance(
        error, (requests.Timeout, requests.ConnectionError, TransientStatusError)
    )


class FeedFetcher:
    """Downloads the daily feed and turns it into ranked FeedItems."""

    def __init__(
        self,
        feed_url: str,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 30,
        session: requests.Session | None = None,
        execution_id: str | None = None,
    ):
        """Initialize FeedFetcher with configuration.

        Args:
            feed_url: HTTPS URL of the RSS/Atom feed
            retry_policy: Backoff policy for transient download failures
            timeout: HTTP request timeout in seconds
            session: Optional pre-built requests session
            execution_id: Execution ID for logging context

        Raises:
            ValueError: If feed URL is not HTTPS
        """
        if urlparse(feed_url).scheme != "https":
            raise ValueError(f"Feed URL must use HTTPS protocol: {feed_url}")

        self.feed_url = feed_url
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.logger = create_execution_logger("feed_fetcher", execution_id)
        self.session = session or requests.Session()
        self.session.headers.update(
            {"User-Agent": "News-Digest-Bot/1.0 (Daily digest to LINE)"}
        )

    def fetch(self) -> list[FeedItem]:
        """Fetch the feed and return its items in document order.

        Raises:
            FeedMalformedError: Document could not be parsed
            FeedEmptyError: Document parsed but held no usable items
            FeedUnavailableError: Download failed after retries
        """
        self.logger.log_execution_start(feed_url=self.feed_url)
        content = self._download()
        items = self.parse(content)
        self.logger.log_execution_end(success=True, items_count=len(items))
        return items

    def fetch_latest_title(self) -> str:
        """Return the title of the newest feed entry."""
        feed = self._parse_document(self._download())
        title = feed.entries[0].get("title", "").strip()
        if not title:
            raise FeedEmptyError("Latest feed entry has no title")
        return title

    def parse(self, content: bytes) -> list[FeedItem]:
        """Parse raw feed bytes into ranked FeedItems."""
        feed = self._parse_document(content)
        latest = feed.entries[0]

        stories = self.extract_digest_stories(latest.get("description", ""))
        if stories:
            published = self._parse_published(latest)
            candidates = [(title, link, published) for title, link in stories]
            self.logger.info(
                "Parsed digest entry", stories_count=len(stories), feed_url=self.feed_url
            )
        else:
            candidates = [
                (
                    " ".join(entry.get("title", "").split()),
                    entry.get("link", ""),
                    self._parse_published(entry),
                )
                for entry in feed.entries
            ]

        items = []
        for title, link, published in candidates:
            if not title or not is_absolute_url(link):
                self.logger.warning(
                    "Skipping story without title or absolute link",
                    feed_url=self.feed_url,
                    link=link,
                )
                continue
            items.append(
                FeedItem(rank=len(items) + 1, title=title, link=link, published=published)
            )

        if not items:
            raise FeedEmptyError(f"No usable stories in feed {self.feed_url}")

        self.logger.info(
            "Successfully parsed feed",
            feed_url=self.feed_url,
            items_count=len(items),
            total_entries=len(feed.entries),
        )
        return items

    def extract_digest_stories(self, description: str) -> list[tuple[str, str]]:
        """Extract (title, link) pairs from a digest entry's HTML description."""
        if not description or "<" not in description:
            return []

        soup = BeautifulSoup(description, "html.parser")
        stories = []
        for anchor in soup.select(STORY_SELECTOR):
            href = (anchor.get("href") or "").strip()
            title = " ".join(anchor.get_text(separator=" ").split())
            stories.append((title, href))
        return stories

    def _download(self) -> bytes:
        try:
            return self.retry_policy.call(
                self._get_once, is_transient_error, on_retry=self._log_retry
            )
        except RetryExhaustedError as e:
            self.logger.error(
                f"Feed unavailable after {e.attempts} attempts",
                feed_url=self.feed_url,
                error=str(e.last_error),
            )
            raise FeedUnavailableError(f"Feed unavailable: {e.last_error}") from e
        except requests.RequestException as e:
            self.logger.error(
                f"Failed to download feed {self.feed_url}: {e}",
                feed_url=self.feed_url,
                error=str(e),
            )
            raise FeedUnavailableError(f"Feed download failed: {e}") from e

    def _get_once(self) -> bytes:
        response = self.session.get(self.feed_url, timeout=self.timeout)
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientStatusError(response.status_code)
        if response.status_code >= 400:
            raise FeedUnavailableError(f"Feed returned HTTP {response.status_code}")
        self.logger.info(
            "Feed downloaded successfully",
            feed_url=self.feed_url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response.content

    def _log_retry(self, attempt: int, error: Exception, delay: float) -> None:
        self.logger.warning(
            f"Feed download attempt {attempt} failed, retrying in {delay:.2f}s",
            feed_url=self.feed_url,
            attempt=attempt,
            error=str(error),
        )

    def _parse_document(self, content: bytes):
        feed = feedparser.parse(content)
        if not feed.entries:
            if feed.bozo:
                raise FeedMalformedError(
                    f"Could not parse feed {self.feed_url}: {feed.get('bozo_exception')}"
                )
            raise FeedEmptyError(f"Feed {self.feed_url} has no entries")

        if feed.bozo:
            self.logger.warning(
                f"Feed parsing warning for {self.feed_url}: {feed.get('bozo_exception')}",
                feed_url=self.feed_url,
            )
        return feed

    def _parse_published(self, entry) -> datetime:
        published_str = entry.get("published") or entry.get("updated")
        if published_str:
            try:
                published = date_parser.parse(published_str)
                if published.tzinfo is None:
                    published = published.replace(tzinfo=UTC)
                return published
            except (ValueError, TypeError, OverflowError):
                pass
        return datetime.now(UTC)
