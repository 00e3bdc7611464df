"""Unit tests for the daily feed fetcher."""

from datetime import UTC, datetime
from unittest.mock import Mock, patch

import pytest
import requests

from news_digest_bot.errors import (
    FeedEmptyError,
    FeedMalformedError,
    FeedUnavailableError,
)
from news_digest_bot.retry import RetryPolicy
from news_digest_bot.rss import FeedFetcher, is_transient_error, TransientStatusError

FEED_URL = "https://www.daemonology.net/hn-daily/index.rss"

DIGEST_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
<title>Hacker News Daily</title>
<link>https://www.daemonology.net/hn-daily/</link>
<description>The best of Hacker News, daily.</description>
<item>
<title>Hacker News Daily 2024-05-02</title>
<link>https://www.daemonology.net/hn-daily/2024-05-02.html</link>
<pubDate>Thu, 02 May 2024 00:00:00 +0000</pubDate>
<description><![CDATA[<ul>
<li><span class="storylink"><a href="https://example.com/rust-kernel">Rust in the   kernel</a></span>
<span class="postlink"><a href="https://news.ycombinator.com/item?id=1">comments</a></span></li>
<li><span class="storylink"><a href="https://example.org/sqlite">SQLite tips</a></span></li>
<li><span class="storylink"><a href="https://example.net/gpu">GPU programming</a></span></li>
</ul>]]></description>
</item>
<item>
<title>Hacker News Daily 2024-05-01</title>
<link>https://www.daemonology.net/hn-daily/2024-05-01.html</link>
<pubDate>Wed, 01 May 2024 00:00:00 +0000</pubDate>
<description><![CDATA[<ul>
<li><span class="storylink"><a href="https://example.com/yesterday">Yesterday's story</a></span></li>
</ul>]]></description>
</item>
</channel>
</rss>
"""

PLAIN_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
<title>Plain feed</title>
<link>https://example.com/</link>
<description>One story per item</description>
<item>
<title>First</title>
<link>https://example.com/first</link>
<pubDate>Thu, 02 May 2024 08:00:00 +0000</pubDate>
</item>
<item>
<link>https://example.com/untitled</link>
</item>
<item>
<title>Second</title>
<link>https://example.com/second</link>
</item>
</channel>
</rss>
"""

EMPTY_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
<title>Nothing today</title>
<link>https://example.com/</link>
<description>No items</description>
</channel>
</rss>
"""


def make_response(status_code=200, content=b""):
    response = Mock()
    response.status_code = status_code
    response.content = content
    return response


def make_fetcher(*responses, attempts=3):
    session = Mock()
    session.get.side_effect = list(responses)
    fetcher = FeedFetcher(
        FEED_URL,
        retry_policy=RetryPolicy(max_attempts=attempts, base_delay=0.01),
        session=session,
    )
    return fetcher, session


class TestFeedFetcherUnit:
    """Unit tests for FeedFetcher."""

    def test_rejects_non_https_url(self):
        """Feeds must be fetched over HTTPS."""
        with pytest.raises(ValueError, match="HTTPS"):
            FeedFetcher("http://www.daemonology.net/hn-daily/index.rss")

    def test_digest_entry_yields_ranked_stories(self):
        """Stories come from the latest digest entry, ranked in document order."""
        fetcher, _ = make_fetcher(make_response(content=DIGEST_FEED))

        items = fetcher.fetch()

        assert [item.rank for item in items] == [1, 2, 3]
        assert [item.title for item in items] == [
            "Rust in the kernel",
            "SQLite tips",
            "GPU programming",
        ]
        assert items[0].link == "https://example.com/rust-kernel"
        assert all(item.published == datetime(2024, 5, 2, tzinfo=UTC) for item in items)

    def test_older_digest_entries_are_ignored(self):
        """Only the newest digest is turned into stories."""
        fetcher, _ = make_fetcher(make_response(content=DIGEST_FEED))

        links = [item.link for item in fetcher.fetch()]

        assert "https://example.com/yesterday" not in links

    def test_plain_feed_uses_one_item_per_entry(self):
        """Without digest markup each entry is a story; untitled entries are skipped."""
        fetcher, _ = make_fetcher(make_response(content=PLAIN_FEED))

        items = fetcher.fetch()

        assert [(item.rank, item.title) for item in items] == [(1, "First"), (2, "Second")]
        assert items[0].published == datetime(2024, 5, 2, 8, tzinfo=UTC)
        assert items[1].published.tzinfo is not None

    def test_feed_without_items_is_empty(self):
        """A well-formed feed with no entries raises FeedEmptyError."""
        fetcher, _ = make_fetcher(make_response(content=EMPTY_FEED))

        with pytest.raises(FeedEmptyError):
            fetcher.fetch()

    def test_unparseable_document_is_malformed(self):
        """Content that is not a feed raises FeedMalformedError."""
        fetcher, _ = make_fetcher(make_response(content=b"\x00\x01 this is <<not>> a feed"))

        with pytest.raises(FeedMalformedError):
            fetcher.fetch()

    @patch("news_digest_bot.retry.time.sleep")
    def test_server_error_is_retried_then_succeeds(self, mock_sleep):
        """A 503 followed by a 200 returns the parsed items."""
        fetcher, session = make_fetcher(
            make_response(status_code=503),
            make_response(content=DIGEST_FEED),
        )

        items = fetcher.fetch()

        assert len(items) == 3
        assert session.get.call_count == 2
        assert mock_sleep.call_count == 1

    @patch("news_digest_bot.retry.time.sleep")
    def test_connection_errors_are_retried(self, mock_sleep):
        """Network failures count as transient."""
        fetcher, session = make_fetcher(
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            make_response(content=DIGEST_FEED),
        )

        assert len(fetcher.fetch()) == 3
        assert session.get.call_count == 3

    @patch("news_digest_bot.retry.time.sleep")
    def test_client_error_is_not_retried(self, mock_sleep):
        """A 404 fails immediately as unavailable."""
        fetcher, session = make_fetcher(make_response(status_code=404))

        with pytest.raises(FeedUnavailableError):
            fetcher.fetch()

        assert session.get.call_count == 1
        mock_sleep.assert_not_called()

    @patch("news_digest_bot.retry.time.sleep")
    def test_persistent_server_errors_exhaust_retries(self, mock_sleep):
        """Every attempt failing ends in FeedUnavailableError."""
        fetcher, session = make_fetcher(
            make_response(status_code=502),
            make_response(status_code=503),
            make_response(status_code=429),
            attempts=3,
        )

        with pytest.raises(FeedUnavailableError):
            fetcher.fetch()

        assert session.get.call_count == 3
        assert mock_sleep.call_count == 2

    def test_fetch_latest_title(self):
        """The newest entry's title is returned as-is."""
        fetcher, _ = make_fetcher(make_response(content=DIGEST_FEED))

        assert fetcher.fetch_latest_title() == "Hacker News Daily 2024-05-02"

    def test_extract_digest_stories_accepts_both_markups(self):
        """Both span.storylink > a and a.storylink are recognized."""
        fetcher = FeedFetcher(FEED_URL, session=Mock())
        description = (
            '<p><span class="storylink"><a href="https://a.example/1">One</a></span></p>'
            '<p><a class="storylink" href="https://a.example/2">Two</a></p>'
        )

        stories = fetcher.extract_digest_stories(description)

        assert sorted(stories) == [("One", "https://a.example/1"), ("Two", "https://a.example/2")]

    def test_extract_digest_stories_ignores_plain_text(self):
        """Descriptions without markup yield nothing."""
        fetcher = FeedFetcher(FEED_URL, session=Mock())

        assert fetcher.extract_digest_stories("Just a sentence.") == []

    def test_is_transient_error(self):
        """Only timeouts, connection errors and retryable statuses are transient."""
        assert is_transient_error(requests.Timeout())
        assert is_transient_error(requests.ConnectionError())
        assert is_transient_error(TransientStatusError(503))
        assert not is_transient_error(FeedUnavailableError("404"))
        assert not is_transient_error(ValueError())
