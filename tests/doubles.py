"""
Transport doubles shared by the test modules.

Stand in for the feed fetcher and the chat notifier so the sync engine
can be exercised without network access.
"""

from datetime import datetime, timezone

from rss_feed_manager.entries import FeedItem
from rss_feed_manager.rss_parser import FetchResult


NOW = datetime(2025, 7, 25, 16, 0, tzinfo=timezone.utc)


class FakeFetcher:
    """
    Feed transport double.

    Serves fixed items per URL, filtered against the lower bound the way
    the real parser filters them, and records every call.
    """

    def __init__(
        self,
        feeds: dict[str, list[FeedItem]] | None = None,
        errors: dict[str, Exception] | None = None,
    ):
        self.feeds = feeds or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, datetime]] = []

    async def fetch_feed(self, url: str, since: datetime) -> FetchResult:
        self.calls.append((url, since))
        if url in self.errors:
            raise self.errors[url]

        items = self.feeds.get(url, [])
        latest = max([since] + [item.published for item in items])
        return FetchResult(
            items=[item for item in items if item.published > since],
            latest=latest,
        )


class RecordingNotifier:
    """Notifier double that records posted messages."""

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.messages: list[tuple[str, str]] = []
        self.closed = False

    def destination(self, channel: str) -> str:
        return f"#{channel}"

    async def post_message(self, destination: str, text: str) -> None:
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError("channel_not_found")
        self.messages.append((destination, text))

    async def test_connection(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


def make_item(title: str, published: datetime, feed_title: str = "Example Blog") -> FeedItem:
    """Create a feed item linking to a slug of its title."""
    slug = title.lower().replace(" ", "-")
    return FeedItem(
        title=title,
        link=f"https://example.com/{slug}",
        published=published,
        feed_title=feed_title,
    )

