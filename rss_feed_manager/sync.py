"""
Incremental fetch and ordering.

Fetches the items of a feed newer than its watermark, orders them for
delivery and decides the next watermark.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from rss_feed_manager.config import DeliveryPolicy
from rss_feed_manager.dispatcher import DeliveryReport
from rss_feed_manager.entries import FeedItem
from rss_feed_manager.rss_parser import FeedFetcher

logger = logging.getLogger(__name__)


@dataclass
class FeedUpdate:
    """
    Outcome of fetching one feed.

    Attributes
    ----------
    feed_url : str
        Feed URL.
    watermark : datetime
        Watermark the fetch started from.
    items : list[FeedItem]
        New items, oldest first.
    latest : datetime
        Candidate next watermark.
    error : Exception | None
        Fetch error, if the feed could not be fetched.
    """

    feed_url: str
    watermark: datetime
    items: list[FeedItem] = field(default_factory=list)
    latest: datetime | None = None
    error: Exception | None = None

    def __post_init__(self) -> None:
        if self.latest is None:
            self.latest = self.watermark

    @property
    def failed(self) -> bool:
        return self.error is not None


def order_items(items: list[FeedItem]) -> list[FeedItem]:
    """
    Sort items oldest first.

    The sort is stable, so items sharing a publish time keep the order
    the feed returned them in.
    """
    return sorted(items, key=lambda item: item.published)


async def fetch_updates(
    fetcher: FeedFetcher,
    feed_url: str,
    watermark: datetime,
    channel: str = "",
) -> FeedUpdate:
    """
    Fetch the items of a feed published after its watermark.

    Errors are logged and reported in the returned update rather than
    raised, so one broken feed does not stop the others.

    Parameters
    ----------
    fetcher : FeedFetcher
        Feed transport.
    feed_url : str
        Feed URL.
    watermark : datetime
        Current watermark of the feed.
    channel : str
        Channel being processed, for log context.

    Returns
    -------
    FeedUpdate
        Ordered new items and the candidate watermark.
    """
    try:
        result = await fetcher.fetch_feed(feed_url, watermark)
    except Exception as e:
        logger.warning(
            "Error fetching feed %s for channel %s: %s",
            feed_url,
            channel or "-",
            str(e) or type(e).__name__,
        )
        return FeedUpdate(feed_url=feed_url, watermark=watermark, error=e)

    return FeedUpdate(
        feed_url=feed_url,
        watermark=watermark,
        items=order_items(result.items),
        latest=max(result.latest, watermark),
    )


def settle_watermark(
    update: FeedUpdate,
    report: DeliveryReport,
    policy: DeliveryPolicy = DeliveryPolicy.AT_MOST_ONCE,
) -> datetime:
    """
    Decide the watermark to commit after delivering a feed's items.

    With ``AT_MOST_ONCE`` the watermark follows what was fetched. With
    ``AT_LEAST_ONCE`` it stops before the first failed item, so that item
    is fetched again on the next run.

    Parameters
    ----------
    update : FeedUpdate
        Fetch outcome.
    report : DeliveryReport
        Delivery outcome for ``update.items``.
    policy : DeliveryPolicy
        Delivery policy.

    Returns
    -------
    datetime
        Watermark to commit, never earlier than ``update.watermark``.
    """
    if update.failed:
        return update.watermark

    if policy is DeliveryPolicy.AT_MOST_ONCE or not report.failed:
        return update.latest

    failed_ids = {id(item) for item in report.failed}
    first_failure = next(item for item in update.items if id(item) in failed_ids)

    held = update.watermark
    for item in update.items:
        if item is first_failure:
            break
        # Items sharing the failed item's timestamp would hide it
        if item.published < first_failure.published and item.published > held:
            held = item.published
    return held
