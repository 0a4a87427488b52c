"""
Subscription reconciliation.

Aligns the tracked feeds with the configured channel subscriptions and
seeds a watermark for every newly subscribed feed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from rss_feed_manager.config import ChannelConfig
from rss_feed_manager.rss_parser import FeedFetcher
from rss_feed_manager.state import NO_WATERMARK, TrackingState

logger = logging.getLogger(__name__)

# A new feed starts one hour before its newest item, so that item is
# picked up by the first regular fetch.
BOOTSTRAP_LOOKBACK = timedelta(hours=1)

# Watermark offset used when a new feed cannot be fetched
BOOTSTRAP_FALLBACK = timedelta(hours=24)


@dataclass
class ReconcileReport:
    """
    Changes applied by a reconciliation.

    Attributes
    ----------
    added : list[tuple[str, str]]
        (channel, feed_url) pairs that started being tracked.
    removed : list[tuple[str, str]]
        (channel, feed_url) pairs that stopped being tracked.
    bootstrap_failures : int
        New feeds seeded with the fallback watermark after a fetch error.
    """

    added: list[tuple[str, str]] = field(default_factory=list)
    removed: list[tuple[str, str]] = field(default_factory=list)
    bootstrap_failures: int = 0


async def bootstrap_watermark(
    fetcher: FeedFetcher,
    feed_url: str,
    now: datetime,
) -> tuple[datetime, bool]:
    """
    Compute the initial watermark of a newly subscribed feed.

    Parameters
    ----------
    fetcher : FeedFetcher
        Feed transport.
    feed_url : str
        URL of the new feed.
    now : datetime
        Current time.

    Returns
    -------
    tuple[datetime, bool]
        The watermark, and whether the fetch succeeded.
    """
    try:
        result = await fetcher.fetch_feed(feed_url, NO_WATERMARK)
    except Exception as e:
        watermark = now - BOOTSTRAP_FALLBACK
        logger.warning(
            "Failed to fetch new feed %s for initial setup, starting from %s: %s",
            feed_url,
            watermark.isoformat(),
            e,
        )
        return watermark, False

    if not result.items:
        logger.info("New feed %s has no items, starting from now", feed_url)
        return now, True

    newest = max(item.published for item in result.items)
    watermark = newest - BOOTSTRAP_LOOKBACK
    logger.info(
        "New feed %s: most recent post at %s, starting from %s",
        feed_url,
        newest.isoformat(),
        watermark.isoformat(),
    )
    return watermark, True


async def reconcile_subscriptions(
    channels: list[ChannelConfig],
    state: TrackingState,
    fetcher: FeedFetcher,
    now: datetime | None = None,
) -> ReconcileReport:
    """
    Make the tracked feeds match the configured subscriptions.

    Adds channels and feeds missing from the state, seeding new feeds with
    ``bootstrap_watermark``, and drops channels and feeds that are no longer
    configured. The state is modified in place. Fetch errors never
    propagate.

    Parameters
    ----------
    channels : list[ChannelConfig]
        Configured subscriptions.
    state : TrackingState
        Loaded tracking state.
    fetcher : FeedFetcher
        Feed transport used to seed new feeds.
    now : datetime | None
        Current time, defaults to the wall clock.

    Returns
    -------
    ReconcileReport
        The applied changes.
    """
    now = now or datetime.now(timezone.utc)
    report = ReconcileReport()
    # A feed shared by several channels is only fetched once
    seeded: dict[str, datetime] = {}

    for channel in channels:
        name = channel.slack_channel
        if not state.has_channel(name):
            logger.info("Adding new channel to state: %s", name)
            state.add_channel(name)

        for feed_url in channel.feeds:
            if state.has_feed(name, feed_url):
                continue

            logger.info("Adding new feed to channel %s: %s", name, feed_url)
            if feed_url not in seeded:
                watermark, ok = await bootstrap_watermark(fetcher, feed_url, now)
                if not ok:
                    report.bootstrap_failures += 1
                seeded[feed_url] = watermark
            state.seed(name, feed_url, seeded[feed_url])
            report.added.append((name, feed_url))

        configured = set(channel.feeds)
        for feed_url in state.feeds(name):
            if feed_url not in configured:
                logger.info("Removing feed from channel %s: %s", name, feed_url)
                state.remove_feed(name, feed_url)
                report.removed.append((name, feed_url))

    configured_channels = {channel.slack_channel for channel in channels}
    for name in state.channels:
        if name not in configured_channels:
            logger.info("Removing channel from state: %s", name)
            for feed_url in state.feeds(name):
                report.removed.append((name, feed_url))
            state.remove_channel(name)

    return report
