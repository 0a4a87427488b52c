"""
Run coordination.

Sequences one synchronization pass: reconcile subscriptions, then fetch,
deliver and advance the watermark of every subscribed feed.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime

from rss_feed_manager.config import ChannelConfig, DeliveryPolicy
from rss_feed_manager.dispatcher import Dispatcher
from rss_feed_manager.reconciler import reconcile_subscriptions
from rss_feed_manager.rss_parser import FeedFetcher
from rss_feed_manager.state import TrackingState
from rss_feed_manager.sync import fetch_updates, settle_watermark

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """
    Counters for one run.

    Attributes
    ----------
    feeds_processed : int
        Feeds checked, including the ones that failed to fetch.
    items_found : int
        New items found across all feeds.
    items_delivered : int
        Items posted successfully.
    delivery_failures : int
        Items whose delivery failed.
    fetch_failures : int
        Feeds that could not be fetched.
    feeds_added : int
        Subscriptions added during reconciliation.
    feeds_removed : int
        Subscriptions removed during reconciliation.
    duration : float
        Wall clock seconds spent in the run.
    """

    feeds_processed: int = 0
    items_found: int = 0
    items_delivered: int = 0
    delivery_failures: int = 0
    fetch_failures: int = 0
    feeds_added: int = 0
    feeds_removed: int = 0
    duration: float = 0.0


class RunCoordinator:
    """
    Runs one synchronization pass over all subscriptions.

    Channels and feeds are processed one at a time in configuration
    order. The tracking state is modified in place; persisting it is left
    to the caller.
    """

    def __init__(
        self,
        channels: list[ChannelConfig],
        fetcher: FeedFetcher,
        dispatcher: Dispatcher,
        policy: DeliveryPolicy = DeliveryPolicy.AT_MOST_ONCE,
    ):
        """
        Initialize the coordinator.

        Parameters
        ----------
        channels : list[ChannelConfig]
            Configured subscriptions.
        fetcher : FeedFetcher
            Feed transport.
        dispatcher : Dispatcher
            Item delivery.
        policy : DeliveryPolicy
            How delivery failures affect watermarks.
        """
        self.channels = channels
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.policy = policy

    async def run(self, state: TrackingState, now: datetime | None = None) -> RunSummary:
        """
        Run one synchronization pass.

        Parameters
        ----------
        state : TrackingState
            Loaded tracking state, updated in place.
        now : datetime | None
            Current time used for seeding new feeds.

        Returns
        -------
        RunSummary
            Run counters.
        """
        started = time.monotonic()
        summary = RunSummary()

        logger.info("Updating subscriptions...")
        reconciled = await reconcile_subscriptions(self.channels, state, self.fetcher, now=now)
        summary.feeds_added = len(reconciled.added)
        summary.feeds_removed = len(reconciled.removed)

        logger.info("Processing feeds...")
        for channel in self.channels:
            logger.info("Processing channel: %s", channel.slack_channel)
            for feed_url in channel.feeds:
                await self._process_feed(channel.slack_channel, feed_url, state, summary)

        summary.duration = time.monotonic() - started
        return summary

    async def _process_feed(
        self,
        channel: str,
        feed_url: str,
        state: TrackingState,
        summary: RunSummary,
    ) -> None:
        """Fetch, deliver and commit the watermark of one feed."""
        summary.feeds_processed += 1
        watermark = state.get(channel, feed_url)
        logger.debug("Checking feed %s (last updated %s)", feed_url, watermark.isoformat())

        update = await fetch_updates(self.fetcher, feed_url, watermark, channel=channel)
        if update.failed:
            summary.fetch_failures += 1
            return

        logger.info("Found %d new item(s) in feed %s", len(update.items), feed_url)
        summary.items_found += len(update.items)

        report = await self.dispatcher.deliver(channel, feed_url, update.items)
        summary.items_delivered += report.delivered
        summary.delivery_failures += len(report.failed)

        if report.failed and self.policy is DeliveryPolicy.AT_MOST_ONCE:
            for item in report.failed:
                logger.warning("Dropping undelivered item for %s: %s", channel, item.link)

        next_watermark = settle_watermark(update, report, self.policy)
        if state.advance(channel, feed_url, next_watermark):
            logger.info(
                "Updating last updated time for %s to %s",
                feed_url,
                next_watermark.isoformat(),
            )
