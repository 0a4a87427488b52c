"""
Delivery of feed items to chat channels.

Formats each item and posts it through the configured notifier, one
item at a time.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from rss_feed_manager.entries import FeedItem
from rss_feed_manager.notifier import Notifier

logger = logging.getLogger(__name__)


def format_item(item: FeedItem) -> str:
    """
    Format a feed item as a chat message.

    Parameters
    ----------
    item : FeedItem
        The item to format.

    Returns
    -------
    str
        Message text with source, title and link.
    """
    source = item.feed_title or "unknown feed"
    title = item.title or "No title"
    return f"New post from {source}: {title}\n{item.link}"


@dataclass
class DeliveryReport:
    """
    Outcome of delivering a batch of items.

    Attributes
    ----------
    delivered : int
        Number of items posted successfully.
    failed : list[FeedItem]
        Items whose delivery failed, in delivery order.
    """

    delivered: int = 0
    failed: list[FeedItem] = field(default_factory=list)


class Dispatcher:
    """
    Posts feed items to channels.

    A failed item is logged and skipped; the remaining items are still
    delivered.
    """

    def __init__(self, notifier: Notifier, rate_limit_delay: float = 0.0):
        """
        Initialize the dispatcher.

        Parameters
        ----------
        notifier : Notifier
            Backend used to post messages.
        rate_limit_delay : float
            Seconds to wait between two messages.
        """
        self.notifier = notifier
        self.rate_limit_delay = rate_limit_delay

    async def deliver(self, channel: str, feed_url: str, items: list[FeedItem]) -> DeliveryReport:
        """
        Deliver items to a channel in the given order.

        Parameters
        ----------
        channel : str
            Channel name from the subscription list.
        feed_url : str
            Source feed, for log context.
        items : list[FeedItem]
            Items to deliver, already ordered.

        Returns
        -------
        DeliveryReport
            Delivered count and failed items.
        """
        report = DeliveryReport()
        destination = self.notifier.destination(channel)

        for index, item in enumerate(items):
            if index and self.rate_limit_delay:
                await asyncio.sleep(self.rate_limit_delay)

            logger.info("Posting new item to %s: %s", destination, item.title[:80])
            try:
                await self.notifier.post_message(destination, format_item(item))
            except Exception as e:
                logger.error(
                    "Failed to post item '%s' from %s to %s: %s",
                    item.title[:50],
                    feed_url,
                    destination,
                    str(e) or type(e).__name__,
                )
                report.failed.append(item)
                continue

            report.delivered += 1
            logger.debug("Successfully posted to %s", destination)

        return report
