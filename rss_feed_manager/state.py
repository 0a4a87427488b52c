"""
In-memory tracking state.

Holds one watermark per (channel, feed) pair: the publish time of the
newest item already delivered for that feed to that channel.
"""

import logging
from collections.abc import Iterator
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# Watermark of a feed that has never delivered anything
NO_WATERMARK = datetime.min.replace(tzinfo=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Return an aware UTC datetime.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TrackingState:
    """
    Watermarks per channel and feed.

    A single run owns the instance: the reconciler adds and removes
    feeds, the coordinator advances watermarks, and the store persists
    the whole structure once at the end.
    """

    def __init__(self, channels: dict[str, dict[str, datetime]] | None = None):
        self._channels: dict[str, dict[str, datetime]] = {}
        for channel, feeds in (channels or {}).items():
            self._channels[channel] = {url: ensure_utc(ts) for url, ts in feeds.items()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TrackingState):
            return NotImplemented
        return self._channels == other._channels

    def __repr__(self) -> str:
        return f"TrackingState({self._channels!r})"

    def __len__(self) -> int:
        return sum(len(feeds) for feeds in self._channels.values())

    @property
    def channels(self) -> list[str]:
        """Names of the tracked channels."""
        return list(self._channels)

    def has_channel(self, channel: str) -> bool:
        return channel in self._channels

    def add_channel(self, channel: str) -> None:
        """Start tracking a channel with no feeds."""
        self._channels.setdefault(channel, {})

    def remove_channel(self, channel: str) -> None:
        self._channels.pop(channel, None)

    def feeds(self, channel: str) -> dict[str, datetime]:
        """
        Return a copy of the watermarks of a channel.

        Parameters
        ----------
        channel : str
            Channel name.

        Returns
        -------
        dict[str, datetime]
            Feed URL to watermark, empty if the channel is unknown.
        """
        return dict(self._channels.get(channel, {}))

    def has_feed(self, channel: str, feed_url: str) -> bool:
        return feed_url in self._channels.get(channel, {})

    def get(self, channel: str, feed_url: str) -> datetime:
        """
        Return the watermark of a feed.

        Raises
        ------
        KeyError
            If the feed is not tracked for this channel.
        """
        return self._channels[channel][feed_url]

    def seed(self, channel: str, feed_url: str, watermark: datetime) -> None:
        """Set the initial watermark of a newly tracked feed."""
        self.add_channel(channel)
        self._channels[channel][feed_url] = ensure_utc(watermark)

    def advance(self, channel: str, feed_url: str, watermark: datetime) -> bool:
        """
        Move a feed's watermark forward.

        Watermarks never decrease: a value that is not newer than the
        current one is ignored.

        Parameters
        ----------
        channel : str
            Channel name.
        feed_url : str
            Feed URL, already tracked for the channel.
        watermark : datetime
            Candidate watermark.

        Returns
        -------
        bool
            True if the watermark changed.
        """
        watermark = ensure_utc(watermark)
        current = self.get(channel, feed_url)
        if watermark <= current:
            return False
        self._channels[channel][feed_url] = watermark
        return True

    def remove_feed(self, channel: str, feed_url: str) -> None:
        self._channels.get(channel, {}).pop(feed_url, None)

    def items(self) -> Iterator[tuple[str, str, datetime]]:
        """Iterate over (channel, feed_url, watermark) triples."""
        for channel, feeds in self._channels.items():
            for feed_url, watermark in feeds.items():
                yield channel, feed_url, watermark

    def to_dict(self) -> dict[str, dict[str, datetime]]:
        """Return a deep copy of the channel -> feed -> watermark mapping."""
        return {channel: dict(feeds) for channel, feeds in self._channels.items()}
