"""
Feed item model.

Normalizes feedparser entries into the items forwarded to chat channels.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def parse_entry_time(entry: Any) -> datetime | None:
    """
    Return the publish time of a feedparser entry.

    Falls back to the updated time when no publish time is present.

    Parameters
    ----------
    entry : Any
        A feedparser entry object.

    Returns
    -------
    datetime | None
        Aware UTC datetime, or None if the entry carries no usable date.
    """
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            # feedparser normalizes struct_time values to UTC
            return datetime(*parsed[:6], tzinfo=timezone.utc)
    return None


@dataclass
class FeedItem:
    """
    Feed entry ready to be delivered.

    Attributes
    ----------
    title : str
        Entry title.
    link : str
        Entry URL.
    published : datetime
        Publish time, aware UTC.
    feed_title : str
        Title of the source feed.
    """

    title: str
    link: str
    published: datetime
    feed_title: str = ""

    @classmethod
    def from_feedparser(cls, entry: Any, feed_title: str = "") -> "FeedItem | None":
        """
        Create a FeedItem from a feedparser entry.

        Parameters
        ----------
        entry : Any
            A feedparser entry object.
        feed_title : str
            Title of the source feed.

        Returns
        -------
        FeedItem | None
            Normalized item, or None if the entry has no publish time.
        """
        published = parse_entry_time(entry)
        if published is None:
            return None

        return cls(
            title=entry.get("title", ""),
            link=entry.get("link", ""),
            published=published,
            feed_title=feed_title,
        )
