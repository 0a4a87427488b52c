"""
Unit tests for subscription reconciliation.

Tests cover the bootstrap policy for new feeds, removal of feeds and
channels that are no longer configured, and idempotence.
"""

from datetime import datetime, timedelta

import aiohttp

from doubles import FakeFetcher, make_item

from rss_feed_manager.config import ChannelConfig
from rss_feed_manager.reconciler import (
    BOOTSTRAP_FALLBACK,
    BOOTSTRAP_LOOKBACK,
    bootstrap_watermark,
    reconcile_subscriptions,
)
from rss_feed_manager.state import NO_WATERMARK, TrackingState


FEED_A = "https://a.example.com/feed"
FEED_B = "https://b.example.com/feed"


def channel(name: str, *feeds: str) -> ChannelConfig:
    return ChannelConfig(slack_channel=name, feeds=list(feeds))


class TestBootstrapWatermark:
    """Tests for the new feed bootstrap policy."""

    async def test_items_seed_one_hour_before_newest(self, now: datetime) -> None:
        """Test that the watermark starts one hour before the newest item."""
        newest = now - timedelta(hours=5)
        fetcher = FakeFetcher(
            {
                FEED_A: [
                    make_item("Older Post", newest - timedelta(hours=3)),
                    make_item("Most Recent Post", newest),
                ]
            }
        )

        watermark, ok = await bootstrap_watermark(fetcher, FEED_A, now)

        assert ok is True
        assert watermark == newest - timedelta(hours=1)
        assert fetcher.calls == [(FEED_A, NO_WATERMARK)]

    async def test_empty_feed_seeds_now(self, now: datetime) -> None:
        """Test that an empty feed starts at the current time."""
        fetcher = FakeFetcher({FEED_A: []})

        watermark, ok = await bootstrap_watermark(fetcher, FEED_A, now)

        assert ok is True
        assert watermark == now

    async def test_fetch_error_seeds_one_day_back(self, now: datetime) -> None:
        """Test that a failed fetch starts 24 hours back."""
        fetcher = FakeFetcher(errors={FEED_A: aiohttp.ClientConnectionError("refused")})

        watermark, ok = await bootstrap_watermark(fetcher, FEED_A, now)

        assert ok is False
        assert watermark == now - timedelta(hours=24)

    def test_policy_constants(self) -> None:
        """Test the lookback and fallback durations."""
        assert BOOTSTRAP_LOOKBACK == timedelta(hours=1)
        assert BOOTSTRAP_FALLBACK == timedelta(hours=24)


class TestReconcileSubscriptions:
    """Tests for reconcile_subscriptions."""

    async def test_adds_new_channel_and_feed(self, now: datetime) -> None:
        """Test that a new channel and feed are tracked."""
        state = TrackingState()
        fetcher = FakeFetcher({FEED_A: []})

        report = await reconcile_subscriptions(
            [channel("test-channel", FEED_A)], state, fetcher, now=now
        )

        assert state.to_dict() == {"test-channel": {FEED_A: now}}
        assert report.added == [("test-channel", FEED_A)]
        assert report.removed == []

    async def test_new_feed_delivers_most_recent_post(self, now: datetime) -> None:
        """Test that the newest post is new again after seeding."""
        most_recent = now - timedelta(hours=1)
        fetcher = FakeFetcher(
            {
                FEED_A: [
                    make_item("Older Post", most_recent - timedelta(hours=3)),
                    make_item("Most Recent Post", most_recent),
                ]
            }
        )
        state = TrackingState()

        await reconcile_subscriptions([channel("eng", FEED_A)], state, fetcher, now=now)
        result = await fetcher.fetch_feed(FEED_A, state.get("eng", FEED_A))

        assert [item.title for item in result.items] == ["Most Recent Post"]

    async def test_existing_feed_untouched(self, now: datetime) -> None:
        """Test that tracked feeds keep their watermark and are not fetched."""
        watermark = now - timedelta(days=3)
        state = TrackingState({"eng": {FEED_A: watermark}})
        fetcher = FakeFetcher()

        report = await reconcile_subscriptions([channel("eng", FEED_A)], state, fetcher, now=now)

        assert state.get("eng", FEED_A) == watermark
        assert fetcher.calls == []
        assert report.added == []

    async def test_removes_unconfigured_feed(self, now: datetime) -> None:
        """Test that a feed dropped from the config is no longer tracked."""
        state = TrackingState({"eng": {FEED_A: now, FEED_B: now}})

        report = await reconcile_subscriptions(
            [channel("eng", FEED_A)], state, FakeFetcher(), now=now
        )

        assert set(state.feeds("eng")) == {FEED_A}
        assert report.removed == [("eng", FEED_B)]

    async def test_removes_unconfigured_channel(self, now: datetime) -> None:
        """Test that a channel dropped from the config is no longer tracked."""
        state = TrackingState({"eng": {FEED_A: now}, "old": {FEED_B: now}})

        report = await reconcile_subscriptions(
            [channel("eng", FEED_A)], state, FakeFetcher(), now=now
        )

        assert state.channels == ["eng"]
        assert report.removed == [("old", FEED_B)]

    async def test_bootstrap_failure_does_not_raise(self, now: datetime) -> None:
        """Test that fetch errors fall back instead of failing reconciliation."""
        state = TrackingState()
        fetcher = FakeFetcher({FEED_B: []}, errors={FEED_A: TimeoutError()})

        report = await reconcile_subscriptions(
            [channel("eng", FEED_A, FEED_B)], state, fetcher, now=now
        )

        assert state.get("eng", FEED_A) == now - timedelta(hours=24)
        assert state.get("eng", FEED_B) == now
        assert report.bootstrap_failures == 1

    async def test_shared_feed_fetched_once(self, now: datetime) -> None:
        """Test that a feed subscribed by two channels is seeded with one fetch."""
        state = TrackingState()
        fetcher = FakeFetcher({FEED_A: [make_item("Post", now - timedelta(hours=2))]})

        await reconcile_subscriptions(
            [channel("eng", FEED_A), channel("news", FEED_A)], state, fetcher, now=now
        )

        assert len(fetcher.calls) == 1
        assert state.get("eng", FEED_A) == state.get("news", FEED_A) == now - timedelta(hours=3)

    async def test_idempotent(self, now: datetime) -> None:
        """Test that a second reconciliation changes nothing."""
        state = TrackingState({"eng": {FEED_B: now - timedelta(days=1)}})
        fetcher = FakeFetcher({FEED_A: [make_item("Post", now - timedelta(hours=2))]})
        channels = [channel("eng", FEED_A), channel("news", FEED_A, FEED_B)]

        await reconcile_subscriptions(channels, state, fetcher, now=now)
        first = state.to_dict()
        calls = len(fetcher.calls)

        report = await reconcile_subscriptions(
            channels, state, fetcher, now=now + timedelta(minutes=5)
        )

        assert state.to_dict() == first
        assert len(fetcher.calls) == calls
        assert report.added == []
        assert report.removed == []

    async def test_feed_set_matches_config(self, now: datetime) -> None:
        """Test that every channel tracks exactly its configured feeds."""
        state = TrackingState({"eng": {FEED_B: now}, "gone": {FEED_A: now}})
        channels = [channel("eng", FEED_A), channel("news", FEED_A, FEED_B)]

        await reconcile_subscriptions(channels, state, FakeFetcher(), now=now)

        assert sorted(state.channels) == ["eng", "news"]
        for configured in channels:
            assert set(state.feeds(configured.slack_channel)) == set(configured.feeds)
