"""
Unit tests for WindowedAggregator.

Tests window counting, deduplication, expiry, source breakdowns, merging
and co-occurrence.
"""

import pytest
from datetime import timedelta

from trend_pulse.processing.aggregate import WindowedAggregator
from trend_pulse.types import SourceTier, SourceType

from tests.fixtures import NOW, create_mention, create_mentions_at, create_spiking_mentions


@pytest.fixture
def aggregator():
    """Create WindowedAggregator instance."""
    return WindowedAggregator()


class TestWindows:
    """Tests for rolling window counts."""

    def test_window_counts(self, aggregator):
        """Test each window counts its own interval."""
        aggregator.add_events(create_spiking_mentions(), NOW)

        stats = aggregator.compute_stats(NOW)["xyz policy reform"]

        assert stats.mentions_1h == 4
        assert stats.mentions_6h == 6
        assert stats.mentions_24h == 8
        assert stats.mentions_7d == 8

    def test_windows_are_nested(self, aggregator):
        """Test 1h <= 6h <= 24h <= 7d for every key."""
        events = create_mentions_at("Topic A", [5, 70, 400, 2000, 5000])
        events += create_mentions_at("Topic B", [1500, 9000])
        aggregator.add_events(events, NOW)

        for stats in aggregator.compute_stats(NOW).values():
            assert stats.mentions_1h <= stats.mentions_6h <= stats.mentions_24h <= stats.mentions_7d

    def test_windows_expire_as_time_advances(self, aggregator):
        """Test counts drop out of windows without new events."""
        aggregator.add_events(create_spiking_mentions(), NOW)

        later = aggregator.compute_stats(NOW + timedelta(hours=2))["xyz policy reform"]

        assert later.mentions_1h == 0
        assert later.mentions_6h == 6
        assert later.mentions_24h == 8

        much_later = aggregator.compute_stats(NOW + timedelta(hours=5))["xyz policy reform"]
        assert much_later.mentions_6h == 4

    def test_unknown_key_is_all_zero(self, aggregator):
        """Test stats for a key with no events."""
        stats = aggregator.compute_stats(NOW, ["never seen"])["never seen"]

        assert stats.mentions_7d == 0
        assert stats.last_seen_at is None


class TestIngestion:
    """Tests for add_events bookkeeping."""

    def test_duplicates_counted_once(self, aggregator):
        """Test a replayed batch leaves counts unchanged."""
        events = create_spiking_mentions()
        first = aggregator.add_events(events, NOW)
        second = aggregator.add_events(events, NOW)

        assert first.accepted == 8
        assert second.accepted == 0
        assert second.dropped_duplicate == 8
        assert aggregator.compute_stats(NOW)["xyz policy reform"].mentions_24h == 8

    def test_empty_topics_dropped(self, aggregator):
        """Test events whose topic normalizes to nothing."""
        result = aggregator.add_events(
            [create_mention("  "), create_mention("!!!", minutes_ago=5)], NOW
        )

        assert result.accepted == 0
        assert result.dropped_empty == 2
        assert aggregator.keys() == []

    def test_expired_events_dropped(self, aggregator):
        """Test events older than the retention window."""
        result = aggregator.add_events([create_mention(minutes_ago=60 * 24 * 8)], NOW)

        assert result.dropped_expired == 1
        assert result.dropped == 1

    def test_accepted_by_source_type(self, aggregator):
        """Test accepted counts per source type."""
        events = [
            create_mention(minutes_ago=5, source_type=SourceType.NEWS),
            create_mention(minutes_ago=6, source_type=SourceType.SOCIAL),
            create_mention(minutes_ago=7, source_type=SourceType.SOCIAL),
        ]
        result = aggregator.add_events(events, NOW)

        assert result.accepted_by_source_type == {"news": 1, "social": 2}

    def test_variants_share_a_key(self, aggregator):
        """Test topic variants aggregate under one canonical key."""
        aggregator.add_events(
            [
                create_mention("The Biden Administration", minutes_ago=5),
                create_mention("biden", minutes_ago=6),
            ],
            NOW,
        )

        assert aggregator.keys() == ["biden"]
        assert aggregator.compute_stats(NOW)["biden"].mentions_1h == 2

    def test_naive_and_aware_timestamps_mix(self, aggregator):
        """Test naive events and a naive now are read as UTC."""
        naive_now = NOW.replace(tzinfo=None)
        events = create_mentions_at("XYZ Policy Reform", [10, 20, 30, 40], now=naive_now)
        events += create_mentions_at("XYZ Policy Reform", [120, 180, 600, 900])

        result = aggregator.add_events(events, naive_now)
        stats = aggregator.compute_stats(naive_now)["xyz policy reform"]

        assert result.accepted == 8
        assert (stats.mentions_1h, stats.mentions_6h, stats.mentions_24h) == (4, 6, 8)
        assert stats.last_seen_at == NOW - timedelta(minutes=10)

    def test_clear_forgets_seen_events(self, aggregator):
        """Test a cleared buffer accepts the same events again."""
        events = create_spiking_mentions()
        first = aggregator.add_events(events, NOW)

        aggregator.clear()
        again = aggregator.add_events(first.accepted_events, NOW)

        assert len(first.accepted_events) == 8
        assert again.accepted == 8
        assert aggregator.compute_stats(NOW)["xyz policy reform"].mentions_24h == 8

    def test_prune_evicts_old_events(self, aggregator):
        """Test prune keeps only events inside the retention window."""
        aggregator.add_events(create_spiking_mentions(), NOW)

        evicted = aggregator.prune(NOW + timedelta(days=8))

        assert evicted == 8
        assert aggregator.keys() == []


class TestBreakdowns:
    """Tests for per-key breakdowns."""

    def test_source_and_sentiment_breakdown(self, aggregator):
        """Test source types, tiers and sentiment buckets."""
        events = [
            create_mention(minutes_ago=5, source_type=SourceType.NEWS,
                           source_tier=SourceTier.TIER1, sentiment=0.6),
            create_mention(minutes_ago=6, source_type=SourceType.SOCIAL,
                           source_tier=SourceTier.TIER3, sentiment=-0.5),
            create_mention(minutes_ago=7, source_type=SourceType.SOCIAL,
                           source_tier=SourceTier.TIER3, sentiment=0.0),
        ]
        aggregator.add_events(events, NOW)

        stats = aggregator.compute_stats(NOW)["xyz policy reform"]

        assert stats.source_type_count == 2
        assert stats.has_tier_corroboration
        assert stats.sentiment_positive == 1
        assert stats.sentiment_negative == 1
        assert stats.sentiment_neutral == 1
        assert stats.top_authority == pytest.approx(1.0)

    def test_display_label_is_most_common_form(self, aggregator):
        """Test the most frequent raw form becomes the label."""
        aggregator.add_events(
            [
                create_mention("XYZ policy reform", minutes_ago=5),
                create_mention("XYZ Policy Reform", minutes_ago=6),
                create_mention("XYZ Policy Reform", minutes_ago=7),
            ],
            NOW,
        )

        assert aggregator.compute_stats(NOW)["xyz policy reform"].display_label == "XYZ Policy Reform"

    def test_merge_stats_sums_members(self, aggregator):
        """Test cluster stats are the sum of member stats."""
        aggregator.add_events(create_mentions_at("Policy Reform", [5, 10]), NOW)
        aggregator.add_events(create_mentions_at("Policy Reforms", [15]), NOW)
        stats = aggregator.compute_stats(NOW)

        merged = WindowedAggregator.merge_stats("policy reform", list(stats.values()))

        assert merged.mentions_1h == 3
        assert merged.key == "policy reform"

    def test_hourly_counts(self, aggregator):
        """Test trailing hourly buckets, oldest first."""
        aggregator.add_events(create_mentions_at("Topic", [10, 20, 90]), NOW)

        counts = aggregator.hourly_counts(["topic"], NOW, hours=3)

        assert counts == [0, 1, 2]

    def test_top_keys_by_recent_volume(self, aggregator):
        """Test top keys order by 6h then 24h volume."""
        aggregator.add_events(create_mentions_at("Busy", [5, 10, 15]), NOW)
        aggregator.add_events(create_mentions_at("Quiet", [5]), NOW)
        aggregator.add_events(create_mentions_at("Old", [60 * 30]), NOW)

        assert aggregator.top_keys(NOW, limit=5) == ["busy", "quiet"]
        assert aggregator.top_keys(NOW, limit=1) == ["busy"]


def test_cooccurrence_counts_shared_documents():
    """Test topics sharing source documents with a key."""
    aggregator = WindowedAggregator()
    aggregator.add_events(
        [
            create_mention("Pentagon", minutes_ago=5, source_id="doc-1"),
            create_mention("Budget Cuts", minutes_ago=5, source_id="doc-1"),
            create_mention("Pentagon", minutes_ago=8, source_id="doc-2"),
            create_mention("Budget Cuts", minutes_ago=8, source_id="doc-2"),
            create_mention("Weather", minutes_ago=8, source_id="doc-3"),
        ],
        NOW,
    )

    result = aggregator.cooccurrence(["pentagon"], NOW)

    assert result.doc_count == 2
    assert result.topic_counts == {"budget cuts": 2}
    assert result.topic_labels["budget cuts"] == "Budget Cuts"
