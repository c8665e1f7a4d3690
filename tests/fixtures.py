"""
Test fixtures and sample data for development and testing.

This module provides builders for mention events, window stats, baselines,
trends and watchlists used across the test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from trend_pulse.types import (
    MentionEvent,
    OrgWatchlist,
    SourceTier,
    SourceType,
    TrendBaseline,
    TrendEvent,
    TrendScores,
    TrendState,
    WatchEntity,
    WatchRule,
    WatchTopic,
    WindowStats,
)

# Fixed batch timestamp so window arithmetic is reproducible
NOW = datetime(2024, 6, 3, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Sample Mentions
# ============================================================================


def create_mention(
    topic: str = "XYZ Policy Reform",
    minutes_ago: float = 10,
    source_type: SourceType = SourceType.NEWS,
    source_tier: SourceTier = SourceTier.TIER2,
    source_id: Optional[str] = None,
    sentiment: Optional[float] = None,
    now: datetime = NOW,
    is_event_phrase: bool = False,
) -> MentionEvent:
    """Create a mention that occurred `minutes_ago` before `now`."""
    occurred_at = now - timedelta(minutes=minutes_ago)
    return MentionEvent(
        source_type=source_type,
        raw_topic=topic,
        occurred_at=occurred_at,
        sentiment=sentiment,
        source_tier=source_tier,
        source_id=source_id or f"doc-{topic}-{minutes_ago}",
        is_event_phrase=is_event_phrase,
    )


def create_mentions_at(
    topic: str,
    minutes_ago: List[float],
    source_type: SourceType = SourceType.NEWS,
    now: datetime = NOW,
) -> List[MentionEvent]:
    """Create one mention per offset, each from its own document."""
    return [
        create_mention(topic, minutes, source_type=source_type, now=now)
        for minutes in minutes_ago
    ]


def create_spiking_mentions(topic: str = "XYZ Policy Reform", now: datetime = NOW) -> List[MentionEvent]:
    """
    Mentions giving mentions_1h=4, mentions_6h=6, mentions_24h=8.

    The most recent mention is 10 minutes before `now`.
    """
    return create_mentions_at(
        topic,
        [10, 20, 30, 40, 120, 180, 600, 900],
        now=now,
    )


# ============================================================================
# Sample Stats and Baselines
# ============================================================================


def create_stats(
    key: str = "xyz policy reform",
    mentions_1h: int = 0,
    mentions_6h: int = 0,
    mentions_24h: int = 0,
    mentions_7d: Optional[int] = None,
    last_seen_at: Optional[datetime] = NOW,
    source_type_counts: Optional[dict] = None,
) -> WindowStats:
    """Create window stats with the given counts."""
    return WindowStats(
        key=key,
        mentions_1h=mentions_1h,
        mentions_6h=mentions_6h,
        mentions_24h=mentions_24h,
        mentions_7d=mentions_24h if mentions_7d is None else mentions_7d,
        first_seen_at=last_seen_at,
        last_seen_at=last_seen_at,
        source_type_counts=source_type_counts or {"news": mentions_24h},
        display_label=key,
    )


def create_baseline(
    key: str = "xyz policy reform",
    mean: float = 0.1,
    std_dev: float = 0.05,
    is_stable: bool = False,
    now: datetime = NOW,
) -> TrendBaseline:
    """Create a baseline for the current day."""
    return TrendBaseline(
        key=key,
        bucket_date=now.date(),
        mean_hourly=mean,
        std_dev_hourly=std_dev,
        relative_std_dev=std_dev / mean if mean else 0.0,
        sample_hours=168,
        is_stable=is_stable,
        computed_at=now,
    )


def create_scores(velocity: float = 0.0, spike_ratio: float = 1.0) -> TrendScores:
    """Create trend scores."""
    return TrendScores(velocity=velocity, spike_ratio=spike_ratio)


# ============================================================================
# Sample Trends and Watchlists
# ============================================================================


def create_trend(
    key: str = "xyz policy reform",
    label: str = "XYZ Policy Reform",
    state: TrendState = TrendState.CANDIDATE,
    velocity: float = 0.0,
    last_seen_at: Optional[datetime] = NOW,
    **kwargs,
) -> TrendEvent:
    """Create a trend event."""
    return TrendEvent(
        canonical_key=key,
        canonical_label=label,
        display_title=label,
        state=state,
        velocity=velocity,
        first_seen_at=last_seen_at,
        last_seen_at=last_seen_at,
        updated_at=last_seen_at,
        member_keys=[key],
        **kwargs,
    )


def create_watchlist(
    organization_id: str = "org-1",
    topics: Optional[List[tuple]] = None,
    entities: Optional[List[tuple]] = None,
    geographies: Optional[List[str]] = None,
    min_relevance: float = 0.0,
    min_urgency: float = 0.0,
) -> OrgWatchlist:
    """Create a watchlist from (term, weight) topics and (name, rule) entities."""
    return OrgWatchlist(
        organization_id=organization_id,
        topics=[WatchTopic(term=term, weight=weight) for term, weight in (topics or [])],
        entities=[WatchEntity(name=name, rule=WatchRule(rule)) for name, rule in (entities or [])],
        geographies=geographies or [],
        min_relevance=min_relevance,
        min_urgency=min_urgency,
    )
