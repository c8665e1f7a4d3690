"""
Velocity and composite scoring.

This module turns window stats, a baseline and anomaly statistics into the
scores that order the trend feed: velocity, spike ratio, acceleration, the
composite rank score, a 0-100 confidence score and a spike stage.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional

from trend_pulse.config import ScoringConfig
from trend_pulse.processing.interfaces import BaseRanker
from trend_pulse.types import (
    AnomalyScores,
    LabelQuality,
    SpikeStage,
    TrendBaseline,
    TrendEvent,
    TrendScores,
    WindowStats,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Scoring primitives
# ============================================================================


def calculate_velocity(
    short_rate: float, baseline_rate: float, config: Optional[ScoringConfig] = None
) -> float:
    """
    Relative growth of the short-window rate over the baseline rate, in percent.

    Args:
        short_rate: Current per-hour mention rate
        baseline_rate: Expected per-hour mention rate
        config: Scoring settings holding the sentinel

    Returns:
        ((short - baseline) / baseline) * 100; the velocity sentinel when the
        baseline is 0 and the short rate is positive; 0 when both are 0
    """
    config = config or ScoringConfig()
    if baseline_rate <= 0:
        return config.velocity_sentinel if short_rate > 0 else 0.0
    return ((short_rate - baseline_rate) / baseline_rate) * 100


def calculate_spike_ratio(
    short_rate: float, long_rate: float, config: Optional[ScoringConfig] = None
) -> float:
    """
    Short-window rate over long-window rate, clamped to [min, max].

    An empty long window yields the maximum when the short window is active
    and the minimum otherwise.
    """
    config = config or ScoringConfig()
    if long_rate <= 0:
        return config.spike_ratio_max if short_rate > 0 else config.spike_ratio_min
    ratio = short_rate / long_rate
    return max(config.spike_ratio_min, min(config.spike_ratio_max, ratio))


def calculate_acceleration(rate_1h: float, rate_6h: float) -> float:
    """Percent change of the 1h rate over the 6h average rate (0 if no 6h activity)."""
    if rate_6h <= 0:
        return 0.0
    return ((rate_1h - rate_6h) / rate_6h) * 100


def recency_decay(
    last_seen_at: Optional[datetime], now: datetime, config: Optional[ScoringConfig] = None
) -> float:
    """
    Decay multiplier based on time since last seen.

    Full weight up to `recency_full_hours`, linear down to `recency_floor`
    at `recency_floor_hours` and beyond.
    """
    config = config or ScoringConfig()
    if last_seen_at is None:
        return config.recency_floor

    hours = max(0.0, (now - last_seen_at).total_seconds() / 3600)
    if hours <= config.recency_full_hours:
        return 1.0
    if hours >= config.recency_floor_hours:
        return config.recency_floor

    span = config.recency_floor_hours - config.recency_full_hours
    progress = (hours - config.recency_full_hours) / span
    return 1.0 - progress * (1.0 - config.recency_floor)


def evergreen_penalty(
    is_evergreen: bool,
    z_score: float,
    has_baseline: bool,
    config: Optional[ScoringConfig] = None,
) -> float:
    """Rank multiplier for always-on topics; only strong spikes escape it."""
    config = config or ScoringConfig()
    if not is_evergreen:
        return 1.0
    for min_z, multiplier in config.evergreen_penalty_tiers:
        if z_score > min_z:
            return multiplier
    if has_baseline:
        return config.evergreen_floor_with_baseline
    return config.evergreen_floor_without_baseline


def label_modifier(
    label_quality: LabelQuality,
    has_tier_corroboration: bool,
    has_context: bool,
    config: Optional[ScoringConfig] = None,
) -> float:
    """Rank multiplier for the quality of a trend's display label."""
    config = config or ScoringConfig()
    if label_quality == LabelQuality.EVENT_PHRASE:
        return config.event_phrase_modifier
    if label_quality == LabelQuality.FALLBACK_GENERATED:
        return config.fallback_modifier

    modifier = (
        config.entity_only_modifier
        if has_tier_corroboration
        else config.entity_only_uncorroborated_modifier
    )
    if not has_context:
        modifier *= config.missing_context_modifier
    return modifier


def classify_spike_stage(
    z_score: float,
    acceleration: float,
    hours_old: Optional[float],
    mentions_24h: int,
) -> SpikeStage:
    """Shape of the mention curve from z-score and acceleration."""
    if mentions_24h == 0:
        return SpikeStage.STABLE
    if z_score > 3 and acceleration > 50 and hours_old is not None and hours_old < 3:
        return SpikeStage.EMERGING
    if z_score > 2 and acceleration > 20:
        return SpikeStage.SURGING
    if z_score > 1.5 and acceleration < -20:
        return SpikeStage.PEAKING
    if z_score < 0 or (z_score < 0.5 and acceleration < -30):
        return SpikeStage.DECLINING
    if z_score > 0.5:
        return SpikeStage.SURGING
    return SpikeStage.STABLE


def calculate_confidence(
    stats: WindowStats,
    baseline_rate: float,
    config: Optional[ScoringConfig] = None,
) -> float:
    """
    Confidence (0-100) that a key's activity is a real trend.

    Four components, each capped: spike over baseline, cross-source
    diversity, log-scaled volume and recent activity.
    """
    config = config or ScoringConfig()
    cap = config.confidence_component_cap
    rate_1h = float(stats.mentions_1h)

    delta = (rate_1h - baseline_rate) / baseline_rate if baseline_rate > 0 else rate_1h
    has_news_and_social = (
        stats.source_type_counts.get("news", 0) > 0
        and stats.source_type_counts.get("social", 0) > 0
    )

    baseline_part = min(cap, max(0.0, delta * 5))
    cross_source_part = min(cap, stats.source_type_count * 8 + (5 if has_news_and_social else 0))
    volume_part = min(cap, math.log2(stats.mentions_24h + 1) * 5)
    recency_part = min(cap, 15 + min(10, rate_1h * 2)) if rate_1h > 0 else 0.0

    return round(min(100.0, baseline_part + cross_source_part + volume_part + recency_part), 2)


# ============================================================================
# Composite Ranker
# ============================================================================


class CompositeRanker(BaseRanker):
    """
    Ranker that combines spike, volume, velocity and source diversity.

    rank = (w1*spike_ratio + w2*mentions_1h + w3*min(velocity, cap)
            + w4*diversity_bonus) * recency * label_modifier * evergreen_penalty

    All weights and caps come from ScoringConfig.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        """
        Initialize composite ranker.

        Args:
            config: Scoring settings (defaults if None)
        """
        self._config = config or ScoringConfig()

    @property
    def config(self) -> ScoringConfig:
        return self._config

    def diversity_bonus(self, source_type_count: int) -> float:
        """Bonus for appearing across several distinct source types."""
        if source_type_count < self._config.diversity_min_source_types:
            return 0.0
        return self._config.diversity_multiplier * (source_type_count - 1)

    def score(
        self,
        stats: WindowStats,
        baseline: Optional[TrendBaseline],
        anomaly: AnomalyScores,
        now: datetime,
        label_quality: LabelQuality = LabelQuality.FALLBACK_GENERATED,
        has_context: bool = True,
        is_evergreen: bool = False,
    ) -> TrendScores:
        """
        Score one key's current activity.

        Args:
            stats: Window stats of the key (or cluster)
            baseline: Baseline of the key (None if not yet computed)
            anomaly: Anomaly statistics for the current hour
            now: Current wall-clock time
            label_quality: Display label classification
            has_context: Whether context terms back an entity-only label
            is_evergreen: Whether the topic is always-on

        Returns:
            TrendScores
        """
        config = self._config
        recency = recency_decay(stats.last_seen_at, now, config)
        if stats.mentions_7d == 0:
            # No activity in any window: neutral scores whatever the baseline
            return TrendScores(
                spike_ratio=config.spike_ratio_min,
                recency_multiplier=recency,
            )

        rate_1h = float(stats.mentions_1h)
        rate_6h = stats.mentions_6h / 6.0
        rate_24h = stats.mentions_24h / 24.0
        baseline_rate = baseline.mean_hourly if baseline else 0.0

        velocity = calculate_velocity(rate_1h, baseline_rate, config)
        spike_ratio = calculate_spike_ratio(rate_1h, rate_24h, config)
        acceleration = calculate_acceleration(rate_1h, rate_6h)

        hours_old = None
        if stats.first_seen_at is not None:
            hours_old = (now - stats.first_seen_at).total_seconds() / 3600
        stage = classify_spike_stage(anomaly.true_z_score, acceleration, hours_old, stats.mentions_24h)

        base = (
            config.spike_weight * spike_ratio
            + config.mentions_1h_weight * stats.mentions_1h
            + config.velocity_weight * min(velocity, config.velocity_cap)
            + config.diversity_weight * self.diversity_bonus(stats.source_type_count)
        )
        modifier = label_modifier(
            label_quality, stats.has_tier_corroboration, has_context, config
        )
        penalty = evergreen_penalty(
            is_evergreen, anomaly.true_z_score, baseline is not None, config
        )
        rank_score = max(0.0, base * recency * modifier * penalty)

        logger.debug(
            f"Score for '{stats.key}': base={base:.2f}, recency={recency:.2f}, "
            f"label={modifier:.2f}, evergreen={penalty:.2f} -> {rank_score:.2f}"
        )

        return TrendScores(
            velocity=velocity,
            spike_ratio=spike_ratio,
            acceleration=acceleration,
            rank_score=round(rank_score, 4),
            confidence_score=calculate_confidence(stats, baseline_rate, config),
            recency_multiplier=recency,
            label_modifier=modifier,
            spike_stage=stage,
        )

    def rank(self, trends: List[TrendEvent]) -> List[TrendEvent]:
        """
        Order trends by rank score (descending) and assign 1-based ranks.

        Ties are broken by canonical key so the order is reproducible.
        """
        ordered = sorted(trends, key=lambda t: (-t.rank_score, t.canonical_key))
        for position, trend in enumerate(ordered, start=1):
            trend.rank = position
        logger.info(f"Ranked {len(ordered)} trends")
        return ordered
