"""
Organization relevance scoring.

Scores canonical trends against per-organization watchlists. Every score
carries a structured Explanation listing which watch terms matched and how
many points each component contributed, so the same inputs always reproduce
the same score.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from trend_pulse.config import RelevanceConfig
from trend_pulse.processing.normalize import normalize_topic
from trend_pulse.types import (
    Explanation,
    OrgTrendScore,
    OrgWatchlist,
    PriorityBucket,
    TrendEvent,
    WatchRule,
)

logger = logging.getLogger(__name__)

EXACT_MATCH = 1.0
CONTAINMENT_MATCH = 0.85
MIN_MATCH_STRENGTH = 0.5


def match_strength(term: str, phrase: str, min_length: int = 4) -> float:
    """
    How strongly a watch term matches a trend phrase (both canonical keys).

    Returns:
        1.0 for equal keys, 0.85 when one contains the other (both at least
        `min_length` characters), otherwise the token overlap ratio over
        tokens longer than two characters
    """
    if not term or not phrase:
        return 0.0
    if term == phrase:
        return EXACT_MATCH
    if len(term) >= min_length and len(phrase) >= min_length:
        if term in phrase or phrase in term:
            return CONTAINMENT_MATCH

    tokens_a = {t for t in term.split() if len(t) > 2}
    tokens_b = {t for t in phrase.split() if len(t) > 2}
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


class OrgRelevanceScorer:
    """
    Scores one trend against one organization watchlist.

    Scoring steps:
    1. A denied entity matching the trend blocks it outright
    2. Topic match: best (weight x match strength) x topic points; watched
       entities count as weight-1 topics
    3. Allowlisted entity: bonus points and a forced HIGH bucket
    4. Geography: bonus points
    5. Velocity bonus: floor(velocity / divisor), capped
    Relevance is capped at 100. Urgency combines velocity, recency and
    breaking status.
    """

    def __init__(self, config: Optional[RelevanceConfig] = None):
        """
        Initialize relevance scorer.

        Args:
            config: Relevance settings (defaults if None)
        """
        self._config = config or RelevanceConfig()

    @property
    def config(self) -> RelevanceConfig:
        return self._config

    def score(self, trend: TrendEvent, watchlist: OrgWatchlist, now: datetime) -> OrgTrendScore:
        """
        Score a trend for an organization.

        Args:
            trend: Canonical trend event
            watchlist: Organization watch configuration
            now: Current wall-clock time (sets computed_at and expires_at)

        Returns:
            OrgTrendScore with a deterministic Explanation
        """
        config = self._config
        phrases = self._trend_phrases(trend)
        expires_at = now + timedelta(hours=config.ttl_hours)

        denied = sorted(
            entity.name
            for entity in watchlist.entities
            if entity.rule == WatchRule.DENY and self._best_match(entity.name, phrases) >= CONTAINMENT_MATCH
        )
        if denied:
            logger.debug(f"Trend '{trend.canonical_key}' blocked for {watchlist.organization_id}")
            return OrgTrendScore(
                organization_id=watchlist.organization_id,
                trend_key=trend.canonical_key,
                trend_id=trend.id,
                priority_bucket=PriorityBucket.LOW,
                matched_entities=denied,
                explanation=Explanation(
                    version=config.explanation_version,
                    matched_entities=denied,
                    reason_codes=["blocked_entity"],
                    components={},
                ),
                is_blocked=True,
                computed_at=now,
                expires_at=expires_at,
            )

        components: Dict[str, float] = {}
        reason_codes: List[str] = []

        # Topics and watched entities
        matched_terms: Set[str] = set()
        matched_entities: Set[str] = set()
        best_topic = 0.0
        fuzzy_only = True
        for topic in watchlist.topics:
            strength = self._best_match(topic.term, phrases)
            if strength >= MIN_MATCH_STRENGTH:
                matched_terms.add(topic.term)
                best_topic = max(best_topic, topic.weight * strength)
                fuzzy_only = fuzzy_only and strength < EXACT_MATCH
        for entity in watchlist.entities:
            if entity.rule == WatchRule.DENY:
                continue
            strength = self._best_match(entity.name, phrases)
            if strength >= MIN_MATCH_STRENGTH:
                matched_entities.add(entity.name)
                if entity.rule == WatchRule.WATCH:
                    best_topic = max(best_topic, strength)
                    fuzzy_only = fuzzy_only and strength < EXACT_MATCH

        if best_topic > 0:
            components["topic_match"] = round(best_topic * config.topic_match_points, 2)
            reason_codes.append("topic_fuzzy_match" if fuzzy_only else "topic_match")
        if matched_entities:
            reason_codes.append("entity_match")

        # Allowlist
        allowlisted = sorted(
            entity.name
            for entity in watchlist.entities
            if entity.rule == WatchRule.ALLOW and entity.name in matched_entities
        )
        if allowlisted:
            components["allowlist"] = config.allowlist_bonus
            reason_codes.append("allowlisted")

        # Geography
        geographies = sorted(
            geo for geo in watchlist.geographies
            if self._best_match(geo, phrases) >= CONTAINMENT_MATCH
        )
        if geographies:
            components["geography"] = config.geography_bonus
            reason_codes.append("geography_match")

        # Velocity
        velocity_bonus = self.velocity_bonus(trend.velocity)
        if velocity_bonus > 0:
            components["velocity"] = velocity_bonus
            reason_codes.append("velocity_bonus")

        if trend.is_breaking:
            reason_codes.append("breaking")
        if not components:
            reason_codes.append("no_match")

        relevance = round(min(100.0, sum(components.values())), 2)
        urgency = self.urgency(trend, now)
        bucket = self.bucket_for(relevance, bool(allowlisted))

        return OrgTrendScore(
            organization_id=watchlist.organization_id,
            trend_key=trend.canonical_key,
            trend_id=trend.id,
            relevance_score=relevance,
            urgency_score=urgency,
            priority_bucket=bucket,
            matched_topics=sorted(matched_terms),
            matched_entities=sorted(matched_entities),
            explanation=Explanation(
                version=config.explanation_version,
                matched_terms=sorted(matched_terms),
                matched_entities=sorted(matched_entities),
                matched_geographies=geographies,
                reason_codes=reason_codes,
                components=dict(sorted(components.items())),
            ),
            is_blocked=False,
            is_allowlisted=bool(allowlisted),
            computed_at=now,
            expires_at=expires_at,
        )

    def velocity_bonus(self, velocity: float) -> float:
        """Relevance bonus for fast-moving trends."""
        config = self._config
        if velocity <= config.velocity_bonus_divisor:
            return 0.0
        return float(min(config.velocity_bonus_cap, math.floor(velocity / config.velocity_bonus_divisor)))

    def urgency(self, trend: TrendEvent, now: datetime) -> float:
        """
        Urgency (0-100) from velocity, recency and breaking status.

        Args:
            trend: Canonical trend event
            now: Current wall-clock time

        Returns:
            Urgency score rounded to 2 places
        """
        config = self._config
        velocity_part = config.urgency_velocity_points * min(1.0, max(0.0, trend.velocity) / 500.0)

        recency_part = 0.0
        if trend.last_seen_at is not None:
            hours = max(0.0, (now - trend.last_seen_at).total_seconds() / 3600)
            remaining = max(0.0, 1.0 - hours / config.urgency_recency_window_hours)
            recency_part = config.urgency_recency_points * remaining

        breaking_part = config.urgency_breaking_points if trend.is_breaking else 0.0
        return round(min(100.0, velocity_part + recency_part + breaking_part), 2)

    def bucket_for(self, relevance: float, is_allowlisted: bool = False) -> PriorityBucket:
        """Priority bucket for a relevance score; allowlisted trends are HIGH."""
        if is_allowlisted or relevance >= self._config.high_threshold:
            return PriorityBucket.HIGH
        if relevance >= self._config.medium_threshold:
            return PriorityBucket.MEDIUM
        return PriorityBucket.LOW

    @staticmethod
    def is_fresh(score: Optional[OrgTrendScore], now: datetime) -> bool:
        """Whether a stored score may still be served."""
        return score is not None and score.expires_at > now

    @staticmethod
    def passes_thresholds(score: OrgTrendScore, watchlist: OrgWatchlist) -> bool:
        """Whether a score clears the organization's minimum relevance and urgency."""
        if score.is_blocked:
            return False
        if score.is_allowlisted:
            return True
        return (
            score.relevance_score >= watchlist.min_relevance
            and score.urgency_score >= watchlist.min_urgency
        )

    # ========================================================================
    # Private Methods
    # ========================================================================

    @staticmethod
    def _trend_phrases(trend: TrendEvent) -> List[str]:
        phrases = {trend.canonical_key}
        phrases.update(trend.member_keys)
        for text in [trend.canonical_label, trend.display_title, *trend.context_terms]:
            key = normalize_topic(text)
            if key:
                phrases.add(key)
        return sorted(phrases)

    def _best_match(self, term: str, phrases: List[str]) -> float:
        key = normalize_topic(term)
        if not key:
            return 0.0
        return max(
            (match_strength(key, phrase, self._config.fuzzy_min_length) for phrase in phrases),
            default=0.0,
        )


def rank_org_feed(scores: List[OrgTrendScore]) -> List[OrgTrendScore]:
    """Order an organization feed: bucket, then relevance, urgency and key."""
    order: Dict[PriorityBucket, int] = {
        PriorityBucket.HIGH: 0,
        PriorityBucket.MEDIUM: 1,
        PriorityBucket.LOW: 2,
    }

    def sort_key(score: OrgTrendScore) -> Tuple[int, float, float, str]:
        return (order[score.priority_bucket], -score.relevance_score, -score.urgency_score, score.trend_key)

    return sorted(scores, key=sort_key)
