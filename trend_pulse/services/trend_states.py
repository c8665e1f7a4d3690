"""
Trend State Management Service.

This module drives the lifecycle of canonical trends
(DORMANT → CANDIDATE → TRENDING → BREAKING → DECAYING → DORMANT). Transitions
are chained within one evaluation, so a single pass can take a trend that has
been silent for days straight from TRENDING to DORMANT.

`trending_since` is set only on CANDIDATE → TRENDING when it is empty and is
cleared only on entering DORMANT. Persisting it is the caller's job and must go
through the repository's conditional write.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from trend_pulse.config import LifecycleConfig
from trend_pulse.observability.metrics import record_state_transition
from trend_pulse.processing.normalize import normalize_terms
from trend_pulse.types import (
    LabelQuality,
    TrendBaseline,
    TrendEvent,
    TrendScores,
    TrendState,
    WindowStats,
    ensure_utc,
)

logger = logging.getLogger(__name__)


# ============================================================================
# State Transition History
# ============================================================================


class StateTransition:
    """Record of a state transition."""

    def __init__(
        self,
        from_state: TrendState,
        to_state: TrendState,
        timestamp: datetime,
        reason: str,
        metrics_snapshot: Optional[Dict[str, Any]] = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.timestamp = timestamp
        self.reason = reason
        self.metrics_snapshot = metrics_snapshot or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "metrics_snapshot": self.metrics_snapshot,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StateTransition":
        """Create from dictionary."""
        return StateTransition(
            from_state=TrendState(data["from_state"]),
            to_state=TrendState(data["to_state"]),
            timestamp=ensure_utc(datetime.fromisoformat(data["timestamp"])),
            reason=data["reason"],
            metrics_snapshot=data.get("metrics_snapshot", {}),
        )


# ============================================================================
# Lifecycle Signals
# ============================================================================


@dataclass
class LifecycleSignals:
    """Everything a lifecycle evaluation looks at for one trend."""

    stats: WindowStats
    scores: TrendScores
    baseline: Optional[TrendBaseline] = None
    has_context: bool = False


# ============================================================================
# Trend State Service
# ============================================================================


class TrendStateService:
    """
    Service for managing trend lifecycle states.

    Promotion rules:
    - CANDIDATE → TRENDING: (velocity > threshold and 24h mentions ≥ min) or
      6h mentions ≥ min, provided the baseline is not stable, the key is not
      blocklisted and an entity-only label has supporting context
    - TRENDING → BREAKING: ≥ 2 source types, 1h mentions ≥ 3, spike ratio ≥ 3
    - BREAKING → TRENDING: no 1h evidence or spike ratio below the exit ratio
    - any → DECAYING after the quiet period, DECAYING → DORMANT after the
      dormant period, DECAYING → CANDIDATE when evidence resumes
    """

    def __init__(
        self,
        config: Optional[LifecycleConfig] = None,
        blocklist: Optional[Iterable[str]] = None,
    ):
        """
        Initialize trend state service.

        Args:
            config: Lifecycle thresholds
            blocklist: Generic/perennial terms (config blocklist if None)
        """
        self._config = config or LifecycleConfig()
        self._blocklist = normalize_terms(
            blocklist if blocklist is not None else self._config.blocklist
        )

    @property
    def config(self) -> LifecycleConfig:
        return self._config

    @property
    def blocklist(self):
        return frozenset(self._blocklist)

    def update_blocklist(self, terms: Iterable[str]) -> None:
        """Replace the blocklist (terms are normalized to canonical keys)."""
        self._blocklist = normalize_terms(terms)

    def is_blocklisted(self, key: str) -> bool:
        """
        Check whether a canonical key is a generic/perennial term.

        A key is blocked when it is listed itself, or when it has several
        words and every one of them is listed.
        """
        if not key:
            return False
        if key in self._blocklist:
            return True
        words = key.split()
        return len(words) > 1 and all(word in self._blocklist for word in words)

    def new_trend(self, trend: TrendEvent, now: datetime) -> TrendEvent:
        """
        Enter a freshly created trend into the lifecycle as a candidate.

        Args:
            trend: Trend built from its first observed mentions (DORMANT)
            now: Current wall-clock time

        Returns:
            Copy of the trend in the CANDIDATE state
        """
        trend = trend.model_copy(deep=True)
        if trend.state == TrendState.DORMANT:
            self._apply(trend, TrendState.CANDIDATE, now, "First mention observed", {})
        return trend

    def evaluate(
        self,
        trend: TrendEvent,
        signals: LifecycleSignals,
        now: datetime,
    ) -> Tuple[TrendEvent, List[StateTransition]]:
        """
        Evaluate one trend and apply every transition that holds.

        Args:
            trend: Current stored trend
            signals: Window stats, scores, baseline and context of the trend
            now: Current wall-clock time

        Returns:
            Tuple of (updated copy of the trend, transitions applied in order)
        """
        trend = trend.model_copy(deep=True)
        snapshot = self._snapshot(signals)
        quiet_hours = self._quiet_hours(trend, signals.stats, now)
        transitions: List[StateTransition] = []

        # Transition chains are short; bound the loop by the number of states
        for _ in range(len(TrendState)):
            step = self._next_state(trend, signals, quiet_hours)
            if step is None:
                break
            to_state, reason = step
            transitions.append(self._apply(trend, to_state, now, reason, snapshot))

        trend.is_trending = trend.state in (TrendState.TRENDING, TrendState.BREAKING)
        trend.is_breaking = trend.state == TrendState.BREAKING
        return trend, transitions

    def retire(self, trend: TrendEvent, now: datetime, reason: str) -> TrendEvent:
        """
        Send a trend to DORMANT through DECAYING (e.g. absorbed by another cluster).

        Returns:
            Updated copy of the trend
        """
        trend = trend.model_copy(deep=True)
        if trend.state not in (TrendState.DECAYING, TrendState.DORMANT):
            self._apply(trend, TrendState.DECAYING, now, reason, {})
        if trend.state == TrendState.DECAYING:
            self._apply(trend, TrendState.DORMANT, now, reason, {})
        trend.is_trending = False
        trend.is_breaking = False
        trend.updated_at = now
        return trend

    def bulk_evaluate(
        self,
        items: Iterable[Tuple[TrendEvent, LifecycleSignals]],
        now: datetime,
    ) -> Tuple[List[TrendEvent], Dict[str, int]]:
        """
        Evaluate several trends.

        Args:
            items: (trend, signals) pairs
            now: Current wall-clock time

        Returns:
            Tuple of (updated trends, statistics dictionary with counts)
        """
        updated: List[TrendEvent] = []
        stats = {"total": 0, "changed": 0, "unchanged": 0, "transitions": 0}

        for trend, signals in items:
            result, transitions = self.evaluate(trend, signals, now)
            updated.append(result)
            stats["total"] += 1
            stats["transitions"] += len(transitions)
            if transitions:
                stats["changed"] += 1
            else:
                stats["unchanged"] += 1

        logger.info(
            f"Bulk state evaluation: {stats['changed']}/{stats['total']} changed, "
            f"{stats['transitions']} transitions"
        )
        return updated, stats

    def get_state_history(self, trend: TrendEvent) -> List[StateTransition]:
        """
        Get state transition history for a trend.

        Returns:
            List of state transitions (oldest first)
        """
        return [StateTransition.from_dict(t) for t in trend.state_history]

    @staticmethod
    def state_counts(trends: Iterable[TrendEvent]) -> Dict[str, int]:
        """Number of trends per lifecycle state."""
        counts = {state.value: 0 for state in TrendState}
        for trend in trends:
            counts[trend.state.value] += 1
        return counts

    # ========================================================================
    # Private Methods
    # ========================================================================

    def _next_state(
        self,
        trend: TrendEvent,
        signals: LifecycleSignals,
        quiet_hours: Optional[float],
    ) -> Optional[Tuple[TrendState, str]]:
        config = self._config
        stats = signals.stats
        state = trend.state
        is_quiet = quiet_hours is None or quiet_hours >= config.quiet_period_hours

        if state == TrendState.DORMANT:
            if not is_quiet and stats.mentions_7d > 0:
                return TrendState.CANDIDATE, "New mentions observed"
            return None

        if state == TrendState.DECAYING:
            if quiet_hours is None or quiet_hours >= config.dormant_after_hours:
                return TrendState.DORMANT, f"No evidence for {_hours(quiet_hours)}"
            if not is_quiet:
                return TrendState.CANDIDATE, "Activity resumed"
            return None

        if is_quiet:
            return TrendState.DECAYING, f"No evidence for {_hours(quiet_hours)}"

        if state == TrendState.CANDIDATE:
            blocked_by = self._promotion_blocker(trend, signals)
            if blocked_by is None and self._meets_trending(signals):
                return TrendState.TRENDING, (
                    f"velocity={signals.scores.velocity:.1f}, "
                    f"mentions_6h={stats.mentions_6h}, mentions_24h={stats.mentions_24h}"
                )
            return None

        if state == TrendState.TRENDING:
            if self._meets_breaking(signals):
                return TrendState.BREAKING, (
                    f"{stats.source_type_count} source types, "
                    f"mentions_1h={stats.mentions_1h}, spike_ratio={signals.scores.spike_ratio:.2f}"
                )
            return None

        if state == TrendState.BREAKING:
            if stats.mentions_1h == 0:
                return TrendState.TRENDING, "No mentions in the last hour"
            if signals.scores.spike_ratio < config.breaking_exit_spike_ratio:
                return TrendState.TRENDING, f"Spike ratio fell to {signals.scores.spike_ratio:.2f}"
            return None

        return None

    def _meets_trending(self, signals: LifecycleSignals) -> bool:
        config = self._config
        stats = signals.stats
        by_velocity = (
            signals.scores.velocity > config.trending_velocity_threshold
            and stats.mentions_24h >= config.trending_min_mentions_24h
        )
        by_volume = stats.mentions_6h >= config.trending_min_mentions_6h
        return by_velocity or by_volume

    def _meets_breaking(self, signals: LifecycleSignals) -> bool:
        config = self._config
        stats = signals.stats
        return (
            stats.source_type_count >= config.breaking_min_source_types
            and stats.mentions_1h >= config.breaking_min_mentions_1h
            and signals.scores.spike_ratio >= config.breaking_min_spike_ratio
        )

    def _promotion_blocker(self, trend: TrendEvent, signals: LifecycleSignals) -> Optional[str]:
        """Reason a candidate may not trend, or None."""
        if signals.baseline is not None and signals.baseline.is_stable:
            return "stable_baseline"
        if self.is_blocklisted(trend.canonical_key):
            return "blocklisted"
        if (
            self._config.require_context_for_entity_only
            and trend.label_quality == LabelQuality.ENTITY_ONLY
            and not signals.has_context
        ):
            return "entity_only_without_context"
        return None

    @staticmethod
    def _quiet_hours(trend: TrendEvent, stats: WindowStats, now: datetime) -> Optional[float]:
        last_seen = stats.last_seen_at or trend.last_seen_at
        if last_seen is None:
            return None
        return max(0.0, (now - last_seen).total_seconds() / 3600)

    @staticmethod
    def _snapshot(signals: LifecycleSignals) -> Dict[str, Any]:
        return {
            "mentions_1h": signals.stats.mentions_1h,
            "mentions_6h": signals.stats.mentions_6h,
            "mentions_24h": signals.stats.mentions_24h,
            "velocity": signals.scores.velocity,
            "spike_ratio": signals.scores.spike_ratio,
            "rank_score": signals.scores.rank_score,
        }

    def _apply(
        self,
        trend: TrendEvent,
        to_state: TrendState,
        now: datetime,
        reason: str,
        snapshot: Dict[str, Any],
    ) -> StateTransition:
        from_state = trend.state
        transition = StateTransition(
            from_state=from_state,
            to_state=to_state,
            timestamp=now,
            reason=reason,
            metrics_snapshot=snapshot,
        )

        trend.state = to_state
        if from_state == TrendState.CANDIDATE and to_state == TrendState.TRENDING:
            if trend.trending_since is None:
                trend.trending_since = now
        elif to_state == TrendState.DORMANT:
            trend.trending_since = None

        trend.state_history.append(transition.to_dict())
        # Keep only the most recent transitions
        if len(trend.state_history) > self._config.history_limit:
            trend.state_history = trend.state_history[-self._config.history_limit:]

        record_state_transition(from_state.value, to_state.value)
        logger.debug(
            f"State transition for '{trend.canonical_key}': "
            f"{from_state.value} → {to_state.value} ({reason})"
        )
        return transition


def _hours(value: Optional[float]) -> str:
    return "ever" if value is None else f"{value:.1f}h"
