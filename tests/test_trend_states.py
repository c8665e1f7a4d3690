"""
Unit tests for TrendStateService.

Tests lifecycle promotion, breaking detection, decay, trending_since
handling and state history.
"""

import pytest
from datetime import datetime, timedelta, timezone

from trend_pulse.config import LifecycleConfig
from trend_pulse.services.trend_states import (
    LifecycleSignals,
    StateTransition,
    TrendStateService,
)
from trend_pulse.types import LabelQuality, TrendState

from tests.fixtures import NOW, create_baseline, create_scores, create_stats, create_trend


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def state_service():
    """Create TrendStateService with a small blocklist."""
    return TrendStateService(blocklist=["Gaza", "breaking", "news"])


@pytest.fixture
def candidate():
    """Create a candidate trend with an event-phrase label."""
    return create_trend(state=TrendState.CANDIDATE, label_quality=LabelQuality.EVENT_PHRASE)


def spiking_signals(**overrides) -> LifecycleSignals:
    """Signals for a key with mentions_1h=4, 6h=6, 24h=8 and a low baseline."""
    values = {
        "stats": create_stats(mentions_1h=4, mentions_6h=6, mentions_24h=8),
        "scores": create_scores(velocity=3900.0, spike_ratio=5.0),
        "baseline": create_baseline(),
        "has_context": False,
    }
    values.update(overrides)
    return LifecycleSignals(**values)


# ============================================================================
# State Transition Tests
# ============================================================================


class TestStateTransitions:
    """Tests for state transition recording and history."""

    def test_state_transition_round_trip(self):
        """Test converting a transition to and from a dictionary."""
        original = StateTransition(
            from_state=TrendState.CANDIDATE,
            to_state=TrendState.TRENDING,
            timestamp=NOW,
            reason="velocity=3900.0",
            metrics_snapshot={"mentions_1h": 4},
        )

        restored = StateTransition.from_dict(original.to_dict())

        assert restored.from_state == TrendState.CANDIDATE
        assert restored.to_state == TrendState.TRENDING
        assert restored.timestamp == NOW
        assert restored.metrics_snapshot == {"mentions_1h": 4}

    def test_new_trend_enters_as_candidate(self, state_service):
        """Test first mention moves DORMANT to CANDIDATE."""
        trend = state_service.new_trend(create_trend(state=TrendState.DORMANT), NOW)

        assert trend.state == TrendState.CANDIDATE
        assert state_service.get_state_history(trend)[0].reason == "First mention observed"

    def test_history_is_capped(self):
        """Test only the most recent transitions are kept."""
        service = TrendStateService(LifecycleConfig(history_limit=3))
        trend = create_trend(state=TrendState.CANDIDATE, label_quality=LabelQuality.EVENT_PHRASE)

        for cycle in range(5):
            now = NOW + timedelta(hours=cycle)
            stats = create_stats(mentions_1h=4, mentions_6h=6, mentions_24h=8, last_seen_at=now)
            trend, _ = service.evaluate(trend, spiking_signals(stats=stats), now)
            trend = service.retire(trend, now, "test")
            trend = service.new_trend(trend, now)

        assert len(trend.state_history) == 3


# ============================================================================
# Promotion Tests
# ============================================================================


class TestPromotion:
    """Tests for CANDIDATE → TRENDING."""

    def test_spiking_candidate_trends(self, state_service, candidate):
        """Test velocity and volume promote a candidate."""
        trend, transitions = state_service.evaluate(candidate, spiking_signals(), NOW)

        assert trend.state == TrendState.TRENDING
        assert trend.is_trending
        assert not trend.is_breaking
        assert trend.trending_since == NOW
        assert [(t.from_state, t.to_state) for t in transitions] == [
            (TrendState.CANDIDATE, TrendState.TRENDING)
        ]

    def test_volume_alone_promotes(self, state_service, candidate):
        """Test 6h volume without velocity."""
        signals = spiking_signals(
            stats=create_stats(mentions_1h=0, mentions_6h=5, mentions_24h=5),
            scores=create_scores(velocity=0.0),
        )

        trend, _ = state_service.evaluate(candidate, signals, NOW)

        assert trend.state == TrendState.TRENDING

    def test_low_activity_stays_candidate(self, state_service, candidate):
        """Test below both thresholds."""
        signals = spiking_signals(
            stats=create_stats(mentions_1h=1, mentions_6h=2, mentions_24h=2),
            scores=create_scores(velocity=900.0),
        )

        trend, transitions = state_service.evaluate(candidate, signals, NOW)

        assert trend.state == TrendState.CANDIDATE
        assert transitions == []

    def test_blocklisted_key_never_trends(self, state_service):
        """Test a blocklisted key stays a candidate whatever its velocity."""
        trend = create_trend("gaza", "Gaza", label_quality=LabelQuality.EVENT_PHRASE)

        result, _ = state_service.evaluate(trend, spiking_signals(), NOW)

        assert result.state == TrendState.CANDIDATE
        assert not result.is_trending

    def test_multiword_blocklist_match(self, state_service):
        """Test keys made only of blocklisted words."""
        assert state_service.is_blocklisted("breaking news")
        assert not state_service.is_blocklisted("breaking tariff news")

    def test_stable_baseline_blocks_promotion(self, state_service, candidate):
        """Test a steady, always-on topic does not trend."""
        signals = spiking_signals(baseline=create_baseline(mean=10.0, std_dev=1.0, is_stable=True))

        trend, _ = state_service.evaluate(candidate, signals, NOW)

        assert trend.state == TrendState.CANDIDATE

    def test_entity_only_needs_context(self, state_service):
        """Test entity-only labels trend only with supporting context."""
        trend = create_trend("pentagon", "Pentagon", label_quality=LabelQuality.ENTITY_ONLY)

        without, _ = state_service.evaluate(trend, spiking_signals(has_context=False), NOW)
        with_context, _ = state_service.evaluate(trend, spiking_signals(has_context=True), NOW)

        assert without.state == TrendState.CANDIDATE
        assert with_context.state == TrendState.TRENDING


# ============================================================================
# Breaking and Decay Tests
# ============================================================================


class TestBreakingAndDecay:
    """Tests for BREAKING, DECAYING and DORMANT."""

    def test_corroborated_spike_breaks(self, state_service, candidate):
        """Test a candidate can chain through TRENDING to BREAKING."""
        stats = create_stats(
            mentions_1h=4, mentions_6h=6, mentions_24h=8,
            source_type_counts={"news": 5, "social": 3},
        )

        trend, transitions = state_service.evaluate(candidate, spiking_signals(stats=stats), NOW)

        assert trend.state == TrendState.BREAKING
        assert trend.is_trending and trend.is_breaking
        assert len(transitions) == 2

    def test_breaking_falls_back_to_trending(self, state_service):
        """Test breaking ends when the last hour goes quiet."""
        trend = create_trend(state=TrendState.BREAKING)
        stats = create_stats(mentions_1h=0, mentions_6h=6, mentions_24h=8, last_seen_at=NOW - timedelta(hours=2))

        result, _ = state_service.evaluate(trend, spiking_signals(stats=stats), NOW)

        assert result.state == TrendState.TRENDING
        assert not result.is_breaking

    def test_quiet_trend_decays_then_goes_dormant(self, state_service, candidate):
        """Test decay after the quiet period and dormancy after the dormant period."""
        trending, _ = state_service.evaluate(candidate, spiking_signals(), NOW)
        quiet = create_stats(mentions_7d=8, last_seen_at=NOW)

        decaying, _ = state_service.evaluate(
            trending, spiking_signals(stats=quiet), NOW + timedelta(hours=50)
        )
        dormant, _ = state_service.evaluate(
            decaying, spiking_signals(stats=quiet), NOW + timedelta(hours=73)
        )

        assert decaying.state == TrendState.DECAYING
        assert not decaying.is_trending
        assert decaying.trending_since == NOW
        assert dormant.state == TrendState.DORMANT
        assert dormant.trending_since is None

    def test_long_silence_chains_to_dormant(self, state_service, candidate):
        """Test a single evaluation can go TRENDING → DECAYING → DORMANT."""
        trending, _ = state_service.evaluate(candidate, spiking_signals(), NOW)

        result, transitions = state_service.evaluate(
            trending,
            spiking_signals(stats=create_stats(mentions_7d=8, last_seen_at=NOW)),
            NOW + timedelta(hours=100),
        )

        assert result.state == TrendState.DORMANT
        assert [t.to_state for t in transitions] == [TrendState.DECAYING, TrendState.DORMANT]

    def test_decaying_resumes_as_candidate(self, state_service):
        """Test new evidence brings a decaying trend back."""
        trend = create_trend(state=TrendState.DECAYING, trending_since=NOW - timedelta(days=3))
        stats = create_stats(mentions_1h=1, mentions_6h=1, mentions_24h=1)

        result, _ = state_service.evaluate(
            trend, spiking_signals(stats=stats, scores=create_scores()), NOW
        )

        assert result.state == TrendState.CANDIDATE
        assert result.trending_since == NOW - timedelta(days=3)

    def test_trending_since_never_overwritten(self, state_service, candidate):
        """Test re-promotion keeps the original trending_since."""
        started = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)
        trend = candidate.model_copy(update={"trending_since": started})

        result, _ = state_service.evaluate(trend, spiking_signals(), NOW)

        assert result.state == TrendState.TRENDING
        assert result.trending_since == started

    def test_retire(self, state_service):
        """Test retiring a trending trend."""
        trend = create_trend(state=TrendState.TRENDING, trending_since=NOW, is_trending=True)

        result = state_service.retire(trend, NOW, "Merged")

        assert result.state == TrendState.DORMANT
        assert result.trending_since is None
        assert not result.is_trending


def test_bulk_evaluate_counts_changes(state_service, candidate):
    """Test statistics of a bulk evaluation."""
    idle = create_trend("weather", "Weather", label_quality=LabelQuality.ENTITY_ONLY)
    quiet_signals = spiking_signals(stats=create_stats("weather", mentions_1h=1, mentions_6h=1, mentions_24h=1))

    updated, stats = state_service.bulk_evaluate(
        [(candidate, spiking_signals()), (idle, quiet_signals)], NOW
    )

    assert stats == {"total": 2, "changed": 1, "unchanged": 1, "transitions": 1}
    assert updated[0].state == TrendState.TRENDING
