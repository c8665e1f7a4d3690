"""
Windowed mention aggregation.

Keeps a bounded buffer of accepted mention events (no older than the longest
window) and recounts every window from that buffer on demand. Each window is
counted independently over [now - size, now], so overlapping windows never
double count and expiry is exact.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from trend_pulse.config import AggregationConfig
from trend_pulse.processing.normalize import display_form, is_empty_key, normalize_topic
from trend_pulse.types import MentionEvent, WindowStats, ensure_utc

logger = logging.getLogger(__name__)

WINDOWS_HOURS: Dict[str, int] = {"1h": 1, "6h": 6, "24h": 24, "7d": 168}


@dataclass(frozen=True)
class BufferedMention:
    """Accepted mention reduced to what aggregation needs."""

    key: str
    label: str
    source_type: str
    source_tier: str
    source_id: str
    occurred_at: datetime
    sentiment: Optional[float]
    is_event_phrase: bool
    authority: float


@dataclass
class IngestResult:
    """Outcome of one ingestion batch."""

    accepted: int = 0
    dropped_empty: int = 0
    dropped_duplicate: int = 0
    dropped_expired: int = 0
    accepted_by_source_type: Dict[str, int] = field(default_factory=dict)
    accepted_events: List[MentionEvent] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return self.dropped_empty + self.dropped_duplicate + self.dropped_expired


@dataclass
class CoOccurrence:
    """What else the source documents behind a set of keys talk about."""

    doc_count: int = 0
    topic_counts: Dict[str, int] = field(default_factory=dict)
    topic_labels: Dict[str, str] = field(default_factory=dict)
    docs_by_topic: Dict[str, Set[str]] = field(default_factory=dict)
    phrase_counts: Dict[str, int] = field(default_factory=dict)


class WindowedAggregator:
    """
    Rolling mention counts per canonical topic key.

    Usage:
        aggregator = WindowedAggregator()
        aggregator.add_events(events, now)
        stats = aggregator.compute_stats(now)
    """

    def __init__(self, config: Optional[AggregationConfig] = None):
        """
        Initialize aggregator.

        Args:
            config: Aggregation settings (defaults if None)
        """
        self._config = config or AggregationConfig()
        self._events: Dict[str, List[BufferedMention]] = defaultdict(list)
        self._seen: Set[Tuple[str, str, datetime]] = set()

    @property
    def retention(self) -> timedelta:
        return timedelta(hours=self._config.retention_hours)

    def authority(self, source_type: str, source_tier: str) -> float:
        """Source authority: source type weight times tier weight."""
        type_weight = self._config.source_type_weights.get(source_type, 0.5)
        tier_weight = self._config.tier_weights.get(source_tier, 0.5)
        return type_weight * tier_weight

    def add_events(self, events: Iterable[MentionEvent], now: datetime) -> IngestResult:
        """
        Accept a batch of mention events.

        Events whose topic normalizes to an empty key, duplicates of an
        already accepted (key, source_id, occurred_at) triple and events older
        than the retention window are dropped and counted.

        Args:
            events: Mention events in any order
            now: Current wall-clock time

        Returns:
            IngestResult with accepted and dropped counts
        """
        now = ensure_utc(now)
        result = IngestResult()
        cutoff = now - self.retention
        by_type: Counter = Counter()

        for event in events:
            key = normalize_topic(event.raw_topic)
            if is_empty_key(key):
                result.dropped_empty += 1
                continue

            if event.occurred_at < cutoff:
                result.dropped_expired += 1
                continue

            identity = (key, event.source_id, event.occurred_at)
            if identity in self._seen:
                result.dropped_duplicate += 1
                continue

            source_type = event.source_type.value
            source_tier = event.source_tier.value
            self._seen.add(identity)
            self._events[key].append(
                BufferedMention(
                    key=key,
                    label=display_form(event.raw_topic),
                    source_type=source_type,
                    source_tier=source_tier,
                    source_id=event.source_id,
                    occurred_at=event.occurred_at,
                    sentiment=event.sentiment,
                    is_event_phrase=event.is_event_phrase,
                    authority=self.authority(source_type, source_tier),
                )
            )
            result.accepted_events.append(event)
            result.accepted += 1
            by_type[source_type] += 1

        result.accepted_by_source_type = dict(by_type)

        if result.dropped:
            logger.debug(
                f"Dropped {result.dropped} mentions "
                f"(empty={result.dropped_empty}, duplicate={result.dropped_duplicate}, "
                f"expired={result.dropped_expired})"
            )
        return result

    def clear(self) -> None:
        """Drop every buffered event."""
        self._events = defaultdict(list)
        self._seen = set()

    def keys(self) -> List[str]:
        """All keys currently holding buffered events."""
        return sorted(key for key, events in self._events.items() if events)

    def compute_stats(
        self, now: datetime, keys: Optional[Iterable[str]] = None
    ) -> Dict[str, WindowStats]:
        """
        Recount windows for the given keys (all keys if None).

        Args:
            now: Current wall-clock time
            keys: Canonical keys to compute

        Returns:
            WindowStats per key; unknown keys get all-zero stats
        """
        now = ensure_utc(now)
        selected = self.keys() if keys is None else list(keys)
        return {key: self._stats_for(key, self._events.get(key, []), now) for key in selected}

    def _stats_for(self, key: str, events: List[BufferedMention], now: datetime) -> WindowStats:
        counts = {name: 0 for name in WINDOWS_HOURS}
        starts = {name: now - timedelta(hours=hours) for name, hours in WINDOWS_HOURS.items()}

        first_seen: Optional[datetime] = None
        last_seen: Optional[datetime] = None
        sentiments: List[float] = []
        type_counts: Counter = Counter()
        tier_counts: Counter = Counter()
        labels: Counter = Counter()
        evidence_weight = 0.0
        top_authority = 0.0
        event_phrase_hint = False

        for event in events:
            if event.occurred_at > now:
                continue

            for name, start in starts.items():
                if event.occurred_at >= start:
                    counts[name] += 1

            if event.occurred_at < starts["7d"]:
                continue

            labels[event.label] += 1
            first_seen = event.occurred_at if first_seen is None else min(first_seen, event.occurred_at)
            last_seen = event.occurred_at if last_seen is None else max(last_seen, event.occurred_at)
            event_phrase_hint = event_phrase_hint or event.is_event_phrase

            if event.occurred_at >= starts["24h"]:
                type_counts[event.source_type] += 1
                tier_counts[event.source_tier] += 1
                evidence_weight += event.authority
                top_authority = max(top_authority, event.authority)
                if event.sentiment is not None:
                    sentiments.append(event.sentiment)

        positive = sum(1 for s in sentiments if s > self._config.positive_sentiment_threshold)
        negative = sum(1 for s in sentiments if s < self._config.negative_sentiment_threshold)

        return WindowStats(
            key=key,
            mentions_1h=counts["1h"],
            mentions_6h=counts["6h"],
            mentions_24h=counts["24h"],
            mentions_7d=counts["7d"],
            first_seen_at=first_seen,
            last_seen_at=last_seen,
            sentiment_avg=(sum(sentiments) / len(sentiments)) if sentiments else None,
            sentiment_positive=positive,
            sentiment_negative=negative,
            sentiment_neutral=len(sentiments) - positive - negative,
            source_type_counts=dict(type_counts),
            tier_counts=dict(tier_counts),
            evidence_weight=round(evidence_weight, 6),
            top_authority=top_authority,
            display_label=_most_common(labels) or key,
            has_event_phrase_hint=event_phrase_hint,
        )

    @staticmethod
    def merge_stats(key: str, stats_list: List[WindowStats], label: Optional[str] = None) -> WindowStats:
        """
        Combine member-key stats into cluster stats.

        Args:
            key: Canonical key of the cluster
            stats_list: Stats of every member key
            label: Display label (defaults to the heaviest member's)

        Returns:
            Summed WindowStats
        """
        if not stats_list:
            return WindowStats(key=key, display_label=label or key)

        type_counts: Counter = Counter()
        tier_counts: Counter = Counter()
        sentiment_total = 0.0
        sentiment_n = 0
        for stats in stats_list:
            type_counts.update(stats.source_type_counts)
            tier_counts.update(stats.tier_counts)
            n = stats.sentiment_positive + stats.sentiment_neutral + stats.sentiment_negative
            if stats.sentiment_avg is not None and n:
                sentiment_total += stats.sentiment_avg * n
                sentiment_n += n

        firsts = [s.first_seen_at for s in stats_list if s.first_seen_at]
        lasts = [s.last_seen_at for s in stats_list if s.last_seen_at]
        heaviest = max(stats_list, key=lambda s: (s.evidence_weight, s.mentions_7d, s.key))

        return WindowStats(
            key=key,
            mentions_1h=sum(s.mentions_1h for s in stats_list),
            mentions_6h=sum(s.mentions_6h for s in stats_list),
            mentions_24h=sum(s.mentions_24h for s in stats_list),
            mentions_7d=sum(s.mentions_7d for s in stats_list),
            first_seen_at=min(firsts) if firsts else None,
            last_seen_at=max(lasts) if lasts else None,
            sentiment_avg=(sentiment_total / sentiment_n) if sentiment_n else None,
            sentiment_positive=sum(s.sentiment_positive for s in stats_list),
            sentiment_neutral=sum(s.sentiment_neutral for s in stats_list),
            sentiment_negative=sum(s.sentiment_negative for s in stats_list),
            source_type_counts=dict(type_counts),
            tier_counts=dict(tier_counts),
            evidence_weight=round(sum(s.evidence_weight for s in stats_list), 6),
            top_authority=max(s.top_authority for s in stats_list),
            display_label=label or heaviest.display_label,
            has_event_phrase_hint=any(s.has_event_phrase_hint for s in stats_list),
        )

    def hourly_counts(self, keys: Iterable[str], now: datetime, hours: int = 168) -> List[int]:
        """
        Trailing per-hour mention counts, oldest first.

        Bucket i covers [now - (hours - i)h, now - (hours - i - 1)h).

        Args:
            keys: Keys whose mentions are summed
            now: End of the last bucket
            hours: Number of hourly buckets

        Returns:
            List of `hours` counts
        """
        now = ensure_utc(now)
        buckets = [0] * hours
        start = now - timedelta(hours=hours)
        for key in set(keys):
            for event in self._events.get(key, []):
                if start <= event.occurred_at < now:
                    index = int((event.occurred_at - start).total_seconds() // 3600)
                    buckets[min(index, hours - 1)] += 1
        return buckets

    def top_keys(self, now: datetime, limit: int) -> List[str]:
        """
        Top canonical keys by recent volume.

        Ordered by 6h count, then 24h count, then key.
        """
        now = ensure_utc(now)
        start_6h = now - timedelta(hours=6)
        start_24h = now - timedelta(hours=24)
        volumes = []
        for key, events in self._events.items():
            recent = sum(1 for e in events if start_6h <= e.occurred_at <= now)
            daily = sum(1 for e in events if start_24h <= e.occurred_at <= now)
            if daily:
                volumes.append((-recent, -daily, key))
        volumes.sort()
        return [key for _, _, key in volumes[:limit]]

    def cooccurrence(
        self, keys: Iterable[str], now: datetime, window_hours: int = 24
    ) -> CoOccurrence:
        """
        Topics sharing source documents with the given keys.

        Args:
            keys: Member keys of one cluster
            now: Current wall-clock time
            window_hours: How far back documents are considered

        Returns:
            CoOccurrence over the documents behind `keys`
        """
        now = ensure_utc(now)
        members = set(keys)
        start = now - timedelta(hours=window_hours)

        docs: Set[str] = set()
        for key in members:
            for event in self._events.get(key, []):
                if start <= event.occurred_at <= now:
                    docs.add(event.source_id)

        result = CoOccurrence(doc_count=len(docs))
        if not docs:
            return result

        topic_counts: Counter = Counter()
        phrase_counts: Counter = Counter()
        labels: Dict[str, Counter] = defaultdict(Counter)
        docs_by_topic: Dict[str, Set[str]] = defaultdict(set)
        for key, events in self._events.items():
            if key in members:
                continue
            for event in events:
                if event.source_id in docs and start <= event.occurred_at <= now:
                    topic_counts[key] += 1
                    phrase_counts[event.label] += 1
                    labels[key][event.label] += 1
                    docs_by_topic[key].add(event.source_id)

        result.topic_counts = dict(topic_counts)
        result.phrase_counts = dict(phrase_counts)
        result.topic_labels = {key: _most_common(counter) for key, counter in labels.items()}
        result.docs_by_topic = dict(docs_by_topic)
        return result

    def prune(self, now: datetime) -> int:
        """
        Evict events older than the retention window.

        Returns:
            Number of evicted events
        """
        now = ensure_utc(now)
        cutoff = now - self.retention
        evicted = 0
        for key in list(self._events.keys()):
            kept = [e for e in self._events[key] if e.occurred_at >= cutoff]
            evicted += len(self._events[key]) - len(kept)
            if kept:
                self._events[key] = kept
            else:
                del self._events[key]

        self._seen = {identity for identity in self._seen if identity[2] >= cutoff}

        if evicted:
            logger.info(f"Pruned {evicted} expired mentions")
        return evicted


def _most_common(counter: Counter) -> str:
    """Most frequent entry; ties go to the lexicographically smallest."""
    if not counter:
        return ""
    return min(counter.items(), key=lambda item: (-item[1], item[0]))[0]
