"""
In-memory repository implementations.

Each repository guards its data with an asyncio.Lock so that a single
record's read-modify-write is atomic, and hands out deep copies so callers
never observe (or cause) partial updates.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from trend_pulse.processing.normalize import normalize_terms
from trend_pulse.storage.interfaces import StorageError
from trend_pulse.types import (
    AnomalyAlert,
    MentionEvent,
    OrgTrendScore,
    OrgWatchlist,
    TrendBaseline,
    TrendEvent,
)

logger = logging.getLogger(__name__)


class InMemoryTrendRepository:
    """In-memory TrendRepository keyed by canonical key."""

    def __init__(self):
        self._trends: Dict[str, TrendEvent] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[TrendEvent]:
        async with self._lock:
            trend = self._trends.get(key)
            return trend.model_copy(deep=True) if trend else None

    async def get_many(self, keys: Iterable[str]) -> Dict[str, TrendEvent]:
        async with self._lock:
            return {
                key: self._trends[key].model_copy(deep=True)
                for key in keys
                if key in self._trends
            }

    async def upsert(self, trend: TrendEvent) -> TrendEvent:
        """Replace the whole record; trending_since is kept from storage."""
        async with self._lock:
            existing = self._trends.get(trend.canonical_key)
            stored = trend.model_copy(
                deep=True,
                update={"trending_since": existing.trending_since if existing else None},
            )
            self._trends[trend.canonical_key] = stored
            return stored.model_copy(deep=True)

    async def set_trending_since_if_null(self, key: str, timestamp: datetime) -> Optional[datetime]:
        async with self._lock:
            trend = self._trends.get(key)
            if trend is None:
                return None
            if trend.trending_since is None:
                self._trends[key] = trend.model_copy(update={"trending_since": timestamp})
            return self._trends[key].trending_since

    async def clear_trending_since(self, key: str) -> None:
        async with self._lock:
            trend = self._trends.get(key)
            if trend is not None and trend.trending_since is not None:
                self._trends[key] = trend.model_copy(update={"trending_since": None})

    async def rekey(self, old_key: str, new_key: str) -> Optional[TrendEvent]:
        async with self._lock:
            trend = self._trends.pop(old_key, None)
            if trend is None:
                return None
            moved = trend.model_copy(update={"canonical_key": new_key})
            self._trends[new_key] = moved
            logger.info(f"Re-keyed trend {moved.id}: '{old_key}' -> '{new_key}'")
            return moved.model_copy(deep=True)

    async def list_all(self) -> List[TrendEvent]:
        async with self._lock:
            return [trend.model_copy(deep=True) for trend in self._trends.values()]

    async def count(self) -> int:
        async with self._lock:
            return len(self._trends)


class InMemoryMentionRepository:
    """In-memory MentionRepository; engines sharing an instance share one buffer."""

    def __init__(self):
        self._events: Dict[Tuple[str, str, datetime], MentionEvent] = {}
        self._lock = asyncio.Lock()

    async def add(self, events: Iterable[MentionEvent]) -> int:
        async with self._lock:
            added = 0
            for event in events:
                identity = (event.raw_topic, event.source_id, event.occurred_at)
                if identity not in self._events:
                    self._events[identity] = event
                    added += 1
            return added

    async def load(self, since: datetime) -> List[MentionEvent]:
        async with self._lock:
            events = [e for e in self._events.values() if e.occurred_at >= since]
        events.sort(key=lambda e: e.occurred_at)
        return events

    async def prune(self, before: datetime) -> int:
        async with self._lock:
            expired = [k for k, e in self._events.items() if e.occurred_at < before]
            for k in expired:
                del self._events[k]
            return len(expired)

    async def count(self) -> int:
        async with self._lock:
            return len(self._events)


class InMemoryBaselineRepository:
    """In-memory BaselineRepository (per key, ordered by bucket date)."""

    def __init__(self):
        self._history: Dict[str, List[TrendBaseline]] = {}
        self._lock = asyncio.Lock()

    async def append(self, baseline: TrendBaseline) -> None:
        async with self._lock:
            history = [
                b for b in self._history.get(baseline.key, [])
                if b.bucket_date != baseline.bucket_date
            ]
            history.append(baseline.model_copy())
            history.sort(key=lambda b: b.bucket_date)
            self._history[baseline.key] = history

    async def latest(self, key: str) -> Optional[TrendBaseline]:
        async with self._lock:
            history = self._history.get(key)
            return history[-1].model_copy() if history else None

    async def latest_many(self, keys: Iterable[str]) -> Dict[str, TrendBaseline]:
        async with self._lock:
            return {
                key: self._history[key][-1].model_copy()
                for key in keys
                if self._history.get(key)
            }

    async def history(self, key: str) -> List[TrendBaseline]:
        async with self._lock:
            return [b.model_copy() for b in self._history.get(key, [])]

    async def prune(self, before: date) -> int:
        async with self._lock:
            removed = 0
            for key in list(self._history.keys()):
                kept = [b for b in self._history[key] if b.bucket_date >= before]
                removed += len(self._history[key]) - len(kept)
                if kept:
                    self._history[key] = kept
                else:
                    del self._history[key]
            return removed


class InMemoryAlertRepository:
    """In-memory AlertRepository."""

    def __init__(self):
        self._alerts: Dict[UUID, AnomalyAlert] = {}
        self._lock = asyncio.Lock()

    async def insert_unless_throttled(
        self, alert: AnomalyAlert, throttle_since: datetime
    ) -> Optional[AnomalyAlert]:
        async with self._lock:
            for existing in self._alerts.values():
                if (
                    existing.alert_type == alert.alert_type
                    and existing.entity_key == alert.entity_key
                    and not existing.is_acknowledged
                    and existing.detected_at >= throttle_since
                ):
                    return None
            self._alerts[alert.id] = alert.model_copy()
            return alert.model_copy()

    async def get(self, alert_id: UUID) -> Optional[AnomalyAlert]:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.model_copy() if alert else None

    async def save(self, alert: AnomalyAlert) -> None:
        async with self._lock:
            self._alerts[alert.id] = alert.model_copy()

    async def list_open(self) -> List[AnomalyAlert]:
        async with self._lock:
            alerts = [
                a.model_copy()
                for a in self._alerts.values()
                if not a.is_acknowledged and not a.is_resolved
            ]
        alerts.sort(key=lambda a: (a.detected_at, a.entity_key), reverse=True)
        return alerts

    async def count(self) -> int:
        async with self._lock:
            return len(self._alerts)


class InMemoryOrgScoreRepository:
    """In-memory OrgScoreRepository; expired entries read as absent."""

    def __init__(self):
        self._scores: Dict[Tuple[str, str], OrgTrendScore] = {}
        self._lock = asyncio.Lock()

    async def put(self, score: OrgTrendScore) -> None:
        async with self._lock:
            self._scores[(score.organization_id, score.trend_key)] = score.model_copy(deep=True)

    async def get(self, organization_id: str, trend_key: str, now: datetime) -> Optional[OrgTrendScore]:
        async with self._lock:
            score = self._scores.get((organization_id, trend_key))
            if score is None or score.expires_at <= now:
                return None
            return score.model_copy(deep=True)

    async def list_for_org(self, organization_id: str, now: datetime) -> List[OrgTrendScore]:
        async with self._lock:
            return [
                score.model_copy(deep=True)
                for (org_id, _), score in self._scores.items()
                if org_id == organization_id and score.expires_at > now
            ]

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [k for k, s in self._scores.items() if s.expires_at <= now]
            for k in expired:
                del self._scores[k]
            return len(expired)


class StaticWatchlistSource:
    """WatchlistSource over a fixed list; `available=False` simulates an outage."""

    def __init__(self, watchlists: Optional[List[OrgWatchlist]] = None, available: bool = True):
        self.watchlists = list(watchlists or [])
        self.available = available

    async def get_watchlists(self) -> List[OrgWatchlist]:
        if not self.available:
            raise StorageError("Watchlists unavailable")
        return [w.model_copy(deep=True) for w in self.watchlists]


class StaticBlocklistSource:
    """BlocklistSource over a fixed set of terms, normalized to canonical keys."""

    def __init__(self, terms: Iterable[str] = (), available: bool = True):
        self.terms: Set[str] = normalize_terms(terms)
        self.available = available

    async def get_blocklist(self) -> Set[str]:
        if not self.available:
            raise StorageError("Blocklist unavailable")
        return set(self.terms)
