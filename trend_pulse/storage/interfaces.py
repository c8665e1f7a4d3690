"""
Storage layer interface contracts.

The mutation unit of every repository is a single record (one canonical key,
one alert, one organization/trend pair). Writes to one record are atomic and
readers always receive a complete snapshot, never a partially updated one.
"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Protocol, Set
from uuid import UUID

from trend_pulse.types import (
    AnomalyAlert,
    MentionEvent,
    OrgTrendScore,
    OrgWatchlist,
    TrendBaseline,
    TrendEvent,
)


class TrendRepository(Protocol):
    """Interface for TrendEvent storage, keyed by canonical key."""

    async def get(self, key: str) -> Optional[TrendEvent]:
        """
        Get a trend by canonical key.

        Args:
            key: Canonical topic key

        Returns:
            Snapshot of the trend, or None
        """
        ...

    async def get_many(self, keys: Iterable[str]) -> Dict[str, TrendEvent]:
        """Snapshots for every key that has a trend."""
        ...

    async def upsert(self, trend: TrendEvent) -> TrendEvent:
        """
        Atomically insert or replace one trend.

        `trending_since` is never taken from the incoming record; it only
        changes through set_trending_since_if_null and clear_trending_since.

        Returns:
            Stored snapshot
        """
        ...

    async def set_trending_since_if_null(self, key: str, timestamp: datetime) -> Optional[datetime]:
        """
        Conditionally set trending_since.

        Returns:
            The effective value (the existing one if already set)
        """
        ...

    async def clear_trending_since(self, key: str) -> None:
        """Reset trending_since (only on entering dormant)."""
        ...

    async def rekey(self, old_key: str, new_key: str) -> Optional[TrendEvent]:
        """
        Move a trend to a new canonical key, keeping its id and trending_since.

        Returns:
            Moved snapshot, or None if old_key has no trend
        """
        ...

    async def list_all(self) -> List[TrendEvent]:
        """All stored trends."""
        ...

    async def count(self) -> int:
        """Number of stored trends."""
        ...


class MentionRepository(Protocol):
    """
    Shared buffer of accepted mention events.

    Every worker rebuilds its window aggregator from this buffer, so
    ingestion and scoring may run in different processes.
    """

    async def add(self, events: Iterable[MentionEvent]) -> int:
        """
        Append accepted events; an identical event is stored once.

        Returns:
            Number of events newly stored
        """
        ...

    async def load(self, since: datetime) -> List[MentionEvent]:
        """Events that occurred at or after `since`, oldest first."""
        ...

    async def prune(self, before: datetime) -> int:
        """Drop events that occurred before `before`."""
        ...


class BaselineRepository(Protocol):
    """Append-only baseline history with bounded retention."""

    async def append(self, baseline: TrendBaseline) -> None:
        """Append a baseline (replaces one for the same key and date)."""
        ...

    async def latest(self, key: str) -> Optional[TrendBaseline]:
        """Most recent baseline for a key."""
        ...

    async def latest_many(self, keys: Iterable[str]) -> Dict[str, TrendBaseline]:
        """Most recent baseline per key."""
        ...

    async def history(self, key: str) -> List[TrendBaseline]:
        """All retained baselines for a key, oldest first."""
        ...

    async def prune(self, before: date) -> int:
        """Drop baselines with bucket_date before `before`."""
        ...


class AlertRepository(Protocol):
    """Append-only anomaly alert storage."""

    async def insert_unless_throttled(
        self, alert: AnomalyAlert, throttle_since: datetime
    ) -> Optional[AnomalyAlert]:
        """
        Insert an alert unless an unacknowledged alert for the same
        (alert_type, entity_key) was detected at or after `throttle_since`.

        The check and the insert are one atomic step.

        Returns:
            Inserted alert, or None if throttled
        """
        ...

    async def get(self, alert_id: UUID) -> Optional[AnomalyAlert]:
        """Get an alert by id."""
        ...

    async def save(self, alert: AnomalyAlert) -> None:
        """Persist an acknowledgment or resolution."""
        ...

    async def list_open(self) -> List[AnomalyAlert]:
        """All unacknowledged, unresolved alerts, newest first."""
        ...


class OrgScoreRepository(Protocol):
    """Derived per-organization scores with TTL."""

    async def put(self, score: OrgTrendScore) -> None:
        """Store or replace the score for (organization_id, trend_key)."""
        ...

    async def get(self, organization_id: str, trend_key: str, now: datetime) -> Optional[OrgTrendScore]:
        """Score if present and not expired."""
        ...

    async def list_for_org(self, organization_id: str, now: datetime) -> List[OrgTrendScore]:
        """Unexpired scores of one organization."""
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Delete expired scores."""
        ...


class WatchlistSource(Protocol):
    """Read-only tenant watchlists."""

    async def get_watchlists(self) -> List[OrgWatchlist]:
        """
        Returns:
            All organization watchlists

        Raises:
            StorageError: If watchlists are unavailable
        """
        ...


class BlocklistSource(Protocol):
    """Read-only evergreen blocklist."""

    async def get_blocklist(self) -> Set[str]:
        """
        Returns:
            Canonical keys excluded from trending

        Raises:
            StorageError: If the blocklist is unavailable
        """
        ...


# ============================================================================
# Exceptions
# ============================================================================


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class ConnectionError(StorageError):
    """Exception for connection failures."""

    pass
