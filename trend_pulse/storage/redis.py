"""
Redis repository implementations.

Redis holds every piece of state the engine jobs share, so ingestion and
scoring workers can run in separate processes:

- trends: one JSON snapshot per canonical key under `trend:{key}`, written
  with a single SET so readers never see a partial record. `trending_since`
  lives under `trend_since:{key}` and is only ever written with SET NX,
  which keeps it monotonic under concurrent writers.
- mentions: the accepted event buffer, one sorted set scored by occurrence
  time.
- baselines: one hash per key, one field per bucket date.
- alerts: one JSON record per alert, plus sorted sets of open alerts and of
  unacknowledged alerts per (alert_type, entity_key) for the throttle check.
- organization scores: one hash per organization, one field per trend key.
"""

import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from trend_pulse.storage.interfaces import ConnectionError, StorageError
from trend_pulse.types import (
    AnomalyAlert,
    MentionEvent,
    OrgTrendScore,
    TrendBaseline,
    TrendEvent,
    ensure_utc,
)

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


class RedisStore:
    """
    Connection handling shared by the Redis repositories.

    Usage:
        repo = RedisTrendRepository(url="redis://localhost:6379/0")
        await repo.connect()
        await repo.upsert(trend)
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        max_connections: int = 50,
        client: Optional[Redis] = None,
    ):
        """
        Initialize Redis store.

        Args:
            url: Redis connection URL
            max_connections: Maximum number of connections in the pool
            client: Pre-built client (skips connect)
        """
        self.url = url
        self.max_connections = max_connections
        self._client: Optional[Redis] = client

    async def connect(self) -> Redis:
        """
        Establish connection to Redis.

        Returns:
            Redis client instance

        Raises:
            ConnectionError: If connection fails
        """
        if self._client is not None:
            return self._client

        try:
            self._client = aioredis.from_url(
                self.url,
                decode_responses=True,
                max_connections=self.max_connections,
            )
            await self._client.ping()

            logger.info(f"{type(self).__name__} connected to Redis at {self.url}")
            return self._client

        except (RedisError, OSError) as e:
            self._client = None
            logger.error(f"Failed to connect to Redis: {e}")
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def close(self):
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")

    @property
    def client(self) -> Redis:
        """Get the Redis client instance."""
        if self._client is None:
            raise StorageError("Redis client not connected. Call connect() first.")
        return self._client


# ============================================================================
# Trends
# ============================================================================


class RedisTrendRepository(RedisStore):
    """Redis implementation of TrendRepository."""

    INDEX_KEY = "trends:index"

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "trend",
        since_prefix: str = "trend_since",
        max_connections: int = 50,
        client: Optional[Redis] = None,
    ):
        """
        Initialize Redis trend repository.

        Args:
            url: Redis connection URL
            prefix: Key prefix for trend snapshots
            since_prefix: Key prefix for trending_since values
            max_connections: Maximum number of connections in the pool
            client: Pre-built client (skips connect)
        """
        super().__init__(url=url, max_connections=max_connections, client=client)
        self.prefix = prefix
        self.since_prefix = since_prefix

    def _snapshot_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _since_key(self, key: str) -> str:
        return f"{self.since_prefix}:{key}"

    @staticmethod
    def _serialize(trend: TrendEvent) -> str:
        return trend.model_dump_json(exclude={"trending_since"})

    @staticmethod
    def _deserialize(data: str, since: Optional[str]) -> TrendEvent:
        trend = TrendEvent.model_validate_json(data)
        if since:
            trend.trending_since = _parse_timestamp(since)
        return trend

    async def get(self, key: str) -> Optional[TrendEvent]:
        try:
            data, since = await self.client.mget(self._snapshot_key(key), self._since_key(key))
        except RedisError as e:
            logger.error(f"Failed to get trend '{key}': {e}")
            raise StorageError(f"Trend retrieval failed: {e}") from e

        if data is None:
            return None
        return self._deserialize(data, since)

    async def get_many(self, keys: Iterable[str]) -> Dict[str, TrendEvent]:
        keys = list(keys)
        if not keys:
            return {}

        names: List[str] = []
        for key in keys:
            names.extend([self._snapshot_key(key), self._since_key(key)])
        try:
            values = await self.client.mget(names)
        except RedisError as e:
            logger.error(f"Failed to get {len(keys)} trends: {e}")
            raise StorageError(f"Trend retrieval failed: {e}") from e

        result: Dict[str, TrendEvent] = {}
        for index, key in enumerate(keys):
            data, since = values[2 * index], values[2 * index + 1]
            if data is not None:
                result[key] = self._deserialize(data, since)
        return result

    async def upsert(self, trend: TrendEvent) -> TrendEvent:
        key = trend.canonical_key
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.set(self._snapshot_key(key), self._serialize(trend))
                pipe.sadd(self.INDEX_KEY, key)
                pipe.get(self._since_key(key))
                results = await pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to upsert trend '{key}': {e}")
            raise StorageError(f"Trend upsert failed: {e}") from e

        return trend.model_copy(update={"trending_since": _parse_timestamp(results[-1])})

    async def set_trending_since_if_null(self, key: str, timestamp: datetime) -> Optional[datetime]:
        try:
            if not await self.client.exists(self._snapshot_key(key)):
                return None
            await self.client.set(self._since_key(key), timestamp.isoformat(), nx=True)
            since = await self.client.get(self._since_key(key))
        except RedisError as e:
            logger.error(f"Failed to set trending_since for '{key}': {e}")
            raise StorageError(f"Conditional write failed: {e}") from e

        return _parse_timestamp(since)

    async def clear_trending_since(self, key: str) -> None:
        try:
            await self.client.delete(self._since_key(key))
        except RedisError as e:
            logger.error(f"Failed to clear trending_since for '{key}': {e}")
            raise StorageError(f"Trend update failed: {e}") from e

    async def rekey(self, old_key: str, new_key: str) -> Optional[TrendEvent]:
        existing = await self.get(old_key)
        if existing is None:
            return None

        moved = existing.model_copy(update={"canonical_key": new_key})
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.set(self._snapshot_key(new_key), self._serialize(moved))
                pipe.sadd(self.INDEX_KEY, new_key)
                pipe.delete(self._snapshot_key(old_key), self._since_key(old_key))
                pipe.srem(self.INDEX_KEY, old_key)
                if existing.trending_since is not None:
                    pipe.set(self._since_key(new_key), existing.trending_since.isoformat(), nx=True)
                await pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to re-key trend '{old_key}' -> '{new_key}': {e}")
            raise StorageError(f"Trend re-key failed: {e}") from e

        logger.info(f"Re-keyed trend {moved.id}: '{old_key}' -> '{new_key}'")
        return moved

    async def list_all(self) -> List[TrendEvent]:
        try:
            keys = await self.client.smembers(self.INDEX_KEY)
        except RedisError as e:
            logger.error(f"Failed to list trends: {e}")
            raise StorageError(f"Trend listing failed: {e}") from e
        trends = await self.get_many(sorted(keys))
        return list(trends.values())

    async def count(self) -> int:
        try:
            return await self.client.scard(self.INDEX_KEY)
        except RedisError as e:
            logger.error(f"Failed to count trends: {e}")
            raise StorageError(f"Trend count failed: {e}") from e


# ============================================================================
# Mention Buffer
# ============================================================================


class RedisMentionRepository(RedisStore):
    """
    Redis implementation of MentionRepository.

    Events are stored as their JSON form in one sorted set scored by
    occurrence time, so replaying an identical event leaves one member.
    """

    BUFFER_KEY = "mentions:buffer"

    async def add(self, events: Iterable[MentionEvent]) -> int:
        members = {event.model_dump_json(): event.occurred_at.timestamp() for event in events}
        if not members:
            return 0
        try:
            return await self.client.zadd(self.BUFFER_KEY, members)
        except RedisError as e:
            logger.error(f"Failed to buffer {len(members)} mentions: {e}")
            raise StorageError(f"Mention write failed: {e}") from e

    async def load(self, since: datetime) -> List[MentionEvent]:
        try:
            members = await self.client.zrangebyscore(
                self.BUFFER_KEY, ensure_utc(since).timestamp(), "+inf"
            )
        except RedisError as e:
            logger.error(f"Failed to load mention buffer: {e}")
            raise StorageError(f"Mention load failed: {e}") from e
        return [MentionEvent.model_validate_json(member) for member in members]

    async def prune(self, before: datetime) -> int:
        try:
            return await self.client.zremrangebyscore(
                self.BUFFER_KEY, "-inf", f"({ensure_utc(before).timestamp()}"
            )
        except RedisError as e:
            logger.error(f"Failed to prune mention buffer: {e}")
            raise StorageError(f"Mention prune failed: {e}") from e


# ============================================================================
# Baselines
# ============================================================================


class RedisBaselineRepository(RedisStore):
    """Redis implementation of BaselineRepository (hash per key, field per date)."""

    INDEX_KEY = "baselines:index"

    @staticmethod
    def _history_key(key: str) -> str:
        return f"baseline:{key}"

    @staticmethod
    def _ordered(fields: Dict[str, str]) -> List[TrendBaseline]:
        return [TrendBaseline.model_validate_json(fields[day]) for day in sorted(fields)]

    async def append(self, baseline: TrendBaseline) -> None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(
                    self._history_key(baseline.key),
                    baseline.bucket_date.isoformat(),
                    baseline.model_dump_json(),
                )
                pipe.sadd(self.INDEX_KEY, baseline.key)
                await pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to store baseline for '{baseline.key}': {e}")
            raise StorageError(f"Baseline write failed: {e}") from e

    async def latest(self, key: str) -> Optional[TrendBaseline]:
        history = await self.history(key)
        return history[-1] if history else None

    async def latest_many(self, keys: Iterable[str]) -> Dict[str, TrendBaseline]:
        keys = list(keys)
        if not keys:
            return {}
        try:
            async with self.client.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.hgetall(self._history_key(key))
                results = await pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to get baselines for {len(keys)} keys: {e}")
            raise StorageError(f"Baseline retrieval failed: {e}") from e

        return {key: self._ordered(fields)[-1] for key, fields in zip(keys, results) if fields}

    async def history(self, key: str) -> List[TrendBaseline]:
        try:
            fields = await self.client.hgetall(self._history_key(key))
        except RedisError as e:
            logger.error(f"Failed to get baselines for '{key}': {e}")
            raise StorageError(f"Baseline retrieval failed: {e}") from e
        return self._ordered(fields)

    async def prune(self, before: date) -> int:
        cutoff = before.isoformat()
        removed = 0
        try:
            for key in await self.client.smembers(self.INDEX_KEY):
                days = await self.client.hkeys(self._history_key(key))
                expired = [day for day in days if day < cutoff]
                if expired:
                    await self.client.hdel(self._history_key(key), *expired)
                    removed += len(expired)
                if len(expired) == len(days):
                    await self.client.srem(self.INDEX_KEY, key)
        except RedisError as e:
            logger.error(f"Failed to prune baselines: {e}")
            raise StorageError(f"Baseline prune failed: {e}") from e
        return removed


# ============================================================================
# Alerts
# ============================================================================


class RedisAlertRepository(RedisStore):
    """
    Redis implementation of AlertRepository.

    The throttle check and the insert run as one optimistic transaction
    watching the (alert_type, entity_key) set of unacknowledged alerts.
    """

    OPEN_KEY = "alerts:open"

    @staticmethod
    def _alert_key(alert_id) -> str:
        return f"alert:{alert_id}"

    @staticmethod
    def _unacked_key(alert: AnomalyAlert) -> str:
        return f"alerts:unacked:{alert.alert_type.value}:{alert.entity_key}"

    async def insert_unless_throttled(
        self, alert: AnomalyAlert, throttle_since: datetime
    ) -> Optional[AnomalyAlert]:
        unacked_key = self._unacked_key(alert)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(unacked_key)
                        recent = await pipe.zcount(
                            unacked_key, ensure_utc(throttle_since).timestamp(), "+inf"
                        )
                        if recent:
                            await pipe.unwatch()
                            return None

                        score = alert.detected_at.timestamp()
                        pipe.multi()
                        pipe.set(self._alert_key(alert.id), alert.model_dump_json())
                        pipe.zadd(unacked_key, {str(alert.id): score})
                        pipe.zadd(self.OPEN_KEY, {str(alert.id): score})
                        await pipe.execute()
                        return alert.model_copy()
                    except WatchError:
                        logger.debug(f"Concurrent alert write for '{alert.entity_key}', retrying")
                        continue
        except RedisError as e:
            logger.error(f"Failed to insert alert for '{alert.entity_key}': {e}")
            raise StorageError(f"Alert insert failed: {e}") from e

    async def get(self, alert_id: UUID) -> Optional[AnomalyAlert]:
        try:
            data = await self.client.get(self._alert_key(alert_id))
        except RedisError as e:
            logger.error(f"Failed to get alert {alert_id}: {e}")
            raise StorageError(f"Alert retrieval failed: {e}") from e
        return AnomalyAlert.model_validate_json(data) if data else None

    async def save(self, alert: AnomalyAlert) -> None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.set(self._alert_key(alert.id), alert.model_dump_json())
                if alert.is_acknowledged:
                    pipe.zrem(self._unacked_key(alert), str(alert.id))
                if alert.is_acknowledged or alert.is_resolved:
                    pipe.zrem(self.OPEN_KEY, str(alert.id))
                await pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to save alert {alert.id}: {e}")
            raise StorageError(f"Alert update failed: {e}") from e

    async def list_open(self) -> List[AnomalyAlert]:
        try:
            ids = await self.client.zrange(self.OPEN_KEY, 0, -1)
            values = await self.client.mget([self._alert_key(i) for i in ids]) if ids else []
        except RedisError as e:
            logger.error(f"Failed to list open alerts: {e}")
            raise StorageError(f"Alert listing failed: {e}") from e

        alerts = [AnomalyAlert.model_validate_json(v) for v in values if v]
        alerts = [a for a in alerts if not a.is_acknowledged and not a.is_resolved]
        alerts.sort(key=lambda a: (a.detected_at, a.entity_key), reverse=True)
        return alerts


# ============================================================================
# Organization Scores
# ============================================================================


class RedisOrgScoreRepository(RedisStore):
    """Redis implementation of OrgScoreRepository; expired entries read as absent."""

    INDEX_KEY = "org_scores:index"

    @staticmethod
    def _org_key(organization_id: str) -> str:
        return f"org_scores:{organization_id}"

    async def put(self, score: OrgTrendScore) -> None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self._org_key(score.organization_id), score.trend_key, score.model_dump_json())
                pipe.sadd(self.INDEX_KEY, score.organization_id)
                await pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to store score for '{score.organization_id}': {e}")
            raise StorageError(f"Score write failed: {e}") from e

    async def get(self, organization_id: str, trend_key: str, now: datetime) -> Optional[OrgTrendScore]:
        try:
            data = await self.client.hget(self._org_key(organization_id), trend_key)
        except RedisError as e:
            logger.error(f"Failed to get score for '{organization_id}': {e}")
            raise StorageError(f"Score retrieval failed: {e}") from e

        if data is None:
            return None
        score = OrgTrendScore.model_validate_json(data)
        return score if score.expires_at > ensure_utc(now) else None

    async def list_for_org(self, organization_id: str, now: datetime) -> List[OrgTrendScore]:
        try:
            fields = await self.client.hgetall(self._org_key(organization_id))
        except RedisError as e:
            logger.error(f"Failed to list scores for '{organization_id}': {e}")
            raise StorageError(f"Score listing failed: {e}") from e

        now = ensure_utc(now)
        scores = [OrgTrendScore.model_validate_json(data) for data in fields.values()]
        return [score for score in scores if score.expires_at > now]

    async def purge_expired(self, now: datetime) -> int:
        now = ensure_utc(now)
        purged = 0
        try:
            for organization_id in await self.client.smembers(self.INDEX_KEY):
                fields = await self.client.hgetall(self._org_key(organization_id))
                expired = [
                    trend_key
                    for trend_key, data in fields.items()
                    if OrgTrendScore.model_validate_json(data).expires_at <= now
                ]
                if expired:
                    await self.client.hdel(self._org_key(organization_id), *expired)
                    purged += len(expired)
        except RedisError as e:
            logger.error(f"Failed to purge expired scores: {e}")
            raise StorageError(f"Score purge failed: {e}") from e
        return purged
