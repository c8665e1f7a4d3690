"""
Trend engine service.

Explicit entry points invoked by the scheduler; nothing is recomputed behind
the caller's back:

- on_mention_batch: ingest mentions, then rescore the top-K keys
- recompute_baselines: daily baselines for the top-K keys
- rescore_trends: cluster, score, classify, run the lifecycle and upsert
- score_organizations: per-organization relevance for active trends

Each job works key by key: one canonical key's upsert is the unit of progress,
so a job cut short by its deadline leaves only complete, valid records behind.

Every job first rebuilds its window aggregator from the mention repository, so
jobs may run in different worker processes as long as they share the
repositories (the Redis store backend).
"""

import logging
import math
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import UUID

from trend_pulse.config import (
    EngineConfig,
    REDIS_URL,
    STORE_BACKEND,
    get_engine_config,
)
from trend_pulse.observability.metrics import (
    record_mentions_dropped,
    record_mentions_ingested,
    record_org_score,
)
from trend_pulse.processing.aggregate import IngestResult, WindowedAggregator
from trend_pulse.processing.baseline import (
    compute_anomaly_scores,
    compute_baseline,
    is_evergreen,
    merge_baselines,
)
from trend_pulse.processing.cluster import PhraseClusterer
from trend_pulse.processing.labels import ContextBuilder, classify_label
from trend_pulse.processing.normalize import normalize_terms
from trend_pulse.processing.rank import CompositeRanker
from trend_pulse.services.alerts import AlertEmitter
from trend_pulse.services.jobs import JobSkipped
from trend_pulse.services.relevance import OrgRelevanceScorer, rank_org_feed
from trend_pulse.services.trend_states import LifecycleSignals, TrendStateService
from trend_pulse.storage.interfaces import (
    AlertRepository,
    BaselineRepository,
    BlocklistSource,
    MentionRepository,
    OrgScoreRepository,
    StorageError,
    TrendRepository,
    WatchlistSource,
)
from trend_pulse.storage.memory import (
    InMemoryAlertRepository,
    InMemoryBaselineRepository,
    InMemoryMentionRepository,
    InMemoryOrgScoreRepository,
    InMemoryTrendRepository,
)
from trend_pulse.types import (
    AlertType,
    AnomalyAlert,
    LabelQuality,
    MentionEvent,
    OrgTrendScore,
    PhraseCluster,
    TrendEvent,
    TrendState,
    WindowStats,
    ensure_utc,
)

logger = logging.getLogger(__name__)


class TrendEngine:
    """
    Trend detection engine.

    Usage:
        engine = TrendEngine()
        await engine.on_mention_batch(events, now)
        feed = await engine.get_trend_feed(limit=20, trending_only=True)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        trend_repo: Optional[TrendRepository] = None,
        mention_repo: Optional[MentionRepository] = None,
        baseline_repo: Optional[BaselineRepository] = None,
        alert_repo: Optional[AlertRepository] = None,
        org_score_repo: Optional[OrgScoreRepository] = None,
        watchlist_source: Optional[WatchlistSource] = None,
        blocklist_source: Optional[BlocklistSource] = None,
    ):
        """
        Initialize trend engine.

        Args:
            config: Engine configuration (defaults if None)
            trend_repo: TrendEvent storage
            mention_repo: Shared buffer of accepted mentions
            baseline_repo: Baseline history storage
            alert_repo: Anomaly alert storage
            org_score_repo: Organization score storage
            watchlist_source: Tenant watchlists (org scoring skips without it)
            blocklist_source: Evergreen blocklist (config blocklist if None)
        """
        self.config = config or EngineConfig()
        self.trend_repo = trend_repo or InMemoryTrendRepository()
        self.mention_repo = mention_repo or InMemoryMentionRepository()
        self.baseline_repo = baseline_repo or InMemoryBaselineRepository()
        self.alert_repo = alert_repo or InMemoryAlertRepository()
        self.org_score_repo = org_score_repo or InMemoryOrgScoreRepository()
        self.watchlist_source = watchlist_source
        self.blocklist_source = blocklist_source

        self.aggregator = WindowedAggregator(self.config.aggregation)
        self.clusterer = PhraseClusterer(self.config.clustering)
        self.ranker = CompositeRanker(self.config.scoring)
        self.states = TrendStateService(self.config.lifecycle)
        self.relevance = OrgRelevanceScorer(self.config.relevance)
        self.alerts = AlertEmitter(self.alert_repo, self.config.alerts)
        self._evergreen_terms = normalize_terms(self.config.lifecycle.evergreen_terms)

    # ========================================================================
    # Jobs
    # ========================================================================

    async def on_mention_batch(
        self,
        events: Iterable[MentionEvent],
        now: datetime,
        deadline: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Ingest a batch of mentions and rescore the top-K keys.

        Args:
            events: Mention events in any order, possibly with duplicates
            now: Batch timestamp
            deadline: time.monotonic() value the job must finish by

        Returns:
            Summary with accepted/dropped counts and the rescore summary
        """
        now = ensure_utc(now)
        result = await self.ingest(events, now)
        rescore = await self.rescore_trends(now, deadline)

        return {
            "processed": rescore["processed"],
            "accepted": result.accepted,
            "dropped": result.dropped,
            "rescore": rescore,
        }

    async def ingest(self, events: Iterable[MentionEvent], now: datetime) -> IngestResult:
        """Add mentions to the shared buffer without rescoring."""
        now = ensure_utc(now)
        await self._load_buffer(now)
        result = self.aggregator.add_events(events, now)

        await self.mention_repo.add(result.accepted_events)
        await self.mention_repo.prune(now - self.aggregator.retention)
        self.aggregator.prune(now)

        for source_type, count in result.accepted_by_source_type.items():
            record_mentions_ingested(source_type, count)
        record_mentions_dropped("empty_key", result.dropped_empty)
        record_mentions_dropped("duplicate", result.dropped_duplicate)
        record_mentions_dropped("expired", result.dropped_expired)

        logger.info(f"Ingested {result.accepted} mentions, dropped {result.dropped}")
        return result

    async def recompute_baselines(
        self, now: datetime, deadline: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Recompute today's baseline for every top-K key and active trend member.

        History starts at a key's first buffered mention, so a key seen for
        only a few hours gets a short (and therefore unstable) baseline.

        Args:
            now: Current wall-clock time
            deadline: time.monotonic() value the job must finish by

        Returns:
            Summary with the number of baselines written and pruned
        """
        now = ensure_utc(now)
        await self._load_buffer(now)
        keys = await self._keys_to_process(now)
        stats = self.aggregator.compute_stats(now, keys)
        history_hours = self.config.baseline.history_hours

        processed = 0
        partial = False
        for key in keys:
            if _past(deadline):
                partial = True
                logger.warning(f"Baseline recompute stopped at deadline after {processed} keys")
                break

            key_stats = stats[key]
            if key_stats.first_seen_at is None:
                continue
            available = math.ceil((now - key_stats.first_seen_at).total_seconds() / 3600)
            hours = max(1, min(history_hours, available))

            counts = self.aggregator.hourly_counts([key], now, hours)
            baseline = compute_baseline(
                key, counts, now.date(), self.config.baseline, computed_at=now
            )
            await self.baseline_repo.append(baseline)
            processed += 1

        cutoff = now.date() - timedelta(days=self.config.baseline.retention_days)
        pruned = await self.baseline_repo.prune(cutoff)

        logger.info(f"Recomputed {processed} baselines, pruned {pruned}")
        return {"processed": processed, "pruned": pruned, "partial": partial}

    async def rescore_trends(
        self, now: datetime, deadline: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Rescore the top-K keys and every active trend.

        Steps per cluster: merge member stats and baselines, compute anomaly
        scores, classify the label, build context, score, run the lifecycle,
        upsert, apply the conditional trending_since write, emit alerts.

        Args:
            now: Current wall-clock time
            deadline: time.monotonic() value the job must finish by

        Returns:
            Summary counts

        Raises:
            JobSkipped: If the blocklist source is unavailable
        """
        now = ensure_utc(now)
        blocklist = await self._load_blocklist()
        self.states.update_blocklist(blocklist)
        await self._load_buffer(now)
        context_builder = ContextBuilder(self.config.context, blocklist=self.states.blocklist)

        stored = {trend.canonical_key: trend for trend in await self.trend_repo.list_all()}
        keys = await self._keys_to_process(now, stored.values())
        stats = self.aggregator.compute_stats(now, keys)
        baselines = await self.baseline_repo.latest_many(keys)
        clusters = self.clusterer.cluster(stats)

        summary = {
            "processed": 0,
            "created": 0,
            "transitions": 0,
            "alerts": 0,
            "merged": 0,
            "partial": False,
        }

        for cluster in clusters:
            if _past(deadline):
                summary["partial"] = True
                logger.warning(
                    f"Rescore stopped at deadline after {summary['processed']}/{len(clusters)} clusters"
                )
                break

            await self._rescore_cluster(
                cluster, stats, baselines, stored, context_builder, now, summary
            )
            summary["processed"] += 1

        logger.info(
            f"Rescored {summary['processed']} clusters: {summary['created']} created, "
            f"{summary['transitions']} transitions, {summary['alerts']} alerts"
        )
        return summary

    async def score_organizations(
        self, now: datetime, deadline: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Score every active trend for every organization watchlist.

        Args:
            now: Current wall-clock time
            deadline: time.monotonic() value the job must finish by

        Returns:
            Summary counts

        Raises:
            JobSkipped: If watchlists are unavailable
        """
        now = ensure_utc(now)
        if self.watchlist_source is None:
            raise JobSkipped("No watchlist source configured")
        try:
            watchlists = await self.watchlist_source.get_watchlists()
        except StorageError as e:
            logger.error(f"Watchlists unavailable, skipping organization scoring: {e}")
            raise JobSkipped(f"Watchlists unavailable: {e}") from e

        trends = [t for t in await self.trend_repo.list_all() if t.state != TrendState.DORMANT]
        trends.sort(key=lambda t: t.canonical_key)

        processed = 0
        stored = 0
        partial = False
        for watchlist in watchlists:
            if _past(deadline):
                partial = True
                logger.warning(f"Organization scoring stopped at deadline after {processed} scores")
                break

            for trend in trends:
                score = self.relevance.score(trend, watchlist, now)
                processed += 1
                record_org_score(score.priority_bucket.value)
                if score.is_blocked or self.relevance.passes_thresholds(score, watchlist):
                    await self.org_score_repo.put(score)
                    stored += 1

        purged = await self.org_score_repo.purge_expired(now)
        logger.info(
            f"Scored {len(trends)} trends for {len(watchlists)} organizations "
            f"({stored} stored, {purged} expired purged)"
        )
        return {"processed": processed, "stored": stored, "purged": purged, "partial": partial}

    async def connect(self) -> None:
        """Open connections of repositories that hold them."""
        for repo in self._repositories():
            connect = getattr(repo, "connect", None)
            if connect is not None:
                await connect()

    async def close(self) -> None:
        """Close connections of repositories that hold them."""
        for repo in self._repositories():
            close = getattr(repo, "close", None)
            if close is not None:
                await close()

    def _repositories(self) -> List[Any]:
        return [
            self.trend_repo,
            self.mention_repo,
            self.baseline_repo,
            self.alert_repo,
            self.org_score_repo,
        ]

    # ========================================================================
    # Feeds
    # ========================================================================

    async def get_trend(self, key: str) -> Optional[TrendEvent]:
        """Stored trend for a canonical key."""
        return await self.trend_repo.get(key)

    async def get_trend_feed(self, limit: int = 50, trending_only: bool = False) -> List[TrendEvent]:
        """
        Ranked trend feed.

        Ranks are derived from consistent per-key snapshots at read time.

        Args:
            limit: Maximum number of trends
            trending_only: Only trends currently trending or breaking

        Returns:
            Trends ordered by rank score
        """
        trends = await self.trend_repo.list_all()
        if trending_only:
            trends = [t for t in trends if t.is_trending]
        return self.ranker.rank(trends)[:limit]

    async def get_org_feed(self, organization_id: str, now: datetime) -> List[OrgTrendScore]:
        """
        Unexpired, unblocked scores of one organization.

        Expired scores are never served.
        """
        scores = await self.org_score_repo.list_for_org(organization_id, ensure_utc(now))
        return rank_org_feed([s for s in scores if not s.is_blocked])

    async def get_open_alerts(self) -> List[AnomalyAlert]:
        """Unacknowledged, unresolved alerts, newest first."""
        return await self.alerts.list_open()

    async def acknowledge_alert(self, alert_id: UUID, actor: str, now: datetime) -> AnomalyAlert:
        """Acknowledge an alert (one-way)."""
        return await self.alerts.acknowledge(alert_id, actor, ensure_utc(now))

    # ========================================================================
    # Private Methods
    # ========================================================================

    async def _load_buffer(self, now: datetime) -> None:
        """Rebuild the window aggregator from the shared mention buffer."""
        events = await self.mention_repo.load(now - self.aggregator.retention)
        self.aggregator.clear()
        self.aggregator.add_events(events, now)

    async def _load_blocklist(self) -> Set[str]:
        if self.blocklist_source is None:
            return normalize_terms(self.config.lifecycle.blocklist)
        try:
            return await self.blocklist_source.get_blocklist()
        except StorageError as e:
            logger.error(f"Blocklist unavailable, skipping trend scoring: {e}")
            raise JobSkipped(f"Blocklist unavailable: {e}") from e

    async def _keys_to_process(
        self, now: datetime, stored: Optional[Iterable[TrendEvent]] = None
    ) -> List[str]:
        """Top-K keys by recent volume plus the member keys of active trends."""
        keys = set(self.aggregator.top_keys(now, self.config.jobs.top_k))
        if stored is None:
            stored = await self.trend_repo.list_all()
        for trend in stored:
            if trend.state != TrendState.DORMANT:
                keys.update(trend.member_keys or [trend.canonical_key])
        return sorted(keys)

    async def _rescore_cluster(
        self,
        cluster: PhraseCluster,
        stats: Dict[str, WindowStats],
        baselines: Dict[str, Any],
        stored: Dict[str, TrendEvent],
        context_builder: ContextBuilder,
        now: datetime,
        summary: Dict[str, Any],
    ) -> None:
        key = cluster.canonical_key
        members = cluster.member_keys
        merged = self.aggregator.merge_stats(
            key, [stats[k] for k in members], label=cluster.canonical_phrase
        )
        baseline = merge_baselines(
            key,
            [baselines[k] for k in members if k in baselines],
            now.date(),
            self.config.baseline,
        )
        anomaly = compute_anomaly_scores(
            merged.mentions_1h, baseline, self.config.baseline, merged.mentions_7d
        )

        label = cluster.canonical_phrase
        label_quality = classify_label(label, merged.has_event_phrase_hint)
        context = context_builder.build(
            label, label_quality, self.aggregator.cooccurrence(members, now)
        )
        evergreen = is_evergreen(key, baseline, self._evergreen_terms)
        scores = self.ranker.score(
            merged, baseline, anomaly, now, label_quality, context.has_context, evergreen
        )

        trend = await self._resolve_trend(cluster, stored, now)
        if trend is None:
            if merged.mentions_7d == 0:
                return
            trend = self.states.new_trend(
                TrendEvent(
                    id=cluster.canonical_event_id,
                    canonical_key=key,
                    canonical_label=label,
                    display_title=label,
                    first_seen_at=merged.first_seen_at,
                ),
                now,
            )
            summary["created"] += 1

        trend.canonical_label = label
        trend.display_title = label
        if label_quality == LabelQuality.ENTITY_ONLY and context.summary:
            trend.display_title = context.summary
        trend.label_quality = label_quality
        trend.context_terms = context.terms
        trend.context_phrases = context.phrases
        trend.context_summary = context.summary
        trend.burst_score = context.burst_score
        trend.velocity = scores.velocity
        trend.spike_ratio = scores.spike_ratio
        trend.spike_stage = scores.spike_stage
        trend.rank_score = scores.rank_score
        trend.confidence_score = scores.confidence_score
        trend.true_z_score = anomaly.true_z_score
        trend.poisson_surprise = anomaly.poisson_surprise
        trend.is_evergreen_detected = evergreen
        trend.mentions_1h = merged.mentions_1h
        trend.mentions_6h = merged.mentions_6h
        trend.mentions_24h = merged.mentions_24h
        trend.mentions_7d = merged.mentions_7d
        trend.source_type_count = merged.source_type_count
        trend.member_keys = list(members)
        if merged.first_seen_at and (trend.first_seen_at is None or merged.first_seen_at < trend.first_seen_at):
            trend.first_seen_at = merged.first_seen_at
        if merged.last_seen_at:
            trend.last_seen_at = merged.last_seen_at
        trend.updated_at = now

        trend, transitions = self.states.evaluate(
            trend,
            LifecycleSignals(
                stats=merged,
                scores=scores,
                baseline=baseline,
                has_context=context.has_context,
            ),
            now,
        )
        summary["transitions"] += len(transitions)

        saved = await self.trend_repo.upsert(trend)
        if any(t.to_state == TrendState.DORMANT for t in transitions):
            await self.trend_repo.clear_trending_since(key)
            saved.trending_since = None
        if any(
            t.from_state == TrendState.CANDIDATE and t.to_state == TrendState.TRENDING
            for t in transitions
        ):
            saved.trending_since = await self.trend_repo.set_trending_since_if_null(key, now)
        stored[key] = saved

        if transitions:
            logger.info(
                f"Trend '{key}': "
                + " → ".join([transitions[0].from_state.value] + [t.to_state.value for t in transitions])
            )

        baseline_rate = baseline.mean_hourly if baseline else 0.0
        if baseline is not None:
            alert = await self.alerts.emit(
                AlertType.MENTION_SPIKE,
                key,
                float(merged.mentions_1h),
                baseline_rate,
                anomaly.true_z_score,
                now,
            )
            summary["alerts"] += 1 if alert else 0
        if any(t.to_state == TrendState.BREAKING for t in transitions):
            alert = await self.alerts.emit(
                AlertType.VELOCITY_SPIKE,
                key,
                scores.velocity,
                baseline_rate,
                anomaly.true_z_score,
                now,
            )
            summary["alerts"] += 1 if alert else 0

    async def _resolve_trend(
        self,
        cluster: PhraseCluster,
        stored: Dict[str, TrendEvent],
        now: datetime,
    ) -> Optional[TrendEvent]:
        """
        Stored trend for a cluster.

        When the canonical key changed, the trend stored under a member key is
        moved to the new key so it keeps its id and trending_since. Trends of
        other members are retired into the cluster.
        """
        key = cluster.canonical_key
        candidates = [stored[k] for k in cluster.member_keys if k in stored and k != key]
        # Longest-running trend keeps its identity
        candidates.sort(
            key=lambda t: (t.trending_since is None, t.trending_since or now, t.canonical_key)
        )

        trend = stored.get(key)
        if trend is None and candidates:
            moved = candidates.pop(0)
            trend = await self.trend_repo.rekey(moved.canonical_key, key)
            del stored[moved.canonical_key]

        for absorbed in candidates:
            if absorbed.state == TrendState.DORMANT:
                continue
            retired = self.states.retire(absorbed, now, f"Merged into '{key}'")
            await self.trend_repo.upsert(retired)
            await self.trend_repo.clear_trending_since(absorbed.canonical_key)
            stored[absorbed.canonical_key] = retired
            logger.info(f"Retired trend '{absorbed.canonical_key}' merged into '{key}'")

        return trend


def _past(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


# ============================================================================
# Singleton Instance
# ============================================================================

_engine: Optional[TrendEngine] = None


def build_engine(config: Optional[EngineConfig] = None, **kwargs) -> TrendEngine:
    """
    Build an engine for the configured store backend.

    Args:
        config: Engine configuration (settings.json if None)
        **kwargs: Repository/source overrides passed to TrendEngine

    Returns:
        TrendEngine
    """
    config = config or get_engine_config()
    if STORE_BACKEND == "redis":
        from trend_pulse.storage.redis import (
            RedisAlertRepository,
            RedisBaselineRepository,
            RedisMentionRepository,
            RedisOrgScoreRepository,
            RedisTrendRepository,
        )

        kwargs.setdefault("trend_repo", RedisTrendRepository(url=REDIS_URL))
        kwargs.setdefault("mention_repo", RedisMentionRepository(url=REDIS_URL))
        kwargs.setdefault("baseline_repo", RedisBaselineRepository(url=REDIS_URL))
        kwargs.setdefault("alert_repo", RedisAlertRepository(url=REDIS_URL))
        kwargs.setdefault("org_score_repo", RedisOrgScoreRepository(url=REDIS_URL))
    else:
        logger.info("Using in-memory store; ingest and scoring must share one worker process")
    return TrendEngine(config=config, **kwargs)


def get_engine() -> TrendEngine:
    """
    Get or create the process-wide engine instance.

    Returns:
        TrendEngine instance
    """
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def reset_engine(engine: Optional[TrendEngine] = None) -> None:
    """Replace (or drop) the process-wide engine instance."""
    global _engine
    _engine = engine
