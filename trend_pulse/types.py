"""
Shared type definitions for the trend engine.

These types are the contract between the aggregation, statistics, scoring,
lifecycle, relevance and alerting components.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Timestamp as timezone-aware UTC.

    Naive values are taken to be UTC already; aware values are converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current time as timezone-aware UTC."""
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================


class SourceType(str, Enum):
    """Kind of source a mention came from."""

    NEWS = "news"
    SOCIAL = "social"
    ENTITY = "entity"


class SourceTier(str, Enum):
    """Editorial authority tier of a source."""

    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"
    UNCLASSIFIED = "unclassified"


class TrendState(str, Enum):
    """Lifecycle state of a canonical trend."""

    DORMANT = "dormant"  # No recent evidence
    CANDIDATE = "candidate"  # Observed, not yet significant
    TRENDING = "trending"  # Statistically abnormal growth
    BREAKING = "breaking"  # Corroborated, sharp spike
    DECAYING = "decaying"  # Quiet for the quiet period


class LabelQuality(str, Enum):
    """How informative a trend's display label is."""

    EVENT_PHRASE = "event_phrase"
    ENTITY_ONLY = "entity_only"
    FALLBACK_GENERATED = "fallback_generated"


class SpikeStage(str, Enum):
    """Shape of the current mention curve."""

    EMERGING = "emerging"
    SURGING = "surging"
    PEAKING = "peaking"
    DECLINING = "declining"
    STABLE = "stable"


class PriorityBucket(str, Enum):
    """Per-organization priority bucket."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WatchRule(str, Enum):
    """How an organization treats a watched entity."""

    WATCH = "watch"
    ALLOW = "allow"
    DENY = "deny"


class AlertType(str, Enum):
    """Kind of anomaly an alert reports."""

    MENTION_SPIKE = "mention_spike"
    VELOCITY_SPIKE = "velocity_spike"


class AlertSeverity(str, Enum):
    """Alert severity tiers, ordered by |z|."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================================
# Input
# ============================================================================


class MentionEvent(BaseModel):
    """One observation of a topic being referenced by a source."""

    source_type: SourceType
    raw_topic: str
    occurred_at: datetime
    sentiment: Optional[float] = None  # -1.0 .. 1.0
    source_tier: SourceTier = SourceTier.UNCLASSIFIED
    source_id: str
    is_event_phrase: bool = False  # Upstream extraction hint

    model_config = ConfigDict(frozen=True)

    @field_validator("occurred_at")
    @classmethod
    def _occurred_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


# ============================================================================
# Aggregates and statistics
# ============================================================================


class WindowStats(BaseModel):
    """Rolling window counts for one canonical key."""

    key: str
    mentions_1h: int = 0
    mentions_6h: int = 0
    mentions_24h: int = 0
    mentions_7d: int = 0
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    sentiment_avg: Optional[float] = None
    sentiment_positive: int = 0
    sentiment_neutral: int = 0
    sentiment_negative: int = 0
    source_type_counts: Dict[str, int] = Field(default_factory=dict)  # 24h
    tier_counts: Dict[str, int] = Field(default_factory=dict)  # 24h
    evidence_weight: float = 0.0  # 24h mentions x source authority
    top_authority: float = 0.0
    display_label: str = ""
    has_event_phrase_hint: bool = False

    @field_validator("first_seen_at", "last_seen_at")
    @classmethod
    def _timestamps_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def source_type_count(self) -> int:
        """Distinct source types seen in the last 24h."""
        return sum(1 for count in self.source_type_counts.values() if count > 0)

    @property
    def has_tier_corroboration(self) -> bool:
        """Whether a tier1 or tier2 source backs the key."""
        return self.tier_counts.get("tier1", 0) > 0 or self.tier_counts.get("tier2", 0) > 0


class TrendBaseline(BaseModel):
    """Expected hourly mention rate for one key and calendar bucket."""

    key: str
    bucket_date: date
    mean_hourly: float = 0.0
    std_dev_hourly: float = 0.0
    relative_std_dev: float = 0.0
    min_hourly: float = 0.0
    max_hourly: float = 0.0
    sample_hours: int = 0
    is_stable: bool = False
    computed_at: Optional[datetime] = None

    @field_validator("computed_at")
    @classmethod
    def _computed_at_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class AnomalyScores(BaseModel):
    """Anomaly statistics of a current reading against its baseline."""

    true_z_score: float = 0.0
    poisson_surprise: float = 0.0

    model_config = ConfigDict(frozen=True)


class PhraseCluster(BaseModel):
    """Near-duplicate topic keys merged under one canonical phrase."""

    canonical_phrase: str
    canonical_key: str
    canonical_event_id: UUID
    member_phrases: List[str] = Field(default_factory=list)
    member_keys: List[str] = Field(default_factory=list)
    similarity_threshold: float = 0.85
    total_mentions: int = 0
    top_authority_score: float = 0.0
    evidence_weight: float = 0.0


# ============================================================================
# Trend events
# ============================================================================


class TrendEvent(BaseModel):
    """Canonical, externally visible trend."""

    id: UUID = Field(default_factory=uuid4)
    canonical_key: str
    canonical_label: str
    display_title: str
    context_terms: List[str] = Field(default_factory=list)
    context_phrases: List[str] = Field(default_factory=list)
    context_summary: Optional[str] = None
    velocity: float = 0.0
    true_z_score: float = 0.0
    poisson_surprise: float = 0.0
    burst_score: float = 0.0
    rank_score: float = 0.0
    confidence_score: float = 0.0
    spike_ratio: float = 1.0
    spike_stage: SpikeStage = SpikeStage.STABLE
    rank: int = 0
    is_trending: bool = False
    is_breaking: bool = False
    is_evergreen_detected: bool = False
    trending_since: Optional[datetime] = None
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    label_quality: LabelQuality = LabelQuality.FALLBACK_GENERATED
    state: TrendState = TrendState.DORMANT
    mentions_1h: int = 0
    mentions_6h: int = 0
    mentions_24h: int = 0
    mentions_7d: int = 0
    source_type_count: int = 0
    member_keys: List[str] = Field(default_factory=list)
    state_history: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("trending_since", "first_seen_at", "last_seen_at", "updated_at")
    @classmethod
    def _timestamps_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


# ============================================================================
# Organization relevance
# ============================================================================


class WatchTopic(BaseModel):
    """A watched topic term with its weight (0-1)."""

    term: str
    weight: float = 1.0


class WatchEntity(BaseModel):
    """A watched entity with its allow/deny rule."""

    name: str
    rule: WatchRule = WatchRule.WATCH


class OrgWatchlist(BaseModel):
    """Per-organization watch configuration."""

    organization_id: str
    topics: List[WatchTopic] = Field(default_factory=list)
    entities: List[WatchEntity] = Field(default_factory=list)
    geographies: List[str] = Field(default_factory=list)
    min_relevance: float = 0.0
    min_urgency: float = 0.0


class Explanation(BaseModel):
    """Versioned, structured account of how an org score was produced."""

    version: int = 1
    matched_terms: List[str] = Field(default_factory=list)
    matched_entities: List[str] = Field(default_factory=list)
    matched_geographies: List[str] = Field(default_factory=list)
    reason_codes: List[str] = Field(default_factory=list)
    components: Dict[str, float] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class OrgTrendScore(BaseModel):
    """Relevance of one trend to one organization."""

    organization_id: str
    trend_key: str
    trend_id: UUID
    relevance_score: float = 0.0
    urgency_score: float = 0.0
    priority_bucket: PriorityBucket = PriorityBucket.LOW
    matched_topics: List[str] = Field(default_factory=list)
    matched_entities: List[str] = Field(default_factory=list)
    explanation: Explanation = Field(default_factory=Explanation)
    is_blocked: bool = False
    is_allowlisted: bool = False
    computed_at: datetime
    expires_at: datetime

    @field_validator("computed_at", "expires_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


# ============================================================================
# Alerts
# ============================================================================


class AnomalyAlert(BaseModel):
    """One detected anomaly. Mutated only by acknowledge/resolve."""

    id: UUID = Field(default_factory=uuid4)
    alert_type: AlertType
    entity_key: str
    current_value: float
    baseline_value: float
    z_score: float
    severity: AlertSeverity
    is_acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    is_resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    detected_at: datetime

    @field_validator("acknowledged_at", "resolved_at", "detected_at")
    @classmethod
    def _timestamps_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class TrendScores(BaseModel):
    """Scores derived for one key in one scoring pass."""

    velocity: float = 0.0
    spike_ratio: float = 1.0
    acceleration: float = 0.0
    rank_score: float = 0.0
    confidence_score: float = 0.0
    recency_multiplier: float = 1.0
    label_modifier: float = 1.0
    spike_stage: SpikeStage = SpikeStage.STABLE
