import os
import json
import logging
from typing import Dict, Any, List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# Engine Configuration
STORE_BACKEND = os.getenv("TREND_PULSE_STORE", "memory")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")


# ============================================================================
# Default term lists
# ============================================================================

# Generic or perennial terms that never trend on their own
DEFAULT_BLOCKLIST: List[str] = [
    # Generic political terms
    "politics", "political", "government", "democracy", "freedom", "liberty",
    "america", "american", "united states", "usa", "congress", "senate", "house",
    "republican", "democrat", "conservative", "liberal", "progressive",
    # Generic news terms
    "breaking", "news", "update", "report", "latest", "today", "new",
    "says", "said", "claims", "calls", "called", "asks", "asked",
    # Filler
    "people", "time", "year", "years", "day", "days", "week", "weeks",
    "first", "last", "next", "more", "most", "many", "some", "other",
    # Social media noise
    "thread", "post", "tweet", "retweet", "share", "like", "comment",
    "watch", "video", "photo", "image", "live", "opinion", "editorial",
    # Ambiguous abbreviations
    "us", "uk", "eu", "un", "ice",
]

# Entities that are always in the news; ranked lower unless spiking
DEFAULT_EVERGREEN_TERMS: List[str] = [
    "trump", "donald trump", "biden", "joe biden", "harris", "kamala harris",
    "obama", "pelosi", "mcconnell", "schumer", "musk", "elon musk", "putin",
    "netanyahu", "zelensky", "xi jinping", "vance", "walz",
    "white house", "pentagon", "state department", "justice department",
    "supreme court", "capitol",
    "gaza", "israel", "ukraine", "russia", "china", "taiwan", "iran",
    "greenland", "nato", "european union", "middle east", "west bank",
]

DEFAULT_ALIASES: Dict[str, str] = {
    "trump": "donald trump",
    "biden": "joe biden",
    "harris": "kamala harris",
    "musk": "elon musk",
    "gop": "republican",
    "dems": "democratic",
    "scotus": "supreme court",
    "potus": "president",
}


# ============================================================================
# Typed configuration sections
# ============================================================================


class AggregationConfig(BaseModel):
    """Rolling window aggregation settings."""

    retention_hours: int = 168  # Longest window (7d) bounds the event buffer
    source_type_weights: Dict[str, float] = Field(
        default_factory=lambda: {"news": 1.0, "entity": 0.8, "social": 0.3}
    )
    tier_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "tier1": 1.0,
            "tier2": 0.7,
            "tier3": 0.4,
            "unclassified": 0.5,
        }
    )
    positive_sentiment_threshold: float = 0.1
    negative_sentiment_threshold: float = -0.1


class BaselineConfig(BaseModel):
    """Baseline and anomaly statistics settings."""

    history_hours: int = 168
    min_history_hours: int = 24
    stable_rsd_threshold: float = 0.4
    z_score_sentinel: float = 10.0
    poisson_surprise_sentinel: float = 50.0
    retention_days: int = 30


class ScoringConfig(BaseModel):
    """Velocity and composite rank score settings."""

    velocity_sentinel: float = 500.0
    velocity_cap: float = 500.0
    spike_ratio_min: float = 1.0
    spike_ratio_max: float = 5.0

    # rank = w1*spike + w2*mentions_1h + w3*min(velocity, cap) + w4*diversity
    spike_weight: float = 10.0
    mentions_1h_weight: float = 2.0
    velocity_weight: float = 0.1
    diversity_weight: float = 5.0
    diversity_min_source_types: int = 2
    diversity_multiplier: float = 1.0

    # Recency decay applied to the whole score
    recency_full_hours: float = 1.0
    recency_floor_hours: float = 6.0
    recency_floor: float = 0.3

    # Label quality and evergreen modifiers
    event_phrase_modifier: float = 1.0
    fallback_modifier: float = 0.85
    entity_only_modifier: float = 0.6
    entity_only_uncorroborated_modifier: float = 0.4
    missing_context_modifier: float = 0.35
    # (min z, multiplier) pairs checked in order; evergreen topics below every
    # tier get the floor
    evergreen_penalty_tiers: List[Tuple[float, float]] = Field(
        default_factory=lambda: [(8.0, 0.8), (6.0, 0.55), (5.0, 0.35), (4.0, 0.2)]
    )
    evergreen_floor_with_baseline: float = 0.05
    evergreen_floor_without_baseline: float = 0.08

    # Confidence components are each capped at this many points
    confidence_component_cap: float = 25.0


class ClusteringConfig(BaseModel):
    """Phrase clustering settings."""

    similarity_threshold: float = 0.85
    ngram_size: int = 3
    aliases: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ALIASES))


class LifecycleConfig(BaseModel):
    """Trend lifecycle state machine thresholds."""

    trending_velocity_threshold: float = 50.0
    trending_min_mentions_24h: int = 3
    trending_min_mentions_6h: int = 5
    breaking_min_source_types: int = 2
    breaking_min_mentions_1h: int = 3
    breaking_min_spike_ratio: float = 3.0
    breaking_exit_spike_ratio: float = 2.0
    quiet_period_hours: float = 48.0
    dormant_after_hours: float = 72.0
    history_limit: int = 20
    require_context_for_entity_only: bool = True
    blocklist: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKLIST))
    evergreen_terms: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EVERGREEN_TERMS)
    )


class ContextConfig(BaseModel):
    """Context builder limits."""

    max_context_terms: int = 5
    max_context_phrases: int = 3
    min_cooccurrence: int = 1


class RelevanceConfig(BaseModel):
    """Organization relevance scoring settings."""

    topic_match_points: float = 60.0
    allowlist_bonus: float = 20.0
    geography_bonus: float = 10.0
    velocity_bonus_divisor: float = 50.0
    velocity_bonus_cap: float = 10.0
    high_threshold: float = 70.0
    medium_threshold: float = 40.0
    fuzzy_min_length: int = 4
    ttl_hours: float = 24.0
    explanation_version: int = 1

    # Urgency = velocity part + recency part + breaking bonus, capped at 100
    urgency_velocity_points: float = 50.0
    urgency_recency_points: float = 30.0
    urgency_breaking_points: float = 20.0
    urgency_recency_window_hours: float = 6.0


class AlertConfig(BaseModel):
    """Anomaly alert thresholds and throttling."""

    severity_thresholds: Dict[str, float] = Field(
        default_factory=lambda: {
            "low": 2.0,
            "medium": 3.0,
            "high": 4.0,
            "critical": 5.0,
        }
    )
    throttle_hours: float = 4.0


class JobConfig(BaseModel):
    """Batch job limits."""

    top_k: int = 200
    budgets_seconds: Dict[str, float] = Field(
        default_factory=lambda: {
            "ingest_mentions": 60.0,
            "rescore_trends": 120.0,
            "recompute_baselines": 300.0,
            "score_organizations": 120.0,
        }
    )
    default_budget_seconds: float = 120.0
    failure_threshold: int = 5
    cooldown_seconds: int = 600
    stale_after_hours: float = 2.0


class EngineConfig(BaseModel):
    """All engine configuration sections."""

    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    baseline: BaselineConfig = Field(default_factory=BaselineConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    relevance: RelevanceConfig = Field(default_factory=RelevanceConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    jobs: JobConfig = Field(default_factory=JobConfig)


# ============================================================================
# Settings Loader for config/settings.json
# ============================================================================

# Cache for loaded settings
_settings_cache = None


def get_settings_path() -> str:
    """Get the path to settings.json file."""
    override = os.getenv("TREND_PULSE_SETTINGS")
    if override:
        return override

    # Get the project root directory (parent of trend_pulse)
    current_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(current_dir)
    return os.path.join(project_root, "config", "settings.json")


def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """
    Load settings from config/settings.json.

    Args:
        force_reload: If True, reload from file even if cached

    Returns:
        Dictionary of settings with defaults for missing values
    """
    global _settings_cache

    # Return cached settings if available and not forcing reload
    if _settings_cache is not None and not force_reload:
        return _settings_cache

    # Default settings (fallback if file doesn't exist)
    default_settings: Dict[str, Any] = {"engine": {}}

    settings_path = get_settings_path()
    try:
        if os.path.exists(settings_path):
            with open(settings_path, "r") as f:
                file_settings = json.load(f)

            # Merge with defaults (file settings override defaults)
            settings = default_settings.copy()
            settings.update(file_settings)
            _settings_cache = settings
            return settings
        else:
            logger.warning(f"Settings file not found at {settings_path}, using defaults")
            _settings_cache = default_settings
            return default_settings

    except (OSError, ValueError) as e:
        logger.error(f"Error loading settings from {settings_path}: {e}, using defaults")
        _settings_cache = default_settings
        return default_settings


def get_engine_config(settings: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """
    Build the typed engine configuration.

    Args:
        settings: Raw settings dict (loaded from settings.json if None)

    Returns:
        EngineConfig with file values layered over defaults
    """
    if settings is None:
        settings = load_settings()
    return EngineConfig.model_validate(settings.get("engine", {}))
