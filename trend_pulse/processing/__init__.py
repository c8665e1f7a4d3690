"""
Processing components of the trend engine.

Main Components:
- normalize_topic: raw topic string to canonical key
- WindowedAggregator: rolling 1h/6h/24h/7d counts per key
- compute_baseline / compute_anomaly_scores: baseline and anomaly statistics
- PhraseClusterer: near-duplicate label clustering
- CompositeRanker: velocity, spike ratio and composite rank score
- classify_label / ContextBuilder: label quality and supporting context
"""

from trend_pulse.processing.normalize import normalize_topic, is_empty_key
from trend_pulse.processing.aggregate import WindowedAggregator, IngestResult, CoOccurrence
from trend_pulse.processing.baseline import (
    compute_baseline,
    compute_anomaly_scores,
    merge_baselines,
    is_evergreen,
)
from trend_pulse.processing.cluster import PhraseClusterer, phrase_similarity
from trend_pulse.processing.rank import (
    CompositeRanker,
    calculate_velocity,
    calculate_spike_ratio,
    recency_decay,
)
from trend_pulse.processing.labels import classify_label, ContextBuilder, TrendContext

# Re-export exceptions for convenience
from trend_pulse.processing.interfaces import (
    ProcessingError,
    ClusteringError,
)

__all__ = [
    "normalize_topic",
    "is_empty_key",
    "WindowedAggregator",
    "IngestResult",
    "CoOccurrence",
    "compute_baseline",
    "compute_anomaly_scores",
    "merge_baselines",
    "is_evergreen",
    "PhraseClusterer",
    "phrase_similarity",
    "CompositeRanker",
    "calculate_velocity",
    "calculate_spike_ratio",
    "recency_decay",
    "classify_label",
    "ContextBuilder",
    "TrendContext",
    # Exceptions
    "ProcessingError",
    "ClusteringError",
]
