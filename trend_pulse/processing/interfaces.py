"""
Processing layer interface contracts.

This module defines the abstract bases for the clustering and scoring stages
and the exceptions raised by the processing layer.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from trend_pulse.types import (
    AnomalyScores,
    LabelQuality,
    PhraseCluster,
    TrendBaseline,
    TrendEvent,
    TrendScores,
    WindowStats,
)


class BaseClusterer(ABC):
    """Abstract base for phrase clusterers."""

    @abstractmethod
    def cluster(self, evidence: Dict[str, WindowStats]) -> List[PhraseCluster]:
        """
        Group canonical keys into phrase clusters.

        Args:
            evidence: Window stats per canonical key

        Returns:
            Clusters covering every key exactly once
        """
        pass


class BaseRanker(ABC):
    """Abstract base for trend scorers."""

    @abstractmethod
    def score(
        self,
        stats: WindowStats,
        baseline: Optional[TrendBaseline],
        anomaly: AnomalyScores,
        now: datetime,
        label_quality: LabelQuality = LabelQuality.FALLBACK_GENERATED,
        has_context: bool = True,
        is_evergreen: bool = False,
    ) -> TrendScores:
        """Score one key's current activity."""
        pass

    @abstractmethod
    def rank(self, trends: List[TrendEvent]) -> List[TrendEvent]:
        """Order trends by rank score and assign ranks."""
        pass


# ============================================================================
# Exceptions
# ============================================================================


class ProcessingError(Exception):
    """Base exception for processing operations."""

    pass


class ClusteringError(ProcessingError):
    """Exception for clustering failures."""

    pass
