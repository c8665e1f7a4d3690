"""
Storage layer for trend events, the mention buffer, baselines, alerts and
organization scores.
"""

from trend_pulse.storage.interfaces import (
    TrendRepository,
    MentionRepository,
    BaselineRepository,
    AlertRepository,
    OrgScoreRepository,
    WatchlistSource,
    BlocklistSource,
    StorageError,
    ConnectionError,
)
from trend_pulse.storage.memory import (
    InMemoryTrendRepository,
    InMemoryMentionRepository,
    InMemoryBaselineRepository,
    InMemoryAlertRepository,
    InMemoryOrgScoreRepository,
    StaticWatchlistSource,
    StaticBlocklistSource,
)

__all__ = [
    "TrendRepository",
    "MentionRepository",
    "BaselineRepository",
    "AlertRepository",
    "OrgScoreRepository",
    "WatchlistSource",
    "BlocklistSource",
    "StorageError",
    "ConnectionError",
    "InMemoryTrendRepository",
    "InMemoryMentionRepository",
    "InMemoryBaselineRepository",
    "InMemoryAlertRepository",
    "InMemoryOrgScoreRepository",
    "StaticWatchlistSource",
    "StaticBlocklistSource",
]
