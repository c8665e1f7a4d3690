"""
Baseline and anomaly statistics.

Baselines summarize the trailing hourly mention counts of a key (mean,
sample standard deviation, relative standard deviation). Anomaly scores
compare a current reading against a baseline with a z-score and a Poisson
tail surprise. Degenerate inputs (no history, zero mean, zero variance)
resolve to configured sentinels, never to NaN, infinity or an exception.
"""

import logging
import math
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence

import numpy as np
from scipy import stats

from trend_pulse.config import BaselineConfig
from trend_pulse.types import AnomalyScores, TrendBaseline

logger = logging.getLogger(__name__)


def compute_baseline(
    key: str,
    hourly_counts: Sequence[float],
    bucket_date: date,
    config: Optional[BaselineConfig] = None,
    computed_at: Optional[datetime] = None,
) -> TrendBaseline:
    """
    Compute a baseline from trailing per-hour counts.

    Args:
        key: Canonical topic key
        hourly_counts: Per-hour mention counts, oldest first
        bucket_date: Calendar bucket the baseline belongs to
        config: Baseline settings
        computed_at: Timestamp recorded on the baseline

    Returns:
        TrendBaseline. relative_std_dev is 0 when the mean is 0; is_stable
        requires relative_std_dev below the threshold, a positive mean and
        at least `min_history_hours` readings.
    """
    config = config or BaselineConfig()
    readings = np.asarray(list(hourly_counts), dtype=float)

    if readings.size == 0:
        return TrendBaseline(key=key, bucket_date=bucket_date, computed_at=computed_at)

    mean = float(np.mean(readings))
    std_dev = float(np.std(readings, ddof=1)) if readings.size > 1 else 0.0
    relative_std_dev = std_dev / mean if mean > 0 else 0.0

    is_stable = (
        relative_std_dev < config.stable_rsd_threshold
        and mean > 0
        and readings.size >= config.min_history_hours
    )

    return TrendBaseline(
        key=key,
        bucket_date=bucket_date,
        mean_hourly=mean,
        std_dev_hourly=std_dev,
        relative_std_dev=relative_std_dev,
        min_hourly=float(np.min(readings)),
        max_hourly=float(np.max(readings)),
        sample_hours=int(readings.size),
        is_stable=is_stable,
        computed_at=computed_at,
    )


def compute_z_score(current: float, mean: float, std_dev: float, sentinel: float) -> float:
    """
    Z-score of a reading.

    Returns the sentinel when the standard deviation is zero and the reading
    exceeds the mean, 0 when it does not.
    """
    if std_dev > 0:
        return (current - mean) / std_dev
    # A flat history is exceeded only above its constant level; for an empty
    # history (mean 0) that is any positive reading.
    return sentinel if current > mean else 0.0


def compute_poisson_surprise(current: float, mean: float, sentinel: float) -> float:
    """
    Poisson tail surprise, -ln P(X >= current | lambda = mean).

    Returns 0 for a non-positive reading and the sentinel when the mean is
    zero or the tail probability underflows.
    """
    if current <= 0:
        return 0.0
    if mean <= 0:
        return sentinel

    threshold = math.ceil(current)
    # P(X >= k) == sf(k - 1)
    log_tail = float(stats.poisson.logsf(threshold - 1, mean))
    surprise = -log_tail
    if not math.isfinite(surprise):
        return sentinel
    return max(0.0, min(surprise, sentinel))


def compute_anomaly_scores(
    current: float,
    baseline: Optional[TrendBaseline],
    config: Optional[BaselineConfig] = None,
    mentions_7d: Optional[int] = None,
) -> AnomalyScores:
    """
    Score a current hourly reading against its baseline.

    Args:
        current: Current per-hour mention count
        baseline: Baseline for the key (treated as all-zero if None)
        config: Baseline settings holding the sentinels
        mentions_7d: Mentions in the widest window (the current reading if None)

    Returns:
        AnomalyScores with true_z_score and poisson_surprise; both 0 when
        every window is empty, whatever the baseline
    """
    if current <= 0 and not mentions_7d:
        return AnomalyScores()

    config = config or BaselineConfig()
    mean = baseline.mean_hourly if baseline else 0.0
    std_dev = baseline.std_dev_hourly if baseline else 0.0

    return AnomalyScores(
        true_z_score=compute_z_score(current, mean, std_dev, config.z_score_sentinel),
        poisson_surprise=compute_poisson_surprise(current, mean, config.poisson_surprise_sentinel),
    )


def merge_baselines(
    key: str,
    baselines: Iterable[TrendBaseline],
    bucket_date: date,
    config: Optional[BaselineConfig] = None,
) -> Optional[TrendBaseline]:
    """
    Combine member-key baselines into a cluster baseline.

    Member series are treated as independent: means add and variances add.

    Returns:
        Combined baseline, or None when no member has one
    """
    config = config or BaselineConfig()
    members: List[TrendBaseline] = list(baselines)
    if not members:
        return None
    if len(members) == 1:
        return members[0].model_copy(update={"key": key})

    mean = sum(b.mean_hourly for b in members)
    std_dev = math.sqrt(sum(b.std_dev_hourly ** 2 for b in members))
    relative_std_dev = std_dev / mean if mean > 0 else 0.0
    sample_hours = min(b.sample_hours for b in members)

    return TrendBaseline(
        key=key,
        bucket_date=bucket_date,
        mean_hourly=mean,
        std_dev_hourly=std_dev,
        relative_std_dev=relative_std_dev,
        min_hourly=sum(b.min_hourly for b in members),
        max_hourly=sum(b.max_hourly for b in members),
        sample_hours=sample_hours,
        is_stable=(
            relative_std_dev < config.stable_rsd_threshold
            and mean > 0
            and sample_hours >= config.min_history_hours
        ),
        computed_at=max((b.computed_at for b in members if b.computed_at), default=None),
    )


def is_evergreen(
    key: str,
    baseline: Optional[TrendBaseline],
    evergreen_terms: Iterable[str],
) -> bool:
    """
    Whether a key is an always-on topic.

    A key is evergreen when its baseline is stable or it is one of the
    configured perennial entities.
    """
    if baseline is not None and baseline.is_stable:
        return True
    return key in set(evergreen_terms)
