"""
Anomaly alert emission.

Raises AnomalyAlerts when anomaly statistics cross a severity threshold,
throttles repeats for the same (alert_type, entity_key) while an
unacknowledged alert is recent, and tracks acknowledgment and resolution.
Alerts are append-only: recomputation never edits an existing alert.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from trend_pulse.config import AlertConfig
from trend_pulse.observability.metrics import record_alert, record_alert_throttled
from trend_pulse.storage.interfaces import AlertRepository
from trend_pulse.types import AlertSeverity, AlertType, AnomalyAlert

logger = logging.getLogger(__name__)

# Highest tier first
_SEVERITY_ORDER = [
    AlertSeverity.CRITICAL,
    AlertSeverity.HIGH,
    AlertSeverity.MEDIUM,
    AlertSeverity.LOW,
]


class AlertError(Exception):
    """Exception for invalid alert operations."""

    pass


class AlertEmitter:
    """
    Emits and tracks anomaly alerts.

    Usage:
        emitter = AlertEmitter(InMemoryAlertRepository())
        alert = await emitter.emit(AlertType.MENTION_SPIKE, "xyz policy reform", 12, 0.1, 6.3, now)
    """

    def __init__(self, repository: AlertRepository, config: Optional[AlertConfig] = None):
        """
        Initialize alert emitter.

        Args:
            repository: Alert storage
            config: Severity thresholds and throttle window
        """
        self._repository = repository
        self._config = config or AlertConfig()

    @property
    def throttle_window(self) -> timedelta:
        return timedelta(hours=self._config.throttle_hours)

    def severity_for(self, z_score: float) -> Optional[AlertSeverity]:
        """
        Severity tier for a z-score.

        Args:
            z_score: Anomaly z-score (sign ignored)

        Returns:
            Highest tier whose threshold |z| exceeds, or None below every tier
        """
        magnitude = abs(z_score)
        for severity in _SEVERITY_ORDER:
            threshold = self._config.severity_thresholds.get(severity.value)
            if threshold is not None and magnitude > threshold:
                return severity
        return None

    async def emit(
        self,
        alert_type: AlertType,
        entity_key: str,
        current_value: float,
        baseline_value: float,
        z_score: float,
        now: datetime,
    ) -> Optional[AnomalyAlert]:
        """
        Emit an alert if the anomaly is severe enough and not throttled.

        Args:
            alert_type: Kind of anomaly
            entity_key: Canonical key the anomaly belongs to
            current_value: Current reading
            baseline_value: Expected reading
            z_score: Anomaly z-score
            now: Detection time

        Returns:
            The stored alert, or None when below threshold or throttled
        """
        severity = self.severity_for(z_score)
        if severity is None:
            return None

        alert = AnomalyAlert(
            alert_type=alert_type,
            entity_key=entity_key,
            current_value=current_value,
            baseline_value=baseline_value,
            z_score=z_score,
            severity=severity,
            detected_at=now,
        )
        stored = await self._repository.insert_unless_throttled(alert, now - self.throttle_window)

        if stored is None:
            record_alert_throttled(alert_type.value)
            logger.debug(f"Throttled {alert_type.value} alert for '{entity_key}'")
            return None

        record_alert(alert_type.value, severity.value)
        logger.info(
            f"Anomaly alert: {alert_type.value} '{entity_key}' "
            f"severity={severity.value} z={z_score:.2f}"
        )
        return stored

    async def acknowledge(self, alert_id: UUID, actor: str, now: datetime) -> AnomalyAlert:
        """
        Acknowledge an alert. Acknowledgment is one-way.

        Args:
            alert_id: Alert identifier
            actor: Who acknowledged it
            now: Acknowledgment time

        Returns:
            The alert (unchanged if already acknowledged)

        Raises:
            AlertError: If the alert does not exist
        """
        alert = await self._get(alert_id)
        if alert.is_acknowledged:
            return alert

        alert.is_acknowledged = True
        alert.acknowledged_by = actor
        alert.acknowledged_at = now
        await self._repository.save(alert)

        logger.info(f"Alert {alert_id} acknowledged by {actor}")
        return alert

    async def resolve(self, alert_id: UUID, actor: str, now: datetime) -> AnomalyAlert:
        """
        Resolve an alert; resolving also acknowledges it.

        Raises:
            AlertError: If the alert does not exist
        """
        alert = await self._get(alert_id)
        if alert.is_resolved:
            return alert

        if not alert.is_acknowledged:
            alert.is_acknowledged = True
            alert.acknowledged_by = actor
            alert.acknowledged_at = now
        alert.is_resolved = True
        alert.resolved_by = actor
        alert.resolved_at = now
        await self._repository.save(alert)

        logger.info(f"Alert {alert_id} resolved by {actor}")
        return alert

    async def list_open(self) -> List[AnomalyAlert]:
        """Unacknowledged, unresolved alerts, newest first."""
        return await self._repository.list_open()

    async def _get(self, alert_id: UUID) -> AnomalyAlert:
        alert = await self._repository.get(alert_id)
        if alert is None:
            raise AlertError(f"Alert not found: {alert_id}")
        return alert
