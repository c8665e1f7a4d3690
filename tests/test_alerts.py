"""
Unit tests for anomaly alert emission.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from trend_pulse.services.alerts import AlertEmitter, AlertError
from trend_pulse.storage.memory import InMemoryAlertRepository
from trend_pulse.types import AlertSeverity, AlertType

from tests.fixtures import NOW


@pytest.fixture
def repository():
    """Create an in-memory alert repository."""
    return InMemoryAlertRepository()


@pytest.fixture
def emitter(repository):
    """Create AlertEmitter with the default 4h throttle."""
    return AlertEmitter(repository)


def test_severity_tiers(emitter):
    """Test |z| maps to the highest tier it exceeds."""
    assert emitter.severity_for(1.5) is None
    assert emitter.severity_for(2.0) is None
    assert emitter.severity_for(2.5) == AlertSeverity.LOW
    assert emitter.severity_for(3.5) == AlertSeverity.MEDIUM
    assert emitter.severity_for(-4.5) == AlertSeverity.HIGH
    assert emitter.severity_for(78.0) == AlertSeverity.CRITICAL


@pytest.mark.asyncio
async def test_below_threshold_emits_nothing(emitter, repository):
    """Test small anomalies are ignored."""
    alert = await emitter.emit(AlertType.MENTION_SPIKE, "topic", 2.0, 1.5, 1.0, NOW)

    assert alert is None
    assert await repository.count() == 0


@pytest.mark.asyncio
async def test_throttled_within_window(emitter, repository):
    """Test two anomalies in the window produce one open alert."""
    first = await emitter.emit(AlertType.MENTION_SPIKE, "topic", 4.0, 0.1, 78.0, NOW)
    second = await emitter.emit(
        AlertType.MENTION_SPIKE, "topic", 5.0, 0.1, 98.0, NOW + timedelta(hours=1)
    )

    assert first is not None
    assert first.severity == AlertSeverity.CRITICAL
    assert second is None
    assert len(await repository.list_open()) == 1


@pytest.mark.asyncio
async def test_throttle_is_per_type_and_key(emitter, repository):
    """Test other alert types and keys are not throttled."""
    await emitter.emit(AlertType.MENTION_SPIKE, "topic", 4.0, 0.1, 78.0, NOW)
    velocity = await emitter.emit(AlertType.VELOCITY_SPIKE, "topic", 3900.0, 0.1, 78.0, NOW)
    other = await emitter.emit(AlertType.MENTION_SPIKE, "other", 4.0, 0.1, 78.0, NOW)

    assert velocity is not None
    assert other is not None
    assert await repository.count() == 3


@pytest.mark.asyncio
async def test_new_alert_after_window(emitter, repository):
    """Test the throttle expires."""
    await emitter.emit(AlertType.MENTION_SPIKE, "topic", 4.0, 0.1, 78.0, NOW)
    later = await emitter.emit(
        AlertType.MENTION_SPIKE, "topic", 4.0, 0.1, 78.0, NOW + timedelta(hours=5)
    )

    assert later is not None
    assert await repository.count() == 2


@pytest.mark.asyncio
async def test_acknowledge_is_one_way(emitter, repository):
    """Test acknowledgment is recorded once and re-acknowledging is a no-op."""
    alert = await emitter.emit(AlertType.MENTION_SPIKE, "topic", 4.0, 0.1, 78.0, NOW)

    acked = await emitter.acknowledge(alert.id, "analyst", NOW + timedelta(minutes=5))
    again = await emitter.acknowledge(alert.id, "someone-else", NOW + timedelta(minutes=9))

    assert acked.is_acknowledged
    assert again.acknowledged_by == "analyst"
    assert again.acknowledged_at == NOW + timedelta(minutes=5)
    assert await emitter.list_open() == []


@pytest.mark.asyncio
async def test_acknowledged_alert_does_not_throttle(emitter, repository):
    """Test a new anomaly after acknowledgment raises a fresh alert."""
    alert = await emitter.emit(AlertType.MENTION_SPIKE, "topic", 4.0, 0.1, 78.0, NOW)
    await emitter.acknowledge(alert.id, "analyst", NOW)

    fresh = await emitter.emit(
        AlertType.MENTION_SPIKE, "topic", 4.0, 0.1, 78.0, NOW + timedelta(minutes=30)
    )

    assert fresh is not None
    assert fresh.id != alert.id


@pytest.mark.asyncio
async def test_resolve_also_acknowledges(emitter):
    """Test resolution."""
    alert = await emitter.emit(AlertType.VELOCITY_SPIKE, "topic", 3900.0, 0.1, 6.0, NOW)

    resolved = await emitter.resolve(alert.id, "analyst", NOW)

    assert resolved.is_resolved
    assert resolved.is_acknowledged


@pytest.mark.asyncio
async def test_unknown_alert(emitter):
    """Test acknowledging a missing alert."""
    with pytest.raises(AlertError):
        await emitter.acknowledge(uuid4(), "analyst", NOW)
