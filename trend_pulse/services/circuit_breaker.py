"""
Circuit Breaker for engine jobs.

Disables a job after consecutive failures or timeouts and lets it try again
after a cool-down.
"""

from typing import Callable, Dict, Optional, List
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging

from trend_pulse.types import utc_now

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker state."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Circuit tripped, blocking runs
    HALF_OPEN = "half_open"  # Cool-down elapsed, next run is a trial


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    # Consecutive failures before opening circuit
    failure_threshold: int = 5

    # Successful trial runs before closing circuit from half-open
    success_threshold: int = 1

    # Time to wait before entering half-open state
    cooldown_seconds: int = 600


@dataclass
class CircuitRecord:
    """Record of circuit breaker state."""

    circuit_id: str
    state: CircuitState
    trip_reason: Optional[str] = None
    tripped_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    failure_count: int = 0
    success_count: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0


class CircuitBreaker:
    """
    Circuit breaker for engine jobs.

    Usage:
        breaker = CircuitBreaker()

        if not breaker.can_proceed("rescore_trends"):
            raise CircuitOpenError("Circuit is open")

        try:
            await run_job()
            breaker.record_success("rescore_trends")
        except Exception as e:
            breaker.record_failure("rescore_trends", str(e))
            raise
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            config: Circuit breaker configuration
            clock: Returns the current UTC time (utc_now if None)
        """
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or utc_now
        self._circuits: Dict[str, CircuitRecord] = {}

        logger.info(
            f"Circuit Breaker initialized "
            f"(failure_threshold={self._config.failure_threshold}, "
            f"cooldown={self._config.cooldown_seconds}s)"
        )

    def can_proceed(self, circuit_id: str) -> bool:
        """
        Check if a run can proceed.

        Args:
            circuit_id: Circuit identifier (job name)

        Returns:
            True if the run can proceed
        """
        circuit = self._get_or_create_circuit(circuit_id)
        self._update_circuit_state(circuit)

        if circuit.state == CircuitState.OPEN:
            logger.warning(f"Circuit OPEN: {circuit_id} - skipping run")
            return False

        return True

    def record_success(self, circuit_id: str) -> None:
        """
        Record a successful run.

        Args:
            circuit_id: Circuit identifier
        """
        circuit = self._get_or_create_circuit(circuit_id)

        circuit.last_success_at = self._clock()
        circuit.success_count += 1
        circuit.consecutive_successes += 1
        circuit.consecutive_failures = 0

        if circuit.state == CircuitState.HALF_OPEN:
            if circuit.consecutive_successes >= self._config.success_threshold:
                self._close_circuit(circuit)

        logger.debug(
            f"Circuit success: {circuit_id} "
            f"(consecutive={circuit.consecutive_successes})"
        )

    def record_failure(
        self,
        circuit_id: str,
        reason: Optional[str] = None,
    ) -> None:
        """
        Record a failed or timed-out run.

        Args:
            circuit_id: Circuit identifier
            reason: Failure reason
        """
        circuit = self._get_or_create_circuit(circuit_id)

        circuit.last_failure_at = self._clock()
        circuit.failure_count += 1
        circuit.consecutive_failures += 1
        circuit.consecutive_successes = 0

        if circuit.state == CircuitState.CLOSED:
            if circuit.consecutive_failures >= self._config.failure_threshold:
                self._trip_circuit(circuit, reason)

        # A failed trial run reopens the circuit
        elif circuit.state == CircuitState.HALF_OPEN:
            self._trip_circuit(circuit, "Failed during recovery")

        logger.warning(
            f"Circuit failure: {circuit_id} "
            f"(consecutive={circuit.consecutive_failures}, reason={reason})"
        )

    def trip(self, circuit_id: str, reason: str) -> None:
        """
        Manually trip circuit.

        Args:
            circuit_id: Circuit identifier
            reason: Reason for tripping
        """
        circuit = self._get_or_create_circuit(circuit_id)
        self._trip_circuit(circuit, reason)

        logger.error(f"Circuit manually tripped: {circuit_id} - {reason}")

    def reset(self, circuit_id: str) -> None:
        """
        Manually reset circuit.

        Args:
            circuit_id: Circuit identifier
        """
        circuit = self._get_or_create_circuit(circuit_id)
        self._close_circuit(circuit)

        logger.info(f"Circuit manually reset: {circuit_id}")

    def get_circuit_state(self, circuit_id: str) -> CircuitState:
        """
        Get circuit state.

        Args:
            circuit_id: Circuit identifier

        Returns:
            Circuit state
        """
        circuit = self._get_or_create_circuit(circuit_id)
        self._update_circuit_state(circuit)
        return circuit.state

    def get_circuit_record(self, circuit_id: str) -> CircuitRecord:
        """Get circuit record."""
        return self._get_or_create_circuit(circuit_id)

    def get_all_circuits(self) -> List[CircuitRecord]:
        """Get all circuit records."""
        return list(self._circuits.values())

    def _get_or_create_circuit(self, circuit_id: str) -> CircuitRecord:
        if circuit_id not in self._circuits:
            self._circuits[circuit_id] = CircuitRecord(
                circuit_id=circuit_id,
                state=CircuitState.CLOSED,
            )

        return self._circuits[circuit_id]

    def _update_circuit_state(self, circuit: CircuitRecord) -> None:
        """
        Move an open circuit to half-open once the cool-down has elapsed.

        Args:
            circuit: Circuit record
        """
        if circuit.state == CircuitState.OPEN and circuit.tripped_at:
            cooldown_elapsed = self._clock() - circuit.tripped_at
            if cooldown_elapsed >= timedelta(seconds=self._config.cooldown_seconds):
                circuit.state = CircuitState.HALF_OPEN
                circuit.consecutive_successes = 0
                logger.info(f"Circuit entering HALF_OPEN: {circuit.circuit_id}")

    def _trip_circuit(self, circuit: CircuitRecord, reason: Optional[str]) -> None:
        circuit.state = CircuitState.OPEN
        circuit.tripped_at = self._clock()
        circuit.trip_reason = reason

        logger.error(
            f"Circuit TRIPPED: {circuit.circuit_id} - {reason} "
            f"(consecutive_failures={circuit.consecutive_failures})"
        )

    def _close_circuit(self, circuit: CircuitRecord) -> None:
        circuit.state = CircuitState.CLOSED
        circuit.tripped_at = None
        circuit.trip_reason = None
        circuit.failure_count = 0
        circuit.consecutive_failures = 0

        logger.info(
            f"Circuit CLOSED: {circuit.circuit_id} "
            f"(successes={circuit.success_count})"
        )


class CircuitOpenError(Exception):
    """Exception raised when circuit is open."""

    pass
