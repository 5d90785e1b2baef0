"""Circuit breaker for the upstream search API.

Trips to a fail-fast state after repeated failures and probes recovery once
the cool-down has elapsed. One breaker is owned by each API client, so
independent clients (for example in tests) never share failure counts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"       # Normal operation
    OPEN = "open"           # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing recovery


StateListener = Callable[[CircuitState, CircuitState], None]


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""
    total_successes: int = 0
    total_failures: int = 0
    rejected_calls: int = 0
    state_changes: List[Tuple[float, CircuitState, CircuitState]] = field(default_factory=list)


class CircuitBreaker:
    """
    Circuit breaker guarding a single upstream dependency.

    Args:
        name: Identifier used in logs and diagnostics
        failure_threshold: Failures that trip the breaker to OPEN
        recovery_timeout: Seconds to stay OPEN before probing
        half_open_max_probes: Callers admitted while HALF_OPEN before the probe
            resolves; ``None`` admits everyone
        clock: Wall-clock source in seconds (injectable for tests)
    """

    def __init__(
        self,
        name: str = "presearch",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        *,
        half_open_max_probes: Optional[int] = 1,
        clock: Optional[Callable[[], float]] = None,
    ):
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_probes = half_open_max_probes
        self._clock = clock or time.time

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.next_attempt_time: Optional[float] = None
        self.stats = CircuitStats()
        self._half_open_calls = 0
        self._listeners: List[StateListener] = []

    def add_listener(self, listener: StateListener) -> None:
        """Register a callable notified with ``(old_state, new_state)``."""
        self._listeners.append(listener)

    def _change_state(self, new_state: CircuitState) -> None:
        """Change circuit state, log the transition and notify listeners."""
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        self.stats.state_changes.append((self._clock(), old_state, new_state))
        if new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0

        logger.info(
            "Circuit breaker state changed",
            breaker=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            failure_count=self.failure_count,
        )
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as exc:
                logger.warning(
                    "Circuit breaker listener failed",
                    breaker=self.name,
                    error=str(exc),
                )

    def can_proceed(self) -> bool:
        """Return True when a call may be attempted right now."""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.next_attempt_time is not None and self._clock() >= self.next_attempt_time:
                self._change_state(CircuitState.HALF_OPEN)
                self._half_open_calls = 1
                return True
            self.stats.rejected_calls += 1
            return False

        # HALF_OPEN: admit a bounded number of probes until one resolves
        if self.half_open_max_probes is None or self._half_open_calls < self.half_open_max_probes:
            self._half_open_calls += 1
            return True
        self.stats.rejected_calls += 1
        return False

    def record_success(self) -> None:
        self.stats.total_successes += 1
        if self.state == CircuitState.HALF_OPEN:
            self.failure_count = 0
            self.next_attempt_time = None
            self._change_state(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self.stats.total_failures += 1
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.next_attempt_time = self.last_failure_time + self.recovery_timeout
            if self.state != CircuitState.OPEN:
                logger.warning(
                    "Circuit breaker opened",
                    breaker=self.name,
                    failure_count=self.failure_count,
                    threshold=self.failure_threshold,
                )
            self._change_state(CircuitState.OPEN)

    def release_slot(self) -> None:
        """Give back a HALF_OPEN slot taken by a call that ended without an outcome.

        Callers use this when an admitted call is cancelled or aborted before
        it could report success or failure, so the next caller is admitted.
        """
        if self.state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
            self._half_open_calls -= 1
            logger.info("Circuit breaker half-open slot released", breaker=self.name)

    def retry_after(self) -> Optional[float]:
        """Seconds until the next recovery probe is allowed, if OPEN."""
        if self.state != CircuitState.OPEN or self.next_attempt_time is None:
            return None
        return max(0.0, self.next_attempt_time - self._clock())

    def get_status(self) -> Dict[str, Any]:
        """Get circuit breaker diagnostics without changing state."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failureCount": self.failure_count,
            "failureThreshold": self.failure_threshold,
            "recoveryTimeoutSeconds": self.recovery_timeout,
            "lastFailureTime": _iso(self.last_failure_time),
            "nextAttemptTime": _iso(self.next_attempt_time),
            "totalSuccesses": self.stats.total_successes,
            "totalFailures": self.stats.total_failures,
            "rejectedCalls": self.stats.rejected_calls,
        }

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        self._change_state(CircuitState.CLOSED)
        self.failure_count = 0
        self.next_attempt_time = None
        self._half_open_calls = 0


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
