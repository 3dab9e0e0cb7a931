"""
Per-backend circuit breakers.

A backend's circuit opens once it has failed ``failure_threshold`` times in a
row and stays open for ``cooldown_seconds`` from that moment. There is no
background timer: an open circuit closes lazily the next time someone asks
about it after the deadline. Calls against an open circuit are rejected
without touching the network.

The registry is an ordinary object handed to the components that need it, so
tests build a fresh one and a shared store can replace it later without
touching call sites. Updates are not locked; two tasks racing on the same key
can at worst open the circuit one call late.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict

from assistantrelay.utils.logging import get_logger

logger = get_logger(__name__)


class CircuitBreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, rejecting calls


@dataclass
class CircuitState:
    """Failure bookkeeping for one backend."""

    backend_key: str
    consecutive_failures: int = 0
    open_until: float = 0.0


class CircuitBreakerRegistry:
    """Circuit state keyed by backend identifier."""

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._states: Dict[str, CircuitState] = {}

    def get_state(self, key: str) -> CircuitState:
        """Return the state for ``key``, creating it closed on first access."""
        state = self._states.get(key)
        if state is None:
            state = CircuitState(backend_key=key)
            self._states[key] = state
        return state

    def is_open(self, key: str) -> bool:
        """Check whether calls to ``key`` must be rejected right now."""
        return self._clock() < self.get_state(key).open_until

    def state_of(self, key: str) -> CircuitBreakerState:
        return CircuitBreakerState.OPEN if self.is_open(key) else CircuitBreakerState.CLOSED

    def record_success(self, key: str) -> None:
        """Record a successful call; always resets the circuit."""
        state = self.get_state(key)
        if state.consecutive_failures or state.open_until:
            logger.info(f"Circuit reset for {key}")
        state.consecutive_failures = 0
        state.open_until = 0.0

    def record_failure(self, key: str) -> None:
        """Record a failed call, opening the circuit at the threshold."""
        state = self.get_state(key)
        state.consecutive_failures += 1

        if state.consecutive_failures >= self.failure_threshold:
            state.open_until = self._clock() + self.cooldown_seconds
            logger.warning(
                f"Circuit breaker opened for {key} after "
                f"{state.consecutive_failures} consecutive failures",
                extra={"backend": key, "cooldown_seconds": self.cooldown_seconds},
            )
        else:
            logger.debug(
                f"Recorded failure {state.consecutive_failures}/"
                f"{self.failure_threshold} for {key}"
            )

    def remaining_cooldown(self, key: str) -> float:
        """Seconds until an open circuit closes, 0.0 when closed."""
        return max(0.0, self.get_state(key).open_until - self._clock())

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Get circuit breaker statistics for every known backend."""
        return {
            key: {
                "state": self.state_of(key).value,
                "consecutive_failures": state.consecutive_failures,
                "remaining_cooldown": round(self.remaining_cooldown(key), 3),
            }
            for key, state in self._states.items()
        }
