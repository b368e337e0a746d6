"""Circuit breaker for outbound dependencies.

One breaker per logical external service (``llm``, ``image_generation``),
shared process-wide so that repeated failures seen by any request trip it
for all of them.

    CLOSED --failure_threshold failures--> OPEN
    OPEN   --reset_timeout elapsed, next call--> HALF_OPEN
    HALF_OPEN --success_threshold successes--> CLOSED
    HALF_OPEN --any failure--> OPEN
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from openflow.config import settings
from openflow.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Three-state breaker guarding a single dependency.

    Args:
        name: Dependency name, used in logs and errors.
        failure_threshold: Failures in ``CLOSED`` before opening.
        success_threshold: Probe successes in ``HALF_OPEN`` before closing.
        reset_timeout: Seconds after the last failure before a probe is let through.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    def metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "last_failure_time": self._last_failure_time,
            }

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        logger.info("[CircuitBreaker] '%s': %s -> %s", self.name, old_state.value, new_state.value)

    def _before_call(self) -> None:
        with self._lock:
            if self._state != CircuitState.OPEN:
                return
            elapsed = self._clock() - (self._last_failure_time or 0.0)
            if elapsed >= self.reset_timeout:
                self._transition_to(CircuitState.HALF_OPEN)
                return
            raise CircuitOpenError(self.name, self.reset_timeout - elapsed)

    def _on_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    def _on_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)
                logger.warning(
                    "[CircuitBreaker] '%s' opened after %d failures",
                    self.name,
                    self._failure_count,
                )

    def execute(self, operation: Callable[[], T]) -> T:
        """Run *operation* through the breaker.

        Raises:
            CircuitOpenError: The breaker is ``OPEN`` and the reset timeout has
                not elapsed; *operation* is not invoked.
        """
        self._before_call()
        try:
            result = operation()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)


# ---------------------------------------------------------------------------
# Process-wide registry
# ---------------------------------------------------------------------------

_breakers: dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(name: str) -> CircuitBreaker:
    """Return the shared breaker for dependency *name*, creating it on first use."""
    with _registry_lock:
        breaker = _breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                failure_threshold=settings.breaker_failure_threshold,
                success_threshold=settings.breaker_success_threshold,
                reset_timeout=settings.breaker_reset_timeout,
            )
            _breakers[name] = breaker
        return breaker


def all_circuit_breakers() -> list[CircuitBreaker]:
    with _registry_lock:
        return list(_breakers.values())


def reset_circuit_breakers() -> None:
    """Drop every registered breaker (used by tests)."""
    with _registry_lock:
        _breakers.clear()
