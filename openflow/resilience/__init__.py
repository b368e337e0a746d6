"""Resilience primitives for outbound calls.

    from openflow.resilience import with_retry, get_circuit_breaker
"""

from openflow.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    get_circuit_breaker,
    reset_circuit_breakers,
)
from openflow.resilience.retry import (
    RetryOptions,
    RetryResult,
    request_with_retry,
    with_retry,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "get_circuit_breaker",
    "reset_circuit_breakers",
    "RetryOptions",
    "RetryResult",
    "request_with_retry",
    "with_retry",
]
