"""Error taxonomy shared by the store, the dispatcher and the API layer.

Every error carries a ``kind`` string so the outer surfaces (HTTP handlers,
CLI, agent outcomes) can report failures as ``{"kind": ..., "message": ...}``
instead of a raw traceback.
"""

from __future__ import annotations

from typing import Any


class BuilderError(Exception):
    """Base class for all structured builder errors."""

    kind = "internal"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.context:
            payload["context"] = self.context
        return payload


# ---------------------------------------------------------------------------
# Rejected before any mutation
# ---------------------------------------------------------------------------

class ValidationError(BuilderError, ValueError):
    kind = "validation"


class UnknownActionError(ValidationError):
    """Raised when a command type matches no known action after alias lookup."""


class NotFoundError(BuilderError, LookupError):
    kind = "not_found"


class AuthorizationError(BuilderError):
    """The acting user does not own the project the command targets."""

    kind = "authorization"


# ---------------------------------------------------------------------------
# Whole-operation failures (rolled back)
# ---------------------------------------------------------------------------

class StructuralError(BuilderError):
    kind = "structural"


class DepthLimitExceeded(StructuralError):
    pass


class BatchSizeExceeded(StructuralError):
    pass


class IntegrityViolation(StructuralError):
    """The stored tree violates acyclicity or same-page parenting."""


class BatchOperationError(StructuralError):
    """A strict batch stopped on its first failing member.

    ``result`` holds the :class:`~openflow.db.models.BatchResult` recorded up
    to (and including) the failure; ``__cause__`` is the member's error.
    """

    def __init__(self, message: str, result: Any = None, index: int | None = None) -> None:
        super().__init__(message, index=index)
        self.result = result
        self.index = index


# ---------------------------------------------------------------------------
# Transient / infrastructure
# ---------------------------------------------------------------------------

class TransientError(BuilderError):
    kind = "transient"


class CircuitOpenError(TransientError):
    kind = "circuit_open"

    def __init__(self, name: str, retry_in: float) -> None:
        super().__init__(
            f"Circuit breaker '{name}' is OPEN; retry in {retry_in:.1f}s",
            breaker=name,
            retry_in=round(retry_in, 3),
        )
        self.name = name
        self.retry_in = retry_in


class AttemptTimeoutError(TransientError, TimeoutError):
    """A single retry attempt exceeded its time bound."""


class TimeoutExceeded(BuilderError):
    kind = "timeout"


class TransactionTimeoutError(TimeoutExceeded, TimeoutError):
    pass


# ---------------------------------------------------------------------------
# Terminal external failures
# ---------------------------------------------------------------------------

class ProviderError(BuilderError):
    """An external provider call failed after every retry."""

    kind = "provider"

    def __init__(self, message: str, attempts: int = 0, elapsed: float = 0.0) -> None:
        super().__init__(message, attempts=attempts, elapsed=round(elapsed, 3))
        self.attempts = attempts
        self.elapsed = elapsed


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Return the structured ``{"kind", "message"}`` form of any exception."""
    if isinstance(exc, BuilderError):
        return exc.to_dict()
    return {"kind": "internal", "message": str(exc) or type(exc).__name__}
