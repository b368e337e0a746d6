"""Retry with exponential backoff and jitter.

``with_retry`` never raises for a failing operation: it returns a
:class:`RetryResult` and callers must check ``success`` (or call
``unwrap()``).  Each attempt is time-bounded by racing it on a shared worker
pool; a timed-out attempt is abandoned, not cancelled, and counts as a
retryable failure.

Delay after the failed attempt ``n`` (0-based)::

    min(initial_delay * backoff_multiplier ** n, max_delay) * (1 + jitter_factor * random())
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx

from openflow.config import settings
from openflow.errors import AttemptTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES: tuple[int, ...] = (408, 429, 500, 502, 503, 504)

# Attempts that outlive their timeout keep running here until they return.
_attempt_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="retry-attempt")


# ---------------------------------------------------------------------------
# Options / result
# ---------------------------------------------------------------------------

@dataclass
class RetryOptions:
    max_attempts: int = field(default_factory=lambda: settings.retry_max_attempts)
    initial_delay: float = field(default_factory=lambda: settings.retry_initial_delay)
    max_delay: float = field(default_factory=lambda: settings.retry_max_delay)
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    # Per-attempt bound in seconds; ``None`` runs the attempt inline.
    timeout: Optional[float] = field(default_factory=lambda: settings.retry_timeout)
    retryable_status_codes: tuple[int, ...] = DEFAULT_RETRYABLE_STATUS_CODES
    should_retry: Optional[Callable[[BaseException, int], bool]] = None
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None
    sleep: Callable[[float], None] = time.sleep


@dataclass
class RetryResult(Generic[T]):
    success: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    elapsed: float = 0.0

    def unwrap(self) -> T:
        """Return the value, or raise the terminal error."""
        if not self.success:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status_code_of(exc: BaseException) -> Optional[int]:
    """Extract an HTTP status from httpx errors or provider SDK errors."""
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if code is None:
        code = getattr(exc, "status_code", None)
    return code if isinstance(code, int) else None


def is_retryable_error(
    exc: BaseException,
    retryable_status_codes: tuple[int, ...] = DEFAULT_RETRYABLE_STATUS_CODES,
) -> bool:
    """Default predicate: transient network errors and transient HTTP statuses."""
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    code = _status_code_of(exc)
    return code is not None and code in retryable_status_codes


def compute_delay(attempt: int, options: RetryOptions) -> float:
    base = min(
        options.initial_delay * (options.backoff_multiplier ** attempt),
        options.max_delay,
    )
    return base * (1 + options.jitter_factor * random.random())


def _run_attempt(operation: Callable[[], T], timeout: Optional[float]) -> T:
    if timeout is None:
        return operation()
    future = _attempt_pool.submit(operation)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        raise AttemptTimeoutError(
            f"Attempt timed out after {timeout:.1f}s", timeout=timeout
        ) from None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def with_retry(
    operation: Callable[[], T],
    options: Optional[RetryOptions] = None,
) -> RetryResult[T]:
    """Run *operation* until it succeeds, fails terminally, or attempts run out.

    Args:
        operation: Zero-argument callable performing the outbound call.
        options: Retry policy; defaults come from ``settings``.

    Returns:
        A :class:`RetryResult` with the value or the terminal error, the
        number of attempts made and the total elapsed seconds.
    """
    opts = options or RetryOptions()
    started = time.monotonic()
    last_error: Optional[BaseException] = None
    attempts = 0

    for attempt in range(max(1, opts.max_attempts)):
        attempts = attempt + 1
        try:
            value = _run_attempt(operation, opts.timeout)
            return RetryResult(
                success=True,
                value=value,
                attempts=attempts,
                elapsed=time.monotonic() - started,
            )
        except Exception as exc:
            last_error = exc
            if opts.should_retry is not None:
                retryable = opts.should_retry(exc, attempts)
            else:
                retryable = is_retryable_error(exc, opts.retryable_status_codes)

            if not retryable or attempts >= opts.max_attempts:
                break

            delay = compute_delay(attempt, opts)
            logger.warning(
                "[Retry] Attempt %d/%d failed: %s. Retrying in %.2fs",
                attempts,
                opts.max_attempts,
                exc,
                delay,
            )
            if opts.on_retry is not None:
                opts.on_retry(exc, attempts, delay)
            opts.sleep(delay)

    return RetryResult(
        success=False,
        error=last_error,
        attempts=attempts,
        elapsed=time.monotonic() - started,
    )


def request_with_retry(
    method: str,
    url: str,
    options: Optional[RetryOptions] = None,
    client: Optional[httpx.Client] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send an HTTP request with retry; non-2xx responses count as failures.

    Raises:
        The terminal error (``httpx.HTTPStatusError``, ``httpx.TransportError``,
        :class:`~openflow.errors.AttemptTimeoutError`, ...) once retries are
        exhausted.
    """

    def _send() -> httpx.Response:
        if client is not None:
            response = client.request(method, url, **kwargs)
        else:
            with httpx.Client(timeout=settings.retry_timeout) as c:
                response = c.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    return with_retry(_send, options).unwrap()
