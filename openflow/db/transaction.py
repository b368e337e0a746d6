"""Nested transactions, savepoints, deadlock retry, batches and timeouts.

Transaction state lives in a :class:`TransactionScope` that the caller
creates for one logical operation and passes down explicitly (``scope=``) to
every nested store call.  Nothing here is process-global, so concurrent
requests on separate connections never see each other's depth or savepoint
names.

Usage::

    scope = TransactionScope()

    def _move(scope: TransactionScope) -> None:
        delete_subtree(conn, old_id, scope=scope)      # savepoint inside
        create_elements_batch(conn, specs, scope=scope)

    with_transaction(conn, _move, "move_block", scope=scope)

The connection must be in autocommit mode (``isolation_level=None``, as
returned by :func:`~openflow.db.connection.get_connection`).
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Any, Callable, Optional, Sequence, TypeVar

from openflow.config import settings
from openflow.db.models import BatchFailure, BatchResult
from openflow.errors import BatchOperationError, TransactionTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEADLOCK_MARKERS = (
    "deadlock",
    "lock wait timeout",
    "1205",
    "1213",
    "database is locked",
    "database table is locked",
)

_timeout_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="txn-timeout")


class IsolationLevel(str, Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


# SQLite has no per-transaction isolation levels; the begin mode decides
# when the write lock is taken.
_BEGIN_MODES = {
    IsolationLevel.READ_UNCOMMITTED: "DEFERRED",
    IsolationLevel.READ_COMMITTED: "DEFERRED",
    IsolationLevel.REPEATABLE_READ: "IMMEDIATE",
    IsolationLevel.SERIALIZABLE: "EXCLUSIVE",
}


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------

class TransactionScope:
    """Stack of active transaction / savepoint names for one logical operation."""

    def __init__(self, stack: Optional[Sequence[str]] = None) -> None:
        self._stack: list[str] = list(stack or [])

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def in_transaction(self) -> bool:
        return bool(self._stack)

    @property
    def current_savepoint(self) -> Optional[str]:
        return self._stack[-1] if self._stack else None

    def enter(self, name: str) -> None:
        self._stack.append(name)

    def exit(self) -> Optional[str]:
        return self._stack.pop() if self._stack else None

    def fork(self) -> "TransactionScope":
        """Independent copy, for work handed to another thread."""
        return TransactionScope(self._stack)

    def __repr__(self) -> str:
        return f"TransactionScope(depth={self.depth}, stack={self._stack!r})"


def get_transaction_state(scope: TransactionScope) -> dict[str, Any]:
    return {
        "depth": scope.depth,
        "in_transaction": scope.in_transaction,
        "current_savepoint": scope.current_savepoint,
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _identifier(name: str) -> str:
    """Reduce *name* to a safe SQL identifier for SAVEPOINT statements."""
    cleaned = re.sub(r"[^A-Za-z0-9_]", "_", name)
    return cleaned if cleaned and not cleaned[0].isdigit() else f"sp_{cleaned}"


def is_deadlock_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _DEADLOCK_MARKERS)


def _safe_execute(conn: sqlite3.Connection, sql: str, context: str) -> None:
    """Run a rollback statement; its own failure is logged, never raised."""
    try:
        conn.execute(sql)
    except sqlite3.Error as rollback_exc:
        logger.error("[Transaction] Failed to %s: %s", context, rollback_exc)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def with_transaction(
    conn: sqlite3.Connection,
    fn: Callable[[TransactionScope], T],
    name: Optional[str] = None,
    *,
    scope: Optional[TransactionScope] = None,
    isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
) -> T:
    """Run ``fn(scope)`` atomically.

    Outside a transaction this issues ``BEGIN`` / ``COMMIT`` and rolls the
    whole transaction back on error.  Inside one (``scope.depth > 0``) it
    opens ``SAVEPOINT <name>_<depth>`` instead and, on error, rolls back to
    that savepoint only, leaving the enclosing transaction usable.  The error
    is re-raised in both cases.

    Args:
        conn: Autocommit-mode connection.
        fn: Work to run; receives the scope to pass to nested calls.
        name: Label for logs and savepoint names.
        scope: Enclosing scope; a fresh one is created when omitted.
        isolation: Requested isolation, only honoured for the outermost level.
    """
    scope = scope if scope is not None else TransactionScope()
    label = _identifier(name or f"txn_{int(time.time() * 1000)}")
    depth = scope.depth

    if depth == 0:
        conn.execute(f"BEGIN {_BEGIN_MODES[IsolationLevel(isolation)]}")
        scope.enter(label)
        try:
            result = fn(scope)
            conn.execute("COMMIT")
            return result
        except BaseException as exc:
            _safe_execute(conn, "ROLLBACK", "rollback")
            logger.error("[Transaction] Error in transaction %r: %s", label, exc)
            raise
        finally:
            scope.exit()

    savepoint = f"{label}_{depth}"
    conn.execute(f"SAVEPOINT {savepoint}")
    scope.enter(savepoint)
    try:
        result = fn(scope)
        conn.execute(f"RELEASE SAVEPOINT {savepoint}")
        return result
    except BaseException:
        _safe_execute(conn, f"ROLLBACK TO SAVEPOINT {savepoint}", "roll back to savepoint")
        _safe_execute(conn, f"RELEASE SAVEPOINT {savepoint}", "release savepoint")
        raise
    finally:
        scope.exit()


def with_retryable_transaction(
    conn: sqlite3.Connection,
    fn: Callable[[TransactionScope], T],
    max_retries: Optional[int] = None,
    backoff: Optional[float] = None,
    *,
    name: str = "retryable_txn",
    scope: Optional[TransactionScope] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a whole transaction, retrying it when it fails on a deadlock / lock error.

    Each retry is a fresh transaction; the delay before attempt ``n + 1`` is
    ``backoff * 2 ** (n - 1)``.  Non-lock errors propagate immediately.  When
    called inside an open transaction there is nothing safe to retry, so the
    work runs once under a savepoint.
    """
    scope = scope if scope is not None else TransactionScope()
    if scope.in_transaction:
        return with_transaction(conn, fn, name, scope=scope)

    retries = max(1, max_retries if max_retries is not None else settings.transaction_max_retries)
    delay_base = backoff if backoff is not None else settings.transaction_backoff

    for attempt in range(1, retries + 1):
        try:
            return with_transaction(conn, fn, f"{name}_attempt_{attempt}", scope=scope)
        except Exception as exc:
            if not is_deadlock_error(exc) or attempt == retries:
                raise
            delay = delay_base * (2 ** (attempt - 1))
            logger.warning(
                "[Transaction] Retrying %r after lock conflict (attempt %d/%d), waiting %.3fs",
                name,
                attempt,
                retries,
                delay,
            )
            sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


def with_batch_transaction(
    conn: sqlite3.Connection,
    operations: Sequence[Callable[[TransactionScope], Any]],
    *,
    stop_on_error: bool = True,
    name: str = "batch",
    scope: Optional[TransactionScope] = None,
) -> BatchResult:
    """Run *operations* sequentially in one transaction.

    Each member runs under its own savepoint, so a failing member never
    leaves half of its writes behind.

    ``stop_on_error=True`` (the default) is strict: the first failure raises
    :class:`~openflow.errors.BatchOperationError` and nothing is committed.
    ``stop_on_error=False`` is the explicit best-effort mode: failures are
    recorded, remaining members still run and the successful ones commit.
    Check ``result.complete`` before treating the batch as fully applied.
    """
    result = BatchResult()

    def _run(scope: TransactionScope) -> None:
        for index, operation in enumerate(operations):
            try:
                value = with_transaction(conn, operation, f"{name}_op{index}", scope=scope)
            except Exception as exc:
                result.failed += 1
                result.errors.append(BatchFailure(index=index, error=exc))
                if stop_on_error:
                    raise BatchOperationError(
                        f"Batch {name!r} failed at operation {index}: {exc}",
                        result=result,
                        index=index,
                    ) from exc
                logger.warning(
                    "[Transaction] Batch operation %d failed (continuing): %s", index, exc
                )
                continue
            result.successful += 1
            result.results.append(value)

    with_transaction(conn, _run, name, scope=scope)
    if not result.complete:
        logger.warning(
            "[Transaction] Batch %r applied partially: %d ok, %d failed",
            name,
            result.successful,
            result.failed,
        )
    return result


def with_transaction_timeout(
    conn: sqlite3.Connection,
    fn: Callable[[TransactionScope], T],
    timeout: Optional[float] = None,
    *,
    name: str = "timed_txn",
    scope: Optional[TransactionScope] = None,
) -> T:
    """Race :func:`with_transaction` against a timer.

    The work runs on a worker thread with a forked scope, so the caller's
    scope keeps its depth whatever happens.  When the timer fires first the
    running statement is interrupted with :meth:`sqlite3.Connection.interrupt`
    and the caller waits for the worker to roll back its transaction (or its
    savepoint, when nested) before :class:`~openflow.errors.TransactionTimeoutError`
    is raised.  The connection is therefore back in the caller's state and
    none of the timed-out writes survive an enclosing commit.

    Work that blocks outside SQLite cannot be interrupted; the caller then
    waits until ``fn`` returns.
    """
    scope = scope if scope is not None else TransactionScope()
    limit = timeout if timeout is not None else settings.transaction_timeout
    timed_out = threading.Event()

    def _guarded(inner: TransactionScope) -> T:
        value = fn(inner)
        if timed_out.is_set():
            raise TransactionTimeoutError(
                f"Transaction {name!r} finished after its {limit:.1f}s deadline; rolled back"
            )
        return value

    future = _timeout_pool.submit(
        with_transaction, conn, _guarded, name, scope=scope.fork()
    )
    try:
        return future.result(timeout=limit)
    except FutureTimeoutError:
        timed_out.set()
        conn.interrupt()
        logger.error("[Transaction] %r timed out after %.1fs; rolling back", name, limit)
        wait([future])
        logger.debug("[Transaction] %r worker stopped: %s", name, future.exception())
        raise TransactionTimeoutError(
            f"Transaction timeout after {limit:.1f}s ({name})", timeout=limit
        ) from None
