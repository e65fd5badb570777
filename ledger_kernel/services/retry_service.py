"""
RetryService -- bounded retry of a unit of work on concurrent-update conflicts.

Responsibility:
    Runs a unit of work, commits it, and on a concurrency conflict rolls back
    and runs it again from scratch.  Rollback expires every loaded row, so the
    next attempt re-reads balances and reconciliation id sets rather than
    trusting values from the failed attempt.  The attempt number is passed to
    the work callable so writers can recompute account balances from ledger
    entries on retries.

Architecture position:
    Kernel > Services, but unlike the BaseService writers it owns the
    transaction boundary.  Only the ``ledger_services`` facades call it.

Conflicts:
    - StaleDataError     -- a version_id_col check failed (lost update).
    - OperationalError   -- lock timeout, deadlock, serialization failure.
    - IntegrityError     -- a concurrent insert took the same unique key
                            (reference number, session per statement date).
    Typed kernel errors are never retried: they roll back and propagate.

Failure modes:
    - ConflictError once max_attempts conflicting attempts have been made.
"""

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.exceptions import ConflictError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

# INVARIANT: bounded -- a conflicting unit of work is attempted at most this
# many times unless the caller configures otherwise.
DEFAULT_MAX_ATTEMPTS = 3

RETRYABLE_ERRORS = (StaleDataError, OperationalError, IntegrityError)


def run_with_retry(
    session: Session,
    operation: str,
    work: Callable[[int], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """
    Run ``work(attempt)`` and commit, retrying on concurrency conflicts.

    Preconditions:
        - ``session`` has no pending changes the caller wants to keep.
        - ``work`` only flushes; it never commits or rolls back.
    Postconditions:
        - On success the unit of work is committed and its result returned.
        - On any error the session is rolled back.

    Raises:
        ConflictError: after ``max_attempts`` conflicting attempts.
        LedgerKernelError subclasses raised by ``work``, unchanged.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        try:
            result = work(attempt)
            session.commit()
            if attempt > 1:
                logger.info(
                    "unit_of_work_succeeded_after_retry",
                    extra={"operation": operation, "attempt": attempt},
                )
            return result
        except RETRYABLE_ERRORS as exc:
            session.rollback()
            logger.warning(
                "unit_of_work_conflict",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error_type": type(exc).__name__,
                },
            )
            if attempt == max_attempts:
                raise ConflictError(operation, attempt) from exc
        except Exception:
            session.rollback()
            raise

    # Unreachable: the loop either returns or raises.
    raise ConflictError(operation, max_attempts)
