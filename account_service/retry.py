"""
Optimistic Retry Module

Runs one mutation attempt per storage transaction and restarts it from a
fresh load when a versioned write loses a race. Domain failures returned by
an attempt roll the transaction back and are handed to the caller as they
are; they are never retried.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from .errors import AccountErrorCode, OptimisticLockConflict
from .logging_config import get_logger, log_action
from .results import OperationResult
from .storage import StorageInterface


T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


class _RejectedAttempt(Exception):
    """Carries a failed OperationResult out of atomic() to force rollback"""

    def __init__(self, result: OperationResult):
        self.result = result
        super().__init__(result.message)


def run_with_optimistic_retry(
    storage: StorageInterface,
    attempt: Callable[[], OperationResult[T]],
    operation: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_ms: int = 0,
    resource: Optional[str] = None,
    logger: Optional[logging.Logger] = None
) -> OperationResult[T]:
    """
    Run attempt inside storage.atomic() until it commits or attempts run out

    Args:
        storage: Storage whose atomic() scopes each attempt
        attempt: Loads, mutates and persists; returns an OperationResult
        operation: Operation name used in log records
        max_attempts: Total number of attempts, including the first
        backoff_ms: Linear backoff base; attempt n sleeps n * backoff_ms
            before attempt n + 1
        resource: Resource recorded in log records (usually account number)
        logger: Logger for conflict records

    Returns:
        The attempt's result, or OPTIMISTIC_LOCK_CONFLICT once every
        attempt lost a version race. Any other exception rolls the attempt
        back and propagates.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    logger = logger or get_logger("accounts.retry")
    last_conflict: Optional[OptimisticLockConflict] = None

    for attempt_number in range(1, max_attempts + 1):
        try:
            with storage.atomic():
                result = attempt()
                if not result:
                    raise _RejectedAttempt(result)
            return result
        except _RejectedAttempt as rejected:
            return rejected.result
        except OptimisticLockConflict as conflict:
            last_conflict = conflict
            log_action(
                logger, "warning",
                f"Optimistic lock conflict on {operation}, attempt {attempt_number}/{max_attempts}",
                action=operation,
                resource=resource,
                extra={
                    "attempt": attempt_number,
                    "table": conflict.table,
                    "record_id": conflict.record_id,
                    "expected_version": conflict.expected_version,
                    "actual_version": conflict.actual_version,
                }
            )
            if attempt_number < max_attempts and backoff_ms > 0:
                time.sleep(backoff_ms * attempt_number / 1000.0)

    log_action(
        logger, "error",
        f"Giving up on {operation} after {max_attempts} conflicting attempts",
        action=operation,
        resource=resource,
        extra={"attempts": max_attempts, "last_conflict": str(last_conflict)}
    )
    return OperationResult.failure(AccountErrorCode.OPTIMISTIC_LOCK_CONFLICT)
