"""Bounded retry for transient storage conflicts."""

import logging
import time
from typing import Callable, TypeVar

from accessledger.core.errors import StorageConflictError
from accessledger.core.metrics import storage_retries_total

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(
    operation: str,
    fn: Callable[[], T],
    *,
    max_attempts: int,
    backoff_ms: int,
) -> T:
    """
    Call fn, retrying on StorageConflictError up to max_attempts times.

    Backoff grows linearly with the attempt number. The last conflict is
    re-raised unchanged so callers see a storage failure, never a denial.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except StorageConflictError:
            if attempt >= attempts - 1:
                logger.error(
                    "[retry] conflict retries exhausted",
                    extra={"operation": operation, "attempts": attempts},
                )
                raise
            storage_retries_total.inc(labels={"operation": operation})
            logger.warning(
                "[retry] storage conflict, retrying",
                extra={"operation": operation, "attempt": attempt + 1, "max_attempts": attempts},
            )
            time.sleep(backoff_ms * (attempt + 1) / 1000.0)
    raise StorageConflictError(f"{operation}: retries exhausted")
