"""
accessledger/features/usage/service.py

Usage metering.

consume() is a single atomic conditional increment at the storage layer:
"add one to usage_count only if usage_count < usage_limit". With R units
left and N concurrent callers exactly min(N, R) succeed, whatever the
interleaving. Contention-driven storage conflicts are retried a bounded
number of times and then raised; they are never reported as a denial.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from accessledger.core.config import settings
from accessledger.core.retry import retry_on_conflict
from accessledger.features.store import service as store
from accessledger.models.grant import Grant, normalize_now


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumeResult:
    """
    allowed: whether this call consumed a unit
    remaining_usage: units left after the call
    grant: the stored grant after the call (None if it no longer exists)
    """
    allowed: bool
    remaining_usage: int
    grant: Optional[Grant]


def consume(grant: Grant, now: Optional[datetime] = None) -> ConsumeResult:
    """
    Consume one unit of the grant's quota.

    Args:
        grant: The grant as last loaded by the caller (only its key is trusted)
        now: Timestamp recorded as last_used_at (defaults to now())

    Returns:
        ConsumeResult; allowed=False when the quota is exhausted, the window
        has elapsed, or the grant was deactivated/removed concurrently.

    Raises:
        StorageConflictError: contention persisted past USAGE_MAX_RETRIES
        StorageUnavailableError: the store is unreachable
    """
    normalized_now = normalize_now(now)

    def _attempt() -> Optional[Grant]:
        return store.increment_if_available(grant.user_id, grant.product_id, normalized_now)

    updated = retry_on_conflict(
        "consume",
        _attempt,
        max_attempts=settings.USAGE_MAX_RETRIES,
        backoff_ms=settings.STORAGE_RETRY_BACKOFF_MS,
    )
    if updated is not None:
        logger.debug(
            "[usage] consumed",
            extra={
                "user_id": grant.user_id,
                "product_id": grant.product_id,
                "usage_count": updated.usage_count,
                "usage_limit": updated.usage_limit,
            },
        )
        return ConsumeResult(allowed=True, remaining_usage=updated.units_remaining, grant=updated)

    # Condition failed: report what the store holds now
    current = retry_on_conflict(
        "consume.reload",
        lambda: store.get(grant.user_id, grant.product_id),
        max_attempts=settings.USAGE_MAX_RETRIES,
        backoff_ms=settings.STORAGE_RETRY_BACKOFF_MS,
    )
    logger.info(
        "[usage] consume refused",
        extra={
            "user_id": grant.user_id,
            "product_id": grant.product_id,
            "grant_present": current is not None,
            "usage_count": current.usage_count if current else None,
        },
    )
    if current is None:
        return ConsumeResult(allowed=False, remaining_usage=0, grant=None)
    return ConsumeResult(allowed=False, remaining_usage=current.units_remaining, grant=current)
