"""
accessledger/features/grants/service.py

Administrative grant lifecycle.

Handles:
- grant: create or fully reset the grant for a (user, product) pair
- revoke: hard-delete the grant for a pair

Product limits (usage_limit, access_period_days) come from the catalog at
call time and are copied into the grant; later catalog changes never touch
issued grants. Operations on the same pair are serialized; different pairs
never share a lock.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple
import logging
import threading

from accessledger.core.config import settings
from accessledger.core.errors import ValidationError
from accessledger.core.retry import retry_on_conflict
from accessledger.features.store import service as store
from accessledger.models.grant import Grant, normalize_now


logger = logging.getLogger(__name__)


class RevokeOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class RevokeResult:
    outcome: RevokeOutcome
    user_id: str
    product_id: str
    remaining_grants: int


class _KeyedLocks:
    """One lock per (user_id, product_id), dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], list] = {}

    @contextmanager
    def hold(self, key: Tuple[str, str]):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_pair_locks = _KeyedLocks()


def _require_id(name: str, value: Optional[str]) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    # Identifiers are resolved upstream and stored exactly as given
    return value


def grant(
    user_id: str,
    product_id: str,
    usage_limit: int,
    access_period_days: int,
    *,
    now: Optional[datetime] = None,
) -> Grant:
    """
    Grant (or re-grant) access to a product.

    Re-granting is a full reset: usage_count back to 0, a fresh window
    starting now, is_active true. Nothing carries over from the prior grant.

    Raises:
        ValidationError: empty identifiers or negative limits
        StorageUnavailableError / StorageConflictError: after bounded retries
    """
    user_id = _require_id("user_id", user_id)
    product_id = _require_id("product_id", product_id)
    if isinstance(usage_limit, bool) or not isinstance(usage_limit, int) or usage_limit < 0:
        raise ValidationError("usage_limit must be a non-negative integer")
    if isinstance(access_period_days, bool) or not isinstance(access_period_days, int) or access_period_days < 0:
        raise ValidationError("access_period_days must be a non-negative integer")

    start_date = normalize_now(now)
    end_date = start_date + timedelta(days=access_period_days)

    with _pair_locks.hold((user_id, product_id)):
        result = retry_on_conflict(
            "grant",
            lambda: store.upsert(
                user_id,
                product_id,
                usage_limit=usage_limit,
                start_date=start_date,
                end_date=end_date,
            ),
            max_attempts=settings.GRANT_MAX_RETRIES,
            backoff_ms=settings.STORAGE_RETRY_BACKOFF_MS,
        )

    logger.info(
        "[grants] granted",
        extra={
            "user_id": user_id,
            "product_id": product_id,
            "usage_limit": usage_limit,
            "access_period_days": access_period_days,
            "end_date": result.end_date.isoformat(),
        },
    )
    return result


def revoke(user_id: str, product_id: str) -> RevokeResult:
    """
    Remove the grant for a pair.

    Returns NOT_FOUND (not an exception) when there was nothing to revoke;
    the HTTP layer maps that to 404.
    """
    user_id = _require_id("user_id", user_id)
    product_id = _require_id("product_id", product_id)

    with _pair_locks.hold((user_id, product_id)):
        deleted, remaining = retry_on_conflict(
            "revoke",
            lambda: store.delete_grant(user_id, product_id),
            max_attempts=settings.GRANT_MAX_RETRIES,
            backoff_ms=settings.STORAGE_RETRY_BACKOFF_MS,
        )

    if not deleted:
        logger.warning(
            "[grants] revoke on missing grant",
            extra={"user_id": user_id, "product_id": product_id},
        )
        return RevokeResult(RevokeOutcome.NOT_FOUND, user_id, product_id, remaining)

    logger.info(
        "[grants] revoked",
        extra={"user_id": user_id, "product_id": product_id, "remaining_grants": remaining},
    )
    return RevokeResult(RevokeOutcome.SUCCESS, user_id, product_id, remaining)
