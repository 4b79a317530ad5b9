"""
accessledger/features/expiry/service.py

Expiry sweeping.

A grant whose window has elapsed is flipped to inactive the first time it is
read (lazy sweep) or when the batch sweep runs. The flip is one-way and the
write is a conditional UPDATE, so concurrent sweeps of the same grant are
harmless.
"""

from datetime import datetime
from typing import Any, Dict, Optional
import logging

from accessledger.core.metrics import grants_deactivated_total
from accessledger.features.store import service as store
from accessledger.models.grant import Grant, normalize_now


logger = logging.getLogger(__name__)


def sweep_if_expired(grant: Grant, now: Optional[datetime] = None) -> Grant:
    """
    Deactivate the grant if its window has elapsed.

    Returns the updated grant when the window has elapsed, otherwise the
    grant unchanged. Never reactivates an inactive grant.
    """
    normalized_now = normalize_now(now)
    if not grant.is_active or not grant.is_expired_at(normalized_now):
        return grant

    changed = store.deactivate_if_expired(grant.user_id, grant.product_id, normalized_now)
    if changed:
        grants_deactivated_total.inc(labels={"source": "lazy"})
        logger.info(
            "[expiry] grant expired",
            extra={
                "user_id": grant.user_id,
                "product_id": grant.product_id,
                "end_date": grant.end_date.isoformat(),
            },
        )
    # Another reader may have flipped it first; either way it is inactive now
    return grant.model_copy(update={"is_active": False})


def sweep_expired(
    now: Optional[datetime] = None,
    *,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """
    Deactivate every active grant whose window has elapsed.

    Args:
        now: Fixed timestamp for deterministic runs (defaults to now())
        limit: Optional cap on grants deactivated in one run
        dry_run: Count candidates without writing

    Returns:
        {"candidates": int, "deactivated": int, "dry_run": bool, "swept_at": iso}
    """
    normalized_now = normalize_now(now)
    candidates = store.count_expired_active(normalized_now)

    deactivated = 0
    if not dry_run and candidates:
        deactivated = store.deactivate_all_expired(normalized_now, limit=limit or None)
        grants_deactivated_total.inc(labels={"source": "sweep"}, amount=deactivated)

    logger.info(
        "[expiry] sweep complete",
        extra={"candidates": candidates, "deactivated": deactivated, "dry_run": dry_run, "limit": limit},
    )
    return {
        "candidates": candidates,
        "deactivated": deactivated,
        "dry_run": dry_run,
        "swept_at": normalized_now.isoformat(),
    }
