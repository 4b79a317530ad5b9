"""
accessledger/features/access/service.py

Per-request access decision.

States are evaluated in a fixed order; the first rule that matches wins:

1. admin caller                      -> ACTIVE (bypass, no grant needed)
2. no grant for the pair             -> NO_GRANT
3. grant inactive                    -> EXPIRED if its window elapsed, else REVOKED
4. window elapsed                    -> sweep (persist is_active=False), EXPIRED
5. non-consuming operation           -> ACTIVE, no mutation
6. consuming, quota already used up  -> QUOTA_EXCEEDED, no mutation
7. consuming                         -> atomic consume; ACTIVE on success

Denials are returned, never raised. Storage failures propagate as
StorageUnavailableError so that an outage is never reported as a denial.
"""

from datetime import datetime
from typing import Optional

from accessledger.core.logging import log_event
from accessledger.core.metrics import access_decisions_total
from accessledger.features.expiry.service import sweep_if_expired
from accessledger.features.store import service as store
from accessledger.features.usage.service import ConsumeResult, consume
from accessledger.models.access import AccessState, Decision
from accessledger.models.grant import Grant, normalize_now


def _decision(state: AccessState, grant: Optional[Grant], now: datetime, *, remaining_usage: Optional[int] = None) -> Decision:
    if grant is None:
        return Decision(state=state)
    return Decision(
        state=state,
        remaining_usage=grant.units_remaining if remaining_usage is None else remaining_usage,
        remaining_days=grant.remaining_days_at(now),
    )


def _inactive_state(grant: Grant, now: datetime) -> AccessState:
    # A swept grant stays EXPIRED on later checks; only an in-window inactive grant is REVOKED
    return AccessState.EXPIRED if grant.is_expired_at(now) else AccessState.REVOKED


def _after_refused_consume(result: ConsumeResult, now: datetime) -> Decision:
    """Map a lost conditional update onto what the store holds now."""
    current = result.grant
    if current is None:
        return Decision(state=AccessState.NO_GRANT)
    if not current.is_active:
        return _decision(_inactive_state(current, now), current, now)
    if current.is_expired_at(now):
        return _decision(AccessState.EXPIRED, current, now)
    return _decision(AccessState.QUOTA_EXCEEDED, current, now, remaining_usage=0)


def _evaluate(user_id: str, product_id: str, is_admin: bool, consuming: bool, now: datetime) -> Decision:
    if is_admin:
        return Decision(state=AccessState.ACTIVE)

    grant = store.get(user_id, product_id)
    if grant is None:
        return Decision(state=AccessState.NO_GRANT)

    if not grant.is_active:
        return _decision(_inactive_state(grant, now), grant, now)

    if grant.is_expired_at(now):
        swept = sweep_if_expired(grant, now)
        return _decision(AccessState.EXPIRED, swept, now)

    if not consuming:
        return _decision(AccessState.ACTIVE, grant, now)

    if grant.quota_exhausted:
        return _decision(AccessState.QUOTA_EXCEEDED, grant, now, remaining_usage=0)

    result = consume(grant, now)
    if result.allowed:
        return _decision(AccessState.ACTIVE, result.grant, now, remaining_usage=result.remaining_usage)
    return _after_refused_consume(result, now)


def check_access(
    user_id: str,
    product_id: str,
    *,
    is_admin: bool = False,
    consuming: bool = False,
    now: Optional[datetime] = None,
) -> Decision:
    """
    Decide whether user_id may use product_id right now.

    Args:
        user_id / product_id: identifiers already resolved by Identity/Catalog
        is_admin: principal flag from the Identity collaborator
        consuming: True if the operation uses one unit of quota
        now: Fixed timestamp for deterministic checks (defaults to now())

    Returns:
        Decision with state and, when a grant exists, remaining_usage and
        remaining_days.
    """
    normalized_now = normalize_now(now)
    decision = _evaluate(user_id, product_id, is_admin, consuming, normalized_now)

    access_decisions_total.inc(labels={"state": decision.state.value, "consuming": str(consuming).lower()})
    log_event(
        "info" if decision.allowed else "warning",
        "[access] decision",
        user_id=user_id,
        product_id=product_id,
        event_type="access.check",
        extra={
            "state": decision.state.value,
            "consuming": consuming,
            "admin_bypass": is_admin,
            "remaining_usage": decision.remaining_usage,
        },
    )
    return decision
