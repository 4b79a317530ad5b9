"""
accessledger/features/reports/service.py

Read-only grant listings for dashboards.

Both the per-user and per-product views are projections over the single
grants table. Derived fields are computed at read time and nothing is written
back: an elapsed grant shows is_expired=True here even if no check has swept
it yet.
"""

from datetime import datetime
from typing import List, Optional

from accessledger.features.store import service as store
from accessledger.models.grant import EnrichedGrant, normalize_now


def list_for_user(user_id: str, now: Optional[datetime] = None) -> List[EnrichedGrant]:
    normalized_now = normalize_now(now)
    return [EnrichedGrant.from_grant(g, normalized_now) for g in store.list_for_user(user_id)]


def list_for_product(product_id: str, now: Optional[datetime] = None) -> List[EnrichedGrant]:
    normalized_now = normalize_now(now)
    return [EnrichedGrant.from_grant(g, normalized_now) for g in store.list_for_product(product_id)]


def get_grant_details(user_id: str, product_id: str, now: Optional[datetime] = None) -> Optional[EnrichedGrant]:
    """Single-pair view; None when the pair holds no grant."""
    grant = store.get(user_id, product_id)
    if grant is None:
        return None
    return EnrichedGrant.from_grant(grant, normalize_now(now))
