"""
Grant administration routes.

PUT and DELETE require an admin principal. GET returns the enriched view of
a single pair to an admin or to the user who holds it.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from accessledger.core.errors import NotFoundError
from accessledger.core.identity import Principal, require_admin, require_principal, require_self_or_admin
from accessledger.features.grants import service as grants
from accessledger.features.reports import service as reports
from accessledger.models.grant import EnrichedGrant, Grant

logger = logging.getLogger("accessledger")

router = APIRouter(prefix="/v1/grants", tags=["grants"])


class GrantRequest(BaseModel):
    """Product limits as read from the catalog at grant time."""
    usage_limit: int = Field(ge=0)
    access_period_days: int = Field(ge=0)


@router.put("/{user_id}/{product_id}", response_model=Grant)
def put_grant(
    user_id: str,
    product_id: str,
    body: GrantRequest,
    principal: Principal = Depends(require_admin),
) -> Grant:
    """Create or reset the grant for a pair."""
    result = grants.grant(user_id, product_id, body.usage_limit, body.access_period_days)
    logger.info(
        "grants.put",
        extra={"actor_id": principal.actor_id, "user_id": user_id, "product_id": product_id},
    )
    return result


@router.delete("/{user_id}/{product_id}")
def delete_grant(
    user_id: str,
    product_id: str,
    principal: Principal = Depends(require_admin),
) -> dict:
    result = grants.revoke(user_id, product_id)
    if result.outcome == grants.RevokeOutcome.NOT_FOUND:
        raise NotFoundError(f"No grant for user {user_id} on product {product_id}")
    logger.info(
        "grants.delete",
        extra={"actor_id": principal.actor_id, "user_id": user_id, "product_id": product_id},
    )
    return {
        "outcome": result.outcome.value,
        "user_id": result.user_id,
        "product_id": result.product_id,
        "remaining_grants": result.remaining_grants,
    }


@router.get("/{user_id}/{product_id}", response_model=EnrichedGrant)
def get_grant(
    user_id: str,
    product_id: str,
    principal: Principal = Depends(require_principal),
) -> EnrichedGrant:
    require_self_or_admin(principal, user_id)
    details = reports.get_grant_details(user_id, product_id)
    if details is None:
        raise NotFoundError(f"No grant for user {user_id} on product {product_id}")
    return details
