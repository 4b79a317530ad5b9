from typing import List

from fastapi import APIRouter, Depends

from accessledger.core.identity import Principal, require_admin, require_principal, require_self_or_admin
from accessledger.features.reports import service as reports
from accessledger.models.grant import EnrichedGrant

router = APIRouter(prefix="/v1", tags=["reports"])


@router.get("/users/{user_id}/grants", response_model=List[EnrichedGrant])
def user_grants(user_id: str, principal: Principal = Depends(require_principal)) -> List[EnrichedGrant]:
    """All grants held by a user (dashboard view)."""
    require_self_or_admin(principal, user_id)
    return reports.list_for_user(user_id)


@router.get("/products/{product_id}/grants", response_model=List[EnrichedGrant])
def product_grants(product_id: str, principal: Principal = Depends(require_admin)) -> List[EnrichedGrant]:
    """All grants issued for a product (admin only)."""
    return reports.list_for_product(product_id)
