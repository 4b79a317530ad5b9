from fastapi import APIRouter, Depends
from pydantic import BaseModel

from accessledger.core.identity import Principal, require_principal
from accessledger.features.access.service import check_access
from accessledger.models.access import Decision

router = APIRouter(prefix="/v1/access", tags=["access"])


class AccessCheckRequest(BaseModel):
    product_id: str
    consuming: bool = False


@router.post("/check", response_model=Decision)
def post_access_check(body: AccessCheckRequest, principal: Principal = Depends(require_principal)) -> Decision:
    """
    Decide access for the calling principal.

    Denials come back as 200 with the decision body; only operational
    failures are HTTP errors.
    """
    return check_access(
        principal.user_id,
        body.product_id,
        is_admin=principal.is_admin,
        consuming=body.consuming,
    )
