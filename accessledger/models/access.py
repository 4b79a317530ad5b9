"""
accessledger/models/access.py

Access decision returned by the guard for every protected operation.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, computed_field


class AccessState(str, Enum):
    """Outcome of an access check. Only ACTIVE allows the operation."""
    NO_GRANT = "NO_GRANT"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    REVOKED = "REVOKED"


class Decision(BaseModel):
    """
    Decision is a business outcome, never an error.

    remaining_usage / remaining_days are None when there is no grant to
    report on (admin bypass, NO_GRANT).
    """
    model_config = ConfigDict(frozen=True)

    state: AccessState
    remaining_usage: Optional[int] = None
    remaining_days: Optional[int] = None

    @computed_field
    @property
    def allowed(self) -> bool:
        return self.state == AccessState.ACTIVE
