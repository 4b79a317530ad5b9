"""
accessledger/models/grant.py

Grant model: a time-windowed, quota-bound authorization for one user to use
one product.
"""

import math
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict

SECONDS_PER_DAY = 86400


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)



def normalize_now(now: Optional[datetime] = None) -> datetime:
    """Current UTC time when now is None, otherwise now coerced to UTC."""
    if now is None:
        return datetime.now(timezone.utc)
    return as_utc(now)

class Grant(BaseModel):
    """
    Grant is the ledger record for one (user_id, product_id) pair.

    Fields:
    - start_date / end_date: access window, end_date = start_date + access_period_days
    - usage_limit: fixed at grant time from the product's catalog entry
    - usage_count: consumed actions, always 0 <= usage_count <= usage_limit
    - last_used_at: last successful consumption (None if never used)
    - is_active: False once swept as expired
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    product_id: str
    start_date: datetime
    end_date: datetime
    usage_limit: int
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row) -> "Grant":
        return cls(
            user_id=row.user_id,
            product_id=row.product_id,
            start_date=as_utc(row.start_date),
            end_date=as_utc(row.end_date),
            usage_limit=int(row.usage_limit),
            usage_count=int(row.usage_count),
            last_used_at=as_utc(row.last_used_at),
            is_active=bool(row.is_active),
        )

    @property
    def units_remaining(self) -> int:
        return max(0, self.usage_limit - self.usage_count)

    @property
    def quota_exhausted(self) -> bool:
        return self.usage_count >= self.usage_limit

    def is_expired_at(self, now: datetime) -> bool:
        # end_date itself is outside the window, so a zero-day grant is expired at once
        return now >= self.end_date

    def remaining_days_at(self, now: datetime) -> int:
        if self.is_expired_at(now):
            return 0
        return math.ceil((self.end_date - now).total_seconds() / SECONDS_PER_DAY)


class EnrichedGrant(Grant):
    """Read projection of a Grant with fields derived at read time."""

    is_expired: bool
    remaining_days: int
    remaining_usage: int

    @classmethod
    def from_grant(cls, grant: Grant, now: datetime) -> "EnrichedGrant":
        return cls(
            **grant.model_dump(),
            is_expired=grant.is_expired_at(now),
            remaining_days=grant.remaining_days_at(now),
            remaining_usage=grant.units_remaining,
        )
