"""
accessledger/features/store/service.py

Durable grant storage.

Handles:
- Keyed reads and listings over the grants table
- Replace-in-place upsert for (re-)grants
- Atomic conditional updates (usage increment, expiry deactivation)
- Translation of driver failures into StorageUnavailable / StorageConflict

Every write that depends on current state is a single conditional UPDATE;
nothing here reads a counter, compares in Python and writes it back.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from accessledger.core.database import get_db_session, grants
from accessledger.core.errors import StorageConflictError, StorageUnavailableError
from accessledger.models.grant import Grant, as_utc


logger = logging.getLogger(__name__)

# SQLSTATEs for serialization failure / deadlock (PostgreSQL)
_TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}
_TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "deadlock detected",
    "could not serialize",
    "lock timeout",
)


def _is_transient(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    message = str(orig or exc).lower()
    return any(fragment in message for fragment in _TRANSIENT_MESSAGES)


@contextmanager
def _storage_errors(operation: str, user_id: Optional[str] = None, product_id: Optional[str] = None):
    """Map driver exceptions onto the ledger's operational error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        # Only raised when a concurrent writer inserted the same pair first
        raise StorageConflictError(f"{operation}: concurrent write on grant") from exc
    except (OperationalError, InterfaceError) as exc:
        if _is_transient(exc):
            logger.warning(
                "[store] transient conflict",
                extra={"operation": operation, "user_id": user_id, "product_id": product_id},
            )
            raise StorageConflictError(f"{operation}: storage contention") from exc
        logger.error(
            "[store] storage unavailable",
            extra={"operation": operation, "user_id": user_id, "product_id": product_id, "error": str(exc.orig)},
        )
        raise StorageUnavailableError(f"{operation}: grant store unavailable") from exc


def _key(user_id: str, product_id: str):
    return and_(grants.c.user_id == user_id, grants.c.product_id == product_id)


def get(user_id: str, product_id: str) -> Optional[Grant]:
    """Load the grant for a pair, or None."""
    with _storage_errors("get", user_id, product_id):
        with get_db_session() as session:
            row = session.execute(select(grants).where(_key(user_id, product_id))).first()
            return Grant.from_row(row) if row else None


def upsert(
    user_id: str,
    product_id: str,
    *,
    usage_limit: int,
    start_date: datetime,
    end_date: datetime,
) -> Grant:
    """
    Create the grant for a pair, or reset the existing one in place.

    Runs as one transaction: UPDATE the existing row, INSERT if there was
    none. A concurrent INSERT of the same pair surfaces as
    StorageConflictError so the caller can retry.
    """
    start_date = as_utc(start_date)
    end_date = as_utc(end_date)
    values = {
        "usage_limit": usage_limit,
        "usage_count": 0,
        "start_date": start_date,
        "end_date": end_date,
        "last_used_at": None,
        "is_active": True,
        "updated_at": start_date,
    }
    with _storage_errors("upsert", user_id, product_id):
        with get_db_session() as session:
            result = session.execute(update(grants).where(_key(user_id, product_id)).values(**values))
            if result.rowcount == 0:
                session.execute(
                    insert(grants).values(
                        user_id=user_id,
                        product_id=product_id,
                        created_at=start_date,
                        **values,
                    )
                )
            row = session.execute(select(grants).where(_key(user_id, product_id))).one()
            return Grant.from_row(row)


def delete_grant(user_id: str, product_id: str) -> Tuple[bool, int]:
    """
    Hard-delete the grant for a pair.

    Returns (deleted, remaining_grants_for_user). The count is read in the
    same transaction as the delete, so a committed delete always comes back
    with its count.
    """
    with _storage_errors("delete", user_id, product_id):
        with get_db_session() as session:
            deleted = (session.execute(delete(grants).where(_key(user_id, product_id))).rowcount or 0) > 0
            remaining = session.execute(
                select(func.count()).select_from(grants).where(grants.c.user_id == user_id)
            ).scalar() or 0
            return deleted, remaining


def increment_if_available(user_id: str, product_id: str, now: datetime) -> Optional[Grant]:
    """
    Consume one unit: increment usage_count only if usage_count < usage_limit
    and the window is still open at now.

    Single conditional UPDATE ... RETURNING. Returns the updated grant, or
    None if the grant is missing, inactive, elapsed, or out of quota.
    """
    now = as_utc(now)
    stmt = (
        update(grants)
        .where(_key(user_id, product_id))
        .where(grants.c.is_active.is_(True))
        .where(grants.c.end_date > now)
        .where(grants.c.usage_count < grants.c.usage_limit)
        .values(usage_count=grants.c.usage_count + 1, last_used_at=now, updated_at=now)
        .returning(*grants.c)
    )
    with _storage_errors("increment", user_id, product_id):
        with get_db_session() as session:
            row = session.execute(stmt).first()
            return Grant.from_row(row) if row else None


def deactivate_if_expired(user_id: str, product_id: str, now: datetime) -> bool:
    """Flip is_active to False if the window has elapsed. Idempotent, one-way."""
    now = as_utc(now)
    stmt = (
        update(grants)
        .where(_key(user_id, product_id))
        .where(grants.c.is_active.is_(True))
        .where(grants.c.end_date <= now)
        .values(is_active=False, updated_at=now)
    )
    with _storage_errors("deactivate", user_id, product_id):
        with get_db_session() as session:
            result = session.execute(stmt)
            return (result.rowcount or 0) > 0


def count_expired_active(now: datetime) -> int:
    now = as_utc(now)
    with _storage_errors("count_expired"):
        with get_db_session() as session:
            return session.execute(
                select(func.count())
                .select_from(grants)
                .where(grants.c.is_active.is_(True))
                .where(grants.c.end_date <= now)
            ).scalar() or 0


def deactivate_all_expired(now: datetime, limit: Optional[int] = None) -> int:
    """Deactivate active grants whose window has elapsed. Returns rows changed."""
    now = as_utc(now)
    expired = and_(grants.c.is_active.is_(True), grants.c.end_date <= now)
    with _storage_errors("deactivate_all"):
        with get_db_session() as session:
            stmt = update(grants).where(expired).values(is_active=False, updated_at=now)
            if limit:
                ids = session.execute(
                    select(grants.c.id).where(expired).order_by(grants.c.end_date).limit(limit)
                ).scalars().all()
                if not ids:
                    return 0
                stmt = stmt.where(grants.c.id.in_(ids))
            result = session.execute(stmt)
            return result.rowcount or 0


def list_for_user(user_id: str) -> List[Grant]:
    with _storage_errors("list_for_user", user_id=user_id):
        with get_db_session() as session:
            rows = session.execute(
                select(grants)
                .where(grants.c.user_id == user_id)
                .order_by(grants.c.start_date, grants.c.id)
            ).all()
            return [Grant.from_row(row) for row in rows]


def list_for_product(product_id: str) -> List[Grant]:
    with _storage_errors("list_for_product", product_id=product_id):
        with get_db_session() as session:
            rows = session.execute(
                select(grants)
                .where(grants.c.product_id == product_id)
                .order_by(grants.c.start_date, grants.c.id)
            ).all()
            return [Grant.from_row(row) for row in rows]


def count_for_user(user_id: str) -> int:
    with _storage_errors("count_for_user", user_id=user_id):
        with get_db_session() as session:
            return session.execute(
                select(func.count()).select_from(grants).where(grants.c.user_id == user_id)
            ).scalar() or 0
