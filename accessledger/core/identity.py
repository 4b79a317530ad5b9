"""
Resolved principal from the Identity collaborator.

Session and token verification happen upstream. By the time a request reaches
this service the gateway has resolved the caller and forwards it as headers:

- X-User-Id: the caller's user id (required)
- X-Admin-Key: shared secret for administrative callers; must match ADMIN_KEY

The principal is trusted as given; nothing here re-validates identity.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from accessledger.core.config import settings
from accessledger.core.errors import AuthenticationError, PermissionError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The caller as resolved by the Identity collaborator."""
    user_id: str
    is_admin: bool = False
    actor_id: Optional[str] = None  # "admin:<key hash>" for admin callers


def _key_hash(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def verify_admin_key(request: Request) -> Optional[str]:
    """
    Verify the X-Admin-Key header.
    Returns the admin actor id if valid, None if absent/invalid/unconfigured.
    """
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key:
        return None
    if not hmac.compare_digest(header_key.encode(), expected_key.encode()):
        logger.warning("[identity] admin key rejected", extra={"key_hash": _key_hash(header_key)})
        return None
    return f"admin:{_key_hash(header_key)}"


def resolve_principal(request: Request) -> Optional[Principal]:
    """Build the principal from forwarded headers. Returns None (does not raise)."""
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        return None
    admin_actor = verify_admin_key(request)
    return Principal(user_id=user_id, is_admin=admin_actor is not None, actor_id=admin_actor or user_id)


def require_principal(request: Request) -> Principal:
    """
    FastAPI dependency: require a resolved principal.

    Usage:
        @router.post("/v1/access/check")
        def check(principal: Principal = Depends(require_principal)):
            ...
    """
    principal = resolve_principal(request)
    if principal is None:
        raise AuthenticationError("Missing X-User-Id: caller identity was not resolved")
    return principal


def require_admin(request: Request) -> Principal:
    """FastAPI dependency: require an administrative principal."""
    principal = require_principal(request)
    if not principal.is_admin:
        raise PermissionError("Administrative access required")
    return principal


def require_self_or_admin(principal: Principal, user_id: str) -> None:
    """Users may read their own grants; admins may read anyone's."""
    if principal.is_admin or principal.user_id == user_id:
        return
    raise PermissionError("Cannot read another user's grants")
