"""
Health endpoints.

Lightweight liveness and readiness probes; no secrets or stack traces in
responses.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from accessledger.core.database import check_connection, missing_tables
from accessledger.core.errors import StorageUnavailableError

logger = logging.getLogger("accessledger")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = ["grants"]


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    try:
        if not check_connection():
            return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
        missing = missing_tables(REQUIRED_TABLES)
    except StorageUnavailableError as e:
        logger.error(f"[readyz] readiness check failed: {e.message}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})
    return {"status": "ok"}
