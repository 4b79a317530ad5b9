import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

# Load env from the working directory's .env (tests configure the environment themselves)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

# Import after dotenv is loaded
from accessledger.core.config import settings, validate_config
from accessledger.core.database import create_all_tables, dispose_engine
from accessledger.core.errors import (
    AppError,
    StorageUnavailableError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from accessledger.core.logging import configure_logging
from accessledger.core.middleware.metrics import MetricsMiddleware
from accessledger.core.middleware.request_id import RequestIdMiddleware
from accessledger.api import access, grants, health, metrics, reports

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("accessledger")
    logger.info("Starting access ledger...")
    try:
        create_all_tables()
    except StorageUnavailableError as e:
        # Keep serving so /readyz can report the outage
        logger.error(f"[startup] grant store unavailable: {e.message}")
    try:
        yield
    finally:
        dispose_engine()
        logger.info("Stopping access ledger...")


app = FastAPI(title="Access Ledger", lifespan=lifespan)

# Middlewares
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(grants.router)
app.include_router(access.router)
app.include_router(reports.router)
app.include_router(health.router)
app.include_router(metrics.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "accessledger.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.ENV == "development",
    )
