import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0

    # Identity collaborator: callers presenting this key are admins
    ADMIN_KEY: Optional[str] = None

    # Storage retry bounds
    USAGE_MAX_RETRIES: int = 5
    GRANT_MAX_RETRIES: int = 3
    STORAGE_RETRY_BACKOFF_MS: int = 10

    # Expiry sweep worker
    SWEEP_BATCH_LIMIT: int = 0  # 0 = no limit
    SWEEP_DRY_RUN: bool = False

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("accessledger")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.USAGE_MAX_RETRIES < 1 or cfg.GRANT_MAX_RETRIES < 1:
        message = "USAGE_MAX_RETRIES and GRANT_MAX_RETRIES must be >= 1"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
