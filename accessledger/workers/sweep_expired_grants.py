"""Batch expiry sweep: deactivate every grant whose window has elapsed."""
import argparse
import logging
from datetime import datetime
from typing import Optional

from accessledger.core.config import settings
from accessledger.core.logging import configure_logging
from accessledger.features.expiry.service import sweep_expired

logger = logging.getLogger("accessledger.workers.sweep")


def run_sweep(
    *,
    limit: int | None = None,
    dry_run: bool | None = None,
    now: Optional[datetime] = None,
) -> dict:
    batch_limit = limit if limit is not None else int(settings.SWEEP_BATCH_LIMIT or 0)
    dry = dry_run if dry_run is not None else bool(settings.SWEEP_DRY_RUN)

    result = sweep_expired(now, limit=batch_limit or None, dry_run=dry)
    logger.info(
        "[sweep] expired grants",
        extra={"limit": batch_limit, "dry_run": dry, "candidates": result["candidates"], "deactivated": result["deactivated"]},
    )
    return result


def main(argv: list[str] | None = None) -> dict:
    parser = argparse.ArgumentParser(description="Deactivate grants whose access window has elapsed.")
    parser.add_argument("--limit", type=int, default=None, help="Max grants to deactivate (0 = no limit)")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Count candidates without writing")
    args = parser.parse_args(argv)
    return run_sweep(limit=args.limit, dry_run=args.dry_run)


if __name__ == "__main__":
    configure_logging(settings.ENV)
    result = main()
    print(result)
