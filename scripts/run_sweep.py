from __future__ import annotations

"""Run one expiration sweep against the configured stores and exit.

Usage (module mode):

    python -m scripts.run_sweep                 # sweep as of now
    python -m scripts.run_sweep --as-of 2026-01-01T00:00:00+00:00

Useful from cron when the in-process sweeper is disabled
(``SWEEPER_ENABLED=false``), e.g. with several API replicas.
"""

import argparse
import asyncio
import logging
from datetime import datetime, timezone

from whisperwalls.core.config import settings
from whisperwalls.db.astra_client import init_astra_db
from whisperwalls.services.expiration_sweeper import SweepResult
from whisperwalls.services.registry import ServiceRegistry

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def _parse_as_of(raw: str | None) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def run_once(as_of: datetime) -> SweepResult:
    if settings.STORE_BACKEND.lower() == "astra":
        await init_astra_db()
    registry = ServiceRegistry.from_settings(settings)
    return await registry.sweeper.sweep(as_of)


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete expired whispers and old mood history.")
    parser.add_argument("--as-of", help="ISO-8601 timestamp to sweep as of (default: now)")
    args = parser.parse_args()

    result = asyncio.run(run_once(_parse_as_of(args.as_of)))
    logger.info("Sweep result: %s", result.model_dump())


if __name__ == "__main__":
    main()
