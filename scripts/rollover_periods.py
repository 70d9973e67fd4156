#!/usr/bin/env python3
"""Roll over every billing period that has ended.

Intended to be run by an external scheduler (cron, k8s CronJob):
    python scripts/rollover_periods.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_settings
from src.api.db.billing import SqlBillingStore
from src.api.db.ledger import SqlUsageLedger
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine
from src.metering.billing import BillingPeriodManager

log = get_logger(__name__)


async def main() -> None:
    settings = get_settings()
    setup_logging(json_output=settings.log_json, level=settings.log_level)

    try:
        engine = await get_engine()
        manager = BillingPeriodManager(
            SqlBillingStore(engine),
            SqlUsageLedger(engine),
            default_plan_name=settings.default_plan_name,
            period_days=settings.billing_period_days,
        )
        opened = await manager.rollover_due()
        log.info("rollover_run_complete", periods_opened=len(opened))
    except Exception as exc:
        log.error("rollover_run_failed", error=str(exc))
        raise
    finally:
        await close_engine()


if __name__ == "__main__":
    asyncio.run(main())
