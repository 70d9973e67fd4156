#!/usr/bin/env python3
"""Initialize the metering database schema and seed the plan catalog."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import text

from config.settings import get_settings
from src.api.db.billing import limit_to_db
from src.core.logging import get_logger, setup_logging
from src.core.types import SubscriptionPlan
from src.data.db import close_engine, get_engine, init_schema

log = get_logger(__name__)

PLAN_CATALOG = [
    SubscriptionPlan(
        id="plan-free",
        name="Free",
        monthly_token_limit=10_000,
        price_cents=0,
        description="Individual use with a monthly token allowance",
    ),
    SubscriptionPlan(
        id="plan-pro",
        name="Pro",
        monthly_token_limit=500_000,
        price_cents=2_900,
        description="Teams with regular assistant usage",
    ),
    SubscriptionPlan(
        id="plan-enterprise",
        name="Enterprise",
        monthly_token_limit=None,
        price_cents=19_900,
        description="Unlimited tokens",
    ),
]


async def seed_plans() -> int:
    """Insert catalog plans that do not exist yet. Returns the number inserted."""
    engine = await get_engine()
    inserted = 0
    async with engine.begin() as conn:
        for plan in PLAN_CATALOG:
            result = await conn.execute(
                text(
                    """
                    INSERT INTO subscription_plans
                        (id, name, description, monthly_token_limit, price_cents, is_active)
                    VALUES
                        (:id, :name, :description, :limit, :price, :active)
                    ON CONFLICT (name) DO NOTHING
                    RETURNING id
                    """
                ),
                {
                    "id": plan.id,
                    "name": plan.name,
                    "description": plan.description,
                    "limit": limit_to_db(plan.monthly_token_limit),
                    "price": plan.price_cents,
                    "active": plan.is_active,
                },
            )
            if result.first() is not None:
                inserted += 1
                log.info("plan_seeded", plan=plan.name)
    return inserted


async def main() -> None:
    settings = get_settings()
    setup_logging(json_output=settings.log_json, level=settings.log_level)
    log.info("starting_schema_initialization")

    try:
        await init_schema()
        inserted = await seed_plans()
        log.info(
            "schema_initialization_complete",
            plans_inserted=inserted,
            default_plan=settings.default_plan_name,
        )
    except Exception as exc:
        log.error("schema_initialization_failed", error=str(exc))
        raise
    finally:
        await close_engine()


if __name__ == "__main__":
    asyncio.run(main())
