"""FastAPI dependency injection — shared instances for routes."""

from __future__ import annotations

from typing import Any

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import get_settings
from src.api.db.billing import SqlBillingStore
from src.api.db.directory import SqlDirectory
from src.api.db.ledger import SqlUsageLedger
from src.api.middleware import get_current_user
from src.core.interfaces import BillingStore, Directory, UsageLedger
from src.data.db import get_engine
from src.metering.billing import BillingPeriodManager
from src.metering.meter import UsageMeter
from src.metering.quota import QuotaEvaluator, WarningThresholds
from src.metering.reports import UsageReportService

# ── Database engine ───────────────────────────────────────────────


async def get_db_engine() -> AsyncEngine:
    """Provide the async database engine."""
    return await get_engine()


# ── Repositories ──────────────────────────────────────────────────


async def get_ledger(engine: AsyncEngine = Depends(get_db_engine)) -> UsageLedger:
    return SqlUsageLedger(engine)


async def get_directory(engine: AsyncEngine = Depends(get_db_engine)) -> Directory:
    return SqlDirectory(engine)


async def get_billing_store(engine: AsyncEngine = Depends(get_db_engine)) -> BillingStore:
    return SqlBillingStore(engine)


# ── Services ──────────────────────────────────────────────────────


def get_evaluator() -> QuotaEvaluator:
    return QuotaEvaluator(WarningThresholds.from_settings(get_settings()))


async def get_report_service(
    directory: Directory = Depends(get_directory),
    ledger: UsageLedger = Depends(get_ledger),
    billing: BillingStore = Depends(get_billing_store),
    evaluator: QuotaEvaluator = Depends(get_evaluator),
) -> UsageReportService:
    settings = get_settings()
    return UsageReportService(
        directory,
        ledger,
        billing,
        evaluator=evaluator,
        default_plan_name=settings.default_plan_name,
        poll_interval_seconds=settings.usage_poll_interval_seconds,
        history_max_days=settings.usage_history_max_days,
    )


async def get_billing_manager(
    billing: BillingStore = Depends(get_billing_store),
    ledger: UsageLedger = Depends(get_ledger),
) -> BillingPeriodManager:
    settings = get_settings()
    return BillingPeriodManager(
        billing,
        ledger,
        default_plan_name=settings.default_plan_name,
        period_days=settings.billing_period_days,
    )


async def get_usage_meter(
    directory: Directory = Depends(get_directory),
    ledger: UsageLedger = Depends(get_ledger),
    billing: BillingStore = Depends(get_billing_store),
    manager: BillingPeriodManager = Depends(get_billing_manager),
    evaluator: QuotaEvaluator = Depends(get_evaluator),
) -> UsageMeter:
    return UsageMeter(directory, ledger, billing, manager, evaluator=evaluator)


# ── Auth dependency ───────────────────────────────────────────────


async def require_auth(user: dict[str, Any] = Depends(get_current_user)) -> str:
    """Return the user_id of the authenticated caller."""
    return str(user["sub"])
