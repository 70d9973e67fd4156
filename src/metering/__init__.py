"""Metering core — ledger aggregation, quota evaluation, billing periods and access control."""

from src.metering.access import AccessPolicy, InMemoryDirectory
from src.metering.aggregator import UsageAggregator, UsageRollup, month_window, parse_month
from src.metering.billing import BillingPeriodManager, InMemoryBillingStore
from src.metering.ledger import InMemoryUsageLedger
from src.metering.meter import UsageMeter, UsageRequest
from src.metering.quota import QuotaEvaluator, QuotaStatus, WarningSession, WarningThresholds
from src.metering.reports import UsageReportService

__all__ = [
    "AccessPolicy",
    "InMemoryDirectory",
    "UsageAggregator",
    "UsageRollup",
    "month_window",
    "parse_month",
    "BillingPeriodManager",
    "InMemoryBillingStore",
    "InMemoryUsageLedger",
    "UsageMeter",
    "UsageRequest",
    "QuotaEvaluator",
    "QuotaStatus",
    "WarningSession",
    "WarningThresholds",
    "UsageReportService",
]
