"""Usage endpoints — organization/team rollups, billing setup, caller usage."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, status as http_status

from src.api.deps import (
    get_billing_manager,
    get_directory,
    get_report_service,
    get_usage_meter,
    require_auth,
)
from src.api.models.schemas import (
    AllowanceResponse,
    CheckUsageRequest,
    CurrentMonthOut,
    CurrentUsageOut,
    CurrentUsageResponse,
    OrganizationRef,
    OrganizationUsageOut,
    OrganizationUsageResponse,
    OrgMemberUsageOut,
    QuotaOut,
    RecordUsageRequest,
    SetupBillingResponse,
    SubscriptionCreatedOut,
    SubscriptionSummaryOut,
    TeamMemberUsageOut,
    TeamRef,
    TeamUsageDetailOut,
    TeamUsageOut,
    TeamUsageResponse,
    UsageEventOut,
    UsageHistoryResponse,
)
from src.core.constants import (
    MSG_BILLING_ALREADY_SET_UP,
    MSG_BILLING_SETUP_COMPLETE,
    USAGE_HISTORY_DEFAULT_DAYS,
    USAGE_HISTORY_DEFAULT_LIMIT,
)
from src.core.interfaces import Directory
from src.core.types import TimeRange, UsageEvent
from src.metering.aggregator import UsageRollup
from src.metering.billing import BillingPeriodManager
from src.metering.meter import UsageMeter, UsageRequest
from src.metering.reports import QuotaOverlay, UsageReportService

router = APIRouter(prefix="/usage", tags=["usage"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _current_month(rollup: UsageRollup, window: TimeRange) -> CurrentMonthOut:
    return CurrentMonthOut(
        total_tokens=rollup.total_tokens,
        total_events=rollup.total_events,
        period_start=window.start,
        period_end=window.end,
    )


def _quota_out(overlay: QuotaOverlay) -> QuotaOut:
    q = overlay.quota
    return QuotaOut(
        id=q.id,
        scope=q.scope.value,
        scope_id=q.scope_id,
        quota_type=q.quota_type,
        limit=q.limit,
        reset_period=q.reset_period,
        is_active=q.is_active,
        used=overlay.status.used,
        percentage=round(overlay.status.percentage, 2),
        warning_level=overlay.status.warning_level.value,
    )


def _event_out(e: UsageEvent) -> UsageEventOut:
    return UsageEventOut(
        id=e.id,
        feature=str(getattr(e.feature, "value", e.feature)),
        tokens_used=e.tokens_used,
        endpoint=e.endpoint,
        model_used=e.model_used,
        team_id=e.team_id,
        created_at=e.created_at,
    )


@router.get("/organization", response_model=OrganizationUsageResponse)
async def get_organization_usage(
    month: str | None = Query(default=None, description="Calendar month, YYYY-MM"),
    user_id: str = Depends(require_auth),
    service: UsageReportService = Depends(get_report_service),
) -> OrganizationUsageResponse:
    """Organization-wide usage for the current (or requested) month. org_admin only."""
    report = await service.organization_report(user_id, _now(), month=month)
    return OrganizationUsageResponse(
        organization=OrganizationRef(id=report.organization.id, name=report.organization.name),
        usage=OrganizationUsageOut(
            current_month=_current_month(report.rollup, report.window),
            feature_breakdown=report.rollup.feature_breakdown,
            daily_usage=report.rollup.daily_usage,
            teams=[
                TeamUsageOut(
                    team_id=t.team_id,
                    team_name=t.team_name,
                    tokens_used=t.tokens_used,
                    events_count=t.events_count,
                )
                for t in report.teams
            ],
            members=[
                OrgMemberUsageOut(
                    user_id=m.user_id,
                    full_name=m.full_name,
                    org_role=m.role,
                    tokens_used=m.tokens_used,
                    events_count=m.events_count,
                )
                for m in report.members
            ],
            unassigned_tokens=report.unassigned_tokens,
        ),
        quotas=[_quota_out(q) for q in report.quotas],
    )


@router.get("/team/{team_id}", response_model=TeamUsageResponse)
async def get_team_usage(
    team_id: str,
    month: str | None = Query(default=None, description="Calendar month, YYYY-MM"),
    user_id: str = Depends(require_auth),
    service: UsageReportService = Depends(get_report_service),
) -> TeamUsageResponse:
    """Team usage. Requires team_admin, or org_admin of the owning organization."""
    report = await service.team_report(user_id, team_id, _now(), month=month)
    return TeamUsageResponse(
        team=TeamRef(
            id=report.team.id,
            name=report.team.name,
            organization_id=report.team.organization_id,
        ),
        usage=TeamUsageDetailOut(
            current_month=_current_month(report.rollup, report.window),
            feature_breakdown=report.rollup.feature_breakdown,
            daily_usage=report.rollup.daily_usage,
            members=[
                TeamMemberUsageOut(
                    user_id=m.user_id,
                    full_name=m.full_name,
                    team_role=m.role,
                    tokens_used=m.tokens_used,
                    events_count=m.events_count,
                )
                for m in report.members
            ],
        ),
        quotas=[_quota_out(q) for q in report.quotas],
        user_role=report.user_role.value,
    )


@router.post("/setup-billing", response_model=SetupBillingResponse, response_model_exclude_unset=True)
async def setup_billing(
    user_id: str = Depends(require_auth),
    manager: BillingPeriodManager = Depends(get_billing_manager),
    directory: Directory = Depends(get_directory),
) -> SetupBillingResponse:
    """Assign the default plan to the caller. Repeat calls are no-ops."""
    profile = await directory.get_profile(user_id)
    result = await manager.setup_default_subscription(
        user_id,
        organization_id=profile.organization_id if profile else None,
        now=_now(),
    )

    plan = result.plan
    if not result.created or plan is None:
        return SetupBillingResponse(
            success=True,
            message=MSG_BILLING_ALREADY_SET_UP,
            subscription_id=result.subscription.id,
        )

    sub = result.subscription
    return SetupBillingResponse(
        success=True,
        message=MSG_BILLING_SETUP_COMPLETE,
        subscription=SubscriptionCreatedOut(
            id=sub.id,
            plan_name=plan.name,
            monthly_token_limit=plan.monthly_token_limit,
            current_period_start=sub.period_start,
            current_period_end=sub.period_end,
        ),
    )


@router.get("/current", response_model=CurrentUsageResponse)
async def get_current_usage(
    user_id: str = Depends(require_auth),
    service: UsageReportService = Depends(get_report_service),
) -> CurrentUsageResponse:
    """Caller's consumption in the active subscription window."""
    current = await service.current_usage(user_id, _now())
    status = current.status
    return CurrentUsageResponse(
        usage=CurrentUsageOut(
            current=status.used,
            limit=status.limit,
            remaining=status.remaining,
            overage=status.overage,
            percentage=round(status.percentage, 2),
            warning_level=status.warning_level.value,
            is_unlimited=status.is_unlimited,
            period_start=current.period_start,
            period_end=current.period_end,
        ),
        subscription=SubscriptionSummaryOut(
            plan_name=current.plan_name,
            status=current.subscription_status,
        ),
        poll_interval_seconds=current.poll_interval_seconds,
    )


@router.get("/history", response_model=UsageHistoryResponse)
async def get_usage_history(
    days: int = Query(default=USAGE_HISTORY_DEFAULT_DAYS),
    limit: int = Query(default=USAGE_HISTORY_DEFAULT_LIMIT),
    user_id: str = Depends(require_auth),
    service: UsageReportService = Depends(get_report_service),
) -> UsageHistoryResponse:
    """Caller's recent events with daily, feature and model breakdowns."""
    history = await service.usage_history(user_id, _now(), days=days, limit=limit)
    return UsageHistoryResponse(
        period_start=history.window.start,
        period_end=history.window.end,
        total_tokens=history.total_tokens,
        total_events=history.total_events,
        daily_usage=history.daily_usage,
        feature_breakdown=history.feature_breakdown,
        model_breakdown=history.model_breakdown,
        recent_events=[_event_out(e) for e in history.recent_events],
    )


@router.post("/events", response_model=UsageEventOut, status_code=http_status.HTTP_201_CREATED)
async def record_usage(
    body: RecordUsageRequest,
    user_id: str = Depends(require_auth),
    meter: UsageMeter = Depends(get_usage_meter),
) -> UsageEventOut:
    """Meter one request for the caller. Sets up billing on first use."""
    event = await meter.record_usage(
        user_id,
        UsageRequest(
            feature=body.feature,
            tokens_used=body.tokens_used,
            endpoint=body.endpoint,
            model_used=body.model_used,
            request_id=body.request_id,
            team_id=body.team_id,
        ),
        now=_now(),
    )
    return _event_out(event)


@router.post("/check", response_model=AllowanceResponse)
async def check_usage(
    body: CheckUsageRequest,
    user_id: str = Depends(require_auth),
    meter: UsageMeter = Depends(get_usage_meter),
) -> AllowanceResponse:
    """Would a request needing ``tokens_needed`` tokens stay within the plan limit?"""
    allowance = await meter.enforce(user_id, body.tokens_needed, now=_now())
    quota = allowance.status
    return AllowanceResponse(
        allowed=allowance.allowed,
        message=allowance.message,
        current=quota.used,
        limit=quota.limit,
        remaining=quota.remaining,
        percentage=round(quota.percentage, 2),
        warning_level=quota.warning_level.value,
        is_unlimited=quota.is_unlimited,
    )
