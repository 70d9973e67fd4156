"""Pydantic V2 request/response schemas for the metering API."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


# ── Shared Usage Pieces ──────────────────────────────────────────

class CurrentMonthOut(BaseModel):
    total_tokens: int
    total_events: int
    period_start: datetime
    period_end: datetime


class TeamUsageOut(BaseModel):
    team_id: str
    team_name: str
    tokens_used: int
    events_count: int


class OrgMemberUsageOut(BaseModel):
    user_id: str
    full_name: str
    org_role: str
    tokens_used: int
    events_count: int


class TeamMemberUsageOut(BaseModel):
    user_id: str
    full_name: str
    team_role: str
    tokens_used: int
    events_count: int


class QuotaOut(BaseModel):
    """Configured quota with its current evaluation."""

    id: str
    scope: str
    scope_id: str
    quota_type: str
    limit: int
    reset_period: str
    is_active: bool
    used: int
    percentage: float
    warning_level: str


# ── Organization / Team Views ────────────────────────────────────

class OrganizationRef(BaseModel):
    id: str
    name: str


class OrganizationUsageOut(BaseModel):
    current_month: CurrentMonthOut
    feature_breakdown: dict[str, int] = Field(default_factory=dict)
    daily_usage: dict[date, int] = Field(default_factory=dict)
    teams: list[TeamUsageOut] = Field(default_factory=list)
    members: list[OrgMemberUsageOut] = Field(default_factory=list)
    unassigned_tokens: int = 0


class OrganizationUsageResponse(BaseModel):
    organization: OrganizationRef
    usage: OrganizationUsageOut
    quotas: list[QuotaOut] = Field(default_factory=list)


class TeamRef(BaseModel):
    id: str
    name: str
    organization_id: str


class TeamUsageDetailOut(BaseModel):
    current_month: CurrentMonthOut
    feature_breakdown: dict[str, int] = Field(default_factory=dict)
    daily_usage: dict[date, int] = Field(default_factory=dict)
    members: list[TeamMemberUsageOut] = Field(default_factory=list)


class TeamUsageResponse(BaseModel):
    team: TeamRef
    usage: TeamUsageDetailOut
    quotas: list[QuotaOut] = Field(default_factory=list)
    user_role: str


# ── Billing Setup ────────────────────────────────────────────────

class SubscriptionCreatedOut(BaseModel):
    id: str
    plan_name: str
    monthly_token_limit: int | None  # None = unlimited
    current_period_start: datetime
    current_period_end: datetime


class SetupBillingResponse(BaseModel):
    """First call carries ``subscription``; repeat calls carry ``subscription_id``."""

    success: bool = True
    message: str
    subscription: SubscriptionCreatedOut | None = None
    subscription_id: str | None = None


# ── Caller's Own Usage ───────────────────────────────────────────

class CurrentUsageOut(BaseModel):
    current: int
    limit: int | None
    remaining: int | None
    overage: int
    percentage: float
    warning_level: str
    is_unlimited: bool
    period_start: datetime
    period_end: datetime


class SubscriptionSummaryOut(BaseModel):
    plan_name: str
    status: str


class CurrentUsageResponse(BaseModel):
    usage: CurrentUsageOut
    subscription: SubscriptionSummaryOut
    poll_interval_seconds: int


class UsageEventOut(BaseModel):
    id: str
    feature: str
    tokens_used: int
    endpoint: str = ""
    model_used: str | None = None
    team_id: str | None = None
    created_at: datetime


class UsageHistoryResponse(BaseModel):
    period_start: datetime
    period_end: datetime
    total_tokens: int
    total_events: int
    daily_usage: dict[date, dict[str, int]] = Field(default_factory=dict)
    feature_breakdown: dict[str, int] = Field(default_factory=dict)
    model_breakdown: dict[str, int] = Field(default_factory=dict)
    recent_events: list[UsageEventOut] = Field(default_factory=list)


# ── Plans ────────────────────────────────────────────────────────

class PlanOut(BaseModel):
    id: str
    name: str
    description: str = ""
    monthly_token_limit: int | None  # None = unlimited
    price_cents: int


# ── Metering Write Path ──────────────────────────────────────────

class RecordUsageRequest(BaseModel):
    feature: str = Field(min_length=1)
    tokens_used: int = Field(ge=0)
    endpoint: str = ""
    model_used: str | None = None
    request_id: str | None = None
    team_id: str | None = None


class CheckUsageRequest(BaseModel):
    tokens_needed: int = Field(default=0, ge=0)


class AllowanceResponse(BaseModel):
    allowed: bool
    message: str = ""
    current: int
    limit: int | None
    remaining: int | None
    percentage: float
    warning_level: str
    is_unlimited: bool


# ── Generic ───────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "tokenmeter"
    version: str = "0.1.0"
    environment: str = "dev"


class ErrorResponse(BaseModel):
    detail: str
