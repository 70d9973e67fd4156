"""System-wide shared types — the single source of truth for all data structures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


def ensure_utc(ts: datetime) -> datetime:
    """Return ``ts`` as an aware UTC datetime. Naive values are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────

class Feature(str, Enum):
    CHAT = "chat"
    REFINE = "refine"
    ASSESS = "assess"
    GUIDED_REFINE = "guided_refine"
    TEMPLATE = "template"


class OrgRole(str, Enum):
    ORG_ADMIN = "org_admin"
    MEMBER = "member"


class TeamRole(str, Enum):
    TEAM_ADMIN = "team_admin"
    MEMBER = "member"
    VIEWER = "viewer"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class BillingPeriodStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class QuotaScope(str, Enum):
    ORGANIZATION = "organization"
    TEAM = "team"


class WarningLevel(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ── Ledger ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class UsageEvent:
    """One immutable token-consumption record."""

    id: str
    user_id: str
    organization_id: str
    feature: str
    tokens_used: int
    created_at: datetime
    team_id: str | None = None
    subscription_id: str | None = None
    endpoint: str = ""
    model_used: str | None = None
    request_id: str | None = None

    def __post_init__(self) -> None:
        if self.tokens_used < 0:
            msg = f"tokens_used cannot be negative: {self.tokens_used}"
            raise ValueError(msg)
        if not self.organization_id:
            msg = f"organization_id is required for usage event {self.id}"
            raise ValueError(msg)
        if not self.user_id:
            msg = f"user_id is required for usage event {self.id}"
            raise ValueError(msg)
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.start >= self.end:
            msg = f"time range start must precede end: {self.start} >= {self.end}"
            raise ValueError(msg)

    def contains(self, ts: datetime) -> bool:
        return self.start <= ensure_utc(ts) < self.end


@dataclass(frozen=True)
class ScopeFilter:
    """Ledger selection: an organization, optionally narrowed by team or user.

    A user-only filter is allowed for per-subscriber billing totals.
    """

    organization_id: str | None = None
    team_id: str | None = None
    user_id: str | None = None

    def __post_init__(self) -> None:
        if not self.organization_id and not self.user_id:
            msg = "scope filter needs an organization_id or a user_id"
            raise ValueError(msg)

    @classmethod
    def for_organization(cls, organization_id: str) -> ScopeFilter:
        return cls(organization_id=organization_id)

    @classmethod
    def for_team(cls, organization_id: str, team_id: str) -> ScopeFilter:
        return cls(organization_id=organization_id, team_id=team_id)

    @classmethod
    def for_user(cls, user_id: str) -> ScopeFilter:
        return cls(user_id=user_id)

    def matches(self, event: UsageEvent) -> bool:
        if self.organization_id and event.organization_id != self.organization_id:
            return False
        if self.team_id and event.team_id != self.team_id:
            return False
        if self.user_id and event.user_id != self.user_id:
            return False
        return True


# ── Plans & Billing ──────────────────────────────────────────────

@dataclass(frozen=True)
class SubscriptionPlan:
    """Read-only plan reference data. ``monthly_token_limit=None`` is unlimited."""

    id: str
    name: str
    monthly_token_limit: int | None
    price_cents: int
    is_active: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        if self.monthly_token_limit is not None and self.monthly_token_limit <= 0:
            msg = f"monthly_token_limit must be > 0 or unlimited: {self.monthly_token_limit}"
            raise ValueError(msg)
        if self.price_cents < 0:
            msg = f"price_cents cannot be negative: {self.price_cents}"
            raise ValueError(msg)

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_token_limit is None


@dataclass
class UserSubscription:
    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    period_start: datetime
    period_end: datetime
    organization_id: str | None = None

    @property
    def window(self) -> TimeRange:
        return TimeRange(self.period_start, self.period_end)


@dataclass
class BillingPeriod:
    id: str
    subscription_id: str
    period_start: datetime
    period_end: datetime
    total_tokens_used: int = 0
    total_amount_due: int = 0  # cents
    status: BillingPeriodStatus = BillingPeriodStatus.ACTIVE
    tokens_limit: int | None = None
    overage_tokens: int = 0

    @property
    def window(self) -> TimeRange:
        return TimeRange(self.period_start, self.period_end)


@dataclass(frozen=True)
class UsageQuota:
    """Administrator-configured ceiling for an organization or a team."""

    id: str
    scope: QuotaScope
    scope_id: str
    limit: int
    is_active: bool = True
    quota_type: str = "monthly_tokens"
    reset_period: str = "monthly"

    def __post_init__(self) -> None:
        if self.limit <= 0:
            msg = f"quota limit must be > 0: {self.limit}"
            raise ValueError(msg)


# ── Identity Graph (owned by an external collaborator) ──────────

@dataclass(frozen=True)
class Organization:
    id: str
    name: str


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    organization_id: str


@dataclass(frozen=True)
class UserProfile:
    id: str
    full_name: str = ""
    organization_id: str | None = None
    org_role: OrgRole = OrgRole.MEMBER


@dataclass(frozen=True)
class TeamMembership:
    user_id: str
    team_id: str
    team_role: TeamRole
    full_name: str = ""


@dataclass
class SetupResult:
    """Outcome of a billing setup call."""

    created: bool
    subscription: UserSubscription
    plan: SubscriptionPlan | None = None
    billing_period: BillingPeriod | None = None
