"""Usage report service — the read path behind the usage endpoints.

Each view runs Access Policy -> Aggregator -> Quota Evaluator, in that
order. Authorization always completes before the ledger is touched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from src.core.constants import (
    DEFAULT_PLAN_NAME,
    DEFAULT_POLL_INTERVAL_SECONDS,
    USAGE_HISTORY_DEFAULT_DAYS,
    USAGE_HISTORY_DEFAULT_LIMIT,
    USAGE_HISTORY_MAX_DAYS,
    USAGE_HISTORY_MAX_LIMIT,
    USAGE_HISTORY_RAW_EVENTS,
)
from src.core.exceptions import DefaultPlanNotFoundError, NotFoundError, ValidationError
from src.core.interfaces import BillingStore, Directory, UsageLedger
from src.core.logging import get_logger
from src.core.types import (
    Organization,
    OrgRole,
    QuotaScope,
    ScopeFilter,
    SubscriptionPlan,
    SubscriptionStatus,
    Team,
    TeamMembership,
    TeamRole,
    TimeRange,
    UsageEvent,
    UsageQuota,
    UserProfile,
    UserSubscription,
    ensure_utc,
)
from src.metering.access import AccessPolicy
from src.metering.aggregator import (
    UsageAggregator,
    UsageRollup,
    daily_feature_breakdown,
    feature_breakdown,
    member_breakdown,
    model_breakdown,
    month_window,
    parse_month,
    summarize,
    team_breakdown,
    unassigned_tokens,
)
from src.metering.quota import QuotaEvaluator, QuotaStatus

log = get_logger(__name__)


# ── Report Shapes ────────────────────────────────────────────────


@dataclass(frozen=True)
class TeamUsage:
    team_id: str
    team_name: str
    tokens_used: int
    events_count: int


@dataclass(frozen=True)
class MemberUsage:
    user_id: str
    full_name: str
    role: str
    tokens_used: int
    events_count: int


@dataclass(frozen=True)
class QuotaOverlay:
    quota: UsageQuota
    status: QuotaStatus


@dataclass
class OrganizationUsageReport:
    organization: Organization
    window: TimeRange
    rollup: UsageRollup
    teams: list[TeamUsage] = field(default_factory=list)
    members: list[MemberUsage] = field(default_factory=list)
    unassigned_tokens: int = 0
    quotas: list[QuotaOverlay] = field(default_factory=list)


@dataclass
class TeamUsageReport:
    team: Team
    window: TimeRange
    rollup: UsageRollup
    user_role: TeamRole
    members: list[MemberUsage] = field(default_factory=list)
    quotas: list[QuotaOverlay] = field(default_factory=list)


@dataclass
class CurrentUsage:
    """Caller's consumption in their subscription window.

    ``subscription`` is None while billing setup is still pending. Without an
    active subscription the usage is a zero placeholder on the default plan.
    """

    status: QuotaStatus
    plan_name: str
    period_start: datetime
    period_end: datetime
    subscription: UserSubscription | None = None
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS

    @property
    def subscription_status(self) -> str:
        return self.subscription.status.value if self.subscription else "pending_setup"


@dataclass
class UsageHistory:
    window: TimeRange
    total_tokens: int
    total_events: int
    daily_usage: dict[date, dict[str, int]]
    feature_breakdown: dict[str, int]
    model_breakdown: dict[str, int]
    recent_events: list[UsageEvent]


def _by_tokens_desc(rows: list) -> list:
    return sorted(rows, key=lambda r: r.tokens_used, reverse=True)


# Users no longer on the roster report with the least-privileged role
def _org_role(profile: UserProfile | None) -> str:
    return OrgRole(profile.org_role).value if profile else OrgRole.MEMBER.value


def _team_role(membership: TeamMembership | None) -> str:
    return TeamRole(membership.team_role).value if membership else TeamRole.VIEWER.value


class UsageReportService:
    def __init__(
        self,
        directory: Directory,
        ledger: UsageLedger,
        billing: BillingStore,
        evaluator: QuotaEvaluator | None = None,
        default_plan_name: str = DEFAULT_PLAN_NAME,
        poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
        history_max_days: int = USAGE_HISTORY_MAX_DAYS,
    ) -> None:
        self._directory = directory
        self._billing = billing
        self._access = AccessPolicy(directory)
        self._aggregator = UsageAggregator(ledger)
        self._evaluator = evaluator or QuotaEvaluator()
        self._default_plan_name = default_plan_name
        self._poll_interval = poll_interval_seconds
        self._history_max_days = history_max_days

    @staticmethod
    def _window(now: datetime, month: str | None) -> TimeRange:
        return parse_month(month) if month else month_window(now)

    async def _overlay(self, scope: QuotaScope, scope_id: str, used: int) -> list[QuotaOverlay]:
        quotas = await self._billing.list_quotas(scope, scope_id)
        return [QuotaOverlay(quota=q, status=self._evaluator.evaluate(used, q.limit)) for q in quotas]

    # ── Organization / Team Views ────────────────────────────────

    async def organization_report(
        self,
        user_id: str,
        now: datetime,
        month: str | None = None,
    ) -> OrganizationUsageReport:
        access = await self._access.authorize_organization(user_id)
        window = self._window(now, month)
        org = access.organization

        teams = await self._directory.list_teams(org.id)
        members = await self._directory.list_org_members(org.id)
        events, rollup = await self._aggregator.rollup(ScopeFilter.for_organization(org.id), window)

        team_names = {t.id: t.name for t in teams}
        team_rows = [
            TeamUsage(
                team_id=row.entity_id,
                team_name=team_names[row.entity_id],
                tokens_used=row.tokens_used,
                events_count=row.events_count,
            )
            for row in team_breakdown(events, team_names)
        ]

        profiles = {p.id: p for p in members}
        member_rows = [
            MemberUsage(
                user_id=row.entity_id,
                full_name=profiles[row.entity_id].full_name if row.entity_id in profiles else "",
                role=_org_role(profiles.get(row.entity_id)),
                tokens_used=row.tokens_used,
                events_count=row.events_count,
            )
            for row in member_breakdown(events, profiles)
        ]

        log.info(
            "organization_report_built",
            organization_id=org.id,
            user_id=user_id,
            total_tokens=rollup.total_tokens,
            teams=len(team_rows),
            members=len(member_rows),
        )
        return OrganizationUsageReport(
            organization=org,
            window=window,
            rollup=rollup,
            teams=_by_tokens_desc(team_rows),
            members=_by_tokens_desc(member_rows),
            unassigned_tokens=unassigned_tokens(events, team_names),
            quotas=await self._overlay(QuotaScope.ORGANIZATION, org.id, rollup.total_tokens),
        )

    async def team_report(
        self,
        user_id: str,
        team_id: str,
        now: datetime,
        month: str | None = None,
    ) -> TeamUsageReport:
        access = await self._access.authorize_team(user_id, team_id)
        window = self._window(now, month)
        team = access.team

        roster = await self._directory.list_team_members(team.id)
        events, rollup = await self._aggregator.rollup(
            ScopeFilter.for_team(team.organization_id, team.id), window
        )

        by_user = {m.user_id: m for m in roster}
        member_rows = [
            MemberUsage(
                user_id=row.entity_id,
                full_name=by_user[row.entity_id].full_name if row.entity_id in by_user else "",
                role=_team_role(by_user.get(row.entity_id)),
                tokens_used=row.tokens_used,
                events_count=row.events_count,
            )
            for row in member_breakdown(events, by_user)
        ]

        log.info(
            "team_report_built",
            team_id=team.id,
            user_id=user_id,
            total_tokens=rollup.total_tokens,
            members=len(member_rows),
        )
        return TeamUsageReport(
            team=team,
            window=window,
            rollup=rollup,
            user_role=access.membership.team_role,
            members=_by_tokens_desc(member_rows),
            quotas=await self._overlay(QuotaScope.TEAM, team.id, rollup.total_tokens),
        )

    # ── Caller's Own Usage ───────────────────────────────────────

    async def _default_plan(self) -> SubscriptionPlan:
        plan = await self._billing.find_plan_by_name(self._default_plan_name)
        if plan is None:
            log.error("default_plan_missing", plan_name=self._default_plan_name)
            raise DefaultPlanNotFoundError(
                f"Default plan '{self._default_plan_name}' is not configured",
                context={"plan_name": self._default_plan_name},
            )
        return plan

    async def current_usage(self, user_id: str, now: datetime) -> CurrentUsage:
        now = ensure_utc(now)
        subscription = await self._billing.find_subscription(user_id)

        if subscription is None or subscription.status != SubscriptionStatus.ACTIVE:
            if subscription is not None:
                log.info(
                    "subscription_inactive",
                    user_id=user_id,
                    subscription_id=subscription.id,
                    status=subscription.status.value,
                )
            plan = await self._default_plan()
            window = month_window(now)
            return CurrentUsage(
                status=self._evaluator.evaluate(0, plan.monthly_token_limit),
                plan_name=plan.name,
                period_start=window.start,
                period_end=window.end,
                subscription=subscription,
                poll_interval_seconds=self._poll_interval,
            )

        plan = await self._billing.find_plan(subscription.plan_id)
        if plan is None:
            raise NotFoundError(
                f"Plan {subscription.plan_id} not found",
                context={"plan_id": subscription.plan_id, "user_id": user_id},
            )

        events = await self._aggregator.fetch(ScopeFilter.for_user(user_id), subscription.window)
        status = self._evaluator.evaluate(summarize(events).total_tokens, plan.monthly_token_limit)
        return CurrentUsage(
            status=status,
            plan_name=plan.name,
            period_start=subscription.period_start,
            period_end=subscription.period_end,
            subscription=subscription,
            poll_interval_seconds=self._poll_interval,
        )

    async def usage_history(
        self,
        user_id: str,
        now: datetime,
        days: int = USAGE_HISTORY_DEFAULT_DAYS,
        limit: int = USAGE_HISTORY_DEFAULT_LIMIT,
    ) -> UsageHistory:
        """Most recent ``limit`` events within the last ``days`` days, with breakdowns."""
        if not 1 <= days <= self._history_max_days:
            raise ValidationError(
                f"days must be between 1 and {self._history_max_days}: {days}",
                context={"days": days},
            )
        if not 1 <= limit <= USAGE_HISTORY_MAX_LIMIT:
            raise ValidationError(
                f"limit must be between 1 and {USAGE_HISTORY_MAX_LIMIT}: {limit}",
                context={"limit": limit},
            )

        now = ensure_utc(now)
        window = TimeRange(now - timedelta(days=days), now)
        events = await self._aggregator.fetch(ScopeFilter.for_user(user_id), window)
        events = sorted(events, key=lambda e: e.created_at, reverse=True)[:limit]

        return UsageHistory(
            window=window,
            total_tokens=sum(e.tokens_used for e in events),
            total_events=len(events),
            daily_usage=daily_feature_breakdown(events),
            feature_breakdown=feature_breakdown(events),
            model_breakdown=model_breakdown(events),
            recent_events=events[:USAGE_HISTORY_RAW_EVENTS],
        )
