"""Abstract base classes — storage boundaries the metering core depends on."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.core.types import (
    BillingPeriod,
    Organization,
    QuotaScope,
    ScopeFilter,
    SubscriptionPlan,
    Team,
    TeamMembership,
    TimeRange,
    UsageEvent,
    UsageQuota,
    UserProfile,
    UserSubscription,
)


class UsageLedger(ABC):
    """Append-only store of token-consumption events.

    ``query`` returns every event whose ``created_at`` lies in the half-open
    range exactly once, in no particular order. Read failures raise
    ``StoreError``; callers never receive a partial slice.
    """

    @abstractmethod
    async def query(self, scope: ScopeFilter, time_range: TimeRange) -> list[UsageEvent]:
        """Return the ledger slice selected by scope and time range."""
        ...

    @abstractmethod
    async def record(self, event: UsageEvent) -> None:
        """Append a single event. Events are never updated or deleted."""
        ...


class Directory(ABC):
    """Read-only view of the organization / team / membership graph."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Organization | None: ...

    @abstractmethod
    async def get_team(self, team_id: str) -> Team | None: ...

    @abstractmethod
    async def list_teams(self, organization_id: str) -> list[Team]: ...

    @abstractmethod
    async def list_org_members(self, organization_id: str) -> list[UserProfile]: ...

    @abstractmethod
    async def get_membership(self, user_id: str, team_id: str) -> TeamMembership | None: ...

    @abstractmethod
    async def list_team_members(self, team_id: str) -> list[TeamMembership]: ...

    @abstractmethod
    async def list_user_memberships(self, user_id: str) -> list[TeamMembership]:
        """Teams the user belongs to, earliest joined first."""
        ...


class BillingStore(ABC):
    """Plans, subscriptions, billing periods and quota configuration."""

    @abstractmethod
    async def find_subscription(self, user_id: str) -> UserSubscription | None: ...

    @abstractmethod
    async def find_plan(self, plan_id: str) -> SubscriptionPlan | None: ...

    @abstractmethod
    async def find_plan_by_name(self, name: str) -> SubscriptionPlan | None: ...

    @abstractmethod
    async def list_active_plans(self) -> list[SubscriptionPlan]:
        """Active plans ordered by ascending price."""
        ...

    @abstractmethod
    async def create_subscription(
        self,
        subscription: UserSubscription,
        period: BillingPeriod,
    ) -> tuple[UserSubscription, bool]:
        """Atomically create a subscription and its first billing period.

        Compare-and-create on ``user_id``: if the user already holds a
        subscription, nothing is written and ``(existing, False)`` is returned.
        """
        ...

    @abstractmethod
    async def get_active_period(self, subscription_id: str) -> BillingPeriod | None: ...

    @abstractmethod
    async def list_due_subscriptions(self, now: datetime) -> list[UserSubscription]:
        """Active subscriptions whose ``period_end`` is at or before ``now``."""
        ...

    @abstractmethod
    async def rollover(
        self,
        closed: BillingPeriod,
        subscription: UserSubscription,
        opened: BillingPeriod,
    ) -> bool:
        """Persist a period close plus the next window in one unit of work.

        Returns False when the period was already closed by someone else.
        """
        ...

    @abstractmethod
    async def list_quotas(self, scope: QuotaScope, scope_id: str) -> list[UsageQuota]:
        """Active quotas for a scope."""
        ...
