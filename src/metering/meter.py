"""Usage metering write path — record consumption and enforce plan limits.

Both operations resolve the caller's subscription first. A caller with no
subscription is given the default plan on the spot, so the first metered
request also completes billing setup.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from uuid_extensions import uuid7

from src.core.constants import MSG_NO_ACTIVE_SUBSCRIPTION
from src.core.exceptions import NotFoundError, ValidationError
from src.core.interfaces import BillingStore, Directory, UsageLedger
from src.core.logging import get_logger
from src.core.types import (
    ScopeFilter,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageEvent,
    UserProfile,
    UserSubscription,
    ensure_utc,
)
from src.metering.aggregator import UsageAggregator, total_tokens
from src.metering.billing import BillingPeriodManager
from src.metering.quota import Allowance, QuotaEvaluator, QuotaStatus

log = get_logger(__name__)


@dataclass(frozen=True)
class UsageRequest:
    """Caller-supplied description of one metered request."""

    feature: str
    tokens_used: int
    endpoint: str = ""
    model_used: str | None = None
    request_id: str | None = None
    team_id: str | None = None


@dataclass
class MeteredSubscription:
    subscription: UserSubscription
    plan: SubscriptionPlan
    auto_created: bool = False


class UsageMeter:
    """Appends usage events and checks requests against the plan limit."""

    def __init__(
        self,
        directory: Directory,
        ledger: UsageLedger,
        store: BillingStore,
        manager: BillingPeriodManager,
        evaluator: QuotaEvaluator | None = None,
    ) -> None:
        self._directory = directory
        self._ledger = ledger
        self._store = store
        self._manager = manager
        self._aggregator = UsageAggregator(ledger)
        self._evaluator = evaluator or QuotaEvaluator()

    async def resolve_subscription(
        self,
        user_id: str,
        now: datetime,
        profile: UserProfile | None = None,
    ) -> MeteredSubscription:
        """The caller's subscription and plan, running billing setup if absent."""
        subscription = await self._store.find_subscription(user_id)
        auto_created = False
        if subscription is None:
            if profile is None:
                profile = await self._directory.get_profile(user_id)
            result = await self._manager.setup_default_subscription(
                user_id,
                organization_id=profile.organization_id if profile else None,
                now=now,
            )
            subscription = result.subscription
            auto_created = result.created
            log.info(
                "billing_auto_setup",
                user_id=user_id,
                subscription_id=subscription.id,
                created=result.created,
            )

        plan = await self._store.find_plan(subscription.plan_id)
        if plan is None:
            raise NotFoundError(
                f"Plan {subscription.plan_id} not found",
                context={"plan_id": subscription.plan_id, "user_id": user_id},
            )
        return MeteredSubscription(subscription=subscription, plan=plan, auto_created=auto_created)

    async def _team_for(self, user_id: str, requested: str | None) -> str | None:
        if requested:
            if await self._directory.get_membership(user_id, requested) is None:
                raise ValidationError(
                    f"user {user_id} is not a member of team {requested}",
                    context={"user_id": user_id, "team_id": requested},
                )
            return requested

        memberships = await self._directory.list_user_memberships(user_id)
        return memberships[0].team_id if memberships else None

    async def record_usage(
        self,
        user_id: str,
        usage: UsageRequest,
        now: datetime | None = None,
    ) -> UsageEvent:
        """Append one event attributed to the caller's organization, team and subscription.

        Without an explicit team the event goes to the caller's first team,
        or to no team when the caller belongs to none.
        """
        if usage.tokens_used < 0:
            raise ValidationError(
                f"tokens_used cannot be negative: {usage.tokens_used}",
                context={"tokens_used": usage.tokens_used},
            )

        now = ensure_utc(now or datetime.now(timezone.utc))
        profile = await self._directory.get_profile(user_id)
        metered = await self.resolve_subscription(user_id, now, profile)
        subscription = metered.subscription

        organization_id = subscription.organization_id or (profile.organization_id if profile else None)
        if not organization_id:
            raise ValidationError(
                f"user {user_id} belongs to no organization",
                context={"user_id": user_id},
            )

        if subscription.status != SubscriptionStatus.ACTIVE:
            log.warning(
                "usage_on_inactive_subscription",
                user_id=user_id,
                subscription_id=subscription.id,
                status=subscription.status.value,
            )

        event = UsageEvent(
            id=str(uuid7()),
            user_id=user_id,
            organization_id=organization_id,
            team_id=await self._team_for(user_id, usage.team_id),
            subscription_id=subscription.id,
            feature=usage.feature,
            tokens_used=usage.tokens_used,
            endpoint=usage.endpoint,
            model_used=usage.model_used,
            request_id=usage.request_id or str(uuid7()),
            created_at=now,
        )
        await self._ledger.record(event)

        log.info(
            "usage_metered",
            user_id=user_id,
            organization_id=organization_id,
            team_id=event.team_id,
            subscription_id=subscription.id,
            feature=event.feature,
            tokens_used=event.tokens_used,
        )
        return event

    async def usage_status(
        self,
        user_id: str,
        now: datetime | None = None,
    ) -> tuple[MeteredSubscription, QuotaStatus]:
        """Tokens consumed in the subscription window against the plan limit."""
        now = ensure_utc(now or datetime.now(timezone.utc))
        metered = await self.resolve_subscription(user_id, now)
        events = await self._aggregator.fetch(ScopeFilter.for_user(user_id), metered.subscription.window)
        return metered, self._evaluator.evaluate(total_tokens(events), metered.plan.monthly_token_limit)

    async def enforce(
        self,
        user_id: str,
        tokens_needed: int = 0,
        now: datetime | None = None,
    ) -> Allowance:
        """May the caller spend ``tokens_needed`` more in the current window?"""
        if tokens_needed < 0:
            raise ValidationError(
                f"tokens_needed cannot be negative: {tokens_needed}",
                context={"tokens_needed": tokens_needed},
            )

        metered, status = await self.usage_status(user_id, now)
        if metered.subscription.status != SubscriptionStatus.ACTIVE:
            log.warning(
                "usage_denied_inactive_subscription",
                user_id=user_id,
                subscription_id=metered.subscription.id,
                status=metered.subscription.status.value,
            )
            return Allowance(allowed=False, status=status, message=MSG_NO_ACTIVE_SUBSCRIPTION)

        return self._evaluator.check_allowance(status.used, tokens_needed, status.limit)
