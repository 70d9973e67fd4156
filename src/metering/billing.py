"""Billing period lifecycle — default subscription setup and period rollover.

Setup is idempotent per user: the store performs a compare-and-create on
``user_id``, so concurrent first-time calls yield exactly one subscription
and one active billing period.

Rollover closes the active period with totals derived from the ledger and
opens the next window, aligned to the previous ``period_end``.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from uuid_extensions import uuid7

from src.core.constants import DEFAULT_BILLING_PERIOD_DAYS, DEFAULT_PLAN_NAME
from src.core.exceptions import DefaultPlanNotFoundError, NotFoundError, StoreError
from src.core.interfaces import BillingStore, UsageLedger
from src.core.logging import get_logger
from src.core.types import (
    BillingPeriod,
    BillingPeriodStatus,
    QuotaScope,
    ScopeFilter,
    SetupResult,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageQuota,
    UserSubscription,
    ensure_utc,
)
from src.metering.aggregator import UsageAggregator, total_tokens

log = get_logger(__name__)


class BillingPeriodManager:
    """Creates subscriptions and advances their billing periods."""

    def __init__(
        self,
        store: BillingStore,
        ledger: UsageLedger,
        default_plan_name: str = DEFAULT_PLAN_NAME,
        period_days: int = DEFAULT_BILLING_PERIOD_DAYS,
    ) -> None:
        if period_days <= 0:
            msg = f"period_days must be > 0: {period_days}"
            raise ValueError(msg)
        self._store = store
        self._aggregator = UsageAggregator(ledger)
        self._default_plan_name = default_plan_name
        self._period = timedelta(days=period_days)

    # ── Setup ────────────────────────────────────────────────────

    async def setup_default_subscription(
        self,
        user_id: str,
        organization_id: str | None = None,
        now: datetime | None = None,
    ) -> SetupResult:
        """Give a user the default plan, or report the subscription they hold."""
        existing = await self._store.find_subscription(user_id)
        if existing is not None:
            log.info("billing_already_set_up", user_id=user_id, subscription_id=existing.id)
            return SetupResult(created=False, subscription=existing)

        plan = await self._store.find_plan_by_name(self._default_plan_name)
        if plan is None:
            log.error("default_plan_missing", plan_name=self._default_plan_name, user_id=user_id)
            raise DefaultPlanNotFoundError(
                f"Default plan '{self._default_plan_name}' is not configured",
                context={"plan_name": self._default_plan_name},
            )

        start = ensure_utc(now or datetime.now(timezone.utc))
        end = start + self._period
        subscription = UserSubscription(
            id=str(uuid7()),
            user_id=user_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            period_start=start,
            period_end=end,
            organization_id=organization_id,
        )
        period = BillingPeriod(
            id=str(uuid7()),
            subscription_id=subscription.id,
            period_start=start,
            period_end=end,
            tokens_limit=plan.monthly_token_limit,
        )

        stored, created = await self._store.create_subscription(subscription, period)
        if not created:
            log.info("billing_setup_lost_race", user_id=user_id, subscription_id=stored.id)
            return SetupResult(created=False, subscription=stored)

        log.info(
            "subscription_created",
            user_id=user_id,
            subscription_id=stored.id,
            plan=plan.name,
            period_end=end.isoformat(),
        )
        return SetupResult(created=True, subscription=stored, plan=plan, billing_period=period)

    # ── Rollover ─────────────────────────────────────────────────

    @staticmethod
    def is_due(subscription: UserSubscription, now: datetime) -> bool:
        return (
            subscription.status == SubscriptionStatus.ACTIVE
            and ensure_utc(now) >= ensure_utc(subscription.period_end)
        )

    async def period_totals(
        self,
        subscription: UserSubscription,
        plan: SubscriptionPlan,
        period: BillingPeriod,
    ) -> BillingPeriod:
        """Copy of ``period`` with totals recomputed from the ledger slice.

        Amount due is the flat plan price; overage is reported, not charged.
        """
        events = await self._aggregator.fetch(ScopeFilter.for_user(subscription.user_id), period.window)
        used = total_tokens(events)
        limit = plan.monthly_token_limit
        return replace(
            period,
            total_tokens_used=used,
            total_amount_due=plan.price_cents,
            tokens_limit=limit,
            overage_tokens=max(used - limit, 0) if limit is not None else 0,
        )

    async def rollover(self, user_id: str, now: datetime | None = None) -> BillingPeriod | None:
        """Close the user's expired period and open the next one.

        Returns the newly opened period, or None when nothing was due.
        """
        now = ensure_utc(now or datetime.now(timezone.utc))
        subscription = await self._store.find_subscription(user_id)
        if subscription is None:
            raise NotFoundError(f"No subscription for user {user_id}", context={"user_id": user_id})

        if not self.is_due(subscription, now):
            return None

        plan = await self._store.find_plan(subscription.plan_id)
        if plan is None:
            raise NotFoundError(
                f"Plan {subscription.plan_id} not found",
                context={"plan_id": subscription.plan_id, "subscription_id": subscription.id},
            )

        current = await self._store.get_active_period(subscription.id)
        if current is None:
            log.warning("active_period_missing", subscription_id=subscription.id)
            current = BillingPeriod(
                id=str(uuid7()),
                subscription_id=subscription.id,
                period_start=subscription.period_start,
                period_end=subscription.period_end,
            )

        closed = await self.period_totals(subscription, plan, current)
        closed.status = BillingPeriodStatus.CLOSED

        next_start = ensure_utc(subscription.period_end)
        while next_start + self._period <= now:
            next_start += self._period
        next_end = next_start + self._period

        advanced = replace(subscription, period_start=next_start, period_end=next_end)
        opened = BillingPeriod(
            id=str(uuid7()),
            subscription_id=subscription.id,
            period_start=next_start,
            period_end=next_end,
            tokens_limit=plan.monthly_token_limit,
        )

        if not await self._store.rollover(closed, advanced, opened):
            log.info("rollover_skipped", subscription_id=subscription.id, period_id=closed.id)
            return None

        log.info(
            "billing_period_rolled_over",
            subscription_id=subscription.id,
            closed_period_id=closed.id,
            total_tokens_used=closed.total_tokens_used,
            overage_tokens=closed.overage_tokens,
            next_period_end=next_end.isoformat(),
        )
        return opened

    async def rollover_due(self, now: datetime | None = None) -> list[BillingPeriod]:
        """Roll over every subscription whose period has ended.

        A subscription that fails is logged and skipped; the rest still roll over.
        """
        now = ensure_utc(now or datetime.now(timezone.utc))
        opened: list[BillingPeriod] = []
        failed = 0
        for subscription in await self._store.list_due_subscriptions(now):
            try:
                period = await self.rollover(subscription.user_id, now)
            except (NotFoundError, StoreError) as exc:
                log.warning(
                    "rollover_failed",
                    subscription_id=subscription.id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                failed += 1
                continue
            if period is not None:
                opened.append(period)

        log.info("rollover_batch_complete", opened=len(opened), failed=failed)
        return opened


# ── In-memory Store ──────────────────────────────────────────────


class InMemoryBillingStore(BillingStore):
    """Dict-backed billing store for local development and tests."""

    def __init__(
        self,
        plans: list[SubscriptionPlan] | None = None,
        quotas: list[UsageQuota] | None = None,
    ) -> None:
        self._plans: dict[str, SubscriptionPlan] = {p.id: p for p in plans or []}
        self._quotas: list[UsageQuota] = list(quotas or [])
        self._subscriptions: dict[str, UserSubscription] = {}  # user_id -> subscription
        self._periods: dict[str, BillingPeriod] = {}
        self._lock = asyncio.Lock()

    async def find_subscription(self, user_id: str) -> UserSubscription | None:
        return self._subscriptions.get(user_id)

    async def find_plan(self, plan_id: str) -> SubscriptionPlan | None:
        return self._plans.get(plan_id)

    async def find_plan_by_name(self, name: str) -> SubscriptionPlan | None:
        for plan in self._plans.values():
            if plan.name == name and plan.is_active:
                return plan
        return None

    async def list_active_plans(self) -> list[SubscriptionPlan]:
        return sorted((p for p in self._plans.values() if p.is_active), key=lambda p: p.price_cents)

    async def create_subscription(
        self,
        subscription: UserSubscription,
        period: BillingPeriod,
    ) -> tuple[UserSubscription, bool]:
        async with self._lock:
            existing = self._subscriptions.get(subscription.user_id)
            if existing is not None:
                return existing, False
            self._subscriptions[subscription.user_id] = subscription
            self._periods[period.id] = period
            return subscription, True

    async def get_active_period(self, subscription_id: str) -> BillingPeriod | None:
        for period in self._periods.values():
            if period.subscription_id == subscription_id and period.status == BillingPeriodStatus.ACTIVE:
                return period
        return None

    async def list_due_subscriptions(self, now: datetime) -> list[UserSubscription]:
        now = ensure_utc(now)
        return [
            s for s in self._subscriptions.values()
            if s.status == SubscriptionStatus.ACTIVE and ensure_utc(s.period_end) <= now
        ]

    async def rollover(
        self,
        closed: BillingPeriod,
        subscription: UserSubscription,
        opened: BillingPeriod,
    ) -> bool:
        async with self._lock:
            current = self._periods.get(closed.id)
            if current is not None and current.status == BillingPeriodStatus.CLOSED:
                return False
            self._periods[closed.id] = closed
            self._subscriptions[subscription.user_id] = subscription
            self._periods[opened.id] = opened
            return True

    async def list_quotas(self, scope: QuotaScope, scope_id: str) -> list[UsageQuota]:
        return [q for q in self._quotas if q.scope == scope and q.scope_id == scope_id and q.is_active]

    def periods_for(self, subscription_id: str) -> list[BillingPeriod]:
        """All periods of a subscription, oldest first."""
        return sorted(
            (p for p in self._periods.values() if p.subscription_id == subscription_id),
            key=lambda p: p.period_start,
        )
