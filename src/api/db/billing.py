"""DB-backed billing store — plans, subscriptions, billing periods and quotas.

Unlimited plan limits are stored as -1 and surface as ``None``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.core.constants import UNLIMITED_TOKENS_SENTINEL
from src.core.exceptions import StoreError
from src.core.interfaces import BillingStore
from src.core.logging import get_logger
from src.core.types import (
    BillingPeriod,
    BillingPeriodStatus,
    QuotaScope,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageQuota,
    UserSubscription,
)

log = get_logger(__name__)


def limit_from_db(value: int | None) -> int | None:
    if value is None or value == UNLIMITED_TOKENS_SENTINEL:
        return None
    return value


def limit_to_db(value: int | None) -> int:
    return UNLIMITED_TOKENS_SENTINEL if value is None else value


_INSERT_PERIOD = """
    INSERT INTO billing_periods
        (id, subscription_id, period_start, period_end,
         total_tokens_used, tokens_limit, overage_tokens,
         total_amount_due, status)
    VALUES
        (:id, :sub, :start, :end,
         :used, :limit, :overage,
         :amount, :status)
"""


class SqlBillingStore(BillingStore):
    """Async PostgreSQL-backed billing storage."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def _fetch(self, sql: str, params: dict[str, Any]) -> list[Any]:
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(text(sql), params)
                return list(result.mappings().all())
        except SQLAlchemyError as exc:
            log.error("billing_read_failed", error=str(exc))
            raise StoreError("Billing store read failed", context=params) from exc

    # ── Plans ────────────────────────────────────────────────────

    async def find_plan(self, plan_id: str) -> SubscriptionPlan | None:
        rows = await self._fetch("SELECT * FROM subscription_plans WHERE id = :pid", {"pid": plan_id})
        return self._row_to_plan(rows[0]) if rows else None

    async def find_plan_by_name(self, name: str) -> SubscriptionPlan | None:
        rows = await self._fetch(
            "SELECT * FROM subscription_plans WHERE name = :name AND is_active = true",
            {"name": name},
        )
        return self._row_to_plan(rows[0]) if rows else None

    async def list_active_plans(self) -> list[SubscriptionPlan]:
        rows = await self._fetch(
            "SELECT * FROM subscription_plans WHERE is_active = true ORDER BY price_cents ASC",
            {},
        )
        return [self._row_to_plan(r) for r in rows]

    # ── Subscriptions ────────────────────────────────────────────

    async def find_subscription(self, user_id: str) -> UserSubscription | None:
        rows = await self._fetch(
            "SELECT * FROM user_subscriptions WHERE user_id = :uid", {"uid": user_id}
        )
        return self._row_to_subscription(rows[0]) if rows else None

    async def create_subscription(
        self,
        subscription: UserSubscription,
        period: BillingPeriod,
    ) -> tuple[UserSubscription, bool]:
        """Insert subscription + first period; the UNIQUE(user_id) constraint arbitrates races."""
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        """
                        INSERT INTO user_subscriptions
                            (id, user_id, organization_id, plan_id, status,
                             current_period_start, current_period_end)
                        VALUES
                            (:id, :uid, :org, :plan, :status, :start, :end)
                        ON CONFLICT (user_id) DO NOTHING
                        RETURNING id
                        """
                    ),
                    {
                        "id": subscription.id,
                        "uid": subscription.user_id,
                        "org": subscription.organization_id,
                        "plan": subscription.plan_id,
                        "status": subscription.status.value,
                        "start": subscription.period_start,
                        "end": subscription.period_end,
                    },
                )
                inserted = result.mappings().first()

                if inserted is None:
                    existing = await conn.execute(
                        text("SELECT * FROM user_subscriptions WHERE user_id = :uid"),
                        {"uid": subscription.user_id},
                    )
                    row = existing.mappings().first()
                    if row is None:
                        msg = f"subscription conflict for user {subscription.user_id} but no row found"
                        raise StoreError(msg, context={"user_id": subscription.user_id})
                    return self._row_to_subscription(row), False

                await self._insert_period(conn, period)
        except SQLAlchemyError as exc:
            log.error("subscription_create_failed", user_id=subscription.user_id, error=str(exc))
            raise StoreError(
                "Subscription create failed",
                context={"user_id": subscription.user_id},
            ) from exc

        return subscription, True

    async def list_due_subscriptions(self, now: datetime) -> list[UserSubscription]:
        rows = await self._fetch(
            "SELECT * FROM user_subscriptions "
            "WHERE status = 'active' AND current_period_end <= :now "
            "ORDER BY current_period_end",
            {"now": now},
        )
        return [self._row_to_subscription(r) for r in rows]

    # ── Billing Periods ──────────────────────────────────────────

    async def get_active_period(self, subscription_id: str) -> BillingPeriod | None:
        rows = await self._fetch(
            "SELECT * FROM billing_periods "
            "WHERE subscription_id = :sub AND status = 'active' "
            "ORDER BY period_start DESC LIMIT 1",
            {"sub": subscription_id},
        )
        return self._row_to_period(rows[0]) if rows else None

    async def rollover(
        self,
        closed: BillingPeriod,
        subscription: UserSubscription,
        opened: BillingPeriod,
    ) -> bool:
        """Close (or insert closed) the old period, advance the window, open the next."""
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        _INSERT_PERIOD
                        + """
                        ON CONFLICT (id) DO UPDATE SET
                            total_tokens_used = EXCLUDED.total_tokens_used,
                            tokens_limit = EXCLUDED.tokens_limit,
                            overage_tokens = EXCLUDED.overage_tokens,
                            total_amount_due = EXCLUDED.total_amount_due,
                            status = EXCLUDED.status
                        WHERE billing_periods.status = 'active'
                        RETURNING id
                        """
                    ),
                    self._period_params(closed),
                )
                if result.mappings().first() is None:
                    return False

                await conn.execute(
                    text(
                        "UPDATE user_subscriptions "
                        "SET current_period_start = :start, current_period_end = :end "
                        "WHERE id = :id"
                    ),
                    {
                        "id": subscription.id,
                        "start": subscription.period_start,
                        "end": subscription.period_end,
                    },
                )
                await self._insert_period(conn, opened)
        except SQLAlchemyError as exc:
            log.error("rollover_write_failed", subscription_id=subscription.id, error=str(exc))
            raise StoreError(
                "Billing period rollover failed",
                context={"subscription_id": subscription.id},
            ) from exc
        return True

    async def _insert_period(self, conn: AsyncConnection, period: BillingPeriod) -> None:
        await conn.execute(text(_INSERT_PERIOD), self._period_params(period))

    @staticmethod
    def _period_params(period: BillingPeriod) -> dict[str, Any]:
        return {
            "id": period.id,
            "sub": period.subscription_id,
            "start": period.period_start,
            "end": period.period_end,
            "used": period.total_tokens_used,
            "limit": limit_to_db(period.tokens_limit),
            "overage": period.overage_tokens,
            "amount": period.total_amount_due,
            "status": period.status.value,
        }

    # ── Quotas ───────────────────────────────────────────────────

    async def list_quotas(self, scope: QuotaScope, scope_id: str) -> list[UsageQuota]:
        rows = await self._fetch(
            "SELECT * FROM usage_quotas "
            "WHERE scope = :scope AND scope_id = :sid AND is_active = true",
            {"scope": scope.value, "sid": scope_id},
        )
        return [self._row_to_quota(r) for r in rows]

    # ── Row Mapping ──────────────────────────────────────────────

    @staticmethod
    def _row_to_plan(r: Any) -> SubscriptionPlan:
        return SubscriptionPlan(
            id=r["id"],
            name=r["name"],
            monthly_token_limit=limit_from_db(r["monthly_token_limit"]),
            price_cents=r["price_cents"],
            is_active=r["is_active"],
            description=r.get("description") or "",
        )

    @staticmethod
    def _row_to_subscription(r: Any) -> UserSubscription:
        return UserSubscription(
            id=r["id"],
            user_id=r["user_id"],
            plan_id=r["plan_id"],
            status=SubscriptionStatus(r["status"]),
            period_start=r["current_period_start"],
            period_end=r["current_period_end"],
            organization_id=r.get("organization_id"),
        )

    @staticmethod
    def _row_to_period(r: Any) -> BillingPeriod:
        return BillingPeriod(
            id=r["id"],
            subscription_id=r["subscription_id"],
            period_start=r["period_start"],
            period_end=r["period_end"],
            total_tokens_used=r["total_tokens_used"],
            total_amount_due=r["total_amount_due"],
            status=BillingPeriodStatus(r["status"]),
            tokens_limit=limit_from_db(r.get("tokens_limit")),
            overage_tokens=r.get("overage_tokens") or 0,
        )

    @staticmethod
    def _row_to_quota(r: Any) -> UsageQuota:
        return UsageQuota(
            id=r["id"],
            scope=QuotaScope(r["scope"]),
            scope_id=r["scope_id"],
            limit=r["quota_limit"],
            is_active=r["is_active"],
            quota_type=r.get("quota_type") or "monthly_tokens",
            reset_period=r.get("reset_period") or "monthly",
        )
