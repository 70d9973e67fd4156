"""PostgreSQL connection and schema definitions."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)

metadata = MetaData()

# ── Identity Graph ───────────────────────────────────────────────

organizations = Table(
    "organizations",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

teams = Table(
    "teams",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("organization_id", String, ForeignKey("organizations.id"), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

user_profiles = Table(
    "user_profiles",
    metadata,
    Column("id", String, primary_key=True),
    Column("full_name", String, nullable=False, server_default=""),
    Column("organization_id", String, ForeignKey("organizations.id"), nullable=True, index=True),
    Column("org_role", String, nullable=False, server_default="member"),
)

user_team_memberships = Table(
    "user_team_memberships",
    metadata,
    Column("user_id", String, ForeignKey("user_profiles.id"), primary_key=True),
    Column("team_id", String, ForeignKey("teams.id"), primary_key=True),
    Column("team_role", String, nullable=False, server_default="member"),
    Column("joined_at", DateTime(timezone=True), server_default=func.now()),
)

# ── Plans & Billing ──────────────────────────────────────────────

subscription_plans = Table(
    "subscription_plans",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("monthly_token_limit", Integer, nullable=False),  # -1 = unlimited
    Column("price_cents", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="true"),
)

user_subscriptions = Table(
    "user_subscriptions",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False),
    Column("organization_id", String, nullable=True, index=True),
    Column("plan_id", String, ForeignKey("subscription_plans.id"), nullable=False),
    Column("status", String, nullable=False, server_default="active"),
    Column("current_period_start", DateTime(timezone=True), nullable=False),
    Column("current_period_end", DateTime(timezone=True), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("user_id", name="uq_user_subscriptions_user_id"),
)

billing_periods = Table(
    "billing_periods",
    metadata,
    Column("id", String, primary_key=True),
    Column("subscription_id", String, ForeignKey("user_subscriptions.id"), nullable=False, index=True),
    Column("period_start", DateTime(timezone=True), nullable=False),
    Column("period_end", DateTime(timezone=True), nullable=False),
    Column("total_tokens_used", Integer, nullable=False, server_default="0"),
    Column("tokens_limit", Integer, nullable=True),  # -1 = unlimited
    Column("overage_tokens", Integer, nullable=False, server_default="0"),
    Column("total_amount_due", Integer, nullable=False, server_default="0"),
    Column("status", String, nullable=False, server_default="active"),
)

usage_quotas = Table(
    "usage_quotas",
    metadata,
    Column("id", String, primary_key=True),
    Column("scope", String, nullable=False),
    Column("scope_id", String, nullable=False, index=True),
    Column("quota_type", String, nullable=False, server_default="monthly_tokens"),
    Column("quota_limit", Integer, nullable=False),
    Column("reset_period", String, nullable=False, server_default="monthly"),
    Column("is_active", Boolean, nullable=False, server_default="true"),
)

# ── Ledger ───────────────────────────────────────────────────────

token_usage_events = Table(
    "token_usage_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("organization_id", String, nullable=False, index=True),
    Column("team_id", String, nullable=True, index=True),
    Column("subscription_id", String, nullable=True),
    Column("feature_used", String, nullable=False),
    Column("tokens_used", Integer, nullable=False),
    Column("endpoint", String, nullable=False, server_default=""),
    Column("model_used", String, nullable=True),
    Column("request_id", String, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
)


# ── Engine ───────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


async def get_engine() -> AsyncEngine:
    """Get or create the async database engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        db_url = settings.database_url.get_secret_value()
        _engine = create_async_engine(
            db_url,
            echo=False,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
        log.info("database_engine_created", host=db_url.split("@")[-1].split("?")[0])
    return _engine


async def init_schema() -> None:
    """Create all tables if they do not exist."""
    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    log.info("schema_initialized", tables=sorted(metadata.tables))


async def close_engine() -> None:
    """Dispose the database engine."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        log.info("database_engine_closed")
