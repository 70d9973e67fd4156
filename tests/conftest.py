"""Pytest configuration and compatibility helpers.

This project includes async tests marked with ``@pytest.mark.asyncio``.
Some environments run unit tests without ``pytest-asyncio`` installed, which
would otherwise make those tests fail at collection/runtime.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Register local markers used in the suite."""
    config.addinivalue_line("markers", "asyncio: mark test as asyncio-compatible")


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run ``@pytest.mark.asyncio`` tests without external plugins.

    If pytest-asyncio (or another async plugin) is installed, this hook may be
    bypassed by that plugin depending on hook ordering. In plugin-less
    environments, this fallback executes coroutine tests via ``asyncio.run``.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    kwargs: dict[str, Any] = {
        arg: pyfuncitem.funcargs[arg]
        for arg in pyfuncitem._fixtureinfo.argnames
    }
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_func(**kwargs))
    finally:
        loop.close()
        # Keep a default loop available for sync tests that call
        # ``asyncio.get_event_loop()`` directly.
        asyncio.set_event_loop(asyncio.new_event_loop())
    return True


# ── Shared metering fixtures ─────────────────────────────────────

from datetime import datetime, timezone  # noqa: E402

from src.core.types import (  # noqa: E402
    Organization,
    OrgRole,
    SubscriptionPlan,
    Team,
    TeamMembership,
    TeamRole,
    UserProfile,
)
from src.metering.access import InMemoryDirectory  # noqa: E402
from src.metering.billing import InMemoryBillingStore  # noqa: E402
from src.metering.ledger import InMemoryUsageLedger  # noqa: E402

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

FREE_PLAN = SubscriptionPlan(id="plan-free", name="Free", monthly_token_limit=1000, price_cents=0)
PRO_PLAN = SubscriptionPlan(id="plan-pro", name="Pro", monthly_token_limit=50_000, price_cents=2900)
ENTERPRISE_PLAN = SubscriptionPlan(
    id="plan-ent", name="Enterprise", monthly_token_limit=None, price_cents=19900
)


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def directory() -> InMemoryDirectory:
    """Two organizations; org-1 has two teams.

    admin  — org_admin of org-1, no team memberships
    alice  — member of org-1, team_admin of team-a
    bob    — member of org-1, member of team-a, viewer of team-b
    carol  — org_admin of org-2
    loner  — profile without an organization
    """
    return InMemoryDirectory(
        organizations=[Organization("org-1", "Acme"), Organization("org-2", "Globex")],
        teams=[
            Team("team-a", "Platform", "org-1"),
            Team("team-b", "Research", "org-1"),
            Team("team-x", "Globex Ops", "org-2"),
        ],
        profiles=[
            UserProfile("admin", "Ada Admin", "org-1", OrgRole.ORG_ADMIN),
            UserProfile("alice", "Alice", "org-1", OrgRole.MEMBER),
            UserProfile("bob", "Bob", "org-1", OrgRole.MEMBER),
            UserProfile("carol", "Carol", "org-2", OrgRole.ORG_ADMIN),
            UserProfile("loner", "Lone Wolf", None, OrgRole.MEMBER),
        ],
        memberships=[
            TeamMembership("alice", "team-a", TeamRole.TEAM_ADMIN, "Alice"),
            TeamMembership("bob", "team-a", TeamRole.MEMBER, "Bob"),
            TeamMembership("bob", "team-b", TeamRole.VIEWER, "Bob"),
        ],
    )


@pytest.fixture()
def ledger() -> InMemoryUsageLedger:
    return InMemoryUsageLedger()


@pytest.fixture()
def billing_store() -> InMemoryBillingStore:
    return InMemoryBillingStore(plans=[PRO_PLAN, FREE_PLAN, ENTERPRISE_PLAN])
