"""Tests for core domain types."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.core.types import (
    BillingPeriod,
    ScopeFilter,
    SubscriptionPlan,
    TimeRange,
    UsageEvent,
    UsageQuota,
    QuotaScope,
    ensure_utc,
)

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _event(**kwargs: object) -> UsageEvent:
    defaults: dict[str, object] = {
        "id": "e1",
        "user_id": "u1",
        "organization_id": "org-1",
        "feature": "chat",
        "tokens_used": 10,
        "created_at": T0,
    }
    defaults.update(kwargs)
    return UsageEvent(**defaults)  # type: ignore[arg-type]


class TestEnsureUtc:
    def test_naive_is_taken_as_utc(self) -> None:
        assert ensure_utc(datetime(2024, 5, 1, 23, 0)).tzinfo == timezone.utc

    def test_other_zone_is_converted(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        ts = ensure_utc(datetime(2024, 5, 2, 1, 0, tzinfo=plus_two))
        assert ts == datetime(2024, 5, 1, 23, 0, tzinfo=timezone.utc)


class TestUsageEvent:
    def test_negative_tokens_rejected(self) -> None:
        with pytest.raises(ValueError, match="negative"):
            _event(tokens_used=-1)

    def test_zero_tokens_allowed(self) -> None:
        assert _event(tokens_used=0).tokens_used == 0

    def test_organization_required(self) -> None:
        with pytest.raises(ValueError, match="organization_id"):
            _event(organization_id="")

    def test_created_at_normalized(self) -> None:
        e = _event(created_at=datetime(2024, 5, 1, 12, 0))
        assert e.created_at.tzinfo == timezone.utc

    def test_immutable(self) -> None:
        e = _event()
        with pytest.raises(AttributeError):
            e.tokens_used = 99  # type: ignore[misc]


class TestTimeRange:
    def test_half_open(self) -> None:
        r = TimeRange(T0, T0 + timedelta(days=1))
        assert r.contains(T0)
        assert not r.contains(T0 + timedelta(days=1))

    def test_empty_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            TimeRange(T0, T0)


class TestScopeFilter:
    def test_requires_org_or_user(self) -> None:
        with pytest.raises(ValueError):
            ScopeFilter(team_id="team-a")

    def test_team_narrows_org(self) -> None:
        scope = ScopeFilter.for_team("org-1", "team-a")
        assert scope.matches(_event(team_id="team-a"))
        assert not scope.matches(_event(team_id="team-b"))
        assert not scope.matches(_event(team_id=None))

    def test_user_only(self) -> None:
        scope = ScopeFilter.for_user("u1")
        assert scope.matches(_event(organization_id="org-9"))
        assert not scope.matches(_event(user_id="u2"))


class TestPlanAndQuota:
    def test_unlimited_plan(self) -> None:
        plan = SubscriptionPlan(id="p", name="Ent", monthly_token_limit=None, price_cents=0)
        assert plan.is_unlimited

    def test_zero_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            SubscriptionPlan(id="p", name="Bad", monthly_token_limit=0, price_cents=0)

    def test_quota_limit_positive(self) -> None:
        with pytest.raises(ValueError):
            UsageQuota(id="q", scope=QuotaScope.TEAM, scope_id="team-a", limit=0)

    def test_billing_period_window(self) -> None:
        p = BillingPeriod(id="bp", subscription_id="s", period_start=T0, period_end=T0 + timedelta(days=30))
        assert p.window.contains(T0 + timedelta(days=29))
