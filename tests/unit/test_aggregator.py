"""Tests for usage aggregation — rollups, partitions, windows, failures."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from itertools import count

import pytest

from src.core.exceptions import StoreError, ValidationError
from src.core.interfaces import UsageLedger
from src.core.types import Feature, ScopeFilter, TimeRange, UsageEvent
from src.metering.aggregator import (
    UsageAggregator,
    daily_breakdown,
    daily_feature_breakdown,
    day_bucket,
    feature_breakdown,
    member_breakdown,
    model_breakdown,
    month_window,
    parse_month,
    summarize,
    team_breakdown,
    unassigned_tokens,
)
from src.metering.ledger import InMemoryUsageLedger

_ids = count(1)
MAY = TimeRange(datetime(2024, 5, 1, tzinfo=timezone.utc), datetime(2024, 6, 1, tzinfo=timezone.utc))


def _event(
    tokens: int,
    *,
    user: str = "alice",
    team: str | None = None,
    feature: str = "chat",
    at: datetime = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc),
    org: str = "org-1",
    model: str | None = None,
) -> UsageEvent:
    return UsageEvent(
        id=f"e{next(_ids)}",
        user_id=user,
        organization_id=org,
        team_id=team,
        feature=feature,
        tokens_used=tokens,
        created_at=at,
        model_used=model,
    )


def _org_slice() -> list[UsageEvent]:
    return [
        _event(100, user="alice", team="team-a", feature="chat"),
        _event(50, user="alice", team="team-a", feature="refine"),
        _event(30, user="bob", team="team-b", feature="assess"),
        _event(20, user="bob", team=None, feature="template"),
        _event(7, user="admin", team="team-gone", feature="chat"),
    ]


class TestMonthWindow:
    def test_mid_month(self) -> None:
        w = month_window(datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc))
        assert w.start == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert w.end == datetime(2024, 6, 1, tzinfo=timezone.utc)

    def test_december_rolls_year(self) -> None:
        w = month_window(datetime(2024, 12, 31, 23, 59, tzinfo=timezone.utc))
        assert w.end == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_parse_month(self) -> None:
        w = parse_month("2024-02")
        assert w.start == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert w.end == datetime(2024, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["2024-13", "2024-5", "May 2024", "", "2024-00"])
    def test_parse_month_rejects_bad_input(self, value: str) -> None:
        with pytest.raises(ValidationError):
            parse_month(value)


class TestRollups:
    def test_summarize(self) -> None:
        rollup = summarize(_org_slice())
        assert rollup.total_tokens == 207
        assert rollup.total_events == 5

    def test_empty_slice(self) -> None:
        rollup = summarize([])
        assert rollup.total_tokens == 0
        assert rollup.feature_breakdown == {}
        assert rollup.daily_usage == {}

    def test_feature_breakdown(self) -> None:
        assert feature_breakdown(_org_slice()) == {
            "chat": 107,
            "refine": 50,
            "assess": 30,
            "template": 20,
        }

    def test_enum_and_text_features_merge(self) -> None:
        events = [_event(5, feature=Feature.CHAT), _event(6, feature="chat")]
        assert feature_breakdown(events) == {"chat": 11}

    def test_unknown_feature_kept_raw(self) -> None:
        assert feature_breakdown([_event(5, feature="legacy_summarize")]) == {"legacy_summarize": 5}

    def test_model_breakdown_defaults_unknown(self) -> None:
        events = [_event(5, model="claude"), _event(3)]
        assert model_breakdown(events) == {"claude": 5, "unknown": 3}

    def test_daily_bucketing_splits_at_midnight_utc(self) -> None:
        events = [
            _event(10, at=datetime(2024, 5, 1, 23, 59, 59, tzinfo=timezone.utc)),
            _event(20, at=datetime(2024, 5, 2, 0, 0, 1, tzinfo=timezone.utc)),
        ]
        assert daily_breakdown(events) == {date(2024, 5, 1): 10, date(2024, 5, 2): 20}

    def test_day_bucket_converts_offsets_to_utc(self) -> None:
        east = timezone(timedelta(hours=5))
        assert day_bucket(datetime(2024, 5, 2, 3, 0, tzinfo=east)) == date(2024, 5, 1)
        assert day_bucket(datetime(2024, 5, 2, 3, 0)) == date(2024, 5, 2)

    def test_daily_keys_ascending(self) -> None:
        events = [
            _event(1, at=datetime(2024, 5, 9, tzinfo=timezone.utc)),
            _event(1, at=datetime(2024, 5, 3, tzinfo=timezone.utc)),
            _event(1, at=datetime(2024, 5, 6, tzinfo=timezone.utc)),
        ]
        assert list(daily_breakdown(events)) == [date(2024, 5, 3), date(2024, 5, 6), date(2024, 5, 9)]

    def test_daily_feature_split(self) -> None:
        events = [
            _event(4, feature="chat", at=datetime(2024, 5, 3, tzinfo=timezone.utc)),
            _event(6, feature="refine", at=datetime(2024, 5, 3, 8, tzinfo=timezone.utc)),
        ]
        assert daily_feature_breakdown(events) == {date(2024, 5, 3): {"chat": 4, "refine": 6}}


class TestBreakdowns:
    def test_zero_rows_for_idle_entities(self) -> None:
        rows = member_breakdown(_org_slice(), ["alice", "bob", "admin", "idle"])
        by_id = {r.entity_id: r for r in rows}
        assert by_id["idle"].tokens_used == 0
        assert by_id["idle"].events_count == 0
        assert by_id["alice"].tokens_used == 150
        assert by_id["alice"].events_count == 2

    def test_roster_order_preserved(self) -> None:
        rows = team_breakdown(_org_slice(), ["team-b", "team-a"])
        assert [r.entity_id for r in rows] == ["team-b", "team-a"]

    def test_member_partition(self) -> None:
        events = _org_slice()
        rows = member_breakdown(events, ["alice", "bob", "admin"])
        assert sum(r.tokens_used for r in rows) == summarize(events).total_tokens

    def test_unlisted_users_get_trailing_rows(self) -> None:
        events = _org_slice() + [_event(300, user="dave", team="team-a")]
        rows = member_breakdown(events, ["alice", "bob", "admin"])
        assert [r.entity_id for r in rows] == ["alice", "bob", "admin", "dave"]
        assert rows[-1].tokens_used == 300
        assert sum(r.tokens_used for r in rows) == summarize(events).total_tokens

    def test_team_partition_with_unassigned(self) -> None:
        events = _org_slice()
        roster = ["team-a", "team-b"]
        teams = team_breakdown(events, roster)
        assert unassigned_tokens(events, roster) == 27  # no team (20) + unknown team (7)
        assert sum(r.tokens_used for r in teams) + unassigned_tokens(events, roster) == 207


class _FailingLedger(UsageLedger):
    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    async def query(self, scope: ScopeFilter, time_range: TimeRange) -> list[UsageEvent]:
        raise self._exc

    async def record(self, event: UsageEvent) -> None:
        raise self._exc


class TestUsageAggregator:
    @pytest.mark.asyncio
    async def test_rollup_filters_scope_and_window(self) -> None:
        ledger = InMemoryUsageLedger()
        await ledger.record(_event(10, team="team-a"))
        await ledger.record(_event(20, team="team-b"))
        await ledger.record(_event(40, team="team-a", at=datetime(2024, 6, 1, tzinfo=timezone.utc)))
        await ledger.record(_event(80, team="team-a", org="org-2"))

        events, rollup = await UsageAggregator(ledger).rollup(ScopeFilter.for_team("org-1", "team-a"), MAY)
        assert rollup.total_tokens == 10
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_store_error_propagates(self) -> None:
        agg = UsageAggregator(_FailingLedger(StoreError("db down")))
        with pytest.raises(StoreError):
            await agg.rollup(ScopeFilter.for_organization("org-1"), MAY)

    @pytest.mark.asyncio
    async def test_unexpected_failure_becomes_store_error(self) -> None:
        agg = UsageAggregator(_FailingLedger(ConnectionError("reset")))
        with pytest.raises(StoreError):
            await agg.fetch(ScopeFilter.for_organization("org-1"), MAY)


class TestInMemoryLedger:
    @pytest.mark.asyncio
    async def test_duplicate_ids_recorded_once(self) -> None:
        ledger = InMemoryUsageLedger()
        event = _event(10)
        await ledger.record(event)
        await ledger.record(event)
        assert len(ledger) == 1
        assert await ledger.query(ScopeFilter.for_organization("org-1"), MAY) == [event]
