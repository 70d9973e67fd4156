"""Usage aggregation — reduces a ledger slice into rollups per scope.

Rollups:
- Total tokens and event count
- Feature breakdown (feature -> tokens)
- Daily breakdown (UTC calendar date -> tokens, ascending)
- Per-member / per-team breakdowns over a supplied roster

Partition guarantee for an organization slice:
    sum(team rows) + unassigned_tokens == total_tokens
    sum(member rows) == total_tokens
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from src.core.constants import DEFAULT_MODEL_LABEL
from src.core.exceptions import StoreError, ValidationError
from src.core.interfaces import UsageLedger
from src.core.logging import get_logger
from src.core.types import ScopeFilter, TimeRange, UsageEvent, ensure_utc

log = get_logger(__name__)

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass
class EntityUsage:
    """Token total for one roster entry (member or team)."""

    entity_id: str
    tokens_used: int = 0
    events_count: int = 0


@dataclass
class UsageRollup:
    total_tokens: int = 0
    total_events: int = 0
    feature_breakdown: dict[str, int] = field(default_factory=dict)
    daily_usage: dict[date, int] = field(default_factory=dict)


# ── Time Windows ─────────────────────────────────────────────────


def month_window(now: datetime) -> TimeRange:
    """Calendar month containing ``now``: [first-of-month, first-of-next-month) in UTC."""
    now = ensure_utc(now)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return TimeRange(start, end)


def parse_month(value: str) -> TimeRange:
    """Parse ``YYYY-MM`` into that month's window."""
    match = _MONTH_RE.match(value.strip())
    if match is None:
        raise ValidationError(
            f"month must be formatted YYYY-MM: {value!r}",
            context={"month": value},
        )
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 1970:
        raise ValidationError(
            f"month out of range: {value!r}",
            context={"month": value},
        )
    return month_window(datetime(year, month, 1, tzinfo=timezone.utc))


def day_bucket(ts: datetime) -> date:
    """UTC calendar date of a timestamp."""
    return ensure_utc(ts).date()


# ── Reductions ───────────────────────────────────────────────────


def total_tokens(events: Iterable[UsageEvent]) -> int:
    return sum(e.tokens_used for e in events)


def feature_breakdown(events: Iterable[UsageEvent]) -> dict[str, int]:
    result: dict[str, int] = {}
    for e in events:
        key = str(getattr(e.feature, "value", e.feature))
        result[key] = result.get(key, 0) + e.tokens_used
    return result


def model_breakdown(events: Iterable[UsageEvent]) -> dict[str, int]:
    result: dict[str, int] = {}
    for e in events:
        key = e.model_used or DEFAULT_MODEL_LABEL
        result[key] = result.get(key, 0) + e.tokens_used
    return result


def daily_breakdown(events: Iterable[UsageEvent]) -> dict[date, int]:
    """Tokens per UTC day, keys in ascending date order."""
    buckets: dict[date, int] = {}
    for e in events:
        day = day_bucket(e.created_at)
        buckets[day] = buckets.get(day, 0) + e.tokens_used
    return dict(sorted(buckets.items()))


def daily_feature_breakdown(events: Iterable[UsageEvent]) -> dict[date, dict[str, int]]:
    """Per-day feature split, keys in ascending date order."""
    buckets: dict[date, list[UsageEvent]] = {}
    for e in events:
        buckets.setdefault(day_bucket(e.created_at), []).append(e)
    return {day: feature_breakdown(buckets[day]) for day in sorted(buckets)}


def _roster_breakdown(
    events: Sequence[UsageEvent],
    entity_ids: Iterable[str],
    key: str,
    include_unlisted: bool = False,
) -> list[EntityUsage]:
    rows: dict[str, EntityUsage] = {}
    for entity_id in entity_ids:
        rows.setdefault(entity_id, EntityUsage(entity_id=entity_id))

    for e in events:
        entity_id = getattr(e, key)
        row = rows.get(entity_id)
        if row is None and include_unlisted and entity_id:
            row = rows[entity_id] = EntityUsage(entity_id=entity_id)
        if row is not None:
            row.tokens_used += e.tokens_used
            row.events_count += 1

    return list(rows.values())


def member_breakdown(events: Sequence[UsageEvent], user_ids: Iterable[str]) -> list[EntityUsage]:
    """One row per roster user, in roster order, then one per unlisted user.

    Users with no events get 0. Users who left the roster but still own
    events in the slice get a trailing row, so member totals always sum to
    the slice total.
    """
    return _roster_breakdown(events, user_ids, "user_id", include_unlisted=True)


def team_breakdown(events: Sequence[UsageEvent], team_ids: Iterable[str]) -> list[EntityUsage]:
    """One row per roster team, in roster order. Teams with no events get 0."""
    return _roster_breakdown(events, team_ids, "team_id")


def unassigned_tokens(events: Iterable[UsageEvent], team_ids: Iterable[str]) -> int:
    """Tokens of events carrying no team, or a team outside the roster."""
    known = set(team_ids)
    return sum(e.tokens_used for e in events if not e.team_id or e.team_id not in known)


def summarize(events: Sequence[UsageEvent]) -> UsageRollup:
    return UsageRollup(
        total_tokens=total_tokens(events),
        total_events=len(events),
        feature_breakdown=feature_breakdown(events),
        daily_usage=daily_breakdown(events),
    )


# ── Ledger-backed Aggregator ─────────────────────────────────────


class UsageAggregator:
    """Fetches a ledger slice and reduces it. Never returns partial results."""

    def __init__(self, ledger: UsageLedger) -> None:
        self._ledger = ledger

    async def fetch(self, scope: ScopeFilter, window: TimeRange) -> list[UsageEvent]:
        """Read the slice, translating unexpected ledger failures into StoreError."""
        try:
            events = await self._ledger.query(scope, window)
        except StoreError:
            log.error(
                "ledger_query_failed",
                organization_id=scope.organization_id,
                team_id=scope.team_id,
                user_id=scope.user_id,
            )
            raise
        except Exception as exc:
            log.error(
                "ledger_query_failed",
                organization_id=scope.organization_id,
                team_id=scope.team_id,
                user_id=scope.user_id,
                error=str(exc),
            )
            raise StoreError(
                "Usage ledger query failed",
                context={"scope": scope, "window": window},
            ) from exc

        return [e for e in events if window.contains(e.created_at) and scope.matches(e)]

    async def rollup(self, scope: ScopeFilter, window: TimeRange) -> tuple[list[UsageEvent], UsageRollup]:
        events = await self.fetch(scope, window)
        rollup = summarize(events)
        log.debug(
            "usage_rolled_up",
            organization_id=scope.organization_id,
            team_id=scope.team_id,
            user_id=scope.user_id,
            total_tokens=rollup.total_tokens,
            total_events=rollup.total_events,
        )
        return events, rollup
