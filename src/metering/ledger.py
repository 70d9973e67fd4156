"""In-memory usage ledger for local development and tests."""

from __future__ import annotations

import asyncio

from src.core.interfaces import UsageLedger
from src.core.logging import get_logger
from src.core.types import ScopeFilter, TimeRange, UsageEvent

log = get_logger(__name__)


class InMemoryUsageLedger(UsageLedger):
    """Append-only list of events guarded by an asyncio lock."""

    def __init__(self, events: list[UsageEvent] | None = None) -> None:
        self._events: list[UsageEvent] = list(events or [])
        self._ids: set[str] = {e.id for e in self._events}
        self._lock = asyncio.Lock()

    async def record(self, event: UsageEvent) -> None:
        async with self._lock:
            if event.id in self._ids:
                log.debug("usage_event_duplicate", event_id=event.id)
                return
            self._events.append(event)
            self._ids.add(event.id)

        log.debug(
            "usage_recorded",
            event_id=event.id,
            user_id=event.user_id,
            organization_id=event.organization_id,
            tokens_used=event.tokens_used,
        )

    async def query(self, scope: ScopeFilter, time_range: TimeRange) -> list[UsageEvent]:
        async with self._lock:
            snapshot = list(self._events)
        return [e for e in snapshot if time_range.contains(e.created_at) and scope.matches(e)]

    def __len__(self) -> int:
        return len(self._events)
