"""DB-backed usage ledger — append-only token_usage_events table."""

from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.exceptions import StoreError
from src.core.interfaces import UsageLedger
from src.core.logging import get_logger
from src.core.types import ScopeFilter, TimeRange, UsageEvent

log = get_logger(__name__)


class SqlUsageLedger(UsageLedger):
    """Async PostgreSQL-backed usage ledger."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def query(self, scope: ScopeFilter, time_range: TimeRange) -> list[UsageEvent]:
        """Select the slice with a half-open created_at range."""
        clauses = ["created_at >= :start", "created_at < :end"]
        params: dict[str, Any] = {"start": time_range.start, "end": time_range.end}
        if scope.organization_id:
            clauses.append("organization_id = :org")
            params["org"] = scope.organization_id
        if scope.team_id:
            clauses.append("team_id = :team")
            params["team"] = scope.team_id
        if scope.user_id:
            clauses.append("user_id = :uid")
            params["uid"] = scope.user_id

        sql = "SELECT * FROM token_usage_events WHERE " + " AND ".join(clauses)
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(text(sql), params)
                rows = result.mappings().all()
        except SQLAlchemyError as exc:
            log.error("ledger_read_failed", error=str(exc), **params)
            raise StoreError("Usage ledger read failed", context={"scope": scope}) from exc

        return [self._row_to_event(r) for r in rows]

    async def record(self, event: UsageEvent) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        """
                        INSERT INTO token_usage_events
                            (id, user_id, organization_id, team_id, subscription_id,
                             feature_used, tokens_used, endpoint, model_used,
                             request_id, created_at)
                        VALUES
                            (:id, :uid, :org, :team, :sub,
                             :feature, :tokens, :endpoint, :model,
                             :request_id, :created_at)
                        ON CONFLICT (id) DO NOTHING
                        """
                    ),
                    {
                        "id": event.id,
                        "uid": event.user_id,
                        "org": event.organization_id,
                        "team": event.team_id,
                        "sub": event.subscription_id,
                        "feature": str(getattr(event.feature, "value", event.feature)),
                        "tokens": event.tokens_used,
                        "endpoint": event.endpoint,
                        "model": event.model_used,
                        "request_id": event.request_id,
                        "created_at": event.created_at,
                    },
                )
        except SQLAlchemyError as exc:
            log.error("ledger_write_failed", event_id=event.id, error=str(exc))
            raise StoreError("Usage ledger write failed", context={"event_id": event.id}) from exc

        log.debug(
            "usage_recorded",
            event_id=event.id,
            user_id=event.user_id,
            tokens_used=event.tokens_used,
        )

    @staticmethod
    def _row_to_event(r: Any) -> UsageEvent:
        """Convert a DB row mapping to a UsageEvent."""
        return UsageEvent(
            id=r["id"],
            user_id=r["user_id"],
            organization_id=r["organization_id"],
            team_id=r.get("team_id"),
            subscription_id=r.get("subscription_id"),
            feature=r["feature_used"],
            tokens_used=r["tokens_used"],
            endpoint=r.get("endpoint") or "",
            model_used=r.get("model_used"),
            request_id=r.get("request_id"),
            created_at=r["created_at"],
        )
