"""DB-backed directory — read-only view of organizations, teams and memberships."""

from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.exceptions import StoreError
from src.core.interfaces import Directory
from src.core.logging import get_logger
from src.core.types import (
    Organization,
    OrgRole,
    Team,
    TeamMembership,
    TeamRole,
    UserProfile,
)

log = get_logger(__name__)


class SqlDirectory(Directory):
    """Async PostgreSQL-backed identity graph lookups."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def _fetch(self, sql: str, params: dict[str, Any]) -> list[Any]:
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(text(sql), params)
                return list(result.mappings().all())
        except SQLAlchemyError as exc:
            log.error("directory_read_failed", error=str(exc), **params)
            raise StoreError("Directory read failed", context=params) from exc

    async def get_profile(self, user_id: str) -> UserProfile | None:
        rows = await self._fetch("SELECT * FROM user_profiles WHERE id = :uid", {"uid": user_id})
        return self._row_to_profile(rows[0]) if rows else None

    async def get_organization(self, organization_id: str) -> Organization | None:
        rows = await self._fetch(
            "SELECT id, name FROM organizations WHERE id = :org", {"org": organization_id}
        )
        return Organization(id=rows[0]["id"], name=rows[0]["name"]) if rows else None

    async def get_team(self, team_id: str) -> Team | None:
        rows = await self._fetch(
            "SELECT id, name, organization_id FROM teams WHERE id = :team", {"team": team_id}
        )
        return self._row_to_team(rows[0]) if rows else None

    async def list_teams(self, organization_id: str) -> list[Team]:
        rows = await self._fetch(
            "SELECT id, name, organization_id FROM teams "
            "WHERE organization_id = :org ORDER BY name",
            {"org": organization_id},
        )
        return [self._row_to_team(r) for r in rows]

    async def list_org_members(self, organization_id: str) -> list[UserProfile]:
        rows = await self._fetch(
            "SELECT * FROM user_profiles WHERE organization_id = :org ORDER BY full_name",
            {"org": organization_id},
        )
        return [self._row_to_profile(r) for r in rows]

    async def get_membership(self, user_id: str, team_id: str) -> TeamMembership | None:
        rows = await self._fetch(
            """
            SELECT m.user_id, m.team_id, m.team_role, p.full_name
            FROM user_team_memberships m
            LEFT JOIN user_profiles p ON p.id = m.user_id
            WHERE m.user_id = :uid AND m.team_id = :team
            """,
            {"uid": user_id, "team": team_id},
        )
        return self._row_to_membership(rows[0]) if rows else None

    async def list_team_members(self, team_id: str) -> list[TeamMembership]:
        rows = await self._fetch(
            """
            SELECT m.user_id, m.team_id, m.team_role, p.full_name
            FROM user_team_memberships m
            LEFT JOIN user_profiles p ON p.id = m.user_id
            WHERE m.team_id = :team
            ORDER BY p.full_name
            """,
            {"team": team_id},
        )
        return [self._row_to_membership(r) for r in rows]

    async def list_user_memberships(self, user_id: str) -> list[TeamMembership]:
        rows = await self._fetch(
            """
            SELECT m.user_id, m.team_id, m.team_role, p.full_name
            FROM user_team_memberships m
            LEFT JOIN user_profiles p ON p.id = m.user_id
            WHERE m.user_id = :uid
            ORDER BY m.joined_at, m.team_id
            """,
            {"uid": user_id},
        )
        return [self._row_to_membership(r) for r in rows]

    # ── Row Mapping ──────────────────────────────────────────────

    @staticmethod
    def _row_to_team(r: Any) -> Team:
        return Team(id=r["id"], name=r["name"], organization_id=r["organization_id"])

    @staticmethod
    def _row_to_profile(r: Any) -> UserProfile:
        try:
            role = OrgRole(r.get("org_role") or OrgRole.MEMBER.value)
        except ValueError:
            role = OrgRole.MEMBER
        return UserProfile(
            id=r["id"],
            full_name=r.get("full_name") or "",
            organization_id=r.get("organization_id"),
            org_role=role,
        )

    @staticmethod
    def _row_to_membership(r: Any) -> TeamMembership:
        try:
            role = TeamRole(r["team_role"])
        except ValueError:
            role = TeamRole.VIEWER
        return TeamMembership(
            user_id=r["user_id"],
            team_id=r["team_id"],
            team_role=role,
            full_name=r.get("full_name") or "",
        )
