"""Access policy for usage views.

Organization view: caller must belong to an organization and hold org_admin.
Team view: caller must hold a membership row for the team (checked first),
and be team_admin there or org_admin of the organization owning the team.

Denials raise AuthorizationError carrying an internal reason. The reason is
logged and never reaches the caller.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.core.constants import MSG_ACCESS_DENIED
from src.core.exceptions import AuthorizationError, DenialReason, NotFoundError
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


@dataclass(frozen=True)
class OrganizationAccess:
    profile: UserProfile
    organization: Organization


@dataclass(frozen=True)
class TeamAccess:
    team: Team
    membership: TeamMembership


class AccessPolicy:
    def __init__(self, directory: Directory) -> None:
        self._directory = directory

    @staticmethod
    def _deny(user_id: str, reason: DenialReason, **context: str) -> AuthorizationError:
        log.warning("access_denied", user_id=user_id, reason=reason.value, **context)
        return AuthorizationError(MSG_ACCESS_DENIED, reason, context={"user_id": user_id, **context})

    async def authorize_organization(self, user_id: str) -> OrganizationAccess:
        profile = await self._directory.get_profile(user_id)
        if profile is None or not profile.organization_id:
            raise self._deny(user_id, DenialReason.NO_ORGANIZATION, scope="organization")

        if profile.org_role != OrgRole.ORG_ADMIN:
            raise self._deny(
                user_id,
                DenialReason.INSUFFICIENT_ROLE,
                scope="organization",
                organization_id=profile.organization_id,
            )

        organization = await self._directory.get_organization(profile.organization_id)
        if organization is None:
            raise NotFoundError(
                f"Organization {profile.organization_id} not found",
                context={"organization_id": profile.organization_id},
            )
        return OrganizationAccess(profile=profile, organization=organization)

    async def authorize_team(self, user_id: str, team_id: str) -> TeamAccess:
        membership = await self._directory.get_membership(user_id, team_id)
        if membership is None:
            raise self._deny(user_id, DenialReason.NOT_A_MEMBER, scope="team", team_id=team_id)

        team = await self._directory.get_team(team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found", context={"team_id": team_id})

        if membership.team_role == TeamRole.TEAM_ADMIN:
            return TeamAccess(team=team, membership=membership)

        profile = await self._directory.get_profile(user_id)
        if (
            profile is not None
            and profile.org_role == OrgRole.ORG_ADMIN
            and profile.organization_id == team.organization_id
        ):
            return TeamAccess(team=team, membership=membership)

        raise self._deny(user_id, DenialReason.INSUFFICIENT_ROLE, scope="team", team_id=team_id)


# ── In-memory Directory ──────────────────────────────────────────


class InMemoryDirectory(Directory):
    """Static identity graph for local development and tests."""

    def __init__(
        self,
        organizations: list[Organization] | None = None,
        teams: list[Team] | None = None,
        profiles: list[UserProfile] | None = None,
        memberships: list[TeamMembership] | None = None,
    ) -> None:
        self._organizations = {o.id: o for o in organizations or []}
        self._teams = {t.id: t for t in teams or []}
        self._profiles = {p.id: p for p in profiles or []}
        self._memberships = list(memberships or [])

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)

    async def get_organization(self, organization_id: str) -> Organization | None:
        return self._organizations.get(organization_id)

    async def get_team(self, team_id: str) -> Team | None:
        return self._teams.get(team_id)

    async def list_teams(self, organization_id: str) -> list[Team]:
        return [t for t in self._teams.values() if t.organization_id == organization_id]

    async def list_org_members(self, organization_id: str) -> list[UserProfile]:
        return [p for p in self._profiles.values() if p.organization_id == organization_id]

    async def get_membership(self, user_id: str, team_id: str) -> TeamMembership | None:
        for m in self._memberships:
            if m.user_id == user_id and m.team_id == team_id:
                return m
        return None

    async def list_team_members(self, team_id: str) -> list[TeamMembership]:
        return [m for m in self._memberships if m.team_id == team_id]

    async def list_user_memberships(self, user_id: str) -> list[TeamMembership]:
        return [m for m in self._memberships if m.user_id == user_id]
