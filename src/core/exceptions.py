"""Custom exception hierarchy for the metering service."""

from __future__ import annotations

from enum import Enum
from typing import Any


class MeteringBaseError(Exception):
    """Base exception for all metering errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ── Caller Identity ──────────────────────────────────────────────

class AuthenticationError(MeteringBaseError):
    """Caller identity is missing or invalid."""


class DenialReason(str, Enum):
    """Internal reason behind an authorization denial. Never sent to callers."""

    NO_ORGANIZATION = "no_organization"
    NOT_A_MEMBER = "not_a_member"
    INSUFFICIENT_ROLE = "insufficient_role"


class AuthorizationError(MeteringBaseError):
    """Identity is valid but role or membership is insufficient."""

    def __init__(
        self,
        message: str,
        reason: DenialReason,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.reason = reason


# ── Lookups & Input ──────────────────────────────────────────────

class NotFoundError(MeteringBaseError):
    """Referenced organization, team, subscription or plan is absent."""


class DefaultPlanNotFoundError(NotFoundError):
    """The designated default plan is missing — billing setup cannot proceed."""


class ValidationError(MeteringBaseError):
    """Malformed input (bad date, bad range, bad limit)."""


# ── Storage ──────────────────────────────────────────────────────

class StoreError(MeteringBaseError):
    """Ledger or configuration read/write failed."""
