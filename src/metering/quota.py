"""Quota evaluation — consumption vs. limit, warning tiers, allowance checks.

Warning tiers (defaults, configurable):
    percentage >= 95  -> critical
    percentage >= 90  -> high
    percentage >= 80  -> medium
    otherwise         -> none

An unlimited limit never warns and never blocks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from src.core.constants import (
    WARNING_THRESHOLD_CRITICAL,
    WARNING_THRESHOLD_HIGH,
    WARNING_THRESHOLD_MEDIUM,
)
from src.core.exceptions import ValidationError
from src.core.logging import get_logger
from src.core.types import WarningLevel, ensure_utc

if TYPE_CHECKING:
    from config.settings import Settings

log = get_logger(__name__)


@dataclass(frozen=True)
class WarningThresholds:
    medium: float = WARNING_THRESHOLD_MEDIUM
    high: float = WARNING_THRESHOLD_HIGH
    critical: float = WARNING_THRESHOLD_CRITICAL

    def __post_init__(self) -> None:
        if not 0 < self.medium < self.high < self.critical <= 100:
            msg = (
                "warning thresholds must satisfy 0 < medium < high < critical <= 100: "
                f"{self.medium}/{self.high}/{self.critical}"
            )
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings: Settings) -> WarningThresholds:
        return cls(
            medium=settings.warning_threshold_medium,
            high=settings.warning_threshold_high,
            critical=settings.warning_threshold_critical,
        )

    def level_for(self, percentage: float) -> WarningLevel:
        if percentage >= self.critical:
            return WarningLevel.CRITICAL
        if percentage >= self.high:
            return WarningLevel.HIGH
        if percentage >= self.medium:
            return WarningLevel.MEDIUM
        return WarningLevel.NONE


@dataclass(frozen=True)
class QuotaStatus:
    """Consumption measured against a limit. ``limit=None`` means unlimited."""

    used: int
    limit: int | None
    percentage: float
    is_unlimited: bool
    warning_level: WarningLevel
    remaining: int | None
    overage: int = 0

    @property
    def is_exceeded(self) -> bool:
        return self.limit is not None and self.used >= self.limit


@dataclass(frozen=True)
class Allowance:
    allowed: bool
    status: QuotaStatus
    message: str = ""


class QuotaEvaluator:
    """Stateless evaluator; identical inputs always give identical output."""

    def __init__(self, thresholds: WarningThresholds | None = None) -> None:
        self.thresholds = thresholds or WarningThresholds()

    def evaluate(self, used: int, limit: int | None) -> QuotaStatus:
        if used < 0:
            raise ValidationError(f"used tokens cannot be negative: {used}", context={"used": used})

        if limit is None:
            return QuotaStatus(
                used=used,
                limit=None,
                percentage=0.0,
                is_unlimited=True,
                warning_level=WarningLevel.NONE,
                remaining=None,
            )

        if limit <= 0:
            raise ValidationError(f"limit must be > 0: {limit}", context={"limit": limit})

        # Multiply first so integer boundaries (800 of 1000) land exactly on 80.0
        percentage = used * 100 / limit
        return QuotaStatus(
            used=used,
            limit=limit,
            percentage=percentage,
            is_unlimited=False,
            warning_level=self.thresholds.level_for(percentage),
            remaining=max(limit - used, 0),
            overage=max(used - limit, 0),
        )

    def check_allowance(self, used: int, tokens_needed: int, limit: int | None) -> Allowance:
        """Would consuming ``tokens_needed`` more stay within the limit?"""
        if tokens_needed < 0:
            raise ValidationError(
                f"tokens_needed cannot be negative: {tokens_needed}",
                context={"tokens_needed": tokens_needed},
            )

        status = self.evaluate(used, limit)
        if status.limit is None:
            return Allowance(allowed=True, status=status)

        if used + tokens_needed > status.limit:
            log.warning(
                "quota_exceeded",
                used=used,
                tokens_needed=tokens_needed,
                limit=status.limit,
            )
            return Allowance(
                allowed=False,
                status=status,
                message=(
                    f"Usage limit exceeded. You have {status.remaining} tokens remaining "
                    f"this month, but this request needs approximately {tokens_needed} tokens."
                ),
            )

        return Allowance(allowed=True, status=status)


# ── Client Warning Session ───────────────────────────────────────


@dataclass
class WarningSession:
    """Per-session warning display state held by the polling client.

    A dismissal lasts until ``dismissed_until``; ``None`` means not dismissed.
    """

    last_percentage_seen: float | None = None
    dismissed_until: datetime | None = None

    def observe(self, status: QuotaStatus) -> None:
        self.last_percentage_seen = status.percentage

    def is_dismissed(self, now: datetime) -> bool:
        return self.dismissed_until is not None and ensure_utc(now) < self.dismissed_until

    def should_display(self, status: QuotaStatus, now: datetime) -> bool:
        self.observe(status)
        if status.is_unlimited or status.warning_level == WarningLevel.NONE:
            return False
        return not self.is_dismissed(now)

    def dismiss(self, now: datetime, duration: timedelta | None = None) -> None:
        """Hide the warning for ``duration``, or for the rest of the session."""
        if duration is None:
            self.dismissed_until = datetime.max.replace(tzinfo=timezone.utc)
        else:
            self.dismissed_until = ensure_utc(now) + duration
