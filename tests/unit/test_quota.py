"""Tests for quota evaluation and the client warning session."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from src.core.exceptions import ValidationError
from src.core.types import WarningLevel
from src.metering.quota import QuotaEvaluator, WarningSession, WarningThresholds

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def evaluator() -> QuotaEvaluator:
    return QuotaEvaluator()


class TestThresholds:
    @pytest.mark.parametrize(
        ("used", "level"),
        [
            (0, WarningLevel.NONE),
            (799, WarningLevel.NONE),
            (800, WarningLevel.MEDIUM),
            (899, WarningLevel.MEDIUM),
            (900, WarningLevel.HIGH),
            (949, WarningLevel.HIGH),
            (950, WarningLevel.CRITICAL),
            (1500, WarningLevel.CRITICAL),
        ],
    )
    def test_boundaries_at_limit_1000(self, evaluator: QuotaEvaluator, used: int, level: WarningLevel) -> None:
        assert evaluator.evaluate(used, 1000).warning_level == level

    def test_must_ascend(self) -> None:
        with pytest.raises(ValueError):
            WarningThresholds(medium=90, high=80, critical=95)

    def test_custom_thresholds(self) -> None:
        ev = QuotaEvaluator(WarningThresholds(medium=50, high=70, critical=99))
        assert ev.evaluate(50, 100).warning_level == WarningLevel.MEDIUM

    def test_from_settings(self) -> None:
        settings = MagicMock()
        settings.warning_threshold_medium = 60.0
        settings.warning_threshold_high = 75.0
        settings.warning_threshold_critical = 90.0
        t = WarningThresholds.from_settings(settings)
        assert (t.medium, t.high, t.critical) == (60.0, 75.0, 90.0)


class TestEvaluate:
    def test_unlimited_never_warns(self, evaluator: QuotaEvaluator) -> None:
        for used in (0, 10**9):
            status = evaluator.evaluate(used, None)
            assert status.is_unlimited
            assert status.percentage == 0.0
            assert status.warning_level == WarningLevel.NONE
            assert status.remaining is None

    def test_over_limit_not_clamped(self, evaluator: QuotaEvaluator) -> None:
        status = evaluator.evaluate(1500, 1000)
        assert status.percentage == 150.0
        assert status.overage == 500
        assert status.remaining == 0
        assert status.is_exceeded

    def test_monotonic(self, evaluator: QuotaEvaluator) -> None:
        percentages = [evaluator.evaluate(t, 777).percentage for t in range(0, 2000, 37)]
        assert percentages == sorted(percentages)

    def test_pure(self, evaluator: QuotaEvaluator) -> None:
        assert evaluator.evaluate(321, 1000) == evaluator.evaluate(321, 1000)

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_rejected(self, evaluator: QuotaEvaluator, limit: int) -> None:
        with pytest.raises(ValidationError):
            evaluator.evaluate(10, limit)

    def test_negative_usage_rejected(self, evaluator: QuotaEvaluator) -> None:
        with pytest.raises(ValidationError):
            evaluator.evaluate(-1, 1000)


class TestCheckAllowance:
    def test_within_limit(self, evaluator: QuotaEvaluator) -> None:
        assert evaluator.check_allowance(900, 100, 1000).allowed

    def test_exceeds_limit(self, evaluator: QuotaEvaluator) -> None:
        allowance = evaluator.check_allowance(900, 101, 1000)
        assert not allowance.allowed
        assert "100 tokens remaining" in allowance.message

    def test_unlimited_always_allowed(self, evaluator: QuotaEvaluator) -> None:
        assert evaluator.check_allowance(10**9, 10**9, None).allowed


class TestWarningSession:
    def test_displays_when_warning(self, evaluator: QuotaEvaluator) -> None:
        session = WarningSession()
        assert session.should_display(evaluator.evaluate(850, 1000), NOW)
        assert session.last_percentage_seen == 85.0

    def test_hidden_below_threshold(self, evaluator: QuotaEvaluator) -> None:
        assert not WarningSession().should_display(evaluator.evaluate(100, 1000), NOW)

    def test_hidden_for_unlimited(self, evaluator: QuotaEvaluator) -> None:
        assert not WarningSession().should_display(evaluator.evaluate(10**6, None), NOW)

    def test_dismiss_for_session(self, evaluator: QuotaEvaluator) -> None:
        session = WarningSession()
        session.dismiss(NOW)
        assert not session.should_display(evaluator.evaluate(990, 1000), NOW + timedelta(days=3))

    def test_timed_dismissal_expires(self, evaluator: QuotaEvaluator) -> None:
        session = WarningSession()
        session.dismiss(NOW, duration=timedelta(hours=1))
        status = evaluator.evaluate(990, 1000)
        assert not session.should_display(status, NOW + timedelta(minutes=30))
        assert session.should_display(status, NOW + timedelta(hours=2))
