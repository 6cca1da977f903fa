# -*- coding: utf-8 -*-
"""Tests for reporting period numbering."""

from datetime import date

import pytest

from riskguard.exceptions import ConcurrencyConflict, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig
from riskguard.tolerance_monitor.periods import PeriodCalendar, derive_period_number


@pytest.fixture
def calendar():
    return PeriodCalendar(config=ToleranceMonitorConfig())


class TestDerivePeriodNumber:
    """Tests for calendar-derived period numbers."""

    def test_adjacent_months_differ_by_one(self):
        assert derive_period_number(date(2024, 2, 1)) - derive_period_number(date(2024, 1, 31)) == 1
        assert derive_period_number(date(2024, 1, 1)) - derive_period_number(date(2023, 12, 31)) == 1

    def test_same_month(self):
        assert derive_period_number(date(2024, 3, 1)) == derive_period_number(date(2024, 3, 31))

    def test_quarterly(self):
        q1 = derive_period_number(date(2024, 3, 31), "quarterly")
        assert derive_period_number(date(2024, 1, 1), "quarterly") == q1
        assert derive_period_number(date(2024, 4, 1), "quarterly") == q1 + 1
        assert derive_period_number(date(2025, 1, 1), "quarterly") == q1 + 4


class TestPeriodCalendar:
    """Tests for PeriodCalendar."""

    def test_register_derives_number(self, calendar):
        period = calendar.register("2024-Q1", date(2024, 1, 1), date(2024, 3, 31))
        assert period.period_number == derive_period_number(date(2024, 3, 31))
        assert period.name == "2024-Q1"

    def test_register_explicit_number(self, calendar):
        period = calendar.register("P7", date(2024, 1, 1), date(2024, 1, 31), period_number=7)
        assert calendar.get("P7").period_number == 7
        assert period.period_number == 7

    def test_end_before_start(self, calendar):
        with pytest.raises(ValidationError):
            calendar.register("bad", date(2024, 2, 1), date(2024, 1, 1))

    def test_duplicate(self, calendar):
        calendar.register("P1", date(2024, 1, 1), date(2024, 1, 31))
        with pytest.raises(ConcurrencyConflict):
            calendar.register("P1", date(2024, 2, 1), date(2024, 2, 29))

    def test_lookup(self, calendar):
        calendar.register("P1", date(2024, 1, 1), date(2024, 1, 31))
        with pytest.raises(NotFound):
            calendar.get("P9")
        assert calendar.find(None) is None
        assert calendar.find("P9") is None
        assert calendar.period_for_date(date(2024, 1, 15)).period_id == "P1"
        assert calendar.period_for_date(date(2024, 2, 1)) is None

    def test_period_number_precedence(self, calendar):
        """Explicit period wins over a covering period, which wins over the calendar."""
        calendar.register("P1", date(2024, 1, 1), date(2024, 1, 31), period_number=100)
        calendar.register("P2", date(2024, 2, 1), date(2024, 2, 29), period_number=101)

        assert calendar.period_number(date(2024, 1, 15), "P2") == 101
        assert calendar.period_number(date(2024, 1, 15)) == 100
        assert calendar.period_number(date(2024, 3, 15)) == derive_period_number(date(2024, 3, 15))
        assert calendar.period_number(date(2024, 1, 15), "unregistered") == 100

    def test_list_sorted(self, calendar):
        calendar.register("late", date(2024, 2, 1), date(2024, 2, 29))
        calendar.register("early", date(2024, 1, 1), date(2024, 1, 31))
        assert [p.period_id for p in calendar.list()] == ["early", "late"]

    def test_quarterly_granularity(self):
        calendar = PeriodCalendar(config=ToleranceMonitorConfig(period_granularity="quarterly"))
        assert calendar.period_number(date(2024, 2, 15)) == calendar.period_number(date(2024, 3, 1))
