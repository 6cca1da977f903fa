# -*- coding: utf-8 -*-
"""
Reporting Period Calendar - RiskGuard Tolerance Monitor

Registered reporting periods give each observation and breach event a
sequential ``period_number``. Dates outside any registered period fall
back to a number derived from the configured granularity:

    monthly:   year * 12 + (month - 1)
    quarterly: year * 4 + (quarter - 1)

Consecutive calendar periods therefore always differ by exactly one,
which the sustained breach rule relies on to detect gaps.

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Dict, List, Optional

from riskguard.exceptions import ConcurrencyConflict, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.models import ReportingPeriod

logger = logging.getLogger(__name__)


def derive_period_number(on: date, granularity: str = "monthly") -> int:
    """Derive a sequential period number from a calendar date.

    Args:
        on: Date to number.
        granularity: ``monthly`` or ``quarterly``.

    Returns:
        Period number where adjacent periods differ by one.
    """
    if granularity == "quarterly":
        return on.year * 4 + (on.month - 1) // 3
    return on.year * 12 + (on.month - 1)


class PeriodCalendar:
    """Registry of reporting periods keyed by period_id."""

    def __init__(self, config: Optional[ToleranceMonitorConfig] = None) -> None:
        self.config = config or get_config()
        self._periods: Dict[str, ReportingPeriod] = {}
        self._lock = threading.Lock()

    def register(
        self,
        period_id: str,
        start_date: date,
        end_date: date,
        name: str = "",
        period_number: Optional[int] = None,
    ) -> ReportingPeriod:
        """Register a reporting period.

        When ``period_number`` is omitted it is derived from ``end_date``.

        Raises:
            ValidationError: If the end date precedes the start date.
            ConcurrencyConflict: If the period_id is already registered.
        """
        if end_date < start_date:
            raise ValidationError(
                message=f"Period {period_id} ends before it starts",
                invalid_fields={"end_date": "must not precede start_date"},
            )
        if period_number is None:
            period_number = derive_period_number(
                end_date, self.config.period_granularity,
            )
        period = ReportingPeriod(
            period_id=period_id,
            name=name or period_id,
            start_date=start_date,
            end_date=end_date,
            period_number=period_number,
        )
        with self._lock:
            if period_id in self._periods:
                raise ConcurrencyConflict(
                    message=f"Period {period_id} already exists",
                    entity_id=period_id,
                )
            self._periods[period_id] = period
        logger.info(
            "Registered period %s (%s..%s, #%d)",
            period_id, start_date, end_date, period_number,
        )
        return period

    def get(self, period_id: str) -> ReportingPeriod:
        period = self._periods.get(period_id)
        if period is None:
            raise NotFound(
                message=f"Period {period_id} not found",
                entity_type="period",
                entity_id=period_id,
            )
        return period

    def find(self, period_id: Optional[str]) -> Optional[ReportingPeriod]:
        if period_id is None:
            return None
        return self._periods.get(period_id)

    def period_for_date(self, on: date) -> Optional[ReportingPeriod]:
        for period in self._periods.values():
            if period.start_date <= on <= period.end_date:
                return period
        return None

    def period_number(self, on: date, period_id: Optional[str] = None) -> int:
        """Resolve the period number for an observation.

        A registered ``period_id`` wins, then a registered period covering
        the date, then the derived calendar number.
        """
        period = self.find(period_id) or self.period_for_date(on)
        if period is not None:
            return period.period_number
        return derive_period_number(on, self.config.period_granularity)

    def list(self) -> List[ReportingPeriod]:
        """Return registered periods ordered by period number."""
        return sorted(self._periods.values(), key=lambda p: p.period_number)


__all__ = ["PeriodCalendar", "derive_period_number"]
