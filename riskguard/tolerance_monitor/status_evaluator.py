# -*- coding: utf-8 -*-
"""
Status Evaluator - RiskGuard Tolerance Monitor

Computes a traffic-light status for a tolerance metric from the primary
indicator's latest approved observation and the metric's bounds.

Limit evaluation (direction-aware):

    above    value >= hard -> RED, value >= soft -> AMBER, else GREEN
    below    value <= hard -> RED, value <= soft -> AMBER, else GREEN
    between  hard is the lower rail, soft the upper rail.
             Outside [hard, soft] -> RED; within the amber margin of a
             rail -> AMBER; else GREEN. The margin is a fraction of each
             rail's magnitude (default 0.10).

Band evaluation tests the red band, then amber, then green; a value in
no configured band is UNKNOWN.

Diagnostic statuses, checked in this order:

    UNKNOWN  bounds or direction not configured
    NO_KRI   no primary coverage link
    NO_DATA  no approved, non-superseded observation

Evaluation has no side effects and can be re-derived for any past date or
reporting period.

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Dict, Optional, Tuple

from riskguard.exceptions import NotFound
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.coverage import CoverageGraph
from riskguard.tolerance_monitor.metrics import record_evaluation, record_operation
from riskguard.tolerance_monitor.models import (
    LimitDirection,
    RAGStatus,
    StatusResult,
    ToleranceBands,
    ToleranceMetric,
)
from riskguard.tolerance_monitor.observation_log import ObservationLog
from riskguard.tolerance_monitor.periods import PeriodCalendar
from riskguard.tolerance_monitor.tolerance_store import ToleranceDefinitionStore

logger = logging.getLogger(__name__)


def evaluate_limits(
    value: float,
    direction: Optional[LimitDirection],
    soft_limit: Optional[float],
    hard_limit: Optional[float],
    amber_margin: float = 0.10,
) -> RAGStatus:
    """Classify a value against soft/hard limits.

    Args:
        value: Observed value.
        direction: above, below or between.
        soft_limit: Soft limit (upper rail for between).
        hard_limit: Hard limit (lower rail for between).
        amber_margin: Fraction of each rail's magnitude treated as amber
            for between metrics.

    Returns:
        GREEN, AMBER or RED; UNKNOWN if the configuration is incomplete.
    """
    if direction is None or soft_limit is None or hard_limit is None:
        return RAGStatus.UNKNOWN

    direction = LimitDirection(direction)
    if direction == LimitDirection.ABOVE:
        if value >= hard_limit:
            return RAGStatus.RED
        if value >= soft_limit:
            return RAGStatus.AMBER
        return RAGStatus.GREEN

    if direction == LimitDirection.BELOW:
        if value <= hard_limit:
            return RAGStatus.RED
        if value <= soft_limit:
            return RAGStatus.AMBER
        return RAGStatus.GREEN

    lower, upper = hard_limit, soft_limit
    if value < lower or value > upper:
        return RAGStatus.RED
    if value < lower + abs(lower) * amber_margin or value > upper - abs(upper) * amber_margin:
        return RAGStatus.AMBER
    return RAGStatus.GREEN


def evaluate_bands(value: float, bands: ToleranceBands) -> RAGStatus:
    """Classify a value against green/amber/red bands, worst band first."""
    if bands.red is not None and bands.red.contains(value):
        return RAGStatus.RED
    if bands.amber is not None and bands.amber.contains(value):
        return RAGStatus.AMBER
    if bands.green is not None and bands.green.contains(value):
        return RAGStatus.GREEN
    return RAGStatus.UNKNOWN


def evaluate_value(
    metric: ToleranceMetric,
    value: float,
    default_margin: float = 0.10,
) -> RAGStatus:
    """Classify a value against whichever bound configuration a metric uses."""
    if metric.bands is not None and metric.bands.is_configured:
        return evaluate_bands(value, metric.bands)
    margin = metric.amber_margin if metric.amber_margin is not None else default_margin
    return evaluate_limits(
        value, metric.direction, metric.soft_limit, metric.hard_limit, margin,
    )


def is_configured(metric: ToleranceMetric) -> bool:
    if metric.bands is not None and metric.bands.is_configured:
        return True
    return metric.has_limits


class StatusEvaluator:
    """Evaluates metrics against the observation log and coverage graph.

    Attributes:
        store: Tolerance definitions.
        observations: Indicator observations.
        coverage: Coverage links.
        periods: Reporting period calendar.
    """

    def __init__(
        self,
        store: ToleranceDefinitionStore,
        observations: ObservationLog,
        coverage: CoverageGraph,
        periods: PeriodCalendar,
        config: Optional[ToleranceMonitorConfig] = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self.observations = observations
        self.coverage = coverage
        self.periods = periods

    def resolve_metric(self, metric_ref: str) -> ToleranceMetric:
        """Resolve a version id or identity key to a metric version.

        An identity key resolves to its current approved version, or to
        its latest version when none is approved.

        Raises:
            NotFound: Neither a known version id nor identity key.
        """
        try:
            return self.store.get_metric(metric_ref)
        except NotFound:
            current = self.store.get_current(metric_ref)
            if current is not None:
                return current
            return self.store.list_versions(metric_ref)[-1]

    def evaluate_metric(
        self,
        metric_ref: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> StatusResult:
        """Evaluate one metric at a date or for a reporting period.

        The bounds used are those of the governed version in force on the
        reference date, falling back to the requested version.

        Args:
            metric_ref: Version id or identity key.
            as_of: Reference date (defaults to the period end, else today).
            period_id: Restrict to observations of this period.

        Returns:
            StatusResult. Missing configuration is reported as a
            diagnostic status, never raised.

        Raises:
            NotFound: Unknown metric.
        """
        start = time.monotonic()
        metric, reference, observation_cutoff = self._resolve_context(
            metric_ref, as_of, period_id,
        )

        result = StatusResult(
            metric_id=metric.metric_id,
            metric_key=metric.metric_key,
            status=RAGStatus.UNKNOWN,
            as_of=reference,
            period_id=period_id,
            direction=metric.direction,
            soft_limit=metric.soft_limit,
            hard_limit=metric.hard_limit,
        )

        link = self.coverage.primary_link(metric.metric_key)
        if not is_configured(metric):
            result.message = "Bounds or direction not configured"
        elif link is None:
            result.status = RAGStatus.NO_KRI
            result.message = "No primary indicator linked"
        else:
            result.indicator_id = link.indicator_id
            observation = self.observations.latest_approved(
                link.indicator_id, as_of=observation_cutoff, period_id=period_id,
            )
            if observation is None:
                result.status = RAGStatus.NO_DATA
                result.message = "No approved observation"
            else:
                result.observation_id = observation.observation_id
                result.observation_date = observation.observation_date
                result.value = observation.value
                result.status = evaluate_value(
                    metric, observation.value, self.config.between_amber_margin,
                )
                if result.status == RAGStatus.UNKNOWN:
                    result.message = "Value falls in no configured band"

        record_evaluation(result.status.value)
        record_operation("evaluate_metric", "success", time.monotonic() - start)
        logger.debug(
            "Evaluated %s v%d as of %s: %s (value=%s)",
            metric.metric_key, metric.version, reference,
            result.status.value, result.value,
        )
        return result

    def evaluate_indicators(
        self,
        metric_ref: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> Dict[str, RAGStatus]:
        """Status of every linked indicator against the metric's bounds."""
        metric, _, observation_cutoff = self._resolve_context(metric_ref, as_of, period_id)

        statuses: Dict[str, RAGStatus] = {}
        for link in self.coverage.links_for_metric(metric.metric_key):
            if not is_configured(metric):
                statuses[link.indicator_id] = RAGStatus.UNKNOWN
                continue
            observation = self.observations.latest_approved(
                link.indicator_id, as_of=observation_cutoff, period_id=period_id,
            )
            if observation is None:
                statuses[link.indicator_id] = RAGStatus.NO_DATA
            else:
                statuses[link.indicator_id] = evaluate_value(
                    metric, observation.value, self.config.between_amber_margin,
                )
        return statuses

    def _resolve_context(
        self,
        metric_ref: str,
        as_of: Optional[date],
        period_id: Optional[str],
    ) -> Tuple[ToleranceMetric, date, Optional[date]]:
        """Return the governing version, reference date and observation cutoff.

        A period read ignores observation dates unless ``as_of`` is given.
        """
        requested = self.resolve_metric(metric_ref)
        period = self.periods.find(period_id)
        reference = as_of or (period.end_date if period is not None else date.today())
        cutoff = as_of if period_id is not None else reference
        metric = self.store.version_in_force(requested.metric_key, reference) or requested
        return metric, reference, cutoff


__all__ = [
    "StatusEvaluator",
    "evaluate_limits",
    "evaluate_bands",
    "evaluate_value",
    "is_configured",
]
