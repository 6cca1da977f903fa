# -*- coding: utf-8 -*-
"""
Aggregation Engine - RiskGuard Tolerance Monitor

Rolls per-metric statuses up to a container (outcome, risk or risk
category) with a strict worst-of ranking:

    RED > AMBER > GREEN > UNKNOWN > NO_METRICS

There is no weighting. NO_KRI and NO_DATA rank with UNKNOWN, and an empty
container is NO_METRICS. Category containers include every descendant
category of the taxonomy tree.

Also decides whether a container is out of appetite. Reasons, in order of
precedence:

    HARD_LIMIT_BREACH               any metric beyond its hard limit
    ZERO_APPETITE_MATERIAL          zero appetite and material exposure
    SOFT_LIMIT_ESCALATION           a soft breach whose rule is met
    DATA_MISSING_FOR_TOLERANCE      diagnostic status or stale observation
    SOFT_BREACH_PENDING_ESCALATION  a soft breach whose rule is not met
    WITHIN_APPETITE                 otherwise

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from datetime import date, timedelta
from typing import Iterable, List, Optional

from riskguard.exceptions import ValidationError
from riskguard.tolerance_monitor.metrics import record_operation
from riskguard.tolerance_monitor.models import (
    AppetiteAssessment,
    AppetiteReason,
    ContainerStatus,
    EscalationSeverity,
    RAGStatus,
    StatusResult,
    ToleranceMetric,
    ToleranceState,
)
from riskguard.tolerance_monitor.periods import PeriodCalendar
from riskguard.tolerance_monitor.status_evaluator import StatusEvaluator
from riskguard.tolerance_monitor.taxonomy import CategoryTree
from riskguard.tolerance_monitor.tolerance_store import ToleranceDefinitionStore

logger = logging.getLogger(__name__)

CONTAINER_TYPES = ("outcome", "risk", "category")

_RANK = {
    RAGStatus.NO_METRICS: 0,
    RAGStatus.UNKNOWN: 1,
    RAGStatus.NO_KRI: 1,
    RAGStatus.NO_DATA: 1,
    RAGStatus.GREEN: 2,
    RAGStatus.AMBER: 3,
    RAGStatus.RED: 4,
}

_SEVERITY_RANK = {
    EscalationSeverity.INFO: 0,
    EscalationSeverity.WARN: 1,
    EscalationSeverity.CRITICAL: 2,
}

_COMPARATORS = {
    "gt": lambda value, threshold: value > threshold,
    "gte": lambda value, threshold: value >= threshold,
    "lt": lambda value, threshold: value < threshold,
    "lte": lambda value, threshold: value <= threshold,
    "eq": lambda value, threshold: value == threshold,
}


def worst_of(statuses: Iterable[RAGStatus]) -> RAGStatus:
    """Return the worst status; diagnostics collapse to UNKNOWN.

    Args:
        statuses: Per-metric statuses in any order.

    Returns:
        The worst-ranked status, or NO_METRICS for an empty input.
    """
    worst = RAGStatus.NO_METRICS
    for status in statuses:
        status = RAGStatus(status)
        if _RANK[status] > _RANK[worst]:
            worst = status
    if worst.is_diagnostic:
        return RAGStatus.UNKNOWN
    return worst


def max_severity(
    severities: Iterable[Optional[EscalationSeverity]],
    floor: EscalationSeverity = EscalationSeverity.INFO,
) -> EscalationSeverity:
    result = floor
    for severity in severities:
        if severity is not None and _SEVERITY_RANK[severity] > _SEVERITY_RANK[result]:
            result = severity
    return result


def compare_values(value: float, threshold: float, operator: str = "gte") -> bool:
    """Apply a materiality comparison operator (gt, gte, lt, lte, eq).

    Raises:
        ValidationError: Unknown operator.
    """
    comparator = _COMPARATORS.get(operator)
    if comparator is None:
        raise ValidationError(
            message=f"Unknown comparison operator: {operator}",
            invalid_fields={"operator": f"must be one of {sorted(_COMPARATORS)}"},
        )
    return comparator(value, threshold)


def build_tolerance_state(
    metric: ToleranceMetric,
    result: StatusResult,
    rule_met: bool = False,
    as_of: Optional[date] = None,
    default_window_days: int = 90,
) -> ToleranceState:
    """Derive one metric's breach state for the appetite assessment.

    An observation older than the metric's measurement window (or the
    default window) counts as missing data.
    """
    reference = as_of or result.as_of
    window = metric.measurement_window_days or default_window_days
    stale = (
        result.observation_date is not None
        and result.observation_date < reference - timedelta(days=window)
    )
    missing = result.status.is_diagnostic or result.value is None or stale

    hard = not missing and result.status == RAGStatus.RED
    soft = not missing and result.status in (RAGStatus.AMBER, RAGStatus.RED)
    return ToleranceState(
        metric_key=metric.metric_key,
        status=result.status,
        is_soft_breached=soft,
        is_hard_breached=hard,
        is_data_missing=missing,
        rule_met=rule_met,
        severity=metric.hard_breach_severity if hard else metric.escalation_severity,
    )


def assess_appetite(
    states: List[ToleranceState],
    appetite_level: str = "MODERATE",
    is_material: bool = False,
) -> AppetiteAssessment:
    """Decide whether a container is out of appetite.

    Args:
        states: Breach state of every metric in the container.
        appetite_level: Appetite of the container; ``ZERO`` tightens the
            decision for material exposure.
        is_material: Whether the exposure meets the materiality threshold.

    Returns:
        AppetiteAssessment carrying the highest-precedence reason.
    """
    hard = [s for s in states if s.is_hard_breached]
    escalated = [s for s in states if s.is_soft_breached and s.rule_met]
    missing = [s for s in states if s.is_data_missing]
    pending = [s for s in states if s.is_soft_breached and not s.rule_met]
    considered = len(states)

    def _decision(reason, out, severity, contributing):
        return AppetiteAssessment(
            out_of_appetite=out,
            escalation_required=out,
            reason=reason,
            severity=severity,
            metrics_considered=considered,
            contributing_metrics=sorted(s.metric_key for s in contributing),
        )

    if hard:
        return _decision(
            AppetiteReason.HARD_LIMIT_BREACH, True, EscalationSeverity.CRITICAL, hard,
        )
    if str(appetite_level).upper() == "ZERO" and is_material:
        return _decision(
            AppetiteReason.ZERO_APPETITE_MATERIAL, True, EscalationSeverity.CRITICAL, [],
        )
    if escalated:
        severity = max_severity(
            (s.severity for s in escalated), floor=EscalationSeverity.WARN,
        )
        return _decision(AppetiteReason.SOFT_LIMIT_ESCALATION, True, severity, escalated)
    if missing:
        return _decision(
            AppetiteReason.DATA_MISSING_FOR_TOLERANCE, False, EscalationSeverity.WARN, missing,
        )
    if pending:
        return _decision(
            AppetiteReason.SOFT_BREACH_PENDING_ESCALATION, False, EscalationSeverity.INFO, pending,
        )
    return _decision(AppetiteReason.WITHIN_APPETITE, False, EscalationSeverity.INFO, [])


class AggregationEngine:
    """Evaluates every metric in a container and rolls the results up."""

    def __init__(
        self,
        store: ToleranceDefinitionStore,
        evaluator: StatusEvaluator,
        taxonomy: CategoryTree,
        periods: PeriodCalendar,
    ) -> None:
        self.store = store
        self.evaluator = evaluator
        self.taxonomy = taxonomy
        self.periods = periods

    def container_metrics(
        self,
        container_type: str,
        container_id: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> List[ToleranceMetric]:
        """Metric versions in force for a container at the reference date.

        Identity keys with no governed version in force are skipped.

        Raises:
            ValidationError: Unknown container type.
            NotFound: Unknown category.
        """
        if container_type not in CONTAINER_TYPES:
            raise ValidationError(
                message=f"Unknown container type: {container_type}",
                invalid_fields={"container_type": f"must be one of {list(CONTAINER_TYPES)}"},
            )
        reference = self._reference_date(as_of, period_id)
        category_ids = None
        if container_type == "category":
            category_ids = set(self.taxonomy.subtree_ids(container_id))

        metrics: List[ToleranceMetric] = []
        for key in self.store.list_keys():
            metric = self.store.version_in_force(key, reference)
            if metric is None:
                continue
            if container_type == "outcome" and metric.outcome_id != container_id:
                continue
            if container_type == "risk" and metric.risk_id != container_id:
                continue
            if category_ids is not None and metric.category_id not in category_ids:
                continue
            metrics.append(metric)
        return metrics

    def evaluate_container(
        self,
        container_type: str,
        container_id: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> ContainerStatus:
        """Worst-of status over the metrics of a container.

        Args:
            container_type: outcome, risk or category.
            container_id: Container identifier.
            as_of: Reference date.
            period_id: Evaluate for a registered reporting period.

        Returns:
            ContainerStatus with the per-metric results and status counts.
        """
        start = time.monotonic()
        metrics = self.container_metrics(container_type, container_id, as_of, period_id)
        results = [
            self.evaluator.evaluate_metric(m.metric_id, as_of=as_of, period_id=period_id)
            for m in metrics
        ]
        counts = Counter(r.status.value for r in results)
        status = worst_of(r.status for r in results)

        record_operation("evaluate_container", "success", time.monotonic() - start)
        logger.debug(
            "Container %s/%s: %s over %d metrics",
            container_type, container_id, status.value, len(results),
        )
        return ContainerStatus(
            container_id=container_id,
            container_type=container_type,
            status=status,
            metric_count=len(results),
            status_counts=dict(counts),
            metric_statuses=results,
            period_id=period_id,
            as_of=self._reference_date(as_of, period_id),
        )

    def _reference_date(self, as_of: Optional[date], period_id: Optional[str]) -> date:
        if as_of is not None:
            return as_of
        period = self.periods.find(period_id)
        return period.end_date if period is not None else date.today()


__all__ = [
    "AggregationEngine",
    "CONTAINER_TYPES",
    "assess_appetite",
    "build_tolerance_state",
    "compare_values",
    "max_severity",
    "worst_of",
]
