# -*- coding: utf-8 -*-
"""
Prometheus Metrics - RiskGuard Tolerance Monitor

12 Prometheus metrics for tolerance monitoring.

Metrics:
    1.  rg_tolerance_operations_total (Counter)
    2.  rg_tolerance_operation_duration_seconds (Histogram)
    3.  rg_tolerance_evaluations_total (Counter)
    4.  rg_tolerance_breaches_opened_total (Counter)
    5.  rg_tolerance_breaches_closed_total (Counter)
    6.  rg_tolerance_open_breaches (Gauge)
    7.  rg_tolerance_escalations_total (Counter)
    8.  rg_tolerance_governance_transitions_total (Counter)
    9.  rg_tolerance_maker_checker_rejections_total (Counter)
    10. rg_tolerance_residual_recalculations_total (Counter)
    11. rg_tolerance_recalc_runs_total (Counter)
    12. rg_tolerance_lock_conflicts_total (Counter)

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

# 1. Operations count
tolerance_operations_total = Counter(
    "rg_tolerance_operations_total",
    "Total tolerance monitor operations performed",
    labelnames=["operation", "result"],
)

# 2. Operation duration
tolerance_operation_duration_seconds = Histogram(
    "rg_tolerance_operation_duration_seconds",
    "Tolerance monitor operation duration in seconds",
    labelnames=["operation"],
    buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0),
)

# 3. Evaluations by resulting status
tolerance_evaluations_total = Counter(
    "rg_tolerance_evaluations_total",
    "Total metric status evaluations by resulting status",
    labelnames=["status"],
)

# 4. Breaches opened
tolerance_breaches_opened_total = Counter(
    "rg_tolerance_breaches_opened_total",
    "Total breach events opened",
    labelnames=["breach_type"],
)

# 5. Breaches closed
tolerance_breaches_closed_total = Counter(
    "rg_tolerance_breaches_closed_total",
    "Total breach events resolved",
)

# 6. Open breaches gauge
tolerance_open_breaches = Gauge(
    "rg_tolerance_open_breaches",
    "Current number of unresolved breach events",
)

# 7. Escalations
tolerance_escalations_total = Counter(
    "rg_tolerance_escalations_total",
    "Total breach rule escalations",
    labelnames=["rule", "severity"],
)

# 8. Governance transitions
tolerance_governance_transitions_total = Counter(
    "rg_tolerance_governance_transitions_total",
    "Total lifecycle transitions of governed entities",
    labelnames=["entity_type", "action"],
)

# 9. Maker-checker rejections
tolerance_maker_checker_rejections_total = Counter(
    "rg_tolerance_maker_checker_rejections_total",
    "Total approvals refused because approver equals maker",
    labelnames=["entity_type"],
)

# 10. Residual recalculations
tolerance_residual_recalculations_total = Counter(
    "rg_tolerance_residual_recalculations_total",
    "Total residual risk recalculations",
    labelnames=["trigger", "result"],
)

# 11. Recalc runs
tolerance_recalc_runs_total = Counter(
    "rg_tolerance_recalc_runs_total",
    "Total recalculation runs by terminal status",
    labelnames=["run_type", "status"],
)

# 12. Lock conflicts
tolerance_lock_conflicts_total = Counter(
    "rg_tolerance_lock_conflicts_total",
    "Total concurrency conflicts raised",
    labelnames=["resource"],
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def record_operation(operation: str, result: str, duration_seconds: float) -> None:
    """Record a tolerance monitor operation.

    Args:
        operation: Operation name (evaluate, approve, supersede, etc.).
        result: Operation result ("success" or "error").
        duration_seconds: Operation duration in seconds.
    """
    tolerance_operations_total.labels(operation=operation, result=result).inc()
    tolerance_operation_duration_seconds.labels(operation=operation).observe(
        duration_seconds,
    )


def record_evaluation(status: str) -> None:
    """Record a metric evaluation.

    Args:
        status: Resulting RAG or diagnostic status.
    """
    tolerance_evaluations_total.labels(status=status).inc()


def record_breach_opened(breach_type: str) -> None:
    """Record a newly opened breach event.

    Args:
        breach_type: SOFT or HARD.
    """
    tolerance_breaches_opened_total.labels(breach_type=breach_type).inc()


def record_breaches_closed(count: int) -> None:
    """Record resolved breach events.

    Args:
        count: Number of events resolved.
    """
    if count > 0:
        tolerance_breaches_closed_total.inc(count)


def set_open_breaches(count: int) -> None:
    """Set the open breaches gauge.

    Args:
        count: Current number of unresolved events.
    """
    tolerance_open_breaches.set(count)


def record_escalation(rule: str, severity: str) -> None:
    """Record a breach rule escalation.

    Args:
        rule: Breach rule that escalated.
        severity: Configured severity.
    """
    tolerance_escalations_total.labels(rule=rule, severity=severity).inc()


def record_transition(entity_type: str, action: str) -> None:
    """Record a governance lifecycle transition.

    Args:
        entity_type: tolerance_metric or observation.
        action: Transition action (submit, approve, ...).
    """
    tolerance_governance_transitions_total.labels(
        entity_type=entity_type, action=action,
    ).inc()


def record_maker_checker_rejection(entity_type: str) -> None:
    """Record an approval refused by the maker-checker rule.

    Args:
        entity_type: tolerance_metric or observation.
    """
    tolerance_maker_checker_rejections_total.labels(entity_type=entity_type).inc()


def record_residual_recalculation(trigger: str, result: str) -> None:
    """Record a residual risk recalculation.

    Args:
        trigger: manual, link_change or sweep.
        result: "updated", "unchanged" or "error".
    """
    tolerance_residual_recalculations_total.labels(
        trigger=trigger, result=result,
    ).inc()


def record_recalc_run(run_type: str, status: str) -> None:
    """Record a recalc run reaching a terminal status.

    Args:
        run_type: FULL, CATEGORY or RISK.
        status: COMPLETED or FAILED.
    """
    tolerance_recalc_runs_total.labels(run_type=run_type, status=status).inc()


def record_conflict(resource: str) -> None:
    """Record a concurrency conflict.

    Args:
        resource: recalc_lock, tolerance_metric, observation, coverage_link.
    """
    tolerance_lock_conflicts_total.labels(resource=resource).inc()


__all__ = [
    "record_operation",
    "record_evaluation",
    "record_breach_opened",
    "record_breaches_closed",
    "set_open_breaches",
    "record_escalation",
    "record_transition",
    "record_maker_checker_rejection",
    "record_residual_recalculation",
    "record_recalc_run",
    "record_conflict",
]
