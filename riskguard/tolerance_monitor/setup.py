# -*- coding: utf-8 -*-
"""
Tolerance Monitor Service Setup - RiskGuard Tolerance Monitor

Provides ``configure_tolerance_monitor(app)`` which wires up the Tolerance
Monitor SDK (definition store, observation log, coverage graph, status
evaluator, aggregation, breach rules, residual calculator, recalc runs,
provenance) and mounts the REST API.

Also exposes ``get_tolerance_monitor(app)`` for programmatic access and
the ``ToleranceMonitorService`` facade class.

Usage:
    >>> from fastapi import FastAPI
    >>> from riskguard.tolerance_monitor.setup import configure_tolerance_monitor
    >>> app = FastAPI()
    >>> configure_tolerance_monitor(app)

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Any, Dict, List, Optional

from riskguard.tolerance_monitor.aggregation import (
    AggregationEngine,
    assess_appetite,
    build_tolerance_state,
    compare_values,
)
from riskguard.tolerance_monitor.breach_engine import BreachRuleEngine
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.coverage import CoverageGraph, compute_signal_level
from riskguard.tolerance_monitor.events import RecomputeQueue
from riskguard.tolerance_monitor.indicators import IndicatorRegistry
from riskguard.tolerance_monitor.models import (
    AppetiteAssessment,
    BreachEvaluation,
    BreachEvent,
    BreachStatistics,
    ContainerStatus,
    CoverageLink,
    CoverageStrength,
    Observation,
    RecalcRun,
    RecalcRunType,
    ResidualRiskResult,
    SignalLevelResult,
    StatusResult,
    ToleranceMetric,
)
from riskguard.tolerance_monitor.observation_log import ObservationLog
from riskguard.tolerance_monitor.periods import PeriodCalendar
from riskguard.tolerance_monitor.provenance import ProvenanceTracker
from riskguard.tolerance_monitor.recalc import RecalcRunManager
from riskguard.tolerance_monitor.residual import ResidualRiskCalculator
from riskguard.tolerance_monitor.status_evaluator import StatusEvaluator
from riskguard.tolerance_monitor.taxonomy import CategoryTree
from riskguard.tolerance_monitor.tolerance_store import ToleranceDefinitionStore

logger = logging.getLogger(__name__)


# ===================================================================
# ToleranceMonitorService facade
# ===================================================================

# Thread-safe singleton lock
_singleton_lock = threading.Lock()
_singleton_instance: Optional["ToleranceMonitorService"] = None


class ToleranceMonitorService:
    """Unified facade over the Tolerance Monitor SDK.

    Attributes:
        config: ToleranceMonitorConfig instance.
        provenance: Shared ProvenanceTracker.
        indicators: IndicatorRegistry instance.
        periods: PeriodCalendar instance.
        taxonomy: CategoryTree instance.
        store: ToleranceDefinitionStore instance.
        observations: ObservationLog instance.
        coverage: CoverageGraph instance.
        evaluator: StatusEvaluator instance.
        aggregation: AggregationEngine instance.
        breaches: BreachRuleEngine instance.
        queue: RecomputeQueue feeding the residual calculator.
        residual: ResidualRiskCalculator instance.
        recalc: RecalcRunManager instance.

    Example:
        >>> service = ToleranceMonitorService()
        >>> kri = service.indicators.register("Open critical findings", "org-1")
        >>> obs = service.record_observation(kri.indicator_id, date.today(), 85, "alice")
        >>> service.approve_observation(obs.observation_id, "bob")
    """

    def __init__(
        self,
        config: Optional[ToleranceMonitorConfig] = None,
    ) -> None:
        """Initialize the Tolerance Monitor Service facade.

        Args:
            config: Optional config. Uses global config if None.
        """
        self.config = config or get_config()
        self.provenance = ProvenanceTracker(enabled=self.config.enable_provenance)
        self.indicators = IndicatorRegistry()
        self.periods = PeriodCalendar(config=self.config)
        self.taxonomy = CategoryTree(config=self.config)
        self.store = ToleranceDefinitionStore(config=self.config, provenance=self.provenance)
        self.observations = ObservationLog(
            indicators=self.indicators, config=self.config, provenance=self.provenance,
        )
        self.coverage = CoverageGraph(
            indicators=self.indicators,
            provenance=self.provenance,
            metric_exists=self.store.has_metric,
        )
        self.evaluator = StatusEvaluator(
            store=self.store,
            observations=self.observations,
            coverage=self.coverage,
            periods=self.periods,
            config=self.config,
        )
        self.aggregation = AggregationEngine(
            store=self.store,
            evaluator=self.evaluator,
            taxonomy=self.taxonomy,
            periods=self.periods,
        )
        self.breaches = BreachRuleEngine(
            config=self.config, periods=self.periods, provenance=self.provenance,
        )
        self.queue = RecomputeQueue(synchronous=True)
        self.residual = ResidualRiskCalculator(
            config=self.config, provenance=self.provenance, queue=self.queue,
        )
        self.recalc = RecalcRunManager()
        self._started = False

        logger.info("ToleranceMonitorService facade created")

    # ------------------------------------------------------------------
    # Status evaluation
    # ------------------------------------------------------------------

    def evaluate_metric_status(
        self,
        metric_id: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> StatusResult:
        """Evaluate one metric at a date or for a reporting period."""
        return self.evaluator.evaluate_metric(metric_id, as_of=as_of, period_id=period_id)

    def evaluate_container_status(
        self,
        outcome_id: str,
        period_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> ContainerStatus:
        """Worst-of status over an outcome's metrics."""
        return self.aggregation.evaluate_container("outcome", outcome_id, as_of, period_id)

    def evaluate_risk_status(
        self,
        risk_id: str,
        period_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> ContainerStatus:
        return self.aggregation.evaluate_container("risk", risk_id, as_of, period_id)

    def evaluate_category_status(
        self,
        category_id: str,
        period_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> ContainerStatus:
        """Worst-of status over a category and all of its descendants."""
        return self.aggregation.evaluate_container("category", category_id, as_of, period_id)

    def rag_history(self, metric_id: str) -> List[StatusResult]:
        """Status of a metric for every registered reporting period."""
        return [
            self.evaluator.evaluate_metric(metric_id, period_id=period.period_id)
            for period in self.periods.list()
        ]

    def signal_level(
        self,
        metric_id: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> SignalLevelResult:
        """Coverage signal level across every indicator linked to a metric."""
        result = self.evaluator.evaluate_metric(metric_id, as_of=as_of, period_id=period_id)
        statuses = self.evaluator.evaluate_indicators(metric_id, as_of=as_of, period_id=period_id)
        return compute_signal_level(
            result.metric_key,
            result.status,
            self.coverage.links_for_metric(result.metric_key),
            statuses,
        )

    def assess_appetite(
        self,
        container_type: str,
        container_id: str,
        appetite_level: str = "MODERATE",
        is_material: Optional[bool] = None,
        materiality_threshold: Optional[float] = None,
        comparison: str = "gte",
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> AppetiteAssessment:
        """Decide whether a container is out of appetite.

        For a risk container without an explicit ``is_material`` flag, the
        risk's residual score is compared with ``materiality_threshold``.
        """
        container = self.aggregation.evaluate_container(
            container_type, container_id, as_of, period_id,
        )
        reference = container.as_of or date.today()
        states = []
        for result in container.metric_statuses:
            metric = self.store.get_metric(result.metric_id)
            states.append(build_tolerance_state(
                metric,
                result,
                rule_met=self.breaches.is_escalated(metric.metric_key),
                as_of=reference,
                default_window_days=self.config.default_measurement_window_days,
            ))

        if is_material is None:
            is_material = False
            if container_type == "risk" and materiality_threshold is not None:
                residual = self.residual.recalculate(container_id, trigger="appetite")
                is_material = compare_values(
                    residual.residual_score, materiality_threshold, comparison,
                )

        assessment = assess_appetite(states, appetite_level, is_material)
        logger.info(
            "Appetite for %s/%s: %s (out_of_appetite=%s)",
            container_type, container_id, assessment.reason.value,
            assessment.out_of_appetite,
        )
        return assessment

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def record_observation(
        self,
        indicator_id: str,
        observation_date: date,
        value: float,
        submitted_by: str,
        period_id: Optional[str] = None,
        commentary: str = "",
        submit: bool = True,
    ) -> Observation:
        """Record an indicator reading; it enters ``submitted`` (or ``draft``)."""
        return self.observations.record_observation(
            indicator_id,
            observation_date,
            value,
            created_by=submitted_by,
            period_id=period_id,
            commentary=commentary,
            submit=submit,
        )

    def approve_observation(
        self,
        observation_id: str,
        approved_by: str,
        commentary: Optional[str] = None,
    ) -> Observation:
        """Approve an observation and run the breach rules it affects.

        Raises:
            InvalidState: Approver is the maker or submitter, or the
                observation is not submitted.
        """
        observation = self.observations.approve_observation(
            observation_id, approved_by, commentary=commentary,
        )
        self.process_indicator_breaches(observation)
        return observation

    def process_indicator_breaches(self, observation: Observation) -> List[BreachEvaluation]:
        """Run breach rules for every metric whose primary indicator observed."""
        evaluations: List[BreachEvaluation] = []
        for metric_key in self.coverage.metrics_for_indicator(observation.indicator_id):
            link = self.coverage.primary_link(metric_key)
            if link is None or link.indicator_id != observation.indicator_id:
                continue
            evaluation = self.process_breach(
                metric_key,
                as_of=observation.observation_date,
                period_id=observation.period_id,
            )
            if evaluation is not None:
                evaluations.append(evaluation)
        return evaluations

    def process_breach(
        self,
        metric_id: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> Optional[BreachEvaluation]:
        """Evaluate a metric and feed the status to its breach rule.

        Returns:
            The breach evaluation, or None when no governed version is in
            force at the reference date.
        """
        result = self.evaluator.evaluate_metric(metric_id, as_of=as_of, period_id=period_id)
        metric = self.store.version_in_force(result.metric_key, result.as_of)
        if metric is None:
            logger.debug("No governed version of %s in force on %s", result.metric_key, result.as_of)
            return None
        return self.breaches.process(metric, result)

    def acknowledge_breach(self, event_id: str, acknowledged_by: str, notes: str = "") -> BreachEvent:
        return self.breaches.acknowledge_event(event_id, acknowledged_by, notes=notes)

    def resolve_breach(
        self,
        event_id: str,
        resolved_by: str,
        resolution_notes: str,
        resolution_actions: Optional[List[str]] = None,
    ) -> BreachEvent:
        """Resolve an open breach by hand; the metric's rule is re-run."""
        return self.breaches.resolve_event(
            event_id, resolved_by, resolution_notes, resolution_actions=resolution_actions,
        )

    def active_breaches(self, org_id: Optional[str] = None) -> List[BreachEvent]:
        return self.breaches.open_events(org_id=org_id)

    def breach_statistics(self, org_id: Optional[str] = None) -> BreachStatistics:
        return self.breaches.breach_statistics(org_id=org_id)

    # ------------------------------------------------------------------
    # Tolerance metrics
    # ------------------------------------------------------------------

    def supersede_metric(
        self,
        metric_id: str,
        new_effective_from: date,
        created_by: str,
        **changes: Any,
    ) -> ToleranceMetric:
        """Create the next draft version of an approved metric."""
        return self.store.supersede_metric(metric_id, new_effective_from, created_by, **changes)

    def link_indicator(
        self,
        metric_key: str,
        indicator_id: str,
        strength: str = CoverageStrength.PRIMARY.value,
        rationale: Optional[str] = None,
        created_by: Optional[str] = None,
        **kwargs: Any,
    ) -> CoverageLink:
        return self.coverage.link(
            metric_key, indicator_id, strength,
            rationale=rationale, created_by=created_by, **kwargs,
        )

    # ------------------------------------------------------------------
    # Residual risk
    # ------------------------------------------------------------------

    def recalculate_residual_risk(self, risk_id: str) -> ResidualRiskResult:
        """Recompute a risk's residual from its active controls."""
        return self.residual.recalculate(risk_id, trigger="manual")

    def acquire_recalc_lock(
        self,
        org_id: str,
        run_type: str = RecalcRunType.FULL.value,
        requested_by: Optional[str] = None,
    ) -> RecalcRun:
        """Start an organization run, or raise ConcurrencyConflict."""
        return self.recalc.acquire_lock(org_id, run_type, requested_by)

    def complete_recalc_run(
        self,
        run_id: str,
        status: str,
        processed: int,
        updated: int,
        failed: int,
        error_message: Optional[str] = None,
    ) -> RecalcRun:
        return self.recalc.complete_run(
            run_id, status, processed, updated, failed, error_message=error_message,
        )

    def run_recalc_sweep(
        self,
        org_id: str,
        requested_by: Optional[str] = None,
        category_id: Optional[str] = None,
    ) -> RecalcRun:
        """Recompute the residual of every risk of an organization.

        With ``category_id`` the sweep covers that category subtree only.
        """
        run_type = RecalcRunType.CATEGORY if category_id else RecalcRunType.FULL

        def _enumerate() -> List[str]:
            risks = self.residual.list_risks(org_id)
            if category_id is not None:
                subtree = set(self.taxonomy.subtree_ids(category_id))
                risks = [r for r in risks if r.category_id in subtree]
            return [r.risk_id for r in risks]

        def _process(risk_id: str) -> bool:
            _, changed = self.residual.refresh(risk_id, trigger="sweep")
            return changed

        return self.recalc.run_sweep(
            org_id, _enumerate, _process, run_type=run_type.value, requested_by=requested_by,
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """Get tolerance monitor service metrics summary.

        Returns:
            Dictionary with service metric summaries.
        """
        return {
            "started": self._started,
            "metric_keys": self.store.count,
            "indicators": self.indicators.count,
            "observations": self.observations.count,
            "coverage_links": self.coverage.count,
            "categories": self.taxonomy.count,
            "open_breaches": len(self.breaches.open_events()),
            "pending_recompute_tasks": len(self.queue.pending),
            "provenance_entries": self.provenance.entry_count,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def startup(self) -> None:
        """Start the tolerance monitor service.

        Safe to call multiple times.
        """
        if self._started:
            logger.debug("ToleranceMonitorService already started; skipping")
            return

        logger.info("ToleranceMonitorService starting up...")
        self._started = True
        logger.info("ToleranceMonitorService startup complete")

    def shutdown(self) -> None:
        """Shutdown the service, delivering any queued recompute tasks."""
        if not self._started:
            return

        delivered = self.queue.drain()
        if delivered:
            logger.info("Delivered %d pending recompute task(s) on shutdown", delivered)
        self._started = False
        logger.info("ToleranceMonitorService shut down")


# ===================================================================
# Thread-safe singleton access
# ===================================================================


def get_service() -> ToleranceMonitorService:
    """Get or create the singleton ToleranceMonitorService instance."""
    global _singleton_instance
    if _singleton_instance is None:
        with _singleton_lock:
            if _singleton_instance is None:
                _singleton_instance = ToleranceMonitorService()
    return _singleton_instance


def set_service(service: Optional[ToleranceMonitorService]) -> None:
    """Replace the singleton, or clear it with None."""
    global _singleton_instance
    with _singleton_lock:
        _singleton_instance = service


# ===================================================================
# FastAPI integration
# ===================================================================


def configure_tolerance_monitor(
    app: Any,
    config: Optional[ToleranceMonitorConfig] = None,
) -> ToleranceMonitorService:
    """Configure the Tolerance Monitor on a FastAPI application.

    Creates the ToleranceMonitorService, stores it in app.state, mounts
    the tolerance monitor API router, and starts the service.

    Args:
        app: FastAPI application instance.
        config: Optional config.

    Returns:
        ToleranceMonitorService instance.
    """
    service = ToleranceMonitorService(config=config)
    set_service(service)

    app.state.tolerance_monitor_service = service
    app.include_router(get_router())
    logger.info("Tolerance monitor API router mounted")

    service.startup()

    logger.info("Tolerance monitor service configured on app")
    return service


def get_tolerance_monitor(app: Any) -> ToleranceMonitorService:
    """Get the ToleranceMonitorService instance from app state.

    Raises:
        RuntimeError: If the service is not configured.
    """
    service = getattr(app.state, "tolerance_monitor_service", None)
    if service is None:
        raise RuntimeError(
            "Tolerance monitor not configured. "
            "Call configure_tolerance_monitor(app) first."
        )
    return service


def get_router() -> Any:
    """Get the tolerance monitor API router."""
    from riskguard.tolerance_monitor.api.router import router
    return router


__all__ = [
    "ToleranceMonitorService",
    "configure_tolerance_monitor",
    "get_router",
    "get_service",
    "get_tolerance_monitor",
    "set_service",
]
