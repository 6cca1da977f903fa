# -*- coding: utf-8 -*-
"""
RiskGuard Tolerance Monitor SDK
===============================

This package monitors whether risk indicators stay within governance
approved tolerance bounds. It supports:

- Versioned tolerance metrics with a maker-checker governance lifecycle
- Append-only indicator observations with approval and corrections
- Direction-aware RAG evaluation (above, below, between, bands)
- Worst-of aggregation per outcome, risk and category subtree
- Point-in-time, sustained and windowed breach rules
- Out-of-appetite assessment and coverage signal levels
- Residual risk from compounding control effectiveness
- Per-organization recalc sweeps under mutual exclusion
- SHA-256 provenance tracking for every governed change
- 12 Prometheus metrics for observability
- FastAPI REST API
- Thread-safe configuration with RG_TOLERANCE_ env prefix

Key Components:
    - tolerance_store: ToleranceDefinitionStore for versioned bounds
    - observation_log: ObservationLog for indicator readings
    - coverage: CoverageGraph linking indicators to metrics
    - status_evaluator: StatusEvaluator for RAG statuses
    - aggregation: AggregationEngine and appetite assessment
    - breach_engine: BreachRuleEngine for escalation rules
    - residual: ResidualRiskCalculator for residual risk
    - recalc: RecalcRunManager for organization sweeps
    - governance: LifecycleGuard state machines
    - provenance: ProvenanceTracker for SHA-256 audit trails
    - config: ToleranceMonitorConfig with RG_TOLERANCE_ env prefix
    - metrics: 12 Prometheus metrics
    - api: FastAPI HTTP service
    - setup: ToleranceMonitorService facade

Example:
    >>> from datetime import date
    >>> from riskguard.tolerance_monitor import ToleranceMonitorService
    >>> svc = ToleranceMonitorService()
    >>> kri = svc.indicators.register("Open audit findings", "org-1")
    >>> m = svc.store.create_metric("findings", "Findings", "org-1", "alice",
    ...     direction="above", soft_limit=80, hard_limit=90)
    >>> svc.store.submit_metric(m.metric_id, "alice")
    >>> svc.store.approve_metric(m.metric_id, "bob")
    >>> svc.link_indicator("findings", kri.indicator_id, "primary", rationale="Direct")
    >>> obs = svc.record_observation(kri.indicator_id, date.today(), 85, "alice")
    >>> svc.approve_observation(obs.observation_id, "bob")
    >>> print(svc.evaluate_metric_status("findings").status)  # AMBER
"""

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from riskguard.tolerance_monitor.config import (
    ToleranceMonitorConfig,
    get_config,
    set_config,
    reset_config,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
from riskguard.tolerance_monitor.models import (
    # Enumerations
    RAGStatus,
    LimitDirection,
    GovernanceStatus,
    ObservationStatus,
    CoverageStrength,
    SignalType,
    BreachType,
    BreachDirection,
    BreachRule,
    EscalationSeverity,
    ControlLinkStatus,
    RecalcRunType,
    RecalcRunStatus,
    SignalLevel,
    AppetiteReason,
    ChangeType,
    # Bounds
    BandRange,
    ToleranceBands,
    # Governed entities
    ToleranceMetric,
    Observation,
    # Configuration entities
    Indicator,
    CoverageLink,
    ReportingPeriod,
    CategoryNode,
    # Breach models
    BreachEvent,
    BreachEvaluation,
    BreachStatistics,
    # Residual models
    Control,
    RiskControlLink,
    ResidualRiskResult,
    Risk,
    RecomputeResidualTask,
    # Batch models
    RecalcRun,
    # Results
    StatusResult,
    ContainerStatus,
    SignalLevelResult,
    ToleranceState,
    AppetiteAssessment,
    # Audit models
    ChangeLogEntry,
)

# ---------------------------------------------------------------------------
# Core engines
# ---------------------------------------------------------------------------
from riskguard.tolerance_monitor.provenance import ProvenanceTracker
from riskguard.tolerance_monitor.governance import LifecycleGuard
from riskguard.tolerance_monitor.indicators import IndicatorRegistry
from riskguard.tolerance_monitor.periods import PeriodCalendar, derive_period_number
from riskguard.tolerance_monitor.taxonomy import CategoryTree
from riskguard.tolerance_monitor.tolerance_store import (
    ToleranceDefinitionStore,
    validate_bounds,
)
from riskguard.tolerance_monitor.observation_log import ObservationLog
from riskguard.tolerance_monitor.coverage import CoverageGraph, compute_signal_level
from riskguard.tolerance_monitor.status_evaluator import (
    StatusEvaluator,
    evaluate_limits,
    evaluate_bands,
    evaluate_value,
)
from riskguard.tolerance_monitor.aggregation import (
    AggregationEngine,
    assess_appetite,
    build_tolerance_state,
    worst_of,
)
from riskguard.tolerance_monitor.breach_engine import BreachRuleEngine
from riskguard.tolerance_monitor.events import RecomputeQueue
from riskguard.tolerance_monitor.residual import ResidualRiskCalculator, compute_residual
from riskguard.tolerance_monitor.recalc import RecalcRunManager

# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------
from riskguard.tolerance_monitor.metrics import (
    record_operation,
    record_evaluation,
    record_breach_opened,
    record_breaches_closed,
    set_open_breaches,
    record_escalation,
    record_transition,
    record_maker_checker_rejection,
    record_residual_recalculation,
    record_recalc_run,
    record_conflict,
)

# ---------------------------------------------------------------------------
# Service setup facade
# ---------------------------------------------------------------------------
from riskguard.tolerance_monitor.setup import (
    ToleranceMonitorService,
    configure_tolerance_monitor,
    get_tolerance_monitor,
    get_router,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "ToleranceMonitorConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Enumerations
    "RAGStatus",
    "LimitDirection",
    "GovernanceStatus",
    "ObservationStatus",
    "CoverageStrength",
    "SignalType",
    "BreachType",
    "BreachDirection",
    "BreachRule",
    "EscalationSeverity",
    "ControlLinkStatus",
    "RecalcRunType",
    "RecalcRunStatus",
    "SignalLevel",
    "AppetiteReason",
    "ChangeType",
    # Bounds
    "BandRange",
    "ToleranceBands",
    # Governed entities
    "ToleranceMetric",
    "Observation",
    # Configuration entities
    "Indicator",
    "CoverageLink",
    "ReportingPeriod",
    "CategoryNode",
    # Breach models
    "BreachEvent",
    "BreachEvaluation",
    "BreachStatistics",
    # Residual models
    "Control",
    "RiskControlLink",
    "ResidualRiskResult",
    "Risk",
    "RecomputeResidualTask",
    # Batch models
    "RecalcRun",
    # Results
    "StatusResult",
    "ContainerStatus",
    "SignalLevelResult",
    "ToleranceState",
    "AppetiteAssessment",
    # Audit models
    "ChangeLogEntry",
    # Core engines
    "ProvenanceTracker",
    "LifecycleGuard",
    "IndicatorRegistry",
    "PeriodCalendar",
    "derive_period_number",
    "CategoryTree",
    "ToleranceDefinitionStore",
    "validate_bounds",
    "ObservationLog",
    "CoverageGraph",
    "compute_signal_level",
    "StatusEvaluator",
    "evaluate_limits",
    "evaluate_bands",
    "evaluate_value",
    "AggregationEngine",
    "assess_appetite",
    "build_tolerance_state",
    "worst_of",
    "BreachRuleEngine",
    "RecomputeQueue",
    "ResidualRiskCalculator",
    "compute_residual",
    "RecalcRunManager",
    # Metric helper functions
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
    # Service setup facade
    "ToleranceMonitorService",
    "configure_tolerance_monitor",
    "get_tolerance_monitor",
    "get_router",
]
