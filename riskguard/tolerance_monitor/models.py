# -*- coding: utf-8 -*-
"""
Tolerance Monitor Data Models - RiskGuard Tolerance Monitor

Pydantic v2 data models for the Tolerance Monitor SDK.

Models:
    - Enums: RAGStatus, LimitDirection, GovernanceStatus, ObservationStatus,
             CoverageStrength, SignalType, BreachType, BreachDirection,
             BreachRule, EscalationSeverity, ControlLinkStatus,
             RecalcRunType, RecalcRunStatus, SignalLevel, AppetiteReason,
             ChangeType
    - Governed: ToleranceMetric, Observation
    - Configuration: BandRange, ToleranceBands, Indicator, CoverageLink,
                     ReportingPeriod, CategoryNode
    - Breach: BreachEvent, BreachEvaluation
    - Residual: Control, RiskControlLink, Risk, ResidualRiskResult,
                RecomputeResidualTask
    - Batch: RecalcRun
    - Results: StatusResult, ContainerStatus, SignalLevelResult,
               ToleranceState, AppetiteAssessment
    - Audit: ChangeLogEntry

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Enumerations
# =============================================================================


class RAGStatus(str, Enum):
    """Traffic-light status plus diagnostic non-statuses."""
    GREEN = "GREEN"
    AMBER = "AMBER"
    RED = "RED"
    NO_KRI = "NO_KRI"
    NO_DATA = "NO_DATA"
    UNKNOWN = "UNKNOWN"
    NO_METRICS = "NO_METRICS"

    @property
    def is_diagnostic(self) -> bool:
        return self in (RAGStatus.NO_KRI, RAGStatus.NO_DATA, RAGStatus.UNKNOWN)


class LimitDirection(str, Enum):
    """Which side of the limits is worse."""
    ABOVE = "above"
    BELOW = "below"
    BETWEEN = "between"


class GovernanceStatus(str, Enum):
    """Lifecycle of a tolerance metric version."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SUPERSEDED = "superseded"
    RETIRED = "retired"


class ObservationStatus(str, Enum):
    """Workflow status of an indicator observation."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class CoverageStrength(str, Enum):
    """How strongly an indicator evidences a metric."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUPPLEMENTARY = "supplementary"


class SignalType(str, Enum):
    """Timing of an indicator's signal relative to the risk."""
    LEADING = "leading"
    CONCURRENT = "concurrent"
    LAGGING = "lagging"


class BreachType(str, Enum):
    """Which limit was crossed."""
    SOFT = "SOFT"
    HARD = "HARD"


class BreachDirection(str, Enum):
    """Direction of the breach relative to the limit."""
    UP = "UP"
    DOWN = "DOWN"


class BreachRule(str, Enum):
    """Breach detection modes."""
    POINT_IN_TIME = "POINT_IN_TIME"
    SUSTAINED_N_PERIODS = "SUSTAINED_N_PERIODS"
    N_BREACHES_IN_WINDOW = "N_BREACHES_IN_WINDOW"


class EscalationSeverity(str, Enum):
    """Configured escalation severity of a metric."""
    INFO = "INFO"
    WARN = "WARN"
    CRITICAL = "CRITICAL"


class ControlLinkStatus(str, Enum):
    """Status of a control applied to a risk."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    PLANNED = "planned"


class RecalcRunType(str, Enum):
    """Scope of a recalculation run."""
    FULL = "FULL"
    CATEGORY = "CATEGORY"
    RISK = "RISK"


class RecalcRunStatus(str, Enum):
    """Status of a recalculation run."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SignalLevel(str, Enum):
    """Coverage signal level derived from all linked indicators."""
    NORMAL = "normal"
    WATCH = "watch"
    CONCERN = "concern"
    IMMINENT = "imminent"
    BREACH = "breach"


class AppetiteReason(str, Enum):
    """Reason codes for an out-of-appetite decision, in precedence order."""
    HARD_LIMIT_BREACH = "HARD_LIMIT_BREACH"
    ZERO_APPETITE_MATERIAL = "ZERO_APPETITE_MATERIAL"
    SOFT_LIMIT_ESCALATION = "SOFT_LIMIT_ESCALATION"
    DATA_MISSING_FOR_TOLERANCE = "DATA_MISSING_FOR_TOLERANCE"
    SOFT_BREACH_PENDING_ESCALATION = "SOFT_BREACH_PENDING_ESCALATION"
    WITHIN_APPETITE = "WITHIN_APPETITE"


class ChangeType(str, Enum):
    """Types of audited changes."""
    CREATE = "create"
    UPDATE = "update"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    RETIRE = "retire"
    SUPERSEDE = "supersede"
    DELETE = "delete"
    LINK = "link"
    UNLINK = "unlink"
    RECALCULATE = "recalculate"
    ACKNOWLEDGE = "acknowledge"
    RESOLVE = "resolve"


# =============================================================================
# Bound configuration
# =============================================================================


class BandRange(BaseModel):
    """Inclusive value range for a single RAG band. Open ends are None."""
    min_value: Optional[float] = Field(None, description="Inclusive lower bound")
    max_value: Optional[float] = Field(None, description="Inclusive upper bound")

    model_config = {"extra": "forbid"}

    def contains(self, value: float) -> bool:
        if self.min_value is not None and value < self.min_value:
            return False
        if self.max_value is not None and value > self.max_value:
            return False
        return True


class ToleranceBands(BaseModel):
    """Legacy green/amber/red band configuration."""
    green: Optional[BandRange] = Field(None, description="Green band")
    amber: Optional[BandRange] = Field(None, description="Amber band")
    red: Optional[BandRange] = Field(None, description="Red band")

    model_config = {"extra": "forbid"}

    @property
    def is_configured(self) -> bool:
        return any(b is not None for b in (self.green, self.amber, self.red))


# =============================================================================
# Governed entities
# =============================================================================


class ToleranceMetric(BaseModel):
    """A governed, versioned tolerance bound definition."""
    metric_id: str = Field(default_factory=_new_id, description="Version identifier")
    metric_key: str = Field(..., description="Identity key stable across versions")
    name: str = Field(..., description="Display name")
    org_id: str = Field(..., description="Owning organization")
    description: str = Field("", description="Description")
    outcome_id: Optional[str] = Field(None, description="Outcome container")
    risk_id: Optional[str] = Field(None, description="Risk container")
    category_id: Optional[str] = Field(None, description="Risk category container")
    unit: Optional[str] = Field(None, description="Unit of measure")

    # Bounds
    direction: Optional[LimitDirection] = Field(None, description="Limit direction")
    soft_limit: Optional[float] = Field(None, description="Soft limit (upper rail for between)")
    hard_limit: Optional[float] = Field(None, description="Hard limit (lower rail for between)")
    bands: Optional[ToleranceBands] = Field(None, description="Band configuration")
    amber_margin: Optional[float] = Field(
        None, ge=0.0, lt=1.0,
        description="Per-metric override of the between-direction amber margin",
    )

    # Breach rule
    breach_rule: BreachRule = Field(BreachRule.POINT_IN_TIME, description="Breach detection mode")
    breach_rule_periods: Optional[int] = Field(None, ge=1, description="Sustained period threshold")
    breach_rule_count: Optional[int] = Field(None, ge=1, description="Breach count threshold")
    breach_rule_window_days: Optional[int] = Field(None, ge=1, description="Trailing window in days")
    breach_rule_type: BreachType = Field(BreachType.SOFT, description="Breach type counted by rules")
    escalation_severity: EscalationSeverity = Field(
        EscalationSeverity.WARN, description="Severity when a soft breach escalates",
    )
    hard_breach_severity: EscalationSeverity = Field(
        EscalationSeverity.CRITICAL, description="Severity when a hard breach escalates",
    )
    measurement_window_days: Optional[int] = Field(
        None, ge=1, description="Age after which an observation is stale",
    )

    # Governance
    status: GovernanceStatus = Field(GovernanceStatus.DRAFT, description="Lifecycle status")
    version: int = Field(1, ge=1, description="Version number within the identity key")
    effective_from: date = Field(default_factory=date.today, description="Effective start (inclusive)")
    effective_to: Optional[date] = Field(None, description="Effective end (exclusive)")
    supersedes_id: Optional[str] = Field(None, description="Version this one replaces")
    superseded_by: Optional[str] = Field(None, description="Version that replaced this one")
    created_by: str = Field(..., description="Maker")
    submitted_by: Optional[str] = Field(None, description="Submitter")
    approved_by: Optional[str] = Field(None, description="Checker")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    submitted_at: Optional[datetime] = Field(None, description="Submission timestamp")
    approved_at: Optional[datetime] = Field(None, description="Approval timestamp")
    revision: int = Field(1, ge=1, description="Optimistic concurrency revision")

    model_config = {"extra": "forbid"}

    @field_validator("metric_key")
    @classmethod
    def validate_metric_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("metric_key must be non-empty")
        return v

    @property
    def has_limits(self) -> bool:
        return (
            self.direction is not None
            and self.soft_limit is not None
            and self.hard_limit is not None
        )

    def is_effective_on(self, as_of: date) -> bool:
        if self.effective_from > as_of:
            return False
        return self.effective_to is None or as_of < self.effective_to


class Indicator(BaseModel):
    """A key risk indicator definition."""
    indicator_id: str = Field(default_factory=_new_id, description="Indicator identifier")
    name: str = Field(..., description="Display name")
    org_id: str = Field(..., description="Owning organization")
    unit: Optional[str] = Field(None, description="Unit of measure")
    description: str = Field("", description="Description")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")

    model_config = {"extra": "forbid"}


class Observation(BaseModel):
    """A measured indicator value with approval workflow."""
    observation_id: str = Field(default_factory=_new_id, description="Observation identifier")
    indicator_id: str = Field(..., description="Indicator measured")
    observation_date: date = Field(..., description="Measurement date")
    value: float = Field(..., description="Measured value")
    period_id: Optional[str] = Field(None, description="Reporting period")
    commentary: str = Field("", description="Submitter commentary")
    status: ObservationStatus = Field(ObservationStatus.DRAFT, description="Workflow status")
    version: int = Field(1, ge=1, description="Version for this indicator and date")
    supersedes_id: Optional[str] = Field(None, description="Observation this corrects")
    superseded_by: Optional[str] = Field(None, description="Correction that replaced this one")
    created_by: str = Field(..., description="Maker")
    submitted_by: Optional[str] = Field(None, description="Submitter")
    submitted_at: Optional[datetime] = Field(None, description="Submission timestamp")
    approved_by: Optional[str] = Field(None, description="Checker")
    approved_at: Optional[datetime] = Field(None, description="Approval timestamp")
    reviewer_commentary: Optional[str] = Field(None, description="Reviewer commentary")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    revision: int = Field(1, ge=1, description="Optimistic concurrency revision")

    model_config = {"extra": "forbid"}


class CoverageLink(BaseModel):
    """Declares that an indicator evidences a tolerance metric."""
    link_id: str = Field(default_factory=_new_id, description="Link identifier")
    metric_key: str = Field(..., description="Tolerance metric identity key")
    indicator_id: str = Field(..., description="Indicator identifier")
    strength: CoverageStrength = Field(..., description="Coverage strength")
    signal_type: SignalType = Field(SignalType.CONCURRENT, description="Signal timing")
    rationale: Optional[str] = Field(None, description="Why the indicator covers the metric")
    created_by: Optional[str] = Field(None, description="Creator")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")

    model_config = {"extra": "forbid"}


class ReportingPeriod(BaseModel):
    """A registered reporting period."""
    period_id: str = Field(..., description="Period identifier")
    name: str = Field("", description="Display name")
    start_date: date = Field(..., description="First day of the period")
    end_date: date = Field(..., description="Last day of the period")
    period_number: int = Field(..., description="Sequential period number")

    model_config = {"extra": "forbid"}


class CategoryNode(BaseModel):
    """A node in the risk category hierarchy."""
    category_id: str = Field(..., description="Category identifier")
    name: str = Field(..., description="Display name")
    code: Optional[str] = Field(None, description="Short code")
    parent_id: Optional[str] = Field(None, description="Parent category")
    depth: int = Field(0, ge=0, description="Depth below the root")

    model_config = {"extra": "forbid"}


# =============================================================================
# Breach tracking
# =============================================================================


class BreachEvent(BaseModel):
    """A recorded tolerance breach."""
    event_id: str = Field(default_factory=_new_id, description="Event identifier")
    metric_key: str = Field(..., description="Tolerance identity key")
    metric_id: str = Field(..., description="Metric version evaluated")
    org_id: Optional[str] = Field(None, description="Owning organization")
    breach_type: BreachType = Field(..., description="Soft or hard breach")
    breach_value: float = Field(..., description="Observed value")
    limit_value: Optional[float] = Field(None, description="Limit crossed")
    breach_direction: BreachDirection = Field(..., description="Breach direction")
    measurement_date: date = Field(..., description="Measurement date")
    period_number: int = Field(..., description="Sequential period number")
    observation_id: Optional[str] = Field(None, description="Observation that breached")
    acknowledged_at: Optional[datetime] = Field(None, description="Acknowledgement timestamp")
    acknowledged_by: Optional[str] = Field(None, description="User who acknowledged")
    acknowledgement_notes: str = Field("", description="Acknowledgement notes")
    resolved_at: Optional[datetime] = Field(None, description="Resolution timestamp")
    resolved_by: Optional[str] = Field(None, description="User who resolved; None when a GREEN period resolved it")
    resolution_notes: str = Field("", description="Resolution notes")
    resolution_actions: List[str] = Field(default_factory=list, description="Remediation actions taken")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")

    model_config = {"extra": "forbid"}

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    @property
    def resolution_days(self) -> Optional[float]:
        """Days from the measurement date to resolution, or None while open."""
        if self.resolved_at is None:
            return None
        opened = datetime.combine(self.measurement_date, time.min, tzinfo=timezone.utc)
        return (self.resolved_at - opened).total_seconds() / 86400.0


class BreachEvaluation(BaseModel):
    """Outcome of running a metric's breach rule for one period."""
    metric_key: str = Field(..., description="Tolerance identity key")
    rule: BreachRule = Field(..., description="Rule applied")
    status: RAGStatus = Field(..., description="Status that was processed")
    period_number: Optional[int] = Field(None, description="Period processed")
    opened_event: Optional[BreachEvent] = Field(None, description="Event opened this period")
    closed_events: List[BreachEvent] = Field(default_factory=list, description="Events resolved this period")
    consecutive_count: int = Field(0, ge=0, description="Consecutive unresolved breach periods")
    window_count: int = Field(0, ge=0, description="Breaches within the trailing window")
    threshold: int = Field(1, ge=1, description="Count at which the rule is met")
    rule_met: bool = Field(False, description="Whether the rule currently escalates")
    newly_escalated: bool = Field(False, description="Rule met now but not previously")
    severity: Optional[EscalationSeverity] = Field(None, description="Configured severity when met")

    model_config = {"extra": "forbid"}


class BreachStatistics(BaseModel):
    """Breach event counts and resolution time for an organization."""
    org_id: Optional[str] = Field(None, description="Organization filter; None for all")
    total: int = Field(0, ge=0, description="Events recorded")
    open: int = Field(0, ge=0, description="Events not yet resolved")
    acknowledged: int = Field(0, ge=0, description="Open events that were acknowledged")
    by_type: Dict[str, int] = Field(default_factory=dict, description="Event count per breach type")
    average_resolution_days: float = Field(0.0, ge=0, description="Mean days to resolution, one decimal")

    model_config = {"extra": "forbid"}


# =============================================================================
# Residual risk
# =============================================================================


class Control(BaseModel):
    """A control with four effectiveness dimensions scored 0-100."""
    control_id: str = Field(default_factory=_new_id, description="Control identifier")
    name: str = Field(..., description="Display name")
    org_id: Optional[str] = Field(None, description="Owning organization")
    design_effectiveness: float = Field(..., ge=0, le=100, description="Design score")
    implementation_effectiveness: float = Field(..., ge=0, le=100, description="Implementation score")
    monitoring_effectiveness: float = Field(..., ge=0, le=100, description="Monitoring score")
    evaluation_effectiveness: float = Field(..., ge=0, le=100, description="Evaluation score")

    model_config = {"extra": "forbid"}

    @property
    def effectiveness(self) -> float:
        """Mean of the four dimensions scaled to [0, 1]."""
        total = (
            self.design_effectiveness
            + self.implementation_effectiveness
            + self.monitoring_effectiveness
            + self.evaluation_effectiveness
        )
        return total / 400.0


class RiskControlLink(BaseModel):
    """A control applied to a risk."""
    link_id: str = Field(default_factory=_new_id, description="Link identifier")
    risk_id: str = Field(..., description="Risk identifier")
    control_id: str = Field(..., description="Control identifier")
    status: ControlLinkStatus = Field(ControlLinkStatus.ACTIVE, description="Link status")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last update timestamp")

    model_config = {"extra": "forbid"}


class ResidualRiskResult(BaseModel):
    """Derived residual risk for a risk and its active controls."""
    risk_id: str = Field(..., description="Risk identifier")
    inherent_likelihood: int = Field(..., ge=1, le=5, description="Inherent likelihood")
    inherent_impact: int = Field(..., ge=1, le=5, description="Inherent impact")
    inherent_score: int = Field(..., description="Inherent likelihood x impact")
    control_count: int = Field(0, ge=0, description="Active controls applied")
    combined_effectiveness: float = Field(..., ge=0, le=1, description="Compounded effectiveness")
    control_effectiveness_pct: float = Field(..., description="Combined effectiveness as a percentage")
    residual_likelihood: int = Field(..., ge=1, le=5, description="Residual likelihood")
    residual_impact: int = Field(..., ge=1, le=5, description="Residual impact")
    residual_score: int = Field(..., description="Residual likelihood x impact")
    calculated_at: datetime = Field(default_factory=_utcnow, description="Calculation timestamp")
    provenance_hash: str = Field("", description="SHA-256 hash of inputs and outputs")

    model_config = {"extra": "forbid"}


class Risk(BaseModel):
    """A risk with its inherent scores and cached residual."""
    risk_id: str = Field(default_factory=_new_id, description="Risk identifier")
    org_id: str = Field(..., description="Owning organization")
    name: str = Field(..., description="Display name")
    category_id: Optional[str] = Field(None, description="Risk category")
    inherent_likelihood: int = Field(..., ge=1, le=5, description="Inherent likelihood")
    inherent_impact: int = Field(..., ge=1, le=5, description="Inherent impact")
    residual: Optional[ResidualRiskResult] = Field(None, description="Cached residual result")

    model_config = {"extra": "forbid"}


class RecomputeResidualTask(BaseModel):
    """Request to recompute one risk's residual after a control link change."""
    task_id: str = Field(default_factory=_new_id, description="Task identifier")
    risk_id: str = Field(..., description="Risk to recompute")
    control_id: Optional[str] = Field(None, description="Control whose link changed")
    reason: str = Field(..., description="link_added, link_removed or link_status_changed")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")

    model_config = {"extra": "forbid"}


# =============================================================================
# Batch recalculation
# =============================================================================


class RecalcRun(BaseModel):
    """An organization-wide recalculation run."""
    run_id: str = Field(default_factory=_new_id, description="Run identifier")
    org_id: str = Field(..., description="Organization")
    run_type: RecalcRunType = Field(RecalcRunType.FULL, description="Run scope")
    status: RecalcRunStatus = Field(RecalcRunStatus.PENDING, description="Run status")
    requested_by: Optional[str] = Field(None, description="Requesting user")
    started_at: Optional[datetime] = Field(None, description="Start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    items_processed: int = Field(0, ge=0, description="Items processed")
    items_updated: int = Field(0, ge=0, description="Items whose result changed")
    items_failed: int = Field(0, ge=0, description="Items that failed")
    error_message: Optional[str] = Field(None, description="Failure summary")

    model_config = {"extra": "forbid"}


# =============================================================================
# Evaluation results
# =============================================================================


class StatusResult(BaseModel):
    """Status of one metric at a point in time."""
    metric_id: str = Field(..., description="Metric version evaluated")
    metric_key: str = Field(..., description="Tolerance identity key")
    status: RAGStatus = Field(..., description="Computed status")
    as_of: date = Field(..., description="Reference date")
    period_id: Optional[str] = Field(None, description="Period evaluated")
    indicator_id: Optional[str] = Field(None, description="Primary indicator")
    observation_id: Optional[str] = Field(None, description="Observation used")
    observation_date: Optional[date] = Field(None, description="Observation date")
    value: Optional[float] = Field(None, description="Observed value")
    direction: Optional[LimitDirection] = Field(None, description="Limit direction")
    soft_limit: Optional[float] = Field(None, description="Soft limit")
    hard_limit: Optional[float] = Field(None, description="Hard limit")
    message: str = Field("", description="Explanation for diagnostic statuses")

    model_config = {"extra": "forbid"}


class ContainerStatus(BaseModel):
    """Worst-of roll-up over the metrics in a container."""
    container_id: str = Field(..., description="Outcome, risk or category identifier")
    container_type: str = Field(..., description="outcome, risk or category")
    status: RAGStatus = Field(..., description="Aggregated status")
    metric_count: int = Field(0, ge=0, description="Metrics aggregated")
    status_counts: Dict[str, int] = Field(default_factory=dict, description="Count per status")
    metric_statuses: List[StatusResult] = Field(default_factory=list, description="Per-metric results")
    period_id: Optional[str] = Field(None, description="Period evaluated")
    as_of: Optional[date] = Field(None, description="Reference date")

    model_config = {"extra": "forbid"}


class SignalLevelResult(BaseModel):
    """Signal level across all indicators covering a metric."""
    metric_key: str = Field(..., description="Tolerance identity key")
    level: SignalLevel = Field(..., description="Signal level")
    primary_red: int = Field(0, ge=0, description="Primary indicators at RED")
    secondary_red: int = Field(0, ge=0, description="Secondary indicators at RED")
    red_count: int = Field(0, ge=0, description="Indicators at RED")
    amber_count: int = Field(0, ge=0, description="Indicators at AMBER")
    indicator_statuses: Dict[str, RAGStatus] = Field(
        default_factory=dict, description="Status per indicator",
    )

    model_config = {"extra": "forbid"}


class ToleranceState(BaseModel):
    """Per-metric breach state feeding the appetite assessment."""
    metric_key: str = Field(..., description="Tolerance identity key")
    status: RAGStatus = Field(..., description="Evaluated status")
    is_soft_breached: bool = Field(False, description="Beyond the soft limit")
    is_hard_breached: bool = Field(False, description="Beyond the hard limit")
    is_data_missing: bool = Field(False, description="No usable or only stale data")
    rule_met: bool = Field(False, description="Breach rule currently escalates")
    severity: EscalationSeverity = Field(EscalationSeverity.INFO, description="Configured severity")

    model_config = {"extra": "forbid"}


class AppetiteAssessment(BaseModel):
    """Out-of-appetite decision with its reason code."""
    out_of_appetite: bool = Field(..., description="Whether the container is out of appetite")
    escalation_required: bool = Field(False, description="Whether the decision needs escalation")
    reason: AppetiteReason = Field(..., description="Highest-precedence reason")
    severity: Optional[EscalationSeverity] = Field(None, description="Maximum escalation severity")
    metrics_considered: int = Field(0, ge=0, description="Metrics assessed")
    contributing_metrics: List[str] = Field(
        default_factory=list, description="Metric keys driving the reason",
    )

    model_config = {"extra": "forbid"}


# =============================================================================
# Audit
# =============================================================================


class ChangeLogEntry(BaseModel):
    """Audit log entry for a governed change."""
    log_id: str = Field(default_factory=_new_id, description="Log entry identifier")
    timestamp: datetime = Field(default_factory=_utcnow, description="Change timestamp")
    user_id: str = Field(..., description="User who made the change")
    change_type: ChangeType = Field(..., description="Type of change")
    entity_type: str = Field(..., description="Kind of entity changed")
    entity_id: str = Field(..., description="Entity identifier")
    old_value: Any = Field(None, description="Previous value")
    new_value: Any = Field(None, description="New value")
    change_reason: str = Field("", description="Reason for the change")
    provenance_hash: str = Field("", description="SHA-256 chain hash")

    model_config = {"extra": "forbid"}


__all__ = [
    # Enums
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
    # Governed
    "ToleranceMetric",
    "Observation",
    # Configuration
    "Indicator",
    "CoverageLink",
    "ReportingPeriod",
    "CategoryNode",
    # Breach
    "BreachEvent",
    "BreachEvaluation",
    "BreachStatistics",
    # Residual
    "Control",
    "RiskControlLink",
    "ResidualRiskResult",
    "Risk",
    "RecomputeResidualTask",
    # Batch
    "RecalcRun",
    # Results
    "StatusResult",
    "ContainerStatus",
    "SignalLevelResult",
    "ToleranceState",
    "AppetiteAssessment",
    # Audit
    "ChangeLogEntry",
]
