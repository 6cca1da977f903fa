# -*- coding: utf-8 -*-
"""
Tolerance Monitor REST API - RiskGuard Tolerance Monitor

FastAPI router mounted at ``/api/v1/tolerance-monitor``. Handlers take
plain JSON bodies and delegate to the ``ToleranceMonitorService``
singleton. Typed errors map to HTTP statuses:

    NotFound             404
    InvalidState         409
    ConcurrencyConflict  409
    ValidationError      422
    anything else        400

Error details carry a ``retriable`` flag, true only for ConcurrencyConflict.

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from riskguard.exceptions import (
    ConcurrencyConflict,
    InvalidState,
    NotFound,
    RiskGuardException,
    ValidationError,
    is_retriable,
)
from riskguard.tolerance_monitor.models import (
    AppetiteAssessment,
    BreachEvent,
    BreachStatistics,
    CategoryNode,
    ContainerStatus,
    Control,
    CoverageLink,
    Indicator,
    Observation,
    RecalcRun,
    ReportingPeriod,
    ResidualRiskResult,
    Risk,
    RiskControlLink,
    SignalLevelResult,
    StatusResult,
    ToleranceMetric,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/tolerance-monitor",
    tags=["tolerance-monitor"],
)

_STATUS_CODES = (
    (NotFound, 404),
    (InvalidState, 409),
    (ConcurrencyConflict, 409),
    (ValidationError, 422),
)

_METRIC_FIELDS = (
    "description", "outcome_id", "risk_id", "category_id", "unit",
    "direction", "soft_limit", "hard_limit", "bands", "amber_margin",
    "breach_rule", "breach_rule_periods", "breach_rule_count",
    "breach_rule_window_days", "breach_rule_type", "escalation_severity",
    "hard_breach_severity", "measurement_window_days", "effective_from",
)


def _svc() -> Any:
    """Get the singleton service for route handlers."""
    from riskguard.tolerance_monitor.setup import get_service
    return get_service()


def _http_error(exc: Exception) -> HTTPException:
    if not isinstance(exc, RiskGuardException):
        return HTTPException(status_code=400, detail=str(exc))
    status_code = 400
    for exc_type, code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            status_code = code
            break
    if status_code >= 409:
        logger.warning("%s: %s", exc.error_code, exc.message)
    detail = {
        "error_type": exc.__class__.__name__,
        "error_code": exc.error_code,
        "message": exc.message,
        "context": exc.context,
        "retriable": is_retriable(exc),
    }
    return HTTPException(status_code=status_code, detail=jsonable_encoder(detail))


def _date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid date: {value}") from exc


def _metric_fields(request: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: request[k] for k in _METRIC_FIELDS if k in request}
    if "effective_from" in fields:
        fields["effective_from"] = _date(fields["effective_from"])
    return fields


def _required(request: Dict[str, Any], *names: str) -> None:
    missing = [n for n in names if request.get(n) in (None, "")]
    if missing:
        raise HTTPException(
            status_code=422, detail=f"Missing required field(s): {', '.join(missing)}",
        )


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------


@router.get("/health")
async def get_health() -> Dict[str, Any]:
    """Service health and counters."""
    return {"status": "healthy", **_svc().get_metrics()}


# ----------------------------------------------------------------------
# Reference data
# ----------------------------------------------------------------------


@router.post("/indicators", response_model=Indicator, status_code=201)
async def post_register_indicator(request: Dict[str, Any]) -> Indicator:
    """Register a key risk indicator."""
    _required(request, "name", "org_id")
    try:
        return _svc().indicators.register(
            name=request["name"],
            org_id=request["org_id"],
            unit=request.get("unit"),
            description=request.get("description", ""),
            indicator_id=request.get("indicator_id"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/periods", response_model=ReportingPeriod, status_code=201)
async def post_register_period(request: Dict[str, Any]) -> ReportingPeriod:
    """Register a reporting period."""
    _required(request, "period_id", "start_date", "end_date")
    try:
        return _svc().periods.register(
            period_id=request["period_id"],
            start_date=_date(request["start_date"]),
            end_date=_date(request["end_date"]),
            name=request.get("name", ""),
            period_number=request.get("period_number"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/categories", response_model=CategoryNode, status_code=201)
async def post_add_category(request: Dict[str, Any]) -> CategoryNode:
    """Add a node to the risk category tree."""
    _required(request, "category_id", "name")
    try:
        return _svc().taxonomy.add(
            category_id=request["category_id"],
            name=request["name"],
            parent_id=request.get("parent_id"),
            code=request.get("code"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


# ----------------------------------------------------------------------
# Tolerance metrics
# ----------------------------------------------------------------------


@router.post("/metrics", response_model=ToleranceMetric, status_code=201)
async def post_create_metric(request: Dict[str, Any]) -> ToleranceMetric:
    """Create the first draft version of a tolerance metric."""
    _required(request, "metric_key", "name", "org_id", "created_by")
    try:
        return _svc().store.create_metric(
            request["metric_key"],
            request["name"],
            request["org_id"],
            request["created_by"],
            **_metric_fields(request),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/metrics/{metric_id}", response_model=ToleranceMetric)
async def get_metric(metric_id: str) -> ToleranceMetric:
    """Get a metric version by ID or its current version by identity key."""
    try:
        return _svc().evaluator.resolve_metric(metric_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/metrics/{metric_key}/versions", response_model=List[ToleranceMetric])
async def get_metric_versions(metric_key: str) -> List[ToleranceMetric]:
    """All versions of an identity key."""
    try:
        return _svc().store.list_versions(metric_key)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.put("/metrics/{metric_id}", response_model=ToleranceMetric)
async def put_update_metric(metric_id: str, request: Dict[str, Any]) -> ToleranceMetric:
    """Update a draft version."""
    _required(request, "updated_by")
    try:
        return _svc().store.update_metric(
            metric_id,
            request["updated_by"],
            expected_revision=request.get("expected_revision"),
            **_metric_fields(request),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.delete("/metrics/{metric_id}", status_code=204)
async def delete_metric(metric_id: str, deleted_by: str = Query(...)) -> None:
    """Delete a draft version."""
    try:
        _svc().store.delete_metric(metric_id, deleted_by)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/metrics/{metric_id}/submit", response_model=ToleranceMetric)
async def post_submit_metric(metric_id: str, request: Dict[str, Any]) -> ToleranceMetric:
    """Submit a draft for approval."""
    _required(request, "submitted_by")
    try:
        return _svc().store.submit_metric(
            metric_id, request["submitted_by"],
            expected_revision=request.get("expected_revision"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/metrics/{metric_id}/approve", response_model=ToleranceMetric)
async def post_approve_metric(metric_id: str, request: Dict[str, Any]) -> ToleranceMetric:
    """Approve a pending version (maker-checker enforced)."""
    _required(request, "approved_by")
    try:
        return _svc().store.approve_metric(
            metric_id, request["approved_by"],
            expected_revision=request.get("expected_revision"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/metrics/{metric_id}/return", response_model=ToleranceMetric)
async def post_return_metric(metric_id: str, request: Dict[str, Any]) -> ToleranceMetric:
    """Return a pending version to draft."""
    _required(request, "reviewer")
    try:
        return _svc().store.return_metric(
            metric_id, request["reviewer"],
            reason=request.get("reason", "Returned for rework"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/metrics/{metric_id}/retire", response_model=ToleranceMetric)
async def post_retire_metric(metric_id: str, request: Dict[str, Any]) -> ToleranceMetric:
    """Retire the approved version."""
    _required(request, "retired_by")
    try:
        return _svc().store.retire_metric(
            metric_id, request["retired_by"],
            effective_to=_date(request.get("effective_to")),
            reason=request.get("reason", "Retired"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/metrics/{metric_id}/supersede", response_model=ToleranceMetric, status_code=201)
async def post_supersede_metric(metric_id: str, request: Dict[str, Any]) -> ToleranceMetric:
    """Create the next draft version of an approved metric."""
    _required(request, "new_effective_from", "created_by")
    changes = _metric_fields(request)
    changes.pop("effective_from", None)
    try:
        return _svc().supersede_metric(
            metric_id,
            _date(request["new_effective_from"]),
            request["created_by"],
            **changes,
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/metrics/{metric_id}/status", response_model=StatusResult)
async def get_metric_status(
    metric_id: str,
    as_of: Optional[date] = Query(None),
    period_id: Optional[str] = Query(None),
) -> StatusResult:
    """Evaluate a metric at a date or for a reporting period."""
    try:
        return _svc().evaluate_metric_status(metric_id, as_of=as_of, period_id=period_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/metrics/{metric_id}/history", response_model=List[StatusResult])
async def get_metric_history(metric_id: str) -> List[StatusResult]:
    """Status of a metric for every registered period."""
    try:
        return _svc().rag_history(metric_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/metrics/{metric_id}/signal", response_model=SignalLevelResult)
async def get_metric_signal(
    metric_id: str,
    as_of: Optional[date] = Query(None),
    period_id: Optional[str] = Query(None),
) -> SignalLevelResult:
    """Coverage signal level across all linked indicators."""
    try:
        return _svc().signal_level(metric_id, as_of=as_of, period_id=period_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/metrics/{metric_key}/breaches", response_model=List[BreachEvent])
async def get_metric_breaches(metric_key: str, open_only: bool = Query(False)) -> List[BreachEvent]:
    """Breach events recorded for a metric."""
    return _svc().breaches.list_events(metric_key, open_only=open_only)


@router.get("/breaches", response_model=List[BreachEvent])
async def get_active_breaches(org_id: Optional[str] = Query(None)) -> List[BreachEvent]:
    """Open breach events, optionally for one organization."""
    return _svc().active_breaches(org_id=org_id)


@router.get("/breaches/statistics", response_model=BreachStatistics)
async def get_breach_statistics(org_id: Optional[str] = Query(None)) -> BreachStatistics:
    """Breach counts by type and state with the average resolution time."""
    return _svc().breach_statistics(org_id=org_id)


@router.post("/breaches/{event_id}/acknowledge", response_model=BreachEvent)
async def post_acknowledge_breach(event_id: str, request: Dict[str, Any]) -> BreachEvent:
    _required(request, "acknowledged_by")
    try:
        return _svc().acknowledge_breach(
            event_id, request["acknowledged_by"], notes=request.get("notes", ""),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/breaches/{event_id}/resolve", response_model=BreachEvent)
async def post_resolve_breach(event_id: str, request: Dict[str, Any]) -> BreachEvent:
    """Resolve an open breach by hand with notes and remediation actions."""
    _required(request, "resolved_by")
    try:
        return _svc().resolve_breach(
            event_id,
            request["resolved_by"],
            request.get("resolution_notes", ""),
            resolution_actions=request.get("resolution_actions"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


# ----------------------------------------------------------------------
# Coverage
# ----------------------------------------------------------------------


@router.post("/coverage", response_model=CoverageLink, status_code=201)
async def post_link_indicator(request: Dict[str, Any]) -> CoverageLink:
    """Link an indicator to a metric."""
    _required(request, "metric_key", "indicator_id", "strength")
    try:
        return _svc().link_indicator(
            request["metric_key"],
            request["indicator_id"],
            request["strength"],
            rationale=request.get("rationale"),
            created_by=request.get("created_by"),
            signal_type=request.get("signal_type", "concurrent"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.delete("/coverage/{metric_key}/{indicator_id}", status_code=204)
async def delete_coverage_link(
    metric_key: str,
    indicator_id: str,
    removed_by: Optional[str] = Query(None),
) -> None:
    """Remove a coverage link."""
    try:
        _svc().coverage.unlink(metric_key, indicator_id, removed_by=removed_by)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


# ----------------------------------------------------------------------
# Observations
# ----------------------------------------------------------------------


@router.post("/observations", response_model=Observation, status_code=201)
async def post_record_observation(request: Dict[str, Any]) -> Observation:
    """Record an indicator reading."""
    _required(request, "indicator_id", "observation_date", "value", "submitted_by")
    try:
        return _svc().record_observation(
            request["indicator_id"],
            _date(request["observation_date"]),
            request["value"],
            request["submitted_by"],
            period_id=request.get("period_id"),
            commentary=request.get("commentary", ""),
            submit=request.get("submit", True),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/observations/{observation_id}", response_model=Observation)
async def get_observation(observation_id: str) -> Observation:
    try:
        return _svc().observations.get_observation(observation_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/observations/{observation_id}/approve", response_model=Observation)
async def post_approve_observation(observation_id: str, request: Dict[str, Any]) -> Observation:
    """Approve an observation (maker-checker enforced) and run breach rules."""
    _required(request, "approved_by")
    try:
        return _svc().approve_observation(
            observation_id, request["approved_by"], commentary=request.get("commentary"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/observations/{observation_id}/reject", response_model=Observation)
async def post_reject_observation(observation_id: str, request: Dict[str, Any]) -> Observation:
    """Reject an observation with reviewer commentary."""
    _required(request, "rejected_by", "commentary")
    try:
        return _svc().observations.reject_observation(
            observation_id, request["rejected_by"], request["commentary"],
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post(
    "/observations/{observation_id}/supersede",
    response_model=Observation,
    status_code=201,
)
async def post_supersede_observation(observation_id: str, request: Dict[str, Any]) -> Observation:
    """Record a correction of an approved observation."""
    _required(request, "value", "created_by")
    try:
        return _svc().observations.supersede_observation(
            observation_id,
            request["value"],
            request["created_by"],
            commentary=request.get("commentary", ""),
            submit=request.get("submit", True),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


# ----------------------------------------------------------------------
# Containers
# ----------------------------------------------------------------------


@router.get("/containers/{container_type}/{container_id}/status", response_model=ContainerStatus)
async def get_container_status(
    container_type: str,
    container_id: str,
    as_of: Optional[date] = Query(None),
    period_id: Optional[str] = Query(None),
) -> ContainerStatus:
    """Worst-of status for an outcome, risk or category."""
    try:
        return _svc().aggregation.evaluate_container(
            container_type, container_id, as_of, period_id,
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get(
    "/containers/{container_type}/{container_id}/appetite",
    response_model=AppetiteAssessment,
)
async def get_container_appetite(
    container_type: str,
    container_id: str,
    appetite_level: str = Query("MODERATE"),
    is_material: Optional[bool] = Query(None),
    materiality_threshold: Optional[float] = Query(None),
    comparison: str = Query("gte"),
    as_of: Optional[date] = Query(None),
    period_id: Optional[str] = Query(None),
) -> AppetiteAssessment:
    """Out-of-appetite decision for a container."""
    try:
        return _svc().assess_appetite(
            container_type,
            container_id,
            appetite_level=appetite_level,
            is_material=is_material,
            materiality_threshold=materiality_threshold,
            comparison=comparison,
            as_of=as_of,
            period_id=period_id,
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


# ----------------------------------------------------------------------
# Risks and controls
# ----------------------------------------------------------------------


@router.post("/risks", response_model=Risk, status_code=201)
async def post_register_risk(request: Dict[str, Any]) -> Risk:
    """Register a risk with inherent likelihood and impact."""
    _required(request, "name", "org_id", "inherent_likelihood", "inherent_impact")
    try:
        return _svc().residual.register_risk(
            name=request["name"],
            org_id=request["org_id"],
            inherent_likelihood=request["inherent_likelihood"],
            inherent_impact=request["inherent_impact"],
            category_id=request.get("category_id"),
            risk_id=request.get("risk_id"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/controls", response_model=Control, status_code=201)
async def post_register_control(request: Dict[str, Any]) -> Control:
    """Register a control with its four effectiveness scores."""
    _required(
        request, "name", "design_effectiveness", "implementation_effectiveness",
        "monitoring_effectiveness", "evaluation_effectiveness",
    )
    try:
        return _svc().residual.register_control(
            name=request["name"],
            design_effectiveness=request["design_effectiveness"],
            implementation_effectiveness=request["implementation_effectiveness"],
            monitoring_effectiveness=request["monitoring_effectiveness"],
            evaluation_effectiveness=request["evaluation_effectiveness"],
            org_id=request.get("org_id"),
            control_id=request.get("control_id"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/risks/{risk_id}/controls", response_model=RiskControlLink, status_code=201)
async def post_link_control(risk_id: str, request: Dict[str, Any]) -> RiskControlLink:
    """Apply a control to a risk; the residual is recomputed."""
    _required(request, "control_id")
    try:
        return _svc().residual.link_control(
            risk_id,
            request["control_id"],
            status=request.get("status", "active"),
            linked_by=request.get("linked_by", "system"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.put("/risks/{risk_id}/controls/{control_id}", response_model=RiskControlLink)
async def put_control_link_status(
    risk_id: str,
    control_id: str,
    request: Dict[str, Any],
) -> RiskControlLink:
    """Change a control link's status; the residual is recomputed."""
    _required(request, "status")
    try:
        return _svc().residual.set_link_status(
            risk_id, control_id, request["status"],
            changed_by=request.get("changed_by", "system"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.delete("/risks/{risk_id}/controls/{control_id}", status_code=204)
async def delete_control_link(risk_id: str, control_id: str) -> None:
    """Remove a control from a risk; the residual is recomputed."""
    try:
        _svc().residual.unlink_control(risk_id, control_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/risks/{risk_id}/recalculate", response_model=ResidualRiskResult)
async def post_recalculate_residual(risk_id: str) -> ResidualRiskResult:
    """Recompute a risk's residual."""
    try:
        return _svc().recalculate_residual_risk(risk_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


# ----------------------------------------------------------------------
# Recalc runs
# ----------------------------------------------------------------------


@router.post("/recalc/lock", response_model=RecalcRun, status_code=201)
async def post_acquire_recalc_lock(request: Dict[str, Any]) -> RecalcRun:
    """Start a recalc run; 409 carries the running run's ID."""
    _required(request, "org_id")
    try:
        return _svc().acquire_recalc_lock(
            request["org_id"],
            run_type=request.get("run_type", "FULL"),
            requested_by=request.get("requested_by"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/recalc/runs/{run_id}/complete", response_model=RecalcRun)
async def post_complete_recalc_run(run_id: str, request: Dict[str, Any]) -> RecalcRun:
    """Finish a run and release its lock."""
    _required(request, "status")
    try:
        return _svc().complete_recalc_run(
            run_id,
            request["status"],
            request.get("processed", 0),
            request.get("updated", 0),
            request.get("failed", 0),
            error_message=request.get("error_message"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.post("/recalc/sweep", response_model=RecalcRun)
async def post_recalc_sweep(request: Dict[str, Any]) -> RecalcRun:
    """Recompute every risk of an organization under the run lock."""
    _required(request, "org_id")
    try:
        return _svc().run_recalc_sweep(
            request["org_id"],
            requested_by=request.get("requested_by"),
            category_id=request.get("category_id"),
        )
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


@router.get("/recalc/runs/{run_id}", response_model=RecalcRun)
async def get_recalc_run(run_id: str) -> RecalcRun:
    try:
        return _svc().recalc.get_run(run_id)
    except (RiskGuardException, ValueError) as exc:
        raise _http_error(exc)


__all__ = ["router"]
