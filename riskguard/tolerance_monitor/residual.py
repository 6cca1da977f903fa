# -*- coding: utf-8 -*-
"""
Residual Risk Calculator - RiskGuard Tolerance Monitor

Derives residual likelihood and impact from inherent scores and the
active controls applied to a risk. Controls act as independent filters:

    e_i       = mean(design, implementation, monitoring, evaluation) / 100
    combined  = min(cap, 1 - prod(1 - e_i))
    L_res     = max(1, round_half_up(L_inh * (1 - combined)))
    I_res     = max(1, round_half_up(I_inh * (1 - combined * impact_factor)))

All arithmetic is Decimal so the same inputs always reproduce the same
result and provenance hash. Adding a control can only shrink
prod(1 - e_i), so residual scores never increase.

Control link changes publish a ``RecomputeResidualTask`` on the recompute
queue; the calculator consumes it and refreshes the cached residual.

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from riskguard.exceptions import ConcurrencyConflict, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.events import RecomputeQueue
from riskguard.tolerance_monitor.metrics import (
    record_conflict,
    record_operation,
    record_residual_recalculation,
)
from riskguard.tolerance_monitor.models import (
    ChangeType,
    Control,
    ControlLinkStatus,
    RecomputeResidualTask,
    ResidualRiskResult,
    Risk,
    RiskControlLink,
)
from riskguard.tolerance_monitor.provenance import ProvenanceTracker

logger = logging.getLogger(__name__)

RISK_ENTITY = "risk"
CONTROL_LINK_ENTITY = "risk_control_link"

_ONE = Decimal("1")
_HUNDRED = Decimal("100")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _round_half_up(value: Decimal, places: str = "1") -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def control_effectiveness(control: Control) -> Decimal:
    """Mean of the four effectiveness dimensions scaled to [0, 1]."""
    total = sum(
        Decimal(str(score))
        for score in (
            control.design_effectiveness,
            control.implementation_effectiveness,
            control.monitoring_effectiveness,
            control.evaluation_effectiveness,
        )
    )
    return total / Decimal("400")


def combine_effectiveness(
    effectiveness: Sequence[Decimal],
    cap: float = 0.95,
) -> Decimal:
    """Compound independent control effectiveness: 1 - prod(1 - e_i)."""
    remaining = _ONE
    for e in effectiveness:
        remaining *= _ONE - e
    combined = _ONE - remaining
    return min(combined, Decimal(str(cap)))


def compute_residual(
    risk_id: str,
    inherent_likelihood: int,
    inherent_impact: int,
    controls: Sequence[Control],
    max_effectiveness: float = 0.95,
    impact_factor: float = 1.0,
) -> ResidualRiskResult:
    """Compute the residual risk for a risk and its active controls.

    Args:
        risk_id: Risk identifier.
        inherent_likelihood: Inherent likelihood (1-5).
        inherent_impact: Inherent impact (1-5).
        controls: Active controls applied to the risk.
        max_effectiveness: Cap on combined effectiveness.
        impact_factor: Share of the combined effectiveness applied to impact.

    Returns:
        ResidualRiskResult with a deterministic provenance hash.

    Raises:
        ValidationError: Inherent score outside 1-5.
    """
    invalid = {
        name: "must be between 1 and 5"
        for name, value in (
            ("inherent_likelihood", inherent_likelihood),
            ("inherent_impact", inherent_impact),
        )
        if not 1 <= value <= 5
    }
    if invalid:
        raise ValidationError(
            message=f"Inherent scores out of range for risk {risk_id}",
            invalid_fields=invalid,
        )

    combined = combine_effectiveness(
        [control_effectiveness(c) for c in controls], cap=max_effectiveness,
    )
    likelihood = max(
        1, int(_round_half_up(Decimal(inherent_likelihood) * (_ONE - combined))),
    )
    impact = max(
        1,
        int(_round_half_up(
            Decimal(inherent_impact) * (_ONE - combined * Decimal(str(impact_factor))),
        )),
    )

    result = ResidualRiskResult(
        risk_id=risk_id,
        inherent_likelihood=inherent_likelihood,
        inherent_impact=inherent_impact,
        inherent_score=inherent_likelihood * inherent_impact,
        control_count=len(controls),
        combined_effectiveness=float(combined),
        control_effectiveness_pct=float(_round_half_up(combined * _HUNDRED, "0.01")),
        residual_likelihood=likelihood,
        residual_impact=impact,
        residual_score=likelihood * impact,
    )
    result.provenance_hash = _result_hash(result, [c.control_id for c in controls])
    return result


def _result_hash(result: ResidualRiskResult, control_ids: List[str]) -> str:
    payload = result.model_dump(mode="json", exclude={"calculated_at", "provenance_hash"})
    payload["control_ids"] = sorted(control_ids)
    serialized = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()


def same_result(a: Optional[ResidualRiskResult], b: Optional[ResidualRiskResult]) -> bool:
    """Whether two results agree on everything except the timestamp."""
    if a is None or b is None:
        return a is b
    return a.provenance_hash == b.provenance_hash


class ResidualRiskCalculator:
    """Registry of risks, controls and links with cached residual results.

    Subscribes to the recompute queue so every link change refreshes the
    affected risk.
    """

    def __init__(
        self,
        config: Optional[ToleranceMonitorConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
        queue: Optional[RecomputeQueue] = None,
    ) -> None:
        self.config = config or get_config()
        self.provenance = provenance or ProvenanceTracker(
            enabled=self.config.enable_provenance,
        )
        self.queue = queue or RecomputeQueue()
        self.queue.subscribe(self.handle_task)
        self._risks: Dict[str, Risk] = {}
        self._controls: Dict[str, Control] = {}
        self._links: Dict[Tuple[str, str], RiskControlLink] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_risk(
        self,
        name: str,
        org_id: str,
        inherent_likelihood: int,
        inherent_impact: int,
        category_id: Optional[str] = None,
        risk_id: Optional[str] = None,
    ) -> Risk:
        """Register a risk with its inherent scores.

        Raises:
            ValidationError: Scores outside 1-5.
            ConcurrencyConflict: Duplicate risk ID.
        """
        data = {
            "name": name,
            "org_id": org_id,
            "inherent_likelihood": inherent_likelihood,
            "inherent_impact": inherent_impact,
            "category_id": category_id,
        }
        if risk_id is not None:
            data["risk_id"] = risk_id
        try:
            risk = Risk(**data)
        except ValueError as e:
            raise ValidationError(
                message=f"Invalid risk {name}: {e}",
                invalid_fields={"risk": str(e)},
            ) from e

        with self._lock:
            if risk.risk_id in self._risks:
                record_conflict(RISK_ENTITY)
                raise ConcurrencyConflict(
                    message=f"Risk {risk.risk_id} already exists",
                    entity_id=risk.risk_id,
                )
            self._risks[risk.risk_id] = risk
        logger.info("Registered risk %s (%s) L=%d I=%d",
                    risk.risk_id, name, inherent_likelihood, inherent_impact)
        return risk.model_copy()

    def update_inherent(
        self,
        risk_id: str,
        inherent_likelihood: int,
        inherent_impact: int,
        updated_by: str = "system",
    ) -> ResidualRiskResult:
        """Change a risk's inherent scores and recompute its residual."""
        with self._lock:
            risk = self._require_risk(risk_id)
            if not (1 <= inherent_likelihood <= 5 and 1 <= inherent_impact <= 5):
                raise ValidationError(
                    message=f"Inherent scores out of range for risk {risk_id}",
                    invalid_fields={"inherent": "must be between 1 and 5"},
                )
            self._risks[risk_id] = risk.model_copy(update={
                "inherent_likelihood": inherent_likelihood,
                "inherent_impact": inherent_impact,
            })
        self.provenance.record_change(
            user_id=updated_by,
            change_type=ChangeType.UPDATE.value,
            entity_type=RISK_ENTITY,
            entity_id=risk_id,
            old_value=f"{risk.inherent_likelihood}x{risk.inherent_impact}",
            new_value=f"{inherent_likelihood}x{inherent_impact}",
        )
        return self.recalculate(risk_id, trigger="inherent_changed")

    def register_control(
        self,
        name: str,
        design_effectiveness: float,
        implementation_effectiveness: float,
        monitoring_effectiveness: float,
        evaluation_effectiveness: float,
        org_id: Optional[str] = None,
        control_id: Optional[str] = None,
    ) -> Control:
        """Register a control with its four effectiveness scores (0-100).

        Raises:
            ValidationError: Score outside 0-100.
            ConcurrencyConflict: Duplicate control ID.
        """
        data = {
            "name": name,
            "org_id": org_id,
            "design_effectiveness": design_effectiveness,
            "implementation_effectiveness": implementation_effectiveness,
            "monitoring_effectiveness": monitoring_effectiveness,
            "evaluation_effectiveness": evaluation_effectiveness,
        }
        if control_id is not None:
            data["control_id"] = control_id
        try:
            control = Control(**data)
        except ValueError as e:
            raise ValidationError(
                message=f"Invalid control {name}: {e}",
                invalid_fields={"control": str(e)},
            ) from e

        with self._lock:
            if control.control_id in self._controls:
                record_conflict("control")
                raise ConcurrencyConflict(
                    message=f"Control {control.control_id} already exists",
                    entity_id=control.control_id,
                )
            self._controls[control.control_id] = control
        logger.info("Registered control %s (%s) effectiveness=%.2f",
                    control.control_id, name, control.effectiveness)
        return control.model_copy()

    def update_control(self, control_id: str, **scores: float) -> Control:
        """Change a control's effectiveness scores.

        Every risk the control is actively applied to is queued for
        recompute.
        """
        with self._lock:
            control = self._require_control(control_id)
            try:
                updated = Control(**{**control.model_dump(), **scores})
            except ValueError as e:
                raise ValidationError(
                    message=f"Invalid scores for control {control_id}: {e}",
                    invalid_fields={"control": str(e)},
                ) from e
            self._controls[control_id] = updated
            affected = sorted(
                risk_id for (risk_id, cid), link in self._links.items()
                if cid == control_id and link.status == ControlLinkStatus.ACTIVE
            )
        for risk_id in affected:
            self.queue.publish(RecomputeResidualTask(
                risk_id=risk_id, control_id=control_id, reason="control_updated",
            ))
        return updated.model_copy()

    # ------------------------------------------------------------------
    # Control links
    # ------------------------------------------------------------------

    def link_control(
        self,
        risk_id: str,
        control_id: str,
        status: str = ControlLinkStatus.ACTIVE.value,
        linked_by: str = "system",
    ) -> RiskControlLink:
        """Apply a control to a risk and queue a residual recompute.

        Raises:
            NotFound: Unknown risk or control.
            ConcurrencyConflict: Control already linked to the risk.
        """
        with self._lock:
            self._require_risk(risk_id)
            self._require_control(control_id)
            if (risk_id, control_id) in self._links:
                record_conflict(CONTROL_LINK_ENTITY)
                raise ConcurrencyConflict(
                    message=f"Control {control_id} is already linked to risk {risk_id}",
                    entity_id=self._links[(risk_id, control_id)].link_id,
                )
            link = RiskControlLink(
                risk_id=risk_id, control_id=control_id, status=ControlLinkStatus(status),
            )
            self._links[(risk_id, control_id)] = link

        self._link_changed(link, linked_by, ChangeType.LINK, None, link.status.value, "link_added")
        return link.model_copy()

    def set_link_status(
        self,
        risk_id: str,
        control_id: str,
        status: str,
        changed_by: str = "system",
    ) -> RiskControlLink:
        """Change whether a linked control is active."""
        with self._lock:
            current = self._require_link(risk_id, control_id)
            new_status = ControlLinkStatus(status)
            if new_status == current.status:
                return current.model_copy()
            link = current.model_copy(update={"status": new_status, "updated_at": _utcnow()})
            self._links[(risk_id, control_id)] = link

        self._link_changed(
            link, changed_by, ChangeType.UPDATE,
            current.status.value, new_status.value, "link_status_changed",
        )
        return link.model_copy()

    def unlink_control(self, risk_id: str, control_id: str, removed_by: str = "system") -> None:
        with self._lock:
            link = self._require_link(risk_id, control_id)
            del self._links[(risk_id, control_id)]
        self._link_changed(
            link, removed_by, ChangeType.UNLINK, link.status.value, None, "link_removed",
        )

    def controls_for_risk(self, risk_id: str, active_only: bool = True) -> List[Control]:
        with self._lock:
            self._require_risk(risk_id)
            ids = sorted(
                cid for (rid, cid), link in self._links.items()
                if rid == risk_id
                and (not active_only or link.status == ControlLinkStatus.ACTIVE)
            )
            return [self._controls[cid].model_copy() for cid in ids]

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    def handle_task(self, task: RecomputeResidualTask) -> ResidualRiskResult:
        """Consume a recompute task from the queue."""
        return self.recalculate(task.risk_id, trigger=task.reason)

    def recalculate(self, risk_id: str, trigger: str = "manual") -> ResidualRiskResult:
        """Recompute and cache the residual risk of one risk.

        Raises:
            NotFound: Unknown risk.
        """
        result, _ = self.refresh(risk_id, trigger=trigger)
        return result

    def refresh(self, risk_id: str, trigger: str = "manual") -> Tuple[ResidualRiskResult, bool]:
        """Recompute a risk's residual and report whether it changed.

        Returns:
            Tuple of (result, changed). An unchanged result keeps the
            cached instance.

        The inputs are read and the result cached under one lock
        acquisition, so concurrent refreshes of a risk cannot leave a
        result computed from stale links in the cache.
        """
        start = time.monotonic()
        try:
            with self._lock:
                risk = self._require_risk(risk_id)
                controls = [
                    self._controls[cid]
                    for (rid, cid), link in sorted(self._links.items())
                    if rid == risk_id and link.status == ControlLinkStatus.ACTIVE
                ]
                result = compute_residual(
                    risk_id,
                    risk.inherent_likelihood,
                    risk.inherent_impact,
                    controls,
                    max_effectiveness=self.config.max_control_effectiveness,
                    impact_factor=self.config.impact_reduction_factor,
                )
                changed = not same_result(risk.residual, result)
                if changed:
                    self._risks[risk_id] = risk.model_copy(update={"residual": result})
                else:
                    result = risk.residual
        except NotFound:
            record_residual_recalculation(trigger, "not_found")
            raise

        if changed:
            self.provenance.record_change(
                user_id="system",
                change_type=ChangeType.RECALCULATE.value,
                entity_type=RISK_ENTITY,
                entity_id=risk_id,
                old_value=risk.residual.residual_score if risk.residual else None,
                new_value=result.residual_score,
                reason=trigger,
            )
            logger.info(
                "Residual for %s: %dx%d -> %dx%d (combined=%.4f, trigger=%s)",
                risk_id, risk.inherent_likelihood, risk.inherent_impact,
                result.residual_likelihood, result.residual_impact,
                result.combined_effectiveness, trigger,
            )

        record_residual_recalculation(trigger, "updated" if changed else "unchanged")
        record_operation("recalculate_residual", "success", time.monotonic() - start)
        return result.model_copy(), changed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_risk(self, risk_id: str) -> Risk:
        with self._lock:
            return self._require_risk(risk_id).model_copy(deep=True)

    def get_control(self, control_id: str) -> Control:
        with self._lock:
            return self._require_control(control_id).model_copy()

    def list_risks(self, org_id: Optional[str] = None) -> List[Risk]:
        with self._lock:
            risks = sorted(self._risks.values(), key=lambda r: r.risk_id)
        if org_id is not None:
            risks = [r for r in risks if r.org_id == org_id]
        return [r.model_copy(deep=True) for r in risks]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _link_changed(
        self,
        link: RiskControlLink,
        actor: str,
        change_type: ChangeType,
        old_value: Optional[str],
        new_value: Optional[str],
        reason: str,
    ) -> None:
        self.provenance.record_change(
            user_id=actor,
            change_type=change_type.value,
            entity_type=CONTROL_LINK_ENTITY,
            entity_id=link.link_id,
            old_value=old_value,
            new_value=new_value,
            reason=reason,
        )
        logger.info("Control link %s -> %s: %s", link.control_id, link.risk_id, reason)
        self.queue.publish(RecomputeResidualTask(
            risk_id=link.risk_id, control_id=link.control_id, reason=reason,
        ))

    def _require_risk(self, risk_id: str) -> Risk:
        risk = self._risks.get(risk_id)
        if risk is None:
            raise NotFound(
                message=f"Risk {risk_id} not found",
                entity_type=RISK_ENTITY,
                entity_id=risk_id,
            )
        return risk

    def _require_control(self, control_id: str) -> Control:
        control = self._controls.get(control_id)
        if control is None:
            raise NotFound(
                message=f"Control {control_id} not found",
                entity_type="control",
                entity_id=control_id,
            )
        return control

    def _require_link(self, risk_id: str, control_id: str) -> RiskControlLink:
        link = self._links.get((risk_id, control_id))
        if link is None:
            raise NotFound(
                message=f"Control {control_id} is not linked to risk {risk_id}",
                entity_type=CONTROL_LINK_ENTITY,
                entity_id=f"{risk_id}:{control_id}",
            )
        return link


__all__ = [
    "ResidualRiskCalculator",
    "combine_effectiveness",
    "compute_residual",
    "control_effectiveness",
    "same_result",
]
