# -*- coding: utf-8 -*-
"""
Breach Rule Engine - RiskGuard Tolerance Monitor

Turns a stream of per-period metric statuses into breach events and
escalation decisions. Three detection modes, configurable per metric:

    POINT_IN_TIME          opens an event on AMBER/RED when none is open,
                           met while an event is open
    SUSTAINED_N_PERIODS    one event per breaching period; met when the
                           unresolved events form a run of N consecutive
                           period numbers ending at the latest one
    N_BREACHES_IN_WINDOW   one event per breaching period; met when N
                           events (resolved or not) fall inside the
                           trailing day window

AMBER records a SOFT event and RED a HARD event; a RED reading upgrades a
SOFT event already open for the same period (or, under POINT_IN_TIME, the
single open event). GREEN resolves the open events of its own and earlier
periods, so a back-dated GREEN never clears newer breaches. Diagnostic
statuses leave all state untouched.

Open events can also be acknowledged and resolved by hand; a manual
resolution records the actor, notes and remediation actions.

Escalation severity is read from the metric configuration; the engine only
decides whether the rule is met.

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

from riskguard.exceptions import InvalidState, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.metrics import (
    record_breach_opened,
    record_breaches_closed,
    record_escalation,
    set_open_breaches,
)
from riskguard.tolerance_monitor.models import (
    BreachDirection,
    BreachEvaluation,
    BreachEvent,
    BreachRule,
    BreachStatistics,
    BreachType,
    ChangeType,
    LimitDirection,
    RAGStatus,
    StatusResult,
    ToleranceMetric,
)
from riskguard.tolerance_monitor.periods import PeriodCalendar
from riskguard.tolerance_monitor.provenance import ProvenanceTracker

logger = logging.getLogger(__name__)

BREACH_ENTITY = "breach_event"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def breach_side(
    metric: ToleranceMetric,
    value: float,
    breach_type: BreachType,
) -> Tuple[BreachDirection, Optional[float]]:
    """Return the breach direction and the limit crossed (or nearest)."""
    hard = breach_type == BreachType.HARD

    if metric.direction == LimitDirection.BETWEEN and metric.has_limits:
        lower, upper = metric.hard_limit, metric.soft_limit
        if value > (lower + upper) / 2.0:
            return BreachDirection.UP, upper
        return BreachDirection.DOWN, lower

    direction = (
        BreachDirection.DOWN
        if metric.direction == LimitDirection.BELOW
        else BreachDirection.UP
    )
    if metric.has_limits:
        return direction, metric.hard_limit if hard else metric.soft_limit

    bands = metric.bands
    band = None
    if bands is not None:
        band = bands.red if hard else bands.amber
    if band is None:
        return direction, None
    edge = band.max_value if direction == BreachDirection.DOWN else band.min_value
    return direction, edge


class BreachRuleEngine:
    """Tracks breach events per metric and evaluates escalation rules.

    Events are keyed by the metric's identity key so history carries
    across versions.
    """

    def __init__(
        self,
        config: Optional[ToleranceMonitorConfig] = None,
        periods: Optional[PeriodCalendar] = None,
        provenance: Optional[ProvenanceTracker] = None,
    ) -> None:
        self.config = config or get_config()
        self.periods = periods or PeriodCalendar(self.config)
        self.provenance = provenance or ProvenanceTracker(
            enabled=self.config.enable_provenance,
        )
        self._events: Dict[str, List[BreachEvent]] = {}
        self._escalated: Dict[str, bool] = {}
        # Newest (period number, date) processed per metric and its governing version.
        self._latest: Dict[str, Tuple[int, date]] = {}
        self._metrics: Dict[str, ToleranceMetric] = {}
        self._lock = threading.Lock()

    def process(
        self,
        metric: ToleranceMetric,
        result: StatusResult,
        period_number: Optional[int] = None,
    ) -> BreachEvaluation:
        """Apply one evaluated status to the metric's breach history.

        Args:
            metric: Governing metric version.
            result: Status evaluated for the period.
            period_number: Explicit period number; resolved from the
                period calendar or the measurement date otherwise.

        Returns:
            BreachEvaluation describing events opened or closed and the
            rule outcome.
        """
        key = metric.metric_key
        measured_on = result.observation_date or result.as_of
        if period_number is None:
            period_number = self.periods.period_number(measured_on, result.period_id)

        opened: Optional[BreachEvent] = None
        closed: List[BreachEvent] = []

        with self._lock:
            events = self._events.setdefault(key, [])

            if result.status == RAGStatus.GREEN:
                now = _utcnow()
                for index, event in enumerate(events):
                    if event.is_open and event.period_number <= period_number:
                        events[index] = event.model_copy(update={"resolved_at": now})
                        closed.append(events[index])
            elif result.status in (RAGStatus.AMBER, RAGStatus.RED):
                opened = self._record(metric, result, events, measured_on, period_number)

            reference = measured_on
            if not result.status.is_diagnostic:
                latest = self._latest.get(key)
                if latest is None or period_number >= latest[0]:
                    self._latest[key] = (period_number, measured_on)
                    self._metrics[key] = metric
                else:
                    # Back-dated reading: the rule is judged as of the newest period.
                    reference = max(latest[1], measured_on)

            consecutive, window_count, threshold = self._counts(metric, events, reference)
            previously = self._escalated.get(key, False)
            if result.status.is_diagnostic:
                rule_met, newly = previously, False
            else:
                rule_met = self._rule_met(metric, events, consecutive, window_count, threshold)
                newly = rule_met and not previously
                self._escalated[key] = rule_met
            open_total = sum(1 for evts in self._events.values() for e in evts if e.is_open)

        severity = None
        if rule_met:
            severity = (
                metric.hard_breach_severity
                if result.status == RAGStatus.RED
                else metric.escalation_severity
            )

        if opened is not None:
            record_breach_opened(opened.breach_type.value)
            logger.info(
                "Opened %s breach on %s (value=%s, limit=%s, period=%d)",
                opened.breach_type.value, key, opened.breach_value,
                opened.limit_value, period_number,
            )
        if closed:
            record_breaches_closed(len(closed))
            logger.info("Resolved %d breach event(s) on %s", len(closed), key)
        if newly:
            record_escalation(metric.breach_rule.value, severity.value)
            logger.warning(
                "Breach rule %s met for %s (consecutive=%d, window=%d, threshold=%d)",
                metric.breach_rule.value, key, consecutive, window_count, threshold,
            )
        set_open_breaches(open_total)

        return BreachEvaluation(
            metric_key=key,
            rule=metric.breach_rule,
            status=result.status,
            period_number=period_number,
            opened_event=opened,
            closed_events=closed,
            consecutive_count=consecutive,
            window_count=window_count,
            threshold=threshold,
            rule_met=rule_met,
            newly_escalated=newly,
            severity=severity,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_events(self, metric_key: str, open_only: bool = False) -> List[BreachEvent]:
        """Events of a metric ordered by period number."""
        events = sorted(self._events.get(metric_key, []), key=lambda e: e.period_number)
        if open_only:
            events = [e for e in events if e.is_open]
        return [e.model_copy() for e in events]

    def open_events(
        self,
        metric_key: Optional[str] = None,
        org_id: Optional[str] = None,
    ) -> List[BreachEvent]:
        keys = [metric_key] if metric_key is not None else sorted(self._events)
        result: List[BreachEvent] = []
        for key in keys:
            result.extend(
                e for e in self.list_events(key, open_only=True)
                if org_id is None or e.org_id == org_id
            )
        return result

    def get_event(self, event_id: str) -> BreachEvent:
        with self._lock:
            _, event = self._locate(event_id)
            return event.model_copy()

    def is_escalated(self, metric_key: str) -> bool:
        return self._escalated.get(metric_key, False)

    def breach_statistics(self, org_id: Optional[str] = None) -> BreachStatistics:
        """Count events by type and state and average their resolution time.

        Args:
            org_id: Restrict to one organization's metrics.

        Returns:
            BreachStatistics with the mean days from measurement date to
            resolution, rounded to one decimal (0.0 when nothing resolved).
        """
        with self._lock:
            events = [
                e for evts in self._events.values() for e in evts
                if org_id is None or e.org_id == org_id
            ]

        by_type = {t.value: 0 for t in BreachType}
        durations: List[float] = []
        for event in events:
            by_type[event.breach_type.value] += 1
            if event.resolution_days is not None:
                durations.append(max(event.resolution_days, 0.0))

        average = round(sum(durations) / len(durations), 1) if durations else 0.0
        return BreachStatistics(
            org_id=org_id,
            total=len(events),
            open=sum(1 for e in events if e.is_open),
            acknowledged=sum(1 for e in events if e.is_open and e.is_acknowledged),
            by_type=by_type,
            average_resolution_days=average,
        )

    # ------------------------------------------------------------------
    # Manual workflow
    # ------------------------------------------------------------------

    def acknowledge_event(
        self,
        event_id: str,
        acknowledged_by: str,
        notes: str = "",
    ) -> BreachEvent:
        """Record that an owner has seen an open breach.

        Raises:
            NotFound: Unknown event.
            InvalidState: The event is resolved or already acknowledged.
        """
        with self._lock:
            index, event = self._locate(event_id)
            self._require_open(event, "acknowledge")
            if event.is_acknowledged:
                raise InvalidState(
                    message=(
                        f"Breach {event_id} was already acknowledged by "
                        f"{event.acknowledged_by}"
                    ),
                    entity_type=BREACH_ENTITY,
                    entity_id=event_id,
                    current_status="acknowledged",
                    attempted_action="acknowledge",
                )
            updated = event.model_copy(update={
                "acknowledged_at": _utcnow(),
                "acknowledged_by": acknowledged_by,
                "acknowledgement_notes": notes,
            })
            self._events[event.metric_key][index] = updated

        self.provenance.record_change(
            user_id=acknowledged_by,
            change_type=ChangeType.ACKNOWLEDGE.value,
            entity_type=BREACH_ENTITY,
            entity_id=event_id,
            old_value="open",
            new_value="acknowledged",
            reason=notes,
        )
        logger.info("Breach %s on %s acknowledged by %s", event_id, event.metric_key, acknowledged_by)
        return updated.model_copy()

    def resolve_event(
        self,
        event_id: str,
        resolved_by: str,
        resolution_notes: str,
        resolution_actions: Optional[List[str]] = None,
    ) -> BreachEvent:
        """Close an open breach by hand and re-run the metric's rule.

        Raises:
            NotFound: Unknown event.
            InvalidState: The event is already resolved.
            ValidationError: Empty resolution notes.
        """
        if not resolution_notes or not resolution_notes.strip():
            raise ValidationError(
                message="Resolving a breach requires resolution notes",
                invalid_fields={"resolution_notes": "must not be empty"},
            )

        if isinstance(resolution_actions, str):
            actions = [resolution_actions]
        else:
            actions = list(resolution_actions or [])

        with self._lock:
            index, event = self._locate(event_id)
            self._require_open(event, "resolve")
            key = event.metric_key
            events = self._events[key]
            updated = event.model_copy(update={
                "resolved_at": _utcnow(),
                "resolved_by": resolved_by,
                "resolution_notes": resolution_notes,
                "resolution_actions": actions,
            })
            events[index] = updated

            metric = self._metrics.get(key)
            if metric is not None:
                consecutive, window_count, threshold = self._counts(
                    metric, events, self._latest[key][1],
                )
                self._escalated[key] = self._rule_met(
                    metric, events, consecutive, window_count, threshold,
                )
            open_total = sum(1 for evts in self._events.values() for e in evts if e.is_open)

        record_breaches_closed(1)
        set_open_breaches(open_total)
        self.provenance.record_change(
            user_id=resolved_by,
            change_type=ChangeType.RESOLVE.value,
            entity_type=BREACH_ENTITY,
            entity_id=event_id,
            old_value="open",
            new_value="resolved",
            reason=resolution_notes,
        )
        logger.info("Breach %s on %s resolved by %s", event_id, key, resolved_by)
        return updated.model_copy()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record(
        self,
        metric: ToleranceMetric,
        result: StatusResult,
        events: List[BreachEvent],
        measured_on: date,
        period_number: int,
    ) -> Optional[BreachEvent]:
        breach_type = BreachType.HARD if result.status == RAGStatus.RED else BreachType.SOFT

        point_in_time = metric.breach_rule == BreachRule.POINT_IN_TIME
        for index, event in enumerate(events):
            if point_in_time:
                if not event.is_open:
                    continue
            elif event.period_number != period_number:
                continue
            if breach_type == BreachType.HARD and event.breach_type == BreachType.SOFT:
                direction, limit = breach_side(metric, result.value, breach_type)
                events[index] = event.model_copy(update={
                    "breach_type": breach_type,
                    "breach_value": result.value,
                    "limit_value": limit,
                    "breach_direction": direction,
                })
                logger.info(
                    "Upgraded breach %s on %s to HARD (value=%s)",
                    event.event_id, metric.metric_key, result.value,
                )
            return None

        direction, limit = breach_side(metric, result.value, breach_type)
        event = BreachEvent(
            metric_key=metric.metric_key,
            metric_id=metric.metric_id,
            org_id=metric.org_id,
            breach_type=breach_type,
            breach_value=result.value,
            limit_value=limit,
            breach_direction=direction,
            measurement_date=measured_on,
            period_number=period_number,
            observation_id=result.observation_id,
        )
        events.append(event)
        return event

    def _locate(self, event_id: str) -> Tuple[int, BreachEvent]:
        for events in self._events.values():
            for index, event in enumerate(events):
                if event.event_id == event_id:
                    return index, event
        raise NotFound(
            message=f"Breach event {event_id} not found",
            entity_type=BREACH_ENTITY,
            entity_id=event_id,
        )

    @staticmethod
    def _require_open(event: BreachEvent, action: str) -> None:
        if not event.is_open:
            raise InvalidState(
                message=f"Breach {event.event_id} is already resolved",
                entity_type=BREACH_ENTITY,
                entity_id=event.event_id,
                current_status="resolved",
                attempted_action=action,
            )

    def _counted_types(self, metric: ToleranceMetric) -> Set[BreachType]:
        if metric.breach_rule_type == BreachType.HARD:
            return {BreachType.HARD}
        if self.config.count_hard_as_soft:
            return {BreachType.SOFT, BreachType.HARD}
        return {BreachType.SOFT}

    def _counts(
        self,
        metric: ToleranceMetric,
        events: List[BreachEvent],
        reference: date,
    ) -> Tuple[int, int, int]:
        """Return (consecutive count, window count, threshold)."""
        types = self._counted_types(metric)
        counted = [e for e in events if e.breach_type in types]

        unresolved = sorted(
            {e.period_number for e in counted if e.is_open}, reverse=True,
        )
        consecutive = 0
        previous = None
        for number in unresolved:
            if previous is not None and number != previous - 1:
                break
            consecutive += 1
            previous = number

        window_days = metric.breach_rule_window_days or self.config.default_window_days
        window_start = reference - timedelta(days=window_days)
        window_count = sum(
            1 for e in counted if window_start <= e.measurement_date <= reference
        )

        if metric.breach_rule == BreachRule.SUSTAINED_N_PERIODS:
            threshold = metric.breach_rule_periods or self.config.default_sustained_periods
        elif metric.breach_rule == BreachRule.N_BREACHES_IN_WINDOW:
            threshold = metric.breach_rule_count or self.config.default_breach_count
        else:
            threshold = 1
        return consecutive, window_count, threshold

    def _rule_met(
        self,
        metric: ToleranceMetric,
        events: List[BreachEvent],
        consecutive: int,
        window_count: int,
        threshold: int,
    ) -> bool:
        if metric.breach_rule == BreachRule.SUSTAINED_N_PERIODS:
            return consecutive >= threshold
        if metric.breach_rule == BreachRule.N_BREACHES_IN_WINDOW:
            return window_count >= threshold
        types = self._counted_types(metric)
        return any(e.is_open and e.breach_type in types for e in events)


__all__ = ["BREACH_ENTITY", "BreachRuleEngine", "breach_side"]
