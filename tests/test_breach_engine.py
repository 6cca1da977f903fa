# -*- coding: utf-8 -*-
"""Tests for breach events and escalation rules."""

from datetime import date

import pytest

from riskguard.exceptions import InvalidState, NotFound, ValidationError
from riskguard.tolerance_monitor.breach_engine import BreachRuleEngine, breach_side
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig
from riskguard.tolerance_monitor.models import (
    BreachDirection,
    BreachType,
    EscalationSeverity,
    RAGStatus,
    StatusResult,
    ToleranceMetric,
)
from riskguard.tolerance_monitor.periods import PeriodCalendar


def _metric(**fields):
    data = {
        "metric_key": "findings",
        "name": "Findings",
        "org_id": "org-1",
        "created_by": "alice",
        "direction": "above",
        "soft_limit": 80,
        "hard_limit": 90,
    }
    data.update(fields)
    return ToleranceMetric(**data)


def _result(status, on, value=None):
    if value is None:
        value = {RAGStatus.GREEN: 50, RAGStatus.AMBER: 85, RAGStatus.RED: 95}.get(status)
    return StatusResult(
        metric_id="m-1",
        metric_key="findings",
        status=status,
        as_of=on,
        value=value,
        observation_date=on if value is not None else None,
    )


@pytest.fixture
def engine():
    config = ToleranceMonitorConfig()
    return BreachRuleEngine(config=config, periods=PeriodCalendar(config))


# ==============================================================================
# Point in time
# ==============================================================================

class TestPointInTime:
    """Tests for the POINT_IN_TIME rule."""

    def test_breach_opens_event_and_escalates(self, engine):
        """The first breach opens an event and meets the rule."""
        evaluation = engine.process(_metric(), _result(RAGStatus.AMBER, date(2024, 1, 15)))

        assert evaluation.opened_event is not None
        assert evaluation.opened_event.breach_type == BreachType.SOFT
        assert evaluation.opened_event.limit_value == 80
        assert evaluation.rule_met is True
        assert evaluation.newly_escalated is True
        assert evaluation.severity == EscalationSeverity.WARN

    def test_single_open_event(self, engine):
        """A continuing breach does not open a second event."""
        metric = _metric()
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.RED, date(2024, 2, 15)))

        assert evaluation.opened_event is None
        assert evaluation.rule_met is True
        assert evaluation.newly_escalated is False
        assert evaluation.severity == EscalationSeverity.CRITICAL
        assert len(engine.list_events("findings")) == 1

    def test_green_resolves(self, engine):
        """A GREEN reading closes open events and clears the rule."""
        metric = _metric()
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.GREEN, date(2024, 2, 15)))

        assert len(evaluation.closed_events) == 1
        assert evaluation.closed_events[0].resolved_at is not None
        assert evaluation.rule_met is False
        assert engine.open_events("findings") == []
        assert engine.is_escalated("findings") is False

    def test_diagnostic_changes_nothing(self, engine):
        """NO_DATA keeps the previous rule outcome and events."""
        metric = _metric()
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.NO_DATA, date(2024, 2, 15)))

        assert evaluation.opened_event is None
        assert evaluation.closed_events == []
        assert evaluation.rule_met is True
        assert evaluation.newly_escalated is False
        assert len(engine.open_events("findings")) == 1

    def test_reopens_after_resolution(self, engine):
        metric = _metric()
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        engine.process(metric, _result(RAGStatus.GREEN, date(2024, 2, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.RED, date(2024, 3, 15)))

        assert evaluation.opened_event is not None
        assert evaluation.opened_event.breach_type == BreachType.HARD
        assert evaluation.newly_escalated is True
        assert len(engine.list_events("findings")) == 2

    def test_red_upgrades_open_soft_event(self, engine):
        """A RED reading turns the single open SOFT event into a HARD one."""
        metric = _metric()
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.RED, date(2024, 2, 15)))

        events = engine.list_events("findings")
        assert evaluation.opened_event is None
        assert len(events) == 1
        assert events[0].breach_type == BreachType.HARD
        assert events[0].breach_value == 95
        assert events[0].limit_value == 90
        assert events[0].is_open

    def test_back_dated_green_keeps_newer_event(self, engine):
        """A GREEN for an earlier period leaves later breaches open."""
        metric = _metric()
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 3, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.GREEN, date(2024, 1, 15)))

        assert evaluation.closed_events == []
        assert evaluation.rule_met is True
        assert len(engine.open_events("findings")) == 1
        assert engine.is_escalated("findings") is True


# ==============================================================================
# Sustained breaches
# ==============================================================================

class TestSustained:
    """Tests for SUSTAINED_N_PERIODS."""

    @pytest.fixture
    def metric(self):
        return _metric(breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=3)

    def test_fires_on_third_period_not_second(self, engine, metric):
        """Three consecutive breached periods meet a threshold of three."""
        first = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        second = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 2, 15)))
        third = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 3, 15)))

        assert (first.consecutive_count, first.rule_met) == (1, False)
        assert (second.consecutive_count, second.rule_met) == (2, False)
        assert (third.consecutive_count, third.rule_met) == (3, True)
        assert third.newly_escalated is True
        assert third.threshold == 3

    def test_green_gap_resets_count(self, engine, metric):
        """A GREEN period between breaches restarts the count."""
        for month in (1, 2):
            engine.process(metric, _result(RAGStatus.AMBER, date(2024, month, 15)))
        engine.process(metric, _result(RAGStatus.GREEN, date(2024, 3, 15)))
        after_gap = [
            engine.process(metric, _result(RAGStatus.AMBER, date(2024, month, 15)))
            for month in (4, 5, 6)
        ]

        assert [e.consecutive_count for e in after_gap] == [1, 2, 3]
        assert [e.rule_met for e in after_gap] == [False, False, True]

    def test_missing_period_breaks_run(self, engine, metric):
        """Non-adjacent periods are not consecutive."""
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 3, 15)))

        assert evaluation.consecutive_count == 1

    def test_one_event_per_period(self, engine, metric):
        """Repeated readings in a period share one event; RED upgrades it."""
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 10)))
        again = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 20)))
        upgraded = engine.process(metric, _result(RAGStatus.RED, date(2024, 1, 25)))

        events = engine.list_events("findings")
        assert again.opened_event is None
        assert upgraded.opened_event is None
        assert len(events) == 1
        assert events[0].breach_type == BreachType.HARD
        assert events[0].limit_value == 90

    def test_default_threshold_from_config(self, engine):
        metric = _metric(breach_rule="SUSTAINED_N_PERIODS")
        evaluation = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        assert evaluation.threshold == 3

    def test_hard_only_rule_ignores_soft(self, engine):
        """A HARD-typed rule counts only hard breaches."""
        metric = _metric(
            breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=2, breach_rule_type="HARD",
        )
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.RED, date(2024, 2, 15)))

        assert evaluation.consecutive_count == 1
        assert evaluation.rule_met is False

    def test_hard_counts_as_soft_by_default(self, engine):
        metric = _metric(breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=2)
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.RED, date(2024, 2, 15)))

        assert evaluation.rule_met is True
        assert evaluation.severity == EscalationSeverity.CRITICAL

    def test_hard_not_counted_as_soft_when_disabled(self):
        config = ToleranceMonitorConfig(count_hard_as_soft=False)
        engine = BreachRuleEngine(config=config, periods=PeriodCalendar(config))
        metric = _metric(breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=2)
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.RED, date(2024, 2, 15)))

        assert evaluation.consecutive_count == 1
        assert evaluation.rule_met is False

    def test_registered_period_numbers(self):
        """Registered periods supply the period number for their dates."""
        config = ToleranceMonitorConfig()
        periods = PeriodCalendar(config)
        periods.register("Q1", date(2024, 1, 1), date(2024, 3, 31), period_number=1)
        periods.register("Q2", date(2024, 4, 1), date(2024, 6, 30), period_number=2)
        engine = BreachRuleEngine(config=config, periods=periods)
        metric = _metric(breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=2)

        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 5, 15)))

        assert evaluation.period_number == 2
        assert evaluation.rule_met is True


# ==============================================================================
# Breaches in a window
# ==============================================================================

class TestWindow:
    """Tests for N_BREACHES_IN_WINDOW."""

    @pytest.fixture
    def metric(self):
        return _metric(
            breach_rule="N_BREACHES_IN_WINDOW", breach_rule_count=2, breach_rule_window_days=90,
        )

    def test_second_breach_in_window(self, engine, metric):
        first = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 10)))
        second = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 2, 10)))

        assert (first.window_count, first.rule_met) == (1, False)
        assert (second.window_count, second.rule_met) == (2, True)

    def test_resolved_breaches_still_count(self, engine, metric):
        """The window counts resolved events too."""
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 10)))
        engine.process(metric, _result(RAGStatus.GREEN, date(2024, 2, 10)))
        evaluation = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 3, 10)))

        assert evaluation.window_count == 2
        assert evaluation.rule_met is True

    def test_old_breaches_fall_out(self, engine, metric):
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 10)))
        engine.process(metric, _result(RAGStatus.GREEN, date(2024, 2, 10)))
        evaluation = engine.process(metric, _result(RAGStatus.AMBER, date(2024, 6, 10)))

        assert evaluation.window_count == 1
        assert evaluation.rule_met is False


# ==============================================================================
# breach_side
# ==============================================================================

class TestBreachSide:
    """Tests for breach direction and limit selection."""

    def test_above(self):
        assert breach_side(_metric(), 85, BreachType.SOFT) == (BreachDirection.UP, 80)
        assert breach_side(_metric(), 95, BreachType.HARD) == (BreachDirection.UP, 90)

    def test_below(self):
        metric = _metric(direction="below", soft_limit=20, hard_limit=10)
        assert breach_side(metric, 15, BreachType.SOFT) == (BreachDirection.DOWN, 20)

    def test_between_uses_nearest_rail(self):
        metric = _metric(direction="between", soft_limit=100, hard_limit=10)
        assert breach_side(metric, 105, BreachType.HARD) == (BreachDirection.UP, 100)
        assert breach_side(metric, 5, BreachType.HARD) == (BreachDirection.DOWN, 10)


# ==============================================================================
# Service integration
# ==============================================================================

class TestServiceBreaches:
    """Approving observations runs the breach rules of covered metrics."""

    def test_sustained_escalation_through_approvals(self, service, covered_metric, reading):
        _, kri = covered_metric(
            "findings", direction="above", soft_limit=80, hard_limit=90,
            breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=3,
        )
        for month in (1, 2):
            reading(kri.indicator_id, date(2024, month, 15), 85)
        assert service.breaches.is_escalated("findings") is False

        reading(kri.indicator_id, date(2024, 3, 15), 85)

        assert service.breaches.is_escalated("findings") is True
        assert len(service.breaches.open_events("findings")) == 3

    def test_secondary_indicator_does_not_trigger(self, service, covered_metric, reading):
        """Only the primary indicator's readings feed breach rules."""
        covered_metric("findings", direction="above", soft_limit=80, hard_limit=90)
        secondary = service.indicators.register("Other", "org-1")
        service.link_indicator("findings", secondary.indicator_id, "secondary")

        reading(secondary.indicator_id, date(2024, 1, 15), 95)

        assert service.breaches.list_events("findings") == []

    def test_back_dated_green_keeps_escalation(self, service, covered_metric, reading):
        """A late GREEN for January does not clear the February-April run."""
        _, kri = covered_metric(
            "findings", direction="above", soft_limit=80, hard_limit=90,
            breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=3,
        )
        for month in (2, 3, 4):
            reading(kri.indicator_id, date(2024, month, 15), 85)
        assert service.breaches.is_escalated("findings") is True

        reading(kri.indicator_id, date(2024, 1, 15), 10)

        assert len(service.breaches.open_events("findings")) == 3
        assert service.breaches.is_escalated("findings") is True

    def test_manual_workflow_through_service(self, service, covered_metric, reading):
        _, kri = covered_metric("findings", direction="above", soft_limit=80, hard_limit=90)
        reading(kri.indicator_id, date(2024, 1, 15), 95)
        event = service.active_breaches(org_id="org-1")[0]

        service.acknowledge_breach(event.event_id, "erin", notes="Looking into it")
        service.resolve_breach(event.event_id, "erin", "Backlog cleared")

        assert service.active_breaches() == []
        assert service.breach_statistics("org-1").total == 1
        trail = service.provenance.get_audit_trail(entity_id=event.event_id)
        assert [e.change_type.value for e in trail] == ["resolve", "acknowledge"]


# ==============================================================================
# Manual acknowledgement and resolution
# ==============================================================================

class TestBreachWorkflow:
    """Tests for acknowledging, resolving and summarising breach events."""

    def test_acknowledge_records_actor(self, engine):
        evaluation = engine.process(_metric(), _result(RAGStatus.AMBER, date(2024, 1, 15)))
        event_id = evaluation.opened_event.event_id

        acknowledged = engine.acknowledge_event(event_id, "erin", notes="Owner notified")

        assert acknowledged.acknowledged_by == "erin"
        assert acknowledged.acknowledgement_notes == "Owner notified"
        assert acknowledged.acknowledged_at is not None
        assert acknowledged.is_open
        assert engine.get_event(event_id).is_acknowledged

    def test_acknowledge_twice(self, engine):
        evaluation = engine.process(_metric(), _result(RAGStatus.AMBER, date(2024, 1, 15)))
        engine.acknowledge_event(evaluation.opened_event.event_id, "erin")
        with pytest.raises(InvalidState):
            engine.acknowledge_event(evaluation.opened_event.event_id, "frank")

    def test_resolve_records_notes_and_clears_rule(self, engine):
        """A manual resolution closes the event and re-runs the rule."""
        evaluation = engine.process(_metric(), _result(RAGStatus.RED, date(2024, 1, 15)))
        event_id = evaluation.opened_event.event_id
        assert engine.is_escalated("findings") is True

        resolved = engine.resolve_event(
            event_id, "erin", "Limit breach remediated",
            resolution_actions=["Closed findings", "Added review step"],
        )

        assert resolved.resolved_by == "erin"
        assert resolved.resolution_notes == "Limit breach remediated"
        assert resolved.resolution_actions == ["Closed findings", "Added review step"]
        assert resolved.resolved_at is not None
        assert engine.open_events("findings") == []
        assert engine.is_escalated("findings") is False

    def test_resolved_event_is_final(self, engine):
        evaluation = engine.process(_metric(), _result(RAGStatus.AMBER, date(2024, 1, 15)))
        event_id = evaluation.opened_event.event_id
        engine.resolve_event(event_id, "erin", "Done")

        with pytest.raises(InvalidState):
            engine.resolve_event(event_id, "erin", "Again")
        with pytest.raises(InvalidState):
            engine.acknowledge_event(event_id, "erin")

    def test_green_resolution_has_no_actor(self, engine):
        metric = _metric()
        engine.process(metric, _result(RAGStatus.AMBER, date(2024, 1, 15)))
        evaluation = engine.process(metric, _result(RAGStatus.GREEN, date(2024, 2, 15)))
        assert evaluation.closed_events[0].resolved_by is None

    def test_resolve_requires_notes(self, engine):
        evaluation = engine.process(_metric(), _result(RAGStatus.AMBER, date(2024, 1, 15)))
        with pytest.raises(ValidationError):
            engine.resolve_event(evaluation.opened_event.event_id, "erin", "  ")
        assert engine.get_event(evaluation.opened_event.event_id).is_open

    def test_unknown_event(self, engine):
        with pytest.raises(NotFound):
            engine.acknowledge_event("missing", "erin")
        with pytest.raises(NotFound):
            engine.resolve_event("missing", "erin", "Done")

    def test_statistics_by_org(self, engine):
        """Counts split by type and state; resolution time averages resolved events."""
        soft = engine.process(
            _metric(), _result(RAGStatus.AMBER, date(2024, 1, 15)),
        ).opened_event
        hard = engine.process(
            _metric(metric_key="incidents", org_id="org-2"),
            _result(RAGStatus.RED, date(2024, 1, 15)),
        ).opened_event
        resolved = engine.resolve_event(soft.event_id, "erin", "Done")
        engine.acknowledge_event(hard.event_id, "frank")

        overall = engine.breach_statistics()
        assert overall.total == 2
        assert overall.open == 1
        assert overall.acknowledged == 1
        assert overall.by_type == {"SOFT": 1, "HARD": 1}

        org_one = engine.breach_statistics(org_id="org-1")
        assert org_one.total == 1
        assert org_one.open == 0
        assert org_one.average_resolution_days == round(resolved.resolution_days, 1)
        assert org_one.average_resolution_days > 0

        assert engine.breach_statistics(org_id="org-3").average_resolution_days == 0.0
