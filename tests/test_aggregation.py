# -*- coding: utf-8 -*-
"""Tests for worst-of aggregation and the out-of-appetite assessment."""

import itertools
import random
from datetime import date

import pytest

from riskguard.exceptions import ValidationError
from riskguard.tolerance_monitor.aggregation import (
    assess_appetite,
    build_tolerance_state,
    compare_values,
    max_severity,
    worst_of,
)
from riskguard.tolerance_monitor.models import (
    AppetiteReason,
    EscalationSeverity,
    RAGStatus,
    StatusResult,
    ToleranceMetric,
    ToleranceState,
)


def _state(key, status, soft=False, hard=False, missing=False, rule_met=False,
           severity=EscalationSeverity.WARN):
    return ToleranceState(
        metric_key=key,
        status=status,
        is_soft_breached=soft,
        is_hard_breached=hard,
        is_data_missing=missing,
        rule_met=rule_met,
        severity=severity,
    )


# ==============================================================================
# worst_of
# ==============================================================================

class TestWorstOf:
    """Tests for the worst-of ranking."""

    def test_empty_is_no_metrics(self):
        """No statuses aggregate to NO_METRICS."""
        assert worst_of([]) == RAGStatus.NO_METRICS

    def test_single_red_dominates(self):
        """One RED anywhere makes the container RED."""
        statuses = [RAGStatus.GREEN] * 20 + [RAGStatus.RED]
        assert worst_of(statuses) == RAGStatus.RED

    def test_amber_beats_green(self):
        assert worst_of([RAGStatus.GREEN, RAGStatus.AMBER]) == RAGStatus.AMBER

    def test_green_beats_diagnostics(self):
        """A real status outranks diagnostic statuses."""
        assert worst_of([RAGStatus.NO_DATA, RAGStatus.GREEN, RAGStatus.NO_KRI]) == RAGStatus.GREEN

    def test_heterogeneous_diagnostics_collapse_to_unknown(self):
        """Mixed diagnostic statuses never raise and report UNKNOWN."""
        statuses = [RAGStatus.NO_KRI, RAGStatus.NO_DATA, RAGStatus.UNKNOWN]
        assert worst_of(statuses) == RAGStatus.UNKNOWN
        assert worst_of([RAGStatus.NO_DATA]) == RAGStatus.UNKNOWN

    def test_accepts_string_values(self):
        assert worst_of(["GREEN", "AMBER"]) == RAGStatus.AMBER

    def test_order_independent(self):
        """Every permutation of the input yields the same result."""
        statuses = [
            RAGStatus.GREEN, RAGStatus.NO_DATA, RAGStatus.AMBER,
            RAGStatus.UNKNOWN, RAGStatus.NO_KRI,
        ]
        results = {worst_of(p) for p in itertools.permutations(statuses)}
        assert results == {RAGStatus.AMBER}

    def test_shuffled_large_input(self):
        """Shuffling a large status set never changes the result."""
        rng = random.Random(7)
        statuses = [rng.choice(list(RAGStatus)) for _ in range(200)]
        expected = worst_of(statuses)
        for _ in range(20):
            rng.shuffle(statuses)
            assert worst_of(statuses) == expected

    def test_idempotent(self):
        """Aggregating an aggregate gives the same status."""
        statuses = [RAGStatus.AMBER, RAGStatus.GREEN]
        once = worst_of(statuses)
        assert worst_of([once, once]) == once


# ==============================================================================
# Helpers
# ==============================================================================

class TestHelpers:
    """Tests for severity and comparison helpers."""

    def test_max_severity_with_floor(self):
        """The floor applies when every severity is lower."""
        assert max_severity([EscalationSeverity.INFO], EscalationSeverity.WARN) == EscalationSeverity.WARN
        assert max_severity(
            [EscalationSeverity.INFO, EscalationSeverity.CRITICAL, None],
        ) == EscalationSeverity.CRITICAL

    @pytest.mark.parametrize("operator,value,expected", [
        ("gt", 12, True),
        ("gt", 10, False),
        ("gte", 10, True),
        ("lt", 9, True),
        ("lte", 10, True),
        ("eq", 10, True),
        ("eq", 11, False),
    ])
    def test_compare_values(self, operator, value, expected):
        assert compare_values(value, 10, operator) is expected

    def test_unknown_operator(self):
        """An unknown comparison operator is a validation error."""
        with pytest.raises(ValidationError):
            compare_values(1, 1, "approx")


class TestBuildToleranceState:
    """Tests for deriving breach state from an evaluation result."""

    @pytest.fixture
    def metric(self):
        return ToleranceMetric(
            metric_key="findings", name="Findings", org_id="org-1", created_by="alice",
            direction="above", soft_limit=80, hard_limit=90,
        )

    def _result(self, status, value=None, observed=None):
        return StatusResult(
            metric_id="m-1", metric_key="findings", status=status,
            as_of=date(2024, 6, 30), value=value, observation_date=observed,
        )

    def test_red_is_hard_and_soft(self, metric):
        state = build_tolerance_state(
            metric, self._result(RAGStatus.RED, 95, date(2024, 6, 1)),
        )
        assert state.is_hard_breached and state.is_soft_breached
        assert state.severity == EscalationSeverity.CRITICAL

    def test_amber_is_soft_only(self, metric):
        state = build_tolerance_state(
            metric, self._result(RAGStatus.AMBER, 85, date(2024, 6, 1)), rule_met=True,
        )
        assert state.is_soft_breached and not state.is_hard_breached
        assert state.rule_met
        assert state.severity == EscalationSeverity.WARN

    def test_diagnostic_is_missing_data(self, metric):
        state = build_tolerance_state(metric, self._result(RAGStatus.NO_DATA))
        assert state.is_data_missing
        assert not state.is_soft_breached

    def test_stale_observation_is_missing_data(self, metric):
        """A reading older than the measurement window counts as missing."""
        state = build_tolerance_state(
            metric,
            self._result(RAGStatus.RED, 95, date(2024, 1, 15)),
            default_window_days=90,
        )
        assert state.is_data_missing
        assert not state.is_hard_breached


# ==============================================================================
# assess_appetite
# ==============================================================================

class TestAssessAppetite:
    """Tests for the out-of-appetite precedence ladder."""

    def test_within_appetite(self):
        result = assess_appetite([_state("a", RAGStatus.GREEN)])
        assert result.out_of_appetite is False
        assert result.reason == AppetiteReason.WITHIN_APPETITE
        assert result.metrics_considered == 1

    def test_hard_breach_wins(self):
        """A hard breach outranks every other reason."""
        states = [
            _state("a", RAGStatus.RED, soft=True, hard=True),
            _state("b", RAGStatus.AMBER, soft=True, rule_met=True),
            _state("c", RAGStatus.NO_DATA, missing=True),
        ]
        result = assess_appetite(states, "ZERO", is_material=True)
        assert result.out_of_appetite is True
        assert result.escalation_required is True
        assert result.reason == AppetiteReason.HARD_LIMIT_BREACH
        assert result.severity == EscalationSeverity.CRITICAL
        assert result.contributing_metrics == ["a"]

    def test_zero_appetite_material(self):
        """Zero appetite with material exposure is out of appetite without breaches."""
        result = assess_appetite([_state("a", RAGStatus.GREEN)], "zero", is_material=True)
        assert result.out_of_appetite is True
        assert result.reason == AppetiteReason.ZERO_APPETITE_MATERIAL

    def test_zero_appetite_immaterial_is_within(self):
        result = assess_appetite([_state("a", RAGStatus.GREEN)], "ZERO", is_material=False)
        assert result.reason == AppetiteReason.WITHIN_APPETITE

    def test_escalated_soft_breach(self):
        """A soft breach whose rule is met escalates with at least WARN."""
        states = [
            _state("a", RAGStatus.AMBER, soft=True, rule_met=True,
                   severity=EscalationSeverity.INFO),
            _state("b", RAGStatus.NO_DATA, missing=True),
        ]
        result = assess_appetite(states)
        assert result.out_of_appetite is True
        assert result.reason == AppetiteReason.SOFT_LIMIT_ESCALATION
        assert result.severity == EscalationSeverity.WARN

    def test_missing_data_before_pending(self):
        """Missing data outranks a soft breach still pending escalation."""
        states = [
            _state("a", RAGStatus.AMBER, soft=True),
            _state("b", RAGStatus.NO_DATA, missing=True),
        ]
        result = assess_appetite(states)
        assert result.out_of_appetite is False
        assert result.reason == AppetiteReason.DATA_MISSING_FOR_TOLERANCE
        assert result.contributing_metrics == ["b"]

    def test_pending_escalation(self):
        result = assess_appetite([_state("a", RAGStatus.AMBER, soft=True)])
        assert result.out_of_appetite is False
        assert result.reason == AppetiteReason.SOFT_BREACH_PENDING_ESCALATION


# ==============================================================================
# Container aggregation
# ==============================================================================

class TestAggregationEngine:
    """Tests for container roll-ups through the service."""

    def test_outcome_worst_of(self, service, covered_metric, reading):
        """An outcome is as bad as its worst metric."""
        _, k1 = covered_metric("m1", outcome_id="OUT-1",
                               direction="above", soft_limit=80, hard_limit=90)
        _, k2 = covered_metric("m2", outcome_id="OUT-1",
                               direction="above", soft_limit=80, hard_limit=90)
        covered_metric("m3", outcome_id="OUT-2",
                       direction="above", soft_limit=80, hard_limit=90)
        reading(k1.indicator_id, date(2024, 3, 15), 50)
        reading(k2.indicator_id, date(2024, 3, 15), 85)

        result = service.evaluate_container_status("OUT-1", as_of=date(2024, 3, 31))

        assert result.status == RAGStatus.AMBER
        assert result.metric_count == 2
        assert result.status_counts == {"GREEN": 1, "AMBER": 1}

    def test_empty_container(self, service):
        """A container with no metrics is NO_METRICS."""
        result = service.evaluate_container_status("OUT-EMPTY")
        assert result.status == RAGStatus.NO_METRICS
        assert result.metric_count == 0

    def test_diagnostic_only_container(self, service, approved_metric):
        """A container whose metrics are all unevaluable is UNKNOWN."""
        approved_metric("m1", risk_id="R-1", direction="above", soft_limit=80, hard_limit=90)
        approved_metric("m2", risk_id="R-1")

        result = service.evaluate_risk_status("R-1", as_of=date(2024, 3, 31))

        assert result.status == RAGStatus.UNKNOWN
        assert result.status_counts == {"NO_KRI": 1, "UNKNOWN": 1}

    def test_category_includes_descendants(self, service, covered_metric, reading):
        """A category aggregates its whole subtree."""
        service.taxonomy.add("ops", "Operational")
        service.taxonomy.add("it", "IT", parent_id="ops")
        service.taxonomy.add("fin", "Financial")
        _, child = covered_metric("m1", category_id="it",
                                  direction="above", soft_limit=80, hard_limit=90)
        _, other = covered_metric("m2", category_id="fin",
                                  direction="above", soft_limit=80, hard_limit=90)
        reading(child.indicator_id, date(2024, 3, 15), 95)
        reading(other.indicator_id, date(2024, 3, 15), 10)

        ops = service.evaluate_category_status("ops", as_of=date(2024, 3, 31))
        fin = service.evaluate_category_status("fin", as_of=date(2024, 3, 31))

        assert ops.status == RAGStatus.RED
        assert [r.metric_key for r in ops.metric_statuses] == ["m1"]
        assert fin.status == RAGStatus.GREEN

    def test_drafts_not_aggregated(self, service):
        """Only governed versions in force take part."""
        service.store.create_metric(
            "draft", "Draft", "org-1", "alice", outcome_id="OUT-1",
            direction="above", soft_limit=80, hard_limit=90,
        )
        result = service.evaluate_container_status("OUT-1")
        assert result.status == RAGStatus.NO_METRICS

    def test_unknown_container_type(self, service):
        with pytest.raises(ValidationError):
            service.aggregation.evaluate_container("portfolio", "P-1")


class TestServiceAppetite:
    """Tests for the appetite assessment wired through the service."""

    def test_risk_materiality_from_residual(self, service, approved_metric):
        """The residual score is compared with the materiality threshold."""
        risk = service.residual.register_risk("Outage", "org-1", 4, 5, risk_id="R-1")
        approved_metric("m1", risk_id=risk.risk_id,
                        direction="above", soft_limit=80, hard_limit=90)

        material = service.assess_appetite(
            "risk", "R-1", appetite_level="ZERO", materiality_threshold=12,
            as_of=date(2024, 3, 31),
        )
        immaterial = service.assess_appetite(
            "risk", "R-1", appetite_level="ZERO", materiality_threshold=25,
            as_of=date(2024, 3, 31),
        )

        assert material.reason == AppetiteReason.ZERO_APPETITE_MATERIAL
        assert immaterial.reason == AppetiteReason.DATA_MISSING_FOR_TOLERANCE

    def test_hard_breach_out_of_appetite(self, service, covered_metric, reading):
        _, kri = covered_metric("m1", outcome_id="OUT-1",
                                direction="above", soft_limit=80, hard_limit=90)
        reading(kri.indicator_id, date(2024, 3, 15), 95)

        result = service.assess_appetite("outcome", "OUT-1", as_of=date(2024, 3, 31))

        assert result.out_of_appetite is True
        assert result.reason == AppetiteReason.HARD_LIMIT_BREACH
        assert result.contributing_metrics == ["m1"]

    def test_soft_breach_escalated_by_rule(self, service, covered_metric, reading):
        """A point-in-time soft breach escalates immediately."""
        _, kri = covered_metric("m1", outcome_id="OUT-1",
                                direction="above", soft_limit=80, hard_limit=90)
        reading(kri.indicator_id, date(2024, 3, 15), 85)

        result = service.assess_appetite("outcome", "OUT-1", as_of=date(2024, 3, 31))

        assert result.reason == AppetiteReason.SOFT_LIMIT_ESCALATION
        assert result.severity == EscalationSeverity.WARN

    def test_sustained_soft_breach_pending(self, service, covered_metric, reading):
        """A sustained rule not yet met leaves the breach pending."""
        _, kri = covered_metric("m1", outcome_id="OUT-1",
                                direction="above", soft_limit=80, hard_limit=90,
                                breach_rule="SUSTAINED_N_PERIODS", breach_rule_periods=3)
        reading(kri.indicator_id, date(2024, 3, 15), 85)

        result = service.assess_appetite("outcome", "OUT-1", as_of=date(2024, 3, 31))

        assert result.out_of_appetite is False
        assert result.reason == AppetiteReason.SOFT_BREACH_PENDING_ESCALATION
