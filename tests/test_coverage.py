# -*- coding: utf-8 -*-
"""Tests for the coverage graph and signal level derivation."""

import pytest

from riskguard.exceptions import ConcurrencyConflict, NotFound, ValidationError
from riskguard.tolerance_monitor.coverage import CoverageGraph, compute_signal_level
from riskguard.tolerance_monitor.indicators import IndicatorRegistry
from riskguard.tolerance_monitor.models import (
    CoverageLink,
    CoverageStrength,
    RAGStatus,
    SignalLevel,
    SignalType,
)


@pytest.fixture
def graph():
    registry = IndicatorRegistry()
    for n in range(1, 5):
        registry.register(f"Indicator {n}", "org-1", indicator_id=f"KRI-{n}")
    return CoverageGraph(registry)


class TestCoverageGraph:
    """Tests for linking indicators to metrics."""

    def test_primary_link(self, graph):
        link = graph.link("findings", "KRI-1", "primary", rationale="Direct measure")
        assert link.strength == CoverageStrength.PRIMARY
        assert link.signal_type == SignalType.CONCURRENT
        assert graph.primary_link("findings").indicator_id == "KRI-1"

    def test_primary_needs_rationale(self, graph):
        with pytest.raises(ValidationError):
            graph.link("findings", "KRI-1", "primary")
        # Secondary links do not
        graph.link("findings", "KRI-1", "secondary", signal_type="leading")

    def test_unknown_indicator(self, graph):
        with pytest.raises(NotFound):
            graph.link("findings", "KRI-9", "secondary")

    def test_unknown_metric_key(self):
        """With an existence check wired in, links to unknown metrics are refused."""
        registry = IndicatorRegistry()
        registry.register("Indicator 1", "org-1", indicator_id="KRI-1")
        graph = CoverageGraph(registry, metric_exists=lambda key: key == "findings")

        with pytest.raises(NotFound) as excinfo:
            graph.link("typo", "KRI-1", "primary", rationale="Direct")

        assert excinfo.value.context["entity_id"] == "typo"
        assert graph.links_for_metric("typo") == []
        graph.link("findings", "KRI-1", "primary", rationale="Direct")

    def test_service_refuses_link_before_metric(self, service):
        kri = service.indicators.register("Findings", "org-1")
        with pytest.raises(NotFound):
            service.link_indicator("findings", kri.indicator_id, "secondary")

    def test_duplicate_pair(self, graph):
        graph.link("findings", "KRI-1", "secondary")
        with pytest.raises(ConcurrencyConflict):
            graph.link("findings", "KRI-1", "supplementary")

    def test_single_primary(self, graph):
        """A metric has at most one primary indicator."""
        graph.link("findings", "KRI-1", "primary", rationale="Direct")
        with pytest.raises(ConcurrencyConflict):
            graph.link("findings", "KRI-2", "primary", rationale="Also direct")
        # Other metrics are unaffected
        graph.link("incidents", "KRI-2", "primary", rationale="Direct")

    def test_promote_after_demote(self, graph):
        graph.link("findings", "KRI-1", "primary", rationale="Direct")
        graph.link("findings", "KRI-2", "secondary")

        with pytest.raises(ConcurrencyConflict):
            graph.set_strength("findings", "KRI-2", "primary", rationale="Better")

        graph.set_strength("findings", "KRI-1", "secondary")
        promoted = graph.set_strength("findings", "KRI-2", "primary", rationale="Better")

        assert promoted.strength == CoverageStrength.PRIMARY
        assert graph.primary_link("findings").indicator_id == "KRI-2"

    def test_unlink(self, graph):
        graph.link("findings", "KRI-1", "primary", rationale="Direct")
        graph.unlink("findings", "KRI-1")
        assert graph.primary_link("findings") is None
        assert graph.count == 0
        with pytest.raises(NotFound):
            graph.unlink("findings", "KRI-1")

    def test_queries(self, graph):
        graph.link("findings", "KRI-2", "secondary")
        graph.link("findings", "KRI-1", "primary", rationale="Direct")
        graph.link("incidents", "KRI-2", "supplementary")

        assert [l.indicator_id for l in graph.links_for_metric("findings")] == ["KRI-1", "KRI-2"]
        assert graph.metrics_for_indicator("KRI-2") == ["findings", "incidents"]
        assert graph.count == 3


def _links(**strengths):
    return [
        CoverageLink(
            metric_key="findings",
            indicator_id=indicator_id,
            strength=CoverageStrength(strength),
            rationale="r",
        )
        for indicator_id, strength in strengths.items()
    ]


class TestSignalLevel:
    """Tests for compute_signal_level."""

    LINKS = _links(P="primary", S1="secondary", S2="secondary", X1="supplementary",
                   X2="supplementary", X3="supplementary")

    @pytest.mark.parametrize("metric_status,statuses,expected", [
        (RAGStatus.RED, {}, SignalLevel.BREACH),
        (RAGStatus.GREEN, {"P": RAGStatus.RED}, SignalLevel.IMMINENT),
        (RAGStatus.GREEN, {"S1": RAGStatus.RED, "S2": RAGStatus.RED}, SignalLevel.IMMINENT),
        (RAGStatus.GREEN, {"S1": RAGStatus.RED}, SignalLevel.NORMAL),
        (
            RAGStatus.GREEN,
            {"X1": RAGStatus.RED, "X2": RAGStatus.AMBER, "X3": RAGStatus.AMBER},
            SignalLevel.CONCERN,
        ),
        (
            RAGStatus.GREEN,
            {"X1": RAGStatus.AMBER, "X2": RAGStatus.AMBER, "X3": RAGStatus.AMBER},
            SignalLevel.WATCH,
        ),
        (RAGStatus.AMBER, {"X1": RAGStatus.AMBER, "X2": RAGStatus.AMBER}, SignalLevel.NORMAL),
        (RAGStatus.NO_DATA, {"P": RAGStatus.NO_DATA}, SignalLevel.NORMAL),
    ])
    def test_levels(self, metric_status, statuses, expected):
        result = compute_signal_level("findings", metric_status, self.LINKS, statuses)
        assert result.level == expected

    def test_counts_reported(self):
        statuses = {"P": RAGStatus.RED, "S1": RAGStatus.RED, "X1": RAGStatus.AMBER}
        result = compute_signal_level("findings", RAGStatus.RED, self.LINKS, statuses)

        assert result.primary_red == 1
        assert result.secondary_red == 1
        assert result.red_count == 2
        assert result.amber_count == 1
        assert result.indicator_statuses == statuses
