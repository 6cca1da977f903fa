# -*- coding: utf-8 -*-
"""Tests for organization-wide recalculation runs."""

import logging

import pytest

from riskguard.exceptions import ConcurrencyConflict, InvalidState, NotFound, ValidationError
from riskguard.tolerance_monitor.models import RecalcRunStatus, RecalcRunType
from riskguard.tolerance_monitor.recalc import RecalcRunManager


@pytest.fixture
def manager():
    return RecalcRunManager()


class TestRecalcLock:
    """Tests for acquire_lock and complete_run."""

    def test_acquire(self, manager):
        run = manager.acquire_lock("org-1", requested_by="ops")
        assert run.status == RecalcRunStatus.RUNNING
        assert run.run_type == RecalcRunType.FULL
        assert manager.running_run("org-1").run_id == run.run_id

    def test_second_acquire_names_running_run(self, manager):
        """A competing run is told which run holds the lock."""
        run = manager.acquire_lock("org-1")
        with pytest.raises(ConcurrencyConflict) as exc_info:
            manager.acquire_lock("org-1")
        assert exc_info.value.existing_run_id == run.run_id
        # Other organizations are independent
        manager.acquire_lock("org-2")

    def test_complete_releases_lock(self, manager):
        run = manager.acquire_lock("org-1")
        done = manager.complete_run(run.run_id, "COMPLETED", 5, 2, 0)

        assert done.status == RecalcRunStatus.COMPLETED
        assert (done.items_processed, done.items_updated, done.items_failed) == (5, 2, 0)
        assert done.completed_at is not None
        assert manager.running_run("org-1") is None
        manager.acquire_lock("org-1")

    def test_non_terminal_status(self, manager):
        run = manager.acquire_lock("org-1")
        with pytest.raises(InvalidState):
            manager.complete_run(run.run_id, "RUNNING", 0, 0, 0)

    def test_negative_counts(self, manager):
        run = manager.acquire_lock("org-1")
        with pytest.raises(ValidationError) as exc_info:
            manager.complete_run(run.run_id, "COMPLETED", -1, 0, 0)
        assert "processed" in exc_info.value.context["invalid_fields"]

    def test_complete_twice(self, manager):
        run = manager.acquire_lock("org-1")
        manager.complete_run(run.run_id, "FAILED", 0, 0, 0, error_message="boom")
        with pytest.raises(InvalidState):
            manager.complete_run(run.run_id, "COMPLETED", 0, 0, 0)

    def test_unknown_run(self, manager):
        with pytest.raises(NotFound):
            manager.complete_run("missing", "COMPLETED", 0, 0, 0)
        with pytest.raises(NotFound):
            manager.get_run("missing")


class TestRunSweep:
    """Tests for run_sweep."""

    def test_partial_failure_completes(self, manager):
        def process(item):
            if item == "b":
                raise RuntimeError("bad item")
            return item == "a"

        run = manager.run_sweep("org-1", lambda: ["a", "b", "c"], process)

        assert run.status == RecalcRunStatus.COMPLETED
        assert run.items_processed == 2
        assert run.items_updated == 1
        assert run.items_failed == 1
        assert "b: bad item" in run.error_message
        assert manager.running_run("org-1") is None

    def test_all_failed(self, manager):
        def process(item):
            raise RuntimeError("down")

        run = manager.run_sweep("org-1", lambda: ["a", "b"], process)
        assert run.status == RecalcRunStatus.FAILED
        assert run.items_failed == 2

    def test_failure_log_includes_cause(self, manager, caplog):
        """Item failures are logged with their full exception chain."""
        def process(item):
            try:
                raise KeyError("control-9")
            except KeyError as e:
                raise NotFound(message="Risk R-1 not found", entity_id="R-1") from e

        with caplog.at_level(logging.WARNING, logger="riskguard.tolerance_monitor.recalc"):
            manager.run_sweep("org-1", lambda: ["R-1"], process)

        assert "Risk R-1 not found" in caplog.text
        assert "KeyError: 'control-9'" in caplog.text

    def test_empty_sweep_completes(self, manager):
        run = manager.run_sweep("org-1", lambda: [], lambda item: True)
        assert run.status == RecalcRunStatus.COMPLETED
        assert run.items_processed == 0

    def test_enumeration_failure(self, manager):
        def enumerate_items():
            raise RuntimeError("database gone")

        run = manager.run_sweep("org-1", enumerate_items, lambda item: True)

        assert run.status == RecalcRunStatus.FAILED
        assert "database gone" in run.error_message
        assert manager.running_run("org-1") is None

    def test_sweep_respects_lock(self, manager):
        manager.acquire_lock("org-1")
        with pytest.raises(ConcurrencyConflict):
            manager.run_sweep("org-1", lambda: ["a"], lambda item: True)

    def test_list_runs(self, manager):
        manager.run_sweep("org-1", lambda: [], lambda item: True)
        manager.run_sweep("org-2", lambda: [], lambda item: True)
        assert len(manager.list_runs()) == 2
        assert [r.org_id for r in manager.list_runs("org-2")] == ["org-2"]


class TestServiceSweep:
    """Tests for the residual sweep through the service."""

    def test_full_sweep(self, service):
        service.residual.register_risk("Outage", "org-1", 5, 5)
        service.residual.register_risk("Fraud", "org-1", 3, 4)
        service.residual.register_risk("Elsewhere", "org-2", 3, 4)

        first = service.run_recalc_sweep("org-1", requested_by="ops")
        second = service.run_recalc_sweep("org-1", requested_by="ops")

        assert first.run_type == RecalcRunType.FULL
        assert (first.items_processed, first.items_updated) == (2, 2)
        # Nothing changed since the first sweep
        assert (second.items_processed, second.items_updated) == (2, 0)

    def test_category_sweep(self, service):
        service.taxonomy.add("ops", "Operational")
        service.taxonomy.add("tech", "Technology", parent_id="ops")
        service.taxonomy.add("conduct", "Conduct")
        service.residual.register_risk("Outage", "org-1", 5, 5, category_id="tech")
        service.residual.register_risk("Mis-selling", "org-1", 4, 4, category_id="conduct")

        run = service.run_recalc_sweep("org-1", category_id="ops")

        assert run.run_type == RecalcRunType.CATEGORY
        assert run.items_processed == 1

    def test_lock_through_service(self, service):
        run = service.acquire_recalc_lock("org-1")
        with pytest.raises(ConcurrencyConflict):
            service.run_recalc_sweep("org-1")
        service.complete_recalc_run(run.run_id, "COMPLETED", 0, 0, 0)
        assert service.run_recalc_sweep("org-1").status == RecalcRunStatus.COMPLETED
