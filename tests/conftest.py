# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures for the tolerance monitor."""

from datetime import date

import pytest

from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, reset_config
from riskguard.tolerance_monitor.setup import ToleranceMonitorService, set_service


EFFECTIVE = date(2024, 1, 1)


@pytest.fixture(autouse=True)
def _isolated_config():
    """Every test starts from default configuration and no service singleton."""
    reset_config()
    set_service(None)
    yield
    reset_config()
    set_service(None)


@pytest.fixture
def config():
    return ToleranceMonitorConfig()


@pytest.fixture
def service(config):
    """A fresh service installed as the singleton."""
    svc = ToleranceMonitorService(config=config)
    set_service(svc)
    return svc


@pytest.fixture
def approved_metric(service):
    """Factory: create, submit and approve version 1 of a metric."""

    def _make(key, maker="alice", checker="bob", **fields):
        fields.setdefault("effective_from", EFFECTIVE)
        metric = service.store.create_metric(key, key.title(), "org-1", maker, **fields)
        service.store.submit_metric(metric.metric_id, maker)
        return service.store.approve_metric(metric.metric_id, checker)

    return _make


@pytest.fixture
def covered_metric(service, approved_metric):
    """Factory: approved metric with a primary indicator -> (metric, indicator)."""

    def _make(key, **fields):
        metric = approved_metric(key, **fields)
        indicator = service.indicators.register(f"{key} KRI", "org-1")
        service.link_indicator(
            key, indicator.indicator_id, "primary",
            rationale="Direct measure", created_by="alice",
        )
        return metric, indicator

    return _make


@pytest.fixture
def reading(service):
    """Factory: record and approve an observation, running breach rules."""

    def _make(indicator_id, on, value, period_id=None):
        obs = service.record_observation(indicator_id, on, value, "carol", period_id=period_id)
        return service.approve_observation(obs.observation_id, "dave")

    return _make
