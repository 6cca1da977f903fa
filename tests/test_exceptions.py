"""Tests for RiskGuard Exception Hierarchy.

Test suite covering:
- Base exception functionality
- ToleranceMonitorException hierarchy
- Rich error context
- Exception serialization
- Exception utilities

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

import json
from datetime import datetime

import pytest

from riskguard.exceptions import (
    # Base
    RiskGuardException,
    # Tolerance monitor exceptions
    ToleranceMonitorException,
    NotFound,
    InvalidState,
    MissingConfiguration,
    ConcurrencyConflict,
    ValidationError,
    # Utilities
    format_exception_chain,
    is_retriable,
)


# ==============================================================================
# Base Exception Tests
# ==============================================================================

class TestRiskGuardException:
    """Tests for base RiskGuardException."""

    def test_create_basic_exception(self):
        """Can create basic exception with message."""
        exc = RiskGuardException("Something went wrong")

        assert exc.message == "Something went wrong"
        assert exc.error_code.startswith("RG_")
        assert exc.component is None
        assert exc.context == {}
        assert isinstance(exc.timestamp, datetime)

    def test_explicit_error_code(self):
        exc = RiskGuardException(
            message="Test error",
            error_code="RG_TEST_001",
            component="store",
            context={"key": "value"},
        )

        assert exc.error_code == "RG_TEST_001"
        assert exc.component == "store"
        assert exc.context == {"key": "value"}

    def test_str_representation(self):
        """String form carries the code, component and message."""
        exc = RiskGuardException("Boom", error_code="RG_X", component="store")
        assert str(exc) == "[RG_X] - Component: store - Boom"
        assert str(RiskGuardException("Boom", error_code="RG_X")) == "[RG_X] - Boom"

    def test_to_dict(self):
        exc = RiskGuardException("Boom", context={"a": 1})
        data = exc.to_dict()

        assert data["error_type"] == "RiskGuardException"
        assert data["message"] == "Boom"
        assert data["context"] == {"a": 1}
        assert set(data) == {
            "error_type", "error_code", "message", "component",
            "context", "timestamp", "traceback",
        }

    def test_to_json(self):
        exc = RiskGuardException("Boom", context={"when": datetime(2024, 1, 1)})
        data = json.loads(exc.to_json())
        assert data["message"] == "Boom"


# ==============================================================================
# Tolerance Monitor Exceptions
# ==============================================================================

class TestToleranceMonitorExceptions:
    """Tests for the tolerance monitor error kinds."""

    @pytest.mark.parametrize("exc_class,code", [
        (NotFound, "RG_TOLERANCE_NOT_FOUND"),
        (InvalidState, "RG_TOLERANCE_INVALID_STATE"),
        (MissingConfiguration, "RG_TOLERANCE_MISSING_CONFIGURATION"),
        (ConcurrencyConflict, "RG_TOLERANCE_CONCURRENCY_CONFLICT"),
        (ValidationError, "RG_TOLERANCE_VALIDATION_ERROR"),
    ])
    def test_generated_error_codes(self, exc_class, code):
        exc = exc_class("message")
        assert exc.error_code == code
        assert isinstance(exc, ToleranceMonitorException)
        assert isinstance(exc, RiskGuardException)

    def test_not_found_context(self):
        exc = NotFound("missing", entity_type="indicator", entity_id="KRI-1")
        assert exc.context == {"entity_type": "indicator", "entity_id": "KRI-1"}

    def test_invalid_state_context(self):
        exc = InvalidState(
            "Cannot delete",
            entity_type="tolerance_metric",
            entity_id="TM-1",
            current_status="approved",
            attempted_action="delete",
        )
        assert exc.context["current_status"] == "approved"
        assert exc.context["attempted_action"] == "delete"

    def test_concurrency_conflict_exposes_run(self):
        exc = ConcurrencyConflict("Locked", existing_run_id="RUN-1")
        assert exc.existing_run_id == "RUN-1"
        assert exc.context == {"existing_run_id": "RUN-1"}

    def test_revision_context_keeps_zero(self):
        exc = ConcurrencyConflict("Stale", expected_revision=0, actual_revision=1)
        assert exc.context == {"expected_revision": 0, "actual_revision": 1}

    def test_validation_error_fields(self):
        exc = ValidationError("Bad", invalid_fields={"hard_limit": "below soft"})
        assert exc.context["invalid_fields"] == {"hard_limit": "below soft"}

    @pytest.mark.parametrize("status,reason", [
        ("NO_KRI", "no primary indicator is linked"),
        ("NO_DATA", "no approved observation is available"),
        ("UNKNOWN", "bounds or direction are not configured"),
    ])
    def test_missing_configuration_from_status(self, status, reason):
        """Diagnostic statuses convert into hard failures on request."""
        exc = MissingConfiguration.from_status(status, "TM-1")
        assert reason in exc.message
        assert exc.context == {"status": status, "metric_id": "TM-1"}


# ==============================================================================
# Utilities
# ==============================================================================

class TestExceptionUtilities:
    """Tests for format_exception_chain and is_retriable."""

    def test_format_chain(self):
        try:
            try:
                raise KeyError("TM-1")
            except KeyError as e:
                raise NotFound("Metric missing", entity_id="TM-1") from e
        except NotFound as exc:
            text = format_exception_chain(exc)

        assert "[RG_TOLERANCE_NOT_FOUND] - Metric missing" in text
        assert "KeyError" in text

    def test_only_conflicts_are_retriable(self):
        assert is_retriable(ConcurrencyConflict("race"))
        assert not is_retriable(NotFound("x"))
        assert not is_retriable(InvalidState("x"))
        assert not is_retriable(ValidationError("x"))
        assert not is_retriable(RuntimeError("x"))
