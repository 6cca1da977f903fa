"""RiskGuard Custom Exception Hierarchy.

This module provides the exception hierarchy for RiskGuard with rich error
context for debugging, monitoring, and API responses.

Exception Hierarchy:
    RiskGuardException (base)
    └── ToleranceMonitorException
        ├── NotFound
        ├── InvalidState
        ├── MissingConfiguration
        ├── ConcurrencyConflict
        └── ValidationError

All exceptions include rich context:
- error_code: Unique error identifier
- component: Name of the component that raised the error
- context: Dictionary with error-specific details
- timestamp: When the error occurred
- traceback: Full stack trace for debugging

Absence of data is an expected runtime condition: the status evaluator
reports ``NO_KRI``/``NO_DATA``/``UNKNOWN`` instead of raising
``MissingConfiguration``. Callers that need a hard failure can convert a
diagnostic status with ``MissingConfiguration.from_status``.

Example:
    >>> from riskguard.exceptions import InvalidState
    >>> raise InvalidState(
    ...     message="Cannot delete an approved tolerance metric",
    ...     entity_type="tolerance_metric",
    ...     entity_id="TM-3f2a9c",
    ...     current_status="approved",
    ...     attempted_action="delete",
    ... )

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from typing import Any, Dict, Optional
from datetime import datetime
import traceback as tb
import json
import re


# ==============================================================================
# Base Exception
# ==============================================================================

class RiskGuardException(Exception):
    """Base exception for all RiskGuard errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier (e.g., "RG_TOLERANCE_NOT_FOUND")
        component: Name of the component that raised the error (optional)
        context: Dictionary with error-specific details
        timestamp: When the error occurred
        traceback_str: Full stack trace for debugging
    """

    # Base error code prefix
    ERROR_PREFIX = "RG"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize RiskGuard exception with rich context.

        Args:
            message: Human-readable error message
            error_code: Unique error identifier (auto-generated if not provided)
            component: Name of the component that raised the error
            context: Dictionary with error-specific details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.component = component
        self.context = context or {}
        self.timestamp = datetime.now()
        self.traceback_str = "".join(tb.format_stack()[:-1])

    def _generate_error_code(self) -> str:
        """Generate error code based on exception class.

        Returns:
            Error code like "RG_TOLERANCE_INVALID_STATE"
        """
        class_name = self.__class__.__name__
        # CamelCase -> SCREAMING_SNAKE_CASE
        error_type = re.sub(r'(?<!^)(?=[A-Z])', '_', class_name).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary with all error details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "component": self.component,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "traceback": self.traceback_str,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string.

        Returns:
            JSON string representation
        """
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        """String representation with error code and message."""
        parts = [f"[{self.error_code}]"]
        if self.component:
            parts.append(f"Component: {self.component}")
        parts.append(self.message)
        return " - ".join(parts)

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}', "
            f"component='{self.component}')"
        )


# ==============================================================================
# Tolerance Monitor Exceptions
# ==============================================================================

class ToleranceMonitorException(RiskGuardException):
    """Base exception for tolerance monitoring errors."""
    ERROR_PREFIX = "RG_TOLERANCE"


class NotFound(ToleranceMonitorException):
    """A referenced entity does not exist.

    Raised for unknown metrics, indicators, observations, risks, controls
    and recalc runs.

    Example:
        >>> raise NotFound(
        ...     message="Indicator not found",
        ...     entity_type="indicator",
        ...     entity_id="KRI-001",
        ... )
    """

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize not-found error.

        Args:
            message: Error message
            entity_type: Kind of entity that was looked up
            entity_id: Identifier that could not be resolved
            component: Component name
            context: Error context
        """
        context = context or {}
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id:
            context["entity_id"] = entity_id
        super().__init__(message, component=component, context=context)


class InvalidState(ToleranceMonitorException):
    """Operation is not allowed in the entity's current lifecycle state.

    Raised when mutating or deleting an immutable governed entity, on an
    illegal lifecycle transition, and when the approver is also the maker.

    Example:
        >>> raise InvalidState(
        ...     message="Approver must differ from submitter",
        ...     entity_type="observation",
        ...     entity_id="OBS-1",
        ...     current_status="submitted",
        ...     attempted_action="approve",
        ... )
    """

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        current_status: Optional[str] = None,
        attempted_action: Optional[str] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize invalid state error.

        Args:
            message: Error message
            entity_type: Kind of governed entity
            entity_id: Entity identifier
            current_status: Lifecycle status at the time of the attempt
            attempted_action: Action that was refused
            component: Component name
            context: Error context
        """
        context = context or {}
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id:
            context["entity_id"] = entity_id
        if current_status:
            context["current_status"] = current_status
        if attempted_action:
            context["attempted_action"] = attempted_action
        super().__init__(message, component=component, context=context)


class MissingConfiguration(ToleranceMonitorException):
    """Required tolerance configuration or data is absent.

    Evaluation never raises this; it reports a diagnostic status instead.
    """

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        metric_id: Optional[str] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize missing configuration error.

        Args:
            message: Error message
            status: Diagnostic status that triggered the error
            metric_id: Metric being evaluated
            component: Component name
            context: Error context
        """
        context = context or {}
        if status:
            context["status"] = status
        if metric_id:
            context["metric_id"] = metric_id
        super().__init__(message, component=component, context=context)

    @classmethod
    def from_status(cls, status: str, metric_id: str) -> "MissingConfiguration":
        """Build an error from a diagnostic evaluation status.

        Args:
            status: One of NO_KRI, NO_DATA, UNKNOWN.
            metric_id: Metric that produced the status.

        Returns:
            MissingConfiguration instance.
        """
        reasons = {
            "NO_KRI": "no primary indicator is linked",
            "NO_DATA": "no approved observation is available",
            "UNKNOWN": "bounds or direction are not configured",
        }
        reason = reasons.get(status, "configuration is incomplete")
        return cls(
            message=f"Metric {metric_id} cannot be evaluated: {reason}",
            status=status,
            metric_id=metric_id,
        )


class ConcurrencyConflict(ToleranceMonitorException):
    """A concurrent writer won the race for the same entity or lock.

    Example:
        >>> raise ConcurrencyConflict(
        ...     message="Recalculation already running",
        ...     existing_run_id="RUN-7f1e",
        ... )
    """

    def __init__(
        self,
        message: str,
        existing_run_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        expected_revision: Optional[int] = None,
        actual_revision: Optional[int] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize concurrency conflict error.

        Args:
            message: Error message
            existing_run_id: Run that currently holds the lock
            entity_id: Entity whose write lost the race
            expected_revision: Revision the caller based its write on
            actual_revision: Revision found in the store
            component: Component name
            context: Error context
        """
        context = context or {}
        if existing_run_id:
            context["existing_run_id"] = existing_run_id
        if entity_id:
            context["entity_id"] = entity_id
        if expected_revision is not None:
            context["expected_revision"] = expected_revision
        if actual_revision is not None:
            context["actual_revision"] = actual_revision
        self.existing_run_id = existing_run_id
        super().__init__(message, component=component, context=context)


class ValidationError(ToleranceMonitorException):
    """Malformed configuration or input.

    Example:
        >>> raise ValidationError(
        ...     message="Hard limit must not be below soft limit",
        ...     invalid_fields={"hard_limit": "below soft_limit for direction 'above'"},
        ... )
    """

    def __init__(
        self,
        message: str,
        invalid_fields: Optional[Dict[str, str]] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize validation error.

        Args:
            message: Error message
            invalid_fields: Dictionary of field_name -> reason
            component: Component name
            context: Error context
        """
        if invalid_fields:
            context = context or {}
            context["invalid_fields"] = invalid_fields
        super().__init__(message, component=component, context=context)


# ==============================================================================
# Exception Utilities
# ==============================================================================

def format_exception_chain(exc: Exception) -> str:
    """Format exception chain for logging/display.

    Args:
        exc: Exception to format

    Returns:
        Formatted string with full exception chain
    """
    lines = []
    current = exc

    while current is not None:
        if isinstance(current, RiskGuardException):
            lines.append(str(current))
            lines.append(f"  Context: {current.context}")
        else:
            lines.append(f"{type(current).__name__}: {current}")

        current = getattr(current, "__cause__", None)

    return "\n".join(lines)


def is_retriable(exc: Exception) -> bool:
    """Check if exception is retriable.

    Args:
        exc: Exception to check

    Returns:
        True if operation should be retried
    """
    # Lost races can succeed on a fresh read
    if isinstance(exc, ConcurrencyConflict):
        return True

    non_retriable_types = (NotFound, InvalidState, MissingConfiguration, ValidationError)
    if isinstance(exc, non_retriable_types):
        return False

    return False


__all__ = [
    "RiskGuardException",
    "ToleranceMonitorException",
    "NotFound",
    "InvalidState",
    "MissingConfiguration",
    "ConcurrencyConflict",
    "ValidationError",
    "format_exception_chain",
    "is_retriable",
]
