# -*- coding: utf-8 -*-
"""
RiskGuard: Risk Tolerance Monitoring
====================================

Governed tolerance bounds, indicator observations, RAG status roll-ups,
breach escalation and residual risk scoring.

Subpackages:
    - tolerance_monitor: the tolerance monitoring SDK and REST API
"""

__version__ = "1.0.0"
__author__ = "RiskGuard Team"
__license__ = "MIT"

from riskguard.exceptions import (
    RiskGuardException,
    ToleranceMonitorException,
    NotFound,
    InvalidState,
    MissingConfiguration,
    ConcurrencyConflict,
    ValidationError,
)

__all__ = [
    "__version__",
    "RiskGuardException",
    "ToleranceMonitorException",
    "NotFound",
    "InvalidState",
    "MissingConfiguration",
    "ConcurrencyConflict",
    "ValidationError",
]
