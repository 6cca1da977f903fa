# -*- coding: utf-8 -*-
"""
Tolerance Monitor Configuration - RiskGuard Tolerance Monitor

Centralized configuration for the Tolerance Monitor SDK covering:
- Status evaluation (between-direction amber margin)
- Breach rule defaults (sustained periods, window count and days)
- Residual risk calculation (effectiveness cap, impact reduction factor)
- Hierarchy traversal depth
- Period granularity and data staleness window
- Provenance and version limits

All settings can be overridden via environment variables with the
``RG_TOLERANCE_`` prefix (e.g. ``RG_TOLERANCE_BETWEEN_AMBER_MARGIN``).

Example:
    >>> from riskguard.tolerance_monitor.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.between_amber_margin, cfg.default_sustained_periods)

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "RG_TOLERANCE_"

_VALID_GRANULARITIES = ("monthly", "quarterly")


# ---------------------------------------------------------------------------
# ToleranceMonitorConfig
# ---------------------------------------------------------------------------


@dataclass
class ToleranceMonitorConfig:
    """Complete configuration for the RiskGuard Tolerance Monitor SDK.

    All attributes can be overridden via environment variables using the
    ``RG_TOLERANCE_`` prefix.

    Attributes:
        between_amber_margin: Fraction of each rail's magnitude treated as
            the amber zone for ``between`` metrics.
        default_sustained_periods: Consecutive periods needed before a
            SUSTAINED_N_PERIODS rule escalates.
        default_breach_count: Breach count needed before an
            N_BREACHES_IN_WINDOW rule escalates.
        default_window_days: Trailing window for N_BREACHES_IN_WINDOW.
        count_hard_as_soft: Whether HARD events count toward SOFT rules.
        max_control_effectiveness: Upper cap on combined control effectiveness.
        impact_reduction_factor: Share of combined effectiveness applied to impact.
        max_hierarchy_depth: Maximum traversal depth for the category tree.
        default_measurement_window_days: Age after which an observation is
            treated as stale by the appetite assessment.
        period_granularity: ``monthly`` or ``quarterly`` period numbering
            for dates without a registered period.
        enable_provenance: Whether governance transitions are hash-chained.
        max_versions_per_metric: Maximum versions retained per identity key.
    """

    # -- Status evaluation ---------------------------------------------------
    between_amber_margin: float = 0.10

    # -- Breach rules --------------------------------------------------------
    default_sustained_periods: int = 3
    default_breach_count: int = 2
    default_window_days: int = 90
    count_hard_as_soft: bool = True

    # -- Residual risk -------------------------------------------------------
    max_control_effectiveness: float = 0.95
    impact_reduction_factor: float = 1.0

    # -- Hierarchy -----------------------------------------------------------
    max_hierarchy_depth: int = 5

    # -- Periods and staleness -----------------------------------------------
    default_measurement_window_days: int = 90
    period_granularity: str = "monthly"

    # -- Governance ----------------------------------------------------------
    enable_provenance: bool = True
    max_versions_per_metric: int = 100

    def __post_init__(self) -> None:
        if self.period_granularity not in _VALID_GRANULARITIES:
            raise ValueError(
                f"period_granularity must be one of {_VALID_GRANULARITIES}, "
                f"got {self.period_granularity!r}"
            )
        if not 0.0 <= self.between_amber_margin < 1.0:
            raise ValueError("between_amber_margin must be in [0, 1)")
        if not 0.0 <= self.max_control_effectiveness <= 1.0:
            raise ValueError("max_control_effectiveness must be in [0, 1]")
        if not 0.0 <= self.impact_reduction_factor <= 1.0:
            raise ValueError("impact_reduction_factor must be in [0, 1]")

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> ToleranceMonitorConfig:
        """Build a ToleranceMonitorConfig from environment variables.

        Every field can be overridden via ``RG_TOLERANCE_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive).
        Integer values are parsed via ``int()``.
        Float values are parsed via ``float()``.

        Returns:
            Populated ToleranceMonitorConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _float(name: str, default: float) -> float:
            val = _env(name)
            if val is None:
                return default
            try:
                return float(val)
            except ValueError:
                logger.warning(
                    "Invalid float for %s%s=%s, using default %.2f",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        granularity = _str("PERIOD_GRANULARITY", cls.period_granularity).lower()
        if granularity not in _VALID_GRANULARITIES:
            logger.warning(
                "Invalid period granularity %s%s=%s, using default %s",
                prefix, "PERIOD_GRANULARITY", granularity, cls.period_granularity,
            )
            granularity = cls.period_granularity

        config = cls(
            between_amber_margin=_float(
                "BETWEEN_AMBER_MARGIN", cls.between_amber_margin,
            ),
            default_sustained_periods=_int(
                "DEFAULT_SUSTAINED_PERIODS", cls.default_sustained_periods,
            ),
            default_breach_count=_int(
                "DEFAULT_BREACH_COUNT", cls.default_breach_count,
            ),
            default_window_days=_int(
                "DEFAULT_WINDOW_DAYS", cls.default_window_days,
            ),
            count_hard_as_soft=_bool("COUNT_HARD_AS_SOFT", cls.count_hard_as_soft),
            max_control_effectiveness=_float(
                "MAX_CONTROL_EFFECTIVENESS", cls.max_control_effectiveness,
            ),
            impact_reduction_factor=_float(
                "IMPACT_REDUCTION_FACTOR", cls.impact_reduction_factor,
            ),
            max_hierarchy_depth=_int(
                "MAX_HIERARCHY_DEPTH", cls.max_hierarchy_depth,
            ),
            default_measurement_window_days=_int(
                "DEFAULT_MEASUREMENT_WINDOW_DAYS",
                cls.default_measurement_window_days,
            ),
            period_granularity=granularity,
            enable_provenance=_bool("ENABLE_PROVENANCE", cls.enable_provenance),
            max_versions_per_metric=_int(
                "MAX_VERSIONS_PER_METRIC", cls.max_versions_per_metric,
            ),
        )

        logger.info(
            "ToleranceMonitorConfig loaded: between_margin=%.2f, sustained=%d, "
            "window=%d/%dd, effectiveness_cap=%.2f, impact_factor=%.2f, "
            "granularity=%s",
            config.between_amber_margin,
            config.default_sustained_periods,
            config.default_breach_count,
            config.default_window_days,
            config.max_control_effectiveness,
            config.impact_reduction_factor,
            config.period_granularity,
        )
        return config


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[ToleranceMonitorConfig] = None
_config_lock = threading.Lock()


def get_config() -> ToleranceMonitorConfig:
    """Return the singleton ToleranceMonitorConfig, creating from env if needed.

    Returns:
        ToleranceMonitorConfig singleton instance.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = ToleranceMonitorConfig.from_env()
    return _config_instance


def set_config(config: ToleranceMonitorConfig) -> None:
    """Replace the singleton ToleranceMonitorConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("ToleranceMonitorConfig replaced programmatically")


def reset_config() -> None:
    """Reset the singleton (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "ToleranceMonitorConfig",
    "get_config",
    "set_config",
    "reset_config",
]
