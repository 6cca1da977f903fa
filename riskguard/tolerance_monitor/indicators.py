# -*- coding: utf-8 -*-
"""
Indicator Registry - RiskGuard Tolerance Monitor

In-memory registry of key risk indicator (KRI) definitions. Indicators
are supplied by the surrounding application; the registry exists so the
observation log and coverage graph can reject references to unknown
indicators with ``NotFound``.

Example:
    >>> from riskguard.tolerance_monitor.indicators import IndicatorRegistry
    >>> registry = IndicatorRegistry()
    >>> kri = registry.register("Open audit findings", org_id="org-1", unit="count")
    >>> registry.get(kri.indicator_id).name
    'Open audit findings'

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from riskguard.exceptions import ConcurrencyConflict, NotFound
from riskguard.tolerance_monitor.models import Indicator

logger = logging.getLogger(__name__)


class IndicatorRegistry:
    """Thread-safe registry of indicator definitions."""

    def __init__(self) -> None:
        self._indicators: Dict[str, Indicator] = {}
        self._lock = threading.Lock()
        logger.info("IndicatorRegistry initialized")

    def register(
        self,
        name: str,
        org_id: str,
        unit: Optional[str] = None,
        description: str = "",
        indicator_id: Optional[str] = None,
    ) -> Indicator:
        """Register a new indicator.

        Raises:
            ConcurrencyConflict: If the indicator_id is already registered.
        """
        kwargs = {"indicator_id": indicator_id} if indicator_id else {}
        indicator = Indicator(
            name=name, org_id=org_id, unit=unit, description=description, **kwargs,
        )
        with self._lock:
            if indicator.indicator_id in self._indicators:
                raise ConcurrencyConflict(
                    message=f"Indicator {indicator.indicator_id} already exists",
                    entity_id=indicator.indicator_id,
                )
            self._indicators[indicator.indicator_id] = indicator
        logger.info("Registered indicator %s (%s)", indicator.indicator_id, name)
        return indicator.model_copy()

    def get(self, indicator_id: str) -> Indicator:
        """Get an indicator by ID.

        Raises:
            NotFound: If the indicator is unknown.
        """
        indicator = self._indicators.get(indicator_id)
        if indicator is None:
            raise NotFound(
                message=f"Indicator {indicator_id} not found",
                entity_type="indicator",
                entity_id=indicator_id,
            )
        return indicator.model_copy()

    def exists(self, indicator_id: str) -> bool:
        return indicator_id in self._indicators

    def list(self, org_id: Optional[str] = None) -> List[Indicator]:
        indicators = list(self._indicators.values())
        if org_id is not None:
            indicators = [i for i in indicators if i.org_id == org_id]
        return [i.model_copy() for i in indicators]

    @property
    def count(self) -> int:
        return len(self._indicators)


__all__ = ["IndicatorRegistry"]
