# -*- coding: utf-8 -*-
"""
Coverage Graph - RiskGuard Tolerance Monitor

Many-to-many links between indicators and tolerance metrics. Links are
keyed by the metric's identity key so they survive supersession.

Constraints:
    - One link per (metric, indicator) pair.
    - At most one ``primary`` indicator per metric, so status derivation
      is deterministic.
    - A ``primary`` link must carry a rationale.

Also computes the coverage signal level, which looks at every linked
indicator rather than only the primary one:

    breach    the metric itself is RED
    imminent  1+ primary indicator RED, or 2+ secondary indicators RED
    concern   1+ indicator RED and 2+ AMBER
    watch     3+ indicators AMBER
    normal    otherwise

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from riskguard.exceptions import ConcurrencyConflict, NotFound, ValidationError
from riskguard.tolerance_monitor.governance import METRIC_ENTITY
from riskguard.tolerance_monitor.indicators import IndicatorRegistry
from riskguard.tolerance_monitor.metrics import record_conflict
from riskguard.tolerance_monitor.models import (
    ChangeType,
    CoverageLink,
    CoverageStrength,
    RAGStatus,
    SignalLevel,
    SignalLevelResult,
    SignalType,
)
from riskguard.tolerance_monitor.provenance import ProvenanceTracker

logger = logging.getLogger(__name__)

_ENTITY = "coverage_link"


class CoverageGraph:
    """Indicator-to-metric coverage links with a primary-uniqueness rule."""

    def __init__(
        self,
        indicators: IndicatorRegistry,
        provenance: Optional[ProvenanceTracker] = None,
        metric_exists: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.indicators = indicators
        self.provenance = provenance or ProvenanceTracker()
        # Existence check for metric identity keys; links are unchecked without it.
        self.metric_exists = metric_exists
        self._links: Dict[Tuple[str, str], CoverageLink] = {}
        self._lock = threading.Lock()

    def link(
        self,
        metric_key: str,
        indicator_id: str,
        strength: str,
        signal_type: str = SignalType.CONCURRENT.value,
        rationale: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> CoverageLink:
        """Declare that an indicator evidences a metric.

        Raises:
            NotFound: Unknown indicator or metric identity key.
            ValidationError: Primary link without rationale.
            ConcurrencyConflict: Pair already linked, or the metric already
                has a primary indicator.
        """
        self.indicators.get(indicator_id)
        if self.metric_exists is not None and not self.metric_exists(metric_key):
            raise NotFound(
                message=f"Tolerance metric {metric_key} not found",
                entity_type=METRIC_ENTITY,
                entity_id=metric_key,
            )
        link = CoverageLink(
            metric_key=metric_key,
            indicator_id=indicator_id,
            strength=CoverageStrength(strength),
            signal_type=SignalType(signal_type),
            rationale=rationale,
            created_by=created_by,
        )
        self._check_rationale(link)

        with self._lock:
            pair = (metric_key, indicator_id)
            if pair in self._links:
                record_conflict(_ENTITY)
                raise ConcurrencyConflict(
                    message=f"Indicator {indicator_id} is already linked to {metric_key}",
                    entity_id=self._links[pair].link_id,
                )
            if link.strength == CoverageStrength.PRIMARY:
                self._check_single_primary(metric_key, indicator_id)
            self._links[pair] = link

        self.provenance.record_change(
            user_id=created_by or "system",
            change_type=ChangeType.LINK.value,
            entity_type=_ENTITY,
            entity_id=link.link_id,
            old_value=None,
            new_value=f"{metric_key}<-{indicator_id} ({link.strength.value})",
            reason=rationale or "",
        )
        logger.info(
            "Linked indicator %s to %s as %s/%s",
            indicator_id, metric_key, link.strength.value, link.signal_type.value,
        )
        return link.model_copy()

    def set_strength(
        self,
        metric_key: str,
        indicator_id: str,
        strength: str,
        rationale: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> CoverageLink:
        """Promote or demote an existing link."""
        with self._lock:
            current = self._require(metric_key, indicator_id)
            updated = current.model_copy(update={
                "strength": CoverageStrength(strength),
                "rationale": rationale if rationale is not None else current.rationale,
            })
            self._check_rationale(updated)
            if updated.strength == CoverageStrength.PRIMARY:
                self._check_single_primary(metric_key, indicator_id)
            self._links[(metric_key, indicator_id)] = updated

        self.provenance.record_change(
            user_id=changed_by or "system",
            change_type=ChangeType.UPDATE.value,
            entity_type=_ENTITY,
            entity_id=updated.link_id,
            old_value=current.strength.value,
            new_value=updated.strength.value,
            reason=rationale or "",
        )
        return updated.model_copy()

    def unlink(self, metric_key: str, indicator_id: str, removed_by: Optional[str] = None) -> None:
        with self._lock:
            link = self._require(metric_key, indicator_id)
            del self._links[(metric_key, indicator_id)]
        self.provenance.record_change(
            user_id=removed_by or "system",
            change_type=ChangeType.UNLINK.value,
            entity_type=_ENTITY,
            entity_id=link.link_id,
            old_value=f"{metric_key}<-{indicator_id}",
            new_value=None,
        )
        logger.info("Unlinked indicator %s from %s", indicator_id, metric_key)

    def primary_link(self, metric_key: str) -> Optional[CoverageLink]:
        for link in self.links_for_metric(metric_key):
            if link.strength == CoverageStrength.PRIMARY:
                return link
        return None

    def links_for_metric(self, metric_key: str) -> List[CoverageLink]:
        links = [link for (key, _), link in list(self._links.items()) if key == metric_key]
        return sorted(links, key=lambda link: link.indicator_id)

    def metrics_for_indicator(self, indicator_id: str) -> List[str]:
        return sorted(
            key for (key, ind) in list(self._links) if ind == indicator_id
        )

    @property
    def count(self) -> int:
        return len(self._links)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, metric_key: str, indicator_id: str) -> CoverageLink:
        link = self._links.get((metric_key, indicator_id))
        if link is None:
            raise NotFound(
                message=f"No coverage link between {metric_key} and {indicator_id}",
                entity_type=_ENTITY,
                entity_id=f"{metric_key}:{indicator_id}",
            )
        return link

    def _check_single_primary(self, metric_key: str, indicator_id: str) -> None:
        for (key, ind), existing in self._links.items():
            if (
                key == metric_key
                and ind != indicator_id
                and existing.strength == CoverageStrength.PRIMARY
            ):
                record_conflict(_ENTITY)
                raise ConcurrencyConflict(
                    message=(
                        f"{metric_key} already has primary indicator {ind}; "
                        f"demote it before promoting {indicator_id}"
                    ),
                    entity_id=existing.link_id,
                )

    @staticmethod
    def _check_rationale(link: CoverageLink) -> None:
        if link.strength == CoverageStrength.PRIMARY and not (link.rationale or "").strip():
            raise ValidationError(
                message="A primary coverage link requires a rationale",
                invalid_fields={"rationale": "required when strength is primary"},
            )


def compute_signal_level(
    metric_key: str,
    metric_status: RAGStatus,
    links: List[CoverageLink],
    indicator_statuses: Dict[str, RAGStatus],
) -> SignalLevelResult:
    """Derive the coverage signal level from all linked indicator statuses.

    Args:
        metric_key: Tolerance identity key.
        metric_status: The metric's own status (primary indicator).
        links: Coverage links of the metric.
        indicator_statuses: Status of each linked indicator against the
            metric's bounds.

    Returns:
        SignalLevelResult with the counts that drove the level.
    """
    strength_of = {link.indicator_id: link.strength for link in links}
    primary_red = secondary_red = red = amber = 0
    for indicator_id, status in indicator_statuses.items():
        if status == RAGStatus.RED:
            red += 1
            strength = strength_of.get(indicator_id)
            if strength == CoverageStrength.PRIMARY:
                primary_red += 1
            elif strength == CoverageStrength.SECONDARY:
                secondary_red += 1
        elif status == RAGStatus.AMBER:
            amber += 1

    if metric_status == RAGStatus.RED:
        level = SignalLevel.BREACH
    elif primary_red >= 1 or secondary_red >= 2:
        level = SignalLevel.IMMINENT
    elif red >= 1 and amber >= 2:
        level = SignalLevel.CONCERN
    elif amber >= 3:
        level = SignalLevel.WATCH
    else:
        level = SignalLevel.NORMAL

    return SignalLevelResult(
        metric_key=metric_key,
        level=level,
        primary_red=primary_red,
        secondary_red=secondary_red,
        red_count=red,
        amber_count=amber,
        indicator_statuses=dict(indicator_statuses),
    )


__all__ = ["CoverageGraph", "compute_signal_level"]
