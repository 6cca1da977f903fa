# -*- coding: utf-8 -*-
"""
Observation Log - RiskGuard Tolerance Monitor

Append-only, versioned time series of measured indicator values with a
maker-checker approval workflow.

Workflow:
    draft -> submitted -> approved | rejected

Approved observations are never edited. A correction is recorded with
``supersede_observation`` as a new version for the same indicator and
date; the original is marked ``superseded_by`` once the correction is
approved, so it keeps counting as the latest value until then.

Example:
    >>> from riskguard.tolerance_monitor.indicators import IndicatorRegistry
    >>> from riskguard.tolerance_monitor.observation_log import ObservationLog
    >>> indicators = IndicatorRegistry()
    >>> kri = indicators.register("Phishing click rate", org_id="org-1")
    >>> log = ObservationLog(indicators)
    >>> obs = log.record_observation(kri.indicator_id, date(2026, 3, 31), 85.0, "analyst")
    >>> obs = log.approve_observation(obs.observation_id, approved_by="reviewer")

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from riskguard.exceptions import ConcurrencyConflict, InvalidState, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.governance import OBSERVATION_ENTITY, OBSERVATION_LIFECYCLE
from riskguard.tolerance_monitor.indicators import IndicatorRegistry
from riskguard.tolerance_monitor.metrics import (
    record_conflict,
    record_operation,
    record_transition,
)
from riskguard.tolerance_monitor.models import ChangeType, Observation, ObservationStatus
from riskguard.tolerance_monitor.provenance import ProvenanceTracker

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


class ObservationLog:
    """Versioned indicator observations with approval workflow.

    Attributes:
        indicators: Registry used to reject unknown indicators.
        provenance: ProvenanceTracker receiving every transition.
    """

    def __init__(
        self,
        indicators: IndicatorRegistry,
        config: Optional[ToleranceMonitorConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
    ) -> None:
        self.config = config or get_config()
        self.indicators = indicators
        self.provenance = provenance or ProvenanceTracker(
            enabled=self.config.enable_provenance,
        )
        self._observations: Dict[str, Observation] = {}
        self._by_indicator: Dict[str, List[str]] = {}
        self._unique: Set[Tuple[str, date, int]] = set()
        self._lock = threading.Lock()
        logger.info("ObservationLog initialized")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_observation(
        self,
        indicator_id: str,
        observation_date: date,
        value: float,
        created_by: str,
        period_id: Optional[str] = None,
        commentary: str = "",
        submit: bool = True,
    ) -> Observation:
        """Record a new observation.

        Args:
            indicator_id: Indicator measured.
            observation_date: Measurement date.
            value: Measured value.
            created_by: Maker (also the submitter when ``submit``).
            period_id: Optional reporting period.
            commentary: Submitter commentary.
            submit: Submit immediately instead of leaving a draft.

        Returns:
            The new observation in ``submitted`` or ``draft`` status.

        Raises:
            NotFound: Unknown indicator.
            ConcurrencyConflict: A live observation already exists for the
                indicator and date; correct it with supersede_observation.
        """
        start = time.monotonic()
        self.indicators.get(indicator_id)

        with self._lock:
            same_day = self._same_day(indicator_id, observation_date)
            live = [o for o in same_day if o.status != ObservationStatus.REJECTED]
            if live:
                record_conflict(OBSERVATION_ENTITY)
                raise ConcurrencyConflict(
                    message=(
                        f"Indicator {indicator_id} already has an observation for "
                        f"{observation_date}; supersede it to record a correction"
                    ),
                    entity_id=live[0].observation_id,
                )
            version = max((o.version for o in same_day), default=0) + 1
            observation = self._new(
                indicator_id=indicator_id,
                observation_date=observation_date,
                value=value,
                period_id=period_id,
                commentary=commentary,
                created_by=created_by,
                version=version,
                submit=submit,
            )

        self.provenance.record_change(
            user_id=created_by,
            change_type=ChangeType.CREATE.value,
            entity_type=OBSERVATION_ENTITY,
            entity_id=observation.observation_id,
            old_value=None,
            new_value=value,
            reason=f"{indicator_id} @ {observation_date}",
        )
        record_operation("record_observation", "success", time.monotonic() - start)
        logger.info(
            "Recorded observation %s for %s @ %s = %s (%s)",
            observation.observation_id, indicator_id, observation_date,
            value, observation.status.value,
        )
        return observation.model_copy()

    def supersede_observation(
        self,
        observation_id: str,
        new_value: float,
        created_by: str,
        commentary: str = "",
        submit: bool = True,
    ) -> Observation:
        """Record a correction of an approved observation as a new version.

        Raises:
            NotFound: Unknown observation.
            InvalidState: The original is not approved or is already superseded.
        """
        start = time.monotonic()
        with self._lock:
            original = self._require(observation_id)
            if original.status != ObservationStatus.APPROVED or original.superseded_by:
                raise InvalidState(
                    message=(
                        f"Only current approved observations can be corrected; "
                        f"{observation_id} is '{original.status.value}'"
                        + (" and already superseded" if original.superseded_by else "")
                    ),
                    entity_type=OBSERVATION_ENTITY,
                    entity_id=observation_id,
                    current_status=original.status.value,
                    attempted_action="supersede",
                )
            same_day = self._same_day(original.indicator_id, original.observation_date)
            version = max(o.version for o in same_day) + 1
            correction = self._new(
                indicator_id=original.indicator_id,
                observation_date=original.observation_date,
                value=new_value,
                period_id=original.period_id,
                commentary=commentary,
                created_by=created_by,
                version=version,
                submit=submit,
                supersedes_id=observation_id,
            )

        self.provenance.record_change(
            user_id=created_by,
            change_type=ChangeType.SUPERSEDE.value,
            entity_type=OBSERVATION_ENTITY,
            entity_id=correction.observation_id,
            old_value=original.value,
            new_value=new_value,
            reason=f"Correction v{version} of {observation_id}",
        )
        record_operation("supersede_observation", "success", time.monotonic() - start)
        logger.info(
            "Recorded correction %s (v%d) of observation %s",
            correction.observation_id, version, observation_id,
        )
        return correction.model_copy()

    def update_observation(
        self,
        observation_id: str,
        updated_by: str,
        value: Optional[float] = None,
        commentary: Optional[str] = None,
        period_id: Optional[str] = None,
        expected_revision: Optional[int] = None,
    ) -> Observation:
        """Edit a draft observation.

        Raises:
            InvalidState: The observation is not a draft.
            ConcurrencyConflict: Stale ``expected_revision``.
        """
        with self._lock:
            obs = self._require(observation_id)
            OBSERVATION_LIFECYCLE.assert_editable(observation_id, obs.status)
            OBSERVATION_LIFECYCLE.check_revision(observation_id, expected_revision, obs.revision)
            update = {"revision": obs.revision + 1}
            if value is not None:
                update["value"] = float(value)
            if commentary is not None:
                update["commentary"] = commentary
            if period_id is not None:
                update["period_id"] = period_id
            updated = obs.model_copy(update=update)
            self._observations[observation_id] = updated

        self.provenance.record_change(
            user_id=updated_by,
            change_type=ChangeType.UPDATE.value,
            entity_type=OBSERVATION_ENTITY,
            entity_id=observation_id,
            old_value=obs.value,
            new_value=updated.value,
            reason="Draft edited",
        )
        return updated.model_copy()

    def delete_observation(self, observation_id: str, deleted_by: str) -> None:
        """Delete a draft observation.

        Raises:
            InvalidState: The observation is not a draft.
        """
        with self._lock:
            obs = self._require(observation_id)
            OBSERVATION_LIFECYCLE.assert_deletable(observation_id, obs.status)
            del self._observations[observation_id]
            self._by_indicator[obs.indicator_id].remove(observation_id)
            self._unique.discard((obs.indicator_id, obs.observation_date, obs.version))

        self.provenance.record_change(
            user_id=deleted_by,
            change_type=ChangeType.DELETE.value,
            entity_type=OBSERVATION_ENTITY,
            entity_id=observation_id,
            old_value=obs.value,
            new_value=None,
            reason="Draft deleted",
        )
        record_transition(OBSERVATION_ENTITY, "delete")
        logger.info("Deleted draft observation %s", observation_id)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def submit_observation(self, observation_id: str, submitted_by: str) -> Observation:
        """Submit a draft for review."""
        with self._lock:
            obs = self._require(observation_id)
            status = OBSERVATION_LIFECYCLE.next_status(observation_id, obs.status, "submit")
            updated = obs.model_copy(update={
                "status": status,
                "submitted_by": submitted_by,
                "submitted_at": _utcnow(),
                "revision": obs.revision + 1,
            })
            self._observations[observation_id] = updated
        self._audit(submitted_by, "submit", obs, updated)
        return updated.model_copy()

    def approve_observation(
        self,
        observation_id: str,
        approved_by: str,
        commentary: Optional[str] = None,
    ) -> Observation:
        """Approve a submitted observation.

        Approving a correction marks the original as superseded in the
        same critical section.

        Raises:
            InvalidState: Not submitted, or approver is a maker.
            ConcurrencyConflict: The original was already superseded by
                another correction.
        """
        start = time.monotonic()
        with self._lock:
            obs = self._require(observation_id)
            status = OBSERVATION_LIFECYCLE.next_status(observation_id, obs.status, "approve")
            OBSERVATION_LIFECYCLE.enforce_maker_checker(
                observation_id, approved_by, (obs.created_by, obs.submitted_by),
            )
            if obs.supersedes_id is not None:
                original = self._observations.get(obs.supersedes_id)
                if original is None or original.superseded_by is not None:
                    record_conflict(OBSERVATION_ENTITY)
                    raise ConcurrencyConflict(
                        message=(
                            f"Observation {obs.supersedes_id} was already corrected "
                            f"by another version"
                        ),
                        entity_id=observation_id,
                    )
                self._observations[original.observation_id] = original.model_copy(
                    update={"superseded_by": observation_id},
                )
            updated = obs.model_copy(update={
                "status": status,
                "approved_by": approved_by,
                "approved_at": _utcnow(),
                "reviewer_commentary": commentary,
                "revision": obs.revision + 1,
            })
            self._observations[observation_id] = updated

        self._audit(approved_by, "approve", obs, updated)
        record_operation("approve_observation", "success", time.monotonic() - start)
        return updated.model_copy()

    def reject_observation(
        self,
        observation_id: str,
        rejected_by: str,
        commentary: str,
    ) -> Observation:
        """Reject a submitted observation with reviewer commentary.

        Raises:
            ValidationError: Commentary is empty.
            InvalidState: Not submitted, or reviewer is a maker.
        """
        if not commentary or not commentary.strip():
            raise ValidationError(
                message="Rejection requires reviewer commentary",
                invalid_fields={"commentary": "must be non-empty"},
            )
        with self._lock:
            obs = self._require(observation_id)
            status = OBSERVATION_LIFECYCLE.next_status(observation_id, obs.status, "reject")
            OBSERVATION_LIFECYCLE.enforce_maker_checker(
                observation_id, rejected_by, (obs.created_by, obs.submitted_by),
            )
            updated = obs.model_copy(update={
                "status": status,
                "reviewer_commentary": commentary,
                "revision": obs.revision + 1,
            })
            self._observations[observation_id] = updated
        self._audit(rejected_by, "reject", obs, updated)
        return updated.model_copy()

    def return_observation(self, observation_id: str, returned_by: str) -> Observation:
        """Return a rejected observation to draft for rework."""
        with self._lock:
            obs = self._require(observation_id)
            status = OBSERVATION_LIFECYCLE.next_status(observation_id, obs.status, "return")
            updated = obs.model_copy(update={
                "status": status,
                "submitted_by": None,
                "submitted_at": None,
                "revision": obs.revision + 1,
            })
            self._observations[observation_id] = updated
        self._audit(returned_by, "return", obs, updated)
        return updated.model_copy()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_observation(self, observation_id: str) -> Observation:
        """Get an observation by ID.

        Raises:
            NotFound: Unknown observation.
        """
        return self._require(observation_id).model_copy()

    def latest_approved(
        self,
        indicator_id: str,
        as_of: Optional[date] = None,
        period_id: Optional[str] = None,
    ) -> Optional[Observation]:
        """Latest approved, non-superseded observation.

        Ordered by observation date then version, newest first.

        Args:
            indicator_id: Indicator to read.
            as_of: Ignore observations dated after this date.
            period_id: Restrict to observations tagged with this period.

        Returns:
            The observation or None when there is no approved data.
        """
        candidates = [
            o for o in self._for_indicator(indicator_id)
            if o.status == ObservationStatus.APPROVED
            and o.superseded_by is None
            and (as_of is None or o.observation_date <= as_of)
            and (period_id is None or o.period_id == period_id)
        ]
        if not candidates:
            return None
        best = max(candidates, key=lambda o: (o.observation_date, o.version))
        return best.model_copy()

    def list_observations(
        self,
        indicator_id: str,
        status: Optional[ObservationStatus] = None,
    ) -> List[Observation]:
        """Observations of an indicator ordered by date then version."""
        observations = self._for_indicator(indicator_id)
        if status is not None:
            observations = [o for o in observations if o.status == status]
        observations.sort(key=lambda o: (o.observation_date, o.version))
        return [o.model_copy() for o in observations]

    @property
    def count(self) -> int:
        return len(self._observations)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new(
        self,
        indicator_id: str,
        observation_date: date,
        value: float,
        period_id: Optional[str],
        commentary: str,
        created_by: str,
        version: int,
        submit: bool,
        supersedes_id: Optional[str] = None,
    ) -> Observation:
        """Create and index an observation. Caller holds the lock."""
        unique_key = (indicator_id, observation_date, version)
        if unique_key in self._unique:
            record_conflict(OBSERVATION_ENTITY)
            raise ConcurrencyConflict(
                message=(
                    f"Observation v{version} for {indicator_id} @ "
                    f"{observation_date} already exists"
                ),
                entity_id=indicator_id,
            )
        observation = Observation(
            indicator_id=indicator_id,
            observation_date=observation_date,
            value=value,
            period_id=period_id,
            commentary=commentary,
            created_by=created_by,
            version=version,
            supersedes_id=supersedes_id,
            status=ObservationStatus.SUBMITTED if submit else ObservationStatus.DRAFT,
            submitted_by=created_by if submit else None,
            submitted_at=_utcnow() if submit else None,
        )
        self._observations[observation.observation_id] = observation
        self._by_indicator.setdefault(indicator_id, []).append(observation.observation_id)
        self._unique.add(unique_key)
        return observation

    def _require(self, observation_id: str) -> Observation:
        obs = self._observations.get(observation_id)
        if obs is None:
            raise NotFound(
                message=f"Observation {observation_id} not found",
                entity_type=OBSERVATION_ENTITY,
                entity_id=observation_id,
            )
        return obs

    def _for_indicator(self, indicator_id: str) -> List[Observation]:
        ids = list(self._by_indicator.get(indicator_id, ()))
        return [self._observations[i] for i in ids if i in self._observations]

    def _same_day(self, indicator_id: str, observation_date: date) -> List[Observation]:
        return [
            o for o in self._for_indicator(indicator_id)
            if o.observation_date == observation_date
        ]

    def _audit(self, actor: str, action: str, before: Observation, after: Observation) -> None:
        self.provenance.record_change(
            user_id=actor,
            change_type=ChangeType(action).value,
            entity_type=OBSERVATION_ENTITY,
            entity_id=after.observation_id,
            old_value=before.status.value,
            new_value=after.status.value,
            reason=after.reviewer_commentary or action,
        )
        record_transition(OBSERVATION_ENTITY, action)
        logger.info(
            "Observation %s: %s -> %s by %s",
            after.observation_id, before.status.value, after.status.value, actor,
        )


__all__ = ["ObservationLog"]
