# -*- coding: utf-8 -*-
"""
Tolerance Definition Store - RiskGuard Tolerance Monitor

Versioned bound configuration per tolerance metric with a governance
lifecycle. Versions live in an arena indexed by identity key with an
explicit "current" pointer to the single approved version.

Invariants enforced under the store lock at write time:
    - At most one ``approved`` version per identity key.
    - ``approved``/``superseded`` versions are never edited in place.
    - A successor can only be approved while its predecessor is still the
      current version; losing that race raises ConcurrencyConflict.
    - Every successor references the version it replaces, and the
      predecessor references its successor once superseded.

Integrates with:
    - LifecycleGuard for state transitions and maker-checker
    - ProvenanceTracker for audit trails
    - Metrics for Prometheus observability

Example:
    >>> from riskguard.tolerance_monitor.tolerance_store import ToleranceDefinitionStore
    >>> store = ToleranceDefinitionStore()
    >>> m = store.create_metric(
    ...     "cyber.phishing_rate", "Phishing click rate", org_id="org-1",
    ...     created_by="analyst", direction="above", soft_limit=80, hard_limit=90,
    ... )
    >>> m = store.submit_metric(m.metric_id, submitted_by="analyst")
    >>> m = store.approve_metric(m.metric_id, approved_by="cro")

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from riskguard.exceptions import ConcurrencyConflict, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.governance import METRIC_ENTITY, METRIC_LIFECYCLE
from riskguard.tolerance_monitor.metrics import (
    record_conflict,
    record_operation,
    record_transition,
)
from riskguard.tolerance_monitor.models import (
    ChangeType,
    GovernanceStatus,
    LimitDirection,
    ToleranceBands,
    ToleranceMetric,
)
from riskguard.tolerance_monitor.provenance import ProvenanceTracker

logger = logging.getLogger(__name__)

# Fields a caller may set on create, update and supersede
_CONFIGURABLE_FIELDS = frozenset({
    "name",
    "description",
    "outcome_id",
    "risk_id",
    "category_id",
    "unit",
    "direction",
    "soft_limit",
    "hard_limit",
    "bands",
    "amber_margin",
    "breach_rule",
    "breach_rule_periods",
    "breach_rule_count",
    "breach_rule_window_days",
    "breach_rule_type",
    "escalation_severity",
    "hard_breach_severity",
    "measurement_window_days",
    "effective_from",
})


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def validate_bounds(
    direction: Optional[Any],
    soft_limit: Optional[float],
    hard_limit: Optional[float],
    bands: Optional[Any] = None,
) -> None:
    """Check that a bound configuration is internally consistent.

    Incomplete configuration is allowed; it evaluates to ``UNKNOWN``.

    Raises:
        ValidationError: If the hard limit sits on the wrong side of the
            soft limit, band ranges are inverted, or both limits and bands
            are configured.
    """
    if isinstance(bands, dict):
        bands = ToleranceBands.model_validate(bands)
    has_bands = bands is not None and bands.is_configured
    has_limits = soft_limit is not None or hard_limit is not None

    if has_bands and has_limits:
        raise ValidationError(
            message="Configure either soft/hard limits or bands, not both",
            invalid_fields={"bands": "conflicts with soft_limit/hard_limit"},
        )

    if has_bands:
        for color in ("green", "amber", "red"):
            band = getattr(bands, color)
            if (
                band is not None
                and band.min_value is not None
                and band.max_value is not None
                and band.min_value > band.max_value
            ):
                raise ValidationError(
                    message=f"The {color} band minimum exceeds its maximum",
                    invalid_fields={f"bands.{color}": "min_value > max_value"},
                )
        return

    if direction is None or soft_limit is None or hard_limit is None:
        return

    direction = LimitDirection(direction)
    if direction == LimitDirection.ABOVE and hard_limit < soft_limit:
        raise ValidationError(
            message="For 'above' metrics the hard limit must not be below the soft limit",
            invalid_fields={"hard_limit": f"{hard_limit} < soft_limit {soft_limit}"},
        )
    if direction == LimitDirection.BELOW and hard_limit > soft_limit:
        raise ValidationError(
            message="For 'below' metrics the hard limit must not be above the soft limit",
            invalid_fields={"hard_limit": f"{hard_limit} > soft_limit {soft_limit}"},
        )
    if direction == LimitDirection.BETWEEN and hard_limit >= soft_limit:
        raise ValidationError(
            message="For 'between' metrics the hard limit (lower rail) must be below the soft limit (upper rail)",
            invalid_fields={"hard_limit": f"{hard_limit} >= soft_limit {soft_limit}"},
        )


class ToleranceDefinitionStore:
    """Arena of tolerance metric versions with a current-version pointer.

    Attributes:
        config: ToleranceMonitorConfig instance.
        provenance: ProvenanceTracker receiving every transition.
    """

    def __init__(
        self,
        config: Optional[ToleranceMonitorConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
    ) -> None:
        """Initialize ToleranceDefinitionStore.

        Args:
            config: Optional config. Uses global config if None.
            provenance: Optional provenance tracker. Creates new one if None.
        """
        self.config = config or get_config()
        self.provenance = provenance or ProvenanceTracker(
            enabled=self.config.enable_provenance,
        )
        self._versions: Dict[str, ToleranceMetric] = {}
        self._by_key: Dict[str, List[str]] = {}
        self._current: Dict[str, str] = {}
        self._lock = threading.Lock()
        logger.info("ToleranceDefinitionStore initialized")

    # ------------------------------------------------------------------
    # Draft authoring
    # ------------------------------------------------------------------

    def create_metric(
        self,
        metric_key: str,
        name: str,
        org_id: str,
        created_by: str,
        **fields: Any,
    ) -> ToleranceMetric:
        """Create version 1 of a new tolerance metric as a draft.

        Args:
            metric_key: Identity key, stable across versions.
            name: Display name.
            org_id: Owning organization.
            created_by: Maker.
            **fields: Bound and breach rule configuration.

        Returns:
            The new draft version.

        Raises:
            ValidationError: Unknown fields or inconsistent bounds.
            ConcurrencyConflict: The identity key already exists.
        """
        start = time.monotonic()
        self._check_fields(fields)
        metric = self._build(
            metric_key=metric_key,
            name=name,
            org_id=org_id,
            created_by=created_by,
            **fields,
        )

        with self._lock:
            if metric.metric_key in self._by_key:
                record_conflict(METRIC_ENTITY)
                raise ConcurrencyConflict(
                    message=f"Tolerance metric {metric.metric_key} already exists",
                    entity_id=metric.metric_key,
                )
            self._versions[metric.metric_id] = metric
            self._by_key[metric.metric_key] = [metric.metric_id]

        self.provenance.record_change(
            user_id=created_by,
            change_type=ChangeType.CREATE.value,
            entity_type=METRIC_ENTITY,
            entity_id=metric.metric_id,
            old_value=None,
            new_value=GovernanceStatus.DRAFT.value,
            reason=f"Created {metric.metric_key} v1",
        )
        record_operation("create_metric", "success", time.monotonic() - start)
        logger.info("Created tolerance metric %s v1 (%s)", metric.metric_key, metric.metric_id)
        return metric.model_copy(deep=True)

    def update_metric(
        self,
        metric_id: str,
        updated_by: str,
        expected_revision: Optional[int] = None,
        **changes: Any,
    ) -> ToleranceMetric:
        """Edit a draft version in place.

        Raises:
            NotFound: Unknown metric.
            InvalidState: The version is not a draft.
            ConcurrencyConflict: Stale ``expected_revision``.
            ValidationError: Unknown fields or inconsistent bounds.
        """
        start = time.monotonic()
        self._check_fields(changes)
        with self._lock:
            metric = self._require(metric_id)
            METRIC_LIFECYCLE.assert_editable(metric_id, metric.status)
            METRIC_LIFECYCLE.check_revision(metric_id, expected_revision, metric.revision)
            updated = self._build(
                **{
                    **metric.model_dump(),
                    **changes,
                    "revision": metric.revision + 1,
                },
            )
            self._versions[metric_id] = updated

        self.provenance.record_change(
            user_id=updated_by,
            change_type=ChangeType.UPDATE.value,
            entity_type=METRIC_ENTITY,
            entity_id=metric_id,
            old_value=None,
            new_value=sorted(changes),
            reason="Draft edited",
        )
        record_operation("update_metric", "success", time.monotonic() - start)
        return updated.model_copy(deep=True)

    def delete_metric(self, metric_id: str, deleted_by: str) -> None:
        """Delete a draft version.

        Raises:
            NotFound: Unknown metric.
            InvalidState: The version is not a draft.
        """
        with self._lock:
            metric = self._require(metric_id)
            METRIC_LIFECYCLE.assert_deletable(metric_id, metric.status)
            del self._versions[metric_id]
            ids = self._by_key[metric.metric_key]
            ids.remove(metric_id)
            if not ids:
                del self._by_key[metric.metric_key]

        self.provenance.record_change(
            user_id=deleted_by,
            change_type=ChangeType.DELETE.value,
            entity_type=METRIC_ENTITY,
            entity_id=metric_id,
            old_value=GovernanceStatus.DRAFT.value,
            new_value=None,
            reason="Draft deleted",
        )
        record_transition(METRIC_ENTITY, "delete")
        logger.info("Deleted draft tolerance metric %s", metric_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def submit_metric(
        self,
        metric_id: str,
        submitted_by: str,
        expected_revision: Optional[int] = None,
    ) -> ToleranceMetric:
        """Move a draft to ``pending_approval``."""
        return self._transition(
            metric_id,
            action="submit",
            actor=submitted_by,
            expected_revision=expected_revision,
            extra={"submitted_by": submitted_by, "submitted_at": _utcnow()},
        )

    def return_metric(
        self,
        metric_id: str,
        reviewer: str,
        reason: str = "Returned for rework",
    ) -> ToleranceMetric:
        """Send a pending version back to ``draft``."""
        return self._transition(
            metric_id,
            action="return",
            actor=reviewer,
            reason=reason,
            extra={"submitted_by": None, "submitted_at": None},
        )

    def approve_metric(
        self,
        metric_id: str,
        approved_by: str,
        expected_revision: Optional[int] = None,
    ) -> ToleranceMetric:
        """Approve a pending version and make it current.

        When the version supersedes another, the predecessor becomes
        ``superseded`` in the same critical section, so exactly one
        version is approved at any instant.

        Raises:
            NotFound: Unknown metric.
            InvalidState: Not pending approval, or approver is a maker.
            ConcurrencyConflict: Another version of the key is already
                current (race lost or supersession required).
        """
        start = time.monotonic()
        now = _utcnow()
        with self._lock:
            metric = self._require(metric_id)
            new_status = METRIC_LIFECYCLE.next_status(metric_id, metric.status, "approve")
            METRIC_LIFECYCLE.check_revision(metric_id, expected_revision, metric.revision)
            METRIC_LIFECYCLE.enforce_maker_checker(
                metric_id, approved_by, (metric.created_by, metric.submitted_by),
            )

            key = metric.metric_key
            current_id = self._current.get(key)
            predecessor: Optional[ToleranceMetric] = None
            if metric.supersedes_id is None:
                if current_id is not None:
                    self._conflict(
                        metric_id,
                        f"{key} already has approved version {current_id}; supersede it instead",
                    )
            else:
                if current_id != metric.supersedes_id:
                    self._conflict(
                        metric_id,
                        f"{key} v{metric.version} supersedes {metric.supersedes_id}, "
                        f"which is no longer the current version",
                    )
                predecessor = self._versions[current_id]

            if predecessor is not None:
                superseded_status = METRIC_LIFECYCLE.next_status(
                    predecessor.metric_id, predecessor.status, "supersede",
                )
                effective_to = predecessor.effective_to
                if effective_to is None or effective_to > metric.effective_from:
                    effective_to = metric.effective_from
                self._versions[predecessor.metric_id] = predecessor.model_copy(
                    update={
                        "status": superseded_status,
                        "superseded_by": metric_id,
                        "effective_to": effective_to,
                        "revision": predecessor.revision + 1,
                    },
                )

            approved = metric.model_copy(
                update={
                    "status": new_status,
                    "approved_by": approved_by,
                    "approved_at": now,
                    "revision": metric.revision + 1,
                },
            )
            self._versions[metric_id] = approved
            self._current[key] = metric_id

        self.provenance.record_change(
            user_id=approved_by,
            change_type=ChangeType.APPROVE.value,
            entity_type=METRIC_ENTITY,
            entity_id=metric_id,
            old_value=GovernanceStatus.PENDING_APPROVAL.value,
            new_value=GovernanceStatus.APPROVED.value,
            reason=f"Approved {key} v{approved.version}",
        )
        record_transition(METRIC_ENTITY, "approve")
        if predecessor is not None:
            self.provenance.record_change(
                user_id=approved_by,
                change_type=ChangeType.SUPERSEDE.value,
                entity_type=METRIC_ENTITY,
                entity_id=predecessor.metric_id,
                old_value=GovernanceStatus.APPROVED.value,
                new_value=GovernanceStatus.SUPERSEDED.value,
                reason=f"Superseded by v{approved.version}",
            )
            record_transition(METRIC_ENTITY, "supersede")
        record_operation("approve_metric", "success", time.monotonic() - start)
        logger.info(
            "Approved tolerance metric %s v%d by %s",
            key, approved.version, approved_by,
        )
        return approved.model_copy(deep=True)

    def retire_metric(
        self,
        metric_id: str,
        retired_by: str,
        effective_to: Optional[date] = None,
        reason: str = "Retired",
    ) -> ToleranceMetric:
        """Retire the current approved version without a successor.

        The date check, the status change and dropping the version as
        current happen under one lock acquisition.
        """
        start = time.monotonic()
        end = effective_to or date.today()
        with self._lock:
            metric = self._require(metric_id)
            if end < metric.effective_from:
                raise ValidationError(
                    message="Retirement date precedes the version's effective start",
                    invalid_fields={"effective_to": str(end)},
                )
            previous, retired = self._apply_transition(
                metric_id, "retire", extra={"effective_to": end},
            )
            if self._current.get(retired.metric_key) == metric_id:
                del self._current[retired.metric_key]
        self._audit_transition(previous, retired, "retire", retired_by, reason, start)
        return retired.model_copy(deep=True)

    def supersede_metric(
        self,
        metric_id: str,
        new_effective_from: date,
        created_by: str,
        **changes: Any,
    ) -> ToleranceMetric:
        """Create a new draft version that will replace an approved one.

        The draft carries forward the identity key and configuration,
        applies ``changes``, and points back at ``metric_id``. The
        predecessor stays approved until the draft itself is approved.

        Raises:
            NotFound: Unknown metric.
            InvalidState: The version is not approved.
            ValidationError: Bad changes or effective date.
        """
        start = time.monotonic()
        changes.pop("effective_from", None)
        self._check_fields(changes)
        with self._lock:
            metric = self._require(metric_id)
            # Validates that supersession is a legal next step
            METRIC_LIFECYCLE.next_status(metric_id, metric.status, "supersede")
            if new_effective_from <= metric.effective_from:
                raise ValidationError(
                    message="A successor must take effect after its predecessor",
                    invalid_fields={
                        "new_effective_from": (
                            f"{new_effective_from} <= {metric.effective_from}"
                        ),
                    },
                )
            versions = self._by_key[metric.metric_key]
            if len(versions) >= self.config.max_versions_per_metric:
                raise ValidationError(
                    message=(
                        f"{metric.metric_key} reached the limit of "
                        f"{self.config.max_versions_per_metric} versions"
                    ),
                    invalid_fields={"metric_key": "too many versions"},
                )
            next_version = max(self._versions[v].version for v in versions) + 1

            carried = {
                field: getattr(metric, field)
                for field in _CONFIGURABLE_FIELDS
                if field != "effective_from"
            }
            if isinstance(carried.get("bands"), ToleranceBands):
                carried["bands"] = carried["bands"].model_dump()
            carried.update(changes)
            successor = self._build(
                metric_key=metric.metric_key,
                org_id=metric.org_id,
                created_by=created_by,
                version=next_version,
                effective_from=new_effective_from,
                supersedes_id=metric_id,
                **carried,
            )
            self._versions[successor.metric_id] = successor
            versions.append(successor.metric_id)

        self.provenance.record_change(
            user_id=created_by,
            change_type=ChangeType.CREATE.value,
            entity_type=METRIC_ENTITY,
            entity_id=successor.metric_id,
            old_value=metric_id,
            new_value=GovernanceStatus.DRAFT.value,
            reason=f"Successor v{next_version} of {metric.metric_key}",
        )
        record_operation("supersede_metric", "success", time.monotonic() - start)
        logger.info(
            "Created successor %s v%d for %s effective %s",
            metric.metric_key, next_version, metric_id, new_effective_from,
        )
        return successor.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_metric(self, metric_id: str) -> ToleranceMetric:
        """Get a version by ID.

        Raises:
            NotFound: Unknown metric.
        """
        return self._require(metric_id).model_copy(deep=True)

    def get_current(self, metric_key: str) -> Optional[ToleranceMetric]:
        """Return the approved version of an identity key, if any."""
        current_id = self._current.get(metric_key)
        if current_id is None:
            return None
        return self._versions[current_id].model_copy(deep=True)

    def version_in_force(self, metric_key: str, as_of: date) -> Optional[ToleranceMetric]:
        """Return the governed version whose effective range covers ``as_of``.

        Only approved and superseded versions are governed; the highest
        version wins if ranges overlap.
        """
        candidates = [
            m for m in self._list_versions(metric_key)
            if m.status in (GovernanceStatus.APPROVED, GovernanceStatus.SUPERSEDED)
            and m.is_effective_on(as_of)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda m: m.version).model_copy(deep=True)

    def list_versions(self, metric_key: str) -> List[ToleranceMetric]:
        """All versions of an identity key ordered by version.

        Raises:
            NotFound: Unknown identity key.
        """
        if metric_key not in self._by_key:
            raise NotFound(
                message=f"Tolerance metric {metric_key} not found",
                entity_type=METRIC_ENTITY,
                entity_id=metric_key,
            )
        return [m.model_copy(deep=True) for m in self._list_versions(metric_key)]

    def list_keys(
        self,
        org_id: Optional[str] = None,
        outcome_id: Optional[str] = None,
        risk_id: Optional[str] = None,
        category_ids: Optional[List[str]] = None,
    ) -> List[str]:
        """Identity keys whose latest version matches the container filters."""
        keys: List[str] = []
        with self._lock:
            snapshot = {k: list(v) for k, v in self._by_key.items()}
        for key, ids in sorted(snapshot.items()):
            latest = self._versions.get(ids[-1])
            if latest is None:
                continue
            if org_id is not None and latest.org_id != org_id:
                continue
            if outcome_id is not None and latest.outcome_id != outcome_id:
                continue
            if risk_id is not None and latest.risk_id != risk_id:
                continue
            if category_ids is not None and latest.category_id not in category_ids:
                continue
            keys.append(key)
        return keys

    def verify_chain(self, metric_key: str) -> bool:
        """Check the supersession chain of an identity key is unbroken."""
        versions = self._list_versions(metric_key)
        by_id = {m.metric_id: m for m in versions}
        approved = [m for m in versions if m.status == GovernanceStatus.APPROVED]
        if len(approved) > 1:
            return False
        for m in versions:
            if m.supersedes_id is not None and m.supersedes_id not in by_id:
                return False
            if m.status == GovernanceStatus.SUPERSEDED:
                successor = by_id.get(m.superseded_by or "")
                if successor is None or successor.supersedes_id != m.metric_id:
                    return False
        return True

    def has_metric(self, metric_key: str) -> bool:
        """Whether any version of the identity key exists."""
        return metric_key in self._by_key

    @property
    def count(self) -> int:
        """Number of identity keys."""
        return len(self._by_key)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(
        self,
        metric_id: str,
        action: str,
        actor: str,
        expected_revision: Optional[int] = None,
        reason: str = "",
        extra: Optional[Dict[str, Any]] = None,
    ) -> ToleranceMetric:
        start = time.monotonic()
        with self._lock:
            metric, updated = self._apply_transition(metric_id, action, expected_revision, extra)
        self._audit_transition(metric, updated, action, actor, reason, start)
        return updated.model_copy(deep=True)

    def _apply_transition(
        self,
        metric_id: str,
        action: str,
        expected_revision: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ToleranceMetric, ToleranceMetric]:
        """Move a version to its next status. Caller holds the lock."""
        metric = self._require(metric_id)
        new_status = METRIC_LIFECYCLE.next_status(metric_id, metric.status, action)
        METRIC_LIFECYCLE.check_revision(metric_id, expected_revision, metric.revision)
        update = {"status": new_status, "revision": metric.revision + 1}
        update.update(extra or {})
        updated = metric.model_copy(update=update)
        self._versions[metric_id] = updated
        return metric, updated

    def _audit_transition(
        self,
        metric: ToleranceMetric,
        updated: ToleranceMetric,
        action: str,
        actor: str,
        reason: str,
        start: float,
    ) -> None:
        self.provenance.record_change(
            user_id=actor,
            change_type=ChangeType(action).value,
            entity_type=METRIC_ENTITY,
            entity_id=metric.metric_id,
            old_value=metric.status.value,
            new_value=updated.status.value,
            reason=reason or action,
        )
        record_transition(METRIC_ENTITY, action)
        record_operation(f"{action}_metric", "success", time.monotonic() - start)
        logger.info(
            "Tolerance metric %s v%d: %s -> %s by %s",
            metric.metric_key, metric.version, metric.status.value,
            updated.status.value, actor,
        )

    def _require(self, metric_id: str) -> ToleranceMetric:
        metric = self._versions.get(metric_id)
        if metric is None:
            raise NotFound(
                message=f"Tolerance metric {metric_id} not found",
                entity_type=METRIC_ENTITY,
                entity_id=metric_id,
            )
        return metric

    def _list_versions(self, metric_key: str) -> List[ToleranceMetric]:
        ids = list(self._by_key.get(metric_key, ()))
        versions = [self._versions[i] for i in ids if i in self._versions]
        return sorted(versions, key=lambda m: m.version)

    def _conflict(self, metric_id: str, message: str) -> None:
        record_conflict(METRIC_ENTITY)
        logger.warning("Approval conflict on %s: %s", metric_id, message)
        raise ConcurrencyConflict(message=message, entity_id=metric_id)

    @staticmethod
    def _check_fields(fields: Dict[str, Any]) -> None:
        unknown = sorted(set(fields) - _CONFIGURABLE_FIELDS)
        if unknown:
            raise ValidationError(
                message=f"Unknown or read-only tolerance fields: {', '.join(unknown)}",
                invalid_fields={name: "not configurable" for name in unknown},
            )

    @staticmethod
    def _build(**data: Any) -> ToleranceMetric:
        try:
            validate_bounds(
                data.get("direction"),
                data.get("soft_limit"),
                data.get("hard_limit"),
                data.get("bands"),
            )
            return ToleranceMetric.model_validate(data)
        except ValueError as exc:
            raise ValidationError(
                message=f"Invalid tolerance metric configuration: {exc}",
            ) from exc


__all__ = [
    "ToleranceDefinitionStore",
    "validate_bounds",
]
