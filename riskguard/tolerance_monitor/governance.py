# -*- coding: utf-8 -*-
"""
Governance Guardrail Layer - RiskGuard Tolerance Monitor

Lifecycle state machines and mutation/deletion constraints shared by the
tolerance definition store and the observation log.

Tolerance metric lifecycle::

    draft -> pending_approval -> approved -> superseded | retired
                     |
                     +-> draft (returned for rework)

Observation lifecycle::

    draft -> submitted -> approved | rejected
                              rejected -> draft (rework)

Rules enforced here:
    - Only ``draft`` rows may be edited or deleted.
    - Approval requires a checker distinct from the maker.
    - Stale writes (revision mismatch) raise ConcurrencyConflict.

Example:
    >>> from riskguard.tolerance_monitor.governance import METRIC_LIFECYCLE
    >>> METRIC_LIFECYCLE.next_status("TM-1", "draft", "submit")
    <GovernanceStatus.PENDING_APPROVAL: 'pending_approval'>

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from riskguard.exceptions import ConcurrencyConflict, InvalidState, ValidationError
from riskguard.tolerance_monitor.metrics import (
    record_conflict,
    record_maker_checker_rejection,
)
from riskguard.tolerance_monitor.models import GovernanceStatus, ObservationStatus

logger = logging.getLogger(__name__)

METRIC_ENTITY = "tolerance_metric"
OBSERVATION_ENTITY = "observation"


class LifecycleGuard:
    """State machine and guardrails for one kind of governed entity.

    Attributes:
        entity_type: Name used in errors, metrics and audit entries.
        transitions: Mapping of (status, action) to the resulting status.
        editable: Statuses in which field edits are allowed.
        deletable: Statuses from which deletion is allowed.
    """

    def __init__(
        self,
        entity_type: str,
        status_enum: type,
        transitions: Dict[Tuple[str, str], str],
        editable: Iterable[str],
        deletable: Iterable[str],
    ) -> None:
        self.entity_type = entity_type
        self._status_enum = status_enum
        self.transitions: Dict[Tuple[str, str], str] = dict(transitions)
        self.editable: FrozenSet[str] = frozenset(editable)
        self.deletable: FrozenSet[str] = frozenset(deletable)

    def next_status(self, entity_id: str, current: object, action: str) -> Enum:
        """Return the status reached by applying ``action``.

        Args:
            entity_id: Entity identifier (for error context).
            current: Current status (enum or value).
            action: Transition action.

        Returns:
            New status enum member.

        Raises:
            InvalidState: If the transition is not allowed.
        """
        current_value = _value(current)
        target = self.transitions.get((current_value, action))
        if target is None:
            raise InvalidState(
                message=(
                    f"Cannot {action} {self.entity_type} {entity_id} "
                    f"in status '{current_value}'"
                ),
                entity_type=self.entity_type,
                entity_id=entity_id,
                current_status=current_value,
                attempted_action=action,
            )
        return self._status_enum(target)

    def assert_editable(self, entity_id: str, current: object) -> None:
        """Reject in-place edits outside the editable statuses.

        Raises:
            InvalidState: If the entity is not editable.
        """
        current_value = _value(current)
        if current_value not in self.editable:
            raise InvalidState(
                message=(
                    f"{self.entity_type} {entity_id} is '{current_value}' and "
                    f"cannot be modified; supersede it instead"
                ),
                entity_type=self.entity_type,
                entity_id=entity_id,
                current_status=current_value,
                attempted_action="update",
            )

    def assert_deletable(self, entity_id: str, current: object) -> None:
        """Reject deletion outside the deletable statuses.

        Raises:
            InvalidState: If the entity may not be deleted.
        """
        current_value = _value(current)
        if current_value not in self.deletable:
            raise InvalidState(
                message=(
                    f"{self.entity_type} {entity_id} is '{current_value}'; "
                    f"only drafts can be deleted"
                ),
                entity_type=self.entity_type,
                entity_id=entity_id,
                current_status=current_value,
                attempted_action="delete",
            )

    def enforce_maker_checker(
        self,
        entity_id: str,
        approver: str,
        makers: Iterable[Optional[str]],
    ) -> None:
        """Require the approver to differ from every maker.

        Args:
            entity_id: Entity identifier.
            approver: User approving the entity.
            makers: Creator and submitter of the entity.

        Raises:
            ValidationError: If no approver is given.
            InvalidState: If the approver is also a maker.
        """
        if not approver or not approver.strip():
            raise ValidationError(
                message="An approver is required",
                invalid_fields={"approved_by": "must be non-empty"},
            )
        if approver in {m for m in makers if m}:
            record_maker_checker_rejection(self.entity_type)
            logger.warning(
                "Maker-checker violation on %s %s by %s",
                self.entity_type, entity_id, approver,
            )
            raise InvalidState(
                message=(
                    f"{self.entity_type} {entity_id} cannot be approved by "
                    f"its own maker ({approver})"
                ),
                entity_type=self.entity_type,
                entity_id=entity_id,
                attempted_action="approve",
            )

    def check_revision(
        self,
        entity_id: str,
        expected: Optional[int],
        actual: int,
    ) -> None:
        """Raise ConcurrencyConflict when a caller wrote against a stale revision."""
        if expected is not None and expected != actual:
            record_conflict(self.entity_type)
            raise ConcurrencyConflict(
                message=(
                    f"{self.entity_type} {entity_id} was modified concurrently "
                    f"(expected revision {expected}, found {actual})"
                ),
                entity_id=entity_id,
                expected_revision=expected,
                actual_revision=actual,
            )


def _value(status: object) -> str:
    return status.value if isinstance(status, Enum) else str(status)


METRIC_LIFECYCLE = LifecycleGuard(
    entity_type=METRIC_ENTITY,
    status_enum=GovernanceStatus,
    transitions={
        ("draft", "submit"): "pending_approval",
        ("pending_approval", "approve"): "approved",
        ("pending_approval", "return"): "draft",
        ("approved", "supersede"): "superseded",
        ("approved", "retire"): "retired",
    },
    editable=("draft",),
    deletable=("draft",),
)

OBSERVATION_LIFECYCLE = LifecycleGuard(
    entity_type=OBSERVATION_ENTITY,
    status_enum=ObservationStatus,
    transitions={
        ("draft", "submit"): "submitted",
        ("submitted", "approve"): "approved",
        ("submitted", "reject"): "rejected",
        ("rejected", "return"): "draft",
    },
    editable=("draft",),
    deletable=("draft",),
)


__all__ = [
    "LifecycleGuard",
    "METRIC_ENTITY",
    "OBSERVATION_ENTITY",
    "METRIC_LIFECYCLE",
    "OBSERVATION_LIFECYCLE",
]
