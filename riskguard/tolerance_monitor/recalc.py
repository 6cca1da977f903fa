# -*- coding: utf-8 -*-
"""
Recalc Run Manager - RiskGuard Tolerance Monitor

Organization-wide recompute sweeps under per-organization mutual
exclusion. At most one run per organization may be ``RUNNING``; the
(organization, running) index is checked under the manager lock, and a
second acquisition raises ``ConcurrencyConflict`` carrying the holder's
run ID.

A sweep processes items independently. A failing item is logged and
counted; the run still completes. The run is ``FAILED`` only when the
item enumeration fails or every item fails.

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from riskguard.exceptions import (
    ConcurrencyConflict,
    InvalidState,
    NotFound,
    ValidationError,
    format_exception_chain,
)
from riskguard.tolerance_monitor.metrics import record_conflict, record_recalc_run
from riskguard.tolerance_monitor.models import RecalcRun, RecalcRunStatus, RecalcRunType

logger = logging.getLogger(__name__)

RUN_ENTITY = "recalc_run"

_TERMINAL = (RecalcRunStatus.COMPLETED, RecalcRunStatus.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class RecalcRunManager:
    """Tracks recalc runs and enforces one running sweep per organization."""

    def __init__(self) -> None:
        self._runs: Dict[str, RecalcRun] = {}
        self._running: Dict[str, str] = {}
        self._lock = threading.Lock()

    def acquire_lock(
        self,
        org_id: str,
        run_type: str = RecalcRunType.FULL.value,
        requested_by: Optional[str] = None,
    ) -> RecalcRun:
        """Start a run for an organization.

        Args:
            org_id: Organization to sweep.
            run_type: FULL, CATEGORY or RISK.
            requested_by: Requesting user.

        Returns:
            The new run in RUNNING status.

        Raises:
            ConcurrencyConflict: A run is already RUNNING for the
                organization; ``existing_run_id`` names it.
        """
        run = RecalcRun(
            org_id=org_id,
            run_type=RecalcRunType(run_type),
            status=RecalcRunStatus.RUNNING,
            requested_by=requested_by,
            started_at=_utcnow(),
        )
        with self._lock:
            existing = self._running.get(org_id)
            if existing is not None:
                record_conflict(RUN_ENTITY)
                logger.warning(
                    "Recalc lock for org %s already held by run %s", org_id, existing,
                )
                raise ConcurrencyConflict(
                    message=f"A recalculation is already running for organization {org_id}",
                    existing_run_id=existing,
                )
            self._runs[run.run_id] = run
            self._running[org_id] = run.run_id

        logger.info(
            "Acquired recalc lock for org %s: run %s (%s)",
            org_id, run.run_id, run.run_type.value,
        )
        return run.model_copy()

    def complete_run(
        self,
        run_id: str,
        status: str,
        processed: int,
        updated: int,
        failed: int,
        error_message: Optional[str] = None,
    ) -> RecalcRun:
        """Finish a running run and release its organization's lock.

        Raises:
            NotFound: Unknown run.
            InvalidState: Run not RUNNING, or status not terminal.
            ValidationError: Negative counts.
        """
        final = RecalcRunStatus(status)
        if final not in _TERMINAL:
            raise InvalidState(
                message=f"Run {run_id} can only complete as COMPLETED or FAILED",
                entity_type=RUN_ENTITY,
                entity_id=run_id,
                current_status=final.value,
                attempted_action="complete",
            )
        negative = {
            name: "must be non-negative"
            for name, value in (("processed", processed), ("updated", updated), ("failed", failed))
            if value < 0
        }
        if negative:
            raise ValidationError(
                message=f"Invalid item counts for run {run_id}",
                invalid_fields=negative,
            )

        with self._lock:
            run = self._require(run_id)
            if run.status != RecalcRunStatus.RUNNING:
                raise InvalidState(
                    message=f"Run {run_id} is {run.status.value}, not RUNNING",
                    entity_type=RUN_ENTITY,
                    entity_id=run_id,
                    current_status=run.status.value,
                    attempted_action="complete",
                )
            run = run.model_copy(update={
                "status": final,
                "completed_at": _utcnow(),
                "items_processed": processed,
                "items_updated": updated,
                "items_failed": failed,
                "error_message": error_message,
            })
            self._runs[run_id] = run
            if self._running.get(run.org_id) == run_id:
                del self._running[run.org_id]

        record_recalc_run(run.run_type.value, final.value)
        logger.info(
            "Recalc run %s %s: processed=%d updated=%d failed=%d",
            run_id, final.value, processed, updated, failed,
        )
        return run.model_copy()

    def run_sweep(
        self,
        org_id: str,
        enumerate_items: Callable[[], Iterable[str]],
        process_item: Callable[[str], bool],
        run_type: str = RecalcRunType.FULL.value,
        requested_by: Optional[str] = None,
    ) -> RecalcRun:
        """Run a sweep end to end under the organization lock.

        Args:
            org_id: Organization to sweep.
            enumerate_items: Returns the item IDs to process.
            process_item: Processes one item and returns whether its
                result changed.
            run_type: FULL, CATEGORY or RISK.
            requested_by: Requesting user.

        Returns:
            The completed run.

        Raises:
            ConcurrencyConflict: A run is already RUNNING for the
                organization.
        """
        run = self.acquire_lock(org_id, run_type, requested_by)

        try:
            items = list(enumerate_items())
        except Exception as e:
            logger.error("Recalc run %s could not enumerate items: %s", run.run_id, e)
            return self.complete_run(
                run.run_id, RecalcRunStatus.FAILED.value, 0, 0, 0,
                error_message=f"Enumeration failed: {e}",
            )

        processed = updated = failed = 0
        errors: List[str] = []
        for item_id in items:
            try:
                if process_item(item_id):
                    updated += 1
                processed += 1
            except Exception as e:
                failed += 1
                errors.append(f"{item_id}: {e}")
                logger.warning(
                    "Recalc run %s failed on %s: %s",
                    run.run_id, item_id, format_exception_chain(e),
                )

        all_failed = bool(items) and failed == len(items)
        status = RecalcRunStatus.FAILED if all_failed else RecalcRunStatus.COMPLETED
        return self.complete_run(
            run.run_id, status.value, processed, updated, failed,
            error_message="; ".join(errors[:10]) or None,
        )

    def get_run(self, run_id: str) -> RecalcRun:
        with self._lock:
            return self._require(run_id).model_copy()

    def running_run(self, org_id: str) -> Optional[RecalcRun]:
        with self._lock:
            run_id = self._running.get(org_id)
            return self._runs[run_id].model_copy() if run_id else None

    def list_runs(self, org_id: Optional[str] = None) -> List[RecalcRun]:
        with self._lock:
            runs = list(self._runs.values())
        if org_id is not None:
            runs = [r for r in runs if r.org_id == org_id]
        return [r.model_copy() for r in runs]

    def _require(self, run_id: str) -> RecalcRun:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFound(
                message=f"Recalc run {run_id} not found",
                entity_type=RUN_ENTITY,
                entity_id=run_id,
            )
        return run


__all__ = ["RecalcRunManager"]
