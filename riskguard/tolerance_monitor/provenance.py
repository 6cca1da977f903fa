# -*- coding: utf-8 -*-
"""
Tolerance Monitor Provenance Tracker - RiskGuard Tolerance Monitor

Provides SHA-256 based audit trail tracking for governance transitions
(metric and observation lifecycle, coverage links, control links) and
residual recalculations. Maintains an in-memory operation log with chain
hashing for tamper evidence.

Guarantees:
    - All hashes are deterministic SHA-256
    - Chain hashing links operations in sequence
    - JSON export for external audit systems

Example:
    >>> from riskguard.tolerance_monitor.provenance import ProvenanceTracker
    >>> tracker = ProvenanceTracker()
    >>> log_id = tracker.record_change(
    ...     user_id="risk_owner_1",
    ...     change_type="approve",
    ...     entity_type="tolerance_metric",
    ...     entity_id="TM-1",
    ...     old_value="pending_approval",
    ...     new_value="approved",
    ...     reason="Quarterly review",
    ... )

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Any, Dict, List, Optional

from riskguard.tolerance_monitor.models import ChangeLogEntry, ChangeType

logger = logging.getLogger(__name__)


class ProvenanceTracker:
    """Tracks governed changes with SHA-256 chain hashing.

    Attributes:
        _entries: Ordered list of change log entries.
        _last_chain_hash: Most recent chain hash for linking.

    Example:
        >>> tracker = ProvenanceTracker()
        >>> tracker.record_change("u1", "create", "observation", "OBS-1", None, "draft", "init")
        >>> assert tracker.verify_chain()
    """

    # Initial chain hash (genesis)
    _GENESIS_HASH = hashlib.sha256(b"riskguard-tolerance-genesis").hexdigest()

    def __init__(self, enabled: bool = True) -> None:
        """Initialize ProvenanceTracker.

        Args:
            enabled: When False, record_change is a no-op returning "".
        """
        self._enabled = enabled
        self._entries: List[ChangeLogEntry] = []
        self._last_chain_hash: str = self._GENESIS_HASH
        self._lock = threading.Lock()
        logger.info("ProvenanceTracker initialized (enabled=%s)", enabled)

    def record_change(
        self,
        user_id: str,
        change_type: str,
        entity_type: str,
        entity_id: str,
        old_value: Any,
        new_value: Any,
        reason: str = "",
    ) -> str:
        """Record a change to the provenance audit trail.

        Args:
            user_id: User who made the change.
            change_type: Type of change (create, approve, supersede, etc.).
            entity_type: Kind of entity (tolerance_metric, observation, ...).
            entity_id: Affected entity identifier.
            old_value: Previous value (None for creates).
            new_value: New value (None for deletes).
            reason: Reason for the change.

        Returns:
            The log_id of the new entry.
        """
        if not self._enabled:
            return ""

        ct = ChangeType(change_type) if isinstance(change_type, str) else change_type

        entry = ChangeLogEntry(
            user_id=user_id,
            change_type=ct,
            entity_type=entity_type,
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
            change_reason=reason,
        )

        with self._lock:
            entry_hash = self._hash_dict(self._entry_data(entry))
            chain_hash = self._build_next_chain_hash(entry_hash)
            entry.provenance_hash = chain_hash
            self._entries.append(entry)
            self._last_chain_hash = chain_hash

        logger.debug(
            "Recorded provenance: %s %s %s",
            ct.value, entity_type, entity_id,
        )
        return entry.log_id

    def get_audit_trail(
        self,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[ChangeLogEntry]:
        """Get the audit trail, optionally filtered.

        Args:
            entity_id: Optional filter by entity ID.
            entity_type: Optional filter by entity type.
            user_id: Optional filter by user ID.
            limit: Maximum number of entries to return.

        Returns:
            List of ChangeLogEntry records, newest first.
        """
        with self._lock:
            entries = list(self._entries)

        if entity_id is not None:
            entries = [e for e in entries if e.entity_id == entity_id]
        if entity_type is not None:
            entries = [e for e in entries if e.entity_type == entity_type]
        if user_id is not None:
            entries = [e for e in entries if e.user_id == user_id]

        # Append order is chronological; reverse for newest first
        entries.reverse()
        return entries[:limit]

    def build_hash(self, data: Any) -> str:
        """Build a SHA-256 hash for arbitrary data.

        Args:
            data: Data to hash (dict, list, or string).

        Returns:
            Hex-encoded SHA-256 hash.
        """
        if isinstance(data, dict):
            return self._hash_dict(data)
        serialized = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode()).hexdigest()

    def verify_chain(self, entries: Optional[List[ChangeLogEntry]] = None) -> bool:
        """Verify the integrity of the provenance chain.

        Recomputes chain hashes from genesis and verifies they match
        the stored hashes in each entry.

        Args:
            entries: Entries to verify. Uses all entries if None.

        Returns:
            True if chain is intact, False if tampered.
        """
        if entries is None:
            with self._lock:
                check_entries = list(self._entries)
        else:
            check_entries = entries
        if not check_entries:
            return True

        current_hash = self._GENESIS_HASH

        for entry in check_entries:
            entry_hash = self._hash_dict(self._entry_data(entry))
            combined = f"{current_hash}:{entry_hash}"
            expected_hash = hashlib.sha256(combined.encode()).hexdigest()

            if entry.provenance_hash != expected_hash:
                logger.warning(
                    "Chain verification failed at entry %s", entry.log_id,
                )
                return False

            current_hash = expected_hash

        return True

    def export_json(self) -> str:
        """Export all provenance records as JSON string.

        Returns:
            JSON string of provenance records.
        """
        with self._lock:
            records = [entry.model_dump(mode="json") for entry in self._entries]
        return json.dumps(records, indent=2, default=str)

    @property
    def entry_count(self) -> int:
        """Return the number of provenance entries."""
        return len(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _entry_data(entry: ChangeLogEntry) -> Dict[str, Any]:
        return {
            "user": entry.user_id,
            "type": entry.change_type.value,
            "entity_type": entry.entity_type,
            "entity": entry.entity_id,
            "old": entry.old_value,
            "new": entry.new_value,
            "reason": entry.change_reason,
            "timestamp": entry.timestamp.isoformat(),
        }

    def _build_next_chain_hash(self, entry_hash: str) -> str:
        """Build the next chain hash linking to the previous.

        Args:
            entry_hash: Hash of the current entry data.

        Returns:
            New chain hash incorporating the previous.
        """
        combined = f"{self._last_chain_hash}:{entry_hash}"
        return hashlib.sha256(combined.encode()).hexdigest()

    @staticmethod
    def _hash_dict(data: Dict[str, Any]) -> str:
        """Compute SHA-256 hash of a dictionary.

        Args:
            data: Dictionary to hash.

        Returns:
            Hex-encoded SHA-256 hash.
        """
        serialized = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode()).hexdigest()


__all__ = [
    "ProvenanceTracker",
]
