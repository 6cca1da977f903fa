# -*- coding: utf-8 -*-
"""
Risk Category Taxonomy - RiskGuard Tolerance Monitor

Root-cause / risk category hierarchy stored as an arena of nodes plus a
parent index. Every traversal is depth-limited by
``max_hierarchy_depth`` so a corrupted parent chain can never loop.

Used by the aggregation engine to roll a category up together with all
of its descendants.

Example:
    >>> from riskguard.tolerance_monitor.taxonomy import CategoryTree
    >>> tree = CategoryTree()
    >>> tree.add("ops", "Operational")
    >>> tree.add("ops.it", "IT Failure", parent_id="ops")
    >>> tree.path("ops.it")
    'Operational > IT Failure'

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Dict, List, Optional, Set

from riskguard.exceptions import InvalidState, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig, get_config
from riskguard.tolerance_monitor.models import CategoryNode

logger = logging.getLogger(__name__)


class CategoryTree:
    """Arena + parent-index category hierarchy with bounded traversal.

    Attributes:
        max_depth: Deepest level a node may sit at (root is 0).
    """

    def __init__(self, config: Optional[ToleranceMonitorConfig] = None) -> None:
        self.config = config or get_config()
        self.max_depth = self.config.max_hierarchy_depth
        self._nodes: Dict[str, CategoryNode] = {}
        self._children: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def add(
        self,
        category_id: str,
        name: str,
        parent_id: Optional[str] = None,
        code: Optional[str] = None,
    ) -> CategoryNode:
        """Add a category under an optional parent.

        Raises:
            ValidationError: Duplicate id or depth beyond the limit.
            NotFound: Unknown parent.
        """
        with self._lock:
            if category_id in self._nodes:
                raise ValidationError(
                    message=f"Category {category_id} already exists",
                    invalid_fields={"category_id": "duplicate"},
                )
            depth = 0
            if parent_id is not None:
                parent = self._require(parent_id)
                depth = parent.depth + 1
            if depth > self.max_depth:
                raise ValidationError(
                    message=(
                        f"Category {category_id} would sit at depth {depth}, "
                        f"beyond the limit of {self.max_depth}"
                    ),
                    invalid_fields={"parent_id": "hierarchy too deep"},
                )
            node = CategoryNode(
                category_id=category_id,
                name=name,
                code=code,
                parent_id=parent_id,
                depth=depth,
            )
            self._nodes[category_id] = node
            self._children.setdefault(category_id, set())
            if parent_id is not None:
                self._children[parent_id].add(category_id)
        logger.debug("Added category %s at depth %d", category_id, depth)
        return node

    def move(self, category_id: str, new_parent_id: Optional[str]) -> CategoryNode:
        """Re-parent a category, keeping the tree acyclic and within depth.

        Raises:
            NotFound: Unknown category or parent.
            ValidationError: The move would create a cycle or exceed depth.
        """
        with self._lock:
            node = self._require(category_id)
            new_depth = 0
            if new_parent_id is not None:
                parent = self._require(new_parent_id)
                if new_parent_id == category_id or new_parent_id in self._subtree(category_id):
                    raise ValidationError(
                        message=f"Moving {category_id} under {new_parent_id} creates a cycle",
                        invalid_fields={"parent_id": "cycle"},
                    )
                new_depth = parent.depth + 1
            subtree = self._subtree(category_id)
            height = max((self._nodes[c].depth for c in subtree), default=node.depth) - node.depth
            if new_depth + height > self.max_depth:
                raise ValidationError(
                    message=f"Moving {category_id} exceeds depth limit {self.max_depth}",
                    invalid_fields={"parent_id": "hierarchy too deep"},
                )

            if node.parent_id is not None:
                self._children[node.parent_id].discard(category_id)
            if new_parent_id is not None:
                self._children[new_parent_id].add(category_id)

            shift = new_depth - node.depth
            self._nodes[category_id] = node.model_copy(
                update={"parent_id": new_parent_id, "depth": new_depth},
            )
            for child_id in subtree:
                child = self._nodes[child_id]
                self._nodes[child_id] = child.model_copy(
                    update={"depth": child.depth + shift},
                )
            return self._nodes[category_id]

    def remove(self, category_id: str) -> None:
        """Remove a leaf category.

        Raises:
            InvalidState: If the category still has children.
        """
        with self._lock:
            node = self._require(category_id)
            if self._children.get(category_id):
                raise InvalidState(
                    message=f"Category {category_id} has children",
                    entity_type="category",
                    entity_id=category_id,
                    attempted_action="delete",
                )
            del self._nodes[category_id]
            self._children.pop(category_id, None)
            if node.parent_id is not None:
                self._children[node.parent_id].discard(category_id)

    def get(self, category_id: str) -> CategoryNode:
        return self._require(category_id)

    def ancestors(self, category_id: str) -> List[CategoryNode]:
        """Return ancestors from the parent up to the root."""
        node = self._require(category_id)
        result: List[CategoryNode] = []
        current = node.parent_id
        steps = 0
        while current is not None and steps <= self.max_depth:
            parent = self._nodes.get(current)
            if parent is None:
                break
            result.append(parent)
            current = parent.parent_id
            steps += 1
        return result

    def descendants(
        self,
        category_id: str,
        max_depth: Optional[int] = None,
    ) -> List[CategoryNode]:
        """Breadth-first descendants, at most ``max_depth`` levels below."""
        self._require(category_id)
        limit = self.max_depth if max_depth is None else min(max_depth, self.max_depth)
        result: List[CategoryNode] = []
        queue = deque([(category_id, 0)])
        seen = {category_id}
        while queue:
            current, level = queue.popleft()
            if level >= limit:
                continue
            for child_id in sorted(self._children.get(current, ())):
                if child_id in seen:
                    continue
                seen.add(child_id)
                result.append(self._nodes[child_id])
                queue.append((child_id, level + 1))
        return result

    def subtree_ids(self, category_id: str) -> List[str]:
        """The category itself followed by all of its descendants."""
        return [category_id] + [n.category_id for n in self.descendants(category_id)]

    def path(self, category_id: str, separator: str = " > ") -> str:
        node = self._require(category_id)
        names = [a.name for a in reversed(self.ancestors(category_id))]
        names.append(node.name)
        return separator.join(names)

    @property
    def count(self) -> int:
        return len(self._nodes)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, category_id: str) -> CategoryNode:
        node = self._nodes.get(category_id)
        if node is None:
            raise NotFound(
                message=f"Category {category_id} not found",
                entity_type="category",
                entity_id=category_id,
            )
        return node

    def _subtree(self, category_id: str) -> Set[str]:
        found: Set[str] = set()
        queue = deque([(category_id, 0)])
        while queue:
            current, level = queue.popleft()
            if level > self.max_depth:
                continue
            for child_id in self._children.get(current, ()):
                if child_id not in found:
                    found.add(child_id)
                    queue.append((child_id, level + 1))
        return found


__all__ = ["CategoryTree"]
