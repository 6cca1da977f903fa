# -*- coding: utf-8 -*-
"""Tests for the bounded risk category hierarchy."""

import pytest

from riskguard.exceptions import InvalidState, NotFound, ValidationError
from riskguard.tolerance_monitor.config import ToleranceMonitorConfig
from riskguard.tolerance_monitor.taxonomy import CategoryTree


@pytest.fixture
def tree():
    tree = CategoryTree(config=ToleranceMonitorConfig(max_hierarchy_depth=3))
    tree.add("ops", "Operational")
    tree.add("tech", "Technology", parent_id="ops")
    tree.add("people", "People", parent_id="ops")
    tree.add("cyber", "Cyber", parent_id="tech")
    return tree


class TestCategoryTree:
    """Tests for CategoryTree structure operations."""

    def test_depths(self, tree):
        assert tree.get("ops").depth == 0
        assert tree.get("tech").depth == 1
        assert tree.get("cyber").depth == 2
        assert tree.count == 4

    def test_duplicate_id(self, tree):
        with pytest.raises(ValidationError):
            tree.add("tech", "Technology again")

    def test_unknown_parent(self, tree):
        with pytest.raises(NotFound):
            tree.add("x", "X", parent_id="missing")

    def test_depth_limit(self, tree):
        tree.add("phishing", "Phishing", parent_id="cyber")
        with pytest.raises(ValidationError):
            tree.add("too-deep", "Too deep", parent_id="phishing")

    def test_ancestors_and_path(self, tree):
        assert [n.category_id for n in tree.ancestors("cyber")] == ["tech", "ops"]
        assert tree.path("cyber") == "Operational > Technology > Cyber"
        assert tree.ancestors("ops") == []

    def test_descendants_breadth_first(self, tree):
        assert [n.category_id for n in tree.descendants("ops")] == ["people", "tech", "cyber"]
        assert [n.category_id for n in tree.descendants("ops", max_depth=1)] == ["people", "tech"]
        assert tree.subtree_ids("tech") == ["tech", "cyber"]

    def test_move_shifts_subtree(self, tree):
        """Moving a node re-levels every descendant."""
        tree.add("conduct", "Conduct")
        moved = tree.move("tech", "conduct")

        assert moved.parent_id == "conduct"
        assert moved.depth == 1
        assert tree.get("cyber").depth == 2
        assert tree.subtree_ids("ops") == ["ops", "people"]

        root = tree.move("tech", None)
        assert root.depth == 0
        assert tree.get("cyber").depth == 1

    def test_move_rejects_cycle(self, tree):
        with pytest.raises(ValidationError):
            tree.move("ops", "cyber")
        with pytest.raises(ValidationError):
            tree.move("tech", "tech")

    def test_move_rejects_excess_depth(self, tree):
        tree.add("phishing", "Phishing", parent_id="cyber")
        tree.add("other", "Other")
        tree.add("other-child", "Other child", parent_id="other")
        # tech subtree has height 2; under other-child it would reach depth 4
        with pytest.raises(ValidationError):
            tree.move("tech", "other-child")

    def test_remove(self, tree):
        with pytest.raises(InvalidState):
            tree.remove("tech")
        tree.remove("cyber")
        tree.remove("tech")
        assert tree.subtree_ids("ops") == ["ops", "people"]
        with pytest.raises(NotFound):
            tree.get("tech")
