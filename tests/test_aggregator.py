"""Tests for phaseflow.hierarchy (tree and progress rollup)."""

import logging

import pytest

from phaseflow.hierarchy.aggregator import (
    ProgressAggregator,
    apply_leaf_change,
    derive_status,
    round_half_up,
)
from phaseflow.hierarchy.models import WorkNode, WorkTree
from phaseflow.lib.errors import NotFoundError, ValidationError
from phaseflow.lib.types import NodeLevel, WorkStatus


def build_tree(subtask_percentages, epic_status=WorkStatus.IN_PROGRESS):
    """EPIC-1 > STORY-1 > TASK-1 > one subtask per percentage."""
    tree = WorkTree()
    tree.add(WorkNode("EPIC-1", NodeLevel.EPIC, "Epic", status=epic_status))
    tree.add(WorkNode("STORY-1", NodeLevel.STORY, "Story", parent_id="EPIC-1", phase_id="design"))
    tree.add(WorkNode("TASK-1", NodeLevel.TASK, "Task", parent_id="STORY-1"))
    for i, pct in enumerate(subtask_percentages, start=1):
        tree.add(WorkNode(
            f"SUB-{i}", NodeLevel.SUBTASK, f"Subtask {i}", parent_id="TASK-1",
            status=derive_status(pct), completion_percentage=pct,
        ))
    return tree


class TestWorkTree:
    """Structural checks on insertion."""

    def test_child_level_must_match_parent(self):
        tree = WorkTree([WorkNode("EPIC-1", NodeLevel.EPIC, "Epic")])
        with pytest.raises(ValidationError, match="cannot be a child"):
            tree.add(WorkNode("TASK-1", NodeLevel.TASK, "Task", parent_id="EPIC-1"))

    def test_missing_parent(self):
        tree = WorkTree()
        with pytest.raises(ValidationError, match="not in the tree"):
            tree.add(WorkNode("STORY-1", NodeLevel.STORY, "Story", parent_id="EPIC-9"))

    def test_epic_cannot_have_parent(self):
        tree = WorkTree([WorkNode("EPIC-1", NodeLevel.EPIC, "Epic")])
        with pytest.raises(ValidationError):
            tree.add(WorkNode("EPIC-2", NodeLevel.EPIC, "Epic 2", parent_id="EPIC-1"))

    def test_duplicate_id(self):
        tree = WorkTree([WorkNode("EPIC-1", NodeLevel.EPIC, "Epic")])
        with pytest.raises(ValidationError, match="Duplicate"):
            tree.add(WorkNode("EPIC-1", NodeLevel.EPIC, "Again"))

    def test_get_unknown_node(self):
        with pytest.raises(NotFoundError):
            WorkTree().get("EPIC-1")

    def test_ancestors_nearest_first(self):
        tree = build_tree([10])
        assert [n.id for n in tree.ancestors("SUB-1")] == ["TASK-1", "STORY-1", "EPIC-1"]

    def test_descendants_by_level(self):
        tree = build_tree([10, 20])
        assert [n.id for n in tree.descendants("EPIC-1", NodeLevel.SUBTASK)] == ["SUB-1", "SUB-2"]
        assert len(tree.descendants("EPIC-1")) == 4

    def test_node_dict_round_trip(self):
        node = WorkNode("STORY-1", NodeLevel.STORY, "Login", parent_id="EPIC-1", phase_id="design")
        assert WorkNode.from_dict(node.to_dict()) == node


class TestRounding:

    @pytest.mark.parametrize("values,expected", [
        ([0, 50, 100], 50),
        ([50, 50, 0, 0], 25),
        ([0, 1], 1),        # 0.5 rounds up
        ([0, 0, 1], 0),     # 0.33 rounds down
        ([33, 34], 34),     # 33.5 rounds up
        ([100], 100),
    ])
    def test_round_half_up(self, values, expected):
        assert round_half_up(sum(values), len(values)) == expected

    @pytest.mark.parametrize("completion,status", [
        (0, WorkStatus.NOT_STARTED),
        (1, WorkStatus.IN_PROGRESS),
        (99, WorkStatus.IN_PROGRESS),
        (100, WorkStatus.COMPLETED),
    ])
    def test_derive_status(self, completion, status):
        assert derive_status(completion) == status


class TestRecomputeProgress:
    """Rollup from a changed subtask."""

    def test_three_subtasks_average(self):
        tree = build_tree([0, 50, 100])
        result = ProgressAggregator(tree).recompute_progress("SUB-2")

        task = tree.get("TASK-1")
        assert task.completion_percentage == 50
        assert task.status == WorkStatus.IN_PROGRESS
        assert result.updated_task_id == "TASK-1"
        assert result.updated_story_id == "STORY-1"
        assert result.updated_epic_id == "EPIC-1"
        assert [u.node_id for u in result.updates] == ["TASK-1", "STORY-1", "EPIC-1"]

    def test_four_subtasks_partial(self):
        """Two of four at 50%, two untouched -> 25%."""
        tree = build_tree([50, 50, 0, 0])
        ProgressAggregator(tree).recompute_progress("SUB-1")

        assert tree.get("TASK-1").completion_percentage == 25
        assert tree.get("STORY-1").completion_percentage == 25
        assert tree.get("EPIC-1").completion_percentage == 25

    def test_all_complete_marks_task_and_story_completed(self):
        tree = build_tree([100, 100])
        ProgressAggregator(tree).recompute_progress("SUB-1")

        assert tree.get("TASK-1").status == WorkStatus.COMPLETED
        assert tree.get("STORY-1").status == WorkStatus.COMPLETED

    def test_epic_status_untouched_at_100(self):
        tree = build_tree([100], epic_status=WorkStatus.IN_PROGRESS)
        result = ProgressAggregator(tree).recompute_progress("SUB-1")

        epic = tree.get("EPIC-1")
        assert epic.completion_percentage == 100
        assert epic.status == WorkStatus.IN_PROGRESS
        assert result.updates[-1].status is None

    def test_epic_status_written_below_100(self):
        tree = build_tree([0], epic_status=WorkStatus.IN_PROGRESS)
        ProgressAggregator(tree).recompute_progress("SUB-1")
        assert tree.get("EPIC-1").status == WorkStatus.NOT_STARTED

    def test_story_averages_over_its_tasks(self):
        tree = build_tree([100])
        tree.add(WorkNode("TASK-2", NodeLevel.TASK, "Empty task", parent_id="STORY-1"))
        tree.add(WorkNode("SUB-9", NodeLevel.SUBTASK, "Other", parent_id="TASK-2"))
        ProgressAggregator(tree).recompute_progress("SUB-1")

        assert tree.get("TASK-2").completion_percentage == 0
        assert tree.get("STORY-1").completion_percentage == 50

    def test_rejects_non_subtask(self):
        with pytest.raises(ValidationError, match="not a subtask"):
            ProgressAggregator(build_tree([10])).recompute_progress("TASK-1")

    def test_logs_rollup(self, caplog):
        tree = build_tree([10])
        with caplog.at_level(logging.INFO, logger="phaseflow.hierarchy.aggregator"):
            ProgressAggregator(tree).recompute_progress("SUB-1")
        assert "[ROLLUP] SUB-1" in caplog.text


class TestRecomputeNode:

    def test_no_children_no_write(self):
        tree = WorkTree()
        tree.add(WorkNode("EPIC-1", NodeLevel.EPIC, "Epic"))
        tree.add(WorkNode("STORY-1", NodeLevel.STORY, "Story", parent_id="EPIC-1",
                          status=WorkStatus.BLOCKED, completion_percentage=40))

        assert ProgressAggregator(tree).recompute_node("STORY-1") is None
        story = tree.get("STORY-1")
        assert story.completion_percentage == 40
        assert story.status == WorkStatus.BLOCKED

    def test_subtask_has_nothing_to_aggregate(self):
        with pytest.raises(ValidationError):
            ProgressAggregator(build_tree([10])).recompute_node("SUB-1")

    def test_recompute_ancestors_from_task(self):
        tree = build_tree([40, 60])
        updates = ProgressAggregator(tree).recompute_ancestors("TASK-1")
        # the task itself is not recomputed, only its ancestors
        assert [u.node_id for u in updates] == ["STORY-1", "EPIC-1"]


class TestRollupAll:

    def test_bottom_up_over_whole_epic(self):
        tree = build_tree([20, 40])
        updates = ProgressAggregator(tree).rollup_all("EPIC-1")

        assert [u.node_id for u in updates] == ["TASK-1", "STORY-1", "EPIC-1"]
        assert tree.get("EPIC-1").completion_percentage == 30

    def test_requires_epic(self):
        with pytest.raises(ValidationError):
            ProgressAggregator(build_tree([20])).rollup_all("STORY-1")


class TestPhaseProgress:

    def test_mean_of_stories_in_phase(self):
        tree = build_tree([100])
        tree.add(WorkNode("STORY-2", NodeLevel.STORY, "Second", parent_id="EPIC-1", phase_id="design"))
        tree.add(WorkNode("STORY-3", NodeLevel.STORY, "Later", parent_id="EPIC-1", phase_id="testing",
                          completion_percentage=70))
        aggregator = ProgressAggregator(tree)
        aggregator.rollup_all("EPIC-1")

        assert aggregator.phase_progress("EPIC-1", "design") == 50
        assert aggregator.phase_progress("EPIC-1", "testing") == 70

    def test_no_stories_in_phase(self):
        assert ProgressAggregator(build_tree([10])).phase_progress("EPIC-1", "promotion") is None


class TestApplyLeafChange:

    def test_percentage_derives_status(self):
        tree = build_tree([0])
        leaf = apply_leaf_change(tree, "SUB-1", completion_percentage=60)
        assert leaf.completion_percentage == 60
        assert leaf.status == WorkStatus.IN_PROGRESS

    def test_completed_status_implies_100(self):
        tree = build_tree([30])
        leaf = apply_leaf_change(tree, "SUB-1", status=WorkStatus.COMPLETED)
        assert leaf.completion_percentage == 100

    def test_blocked_keeps_percentage(self):
        tree = build_tree([30])
        leaf = apply_leaf_change(tree, "SUB-1", status=WorkStatus.BLOCKED)
        assert leaf.status == WorkStatus.BLOCKED
        assert leaf.completion_percentage == 30

    @pytest.mark.parametrize("pct", [-1, 101])
    def test_out_of_range(self, pct):
        with pytest.raises(ValidationError, match="between 0 and 100"):
            apply_leaf_change(build_tree([0]), "SUB-1", completion_percentage=pct)

    def test_only_subtasks(self):
        with pytest.raises(ValidationError):
            apply_leaf_change(build_tree([0]), "TASK-1", completion_percentage=10)
