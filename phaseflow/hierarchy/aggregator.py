"""
Hierarchical progress rollup.

Recomputes completion and derived status for every ancestor of a changed
subtask, strictly bottom-up: each level reads its children's already
updated values.

Rules per ancestor:
- completion_percentage = mean of immediate children's completion,
  unweighted, rounded half up
- status derived from completion: 0 -> not_started, 100 -> completed,
  anything else -> in_progress
- a parent with no children is left untouched
- an epic's status is never written at 100%; epic completion belongs to
  the phase lifecycle
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from phaseflow.hierarchy.models import WorkNode, WorkTree
from phaseflow.lib.errors import ValidationError
from phaseflow.lib.types import NodeLevel, WorkStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeUpdate:
    """Fields written to one node by a rollup pass."""
    node_id: str
    level: NodeLevel
    completion_percentage: int
    status: Optional[WorkStatus]               # None: status write skipped


@dataclass
class RollupResult:
    """Chain of ancestors recomputed after a leaf change."""
    updated_task_id: Optional[str] = None
    updated_story_id: Optional[str] = None
    updated_epic_id: Optional[str] = None
    updates: list[NodeUpdate] = field(default_factory=list)


def round_half_up(total: int, count: int) -> int:
    """Integer mean with .5 rounded up (non-negative inputs)."""
    return (2 * total + count) // (2 * count)


def derive_status(completion: int) -> WorkStatus:
    if completion <= 0:
        return WorkStatus.NOT_STARTED
    if completion >= 100:
        return WorkStatus.COMPLETED
    return WorkStatus.IN_PROGRESS


def leaf_completion_for(status: WorkStatus, current: int) -> int:
    """Completion implied by a leaf status change when none is given."""
    if status == WorkStatus.COMPLETED:
        return 100
    if status == WorkStatus.NOT_STARTED:
        return 0
    return current


class ProgressAggregator:
    """Rollup engine over a WorkTree snapshot.

    Writes go into the tree's nodes so the next level up sees them; every
    write is also reported as a NodeUpdate for the caller to persist.
    """

    def __init__(self, tree: WorkTree):
        self.tree = tree

    def recompute_node(self, node_id: str) -> Optional[NodeUpdate]:
        """Recompute one ancestor from its immediate children.

        Returns None (and writes nothing) when the node has no children.
        """
        node = self.tree.get(node_id)
        if node.level == NodeLevel.SUBTASK:
            raise ValidationError(f"Subtask {node_id} has no children to aggregate")

        children = self.tree.children(node_id)
        if not children:
            logger.debug(f"[ROLLUP] {node_id}: no children, skipping")
            return None

        completion = round_half_up(sum(c.completion_percentage for c in children), len(children))
        status: Optional[WorkStatus] = derive_status(completion)

        node.completion_percentage = completion
        if node.level == NodeLevel.EPIC and completion >= 100:
            status = None
        else:
            node.status = status

        logger.debug(
            f"[ROLLUP] {node_id}: {completion}% from {len(children)} children"
            + (f", status {status.value}" if status else ", status untouched")
        )
        return NodeUpdate(node_id=node.id, level=node.level, completion_percentage=completion, status=status)

    def recompute_progress(self, leaf_id: str) -> RollupResult:
        """Roll a subtask change up through task, story and epic.

        Raises:
            NotFoundError: leaf_id isn't in the tree
            ValidationError: leaf_id isn't a subtask
        """
        leaf = self.tree.get(leaf_id)
        if leaf.level != NodeLevel.SUBTASK:
            raise ValidationError(f"{leaf_id} is a {leaf.level.value}, not a subtask")

        result = RollupResult()
        for ancestor in self.tree.ancestors(leaf_id):
            update = self.recompute_node(ancestor.id)
            if update is None:
                continue
            result.updates.append(update)
            if ancestor.level == NodeLevel.TASK:
                result.updated_task_id = ancestor.id
            elif ancestor.level == NodeLevel.STORY:
                result.updated_story_id = ancestor.id
            elif ancestor.level == NodeLevel.EPIC:
                result.updated_epic_id = ancestor.id

        logger.info(
            f"[ROLLUP] {leaf_id}: task={result.updated_task_id} story={result.updated_story_id} "
            f"epic={result.updated_epic_id}"
        )
        return result

    def recompute_ancestors(self, node_id: str) -> list[NodeUpdate]:
        """Recompute every ancestor of any node, nearest first."""
        updates = []
        for ancestor in self.tree.ancestors(node_id):
            update = self.recompute_node(ancestor.id)
            if update is not None:
                updates.append(update)
        return updates

    def rollup_all(self, epic_id: str) -> list[NodeUpdate]:
        """Recompute a whole epic: all tasks, then stories, then the epic."""
        epic = self.tree.get(epic_id)
        if epic.level != NodeLevel.EPIC:
            raise ValidationError(f"{epic_id} is not an epic")

        updates = []
        for level in (NodeLevel.TASK, NodeLevel.STORY):
            for node in self.tree.descendants(epic_id, level):
                update = self.recompute_node(node.id)
                if update is not None:
                    updates.append(update)

        update = self.recompute_node(epic_id)
        if update is not None:
            updates.append(update)
        return updates

    def phase_progress(self, epic_id: str, phase_id: str) -> Optional[int]:
        """Mean completion of the epic's stories scheduled into a phase.

        Returns None when no story is scheduled into the phase.
        """
        stories = [s for s in self.tree.children(epic_id) if s.phase_id == phase_id]
        if not stories:
            return None
        return round_half_up(sum(s.completion_percentage for s in stories), len(stories))


def apply_leaf_change(
    tree: WorkTree,
    leaf_id: str,
    status: Optional[WorkStatus] = None,
    completion_percentage: Optional[int] = None,
) -> WorkNode:
    """Mutate a subtask in place. Callers roll up afterwards.

    When only a status is given, completion follows it (completed -> 100,
    not_started -> 0, otherwise unchanged). When only a completion is
    given, status is derived from it.
    """
    leaf = tree.get(leaf_id)
    if leaf.level != NodeLevel.SUBTASK:
        raise ValidationError(f"{leaf_id} is a {leaf.level.value}, not a subtask")

    if completion_percentage is not None and not 0 <= completion_percentage <= 100:
        raise ValidationError("Completion percentage must be between 0 and 100")

    if status is not None:
        leaf.status = status
        if completion_percentage is None:
            completion_percentage = leaf_completion_for(status, leaf.completion_percentage)
    elif completion_percentage is not None:
        leaf.status = derive_status(completion_percentage)

    if completion_percentage is not None:
        leaf.completion_percentage = completion_percentage
    return leaf
