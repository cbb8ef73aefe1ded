"""
Work item tree: Epic -> Story -> Task -> Subtask.

A WorkTree is an in-memory snapshot. Leaves (subtasks) are mutated by
callers; every ancestor's status and completion are written only by the
ProgressAggregator.
"""

from dataclasses import dataclass, replace
from typing import Iterable, Optional

from phaseflow.lib.errors import NotFoundError, ValidationError
from phaseflow.lib.types import CHILD_LEVEL, NodeLevel, WorkStatus, parse_enum


@dataclass
class WorkNode:
    """One node of the work item hierarchy."""
    id: str                                    # EPIC-0001, STORY-0001, ...
    level: NodeLevel
    title: str
    parent_id: Optional[str] = None            # None only for epics
    status: WorkStatus = WorkStatus.NOT_STARTED
    completion_percentage: int = 0
    phase_id: Optional[str] = None             # stories are scheduled into a phase

    def copy(self) -> "WorkNode":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "level": self.level.value,
            "title": self.title,
            "parent_id": self.parent_id,
            "status": self.status.value,
            "completion_percentage": self.completion_percentage,
            "phase_id": self.phase_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkNode":
        level = parse_enum(NodeLevel, data.get("level"))
        status = parse_enum(WorkStatus, data.get("status"))
        if level is None or status is None:
            raise ValidationError(f"Invalid node {data.get('id')}: level={data.get('level')} status={data.get('status')}")
        return cls(
            id=data["id"],
            level=level,
            title=data.get("title", ""),
            parent_id=data.get("parent_id"),
            status=status,
            completion_percentage=int(data.get("completion_percentage", 0)),
            phase_id=data.get("phase_id"),
        )


class WorkTree:
    """Nodes by id plus a parent -> children index.

    Children are kept in insertion order.
    """

    def __init__(self, nodes: Iterable[WorkNode] = ()):
        self._nodes: dict[str, WorkNode] = {}
        self._children: dict[str, list[str]] = {}
        for node in nodes:
            self.add(node)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id) -> bool:
        return node_id in self._nodes

    def __iter__(self):
        return iter(self._nodes.values())

    def add(self, node: WorkNode) -> WorkNode:
        """Insert a node under its parent.

        Raises:
            ValidationError: duplicate id, missing parent, or the parent is
                not exactly one level above.
        """
        if node.id in self._nodes:
            raise ValidationError(f"Duplicate node id {node.id}")

        if node.level == NodeLevel.EPIC:
            if node.parent_id is not None:
                raise ValidationError(f"Epic {node.id} cannot have a parent")
        else:
            parent = self._nodes.get(node.parent_id) if node.parent_id else None
            if parent is None:
                raise ValidationError(f"Parent {node.parent_id} of {node.id} is not in the tree")
            if CHILD_LEVEL.get(parent.level) != node.level:
                raise ValidationError(
                    f"{node.level.value} {node.id} cannot be a child of {parent.level.value} {parent.id}"
                )
            self._children.setdefault(parent.id, []).append(node.id)

        self._nodes[node.id] = node
        return node

    def get(self, node_id: str) -> WorkNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError("WorkNode", node_id)
        return node

    def children(self, node_id: str) -> list[WorkNode]:
        return [self._nodes[c] for c in self._children.get(node_id, [])]

    def parent(self, node_id: str) -> Optional[WorkNode]:
        node = self.get(node_id)
        return self._nodes.get(node.parent_id) if node.parent_id else None

    def ancestors(self, node_id: str) -> list[WorkNode]:
        """Ancestors nearest first (task, story, epic for a subtask)."""
        chain = []
        parent = self.parent(node_id)
        while parent is not None:
            chain.append(parent)
            parent = self.parent(parent.id)
        return chain

    def descendants(self, node_id: str, level: Optional[NodeLevel] = None) -> list[WorkNode]:
        """All nodes below node_id, depth-first, optionally filtered by level."""
        found = []
        stack = list(reversed(self._children.get(node_id, [])))
        while stack:
            child = self._nodes[stack.pop()]
            if level is None or child.level == level:
                found.append(child)
            stack.extend(reversed(self._children.get(child.id, [])))
        return found

    def nodes(self, level: Optional[NodeLevel] = None) -> list[WorkNode]:
        return [n for n in self._nodes.values() if level is None or n.level == level]
