"""
Shared enums and small value types.

Kept in one module so workflow/ and hierarchy/ can share them without
importing each other.
"""

from dataclasses import dataclass
from enum import Enum


class PhaseStatus(str, Enum):
    """Status of one phase for one work item."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class WorkStatus(str, Enum):
    """Status of a node in the epic/story/task/subtask tree."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class NodeLevel(str, Enum):
    """Hierarchy levels, parent to child."""
    EPIC = "epic"
    STORY = "story"
    TASK = "task"
    SUBTASK = "subtask"


# child level for each parent level
CHILD_LEVEL = {
    NodeLevel.EPIC: NodeLevel.STORY,
    NodeLevel.STORY: NodeLevel.TASK,
    NodeLevel.TASK: NodeLevel.SUBTASK,
}


class TransitionType(str, Enum):
    """Events accepted by the phase state machine."""
    START_PHASE = "start_phase"
    COMPLETE_PHASE = "complete_phase"
    MOVE_TO_NEXT = "move_to_next"
    MOVE_TO_PREVIOUS = "move_to_previous"
    RESET_PHASE = "reset_phase"


@dataclass(frozen=True)
class Permissions:
    """Permission flags for one (actor, work item) pair.

    Supplied by the caller's access-control layer; the state machine only
    reads them.
    """
    can_advance: bool = False
    can_revert: bool = False
    can_skip: bool = False


def parse_enum(enum_cls, value, default=None):
    """Parse a string into enum_cls, returning default if unknown."""
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    for member in enum_cls:
        if member.value == value:
            return member
    return default
