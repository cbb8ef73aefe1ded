"""
Transition events, results and side-effect descriptors.

Side effects are instructions, not actions: the state machine returns them
and the caller's service layer applies them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from phaseflow.lib.types import PhaseStatus, TransitionType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EventMetadata:
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None       # filled in by the machine when missing


@dataclass
class TransitionEvent:
    """A request to move a work item's phase state. Never persisted."""
    type: TransitionType
    work_item_id: str
    current_phase_id: str
    target_phase_id: Optional[str] = None
    metadata: EventMetadata = field(default_factory=EventMetadata)


@dataclass(frozen=True)
class UpdatePhaseState:
    """Persist field updates to one WorkItemPhaseState."""
    work_item_id: str
    phase_id: str
    updates: dict

    def to_dict(self) -> dict:
        updates = {
            k: (v.isoformat() if isinstance(v, datetime) else getattr(v, "value", v))
            for k, v in self.updates.items()
        }
        return {
            "type": "update_phase_state",
            "work_item_id": self.work_item_id,
            "phase_id": self.phase_id,
            "updates": updates,
        }


@dataclass(frozen=True)
class NotifyUsers:
    """Tell the work item's team something happened."""
    work_item_id: str
    phase_id: str
    kind: str                                  # e.g. "phase_completion"
    message: str
    scope: str = "team"

    def to_dict(self) -> dict:
        return {
            "type": "notify_users",
            "work_item_id": self.work_item_id,
            "phase_id": self.phase_id,
            "kind": self.kind,
            "message": self.message,
            "scope": self.scope,
        }


@dataclass(frozen=True)
class LogAudit:
    """Record the transition with the audit collaborator."""
    action: str                                # PHASE_STARTED, PHASE_COMPLETED, ...
    work_item_id: str
    phase_ids: tuple[str, ...]
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "type": "log_audit",
            "action": self.action,
            "work_item_id": self.work_item_id,
            "phase_ids": list(self.phase_ids),
            "actor_id": self.actor_id,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


SideEffect = Union[UpdatePhaseState, NotifyUsers, LogAudit]


@dataclass
class TransitionResult:
    success: bool
    new_status: PhaseStatus
    message: str
    new_phase_id: Optional[str] = None
    side_effects: list[Any] = field(default_factory=list)

    @property
    def phase_updates(self) -> list[UpdatePhaseState]:
        return [e for e in self.side_effects if isinstance(e, UpdatePhaseState)]

    @property
    def notifications(self) -> list[NotifyUsers]:
        return [e for e in self.side_effects if isinstance(e, NotifyUsers)]

    @property
    def audit_entries(self) -> list[LogAudit]:
        return [e for e in self.side_effects if isinstance(e, LogAudit)]


@dataclass(frozen=True)
class AvailableTransitions:
    """Which actions a presentation layer should enable right now."""
    can_start: bool
    can_complete: bool
    can_move_to_next: bool
    can_move_to_previous: bool
    can_reset: bool
    can_skip: bool

    def to_dict(self) -> dict[str, bool]:
        return {
            "can_start": self.can_start,
            "can_complete": self.can_complete,
            "can_move_to_next": self.can_move_to_next,
            "can_move_to_previous": self.can_move_to_previous,
            "can_reset": self.can_reset,
            "can_skip": self.can_skip,
        }


@dataclass(frozen=True)
class SequenceReport:
    is_valid: bool
    violations: list[str]
