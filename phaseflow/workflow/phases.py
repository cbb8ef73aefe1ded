"""
Phase definitions and per-work-item phase state.

Phase definitions are immutable once bootstrapped. Each work item owns
exactly one WorkItemPhaseState per registered phase, created in a batch
by initialize_phase_states().
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from phaseflow.lib.constants import DEFAULT_PHASES
from phaseflow.lib.errors import NotFoundError, ValidationError
from phaseflow.lib.types import PhaseStatus, parse_enum


@dataclass(frozen=True)
class Phase:
    """An ordered delivery stage every epic passes through."""
    id: str
    name: str
    sequence_order: int                        # 1-based, gapless
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sequence_order": self.sequence_order,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Phase":
        return cls(
            id=data["id"],
            name=data["name"],
            sequence_order=int(data["sequence_order"]),
            description=data.get("description") or "",
        )


@dataclass
class WorkItemPhaseState:
    """Mutable progress record for one (work item, phase) pair."""
    work_item_id: str
    phase_id: str
    status: PhaseStatus = PhaseStatus.NOT_STARTED
    completion_percentage: int = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    notes: Optional[str] = None

    def copy(self) -> "WorkItemPhaseState":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "work_item_id": self.work_item_id,
            "phase_id": self.phase_id,
            "status": self.status.value,
            "completion_percentage": self.completion_percentage,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkItemPhaseState":
        status = parse_enum(PhaseStatus, data.get("status"))
        if status is None:
            raise ValidationError(f"Unknown phase status '{data.get('status')}'")
        return cls(
            work_item_id=data["work_item_id"],
            phase_id=data["phase_id"],
            status=status,
            completion_percentage=int(data.get("completion_percentage", 0)),
            start_date=_parse_dt(data.get("start_date")),
            end_date=_parse_dt(data.get("end_date")),
            notes=data.get("notes"),
        )


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def default_phases() -> list[Phase]:
    """The four built-in phases: Design, Configuration, Testing, Promotion."""
    return [Phase.from_dict(p) for p in DEFAULT_PHASES]


def initialize_phase_states(work_item_id: str, phases: Iterable[Phase]) -> list[WorkItemPhaseState]:
    """Create one state per phase for a new work item.

    The first phase starts in_progress at 0%; all others are not_started.
    """
    states = []
    for phase in sorted(phases, key=lambda p: p.sequence_order):
        status = PhaseStatus.IN_PROGRESS if phase.sequence_order == 1 else PhaseStatus.NOT_STARTED
        states.append(WorkItemPhaseState(
            work_item_id=work_item_id,
            phase_id=phase.id,
            status=status,
            completion_percentage=0,
        ))
    return states


class PhaseRegistry:
    """Ordered phase list plus lookup of per-work-item phase states.

    Read-only: nothing here mutates phase definitions or states.
    """

    def __init__(self, phases: Iterable[Phase], states: Iterable[WorkItemPhaseState] = ()):
        ordered = sorted(phases, key=lambda p: p.sequence_order)
        _check_ordering(ordered)

        self._phases = tuple(ordered)
        self._by_id = {p.id: p for p in ordered}
        self._by_order = {p.sequence_order: p for p in ordered}
        self._states: dict[tuple[str, str], WorkItemPhaseState] = {}
        for state in states:
            self._states[(state.work_item_id, state.phase_id)] = state

    @property
    def phases(self) -> tuple[Phase, ...]:
        return self._phases

    @property
    def first(self) -> Phase:
        return self._phases[0]

    @property
    def last(self) -> Phase:
        return self._phases[-1]

    def __len__(self) -> int:
        return len(self._phases)

    def __iter__(self):
        return iter(self._phases)

    def __contains__(self, phase_id) -> bool:
        return phase_id in self._by_id

    def get(self, phase_id: str) -> Phase:
        phase = self._by_id.get(phase_id)
        if phase is None:
            raise NotFoundError("Phase", phase_id)
        return phase

    def next_phase(self, sequence_order: int) -> Optional[Phase]:
        """Phase with sequence_order + 1, or None at the last phase."""
        return self._by_order.get(sequence_order + 1)

    def previous_phase(self, sequence_order: int) -> Optional[Phase]:
        """Phase with sequence_order - 1, or None at the first phase."""
        return self._by_order.get(sequence_order - 1)

    def phase_state(self, work_item_id: str, phase_id: str) -> WorkItemPhaseState:
        """Look up a work item's state for a phase.

        Raises:
            NotFoundError: the work item was never initialized for this
                phase. That's a data-integrity fault, not a user error.
        """
        state = self._states.get((work_item_id, phase_id))
        if state is None:
            raise NotFoundError("WorkItemPhaseState", f"{work_item_id}/{phase_id}")
        return state

    def states_for(self, work_item_id: str) -> dict[str, WorkItemPhaseState]:
        """All phase states for one work item, keyed by phase id."""
        return {
            phase_id: state
            for (item_id, phase_id), state in self._states.items()
            if item_id == work_item_id
        }


def _check_ordering(phases: list[Phase]) -> None:
    if not phases:
        raise ValidationError("At least one phase must be registered")

    ids = [p.id for p in phases]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"Duplicate phase ids: {ids}")

    orders = [p.sequence_order for p in phases]
    if orders != list(range(1, len(phases) + 1)):
        raise ValidationError(
            f"Phase sequence_order must be 1..{len(phases)} with no gaps or duplicates, got {orders}"
        )
