"""Phase lifecycle state machine.

Validates one transition event against a caller-supplied snapshot and
returns a TransitionResult carrying declarative side effects. Never
touches storage.

Usage:
    from phaseflow.workflow.state_machine import PhaseStateMachine

    machine = PhaseStateMachine(context)
    result = machine.process_transition(event)
    if result.success:
        apply(result.side_effects)   # caller's job, in one transaction

Two failure classes:
- Business-rule rejections return success=False with a message meant for
  the end user, and no side effects.
- Structurally invalid events raise ValidationError.
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from phaseflow.lib.constants import (
    COMPLETION_GATE,
    DEFAULT_REGRESSION_PERCENTAGE,
    DEFAULT_RESET_NOTES,
    RESET_NOTES_PREFIX,
)
from phaseflow.lib.errors import NotFoundError, ValidationError
from phaseflow.lib.types import Permissions, PhaseStatus, TransitionType, parse_enum
from phaseflow.workflow.effects import fold_phase_updates
from phaseflow.workflow.events import (
    AvailableTransitions,
    EventMetadata,
    LogAudit,
    NotifyUsers,
    SequenceReport,
    TransitionEvent,
    TransitionResult,
    UpdatePhaseState,
    utcnow,
)
from phaseflow.workflow.fsm import PhaseStatusFSM
from phaseflow.workflow.phases import Phase, PhaseRegistry, WorkItemPhaseState

logger = logging.getLogger(__name__)


@dataclass
class PhaseStateMachineContext:
    """Snapshot the caller loads before submitting an event."""
    work_item_id: str
    current_phase: Phase
    phases: list[Phase]
    phase_states: dict[str, WorkItemPhaseState]  # keyed by phase id
    permissions: Permissions = field(default_factory=Permissions)
    regression_percentage: int = DEFAULT_REGRESSION_PERCENTAGE


@dataclass
class _Outcome:
    """Result of one primitive step, before audit is attached."""
    ok: bool
    status: PhaseStatus
    message: str
    updates: list[UpdatePhaseState] = field(default_factory=list)
    notification: Optional[NotifyUsers] = None


class PhaseStateMachine:
    """Transition engine bound to one work item's snapshot.

    The context is deep-copied on construction. Accepted transitions are
    folded into that private copy, so a machine can process a sequence of
    events and get_available_transitions() always reflects the latest state.
    """

    def __init__(self, context: PhaseStateMachineContext):
        self._ctx = copy.deepcopy(context)
        self._registry = PhaseRegistry(self._ctx.phases)
        if self._ctx.current_phase.id not in self._registry:
            raise ValidationError(f"Current phase {self._ctx.current_phase.id} is not a registered phase")
        self._history: list[TransitionEvent] = []

    @property
    def work_item_id(self) -> str:
        return self._ctx.work_item_id

    @property
    def current_phase(self) -> Phase:
        return self._ctx.current_phase

    def phase_state(self, phase_id: str) -> WorkItemPhaseState:
        """Copy of the machine's current view of one phase state."""
        return self._state_of(phase_id, self._ctx.phase_states).copy()

    # ------------------------------------------------------------------
    # Entry point

    def process_transition(self, event: TransitionEvent) -> TransitionResult:
        """Validate and evaluate one event.

        Raises:
            ValidationError: missing ids, wrong work item, unknown phase or
                event type.
        """
        event = self._validate_event(event)

        handlers = {
            TransitionType.START_PHASE: self._handle_start_phase,
            TransitionType.COMPLETE_PHASE: self._handle_complete_phase,
            TransitionType.MOVE_TO_NEXT: self._handle_move_to_next,
            TransitionType.MOVE_TO_PREVIOUS: self._handle_move_to_previous,
            TransitionType.RESET_PHASE: self._handle_reset_phase,
        }
        result = handlers[event.type](event)

        if result.success:
            self._history.append(event)
            self._ctx.phase_states = fold_phase_updates(self._ctx.phase_states, result.side_effects)
            if result.new_phase_id:
                self._ctx.current_phase = self._registry.get(result.new_phase_id)
            logger.info(f"[PHASE] {self.work_item_id}: {event.type.value} accepted: {result.message}")
        else:
            logger.info(f"[PHASE] {self.work_item_id}: {event.type.value} rejected: {result.message}")

        return result

    def _validate_event(self, event: TransitionEvent) -> TransitionEvent:
        event_type = parse_enum(TransitionType, getattr(event, "type", None))
        if event_type is None:
            raise ValidationError(f"Unknown transition event type: {getattr(event, 'type', None)}")

        if not event.work_item_id or not event.current_phase_id:
            raise ValidationError("Work item ID and current phase ID are required for phase transitions")

        if event.work_item_id != self._ctx.work_item_id:
            raise ValidationError(
                f"Event work item {event.work_item_id} does not match context work item {self._ctx.work_item_id}"
            )

        for phase_id in (event.current_phase_id, event.target_phase_id):
            if phase_id is not None:
                self._state_of(phase_id, self._ctx.phase_states)

        metadata = event.metadata or EventMetadata()
        if metadata.timestamp is None:
            metadata = replace(metadata, timestamp=utcnow())
        return replace(event, type=event_type, metadata=metadata)

    # ------------------------------------------------------------------
    # Handlers

    def _handle_start_phase(self, event: TransitionEvent) -> TransitionResult:
        phase = self._phase_of(event.target_phase_id or event.current_phase_id)
        outcome = self._start(phase, self._ctx.phase_states, event.metadata.timestamp)
        # starting a phase other than the current one moves the pointer to it
        new_phase_id = phase.id if phase.id != self._ctx.current_phase.id else None
        return self._finish(outcome, event, "PHASE_STARTED", (phase.id,), new_phase_id=new_phase_id)

    def _handle_complete_phase(self, event: TransitionEvent) -> TransitionResult:
        phase = self._phase_of(event.target_phase_id or event.current_phase_id)
        outcome = self._complete(phase, self._ctx.phase_states, event)
        return self._finish(outcome, event, "PHASE_COMPLETED", (phase.id,))

    def _handle_reset_phase(self, event: TransitionEvent) -> TransitionResult:
        phase = self._phase_of(event.target_phase_id or event.current_phase_id)
        outcome = self._reset(phase, self._ctx.phase_states, event)
        return self._finish(outcome, event, "PHASE_RESET", (phase.id,))

    def _handle_move_to_next(self, event: TransitionEvent) -> TransitionResult:
        current = self._ctx.current_phase
        current_state = self._state_of(current.id, self._ctx.phase_states)
        next_phase = self._registry.next_phase(current.sequence_order)

        if next_phase is None:
            return _rejected(current_state.status, "Already at the final phase")

        completed = self._complete(current, self._ctx.phase_states, event)
        if not completed.ok:
            return _rejected(completed.status, completed.message)

        # Start is evaluated against the snapshot with the completion applied
        working = fold_phase_updates(self._ctx.phase_states, completed.updates)
        started = self._start(next_phase, working, event.metadata.timestamp)
        if not started.ok:
            return _rejected(current_state.status, started.message)

        outcome = _Outcome(
            ok=True,
            status=PhaseStatus.IN_PROGRESS,
            message=f"Moved from {current.name} to {next_phase.name}",
            updates=completed.updates + started.updates,
            notification=completed.notification,
        )
        return self._finish(outcome, event, "PHASE_ADVANCED", (current.id, next_phase.id), new_phase_id=next_phase.id)

    def _handle_move_to_previous(self, event: TransitionEvent) -> TransitionResult:
        current = self._ctx.current_phase
        current_state = self._state_of(current.id, self._ctx.phase_states)
        previous = self._registry.previous_phase(current.sequence_order)

        if previous is None:
            return _rejected(current_state.status, "Already at the first phase")

        if not self._ctx.permissions.can_revert:
            return _rejected(current_state.status, "Insufficient permissions to revert to previous phase")

        reset = self._reset(current, self._ctx.phase_states, event)
        if not reset.ok:
            return _rejected(reset.status, reset.message)

        previous_state = self._state_of(previous.id, self._ctx.phase_states)
        fsm = PhaseStatusFSM(previous_state.status, label=f"{self.work_item_id}/{previous.id}")
        if fsm.can("reopen"):
            fsm.reopen()
        elif fsm.can("start"):
            # previous phase was reset on its own; bring it back all the same
            fsm.start()

        reopen = {
            "status": fsm.status,
            "end_date": None,
            "completion_percentage": self._ctx.regression_percentage,
        }
        if previous_state.start_date is None:
            reopen["start_date"] = event.metadata.timestamp

        outcome = _Outcome(
            ok=True,
            status=PhaseStatus.IN_PROGRESS,
            message=f"Reverted from {current.name} to {previous.name}",
            updates=reset.updates + [UpdatePhaseState(self.work_item_id, previous.id, reopen)],
        )
        return self._finish(outcome, event, "PHASE_REVERTED", (current.id, previous.id), new_phase_id=previous.id)

    # ------------------------------------------------------------------
    # Primitive steps. Each works on an explicit states mapping so composite
    # transitions can evaluate later steps against earlier ones.

    def _start(self, phase: Phase, states: dict, timestamp: datetime) -> _Outcome:
        state = self._state_of(phase.id, states)
        fsm = PhaseStatusFSM(state.status, label=f"{self.work_item_id}/{phase.id}")

        if not fsm.can("start"):
            if state.status == PhaseStatus.IN_PROGRESS:
                return _Outcome(False, state.status, "Phase is already in progress")
            return _Outcome(False, state.status, "Cannot start a completed phase. Use reset_phase first if needed.")

        incomplete = [
            p for p in self._registry
            if p.sequence_order < phase.sequence_order
            and self._state_of(p.id, states).status != PhaseStatus.COMPLETED
        ]
        if incomplete:
            names = ", ".join(p.name for p in incomplete)
            return _Outcome(
                False, state.status,
                f"Cannot start {phase.name}. Please complete the following phases first: {names}",
            )

        fsm.start()
        return _Outcome(
            ok=True,
            status=fsm.status,
            message=f"Phase {phase.name} started successfully",
            updates=[UpdatePhaseState(self.work_item_id, phase.id, {
                "status": fsm.status,
                "start_date": timestamp,
                "completion_percentage": 0,
            })],
        )

    def _complete(self, phase: Phase, states: dict, event: TransitionEvent) -> _Outcome:
        state = self._state_of(phase.id, states)
        fsm = PhaseStatusFSM(state.status, label=f"{self.work_item_id}/{phase.id}")

        if not fsm.can("complete"):
            if state.status == PhaseStatus.COMPLETED:
                return _Outcome(False, state.status, "Phase is already completed")
            return _Outcome(False, state.status, "Cannot complete a phase that has not been started")

        if state.completion_percentage < COMPLETION_GATE:
            return _Outcome(
                False, state.status,
                f"Phase must be at least {COMPLETION_GATE}% complete. Current: {state.completion_percentage}%",
            )

        fsm.complete()
        updates = {
            "status": fsm.status,
            "end_date": event.metadata.timestamp,
            "completion_percentage": 100,
        }
        if event.metadata.notes:
            updates["notes"] = event.metadata.notes

        return _Outcome(
            ok=True,
            status=fsm.status,
            message=f"Phase {phase.name} completed successfully",
            updates=[UpdatePhaseState(self.work_item_id, phase.id, updates)],
            notification=NotifyUsers(
                work_item_id=self.work_item_id,
                phase_id=phase.id,
                kind="phase_completion",
                message=f"Phase {phase.name} has been completed",
            ),
        )

    def _reset(self, phase: Phase, states: dict, event: TransitionEvent) -> _Outcome:
        state = self._state_of(phase.id, states)
        fsm = PhaseStatusFSM(state.status, label=f"{self.work_item_id}/{phase.id}")

        if not fsm.can("reset"):
            return _Outcome(False, state.status, "Phase is already in not started state")

        fsm.reset()
        notes = event.metadata.notes
        return _Outcome(
            ok=True,
            status=fsm.status,
            message=f"Phase {phase.name} has been reset",
            updates=[UpdatePhaseState(self.work_item_id, phase.id, {
                "status": fsm.status,
                "start_date": None,
                "end_date": None,
                "completion_percentage": 0,
                "notes": f"{RESET_NOTES_PREFIX} {notes}" if notes else DEFAULT_RESET_NOTES,
            })],
        )

    def _finish(
        self,
        outcome: _Outcome,
        event: TransitionEvent,
        action: str,
        phase_ids: tuple[str, ...],
        new_phase_id: Optional[str] = None,
    ) -> TransitionResult:
        """Attach notify/audit effects to a successful outcome."""
        if not outcome.ok:
            return _rejected(outcome.status, outcome.message)

        effects: list = list(outcome.updates)
        if outcome.notification is not None:
            effects.append(outcome.notification)
        effects.append(LogAudit(
            action=action,
            work_item_id=self.work_item_id,
            phase_ids=phase_ids,
            actor_id=event.metadata.actor_id,
            reason=event.metadata.notes,
            timestamp=event.metadata.timestamp,
        ))

        return TransitionResult(
            success=True,
            new_status=outcome.status,
            new_phase_id=new_phase_id,
            message=outcome.message,
            side_effects=effects,
        )

    # ------------------------------------------------------------------
    # Lookups

    def _state_of(self, phase_id: str, states: dict) -> WorkItemPhaseState:
        state = states.get(phase_id)
        if state is None:
            raise ValidationError(f"Phase state not found for phase ID {phase_id}")
        return state

    def _phase_of(self, phase_id: str) -> Phase:
        try:
            return self._registry.get(phase_id)
        except NotFoundError:
            raise ValidationError(f"Phase {phase_id} has a state but no definition") from None

    # ------------------------------------------------------------------
    # Read-only views

    def get_available_transitions(self) -> AvailableTransitions:
        """Which events are legal for the current phase, computed fresh."""
        current = self._ctx.current_phase
        fsm = PhaseStatusFSM(self._state_of(current.id, self._ctx.phase_states).status)
        has_next = self._registry.next_phase(current.sequence_order) is not None
        has_previous = self._registry.previous_phase(current.sequence_order) is not None
        perms = self._ctx.permissions

        return AvailableTransitions(
            can_start=fsm.can("start"),
            can_complete=fsm.can("complete"),
            can_move_to_next=fsm.can("complete") and has_next,
            can_move_to_previous=has_previous and perms.can_revert,
            can_reset=fsm.can("reset"),
            can_skip=perms.can_skip,
        )

    def get_transition_history(self) -> list[TransitionEvent]:
        return list(self._history)

    def validate_transition_sequence(self) -> SequenceReport:
        """Flag every move_to_next not directly preceded by complete_phase.

        A debugging aid over already-accepted history, not a precondition.
        """
        violations = []
        for previous, current in zip(self._history, self._history[1:]):
            if current.type == TransitionType.MOVE_TO_NEXT and previous.type != TransitionType.COMPLETE_PHASE:
                violations.append(
                    "Invalid transition: Cannot move to next phase without completing "
                    f"current phase at {current.metadata.timestamp.isoformat()}"
                )
        return SequenceReport(is_valid=not violations, violations=violations)


def _rejected(status: PhaseStatus, message: str) -> TransitionResult:
    return TransitionResult(success=False, new_status=status, message=message, side_effects=[])


def process_transition(context: PhaseStateMachineContext, event: TransitionEvent) -> TransitionResult:
    """Stateless entry point: evaluate one event against a snapshot."""
    return PhaseStateMachine(context).process_transition(event)


def get_available_transitions(context: PhaseStateMachineContext) -> AvailableTransitions:
    """Stateless entry point for presentation layers."""
    return PhaseStateMachine(context).get_available_transitions()
