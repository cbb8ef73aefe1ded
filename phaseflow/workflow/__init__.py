"""
Phase lifecycle: phase registry, per-phase status graph and the
transition engine that returns declarative side effects.
"""

from phaseflow.workflow.events import (
    AvailableTransitions,
    EventMetadata,
    LogAudit,
    NotifyUsers,
    SequenceReport,
    TransitionEvent,
    TransitionResult,
    UpdatePhaseState,
)
from phaseflow.workflow.phases import (
    Phase,
    PhaseRegistry,
    WorkItemPhaseState,
    default_phases,
    initialize_phase_states,
)
from phaseflow.workflow.state_machine import (
    PhaseStateMachine,
    PhaseStateMachineContext,
    get_available_transitions,
    process_transition,
)

__all__ = [
    "AvailableTransitions",
    "EventMetadata",
    "LogAudit",
    "NotifyUsers",
    "SequenceReport",
    "TransitionEvent",
    "TransitionResult",
    "UpdatePhaseState",
    "Phase",
    "PhaseRegistry",
    "WorkItemPhaseState",
    "default_phases",
    "initialize_phase_states",
    "PhaseStateMachine",
    "PhaseStateMachineContext",
    "get_available_transitions",
    "process_transition",
]
