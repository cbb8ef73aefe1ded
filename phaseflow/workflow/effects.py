"""
Side-effect interpreter.

fold_phase_updates() applies UpdatePhaseState effects to a snapshot of
phase states (used both by the state machine for its private copy and by
the service before persisting). dispatch_side_effects() hands the
NotifyUsers and LogAudit effects to their sinks.
"""

import logging
from typing import Iterable, Mapping, Optional, Protocol

from phaseflow.lib.errors import ValidationError
from phaseflow.lib.types import PhaseStatus
from phaseflow.workflow.events import LogAudit, NotifyUsers, UpdatePhaseState
from phaseflow.workflow.phases import WorkItemPhaseState

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"status", "completion_percentage", "start_date", "end_date", "notes"})


class AuditSink(Protocol):
    def record(self, entry: LogAudit) -> None: ...


class NotificationSink(Protocol):
    def send(self, notification: NotifyUsers) -> None: ...


def fold_phase_updates(
    states: Mapping[str, WorkItemPhaseState],
    effects: Iterable,
) -> dict[str, WorkItemPhaseState]:
    """Return a copy of states with every UpdatePhaseState applied in order.

    Other effect types are ignored. The input mapping is not modified.

    Raises:
        ValidationError: an update targets a phase missing from states, or
            names a field that isn't part of WorkItemPhaseState.
    """
    result = {phase_id: state.copy() for phase_id, state in states.items()}

    for effect in effects:
        if not isinstance(effect, UpdatePhaseState):
            continue
        state = result.get(effect.phase_id)
        if state is None:
            raise ValidationError(f"No phase state for phase ID {effect.phase_id}")
        if state.work_item_id != effect.work_item_id:
            raise ValidationError(
                f"Update for {effect.work_item_id} applied to state of {state.work_item_id}"
            )

        unknown = set(effect.updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown phase state fields: {sorted(unknown)}")

        for key, value in effect.updates.items():
            if key == "status":
                value = PhaseStatus(value)
            setattr(state, key, value)

    return result


def dispatch_side_effects(
    effects: Iterable,
    audit: Optional[AuditSink] = None,
    notifier: Optional[NotificationSink] = None,
) -> None:
    """Hand NotifyUsers / LogAudit effects to their sinks, in order.

    Call this only after the phase updates from the same result have been
    persisted.
    """
    for effect in effects:
        if isinstance(effect, NotifyUsers):
            if notifier is not None:
                notifier.send(effect)
            else:
                logger.debug(f"No notifier configured, dropping: {effect.message}")
        elif isinstance(effect, LogAudit):
            if audit is not None:
                audit.record(effect)
            else:
                logger.debug(f"No audit sink configured, dropping: {effect.action}")
