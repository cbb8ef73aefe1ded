"""Per-phase status graph using the transitions library.

Each WorkItemPhaseState moves through:

    not_started --start--> in_progress --complete--> completed
         ^                      |                        |
         +-------reset----------+--------reset-----------+
                                ^                        |
                                +--------reopen----------+

The phase state machine asks this graph whether a trigger is legal before
applying its own business rules (ordering, completion gate, permissions).
Nothing here persists anything.
"""

import logging

from transitions import Machine

from phaseflow.lib.types import PhaseStatus

logger = logging.getLogger(__name__)


STATES = [s.value for s in PhaseStatus]

TRANSITIONS = [
    {"trigger": "start", "source": "not_started", "dest": "in_progress"},
    {"trigger": "complete", "source": "in_progress", "dest": "completed"},

    # move_to_previous reopens the prior phase
    {"trigger": "reopen", "source": "completed", "dest": "in_progress"},

    {"trigger": "reset", "source": "in_progress", "dest": "not_started"},
    {"trigger": "reset", "source": "completed", "dest": "not_started"},
]


class PhaseStatusFSM:
    """State machine for one phase's status.

    Wraps the transitions library: the model's `state` is the phase status
    value, and each trigger becomes a method (`start()`, `complete()`, ...).
    """

    def __init__(self, status: PhaseStatus, label: str = ""):
        self.label = label
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=PhaseStatus(status).value,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        logger.debug(
            f"[FSM] {self.label}: {event.transition.source} -> {event.transition.dest} ({event.event.name})"
        )

    @property
    def status(self) -> PhaseStatus:
        return PhaseStatus(self.state)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
