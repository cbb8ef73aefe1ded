"""
Phase service: the caller side of the core.

Each mutating operation runs under the epic's lock:
  load snapshot -> compute (state machine / aggregator) -> save atomically
and only then hands notifications and audit entries to their sinks.

Epic status policy: an epic is `completed` exactly when its final phase
is completed. The hierarchy rollup still writes not_started/in_progress
below 100%, and this module re-applies the phase-driven status afterwards,
so the two signals never overwrite each other silently.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from phaseflow.audit import AuditLog
from phaseflow.hierarchy.aggregator import (
    ProgressAggregator,
    RollupResult,
    apply_leaf_change,
    derive_status,
    round_half_up,
)
from phaseflow.hierarchy.models import WorkNode
from phaseflow.lib.config import TrackerConfig, load_phase_definitions, load_tracker_config
from phaseflow.lib.errors import ValidationError
from phaseflow.lib.locking import epic_lock
from phaseflow.lib.types import NodeLevel, Permissions, PhaseStatus, TransitionType, WorkStatus
from phaseflow.notifications import Notifier
from phaseflow.store import EpicRecord, EpicStore
from phaseflow.workflow.effects import dispatch_side_effects, fold_phase_updates
from phaseflow.workflow.events import (
    AvailableTransitions,
    EventMetadata,
    TransitionEvent,
    TransitionResult,
    UpdatePhaseState,
)
from phaseflow.workflow.phases import Phase, PhaseRegistry, WorkItemPhaseState
from phaseflow.workflow.state_machine import (
    PhaseStateMachineContext,
    get_available_transitions,
    process_transition,
)

logger = logging.getLogger(__name__)


@dataclass
class PhaseSummary:
    overall_completion: int
    phase_progress: dict[str, int]             # phase id -> completion
    current_phase: Phase
    next_phase: Optional[Phase]


@dataclass
class TimelineEntry:
    phase: Phase
    state: WorkItemPhaseState
    is_current: bool
    is_accessible: bool
    actual_duration_days: Optional[int] = None


class PhaseService:
    """Applies state machine and rollup results to the store."""

    def __init__(
        self,
        data_dir: Path,
        config: Optional[TrackerConfig] = None,
        audit: Optional[AuditLog] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.data_dir = Path(data_dir)
        self.config = config or load_tracker_config(self.data_dir)
        self.store = EpicStore(self.data_dir, lock_timeout=self.config.lock_timeout)
        self.audit = audit or AuditLog(self.data_dir / self.config.audit_log)
        self.notifier = notifier or Notifier(desktop=self.config.desktop_notifications)

    # ------------------------------------------------------------------
    # Setup and CRUD

    def bootstrap(self, definitions: Optional[list[dict]] = None) -> list[Phase]:
        """Register phase definitions (phases.yaml or defaults) once."""
        if definitions is None:
            definitions = load_phase_definitions(self.data_dir)
        return self.store.init_phases(definitions)

    def create_epic(self, title: str) -> EpicRecord:
        return self.store.create_epic(title)

    def add_story(self, epic_id: str, title: str, phase_id: Optional[str] = None) -> WorkNode:
        """Add a story scheduled into phase_id (default: the current phase)."""
        registry = self.store.registry()
        with epic_lock(self.data_dir, epic_id, self.config.lock_timeout):
            record = self.store.load_epic(epic_id)
            phase_id = phase_id or record.current_phase_id
            if phase_id not in registry:
                raise ValidationError(f"Unknown phase '{phase_id}'")
            return self._add_node(record, NodeLevel.STORY, epic_id, title, phase_id=phase_id)

    def add_task(self, epic_id: str, story_id: str, title: str) -> WorkNode:
        with epic_lock(self.data_dir, epic_id, self.config.lock_timeout):
            record = self.store.load_epic(epic_id)
            return self._add_node(record, NodeLevel.TASK, story_id, title)

    def add_subtask(self, epic_id: str, task_id: str, title: str) -> WorkNode:
        with epic_lock(self.data_dir, epic_id, self.config.lock_timeout):
            record = self.store.load_epic(epic_id)
            return self._add_node(record, NodeLevel.SUBTASK, task_id, title)

    def _add_node(self, record: EpicRecord, level: NodeLevel, parent_id: str, title: str, phase_id=None) -> WorkNode:
        node = WorkNode(
            id=self.store.allocate_id(level),
            level=level,
            title=title,
            parent_id=parent_id,
            phase_id=phase_id,
        )
        record.tree.add(node)

        # a new 0% child lowers its ancestors' means
        ProgressAggregator(record.tree).recompute_ancestors(node.id)
        self._sync_epic_status(record)
        self.store.save_epic(record)
        logger.info(f"[STORE] {record.id}: added {level.value} {node.id} under {parent_id}")
        return node

    # ------------------------------------------------------------------
    # Phase lifecycle

    def build_context(
        self,
        record: EpicRecord,
        registry: PhaseRegistry,
        permissions: Optional[Permissions] = None,
    ) -> PhaseStateMachineContext:
        return PhaseStateMachineContext(
            work_item_id=record.id,
            current_phase=registry.get(record.current_phase_id),
            phases=list(registry.phases),
            phase_states=record.phase_states,
            permissions=permissions or Permissions(),
            regression_percentage=self.config.regression_percentage,
        )

    def transition(
        self,
        epic_id: str,
        event_type: TransitionType,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
        permissions: Optional[Permissions] = None,
        target_phase_id: Optional[str] = None,
    ) -> TransitionResult:
        """Run one phase transition and persist its effects.

        Rejections come back as success=False with nothing written.
        """
        registry = self.store.registry()
        with epic_lock(self.data_dir, epic_id, self.config.lock_timeout):
            record = self.store.load_epic(epic_id)
            context = self.build_context(record, registry, permissions)
            event = TransitionEvent(
                type=event_type,
                work_item_id=epic_id,
                current_phase_id=record.current_phase_id,
                target_phase_id=target_phase_id,
                metadata=EventMetadata(actor_id=actor_id, notes=notes),
            )

            result = process_transition(context, event)
            if not result.success:
                return result

            record.phase_states = fold_phase_updates(record.phase_states, result.side_effects)
            if result.new_phase_id:
                record.current_phase_id = result.new_phase_id
            self._sync_epic_status(record, registry)
            self.store.save_epic(record)

        dispatch_side_effects(result.side_effects, audit=self.audit, notifier=self.notifier)
        return result

    def available_transitions(self, epic_id: str, permissions: Optional[Permissions] = None) -> AvailableTransitions:
        registry = self.store.registry()
        record = self.store.load_epic(epic_id)
        return get_available_transitions(self.build_context(record, registry, permissions))

    # ------------------------------------------------------------------
    # Progress

    def update_subtask(
        self,
        epic_id: str,
        subtask_id: str,
        status: Optional[WorkStatus] = None,
        completion_percentage: Optional[int] = None,
    ) -> RollupResult:
        """Change a leaf and roll the change up to the epic."""
        if status is None and completion_percentage is None:
            raise ValidationError("Nothing to update: give a status or a completion percentage")

        with epic_lock(self.data_dir, epic_id, self.config.lock_timeout):
            record = self.store.load_epic(epic_id)
            apply_leaf_change(record.tree, subtask_id, status, completion_percentage)
            result = ProgressAggregator(record.tree).recompute_progress(subtask_id)
            self._sync_epic_status(record)
            self.store.save_epic(record)
        return result

    def sync_phase_progress(self, epic_id: str, phase_id: str) -> Optional[int]:
        """Copy measured story progress into an in-progress phase's state.

        Returns the completion written, or None when nothing was written
        (no stories in the phase, or the phase isn't in progress). Status is
        left alone: completing still goes through complete_phase.
        """
        with epic_lock(self.data_dir, epic_id, self.config.lock_timeout):
            record = self.store.load_epic(epic_id)
            state = record.phase_states.get(phase_id)
            if state is None:
                raise ValidationError(f"Phase state not found for phase ID {phase_id}")

            completion = ProgressAggregator(record.tree).phase_progress(epic_id, phase_id)
            if completion is None:
                logger.info(f"[PHASE] {epic_id}: no stories in {phase_id}, progress unchanged")
                return None
            if state.status != PhaseStatus.IN_PROGRESS:
                logger.info(f"[PHASE] {epic_id}: {phase_id} is {state.status.value}, progress unchanged")
                return None

            update = UpdatePhaseState(epic_id, phase_id, {"completion_percentage": completion})
            record.phase_states = fold_phase_updates(record.phase_states, [update])
            self.store.save_epic(record)

        logger.info(f"[PHASE] {epic_id}: {phase_id} progress set to {completion}%")
        return completion

    def phase_summary(self, epic_id: str) -> PhaseSummary:
        registry = self.store.registry()
        record = self.store.load_epic(epic_id)
        current = registry.get(record.current_phase_id)

        progress = {p.id: record.phase_states[p.id].completion_percentage for p in registry}
        overall = round_half_up(sum(progress.values()), len(progress))
        return PhaseSummary(
            overall_completion=overall,
            phase_progress=progress,
            current_phase=current,
            next_phase=registry.next_phase(current.sequence_order),
        )

    def phase_timeline(self, epic_id: str) -> list[TimelineEntry]:
        registry = self.store.registry()
        record = self.store.load_epic(epic_id)
        current = registry.get(record.current_phase_id)

        entries = []
        for phase in registry:
            state = record.phase_states[phase.id]
            duration = None
            if state.start_date and state.end_date:
                seconds = (state.end_date - state.start_date).total_seconds()
                duration = math.ceil(seconds / 86400)
            entries.append(TimelineEntry(
                phase=phase,
                state=state,
                is_current=phase.id == current.id,
                is_accessible=phase.sequence_order <= current.sequence_order,
                actual_duration_days=duration,
            ))
        return entries

    # ------------------------------------------------------------------

    def _sync_epic_status(self, record: EpicRecord, registry: Optional[PhaseRegistry] = None) -> None:
        """Apply the phase-driven epic status on top of the rollup."""
        registry = registry or self.store.registry()
        epic = record.epic
        final_done = record.phase_states[registry.last.id].status == PhaseStatus.COMPLETED

        if final_done:
            if epic.status != WorkStatus.COMPLETED:
                logger.info(f"[PHASE] {record.id}: final phase completed, epic completed")
            epic.status = WorkStatus.COMPLETED
        elif epic.status == WorkStatus.COMPLETED:
            # final phase was reopened or reset
            derived = derive_status(epic.completion_percentage)
            epic.status = WorkStatus.IN_PROGRESS if derived == WorkStatus.COMPLETED else derived
