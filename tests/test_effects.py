"""Tests for phaseflow.workflow.effects module."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from phaseflow.lib.errors import ValidationError
from phaseflow.lib.types import PhaseStatus
from phaseflow.workflow.effects import dispatch_side_effects, fold_phase_updates
from phaseflow.workflow.events import LogAudit, NotifyUsers, UpdatePhaseState
from phaseflow.workflow.phases import WorkItemPhaseState


@pytest.fixture
def states():
    return {
        "design": WorkItemPhaseState("EPIC-0001", "design", PhaseStatus.IN_PROGRESS, 90),
        "configuration": WorkItemPhaseState("EPIC-0001", "configuration"),
    }


class TestFoldPhaseUpdates:

    def test_applies_updates_in_order(self, states):
        effects = [
            UpdatePhaseState("EPIC-0001", "design", {"status": "completed", "completion_percentage": 100}),
            NotifyUsers("EPIC-0001", "design", "phase_completion", "done"),
            UpdatePhaseState("EPIC-0001", "configuration", {"status": PhaseStatus.IN_PROGRESS}),
        ]
        folded = fold_phase_updates(states, effects)

        assert folded["design"].status == PhaseStatus.COMPLETED
        assert folded["design"].completion_percentage == 100
        assert folded["configuration"].status == PhaseStatus.IN_PROGRESS

    def test_input_not_modified(self, states):
        fold_phase_updates(states, [UpdatePhaseState("EPIC-0001", "design", {"completion_percentage": 10})])
        assert states["design"].completion_percentage == 90

    def test_later_update_wins(self, states):
        folded = fold_phase_updates(states, [
            UpdatePhaseState("EPIC-0001", "design", {"notes": "first"}),
            UpdatePhaseState("EPIC-0001", "design", {"notes": "second"}),
        ])
        assert folded["design"].notes == "second"

    def test_unknown_phase(self, states):
        with pytest.raises(ValidationError, match="No phase state"):
            fold_phase_updates(states, [UpdatePhaseState("EPIC-0001", "bogus", {"notes": "x"})])

    def test_wrong_work_item(self, states):
        with pytest.raises(ValidationError):
            fold_phase_updates(states, [UpdatePhaseState("EPIC-0002", "design", {"notes": "x"})])

    def test_unknown_field(self, states):
        with pytest.raises(ValidationError, match="Unknown phase state fields"):
            fold_phase_updates(states, [UpdatePhaseState("EPIC-0001", "design", {"owner": "bob"})])


class TestDispatchSideEffects:

    def test_routes_to_sinks_in_order(self):
        audit = MagicMock()
        notifier = MagicMock()
        notify = NotifyUsers("EPIC-0001", "design", "phase_completion", "Phase Design has been completed")
        log = LogAudit("PHASE_COMPLETED", "EPIC-0001", ("design",), actor_id="u1")

        dispatch_side_effects(
            [UpdatePhaseState("EPIC-0001", "design", {}), notify, log],
            audit=audit,
            notifier=notifier,
        )

        notifier.send.assert_called_once_with(notify)
        audit.record.assert_called_once_with(log)

    def test_missing_sinks_are_skipped(self):
        dispatch_side_effects([
            NotifyUsers("EPIC-0001", "design", "phase_completion", "msg"),
            LogAudit("PHASE_RESET", "EPIC-0001", ("design",)),
        ])


class TestEffectSerialization:

    def test_update_to_dict_flattens_enums_and_dates(self):
        when = datetime(2024, 3, 1, tzinfo=timezone.utc)
        data = UpdatePhaseState("EPIC-0001", "design", {
            "status": PhaseStatus.COMPLETED, "end_date": when, "notes": None,
        }).to_dict()
        assert data["type"] == "update_phase_state"
        assert data["updates"] == {"status": "completed", "end_date": when.isoformat(), "notes": None}

    def test_audit_to_dict(self):
        data = LogAudit("PHASE_ADVANCED", "EPIC-0001", ("design", "configuration")).to_dict()
        assert data["type"] == "log_audit"
        assert data["phase_ids"] == ["design", "configuration"]
        assert data["timestamp"] is None
