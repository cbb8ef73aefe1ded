"""Tests for phaseflow.workflow.phases module."""

import pytest

from phaseflow.lib.errors import NotFoundError, ValidationError
from phaseflow.lib.types import PhaseStatus
from phaseflow.workflow.phases import (
    Phase,
    PhaseRegistry,
    WorkItemPhaseState,
    default_phases,
    initialize_phase_states,
)


class TestDefaultPhases:

    def test_four_builtin_phases_in_order(self):
        phases = default_phases()
        assert [p.name for p in phases] == ["Design", "Configuration", "Testing", "Promotion"]
        assert [p.sequence_order for p in phases] == [1, 2, 3, 4]

    def test_phase_dict_round_trip(self):
        phase = Phase("qa", "QA", 3, "Quality checks")
        assert Phase.from_dict(phase.to_dict()) == phase


class TestInitializePhaseStates:
    """One state per phase for a new work item."""

    def test_first_phase_in_progress_rest_not_started(self):
        states = initialize_phase_states("EPIC-0001", default_phases())

        assert [s.phase_id for s in states] == ["design", "configuration", "testing", "promotion"]
        assert states[0].status == PhaseStatus.IN_PROGRESS
        assert all(s.status == PhaseStatus.NOT_STARTED for s in states[1:])
        assert all(s.completion_percentage == 0 for s in states)
        assert all(s.work_item_id == "EPIC-0001" for s in states)

    def test_unordered_input_is_sorted(self):
        phases = [Phase("b", "B", 2), Phase("a", "A", 1)]
        states = initialize_phase_states("EPIC-0002", phases)
        assert states[0].phase_id == "a"
        assert states[0].status == PhaseStatus.IN_PROGRESS


class TestWorkItemPhaseState:

    def test_from_dict_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            WorkItemPhaseState.from_dict({
                "work_item_id": "EPIC-0001", "phase_id": "design", "status": "paused",
            })

    def test_dates_serialized_as_iso(self):
        state = WorkItemPhaseState.from_dict({
            "work_item_id": "EPIC-0001",
            "phase_id": "design",
            "status": "completed",
            "completion_percentage": 100,
            "start_date": "2024-03-01T09:00:00+00:00",
            "end_date": "2024-03-04T17:30:00+00:00",
        })
        assert state.start_date.day == 1
        assert state.to_dict()["end_date"] == "2024-03-04T17:30:00+00:00"

    def test_copy_is_independent(self):
        state = WorkItemPhaseState("EPIC-0001", "design")
        clone = state.copy()
        clone.completion_percentage = 50
        assert state.completion_percentage == 0


class TestPhaseRegistry:
    """Ordering, lookup and neighbours."""

    @pytest.fixture
    def registry(self):
        phases = default_phases()
        states = initialize_phase_states("EPIC-0001", phases)
        return PhaseRegistry(reversed(phases), states)

    def test_sorted_by_sequence_order(self, registry):
        assert [p.id for p in registry] == ["design", "configuration", "testing", "promotion"]
        assert registry.first.id == "design"
        assert registry.last.id == "promotion"
        assert len(registry) == 4

    def test_next_and_previous(self, registry):
        assert registry.next_phase(1).id == "configuration"
        assert registry.previous_phase(2).id == "design"
        assert registry.next_phase(4) is None
        assert registry.previous_phase(1) is None

    def test_get_unknown_phase(self, registry):
        with pytest.raises(NotFoundError, match="Phase with identifier 'bogus' not found"):
            registry.get("bogus")

    def test_contains(self, registry):
        assert "testing" in registry
        assert "bogus" not in registry

    def test_phase_state_lookup(self, registry):
        state = registry.phase_state("EPIC-0001", "testing")
        assert state.status == PhaseStatus.NOT_STARTED

    def test_missing_phase_state_is_not_found(self, registry):
        with pytest.raises(NotFoundError):
            registry.phase_state("EPIC-0099", "design")

    def test_states_for(self, registry):
        assert set(registry.states_for("EPIC-0001")) == {"design", "configuration", "testing", "promotion"}
        assert registry.states_for("EPIC-0099") == {}

    def test_empty_registry_rejected(self):
        with pytest.raises(ValidationError):
            PhaseRegistry([])

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate"):
            PhaseRegistry([Phase("a", "A", 1), Phase("a", "A2", 2)])

    @pytest.mark.parametrize("orders", [[1, 3], [0, 1], [1, 1], [2, 3]])
    def test_gapped_or_duplicate_orders_rejected(self, orders):
        phases = [Phase(f"p{i}", f"P{i}", order) for i, order in enumerate(orders)]
        with pytest.raises(ValidationError, match="sequence_order"):
            PhaseRegistry(phases)
