"""Tests for phaseflow.store module."""

import json

import pytest

from phaseflow.lib.constants import DEFAULT_PHASES
from phaseflow.lib.errors import NotFoundError, SchemaValidationError, ValidationError
from phaseflow.lib.types import NodeLevel, PhaseStatus, WorkStatus
from phaseflow.store import EpicStore


@pytest.fixture
def store(tmp_path):
    s = EpicStore(tmp_path / "data")
    s.init_phases(DEFAULT_PHASES)
    return s


class TestInitPhases:

    def test_writes_phases_json(self, store):
        assert store.is_initialized()
        data = json.loads(store.phases_path.read_text())
        assert [p["id"] for p in data] == ["design", "configuration", "testing", "promotion"]

    def test_second_init_keeps_existing(self, store):
        phases = store.init_phases([{"id": "other", "name": "Other", "sequence_order": 1}])
        assert [p.id for p in phases] == ["design", "configuration", "testing", "promotion"]

    def test_bad_ordering_rejected(self, tmp_path):
        s = EpicStore(tmp_path)
        with pytest.raises(ValidationError):
            s.init_phases([
                {"id": "a", "name": "A", "sequence_order": 1},
                {"id": "b", "name": "B", "sequence_order": 3},
            ])
        assert not s.is_initialized()

    def test_load_before_init(self, tmp_path):
        with pytest.raises(NotFoundError, match="Phase registry"):
            EpicStore(tmp_path).load_phases()

    def test_registry(self, store):
        assert store.registry().last.id == "promotion"


class TestAllocateId:

    def test_sequential_per_prefix(self, store):
        assert store.allocate_id(NodeLevel.STORY) == "STORY-0001"
        assert store.allocate_id(NodeLevel.STORY) == "STORY-0002"
        assert store.allocate_id("task") == "TASK-0001"

        counters = json.loads(store.counters_path.read_text())
        assert counters == {"STORY": 2, "TASK": 1}


class TestEpics:

    def test_create_and_load(self, store):
        created = store.create_epic("Checkout revamp")
        loaded = store.load_epic(created.id)

        assert loaded.id == "EPIC-0001"
        assert loaded.current_phase_id == "design"
        assert loaded.epic.title == "Checkout revamp"
        assert loaded.epic.level == NodeLevel.EPIC
        assert loaded.phase_states["design"].status == PhaseStatus.IN_PROGRESS
        assert loaded.phase_states["promotion"].status == PhaseStatus.NOT_STARTED

    def test_create_requires_phases(self, tmp_path):
        with pytest.raises(NotFoundError):
            EpicStore(tmp_path).create_epic("Nope")

    def test_load_missing(self, store):
        with pytest.raises(NotFoundError, match="Epic with identifier 'EPIC-0042' not found"):
            store.load_epic("EPIC-0042")

    def test_save_round_trips_tree(self, store):
        record = store.create_epic("Epic")
        record.epic.status = WorkStatus.IN_PROGRESS
        record.phase_states["design"].completion_percentage = 40
        store.save_epic(record)

        loaded = store.load_epic(record.id)
        assert loaded.epic.status == WorkStatus.IN_PROGRESS
        assert loaded.phase_states["design"].completion_percentage == 40

    def test_invalid_record_not_written(self, store):
        record = store.create_epic("Epic")
        record.phase_states["design"].completion_percentage = 150
        with pytest.raises(SchemaValidationError):
            store.save_epic(record)
        assert store.load_epic(record.id).phase_states["design"].completion_percentage == 0
        assert list(store.epics_dir.glob(".*.tmp")) == []

    def test_list_skips_invalid_files(self, store, caplog):
        store.create_epic("One")
        store.create_epic("Two")
        (store.epics_dir / "EPIC-0099.json").write_text("{broken")

        records = store.list_epics()
        assert [r.id for r in records] == ["EPIC-0001", "EPIC-0002"]
        assert "Skipping invalid epic file" in caplog.text

    def test_list_empty(self, tmp_path):
        assert EpicStore(tmp_path).list_epics() == []
