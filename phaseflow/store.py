"""
File-backed store for phase registry and epic records.

Layout under the data directory:
  phases.json              bootstrapped phase definitions (immutable)
  counters.json            last allocated number per ID prefix
  epics/EPIC-xxxx.json     one record per epic: phase states + work tree
  locks/                   flock files (see lib/locking.py)

Every read and write is checked against the JSON schemas in
phaseflow/schemas. Epic files are replaced atomically, so a set of side
effects lands all-or-nothing.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from phaseflow.hierarchy.models import WorkNode, WorkTree
from phaseflow.lib.constants import DEFAULT_LOCK_TIMEOUT, ID_PREFIXES
from phaseflow.lib.errors import NotFoundError, ValidationError
from phaseflow.lib.locking import registry_lock
from phaseflow.lib.types import NodeLevel
from phaseflow.lib.validate import validate_before_write, validate_file
from phaseflow.workflow.events import utcnow
from phaseflow.workflow.phases import Phase, PhaseRegistry, WorkItemPhaseState, initialize_phase_states

logger = logging.getLogger(__name__)


@dataclass
class EpicRecord:
    """Everything persisted for one epic."""
    id: str
    current_phase_id: str
    created: str                               # ISO timestamp
    phase_states: dict[str, WorkItemPhaseState]
    tree: WorkTree

    @property
    def epic(self) -> WorkNode:
        return self.tree.get(self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "current_phase_id": self.current_phase_id,
            "created": self.created,
            "phase_states": [s.to_dict() for s in self.phase_states.values()],
            "nodes": [n.to_dict() for n in self.tree],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EpicRecord":
        states = [WorkItemPhaseState.from_dict(s) for s in data["phase_states"]]
        return cls(
            id=data["id"],
            current_phase_id=data["current_phase_id"],
            created=data["created"],
            phase_states={s.phase_id: s for s in states},
            tree=WorkTree(WorkNode.from_dict(n) for n in data["nodes"]),
        )


def _atomic_write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class EpicStore:
    """JSON files under a data directory."""

    def __init__(self, data_dir: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.data_dir = Path(data_dir)
        self.lock_timeout = lock_timeout

    @property
    def phases_path(self) -> Path:
        return self.data_dir / "phases.json"

    @property
    def counters_path(self) -> Path:
        return self.data_dir / "counters.json"

    @property
    def epics_dir(self) -> Path:
        return self.data_dir / "epics"

    def epic_path(self, epic_id: str) -> Path:
        return self.epics_dir / f"{epic_id}.json"

    # ------------------------------------------------------------------
    # Phase registry

    def is_initialized(self) -> bool:
        return self.phases_path.exists()

    def init_phases(self, definitions: Iterable[dict]) -> list[Phase]:
        """Write phases.json once. Returns existing phases if already set up."""
        with registry_lock(self.data_dir, self.lock_timeout):
            if self.phases_path.exists():
                return self.load_phases()

            phases = [Phase.from_dict(d) for d in definitions]
            PhaseRegistry(phases)  # ordering check
            data = [p.to_dict() for p in sorted(phases, key=lambda p: p.sequence_order)]
            validate_before_write(data, "phases", self.phases_path)
            _atomic_write_json(self.phases_path, data)
            logger.info(f"[STORE] Registered {len(data)} phases in {self.phases_path}")
            return [Phase.from_dict(d) for d in data]

    def load_phases(self) -> list[Phase]:
        if not self.phases_path.exists():
            raise NotFoundError("Phase registry", str(self.phases_path))
        data = validate_file(self.phases_path, "phases")
        return [Phase.from_dict(d) for d in data]

    def registry(self) -> PhaseRegistry:
        return PhaseRegistry(self.load_phases())

    # ------------------------------------------------------------------
    # IDs

    def allocate_id(self, level: NodeLevel) -> str:
        """Allocate the next EPIC-/STORY-/TASK-/SUBTASK- id."""
        prefix = ID_PREFIXES[NodeLevel(level).value]
        with registry_lock(self.data_dir, self.lock_timeout):
            counters = {}
            if self.counters_path.exists():
                counters = validate_file(self.counters_path, "counters")
            number = counters.get(prefix, 0) + 1
            counters[prefix] = number
            validate_before_write(counters, "counters", self.counters_path)
            _atomic_write_json(self.counters_path, counters)
        return f"{prefix}-{number:04d}"

    # ------------------------------------------------------------------
    # Epics

    def create_epic(self, title: str) -> EpicRecord:
        """Create an epic with one phase state per registered phase."""
        phases = self.load_phases()
        epic_id = self.allocate_id(NodeLevel.EPIC)
        first = min(phases, key=lambda p: p.sequence_order)

        record = EpicRecord(
            id=epic_id,
            current_phase_id=first.id,
            created=utcnow().isoformat(),
            phase_states={s.phase_id: s for s in initialize_phase_states(epic_id, phases)},
            tree=WorkTree([WorkNode(id=epic_id, level=NodeLevel.EPIC, title=title)]),
        )
        self.save_epic(record)
        logger.info(f"[STORE] Created {epic_id}: {title}")
        return record

    def load_epic(self, epic_id: str) -> EpicRecord:
        path = self.epic_path(epic_id)
        if not path.exists():
            raise NotFoundError("Epic", epic_id)
        return EpicRecord.from_dict(validate_file(path, "epic"))

    def save_epic(self, record: EpicRecord) -> None:
        data = record.to_dict()
        path = self.epic_path(record.id)
        validate_before_write(data, "epic", path)
        _atomic_write_json(path, data)

    def list_epics(self) -> list[EpicRecord]:
        """All readable epics, by id. Invalid files are skipped."""
        if not self.epics_dir.exists():
            return []

        records = []
        for path in sorted(self.epics_dir.glob("EPIC-*.json")):
            try:
                records.append(EpicRecord.from_dict(validate_file(path, "epic")))
            except ValidationError as e:
                logger.warning(f"Skipping invalid epic file {path}: {e}")
        return records
