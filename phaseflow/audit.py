"""
Audit sink for LogAudit side effects.

Appends one JSON object per line to the data directory's audit log.
"""

import json
import logging
from pathlib import Path

from phaseflow.lib.validate import validate_before_write
from phaseflow.workflow.events import LogAudit, utcnow

logger = logging.getLogger(__name__)


class AuditLog:
    """JSONL-backed audit collaborator."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def record(self, entry: LogAudit) -> None:
        """Append one audit entry."""
        data = entry.to_dict()
        del data["type"]
        if data["timestamp"] is None:
            data["timestamp"] = utcnow().isoformat()
        validate_before_write(data, "audit_entry", self.path)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(data) + "\n")
            f.flush()
        logger.debug(f"[AUDIT] {data['action']} {data['work_item_id']} {data['phase_ids']}")

    def load_entries(self, work_item_id: str | None = None) -> list[dict]:
        """Load audit entries, oldest first. Skips corrupted lines."""
        if not self.path.exists():
            return []

        entries = []
        for line_num, line in enumerate(self.path.read_text().splitlines(), 1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupted audit line {line_num} in {self.path}: {e}")
                continue
            if work_item_id is None or data.get("work_item_id") == work_item_id:
                entries.append(data)
        return entries
