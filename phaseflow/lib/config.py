"""
Configuration loaders for phaseflow.

Tracker settings come from phaseflow.env in the data directory; phase
definitions used at bootstrap come from phases.yaml. Both files are
optional and fall back to defaults.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from phaseflow.lib import envparse
from phaseflow.lib.constants import (
    DEFAULT_AUDIT_LOG,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_PHASES,
    DEFAULT_REGRESSION_PERCENTAGE,
    PHASE_ID_PATTERN,
)
from phaseflow.lib.types import Permissions

logger = logging.getLogger(__name__)

ENV_FILENAME = "phaseflow.env"
PHASES_FILENAME = "phases.yaml"

ROLE_PERMISSIONS = {
    "system_admin": Permissions(can_advance=True, can_revert=True, can_skip=True),
    "project_manager": Permissions(can_advance=True, can_revert=True, can_skip=True),
    "team_member": Permissions(can_advance=True),
    "customer": Permissions(),
}


@dataclass
class TrackerConfig:
    """Tracker settings from phaseflow.env"""
    regression_percentage: int = DEFAULT_REGRESSION_PERCENTAGE
    lock_timeout: int = DEFAULT_LOCK_TIMEOUT
    desktop_notifications: bool = False
    audit_log: str = DEFAULT_AUDIT_LOG


def _int_setting(env: dict, key: str, default: int, low: int, high: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {key} '{raw}', using {default}")
        return default
    if not low <= value <= high:
        logger.warning(f"{key} {value} out of range [{low}, {high}], using {default}")
        return default
    return value


def load_tracker_config(data_dir: Optional[Path]) -> TrackerConfig:
    """Load phaseflow.env and return TrackerConfig.

    If data_dir is None or the file doesn't exist, returns defaults.
    """
    if data_dir is None:
        return TrackerConfig()

    env_path = Path(data_dir) / ENV_FILENAME
    if not env_path.exists():
        return TrackerConfig()

    env = envparse.load_env(env_path)

    # 100 would reopen a phase as fully done without completing it
    regression = _int_setting(env, "REGRESSION_PERCENTAGE", DEFAULT_REGRESSION_PERCENTAGE, 0, 99)
    lock_timeout = _int_setting(env, "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT, 1, 3600)

    notifications_raw = env.get("DESKTOP_NOTIFICATIONS", "false").lower()
    if notifications_raw not in ("true", "false"):
        logger.warning(f"Unknown DESKTOP_NOTIFICATIONS '{notifications_raw}', using false")
        notifications_raw = "false"

    return TrackerConfig(
        regression_percentage=regression,
        lock_timeout=lock_timeout,
        desktop_notifications=notifications_raw == "true",
        audit_log=env.get("AUDIT_LOG", DEFAULT_AUDIT_LOG) or DEFAULT_AUDIT_LOG,
    )


def _valid_phase_entry(entry) -> bool:
    if not isinstance(entry, dict):
        return False
    if not isinstance(entry.get("id"), str) or not PHASE_ID_PATTERN.match(entry["id"]):
        return False
    if not isinstance(entry.get("name"), str) or not entry["name"].strip():
        return False
    order = entry.get("sequence_order")
    return isinstance(order, int) and not isinstance(order, bool)


def load_phase_definitions(data_dir: Optional[Path]) -> list[dict]:
    """Load phase definitions from phases.yaml.

    Expected shape:

        phases:
          - id: design
            name: Design
            sequence_order: 1
            description: ...

    Returns DEFAULT_PHASES if the file is missing or unusable. Ordering
    rules (gapless, 1-based) are enforced later by PhaseRegistry.
    """
    if data_dir is None:
        return [dict(p) for p in DEFAULT_PHASES]

    config_path = Path(data_dir) / PHASES_FILENAME
    if not config_path.exists():
        return [dict(p) for p in DEFAULT_PHASES]

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return [dict(p) for p in DEFAULT_PHASES]

    entries = (data or {}).get("phases") if isinstance(data, dict) else None
    if not entries or not all(_valid_phase_entry(e) for e in entries):
        logger.warning(f"No usable phase list in {config_path}, using defaults")
        return [dict(p) for p in DEFAULT_PHASES]

    return [
        {
            "id": e["id"],
            "name": e["name"].strip(),
            "sequence_order": e["sequence_order"],
            "description": e.get("description") or "",
        }
        for e in entries
    ]


def permissions_for_role(role: Optional[str]) -> Permissions:
    """Map an access-control role to permission flags.

    Unknown or missing roles get no permissions.
    """
    if role is None:
        return Permissions()
    perms = ROLE_PERMISSIONS.get(role)
    if perms is None:
        logger.warning(f"Unknown role '{role}', granting no phase permissions")
        return Permissions()
    return perms
