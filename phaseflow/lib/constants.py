"""Shared constants for phaseflow."""

import re

# A phase can't be marked complete below this measured progress.
COMPLETION_GATE = 80

# Completion assigned to a phase reopened by move_to_previous.
DEFAULT_REGRESSION_PERCENTAGE = 75

DEFAULT_LOCK_TIMEOUT = 60

DEFAULT_AUDIT_LOG = "audit.jsonl"

RESET_NOTES_PREFIX = "RESET:"
DEFAULT_RESET_NOTES = "Phase reset"

# Record IDs: EPIC-0001, STORY-0001, TASK-0001, SUBTASK-0001
ID_PREFIXES = {
    "epic": "EPIC",
    "story": "STORY",
    "task": "TASK",
    "subtask": "SUBTASK",
}

PHASE_ID_PATTERN = re.compile(r'^[a-z][a-z0-9_]*$')

DEFAULT_PHASES = [
    {
        "id": "design",
        "name": "Design",
        "sequence_order": 1,
        "description": "Requirements are gathered and the system architecture is defined",
    },
    {
        "id": "configuration",
        "name": "Configuration",
        "sequence_order": 2,
        "description": "The solution is built and configured according to specifications",
    },
    {
        "id": "testing",
        "name": "Testing",
        "sequence_order": 3,
        "description": "The system is tested for functionality and performance",
    },
    {
        "id": "promotion",
        "name": "Promotion",
        "sequence_order": 4,
        "description": "The system is deployed to production and users are onboarded",
    },
]
