"""
Exception types for phaseflow.

Business-rule rejections are never exceptions; they come back as a
TransitionResult with success=False. These classes are for faults the
caller has to fix.
"""


class PhaseflowError(Exception):
    """Base class for phaseflow faults."""


class ValidationError(PhaseflowError):
    """Structurally invalid input (bad event, inconsistent snapshot)."""


class SchemaValidationError(ValidationError):
    """Persisted data doesn't match its JSON schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


class NotFoundError(PhaseflowError):
    """A record the caller expected to exist is missing."""

    def __init__(self, resource: str, identifier=None):
        self.resource = resource
        self.identifier = identifier
        if identifier is not None:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)
