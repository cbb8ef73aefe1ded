"""
Schema validation for phaseflow data files.

Every record read from or written to the data directory goes through a
JSON Schema check. Bad data fails hard with a clear error.
"""

import json
from pathlib import Path

import jsonschema

from phaseflow.lib.errors import SchemaValidationError

# Cache loaded schemas
_schema_cache: dict[str, dict] = {}


def _get_schemas_dir() -> Path:
    """Schemas ship inside the package."""
    return Path(__file__).parent.parent / "schemas"


def _load_schema(schema_name: str) -> dict:
    if schema_name not in _schema_cache:
        schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise SchemaValidationError(schema_name, f"Schema file not found: {schema_path}")
        _schema_cache[schema_name] = json.loads(schema_path.read_text())
    return _schema_cache[schema_name]


def validate(data, schema_name: str) -> None:
    """
    Validate data against a named schema.

    Args:
        data: Decoded JSON value
        schema_name: Schema name (e.g., "epic", "phases")

    Raises:
        SchemaValidationError: If validation fails
    """
    schema = _load_schema(schema_name)

    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise SchemaValidationError(schema_name, e.message, path) from None


def validate_file(filepath: Path, schema_name: str):
    """
    Load a JSON file and validate it.

    Returns:
        Parsed and validated data

    Raises:
        SchemaValidationError: If file is unreadable or doesn't match schema
    """
    if not filepath.exists():
        raise SchemaValidationError(schema_name, f"File not found: {filepath}")

    try:
        data = json.loads(filepath.read_text())
    except json.JSONDecodeError as e:
        raise SchemaValidationError(schema_name, f"Invalid JSON in {filepath}: {e}") from None

    validate(data, schema_name)
    return data


def validate_before_write(data, schema_name: str, filepath: Path) -> None:
    """Refuse to write data that doesn't match its schema."""
    try:
        validate(data, schema_name)
    except SchemaValidationError as e:
        raise SchemaValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e}"
        ) from None
