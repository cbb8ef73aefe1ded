"""
Safe parser for phaseflow.env.

Reads KEY=value lines without handing anything to a shell. Values that
look like shell expansion or command chaining are rejected outright.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    r'`',           # backticks
    r'\$\(',        # command substitution
    r'\$\{',        # variable expansion
    r';',           # command chaining
    r'&&',
    r'\|',          # pipe / OR chaining
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def parse_env_text(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse env-file content into a dict.

    Raises:
        ValueError: on a malformed line, bad key, or forbidden pattern
    """
    result: dict[str, str] = {}

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue

        key, sep, value = line.partition('=')
        if not sep:
            raise ValueError(f"{source}:{lineno}: Invalid syntax (no '=')")

        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        if not KEY_PATTERN.match(key):
            raise ValueError(f"{source}:{lineno}: Invalid key '{key}'")

        value = _unquote(value.strip())
        if any(re.search(p, value) for p in FORBIDDEN_PATTERNS):
            raise ValueError(f"{source}:{lineno}: Forbidden pattern in value for {key}")

        result[key] = value

    return result


def load_env(filepath: Path) -> dict[str, str]:
    """
    Parse an env file from disk.

    Raises:
        FileNotFoundError: if file doesn't exist
        ValueError: if syntax invalid or forbidden pattern found
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {path}")
    return parse_env_text(path.read_text(), source=str(path))
