"""Shared persistence utilities."""

import json
from pathlib import Path
from typing import Any

from agentic_gate.errors import PersistenceError


def atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON data to a file atomically.

    Writes to a temporary file first, then renames to the target path.

    Raises:
        PersistenceError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=indent))
        tmp_path.replace(path)
    except OSError as e:
        raise PersistenceError(f"Cannot write {path}: {e}", path=path) from e


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON file, returning default when it does not exist.

    Raises:
        PersistenceError: If the file exists but cannot be read or parsed.
    """
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Cannot read {path}: {e}", path=path) from e
