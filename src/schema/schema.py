"""
Entry payload schema.

The admin endpoints accept a ``{"title": ..., "content": ...}`` object as JSON
or form data. Its shape is described by entry_schema.json (JSON Schema
Draft 7), which sits next to this module and is read once at import time.
A missing or malformed schema file fails the import.
"""
import json
from pathlib import Path
from typing import Any, Dict, List

from jsonschema import Draft7Validator

SCHEMA_DIR = Path(__file__).parent


def _load_schema(schema_filename: str) -> Dict[str, Any]:
    """Read and parse a schema file from SCHEMA_DIR.

    Raises:
        FileNotFoundError: If the file is not in SCHEMA_DIR.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    schema_path = SCHEMA_DIR / schema_filename
    if not schema_path.is_file():
        raise FileNotFoundError(f"Schema file not found: {schema_path}")

    with open(schema_path, "r") as f:
        try:
            schema = json.load(f)
        except json.JSONDecodeError as e:
            raise json.JSONDecodeError(f"Invalid JSON in {schema_filename}: {e.msg}", e.doc, e.pos) from e

    Draft7Validator.check_schema(schema)
    return schema


ENTRY_SCHEMA = _load_schema("entry_schema.json")
ENTRY_VALIDATOR = Draft7Validator(ENTRY_SCHEMA)


def entry_errors(payload: Any) -> List[str]:
    """Return human readable schema violations for an entry payload.

    Messages are ordered by field path; an empty list means the payload is
    valid.
    """
    errors = sorted(ENTRY_VALIDATOR.iter_errors(payload), key=lambda e: list(e.path))
    messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.path)
        messages.append(f"{error.message} at path: {path}" if path else error.message)
    return messages
