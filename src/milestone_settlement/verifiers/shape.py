"""Evidence payload shape checks backed by JSON Schema (Draft 7).

Each source verifier declares the schema its evidence must satisfy; this
module turns jsonschema's error objects into short, caller-visible strings.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator


def shape_errors(schema: dict[str, Any], payload: dict[str, Any]) -> list[str]:
    """Return one message per schema violation, ordered by JSON path.

    Raises:
        jsonschema.SchemaError: If ``schema`` itself is malformed.
    """
    Draft7Validator.check_schema(schema)
    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path])
    messages = []
    for err in errors:
        path = ".".join(str(p) for p in err.path)
        messages.append(f"{path}: {err.message}" if path else err.message)
    return messages
