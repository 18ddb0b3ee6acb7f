from __future__ import annotations

import json
from functools import lru_cache
from importlib.resources import files
from typing import Any

import jsonschema

from scholargraph.errors import ParseError


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict[str, Any]:
    """Load a packaged schema by file stem, e.g. `load_schema("entities")`."""
    resource = files("scholargraph.contracts").joinpath("schemas", f"{name}.json")
    return json.loads(resource.read_text(encoding="utf-8"))


def validate_json(instance: dict[str, Any], schema: dict[str, Any]) -> None:
    try:
        jsonschema.validate(instance=instance, schema=schema)
    except jsonschema.ValidationError as exc:
        path = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ParseError(f"Output does not match {schema.get('title', 'schema')} at {path}: {exc.message}") from exc
