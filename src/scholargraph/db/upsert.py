"""
Dialect-aware building blocks for single-statement `INSERT ... ON CONFLICT DO UPDATE`.

PostgreSQL is the production store; SQLite is supported for tests and local runs.
Both dialects expose `on_conflict_do_update`, only the merge expressions differ.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import JSON, Table, and_, case, func, or_
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from scholargraph.errors import ConfigurationError, ValidationError

LIKE_ESCAPE = "\\"

# SQLite caps function arguments at 127 by default.
_JSON_SET_PAIRS = 60


def insert_for(dialect: str, table: Table):
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise ConfigurationError(f"Upserts are not supported on dialect {dialect!r}")


def greatest(dialect: str, existing, incoming):
    if dialect == "postgresql":
        return func.greatest(existing, incoming)
    # Multi-argument max() is SQLite's scalar maximum.
    return func.max(existing, incoming)


def _json_key_path(key: str) -> str:
    # SQLite quoted path labels have no escape syntax.
    if '"' in key:
        raise ValidationError(f"Metadata key {key!r} cannot contain a double quote")
    return f'$."{key}"'


def merge_json(dialect: str, existing, incoming, values: dict[str, Any]):
    """
    Shallow union of two JSON objects: every top-level key of `incoming` replaces
    the stored value whole, nulls included; nested objects are not merged.

    `values` is the incoming object as bound from Python. PostgreSQL's jsonb `||`
    already has these semantics; on SQLite one `json_set` per key is chained
    because `json_patch` merges recursively and treats null as delete.
    """
    if dialect == "postgresql":
        return existing.op("||", return_type=JSONB)(incoming)
    merged = existing
    items = list(values.items())
    for start in range(0, len(items), _JSON_SET_PAIRS):
        args = []
        for key, value in items[start : start + _JSON_SET_PAIRS]:
            args.append(_json_key_path(key))
            # json() marks the text as JSON so json_set embeds it instead of quoting it.
            args.append(func.json(json.dumps(value)))
        merged = func.json_set(merged, *args, type_=JSON)
    return merged


def fill_if_empty(existing, incoming):
    """Keep stored text unless it is empty and the incoming value is not."""
    return case(
        (
            and_(
                or_(existing.is_(None), existing == ""),
                incoming.is_not(None),
                incoming != "",
            ),
            incoming,
        ),
        else_=existing,
    )


def clean_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    if not metadata:
        return {}
    return {str(k): v for k, v in metadata.items()}


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
