from __future__ import annotations

import json
import re
from typing import Any

from scholargraph.errors import ParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _scan_first_object(text: str) -> str | None:
    """Return the first balanced {...} span, honouring string literals."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_str = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Extract the JSON object from capability output.

    Providers sometimes wrap JSON in a ```json fence or surround it with prose. Anything
    that does not yield a JSON object raises ParseError with the raw text attached.
    """
    if text is None or not text.strip():
        raise ParseError("Empty structured content", raw=text)

    candidate = text.strip()
    fence = _FENCE_RE.search(candidate)
    if fence:
        candidate = fence.group(1).strip()

    # Fast path: exact JSON.
    try:
        obj = json.loads(candidate)
    except json.JSONDecodeError:
        obj = None
    else:
        if isinstance(obj, dict):
            return obj
        raise ParseError(f"Expected a JSON object, got {type(obj).__name__}", raw=text)

    span = _scan_first_object(candidate)
    if span is None:
        raise ParseError("No JSON object found in structured content", raw=text)
    try:
        obj = json.loads(span)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Malformed JSON object: {exc.msg}", raw=text) from exc
    if not isinstance(obj, dict):
        raise ParseError("Expected a JSON object", raw=text)
    return obj
