from __future__ import annotations

import math
import re

_DISALLOWED_RE = re.compile(r"[^\w\s-]|_")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """
    Canonical form used wherever entity identity is compared.

    - Lowercase
    - Drop everything except letters, digits, whitespace and hyphens
    - Collapse whitespace runs and trim

    Characters are stripped before whitespace is collapsed so the result is idempotent.
    """
    if not name:
        return ""
    lowered = name.lower()
    lowered = _DISALLOWED_RE.sub("", lowered)
    return _WHITESPACE_RE.sub(" ", lowered).strip()


def same_entity(a: str, b: str) -> bool:
    return normalize_name(a) == normalize_name(b)


def clamp_confidence(value: float | None, default: float = 0.5) -> float:
    if value is None:
        return default
    value = float(value)
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))
