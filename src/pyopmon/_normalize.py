"""Normalization helpers.

Centralizes defensive parsing of loosely-typed event payload values.
"""

from __future__ import annotations

import math
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None or math.isinf(parsed):
        return None
    return int(parsed)


def clamp_percent(value: Any) -> float | None:
    """Coerce *value* to a percentage within ``[0, 100]``."""
    parsed = safe_float(value)
    if parsed is None:
        return None
    return min(max(parsed, 0.0), 100.0)


def prune_none(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is ``None``.

    A ``None`` in a lifecycle payload means "unknown on this tick", not
    "erase the previous value".
    """
    return {key: value for key, value in data.items() if value is not None}
