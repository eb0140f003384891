"""Small helpers shared by the API, jobs and CLI."""
from __future__ import annotations

import json
import math
from datetime import UTC, date, datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Parse a stored JSON column, returning *default* (or ``{}``) when it is empty or broken."""
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_today() -> date:
    return utc_now().date()


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with ties toward +infinity (0.125 -> 0.13, -0.125 -> -0.12, 2.5 -> 3)."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale
