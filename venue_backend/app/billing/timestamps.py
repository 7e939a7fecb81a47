"""Timestamp normalization for the billing subsystem.

Business logic only ever sees epoch milliseconds (``int``). Every wire or
storage representation is funnelled through :func:`to_millis` at the boundary.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Mapping, Optional

DAY_MS = 24 * 60 * 60 * 1000


def now_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def days(count: float) -> int:
    """Return ``count`` days expressed in milliseconds."""

    return int(count * DAY_MS)


def to_millis(value: object) -> Optional[int]:
    """Normalize a timestamp in any supported shape to epoch milliseconds.

    Accepted shapes: ``None``, int/float milliseconds, aware or naive
    ``datetime`` (naive values are treated as UTC), ISO-8601 strings,
    ``{"seconds": .., "nanos": ..}`` / ``{"_seconds": .., "_nanoseconds": ..}``
    mappings, and objects exposing ``to_millis()`` or ``timestamp()``.
    """

    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise TypeError("Unsupported timestamp value: bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("Timestamp must be finite")
        return int(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(aware.timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return to_millis(parsed)
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanos", value.get("_nanoseconds", 0)) or 0
        if seconds is None:
            raise ValueError("Timestamp mapping is missing 'seconds'")
        return int(seconds) * 1000 + int(nanos) // 1_000_000

    to_millis_fn = getattr(value, "to_millis", None)
    if callable(to_millis_fn):
        return int(to_millis_fn())
    timestamp_fn = getattr(value, "timestamp", None)
    if callable(timestamp_fn):
        return int(timestamp_fn() * 1000)
    raise TypeError(f"Unsupported timestamp value: {type(value).__name__}")


def from_millis(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def isoformat_millis(value: Optional[int]) -> Optional[str]:
    moment = from_millis(value)
    return moment.isoformat() if moment else None


__all__ = ["DAY_MS", "days", "from_millis", "isoformat_millis", "now_millis", "to_millis"]
