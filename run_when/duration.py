"""Human-readable duration parsing.

Accepts strings such as ``"600ms"``, ``"2s"``, ``"1.5 s"``, ``"1m30s"`` or
``"2 minutes"``. A bare number is read as seconds. Anything else is rejected
with a :class:`ValueError`; there is no silent fallback to a default.
"""

from __future__ import annotations

import re
from typing import Dict, Tuple

__all__ = ["parse_duration", "format_duration"]

_UNITS: Dict[str, Tuple[float, float]] = {
    # unit: (multiplier, divisor) so that "600ms" is exactly 600 / 1000
    "ns": (1.0, 1e9),
    "nsec": (1.0, 1e9),
    "nanosecond": (1.0, 1e9),
    "nanoseconds": (1.0, 1e9),
    "us": (1.0, 1e6),
    "µs": (1.0, 1e6),
    "usec": (1.0, 1e6),
    "microsecond": (1.0, 1e6),
    "microseconds": (1.0, 1e6),
    "ms": (1.0, 1e3),
    "msec": (1.0, 1e3),
    "millisecond": (1.0, 1e3),
    "milliseconds": (1.0, 1e3),
    "s": (1.0, 1.0),
    "sec": (1.0, 1.0),
    "secs": (1.0, 1.0),
    "second": (1.0, 1.0),
    "seconds": (1.0, 1.0),
    "m": (60.0, 1.0),
    "min": (60.0, 1.0),
    "mins": (60.0, 1.0),
    "minute": (60.0, 1.0),
    "minutes": (60.0, 1.0),
    "h": (3600.0, 1.0),
    "hr": (3600.0, 1.0),
    "hrs": (3600.0, 1.0),
    "hour": (3600.0, 1.0),
    "hours": (3600.0, 1.0),
    "d": (86400.0, 1.0),
    "day": (86400.0, 1.0),
    "days": (86400.0, 1.0),
}

_TERM_RE = re.compile(r"\s*(\d+(?:\.\d*)?|\.\d+)\s*([a-zµ]*)\s*", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def parse_duration(text: str) -> float:
    """Parse a duration string into seconds.

    Args:
        text (str): The duration, e.g. ``"600ms"`` or ``"1m 30s"``.

    Returns:
        float: The duration in seconds (always >= 0).

    Raises:
        ValueError: If the string is empty, has an unknown unit, or contains
            anything that is not a ``<number><unit>`` term.

    Example:
        >>> parse_duration("600ms")
        0.6
        >>> parse_duration("1m30s")
        90.0
    """
    if not isinstance(text, str):
        raise ValueError(f"Invalid duration: {text!r}")

    stripped = text.strip()
    if not stripped:
        raise ValueError("Invalid duration: empty string")

    # A bare number is seconds
    if _BARE_NUMBER_RE.fullmatch(stripped):
        return float(stripped)

    total = 0.0
    pos = 0
    while pos < len(stripped):
        match = _TERM_RE.match(stripped, pos)
        if not match or match.end() == pos:
            raise ValueError(f"Invalid duration: {text!r}")
        number, unit = match.groups()
        if not unit:
            raise ValueError(f"Invalid duration: {text!r} (missing unit after {number})")
        scale = _UNITS.get(unit.lower())
        if scale is None:
            raise ValueError(f"Invalid duration: {text!r} (unknown unit {unit!r})")
        multiplier, divisor = scale
        total += float(number) * multiplier / divisor
        pos = match.end()

    return total


def format_duration(seconds: float) -> str:
    """Format seconds for log messages (``0.6`` -> ``"600ms"``)."""
    if seconds < 1.0:
        return f"{seconds * 1000:g}ms"
    return f"{seconds:g}s"
