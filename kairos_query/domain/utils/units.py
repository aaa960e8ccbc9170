"""
Time unit utilities for KairosDB sampling intervals.

KairosDB expresses durations as ``{"value": <number>, "unit": <name>}`` where
the unit is one of a fixed vocabulary (``milliseconds`` … ``years``). Panels
supply their display interval in the short form used by dashboards
(``"30s"``, ``"5m"``, ``"1h"``). This module converts between the two and
never raises for malformed input: query construction falls back to a fixed
default interval instead.
"""

import logging
import re
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)


class TimeUnit(Enum):
    """KairosDB sampling units (wire names)."""

    MILLISECONDS = "milliseconds"
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


_UNIT_TO_MS = {
    TimeUnit.MILLISECONDS: 1,
    TimeUnit.SECONDS: 1000,
    TimeUnit.MINUTES: 60_000,
    TimeUnit.HOURS: 3_600_000,
    TimeUnit.DAYS: 86_400_000,
    TimeUnit.WEEKS: 604_800_000,
    TimeUnit.MONTHS: 30 * 86_400_000,
    TimeUnit.YEARS: 365 * 86_400_000,
}

# Case matters: "m" is minutes, "M" is months
_SHORT_UNITS = {
    "ms": TimeUnit.MILLISECONDS,
    "s": TimeUnit.SECONDS,
    "m": TimeUnit.MINUTES,
    "h": TimeUnit.HOURS,
    "d": TimeUnit.DAYS,
    "w": TimeUnit.WEEKS,
    "M": TimeUnit.MONTHS,
    "y": TimeUnit.YEARS,
}

_SHORT_NAMES = {unit: short for short, unit in _SHORT_UNITS.items()}

_LONG_UNITS = {
    "millisecond": TimeUnit.MILLISECONDS,
    "second": TimeUnit.SECONDS,
    "minute": TimeUnit.MINUTES,
    "hour": TimeUnit.HOURS,
    "day": TimeUnit.DAYS,
    "week": TimeUnit.WEEKS,
    "month": TimeUnit.MONTHS,
    "year": TimeUnit.YEARS,
}

_INTERVAL_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]+)\s*$")

DEFAULT_INTERVAL: Tuple[Union[int, float], TimeUnit] = (1, TimeUnit.MINUTES)

DEFAULT_SNAP_INTERVALS = "1m,5m,10m,15m,30m,1h,2h,3h,4h,6h,12h,1d,2d,3d,7d"


def parse_unit(unit: Any) -> Optional[TimeUnit]:
    """Resolve a unit name in any supported spelling.

    Accepts ``TimeUnit`` members, short dashboard suffixes (``"m"``),
    singular or plural long names in any case (``"Minute"``, ``"MINUTES"``).

    Returns
    -------
    TimeUnit or None
        The matching unit, or None when the name is not recognized.
    """
    if isinstance(unit, TimeUnit):
        return unit
    if not isinstance(unit, str):
        return None
    text = unit.strip()
    if text in _SHORT_UNITS:
        return _SHORT_UNITS[text]
    lowered = text.lower()
    if lowered in _SHORT_UNITS and lowered != "m":
        return _SHORT_UNITS[lowered]
    if lowered.endswith("s"):
        lowered = lowered[:-1]
    return _LONG_UNITS.get(lowered)


def _normalize_number(value: float) -> Union[int, float]:
    return int(value) if float(value).is_integer() else value


def parse_interval(interval: Any) -> Tuple[Union[int, float], TimeUnit]:
    """
    Parse a display interval into a ``(value, TimeUnit)`` pair.

    Parameters
    ----------
    interval : str, dict, tuple or None
        ``"30s"``-style string, ``{"value": 30, "unit": "seconds"}`` mapping
        or ``(value, unit)`` pair.

    Returns
    -------
    tuple of (number, TimeUnit)
        Parsed interval; ``DEFAULT_INTERVAL`` (1 minute) when the input cannot
        be parsed. Integral values are returned as ``int``.

    Examples
    --------
    >>> parse_interval("5m")
    (5, <TimeUnit.MINUTES: 'minutes'>)
    >>> parse_interval("2.5s")
    (2.5, <TimeUnit.SECONDS: 'seconds'>)
    >>> parse_interval("garbage")
    (1, <TimeUnit.MINUTES: 'minutes'>)
    """
    raw_value: Any = None
    raw_unit: Any = None
    if isinstance(interval, str):
        match = _INTERVAL_RE.match(interval)
        if match:
            raw_value, raw_unit = match.group(1), match.group(2)
    elif isinstance(interval, dict):
        raw_value, raw_unit = interval.get("value"), interval.get("unit")
    elif isinstance(interval, (tuple, list)) and len(interval) == 2:
        raw_value, raw_unit = interval
    elif interval is not None and hasattr(interval, "value"):
        raw_value, raw_unit = interval.value, getattr(interval, "unit", None)

    unit = parse_unit(raw_unit)
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        value = -1.0
    if unit is None or value <= 0 or value != value:
        logger.warning(
            "units.parse_interval.fallback",
            extra={"interval": str(interval), "default": "1 minutes"},
        )
        return DEFAULT_INTERVAL
    return _normalize_number(value), unit


def unit_to_ms(unit: TimeUnit) -> int:
    """Return the length of one ``unit`` in milliseconds."""
    return _UNIT_TO_MS[unit]


def interval_to_ms(interval: Any) -> int:
    """
    Convert any supported interval representation to milliseconds.

    >>> interval_to_ms("1h")
    3600000
    """
    value, unit = parse_interval(interval)
    return int(round(value * _UNIT_TO_MS[unit]))


def short_name(unit: TimeUnit) -> str:
    """Return the dashboard suffix for ``unit`` (``"m"`` for minutes)."""
    return _SHORT_NAMES[unit]


def format_interval(value: Union[int, float], unit: TimeUnit) -> str:
    """Render ``(value, unit)`` back into short form, e.g. ``"5m"``."""
    return f"{_normalize_number(value)}{short_name(unit)}"


def parse_interval_list(
    intervals: Union[str, Sequence[str]],
) -> List[Tuple[Union[int, float], TimeUnit]]:
    """
    Parse a comma separated interval list, dropping invalid entries.

    The result is sorted by duration so that it can be used for snapping.

    >>> [format_interval(*x) for x in parse_interval_list("1w,1d, 4h,3b,h")]
    ['4h', '1d', '1w']
    """
    items = intervals.split(",") if isinstance(intervals, str) else list(intervals)
    parsed: List[Tuple[Union[int, float], TimeUnit]] = []
    for item in items:
        match = _INTERVAL_RE.match(item or "")
        if not match:
            continue
        unit = parse_unit(match.group(2))
        if unit is None:
            continue
        parsed.append((_normalize_number(float(match.group(1))), unit))
    parsed.sort(key=lambda vu: vu[0] * _UNIT_TO_MS[vu[1]])
    return parsed


def snap_to_interval(
    interval: Any, snap_list: Union[str, Sequence[str], None] = None
) -> Tuple[Union[int, float], TimeUnit]:
    """
    Round a display interval up to the nearest configured interval.

    Parameters
    ----------
    interval : str, dict or tuple
        Requested interval.
    snap_list : str or sequence of str, optional
        Allowed intervals; defaults to ``DEFAULT_SNAP_INTERVALS``.

    Returns
    -------
    tuple of (number, TimeUnit)
        The first allowed interval that is at least as long as the requested
        one, or the longest allowed interval when none is. When the list is
        empty the parsed interval is returned unchanged.

    Examples
    --------
    >>> snap_to_interval("2m", "1m,5m,1h,1d")
    (5, <TimeUnit.MINUTES: 'minutes'>)
    >>> snap_to_interval("10d", "1m,5m,1h,1d")
    (1, <TimeUnit.DAYS: 'days'>)
    """
    requested = parse_interval(interval)
    allowed = parse_interval_list(
        DEFAULT_SNAP_INTERVALS if snap_list is None else snap_list
    )
    if not allowed:
        return requested
    requested_ms = requested[0] * _UNIT_TO_MS[requested[1]]
    for candidate in allowed:
        if candidate[0] * _UNIT_TO_MS[candidate[1]] >= requested_ms:
            return candidate
    return allowed[-1]
