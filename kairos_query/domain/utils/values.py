"""
Scalar value extraction for KairosDB datapoints.

KairosDB returns ``[timestamp, value]`` pairs where the value may be a plain
number, a numeric string, or an object produced by custom data types
(``{"value": ...}``, ``{"double_value": ...}``, ``{"long_value": ...}``).
Anything else is not a scalar and is skipped by callers.
"""

import logging
import math
from typing import Any, Optional

logger = logging.getLogger(__name__)

_VALUE_KEYS = ("value", "double_value", "long_value")


def is_valid_float(value: float) -> bool:
    """
    Check that a float is finite.

    >>> is_valid_float(42.5)
    True
    >>> is_valid_float(float('nan'))
    False
    """
    return math.isfinite(value)


def to_scalar(value: Any) -> Optional[float]:
    """
    Extract a finite float from a datapoint value.

    Parameters
    ----------
    value : Any
        Raw datapoint value.

    Returns
    -------
    float or None
        The numeric value, or None when the value is not scalar-shaped.

    Examples
    --------
    >>> to_scalar(3)
    3.0
    >>> to_scalar("2.5")
    2.5
    >>> to_scalar({"double_value": 7})
    7.0
    >>> to_scalar({"bins": {}}) is None
    True
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
        return result if is_valid_float(result) else None
    if isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
        return result if is_valid_float(result) else None
    if isinstance(value, dict):
        for key in _VALUE_KEYS:
            if key in value:
                return to_scalar(value[key])
    return None


def to_timestamp(value: Any) -> Optional[int]:
    """Return an epoch-millisecond timestamp, or None if not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and is_valid_float(float(value)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


def coerce_number(value: Any) -> Any:
    """
    Best-effort numeric coercion for aggregator parameter values.

    Integral numbers become ``int``; other numeric strings become ``float``;
    anything that does not parse is returned unchanged.

    >>> coerce_number("10")
    10
    >>> coerce_number("0.95")
    0.95
    >>> coerce_number("GT")
    'GT'
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return value
    else:
        return value
    if not is_valid_float(number):
        return value
    return int(number) if number.is_integer() else number
