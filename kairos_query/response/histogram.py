"""Conversion of KairosDB histogram datapoints into sparse heatmap cells.

A histogram datapoint value looks like ``{"bins": {"0.5": 12, "1.0": 3},
"precision": 7}``: bin keys are lower bounds, values are counts, and
``precision`` is the number of mantissa bits kept when values were binned.
The upper bound of a bin is the largest double sharing the lower bound's
first ``precision`` mantissa bits.
"""

from __future__ import annotations

import logging
import struct
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..domain.models import HeatmapCell, HeatmapSeries, TimeSeries
from ..domain.utils.values import to_scalar, to_timestamp

logger = logging.getLogger(__name__)

MANTISSA_BITS = 52
ZERO_BIN_EPSILON = 1e-8
DEFAULT_INTERVAL_MS = 60_000


def _numeric_key(key: Any) -> Optional[float]:
    try:
        return float(key)
    except (TypeError, ValueError):
        return None


def is_histogram_value(value: Any) -> bool:
    """True when ``value`` is a bin map with a numeric precision.

    At least one bin key must parse as a number.
    """
    if not isinstance(value, dict):
        return False
    bins = value.get("bins")
    precision = value.get("precision")
    if not isinstance(bins, dict) or isinstance(precision, bool):
        return False
    if not isinstance(precision, (int, float)):
        return False
    return any(_numeric_key(k) is not None for k in bins)


def compute_bin_max(lower: float, precision: int) -> float:
    """Return the upper bound of the bin starting at ``lower``.

    The lower bound's IEEE-754 bit pattern is truncated to ``precision``
    mantissa bits, incremented, and the remaining bits set, which yields
    the largest double still inside the bin. A zero lower bound maps to
    ``ZERO_BIN_EPSILON``.

    >>> compute_bin_max(0.0, 12)
    1e-08
    >>> 0.5 < compute_bin_max(0.5, 12) < 0.5002
    True
    """
    if lower == 0:
        return ZERO_BIN_EPSILON
    shift = MANTISSA_BITS - max(0, min(int(precision), MANTISSA_BITS))
    (bits,) = struct.unpack(">q", struct.pack(">d", float(lower)))
    bits >>= shift
    bits += 1
    bits <<= shift
    bits -= 1
    # Wrap back into the signed 64-bit range
    bits = (bits + (1 << 63)) % (1 << 64) - (1 << 63)
    (upper,) = struct.unpack(">d", struct.pack(">q", bits))
    return upper


def infer_interval_ms(
    sampling_ms: Optional[int], timestamps: Iterable[Any]
) -> int:
    """Width of a heatmap column in milliseconds.

    Uses the aggregator sampling width when known, otherwise the smallest
    gap between consecutive distinct timestamps, otherwise
    ``DEFAULT_INTERVAL_MS``.
    """
    if sampling_ms is not None and sampling_ms > 0:
        return int(sampling_ms)
    ordered = sorted({t for t in (to_timestamp(x) for x in timestamps) if t is not None})
    gaps = [b - a for a, b in zip(ordered, ordered[1:]) if b > a]
    if gaps:
        return min(gaps)
    return DEFAULT_INTERVAL_MS


class _BinBounds:
    """Upper bounds of the distinct bins seen in one series."""

    def __init__(self) -> None:
        self._bounds: Dict[float, Tuple[float, float]] = {}

    def get(self, lower: float, precision: int) -> Tuple[float, float]:
        cached = self._bounds.get(lower)
        if cached is None:
            if lower == 0:
                cached = (ZERO_BIN_EPSILON, compute_bin_max(ZERO_BIN_EPSILON, precision))
            else:
                cached = (lower, compute_bin_max(lower, precision))
            self._bounds[lower] = cached
        return cached

    def __len__(self) -> int:
        return len(self._bounds)


def histogram_cells(
    datapoints: Sequence[Any], interval_ms: int
) -> List[HeatmapCell]:
    """Emit one cell per (timestamp, bin) with a positive count.

    Datapoints that are not histogram-shaped are skipped.
    """
    bounds = _BinBounds()
    cells: List[HeatmapCell] = []
    for point in datapoints:
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            continue
        ts = to_timestamp(point[0])
        value = point[1]
        if ts is None or not is_histogram_value(value):
            continue
        precision = int(value["precision"])
        bins = sorted(
            (
                (lower, count)
                for lower, count in (
                    (_numeric_key(k), to_scalar(c)) for k, c in value["bins"].items()
                )
                if lower is not None
            ),
            key=lambda item: item[0],
        )
        for lower, count in bins:
            if count is None or count <= 0:
                continue
            y_min, y_max = bounds.get(lower, precision)
            cells.append(
                HeatmapCell(
                    x_min=ts,
                    x_max=ts + interval_ms,
                    y_min=y_min,
                    y_max=y_max,
                    count=count,
                )
            )
    logger.debug(
        "histogram.cells",
        extra={"cells": len(cells), "unique_bins": len(bounds)},
    )
    return cells


def scalar_series(
    series_name: str, ref_id: str, datapoints: Sequence[Any]
) -> TimeSeries:
    """Build a time series from scalar datapoints, skipping invalid ones."""
    times: List[int] = []
    values: List[float] = []
    skipped = 0
    for point in datapoints:
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            skipped += 1
            continue
        ts = to_timestamp(point[0])
        value = to_scalar(point[1])
        if ts is None or value is None:
            skipped += 1
            continue
        times.append(ts)
        values.append(value)
    if skipped:
        logger.debug(
            "histogram.scalar.skipped_points",
            extra={"series": series_name, "skipped": skipped},
        )
    return TimeSeries(name=series_name, ref_id=ref_id, times=times, values=values)


def is_histogram_series(datapoints: Sequence[Any]) -> bool:
    """Classify a series by its first well-formed datapoint."""
    for point in datapoints:
        if isinstance(point, (list, tuple)) and len(point) >= 2:
            return is_histogram_value(point[1])
    return False


def convert(
    result_name: str,
    series_name: str,
    ref_id: str,
    interval_ms: Optional[int],
    datapoints: Sequence[Any],
) -> Union[TimeSeries, HeatmapSeries]:
    """Convert one result group into a heatmap or a scalar series.

    Parameters
    ----------
    result_name: str
        Metric name reported by KairosDB, used for logging.
    series_name: str
        Display name of the emitted series.
    ref_id: str
        Reference id of the originating target.
    interval_ms: Optional[int]
        Sampling width from the resolved aggregators, if any.
    datapoints: Sequence[Any]
        Raw ``[timestamp, value]`` pairs.

    Returns
    -------
    Union[TimeSeries, HeatmapSeries]
        A heatmap for histogram-shaped data, a scalar series otherwise.
    """
    if not is_histogram_series(datapoints):
        return scalar_series(series_name, ref_id, datapoints)
    width = infer_interval_ms(
        interval_ms, (p[0] for p in datapoints if isinstance(p, (list, tuple)) and p)
    )
    logger.debug(
        "histogram.convert",
        extra={"metric": result_name, "series": series_name, "interval_ms": width},
    )
    return HeatmapSeries(
        name=series_name,
        ref_id=ref_id,
        interval_ms=width,
        cells=histogram_cells(datapoints, width),
    )
