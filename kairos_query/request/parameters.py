"""Materialization of aggregator parameters into KairosDB wire values.

Each parameter kind has one rule:

- ``sampling``: the sampling width, numeric; taken from the display interval
  when auto-sampling covers the kind, otherwise from the stored value.
- ``sampling_unit``: a KairosDB unit name, same auto rule.
- ``alignment``: expands to the ``align_*`` flags.
- ``enum``: stored string, passed through.
- ``literal``: stored value with template variables substituted and numeric
  strings coerced to numbers.

Failures never raise: an unparseable display interval falls back to one
minute, and a non-numeric sampling width drops the width from the request.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from ..domain.models import (
    AggregatorParameter,
    AggregatorSpec,
    ParameterKind,
    ResolvedAggregator,
)
from ..domain.utils.units import parse_interval, parse_unit
from ..domain.utils.values import coerce_number
from ..templating.variables import replace

logger = logging.getLogger(__name__)

_ALIGNMENT_FLAGS: Dict[str, Dict[str, bool]] = {
    "NONE": {},
    "SAMPLING": {"align_sampling": True},
    "START_TIME": {"align_start_time": True},
    "PERIOD": {"align_end_time": True},
}


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _interpolate(value: Any, bindings: Optional[Mapping[str, Any]]) -> Any:
    if isinstance(value, str) and bindings:
        return replace(value, bindings)
    return value


def alignment_flags(value: Any) -> Dict[str, bool]:
    """Map an alignment choice to KairosDB ``align_*`` flags.

    Unknown choices produce no flags.
    """
    flags = _ALIGNMENT_FLAGS.get(str(value).strip().upper())
    if flags is None:
        logger.warning("parameters.alignment.unknown", extra={"alignment": value})
        return {}
    return dict(flags)


def auto_overridden(agg: AggregatorSpec, param: AggregatorParameter) -> bool:
    """True when the parameter takes its value from the display interval."""
    switch = agg.auto_value_switch
    if switch is None or not switch.enabled:
        return False
    if param.type not in (ParameterKind.SAMPLING, ParameterKind.SAMPLING_UNIT):
        return False
    return param.type in switch.dependent_parameters


def materialize(
    agg: AggregatorSpec,
    display_interval: Any,
    bindings: Optional[Mapping[str, Any]] = None,
) -> ResolvedAggregator:
    """Resolve every parameter of ``agg`` to its wire value.

    Parameters
    ----------
    agg: AggregatorSpec
        Aggregator as authored.
    display_interval: Any
        Panel interval as ``"30s"``, ``{"value", "unit"}`` or a
        :class:`~kairos_query.domain.models.DisplayInterval`.
    bindings: Optional[Mapping[str, Any]]
        Variables available to parameter values.

    Returns
    -------
    ResolvedAggregator
        Aggregator with parameters keyed by wire name; empty values omitted.
    """
    interval_value, interval_unit = parse_interval(display_interval)
    sampling: Dict[str, Any] = {}
    params: Dict[str, Any] = {}

    for param in agg.parameters:
        kind = param.type
        if auto_overridden(agg, param):
            raw: Any = (
                interval_value if kind is ParameterKind.SAMPLING else interval_unit.value
            )
        else:
            raw = _interpolate(param.value, bindings)
        if _is_empty(raw):
            continue

        if kind is ParameterKind.SAMPLING:
            number = coerce_number(raw)
            if isinstance(number, bool) or not isinstance(number, (int, float)):
                logger.warning(
                    "parameters.sampling.non_numeric",
                    extra={"aggregator": agg.name, "parameter": param.name, "value": raw},
                )
                continue
            sampling[param.name] = number
        elif kind is ParameterKind.SAMPLING_UNIT:
            unit = parse_unit(raw)
            sampling[param.name] = unit.value if unit else str(raw).lower()
        elif kind is ParameterKind.ALIGNMENT:
            params.update(alignment_flags(raw))
        elif kind is ParameterKind.ENUM:
            params[param.name] = str(raw)
        else:
            params[param.name] = coerce_number(raw)

    return ResolvedAggregator(name=agg.name, sampling=sampling or None, params=params)
