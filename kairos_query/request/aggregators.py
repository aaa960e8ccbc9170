"""Catalog of KairosDB aggregators.

The catalog is a data table: one :class:`AggregatorDefinition` per aggregator
name listing its default parameters, whether it samples over a time range,
and whether its output is a scalar series. New aggregators are added by
appending a row, not by subclassing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..domain.models import (
    AggregatorParameter,
    AggregatorSpec,
    AutoValueSwitch,
    ParameterKind,
)

logger = logging.getLogger(__name__)

# (name, kind, default value)
ParamDefault = Tuple[str, ParameterKind, Any]

_SAMPLING: List[ParamDefault] = [
    ("value", ParameterKind.SAMPLING, 1),
    ("unit", ParameterKind.SAMPLING_UNIT, "minutes"),
]

_AUTO_KINDS = [ParameterKind.SAMPLING, ParameterKind.SAMPLING_UNIT]


@dataclass(frozen=True)
class AggregatorDefinition:
    """Static description of one aggregator.

    Attributes
    ----------
    name: str
        KairosDB aggregator name.
    parameters: List[ParamDefault]
        Default parameters in editor order.
    samples: bool
        True for range aggregators that need a ``sampling`` object.
    scalar: bool
        True when the aggregator reduces values to a scalar series.
    """

    name: str
    parameters: List[ParamDefault] = field(default_factory=list)
    samples: bool = False
    scalar: bool = True

    def default_auto_switch(self) -> Optional[AutoValueSwitch]:
        if not self.samples:
            return None
        return AutoValueSwitch(enabled=True, dependent_parameters=list(_AUTO_KINDS))


def _range(name: str, *extra: ParamDefault) -> AggregatorDefinition:
    return AggregatorDefinition(name=name, parameters=list(extra) + _SAMPLING, samples=True)


_CATALOG: Dict[str, AggregatorDefinition] = {
    d.name: d
    for d in [
        AggregatorDefinition(
            "apdex",
            _SAMPLING + [("target", ParameterKind.LITERAL, 0.5)],
            samples=True,
        ),
        _range("avg"),
        _range("count"),
        _range("dev"),
        AggregatorDefinition("diff"),
        AggregatorDefinition("div", [("divisor", ParameterKind.LITERAL, 1)]),
        AggregatorDefinition(
            "filter",
            [
                ("filter_op", ParameterKind.ENUM, "GT"),
                ("threshold", ParameterKind.LITERAL, 0),
                ("filter_indeterminate_inclusion", ParameterKind.ENUM, "keep"),
            ],
        ),
        _range("first"),
        _range("gaps"),
        _range("last"),
        _range("least_squares"),
        _range("max"),
        # merge combines histograms and keeps them histogram-shaped
        AggregatorDefinition(
            "merge",
            _SAMPLING + [("precision", ParameterKind.LITERAL, 12)],
            samples=True,
            scalar=False,
        ),
        _range("min"),
        _range("movingWindow"),
        AggregatorDefinition("percent_remaining"),
        _range("percentile", ("percentile", ParameterKind.LITERAL, 0.95)),
        AggregatorDefinition("rate", [("unit", ParameterKind.ENUM, "SECONDS")]),
        _range("sampler"),
        AggregatorDefinition("scale", [("factor", ParameterKind.LITERAL, 1)]),
        AggregatorDefinition("sma", [("size", ParameterKind.LITERAL, 10)]),
        _range("sum"),
        AggregatorDefinition("trim", [("trim", ParameterKind.ENUM, "first")]),
    ]
}

SCALAR_AGGREGATOR_NAMES = frozenset(n for n, d in _CATALOG.items() if d.scalar)


def available_aggregators() -> List[str]:
    """Return catalog aggregator names sorted alphabetically."""
    return sorted(_CATALOG, key=str.lower)


def get_definition(name: str) -> Optional[AggregatorDefinition]:
    """Return the catalog row for ``name`` or None for unknown aggregators."""
    return _CATALOG.get(name)


def requires_sampling(name: str) -> bool:
    """True when ``name`` is a range aggregator that takes ``sampling``."""
    definition = _CATALOG.get(name)
    return bool(definition and definition.samples)


def is_scalar(name: str) -> bool:
    return name in SCALAR_AGGREGATOR_NAMES


def create_aggregator(name: str) -> AggregatorSpec:
    """Build an :class:`AggregatorSpec` populated with catalog defaults.

    Unknown names produce an aggregator without parameters.
    """
    definition = _CATALOG.get(name)
    if definition is None:
        logger.warning("aggregators.unknown", extra={"aggregator": name})
        return AggregatorSpec(name=name)
    return AggregatorSpec(
        name=name,
        parameters=[
            AggregatorParameter(name=p, type=kind, value=value, text=str(value))
            for p, kind, value in definition.parameters
        ],
        auto_value_switch=definition.default_auto_switch(),
    )
