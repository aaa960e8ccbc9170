"""Dashboard variable queries.

Three query functions populate dashboard variables from KairosDB:

- ``metrics(pattern)``: metric names matching ``pattern``
- ``tag_names(metric)``: tag keys recorded for ``metric``
- ``tag_values(metric, tag[, key=value ...])``: values of ``tag``,
  optionally restricted by tag filters

The legacy argument order ``tag_values(metric, key=value, ..., tag)`` is
accepted as well. Arguments may be quoted; commas inside quotes do not
split arguments.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol

from pydantic import BaseModel, Field

from .variables import expand, replace

logger = logging.getLogger(__name__)

_METRICS_RE = re.compile(r"^metrics\s*\(\s*(.*?)\s*\)$", re.IGNORECASE)
_TAG_NAMES_RE = re.compile(r"^tag_names\s*\(\s*(.*?)\s*\)$", re.IGNORECASE)
_TAG_VALUES_RE = re.compile(r"^tag_values\s*\(\s*(.+)\s*\)$", re.IGNORECASE)
_FILTER_RE = re.compile(r"^(.+?)=(.+)$")


class VariableQueryType(str, Enum):
    METRICS = "metrics"
    TAG_NAMES = "tag_names"
    TAG_VALUES = "tag_values"


class VariableQuery(BaseModel):
    """Parsed variable query."""

    type: VariableQueryType
    metric: str = ""
    tag_name: str = ""
    pattern: str = ""
    filters: Dict[str, str] = Field(default_factory=dict)


class MetricLookup(Protocol):
    """What the executor needs from a datasource."""

    async def metric_names(self, query: str = "") -> List[str]: ...

    async def metric_tags(
        self, metric: str, filters: Optional[Mapping[str, List[str]]] = None
    ) -> Dict[str, List[str]]: ...


def clean_parameter(param: str) -> str:
    """Trim whitespace and one pair of surrounding quotes."""
    return re.sub(r"^[\"']|[\"']$", "", param.strip())


def split_parameters(params: str) -> List[str]:
    """Split a comma-separated argument list, respecting quotes.

    >>> split_parameters("a, 'b,c', d=e")
    ['a', "'b,c'", 'd=e']
    """
    parts: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    for char in params:
        if quote is None and char in ("'", '"'):
            quote = char
        elif char == quote:
            quote = None
        elif char == "," and quote is None:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def parse_variable_query(text: str) -> Optional[VariableQuery]:
    """Parse a variable query string; None when it matches no function."""
    query = (text or "").strip()
    match = _METRICS_RE.match(query)
    if match:
        return VariableQuery(
            type=VariableQueryType.METRICS, pattern=clean_parameter(match.group(1))
        )
    match = _TAG_NAMES_RE.match(query)
    if match:
        return VariableQuery(
            type=VariableQueryType.TAG_NAMES, metric=clean_parameter(match.group(1))
        )
    match = _TAG_VALUES_RE.match(query)
    if match:
        params = split_parameters(match.group(1))
        if len(params) < 2:
            return None
        metric = clean_parameter(params[0])
        if "=" in params[1]:
            tag_name = clean_parameter(params[-1])
            filter_params = params[1:-1]
        else:
            tag_name = clean_parameter(params[1])
            filter_params = params[2:]
        filters: Dict[str, str] = {}
        for param in filter_params:
            fmatch = _FILTER_RE.match(param.strip())
            if fmatch:
                filters[clean_parameter(fmatch.group(1))] = clean_parameter(fmatch.group(2))
        return VariableQuery(
            type=VariableQueryType.TAG_VALUES,
            metric=metric,
            tag_name=tag_name,
            filters=filters,
        )
    return None


def _options(values: List[str]) -> List[Dict[str, str]]:
    return [{"text": v, "value": v} for v in values]


class VariableQueryExecutor:
    """Run parsed variable queries against a datasource.

    Parameters
    ----------
    datasource: MetricLookup
        Provides ``metric_names`` and ``metric_tags``.
    """

    def __init__(self, datasource: MetricLookup) -> None:
        self._datasource = datasource

    def resolve_filters(
        self, filters: Mapping[str, str], scoped_vars: Optional[Mapping[str, Any]]
    ) -> Dict[str, List[str]]:
        """Interpolate filter values; multi-value variables fan out.

        Values that remain unresolved variable references are dropped.
        """
        resolved: Dict[str, List[str]] = {}
        for key, template in filters.items():
            values = [
                e.text.strip()
                for e in expand(template, scoped_vars)
                if e.text.strip() and not e.text.strip().startswith("$")
            ]
            if values:
                resolved[key] = values
        return resolved

    async def execute(
        self, query: VariableQuery, scoped_vars: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, str]]:
        """Return ``[{"text", "value"}]`` options; failures yield ``[]``."""
        try:
            if query.type is VariableQueryType.METRICS:
                pattern = replace(query.pattern, scoped_vars)
                return _options(await self._datasource.metric_names(pattern))
            if query.type is VariableQueryType.TAG_NAMES:
                metric = replace(query.metric, scoped_vars)
                return _options(list(await self._datasource.metric_tags(metric)))
            metric = replace(query.metric, scoped_vars)
            tag_name = replace(query.tag_name, scoped_vars)
            filters = self.resolve_filters(query.filters, scoped_vars)
            tags = await self._datasource.metric_tags(metric, filters)
            if tag_name not in tags:
                logger.info(
                    "variable_query.tag_not_found",
                    extra={"metric": metric, "tag": tag_name},
                )
                return []
            return _options(list(tags[tag_name]))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "variable_query.failed",
                extra={"type": query.type.value, "error": str(exc)},
            )
            return []
