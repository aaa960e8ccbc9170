"""Reshaping of a KairosDB batch response into named series.

The batch response lists one result set per request position. Each
position is looked up in the :class:`~kairos_query.domain.models.QueryIndexMap`
built when the request was materialized, so the originating target and
its binding set are known without looking at metric names. Every result
group of that position becomes one emitted series.

Alias templates may reference three families of synthesized variables:

- ``$_tag_group_<tag>``: value of a grouped tag for this result group
- ``$_value_group_<n>``: ``G<group_number>`` of the n-th value grouping
- ``$_time_group_<n>``: ``G<group_number>_<group_count>`` of the n-th
  time grouping
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from ..domain.models import EmittedSeries, ExpandedQuery, QueryIndexMap
from ..schemas.kairosdb import DatapointsResponse, GroupByName, GroupByResult, ResultGroup
from ..templating.escaping import escape_literal_braces, unescape_literal_braces
from ..templating.variables import TemplateRenderer, VariableTemplater, scalar_bindings
from .histogram import convert

logger = logging.getLogger(__name__)

TAG_GROUP_PREFIX = "_tag_group_"
VALUE_GROUP_PREFIX = "_value_group_"
TIME_GROUP_PREFIX = "_time_group_"

ResponseLike = Union[DatapointsResponse, Mapping[str, Any], Sequence[Sequence[Any]]]

_default_renderer = VariableTemplater()


def _result_groups(response: ResponseLike) -> List[List[ResultGroup]]:
    """Normalize a response into one list of result groups per position."""
    if isinstance(response, DatapointsResponse):
        return [list(q.results) for q in response.queries]
    if isinstance(response, Mapping):
        return _result_groups(DatapointsResponse.model_validate(response))
    positions: List[List[ResultGroup]] = []
    for groups in response or []:
        if isinstance(groups, Mapping) and "results" in groups:
            groups = groups.get("results") or []
        parsed: List[ResultGroup] = []
        for group in groups or []:
            if isinstance(group, ResultGroup):
                parsed.append(group)
                continue
            try:
                parsed.append(ResultGroup.model_validate(group))
            except ValidationError:
                logger.warning("reshaper.result.invalid", extra={"group": repr(group)[:200]})
        positions.append(parsed)
    return positions


def _grouped_tag_names(query: ExpandedQuery) -> List[str]:
    names: List[str] = []
    for clause in query.group_by:
        if clause.get("name") == GroupByName.TAG.value:
            for tag in clause.get("tags") or []:
                if tag not in names:
                    names.append(tag)
    return names


def _entries(group: ResultGroup, kind: GroupByName) -> List[GroupByResult]:
    return [g for g in group.group_by if g.name == kind.value]


def grouping_values(group: ResultGroup, tag_names: Iterable[str]) -> Dict[str, str]:
    """Resolve the value each grouped tag has in ``group``.

    The explicit ``group`` map of a tag grouping entry is authoritative.
    The flat ``tags`` map is used only when no tag grouping metadata is
    present, since it may list every candidate value of a tag. Tags
    resolved by neither are absent from the result.
    """
    tag_entries = _entries(group, GroupByName.TAG)
    explicit: Dict[str, str] = {}
    for entry in tag_entries:
        for key, value in entry.group.items():
            if value is not None:
                explicit[str(key)] = str(value)

    resolved: Dict[str, str] = {}
    for tag in tag_names:
        if tag in explicit:
            resolved[tag] = explicit[tag]
        elif not tag_entries and group.tags.get(tag):
            resolved[tag] = group.tags[tag][0]
    return resolved


def group_variables(group: ResultGroup, tag_values: Mapping[str, str]) -> Dict[str, str]:
    """Synthesize the alias variables describing this result group."""
    variables = {f"{TAG_GROUP_PREFIX}{tag}": value for tag, value in tag_values.items()}
    for i, entry in enumerate(_entries(group, GroupByName.VALUE)):
        number = entry.group.get("group_number")
        if number is not None:
            variables[f"{VALUE_GROUP_PREFIX}{i}"] = f"G{number}"
    for i, entry in enumerate(_entries(group, GroupByName.TIME)):
        number = entry.group.get("group_number")
        if number is not None:
            variables[f"{TIME_GROUP_PREFIX}{i}"] = f"G{number}_{entry.group_count}"
    return variables


def _replace_group_variables(
    text: str, variables: Mapping[str, str], reserved: Iterable[str] = ()
) -> str:
    # $name tokens are greedy on word characters, so a renderer cannot split
    # "$_tag_group_host_suffix"; substitute the longest names first. A match
    # that is the start of a longer reserved name belongs to that name.
    known = set(variables) | set(reserved)
    for name in sorted(variables, key=len, reverse=True):
        value = variables[name]
        text = text.replace("${" + name + "}", value)
        tails = sorted(
            (k[len(name):] for k in known if len(k) > len(name) and k.startswith(name)),
            key=len,
            reverse=True,
        )
        pattern = re.escape("$" + name)
        if tails:
            pattern += "(?!" + "|".join(re.escape(t) for t in tails) + ")"
        text = re.sub(pattern, lambda _match: value, text)
    return text


def render_alias(
    alias: str,
    query: ExpandedQuery,
    group_vars: Mapping[str, str],
    scoped_bindings: Optional[Mapping[str, Any]] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> str:
    """Interpolate ``alias`` for one result group.

    Bindings, lowest precedence first: single-valued scoped variables, the
    expansion's binding set, then the group variables. Multi-valued scoped
    variables are never offered to the renderer.
    """
    bindings: Dict[str, Any] = scalar_bindings(scoped_bindings)
    bindings.update(query.binding_set)
    bindings.update(group_vars)
    rendered = (renderer or _default_renderer).replace(escape_literal_braces(alias), bindings)
    reserved = [f"{TAG_GROUP_PREFIX}{tag}" for tag in _grouped_tag_names(query)]
    rendered = _replace_group_variables(rendered, group_vars, reserved)
    return unescape_literal_braces(rendered)


def fallback_name(
    query: ExpandedQuery, group: ResultGroup, tag_values: Mapping[str, str]
) -> str:
    """Metric name suffixed with the filtered and grouped tags of ``group``.

    >>> fallback_name(query, group, {"host": "web01"})  # doctest: +SKIP
    'cpu.usage{host=web01}'
    """
    keys = [k for k in query.tags if group.tags.get(k)]
    keys.extend(k for k in tag_values if k not in keys)
    if not keys:
        return query.metric_name
    parts = []
    for key in keys:
        if key in tag_values:
            parts.append(f"{key}={tag_values[key]}")
        else:
            parts.append(f"{key}={','.join(group.tags[key])}")
    return f"{query.metric_name}{{{', '.join(parts)}}}"


def reshape_group(
    query: ExpandedQuery,
    group: ResultGroup,
    scoped_bindings: Optional[Mapping[str, Any]] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> EmittedSeries:
    """Emit the series for one result group of ``query``."""
    target = query.source_target
    tag_values = grouping_values(group, _grouped_tag_names(query))
    if target.alias:
        name = render_alias(
            target.alias,
            query,
            group_variables(group, tag_values),
            scoped_bindings,
            renderer,
        )
    else:
        name = fallback_name(query, group, tag_values)
    series = convert(
        group.name or query.metric_name,
        name,
        target.ref_id,
        query.sampling_interval_ms(),
        group.values,
    )
    series.labels = dict(tag_values)
    return series


def reshape(
    response: ResponseLike,
    index_map: QueryIndexMap,
    scoped_bindings: Optional[Mapping[str, Any]] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> List[EmittedSeries]:
    """Walk a batch response and emit one series per result group.

    Parameters
    ----------
    response: ResponseLike
        Parsed or raw ``/api/v1/datapoints/query`` response, or a list
        of result group lists in batch order.
    index_map: QueryIndexMap
        Map built when the batch was materialized.
    scoped_bindings: Optional[Mapping[str, Any]]
        Dashboard variables; only single-valued ones reach the alias.
    renderer: Optional[TemplateRenderer]
        Templating collaborator for alias interpolation.

    Returns
    -------
    List[EmittedSeries]
        Series in response order. Positions without a map entry and
        result groups without datapoints are skipped.
    """
    positions = _result_groups(response)
    if len(positions) != len(index_map):
        logger.warning(
            "reshaper.position_mismatch",
            extra={"response_positions": len(positions), "queries": len(index_map)},
        )

    emitted: List[EmittedSeries] = []
    for position, groups in enumerate(positions):
        query = index_map.get(position)
        if query is None:
            logger.warning("reshaper.position.unmapped", extra={"position": position})
            continue
        for group in groups:
            if not group.values:
                continue
            emitted.append(reshape_group(query, group, scoped_bindings, renderer))
    logger.debug(
        "reshaper.done",
        extra={"positions": len(positions), "series": len(emitted)},
    )
    return emitted
