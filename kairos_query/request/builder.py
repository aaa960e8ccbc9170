"""Materialization of panel targets into a KairosDB batch request.

Every target is expanded over the variables referenced by its metric name;
each expansion becomes one :class:`ExpandedQuery`. Targets are processed in
the order given and the expansions of one target stay contiguous, so the
position of a query in the batch is the only key needed to match the
response back to its target and binding set.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..domain.models import (
    ExpandedQuery,
    GroupBy,
    MaterializedBatch,
    QueryIndexMap,
    Target,
)
from ..domain.utils.units import parse_unit
from ..domain.utils.values import coerce_number
from ..schemas.kairosdb import DatapointsRequest, GroupByName
from ..templating.variables import Expansion, expand
from .parameters import materialize as materialize_aggregator

logger = logging.getLogger(__name__)

TargetLike = Union[Target, Mapping[str, Any]]


def _as_target(target: TargetLike) -> Target:
    if isinstance(target, Target):
        return target
    return Target.model_validate(target)


def _expand_all(
    templates: Iterable[str], bindings: Mapping[str, Any]
) -> List[str]:
    """Expand each template and flatten, dropping duplicates in order."""
    seen: Dict[str, None] = {}
    for template in templates:
        for expansion in expand(template, bindings):
            if expansion.text:
                seen.setdefault(expansion.text, None)
    return list(seen)


def resolve_tags(
    tags: Mapping[str, Sequence[str]], bindings: Mapping[str, Any]
) -> Dict[str, List[str]]:
    """Substitute variables in tag filter values.

    Multi-value bindings fan out into several values for the same tag key.
    Keys whose value list resolves to nothing are dropped.
    """
    resolved: Dict[str, List[str]] = {}
    for key, values in tags.items():
        flat = _expand_all(values, bindings)
        if flat:
            resolved[key] = flat
    return resolved


def build_group_by(group_by: GroupBy, bindings: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Translate the target's grouping directives into wire clauses."""
    clauses: List[Dict[str, Any]] = []
    tag_names = _expand_all(group_by.tags, bindings)
    if tag_names:
        clauses.append({"name": GroupByName.TAG.value, "tags": tag_names})

    time = group_by.time
    if time is not None and time.value and time.unit:
        unit = parse_unit(time.unit)
        clause: Dict[str, Any] = {
            "name": GroupByName.TIME.value,
            "range_size": {
                "value": coerce_number(time.value),
                "unit": unit.value if unit else str(time.unit).lower(),
            },
        }
        if time.range_size:
            clause["group_count"] = time.range_size
        clauses.append(clause)

    value = group_by.value
    if value is not None and value.range_size:
        clauses.append(
            {"name": GroupByName.VALUE.value, "range_size": coerce_number(value.range_size)}
        )
    return clauses


def build_query(
    target: Target,
    expansion: Expansion,
    display_interval: Any,
    scoped_bindings: Optional[Mapping[str, Any]] = None,
) -> ExpandedQuery:
    """Build the concrete query for one expansion of ``target``.

    Variables bound by the expansion take precedence over the caller's
    scoped bindings when resolving tags, group-by tags and parameters.
    """
    bindings: Dict[str, Any] = dict(scoped_bindings or {})
    bindings.update(expansion.binding_set)
    return ExpandedQuery(
        metric_name=expansion.text,
        tags=resolve_tags(target.tags, bindings),
        aggregators=[
            materialize_aggregator(agg, display_interval, bindings)
            for agg in target.aggregators
        ],
        group_by=build_group_by(target.group_by, bindings),
        source_target=target,
        binding_set=dict(expansion.binding_set),
    )


def materialize(
    targets: Sequence[TargetLike],
    display_interval: Any,
    scoped_bindings: Optional[Mapping[str, Any]] = None,
) -> MaterializedBatch:
    """Expand targets into batch queries plus the position index.

    Parameters
    ----------
    targets: Sequence[TargetLike]
        Targets in panel order, as models or editor JSON.
    display_interval: Any
        Interval used for auto-sampled aggregator parameters.
    scoped_bindings: Optional[Mapping[str, Any]]
        Dashboard variables; values may be scalars or lists.

    Returns
    -------
    MaterializedBatch
        Queries in batch order and the matching :class:`QueryIndexMap`.
        Hidden targets and targets whose metric name is empty add nothing.
    """
    queries: List[ExpandedQuery] = []
    for raw in targets:
        target = _as_target(raw)
        if target.hide:
            logger.debug("builder.target.hidden", extra={"ref_id": target.ref_id})
            continue
        expansions = expand(target.metric_name, scoped_bindings)
        if not expansions:
            logger.debug("builder.target.no_metric", extra={"ref_id": target.ref_id})
            continue
        for expansion in expansions:
            queries.append(
                build_query(target, expansion, display_interval, scoped_bindings)
            )
    logger.debug(
        "builder.materialized",
        extra={"targets": len(targets), "queries": len(queries)},
    )
    return MaterializedBatch(queries=queries, index_map=QueryIndexMap(queries))


def build_datapoints_request(
    batch: Union[MaterializedBatch, Sequence[ExpandedQuery]],
    start_ms: int,
    end_ms: Optional[int] = None,
) -> DatapointsRequest:
    """Wrap materialized queries into the batch request body."""
    queries = batch.queries if isinstance(batch, MaterializedBatch) else list(batch)
    return DatapointsRequest(
        start_absolute=int(start_ms),
        end_absolute=int(end_ms) if end_ms is not None else None,
        metrics=[q.to_wire() for q in queries],
    )
