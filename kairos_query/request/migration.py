"""Migration of stored targets from earlier editor schemas.

Three generations of stored targets exist:

1. Angular-era targets (``metric``, ``horizontalAggregators``,
   ``groupByTags``, ``nonTagGroupBys``, ``aliasMode``).
2. Early structured targets wrapped in ``{"query": {...}}`` whose
   parameters hold ``allowedValues`` lookup tables, whose auto-value
   switches list parameter objects, and whose time/value group-bys are
   lists.
3. The current flat shape accepted by :class:`~kairos_query.domain.models.Target`.

:func:`migrate` brings any of them to the current shape; applied to a
current target it returns an equal target.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..domain.models import Target
from ..domain.utils.units import TimeUnit, parse_interval, parse_unit
from .aggregators import create_aggregator, get_definition

logger = logging.getLogger(__name__)

_LEGACY_TARGET_KEYS = (
    "metric",
    "horizontalAggregators",
    "horAggregator",
    "groupByTags",
    "nonTagGroupBys",
    "downsampling",
)

# Angular editor field -> parameter name of the current catalog
_LEGACY_PARAM_FIELDS = {
    "percentile": ("percentile", "percentile"),
    "scale": ("factor", "factor"),
    "div": ("factor", "divisor"),
    "trim": ("trim", "trim"),
    "rate": ("unit", "unit"),
}


def _is_legacy_target(obj: Mapping[str, Any]) -> bool:
    if "metricName" in obj:
        return False
    return any(key in obj for key in _LEGACY_TARGET_KEYS)


def _aggregators_need_migration(aggregators: Any) -> bool:
    if not isinstance(aggregators, list):
        return False
    for agg in aggregators:
        if not isinstance(agg, dict):
            continue
        switch = agg.get("autoValueSwitch") or {}
        deps = switch.get("dependentParameters") if isinstance(switch, dict) else None
        if isinstance(deps, list) and any(isinstance(d, dict) for d in deps):
            return True
        for param in agg.get("parameters") or []:
            if isinstance(param, dict) and isinstance(param.get("allowedValues"), dict):
                return True
    return False


def _group_by_needs_migration(group_by: Any) -> bool:
    if not isinstance(group_by, dict):
        return False
    return isinstance(group_by.get("time"), list) or isinstance(
        group_by.get("value"), list
    )


def _unwrap(obj: Mapping[str, Any]) -> Dict[str, Any]:
    query = obj.get("query")
    if not isinstance(query, dict):
        return dict(obj)
    inner = dict(query)
    for key in ("refId", "hide"):
        if key in obj and key not in inner:
            inner[key] = obj[key]
    return inner


def needs_migration(obj: Any) -> bool:
    """Return True when ``obj`` is stored in an earlier schema shape.

    The check is structural: legacy target keys, wrapped queries,
    ``allowedValues`` lookup tables, parameter objects inside auto-value
    switches, and list-valued time/value group-bys.
    """
    if isinstance(obj, Target) or not isinstance(obj, Mapping):
        return False
    if isinstance(obj.get("query"), dict):
        return True
    if _is_legacy_target(obj):
        return True
    return _aggregators_need_migration(obj.get("aggregators")) or (
        _group_by_needs_migration(obj.get("groupBy"))
    )


def migrate_parameter_value(param: Mapping[str, Any]) -> Any:
    """Resolve a parameter value stored as a key into ``allowedValues``."""
    value = param.get("value")
    allowed = param.get("allowedValues")
    if isinstance(allowed, dict) and value is not None:
        mapped = allowed.get(str(value), allowed.get(value))
        if mapped is not None:
            value = mapped
    if param.get("type") == "sampling_unit" and isinstance(value, str):
        return value.lower()
    return "" if value is None else value


def migrate_auto_value_switch(switch: Any) -> Optional[Dict[str, Any]]:
    """Convert dependent parameter objects into a list of kind names."""
    if not isinstance(switch, dict):
        return None
    deps: List[str] = []
    for dep in switch.get("dependentParameters") or []:
        if isinstance(dep, str):
            deps.append(dep)
        elif isinstance(dep, dict) and dep.get("type"):
            deps.append(dep["type"])
    return {"enabled": bool(switch.get("enabled")), "dependentParameters": deps}


def migrate_aggregators(aggregators: Any) -> List[Dict[str, Any]]:
    """Bring a stored aggregator list to the current parameter shape."""
    if not isinstance(aggregators, list):
        return []
    migrated: List[Dict[str, Any]] = []
    for agg in aggregators:
        if not isinstance(agg, dict):
            continue
        params = []
        for param in agg.get("parameters") or []:
            if not isinstance(param, dict) or not param.get("name"):
                continue
            params.append(
                {
                    "name": param["name"],
                    "type": param.get("type") or "",
                    "value": migrate_parameter_value(param),
                    "text": param.get("text") or param["name"],
                }
            )
        entry: Dict[str, Any] = {"name": agg.get("name", ""), "parameters": params}
        switch = migrate_auto_value_switch(agg.get("autoValueSwitch"))
        if switch is not None:
            entry["autoValueSwitch"] = switch
        migrated.append(entry)
    return migrated


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def migrate_group_by(group_by: Any) -> Dict[str, Any]:
    """Collapse list-valued time/value group-bys into single clauses."""
    if not isinstance(group_by, dict):
        return {"tags": []}
    result: Dict[str, Any] = {"tags": list(group_by.get("tags") or [])}
    time = _first(group_by.get("time"))
    if isinstance(time, dict) and time:
        value = time.get("value", time.get("interval"))
        count = time.get("range_size", time.get("count"))
        unit = parse_unit(time.get("unit"))
        if value not in (None, ""):
            result["time"] = {
                "value": float(value) if "." in str(value) else int(value),
                "unit": unit.value if unit else str(time.get("unit", "")).lower(),
                "range_size": int(count) if count not in (None, "") else None,
            }
    value_clause = _first(group_by.get("value"))
    if isinstance(value_clause, dict):
        value_clause = value_clause.get("range_size")
    if value_clause not in (None, ""):
        result["value"] = {"range_size": float(value_clause)}
    return result


def _legacy_aggregator(entry: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    name = entry.get("name")
    if not name:
        return None
    definition = get_definition(name)
    params: List[Dict[str, Any]] = []
    if definition is not None and definition.samples:
        value, unit = parse_interval(entry.get("sampling_rate") or "1m")
        params.extend(
            [
                {"name": "sampling", "type": "alignment", "value": "PERIOD", "text": "align by"},
                {"name": "value", "type": "sampling", "value": str(value), "text": "every"},
                {"name": "unit", "type": "sampling_unit", "value": unit.value, "text": "unit"},
            ]
        )
    field_map = _LEGACY_PARAM_FIELDS.get(name)
    if field_map is not None:
        legacy_field, param_name = field_map
        raw = entry.get(legacy_field)
        if raw not in (None, ""):
            value = raw
            if name == "rate":
                unit_value = parse_unit(raw)
                value = (unit_value or TimeUnit.SECONDS).name
            params.insert(0, {"name": param_name, "type": "any", "value": value})
    if not params and definition is not None:
        return create_aggregator(name).model_dump(by_alias=True, mode="json")
    return {
        "name": name,
        "parameters": params,
        "autoValueSwitch": {
            "enabled": False,
            "dependentParameters": ["sampling", "sampling_unit"],
        },
    }


def convert_legacy_target(obj: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert an Angular-era target into the current editor shape."""
    tags = {
        k: [str(x) for x in (v if isinstance(v, list) else [v])]
        for k, v in (obj.get("tags") or {}).items()
    }
    group_by: Dict[str, Any] = {"tags": list(obj.get("groupByTags") or [])}
    for clause in obj.get("nonTagGroupBys") or []:
        if not isinstance(clause, dict):
            continue
        if clause.get("name") == "value" and clause.get("range_size") not in (None, ""):
            group_by["value"] = {"range_size": float(clause["range_size"])}
        elif clause.get("name") == "time" and clause.get("range_size"):
            value, unit = parse_interval(clause["range_size"])
            count = clause.get("group_count")
            group_by["time"] = {
                "value": value,
                "unit": unit.value,
                "range_size": int(count) if count not in (None, "") else None,
            }
    aggregators = [
        agg
        for agg in (
            _legacy_aggregator(entry)
            for entry in obj.get("horizontalAggregators") or []
            if isinstance(entry, dict)
        )
        if agg is not None
    ]
    return {
        "metricName": obj.get("metric") or "",
        "alias": (obj.get("alias") or "") if obj.get("aliasMode") == "custom" else "",
        "tags": tags,
        "groupBy": group_by,
        "aggregators": aggregators,
        "refId": obj.get("refId", "A"),
        "hide": bool(obj.get("hide", False)),
    }


def migrate(obj: Any) -> Target:
    """Return ``obj`` as a current :class:`Target`, converting if needed."""
    if isinstance(obj, Target):
        return obj
    if not isinstance(obj, Mapping):
        raise TypeError(f"Cannot migrate target of type {type(obj).__name__}")
    if not needs_migration(obj):
        return Target.model_validate(obj)
    data = _unwrap(obj)
    if _is_legacy_target(data):
        logger.info("migration.legacy_target", extra={"ref_id": data.get("refId")})
        data = convert_legacy_target(data)
    if _aggregators_need_migration(data.get("aggregators")):
        data["aggregators"] = migrate_aggregators(data["aggregators"])
    if _group_by_needs_migration(data.get("groupBy")):
        data["groupBy"] = migrate_group_by(data["groupBy"])
    return Target.model_validate(data)
