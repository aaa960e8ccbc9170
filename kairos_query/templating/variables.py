"""Template variable expansion and interpolation.

Two operations share one tokenizer:

- :func:`expand` turns a template into one concrete string per combination
  of the values bound to the variables it references (cartesian product,
  first-referenced variable varying slowest). Each result carries the scalar
  binding chosen for every expanded variable.
- :func:`replace` interpolates a template into a single string, rendering
  multi-value bindings with a format such as ``csv`` or ``regex``.

Supported reference syntax: ``$name``, ``${name}``, ``${name:format}`` and
``[[name]]``/``[[name:format]]``. In literal text a backslash escapes ``$``,
``{``, ``}``, ``,`` and itself. Substituted values are never rescanned.
"""

from __future__ import annotations

import itertools
import json
import logging
import re
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Protocol, Union

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(
    r"\\(?P<escaped>[$\\{},])"
    r"|\$\{(?P<braced>\w+)(?::(?P<braced_fmt>[^}]*))?\}"
    r"|\[\[(?P<bracketed>\w+)(?::(?P<bracketed_fmt>[^\]]*))?\]\]"
    r"|\$(?P<plain>\w+)"
)


class VariableRef(NamedTuple):
    """Reference to a variable inside a template."""

    name: str
    fmt: Optional[str]
    raw: str


Segment = Union[str, VariableRef]


class Expansion(NamedTuple):
    """One concrete rendering of a template.

    Attributes
    ----------
    text: str
        Template with every bound variable substituted by a single value.
    binding_set: Dict[str, str]
        Scalar value chosen for each substituted variable.
    """

    text: str
    binding_set: Dict[str, str]


class TemplateRenderer(Protocol):
    """Interpolation collaborator used for series aliases.

    Implementations must leave references to unknown variables in place.
    """

    def replace(self, template: str, bindings: Mapping[str, Any]) -> str:
        """Return ``template`` with variables substituted from ``bindings``."""
        raise NotImplementedError


def tokenize(template: str) -> List[Segment]:
    """Split ``template`` into literal strings and :class:`VariableRef` items.

    Adjacent literal text (including unescaped characters) is merged.
    """
    segments: List[Segment] = []
    literal: List[str] = []
    pos = 0
    for match in _TOKEN_RE.finditer(template):
        literal.append(template[pos : match.start()])
        pos = match.end()
        if match.group("escaped") is not None:
            literal.append(match.group("escaped"))
            continue
        if literal:
            text = "".join(literal)
            if text:
                segments.append(text)
            literal = []
        name = match.group("braced") or match.group("bracketed") or match.group("plain")
        fmt = match.group("braced_fmt") or match.group("bracketed_fmt") or None
        segments.append(VariableRef(name=name, fmt=fmt, raw=match.group(0)))
    literal.append(template[pos:])
    text = "".join(literal)
    if text:
        segments.append(text)
    return segments


def find_variables(template: str) -> List[str]:
    """Return distinct variable names referenced by ``template`` in order."""
    seen: Dict[str, None] = {}
    for segment in tokenize(template or ""):
        if isinstance(segment, VariableRef):
            seen.setdefault(segment.name, None)
    return list(seen)


def has_variables(template: str) -> bool:
    """Return True when ``template`` references at least one variable."""
    return bool(find_variables(template))


def binding_values(binding: Any) -> Optional[List[str]]:
    """Normalize a binding to its list of string values.

    Accepts scalars, lists and ``{"text": ..., "value": ...}`` mappings.
    Returns None for missing bindings and for empty lists, which are
    treated the same as an unbound variable.
    """
    if isinstance(binding, Mapping):
        if "value" not in binding:
            return None
        binding = binding["value"]
    if binding is None:
        return None
    if isinstance(binding, (list, tuple)):
        values = [_stringify(v) for v in binding if v is not None]
        return values or None
    return [_stringify(binding)]


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def scalar_bindings(bindings: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Keep only bindings that resolve to exactly one value."""
    scalars: Dict[str, str] = {}
    for name, binding in (bindings or {}).items():
        values = binding_values(binding)
        if values is not None and len(values) == 1:
            scalars[name] = values[0]
    return scalars


def expand(template: str, bindings: Optional[Mapping[str, Any]]) -> List[Expansion]:
    """Expand ``template`` into one string per combination of bound values.

    Parameters
    ----------
    template: str
        Template possibly referencing variables.
    bindings: Optional[Mapping[str, Any]]
        Variable name to scalar, list of values, or ``{text, value}``.

    Returns
    -------
    List[Expansion]
        ``[]`` for an empty template. Otherwise the product of the value
        counts of every distinct bound variable; a template without bound
        variables yields one expansion with an empty binding set.
        References without a binding stay verbatim and are not part of
        any binding set.
    """
    if not template:
        return []
    bindings = bindings or {}
    segments = tokenize(template)

    names: List[str] = []
    choices: List[List[str]] = []
    for segment in segments:
        if isinstance(segment, VariableRef) and segment.name not in names:
            values = binding_values(bindings.get(segment.name))
            if values is None:
                continue
            names.append(segment.name)
            choices.append(values)

    expansions: List[Expansion] = []
    for combo in itertools.product(*choices):
        chosen = dict(zip(names, combo))
        parts = []
        for segment in segments:
            if isinstance(segment, VariableRef):
                parts.append(chosen.get(segment.name, segment.raw))
            else:
                parts.append(segment)
        expansions.append(Expansion(text="".join(parts), binding_set=chosen))

    if len(expansions) > 1:
        logger.debug(
            "templating.expand.multi",
            extra={"template": template, "variables": names, "count": len(expansions)},
        )
    return expansions


def format_values(values: List[str], fmt: Optional[str]) -> str:
    """Render a list of values for interpolation.

    Formats: ``csv`` (default), ``pipe``, ``regex``, ``glob``, ``json``,
    ``raw``. Unknown formats fall back to ``csv``.
    """
    fmt = (fmt or "csv").lower()
    if fmt == "regex":
        escaped = [re.escape(v) for v in values]
        return escaped[0] if len(escaped) == 1 else "(" + "|".join(escaped) + ")"
    if fmt == "pipe":
        return "|".join(values)
    if fmt == "glob":
        return values[0] if len(values) == 1 else "{" + ",".join(values) + "}"
    if fmt == "json":
        return json.dumps(values[0] if len(values) == 1 else values)
    return ",".join(values)


def replace(
    template: str,
    bindings: Optional[Mapping[str, Any]],
    default_format: Optional[str] = None,
) -> str:
    """Interpolate ``template`` into a single string.

    Unknown variables are left as written; multi-value bindings are joined
    according to the reference's format, or ``default_format``.
    """
    if not template:
        return ""
    bindings = bindings or {}
    parts = []
    for segment in tokenize(template):
        if isinstance(segment, VariableRef):
            values = binding_values(bindings.get(segment.name))
            if values is None:
                parts.append(segment.raw)
            else:
                parts.append(format_values(values, segment.fmt or default_format))
        else:
            parts.append(segment)
    return "".join(parts)


class VariableTemplater:
    """Default :class:`TemplateRenderer` backed by :func:`replace`."""

    def __init__(self, default_format: Optional[str] = None) -> None:
        self._default_format = default_format

    def replace(self, template: str, bindings: Mapping[str, Any]) -> str:
        return replace(template, bindings, self._default_format)
