"""Protection of literal ``$``, ``{``, ``}`` and ``\\`` in template text.

Tag values and aliases may contain characters that an external templating
engine would interpret, for example ``some/path/{id}`` or ``cost\\$usd``.
Before handing such text to a :class:`~kairos_query.templating.variables.TemplateRenderer`
the literal characters are swapped for placeholders and restored afterwards.

Escape syntax (backslash based):

- ``\\\\`` is a literal backslash
- ``\\$`` is a literal dollar sign
- ``\\{`` and ``\\}`` are literal braces
- bare braces are literal when the text references no variable

Placeholders are delimited by NUL characters, which never continue a
variable name, so ``$host\\$`` still substitutes ``$host``.
"""

from __future__ import annotations

import re
from typing import List, Tuple

LEFT_BRACE_PLACEHOLDER = "\x00KAIROSDB_LEFT_BRACE\x00"
RIGHT_BRACE_PLACEHOLDER = "\x00KAIROSDB_RIGHT_BRACE\x00"
DOLLAR_PLACEHOLDER = "\x00KAIROSDB_DOLLAR\x00"
BACKSLASH_PLACEHOLDER = "\x00KAIROSDB_BACKSLASH\x00"

_ESCAPES = {
    "\\": BACKSLASH_PLACEHOLDER,
    "$": DOLLAR_PLACEHOLDER,
    "{": LEFT_BRACE_PLACEHOLDER,
    "}": RIGHT_BRACE_PLACEHOLDER,
}

_VARIABLE_START = re.compile(r"[A-Za-z_{]")


def _process_escapes(value: str) -> Tuple[str, bool]:
    out: List[str] = []
    has_vars = False
    i = 0
    while i < len(value):
        char = value[i]
        if char == "\\" and i + 1 < len(value) and value[i + 1] in _ESCAPES:
            out.append(_ESCAPES[value[i + 1]])
            i += 2
            continue
        if (
            char == "$"
            and i + 1 < len(value)
            and _VARIABLE_START.match(value[i + 1])
        ):
            has_vars = True
        out.append(char)
        i += 1
    return "".join(out), has_vars


def contains_template_variable(value: str) -> bool:
    """Return True when ``value`` holds an unescaped variable reference.

    >>> contains_template_variable("\\\\$foo")
    False
    >>> contains_template_variable("\\\\$foo-$bar")
    True
    """
    if not value:
        return False
    return _process_escapes(value)[1]


def escape_literal_braces(value: str) -> str:
    """Replace escaped (and, without variables, bare) literals by placeholders."""
    if not value:
        return value
    processed, has_vars = _process_escapes(value)
    if not has_vars:
        processed = processed.replace("{", LEFT_BRACE_PLACEHOLDER).replace(
            "}", RIGHT_BRACE_PLACEHOLDER
        )
    return processed


def unescape_literal_braces(value: str) -> str:
    """Restore characters protected by :func:`escape_literal_braces`."""
    if not value:
        return value
    return (
        value.replace(LEFT_BRACE_PLACEHOLDER, "{")
        .replace(RIGHT_BRACE_PLACEHOLDER, "}")
        .replace(DOLLAR_PLACEHOLDER, "$")
        .replace(BACKSLASH_PLACEHOLDER, "\\")
    )


def has_escaped_literals(value: str) -> bool:
    """Return True when ``value`` still carries any placeholder."""
    if not value:
        return False
    return any(p in value for p in _ESCAPES.values())
