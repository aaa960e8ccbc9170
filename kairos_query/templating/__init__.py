"""Template variable expansion, interpolation and literal escaping."""

from .variables import (
    Expansion,
    TemplateRenderer,
    VariableTemplater,
    expand,
    find_variables,
    has_variables,
    replace,
)

__all__ = [
    "Expansion",
    "TemplateRenderer",
    "VariableTemplater",
    "expand",
    "find_variables",
    "has_variables",
    "replace",
]
