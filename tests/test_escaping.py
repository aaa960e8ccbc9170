"""
Tests for literal brace and dollar protection in templates.
"""

from kairos_query.templating.escaping import (
    DOLLAR_PLACEHOLDER,
    LEFT_BRACE_PLACEHOLDER,
    contains_template_variable,
    escape_literal_braces,
    has_escaped_literals,
    unescape_literal_braces,
)
from kairos_query.templating.variables import replace


def test_contains_template_variable():
    """Escaped dollars do not count as variable references."""
    assert contains_template_variable("$host") is True
    assert contains_template_variable("${host}") is True
    assert contains_template_variable(r"\$host") is False
    assert contains_template_variable("cost $5") is False
    assert contains_template_variable("") is False


def test_bare_braces_protected_without_variables():
    """Braces in variable-free text are replaced by placeholders."""
    escaped = escape_literal_braces("path/{id}")
    assert "{" not in escaped
    assert LEFT_BRACE_PLACEHOLDER in escaped
    assert unescape_literal_braces(escaped) == "path/{id}"


def test_bare_braces_kept_with_variables():
    """Braces belong to variable syntax when variables are present."""
    assert escape_literal_braces("${host}/x") == "${host}/x"


def test_escaped_dollar_survives_interpolation():
    """An escaped dollar is restored after the renderer runs."""
    escaped = escape_literal_braces(r"\$host is $host")
    assert DOLLAR_PLACEHOLDER in escaped
    rendered = replace(escaped, {"host": "web01"})
    assert unescape_literal_braces(rendered) == "$host is web01"


def test_escaped_braces_with_variables():
    """Escaped braces stay literal next to real references."""
    escaped = escape_literal_braces(r"\{${host}\}")
    rendered = unescape_literal_braces(replace(escaped, {"host": "a"}))
    assert rendered == "{a}"


def test_plain_reference_followed_by_escaped_character():
    """A $name reference glued to an escaped character still resolves."""
    for template, expected in (
        (r"$host\$", "web01$"),
        (r"\{$host\}", "{web01}"),
        (r"$host\\", "web01\\"),
    ):
        rendered = replace(escape_literal_braces(template), {"host": "web01"})
        assert unescape_literal_braces(rendered) == expected


def test_has_escaped_literals():
    """Placeholders are detectable until unescaped."""
    escaped = escape_literal_braces("{x}")
    assert has_escaped_literals(escaped) is True
    assert has_escaped_literals(unescape_literal_braces(escaped)) is False
