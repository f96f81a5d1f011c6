"""Unit tests for Caddyfile token helpers."""

from __future__ import annotations

import pytest

from siteplane.domain.errors import GenerationError
from siteplane.proxy.caddyfile import comment, indent, quote_token, sanitize_matcher, unique_matchers


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("site-0001", "site_0001"),
        ("9b2c0c4e-5a1f", "9b2c0c4e_5a1f"),
        ("a.b/c d", "a_b_c_d"),
        ("", "_"),
    ],
)
def test_sanitize_matcher(value: str, expected: str) -> None:
    assert sanitize_matcher(value) == expected


def test_unique_matchers_suffix_collisions_in_input_order() -> None:
    assert unique_matchers(["a-1", "a_1", "a.1", "b"]) == ["a_1", "a_1_2", "a_1_3", "b"]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("example.test", "example.test"),
        ("/srv/sites/a.test/public", "/srv/sites/a.test/public"),
        ("with space", '"with space"'),
        ('say "hi"', '"say \\"hi\\""'),
        ("#hash", '"#hash"'),
        ("{braces}", '"{braces}"'),
        ("", '""'),
        ("C:\\path", "`C:\\path`"),
    ],
)
def test_quote_token(value: str, expected: str) -> None:
    assert quote_token(value) == expected


@pytest.mark.parametrize("value", ["two\nlines", "carriage\rreturn", "back\\slash`tick"])
def test_quote_token_rejects_unquotable_values(value: str) -> None:
    with pytest.raises(GenerationError):
        quote_token(value)


def test_comment_flattens_whitespace() -> None:
    assert comment("Site:  a\n b") == "# Site: a b"
    assert comment("   ") == "#"


def test_indent_uses_tabs_and_keeps_blank_lines_empty() -> None:
    assert indent(["a", "", "b"], 2) == ["\t\ta", "", "\t\tb"]
