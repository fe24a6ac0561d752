"""Identifier casing conversions used to build path segments."""

from __future__ import annotations

import re

# Lower/digit followed by upper ("orderItem"), or the last capital of an
# acronym followed by a capitalised word ("HTTPRequest").
_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_SEPARATORS = re.compile(r"[\s_.\-]+")


def kebab_case(value: str) -> str:
    """Convert a PascalCase, camelCase or snake_case token to kebab-case.

    >>> kebab_case("OrderLineItem")
    'order-line-item'
    >>> kebab_case("HTTPRequest")
    'http-request'
    """
    words = _SEPARATORS.sub("-", value.strip())
    return _WORD_BOUNDARY.sub("-", words).strip("-").lower()
