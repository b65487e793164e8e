"""Rewrite ``?`` placeholders into a backend's native positional syntax.

The scan skips quoted literals, quoted identifiers and SQL comments, so a
``?`` inside ``'...'``, ``"..."``, ``-- ...`` or ``/* ... */`` is kept as text.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Literal

from snippet_review.core.errors import QueryTranslationError

ParamStyle = Literal["numeric", "qmark", "format"]

PLACEHOLDER = "?"


def translate_placeholders(
    template: str,
    params: Sequence[Any] | None = None,
    paramstyle: ParamStyle = "numeric",
) -> tuple[str, list[Any]]:
    values = list(params or [])
    if not values:
        return template, values

    query, marker_count = _substitute(template, paramstyle)
    if marker_count != len(values):
        raise QueryTranslationError(
            f"query has {marker_count} placeholder(s) but {len(values)} parameter(s) were given"
        )
    return query, values


def _substitute(template: str, paramstyle: ParamStyle) -> tuple[str, int]:
    chunks: list[str] = []
    marker_count = 0
    index = 0
    length = len(template)

    while index < length:
        char = template[index]

        if char in ("'", '"'):
            # A doubled quote closes and reopens the literal, so '' escapes need no special case.
            end = template.find(char, index + 1)
            end = length if end == -1 else end + 1
            chunks.append(template[index:end])
            index = end
            continue

        if template.startswith("--", index):
            end = template.find("\n", index)
            end = length if end == -1 else end
            chunks.append(template[index:end])
            index = end
            continue

        if template.startswith("/*", index):
            end = template.find("*/", index + 2)
            end = length if end == -1 else end + 2
            chunks.append(template[index:end])
            index = end
            continue

        if char == PLACEHOLDER:
            marker_count += 1
            chunks.append(_render_marker(marker_count, paramstyle))
        else:
            chunks.append(char)
        index += 1

    return "".join(chunks), marker_count


def _render_marker(position: int, paramstyle: ParamStyle) -> str:
    if paramstyle == "numeric":
        return f"${position}"
    if paramstyle == "format":
        return "%s"
    return PLACEHOLDER
