from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from snippet_review.schemas.contributions import Contribution

DEFAULT_DEDUPE_WINDOW = timedelta(hours=1)
DEFAULT_CANDIDATE_LIMIT = 5

# Mirrors normalize_code() so stored rows are compared the same way in SQL.
SQL_NORMALIZED_CODE_EXPR = "replace(replace(replace(code, E'\\n', ' '), E'\\r', ' '), '  ', ' ')"

_LIKE_ESCAPE = "\\"


def normalize_code(code: str) -> str:
    """Collapse line breaks to spaces and halve runs of double spaces.

    The double-space pass runs once, so ``"a   b"`` becomes ``"a  b"``.
    Stored rows are normalized the same way, which keeps old submissions
    comparable.
    """
    return code.replace("\n", " ").replace("\r", " ").replace("  ", " ")


def is_similar_code(normalized_code: str, stored_code: str) -> bool:
    return normalize_code(stored_code).lower().startswith(normalized_code.lower())


def is_within_window(created_at: datetime, *, now: datetime, window: timedelta = DEFAULT_DEDUPE_WINDOW) -> bool:
    return created_at > now - window


def matches_candidate(
    row: Contribution,
    *,
    username: str,
    filename: str,
    normalized_code: str,
    now: datetime,
    window: timedelta = DEFAULT_DEDUPE_WINDOW,
) -> bool:
    return (
        row.username == username
        and row.filename == filename
        and is_within_window(row.created_at, now=now, window=window)
        and is_similar_code(normalized_code, row.code)
    )


def select_similar(
    rows: Iterable[Contribution],
    *,
    username: str,
    filename: str,
    normalized_code: str,
    now: datetime,
    window: timedelta = DEFAULT_DEDUPE_WINDOW,
    limit: int = DEFAULT_CANDIDATE_LIMIT,
) -> list[Contribution]:
    matched = [
        row
        for row in rows
        if matches_candidate(
            row,
            username=username,
            filename=filename,
            normalized_code=normalized_code,
            now=now,
            window=window,
        )
    ]
    return sort_by_recency(matched)[: max(0, limit)]


def sort_by_recency(rows: Iterable[Contribution]) -> list[Contribution]:
    return sorted(rows, key=lambda row: (row.created_at, row.id), reverse=True)


def like_prefix_pattern(normalized_code: str) -> str:
    escaped = (
        normalized_code.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )
    return escaped + "%"
