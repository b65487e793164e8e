import pytest

from snippet_review.core.errors import QueryTranslationError, RepositoryValidationError
from snippet_review.core.query import translate_placeholders


def test_translate_placeholders_numbers_markers_in_order() -> None:
    params = [1, 2]

    query, values = translate_placeholders("WHERE a=? AND b=?", params)

    assert query == "WHERE a=$1 AND b=$2"
    assert values == [1, 2]
    assert params == [1, 2]


def test_translate_placeholders_supports_other_paramstyles() -> None:
    assert translate_placeholders("a=? and b=?", [1, 2], "format") == ("a=%s and b=%s", [1, 2])
    assert translate_placeholders("a=? and b=?", [1, 2], "qmark") == ("a=? and b=?", [1, 2])


def test_translate_placeholders_without_params_returns_template_untouched() -> None:
    assert translate_placeholders("select '?' as q, ?", None) == ("select '?' as q, ?", [])
    assert translate_placeholders("select 1", []) == ("select 1", [])


def test_translate_placeholders_leaves_markers_inside_literals_and_comments() -> None:
    template = (
        "select * from contributions -- why?\n"
        "where code = 'what?' and \"odd?col\" = ? /* any? */ and id = ?"
    )

    query, values = translate_placeholders(template, ["x", 7])

    assert query == (
        "select * from contributions -- why?\n"
        "where code = 'what?' and \"odd?col\" = $1 /* any? */ and id = $2"
    )
    assert values == ["x", 7]


def test_translate_placeholders_handles_escaped_quotes_in_literals() -> None:
    query, _ = translate_placeholders("select 'it''s?' where a = ?", [1])

    assert query == "select 'it''s?' where a = $1"


def test_translate_placeholders_rejects_count_mismatch() -> None:
    with pytest.raises(QueryTranslationError, match="2 placeholder"):
        translate_placeholders("a=? and b=?", [1])

    with pytest.raises(RepositoryValidationError):
        translate_placeholders("a='?'", [1])
