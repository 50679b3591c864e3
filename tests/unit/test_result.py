from types import SimpleNamespace

import pytest

from querycore.core.result import ExecutionResult, PageEnvelope, QueryResult, normalize_result
from querycore.exceptions import QueryError
from querycore.utils.serializers import from_json, to_json


def test_sequence_of_rows():
    result = normalize_result([{"id": 1}, {"id": 2}])
    assert result == QueryResult(rows=[{"id": 1}, {"id": 2}], row_count=2)
    assert result.first() == {"id": 1}
    assert len(result) == 2


def test_non_dict_rows_are_converted():
    assert normalize_result([[("id", 1), ("title", "Cells")]]).rows == [{"id": 1, "title": "Cells"}]


def test_execution_result_uses_affected_rows():
    assert normalize_result(ExecutionResult([], 3)).row_count == 3
    assert normalize_result(ExecutionResult([{"id": 1}])).row_count == 1


def test_negative_affected_rows_fall_back_to_row_count():
    assert normalize_result(ExecutionResult([{"id": 1}], -1)).row_count == 1


def test_mapping_with_row_count():
    assert normalize_result({"rows": [], "rowCount": 7}).row_count == 7
    assert normalize_result({"rows": [{"a": 1}]}).row_count == 1


def test_object_with_rows_attribute():
    raw = SimpleNamespace(rows=[{"a": 1}], rowcount=4)
    assert normalize_result(raw) == QueryResult(rows=[{"a": 1}], row_count=4)


def test_none_is_empty():
    result = normalize_result(None)
    assert result.rows == []
    assert result.row_count == 0
    assert result.first() is None


def test_query_result_passes_through():
    result = QueryResult(rows=[], row_count=2)
    assert normalize_result(result) is result


@pytest.mark.parametrize("raw", [42, "rows", b"rows"])
def test_unrecognized_shape(raw):
    with pytest.raises(QueryError):
        normalize_result(raw)


def test_query_result_json_uses_camel_case():
    assert from_json(to_json(QueryResult(rows=[{"id": 1}], row_count=1))) == {"rows": [{"id": 1}], "rowCount": 1}


@pytest.mark.parametrize(
    ("total", "page", "limit", "has_more"),
    [(25, 2, 10, True), (25, 3, 10, False), (20, 2, 10, False), (0, 1, 10, False), (5, 1, 2, True)],
)
def test_page_envelope_has_more(total, page, limit, has_more):
    envelope = PageEnvelope.build([], total, page, limit)
    assert envelope.has_more is has_more


def test_page_envelope_properties_and_json():
    envelope = PageEnvelope.build([{"id": 3}], total=25, page=3, limit=10)
    assert envelope.offset == 20
    assert envelope.total_pages == 3
    assert envelope.has_previous
    assert from_json(to_json(envelope)) == {"items": [{"id": 3}], "total": 25, "page": 3, "limit": 10, "hasMore": False}


def test_copies_do_not_share_row_dicts():
    rows = [{"id": 1, "title": "Cells"}]
    original = QueryResult(rows=rows, row_count=1)
    copied = original.copy()
    copied.rows[0]["title"] = "changed"
    assert copied == QueryResult(rows=[{"id": 1, "title": "changed"}], row_count=1)
    assert rows[0]["title"] == "Cells"

    envelope = PageEnvelope.build(rows, total=1, page=1, limit=20)
    envelope.items[0]["id"] = 99
    assert rows[0]["id"] == 1
