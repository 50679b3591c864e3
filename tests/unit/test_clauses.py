import pytest

from querycore.core.clauses import analyze_query, strip_terminator


def test_simple_select_shape():
    sql = "SELECT id, title FROM audios WHERE subject = ?"
    shape = analyze_query(sql)
    assert shape.select_list_span == (len("SELECT"), sql.index("FROM"))
    assert not shape.has_order_by
    assert not shape.needs_wrapping
    assert not shape.has_limit


def test_order_by_offset_is_top_level_only():
    sql = "SELECT id FROM (SELECT id FROM audios ORDER BY id) AS s ORDER BY id DESC"
    shape = analyze_query(sql)
    assert shape.order_by_start == sql.rindex("ORDER BY")


def test_keywords_inside_subqueries_are_ignored():
    shape = analyze_query("SELECT a FROM (SELECT a FROM t GROUP BY a LIMIT 5) AS s")
    assert not shape.has_group_by
    assert not shape.has_limit
    assert not shape.needs_wrapping


def test_keywords_inside_literals_and_comments_are_ignored():
    shape = analyze_query("SELECT 'ORDER BY x LIMIT 1' AS label FROM t /* GROUP BY */ WHERE a = ?")
    assert not shape.has_order_by
    assert not shape.has_limit
    assert not shape.has_group_by


def test_identifiers_containing_keywords_are_not_keywords():
    shape = analyze_query("SELECT order_by_value, limit_count, from_date FROM t")
    assert not shape.has_order_by
    assert not shape.has_limit
    assert shape.from_start == shape.select_start + len(" order_by_value, limit_count, from_date ")


@pytest.mark.parametrize(
    ("sql", "attribute"),
    [
        ("SELECT speaker, COUNT(*) FROM audios GROUP BY speaker", "has_group_by"),
        ("SELECT speaker FROM audios GROUP BY speaker HAVING COUNT(*) > ?", "has_having"),
        ("SELECT DISTINCT speaker FROM audios", "has_distinct"),
        ("select distinct speaker from audios", "has_distinct"),
        ("SELECT a FROM t1 UNION ALL SELECT a FROM t2", "has_set_operation"),
        ("SELECT a FROM t1 EXCEPT SELECT a FROM t2", "has_set_operation"),
    ],
)
def test_shapes_that_need_wrapping(sql, attribute):
    shape = analyze_query(sql)
    assert getattr(shape, attribute)
    assert shape.needs_wrapping


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT * FROM audios LIMIT 10",
        "SELECT * FROM audios OFFSET 10",
        "SELECT * FROM audios FETCH FIRST 10 ROWS ONLY",
    ],
)
def test_limit_detection(sql):
    assert analyze_query(sql).has_limit


def test_order_by_before_set_operation_belongs_to_branch():
    shape = analyze_query("SELECT a FROM t1 ORDER BY a UNION SELECT a FROM t2")
    assert shape.order_by_start is None
    assert shape.has_set_operation


def test_order_by_after_set_operation_applies_to_whole_query():
    sql = "SELECT a FROM t1 UNION SELECT a FROM t2 ORDER BY a"
    assert analyze_query(sql).order_by_start == sql.index("ORDER BY")


def test_no_select_list_without_from():
    assert analyze_query("SELECT 1").select_list_span is None


@pytest.mark.parametrize(
    ("sql", "expected"),
    [("SELECT 1;", "SELECT 1"), ("SELECT 1 ; ;  \n", "SELECT 1"), ("SELECT 1", "SELECT 1")],
)
def test_strip_terminator(sql, expected):
    assert strip_terminator(sql) == expected
