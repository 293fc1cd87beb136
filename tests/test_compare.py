from sqltrainer.compare import (
    NULL_MARKER,
    is_order_sensitive,
    normalize_cell,
    normalize_row,
    results_equivalent,
)
from sqltrainer.database import QueryResult


def _result(columns: tuple[str, ...], rows: list[tuple[object, ...]]) -> QueryResult:
    return QueryResult(columns=columns, rows=tuple(tuple(row) for row in rows))


ROWS = [(1, "a"), (2, "b"), (3, "c")]


def test_identical_results_are_equivalent_both_ways() -> None:
    left = _result(("id", "label"), ROWS)
    right = _result(("id", "label"), ROWS)
    assert results_equivalent(left, right, True) is True
    assert results_equivalent(left, right, False) is True


def test_row_permutation_only_matches_when_order_insensitive() -> None:
    left = _result(("id", "label"), ROWS)
    shuffled = _result(("id", "label"), list(reversed(ROWS)))
    assert results_equivalent(left, shuffled, False) is True
    assert results_equivalent(left, shuffled, True) is False


def test_duplicate_rows_are_counted() -> None:
    left = _result(("x",), [(1,), (1,), (2,)])
    right = _result(("x",), [(1,), (2,), (2,)])
    assert results_equivalent(left, right, False) is False


def test_column_order_matters() -> None:
    left = _result(("id", "label"), [(1, "a")])
    right = _result(("label", "id"), [("a", 1)])
    assert results_equivalent(left, right, False) is False


def test_column_name_case_is_ignored() -> None:
    left = _result(("Name",), [("Venus",)])
    right = _result(("NAME",), [("venus",)])
    assert results_equivalent(left, right, True) is True


def test_column_and_row_counts_must_match() -> None:
    base = _result(("id",), [(1,), (2,)])
    assert results_equivalent(base, _result(("id", "x"), [(1, 0), (2, 0)]), False) is False
    assert results_equivalent(base, _result(("id",), [(1,)]), False) is False


def test_error_results_never_match() -> None:
    failed = QueryResult.failure("no such table: t")
    assert results_equivalent(failed, failed, False) is False
    assert results_equivalent(_result(("id",), [(1,)]), failed, False) is False


def test_null_differs_from_text_null_and_empty_string() -> None:
    assert normalize_cell(None) == NULL_MARKER
    assert normalize_cell(None) != normalize_cell("null")
    assert normalize_cell(None) != normalize_cell("")
    nulls = _result(("x",), [(None,)])
    assert results_equivalent(nulls, _result(("x",), [("NULL",)]), False) is False
    assert results_equivalent(nulls, _result(("x",), [("",)]), False) is False


def test_cell_normalization() -> None:
    assert normalize_cell(4500.0) == normalize_cell(4500)
    assert normalize_cell("  Mars ") == "mars"
    assert normalize_cell(b"\x01\xff") == "01ff"
    assert normalize_cell(0.1 + 0.2) == normalize_cell(0.3)


def test_row_separator_keeps_cells_apart() -> None:
    assert normalize_row(("a b", "c")) != normalize_row(("a", "b c"))


def test_order_sensitivity_heuristic() -> None:
    assert is_order_sensitive("SELECT * FROM t ORDER BY x") is True
    assert is_order_sensitive("select * from t order\n  by x") is True
    assert is_order_sensitive("SELECT * FROM t") is False
    assert is_order_sensitive("SELECT * FROM t ORDER BY x", override=False) is False
    assert is_order_sensitive("SELECT * FROM t", override=True) is True
