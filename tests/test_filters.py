import pytest

from insider_signals.store.filters import QueryFilter, qualifying_purchase_filter


def test_empty_filter_matches_everything() -> None:
    assert QueryFilter().render() == ("1 = 1", [])


def test_predicates_render_in_order_with_bound_params() -> None:
    where, params = (
        QueryFilter()
        .eq("f.status", "completed")
        .between("it.transaction_date", "2026-03-01", "2026-03-10")
        .is_not_null("it.price_per_share")
        .is_true("is_active")
        .render()
    )
    assert where == (
        "f.status = ? AND it.transaction_date BETWEEN ? AND ? "
        "AND it.price_per_share IS NOT NULL AND is_active = 1"
    )
    assert params == ["completed", "2026-03-01", "2026-03-10"]


def test_in_list() -> None:
    assert QueryFilter().in_("id", [3, 4]).render() == ("id IN (?,?)", [3, 4])
    assert QueryFilter().in_("id", []).render() == ("1 = 0", [])


def test_rejects_non_identifier_columns() -> None:
    with pytest.raises(ValueError):
        QueryFilter().eq("status = 'x' OR 1", 1)


def test_qualifying_purchase_filter() -> None:
    flt = qualifying_purchase_filter()
    where, params = flt.render()
    assert len(flt.predicates) == 6
    assert "it.transaction_code = ?" in where
    assert params[:3] == ["completed", "P", "A"]
