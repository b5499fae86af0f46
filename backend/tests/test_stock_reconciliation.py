from datetime import datetime, timezone
from types import SimpleNamespace

from allegro_connector.services.stock_reconciliation import (
    StockReport,
    report_from_offer,
    resolve_stock,
    resolve_stock_by_key,
)


def _t(hour: int) -> datetime:
    return datetime(2026, 5, 1, hour, tzinfo=timezone.utc)


def test_equal_quantities_go_to_latest_timestamp():
    older = StockReport("p1", 5, _t(10), "a")
    newer = StockReport("p1", 5, _t(20), "b")

    assert resolve_stock([older, newer]) is newer
    assert resolve_stock([newer, older]) is newer


def test_higher_quantity_wins_over_newer_timestamp():
    recent_low = StockReport("p1", 3, _t(22), "a")
    old_high = StockReport("p1", 7, _t(10), "b")

    assert resolve_stock([recent_low, old_high]).quantity == 7


def test_full_tie_keeps_first_report():
    first = StockReport("p1", 4, _t(8), "first")
    second = StockReport("p1", 4, _t(8), "second")

    assert resolve_stock([first, second]).source == "first"


def test_missing_timestamp_is_oldest():
    undated = StockReport("p1", 2, None, "undated")
    dated = StockReport("p1", 2, _t(1), "dated")

    assert resolve_stock([dated, undated]).source == "dated"


def test_naive_timestamps_compare_as_utc():
    naive = StockReport("p1", 1, datetime(2026, 5, 1, 12), "naive")
    aware = StockReport("p1", 1, _t(11), "aware")

    assert resolve_stock([aware, naive]).source == "naive"


def test_resolution_by_key():
    reports = [
        StockReport("a", 1, _t(1)),
        StockReport("b", 9, _t(1)),
        StockReport("a", 3, _t(0)),
    ]

    resolved = resolve_stock_by_key(reports)

    assert {key: r.quantity for key, r in resolved.items()} == {"a": 3, "b": 9}


def test_empty_input():
    assert resolve_stock([]) is None
    assert resolve_stock_by_key([]) == {}


def test_report_from_offer():
    offer = SimpleNamespace(stock_quantity=6, updated_at=None, last_synced_at=_t(3), allegro_offer_id="1001")

    report = report_from_offer("p1", offer)

    assert report == StockReport("p1", 6, _t(3), "offer:1001")
    assert report_from_offer("p1", SimpleNamespace(stock_quantity=None)) is None
