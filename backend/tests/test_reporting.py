"""
Reporting aggregate tests.

Reports are derived purely from orders and UnfulfilledItem rows written by
the fulfillment engine.
"""

import pytest

from fieldsales.services import (
    catalog_service,
    fulfillment_service,
    order_service,
    reporting_service,
    visit_service,
)
from fieldsales.services.reporting_service import ReportError


@pytest.fixture
def fulfilled_history(make_product, make_order, store, store_without_location):
    """
    Three orders:
    - store: A x10 fully supplied (FULFILLED)
    - store: A x10 + B x5, B short by 5 (PARTIAL)
    - store_without_location: B x4, nothing available (UNFULFILLED)
    plus one PENDING order for A x2.
    """
    a = make_product("Paracetamol 500mg", inventory=20)
    b = make_product("Vitamin C Tablets", inventory=0)

    full = make_order({a.id: 10})
    fulfillment_service.fulfill(full.id, {a.id: 10})
    partial = make_order({a.id: 10, b.id: 5})
    fulfillment_service.fulfill(partial.id, {a.id: 10})
    unfulfilled = make_order({b.id: 4}, store_id=store_without_location.id)
    fulfillment_service.fulfill(unfulfilled.id, {})
    make_order({a.id: 2})

    return {"a": a, "b": b}


class TestReports:

    def test_fulfillment_stats(self, fulfilled_history):
        stats = reporting_service.fulfillment_stats(30)

        assert stats["total_orders"] == 4
        assert stats["by_status"] == {"PENDING": 1, "FULFILLED": 1, "PARTIAL": 1, "UNFULFILLED": 1}
        assert stats["fulfillment_rate"] == 50.0
        assert stats["partial_rate"] == 25.0
        assert stats["unfulfilled_rate"] == 25.0

    def test_fulfillment_stats_empty_window(self, db_session):
        stats = reporting_service.fulfillment_stats(7)
        assert stats["total_orders"] == 0
        assert stats["fulfillment_rate"] == 0.0

    def test_shortfalls_by_store(self, fulfilled_history, store, store_without_location):
        rows = {r["store_id"]: r for r in reporting_service.shortfalls_by_store(30)["rows"]}

        assert rows[store.id]["partial_orders"] == 1
        assert rows[store.id]["unfulfilled_orders"] == 0
        assert rows[store.id]["shortfall_qty"] == 5
        assert rows[store.id]["requested_qty"] == 25
        assert rows[store.id]["supplied_qty"] == 20
        assert rows[store.id]["fulfillment_rate"] == 80.0
        assert rows[store_without_location.id]["unfulfilled_orders"] == 1
        assert rows[store_without_location.id]["shortfall_items"] == 1
        assert rows[store_without_location.id]["store_name"] == "City Pharma"
        assert rows[store_without_location.id]["supplied_qty"] == 0
        assert rows[store_without_location.id]["fulfillment_rate"] == 0.0

    def test_product_shortages(self, fulfilled_history):
        rows = reporting_service.product_shortages(30)["rows"]

        assert len(rows) == 1
        row = rows[0]
        assert row["product_id"] == fulfilled_history["b"].id
        assert row["occurrences"] == 2
        assert row["requested_qty"] == 9
        assert row["supplied_qty"] == 0
        assert row["shortfall_qty"] == 9
        assert row["fulfillment_rate"] == 0.0

    def test_demand_trends(self, fulfilled_history):
        rows = reporting_service.demand_trends(30)["rows"]

        assert len(rows) == 1
        today = rows[0]
        assert today["demand_qty"] == 31
        assert today["pending_qty"] == 2
        assert today["shortfall_qty"] == 9
        assert today["supplied_qty"] == 20

    def test_demand_trends_for_one_product(self, fulfilled_history):
        rows = reporting_service.demand_trends(30, product_id=fulfilled_history["a"].id)["rows"]
        assert rows[0]["demand_qty"] == 22
        assert rows[0]["supplied_qty"] == 20

    def test_dashboard(self, fulfilled_history, store_without_location, salesman_actor):
        visit_service.check_in(salesman_actor, store_id=store_without_location.id)

        stats = reporting_service.dashboard_stats()

        assert stats["todays_orders"] == 4
        assert stats["todays_visits"] == 1
        assert stats["pending_orders"] == 1
        assert stats["active_salesmen"] == 1

    def test_recent_activity(self, fulfilled_history, store_without_location, salesman_actor):
        visit_service.record_new_batch(
            salesman_actor, store_id=store_without_location.id, product_id=fulfilled_history["a"].id, quantity=3
        )

        feed = reporting_service.recent_activity(limit=3)

        assert len(feed) == 3
        assert {e["type"] for e in reporting_service.recent_activity(limit=20)} == {"order", "visit", "adjustment"}
        assert all(e["timestamp"].endswith("Z") for e in feed)

    @pytest.mark.parametrize("days", [0, -1, 400, "ten"])
    def test_bad_window(self, db_session, days):
        with pytest.raises(ReportError):
            reporting_service.fulfillment_stats(days)

    def test_default_window(self, app, db_session):
        assert reporting_service.fulfillment_stats()["days"] == app.config["REPORT_WINDOW_DAYS"]


class TestRefulfilledOrders:
    """An UNFULFILLED order put back to PENDING and fulfilled again."""

    @pytest.fixture
    def refulfilled(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=0)
        order = make_order({a.id: 5})
        fulfillment_service.fulfill(order.id, {})
        order_service.manual_status_change(order.id, "PENDING")
        catalog_service.restock_inventory(a.id, 5)
        fulfillment_service.fulfill(order.id, {a.id: 5})
        return a

    def test_store_report_ignores_earlier_attempt(self, refulfilled, store):
        rows = {r["store_id"]: r for r in reporting_service.shortfalls_by_store(30)["rows"]}

        row = rows[store.id]
        assert row["shortfall_qty"] == 0
        assert row["shortfall_items"] == 0
        assert row["unfulfilled_orders"] == 0
        assert row["supplied_qty"] == 5
        assert row["fulfillment_rate"] == 100.0

    def test_product_report_ignores_earlier_attempt(self, refulfilled):
        assert reporting_service.product_shortages(30)["rows"] == []

    def test_demand_trends_ignore_earlier_attempt(self, refulfilled):
        today = reporting_service.demand_trends(30)["rows"][0]

        assert today["demand_qty"] == 5
        assert today["supplied_qty"] == 5
        assert today["shortfall_qty"] == 0

    def test_reverted_order_reports_no_shortfall_while_pending(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=0)
        order = make_order({a.id: 3})
        fulfillment_service.fulfill(order.id, {})
        order_service.manual_status_change(order.id, "PENDING")

        today = reporting_service.demand_trends(30)["rows"][0]
        assert today["pending_qty"] == 3
        assert today["shortfall_qty"] == 0
        assert reporting_service.product_shortages(30)["rows"] == []
