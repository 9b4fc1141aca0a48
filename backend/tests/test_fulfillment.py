"""
Fulfillment engine tests.

Verifies:
- FULFILLED / PARTIAL / UNFULFILLED derivation
- Inventory conservation between central stock and new store positions
- At-most-once fulfillment
- Strict mode and allocation bounds reject before any write
- A decrement failing mid-transaction rolls back every earlier line
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from fieldsales.extensions import db
from fieldsales.models import OrderStatus, StockPosition, UnfulfilledItem
from fieldsales.services import catalog_service, fulfillment_service, order_service
from fieldsales.services.concurrency import atomic
from fieldsales.services.fulfillment_service import LineAllocation, derive_status
from fieldsales.validation import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


def _positions(store_id, product_id=None):
    query = db.session.query(StockPosition).filter_by(store_id=store_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    return query.order_by(StockPosition.id).all()


def _shortfalls(order_id):
    return db.session.query(UnfulfilledItem).filter_by(order_id=order_id).order_by(UnfulfilledItem.id).all()


# =============================================================================
# SCENARIOS
# =============================================================================


class TestFulfillmentScenarios:

    def test_full_allocation_in_strict_mode(self, make_product, make_order, store, stock_manager_actor):
        a = make_product("Paracetamol 500mg", inventory=500)
        order = make_order({a.id: 80})

        result = fulfillment_service.fulfill(order.id, {a.id: 80}, strict_mode=True, actor=stock_manager_actor)

        assert result.status is OrderStatus.FULFILLED
        assert catalog_service.get_inventory(a.id) == 420
        positions = _positions(store.id, a.id)
        assert len(positions) == 1
        assert positions[0].quantity == 80
        assert positions[0].batch_number is None
        assert positions[0].expiry_date is None
        assert _shortfalls(order.id) == []

        reloaded = order_service.get_order(order.id)
        assert reloaded.fulfilled_at is not None
        assert reloaded.fulfilled_by_id == stock_manager_actor.user_id

    def test_partial_when_prior_order_drained_stock(self, make_product, make_order, store):
        a = make_product("Paracetamol 500mg", inventory=500)
        b = make_product("Vitamin C Tablets", inventory=300, mrp="120.00")

        prior = make_order({b.id: 250})
        fulfillment_service.fulfill(prior.id, {b.id: 250})
        assert catalog_service.get_inventory(b.id) == 50

        order = make_order({a.id: 80, b.id: 70})
        result = fulfillment_service.fulfill(order.id, {a.id: 80, b.id: 50})

        assert result.status is OrderStatus.PARTIAL
        assert catalog_service.get_inventory(b.id) == 0
        assert catalog_service.get_inventory(a.id) == 420
        shortfalls = _shortfalls(order.id)
        assert len(shortfalls) == 1
        assert shortfalls[0].product_id == b.id
        assert shortfalls[0].requested_qty == 70
        assert shortfalls[0].available_qty == 50
        assert shortfalls[0].shortfall == 20

    def test_unfulfilled_when_nothing_available(self, make_product, make_order, store):
        a = make_product("Paracetamol 500mg", inventory=0)
        order = make_order({a.id: 10})

        result = fulfillment_service.fulfill(order.id, {a.id: 0})

        assert result.status is OrderStatus.UNFULFILLED
        assert catalog_service.get_inventory(a.id) == 0
        assert _positions(store.id) == []
        shortfalls = _shortfalls(order.id)
        assert [(s.requested_qty, s.available_qty) for s in shortfalls] == [(10, 0)]

    def test_second_fulfill_is_rejected(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=500)
        order = make_order({a.id: 80})
        fulfillment_service.fulfill(order.id, {a.id: 80}, strict_mode=True)

        with pytest.raises(InvalidStateError, match="can only fulfill pending orders"):
            fulfillment_service.fulfill(order.id, {a.id: 80})

        assert catalog_service.get_inventory(a.id) == 420

    def test_missing_plan_entries_allocate_zero(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=100)
        b = make_product("Vitamin C Tablets", inventory=100)
        order = make_order({a.id: 10, b.id: 5})

        result = fulfillment_service.fulfill(order.id, {str(a.id): 10})

        assert result.status is OrderStatus.PARTIAL
        assert catalog_service.get_inventory(b.id) == 100
        assert [s.product_id for s in _shortfalls(order.id)] == [b.id]


# =============================================================================
# INVARIANTS
# =============================================================================


class TestFulfillmentInvariants:

    @pytest.mark.parametrize(
        "plan_a,plan_b",
        [(30, 20), (0, 20), (30, 0), (0, 0), (15, 7)],
    )
    def test_inventory_is_conserved(self, make_product, make_order, store, plan_a, plan_b):
        a = make_product("Paracetamol 500mg", inventory=100)
        b = make_product("Vitamin C Tablets", inventory=40)
        order = make_order({a.id: 30, b.id: 20})

        fulfillment_service.fulfill(order.id, {a.id: plan_a, b.id: plan_b})

        for product, start, allocated in ((a, 100, plan_a), (b, 40, plan_b)):
            moved = start - catalog_service.get_inventory(product.id)
            at_store = sum(p.quantity for p in _positions(store.id, product.id))
            assert moved == allocated
            assert at_store == allocated

    def test_every_shortfall_row_is_positive(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=5)
        b = make_product("Vitamin C Tablets", inventory=0)
        order = make_order({a.id: 10, b.id: 3})

        fulfillment_service.fulfill(order.id, {a.id: 5})

        for row in _shortfalls(order.id):
            assert row.available_qty >= 0
            assert row.requested_qty - row.available_qty > 0

    def test_each_fulfillment_appends_new_position(self, make_product, make_order, store):
        a = make_product("Paracetamol 500mg", inventory=100)
        first = make_order({a.id: 10})
        second = make_order({a.id: 15})

        fulfillment_service.fulfill(first.id, {a.id: 10})
        fulfillment_service.fulfill(second.id, {a.id: 15})

        assert [p.quantity for p in _positions(store.id, a.id)] == [10, 15]


class TestStatusDerivation:

    @pytest.mark.parametrize(
        "lines,expected",
        [
            ([(10, 10), (5, 5)], OrderStatus.FULFILLED),
            ([(10, 0), (5, 0)], OrderStatus.UNFULFILLED),
            ([(10, 10), (5, 0)], OrderStatus.PARTIAL),
            ([(10, 3)], OrderStatus.PARTIAL),
            ([(1, 1)], OrderStatus.FULFILLED),
        ],
    )
    def test_derive_status(self, lines, expected):
        allocations = [LineAllocation(i, requested, allocated) for i, (requested, allocated) in enumerate(lines)]
        assert derive_status(allocations) is expected

    def test_derive_status_needs_lines(self):
        with pytest.raises(ValidationError):
            derive_status([])


# =============================================================================
# REJECTIONS (no side effects)
# =============================================================================


class TestFulfillmentRejections:

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            fulfillment_service.fulfill(9999, {})

    def test_strict_mode_requires_every_line(self, make_product, make_order, store):
        a = make_product("Paracetamol 500mg", inventory=100)
        b = make_product("Vitamin C Tablets", inventory=100)
        order = make_order({a.id: 10, b.id: 10})

        with pytest.raises(InvalidStateError, match="not all items satisfied"):
            fulfillment_service.fulfill(order.id, {a.id: 10, b.id: 9}, strict_mode=True)

        assert catalog_service.get_inventory(a.id) == 100
        assert _positions(store.id) == []
        assert order_service.get_order(order.id).status is OrderStatus.PENDING

    def test_allocation_above_requested(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=100)
        order = make_order({a.id: 10})

        with pytest.raises(ValidationError, match="exceeds requested"):
            fulfillment_service.fulfill(order.id, {a.id: 11})
        assert catalog_service.get_inventory(a.id) == 100

    def test_allocation_above_available(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=5)
        order = make_order({a.id: 10})

        with pytest.raises(ValidationError, match="exceeds available"):
            fulfillment_service.fulfill(order.id, {a.id: 6})
        assert catalog_service.get_inventory(a.id) == 5

    @pytest.mark.parametrize("bad_plan", [{"x": 1}, [1, 2], "nope"])
    def test_malformed_plan(self, make_product, make_order, bad_plan):
        a = make_product("Paracetamol 500mg", inventory=5)
        order = make_order({a.id: 1})
        with pytest.raises(ValidationError):
            fulfillment_service.fulfill(order.id, bad_plan)

    def test_negative_allocation(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=5)
        order = make_order({a.id: 1})
        with pytest.raises(ValidationError, match="negative"):
            fulfillment_service.fulfill(order.id, {a.id: -1})

    def test_plan_for_product_not_in_order(self, make_product, make_order):
        a = make_product("Paracetamol 500mg", inventory=5)
        b = make_product("Vitamin C Tablets", inventory=5)
        order = make_order({a.id: 1})
        with pytest.raises(ValidationError, match="not part of order"):
            fulfillment_service.fulfill(order.id, {b.id: 1})


class TestFulfillmentRollback:

    def test_concurrent_drain_rolls_back_earlier_lines(self, make_product, make_order, store, monkeypatch):
        a = make_product("Paracetamol 500mg", inventory=100)
        b = make_product("Vitamin C Tablets", inventory=5)
        order = make_order({a.id: 10, b.id: 10})

        # Another worker drained B after our bounds check: the check sees plenty,
        # the conditional decrement does not.
        monkeypatch.setattr(fulfillment_service, "get_inventory", lambda product_id: 1000)

        with pytest.raises(InsufficientStockError):
            fulfillment_service.fulfill(order.id, {a.id: 10, b.id: 10})

        assert catalog_service.get_inventory(a.id) == 100
        assert catalog_service.get_inventory(b.id) == 5
        assert _positions(store.id) == []
        assert _shortfalls(order.id) == []
        assert order_service.get_order(order.id).status is OrderStatus.PENDING

    def test_stale_write_surfaces_as_invalid_state(self, db_session):
        with pytest.raises(InvalidStateError, match="modified concurrently"):
            with atomic():
                raise StaleDataError("UPDATE statement on table 'orders' expected to update 1 row(s)")
