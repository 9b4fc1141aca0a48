"""
Catalog and central inventory tests.
"""

from decimal import Decimal

import pytest

from fieldsales.services import catalog_service
from fieldsales.services.concurrency import atomic
from fieldsales.validation import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


class TestProducts:

    def test_create_and_update(self, db_session):
        product = catalog_service.create_product(name="  Paracetamol 500mg ", mrp="25", manufacturer="ABC Pharma")
        assert product.name == "Paracetamol 500mg"
        assert product.mrp == Decimal("25.00")

        updated = catalog_service.update_product(product.id, {"mrp": "27.50", "ignored": "x"})
        assert updated.mrp == Decimal("27.50")
        assert updated.to_dict()["mrp"] == "27.50"

    @pytest.mark.parametrize("mrp", ["0", "-1", "100000000", "abc", "NaN", "Infinity", "-inf"])
    def test_rejects_bad_mrp(self, db_session, mrp):
        with pytest.raises(ValidationError):
            catalog_service.create_product(name="Bad", mrp=mrp)

    def test_rejects_blank_name(self, db_session):
        with pytest.raises(ValidationError, match="Name is required"):
            catalog_service.create_product(name="  ", mrp="1")

    def test_delete_unreferenced_product(self, make_product):
        product = make_product("Short-lived")
        catalog_service.set_inventory_quantity(product.id, 0)

        catalog_service.delete_product(product.id)

        with pytest.raises(NotFoundError):
            catalog_service.get_product(product.id)

    def test_delete_refuses_stocked_or_ordered_product(self, make_product, make_order):
        stocked = make_product("Stocked", inventory=5)
        with pytest.raises(InvalidStateError, match="central inventory"):
            catalog_service.delete_product(stocked.id)

        ordered = make_product("Ordered")
        make_order({ordered.id: 1})
        with pytest.raises(InvalidStateError, match="order items"):
            catalog_service.delete_product(ordered.id)


class TestCentralInventory:

    def test_unstocked_product_has_zero(self, make_product):
        product = make_product("Never stocked")
        assert catalog_service.get_inventory(product.id) == 0

    def test_decrement_is_guarded(self, make_product):
        product = make_product("Paracetamol 500mg", inventory=10)

        with atomic():
            assert catalog_service.decrement_inventory(product.id, 4) == 6

        with pytest.raises(InsufficientStockError, match="On-hand: 6"):
            with atomic():
                catalog_service.decrement_inventory(product.id, 7)
        assert catalog_service.get_inventory(product.id) == 6

    def test_decrement_of_unstocked_product_fails(self, make_product):
        product = make_product("Never stocked")
        with pytest.raises(InsufficientStockError):
            with atomic():
                catalog_service.decrement_inventory(product.id, 1)

    @pytest.mark.parametrize("amount", [0, -3, "2.5", True])
    def test_decrement_rejects_bad_amount(self, make_product, amount):
        product = make_product("Paracetamol 500mg", inventory=10)
        with pytest.raises(ValidationError):
            catalog_service.decrement_inventory(product.id, amount)

    def test_restock_and_set(self, make_product):
        product = make_product("Paracetamol 500mg")

        catalog_service.restock_inventory(product.id, 40, note="Delivery")
        catalog_service.restock_inventory(product.id, 2)
        assert catalog_service.get_inventory(product.id) == 42

        row = catalog_service.set_inventory_quantity(product.id, 7, note="Count", low_stock_threshold=8)
        assert row.quantity == 7
        assert row.is_low_stock is True

    def test_set_rejects_negative(self, make_product):
        product = make_product("Paracetamol 500mg")
        with pytest.raises(ValidationError):
            catalog_service.set_inventory_quantity(product.id, -1)

    def test_restock_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            catalog_service.restock_inventory(5555, 1)

    def test_list_inventory(self, make_product):
        make_product("B Vitamin C Tablets", inventory=300, mrp="120.00")
        make_product("A Paracetamol 500mg", inventory=5, mrp="25.00")
        make_product("C Never stocked")

        rows = catalog_service.list_inventory()

        assert [r["name"] for r in rows] == ["A Paracetamol 500mg", "B Vitamin C Tablets", "C Never stocked"]
        assert rows[0]["is_low_stock"] is True
        assert rows[1]["stock_value"] == "36000.00"
        assert rows[2]["quantity"] == 0
