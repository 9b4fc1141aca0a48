# backend/fieldsales/services/catalog_service.py
"""
Catalog Store: products and the central warehouse inventory.

Central inventory invariants (authoritative):
- One Inventory row per product; a product without a row has 0 on hand.
- quantity never goes negative.
- Decrements are a single conditional statement
      UPDATE inventory SET quantity = quantity - :n
      WHERE product_id = :p AND quantity >= :n
  executed inside the caller's transaction. There is no read-then-write gap:
  two fulfillments racing for the same product serialize on the row and the
  loser sees zero affected rows (InsufficientStockError), which aborts its
  whole transaction.
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import (
    Inventory,
    OrderItem,
    Product,
    StockAdjustment,
    StockPosition,
    UnfulfilledItem,
)
from ..validation import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    coerce_decimal,
    coerce_int,
    coerce_optional_str,
    enforce_rules_product,
)
from .concurrency import atomic, lock_for_update

PRODUCT_MUTABLE_FIELDS = {"name", "manufacturer", "mrp"}


def _clean_name(name) -> str:
    if name is None or not str(name).strip():
        raise ValidationError("Name is required")
    return str(name).strip()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products() -> list[Product]:
    return db.session.query(Product).order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(*, name: str, mrp, manufacturer: str | None = None) -> Product:
    patch = {"name": _clean_name(name), "mrp": coerce_decimal(mrp, "mrp")}
    enforce_rules_product(patch)

    with atomic():
        product = Product(
            name=patch["name"],
            manufacturer=coerce_optional_str(manufacturer, "manufacturer"),
            mrp=patch["mrp"],
        )
        db.session.add(product)
        db.session.flush()

    current_app.logger.info("Product %s created: %s", product.id, product.name)
    return product


def update_product(product_id: int, patch: dict) -> Product:
    clean = {k: v for k, v in patch.items() if k in PRODUCT_MUTABLE_FIELDS}
    if "name" in clean:
        clean["name"] = _clean_name(clean["name"])
    if "mrp" in clean:
        clean["mrp"] = coerce_decimal(clean["mrp"], "mrp")
    if "manufacturer" in clean:
        clean["manufacturer"] = coerce_optional_str(clean["manufacturer"], "manufacturer")
    enforce_rules_product(clean)

    with atomic():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        for key, value in clean.items():
            setattr(product, key, value)

    return product


def _product_references(product_id: int) -> list[str]:
    refs = []
    checks = [
        ("stock positions", StockPosition),
        ("order items", OrderItem),
        ("stock adjustments", StockAdjustment),
        ("unfulfilled items", UnfulfilledItem),
    ]
    for label, model in checks:
        if db.session.query(model.id).filter(model.product_id == product_id).first() is not None:
            refs.append(label)

    stocked = db.session.query(Inventory.id).filter(
        Inventory.product_id == product_id,
        Inventory.quantity > 0,
    ).first()
    if stocked is not None:
        refs.append("central inventory")
    return refs


def delete_product(product_id: int) -> None:
    """
    Delete a product nothing refers to.

    An empty central inventory row (quantity 0) does not count as a reference
    and is removed along with the product.
    """
    with atomic():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        refs = _product_references(product_id)
        if refs:
            raise InvalidStateError(f"Product {product_id} is still referenced by {', '.join(refs)}")

        db.session.query(Inventory).filter_by(product_id=product_id).delete()
        db.session.delete(product)

    current_app.logger.info("Product %s deleted", product_id)


# ---------------------------------------------------------------------------
# Central inventory
# ---------------------------------------------------------------------------

def get_inventory_row(product_id: int, *, lock: bool = False) -> Inventory | None:
    query = db.session.query(Inventory).filter_by(product_id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_inventory(product_id: int) -> int:
    """Current on-hand quantity at the central warehouse (0 when never stocked)."""
    qty = db.session.query(Inventory.quantity).filter_by(product_id=product_id).scalar()
    return int(qty or 0)


def decrement_inventory(product_id: int, amount: int) -> int:
    """
    Atomically take `amount` units out of central inventory.

    Runs inside the caller's transaction and does not commit. Returns the new
    on-hand quantity.

    Raises:
        ValidationError: amount is not a positive integer
        InsufficientStockError: fewer than `amount` units on hand right now
    """
    amount = coerce_int(amount, "amount")
    if amount <= 0:
        raise ValidationError("amount must be positive")

    stmt = (
        update(Inventory)
        .where(Inventory.product_id == product_id, Inventory.quantity >= amount)
        .values(quantity=Inventory.quantity - amount)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        on_hand = get_inventory(product_id)
        raise InsufficientStockError(
            f"Insufficient inventory for product {product_id}. "
            f"On-hand: {on_hand}, requested: {amount}"
        )
    return get_inventory(product_id)


def _ensure_inventory_row(product_id: int) -> Inventory:
    get_product(product_id)
    row = get_inventory_row(product_id, lock=True)
    if row is None:
        row = Inventory(
            product_id=product_id,
            quantity=0,
            low_stock_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 10),
        )
        db.session.add(row)
        db.session.flush()
    return row


def restock_inventory(product_id: int, amount: int, note: str | None = None) -> Inventory:
    """Receive `amount` units into the central warehouse."""
    amount = coerce_int(amount, "amount")
    if amount <= 0:
        raise ValidationError("amount must be positive")

    with atomic():
        _ensure_inventory_row(product_id)
        db.session.execute(
            update(Inventory)
            .where(Inventory.product_id == product_id)
            .values(quantity=Inventory.quantity + amount, note=note)
            .execution_options(synchronize_session="fetch")
        )
        row = get_inventory_row(product_id)

    current_app.logger.info("Central inventory for product %s restocked by %s", product_id, amount)
    return row


def set_inventory_quantity(
    product_id: int,
    quantity: int,
    note: str | None = None,
    low_stock_threshold: int | None = None,
) -> Inventory:
    """
    Stock manager's manual count of the central warehouse.

    Overwrites the on-hand quantity under a row lock.
    """
    quantity = coerce_int(quantity, "quantity")
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    if low_stock_threshold is not None:
        low_stock_threshold = coerce_int(low_stock_threshold, "low_stock_threshold")
        if low_stock_threshold < 0:
            raise ValidationError("low_stock_threshold cannot be negative")

    with atomic():
        row = _ensure_inventory_row(product_id)
        previous = row.quantity
        row.quantity = quantity
        row.note = note
        if low_stock_threshold is not None:
            row.low_stock_threshold = low_stock_threshold

    current_app.logger.info(
        "Central inventory for product %s set from %s to %s (%s)",
        product_id, previous, quantity, note or "no note",
    )
    return row


def list_inventory() -> list[dict]:
    """
    Every product with its central quantity, low-stock flag and stock value.

    Products that were never stocked appear with quantity 0.
    """
    default_threshold = current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 10)
    rows = (
        db.session.query(
            Product,
            func.coalesce(Inventory.quantity, 0).label("quantity"),
            Inventory.low_stock_threshold,
        )
        .outerjoin(Inventory, Inventory.product_id == Product.id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

    result = []
    for product, quantity, threshold in rows:
        threshold = default_threshold if threshold is None else threshold
        quantity = int(quantity or 0)
        result.append(
            {
                "product_id": product.id,
                "name": product.name,
                "manufacturer": product.manufacturer,
                "mrp": str(product.mrp),
                "quantity": quantity,
                "low_stock_threshold": threshold,
                "is_low_stock": quantity <= threshold,
                "stock_value": str(Decimal(product.mrp) * quantity),
            }
        )
    return result
