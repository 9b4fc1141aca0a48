# backend/fieldsales/services/order_service.py
"""
Order Repository and the non-fulfillment half of the order state machine.

LIFECYCLE:
1. PENDING: created by a salesman with one or more lines
2. FULFILLED / PARTIAL / UNFULFILLED: written only by fulfillment_service.fulfill
3. Manual changes: a stock manager may move PENDING <-> UNFULFILLED.
   FULFILLED and PARTIAL are never manual targets (that would bypass
   inventory accounting) and are never manually left (inventory was already
   allocated for them).
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Order, OrderItem, OrderStatus, Product, UnfulfilledItem, User
from ..validation import InvalidStateError, NotFoundError, ValidationError, coerce_int
from .catalog_service import get_inventory
from .concurrency import atomic, lock_for_update
from .store_service import get_store


MANUAL_STATUS_TARGETS = (OrderStatus.PENDING, OrderStatus.UNFULFILLED)


def parse_status(raw) -> OrderStatus:
    if isinstance(raw, OrderStatus):
        return raw
    try:
        return OrderStatus(str(raw).strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid order status: {raw}")


def can_leave_manually(status: OrderStatus) -> bool:
    """Whether a stock manager may move an order out of `status` by hand."""
    if status is OrderStatus.PENDING:
        return True
    if status is OrderStatus.UNFULFILLED:
        return True
    if status is OrderStatus.FULFILLED:
        return False
    if status is OrderStatus.PARTIAL:
        return False
    raise ValueError(f"unhandled order status {status!r}")


def _normalize_items(items) -> list[tuple[int, int]]:
    """
    Accepts an iterable of {"product_id": .., "quantity": ..} mappings or
    (product_id, quantity) pairs and returns validated (product_id, quantity) tuples.
    """
    if items is None or isinstance(items, (str, bytes)) or not isinstance(items, Iterable):
        raise ValidationError("items must be a list")

    lines: list[tuple[int, int]] = []
    seen: set[int] = set()
    for raw in items:
        if isinstance(raw, Mapping):
            if "product_id" not in raw or "quantity" not in raw:
                raise ValidationError("Each item needs product_id and quantity")
            product_id, quantity = raw["product_id"], raw["quantity"]
        else:
            try:
                product_id, quantity = raw
            except (TypeError, ValueError):
                raise ValidationError("Each item needs product_id and quantity")

        product_id = coerce_int(product_id, "product_id")
        quantity = coerce_int(quantity, "quantity")
        if quantity <= 0:
            raise ValidationError(f"Invalid quantity for product {product_id}: must be positive")
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once in the order")
        seen.add(product_id)
        lines.append((product_id, quantity))

    if not lines:
        raise ValidationError("An order needs at least one item")
    return lines


def create_order(*, store_id: int, salesman_id: int, items) -> Order:
    """
    Create a PENDING order with its lines in one transaction.

    No inventory is touched.

    Raises:
        ValidationError: empty item list, non-positive quantity, duplicate product
        NotFoundError: store, salesman or product does not exist
    """
    lines = _normalize_items(items)

    with atomic():
        get_store(store_id)
        if db.session.get(User, salesman_id) is None:
            raise NotFoundError(f"Salesman {salesman_id} not found")

        product_ids = [product_id for product_id, _ in lines]
        found = {
            pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(product_ids)).all()
        }
        missing = [pid for pid in product_ids if pid not in found]
        if missing:
            raise NotFoundError(f"Product {missing[0]} not found")

        order = Order(
            store_id=store_id,
            salesman_id=salesman_id,
            status=OrderStatus.PENDING,
            items=[OrderItem(product_id=pid, quantity=qty) for pid, qty in lines],
        )
        db.session.add(order)
        db.session.flush()

    current_app.logger.info(
        "Order %s created for store %s by salesman %s with %s item(s)",
        order.id, store_id, salesman_id, len(lines),
    )
    return order


def get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).options(selectinload(Order.items)).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def set_order_status(order: Order, status: OrderStatus) -> Order:
    """Write a status inside the caller's transaction (flushes; never commits)."""
    order.status = status
    db.session.flush()
    return order


def append_unfulfilled_item(
    *,
    order_id: int,
    store_id: int,
    product_id: int,
    requested_qty: int,
    available_qty: int,
    attempt: int = 1,
) -> UnfulfilledItem:
    if available_qty < 0:
        raise ValidationError("available_qty cannot be negative")
    if requested_qty <= available_qty:
        raise ValidationError("An unfulfilled item needs a positive shortfall")

    row = UnfulfilledItem(
        order_id=order_id,
        store_id=store_id,
        product_id=product_id,
        requested_qty=requested_qty,
        available_qty=available_qty,
        attempt=attempt,
    )
    db.session.add(row)
    db.session.flush()
    return row


def list_orders(
    *,
    store_id: int | None = None,
    status=None,
    exclude_fulfilled: bool = False,
    limit: int = 100,
) -> list[Order]:
    query = db.session.query(Order).options(selectinload(Order.items))
    if store_id is not None:
        query = query.filter(Order.store_id == store_id)
    if status is not None:
        query = query.filter(Order.status == parse_status(status))
    if exclude_fulfilled:
        query = query.filter(Order.status != OrderStatus.FULFILLED)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def get_order_for_fulfillment(order_id: int) -> dict:
    """
    What a stock manager needs to build an allocation plan: each line's
    requested quantity, what central inventory holds right now, and the
    largest allocation that would currently be accepted.
    """
    order = get_order(order_id)
    lines = []
    for item in order.items:
        available = get_inventory(item.product_id)
        lines.append(
            {
                "product_id": item.product_id,
                "product_name": item.product.name if item.product else None,
                "requested_qty": item.quantity,
                "available_qty": available,
                "max_allocation": min(item.quantity, available),
            }
        )
    return {
        "order_id": order.id,
        "store_id": order.store_id,
        "status": order.status.value,
        "can_fulfill": order.status is OrderStatus.PENDING,
        "items": lines,
    }


def manual_status_change(order_id: int, new_status) -> Order:
    """
    Stock manager's direct status edit.

    Raises:
        ValidationError: target is not PENDING or UNFULFILLED
        NotFoundError: order does not exist
        InvalidStateError: order is FULFILLED or PARTIAL
    """
    target = parse_status(new_status)
    if target not in MANUAL_STATUS_TARGETS:
        raise ValidationError("use fulfillment operation for FULFILLED or PARTIAL")

    with atomic():
        order = get_order(order_id, lock=True)
        if not can_leave_manually(order.status):
            current_app.logger.warning(
                "Refused manual status change of order %s from %s to %s",
                order_id, order.status.value, target.value,
            )
            raise InvalidStateError(
                f"cannot change status of a {order.status.value} order: inventory was already allocated"
            )
        previous = order.status
        set_order_status(order, target)

    current_app.logger.info(
        "Order %s status changed manually from %s to %s", order_id, previous.value, target.value
    )
    return order
