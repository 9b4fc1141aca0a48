# backend/fieldsales/services/fulfillment_service.py
"""
Order fulfillment engine.

WORKFLOW (single transaction, all-or-nothing):
1. Lock the order and re-check it is PENDING
2. Validate the allocation plan against requested quantities and the
   central inventory read inside the same transaction
3. For each line:
   - allocated > 0: conditional decrement of central inventory, then a new
     StockPosition at the order's store (no batch, no expiry)
   - allocated < requested: one UnfulfilledItem for the shortfall
     stamped with the order's fulfillment attempt
4. Derive FULFILLED / PARTIAL / UNFULFILLED and stamp who fulfilled it

INVARIANTS:
- Conservation: units leaving central inventory == units appearing in the
  new store positions, per product
- At-most-once: the PENDING re-check under lock plus the Order version
  counter make a second fulfill of the same order fail with InvalidStateError
- Any failure (including InsufficientStockError from a concurrent drain)
  rolls back every decrement and position written so far
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from flask import current_app

from ..identity import Actor
from ..models import Order, OrderStatus, StockPosition, UnfulfilledItem
from ..time_utils import utcnow
from ..validation import InvalidStateError, ValidationError, coerce_int
from .catalog_service import decrement_inventory, get_inventory
from .concurrency import atomic
from .order_service import append_unfulfilled_item, get_order, set_order_status
from .stock_ledger_service import create_position


@dataclass
class LineAllocation:
    product_id: int
    requested: int
    allocated: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.allocated

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested_qty": self.requested,
            "allocated_qty": self.allocated,
            "shortfall": self.shortfall,
        }


@dataclass
class FulfillmentResult:
    order: Order
    lines: list[LineAllocation]
    positions: list[StockPosition] = field(default_factory=list)
    unfulfilled_items: list[UnfulfilledItem] = field(default_factory=list)

    @property
    def status(self) -> OrderStatus:
        return self.order.status

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "status": self.order.status.value,
            "allocations": [line.to_dict() for line in self.lines],
            "positions": [p.to_dict() for p in self.positions],
            "unfulfilled_items": [u.to_dict() for u in self.unfulfilled_items],
        }


def derive_status(lines: list[LineAllocation]) -> OrderStatus:
    """
    FULFILLED when every line got everything it asked for, UNFULFILLED when
    no line got anything, PARTIAL otherwise.
    """
    if not lines:
        raise ValidationError("Cannot derive a status for an order without lines")
    if all(line.allocated == line.requested for line in lines):
        return OrderStatus.FULFILLED
    if all(line.allocated == 0 for line in lines):
        return OrderStatus.UNFULFILLED
    return OrderStatus.PARTIAL


def _normalize_plan(allocation_plan) -> dict[int, int]:
    if allocation_plan is None:
        return {}
    if not isinstance(allocation_plan, Mapping):
        raise ValidationError("allocation plan must be a mapping of product_id to quantity")

    plan: dict[int, int] = {}
    for raw_pid, raw_qty in allocation_plan.items():
        product_id = coerce_int(raw_pid, "product_id")
        qty = coerce_int(raw_qty, f"allocation for product {product_id}")
        if qty < 0:
            raise ValidationError(f"Allocation for product {product_id} cannot be negative")
        if product_id in plan:
            raise ValidationError(f"Product {product_id} appears more than once in the allocation plan")
        plan[product_id] = qty
    return plan


def _plan_lines(order: Order, plan: dict[int, int]) -> list[LineAllocation]:
    """Bound every allocation by the requested quantity and current inventory."""
    requested = {item.product_id: item.quantity for item in order.items}
    unknown = sorted(pid for pid in plan if pid not in requested)
    if unknown:
        raise ValidationError(f"Product {unknown[0]} is not part of order {order.id}")

    lines = []
    for item in order.items:
        allocated = plan.get(item.product_id, 0)
        if allocated > item.quantity:
            raise ValidationError(
                f"Allocation for product {item.product_id} ({allocated}) "
                f"exceeds requested quantity ({item.quantity})"
            )
        if allocated > 0:
            available = get_inventory(item.product_id)
            if allocated > available:
                raise ValidationError(
                    f"Allocation for product {item.product_id} ({allocated}) "
                    f"exceeds available inventory ({available})"
                )
        lines.append(LineAllocation(item.product_id, item.quantity, allocated))
    return lines


def fulfill(
    order_id: int,
    allocation_plan,
    *,
    strict_mode: bool = False,
    actor: Actor | None = None,
) -> FulfillmentResult:
    """
    Fulfill a PENDING order from central inventory.

    allocation_plan maps product_id -> quantity to supply; lines missing from
    the plan are allocated 0. With strict_mode every line must be allocated in
    full or nothing is written.

    Raises:
        NotFoundError: order does not exist
        InvalidStateError: order is not PENDING, strict mode not satisfied,
            or the order changed concurrently
        ValidationError: malformed plan or an allocation above requested/available
        InsufficientStockError: inventory drained concurrently between check and decrement
    """
    plan = _normalize_plan(allocation_plan)

    with atomic():
        order = get_order(order_id, lock=True)
        if order.status is not OrderStatus.PENDING:
            current_app.logger.warning(
                "Refused to fulfill order %s in status %s", order_id, order.status.value
            )
            raise InvalidStateError("can only fulfill pending orders")

        lines = _plan_lines(order, plan)
        if strict_mode and any(line.allocated != line.requested for line in lines):
            raise InvalidStateError("cannot mark fulfilled: not all items satisfied")

        order.fulfillment_attempt = (order.fulfillment_attempt or 0) + 1
        result = FulfillmentResult(order=order, lines=lines)
        for line in lines:
            if line.allocated > 0:
                decrement_inventory(line.product_id, line.allocated)
                result.positions.append(
                    create_position(
                        store_id=order.store_id,
                        product_id=line.product_id,
                        quantity=line.allocated,
                    )
                )
            if line.allocated < line.requested:
                result.unfulfilled_items.append(
                    append_unfulfilled_item(
                        order_id=order.id,
                        store_id=order.store_id,
                        product_id=line.product_id,
                        requested_qty=line.requested,
                        available_qty=line.allocated,
                        attempt=order.fulfillment_attempt,
                    )
                )

        order.fulfilled_at = utcnow()
        order.fulfilled_by_id = actor.user_id if actor is not None else None
        set_order_status(order, derive_status(lines))

    current_app.logger.info(
        "Order %s fulfilled as %s: %s unit(s) allocated, %s shortfall line(s)",
        order.id,
        order.status.value,
        sum(line.allocated for line in lines),
        len(result.unfulfilled_items),
    )
    return result
