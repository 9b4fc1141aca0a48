# backend/fieldsales/routes/orders.py
"""
Order routes: creation by salesmen, fulfillment and status changes by
stock managers.

SECURITY: All routes require an identified caller.
- Create requires CREATE_ORDERS
- Read requires VIEW_ORDERS
- Fulfill requires FULFILL_ORDERS (stock managers and admins only)
- Manual status change requires CHANGE_ORDER_STATUS
"""
from flask import Blueprint, g, request

from ..decorators import require_actor, require_permission
from ..services import fulfillment_service, order_service
from ..validation import FieldSalesError, ValidationError, coerce_bool, coerce_int

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_actor
@require_permission("CREATE_ORDERS")
def create_order():
    """
    Request body:
    {
        "store_id": int,
        "items": [{"product_id": int, "quantity": int}, ...]
    }

    Returns:
        201: Order created as PENDING
        400: Invalid request
        404: Store or product not found
    """
    payload = request.get_json(silent=True) or {}
    try:
        if "store_id" not in payload:
            raise ValidationError("Missing required field: store_id")
        order = order_service.create_order(
            store_id=coerce_int(payload["store_id"], "store_id"),
            salesman_id=g.actor.user_id,
            items=payload.get("items"),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return order.to_dict(), 201


@orders_bp.get("")
@require_actor
@require_permission("VIEW_ORDERS")
def list_orders():
    """
    Query params:
    - store_id: int (optional)
    - status: PENDING | FULFILLED | PARTIAL | UNFULFILLED (optional)
    - exclude_fulfilled: bool (optional)
    """
    try:
        store_id = request.args.get("store_id")
        orders = order_service.list_orders(
            store_id=coerce_int(store_id, "store_id") if store_id else None,
            status=request.args.get("status") or None,
            exclude_fulfilled=request.args.get("exclude_fulfilled") in ("1", "true", "yes"),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"items": [o.to_dict() for o in orders]}


@orders_bp.get("/<int:order_id>")
@require_actor
@require_permission("VIEW_ORDERS")
def get_order(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return order.to_dict()


@orders_bp.get("/<int:order_id>/fulfillment")
@require_actor
@require_permission("FULFILL_ORDERS")
def fulfillment_view(order_id: int):
    try:
        return order_service.get_order_for_fulfillment(order_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status


@orders_bp.post("/<int:order_id>/fulfill")
@require_actor
@require_permission("FULFILL_ORDERS")
def fulfill_order(order_id: int):
    """
    Request body:
    {
        "allocations": {"<product_id>": int, ...},
        "strict": bool   // optional, default false
    }

    Returns:
        200: Order fulfilled (FULFILLED, PARTIAL or UNFULFILLED)
        400: Invalid allocation
        404: Order not found
        409: Order not pending, strict mode not satisfied, or stock drained concurrently
    """
    payload = request.get_json(silent=True) or {}
    try:
        result = fulfillment_service.fulfill(
            order_id,
            payload.get("allocations") or {},
            strict_mode=coerce_bool(payload.get("strict"), "strict"),
            actor=g.actor,
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return result.to_dict()


@orders_bp.post("/<int:order_id>/status")
@require_actor
@require_permission("CHANGE_ORDER_STATUS")
def change_status(order_id: int):
    """
    Request body:
    {
        "status": "PENDING" | "UNFULFILLED"
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        if "status" not in payload:
            raise ValidationError("Missing required field: status")
        order = order_service.manual_status_change(order_id, payload["status"])
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return order.to_dict()
