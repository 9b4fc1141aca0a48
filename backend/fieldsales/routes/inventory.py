# backend/fieldsales/routes/inventory.py
"""
Central warehouse inventory routes.

SECURITY: All routes require an identified caller.
- View operations require VIEW_INVENTORY permission
- Restock and manual counts require MANAGE_INVENTORY permission
"""
from flask import Blueprint, request

from ..decorators import require_actor, require_permission
from ..services import catalog_service
from ..validation import FieldSalesError, ValidationError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _require(payload: dict, *fields):
    missing = [f for f in fields if f not in payload]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


@inventory_bp.get("")
@require_actor
@require_permission("VIEW_INVENTORY")
def list_inventory():
    rows = catalog_service.list_inventory()
    if request.args.get("low_stock") in ("1", "true", "yes"):
        rows = [r for r in rows if r["is_low_stock"]]
    return {"items": rows}


@inventory_bp.get("/<int:product_id>")
@require_actor
@require_permission("VIEW_INVENTORY")
def get_inventory(product_id: int):
    try:
        catalog_service.get_product(product_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"product_id": product_id, "quantity": catalog_service.get_inventory(product_id)}


@inventory_bp.post("/<int:product_id>/restock")
@require_actor
@require_permission("MANAGE_INVENTORY")
def restock(product_id: int):
    """
    Request body:
    {
        "quantity": int,     // units received, > 0
        "note": str          // optional
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        _require(payload, "quantity")
        row = catalog_service.restock_inventory(product_id, payload["quantity"], payload.get("note"))
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return row.to_dict()


@inventory_bp.put("/<int:product_id>")
@require_actor
@require_permission("MANAGE_INVENTORY")
def set_quantity(product_id: int):
    """
    Request body:
    {
        "quantity": int,                 // counted on-hand, >= 0
        "low_stock_threshold": int,      // optional
        "note": str                      // optional
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        _require(payload, "quantity")
        row = catalog_service.set_inventory_quantity(
            product_id,
            payload["quantity"],
            note=payload.get("note"),
            low_stock_threshold=payload.get("low_stock_threshold"),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return row.to_dict()
