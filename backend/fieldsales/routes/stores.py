# backend/fieldsales/routes/stores.py
"""
Store management and store stock ledger routes.

SECURITY: All routes require an identified caller.
- Read operations require VIEW_CATALOG (stores) or VIEW_INVENTORY (stock)
- Store create/update requires MANAGE_STORES permission
"""
from flask import Blueprint, current_app, request

from ..decorators import require_actor, require_permission
from ..models import Store
from ..services import stock_ledger_service, store_service
from ..validation import FieldSalesError, ModelValidationPolicy, coerce_int, validate_payload

STORE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "address", "latitude", "longitude"},
    required_on_create={"name"},
)

stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.get("")
@require_actor
@require_permission("VIEW_CATALOG")
def list_stores():
    return {"items": [s.to_dict() for s in store_service.list_stores()]}


@stores_bp.get("/<int:store_id>")
@require_actor
@require_permission("VIEW_CATALOG")
def get_store(store_id: int):
    try:
        store = store_service.get_store(store_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return store.to_dict()


@stores_bp.post("")
@require_actor
@require_permission("MANAGE_STORES")
def create_store():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=False)
        store = store_service.create_store(
            name=patch["name"],
            address=patch.get("address"),
            latitude=patch.get("latitude"),
            longitude=patch.get("longitude"),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return store.to_dict(), 201


@stores_bp.patch("/<int:store_id>")
@require_actor
@require_permission("MANAGE_STORES")
def update_store(store_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=True)
        store = store_service.update_store(store_id, patch)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return store.to_dict()


@stores_bp.get("/<int:store_id>/positions")
@require_actor
@require_permission("VIEW_INVENTORY")
def list_positions(store_id: int):
    try:
        product_id = request.args.get("product_id")
        product_id = coerce_int(product_id, "product_id") if product_id else None
        positions = stock_ledger_service.list_store_positions(store_id, product_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"store_id": store_id, "items": [p.to_dict() for p in positions]}


@stores_bp.get("/<int:store_id>/adjustments")
@require_actor
@require_permission("VIEW_INVENTORY")
def list_adjustments(store_id: int):
    try:
        limit = coerce_int(request.args.get("limit", "200"), "limit")
        adjustments = stock_ledger_service.list_store_adjustments(store_id, limit=limit)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"store_id": store_id, "items": [a.to_dict() for a in adjustments]}


@stores_bp.get("/expiring")
@require_actor
@require_permission("VIEW_INVENTORY")
def expiring():
    """
    Query params:
    - days: int (optional, default EXPIRY_ALERT_DAYS)
    - store_id: int (optional)
    """
    try:
        days = request.args.get("days")
        days = coerce_int(days, "days") if days else current_app.config.get("EXPIRY_ALERT_DAYS", 30)
        store_id = request.args.get("store_id")
        store_id = coerce_int(store_id, "store_id") if store_id else None
        positions = stock_ledger_service.expiring_positions(days, store_id=store_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"days": days, "items": [p.to_dict() for p in positions]}
