# backend/fieldsales/routes/visits.py
"""
Salesman visit routes: check-in with stock reconciliation and new batches.

SECURITY: All routes require an identified caller.
- Writes require RECORD_VISITS
- Listing visits requires VIEW_ORDERS
"""
from flask import Blueprint, g, request

from ..decorators import require_actor, require_permission
from ..services import visit_service
from ..validation import FieldSalesError, ValidationError, coerce_int

visits_bp = Blueprint("visits", __name__, url_prefix="/api/visits")


def _location(payload: dict):
    if "location" in payload:
        return payload["location"]
    if "latitude" in payload or "longitude" in payload:
        return {"latitude": payload.get("latitude"), "longitude": payload.get("longitude")}
    return None


def _store_id(payload: dict) -> int:
    if "store_id" not in payload:
        raise ValidationError("Missing required field: store_id")
    return coerce_int(payload["store_id"], "store_id")


@visits_bp.post("")
@require_actor
@require_permission("RECORD_VISITS")
def check_in():
    """
    Request body:
    {
        "store_id": int,
        "location": {"latitude": float, "longitude": float},
        "notes": str,
        "lines": [
            {"product_id": int, "observed_qty": int, "batch_number": str,
             "expiry_date": "YYYY-MM-DD", "reason": str, "stock_position_id": int}
        ]
    }

    Returns:
        201: Visit recorded
        403: Outside the store's geofence
    """
    payload = request.get_json(silent=True) or {}
    try:
        result = visit_service.check_in(
            g.actor,
            store_id=_store_id(payload),
            lines=payload.get("lines") or [],
            location=_location(payload),
            notes=payload.get("notes"),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return result.to_dict(), 201


@visits_bp.post("/reconcile")
@require_actor
@require_permission("RECORD_VISITS")
def reconcile():
    payload = request.get_json(silent=True) or {}
    try:
        for field in ("product_id", "observed_qty"):
            if field not in payload:
                raise ValidationError(f"Missing required field: {field}")
        visit_id = payload.get("visit_id")
        result = visit_service.reconcile(
            g.actor,
            store_id=_store_id(payload),
            product_id=coerce_int(payload["product_id"], "product_id"),
            observed_qty=payload["observed_qty"],
            batch_number=payload.get("batch_number"),
            expiry_date=payload.get("expiry_date"),
            reason=payload.get("reason"),
            notes=payload.get("notes"),
            visit_id=coerce_int(visit_id, "visit_id") if visit_id is not None else None,
            stock_position_id=payload.get("stock_position_id"),
            location=_location(payload),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return result.to_dict()


@visits_bp.post("/batches")
@require_actor
@require_permission("RECORD_VISITS")
def new_batch():
    payload = request.get_json(silent=True) or {}
    try:
        for field in ("product_id", "quantity"):
            if field not in payload:
                raise ValidationError(f"Missing required field: {field}")
        visit_id = payload.get("visit_id")
        result = visit_service.record_new_batch(
            g.actor,
            store_id=_store_id(payload),
            product_id=coerce_int(payload["product_id"], "product_id"),
            quantity=payload["quantity"],
            batch_number=payload.get("batch_number"),
            expiry_date=payload.get("expiry_date"),
            notes=payload.get("notes"),
            visit_id=coerce_int(visit_id, "visit_id") if visit_id is not None else None,
            location=_location(payload),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return result.to_dict(), 201


@visits_bp.get("")
@require_actor
@require_permission("VIEW_ORDERS")
def list_visits():
    try:
        store_id = request.args.get("store_id")
        salesman_id = g.actor.user_id if g.actor.is_salesman else None
        visits = visit_service.list_visits(
            store_id=coerce_int(store_id, "store_id") if store_id else None,
            salesman_id=salesman_id,
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"items": [v.to_dict() for v in visits]}
