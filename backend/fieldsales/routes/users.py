# backend/fieldsales/routes/users.py
"""
Identity mirror routes.

SECURITY: All routes require an identified caller.
- /me is open to any identified caller
- Listing and mirroring users requires MANAGE_USERS (admins)
"""
from flask import Blueprint, g, request

from ..decorators import require_actor, require_permission
from ..services import user_service
from ..validation import FieldSalesError, ValidationError

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/me")
@require_actor
def me():
    data = g.current_user.to_dict()
    data["actor"] = g.actor.to_dict()
    return data


@users_bp.get("")
@require_actor
@require_permission("MANAGE_USERS")
def list_users():
    try:
        users = user_service.list_users(role=request.args.get("role") or None)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"items": [u.to_dict() for u in users]}


@users_bp.post("")
@require_actor
@require_permission("MANAGE_USERS")
def upsert_user():
    """
    Request body:
    {
        "external_id": str,   // identity provider user id
        "role": "ADMIN" | "SALESMAN" | "STOCK_MANAGER",
        "email": str,         // optional
        "name": str           // optional
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        for field in ("external_id", "role"):
            if field not in payload:
                raise ValidationError(f"Missing required field: {field}")
        user = user_service.upsert_user(
            external_id=payload["external_id"],
            role=payload["role"],
            email=payload.get("email"),
            name=payload.get("name"),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return user.to_dict(), 201
