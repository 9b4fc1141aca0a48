# backend/fieldsales/routes/products.py
"""
Product catalog routes.

SECURITY: All routes require an identified caller.
- Read operations require VIEW_CATALOG permission
- Write operations require MANAGE_PRODUCTS permission
"""
from flask import Blueprint, request

from ..decorators import require_actor, require_permission
from ..models import Product
from ..services import catalog_service
from ..validation import FieldSalesError, ModelValidationPolicy, validate_payload

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "manufacturer", "mrp"},
    required_on_create={"name", "mrp"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_actor
@require_permission("VIEW_CATALOG")
def list_products():
    return {"items": [p.to_dict() for p in catalog_service.list_products()]}


@products_bp.get("/<int:product_id>")
@require_actor
@require_permission("VIEW_CATALOG")
def get_product(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    data = product.to_dict()
    data["inventory_qty"] = catalog_service.get_inventory(product_id)
    return data


@products_bp.post("")
@require_actor
@require_permission("MANAGE_PRODUCTS")
def create_product():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        product = catalog_service.create_product(
            name=patch["name"],
            mrp=patch["mrp"],
            manufacturer=patch.get("manufacturer"),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return product.to_dict(), 201


@products_bp.patch("/<int:product_id>")
@require_actor
@require_permission("MANAGE_PRODUCTS")
def update_product(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        product = catalog_service.update_product(product_id, patch)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return product.to_dict()


@products_bp.delete("/<int:product_id>")
@require_actor
@require_permission("MANAGE_PRODUCTS")
def delete_product(product_id: int):
    try:
        catalog_service.delete_product(product_id)
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
    return {"deleted": product_id}
