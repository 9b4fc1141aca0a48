# backend/fieldsales/routes/reports.py
"""
Read-only reporting routes. All require VIEW_REPORTS.

Query params shared by windowed reports:
- days: int (optional, default REPORT_WINDOW_DAYS, 1..365)
"""
from flask import Blueprint, request

from ..decorators import require_actor, require_permission
from ..services import reporting_service
from ..validation import FieldSalesError, coerce_int

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/shortfalls")
@require_actor
@require_permission("VIEW_REPORTS")
def shortfalls():
    try:
        return reporting_service.shortfalls_by_store(request.args.get("days"))
    except FieldSalesError as e:
        return e.to_dict(), e.http_status


@reports_bp.get("/product-shortages")
@require_actor
@require_permission("VIEW_REPORTS")
def product_shortages():
    try:
        return reporting_service.product_shortages(
            request.args.get("days"),
            limit=request.args.get("limit", 20),
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status


@reports_bp.get("/fulfillment")
@require_actor
@require_permission("VIEW_REPORTS")
def fulfillment():
    try:
        return reporting_service.fulfillment_stats(request.args.get("days"))
    except FieldSalesError as e:
        return e.to_dict(), e.http_status


@reports_bp.get("/demand")
@require_actor
@require_permission("VIEW_REPORTS")
def demand():
    try:
        product_id = request.args.get("product_id")
        return reporting_service.demand_trends(
            request.args.get("days"),
            product_id=coerce_int(product_id, "product_id") if product_id else None,
        )
    except FieldSalesError as e:
        return e.to_dict(), e.http_status


@reports_bp.get("/dashboard")
@require_actor
@require_permission("VIEW_REPORTS")
def dashboard():
    try:
        limit = request.args.get("limit", 10)
        return {
            "stats": reporting_service.dashboard_stats(),
            "recent_activity": reporting_service.recent_activity(limit),
        }
    except FieldSalesError as e:
        return e.to_dict(), e.http_status
