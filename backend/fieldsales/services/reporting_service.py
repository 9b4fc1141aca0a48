# backend/fieldsales/services/reporting_service.py
"""
Read-only aggregates over orders, shortfalls, visits and adjustments.

Nothing here writes. Every figure is derived from rows the fulfillment and
visit services wrote, so these reports double as a consumer-side check that
UnfulfilledItem rows carry positive shortfalls.

Shortfall rows from an earlier fulfillment of an order that was later put
back to PENDING are history only: reports count the rows of each order's
latest attempt, and only while that order is PARTIAL or UNFULFILLED.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from flask import current_app
from sqlalchemy import and_, func

from ..extensions import db
from ..models import (
    Order,
    OrderItem,
    OrderStatus,
    Product,
    StockAdjustment,
    Store,
    UnfulfilledItem,
    Visit,
)
from ..time_utils import start_of_day, to_iso_date, to_utc_z, window_start
from ..validation import ValidationError, coerce_int

MAX_REPORT_DAYS = 365
SHORT_STATUSES = (OrderStatus.PARTIAL, OrderStatus.UNFULFILLED)


class ReportError(ValidationError):
    """Raised when report parameters are unusable."""
    pass


def resolve_days(days) -> int:
    if days is None or days == "":
        return int(current_app.config.get("REPORT_WINDOW_DAYS", 30))
    try:
        days = coerce_int(days, "days")
    except ValidationError as exc:
        raise ReportError(str(exc)) from exc
    if days <= 0 or days > MAX_REPORT_DAYS:
        raise ReportError(f"days must be between 1 and {MAX_REPORT_DAYS}")
    return days


def _rate(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def _current_shortfalls():
    """Join condition narrowing UnfulfilledItem rows to each order's latest attempt."""
    return and_(
        UnfulfilledItem.attempt == Order.fulfillment_attempt,
        Order.status.in_(SHORT_STATUSES),
    )


def _supplied_before_shortfall(status: OrderStatus, quantity: int) -> int:
    # An UNFULFILLED order supplied nothing, whether derived or set by hand
    if status is OrderStatus.FULFILLED or status is OrderStatus.PARTIAL:
        return quantity
    return 0


def shortfalls_by_store(days=None) -> dict:
    """
    Per store, for orders placed inside the window:
    - PARTIAL and UNFULFILLED order counts
    - shortfall lines and units
    - requested vs. supplied units over every processed (non-PENDING) order,
      and the resulting fulfillment rate
    """
    days = resolve_days(days)
    since = window_start(days)

    status_rows = (
        db.session.query(Order.store_id, Order.status, func.count(Order.id))
        .filter(Order.created_at >= since, Order.status.in_(SHORT_STATUSES))
        .group_by(Order.store_id, Order.status)
        .all()
    )
    shortfall_rows = (
        db.session.query(
            UnfulfilledItem.store_id,
            Order.status,
            func.count(UnfulfilledItem.id),
            func.coalesce(func.sum(UnfulfilledItem.requested_qty - UnfulfilledItem.available_qty), 0),
        )
        .join(Order, Order.id == UnfulfilledItem.order_id)
        .filter(Order.created_at >= since, _current_shortfalls())
        .group_by(UnfulfilledItem.store_id, Order.status)
        .all()
    )
    requested_rows = (
        db.session.query(Order.store_id, Order.status, func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(Order.created_at >= since, Order.status != OrderStatus.PENDING)
        .group_by(Order.store_id, Order.status)
        .all()
    )

    stats: dict[int, dict] = defaultdict(
        lambda: {
            "partial_orders": 0,
            "unfulfilled_orders": 0,
            "shortfall_items": 0,
            "shortfall_qty": 0,
            "requested_qty": 0,
            "supplied_qty": 0,
        }
    )
    for store_id, status, count in status_rows:
        key = "partial_orders" if status is OrderStatus.PARTIAL else "unfulfilled_orders"
        stats[store_id][key] = int(count)
    for store_id, status, qty in requested_rows:
        stats[store_id]["requested_qty"] += int(qty or 0)
        stats[store_id]["supplied_qty"] += _supplied_before_shortfall(status, int(qty or 0))
    for store_id, status, count, qty in shortfall_rows:
        stats[store_id]["shortfall_items"] += int(count)
        stats[store_id]["shortfall_qty"] += int(qty or 0)
        if status is OrderStatus.PARTIAL:
            stats[store_id]["supplied_qty"] -= int(qty or 0)

    names = dict(
        db.session.query(Store.id, Store.name).filter(Store.id.in_(list(stats.keys()))).all()
    ) if stats else {}

    rows = [
        {
            "store_id": store_id,
            "store_name": names.get(store_id),
            **values,
            "fulfillment_rate": _rate(values["supplied_qty"], values["requested_qty"]),
        }
        for store_id, values in stats.items()
    ]
    rows.sort(key=lambda r: (-r["shortfall_qty"], -(r["partial_orders"] + r["unfulfilled_orders"]), r["store_id"]))
    return {"days": days, "rows": rows}


def product_shortages(days=None, limit: int = 20) -> dict:
    """Products most often short, with requested vs. supplied units."""
    days = resolve_days(days)
    since = window_start(days)
    limit = coerce_int(limit, "limit")
    if limit <= 0:
        raise ReportError("limit must be positive")

    requested = func.sum(UnfulfilledItem.requested_qty)
    rows = (
        db.session.query(
            UnfulfilledItem.product_id,
            Product.name,
            func.count(UnfulfilledItem.id).label("occurrences"),
            requested.label("requested"),
            func.sum(UnfulfilledItem.available_qty).label("supplied"),
        )
        .join(Product, Product.id == UnfulfilledItem.product_id)
        .join(Order, Order.id == UnfulfilledItem.order_id)
        .filter(UnfulfilledItem.created_at >= since, _current_shortfalls())
        .group_by(UnfulfilledItem.product_id, Product.name)
        .order_by(requested.desc(), UnfulfilledItem.product_id.asc())
        .limit(limit)
        .all()
    )

    result = []
    for product_id, name, occurrences, req, supplied in rows:
        req = int(req or 0)
        supplied = int(supplied or 0)
        result.append(
            {
                "product_id": product_id,
                "product_name": name,
                "occurrences": int(occurrences),
                "requested_qty": req,
                "supplied_qty": supplied,
                "shortfall_qty": req - supplied,
                "fulfillment_rate": _rate(supplied, req),
            }
        )
    return {"days": days, "rows": result}


def fulfillment_stats(days=None) -> dict:
    days = resolve_days(days)
    since = window_start(days)

    counts = dict(
        db.session.query(Order.status, func.count(Order.id))
        .filter(Order.created_at >= since)
        .group_by(Order.status)
        .all()
    )
    by_status = {status.value: int(counts.get(status, 0)) for status in OrderStatus}
    total = sum(by_status.values())
    fulfilled = by_status[OrderStatus.FULFILLED.value]
    partial = by_status[OrderStatus.PARTIAL.value]
    unfulfilled = by_status[OrderStatus.UNFULFILLED.value]

    return {
        "days": days,
        "total_orders": total,
        "by_status": by_status,
        "fulfillment_rate": _rate(fulfilled + partial, total),
        "full_rate": _rate(fulfilled, total),
        "partial_rate": _rate(partial, total),
        "unfulfilled_rate": _rate(unfulfilled, total),
    }


def demand_trends(days=None, product_id: int | None = None) -> dict:
    """
    Per calendar day (order creation date): units ordered, units supplied by
    fulfillment, units short, and units still waiting on PENDING orders.
    """
    days = resolve_days(days)
    since = window_start(days)

    item_query = (
        db.session.query(Order.created_at, Order.status, OrderItem.quantity)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(Order.created_at >= since)
    )
    short_query = (
        db.session.query(
            Order.created_at,
            Order.status,
            UnfulfilledItem.requested_qty - UnfulfilledItem.available_qty,
        )
        .join(UnfulfilledItem, UnfulfilledItem.order_id == Order.id)
        .filter(Order.created_at >= since, _current_shortfalls())
    )
    if product_id is not None:
        item_query = item_query.filter(OrderItem.product_id == product_id)
        short_query = short_query.filter(UnfulfilledItem.product_id == product_id)

    buckets: dict = defaultdict(lambda: {"demand_qty": 0, "supplied_qty": 0, "pending_qty": 0, "shortfall_qty": 0})
    for created_at, status, quantity in item_query.all():
        bucket = buckets[created_at.date()]
        bucket["demand_qty"] += quantity
        if status is OrderStatus.PENDING:
            bucket["pending_qty"] += quantity
        else:
            bucket["supplied_qty"] += _supplied_before_shortfall(status, quantity)
    for created_at, status, shortfall in short_query.all():
        bucket = buckets[created_at.date()]
        bucket["shortfall_qty"] += int(shortfall)
        if status is OrderStatus.PARTIAL:
            bucket["supplied_qty"] -= int(shortfall)

    rows = [{"date": to_iso_date(day), **buckets[day]} for day in sorted(buckets)]
    return {"days": days, "product_id": product_id, "rows": rows}


def dashboard_stats(now: datetime | None = None) -> dict:
    today = start_of_day(now)

    visits_today = db.session.query(func.count(Visit.id)).filter(Visit.timestamp >= today).scalar() or 0
    orders_today = db.session.query(func.count(Order.id)).filter(Order.created_at >= today).scalar() or 0
    pending = (
        db.session.query(func.count(Order.id)).filter(Order.status == OrderStatus.PENDING).scalar() or 0
    )

    visiting = {sid for (sid,) in db.session.query(Visit.salesman_id).filter(Visit.timestamp >= today).distinct()}
    ordering = {sid for (sid,) in db.session.query(Order.salesman_id).filter(Order.created_at >= today).distinct()}

    return {
        "todays_visits": int(visits_today),
        "todays_orders": int(orders_today),
        "pending_orders": int(pending),
        "active_salesmen": len(visiting | ordering),
    }


def recent_activity(limit: int = 10) -> list[dict]:
    """Newest-first feed merging orders, visits and stock adjustments."""
    limit = coerce_int(limit, "limit")
    if limit <= 0:
        raise ReportError("limit must be positive")

    events = []
    orders = db.session.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    for order in orders:
        events.append(
            {
                "type": "order",
                "id": order.id,
                "store_id": order.store_id,
                "timestamp": order.created_at,
                "description": f"Order #{order.id} ({order.status.value}) with {len(order.items)} item(s)",
            }
        )

    visits = db.session.query(Visit).order_by(Visit.timestamp.desc(), Visit.id.desc()).limit(limit).all()
    for visit in visits:
        events.append(
            {
                "type": "visit",
                "id": visit.id,
                "store_id": visit.store_id,
                "timestamp": visit.timestamp,
                "description": f"Visit to {visit.store.name if visit.store else visit.store_id}",
            }
        )

    adjustments = (
        db.session.query(StockAdjustment)
        .order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .limit(limit)
        .all()
    )
    for adj in adjustments:
        name = adj.product.name if adj.product else adj.product_id
        events.append(
            {
                "type": "adjustment",
                "id": adj.id,
                "store_id": adj.store_id,
                "timestamp": adj.created_at,
                "description": f"{name}: {adj.quantity_change:+d} ({adj.reason.value})",
            }
        )

    events.sort(key=lambda e: e["timestamp"], reverse=True)
    return [{**e, "timestamp": to_utc_z(e["timestamp"])} for e in events[:limit]]
