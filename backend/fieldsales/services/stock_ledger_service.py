# backend/fieldsales/services/stock_ledger_service.py
"""
Store Stock Ledger: per-store, per-batch StockPosition rows and the
append-only StockAdjustment audit log.

Ledger invariants (authoritative):
- A position is identified by its id; (store, product, batch, expiry) is the
  lookup key, not a uniqueness rule. Fulfillment always appends a new position.
- Position quantity is >= 0; a position that would be left at 0 is deleted.
- Adjustments are written inside the same transaction as the position change
  they describe and are never updated or deleted.

None of the functions here commit. They are building blocks for the
fulfillment and visit services, which own the transaction.
"""
from __future__ import annotations

from datetime import date, timedelta

from ..extensions import db
from ..models import AdjustmentReason, Product, StockAdjustment, StockPosition
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from .concurrency import lock_for_update
from .store_service import get_store


def get_position(position_id: int, *, lock: bool = False) -> StockPosition:
    query = db.session.query(StockPosition).filter_by(id=position_id)
    if lock:
        query = lock_for_update(query)
    position = query.first()
    if position is None:
        raise NotFoundError(f"Stock position {position_id} not found")
    return position


def find_position(
    store_id: int,
    product_id: int,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    *,
    lock: bool = False,
) -> StockPosition | None:
    """
    Exact-match lookup on (store, product, batch, expiry).

    A None batch or expiry matches only positions where that column is NULL.
    When several rows share the key the oldest one is returned.
    """
    query = db.session.query(StockPosition).filter(
        StockPosition.store_id == store_id,
        StockPosition.product_id == product_id,
    )
    if batch_number is None:
        query = query.filter(StockPosition.batch_number.is_(None))
    else:
        query = query.filter(StockPosition.batch_number == batch_number)
    if expiry_date is None:
        query = query.filter(StockPosition.expiry_date.is_(None))
    else:
        query = query.filter(StockPosition.expiry_date == expiry_date)

    if lock:
        query = lock_for_update(query)
    return query.order_by(StockPosition.id.asc()).first()


def create_position(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    batch_number: str | None = None,
    expiry_date: date | None = None,
) -> StockPosition:
    if quantity <= 0:
        raise ValidationError("A new stock position needs a positive quantity")

    position = StockPosition(
        store_id=store_id,
        product_id=product_id,
        quantity=quantity,
        batch_number=batch_number,
        expiry_date=expiry_date,
    )
    db.session.add(position)
    db.session.flush()
    return position


def upsert_position(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    batch_number: str | None = None,
    expiry_date: date | None = None,
) -> StockPosition:
    """Set the quantity of the exact-match position, creating it if absent."""
    if quantity < 0:
        raise ValidationError("Stock position quantity cannot be negative")

    position = find_position(store_id, product_id, batch_number, expiry_date, lock=True)
    if position is None:
        return create_position(
            store_id=store_id,
            product_id=product_id,
            quantity=quantity,
            batch_number=batch_number,
            expiry_date=expiry_date,
        )

    position.quantity = quantity
    db.session.flush()
    return position


def delete_position(position_id: int) -> None:
    position = get_position(position_id, lock=True)
    db.session.delete(position)
    db.session.flush()


def append_adjustment(
    *,
    visit_id: int,
    store_id: int,
    product_id: int,
    quantity_change: int,
    reason: AdjustmentReason,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    notes: str | None = None,
) -> StockAdjustment:
    if quantity_change == 0:
        raise ValidationError("An adjustment must change the quantity")

    adjustment = StockAdjustment(
        visit_id=visit_id,
        store_id=store_id,
        product_id=product_id,
        quantity_change=quantity_change,
        reason=reason,
        batch_number=batch_number,
        expiry_date=expiry_date,
        notes=notes,
    )
    db.session.add(adjustment)
    db.session.flush()
    return adjustment


def list_store_positions(store_id: int, product_id: int | None = None) -> list[StockPosition]:
    get_store(store_id)
    query = (
        db.session.query(StockPosition)
        .join(Product, Product.id == StockPosition.product_id)
        .filter(StockPosition.store_id == store_id)
    )
    if product_id is not None:
        query = query.filter(StockPosition.product_id == product_id)
    return query.order_by(
        Product.name.asc(),
        StockPosition.expiry_date.asc(),
        StockPosition.id.asc(),
    ).all()


def list_store_adjustments(store_id: int, limit: int = 200) -> list[StockAdjustment]:
    get_store(store_id)
    return (
        db.session.query(StockAdjustment)
        .filter_by(store_id=store_id)
        .order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .limit(limit)
        .all()
    )


def expiring_positions(within_days: int, store_id: int | None = None) -> list[StockPosition]:
    """
    Positions whose expiry date falls on or before today + within_days.

    Already-expired positions are included; positions without an expiry are not.
    """
    if within_days < 0:
        raise ValidationError("within_days cannot be negative")

    cutoff = utcnow().date() + timedelta(days=within_days)
    query = db.session.query(StockPosition).filter(
        StockPosition.expiry_date.isnot(None),
        StockPosition.expiry_date <= cutoff,
    )
    if store_id is not None:
        query = query.filter(StockPosition.store_id == store_id)
    return query.order_by(StockPosition.expiry_date.asc(), StockPosition.id.asc()).all()
