# backend/fieldsales/services/visit_service.py
"""
Visits and store stock reconciliation.

A salesman checks in at a store (one Visit row) and reports what is on the
shelf. Each report reconciles one StockPosition against the observed count:

    delta = observed - current        (current is 0 when no position matches)
    delta != 0   -> one StockAdjustment(quantity_change=delta)
    observed == 0 -> the position is deleted (stock-out)
    observed > 0  -> the position is created or set to observed

Central inventory is never touched here. Everything one call does happens in
one transaction, so a failing line rolls back the whole visit.

Geofencing: when enforced and the store has coordinates, the caller's reported
location must be within GEOFENCE_RADIUS_METERS (great-circle distance) of the
store, checked before anything is written.
"""
from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date

from flask import current_app

from ..extensions import db
from ..identity import Actor
from ..models import AdjustmentReason, StockAdjustment, StockPosition, Store, Visit
from ..validation import (
    LocationError,
    NotFoundError,
    ValidationError,
    coerce_date,
    coerce_float,
    coerce_int,
    coerce_optional_str,
)
from .catalog_service import get_product
from .concurrency import atomic
from .stock_ledger_service import (
    append_adjustment,
    create_position,
    delete_position,
    find_position,
    get_position,
)
from .store_service import get_store


EARTH_RADIUS_METERS = 6371000.0
DEFAULT_RECONCILE_REASON = AdjustmentReason.COUNT_CORRECTION


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass
class ReconcileLine:
    product_id: int
    observed_qty: int
    batch_number: str | None = None
    expiry_date: date | None = None
    reason: AdjustmentReason = DEFAULT_RECONCILE_REASON
    notes: str | None = None
    stock_position_id: int | None = None


@dataclass
class ReconcileResult:
    product_id: int
    previous_qty: int
    observed_qty: int
    adjustment: StockAdjustment | None
    position: StockPosition | None

    @property
    def delta(self) -> int:
        return self.observed_qty - self.previous_qty

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "previous_qty": self.previous_qty,
            "observed_qty": self.observed_qty,
            "delta": self.delta,
            "adjustment": self.adjustment.to_dict() if self.adjustment else None,
            "position": self.position.to_dict() if self.position else None,
        }


@dataclass
class CheckInResult:
    visit: Visit
    distance_meters: float | None = None
    results: list[ReconcileResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "visit": self.visit.to_dict(),
            "distance_meters": None if self.distance_meters is None else round(self.distance_meters, 1),
            "results": [r.to_dict() for r in self.results],
        }


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine great-circle distance between two coordinates."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def parse_location(raw) -> Location | None:
    """Accepts a Location, a {"latitude", "longitude"} mapping or a (lat, lng) pair."""
    if raw is None:
        return None
    if isinstance(raw, Location):
        return raw
    if isinstance(raw, Mapping):
        lat, lng = raw.get("latitude"), raw.get("longitude")
    else:
        try:
            lat, lng = raw
        except (TypeError, ValueError):
            raise ValidationError("location must have latitude and longitude")
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("location must have latitude and longitude")

    lat = coerce_float(lat, "latitude")
    lng = coerce_float(lng, "longitude")
    if not -90 <= lat <= 90:
        raise ValidationError("latitude must be between -90 and 90")
    if not -180 <= lng <= 180:
        raise ValidationError("longitude must be between -180 and 180")
    return Location(lat, lng)


def parse_reason(raw) -> AdjustmentReason:
    if raw is None or raw == "":
        return DEFAULT_RECONCILE_REASON
    if isinstance(raw, AdjustmentReason):
        return raw
    try:
        return AdjustmentReason(str(raw).strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid adjustment reason: {raw}")


def check_geofence(store: Store, location: Location | None) -> float | None:
    """
    Returns the caller's distance to the store, or None when no check applies.

    Raises:
        LocationError: the store has coordinates and the caller is missing a
            location or is outside the radius
    """
    if not current_app.config.get("GEOFENCE_ENFORCED", True) or not store.has_location:
        return None

    radius = float(current_app.config.get("GEOFENCE_RADIUS_METERS", 200))
    if location is None:
        raise LocationError(f"Location is required to check in at {store.name}")

    distance = distance_meters(location.latitude, location.longitude, store.latitude, store.longitude)
    if distance > radius:
        current_app.logger.warning(
            "Check-in at store %s refused: caller is %.0fm away (limit %.0fm)",
            store.id, distance, radius,
        )
        raise LocationError(
            f"You are {distance:.0f}m away from the store. Must be within {radius:.0f}m."
        )
    return distance


def _line_from_mapping(raw) -> ReconcileLine:
    if isinstance(raw, ReconcileLine):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("Each line must be an object")
    if "product_id" not in raw:
        raise ValidationError("Each line needs a product_id")
    observed = raw.get("observed_qty", raw.get("quantity"))
    if observed is None:
        raise ValidationError("Each line needs an observed_qty")

    position_id = raw.get("stock_position_id")
    return ReconcileLine(
        product_id=coerce_int(raw["product_id"], "product_id"),
        observed_qty=coerce_int(observed, "observed_qty"),
        batch_number=coerce_optional_str(raw.get("batch_number"), "batch_number"),
        expiry_date=coerce_date(raw.get("expiry_date"), "expiry_date"),
        reason=parse_reason(raw.get("reason")),
        notes=coerce_optional_str(raw.get("notes"), "notes"),
        stock_position_id=None if position_id in (None, "") else coerce_int(position_id, "stock_position_id"),
    )


def _start_visit(actor: Actor, store: Store, location: Location | None, notes: str | None) -> tuple[Visit, float | None]:
    distance = check_geofence(store, location)
    visit = Visit(
        salesman_id=actor.user_id,
        store_id=store.id,
        latitude=location.latitude if location else None,
        longitude=location.longitude if location else None,
        notes=notes,
    )
    db.session.add(visit)
    db.session.flush()
    return visit, distance


def _existing_visit(visit_id: int, store_id: int) -> Visit:
    visit = db.session.get(Visit, visit_id)
    if visit is None:
        raise NotFoundError(f"Visit {visit_id} not found")
    if visit.store_id != store_id:
        raise ValidationError(f"Visit {visit_id} belongs to a different store")
    return visit


def _reconcile_inner(visit: Visit, store_id: int, line: ReconcileLine) -> ReconcileResult:
    if line.observed_qty < 0:
        raise ValidationError("Observed quantity cannot be negative")
    get_product(line.product_id)

    if line.stock_position_id is not None:
        position = get_position(line.stock_position_id, lock=True)
        if position.store_id != store_id or position.product_id != line.product_id:
            raise ValidationError(
                f"Stock position {line.stock_position_id} does not hold product "
                f"{line.product_id} at store {store_id}"
            )
    else:
        position = find_position(
            store_id, line.product_id, line.batch_number, line.expiry_date, lock=True
        )

    previous = position.quantity if position is not None else 0
    delta = line.observed_qty - previous
    batch_number = line.batch_number
    expiry_date = line.expiry_date
    if position is not None:
        batch_number = batch_number or position.batch_number
        expiry_date = expiry_date or position.expiry_date

    adjustment = None
    if delta != 0:
        adjustment = append_adjustment(
            visit_id=visit.id,
            store_id=store_id,
            product_id=line.product_id,
            quantity_change=delta,
            reason=line.reason,
            batch_number=batch_number,
            expiry_date=expiry_date,
            notes=line.notes or f"Updated during visit: {delta:+d}",
        )

    if line.observed_qty == 0:
        if position is not None:
            delete_position(position.id)
        position = None
    elif position is None:
        position = create_position(
            store_id=store_id,
            product_id=line.product_id,
            quantity=line.observed_qty,
            batch_number=batch_number,
            expiry_date=expiry_date,
        )
    else:
        position.quantity = line.observed_qty
        position.batch_number = batch_number
        position.expiry_date = expiry_date
        db.session.flush()

    return ReconcileResult(
        product_id=line.product_id,
        previous_qty=previous,
        observed_qty=line.observed_qty,
        adjustment=adjustment,
        position=position,
    )


def reconcile(
    actor: Actor,
    *,
    store_id: int,
    product_id: int,
    observed_qty: int,
    batch_number: str | None = None,
    expiry_date=None,
    reason=None,
    notes: str | None = None,
    visit_id: int | None = None,
    stock_position_id: int | None = None,
    location=None,
) -> CheckInResult:
    """
    Reconcile one product's recorded stock at a store with an observed count.

    Opens a new Visit unless `visit_id` names an existing visit to the same
    store; the geofence is checked only when a new visit is opened.

    Raises:
        ValidationError: negative count, bad reason/date, mismatched position or visit
        NotFoundError: store, product, visit or position does not exist
        LocationError: caller outside the store's geofence
    """
    line = _line_from_mapping(
        {
            "product_id": product_id,
            "observed_qty": observed_qty,
            "batch_number": batch_number,
            "expiry_date": expiry_date,
            "reason": reason,
            "notes": notes,
            "stock_position_id": stock_position_id,
        }
    )
    location = parse_location(location)

    with atomic():
        store = get_store(store_id)
        distance = None
        if visit_id is not None:
            visit = _existing_visit(visit_id, store_id)
        else:
            visit, distance = _start_visit(actor, store, location, None)
        result = CheckInResult(visit=visit, distance_meters=distance)
        result.results.append(_reconcile_inner(visit, store_id, line))

    current_app.logger.info(
        "Visit %s reconciled product %s at store %s: %s -> %s",
        visit.id, product_id, store_id, result.results[0].previous_qty, line.observed_qty,
    )
    return result


def check_in(
    actor: Actor,
    *,
    store_id: int,
    lines=None,
    location=None,
    notes: str | None = None,
) -> CheckInResult:
    """One Visit plus a reconciliation per line, all in one transaction."""
    parsed = [_line_from_mapping(raw) for raw in (lines or [])]
    seen = set()
    for line in parsed:
        if line.stock_position_id is not None:
            if line.stock_position_id in seen:
                raise ValidationError(
                    f"Stock position {line.stock_position_id} appears more than once in the visit"
                )
            seen.add(line.stock_position_id)
    location = parse_location(location)

    with atomic():
        store = get_store(store_id)
        visit, distance = _start_visit(actor, store, location, coerce_optional_str(notes, "notes"))
        result = CheckInResult(visit=visit, distance_meters=distance)
        for line in parsed:
            result.results.append(_reconcile_inner(visit, store_id, line))

    current_app.logger.info(
        "Salesman %s checked in at store %s (visit %s, %s line(s))",
        actor.user_id, store_id, visit.id, len(parsed),
    )
    return result


def record_new_batch(
    actor: Actor,
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    batch_number: str | None = None,
    expiry_date=None,
    notes: str | None = None,
    visit_id: int | None = None,
    location=None,
) -> CheckInResult:
    """
    Register a freshly delivered batch at a store.

    Always creates a new StockPosition and a RESTOCK adjustment of +quantity,
    never merging into an existing position.
    """
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be positive")
    batch_number = coerce_optional_str(batch_number, "batch_number")
    notes = coerce_optional_str(notes, "notes")
    expiry_date = coerce_date(expiry_date, "expiry_date")
    location = parse_location(location)

    with atomic():
        store = get_store(store_id)
        get_product(product_id)
        distance = None
        if visit_id is not None:
            visit = _existing_visit(visit_id, store_id)
        else:
            visit, distance = _start_visit(actor, store, location, "Stock addition")

        position = create_position(
            store_id=store_id,
            product_id=product_id,
            quantity=quantity,
            batch_number=batch_number,
            expiry_date=expiry_date,
        )
        adjustment = append_adjustment(
            visit_id=visit.id,
            store_id=store_id,
            product_id=product_id,
            quantity_change=quantity,
            reason=AdjustmentReason.RESTOCK,
            batch_number=batch_number,
            expiry_date=expiry_date,
            notes=notes or "New batch added",
        )
        result = CheckInResult(visit=visit, distance_meters=distance)
        result.results.append(
            ReconcileResult(
                product_id=product_id,
                previous_qty=0,
                observed_qty=quantity,
                adjustment=adjustment,
                position=position,
            )
        )

    current_app.logger.info(
        "New batch %s of product %s (%s unit(s)) recorded at store %s",
        batch_number or "-", product_id, quantity, store_id,
    )
    return result


def list_visits(*, store_id: int | None = None, salesman_id: int | None = None, limit: int = 100) -> list[Visit]:
    query = db.session.query(Visit)
    if store_id is not None:
        query = query.filter(Visit.store_id == store_id)
    if salesman_id is not None:
        query = query.filter(Visit.salesman_id == salesman_id)
    return query.order_by(Visit.timestamp.desc(), Visit.id.desc()).limit(limit).all()
