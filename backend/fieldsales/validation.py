from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Date, Float, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from fieldsales.time_utils import parse_iso_date


# Maximum MRP accepted for a product (Numeric(10, 2) column)
MAX_MRP = Decimal("99999999.99")


class FieldSalesError(Exception):
    """
    Base of every business failure the services raise.

    `kind` is the stable machine-readable tag surfaced to callers next to the
    human-readable message; `http_status` is what the JSON routes return.
    """
    kind = "error"
    http_status = 400

    def to_dict(self) -> dict:
        return {"error": str(self), "kind": self.kind}


class ValidationError(FieldSalesError, ValueError):
    """400-level input problem."""
    kind = "validation_error"
    http_status = 400


class NotFoundError(FieldSalesError):
    """Referenced order, product, store, visit or position does not exist."""
    kind = "not_found"
    http_status = 404


class InvalidStateError(FieldSalesError):
    """Operation attempted against a record in the wrong lifecycle state."""
    kind = "invalid_state"
    http_status = 409


class InsufficientStockError(FieldSalesError):
    """Central inventory cannot cover a decrement at commit time."""
    kind = "insufficient_stock"
    http_status = 409


class LocationError(FieldSalesError):
    """Caller is outside the store's geofence."""
    kind = "location_error"
    http_status = 403


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_bool(value: Any, field: str) -> bool:
    """JSON booleans, plus the usual "true"/"false" spellings from forms and query strings."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
    raise ValidationError(f"{field} must be true or false")


def coerce_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number")
    return number


def coerce_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a decimal number")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal number")
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite decimal number")
    return number


def coerce_date(value: Any, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")


def coerce_optional_str(value: Any, field: str) -> str | None:
    """Trimmed text, or None for a missing or blank value."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    # Float subclasses Numeric, so it must be checked first
    if isinstance(coltype, Float):
        return coerce_float(value, col.key)

    if isinstance(coltype, Numeric):
        return coerce_decimal(value, col.key)

    if isinstance(coltype, Date):
        return coerce_date(value, col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """MRP must be a positive decimal within the column's range."""
    if "mrp" in patch:
        mrp = patch["mrp"]
        if mrp is None:
            raise ValidationError("mrp is required")
        if mrp <= 0:
            raise ValidationError("mrp must be positive")
        if mrp > MAX_MRP:
            raise ValidationError(f"mrp cannot exceed {MAX_MRP}")


def enforce_rules_store(patch: dict, *, current_lat=None, current_lng=None) -> None:
    """
    Coordinates are a pair: both present or both absent.

    For partial updates the stored values fill in the side the patch omits.
    """
    lat = patch["latitude"] if "latitude" in patch else current_lat
    lng = patch["longitude"] if "longitude" in patch else current_lng

    if (lat is None) != (lng is None):
        raise ValidationError("latitude and longitude must be provided together")
    if lat is not None and not -90 <= lat <= 90:
        raise ValidationError("latitude must be between -90 and 90")
    if lng is not None and not -180 <= lng <= 180:
        raise ValidationError("longitude must be between -180 and 180")
