from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Store
from ..validation import NotFoundError, ValidationError, coerce_float, coerce_optional_str, enforce_rules_store
from .concurrency import atomic, lock_for_update

STORE_MUTABLE_FIELDS = {"name", "address", "latitude", "longitude"}


def _normalize(patch: dict) -> dict:
    clean = {k: v for k, v in patch.items() if k in STORE_MUTABLE_FIELDS}
    if "name" in clean:
        name = clean["name"]
        if name is None or not str(name).strip():
            raise ValidationError("Store name is required")
        clean["name"] = str(name).strip()
    if "address" in clean:
        clean["address"] = coerce_optional_str(clean["address"], "address")
    for key in ("latitude", "longitude"):
        if key in clean and clean[key] is not None and clean[key] != "":
            clean[key] = coerce_float(clean[key], key)
        elif key in clean:
            clean[key] = None
    return clean


def _ensure_unique_name(name: str, store_id: int | None = None) -> None:
    query = db.session.query(Store.id).filter(Store.name == name)
    if store_id is not None:
        query = query.filter(Store.id != store_id)
    if query.first() is not None:
        raise ValidationError(f"Store name already exists: {name}")


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFoundError(f"Store {store_id} not found")
    return store


def list_stores() -> list[Store]:
    return db.session.query(Store).order_by(Store.name.asc()).all()


def create_store(
    *,
    name: str,
    address: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> Store:
    clean = _normalize({"name": name, "address": address, "latitude": latitude, "longitude": longitude})
    enforce_rules_store(clean)

    with atomic():
        _ensure_unique_name(clean["name"])
        store = Store(**clean)
        db.session.add(store)
        db.session.flush()

    current_app.logger.info("Store %s created: %s", store.id, store.name)
    return store


def update_store(store_id: int, patch: dict) -> Store:
    clean = _normalize(patch)

    with atomic():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFoundError(f"Store {store_id} not found")

        enforce_rules_store(clean, current_lat=store.latitude, current_lng=store.longitude)
        if "name" in clean:
            _ensure_unique_name(clean["name"], store_id)

        for key, value in clean.items():
            setattr(store, key, value)

    return store
