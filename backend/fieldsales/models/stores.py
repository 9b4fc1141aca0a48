from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow


class AdjustmentReason(str, enum.Enum):
    RESTOCK = "RESTOCK"
    COUNT_CORRECTION = "COUNT_CORRECTION"
    DAMAGE = "DAMAGE"
    RETURN = "RETURN"
    EXPIRED = "EXPIRED"


class Store(db.Model):
    """
    A retail store visited by salesmen.

    Latitude/longitude are a pair: both set (geofencing applies) or both null.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR (latitude IS NOT NULL AND longitude IS NOT NULL)",
            name="ck_stores_location_pair",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    address = db.Column(db.String(255), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": to_utc_z(self.created_at),
        }


class StockPosition(db.Model):
    """
    A physical batch of a product sitting at a store.

    Several positions may exist for the same (store, product) when batch or
    expiry differ; fulfillment always appends a new position instead of merging.
    A position that reaches zero is deleted rather than kept as a zero row.
    """
    __tablename__ = "stock_positions"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_stock_positions_quantity_non_negative"),
        db.Index("ix_stock_positions_store_product", "store_id", "product_id"),
        db.Index("ix_stock_positions_expiry", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    store = db.relationship("Store", backref=db.backref("stock_positions", lazy=True))
    product = db.relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<StockPosition id={self.id} store_id={self.store_id} product_id={self.product_id} "
            f"quantity={self.quantity} batch={self.batch_number!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Visit(db.Model):
    """
    A salesman's check-in at a store. Immutable once written; anchors the
    StockAdjustment rows produced while reconciling that store's stock.
    """
    __tablename__ = "visits"
    __table_args__ = (
        db.Index("ix_visits_store_timestamp", "store_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salesman_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    store = db.relationship("Store")
    salesman = db.relationship("User")
    adjustments = db.relationship(
        "StockAdjustment",
        back_populates="visit",
        lazy=True,
        order_by="StockAdjustment.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salesman_id": self.salesman_id,
            "store_id": self.store_id,
            "timestamp": to_utc_z(self.timestamp),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "notes": self.notes,
        }


class StockAdjustment(db.Model):
    """
    Append-only audit record of one reconciling change to a store's stock.

    Never updated or deleted. quantity_change is signed.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.Index("ix_stock_adjustments_store_product", "store_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    visit_id = db.Column(db.Integer, db.ForeignKey("visits.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(
        db.Enum(AdjustmentReason, name="adjustment_reason", native_enum=False, validate_strings=True),
        nullable=False,
    )
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    visit = db.relationship("Visit", back_populates="adjustments")
    store = db.relationship("Store")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "visit_id": self.visit_id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity_change": self.quantity_change,
            "reason": self.reason.value,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
