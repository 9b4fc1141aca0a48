from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    FULFILLED = "FULFILLED"
    PARTIAL = "PARTIAL"
    UNFULFILLED = "UNFULFILLED"


class Order(db.Model):
    """
    A salesman's order for a store.

    LIFECYCLE:
    PENDING -> FULFILLED | PARTIAL | UNFULFILLED via fulfillment only.
    PENDING <-> UNFULFILLED via manual status change.

    fulfillment_attempt counts fulfillments. Shortfall rows are stamped with the
    attempt that wrote them, so an order reverted to PENDING and fulfilled
    again only reports the shortfalls of its latest attempt.

    version_id is an optimistic-lock counter: two transactions that both load a
    PENDING order and both try to write a status cannot both commit.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_store_created", "store_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    salesman_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(
        db.Enum(OrderStatus, name="order_status", native_enum=False, validate_strings=True),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    fulfillment_attempt = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    store = db.relationship("Store", backref=db.backref("orders", lazy=True))
    salesman = db.relationship("User", foreign_keys=[salesman_id])
    fulfilled_by = db.relationship("User", foreign_keys=[fulfilled_by_id])
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    unfulfilled_items = db.relationship(
        "UnfulfilledItem",
        back_populates="order",
        order_by="UnfulfilledItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} store_id={self.store_id} status={self.status}>"

    @property
    def current_unfulfilled_items(self) -> list:
        """Shortfalls of the latest fulfillment, empty while the order is PENDING or FULFILLED."""
        if self.status not in (OrderStatus.PARTIAL, OrderStatus.UNFULFILLED):
            return []
        return [u for u in self.unfulfilled_items if u.attempt == self.fulfillment_attempt]

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "salesman_id": self.salesman_id,
            "salesman_name": self.salesman.name if self.salesman else None,
            "status": self.status.value,
            "fulfilled_at": to_utc_z(self.fulfilled_at),
            "fulfilled_by_id": self.fulfilled_by_id,
            "fulfillment_attempt": self.fulfillment_attempt,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["unfulfilled_items"] = [u.to_dict() for u in self.current_unfulfilled_items]
        return data


class OrderItem(db.Model):
    """Requested line. Created with its order; quantity is never edited."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.UniqueConstraint("order_id", "product_id", name="uq_order_items_order_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "mrp": str(self.product.mrp) if self.product else None,
            "quantity": self.quantity,
        }


class UnfulfilledItem(db.Model):
    """
    Shortfall for one order line, written by the fulfillment transaction.

    available_qty is what was actually supplied (possibly 0); the shortfall is
    requested_qty - available_qty and is always positive. Append-only.
    """
    __tablename__ = "unfulfilled_items"
    __table_args__ = (
        db.CheckConstraint("available_qty >= 0", name="ck_unfulfilled_available_non_negative"),
        db.CheckConstraint("requested_qty > available_qty", name="ck_unfulfilled_positive_shortfall"),
        db.Index("ix_unfulfilled_items_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    requested_qty = db.Column(db.Integer, nullable=False)
    available_qty = db.Column(db.Integer, nullable=False)
    attempt = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="unfulfilled_items")
    product = db.relationship("Product")

    @property
    def shortfall(self) -> int:
        return self.requested_qty - self.available_qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "requested_qty": self.requested_qty,
            "available_qty": self.available_qty,
            "shortfall": self.shortfall,
            "attempt": self.attempt,
            "created_at": to_utc_z(self.created_at),
        }
