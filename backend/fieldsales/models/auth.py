from __future__ import annotations

from ..extensions import db
from ..identity import Role
from ..time_utils import to_utc_z, utcnow


class User(db.Model):
    """
    Local mirror of an identity-provider user.

    The provider owns credentials and sessions; we only keep what other rows
    reference (salesman on orders and visits, fulfiller on orders) plus the role
    the gateway is expected to present for this user.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(128), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True, unique=True)
    name = db.Column(db.String(120), nullable=True)
    role = db.Column(
        db.Enum(Role, name="user_role", native_enum=False, validate_strings=True),
        nullable=False,
        default=Role.SALESMAN,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<User id={self.id} external_id={self.external_id!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value if self.role else None,
            "created_at": to_utc_z(self.created_at),
        }
