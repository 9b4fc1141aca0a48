# backend/fieldsales/identity.py
"""
Actor resolution at the identity boundary.

The identity provider hands us loosely-typed claims (an external user id and a
role string in the provider's public metadata). They are narrowed here, once,
into an Actor value; services never look at raw claims.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    SALESMAN = "SALESMAN"
    STOCK_MANAGER = "STOCK_MANAGER"


# Spellings seen in provider metadata ("stock-manager") and in our own rows ("STOCK_MANAGER")
_ROLE_ALIASES = {
    "admin": Role.ADMIN,
    "salesman": Role.SALESMAN,
    "stock-manager": Role.STOCK_MANAGER,
    "stock_manager": Role.STOCK_MANAGER,
    "stockmanager": Role.STOCK_MANAGER,
}


class IdentityError(Exception):
    """Raised when identity claims cannot be turned into an Actor."""
    pass


def resolve_role(raw) -> Role:
    if isinstance(raw, Role):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise IdentityError("role claim is missing")
    role = _ROLE_ALIASES.get(raw.strip().lower())
    if role is None:
        raise IdentityError(f"unknown role: {raw}")
    return role


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, already validated by the presentation layer."""
    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_salesman(self) -> bool:
        return self.role is Role.SALESMAN

    @property
    def is_stock_manager(self) -> bool:
        return self.role is Role.STOCK_MANAGER

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "role": self.role.value}
