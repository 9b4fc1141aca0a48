# backend/fieldsales/services/user_service.py
"""
Local mirror of identity-provider users.

Sign-in, passwords and sessions live with the provider. Rows here exist so
orders and visits can reference a salesman and so the gateway's user id can
be mapped to a local id.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..identity import IdentityError, Role, resolve_role
from ..models import User
from ..validation import NotFoundError, ValidationError, coerce_optional_str
from .concurrency import atomic


def _role(raw) -> Role:
    try:
        return resolve_role(raw)
    except IdentityError as exc:
        raise ValidationError(str(exc)) from exc


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def get_user_by_external_id(external_id: str) -> User | None:
    return db.session.query(User).filter_by(external_id=external_id).first()


def list_users(role=None) -> list[User]:
    query = db.session.query(User)
    if role is not None:
        query = query.filter(User.role == _role(role))
    return query.order_by(User.name.asc(), User.id.asc()).all()


def upsert_user(
    *,
    external_id: str,
    role,
    email: str | None = None,
    name: str | None = None,
) -> User:
    """
    Create or refresh the mirror row for an identity-provider user.

    Called when the provider reports a new user or a changed role.
    """
    external_id = coerce_optional_str(external_id, "external_id")
    if not external_id:
        raise ValidationError("external_id is required")
    role = _role(role)
    name = coerce_optional_str(name, "name")
    email = coerce_optional_str(email, "email")
    email = email.lower() if email else None

    with atomic():
        user = get_user_by_external_id(external_id)
        if email is not None:
            clash = db.session.query(User.id).filter(User.email == email)
            if user is not None:
                clash = clash.filter(User.id != user.id)
            if clash.first() is not None:
                raise ValidationError(f"Email already in use: {email}")

        created = user is None
        if created:
            user = User(external_id=external_id)
            db.session.add(user)
        user.role = role
        user.email = email
        user.name = name
        db.session.flush()

    current_app.logger.info(
        "User %s %s as %s", external_id, "mirrored" if created else "updated", role.value
    )
    return user
