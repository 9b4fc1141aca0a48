# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .extensions import db
from .identity import Actor, IdentityError, resolve_role
from .models import User
from .permissions import role_has_permission


USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


def _is_authenticated() -> bool:
    return hasattr(g, "actor") and hasattr(g, "current_user")


def require_actor(f):
    """
    Require an identity established by the gateway in front of this API.

    The identity provider owns sign-in; the gateway forwards the provider's
    user id and role claim as headers. Sets:
    - g.current_user: the local User mirror
    - g.actor: the Actor value passed into services

    SECURITY: Returns 401 if:
    - No user id header
    - The user id is not mirrored locally
    - The role claim is not a known role
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        external_id = (request.headers.get(USER_ID_HEADER) or "").strip()
        if not external_id:
            return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

        user = db.session.query(User).filter_by(external_id=external_id).first()
        if user is None:
            current_app.logger.warning("Request from unknown identity %s to %s", external_id, request.path)
            return jsonify({"error": "Unknown user", "kind": "unauthenticated"}), 401

        # The provider's claim wins when present; otherwise the mirrored role
        raw_role = request.headers.get(USER_ROLE_HEADER)
        try:
            role = resolve_role(raw_role) if raw_role else resolve_role(user.role)
        except IdentityError as e:
            return jsonify({"error": str(e), "kind": "unauthenticated"}), 401

        g.current_user = user
        g.actor = Actor(user_id=user.id, role=role)

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission for the caller's role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_actor was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "kind": "unauthenticated"}), 401

            actor = g.actor
            if not role_has_permission(actor.role, permission_code):
                current_app.logger.warning(
                    "Permission %s denied to user %s (%s) on %s",
                    permission_code, actor.user_id, actor.role.value, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "kind": "forbidden",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
