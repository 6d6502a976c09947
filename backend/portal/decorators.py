# Overview: Request decorators for API routes: bearer authentication, roles, and client scope.

from functools import wraps

from flask import request, jsonify, g

from .extensions import db
from .services import session_service
from .services.auth_service import record_security_event
from .validation import TenantAccessError, ValidationError, require_int


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a bearer session token and establish tenant context.

    Sets:
    - g.current_user: the authenticated User
    - g.client_id: the user's client, None for admins

    Returns 401 if the header is missing or the token is invalid, expired,
    revoked, or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        user = session_service.validate_session(token)

        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.client_id = user.client_id
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """Require @require_auth first; 403 unless the user has the role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.current_user.role != role:
                record_security_event(
                    event_type="ROLE_DENIED",
                    success=False,
                    user_id=g.current_user.id,
                    client_id=g.client_id,
                    resource=request.path,
                    reason=f"requires role {role}",
                    ip_address=request.remote_addr,
                )
                db.session.commit()
                return jsonify({"error": "Permission denied", "required_role": role}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def resolve_client_scope(requested=None, *, required: bool = True) -> int | None:
    """
    Client id a request may act on.

    Client users always get their own client. A client user naming another
    client raises TenantAccessError (logged). Admins must name one unless
    required is False.
    """
    user = g.current_user
    if not user.is_admin:
        if requested not in (None, "") and require_int(requested, "client_id") != user.client_id:
            record_security_event(
                event_type="TENANT_ACCESS_DENIED",
                success=False,
                user_id=user.id,
                client_id=user.client_id,
                resource=request.path,
                reason=f"requested client {requested}",
                ip_address=request.remote_addr,
            )
            db.session.commit()
            raise TenantAccessError("Access to another client's data is not allowed")
        return user.client_id

    if requested in (None, ""):
        if required:
            raise ValidationError("client_id is required")
        return None
    return require_int(requested, "client_id")


def scoped_client_id() -> int | None:
    """Filter for lookups by id: None (any client) for admins, own client otherwise."""
    return None if g.current_user.is_admin else g.current_user.client_id
