# Overview: Shared mapping from domain exceptions to JSON error responses.

from flask import current_app, jsonify

from ..extensions import db
from ..services.shopify_client import RestGuardError, ShopifyAPIError
from ..state_machines import InvalidTransitionError
from ..validation import ValidationError, NotFoundError, ConflictError, TenantAccessError


DOMAIN_ERRORS = (
    ValidationError,
    NotFoundError,
    ConflictError,
    TenantAccessError,
    InvalidTransitionError,
    RestGuardError,
    ShopifyAPIError,
)


def error_response(e: Exception):
    """JSON body and status for a domain exception. Rolls back the session."""
    db.session.rollback()
    if isinstance(e, (ConflictError, InvalidTransitionError)):
        status = 409
    elif isinstance(e, ValidationError):
        status = 400
    elif isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, TenantAccessError):
        status = 403
    elif isinstance(e, RestGuardError):
        status = 400
    else:
        # Platform detail stays in the log
        current_app.logger.warning("Commerce platform call failed: %s", e)
        return jsonify({"error": "Commerce platform request failed"}), 502
    return jsonify({"error": str(e)}), status


def page_args(args, *, default_limit: int = 100, max_limit: int = 500) -> tuple[int, int]:
    limit = min(max(args.get("limit", default_limit, type=int) or default_limit, 1), max_limit)
    offset = max(args.get("offset", 0, type=int) or 0, 0)
    return limit, offset
