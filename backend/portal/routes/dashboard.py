# Overview: Flask API routes for dashboard badges and counters.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, resolve_client_scope
from ..services import dashboard_service
from . import DOMAIN_ERRORS, error_response


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/summary")
@require_auth
def summary_route():
    """Admins without client_id get the all-client discrepancy badge only."""
    try:
        client_id = resolve_client_scope(request.args.get("client_id"), required=False)
        return jsonify(dashboard_service.summary(client_id=client_id))
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build dashboard summary")
        return jsonify({"error": "Internal server error"}), 500


@dashboard_bp.get("/pending-discrepancies")
@require_auth
def pending_discrepancies_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"), required=False)
        return jsonify({"count": dashboard_service.pending_discrepancy_count(client_id=client_id)})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to count pending discrepancies")
        return jsonify({"error": "Internal server error"}), 500


@dashboard_bp.get("/expected-asns")
@require_auth
def expected_asns_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        return jsonify({"count": dashboard_service.expected_asn_count(client_id=client_id)})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to count expected ASNs")
        return jsonify({"error": "Internal server error"}), 500
