# Overview: Flask API routes for the discrepancy decision workflow; parses input and returns JSON responses.

"""
Discrepancy API

    pending --(client decision)--> submitted --(admin)--> processed --(admin)--> closed
    closed --(admin reopen, notes required)--> pending

Clients only see and decide their own discrepancies.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role, resolve_client_scope, scoped_client_id
from ..services import discrepancy_service
from . import DOMAIN_ERRORS, error_response, page_args


discrepancies_bp = Blueprint("discrepancies", __name__, url_prefix="/api/discrepancies")


@discrepancies_bp.get("/")
@require_auth
def list_discrepancies_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"), required=False)
        limit, offset = page_args(request.args)
        rows, total = discrepancy_service.list_discrepancies(
            client_id=client_id,
            status=request.args.get("status"),
            asn_id=request.args.get("asn_id", type=int),
            discrepancy_type=request.args.get("type"),
            limit=limit,
            offset=offset,
        )
        return jsonify({"discrepancies": [d.to_dict() for d in rows], "total": total, "limit": limit, "offset": offset})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list discrepancies")
        return jsonify({"error": "Internal server error"}), 500


@discrepancies_bp.get("/<int:discrepancy_id>")
@require_auth
def get_discrepancy_route(discrepancy_id: int):
    try:
        discrepancy = discrepancy_service.get_discrepancy(discrepancy_id, client_id=scoped_client_id())
        return jsonify({"discrepancy": discrepancy.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get discrepancy")
        return jsonify({"error": "Internal server error"}), 500


@discrepancies_bp.post("/<int:discrepancy_id>/decision")
@require_auth
def submit_decision_route(discrepancy_id: int):
    """Request body: {"decision": "discard", "client_notes": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        discrepancy = discrepancy_service.submit_decision(
            discrepancy_id,
            decision=data.get("decision"),
            user_id=g.current_user.id,
            client_notes=data.get("client_notes"),
            client_id=scoped_client_id(),
        )
        return jsonify({"discrepancy": discrepancy.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit discrepancy decision")
        return jsonify({"error": "Internal server error"}), 500


@discrepancies_bp.post("/<int:discrepancy_id>/process")
@require_auth
@require_role("admin")
def process_decision_route(discrepancy_id: int):
    try:
        data = request.get_json(silent=True) or {}
        discrepancy = discrepancy_service.process_decision(
            discrepancy_id,
            user_id=g.current_user.id,
            admin_notes=data.get("admin_notes"),
        )
        return jsonify({"discrepancy": discrepancy.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process discrepancy decision")
        return jsonify({"error": "Internal server error"}), 500


@discrepancies_bp.post("/<int:discrepancy_id>/close")
@require_auth
@require_role("admin")
def close_discrepancy_route(discrepancy_id: int):
    try:
        data = request.get_json(silent=True) or {}
        discrepancy = discrepancy_service.close_discrepancy(
            discrepancy_id,
            user_id=g.current_user.id,
            close_notes=data.get("close_notes"),
        )
        return jsonify({"discrepancy": discrepancy.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close discrepancy")
        return jsonify({"error": "Internal server error"}), 500


@discrepancies_bp.post("/<int:discrepancy_id>/reopen")
@require_auth
@require_role("admin")
def reopen_discrepancy_route(discrepancy_id: int):
    try:
        data = request.get_json(silent=True) or {}
        discrepancy = discrepancy_service.reopen_discrepancy(
            discrepancy_id,
            user_id=g.current_user.id,
            admin_notes=data.get("admin_notes"),
        )
        return jsonify({"discrepancy": discrepancy.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reopen discrepancy")
        return jsonify({"error": "Internal server error"}), 500
