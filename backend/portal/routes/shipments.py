# Overview: Flask API routes for outbound shipments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role, resolve_client_scope, scoped_client_id
from ..services import shipment_service
from . import DOMAIN_ERRORS, error_response


shipments_bp = Blueprint("shipments", __name__, url_prefix="/api/shipments")


@shipments_bp.get("/")
@require_auth
def list_shipments_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        rows = shipment_service.list_shipments(client_id=client_id, status=request.args.get("status"))
        return jsonify({"shipments": [s.to_dict() for s in rows], "count": len(rows)})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list shipments")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.post("/")
@require_auth
@require_role("admin")
def create_shipment_route():
    """Request body: {"client_id": 1, "shipment_number": "SO-1", "lines": [{"sku_id": 3, "quantity": 2}]}"""
    try:
        data = request.get_json(silent=True) or {}
        shipment = shipment_service.create_shipment(
            client_id=resolve_client_scope(data.get("client_id")),
            shipment_number=data.get("shipment_number"),
            lines=data.get("lines") or [],
            carrier=data.get("carrier"),
            tracking_number=data.get("tracking_number"),
        )
        return jsonify({"shipment": shipment.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.get("/<int:shipment_id>")
@require_auth
def get_shipment_route(shipment_id: int):
    try:
        shipment = shipment_service.get_shipment(shipment_id, scoped_client_id())
        return jsonify({"shipment": shipment.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.post("/<int:shipment_id>/ship")
@require_auth
@require_role("admin")
def ship_route(shipment_id: int):
    try:
        shipment = shipment_service.ship_shipment(shipment_id, user_id=g.current_user.id)
        return jsonify({"shipment": shipment.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to ship shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.post("/<int:shipment_id>/cancel")
@require_auth
@require_role("admin")
def cancel_route(shipment_id: int):
    try:
        shipment = shipment_service.cancel_shipment(shipment_id, user_id=g.current_user.id)
        return jsonify({"shipment": shipment.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel shipment")
        return jsonify({"error": "Internal server error"}), 500
