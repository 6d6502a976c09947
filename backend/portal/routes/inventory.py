# Overview: Flask API routes for inventory ledger reads and manual adjustments; parses input and returns JSON responses.

"""
Inventory API

Quantities are always derived from the ledger (SUM of qty_delta). The only
write exposed here is an admin adjustment, which appends a compensating
ADJUSTMENT_PLUS / ADJUSTMENT_MINUS entry with a reason code.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role, resolve_client_scope
from ..services import ledger_service, sku_service
from . import DOMAIN_ERRORS, error_response, page_args


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:sku_id>")
@require_auth
def sku_quantities_route(sku_id: int):
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        sku = sku_service.get_sku(sku_id, client_id=client_id)
        return jsonify({
            "sku_id": sku.id,
            "client_sku": sku.client_sku,
            "on_hand": ledger_service.current_quantity(client_id, sku.id),
            "sellable": ledger_service.sellable_quantity(client_id, sku.id),
            "locations": ledger_service.quantities_by_location(client_id, sku.id),
        })
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get inventory quantities")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/ledger")
@require_auth
def ledger_route():
    """Query: client_id (admins), sku_id, location_id, transaction_type, limit, offset."""
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        limit, offset = page_args(request.args)
        entries, total = ledger_service.list_entries(
            client_id=client_id,
            sku_id=request.args.get("sku_id", type=int),
            location_id=request.args.get("location_id", type=int),
            transaction_type=request.args.get("transaction_type"),
            limit=limit,
            offset=offset,
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "total": total, "limit": limit, "offset": offset})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list ledger entries")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjustments")
@require_auth
@require_role("admin")
def adjust_route():
    """
    Request body:
    {"client_id": 1, "sku_id": 3, "qty_delta": -2, "reason_code": "cycle_count", "location_kind": "available"}
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = ledger_service.adjust_inventory(
            client_id=resolve_client_scope(data.get("client_id")),
            sku_id=data.get("sku_id"),
            qty_delta=data.get("qty_delta"),
            reason_code=data.get("reason_code"),
            location_kind=data.get("location_kind") or "available",
            created_by=g.current_user.id,
        )
        return jsonify({"entry": entry.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500
