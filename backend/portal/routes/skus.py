# Overview: Flask API routes for SKU catalog and alias operations; parses input and returns JSON responses.

"""
SKU catalog API

- Clients manage their own SKUs; admins pass client_id explicitly.
- Deleting a SKU is hard only when nothing references it; otherwise the row
  is kept with status "deleted".
- Alias writes and the variant backfill are admin-only.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role, resolve_client_scope
from ..services import alias_service, ledger_service, sku_service
from . import DOMAIN_ERRORS, error_response


skus_bp = Blueprint("skus", __name__, url_prefix="/api/skus")


@skus_bp.get("/")
@require_auth
def list_skus_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        include_deleted = request.args.get("include_deleted", "false").lower() == "true"
        skus = sku_service.list_skus(client_id=client_id, include_deleted=include_deleted)
        return jsonify({"skus": [s.to_dict() for s in skus], "count": len(skus)})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list SKUs")
        return jsonify({"error": "Internal server error"}), 500


@skus_bp.post("/")
@require_auth
def create_sku_route():
    """
    Request body:
    {"client_sku": "TEE-BLK-M", "title": "...", "upc": "...", "fnsku": "...", "client_id": 1 (admins)}
    """
    try:
        data = request.get_json(silent=True) or {}
        client_id = resolve_client_scope(data.get("client_id"))
        sku = sku_service.create_sku(
            client_id=client_id,
            client_sku=data.get("client_sku"),
            upc=data.get("upc"),
            fnsku=data.get("fnsku"),
            title=data.get("title"),
            notes=data.get("notes"),
        )
        return jsonify({"sku": sku.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create SKU")
        return jsonify({"error": "Internal server error"}), 500


@skus_bp.get("/<int:sku_id>")
@require_auth
def get_sku_route(sku_id: int):
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        sku = sku_service.get_sku(sku_id, client_id=client_id)
        data = sku.to_dict()
        data["aliases"] = [a.to_dict() for a in sku.aliases]
        data["quantities"] = ledger_service.quantities_by_location(client_id, sku.id)
        return jsonify({"sku": data})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get SKU")
        return jsonify({"error": "Internal server error"}), 500


@skus_bp.patch("/<int:sku_id>")
@require_auth
def update_sku_route(sku_id: int):
    try:
        data = request.get_json(silent=True) or {}
        client_id = resolve_client_scope(data.get("client_id"))
        sku = sku_service.update_sku(
            sku_id,
            client_id=client_id,
            title=data.get("title"),
            upc=data.get("upc"),
            fnsku=data.get("fnsku"),
        )
        return jsonify({"sku": sku.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update SKU")
        return jsonify({"error": "Internal server error"}), 500


@skus_bp.delete("/<int:sku_id>")
@require_auth
def delete_sku_route(sku_id: int):
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        mode = sku_service.delete_sku(sku_id, client_id=client_id)
        return jsonify({"deleted": True, "mode": mode})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete SKU")
        return jsonify({"error": "Internal server error"}), 500


@skus_bp.post("/<int:sku_id>/aliases")
@require_auth
@require_role("admin")
def upsert_alias_route(sku_id: int):
    """Request body: {"alias_type": "shopify_variant_id", "alias_value": "gid://shopify/ProductVariant/123"}"""
    try:
        data = request.get_json(silent=True) or {}
        alias, created = alias_service.upsert_alias(
            sku_id=sku_id,
            alias_type=data.get("alias_type"),
            alias_value=data.get("alias_value"),
        )
        return jsonify({"alias": alias.to_dict(), "created": created}), 201 if created else 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upsert SKU alias")
        return jsonify({"error": "Internal server error"}), 500


@skus_bp.get("/resolve")
@require_auth
def resolve_route():
    """Query: variant_id, inventory_item_id, sku (any subset)."""
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        result = alias_service.resolve(
            client_id,
            variant_id=request.args.get("variant_id"),
            inventory_item_id=request.args.get("inventory_item_id"),
            sku=request.args.get("sku"),
        )
        return jsonify(result.to_dict())
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resolve SKU")
        return jsonify({"error": "Internal server error"}), 500


@skus_bp.post("/aliases/backfill")
@require_auth
@require_role("admin")
def backfill_aliases_route():
    try:
        data = request.get_json(silent=True) or {}
        stats = alias_service.backfill_variant_aliases(client_id=data.get("client_id"))
        current_app.logger.info("Variant alias backfill by user %s: %s", g.current_user.id, stats)
        return jsonify({"stats": stats})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to backfill variant aliases")
        return jsonify({"error": "Internal server error"}), 500
