# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/portal/routes/returns.py
"""
Return Processing API Routes

DESIGN:
- Platform returns arrive by webhook and are read-only here
- Warehouse staff (admin) log return receipts and walk each line through
  received -> qc_photographed -> inspected -> resellable | damaged -> final_disposition
- Routing writes exactly one ledger effect per line
- Clients configure per-SKU inspection checks and follow their returns
"""

import os
import uuid

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, resolve_client_scope, scoped_client_id
from ..services import qc_photo_service, returns_service
from . import DOMAIN_ERRORS, error_response, page_args
from .asns import ALLOWED_PHOTO_EXTENSIONS


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# PLATFORM RETURNS
# =============================================================================

@returns_bp.get("/platform")
@require_auth
def list_platform_returns_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"), required=False)
        limit, offset = page_args(request.args)
        rows, total = returns_service.list_shopify_returns(
            client_id=client_id,
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return jsonify({"returns": [r.to_dict() for r in rows], "total": total})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list platform returns")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURN RECEIPTS
# =============================================================================

@returns_bp.get("/receipts")
@require_auth
def list_receipts_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"), required=False)
        limit, offset = page_args(request.args)
        rows, total = returns_service.list_receipts(client_id=client_id, limit=limit, offset=offset)
        return jsonify({"receipts": [r.to_dict() for r in rows], "total": total})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list return receipts")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/receipts")
@require_auth
@require_role("admin")
def create_receipt_route():
    """
    Request body:
    {
        "client_id": 1,
        "shopify_return_id": 7,  (optional, local id of a stored platform return)
        "reference": "RMA-42",  (optional)
        "lines": [{"sku_id": 3, "received_qty": 2}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        receipt = returns_service.create_return_receipt(
            client_id=resolve_client_scope(data.get("client_id")),
            lines=data.get("lines") or [],
            shopify_return_id=data.get("shopify_return_id"),
            reference=data.get("reference"),
            user_id=g.current_user.id,
        )
        return jsonify({"receipt": receipt.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return receipt")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/receipts/<int:receipt_id>")
@require_auth
def get_receipt_route(receipt_id: int):
    try:
        receipt = returns_service.get_receipt(receipt_id, client_id=scoped_client_id())
        return jsonify({"receipt": receipt.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get return receipt")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/receipts/<int:receipt_id>/lines")
@require_auth
@require_role("admin")
def receive_line_route(receipt_id: int):
    """Request body: {"sku_id": 3, "received_qty": 1, "expected_qty": 1}"""
    try:
        data = request.get_json(silent=True) or {}
        line = returns_service.receive_line(
            receipt_id,
            sku_id=data.get("sku_id"),
            received_qty=data.get("received_qty"),
            expected_qty=data.get("expected_qty"),
        )
        return jsonify({"line": line.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive return line")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LINE PIPELINE
# =============================================================================

@returns_bp.post("/lines/<int:line_id>/photos")
@require_auth
@require_role("admin")
def attach_photo_route(line_id: int):
    """
    Either a multipart upload (field "file") or JSON {"file_path": "..."}
    naming an already stored photo.
    """
    try:
        line = returns_service.get_line(line_id)
        upload = request.files.get("file")
        if upload is not None and upload.filename:
            ext = os.path.splitext(upload.filename)[1].lower()
            if ext not in ALLOWED_PHOTO_EXTENSIONS:
                return jsonify({"error": f"Unsupported photo type '{ext}'"}), 400
            file_path = f"client-{line.receipt.client_id}/return-line-{line.id}/{uuid.uuid4().hex}{ext}"
            qc_photo_service.get_storage().save(file_path, upload.read())
        else:
            file_path = (request.get_json(silent=True) or {}).get("file_path")

        line = returns_service.attach_line_photo(line_id, file_path=file_path, user_id=g.current_user.id)
        return jsonify({"line": line.to_dict(), "file_path": file_path}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to attach return photo")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/lines/<int:line_id>/inspect")
@require_auth
@require_role("admin")
def inspect_line_route(line_id: int):
    """Request body: {"results": {"physical_damage": true, ...}, "notes": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        line = returns_service.inspect_line(
            line_id,
            results=data.get("results"),
            notes=data.get("notes"),
            user_id=g.current_user.id,
        )
        return jsonify({"line": line.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to inspect return line")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/lines/<int:line_id>/route")
@require_auth
@require_role("admin")
def route_line_route(line_id: int):
    try:
        line = returns_service.route_line(line_id, user_id=g.current_user.id)
        return jsonify({"line": line.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to route return line")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/lines/<int:line_id>/finalize")
@require_auth
@require_role("admin")
def finalize_line_route(line_id: int):
    try:
        line = returns_service.finalize_line(line_id, user_id=g.current_user.id)
        return jsonify({"line": line.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to finalize return line")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INSPECTION CRITERIA
# =============================================================================

@returns_bp.get("/criteria/<int:sku_id>")
@require_auth
def get_criteria_route(sku_id: int):
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        checks, source = returns_service.inspection_checks_for(client_id, sku_id)
        return jsonify({"sku_id": sku_id, "checks": checks, "source": source})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get inspection criteria")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.put("/criteria/<int:sku_id>")
@require_auth
def set_criteria_route(sku_id: int):
    """Request body: {"checks": ["physical_damage", "seal_intact"]}"""
    try:
        data = request.get_json(silent=True) or {}
        criteria = returns_service.set_inspection_criteria(
            client_id=resolve_client_scope(data.get("client_id")),
            sku_id=sku_id,
            checks=data.get("checks"),
        )
        return jsonify({"criteria": criteria.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set inspection criteria")
        return jsonify({"error": "Internal server error"}), 500
