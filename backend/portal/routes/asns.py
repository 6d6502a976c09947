# Overview: Flask API routes for ASN receiving and QC; parses input and returns JSON responses.

"""
ASN / Receiving API

Clients create and view their ASNs. Warehouse staff (admin) run receiving:

    POST /api/asns/<id>/start      not_received -> receiving
    POST /api/asns/<id>/photos     upload one QC photo, returns its file_path
    POST /api/asns/<id>/receipts   per-unit outcomes, each with a photo_path
    POST /api/asns/<id>/complete   ledger receipts + discrepancies
    POST /api/asns/<id>/close      completed -> closed
    POST /api/asns/<id>/resolve    issue -> closed (notes required)
"""

import os
import uuid

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role, resolve_client_scope, scoped_client_id
from ..services import discrepancy_service, qc_photo_service, receiving_service
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError
from . import DOMAIN_ERRORS, error_response, page_args


asns_bp = Blueprint("asns", __name__, url_prefix="/api/asns")

ALLOWED_PHOTO_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic"}


def _asn_payload(asn) -> dict:
    data = asn.to_dict(include_lines=True)
    for line in data["lines"]:
        line["discrepancy_status"] = discrepancy_service.aggregate_status(asn_id=asn.id, sku_id=line["sku_id"])
    return data


@asns_bp.get("/")
@require_auth
def list_asns_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"), required=False)
        limit, offset = page_args(request.args)
        rows, total = receiving_service.list_asns(
            client_id=client_id,
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return jsonify({"asns": [a.to_dict() for a in rows], "total": total, "limit": limit, "offset": offset})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list ASNs")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.post("/")
@require_auth
def create_asn_route():
    """
    Request body:
    {
        "asn_number": "ASN-1001",
        "lines": [{"sku_id": 1, "expected_qty": 10}],
        "tracking_number": "...", "carrier": "...", "eta": "2026-01-05T00:00:00Z",
        "client_id": 1  (admins only)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        client_id = resolve_client_scope(data.get("client_id"))
        try:
            eta = parse_iso_datetime(data.get("eta"))
        except ValueError:
            raise ValidationError("eta must be an ISO-8601 datetime")
        asn = receiving_service.create_asn(
            client_id=client_id,
            asn_number=data.get("asn_number"),
            lines=data.get("lines") or [],
            tracking_number=data.get("tracking_number"),
            carrier=data.get("carrier"),
            eta=eta,
            notes=data.get("notes"),
        )
        return jsonify({"asn": asn.to_dict(include_lines=True)}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create ASN")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.get("/<int:asn_id>")
@require_auth
def get_asn_route(asn_id: int):
    try:
        asn = receiving_service.get_asn(asn_id, client_id=scoped_client_id())
        return jsonify({"asn": _asn_payload(asn)})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get ASN")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.post("/<int:asn_id>/start")
@require_auth
@require_role("admin")
def start_receiving_route(asn_id: int):
    try:
        asn = receiving_service.start_receiving(asn_id, user_id=g.current_user.id)
        return jsonify({"asn": asn.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start receiving")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.post("/<int:asn_id>/photos")
@require_auth
@require_role("admin")
def upload_photo_route(asn_id: int):
    """Multipart upload, field name "file". Returns the stored file_path."""
    try:
        asn = receiving_service.get_asn(asn_id)
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            return jsonify({"error": "file is required"}), 400

        ext = os.path.splitext(upload.filename)[1].lower()
        if ext not in ALLOWED_PHOTO_EXTENSIONS:
            return jsonify({"error": f"Unsupported photo type '{ext}'"}), 400

        file_path = f"client-{asn.client_id}/asn-{asn.id}/{uuid.uuid4().hex}{ext}"
        qc_photo_service.get_storage().save(file_path, upload.read())
        return jsonify({"file_path": file_path}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload QC photo")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.post("/<int:asn_id>/receipts")
@require_auth
@require_role("admin")
def record_receipt_route(asn_id: int):
    """
    Request body:
    {
        "line_id": 5,  (or "sku_id")
        "units": [{"condition": "pass", "photo_path": "client-1/asn-3/a.jpg"}, ...]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        line = receiving_service.record_line_receipt(
            asn_id,
            units=data.get("units") or [],
            line_id=data.get("line_id"),
            sku_id=data.get("sku_id"),
            user_id=g.current_user.id,
        )
        return jsonify({"line": line.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record ASN receipt")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.post("/<int:asn_id>/complete")
@require_auth
@require_role("admin")
def complete_receiving_route(asn_id: int):
    try:
        asn = receiving_service.complete_receiving(asn_id, user_id=g.current_user.id)
        return jsonify({"asn": _asn_payload(asn)})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete receiving")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.post("/<int:asn_id>/close")
@require_auth
@require_role("admin")
def close_asn_route(asn_id: int):
    try:
        asn = receiving_service.close_asn(asn_id, user_id=g.current_user.id)
        return jsonify({"asn": asn.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close ASN")
        return jsonify({"error": "Internal server error"}), 500


@asns_bp.post("/<int:asn_id>/resolve")
@require_auth
@require_role("admin")
def resolve_asn_route(asn_id: int):
    try:
        data = request.get_json(silent=True) or {}
        asn = receiving_service.resolve_asn(
            asn_id,
            user_id=g.current_user.id,
            resolution_notes=data.get("resolution_notes"),
        )
        return jsonify({"asn": asn.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resolve ASN")
        return jsonify({"error": "Internal server error"}), 500
