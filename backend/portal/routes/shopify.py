# Overview: Flask API routes for the commerce platform gateway: OAuth, webhooks, sync and return actions.

"""
Commerce platform gateway API

    GET  /api/shopify/oauth/start?shop=...       authorize URL (persisted state)
    GET  /api/shopify/oauth/callback             token exchange, redirect to dashboard
    POST /api/shopify/webhooks                   HMAC-verified, idempotent deliveries
    GET  /api/shopify/connection                 the client's active connection
    POST /api/shopify/disconnect
    POST /api/shopify/resync                     queue pushes for every mapped SKU
    POST /api/shopify/sync/drain                 admin: run the push queue now
    POST /api/shopify/orders/sync                pull orders over allow-listed REST
    POST /api/shopify/returns/<id>/<action>      approve | decline | close
"""

from urllib.parse import urlencode

from flask import Blueprint, request, jsonify, current_app, g, redirect

from ..extensions import db
from ..decorators import require_auth, require_role, resolve_client_scope, scoped_client_id
from ..services import dashboard_service, inventory_sync_service, oauth_service, returns_service, webhook_service
from ..services.webhook_service import WebhookSignatureError
from ..validation import require_int
from . import DOMAIN_ERRORS, error_response


shopify_bp = Blueprint("shopify", __name__, url_prefix="/api/shopify")


def _dashboard_redirect(**params):
    url = current_app.config["DASHBOARD_URL"]
    separator = "&" if "?" in url else "?"
    return redirect(f"{url}{separator}{urlencode(params)}", code=302)


# =============================================================================
# OAUTH
# =============================================================================

@shopify_bp.get("/oauth/start")
@require_auth
def oauth_start_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        auth_url, state = oauth_service.start_authorization(client_id=client_id, shop=request.args.get("shop"))
        return jsonify({"auth_url": auth_url, "state": state})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start OAuth")
        return jsonify({"error": "Internal server error"}), 500


@shopify_bp.get("/oauth/callback")
def oauth_callback_route():
    """Browser-facing: always redirects to the dashboard with a success or error flag."""
    try:
        connection = oauth_service.complete_authorization(
            code=request.args.get("code"),
            shop=request.args.get("shop"),
            state=request.args.get("state"),
        )
        current_app.logger.info("Store %s connected for client %s", connection.shop_domain, connection.client_id)
        return _dashboard_redirect(shopify_connected="true")
    except DOMAIN_ERRORS as e:
        db.session.rollback()
        current_app.logger.warning("OAuth callback rejected: %s", e)
        return _dashboard_redirect(shopify_error=str(e))
    except Exception:
        current_app.logger.exception("OAuth callback failed")
        return _dashboard_redirect(shopify_error="Connection failed")


@shopify_bp.get("/connection")
@require_auth
def connection_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        connection = oauth_service.get_active_connection(client_id)
        return jsonify({"connection": connection.to_dict() if connection else None})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get store connection")
        return jsonify({"error": "Internal server error"}), 500


@shopify_bp.post("/disconnect")
@require_auth
def disconnect_route():
    try:
        data = request.get_json(silent=True) or {}
        connection = oauth_service.disconnect_store(client_id=resolve_client_scope(data.get("client_id")))
        return jsonify({"connection": connection.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to disconnect store")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# WEBHOOKS
# =============================================================================

@shopify_bp.post("/webhooks")
def webhook_route():
    """
    Platform delivery endpoint. Unauthenticated; the HMAC header is the auth.

    200 for success, duplicate and ignored deliveries (so the platform stops
    retrying), 401 for a bad signature, 400 for malformed payloads, 404 for an
    unknown store.
    """
    try:
        result = webhook_service.process_webhook(
            raw_body=request.get_data(cache=False),
            signature=request.headers.get("X-Shopify-Hmac-Sha256"),
            shop_domain=request.headers.get("X-Shopify-Shop-Domain"),
            topic=request.headers.get("X-Shopify-Topic"),
            webhook_id=request.headers.get("X-Shopify-Webhook-Id") or request.headers.get("X-Shopify-Event-Id"),
        )
        return jsonify(result.to_dict()), 200
    except WebhookSignatureError as e:
        return jsonify({"error": str(e)}), 401
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process webhook")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SYNC
# =============================================================================

@shopify_bp.post("/resync")
@require_auth
def resync_route():
    try:
        data = request.get_json(silent=True) or {}
        result = dashboard_service.trigger_manual_resync(client_id=resolve_client_scope(data.get("client_id")))
        return jsonify(result), 202
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to trigger resync")
        return jsonify({"error": "Internal server error"}), 500


@shopify_bp.post("/sync/drain")
@require_auth
@require_role("admin")
def drain_route():
    try:
        data = request.get_json(silent=True) or {}
        stats = inventory_sync_service.drain_push_queue(limit=min(require_int(data.get("limit", 100), "limit", minimum=1), 1000))
        return jsonify({"stats": stats})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to drain sync queue")
        return jsonify({"error": "Internal server error"}), 500


@shopify_bp.post("/orders/sync")
@require_auth
def sync_orders_route():
    try:
        data = request.get_json(silent=True) or {}
        stats = inventory_sync_service.sync_orders(client_id=resolve_client_scope(data.get("client_id")))
        return jsonify({"stats": stats})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sync orders")
        return jsonify({"error": "Internal server error"}), 500


@shopify_bp.get("/drift")
@require_auth
def drift_route():
    try:
        client_id = resolve_client_scope(request.args.get("client_id"))
        rows = inventory_sync_service.list_drift(client_id=client_id)
        return jsonify({"drift": [r.to_dict() for r in rows]})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory drift")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURN ACTIONS
# =============================================================================

@shopify_bp.post("/returns/<int:return_id>/<action>")
@require_auth
def return_action_route(return_id: int, action: str):
    try:
        row = returns_service.apply_platform_action(
            return_id,
            action=action,
            client_id=scoped_client_id(),
        )
        current_app.logger.info("User %s ran return action %s on %s", g.current_user.id, action, return_id)
        return jsonify({"return": row.to_dict()})
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to run return action")
        return jsonify({"error": "Internal server error"}), 500
