# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/portal/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Login rate-limited per email and client IP (fixed window, fails open)
- Session management with bearer tokens
- Self-registration disabled; users are created by admins or the CLI
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..services import auth_service, rate_limit_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body: {"email": "...", "password": "..."}

    Returns:
        200: user + token
        400: missing fields
        401: invalid credentials
        429: too many attempts (retry_after seconds)
    """
    try:
        data = request.get_json(silent=True) or {}
        email = (data.get("email") or "").strip().lower()
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        ip_address = request.remote_addr

        limit = rate_limit_service.check_rate_limit(
            key=f"login_{email}"[:rate_limit_service.MAX_KEY_LENGTH],
            client_ip=ip_address,
            max_attempts=current_app.config["LOGIN_RATE_LIMIT_MAX"],
            window_minutes=current_app.config["LOGIN_RATE_LIMIT_WINDOW_MINUTES"],
        )
        if not limit.allowed:
            return jsonify({
                "error": "Too many login attempts",
                "retryAfter": limit.retry_after,
            }), 429

        user = auth_service.authenticate(email, password, ip_address=ip_address)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id, ip_address=ip_address)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "client_id": user.client_id,
            "message": "Login successful",
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token)
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict(), "client_id": g.client_id})
