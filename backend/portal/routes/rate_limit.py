# Overview: Flask API route exposing the rate limiter to public forms.

from flask import Blueprint, request, jsonify, current_app

from ..services import rate_limit_service
from ..validation import ValidationError


rate_limit_bp = Blueprint("rate_limit", __name__, url_prefix="/api/rate-limit")


def _client_ip() -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr


@rate_limit_bp.post("/check")
def check_route():
    """
    Request body: {"key": "contact_form_submit", "maxAttempts": 5, "windowMinutes": 15}

    Returns:
        200: {"allowed": true, "remaining": n}
        429: {"allowed": false, "remaining": 0, "retryAfter": seconds}
        400: invalid key or limits
    """
    try:
        data = request.get_json(silent=True) or {}
        result = rate_limit_service.check_rate_limit(
            key=data.get("key"),
            client_ip=_client_ip(),
            max_attempts=data.get("maxAttempts", 5),
            window_minutes=data.get("windowMinutes", 15),
        )
        return jsonify(result.to_dict()), 200 if result.allowed else 429
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to check rate limit")
        return jsonify({"allowed": True, "remaining": 0}), 200
