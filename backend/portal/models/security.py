from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log with tenant context.

    Records logins, failed logins, rate-limit denials, and cross-tenant access
    attempts. IMMUTABLE: append-only.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # LOGIN_SUCCESS, LOGIN_FAILED, RATE_LIMITED, TENANT_ACCESS_DENIED, ...
    event_type = db.Column(db.String(48), nullable=False)
    success = db.Column(db.Boolean, nullable=False)
    resource = db.Column(db.String(255), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "success": self.success,
            "resource": self.resource,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class RateLimitEntry(db.Model):
    """
    Fixed-window request counter per (logical key, client IP).

    A row is reset in place when its window has elapsed.
    """
    __tablename__ = "rate_limits"
    __table_args__ = (
        db.UniqueConstraint("rate_key", "client_ip", name="uq_rate_limits_key_ip"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rate_key = db.Column(db.String(100), nullable=False, index=True)
    client_ip = db.Column(db.String(45), nullable=False)
    window_start = db.Column(db.DateTime(timezone=True), nullable=False)
    request_count = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
