# Overview: Scheduled cleanup jobs; each is an idempotent delete-if-older-than pass.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import SecurityEvent, WebhookDeliveryLog
from ..time_utils import utcnow
from . import oauth_service, qc_photo_service, rate_limit_service, webhook_service
"""
Cron jobs

None of these coordinate with each other or with live traffic: each one is a
bounded delete of rows older than a cutoff, so running twice (or
concurrently) only deletes less the second time.

    cleanup_oauth_states      daily
    prune_processed_webhooks  daily, keys older than WEBHOOK_RETENTION_DAYS (30)
    sweep_qc_photos           daily, photos older than QC_PHOTO_RETENTION_DAYS (30)
    prune_rate_limits         hourly
    cleanup_security_events   weekly, 90 day retention
"""


def cleanup_oauth_states(*, now: datetime | None = None) -> int:
    deleted = oauth_service.cleanup_expired_states(now=now)
    current_app.logger.info("OAuth state cleanup: deleted=%s", deleted)
    return deleted


def prune_processed_webhooks(*, retention_days: int = 30, now: datetime | None = None) -> dict:
    """
    Remove webhook idempotency keys and delivery log rows past retention.

    A redelivery older than the retention window is treated as new.
    """
    keys = webhook_service.prune_processed_webhooks(retention_days=retention_days, now=now)
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    logs = (
        db.session.query(WebhookDeliveryLog)
        .filter(WebhookDeliveryLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    current_app.logger.info("Webhook prune: keys=%s delivery_logs=%s (retention %s days)", keys, logs, retention_days)
    return {"processed_webhooks": keys, "delivery_logs": int(logs or 0)}


def sweep_qc_photos(*, storage=None, retention_days: int | None = None, now: datetime | None = None) -> dict:
    return qc_photo_service.sweep_expired_photos(storage=storage, retention_days=retention_days, now=now)


def prune_rate_limits(*, now: datetime | None = None) -> int:
    deleted = rate_limit_service.prune_rate_limits(now=now)
    current_app.logger.info("Rate limit prune: deleted=%s", deleted)
    return deleted


def cleanup_security_events(*, retention_days: int = 90) -> int:
    """Delete security events older than retention_days."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete()
    db.session.commit()
    current_app.logger.info("Security event cleanup: deleted=%s", deleted)
    return deleted
