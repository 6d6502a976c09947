# Overview: Inbound platform webhooks; signature check, durable idempotency, dispatch, and delivery log.

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ProcessedWebhook, WebhookDeliveryLog
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from . import alias_service, inventory_sync_service, oauth_service, returns_service
from .webhook_adapters import (
    AppUninstalledEvent,
    InventoryLevelEvent,
    OrderEvent,
    ProductEvent,
    ReturnEvent,
    UnsupportedTopicError,
    adapt,
)
"""
Webhook Ingestion

1. Verify X-Shopify-Hmac-Sha256 (base64 HMAC-SHA256 of the raw body with the
   app secret), constant-time compare.
2. Look up the active store connection by shop domain -> client_id.
3. Idempotency: (client_id, webhook_id) in processed_webhooks. A seen event
   is acknowledged as a duplicate and nothing is written.
4. The processed marker is inserted in the same transaction as the handler's
   effects. If a concurrent delivery commits first, the unique constraint
   fails, the effects roll back, and the delivery counts as a duplicate.
5. Every delivery gets a WebhookDeliveryLog row (pending -> success /
   duplicate / ignored / failed), committed independently of the effects.
"""


class WebhookSignatureError(ValidationError):
    """HMAC header missing or wrong."""


@dataclass(frozen=True)
class WebhookResult:
    status: str
    topic: str
    webhook_id: str
    detail: str | None = None

    def to_dict(self) -> dict:
        data = {"success": True, "status": self.status, "topic": self.topic}
        if self.detail:
            data["message"] = self.detail
        return data


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None = None) -> bool:
    if not signature:
        return False
    secret = secret if secret is not None else current_app.config["SHOPIFY_CLIENT_SECRET"]
    if not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


def sign_payload(raw_body: bytes, secret: str | None = None) -> str:
    """Base64 HMAC-SHA256 in the platform's header format."""
    secret = secret if secret is not None else current_app.config["SHOPIFY_CLIENT_SECRET"]
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _already_processed(client_id: int, webhook_id: str) -> bool:
    return (
        db.session.query(ProcessedWebhook.id)
        .filter_by(client_id=client_id, webhook_id=webhook_id)
        .first()
        is not None
    )


def _apply(client_id: int, connection, event) -> str | None:
    """Run the handler for one adapted event. Flushes only."""
    if isinstance(event, ReturnEvent):
        row, action = returns_service.upsert_shopify_return(client_id=client_id, event=event)
        return f"return {row.shopify_return_id} {action}"
    if isinstance(event, OrderEvent):
        order, created = inventory_sync_service.upsert_order(client_id=client_id, event=event)
        return f"order {order.shopify_order_id} {'created' if created else 'updated'}"
    if isinstance(event, InventoryLevelEvent):
        snapshot = inventory_sync_service.record_platform_level(client_id=client_id, event=event)
        return f"inventory item {snapshot.inventory_item_id} drift {snapshot.drift}"
    if isinstance(event, ProductEvent):
        stats = alias_service.map_product_variants(client_id=client_id, event=event)
        return f"product {event.product_id} aliases {stats['inserted']} new"
    if isinstance(event, AppUninstalledEvent):
        oauth_service.deactivate_connection(connection)
        return "store connection deactivated"
    return None


def _finish_log(log_id: int | None, status: str, started: float, error: str | None = None) -> None:
    if log_id is None:
        return
    log = db.session.get(WebhookDeliveryLog, log_id)
    if log is None:
        return
    log.status = status
    log.error_message = error
    log.processing_time_ms = int((time.monotonic() - started) * 1000)
    db.session.commit()


def process_webhook(
    *,
    raw_body: bytes,
    signature: str | None,
    shop_domain: str | None,
    topic: str | None,
    webhook_id: str | None,
) -> WebhookResult:
    """
    Verify, deduplicate and apply one delivery.

    Raises:
        ValidationError: missing headers or bad payload
        WebhookSignatureError: HMAC mismatch
        NotFoundError: no active store for the shop domain
    """
    started = time.monotonic()
    if not signature or not shop_domain or not topic or not webhook_id:
        raise ValidationError("Missing required webhook headers")
    if not verify_signature(raw_body, signature):
        current_app.logger.warning("Webhook signature verification failed for %s (%s)", shop_domain, topic)
        raise WebhookSignatureError("Invalid webhook signature")

    connection = oauth_service.get_connection_by_domain(shop_domain)
    if connection is None:
        raise NotFoundError("Store not found")
    client_id = connection.client_id

    log = WebhookDeliveryLog(
        client_id=client_id,
        shop_domain=connection.shop_domain,
        topic=topic,
        webhook_id=webhook_id,
        status="pending",
    )
    db.session.add(log)
    db.session.commit()
    log_id = log.id

    if _already_processed(client_id, webhook_id):
        current_app.logger.info("Webhook %s already processed", webhook_id)
        _finish_log(log_id, "duplicate", started)
        return WebhookResult("duplicate", topic, webhook_id, "Webhook already processed")

    try:
        payload = json.loads(raw_body.decode("utf-8") or "{}")
        event = adapt(topic, payload, shop_domain=connection.shop_domain)
    except UnsupportedTopicError:
        db.session.add(ProcessedWebhook(
            client_id=client_id, webhook_id=webhook_id, shop_domain=connection.shop_domain,
            topic=topic, processed_at=utcnow(),
        ))
        db.session.commit()
        _finish_log(log_id, "ignored", started)
        return WebhookResult("ignored", topic, webhook_id, "Topic not handled")
    except (ValueError, ValidationError) as e:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
        db.session.rollback()
        _finish_log(log_id, "failed", started, str(e))
        raise ValidationError(f"Invalid webhook payload: {e}")

    try:
        detail = _apply(client_id, connection, event)
        db.session.add(ProcessedWebhook(
            client_id=client_id, webhook_id=webhook_id, shop_domain=connection.shop_domain,
            topic=topic, processed_at=utcnow(),
        ))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if _already_processed(client_id, webhook_id):
            _finish_log(log_id, "duplicate", started)
            return WebhookResult("duplicate", topic, webhook_id, "Webhook already processed")
        _finish_log(log_id, "failed", started, "integrity error")
        raise
    except Exception as e:
        db.session.rollback()
        _finish_log(log_id, "failed", started, str(e))
        raise

    current_app.logger.info("Processed webhook %s (%s) for client %s: %s", webhook_id, topic, client_id, detail)
    _finish_log(log_id, "success", started)
    return WebhookResult("success", topic, webhook_id, detail)


def prune_processed_webhooks(*, retention_days: int | None = None, now: datetime | None = None) -> int:
    """Drop idempotency keys older than the retention window."""
    if retention_days is None:
        retention_days = current_app.config["WEBHOOK_RETENTION_DAYS"]
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    deleted = (
        db.session.query(ProcessedWebhook)
        .filter(ProcessedWebhook.processed_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return int(deleted or 0)
