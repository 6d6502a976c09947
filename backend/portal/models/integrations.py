from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ShopifyStoreConnection(db.Model):
    """
    OAuth-authorized link between a client and a commerce-platform store.

    SECURITY: shop_domain is globally unique. A second client may never take
    over a store already connected to another client.
    """
    __tablename__ = "shopify_store_connections"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    shop_domain = db.Column(db.String(255), nullable=False, unique=True, index=True)

    access_token = db.Column(db.String(255), nullable=False)
    scope = db.Column(db.String(512), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Numeric platform location id; discovered on first push when unset
    shopify_location_id = db.Column(db.String(64), nullable=True)

    connected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    disconnected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        # access_token is never serialized
        return {
            "id": self.id,
            "client_id": self.client_id,
            "shop_domain": self.shop_domain,
            "scope": self.scope,
            "is_active": self.is_active,
            "shopify_location_id": self.shopify_location_id,
            "connected_at": to_utc_z(self.connected_at) if self.connected_at else None,
            "disconnected_at": to_utc_z(self.disconnected_at) if self.disconnected_at else None,
            "last_synced_at": to_utc_z(self.last_synced_at) if self.last_synced_at else None,
        }


class OAuthState(db.Model):
    """One-shot OAuth state nonce binding an authorization attempt to a client and shop."""
    __tablename__ = "oauth_states"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    state = db.Column(db.String(64), nullable=False, unique=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    shop_domain = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)


class ProcessedWebhook(db.Model):
    """Durable idempotency key for an applied webhook event."""
    __tablename__ = "processed_webhooks"
    __table_args__ = (
        db.UniqueConstraint("client_id", "webhook_id", name="uq_processed_webhooks_client_event"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    webhook_id = db.Column(db.String(128), nullable=False)
    shop_domain = db.Column(db.String(255), nullable=True)
    topic = db.Column(db.String(64), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)


class WebhookDeliveryLog(db.Model):
    """Audit row for every inbound webhook delivery, applied or not."""
    __tablename__ = "webhook_delivery_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    shop_domain = db.Column(db.String(255), nullable=True)
    topic = db.Column(db.String(64), nullable=True)
    webhook_id = db.Column(db.String(128), nullable=True)

    # pending, success, duplicate, failed, rejected
    status = db.Column(db.String(16), nullable=False, default="pending")
    error_message = db.Column(db.Text, nullable=True)
    processing_time_ms = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "shop_domain": self.shop_domain,
            "topic": self.topic,
            "webhook_id": self.webhook_id,
            "status": self.status,
            "error_message": self.error_message,
            "processing_time_ms": self.processing_time_ms,
            "created_at": to_utc_z(self.created_at),
        }


class ShopifyOrder(db.Model):
    """Order pulled from, or pushed by, the commerce platform."""
    __tablename__ = "shopify_orders"
    __table_args__ = (
        db.UniqueConstraint("client_id", "shopify_order_id", name="uq_shopify_orders_client_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    shopify_order_id = db.Column(db.String(64), nullable=False)
    order_number = db.Column(db.String(64), nullable=True)
    financial_status = db.Column(db.String(32), nullable=True)
    fulfillment_status = db.Column(db.String(32), nullable=True)
    line_items = db.Column(db.JSON, nullable=False, default=list)

    created_at_shopify = db.Column(db.DateTime(timezone=True), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "shopify_order_id": self.shopify_order_id,
            "order_number": self.order_number,
            "financial_status": self.financial_status,
            "fulfillment_status": self.fulfillment_status,
            "line_items": list(self.line_items or []),
            "created_at_shopify": to_utc_z(self.created_at_shopify) if self.created_at_shopify else None,
            "synced_at": to_utc_z(self.synced_at) if self.synced_at else None,
        }


class InventorySyncSnapshot(db.Model):
    """Last platform-reported quantity for a client SKU and its drift from the ledger."""
    __tablename__ = "inventory_sync_snapshots"
    __table_args__ = (
        db.UniqueConstraint("client_id", "inventory_item_id", name="uq_inventory_snapshots_client_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=True)
    inventory_item_id = db.Column(db.String(64), nullable=False)

    shopify_quantity = db.Column(db.Integer, nullable=False)
    local_quantity = db.Column(db.Integer, nullable=True)
    drift = db.Column(db.Integer, nullable=True)

    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "sku_id": self.sku_id,
            "inventory_item_id": self.inventory_item_id,
            "shopify_quantity": self.shopify_quantity,
            "local_quantity": self.local_quantity,
            "drift": self.drift,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class SyncPushTask(db.Model):
    """
    Durable outbox row: push one SKU's sellable quantity to the platform.

    Enqueued in the same transaction as the ledger write. At most one pending
    task per (client, SKU); later enqueues coalesce into it.
    """
    __tablename__ = "sync_push_tasks"
    __table_args__ = (
        db.Index("ix_sync_push_tasks_status_next", "status", "next_attempt_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False)

    # pending, processing, done, failed, skipped
    status = db.Column(db.String(16), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_error = db.Column(db.Text, nullable=True)
    reason = db.Column(db.String(64), nullable=True)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "sku_id": self.sku_id,
            "status": self.status,
            "attempts": self.attempts,
            "next_attempt_at": to_utc_z(self.next_attempt_at),
            "last_error": self.last_error,
            "reason": self.reason,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }


class SyncLog(db.Model):
    """One push or pull against the platform."""
    __tablename__ = "sync_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    # inventory_push, orders_pull, return_action
    sync_type = db.Column(db.String(32), nullable=False)
    # success, failed, skipped
    status = db.Column(db.String(16), nullable=False)
    items_processed = db.Column(db.Integer, nullable=False, default=0)
    duration_ms = db.Column(db.Integer, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "sync_type": self.sync_type,
            "status": self.status,
            "items_processed": self.items_processed,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
            "metadata": self.metadata_json,
            "created_at": to_utc_z(self.created_at),
        }
