# Overview: Inventory synchronization with the commerce platform; durable push queue, order pull, drift audit.

from __future__ import annotations

import time
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import (
    InventorySyncSnapshot,
    ShopifyOrder,
    Sku,
    SkuAlias,
    SyncLog,
    SyncPushTask,
)
from ..time_utils import utcnow
from ..validation import NotFoundError
from . import alias_service, ledger_service, oauth_service
from .shopify_client import ShopifyAPIError, ShopifyClient, response_json
from .webhook_adapters import InventoryLevelEvent, OrderEvent, adapt_order
"""
Inventory Sync

PUSH (ledger -> platform):
- ledger_service enqueues a SyncPushTask in the ledger write's transaction.
  Pending tasks for the same (client, SKU) coalesce into one row.
- drain_push_queue claims due tasks ("processing"), pushes the SKU's current
  sellable quantity, and records done / skipped, or schedules a retry with
  exponential backoff (SYNC_PUSH_BACKOFF_SECONDS * 2^(attempts-1)) until
  SYNC_PUSH_MAX_ATTEMPTS, then failed. Failures are logged, never raised to
  the writer of the ledger.
- A claim older than SYNC_PUSH_LEASE_SECONDS (a drain that died mid-push)
  returns the task to pending at the start of the next drain.
- A push always sends the absolute sellable quantity, so replays and
  reordering converge on the same platform value.

PULL (platform -> portal):
- sync_orders pages orders.json through the REST guard using Link headers.
- record_platform_level stores the platform's quantity per inventory item and
  its drift from the local ledger.
"""


TASK_PENDING = "pending"
TASK_PROCESSING = "processing"
TASK_DONE = "done"
TASK_SKIPPED = "skipped"
TASK_FAILED = "failed"

ORDERS_PAGE_LIMIT = 250


def enqueue_push(*, client_id: int, sku_id: int, reason: str | None = None) -> SyncPushTask:
    """Queue a platform push for one SKU. Flushes, does not commit."""
    task = (
        db.session.query(SyncPushTask)
        .filter_by(client_id=client_id, sku_id=sku_id, status=TASK_PENDING)
        .first()
    )
    now = utcnow()
    if task is not None:
        task.next_attempt_at = min(task.next_attempt_at, now)
        task.reason = reason or task.reason
    else:
        task = SyncPushTask(
            client_id=client_id,
            sku_id=sku_id,
            status=TASK_PENDING,
            attempts=0,
            next_attempt_at=now,
            reason=reason,
        )
        db.session.add(task)
    db.session.flush()
    return task


def _log_sync(*, client_id: int, sync_type: str, status: str, started: float,
              items_processed: int = 0, error_message: str | None = None, metadata: dict | None = None) -> SyncLog:
    log = SyncLog(
        client_id=client_id,
        sync_type=sync_type,
        status=status,
        items_processed=items_processed,
        duration_ms=int((time.monotonic() - started) * 1000),
        error_message=error_message,
        metadata_json=metadata,
    )
    db.session.add(log)
    db.session.flush()
    return log


def push_sku_inventory(*, client_id: int, sku_id: int, client: ShopifyClient | None = None) -> dict:
    """
    Set the platform's available quantity for one SKU to its sellable quantity.

    Returns {"status": "success" | "skipped", ...}. Raises ShopifyAPIError on
    platform failure after logging a failed SyncLog row. Flushes, does not commit.
    """
    started = time.monotonic()
    connection = oauth_service.get_active_connection(client_id)
    if connection is None:
        return {"status": TASK_SKIPPED, "message": "No active store connection"}

    alias = (
        db.session.query(SkuAlias)
        .filter_by(client_id=client_id, sku_id=sku_id, alias_type=alias_service.ALIAS_INVENTORY_ITEM)
        .first()
    )
    if alias is None:
        _log_sync(client_id=client_id, sync_type="inventory_push", status=TASK_SKIPPED, started=started,
                  metadata={"sku_id": sku_id, "reason": "not_mapped"})
        return {"status": TASK_SKIPPED, "message": "SKU not mapped to the platform"}

    quantity = ledger_service.sellable_quantity(client_id, sku_id)
    owns_client = client is None
    client = client or ShopifyClient.for_connection(connection)
    try:
        if not connection.shopify_location_id:
            connection.shopify_location_id = client.discover_location_id()
            current_app.logger.info(
                "Saved platform location %s for client %s", connection.shopify_location_id, client_id
            )
        client.set_inventory_quantity(
            inventory_item_id=alias.alias_value,
            location_id=connection.shopify_location_id,
            quantity=quantity,
        )
    except ShopifyAPIError as e:
        _log_sync(client_id=client_id, sync_type="inventory_push", status="failed", started=started,
                  error_message=str(e), metadata={"sku_id": sku_id})
        raise
    finally:
        if owns_client:
            client.close()

    connection.last_synced_at = utcnow()
    _log_sync(client_id=client_id, sync_type="inventory_push", status="success", started=started,
              items_processed=1, metadata={"sku_id": sku_id, "quantity": quantity})
    return {"status": "success", "sku_id": sku_id, "quantity": quantity}


def _backoff(attempts: int) -> timedelta:
    base = current_app.config["SYNC_PUSH_BACKOFF_SECONDS"]
    return timedelta(seconds=base * (2 ** max(attempts - 1, 0)))


def _requeue_expired_claims(now: datetime) -> int:
    """Return tasks whose "processing" claim outlived the lease to the queue."""
    lease = timedelta(seconds=current_app.config["SYNC_PUSH_LEASE_SECONDS"])
    stale = (
        db.session.query(SyncPushTask)
        .filter(SyncPushTask.status == TASK_PROCESSING, SyncPushTask.claimed_at < now - lease)
        .all()
    )
    for task in stale:
        task.status = TASK_PENDING
        task.next_attempt_at = now
        task.last_error = "Claim expired before the push finished"
    if stale:
        db.session.commit()
        current_app.logger.warning("Requeued %s push tasks with expired claims", len(stale))
    return len(stale)


def _record_failure(task: SyncPushTask, error: Exception, *, now: datetime, max_attempts: int, stats: dict) -> None:
    task.attempts += 1
    task.last_error = str(error)
    if task.attempts >= max_attempts:
        task.status = TASK_FAILED
        task.completed_at = utcnow()
        stats["failed"] += 1
    else:
        task.status = TASK_PENDING
        task.next_attempt_at = now + _backoff(task.attempts)
        stats["retrying"] += 1


def drain_push_queue(*, limit: int = 100, now: datetime | None = None) -> dict:
    """Process due push tasks. Each task is committed independently."""
    now = now or utcnow()
    max_attempts = current_app.config["SYNC_PUSH_MAX_ATTEMPTS"]
    _requeue_expired_claims(now)
    due = (
        db.session.query(SyncPushTask)
        .filter(SyncPushTask.status == TASK_PENDING, SyncPushTask.next_attempt_at <= now)
        .order_by(SyncPushTask.next_attempt_at.asc(), SyncPushTask.id.asc())
        .limit(limit)
        .all()
    )

    stats = {"processed": 0, "succeeded": 0, "skipped": 0, "retrying": 0, "failed": 0}
    for task in due:
        task_id = task.id
        task.status = TASK_PROCESSING
        task.claimed_at = now
        db.session.commit()
        stats["processed"] += 1

        try:
            result = push_sku_inventory(client_id=task.client_id, sku_id=task.sku_id)
        except (ShopifyAPIError, NotFoundError) as e:
            _record_failure(task, e, now=now, max_attempts=max_attempts, stats=stats)
            current_app.logger.warning(
                "Inventory push failed for client %s SKU %s (attempt %s/%s): %s",
                task.client_id, task.sku_id, task.attempts, max_attempts, e,
            )
            db.session.commit()
            continue
        except Exception as e:
            db.session.rollback()
            task = db.session.get(SyncPushTask, task_id)
            _record_failure(task, e, now=now, max_attempts=max_attempts, stats=stats)
            current_app.logger.exception(
                "Unexpected inventory push error for client %s SKU %s (attempt %s/%s)",
                task.client_id, task.sku_id, task.attempts, max_attempts,
            )
            db.session.commit()
            continue

        task.attempts += 1
        task.completed_at = utcnow()
        if result["status"] == TASK_SKIPPED:
            task.status = TASK_SKIPPED
            task.last_error = result.get("message")
            stats["skipped"] += 1
        else:
            task.status = TASK_DONE
            task.last_error = None
            stats["succeeded"] += 1
        db.session.commit()

    if stats["processed"]:
        current_app.logger.info("Push queue drained: %s", stats)
    return stats


def trigger_client_resync(*, client_id: int) -> int:
    """Queue a push for every mapped, active SKU of a client. Returns the count queued."""
    sku_ids = [
        row[0]
        for row in (
            db.session.query(Sku.id)
            .join(SkuAlias, SkuAlias.sku_id == Sku.id)
            .filter(
                Sku.client_id == client_id,
                Sku.status == "active",
                SkuAlias.alias_type == alias_service.ALIAS_INVENTORY_ITEM,
            )
            .distinct()
            .all()
        )
    ]
    for sku_id in sku_ids:
        enqueue_push(client_id=client_id, sku_id=sku_id, reason="manual_resync")
    db.session.commit()
    current_app.logger.info("Queued resync of %s SKUs for client %s", len(sku_ids), client_id)
    return len(sku_ids)


def upsert_order(*, client_id: int, event: OrderEvent) -> tuple[ShopifyOrder, bool]:
    """Store an order keyed on (client_id, shopify_order_id). Flushes, does not commit."""
    line_items = []
    for item in event.line_items:
        resolution = alias_service.resolve(client_id, variant_id=item.variant_id, sku=item.sku)
        line_items.append({
            "shopify_line_item_id": item.line_item_id,
            "variant_id": item.variant_id,
            "sku": item.sku,
            "title": item.title,
            "quantity": item.quantity,
            "sku_id": resolution.sku_id,
            "matched": resolution.matched,
        })

    order = (
        db.session.query(ShopifyOrder)
        .filter_by(client_id=client_id, shopify_order_id=event.order_id)
        .first()
    )
    created = order is None
    if created:
        order = ShopifyOrder(client_id=client_id, shopify_order_id=event.order_id)
        db.session.add(order)

    order.order_number = event.order_number
    order.financial_status = event.financial_status
    order.fulfillment_status = "cancelled" if event.cancelled else event.fulfillment_status
    order.line_items = line_items
    order.created_at_shopify = event.created_at
    order.synced_at = utcnow()
    db.session.flush()
    return order, created


def sync_orders(*, client_id: int, client: ShopifyClient | None = None, max_pages: int = 20) -> dict:
    """Pull orders through the REST guard, following Link-header pagination."""
    started = time.monotonic()
    connection = oauth_service.get_active_connection(client_id)
    if connection is None:
        raise NotFoundError("No active store connection")

    owns_client = client is None
    client = client or ShopifyClient.for_connection(connection)
    stats = {"pages": 0, "orders": 0, "created": 0}
    try:
        endpoint = "/orders.json"
        params = {"limit": ORDERS_PAGE_LIMIT, "status": "any"}
        while endpoint and stats["pages"] < max_pages:
            response = client.rest("GET", endpoint, params=params)
            stats["pages"] += 1
            for raw in response_json(response, "Order pull failed").get("orders", []):
                _, created = upsert_order(client_id=client_id, event=adapt_order("orders/updated", raw))
                stats["orders"] += 1
                stats["created"] += int(created)
            endpoint = response.links.get("next", {}).get("url")
            # The next-page URL carries its own cursor
            params = None
    except ShopifyAPIError as e:
        db.session.rollback()
        _log_sync(client_id=client_id, sync_type="orders_pull", status="failed", started=started,
                  error_message=str(e))
        db.session.commit()
        raise
    finally:
        if owns_client:
            client.close()

    connection.last_synced_at = utcnow()
    _log_sync(client_id=client_id, sync_type="orders_pull", status="success", started=started,
              items_processed=stats["orders"], metadata=stats)
    db.session.commit()
    return stats


def record_platform_level(*, client_id: int, event: InventoryLevelEvent) -> InventorySyncSnapshot:
    """Store the platform-reported quantity and its drift from the ledger. Flushes, does not commit."""
    resolution = alias_service.resolve(client_id, inventory_item_id=event.inventory_item_id)
    local_quantity = (
        ledger_service.sellable_quantity(client_id, resolution.sku_id) if resolution.matched else None
    )
    drift = event.available - local_quantity if local_quantity is not None else None

    snapshot = (
        db.session.query(InventorySyncSnapshot)
        .filter_by(client_id=client_id, inventory_item_id=event.inventory_item_id)
        .first()
    )
    if snapshot is None:
        snapshot = InventorySyncSnapshot(client_id=client_id, inventory_item_id=event.inventory_item_id)
        db.session.add(snapshot)
    snapshot.sku_id = resolution.sku_id
    snapshot.shopify_quantity = event.available
    snapshot.local_quantity = local_quantity
    snapshot.drift = drift
    snapshot.last_synced_at = utcnow()
    db.session.flush()

    if drift:
        current_app.logger.warning(
            "Inventory drift for client %s item %s: platform %s, local %s",
            client_id, event.inventory_item_id, event.available, local_quantity,
        )
    return snapshot


def list_drift(*, client_id: int) -> list[InventorySyncSnapshot]:
    return (
        db.session.query(InventorySyncSnapshot)
        .filter(InventorySyncSnapshot.client_id == client_id, InventorySyncSnapshot.drift != 0)
        .order_by(InventorySyncSnapshot.id.asc())
        .all()
    )
