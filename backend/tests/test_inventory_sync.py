# Overview: Pytest coverage for the inventory push queue, order pull and drift audit.

"""
Inventory Sync Tests

Verifies:
- Drained tasks push the absolute sellable quantity via GraphQL
- Unmapped SKUs and clients without a store are skipped, not failed
- Platform failures retry with backoff, then fail after the attempt limit
- Order pull follows Link-header pagination through the REST guard
"""

import json
from datetime import timedelta

import httpx
import pytest

from portal.models import ShopifyOrder, SyncLog, SyncPushTask
from portal.services import alias_service, inventory_sync_service, ledger_service
from portal.services.webhook_adapters import InventoryLevelEvent
from portal.time_utils import utcnow
from portal.validation import NotFoundError


def _mapped(sku, inventory_item_id="808"):
    alias_service.upsert_alias(
        sku_id=sku.id, alias_type=alias_service.ALIAS_INVENTORY_ITEM, alias_value=inventory_item_id
    )


def _adjust(tenant, sku, qty):
    ledger_service.adjust_inventory(client_id=tenant.id, sku_id=sku.id, qty_delta=qty, reason_code="count")


def _inventory_ok(request):
    return httpx.Response(200, json={"data": {"inventorySetQuantities": {"userErrors": []}}})


class TestDrainQueue:

    def test_pushes_sellable_quantity(self, db_session, tenant_a, sku_a, connection_a, platform):
        platform.on("/graphql.json", _inventory_ok)
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 6)
        _adjust(tenant_a, sku_a, -2)

        stats = inventory_sync_service.drain_push_queue()

        assert stats == {"processed": 1, "succeeded": 1, "skipped": 0, "retrying": 0, "failed": 0}
        body = json.loads(platform.requests[0].content)
        assert body["variables"]["input"]["quantities"][0]["quantity"] == 4
        task = db_session.query(SyncPushTask).one()
        assert task.status == "done"

    def test_unmapped_sku_skipped(self, db_session, tenant_a, sku_a, connection_a, platform):
        _adjust(tenant_a, sku_a, 1)
        stats = inventory_sync_service.drain_push_queue()

        assert stats["skipped"] == 1
        assert platform.requests == []
        log = db_session.query(SyncLog).one()
        assert log.status == "skipped"

    def test_no_connection_skipped(self, db_session, tenant_a, sku_a, platform):
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 1)
        assert inventory_sync_service.drain_push_queue()["skipped"] == 1

    def test_discovers_and_saves_location(self, db_session, tenant_a, sku_a, connection_a, platform):
        connection_a.shopify_location_id = None
        db_session.commit()

        def handler(request):
            body = json.loads(request.content)
            if "locations" in body["query"]:
                return httpx.Response(200, json={"data": {"locations": {"edges": [
                    {"node": {"id": "gid://shopify/Location/77", "isActive": True, "fulfillsOnlineOrders": True}}
                ]}}})
            return _inventory_ok(request)

        platform.on("/graphql.json", handler)
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 2)
        inventory_sync_service.drain_push_queue()

        db_session.refresh(connection_a)
        assert connection_a.shopify_location_id == "77"

    def test_failure_retries_then_fails(self, app, db_session, tenant_a, sku_a, connection_a, platform):
        platform.on("/graphql.json", lambda request: httpx.Response(502, json={}))
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 2)
        max_attempts = app.config["SYNC_PUSH_MAX_ATTEMPTS"]

        for _ in range(max_attempts - 1):
            assert inventory_sync_service.drain_push_queue()["retrying"] == 1
        stats = inventory_sync_service.drain_push_queue()

        assert stats["failed"] == 1
        task = db_session.query(SyncPushTask).one()
        assert task.status == "failed"
        assert task.attempts == max_attempts
        assert "502" in task.last_error

    def test_backoff_delays_retry(self, app, db_session, tenant_a, sku_a, connection_a, platform):
        platform.on("/graphql.json", lambda request: httpx.Response(502, json={}))
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 2)
        app.config["SYNC_PUSH_BACKOFF_SECONDS"] = 60
        try:
            now = utcnow()
            inventory_sync_service.drain_push_queue(now=now)
            task = db_session.query(SyncPushTask).one()
            assert task.next_attempt_at == now + timedelta(seconds=60)
            assert inventory_sync_service.drain_push_queue(now=now + timedelta(seconds=30))["processed"] == 0
        finally:
            app.config["SYNC_PUSH_BACKOFF_SECONDS"] = 0

    def test_non_json_body_is_retried(self, db_session, tenant_a, sku_a, connection_a, platform):
        platform.on("/graphql.json", lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 2)

        assert inventory_sync_service.drain_push_queue()["retrying"] == 1

        task = db_session.query(SyncPushTask).one()
        assert task.status == "pending"
        assert "not JSON" in task.last_error

    def test_unexpected_error_keeps_task_queued(self, db_session, tenant_a, sku_a, sku_a2, connection_a, platform,
                                               monkeypatch):
        platform.on("/graphql.json", _inventory_ok)
        _mapped(sku_a, "1")
        _mapped(sku_a2, "2")
        _adjust(tenant_a, sku_a, 1)
        _adjust(tenant_a, sku_a2, 1)
        real_push = inventory_sync_service.push_sku_inventory

        def flaky(*, client_id, sku_id):
            if sku_id == sku_a.id:
                raise RuntimeError("connection reset")
            return real_push(client_id=client_id, sku_id=sku_id)

        monkeypatch.setattr(inventory_sync_service, "push_sku_inventory", flaky)
        stats = inventory_sync_service.drain_push_queue()

        assert stats["retrying"] == 1
        assert stats["succeeded"] == 1
        failed = db_session.query(SyncPushTask).filter_by(sku_id=sku_a.id).one()
        assert failed.status == "pending"
        assert failed.attempts == 1

    def test_expired_claim_is_requeued(self, app, db_session, tenant_a, sku_a, connection_a, platform):
        platform.on("/graphql.json", _inventory_ok)
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 2)
        now = utcnow()
        task = db_session.query(SyncPushTask).one()
        task.status = "processing"
        task.claimed_at = now - timedelta(seconds=app.config["SYNC_PUSH_LEASE_SECONDS"] + 1)
        db_session.commit()

        stats = inventory_sync_service.drain_push_queue(now=now)

        assert stats["succeeded"] == 1
        assert db_session.query(SyncPushTask).one().status == "done"

    def test_fresh_claim_is_left_alone(self, db_session, tenant_a, sku_a, connection_a, platform):
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 2)
        now = utcnow()
        task = db_session.query(SyncPushTask).one()
        task.status = "processing"
        task.claimed_at = now
        db_session.commit()

        assert inventory_sync_service.drain_push_queue(now=now)["processed"] == 0

    def test_ledger_writes_never_blocked_by_platform(self, db_session, tenant_a, sku_a, connection_a, platform):
        platform.on("/graphql.json", lambda request: httpx.Response(500, json={}))
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 3)
        inventory_sync_service.drain_push_queue()
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 3


class TestResync:

    def test_queues_every_mapped_sku(self, db_session, tenant_a, sku_a, sku_a2, make_sku):
        _mapped(sku_a, "1")
        _mapped(sku_a2, "2")
        make_sku(tenant_a, "UNMAPPED")

        assert inventory_sync_service.trigger_client_resync(client_id=tenant_a.id) == 2
        assert db_session.query(SyncPushTask).filter_by(status="pending").count() == 2


class TestOrderPull:

    def test_follows_pagination(self, app, db_session, tenant_a, sku_a, connection_a, platform):
        def orders(request):
            if "page_info" in request.url.params:
                return httpx.Response(200, json={"orders": [{"id": 2, "name": "#1002", "line_items": []}]})
            next_url = f"https://{connection_a.shop_domain}/admin/api/{app.config['SHOPIFY_API_VERSION']}/orders.json?page_info=abc&limit=250"
            return httpx.Response(
                200,
                json={"orders": [{"id": 1, "name": "#1001", "line_items": [
                    {"id": 9, "variant_id": 5, "sku": "TEE-BLK-M", "quantity": 1}
                ]}]},
                headers={"Link": f'<{next_url}>; rel="next"'},
            )

        platform.on("/orders.json", orders)
        stats = inventory_sync_service.sync_orders(client_id=tenant_a.id)

        assert stats == {"pages": 2, "orders": 2, "created": 2}
        first = db_session.query(ShopifyOrder).filter_by(shopify_order_id="1").one()
        assert first.line_items[0]["sku_id"] == sku_a.id
        assert db_session.query(SyncLog).filter_by(sync_type="orders_pull", status="success").count() == 1

    def test_requires_connection(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            inventory_sync_service.sync_orders(client_id=tenant_a.id)


class TestDrift:

    def test_drift_listed(self, db_session, tenant_a, sku_a):
        _mapped(sku_a)
        _adjust(tenant_a, sku_a, 5)
        inventory_sync_service.record_platform_level(
            client_id=tenant_a.id, event=InventoryLevelEvent(inventory_item_id="808", location_id="555", available=5)
        )
        inventory_sync_service.record_platform_level(
            client_id=tenant_a.id, event=InventoryLevelEvent(inventory_item_id="999", location_id="555", available=2)
        )
        db_session.commit()

        drift = inventory_sync_service.list_drift(client_id=tenant_a.id)
        assert drift == []

        inventory_sync_service.record_platform_level(
            client_id=tenant_a.id, event=InventoryLevelEvent(inventory_item_id="808", location_id="555", available=8)
        )
        db_session.commit()
        [row] = inventory_sync_service.list_drift(client_id=tenant_a.id)
        assert row.drift == 3
