# Overview: Pytest coverage for the returns pipeline and stored platform returns.

"""
Returns Processing Tests

Verifies:
- Line stages received -> qc_photographed -> inspected -> {resellable | damaged}
- Inspection uses client criteria when configured, defaults otherwise
- Each routed line writes exactly one ledger effect
- Platform return upserts are idempotent and never regress status
"""

import json

import httpx
import pytest

from portal.models import Discrepancy, InventoryLedgerEntry, ShopifyReturn
from portal.services import alias_service, ledger_service, returns_service
from portal.services.returns_service import DEFAULT_INSPECTION_CHECKS, ReturnStateError
from portal.services.shopify_client import ShopifyAPIError
from portal.services.webhook_adapters import ReturnEvent, ReturnLineItem
from portal.state_machines import InvalidTransitionError, LocationKind
from portal.validation import NotFoundError, TenantAccessError, ValidationError


ALL_PASS = {check: True for check in DEFAULT_INSPECTION_CHECKS}


@pytest.fixture
def receipt(db_session, tenant_a, sku_a, admin_user):
    return returns_service.create_return_receipt(
        client_id=tenant_a.id,
        lines=[{"sku_id": sku_a.id, "received_qty": 2}],
        reference="RMA-77",
        user_id=admin_user.id,
    )


@pytest.fixture
def line(receipt):
    return receipt.lines[0]


def _photographed(line):
    return returns_service.attach_line_photo(line.id, file_path=f"returns/{line.id}/front.jpg")


def _event(status, return_id="9001", items=()):
    return ReturnEvent(
        return_id=return_id,
        order_id="4001",
        order_number="#1001",
        status=status,
        reason="SIZE_TOO_SMALL",
        line_items=tuple(items),
    )


class TestInspectionCriteria:

    def test_defaults(self, db_session, tenant_a, sku_a):
        checks, source = returns_service.inspection_checks_for(tenant_a.id, sku_a.id)
        assert checks == list(DEFAULT_INSPECTION_CHECKS)
        assert source == "default"

    def test_client_criteria_override(self, db_session, tenant_a, sku_a):
        returns_service.set_inspection_criteria(
            client_id=tenant_a.id, sku_id=sku_a.id, checks=["Tags Attached", "tags attached", "odor"]
        )
        checks, source = returns_service.inspection_checks_for(tenant_a.id, sku_a.id)
        assert checks == ["tags_attached", "odor"]
        assert source == "client"

    def test_criteria_need_checks(self, db_session, tenant_a, sku_a):
        with pytest.raises(ValidationError):
            returns_service.set_inspection_criteria(client_id=tenant_a.id, sku_id=sku_a.id, checks=[" "])

    def test_criteria_sku_must_belong_to_client(self, db_session, tenant_a, sku_b):
        with pytest.raises(NotFoundError):
            returns_service.set_inspection_criteria(client_id=tenant_a.id, sku_id=sku_b.id, checks=["odor"])


class TestPipeline:

    def test_receipt_lines(self, db_session, receipt, line):
        assert receipt.reference == "RMA-77"
        assert line.stage == "received"
        assert line.received_qty == 2

    def test_receipt_rejects_foreign_sku(self, db_session, tenant_a, sku_b):
        with pytest.raises(ValidationError):
            returns_service.create_return_receipt(
                client_id=tenant_a.id, lines=[{"sku_id": sku_b.id, "received_qty": 1}]
            )

    def test_photo_advances_stage(self, db_session, line):
        assert _photographed(line).stage == "qc_photographed"

    def test_inspection_requires_photo_stage(self, db_session, line):
        with pytest.raises(InvalidTransitionError):
            returns_service.inspect_line(line.id, results=ALL_PASS)

    def test_inspection_requires_every_check(self, db_session, line):
        _photographed(line)
        with pytest.raises(ValidationError):
            returns_service.inspect_line(line.id, results={"physical_damage": True})

    def test_inspection_results_must_be_bool(self, db_session, line):
        _photographed(line)
        results = dict(ALL_PASS, functionality="yes")
        with pytest.raises(ValidationError):
            returns_service.inspect_line(line.id, results=results)

    def test_resellable_restocks_available(self, db_session, tenant_a, sku_a, line):
        _photographed(line)
        returns_service.inspect_line(line.id, results=ALL_PASS, notes="Like new")
        routed = returns_service.route_line(line.id)

        assert routed.stage == "resellable"
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 2
        entry = db_session.get(InventoryLedgerEntry, routed.ledger_entry_id)
        assert entry.transaction_type == "RETURN_RESTOCK"
        assert entry.source_type == "return_line"

        assert returns_service.finalize_line(line.id).stage == "final_disposition"

    def test_failed_check_routes_damaged(self, db_session, tenant_a, sku_a, line):
        _photographed(line)
        returns_service.inspect_line(line.id, results=dict(ALL_PASS, missing_parts=False))
        routed = returns_service.route_line(line.id)

        assert routed.stage == "damaged"
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 0
        damaged = ledger_service.get_location(tenant_a.id, LocationKind.DAMAGED)
        assert ledger_service.current_quantity(tenant_a.id, sku_a.id, damaged.id) == 2

        discrepancy = db_session.get(Discrepancy, routed.discrepancy_id)
        assert discrepancy.source_type == "return"
        assert discrepancy.discrepancy_type == "damaged"
        assert discrepancy.quantity == 2
        assert "missing_parts" in discrepancy.admin_notes
        assert discrepancy.qc_photo_urls == [f"returns/{line.id}/front.jpg"]

    def test_reinspection_before_routing(self, db_session, line):
        _photographed(line)
        returns_service.inspect_line(line.id, results=dict(ALL_PASS, functionality=False))
        again = returns_service.inspect_line(line.id, results=ALL_PASS)
        assert again.findings == ALL_PASS

    def test_route_only_once(self, db_session, line):
        _photographed(line)
        returns_service.inspect_line(line.id, results=ALL_PASS)
        returns_service.route_line(line.id)

        with pytest.raises(ReturnStateError):
            returns_service.route_line(line.id)
        assert db_session.query(InventoryLedgerEntry).count() == 1

    def test_client_criteria_drive_inspection(self, db_session, tenant_a, sku_a, line):
        returns_service.set_inspection_criteria(client_id=tenant_a.id, sku_id=sku_a.id, checks=["odor"])
        _photographed(line)
        inspected = returns_service.inspect_line(line.id, results={"odor": True})
        assert inspected.criteria_source == "client"
        assert inspected.findings == {"odor": True}

    def test_line_is_client_scoped(self, db_session, tenant_b, line):
        with pytest.raises(TenantAccessError):
            returns_service.get_line(line.id, client_id=tenant_b.id)


class TestPlatformReturns:
    """Idempotent storage of webhook-fed returns."""

    def test_create_resolves_line_items(self, db_session, tenant_a, sku_a):
        alias_service.upsert_alias(sku_id=sku_a.id, alias_type=alias_service.ALIAS_VARIANT, alias_value="321")
        item = ReturnLineItem(
            line_item_id="1", variant_id="321", inventory_item_id=None, sku=None, title="Tee", quantity=2
        )
        row, action = returns_service.upsert_shopify_return(
            client_id=tenant_a.id, event=_event("requested", items=[item])
        )
        db_session.commit()

        assert action == "created"
        assert row.expected_qty == 2
        assert row.line_items[0]["sku_id"] == sku_a.id
        assert row.line_items[0]["matched"] is True

    def test_redelivery_unchanged(self, db_session, tenant_a):
        returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("requested"))
        _, action = returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("requested"))
        assert action == "unchanged"
        assert db_session.query(ShopifyReturn).count() == 1

    def test_status_moves_forward(self, db_session, tenant_a):
        returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("requested"))
        row, action = returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("approved"))
        assert action == "status_updated"
        assert row.status == "approved"

    def test_out_of_order_never_regresses(self, db_session, tenant_a):
        returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("received"))
        row, action = returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("requested"))
        assert action == "unchanged"
        assert row.status == "received"

    def test_same_return_id_per_client(self, db_session, tenant_a, tenant_b):
        returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("requested"))
        returns_service.upsert_shopify_return(client_id=tenant_b.id, event=_event("requested"))
        db_session.commit()
        rows, total = returns_service.list_shopify_returns(client_id=tenant_b.id)
        assert total == 1

    def test_expected_qty_defaults_from_manifest(self, db_session, tenant_a, sku_a):
        alias_service.upsert_alias(sku_id=sku_a.id, alias_type=alias_service.ALIAS_VARIANT, alias_value="321")
        item = ReturnLineItem(
            line_item_id="1", variant_id="321", inventory_item_id=None, sku=None, title="Tee", quantity=3
        )
        row, _ = returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("approved", items=[item]))
        db_session.commit()

        receipt = returns_service.create_return_receipt(
            client_id=tenant_a.id, shopify_return_id=row.id, lines=[{"sku_id": sku_a.id, "received_qty": 2}]
        )
        assert receipt.reference == "#1001"
        assert receipt.lines[0].expected_qty == 3


class TestPlatformActions:

    @pytest.fixture
    def stored(self, db_session, tenant_a):
        row, _ = returns_service.upsert_shopify_return(client_id=tenant_a.id, event=_event("requested"))
        db_session.commit()
        return row

    def test_approve(self, db_session, tenant_a, connection_a, platform, stored):
        platform.on("/graphql.json", {
            "data": {"returnApproveRequest": {"return": {"id": "gid://shopify/Return/9001", "status": "OPEN"},
                                              "userErrors": []}}
        })
        row = returns_service.apply_platform_action(stored.id, action="approve", client_id=tenant_a.id)

        assert row.status == "approved"
        body = json.loads(platform.requests[0].content)
        assert body["variables"]["id"] == "gid://shopify/Return/9001"

    def test_platform_failure_keeps_local_status(self, db_session, connection_a, platform, stored):
        platform.on("/graphql.json", lambda request: httpx.Response(500, json={}))
        with pytest.raises(ShopifyAPIError):
            returns_service.apply_platform_action(stored.id, action="decline")
        assert db_session.get(ShopifyReturn, stored.id).status == "requested"

    def test_unknown_action(self, db_session, stored):
        with pytest.raises(ValidationError):
            returns_service.apply_platform_action(stored.id, action="refund")

    def test_requires_connection(self, db_session, stored):
        with pytest.raises(NotFoundError):
            returns_service.apply_platform_action(stored.id, action="approve")

    def test_other_client(self, db_session, tenant_b, stored):
        with pytest.raises(TenantAccessError):
            returns_service.apply_platform_action(stored.id, action="approve", client_id=tenant_b.id)
