# Overview: Pytest coverage for the discrepancy decision workflow and its ledger effects.

import pytest

from portal.models import InventoryLedgerEntry
from portal.services import discrepancy_service, ledger_service
from portal.state_machines import (
    AWAITING_RESPONSE,
    RESPONDED,
    InvalidTransitionError,
    LedgerTransactionType,
    LocationKind,
)
from portal.validation import TenantAccessError, ValidationError


def _stock(tenant, sku, qty, kind):
    location = ledger_service.get_location(tenant.id, kind)
    ledger_service.append_entry(
        client_id=tenant.id,
        sku_id=sku.id,
        location_id=location.id,
        qty_delta=qty,
        transaction_type=LedgerTransactionType.RECEIPT,
    )


def _qty(tenant, sku, kind):
    location = ledger_service.get_location(tenant.id, kind)
    return ledger_service.current_quantity(tenant.id, sku.id, location.id)


@pytest.fixture
def damaged(db_session, tenant_a, sku_a):
    """Three damaged units sitting in the damaged location."""
    _stock(tenant_a, sku_a, 3, LocationKind.DAMAGED)
    discrepancy = discrepancy_service.create_discrepancy(
        client_id=tenant_a.id,
        sku_id=sku_a.id,
        discrepancy_type="damaged",
        quantity=3,
        source_type="receiving",
        qc_photo_urls=["a.jpg"],
    )
    db_session.commit()
    return discrepancy


@pytest.fixture
def missing(db_session, tenant_a, sku_a):
    discrepancy = discrepancy_service.create_discrepancy(
        client_id=tenant_a.id, sku_id=sku_a.id, discrepancy_type="missing", quantity=2, source_type="receiving"
    )
    db_session.commit()
    return discrepancy


class TestSubmitDecision:
    """Client decisions are checked against the discrepancy type."""

    def test_submit(self, db_session, user_a, tenant_a, damaged):
        result = discrepancy_service.submit_decision(
            damaged.id, decision="discard", user_id=user_a.id, client_notes="Bin it", client_id=tenant_a.id
        )
        assert result.status == "submitted"
        assert result.decision == "discard"
        assert result.submitted_by == user_a.id
        assert result.submitted_at is not None

    def test_missing_only_acknowledge(self, db_session, user_a, missing):
        with pytest.raises(ValidationError):
            discrepancy_service.submit_decision(missing.id, decision="sell_as_bstock", user_id=user_a.id)
        result = discrepancy_service.submit_decision(missing.id, decision="acknowledge", user_id=user_a.id)
        assert result.status == "submitted"

    def test_damaged_cannot_acknowledge(self, db_session, user_a, damaged):
        with pytest.raises(ValidationError):
            discrepancy_service.submit_decision(damaged.id, decision="acknowledge", user_id=user_a.id)

    def test_unknown_decision(self, db_session, user_a, damaged):
        with pytest.raises(ValidationError):
            discrepancy_service.submit_decision(damaged.id, decision="burn", user_id=user_a.id)

    def test_submit_twice(self, db_session, user_a, damaged):
        discrepancy_service.submit_decision(damaged.id, decision="rework", user_id=user_a.id)
        with pytest.raises(InvalidTransitionError):
            discrepancy_service.submit_decision(damaged.id, decision="discard", user_id=user_a.id)

    def test_other_client_cannot_submit(self, db_session, user_b, tenant_b, damaged):
        with pytest.raises(TenantAccessError):
            discrepancy_service.submit_decision(
                damaged.id, decision="discard", user_id=user_b.id, client_id=tenant_b.id
            )


class TestProcessDecision:
    """Admin processing writes the ledger effects."""

    def test_discard_removes_from_holding(self, db_session, admin_user, user_a, tenant_a, sku_a, damaged):
        discrepancy_service.submit_decision(damaged.id, decision="discard", user_id=user_a.id)
        result = discrepancy_service.process_decision(damaged.id, user_id=admin_user.id, admin_notes="done")

        assert result.status == "processed"
        assert result.processed_by == admin_user.id
        assert _qty(tenant_a, sku_a, LocationKind.DAMAGED) == 0
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 0

    def test_sell_as_bstock_moves_to_available(self, db_session, admin_user, user_a, tenant_a, sku_a, damaged):
        discrepancy_service.submit_decision(damaged.id, decision="sell_as_bstock", user_id=user_a.id)
        discrepancy_service.process_decision(damaged.id, user_id=admin_user.id)

        assert _qty(tenant_a, sku_a, LocationKind.DAMAGED) == 0
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 3
        entries = db_session.query(InventoryLedgerEntry).filter_by(source_type="discrepancy").all()
        assert {e.transaction_type for e in entries} == {"ADJUSTMENT_MINUS", "ADJUSTMENT_PLUS"}
        assert all(e.source_ref == str(damaged.id) for e in entries)

    def test_rework_has_no_ledger_effect(self, db_session, admin_user, user_a, tenant_a, sku_a, damaged):
        discrepancy_service.submit_decision(damaged.id, decision="rework", user_id=user_a.id)
        discrepancy_service.process_decision(damaged.id, user_id=admin_user.id)
        assert _qty(tenant_a, sku_a, LocationKind.DAMAGED) == 3

    def test_process_requires_submission(self, db_session, admin_user, damaged):
        with pytest.raises(InvalidTransitionError):
            discrepancy_service.process_decision(damaged.id, user_id=admin_user.id)


class TestCloseAndReopen:

    def _process(self, discrepancy, decision, client_user, admin):
        discrepancy_service.submit_decision(discrepancy.id, decision=decision, user_id=client_user.id)
        discrepancy_service.process_decision(discrepancy.id, user_id=admin.id)

    def test_close(self, db_session, admin_user, user_a, damaged):
        self._process(damaged, "rework", user_a, admin_user)
        result = discrepancy_service.close_discrepancy(damaged.id, user_id=admin_user.id, close_notes="ok")
        assert result.status == "closed"
        assert result.admin_close_notes == "ok"

    def test_cannot_close_pending(self, db_session, admin_user, damaged):
        with pytest.raises(InvalidTransitionError):
            discrepancy_service.close_discrepancy(damaged.id, user_id=admin_user.id)

    def test_reopen_requires_notes(self, db_session, admin_user, user_a, damaged):
        self._process(damaged, "rework", user_a, admin_user)
        discrepancy_service.close_discrepancy(damaged.id, user_id=admin_user.id)
        with pytest.raises(ValidationError):
            discrepancy_service.reopen_discrepancy(damaged.id, user_id=admin_user.id, admin_notes=" ")

    def test_reopen_is_unbounded(self, db_session, admin_user, user_a, damaged):
        for round_number in range(1, 4):
            self._process(damaged, "rework", user_a, admin_user)
            discrepancy_service.close_discrepancy(damaged.id, user_id=admin_user.id)
            result = discrepancy_service.reopen_discrepancy(
                damaged.id, user_id=admin_user.id, admin_notes=f"round {round_number}"
            )
            assert result.status == "pending"
            assert result.reopened_count == round_number

    def test_reprocess_replaces_previous_effect(self, db_session, admin_user, user_a, tenant_a, sku_a, damaged):
        self._process(damaged, "sell_as_bstock", user_a, admin_user)
        discrepancy_service.close_discrepancy(damaged.id, user_id=admin_user.id)
        discrepancy_service.reopen_discrepancy(damaged.id, user_id=admin_user.id, admin_notes="Client changed mind")

        self._process(damaged, "discard", user_a, admin_user)

        assert _qty(tenant_a, sku_a, LocationKind.DAMAGED) == 0
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 0

    def test_processed_cannot_reopen(self, db_session, admin_user, user_a, damaged):
        self._process(damaged, "rework", user_a, admin_user)
        with pytest.raises(InvalidTransitionError):
            discrepancy_service.reopen_discrepancy(damaged.id, user_id=admin_user.id, admin_notes="x")


class TestAggregateStatus:
    """Responded only when every type for the ASN+SKU pair has a decision."""

    def test_none_without_discrepancies(self, db_session, sku_a):
        assert discrepancy_service.aggregate_status(asn_id=1, sku_id=sku_a.id) is None

    def test_partial_response_awaits(self, db_session, user_a, tenant_a, sku_a):
        from portal.services import receiving_service

        asn = receiving_service.create_asn(
            client_id=tenant_a.id, asn_number="ASN-9", lines=[{"sku_id": sku_a.id, "expected_qty": 4}]
        )
        receiving_service.start_receiving(asn.id)
        receiving_service.record_line_receipt(
            asn.id, sku_id=sku_a.id, units=[{"condition": "fail", "photo_path": "p.jpg"}]
        )
        receiving_service.complete_receiving(asn.id)

        rows, _ = discrepancy_service.list_discrepancies(asn_id=asn.id)
        by_type = {row.discrepancy_type: row for row in rows}
        assert discrepancy_service.aggregate_status(asn_id=asn.id, sku_id=sku_a.id) == AWAITING_RESPONSE

        discrepancy_service.submit_decision(by_type["damaged"].id, decision="discard", user_id=user_a.id)
        assert discrepancy_service.aggregate_status(asn_id=asn.id, sku_id=sku_a.id) == AWAITING_RESPONSE

        discrepancy_service.submit_decision(by_type["missing"].id, decision="acknowledge", user_id=user_a.id)
        assert discrepancy_service.aggregate_status(asn_id=asn.id, sku_id=sku_a.id) == RESPONDED

    def test_pending_count(self, db_session, tenant_a, tenant_b, damaged, missing):
        assert discrepancy_service.pending_count() == 2
        assert discrepancy_service.pending_count(client_id=tenant_a.id) == 2
        assert discrepancy_service.pending_count(client_id=tenant_b.id) == 0
