# Overview: Pytest coverage for the append-only inventory ledger.

"""
Inventory Ledger Tests

Verifies:
- Quantity is the sum of deltas per (client, SKU, location)
- Sellable quantity only counts available locations
- Sign rules per transaction type; sums do not depend on append order
- Entries at available locations queue a platform push (coalesced)
- Manual adjustments require a reason code
"""

import itertools

import pytest

from portal.models import InventoryLedgerEntry, SyncPushTask
from portal.services import ledger_service
from portal.state_machines import LedgerTransactionType, LocationKind
from portal.validation import NotFoundError, ValidationError, require_int


def _receive(tenant, sku, qty, kind=LocationKind.AVAILABLE):
    location = ledger_service.get_location(tenant.id, kind)
    return ledger_service.append_entry(
        client_id=tenant.id,
        sku_id=sku.id,
        location_id=location.id,
        qty_delta=qty,
        transaction_type=LedgerTransactionType.RECEIPT,
        source_type="test",
    )


class TestQuantities:
    """SUM(qty_delta) is the only source of truth."""

    def test_receipt_increases_on_hand(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 10)
        _receive(tenant_a, sku_a, 5)

        assert ledger_service.current_quantity(tenant_a.id, sku_a.id) == 15
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 15

    def test_sellable_excludes_damaged_and_quarantine(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 8)
        _receive(tenant_a, sku_a, 2, LocationKind.DAMAGED)
        _receive(tenant_a, sku_a, 1, LocationKind.QUARANTINE)

        assert ledger_service.current_quantity(tenant_a.id, sku_a.id) == 11
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 8

    def test_quantities_by_location(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 4)
        _receive(tenant_a, sku_a, 3, LocationKind.DAMAGED)

        by_kind = {row["kind"]: row["quantity"] for row in ledger_service.quantities_by_location(tenant_a.id, sku_a.id)}
        assert by_kind == {"available": 4, "damaged": 3}

    def test_quantities_are_client_scoped(self, db_session, tenant_a, tenant_b, sku_a, sku_b):
        _receive(tenant_a, sku_a, 6)
        _receive(tenant_b, sku_b, 9)

        assert ledger_service.current_quantity(tenant_a.id, sku_b.id) == 0
        assert ledger_service.current_quantity(tenant_b.id, sku_b.id) == 9


class TestAppendRules:
    """Sign, type, ownership and non-negativity checks."""

    def test_zero_delta_rejected(self, db_session, tenant_a, sku_a):
        with pytest.raises(ValidationError):
            _receive(tenant_a, sku_a, 0)

    def test_receipt_must_be_positive(self, db_session, tenant_a, sku_a):
        with pytest.raises(ValidationError):
            _receive(tenant_a, sku_a, -3)

    def test_shipment_must_be_negative(self, db_session, tenant_a, sku_a):
        location = ledger_service.get_location(tenant_a.id, LocationKind.AVAILABLE)
        with pytest.raises(ValidationError):
            ledger_service.append_entry(
                client_id=tenant_a.id,
                sku_id=sku_a.id,
                location_id=location.id,
                qty_delta=2,
                transaction_type=LedgerTransactionType.SHIPMENT,
            )

    def test_unknown_transaction_type(self, db_session, tenant_a, sku_a):
        location = ledger_service.get_location(tenant_a.id, LocationKind.AVAILABLE)
        with pytest.raises(ValidationError):
            ledger_service.append_entry(
                client_id=tenant_a.id,
                sku_id=sku_a.id,
                location_id=location.id,
                qty_delta=1,
                transaction_type="TELEPORT",
            )

    @pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
    def test_append_order_does_not_change_sum(self, db_session, tenant_a, sku_a, order):
        location = ledger_service.get_location(tenant_a.id, LocationKind.AVAILABLE)
        deltas = [
            (10, LedgerTransactionType.RECEIPT),
            (-5, LedgerTransactionType.SHIPMENT),
            (3, LedgerTransactionType.RETURN_RESTOCK),
        ]

        for index in order:
            qty_delta, tx_type = deltas[index]
            ledger_service.append_entry(
                client_id=tenant_a.id,
                sku_id=sku_a.id,
                location_id=location.id,
                qty_delta=qty_delta,
                transaction_type=tx_type,
            )

        assert ledger_service.current_quantity(tenant_a.id, sku_a.id) == 8
        assert db_session.query(InventoryLedgerEntry).count() == 3

    def test_damage_removal_cannot_target_available(self, db_session, tenant_a, sku_a):
        location = ledger_service.get_location(tenant_a.id, LocationKind.AVAILABLE)
        with pytest.raises(ValidationError):
            ledger_service.append_entry(
                client_id=tenant_a.id,
                sku_id=sku_a.id,
                location_id=location.id,
                qty_delta=1,
                transaction_type=LedgerTransactionType.DAMAGE_REMOVAL,
            )

    def test_foreign_sku_rejected(self, db_session, tenant_a, sku_b):
        with pytest.raises(NotFoundError):
            _receive(tenant_a, sku_b, 1)

    def test_foreign_location_rejected(self, db_session, tenant_a, tenant_b, sku_a):
        foreign = ledger_service.get_location(tenant_b.id, LocationKind.AVAILABLE)
        with pytest.raises(NotFoundError):
            ledger_service.append_entry(
                client_id=tenant_a.id,
                sku_id=sku_a.id,
                location_id=foreign.id,
                qty_delta=1,
                transaction_type=LedgerTransactionType.RECEIPT,
            )

    def test_source_ref_stored_as_text(self, db_session, tenant_a, sku_a):
        location = ledger_service.get_location(tenant_a.id, LocationKind.AVAILABLE)
        entry = ledger_service.append_entry(
            client_id=tenant_a.id,
            sku_id=sku_a.id,
            location_id=location.id,
            qty_delta=1,
            transaction_type="RECEIPT",
            source_type="asn_line",
            source_ref=42,
        )
        assert entry.source_ref == "42"
        assert entry.transaction_type == "RECEIPT"


class TestPushQueue:
    """Ledger writes at available locations queue a platform push."""

    def test_available_entry_queues_push(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 3)
        tasks = db_session.query(SyncPushTask).filter_by(client_id=tenant_a.id, sku_id=sku_a.id).all()
        assert len(tasks) == 1
        assert tasks[0].status == "pending"

    def test_pending_pushes_coalesce(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 3)
        _receive(tenant_a, sku_a, 4)
        assert db_session.query(SyncPushTask).filter_by(sku_id=sku_a.id).count() == 1

    def test_damaged_entry_does_not_queue_push(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 3, LocationKind.DAMAGED)
        assert db_session.query(SyncPushTask).count() == 0


class TestAdjustments:
    """Manual corrections."""

    def test_positive_adjustment(self, db_session, tenant_a, sku_a):
        entry = ledger_service.adjust_inventory(
            client_id=tenant_a.id, sku_id=sku_a.id, qty_delta=5, reason_code="cycle_count"
        )
        assert entry.transaction_type == "ADJUSTMENT_PLUS"
        assert entry.source_type == "manual_adjustment"
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 5

    def test_negative_adjustment(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 5)
        entry = ledger_service.adjust_inventory(
            client_id=tenant_a.id, sku_id=sku_a.id, qty_delta="-2", reason_code="shrinkage"
        )
        assert entry.transaction_type == "ADJUSTMENT_MINUS"
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 3

    def test_reason_code_required(self, db_session, tenant_a, sku_a):
        with pytest.raises(ValidationError):
            ledger_service.adjust_inventory(client_id=tenant_a.id, sku_id=sku_a.id, qty_delta=1, reason_code=" ")

    def test_entries_are_listed_newest_first(self, db_session, tenant_a, sku_a):
        _receive(tenant_a, sku_a, 1)
        _receive(tenant_a, sku_a, 2)
        entries, total = ledger_service.list_entries(client_id=tenant_a.id, sku_id=sku_a.id)
        assert total == 2
        assert [e.qty_delta for e in entries] == [2, 1]
        assert db_session.query(InventoryLedgerEntry).count() == 2


class TestRequireInt:
    """Strict integer parsing used for every quantity."""

    @pytest.mark.parametrize("value", ["1e3", 2.5, True, None, "", "1.0", "abc"])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            require_int(value, "qty")

    def test_accepts_plain_integers(self):
        assert require_int("12", "qty") == 12
        assert require_int(-4, "qty") == -4

    def test_minimum(self):
        with pytest.raises(ValidationError):
            require_int(0, "qty", minimum=1)
