# Overview: Pytest coverage for ASN receiving, per-unit QC and discrepancy flagging.

"""
Receiving & QC Tests

Verifies:
- ASN lifecycle not_received -> receiving -> {completed | issue} -> closed
- Every unit needs a condition and a photo
- Receipts land at the location matching the unit outcome
- Missing / damaged / quarantined quantities become separate discrepancies
- Issue ASNs close only through the admin resolve path
"""

import pytest

from portal.models import Discrepancy, InventoryLedgerEntry, QcInspection, QcPhoto
from portal.services import ledger_service, receiving_service
from portal.services.receiving_service import AsnStateError
from portal.state_machines import InvalidTransitionError, LocationKind
from portal.validation import ConflictError, TenantAccessError, ValidationError


def _units(*conditions):
    return [
        {"condition": condition, "photo_path": f"client-1/asn/unit-{index}.jpg"}
        for index, condition in enumerate(conditions, start=1)
    ]


@pytest.fixture
def asn(db_session, tenant_a, sku_a, sku_a2):
    return receiving_service.create_asn(
        client_id=tenant_a.id,
        asn_number="ASN-1001",
        lines=[{"sku_id": sku_a.id, "expected_qty": 5}, {"sku_id": sku_a2.id, "expected_qty": 2}],
        carrier="UPS",
    )


def _qty(tenant, sku, kind):
    location = ledger_service.get_location(tenant.id, kind)
    return ledger_service.current_quantity(tenant.id, sku.id, location.id)


class TestCreateAsn:

    def test_creates_lines(self, db_session, asn):
        assert asn.status == "not_received"
        assert sorted(line.expected_qty for line in asn.lines) == [2, 5]

    def test_duplicate_number(self, db_session, tenant_a, sku_a, asn):
        with pytest.raises(ConflictError):
            receiving_service.create_asn(
                client_id=tenant_a.id, asn_number="ASN-1001", lines=[{"sku_id": sku_a.id, "expected_qty": 1}]
            )

    def test_repeated_sku_rejected(self, db_session, tenant_a, sku_a):
        with pytest.raises(ValidationError):
            receiving_service.create_asn(
                client_id=tenant_a.id,
                asn_number="ASN-2",
                lines=[{"sku_id": sku_a.id, "expected_qty": 1}, {"sku_id": sku_a.id, "expected_qty": 2}],
            )

    def test_foreign_sku_rejected(self, db_session, tenant_a, sku_b):
        with pytest.raises(ValidationError):
            receiving_service.create_asn(
                client_id=tenant_a.id, asn_number="ASN-3", lines=[{"sku_id": sku_b.id, "expected_qty": 1}]
            )

    def test_needs_lines(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            receiving_service.create_asn(client_id=tenant_a.id, asn_number="ASN-4", lines=[])

    def test_get_is_client_scoped(self, db_session, tenant_b, asn):
        with pytest.raises(TenantAccessError):
            receiving_service.get_asn(asn.id, client_id=tenant_b.id)


class TestRecordUnits:

    def test_requires_receiving_status(self, db_session, asn, sku_a):
        with pytest.raises(AsnStateError):
            receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=_units("pass"))

    def test_photo_required_per_unit(self, db_session, asn, sku_a):
        receiving_service.start_receiving(asn.id)
        with pytest.raises(ValidationError):
            receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=[{"condition": "pass"}])

    def test_condition_must_be_known(self, db_session, asn, sku_a):
        receiving_service.start_receiving(asn.id)
        with pytest.raises(ValidationError):
            receiving_service.record_line_receipt(
                asn.id, sku_id=sku_a.id, units=[{"condition": "meh", "photo_path": "x.jpg"}]
            )

    def test_units_accumulate(self, db_session, asn, sku_a):
        receiving_service.start_receiving(asn.id)
        receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=_units("pass", "fail"))
        line = receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=_units("quarantine"))

        assert line.received_qty == 3
        assert line.damaged_qty == 1
        assert line.quarantined_qty == 1
        numbers = [i.unit_number for i in db_session.query(QcInspection).order_by(QcInspection.unit_number)]
        assert numbers == [1, 2, 3]
        assert db_session.query(QcPhoto).filter_by(asn_id=asn.id).count() == 3

    def test_start_twice_rejected(self, db_session, asn):
        receiving_service.start_receiving(asn.id)
        with pytest.raises(InvalidTransitionError):
            receiving_service.start_receiving(asn.id)


class TestCompleteReceiving:

    def test_clean_receipt_completes(self, db_session, tenant_a, asn, sku_a, sku_a2):
        receiving_service.start_receiving(asn.id)
        receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=_units(*["pass"] * 5))
        receiving_service.record_line_receipt(asn.id, sku_id=sku_a2.id, units=_units("pass", "pass"))

        result = receiving_service.complete_receiving(asn.id)

        assert result.status == "completed"
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a.id) == 5
        assert ledger_service.sellable_quantity(tenant_a.id, sku_a2.id) == 2
        assert db_session.query(Discrepancy).count() == 0

        closed = receiving_service.close_asn(asn.id)
        assert closed.status == "closed"
        assert closed.closed_at is not None

    def test_short_and_damaged_receipt_raises_issue(self, db_session, tenant_a, asn, sku_a, sku_a2):
        receiving_service.start_receiving(asn.id)
        receiving_service.record_line_receipt(
            asn.id, sku_id=sku_a.id, units=_units("pass", "pass", "fail", "quarantine")
        )
        receiving_service.record_line_receipt(asn.id, sku_id=sku_a2.id, units=_units("pass", "pass"))

        result = receiving_service.complete_receiving(asn.id)

        assert result.status == "issue"
        assert _qty(tenant_a, sku_a, LocationKind.AVAILABLE) == 2
        assert _qty(tenant_a, sku_a, LocationKind.DAMAGED) == 1
        assert _qty(tenant_a, sku_a, LocationKind.QUARANTINE) == 1

        by_type = {
            d.discrepancy_type: d
            for d in db_session.query(Discrepancy).filter_by(asn_id=asn.id, sku_id=sku_a.id)
        }
        assert set(by_type) == {"missing", "damaged", "quarantined"}
        assert by_type["missing"].quantity == 1
        assert by_type["damaged"].quantity == 1
        assert by_type["damaged"].qc_photo_urls == ["client-1/asn/unit-3.jpg"]
        assert all(d.status == "pending" and d.source_type == "receiving" for d in by_type.values())

    def test_receipts_are_tagged_with_line(self, db_session, asn, sku_a, sku_a2):
        receiving_service.start_receiving(asn.id)
        line = receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=_units("pass"))
        receiving_service.complete_receiving(asn.id)

        entry = db_session.query(InventoryLedgerEntry).filter_by(sku_id=sku_a.id).one()
        assert entry.transaction_type == "RECEIPT"
        assert entry.source_type == "asn_line"
        assert entry.source_ref == str(line.id)

    def test_issue_asn_cannot_close_normally(self, db_session, asn, sku_a):
        receiving_service.start_receiving(asn.id)
        receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=_units("pass"))
        receiving_service.complete_receiving(asn.id)

        with pytest.raises(AsnStateError):
            receiving_service.close_asn(asn.id)

    def test_admin_resolve_closes_issue(self, db_session, admin_user, asn, sku_a):
        receiving_service.start_receiving(asn.id)
        receiving_service.record_line_receipt(asn.id, sku_id=sku_a.id, units=_units("pass"))
        receiving_service.complete_receiving(asn.id)

        resolved = receiving_service.resolve_asn(
            asn.id, user_id=admin_user.id, resolution_notes="Carrier claim filed"
        )
        assert resolved.status == "closed"
        assert resolved.resolved_by == admin_user.id
        assert "Carrier claim filed" in resolved.notes

    def test_resolve_requires_notes(self, db_session, admin_user, asn):
        with pytest.raises(ValidationError):
            receiving_service.resolve_asn(asn.id, user_id=admin_user.id, resolution_notes="")

    def test_resolve_only_from_issue(self, db_session, admin_user, asn):
        with pytest.raises(AsnStateError):
            receiving_service.resolve_asn(asn.id, user_id=admin_user.id, resolution_notes="n/a")

    def test_expected_asn_count(self, db_session, tenant_a, asn):
        assert receiving_service.expected_asn_count(client_id=tenant_a.id) == 1
        receiving_service.start_receiving(asn.id)
        assert receiving_service.expected_asn_count(client_id=tenant_a.id) == 0
