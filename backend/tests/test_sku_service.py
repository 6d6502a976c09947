# Overview: Pytest coverage for SKU uniqueness and soft/hard deletion.

import pytest

from portal.models import Sku, SkuAlias
from portal.services import alias_service, ledger_service, sku_service
from portal.services.sku_service import DuplicateSkuError
from portal.state_machines import LedgerTransactionType, LocationKind
from portal.validation import ConflictError, NotFoundError, ValidationError


class TestCreateSku:
    """(client_id, client_sku) is unique among active SKUs."""

    def test_create(self, db_session, tenant_a):
        sku = sku_service.create_sku(client_id=tenant_a.id, client_sku=" HAT-01 ", title="Cap")
        assert sku.id is not None
        assert sku.client_sku == "HAT-01"
        assert sku.status == "active"

    def test_duplicate_in_same_client(self, db_session, tenant_a, sku_a):
        with pytest.raises(DuplicateSkuError):
            sku_service.create_sku(client_id=tenant_a.id, client_sku=sku_a.client_sku)

    def test_same_code_in_other_client(self, db_session, tenant_b, sku_a):
        sku = sku_service.create_sku(client_id=tenant_b.id, client_sku=sku_a.client_sku)
        assert sku.client_id == tenant_b.id

    def test_code_required(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            sku_service.create_sku(client_id=tenant_a.id, client_sku="  ")

    def test_deleted_code_can_be_reused(self, db_session, tenant_a, sku_a):
        location = ledger_service.get_location(tenant_a.id, LocationKind.AVAILABLE)
        ledger_service.append_entry(
            client_id=tenant_a.id,
            sku_id=sku_a.id,
            location_id=location.id,
            qty_delta=1,
            transaction_type=LedgerTransactionType.RECEIPT,
        )
        db_session.commit()
        assert sku_service.delete_sku(sku_a.id, client_id=tenant_a.id) == "soft"

        replacement = sku_service.create_sku(client_id=tenant_a.id, client_sku=sku_a.client_sku)
        assert replacement.id != sku_a.id
        assert db_session.query(Sku).filter_by(client_id=tenant_a.id, client_sku=sku_a.client_sku).count() == 2


class TestGetAndUpdate:

    def test_get_is_client_scoped(self, db_session, tenant_b, sku_a):
        with pytest.raises(NotFoundError):
            sku_service.get_sku(sku_a.id, client_id=tenant_b.id)

    def test_update_fields(self, db_session, tenant_a, sku_a):
        sku = sku_service.update_sku(sku_a.id, client_id=tenant_a.id, title="New title", upc="0123456789")
        assert sku.title == "New title"
        assert sku.upc == "0123456789"

    def test_cannot_update_deleted(self, db_session, tenant_a, sku_a):
        sku_a.status = "deleted"
        db_session.commit()
        with pytest.raises(ConflictError):
            sku_service.update_sku(sku_a.id, client_id=tenant_a.id, title="x")

    def test_list_hides_deleted(self, db_session, tenant_a, sku_a, sku_a2):
        sku_a2.status = "deleted"
        db_session.commit()
        assert [s.id for s in sku_service.list_skus(client_id=tenant_a.id)] == [sku_a.id]
        assert len(sku_service.list_skus(client_id=tenant_a.id, include_deleted=True)) == 2


class TestDeleteSku:
    """Hard delete only when nothing references the SKU."""

    def test_hard_delete_without_references(self, db_session, tenant_a, sku_a):
        alias_service.upsert_alias(sku_id=sku_a.id, alias_type=alias_service.ALIAS_VARIANT, alias_value="111")

        assert sku_service.delete_sku(sku_a.id, client_id=tenant_a.id) == "hard"
        assert db_session.query(Sku).filter_by(id=sku_a.id).first() is None
        assert db_session.query(SkuAlias).count() == 0

    def test_soft_delete_with_net_zero_history(self, db_session, tenant_a, sku_a):
        location = ledger_service.get_location(tenant_a.id, LocationKind.AVAILABLE)
        for delta, tx_type in ((3, LedgerTransactionType.RECEIPT), (-3, LedgerTransactionType.SHIPMENT)):
            ledger_service.append_entry(
                client_id=tenant_a.id,
                sku_id=sku_a.id,
                location_id=location.id,
                qty_delta=delta,
                transaction_type=tx_type,
            )
        db_session.commit()

        assert sku_service.delete_sku(sku_a.id, client_id=tenant_a.id) == "soft"
        sku = db_session.get(Sku, sku_a.id)
        assert sku.status == "deleted"
        assert sku.deleted_at is not None

    def test_delete_is_idempotent_for_deleted(self, db_session, tenant_a, sku_a):
        sku_a.status = "deleted"
        db_session.commit()
        assert sku_service.delete_sku(sku_a.id, client_id=tenant_a.id) == "soft"

    def test_delete_other_clients_sku(self, db_session, tenant_a, sku_b):
        with pytest.raises(NotFoundError):
            sku_service.delete_sku(sku_b.id, client_id=tenant_a.id)
