# Overview: Service-layer operations for client SKUs; uniqueness and soft/hard deletion.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Sku,
    SkuAlias,
    InventoryLedgerEntry,
    AsnLine,
    Discrepancy,
    ReturnReceiptLine,
    OutboundShipmentLine,
    ReturnInspectionCriteria,
)
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, require_str, optional_str


class DuplicateSkuError(ConflictError):
    """Raised when (client_id, client_sku) already exists among non-deleted SKUs."""


STATUS_ACTIVE = "active"
STATUS_DELETED = "deleted"


def create_sku(
    *,
    client_id: int,
    client_sku: str,
    upc: str | None = None,
    fnsku: str | None = None,
    title: str | None = None,
    notes: str | None = None,
) -> Sku:
    client_sku = require_str(client_sku, "client_sku", max_length=64)

    existing = (
        db.session.query(Sku)
        .filter_by(client_id=client_id, client_sku=client_sku, status=STATUS_ACTIVE)
        .first()
    )
    if existing:
        raise DuplicateSkuError(f"SKU '{client_sku}' already exists for this client")

    sku = Sku(
        client_id=client_id,
        client_sku=client_sku,
        upc=optional_str(upc, max_length=32),
        fnsku=optional_str(fnsku, max_length=32),
        title=optional_str(title, max_length=255),
        notes=optional_str(notes),
        status=STATUS_ACTIVE,
    )
    db.session.add(sku)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race with a concurrent create of the same code
        db.session.rollback()
        raise DuplicateSkuError(f"SKU '{client_sku}' already exists for this client")
    return sku


def get_sku(sku_id: int, *, client_id: int | None = None) -> Sku:
    query = db.session.query(Sku).filter_by(id=sku_id)
    if client_id is not None:
        query = query.filter_by(client_id=client_id)
    sku = query.first()
    if sku is None:
        raise NotFoundError(f"SKU {sku_id} not found")
    return sku


def list_skus(*, client_id: int, include_deleted: bool = False) -> list[Sku]:
    query = db.session.query(Sku).filter_by(client_id=client_id)
    if not include_deleted:
        query = query.filter(Sku.status == STATUS_ACTIVE)
    return query.order_by(Sku.client_sku.asc(), Sku.id.asc()).all()


def update_sku(
    sku_id: int,
    *,
    client_id: int,
    title: str | None = None,
    upc: str | None = None,
    fnsku: str | None = None,
) -> Sku:
    sku = get_sku(sku_id, client_id=client_id)
    if sku.status == STATUS_DELETED:
        raise ConflictError("Cannot update a deleted SKU")
    if title is not None:
        sku.title = optional_str(title, max_length=255)
    if upc is not None:
        sku.upc = optional_str(upc, max_length=32)
    if fnsku is not None:
        sku.fnsku = optional_str(fnsku, max_length=32)
    db.session.commit()
    return sku


def _has_references(sku_id: int) -> bool:
    """
    True when any workflow or ledger row points at the SKU.

    Ledger history counts even when it nets to zero: ledger rows are never
    deleted, so their SKU must survive.
    """
    referencing = (
        (InventoryLedgerEntry, InventoryLedgerEntry.sku_id),
        (AsnLine, AsnLine.sku_id),
        (Discrepancy, Discrepancy.sku_id),
        (ReturnReceiptLine, ReturnReceiptLine.sku_id),
        (OutboundShipmentLine, OutboundShipmentLine.sku_id),
    )
    for model, column in referencing:
        if db.session.query(model.id).filter(column == sku_id).first() is not None:
            return True
    return False


def delete_sku(sku_id: int, *, client_id: int) -> str:
    """
    Delete a SKU.

    Returns "soft" when references exist (status -> deleted, row retained) or
    "hard" when the row and its aliases are removed.
    """
    sku = get_sku(sku_id, client_id=client_id)
    if sku.status == STATUS_DELETED:
        return "soft"

    if _has_references(sku.id):
        sku.status = STATUS_DELETED
        sku.deleted_at = utcnow()
        db.session.commit()
        return "soft"

    db.session.query(SkuAlias).filter_by(sku_id=sku.id).delete(synchronize_session=False)
    db.session.query(ReturnInspectionCriteria).filter_by(sku_id=sku.id).delete(synchronize_session=False)
    db.session.delete(sku)
    db.session.commit()
    return "hard"
