# Overview: Service-layer operations for the inventory ledger; the only writer of quantity deltas.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryLedgerEntry, Location, Sku, OutboundShipment
from ..state_machines import LedgerTransactionType, LocationKind
from ..validation import ValidationError, NotFoundError, ConflictError, require_int
"""
Inventory Ledger Invariants (authoritative)

- Append-only: rows are never updated or deleted. Corrections are new
  compensating rows (ADJUSTMENT_PLUS / ADJUSTMENT_MINUS).
- Quantity for (client, SKU, location) is SUM(qty_delta). Sums commute, so
  concurrent appends from receiving, shipping, returns and compensation never
  conflict with each other.
- Sellable quantity is the sum over the client's "available" locations only.
  This is the number mirrored to the commerce platform.
- Appends are order-independent: the ledger checks each delta against its
  transaction type only, never against the running sum. Stock preconditions
  (e.g. shipping no more than is available) belong to the caller.
- Any entry at an available location enqueues a platform push for the SKU in
  the same DB transaction. The push itself happens later (drain), so a
  platform failure can never roll back a ledger write.
"""


POSITIVE_TYPES = frozenset({
    LedgerTransactionType.RECEIPT.value,
    LedgerTransactionType.ADJUSTMENT_PLUS.value,
    LedgerTransactionType.RETURN_RESTOCK.value,
    LedgerTransactionType.DAMAGE_REMOVAL.value,
})
NEGATIVE_TYPES = frozenset({
    LedgerTransactionType.SHIPMENT.value,
    LedgerTransactionType.ADJUSTMENT_MINUS.value,
})

REASON_SHIPMENT_CANCELLED = "shipment_cancelled"
SOURCE_SHIPMENT_CANCELLED = "outbound_shipment_cancelled"


class InsufficientStockError(ConflictError):
    """Raised by callers whose operation needs more stock than is on hand."""


def get_location(client_id: int, kind: LocationKind | str) -> Location:
    """The client's active location of the given kind."""
    kind_value = kind.value if isinstance(kind, LocationKind) else kind
    location = (
        db.session.query(Location)
        .filter_by(client_id=client_id, kind=kind_value, is_active=True)
        .order_by(Location.id.asc())
        .first()
    )
    if location is None:
        raise NotFoundError(f"Client {client_id} has no active {kind_value} location")
    return location


def ensure_client_locations(client_id: int) -> dict[str, Location]:
    """
    Ensure a client has one location per LocationKind.

    Safe to call repeatedly (idempotent). Flushes, does not commit.
    """
    result = {}
    for kind in LocationKind:
        location = (
            db.session.query(Location)
            .filter_by(client_id=client_id, kind=kind.value)
            .first()
        )
        if location is None:
            location = Location(
                client_id=client_id,
                code=kind.value.upper(),
                name=f"{kind.value.title()} stock",
                kind=kind.value,
                is_active=True,
            )
            db.session.add(location)
        result[kind.value] = location
    db.session.flush()
    return result


def current_quantity(client_id: int, sku_id: int, location_id: int | None = None) -> int:
    """
    SUM(qty_delta) for a client SKU, optionally at one location.

    Computed by a single aggregate query so it sees one consistent snapshot.
    """
    q = db.session.query(
        func.coalesce(func.sum(InventoryLedgerEntry.qty_delta), 0)
    ).filter(
        InventoryLedgerEntry.client_id == client_id,
        InventoryLedgerEntry.sku_id == sku_id,
    )
    if location_id is not None:
        q = q.filter(InventoryLedgerEntry.location_id == location_id)
    return int(q.scalar() or 0)


def sellable_quantity(client_id: int, sku_id: int) -> int:
    """Quantity across the client's available locations."""
    q = (
        db.session.query(func.coalesce(func.sum(InventoryLedgerEntry.qty_delta), 0))
        .join(Location, Location.id == InventoryLedgerEntry.location_id)
        .filter(
            InventoryLedgerEntry.client_id == client_id,
            InventoryLedgerEntry.sku_id == sku_id,
            Location.kind == LocationKind.AVAILABLE.value,
        )
    )
    return int(q.scalar() or 0)


def quantities_by_location(client_id: int, sku_id: int) -> list[dict]:
    rows = (
        db.session.query(
            Location.id,
            Location.code,
            Location.kind,
            func.coalesce(func.sum(InventoryLedgerEntry.qty_delta), 0),
        )
        .join(InventoryLedgerEntry, InventoryLedgerEntry.location_id == Location.id)
        .filter(
            InventoryLedgerEntry.client_id == client_id,
            InventoryLedgerEntry.sku_id == sku_id,
        )
        .group_by(Location.id, Location.code, Location.kind)
        .order_by(Location.id.asc())
        .all()
    )
    return [
        {"location_id": loc_id, "code": code, "kind": kind, "quantity": int(qty)}
        for loc_id, code, kind, qty in rows
    ]


def append_entry(
    *,
    client_id: int,
    sku_id: int,
    location_id: int,
    qty_delta: int,
    transaction_type: LedgerTransactionType | str,
    reason_code: str | None = None,
    source_type: str | None = None,
    source_ref: str | int | None = None,
    created_by: int | None = None,
) -> InventoryLedgerEntry:
    """
    Append one immutable delta row.

    Flushes but does not commit: the caller's transaction owns the entry, so a
    failure anywhere in the triggering operation discards it too.

    Raises:
        ValidationError: bad delta / type, or sign inconsistent with the type
        NotFoundError: SKU or location not found for this client
    """
    tx_type = (
        transaction_type.value
        if isinstance(transaction_type, LedgerTransactionType)
        else str(transaction_type)
    )
    if tx_type not in POSITIVE_TYPES and tx_type not in NEGATIVE_TYPES:
        raise ValidationError(f"Unknown transaction_type '{tx_type}'")

    qty_delta = require_int(qty_delta, "qty_delta")
    if qty_delta == 0:
        raise ValidationError("qty_delta must be non-zero")
    if tx_type in POSITIVE_TYPES and qty_delta < 0:
        raise ValidationError(f"{tx_type} requires a positive qty_delta")
    if tx_type in NEGATIVE_TYPES and qty_delta > 0:
        raise ValidationError(f"{tx_type} requires a negative qty_delta")

    sku = db.session.query(Sku).filter_by(id=sku_id, client_id=client_id).first()
    if sku is None:
        raise NotFoundError(f"SKU {sku_id} not found for client {client_id}")

    location = db.session.query(Location).filter_by(id=location_id, client_id=client_id).first()
    if location is None:
        raise NotFoundError(f"Location {location_id} not found for client {client_id}")

    if tx_type == LedgerTransactionType.DAMAGE_REMOVAL.value and location.kind == LocationKind.AVAILABLE.value:
        raise ValidationError("DAMAGE_REMOVAL must target a non-sellable location")

    entry = InventoryLedgerEntry(
        client_id=client_id,
        sku_id=sku_id,
        location_id=location_id,
        qty_delta=qty_delta,
        transaction_type=tx_type,
        reason_code=reason_code,
        source_type=source_type,
        source_ref=str(source_ref) if source_ref is not None else None,
        created_by=created_by,
    )
    db.session.add(entry)
    db.session.flush()

    if location.kind == LocationKind.AVAILABLE.value:
        from .inventory_sync_service import enqueue_push
        enqueue_push(client_id=client_id, sku_id=sku_id, reason=tx_type.lower())

    return entry


def adjust_inventory(
    *,
    client_id: int,
    sku_id: int,
    qty_delta: int,
    reason_code: str,
    location_kind: str = LocationKind.AVAILABLE.value,
    created_by: int | None = None,
) -> InventoryLedgerEntry:
    """Manual admin correction: ADJUSTMENT_PLUS or ADJUSTMENT_MINUS by sign."""
    qty_delta = require_int(qty_delta, "qty_delta")
    if not reason_code or not str(reason_code).strip():
        raise ValidationError("reason_code is required for adjustments")

    location = get_location(client_id, location_kind)
    tx_type = (
        LedgerTransactionType.ADJUSTMENT_PLUS
        if qty_delta > 0
        else LedgerTransactionType.ADJUSTMENT_MINUS
    )
    entry = append_entry(
        client_id=client_id,
        sku_id=sku_id,
        location_id=location.id,
        qty_delta=qty_delta,
        transaction_type=tx_type,
        reason_code=str(reason_code).strip(),
        source_type="manual_adjustment",
        created_by=created_by,
    )
    db.session.commit()
    return entry


def restore_shipment(shipment: OutboundShipment, *, created_by: int | None = None) -> list[InventoryLedgerEntry]:
    """
    Compensate a cancelled shipment: one ADJUSTMENT_PLUS per shipped line.

    Each entry lands at the available location, which enqueues one platform
    push per affected SKU. Flushes, does not commit.
    """
    location = get_location(shipment.client_id, LocationKind.AVAILABLE)
    entries = []
    for line in shipment.lines:
        entries.append(
            append_entry(
                client_id=shipment.client_id,
                sku_id=line.sku_id,
                location_id=location.id,
                qty_delta=line.quantity,
                transaction_type=LedgerTransactionType.ADJUSTMENT_PLUS,
                reason_code=REASON_SHIPMENT_CANCELLED,
                source_type=SOURCE_SHIPMENT_CANCELLED,
                source_ref=shipment.id,
                created_by=created_by,
            )
        )
    return entries


def list_entries(
    *,
    client_id: int,
    sku_id: int | None = None,
    location_id: int | None = None,
    transaction_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[InventoryLedgerEntry], int]:
    query = db.session.query(InventoryLedgerEntry).filter(InventoryLedgerEntry.client_id == client_id)
    if sku_id is not None:
        query = query.filter(InventoryLedgerEntry.sku_id == sku_id)
    if location_id is not None:
        query = query.filter(InventoryLedgerEntry.location_id == location_id)
    if transaction_type:
        query = query.filter(InventoryLedgerEntry.transaction_type == transaction_type)

    total = query.count()
    entries = (
        query.order_by(InventoryLedgerEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return entries, total
