# Overview: Service-layer operations for outbound shipments; ships and cancels through the ledger.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OutboundShipment, OutboundShipmentLine, Sku
from ..state_machines import LedgerTransactionType, LocationKind
from ..time_utils import utcnow
from ..validation import ValidationError, NotFoundError, ConflictError, require_int, require_str, optional_str
from . import ledger_service
"""
Outbound Shipment Lifecycle

    pending -> shipped -> cancelled
    pending -> cancelled

- Shipping writes one SHIPMENT entry (negative) per line at the client's
  available location. All lines ship or none do. Shipping is refused with
  InsufficientStockError when any SKU's total across the lines exceeds its
  available quantity; the ledger itself does not floor at zero.
- Cancelling a shipped shipment restores every line with a compensating
  ADJUSTMENT_PLUS (reason_code = shipment_cancelled). Cancelling a pending
  shipment touches no stock.
- A cancelled shipment is terminal.
"""


class ShipmentStateError(ConflictError):
    """Shipment is not in a state that allows the requested action."""


def create_shipment(
    *,
    client_id: int,
    shipment_number: str,
    lines: list[dict],
    carrier: str | None = None,
    tracking_number: str | None = None,
) -> OutboundShipment:
    shipment_number = require_str(shipment_number, "shipment_number", max_length=64)
    if not lines:
        raise ValidationError("A shipment needs at least one line")

    shipment = OutboundShipment(
        client_id=client_id,
        shipment_number=shipment_number,
        status="pending",
        carrier=optional_str(carrier, max_length=64),
        tracking_number=optional_str(tracking_number, max_length=128),
    )
    db.session.add(shipment)
    db.session.flush()

    for raw in lines:
        sku_id = require_int(raw.get("sku_id"), "sku_id")
        quantity = require_int(raw.get("quantity"), "quantity", minimum=1)
        sku = db.session.query(Sku).filter_by(id=sku_id, client_id=client_id).first()
        if sku is None:
            db.session.rollback()
            raise NotFoundError(f"SKU {sku_id} not found for client {client_id}")
        db.session.add(OutboundShipmentLine(shipment_id=shipment.id, sku_id=sku_id, quantity=quantity))

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Shipment number '{shipment_number}' already exists")
    return shipment


def get_shipment(shipment_id: int, client_id: int | None = None) -> OutboundShipment:
    query = db.session.query(OutboundShipment).filter_by(id=shipment_id)
    if client_id is not None:
        query = query.filter_by(client_id=client_id)
    shipment = query.first()
    if shipment is None:
        raise NotFoundError("Shipment not found")
    return shipment


def list_shipments(*, client_id: int, status: str | None = None) -> list[OutboundShipment]:
    query = db.session.query(OutboundShipment).filter_by(client_id=client_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(OutboundShipment.id.desc()).all()


def _require_available_stock(shipment: OutboundShipment, location_id: int) -> None:
    requested: dict[int, int] = {}
    for line in shipment.lines:
        requested[line.sku_id] = requested.get(line.sku_id, 0) + line.quantity

    for sku_id, quantity in requested.items():
        on_hand = ledger_service.current_quantity(shipment.client_id, sku_id, location_id)
        if on_hand < quantity:
            raise ledger_service.InsufficientStockError(
                f"Insufficient stock for SKU {sku_id}: on hand {on_hand}, requested {quantity}"
            )


def ship_shipment(shipment_id: int, *, user_id: int | None = None, client_id: int | None = None) -> OutboundShipment:
    shipment = get_shipment(shipment_id, client_id)
    if shipment.status != "pending":
        raise ShipmentStateError(f"Cannot ship a shipment in status '{shipment.status}'")

    location = ledger_service.get_location(shipment.client_id, LocationKind.AVAILABLE)
    _require_available_stock(shipment, location.id)
    try:
        for line in shipment.lines:
            ledger_service.append_entry(
                client_id=shipment.client_id,
                sku_id=line.sku_id,
                location_id=location.id,
                qty_delta=-line.quantity,
                transaction_type=LedgerTransactionType.SHIPMENT,
                reason_code="shipped",
                source_type="outbound_shipment",
                source_ref=shipment.id,
                created_by=user_id,
            )
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise

    shipment.status = "shipped"
    shipment.shipped_at = utcnow()
    db.session.commit()
    return shipment


def cancel_shipment(shipment_id: int, *, user_id: int | None = None, client_id: int | None = None) -> OutboundShipment:
    shipment = get_shipment(shipment_id, client_id)
    if shipment.status == "cancelled":
        raise ShipmentStateError("Shipment is already cancelled")

    if shipment.status == "shipped":
        ledger_service.restore_shipment(shipment, created_by=user_id)

    shipment.status = "cancelled"
    shipment.cancelled_at = utcnow()
    db.session.commit()
    return shipment
