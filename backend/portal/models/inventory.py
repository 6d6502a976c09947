from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryLedgerEntry(db.Model):
    """
    Immutable quantity delta for a (client, SKU, location).

    APPEND-ONLY: rows are never updated or deleted. Quantity on hand is
    SUM(qty_delta); corrections are new compensating rows.
    """
    __tablename__ = "inventory_ledger"
    __table_args__ = (
        db.Index("ix_inventory_ledger_client_sku_location", "client_id", "sku_id", "location_id"),
        db.Index("ix_inventory_ledger_source", "source_type", "source_ref"),
        db.CheckConstraint("qty_delta <> 0", name="ck_inventory_ledger_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    qty_delta = db.Column(db.Integer, nullable=False)

    # RECEIPT, SHIPMENT, ADJUSTMENT_PLUS, ADJUSTMENT_MINUS, RETURN_RESTOCK, DAMAGE_REMOVAL
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    reason_code = db.Column(db.String(64), nullable=True)

    # What produced the row: asn_line, return_line, discrepancy, outbound_shipment, ...
    source_type = db.Column(db.String(48), nullable=True)
    source_ref = db.Column(db.String(64), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "sku_id": self.sku_id,
            "location_id": self.location_id,
            "qty_delta": self.qty_delta,
            "transaction_type": self.transaction_type,
            "reason_code": self.reason_code,
            "source_type": self.source_type,
            "source_ref": self.source_ref,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class OutboundShipment(db.Model):
    """
    Outbound order shipment.

    pending -> shipped -> cancelled. Cancelling a shipped shipment restores its
    lines to the ledger with compensating entries.
    """
    __tablename__ = "outbound_shipments"
    __table_args__ = (
        db.UniqueConstraint("client_id", "shipment_number", name="uq_outbound_shipments_client_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    shipment_number = db.Column(db.String(64), nullable=False)

    # pending, shipped, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    carrier = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    lines = db.relationship(
        "OutboundShipmentLine",
        backref="shipment",
        lazy=True,
        order_by="OutboundShipmentLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "shipment_number": self.shipment_number,
            "status": self.status,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "created_at": to_utc_z(self.created_at),
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "lines": [line.to_dict() for line in self.lines],
        }


class OutboundShipmentLine(db.Model):
    __tablename__ = "outbound_shipment_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey("outbound_shipments.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shipment_id": self.shipment_id,
            "sku_id": self.sku_id,
            "quantity": self.quantity,
        }
