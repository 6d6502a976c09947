from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ShopifyReturn(db.Model):
    """
    Return as reported by the commerce platform.

    IDEMPOTENCY: upserted on (client_id, shopify_return_id). line_items is
    written once on first delivery; redeliveries may only change status.
    """
    __tablename__ = "shopify_returns"
    __table_args__ = (
        db.UniqueConstraint("client_id", "shopify_return_id", name="uq_shopify_returns_client_return"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    shopify_return_id = db.Column(db.String(64), nullable=False)
    shopify_order_id = db.Column(db.String(64), nullable=True)
    order_number = db.Column(db.String(64), nullable=True)

    # requested, approved, declined, received
    status = db.Column(db.String(16), nullable=False, default="requested")
    return_reason = db.Column(db.Text, nullable=True)

    # [{shopify_line_item_id, variant_id, inventory_item_id, sku, title, quantity, sku_id, matched}]
    line_items = db.Column(db.JSON, nullable=False, default=list)
    expected_qty = db.Column(db.Integer, nullable=False, default=0)

    created_at_shopify = db.Column(db.DateTime(timezone=True), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "shopify_return_id": self.shopify_return_id,
            "shopify_order_id": self.shopify_order_id,
            "order_number": self.order_number,
            "status": self.status,
            "return_reason": self.return_reason,
            "line_items": list(self.line_items or []),
            "expected_qty": self.expected_qty,
            "created_at_shopify": to_utc_z(self.created_at_shopify) if self.created_at_shopify else None,
            "synced_at": to_utc_z(self.synced_at) if self.synced_at else None,
        }


class ReturnReceipt(db.Model):
    """Warehouse-side intake of a returned parcel."""
    __tablename__ = "return_receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    shopify_return_id = db.Column(db.Integer, db.ForeignKey("shopify_returns.id"), nullable=True, index=True)
    reference = db.Column(db.String(128), nullable=True)

    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship("ReturnReceiptLine", backref="receipt", lazy=True, order_by="ReturnReceiptLine.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "shopify_return_id": self.shopify_return_id,
            "reference": self.reference,
            "received_by": self.received_by,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class ReturnReceiptLine(db.Model):
    """
    One SKU on a return receipt, moving through the returns pipeline.

    STAGE: received -> qc_photographed -> inspected -> {resellable | damaged}
    -> final_disposition. ledger_entry_id is set exactly once, by routing.
    """
    __tablename__ = "return_receipt_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("return_receipts.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    expected_qty = db.Column(db.Integer, nullable=False, default=0)
    received_qty = db.Column(db.Integer, nullable=False)

    stage = db.Column(db.String(24), nullable=False, default="received")

    # {check_name: bool passed}
    findings = db.Column(db.JSON, nullable=True)
    # client, default
    criteria_source = db.Column(db.String(16), nullable=True)
    inspection_notes = db.Column(db.Text, nullable=True)

    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("inventory_ledger.id"), nullable=True, unique=True)
    # Discrepancy.return_line_id holds the foreign key
    discrepancy_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    inspected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    routed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    photos = db.relationship("QcPhoto", lazy=True, order_by="QcPhoto.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "sku_id": self.sku_id,
            "expected_qty": self.expected_qty,
            "received_qty": self.received_qty,
            "stage": self.stage,
            "findings": self.findings,
            "criteria_source": self.criteria_source,
            "inspection_notes": self.inspection_notes,
            "ledger_entry_id": self.ledger_entry_id,
            "discrepancy_id": self.discrepancy_id,
            "photo_count": len(self.photos),
            "created_at": to_utc_z(self.created_at),
            "inspected_at": to_utc_z(self.inspected_at) if self.inspected_at else None,
            "routed_at": to_utc_z(self.routed_at) if self.routed_at else None,
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
        }


class ReturnInspectionCriteria(db.Model):
    """Client-configured inspection checks for one SKU; overrides the default protocol."""
    __tablename__ = "return_inspection_criteria"
    __table_args__ = (
        db.UniqueConstraint("client_id", "sku_id", name="uq_return_criteria_client_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False)
    checks = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "sku_id": self.sku_id,
            "checks": list(self.checks or []),
            "created_at": to_utc_z(self.created_at),
        }
