from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Discrepancy(db.Model):
    """
    Damaged / missing / quarantined item awaiting a client decision.

    Raised by receiving (asn_id set) or returns processing (return_line_id set).
    Separate rows per type; never merged, never deleted.

    STATUS: pending -> submitted -> processed -> closed, closed -> pending (reopen).
    """
    __tablename__ = "discrepancies"
    __table_args__ = (
        db.Index("ix_discrepancies_client_status", "client_id", "status"),
        db.Index("ix_discrepancies_asn_sku", "asn_id", "sku_id"),
        db.CheckConstraint("quantity > 0", name="ck_discrepancies_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)
    asn_id = db.Column(db.Integer, db.ForeignKey("asn_headers.id"), nullable=True)
    return_line_id = db.Column(db.Integer, db.ForeignKey("return_receipt_lines.id"), nullable=True)

    # damaged, missing, quarantined
    discrepancy_type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    # receiving, return
    source_type = db.Column(db.String(16), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending")
    decision = db.Column(db.String(32), nullable=True)

    client_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    admin_close_notes = db.Column(db.Text, nullable=True)

    qc_photo_urls = db.Column(db.JSON, nullable=False, default=list)

    reopened_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    admin_closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_closed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        from ..state_machines import DISCREPANCY_LABELS

        return {
            "id": self.id,
            "client_id": self.client_id,
            "sku_id": self.sku_id,
            "asn_id": self.asn_id,
            "return_line_id": self.return_line_id,
            "discrepancy_type": self.discrepancy_type,
            "quantity": self.quantity,
            "source_type": self.source_type,
            "status": self.status,
            "status_label": DISCREPANCY_LABELS.get(self.status, self.status),
            "decision": self.decision,
            "client_notes": self.client_notes,
            "admin_notes": self.admin_notes,
            "admin_close_notes": self.admin_close_notes,
            "qc_photo_urls": list(self.qc_photo_urls or []),
            "reopened_count": self.reopened_count,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "admin_closed_at": to_utc_z(self.admin_closed_at) if self.admin_closed_at else None,
            "admin_closed_by": self.admin_closed_by,
        }
