from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AsnHeader(db.Model):
    """
    Advance Shipment Notice: a client's declaration of an inbound shipment.

    STATUS: not_received -> receiving -> {completed | issue} -> closed
    (transition table in state_machines). resolved_* is only set by the admin
    issue -> closed path.
    """
    __tablename__ = "asn_headers"
    __table_args__ = (
        db.UniqueConstraint("client_id", "asn_number", name="uq_asn_headers_client_number"),
        db.Index("ix_asn_headers_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    asn_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="not_received")

    tracking_number = db.Column(db.String(128), nullable=True)
    carrier = db.Column(db.String(64), nullable=True)
    eta = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    lines = db.relationship("AsnLine", backref="asn", lazy=True, order_by="AsnLine.id")

    def to_dict(self, *, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "asn_number": self.asn_number,
            "status": self.status,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "eta": to_utc_z(self.eta) if self.eta else None,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "notes": self.notes,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class AsnLine(db.Model):
    """Expected SKU + quantity on an ASN, with the counted results once received."""
    __tablename__ = "asn_lines"
    __table_args__ = (
        db.UniqueConstraint("asn_id", "sku_id", name="uq_asn_lines_asn_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    asn_id = db.Column(db.Integer, db.ForeignKey("asn_headers.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    expected_qty = db.Column(db.Integer, nullable=False)
    received_qty = db.Column(db.Integer, nullable=True)
    damaged_qty = db.Column(db.Integer, nullable=False, default=0)
    quarantined_qty = db.Column(db.Integer, nullable=False, default=0)

    inspections = db.relationship(
        "QcInspection",
        backref="asn_line",
        lazy=True,
        order_by="QcInspection.unit_number",
    )

    @property
    def variance(self) -> int:
        """received - expected; 0 until counted."""
        if self.received_qty is None:
            return 0
        return self.received_qty - self.expected_qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "asn_id": self.asn_id,
            "sku_id": self.sku_id,
            "expected_qty": self.expected_qty,
            "received_qty": self.received_qty,
            "damaged_qty": self.damaged_qty,
            "quarantined_qty": self.quarantined_qty,
            "variance": self.variance,
        }


class QcInspection(db.Model):
    """One received unit's condition outcome and its photograph."""
    __tablename__ = "qc_inspections"
    __table_args__ = (
        db.UniqueConstraint("asn_line_id", "unit_number", name="uq_qc_inspections_line_unit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    asn_line_id = db.Column(db.Integer, db.ForeignKey("asn_lines.id"), nullable=False, index=True)
    unit_number = db.Column(db.Integer, nullable=False)

    # pass, fail, quarantine
    outcome = db.Column(db.String(16), nullable=False)

    # Photo rows are swept after retention; the inspection outlives them
    photo_id = db.Column(db.Integer, db.ForeignKey("qc_photos.id", ondelete="SET NULL"), nullable=True)

    inspected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "asn_line_id": self.asn_line_id,
            "unit_number": self.unit_number,
            "outcome": self.outcome,
            "photo_id": self.photo_id,
            "inspected_by": self.inspected_by,
            "created_at": to_utc_z(self.created_at),
        }


class QcPhoto(db.Model):
    """
    Photo evidence for receiving or returns QC.

    RETENTION: hard-deleted (storage object + row) once older than
    QC_PHOTO_RETENTION_DAYS by the scheduled sweep.
    """
    __tablename__ = "qc_photos"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    file_path = db.Column(db.String(512), nullable=False)

    asn_id = db.Column(db.Integer, db.ForeignKey("asn_headers.id"), nullable=True, index=True)
    asn_line_id = db.Column(db.Integer, db.ForeignKey("asn_lines.id"), nullable=True)
    return_line_id = db.Column(db.Integer, db.ForeignKey("return_receipt_lines.id"), nullable=True, index=True)

    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "file_path": self.file_path,
            "asn_id": self.asn_id,
            "asn_line_id": self.asn_line_id,
            "return_line_id": self.return_line_id,
            "created_at": to_utc_z(self.created_at),
        }
