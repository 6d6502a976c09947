from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Client(db.Model):
    """
    Multi-tenant root: every tenant of the 3PL is a Client.

    WHY: SKUs, ASNs, ledger rows, returns, and store connections all belong to
    exactly one client. No data may cross client boundaries.

    LIFECYCLE:
    - Created by admin onboarding (with one location per LocationKind)
    - Soft-disabled via status ("inactive"); never hard-deleted while referenced
    """
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    # pending, active, inactive
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    contact_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "status": self.status,
            "contact_email": self.contact_email,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """
    Warehouse location holding a client's stock.

    kind decides how the ledger treats the quantity:
    - available:  sellable stock, mirrored to the commerce platform
    - damaged:    held out of the sellable pool pending a client decision
    - quarantine: compliance or recall hold
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("client_id", "code", name="uq_locations_client_code"),
        db.Index("ix_locations_client_kind", "client_id", "kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    client = db.relationship("Client", backref=db.backref("locations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "code": self.code,
            "name": self.name,
            "kind": self.kind,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
