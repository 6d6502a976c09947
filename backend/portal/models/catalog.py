from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Sku(db.Model):
    """
    Client-scoped product identity.

    UNIQUENESS: (client_id, client_sku) is unique among non-deleted SKUs only,
    via a partial unique index. A deleted SKU's code may be reused.

    DELETION:
    - Soft (status -> "deleted") when ledger entries or ASN lines reference it
    - Hard otherwise
    """
    __tablename__ = "skus"
    __table_args__ = (
        db.Index(
            "uq_skus_client_sku_active",
            "client_id",
            "client_sku",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_skus_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    client_sku = db.Column(db.String(64), nullable=False)
    upc = db.Column(db.String(32), nullable=True, index=True)
    fnsku = db.Column(db.String(32), nullable=True)
    title = db.Column(db.String(255), nullable=True)

    # active, deleted
    status = db.Column(db.String(16), nullable=False, default="active")

    # Legacy free-text notes; older syncs wrote "Variant ID: <n>" here
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    client = db.relationship("Client", backref=db.backref("skus", lazy=True))

    def __repr__(self) -> str:
        return f"<Sku id={self.id} client_sku={self.client_sku!r} client_id={self.client_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "client_sku": self.client_sku,
            "upc": self.upc,
            "fnsku": self.fnsku,
            "title": self.title,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }


class SkuAlias(db.Model):
    """
    External platform identifier mapped to an internal SKU.

    client_id is denormalized from the SKU so the database can enforce that a
    given (alias_type, alias_value) maps to at most one SKU per client.
    Aliases are never deleted automatically.
    """
    __tablename__ = "sku_aliases"
    __table_args__ = (
        db.UniqueConstraint("sku_id", "alias_type", "alias_value", name="uq_sku_aliases_sku_type_value"),
        db.UniqueConstraint("client_id", "alias_type", "alias_value", name="uq_sku_aliases_client_type_value"),
        db.Index("ix_sku_aliases_type_value", "alias_type", "alias_value"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    # shopify_variant_id, shopify_inventory_item_id, ...
    alias_type = db.Column(db.String(48), nullable=False)
    alias_value = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sku = db.relationship("Sku", backref=db.backref("aliases", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku_id": self.sku_id,
            "client_id": self.client_id,
            "alias_type": self.alias_type,
            "alias_value": self.alias_value,
            "created_at": to_utc_z(self.created_at),
        }
