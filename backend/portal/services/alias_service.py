# Overview: Maps commerce-platform identifiers to internal SKUs; alias upsert, resolution, and repair.

from __future__ import annotations

import re
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import and_
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import Sku, SkuAlias
from ..validation import ConflictError, NotFoundError, ValidationError
"""
Alias Invariants

- (alias_type, alias_value) maps to at most one SKU per client, and an alias
  value owned by one client is never attached to another client's SKU.
- Aliases are never deleted automatically; stale aliases are tolerated.
- Resolution order: variant alias, inventory-item alias, client_sku equality.
  A miss is non-fatal: the caller gets matched=False and sku_id=None.
"""


ALIAS_VARIANT = "shopify_variant_id"
ALIAS_INVENTORY_ITEM = "shopify_inventory_item_id"
ALIAS_PRODUCT = "shopify_product_id"

ALIAS_TYPES = (ALIAS_VARIANT, ALIAS_INVENTORY_ITEM, ALIAS_PRODUCT)

LEGACY_VARIANT_PATTERN = re.compile(r"Variant ID:\s*(\d+)", re.IGNORECASE)


class AliasConflictError(ConflictError):
    """Raised when an alias value already belongs to another SKU or another client."""


@dataclass(frozen=True)
class ResolutionResult:
    sku_id: int | None
    matched: bool
    matched_by: str | None = None

    def to_dict(self) -> dict:
        return {"sku_id": self.sku_id, "matched": self.matched, "matched_by": self.matched_by}


def normalize_shopify_id(value) -> str | None:
    """
    Canonical numeric string for a platform id.

    Accepts ints, numeric strings and GraphQL GIDs
    ("gid://shopify/ProductVariant/123" -> "123").
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    text = str(value).strip()
    if not text:
        return None
    if text.startswith("gid://"):
        text = text.rsplit("/", 1)[-1]
        # GIDs may carry a query suffix (e.g. "?inventory_item_id=...")
        text = text.split("?", 1)[0]
    return text or None


def _find_alias(client_id: int, alias_type: str, alias_value: str) -> SkuAlias | None:
    return (
        db.session.query(SkuAlias)
        .filter_by(client_id=client_id, alias_type=alias_type, alias_value=alias_value)
        .first()
    )


def _ensure_alias(sku: Sku, alias_type: str, alias_value: str) -> tuple[SkuAlias, bool]:
    """Insert-if-absent without committing. Returns (alias, created)."""
    foreign = (
        db.session.query(SkuAlias)
        .filter(
            SkuAlias.alias_type == alias_type,
            SkuAlias.alias_value == alias_value,
            SkuAlias.client_id != sku.client_id,
        )
        .first()
    )
    if foreign is not None:
        raise AliasConflictError(f"{alias_type} {alias_value} is already mapped for another client")

    existing = _find_alias(sku.client_id, alias_type, alias_value)
    if existing is not None:
        if existing.sku_id != sku.id:
            raise AliasConflictError(f"{alias_type} {alias_value} is already mapped to SKU {existing.sku_id}")
        return existing, False

    alias = SkuAlias(
        sku_id=sku.id,
        client_id=sku.client_id,
        alias_type=alias_type,
        alias_value=alias_value,
    )
    db.session.add(alias)
    db.session.flush()
    return alias, True


def upsert_alias(*, sku_id: int, alias_type: str, alias_value, client_id: int | None = None) -> tuple[SkuAlias, bool]:
    """
    Attach an alias to a SKU, idempotently.

    Raises:
        ValidationError: unknown alias_type or empty value
        NotFoundError: SKU missing (or not owned by client_id when given)
        AliasConflictError: value already mapped elsewhere
    """
    if alias_type not in ALIAS_TYPES:
        raise ValidationError(f"Invalid alias_type '{alias_type}'. Must be one of: {', '.join(ALIAS_TYPES)}")
    normalized = normalize_shopify_id(alias_value)
    if not normalized:
        raise ValidationError("alias_value is required")

    query = db.session.query(Sku).filter_by(id=sku_id)
    if client_id is not None:
        query = query.filter_by(client_id=client_id)
    sku = query.first()
    if sku is None:
        raise NotFoundError(f"SKU {sku_id} not found")

    alias, created = _ensure_alias(sku, alias_type, normalized)
    db.session.commit()
    return alias, created


def _alias_sku_id(client_id: int, alias_type: str, value) -> int | None:
    normalized = normalize_shopify_id(value)
    if not normalized:
        return None
    row = (
        db.session.query(SkuAlias.sku_id)
        .join(Sku, Sku.id == SkuAlias.sku_id)
        .filter(
            SkuAlias.client_id == client_id,
            SkuAlias.alias_type == alias_type,
            SkuAlias.alias_value == normalized,
            Sku.status == "active",
        )
        .first()
    )
    return row[0] if row else None


def resolve(
    client_id: int,
    *,
    variant_id=None,
    inventory_item_id=None,
    sku: str | None = None,
) -> ResolutionResult:
    """Resolve platform identifiers to a client SKU. Never fabricates a SKU."""
    sku_id = _alias_sku_id(client_id, ALIAS_VARIANT, variant_id)
    if sku_id is not None:
        return ResolutionResult(sku_id=sku_id, matched=True, matched_by=ALIAS_VARIANT)

    sku_id = _alias_sku_id(client_id, ALIAS_INVENTORY_ITEM, inventory_item_id)
    if sku_id is not None:
        return ResolutionResult(sku_id=sku_id, matched=True, matched_by=ALIAS_INVENTORY_ITEM)

    client_sku = (sku or "").strip()
    if client_sku:
        row = (
            db.session.query(Sku.id)
            .filter_by(client_id=client_id, client_sku=client_sku, status="active")
            .first()
        )
        if row is not None:
            return ResolutionResult(sku_id=row[0], matched=True, matched_by="client_sku")

    current_app.logger.warning(
        "SKU resolution miss: client_id=%s variant_id=%s inventory_item_id=%s sku=%s",
        client_id,
        variant_id,
        inventory_item_id,
        sku,
    )
    return ResolutionResult(sku_id=None, matched=False)


def backfill_variant_aliases(*, client_id: int | None = None, batch_size: int = 500) -> dict:
    """
    Repair SKUs that have an inventory-item alias but no variant alias.

    Recovers the variant id from legacy "Variant ID: <n>" notes. Idempotent:
    existing aliases are left alone and a re-run inserts nothing.
    """
    variant_alias = aliased(SkuAlias)
    query = (
        db.session.query(Sku)
        .join(SkuAlias, and_(SkuAlias.sku_id == Sku.id, SkuAlias.alias_type == ALIAS_INVENTORY_ITEM))
        .outerjoin(
            variant_alias,
            and_(variant_alias.sku_id == Sku.id, variant_alias.alias_type == ALIAS_VARIANT),
        )
        .filter(variant_alias.id.is_(None))
    )
    if client_id is not None:
        query = query.filter(Sku.client_id == client_id)

    candidates = query.distinct().order_by(Sku.id.asc()).all()
    stats = {"scanned": len(candidates), "recovered": 0, "inserted": 0, "conflicts": 0, "no_variant_in_notes": 0}

    pending = 0
    for sku in candidates:
        match = LEGACY_VARIANT_PATTERN.search(sku.notes or "")
        if not match:
            stats["no_variant_in_notes"] += 1
            continue
        stats["recovered"] += 1
        try:
            _, created = _ensure_alias(sku, ALIAS_VARIANT, match.group(1))
        except AliasConflictError as e:
            current_app.logger.warning("Variant alias backfill skipped SKU %s: %s", sku.id, e)
            stats["conflicts"] += 1
            continue
        if created:
            stats["inserted"] += 1
            pending += 1
        if pending >= batch_size:
            db.session.commit()
            pending = 0

    db.session.commit()
    current_app.logger.info("Variant alias backfill complete: %s", stats)
    return stats


def map_product_variants(*, client_id: int, event) -> dict:
    """
    Attach variant and inventory-item aliases from a product event to the
    client's existing SKUs, matched on client_sku. Flushes, does not commit.

    Unknown SKU codes are logged and skipped; a SKU is never created here.
    """
    stats = {"variants": len(event.variants), "inserted": 0, "unmatched": 0, "conflicts": 0}
    if event.deleted:
        # Aliases are never removed automatically
        return stats

    for variant in event.variants:
        sku = None
        if variant.sku:
            sku = (
                db.session.query(Sku)
                .filter_by(client_id=client_id, client_sku=variant.sku, status="active")
                .first()
            )
        if sku is None:
            stats["unmatched"] += 1
            current_app.logger.warning(
                "Product %s variant %s (sku=%s) has no matching SKU for client %s",
                event.product_id, variant.variant_id, variant.sku, client_id,
            )
            continue

        pairs = [(ALIAS_VARIANT, variant.variant_id)]
        if variant.inventory_item_id:
            pairs.append((ALIAS_INVENTORY_ITEM, variant.inventory_item_id))
        for alias_type, value in pairs:
            try:
                _, created = _ensure_alias(sku, alias_type, value)
            except AliasConflictError as e:
                stats["conflicts"] += 1
                current_app.logger.warning("Alias not recorded for SKU %s: %s", sku.id, e)
                continue
            stats["inserted"] += int(created)
    return stats
