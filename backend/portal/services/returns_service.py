# Overview: Returns processing pipeline and idempotent storage of platform return events.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    QcPhoto,
    ReturnInspectionCriteria,
    ReturnReceipt,
    ReturnReceiptLine,
    ShopifyReturn,
    Sku,
)
from ..state_machines import (
    DiscrepancySource,
    DiscrepancyType,
    LedgerTransactionType,
    LocationKind,
    ReturnLineStage,
    require_transition,
)
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    TenantAccessError,
    ValidationError,
    optional_str,
    require_int,
)
from . import alias_service, discrepancy_service, ledger_service, oauth_service, qc_photo_service
from .concurrency import run_with_retry
from .shopify_client import ShopifyClient
from .webhook_adapters import ReturnEvent
"""
Returns Processing

LINE STAGES: received -> qc_photographed -> inspected -> {resellable | damaged}
-> final_disposition. inspected -> inspected is the only backward-looking
edge (re-inspection before routing).

- qc_photographed requires at least one photo on the line.
- Inspection checks come from the client's per-SKU criteria when configured,
  else DEFAULT_INSPECTION_CHECKS. Any failed check routes the line damaged.
- Routing writes exactly one ledger entry per line:
    resellable: RETURN_RESTOCK +qty at the available location
    damaged:    DAMAGE_REMOVAL +qty at the damaged location, plus a
                return-sourced Discrepancy for admin disposition
  ledger_entry_id is unique, so a second routing attempt cannot add a second
  effect.

PLATFORM RETURNS (webhooks):
- Upserted on (client_id, shopify_return_id). Line items are resolved and
  stored once; redeliveries only change status, and only when it differs.
- Out-of-order deliveries never move a return back to "requested".
"""


DEFAULT_INSPECTION_CHECKS = (
    "physical_damage",
    "missing_parts",
    "packaging_integrity",
    "functionality",
)

# Later platform states outrank earlier ones; a lower-ranked status never overwrites
_RETURN_STATUS_RANK = {
    "requested": 0,
    "approved": 1,
    "declined": 1,
    "received": 2,
}


class ReturnStateError(ConflictError):
    """Raised when a return line operation does not fit its stage."""


# =============================================================================
# Inspection criteria
# =============================================================================

def set_inspection_criteria(*, client_id: int, sku_id: int, checks: list[str]) -> ReturnInspectionCriteria:
    cleaned = []
    for check in checks or []:
        name = str(check).strip().lower().replace(" ", "_")
        if name and name not in cleaned:
            cleaned.append(name)
    if not cleaned:
        raise ValidationError("At least one inspection check is required")

    if db.session.query(Sku.id).filter_by(id=sku_id, client_id=client_id).first() is None:
        raise NotFoundError(f"SKU {sku_id} not found for this client")

    criteria = db.session.query(ReturnInspectionCriteria).filter_by(client_id=client_id, sku_id=sku_id).first()
    if criteria is None:
        criteria = ReturnInspectionCriteria(client_id=client_id, sku_id=sku_id, checks=cleaned)
        db.session.add(criteria)
    else:
        criteria.checks = cleaned
    db.session.commit()
    return criteria


def inspection_checks_for(client_id: int, sku_id: int) -> tuple[list[str], str]:
    """(checks, source) where source is "client" or "default"."""
    criteria = db.session.query(ReturnInspectionCriteria).filter_by(client_id=client_id, sku_id=sku_id).first()
    if criteria is not None and criteria.checks:
        return list(criteria.checks), "client"
    return list(DEFAULT_INSPECTION_CHECKS), "default"


# =============================================================================
# Warehouse pipeline
# =============================================================================

def get_receipt(receipt_id: int, *, client_id: int | None = None) -> ReturnReceipt:
    receipt = db.session.query(ReturnReceipt).filter_by(id=receipt_id).first()
    if receipt is None:
        raise NotFoundError(f"Return receipt {receipt_id} not found")
    if client_id is not None and receipt.client_id != client_id:
        raise TenantAccessError("Return receipt belongs to another client")
    return receipt


def get_line(line_id: int, *, client_id: int | None = None) -> ReturnReceiptLine:
    line = db.session.query(ReturnReceiptLine).filter_by(id=line_id).first()
    if line is None:
        raise NotFoundError(f"Return line {line_id} not found")
    if client_id is not None and line.receipt.client_id != client_id:
        raise TenantAccessError("Return line belongs to another client")
    return line


def list_receipts(*, client_id: int | None = None, limit: int = 100, offset: int = 0) -> tuple[list[ReturnReceipt], int]:
    query = db.session.query(ReturnReceipt)
    if client_id is not None:
        query = query.filter(ReturnReceipt.client_id == client_id)
    total = query.count()
    rows = query.order_by(ReturnReceipt.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def _expected_from_platform(shopify_return: ShopifyReturn | None, sku_id: int) -> int:
    if shopify_return is None:
        return 0
    return sum(
        int(item.get("quantity") or 0)
        for item in (shopify_return.line_items or [])
        if item.get("sku_id") == sku_id
    )


def _add_line(receipt: ReturnReceipt, shopify_return: ShopifyReturn | None, raw: dict) -> ReturnReceiptLine:
    sku_id = require_int(raw.get("sku_id"), "sku_id", minimum=1)
    received_qty = require_int(raw.get("received_qty"), "received_qty", minimum=1)
    if db.session.query(Sku.id).filter_by(id=sku_id, client_id=receipt.client_id).first() is None:
        raise ValidationError(f"SKU {sku_id} not found for this client")

    if raw.get("expected_qty") is not None:
        expected_qty = require_int(raw.get("expected_qty"), "expected_qty", minimum=0)
    else:
        expected_qty = _expected_from_platform(shopify_return, sku_id)

    line = ReturnReceiptLine(
        receipt_id=receipt.id,
        sku_id=sku_id,
        expected_qty=expected_qty,
        received_qty=received_qty,
        stage=ReturnLineStage.RECEIVED.value,
    )
    db.session.add(line)
    db.session.flush()
    if expected_qty and expected_qty != received_qty:
        current_app.logger.warning(
            "Return receipt %s line %s: received %s, manifest says %s",
            receipt.id, line.id, received_qty, expected_qty,
        )
    return line


def create_return_receipt(
    *,
    client_id: int,
    lines: list[dict] | None = None,
    shopify_return_id: int | None = None,
    reference: str | None = None,
    user_id: int | None = None,
) -> ReturnReceipt:
    """
    Log a returned parcel at the dock.

    lines: [{"sku_id": int, "received_qty": int, "expected_qty": int?}, ...]
    When linked to a stored platform return, expected_qty defaults to the
    manifest quantity for the SKU.
    """
    shopify_return = None
    if shopify_return_id is not None:
        shopify_return = db.session.query(ShopifyReturn).filter_by(id=shopify_return_id).first()
        if shopify_return is None or shopify_return.client_id != client_id:
            raise NotFoundError(f"Platform return {shopify_return_id} not found for this client")

    receipt = ReturnReceipt(
        client_id=client_id,
        shopify_return_id=shopify_return_id,
        reference=optional_str(reference, max_length=128)
        or (shopify_return.order_number if shopify_return else None),
        received_by=user_id,
    )
    db.session.add(receipt)
    db.session.flush()

    try:
        for raw in lines or []:
            _add_line(receipt, shopify_return, raw)
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise

    db.session.commit()
    return receipt


def receive_line(
    receipt_id: int,
    *,
    sku_id: int,
    received_qty: int,
    expected_qty: int | None = None,
    client_id: int | None = None,
) -> ReturnReceiptLine:
    receipt = get_receipt(receipt_id, client_id=client_id)
    shopify_return = (
        db.session.query(ShopifyReturn).filter_by(id=receipt.shopify_return_id).first()
        if receipt.shopify_return_id
        else None
    )
    try:
        line = _add_line(
            receipt,
            shopify_return,
            {"sku_id": sku_id, "received_qty": received_qty, "expected_qty": expected_qty},
        )
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise
    db.session.commit()
    return line


def _photo_count(line: ReturnReceiptLine) -> int:
    return int(
        db.session.query(func.count(QcPhoto.id)).filter(QcPhoto.return_line_id == line.id).scalar() or 0
    )


def attach_line_photo(line_id: int, *, file_path: str, user_id: int | None = None) -> ReturnReceiptLine:
    """Attach a QC photo; the first photo moves the line to qc_photographed."""
    def _op():
        line = get_line(line_id)
        if line.stage not in (
            ReturnLineStage.RECEIVED.value,
            ReturnLineStage.QC_PHOTOGRAPHED.value,
            ReturnLineStage.INSPECTED.value,
        ):
            raise ReturnStateError(f"Cannot add photos to a line in stage {line.stage}")

        qc_photo_service.register_photo(
            client_id=line.receipt.client_id,
            file_path=file_path,
            return_line_id=line.id,
            uploaded_by=user_id,
        )
        if line.stage == ReturnLineStage.RECEIVED.value:
            require_transition("return_line", line.stage, ReturnLineStage.QC_PHOTOGRAPHED)
            line.stage = ReturnLineStage.QC_PHOTOGRAPHED.value
        db.session.commit()
        return line

    return run_with_retry(_op)


def inspect_line(
    line_id: int,
    *,
    results: dict,
    notes: str | None = None,
    user_id: int | None = None,
) -> ReturnReceiptLine:
    """
    Record inspection results (qc_photographed -> inspected, or re-inspect).

    results: {check_name: True (passed) | False (failed)} covering every check
    that applies to the SKU.
    """
    if not isinstance(results, dict):
        raise ValidationError("results must be an object of check -> passed")

    def _op():
        line = get_line(line_id)
        require_transition("return_line", line.stage, ReturnLineStage.INSPECTED)
        if _photo_count(line) < 1:
            raise ReturnStateError("At least one QC photo is required before inspection")

        checks, source = inspection_checks_for(line.receipt.client_id, line.sku_id)
        missing = [check for check in checks if check not in results]
        if missing:
            raise ValidationError(f"Missing inspection results for: {', '.join(missing)}")
        findings = {}
        for check in checks:
            if not isinstance(results[check], bool):
                raise ValidationError(f"Result for {check} must be true or false")
            findings[check] = results[check]

        line.findings = findings
        line.criteria_source = source
        line.inspection_notes = optional_str(notes, max_length=4000)
        line.inspected_at = utcnow()
        line.stage = ReturnLineStage.INSPECTED.value
        db.session.commit()
        return line

    return run_with_retry(_op)


def _photo_paths(line: ReturnReceiptLine) -> list[str]:
    rows = (
        db.session.query(QcPhoto.file_path)
        .filter(QcPhoto.return_line_id == line.id)
        .order_by(QcPhoto.id.asc())
        .all()
    )
    return [row[0] for row in rows]


def route_line(line_id: int, *, user_id: int | None = None) -> ReturnReceiptLine:
    """
    Sort an inspected line to resellable or damaged and write its single
    ledger effect.
    """
    def _op():
        line = get_line(line_id)
        if line.ledger_entry_id is not None:
            raise ReturnStateError("Return line has already been routed")
        if line.stage != ReturnLineStage.INSPECTED.value:
            raise ReturnStateError(f"Only inspected lines can be routed (stage {line.stage})")

        client_id = line.receipt.client_id
        resellable = all((line.findings or {}).values())

        if resellable:
            target = ReturnLineStage.RESELLABLE
            location = ledger_service.get_location(client_id, LocationKind.AVAILABLE)
            tx_type = LedgerTransactionType.RETURN_RESTOCK
        else:
            target = ReturnLineStage.DAMAGED
            location = ledger_service.get_location(client_id, LocationKind.DAMAGED)
            tx_type = LedgerTransactionType.DAMAGE_REMOVAL
        require_transition("return_line", line.stage, target)

        entry = ledger_service.append_entry(
            client_id=client_id,
            sku_id=line.sku_id,
            location_id=location.id,
            qty_delta=line.received_qty,
            transaction_type=tx_type,
            reason_code=f"return_{target.value}",
            source_type="return_line",
            source_ref=line.id,
            created_by=user_id,
        )
        line.ledger_entry_id = entry.id

        if target == ReturnLineStage.DAMAGED:
            failed = sorted(check for check, passed in (line.findings or {}).items() if not passed)
            discrepancy = discrepancy_service.create_discrepancy(
                client_id=client_id,
                sku_id=line.sku_id,
                discrepancy_type=DiscrepancyType.DAMAGED,
                quantity=line.received_qty,
                source_type=DiscrepancySource.RETURN,
                return_line_id=line.id,
                qc_photo_urls=_photo_paths(line),
                admin_notes=f"Failed return inspection: {', '.join(failed)}",
            )
            line.discrepancy_id = discrepancy.id

        line.stage = target.value
        line.routed_at = utcnow()
        db.session.commit()
        return line

    try:
        return run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        raise ReturnStateError("Return line has already been routed")
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


def finalize_line(line_id: int, *, user_id: int | None = None) -> ReturnReceiptLine:
    def _op():
        line = get_line(line_id)
        require_transition("return_line", line.stage, ReturnLineStage.FINAL_DISPOSITION)
        line.stage = ReturnLineStage.FINAL_DISPOSITION.value
        line.finalized_at = utcnow()
        db.session.commit()
        return line

    return run_with_retry(_op)


# =============================================================================
# Platform returns (webhook-fed)
# =============================================================================

def _resolved_line_items(client_id: int, event: ReturnEvent) -> list[dict]:
    items = []
    for item in event.line_items:
        resolution = alias_service.resolve(
            client_id,
            variant_id=item.variant_id,
            inventory_item_id=item.inventory_item_id,
            sku=item.sku,
        )
        items.append({
            "shopify_line_item_id": item.line_item_id,
            "variant_id": item.variant_id,
            "inventory_item_id": item.inventory_item_id,
            "sku": item.sku,
            "title": item.title,
            "quantity": item.quantity,
            "return_reason": item.return_reason,
            "sku_id": resolution.sku_id,
            "matched": resolution.matched,
        })
    return items


def upsert_shopify_return(*, client_id: int, event: ReturnEvent) -> tuple[ShopifyReturn, str]:
    """
    Store a platform return at most once.

    Returns (row, action) where action is "created", "status_updated" or
    "unchanged". Flushes, does not commit: the webhook transaction owns it.
    """
    existing = (
        db.session.query(ShopifyReturn)
        .filter_by(client_id=client_id, shopify_return_id=event.return_id)
        .first()
    )
    now = utcnow()

    if existing is None:
        row = ShopifyReturn(
            client_id=client_id,
            shopify_return_id=event.return_id,
            shopify_order_id=event.order_id,
            order_number=event.order_number,
            status=event.status,
            return_reason=event.reason,
            line_items=_resolved_line_items(client_id, event),
            expected_qty=event.expected_qty,
            created_at_shopify=event.created_at,
            synced_at=now,
        )
        db.session.add(row)
        db.session.flush()
        return row, "created"

    if existing.status == event.status:
        return existing, "unchanged"

    if _RETURN_STATUS_RANK.get(event.status, 0) < _RETURN_STATUS_RANK.get(existing.status, 0):
        current_app.logger.info(
            "Ignoring out-of-order return status %s for return %s (stored %s)",
            event.status, event.return_id, existing.status,
        )
        return existing, "unchanged"

    existing.status = event.status
    existing.synced_at = now
    db.session.flush()
    return existing, "status_updated"


def list_shopify_returns(
    *,
    client_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[ShopifyReturn], int]:
    query = db.session.query(ShopifyReturn)
    if client_id is not None:
        query = query.filter(ShopifyReturn.client_id == client_id)
    if status:
        query = query.filter(ShopifyReturn.status == status)
    total = query.count()
    rows = query.order_by(ShopifyReturn.id.desc()).offset(offset).limit(limit).all()
    return rows, total


_ACTION_STATUS = {"approve": "approved", "decline": "declined", "close": "received"}


def apply_platform_action(return_id: int, *, action: str, client_id: int | None = None, client=None) -> ShopifyReturn:
    """
    Approve, decline or close a stored return on the platform, then mirror
    the new status locally. A platform failure leaves the local row untouched.
    """
    if action not in _ACTION_STATUS:
        raise ValidationError(f"Invalid return action '{action}'. Must be one of: {', '.join(_ACTION_STATUS)}")

    row = db.session.query(ShopifyReturn).filter_by(id=return_id).first()
    if row is None:
        raise NotFoundError(f"Platform return {return_id} not found")
    if client_id is not None and row.client_id != client_id:
        raise TenantAccessError("Return belongs to another client")

    connection = oauth_service.get_active_connection(row.client_id)
    if connection is None:
        raise NotFoundError("No active store connection")

    owns_client = client is None
    client = client or ShopifyClient.for_connection(connection)
    try:
        client.return_action(row.shopify_return_id, action)
    finally:
        if owns_client:
            client.close()

    status = _ACTION_STATUS[action]
    if _RETURN_STATUS_RANK.get(status, 0) >= _RETURN_STATUS_RANK.get(row.status, 0):
        row.status = status
    row.synced_at = utcnow()
    db.session.commit()
    current_app.logger.info("Return %s %s on platform (client %s)", row.shopify_return_id, action, row.client_id)
    return row
