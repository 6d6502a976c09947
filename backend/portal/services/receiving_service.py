# Overview: Inbound receiving against ASNs; per-unit QC, ledger receipts, and discrepancy flagging.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import AsnHeader, AsnLine, QcInspection, QcPhoto, Sku
from ..state_machines import (
    AsnStatus,
    DiscrepancySource,
    DiscrepancyType,
    LedgerTransactionType,
    LocationKind,
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
    require_str,
)
from . import discrepancy_service, ledger_service, qc_photo_service
from .concurrency import run_with_retry
"""
Receiving & QC

ASN STATES: not_received -> receiving -> {completed | issue} -> closed

- Every received unit gets a condition outcome (pass / fail / quarantine)
  and a photo reference.
- complete_receiving writes one RECEIPT per outcome bucket per line, to the
  location whose kind matches the outcome, then raises discrepancies as
  separate rows: missing (received < expected), damaged (fail units),
  quarantined (quarantine units).
- issue when any line's received quantity differs from expected or any unit
  failed / was quarantined; otherwise completed.
- completed -> closed is the normal path (close_asn). issue -> closed is the
  admin manual resolve (resolve_asn), terminal, with resolution notes.
"""


UNIT_PASS = "pass"
UNIT_FAIL = "fail"
UNIT_QUARANTINE = "quarantine"
UNIT_OUTCOMES = (UNIT_PASS, UNIT_FAIL, UNIT_QUARANTINE)

_OUTCOME_LOCATION = {
    UNIT_PASS: LocationKind.AVAILABLE,
    UNIT_FAIL: LocationKind.DAMAGED,
    UNIT_QUARANTINE: LocationKind.QUARANTINE,
}

_OUTCOME_DISCREPANCY = {
    UNIT_FAIL: DiscrepancyType.DAMAGED,
    UNIT_QUARANTINE: DiscrepancyType.QUARANTINED,
}


class AsnStateError(ConflictError):
    """Raised when an ASN operation does not fit the ASN's current status."""


def create_asn(
    *,
    client_id: int,
    asn_number: str,
    lines: list[dict],
    tracking_number: str | None = None,
    carrier: str | None = None,
    eta: datetime | None = None,
    notes: str | None = None,
) -> AsnHeader:
    """
    Create an ASN with its expected lines.

    lines: [{"sku_id": int, "expected_qty": int}, ...]
    """
    asn_number = require_str(asn_number, "asn_number", max_length=64)
    if not lines:
        raise ValidationError("An ASN needs at least one line")

    if db.session.query(AsnHeader.id).filter_by(client_id=client_id, asn_number=asn_number).first():
        raise ConflictError(f"ASN '{asn_number}' already exists for this client")

    asn = AsnHeader(
        client_id=client_id,
        asn_number=asn_number,
        status=AsnStatus.NOT_RECEIVED.value,
        tracking_number=optional_str(tracking_number, max_length=128),
        carrier=optional_str(carrier, max_length=64),
        eta=eta,
        notes=optional_str(notes),
    )
    db.session.add(asn)
    db.session.flush()

    seen = set()
    for raw in lines:
        sku_id = require_int(raw.get("sku_id"), "sku_id", minimum=1)
        expected_qty = require_int(raw.get("expected_qty"), "expected_qty", minimum=1)
        if sku_id in seen:
            db.session.rollback()
            raise ValidationError(f"SKU {sku_id} appears more than once on the ASN")
        seen.add(sku_id)

        sku = db.session.query(Sku).filter_by(id=sku_id, client_id=client_id, status="active").first()
        if sku is None:
            db.session.rollback()
            raise ValidationError(f"SKU {sku_id} not found for this client")

        db.session.add(AsnLine(asn_id=asn.id, sku_id=sku_id, expected_qty=expected_qty))

    db.session.commit()
    return asn


def get_asn(asn_id: int, *, client_id: int | None = None) -> AsnHeader:
    asn = db.session.query(AsnHeader).filter_by(id=asn_id).first()
    if asn is None:
        raise NotFoundError(f"ASN {asn_id} not found")
    if client_id is not None and asn.client_id != client_id:
        raise TenantAccessError("ASN belongs to another client")
    return asn


def list_asns(
    *,
    client_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AsnHeader], int]:
    query = db.session.query(AsnHeader)
    if client_id is not None:
        query = query.filter(AsnHeader.client_id == client_id)
    if status:
        query = query.filter(AsnHeader.status == status)
    total = query.count()
    rows = query.order_by(AsnHeader.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def start_receiving(asn_id: int, *, user_id: int | None = None) -> AsnHeader:
    def _op():
        asn = get_asn(asn_id)
        require_transition("asn", asn.status, AsnStatus.RECEIVING)
        asn.status = AsnStatus.RECEIVING.value
        asn.received_at = utcnow()
        db.session.commit()
        return asn

    return run_with_retry(_op)


def _get_line(asn: AsnHeader, *, line_id: int | None = None, sku_id: int | None = None) -> AsnLine:
    for line in asn.lines:
        if (line_id is not None and line.id == line_id) or (line_id is None and line.sku_id == sku_id):
            return line
    raise NotFoundError("ASN line not found")


def record_line_receipt(
    asn_id: int,
    *,
    units: list[dict],
    line_id: int | None = None,
    sku_id: int | None = None,
    user_id: int | None = None,
) -> AsnLine:
    """
    Record inspected units for one ASN line.

    units: [{"condition": "pass" | "fail" | "quarantine", "photo_path": str}, ...]
    May be called repeatedly while receiving; units accumulate.
    """
    if not units:
        raise ValidationError("At least one unit is required")
    parsed = []
    for index, unit in enumerate(units, start=1):
        condition = unit.get("condition")
        if condition not in UNIT_OUTCOMES:
            raise ValidationError(f"Unit {index}: condition must be one of: {', '.join(UNIT_OUTCOMES)}")
        photo_path = unit.get("photo_path")
        if not photo_path or not str(photo_path).strip():
            raise ValidationError(f"Unit {index}: a photo is required for every received unit")
        parsed.append((condition, str(photo_path).strip()))

    asn = get_asn(asn_id)
    if asn.status != AsnStatus.RECEIVING.value:
        raise AsnStateError(f"Cannot record units on an ASN in status {asn.status}")
    line = _get_line(asn, line_id=line_id, sku_id=sku_id)

    next_unit = (
        db.session.query(func.coalesce(func.max(QcInspection.unit_number), 0))
        .filter(QcInspection.asn_line_id == line.id)
        .scalar()
    ) + 1

    for offset, (condition, photo_path) in enumerate(parsed):
        photo = qc_photo_service.register_photo(
            client_id=asn.client_id,
            file_path=photo_path,
            asn_id=asn.id,
            asn_line_id=line.id,
            uploaded_by=user_id,
        )
        db.session.add(
            QcInspection(
                asn_line_id=line.id,
                unit_number=next_unit + offset,
                outcome=condition,
                photo_id=photo.id,
                inspected_by=user_id,
            )
        )
    db.session.flush()

    counts = dict(
        db.session.query(QcInspection.outcome, func.count(QcInspection.id))
        .filter(QcInspection.asn_line_id == line.id)
        .group_by(QcInspection.outcome)
        .all()
    )
    line.received_qty = sum(counts.values())
    line.damaged_qty = counts.get(UNIT_FAIL, 0)
    line.quarantined_qty = counts.get(UNIT_QUARANTINE, 0)

    db.session.commit()
    return line


def _photo_paths(line: AsnLine, outcome: str) -> list[str]:
    rows = (
        db.session.query(QcPhoto.file_path)
        .join(QcInspection, QcInspection.photo_id == QcPhoto.id)
        .filter(QcInspection.asn_line_id == line.id, QcInspection.outcome == outcome)
        .order_by(QcInspection.unit_number.asc())
        .all()
    )
    return [row[0] for row in rows]


def complete_receiving(asn_id: int, *, user_id: int | None = None) -> AsnHeader:
    """
    Finish counting: write receipts, raise discrepancies, and move to
    completed or issue in one transaction.
    """
    asn = get_asn(asn_id)
    if asn.status != AsnStatus.RECEIVING.value:
        raise AsnStateError(f"Cannot complete receiving for an ASN in status {asn.status}")

    locations = {
        kind: ledger_service.get_location(asn.client_id, kind)
        for kind in _OUTCOME_LOCATION.values()
    }

    has_issue = False
    try:
        for line in asn.lines:
            received = line.received_qty or 0
            failed = line.damaged_qty or 0
            quarantined = line.quarantined_qty or 0
            buckets = {
                UNIT_PASS: received - failed - quarantined,
                UNIT_FAIL: failed,
                UNIT_QUARANTINE: quarantined,
            }

            for outcome, qty in buckets.items():
                if qty <= 0:
                    continue
                ledger_service.append_entry(
                    client_id=asn.client_id,
                    sku_id=line.sku_id,
                    location_id=locations[_OUTCOME_LOCATION[outcome]].id,
                    qty_delta=qty,
                    transaction_type=LedgerTransactionType.RECEIPT,
                    reason_code=f"asn_{outcome}",
                    source_type="asn_line",
                    source_ref=line.id,
                    created_by=user_id,
                )

            if received < line.expected_qty:
                discrepancy_service.create_discrepancy(
                    client_id=asn.client_id,
                    sku_id=line.sku_id,
                    asn_id=asn.id,
                    discrepancy_type=DiscrepancyType.MISSING,
                    quantity=line.expected_qty - received,
                    source_type=DiscrepancySource.RECEIVING,
                )

            for outcome, discrepancy_type in _OUTCOME_DISCREPANCY.items():
                if buckets[outcome] > 0:
                    discrepancy_service.create_discrepancy(
                        client_id=asn.client_id,
                        sku_id=line.sku_id,
                        asn_id=asn.id,
                        discrepancy_type=discrepancy_type,
                        quantity=buckets[outcome],
                        source_type=DiscrepancySource.RECEIVING,
                        qc_photo_urls=_photo_paths(line, outcome),
                    )

            if received != line.expected_qty or failed or quarantined:
                has_issue = True

        target = AsnStatus.ISSUE if has_issue else AsnStatus.COMPLETED
        require_transition("asn", asn.status, target)
        asn.status = target.value
        db.session.commit()
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise
    return asn


def close_asn(asn_id: int, *, user_id: int | None = None) -> AsnHeader:
    """Normal completion path (completed -> closed)."""
    def _op():
        asn = get_asn(asn_id)
        if asn.status == AsnStatus.ISSUE.value:
            raise AsnStateError("ASN has open issues; an admin must resolve it")
        require_transition("asn", asn.status, AsnStatus.CLOSED)
        asn.status = AsnStatus.CLOSED.value
        asn.closed_at = utcnow()
        db.session.commit()
        return asn

    return run_with_retry(_op)


def resolve_asn(asn_id: int, *, user_id: int, resolution_notes: str) -> AsnHeader:
    """Admin manual resolve (issue -> closed). Terminal."""
    notes = require_str(resolution_notes, "resolution_notes", max_length=4000)

    def _op():
        asn = get_asn(asn_id)
        if asn.status != AsnStatus.ISSUE.value:
            raise AsnStateError(f"Only ASNs in issue can be resolved (status {asn.status})")
        require_transition("asn", asn.status, AsnStatus.CLOSED)
        now = utcnow()
        asn.status = AsnStatus.CLOSED.value
        asn.closed_at = now
        asn.resolved_at = now
        asn.resolved_by = user_id
        asn.notes = f"{asn.notes}\n\nResolution: {notes}" if asn.notes else f"Resolution: {notes}"
        db.session.commit()
        return asn

    return run_with_retry(_op)


def expected_asn_count(*, client_id: int) -> int:
    """ASNs the client has scheduled that the warehouse has not started receiving."""
    return int(
        db.session.query(func.count(AsnHeader.id))
        .filter(
            AsnHeader.client_id == client_id,
            AsnHeader.status == AsnStatus.NOT_RECEIVED.value,
        )
        .scalar()
        or 0
    )
