# Overview: Discrepancy decision workflow between client and admin; state transitions and ledger effects.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Discrepancy, InventoryLedgerEntry
from ..state_machines import (
    ALLOWED_DECISIONS,
    AWAITING_RESPONSE,
    RESPONDED,
    DiscrepancyDecision,
    DiscrepancySource,
    DiscrepancyStatus,
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
    require_choice,
)
from . import ledger_service
from .concurrency import run_with_retry
"""
Discrepancy Workflow

STATES: pending -> submitted -> processed -> closed, closed -> pending (reopen).

- pending:   raised by receiving or returns; client sees "Awaiting Response"
- submitted: client recorded a decision valid for the discrepancy type
- processed: admin applied the decision (ledger effects written here)
- closed:    admin terminated; reopen is admin-only and unbounded

LEDGER EFFECTS (on process), against the holding location for the type:
- discard, return_to_sender: ADJUSTMENT_MINUS at holding
- sell_as_bstock:            ADJUSTMENT_MINUS at holding, ADJUSTMENT_PLUS at available
- rework, acknowledge:       none

Effects are tagged source_type="discrepancy". Re-processing after a reopen
first reverses the net effect of the previous processing, so a discrepancy
never contributes more than its current decision to the ledger.

CONCURRENCY: rows carry version_id; a concurrent writer loses with
StaleDataError and run_with_retry re-validates against the winner's state.
"""


SOURCE_TYPE = "discrepancy"

_RESPONDED_STATUSES = frozenset({
    DiscrepancyStatus.SUBMITTED.value,
    DiscrepancyStatus.PROCESSED.value,
    DiscrepancyStatus.CLOSED.value,
})

_HOLDING_KIND = {
    DiscrepancyType.DAMAGED.value: LocationKind.DAMAGED,
    DiscrepancyType.QUARANTINED.value: LocationKind.QUARANTINE,
}


def create_discrepancy(
    *,
    client_id: int,
    sku_id: int,
    discrepancy_type: DiscrepancyType | str,
    quantity: int,
    source_type: DiscrepancySource | str,
    asn_id: int | None = None,
    return_line_id: int | None = None,
    qc_photo_urls: list[str] | None = None,
    admin_notes: str | None = None,
) -> Discrepancy:
    """Raise a new pending discrepancy. Flushes, does not commit."""
    type_value = discrepancy_type.value if isinstance(discrepancy_type, DiscrepancyType) else discrepancy_type
    source_value = source_type.value if isinstance(source_type, DiscrepancySource) else source_type
    require_choice(type_value, "discrepancy_type", [t.value for t in DiscrepancyType])
    require_choice(source_value, "source_type", [s.value for s in DiscrepancySource])
    if quantity is None or quantity <= 0:
        raise ValidationError("discrepancy quantity must be positive")

    discrepancy = Discrepancy(
        client_id=client_id,
        sku_id=sku_id,
        asn_id=asn_id,
        return_line_id=return_line_id,
        discrepancy_type=type_value,
        quantity=quantity,
        source_type=source_value,
        status=DiscrepancyStatus.PENDING.value,
        qc_photo_urls=list(qc_photo_urls or []),
        admin_notes=admin_notes,
        reopened_count=0,
    )
    db.session.add(discrepancy)
    db.session.flush()
    return discrepancy


def get_discrepancy(discrepancy_id: int, *, client_id: int | None = None) -> Discrepancy:
    discrepancy = db.session.query(Discrepancy).filter_by(id=discrepancy_id).first()
    if discrepancy is None:
        raise NotFoundError(f"Discrepancy {discrepancy_id} not found")
    if client_id is not None and discrepancy.client_id != client_id:
        raise TenantAccessError("Discrepancy belongs to another client")
    return discrepancy


def list_discrepancies(
    *,
    client_id: int | None = None,
    status: str | None = None,
    asn_id: int | None = None,
    discrepancy_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Discrepancy], int]:
    query = db.session.query(Discrepancy)
    if client_id is not None:
        query = query.filter(Discrepancy.client_id == client_id)
    if status:
        query = query.filter(Discrepancy.status == status)
    if asn_id is not None:
        query = query.filter(Discrepancy.asn_id == asn_id)
    if discrepancy_type:
        query = query.filter(Discrepancy.discrepancy_type == discrepancy_type)
    total = query.count()
    rows = query.order_by(Discrepancy.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def submit_decision(
    discrepancy_id: int,
    *,
    decision: str,
    user_id: int,
    client_notes: str | None = None,
    client_id: int | None = None,
) -> Discrepancy:
    """
    Client records a decision (pending -> submitted).

    Raises:
        ValidationError: decision unknown or not allowed for the type
        InvalidTransitionError: not pending
    """
    require_choice(decision, "decision", [d.value for d in DiscrepancyDecision])
    notes = optional_str(client_notes, max_length=4000)

    def _op():
        discrepancy = get_discrepancy(discrepancy_id, client_id=client_id)
        allowed = ALLOWED_DECISIONS[DiscrepancyType(discrepancy.discrepancy_type)]
        if DiscrepancyDecision(decision) not in allowed:
            raise ValidationError(
                f"Decision '{decision}' is not allowed for {discrepancy.discrepancy_type} items. "
                f"Allowed: {', '.join(sorted(d.value for d in allowed))}"
            )
        require_transition("discrepancy", discrepancy.status, DiscrepancyStatus.SUBMITTED)

        discrepancy.status = DiscrepancyStatus.SUBMITTED.value
        discrepancy.decision = decision
        discrepancy.client_notes = notes
        discrepancy.submitted_at = utcnow()
        discrepancy.submitted_by = user_id
        db.session.commit()
        return discrepancy

    return run_with_retry(_op)


def _prior_effects(discrepancy: Discrepancy) -> list[tuple[int, int]]:
    """Net (location_id, qty) written by earlier processing of this discrepancy."""
    rows = (
        db.session.query(InventoryLedgerEntry.location_id, func.sum(InventoryLedgerEntry.qty_delta))
        .filter(
            InventoryLedgerEntry.source_type == SOURCE_TYPE,
            InventoryLedgerEntry.source_ref == str(discrepancy.id),
        )
        .group_by(InventoryLedgerEntry.location_id)
        .all()
    )
    return [(location_id, int(net)) for location_id, net in rows if net]


def _reverse_prior_effects(discrepancy: Discrepancy, user_id: int) -> None:
    # Put back removals before taking back additions so no location dips below zero
    for location_id, net in sorted(_prior_effects(discrepancy), key=lambda pair: pair[1]):
        ledger_service.append_entry(
            client_id=discrepancy.client_id,
            sku_id=discrepancy.sku_id,
            location_id=location_id,
            qty_delta=-net,
            transaction_type=(
                LedgerTransactionType.ADJUSTMENT_PLUS if net < 0 else LedgerTransactionType.ADJUSTMENT_MINUS
            ),
            reason_code="decision_reversed",
            source_type=SOURCE_TYPE,
            source_ref=discrepancy.id,
            created_by=user_id,
        )


def _apply_decision_effects(discrepancy: Discrepancy, user_id: int) -> None:
    decision = discrepancy.decision
    holding_kind = _HOLDING_KIND.get(discrepancy.discrepancy_type)
    if holding_kind is None or decision in (
        DiscrepancyDecision.REWORK.value,
        DiscrepancyDecision.ACKNOWLEDGE.value,
    ):
        return

    holding = ledger_service.get_location(discrepancy.client_id, holding_kind)
    ledger_service.append_entry(
        client_id=discrepancy.client_id,
        sku_id=discrepancy.sku_id,
        location_id=holding.id,
        qty_delta=-discrepancy.quantity,
        transaction_type=LedgerTransactionType.ADJUSTMENT_MINUS,
        reason_code=decision,
        source_type=SOURCE_TYPE,
        source_ref=discrepancy.id,
        created_by=user_id,
    )

    if decision == DiscrepancyDecision.SELL_AS_BSTOCK.value:
        available = ledger_service.get_location(discrepancy.client_id, LocationKind.AVAILABLE)
        ledger_service.append_entry(
            client_id=discrepancy.client_id,
            sku_id=discrepancy.sku_id,
            location_id=available.id,
            qty_delta=discrepancy.quantity,
            transaction_type=LedgerTransactionType.ADJUSTMENT_PLUS,
            reason_code=decision,
            source_type=SOURCE_TYPE,
            source_ref=discrepancy.id,
            created_by=user_id,
        )


def process_decision(discrepancy_id: int, *, user_id: int, admin_notes: str | None = None) -> Discrepancy:
    """Admin acts on the client's decision (submitted -> processed)."""
    notes = optional_str(admin_notes, max_length=4000)

    def _op():
        discrepancy = get_discrepancy(discrepancy_id)
        require_transition("discrepancy", discrepancy.status, DiscrepancyStatus.PROCESSED)

        _reverse_prior_effects(discrepancy, user_id)
        _apply_decision_effects(discrepancy, user_id)

        discrepancy.status = DiscrepancyStatus.PROCESSED.value
        discrepancy.processed_at = utcnow()
        discrepancy.processed_by = user_id
        if notes is not None:
            discrepancy.admin_notes = notes
        db.session.commit()
        return discrepancy

    try:
        return run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


def close_discrepancy(discrepancy_id: int, *, user_id: int, close_notes: str | None = None) -> Discrepancy:
    """Admin terminates a processed discrepancy (processed -> closed)."""
    notes = optional_str(close_notes, max_length=4000)

    def _op():
        discrepancy = get_discrepancy(discrepancy_id)
        require_transition("discrepancy", discrepancy.status, DiscrepancyStatus.CLOSED)
        discrepancy.status = DiscrepancyStatus.CLOSED.value
        discrepancy.admin_closed_at = utcnow()
        discrepancy.admin_closed_by = user_id
        discrepancy.admin_close_notes = notes
        db.session.commit()
        return discrepancy

    return run_with_retry(_op)


def reopen_discrepancy(discrepancy_id: int, *, user_id: int, admin_notes: str) -> Discrepancy:
    """
    Admin hands a closed discrepancy back to the client (closed -> pending).

    reopened_count is not capped.
    """
    notes = optional_str(admin_notes, max_length=4000)
    if not notes:
        raise ValidationError("admin_notes is required when reopening")

    def _op():
        discrepancy = get_discrepancy(discrepancy_id)
        require_transition("discrepancy", discrepancy.status, DiscrepancyStatus.PENDING)
        discrepancy.status = DiscrepancyStatus.PENDING.value
        discrepancy.reopened_count = (discrepancy.reopened_count or 0) + 1
        discrepancy.admin_notes = notes
        discrepancy.submitted_at = None
        discrepancy.submitted_by = None
        discrepancy.processed_at = None
        discrepancy.processed_by = None
        db.session.commit()
        return discrepancy

    return run_with_retry(_op)


def aggregate_status(*, asn_id: int, sku_id: int) -> str | None:
    """
    Client-facing status for an ASN+SKU pair.

    "Responded" only when every discrepancy type present with nonzero quantity
    has all of its rows at submitted or beyond; otherwise "Awaiting Response".
    None when the pair has no discrepancies.
    """
    rows = (
        db.session.query(Discrepancy.discrepancy_type, Discrepancy.status)
        .filter(
            Discrepancy.asn_id == asn_id,
            Discrepancy.sku_id == sku_id,
            Discrepancy.quantity > 0,
        )
        .all()
    )
    if not rows:
        return None

    by_type: dict[str, bool] = {}
    for discrepancy_type, status in rows:
        responded = status in _RESPONDED_STATUSES
        by_type[discrepancy_type] = by_type.get(discrepancy_type, True) and responded

    return RESPONDED if all(by_type.values()) else AWAITING_RESPONSE


def pending_count(*, client_id: int | None = None) -> int:
    query = db.session.query(func.count(Discrepancy.id)).filter(
        Discrepancy.status == DiscrepancyStatus.PENDING.value
    )
    if client_id is not None:
        query = query.filter(Discrepancy.client_id == client_id)
    return int(query.scalar() or 0)
