"""
Workflow State Machines

Every workflow status in the portal is an explicit enum with one transition
table defined here. Services call require_transition() before writing a new
status; anything not listed fails loudly instead of persisting an
inconsistent row.

MACHINES:
- ASN:          not_received -> receiving -> {completed | issue} -> closed
- Discrepancy:  pending -> submitted -> processed -> closed, closed -> pending (reopen)
- Return line:  received -> qc_photographed -> inspected -> {resellable | damaged}
                -> final_disposition, inspected -> inspected (re-inspection)
"""

from __future__ import annotations

import enum


class AsnStatus(str, enum.Enum):
    NOT_RECEIVED = "not_received"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    ISSUE = "issue"
    CLOSED = "closed"


class DiscrepancyStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    PROCESSED = "processed"
    CLOSED = "closed"


class DiscrepancyType(str, enum.Enum):
    DAMAGED = "damaged"
    MISSING = "missing"
    QUARANTINED = "quarantined"


class DiscrepancySource(str, enum.Enum):
    RECEIVING = "receiving"
    RETURN = "return"


class DiscrepancyDecision(str, enum.Enum):
    DISCARD = "discard"
    RETURN_TO_SENDER = "return_to_sender"
    SELL_AS_BSTOCK = "sell_as_bstock"
    REWORK = "rework"
    ACKNOWLEDGE = "acknowledge"


class ReturnLineStage(str, enum.Enum):
    RECEIVED = "received"
    QC_PHOTOGRAPHED = "qc_photographed"
    INSPECTED = "inspected"
    RESELLABLE = "resellable"
    DAMAGED = "damaged"
    FINAL_DISPOSITION = "final_disposition"


class LocationKind(str, enum.Enum):
    AVAILABLE = "available"
    DAMAGED = "damaged"
    QUARANTINE = "quarantine"


class LedgerTransactionType(str, enum.Enum):
    RECEIPT = "RECEIPT"
    SHIPMENT = "SHIPMENT"
    ADJUSTMENT_PLUS = "ADJUSTMENT_PLUS"
    ADJUSTMENT_MINUS = "ADJUSTMENT_MINUS"
    RETURN_RESTOCK = "RETURN_RESTOCK"
    DAMAGE_REMOVAL = "DAMAGE_REMOVAL"


# Decisions a client may record, by discrepancy type
ALLOWED_DECISIONS: dict[DiscrepancyType, frozenset[DiscrepancyDecision]] = {
    DiscrepancyType.DAMAGED: frozenset({
        DiscrepancyDecision.DISCARD,
        DiscrepancyDecision.RETURN_TO_SENDER,
        DiscrepancyDecision.SELL_AS_BSTOCK,
        DiscrepancyDecision.REWORK,
    }),
    DiscrepancyType.QUARANTINED: frozenset({
        DiscrepancyDecision.DISCARD,
        DiscrepancyDecision.RETURN_TO_SENDER,
        DiscrepancyDecision.SELL_AS_BSTOCK,
        DiscrepancyDecision.REWORK,
    }),
    DiscrepancyType.MISSING: frozenset({
        DiscrepancyDecision.ACKNOWLEDGE,
    }),
}


TRANSITIONS: dict[str, frozenset[tuple[str, str]]] = {
    "asn": frozenset({
        (AsnStatus.NOT_RECEIVED.value, AsnStatus.RECEIVING.value),
        (AsnStatus.RECEIVING.value, AsnStatus.COMPLETED.value),
        (AsnStatus.RECEIVING.value, AsnStatus.ISSUE.value),
        (AsnStatus.COMPLETED.value, AsnStatus.CLOSED.value),
        (AsnStatus.ISSUE.value, AsnStatus.CLOSED.value),
    }),
    "discrepancy": frozenset({
        (DiscrepancyStatus.PENDING.value, DiscrepancyStatus.SUBMITTED.value),
        (DiscrepancyStatus.SUBMITTED.value, DiscrepancyStatus.PROCESSED.value),
        (DiscrepancyStatus.PROCESSED.value, DiscrepancyStatus.CLOSED.value),
        (DiscrepancyStatus.CLOSED.value, DiscrepancyStatus.PENDING.value),
    }),
    "return_line": frozenset({
        (ReturnLineStage.RECEIVED.value, ReturnLineStage.QC_PHOTOGRAPHED.value),
        (ReturnLineStage.QC_PHOTOGRAPHED.value, ReturnLineStage.INSPECTED.value),
        (ReturnLineStage.INSPECTED.value, ReturnLineStage.INSPECTED.value),
        (ReturnLineStage.INSPECTED.value, ReturnLineStage.RESELLABLE.value),
        (ReturnLineStage.INSPECTED.value, ReturnLineStage.DAMAGED.value),
        (ReturnLineStage.RESELLABLE.value, ReturnLineStage.FINAL_DISPOSITION.value),
        (ReturnLineStage.DAMAGED.value, ReturnLineStage.FINAL_DISPOSITION.value),
    }),
}

# Client-facing labels
AWAITING_RESPONSE = "Awaiting Response"
RESPONDED = "Responded"

DISCREPANCY_LABELS = {
    DiscrepancyStatus.PENDING.value: AWAITING_RESPONSE,
    DiscrepancyStatus.SUBMITTED.value: RESPONDED,
    DiscrepancyStatus.PROCESSED.value: "Processed",
    DiscrepancyStatus.CLOSED.value: "Closed",
}


class InvalidTransitionError(ValueError):
    """Raised when a workflow row is asked to move along an edge that does not exist."""

    def __init__(self, machine: str, current: str, target: str):
        self.machine = machine
        self.current = current
        self.target = target
        super().__init__(f"Invalid {machine} transition: {current} -> {target}")


def _value(status) -> str:
    return status.value if isinstance(status, enum.Enum) else str(status)


def can_transition(machine: str, current, target) -> bool:
    return (_value(current), _value(target)) in TRANSITIONS[machine]


def require_transition(machine: str, current, target) -> None:
    if not can_transition(machine, current, target):
        raise InvalidTransitionError(machine, _value(current), _value(target))
