# Overview: Read and trigger calls consumed by the admin and client dashboards.

from __future__ import annotations

from . import discrepancy_service, inventory_sync_service, receiving_service


def pending_discrepancy_count(*, client_id: int | None = None) -> int:
    """Badge count: discrepancies still waiting for a client decision."""
    return discrepancy_service.pending_count(client_id=client_id)


def expected_asn_count(*, client_id: int) -> int:
    return receiving_service.expected_asn_count(client_id=client_id)


def trigger_manual_resync(*, client_id: int) -> dict:
    """Queue a push for every mapped SKU; the drain job does the network work."""
    queued = inventory_sync_service.trigger_client_resync(client_id=client_id)
    return {"client_id": client_id, "queued": queued}


def summary(*, client_id: int | None) -> dict:
    data = {"pending_discrepancies": pending_discrepancy_count(client_id=client_id)}
    if client_id is not None:
        data["expected_asns"] = expected_asn_count(client_id=client_id)
    return data
