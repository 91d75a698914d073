"""
Binding law -- structural branch/purpose compatibility.

Responsibility:
    Pure pre-commit validation of a transfer order's branch pair for its
    purpose.  Independent of the actor's authorization scope: an order can
    be perfectly in scope and still structurally wrong.

Architecture position:
    Kernel > Domain.  Pure functions over ``BranchRef`` snapshots, zero I/O.
    TransferOrderService turns a non-empty violation list into
    ``InvalidBranchPairError``.

Rules:
    - All purposes except INBOUND need a source; INBOUND must not have one.
    - Source and destination must differ and both be active.
    - MAINTENANCE: destination is a MAINTENANCE_CENTER.
    - RETURN: source is a MAINTENANCE_CENTER and the destination equals the
      recorded origin of every asset on the order.
    - MACHINE / SIM: destination is not a MAINTENANCE_CENTER.
"""

from dataclasses import dataclass
from uuid import UUID

from asset_kernel.domain.values import BranchType, TransferPurpose


@dataclass(frozen=True)
class BranchRef:
    id: UUID
    branch_type: BranchType
    is_active: bool = True
    name: str = ""


def check_branch_pair(
    purpose: TransferPurpose,
    source: BranchRef | None,
    destination: BranchRef,
) -> list[str]:
    """Return every structural violation; empty means the pair is valid."""
    violations: list[str] = []

    if purpose == TransferPurpose.INBOUND:
        if source is not None:
            violations.append("inbound orders have no source branch")
    elif source is None:
        violations.append("source branch is required")

    if source is not None:
        if source.id == destination.id:
            violations.append("source and destination must differ")
        if not source.is_active:
            violations.append("source branch is inactive")
    if not destination.is_active:
        violations.append("destination branch is inactive")

    if purpose == TransferPurpose.MAINTENANCE:
        if destination.branch_type != BranchType.MAINTENANCE_CENTER:
            violations.append("maintenance orders must go to a maintenance center")
    elif purpose == TransferPurpose.RETURN:
        if source is not None and source.branch_type != BranchType.MAINTENANCE_CENTER:
            violations.append("return orders must leave from a maintenance center")
    elif purpose in (TransferPurpose.MACHINE, TransferPurpose.SIM):
        if destination.branch_type == BranchType.MAINTENANCE_CENTER:
            violations.append(
                f"{purpose.value.lower()} transfers cannot target a maintenance center"
            )

    return violations


def check_return_destination(
    destination_id: UUID,
    origins_by_serial: dict[str, UUID | None],
) -> list[str]:
    """A RETURN order may only go back to each asset's recorded origin."""
    violations = []
    for serial, origin in sorted(origins_by_serial.items()):
        if origin is None:
            violations.append(f"{serial} has no recorded origin branch")
        elif origin != destination_id:
            violations.append(f"{serial} belongs to a different origin branch")
    return violations
