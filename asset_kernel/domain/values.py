"""
Enumerations and transition tables for the asset kernel.

Responsibility:
    Single source of truth for every enumerated field (branch type, asset
    kind and status, order purpose and status, assignment, approval, debt)
    and for the machine repair-cycle transition table.

Architecture position:
    Kernel > Domain.  Pure values, zero I/O.  Imported by models and services.

Invariants enforced:
    - ``MACHINE_TRANSITIONS`` is the complete declared table; the two
      sanctioned bypasses are NOT encoded here (see MachineStateService).
    - ``AssetKind`` is set once at creation; nothing re-derives it from
      names or model strings.
"""

from enum import Enum


class BranchType(str, Enum):
    BRANCH = "BRANCH"
    MAINTENANCE_CENTER = "MAINTENANCE_CENTER"
    ADMIN_AFFAIRS = "ADMIN_AFFAIRS"


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    MANAGEMENT = "MANAGEMENT"
    BRANCH_ADMIN = "BRANCH_ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    ADMIN_AFFAIRS = "ADMIN_AFFAIRS"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    CS_SUPERVISOR = "CS_SUPERVISOR"
    CS_AGENT = "CS_AGENT"
    BRANCH_TECH = "BRANCH_TECH"
    CENTER_MANAGER = "CENTER_MANAGER"
    CENTER_TECH = "CENTER_TECH"


class AssetKind(str, Enum):
    MACHINE = "MACHINE"
    SIM = "SIM"


class AssetStatus(str, Enum):
    # Warehouse / customer lifecycle
    NEW = "NEW"
    STANDBY = "STANDBY"
    ACTIVE = "ACTIVE"
    DEFECTIVE = "DEFECTIVE"
    CLIENT_REPAIR = "CLIENT_REPAIR"
    AT_CENTER = "AT_CENTER"
    REPAIRED = "REPAIRED"
    SOLD = "SOLD"
    SCRAPPED = "SCRAPPED"

    # Repair cycle
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED_AT_CENTER = "RECEIVED_AT_CENTER"
    ASSIGNED = "ASSIGNED"
    UNDER_INSPECTION = "UNDER_INSPECTION"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    IN_PROGRESS = "IN_PROGRESS"
    READY_FOR_RETURN = "READY_FOR_RETURN"
    RETURNING = "RETURNING"
    COMPLETED = "COMPLETED"


MACHINE_TRANSITIONS: dict[AssetStatus, frozenset[AssetStatus]] = {
    AssetStatus.IN_TRANSIT: frozenset({AssetStatus.RECEIVED_AT_CENTER}),
    AssetStatus.RECEIVED_AT_CENTER: frozenset(
        {AssetStatus.UNDER_INSPECTION, AssetStatus.ASSIGNED}
    ),
    AssetStatus.ASSIGNED: frozenset(
        {AssetStatus.IN_PROGRESS, AssetStatus.UNDER_INSPECTION}
    ),
    AssetStatus.UNDER_INSPECTION: frozenset(
        {
            AssetStatus.AWAITING_APPROVAL,
            AssetStatus.IN_PROGRESS,
            AssetStatus.READY_FOR_RETURN,
            AssetStatus.ASSIGNED,
        }
    ),
    AssetStatus.AWAITING_APPROVAL: frozenset(
        {AssetStatus.IN_PROGRESS, AssetStatus.READY_FOR_RETURN}
    ),
    AssetStatus.IN_PROGRESS: frozenset({AssetStatus.READY_FOR_RETURN}),
    AssetStatus.READY_FOR_RETURN: frozenset({AssetStatus.RETURNING}),
    AssetStatus.RETURNING: frozenset({AssetStatus.COMPLETED}),
}

REPAIR_CYCLE_STATUSES: frozenset[AssetStatus] = frozenset(
    {
        AssetStatus.IN_TRANSIT,
        AssetStatus.RECEIVED_AT_CENTER,
        AssetStatus.ASSIGNED,
        AssetStatus.UNDER_INSPECTION,
        AssetStatus.AWAITING_APPROVAL,
        AssetStatus.IN_PROGRESS,
        AssetStatus.READY_FOR_RETURN,
        AssetStatus.RETURNING,
        AssetStatus.COMPLETED,
    }
)

TRANSIT_STATUSES: frozenset[AssetStatus] = frozenset(
    {AssetStatus.IN_TRANSIT, AssetStatus.RETURNING}
)

RETIRED_STATUSES: frozenset[AssetStatus] = frozenset(
    {AssetStatus.SOLD, AssetStatus.SCRAPPED}
)

# Statuses from which an asset cannot be put on a new outbound order.
UNAVAILABLE_FOR_DISPATCH: frozenset[AssetStatus] = (
    REPAIR_CYCLE_STATUSES - {AssetStatus.COMPLETED}
) | RETIRED_STATUSES


def is_allowed_transition(from_status: AssetStatus, to_status: AssetStatus) -> bool:
    """Strict table check; a same-status move counts as a data update."""
    if from_status == to_status:
        return True
    return to_status in MACHINE_TRANSITIONS.get(from_status, frozenset())


class Resolution(str, Enum):
    REPAIRED = "REPAIRED"
    SCRAPPED = "SCRAPPED"
    REJECTED_REPAIR = "REJECTED_REPAIR"


class TransferPurpose(str, Enum):
    MACHINE = "MACHINE"
    SIM = "SIM"
    MAINTENANCE = "MAINTENANCE"
    RETURN = "RETURN"
    INBOUND = "INBOUND"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    RECEIVED = "RECEIVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


RECEIVABLE_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.PARTIAL}
)

TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.RECEIVED, OrderStatus.REJECTED, OrderStatus.CANCELLED}
)


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_TRANSFER = "PENDING_TRANSFER"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


HOLDABLE_TICKET_STATUSES: frozenset[TicketStatus] = frozenset(
    {TicketStatus.OPEN, TicketStatus.IN_PROGRESS}
)


class AssignmentStatus(str, Enum):
    UNDER_MAINTENANCE = "UNDER_MAINTENANCE"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    RETURNED = "RETURNED"


TERMINAL_ASSIGNMENT_STATUSES: frozenset[AssignmentStatus] = frozenset(
    {AssignmentStatus.COMPLETED, AssignmentStatus.RETURNED}
)


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalDecision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DebtStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class DebtType(str, Enum):
    MAINTENANCE = "MAINTENANCE"


class MovementDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"


class NotificationType(str, Enum):
    TRANSFER_ORDER = "TRANSFER_ORDER"
    TRANSFER_REJECTED = "TRANSFER_REJECTED"
    TRANSFER_CANCELLED = "TRANSFER_CANCELLED"
    TRANSFER_RECEIVED = "TRANSFER_RECEIVED"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_RESPONDED = "APPROVAL_RESPONDED"
    LOW_STOCK = "LOW_STOCK"
    DEBT_CREATED = "DEBT_CREATED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
