"""
Pure domain layer.

Enumerations, transition tables, frozen DTOs, collaborator protocols and the
binding law.  No ORM, no database, no direct clock reads.
"""

from asset_kernel.domain.binding import BranchRef, check_branch_pair, check_return_destination
from asset_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from asset_kernel.domain.dtos import (
    Actor,
    AssetImportRow,
    AuthorizationScope,
    InboundItem,
    Notification,
    PartLine,
    StockShortfall,
    billable_total,
)
from asset_kernel.domain.policy import IdentifierFormat, WorkflowPolicy
from asset_kernel.domain.ports import BranchResolver, NotificationSink
from asset_kernel.domain.values import (
    MACHINE_TRANSITIONS,
    ApprovalDecision,
    ApprovalStatus,
    AssetKind,
    AssetStatus,
    AssignmentStatus,
    BranchType,
    DebtStatus,
    OrderStatus,
    Resolution,
    Role,
    TicketStatus,
    TransferPurpose,
)

__all__ = [
    "Actor",
    "ApprovalDecision",
    "ApprovalStatus",
    "AssetImportRow",
    "AssetKind",
    "AssetStatus",
    "AssignmentStatus",
    "AuthorizationScope",
    "BranchRef",
    "BranchResolver",
    "BranchType",
    "Clock",
    "DebtStatus",
    "DeterministicClock",
    "IdentifierFormat",
    "InboundItem",
    "MACHINE_TRANSITIONS",
    "Notification",
    "NotificationSink",
    "OrderStatus",
    "PartLine",
    "Resolution",
    "Role",
    "StockShortfall",
    "SystemClock",
    "TicketStatus",
    "TransferPurpose",
    "WorkflowPolicy",
    "billable_total",
    "check_branch_pair",
    "check_return_destination",
]
