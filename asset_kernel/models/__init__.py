"""Domain models for the asset kernel."""

from asset_kernel.models.asset import Asset, MaintenanceTicket
from asset_kernel.models.audit_event import AuditAction, AuditEvent
from asset_kernel.models.branch import Branch
from asset_kernel.models.inventory import InventoryItem, SparePart, StockMovement
from asset_kernel.models.maintenance import MaintenanceApprovalRequest, ServiceAssignment
from asset_kernel.models.movement_log import MovementLog
from asset_kernel.models.sequence import SequenceCounter
from asset_kernel.models.settlement import BranchDebt, DebtPayment
from asset_kernel.models.transfer import TransferOrder, TransferOrderItem

__all__ = [
    "Asset",
    "AuditAction",
    "AuditEvent",
    "Branch",
    "BranchDebt",
    "DebtPayment",
    "InventoryItem",
    "MaintenanceApprovalRequest",
    "MaintenanceTicket",
    "MovementLog",
    "SequenceCounter",
    "ServiceAssignment",
    "SparePart",
    "StockMovement",
    "TransferOrder",
    "TransferOrderItem",
]
