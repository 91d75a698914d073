"""Services for the asset kernel (write side). None of them commit."""

from asset_kernel.services.asset_registry import AssetRegistry
from asset_kernel.services.auditor_service import AuditorService, AuditTraceEntry
from asset_kernel.services.branch_service import (
    BranchDirectory,
    HierarchyBranchResolver,
    ScopeGuard,
)
from asset_kernel.services.identifier_service import IdentifierService
from asset_kernel.services.inventory_service import InventoryLedger
from asset_kernel.services.machine_state_service import MachineStateService, TransitionResult
from asset_kernel.services.maintenance_service import (
    ApprovalResponse,
    CompletionResult,
    MaintenanceService,
)
from asset_kernel.services.notification_service import (
    LoggingNotificationSink,
    NotificationDispatcher,
    NotificationOutbox,
)
from asset_kernel.services.sequence_service import SequenceService
from asset_kernel.services.settlement_service import SettlementOutcome, SettlementService
from asset_kernel.services.stats_cache import StatsCache
from asset_kernel.services.transfer_order_service import (
    OrderResult,
    ReceiveResult,
    TransferOrderService,
)

__all__ = [
    "ApprovalResponse",
    "AssetRegistry",
    "AuditTraceEntry",
    "AuditorService",
    "BranchDirectory",
    "CompletionResult",
    "HierarchyBranchResolver",
    "IdentifierService",
    "InventoryLedger",
    "LoggingNotificationSink",
    "MachineStateService",
    "MaintenanceService",
    "NotificationDispatcher",
    "NotificationOutbox",
    "OrderResult",
    "ReceiveResult",
    "ScopeGuard",
    "SequenceService",
    "SettlementOutcome",
    "SettlementService",
    "StatsCache",
    "TransferOrderService",
    "TransitionResult",
]
