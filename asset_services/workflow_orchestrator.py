"""
asset_services.workflow_orchestrator -- Central DI container for kernel services.

Responsibility:
    Creates every kernel service exactly once per session and wires them
    together.  No kernel service creates another service internally; the
    orchestrator is the single point of dependency injection for one unit
    of work.

Architecture position:
    Services -- composition over the asset kernel.  The only place where
    kernel services are constructed.

Invariants enforced:
    - Single-instance lifecycle: one SequenceService, AuditorService and
      NotificationOutbox per orchestrator, shared by every service.
    - DI transparency: all wiring is visible in ``__init__``.

Failure modes:
    - Construction failure if the policy or clock are invalid.

Usage:
    from asset_services.workflow_orchestrator import WorkflowOrchestrator

    orchestrator = WorkflowOrchestrator(session, policy, clock, stats)
    orchestrator.transfers.create_order(...)
    orchestrator.maintenance.request_approval(...)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from asset_kernel.domain.clock import Clock, SystemClock
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.services.asset_registry import AssetRegistry
from asset_kernel.services.auditor_service import AuditorService
from asset_kernel.services.branch_service import BranchDirectory, ScopeGuard
from asset_kernel.services.identifier_service import IdentifierService
from asset_kernel.services.inventory_service import InventoryLedger
from asset_kernel.services.machine_state_service import MachineStateService
from asset_kernel.services.maintenance_service import MaintenanceService
from asset_kernel.services.notification_service import NotificationOutbox
from asset_kernel.services.sequence_service import SequenceService
from asset_kernel.services.settlement_service import SettlementService
from asset_kernel.services.stats_cache import StatsCache
from asset_kernel.services.transfer_order_service import TransferOrderService


class WorkflowOrchestrator:
    """Central factory for kernel services.

    Contract:
        Receives a Session, a WorkflowPolicy, and optional Clock/StatsCache.
        Constructs every kernel service in dependency order and exposes
        them as public attributes.

    Non-goals:
        - Does NOT manage transaction boundaries (AssetWorkflowService does).
        - Does NOT own the Session lifecycle.
    """

    def __init__(
        self,
        session: Session,
        policy: WorkflowPolicy,
        clock: Clock | None = None,
        stats: StatsCache | None = None,
    ) -> None:
        self.session = session
        self.policy = policy
        self.clock = clock or SystemClock()
        self.stats = stats or StatsCache(self.clock, policy.stats_cache_ttl_seconds)

        # Foundational services (no kernel dependencies)
        self.sequences = SequenceService(session)
        self.outbox = NotificationOutbox()

        # Audit trail and document numbers (depend on sequences)
        self.auditor = AuditorService(session, self.clock, self.sequences)
        self.identifiers = IdentifierService(session, self.clock, self.sequences)

        # Scope enforcement and branch directory (depend on auditor)
        self.guard = ScopeGuard(self.auditor)
        self.branches = BranchDirectory(session, self.auditor)

        # Ledgers
        self.ledger = InventoryLedger(
            session, self.clock, self.auditor, self.outbox,
            default_min_level=policy.default_min_level,
        )
        self.settlement = SettlementService(
            session, self.clock, self.auditor, self.ledger, self.guard, self.outbox,
        )

        # State machine (depends on settlement for REPAIRED deductions)
        self.machines = MachineStateService(
            session, self.clock, self.auditor, self.settlement,
            self.guard, self.outbox, policy, self.stats,
        )

        # Registry, transfers and maintenance sit on top of the state machine
        self.registry = AssetRegistry(
            session, self.clock, self.auditor, self.identifiers, self.guard, policy,
        )
        self.transfers = TransferOrderService(
            session, self.clock, self.auditor, self.identifiers, self.branches,
            self.registry, self.machines, self.guard, self.outbox, policy,
        )
        self.maintenance = MaintenanceService(
            session, self.clock, self.auditor, self.identifiers, self.machines,
            self.ledger, self.guard, self.outbox, policy,
        )
