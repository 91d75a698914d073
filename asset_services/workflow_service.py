"""
Asset Workflow Service (``asset_services.workflow_service``).

Responsibility
--------------
The public face of the asset kernel.  Every operation takes the calling
``Actor``, resolves it into an ``AuthorizationScope`` and runs the kernel
services built by ``WorkflowOrchestrator`` as ONE unit of work.  This is a
**thin glue layer** -- business rules live in the kernel services.

Invariants
----------
- Each public method owns its transaction boundary.  Kernel services only
  flush; this service calls ``session.commit()`` on success and
  ``session.rollback()`` on any failure, so partial writes never survive.
- Notifications queued during the unit of work are delivered only after
  commit.  A failing sink is logged and never undoes the committed work.
- The ``StatsCache`` is invalidated after every committed mutation.

Failure Modes
-------------
- Kernel errors (``AssetKernelError`` subclasses) propagate unchanged after
  rollback.
- ``StaleDataError`` (optimistic version check) and ``IntegrityError``
  (unique constraint race) become ``ConcurrentModificationError``.

Usage::

    service = create_workflow_service(session)
    result = service.create_transfer_order(
        actor, source_branch_id=branch.id, destination_branch_id=center.id,
        purpose=TransferPurpose.MAINTENANCE, serials=["SN-1"],
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from asset_config import get_active_settings
from asset_config.bridges import build_workflow_policy
from asset_config.schema import KernelSettings
from asset_kernel.db.engine import create_tables, init_engine_from_url
from asset_kernel.domain.clock import Clock
from asset_kernel.domain.dtos import (
    Actor,
    AssetImportRow,
    AuthorizationScope,
    InboundItem,
    PartLine,
    StockShortfall,
)
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.domain.ports import BranchResolver, NotificationSink
from asset_kernel.domain.values import (
    ApprovalDecision,
    AssetKind,
    AssetStatus,
    BranchType,
    Resolution,
    TransferPurpose,
)
from asset_kernel.exceptions import (
    AssetKernelError,
    AssetNotFoundError,
    BranchNotFoundError,
    ConcurrentModificationError,
    ForbiddenError,
    TicketNotFoundError,
)
from asset_kernel.logging_config import LogContext, get_logger
from asset_kernel.models.asset import Asset, MaintenanceTicket
from asset_kernel.models.branch import Branch
from asset_kernel.models.inventory import InventoryItem, SparePart, StockMovement
from asset_kernel.models.maintenance import MaintenanceApprovalRequest, ServiceAssignment
from asset_kernel.models.movement_log import MovementLog
from asset_kernel.models.settlement import BranchDebt
from asset_kernel.models.transfer import TransferOrder
from asset_kernel.services.auditor_service import AuditTraceEntry
from asset_kernel.services.branch_service import HierarchyBranchResolver
from asset_kernel.services.machine_state_service import TransitionResult
from asset_kernel.services.maintenance_service import ApprovalResponse, CompletionResult
from asset_kernel.services.notification_service import (
    LoggingNotificationSink,
    NotificationDispatcher,
)
from asset_kernel.services.stats_cache import StatsCache
from asset_kernel.services.transfer_order_service import OrderResult, ReceiveResult
from asset_services.import_sources import read_import_rows
from asset_services.workflow_orchestrator import WorkflowOrchestrator

logger = get_logger("services.workflow")

T = TypeVar("T")


class AssetWorkflowService:
    """
    Transactional facade over the asset kernel.

    Contract:
        One instance per Session.  A long-lived ``StatsCache`` may be shared
        across instances so summaries survive between requests.
    """

    def __init__(
        self,
        session: Session,
        policy: WorkflowPolicy,
        clock: Clock | None = None,
        sink: NotificationSink | None = None,
        resolver: BranchResolver | None = None,
        stats: StatsCache | None = None,
    ):
        self._session = session
        self._kernel = WorkflowOrchestrator(session, policy, clock=clock, stats=stats)
        self._resolver = resolver or HierarchyBranchResolver(session, policy)
        self._dispatcher = NotificationDispatcher(sink or LoggingNotificationSink())

    @property
    def kernel(self) -> WorkflowOrchestrator:
        return self._kernel

    @property
    def stats(self) -> StatsCache:
        return self._kernel.stats

    # =========================================================================
    # Unit of work
    # =========================================================================

    def _run(
        self,
        operation: str,
        actor: Actor,
        work: Callable[[AuthorizationScope], T],
        mutating: bool = True,
        **fields: Any,
    ) -> T:
        """Resolve scope, run ``work``, commit, then deliver notifications."""
        started = time.monotonic()
        with LogContext.bind(
            correlation_id=uuid4(),
            actor_id=actor.actor_id,
            branch_id=actor.branch_id,
            **fields,
        ):
            logger.info(f"{operation}_started", extra={"role": actor.role.value, **fields})
            outbox = self._kernel.outbox
            try:
                scope = self._resolver.resolve(actor)
                result = work(scope)
                self._session.commit()
            except (StaleDataError, IntegrityError) as exc:
                self._abort(operation, started, ConcurrentModificationError.code)
                raise ConcurrentModificationError(operation, str(exc)) from exc
            except AssetKernelError as exc:
                self._abort(operation, started, exc.code)
                raise
            except Exception:
                self._abort(operation, started, "INTERNAL_ERROR")
                raise

            if mutating:
                self._kernel.stats.invalidate()
            delivered = self._dispatcher.dispatch(outbox.drain())
            logger.info(
                f"{operation}_completed",
                extra={
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "notifications_sent": delivered,
                },
            )
            return result

    def _abort(self, operation: str, started: float, error_code: str) -> None:
        self._session.rollback()
        self._kernel.outbox.clear()
        logger.warning(
            f"{operation}_failed",
            extra={
                "error_code": error_code,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
            exc_info=True,
        )

    def _require_global(self, scope: AuthorizationScope, action: str) -> None:
        if not scope.is_global:
            raise ForbiddenError(action)

    def _require_branch_visible(self, scope: AuthorizationScope, branch_id: UUID, action: str) -> None:
        self._kernel.branches.get(branch_id)
        self._kernel.guard.require_visible(
            scope, branch_id, not_found=BranchNotFoundError(str(branch_id)), action=action
        )

    # =========================================================================
    # Branches
    # =========================================================================

    def create_branch(
        self,
        actor: Actor,
        code: str,
        name: str,
        branch_type: BranchType,
        parent_id: UUID | None = None,
    ) -> Branch:
        def work(scope: AuthorizationScope) -> Branch:
            self._require_global(scope, "create branch")
            return self._kernel.branches.create_branch(
                code, name, branch_type, scope.actor_id, parent_id=parent_id
            )

        return self._run("create_branch", actor, work)

    def deactivate_branch(self, actor: Actor, branch_id: UUID) -> Branch:
        def work(scope: AuthorizationScope) -> Branch:
            self._require_global(scope, "deactivate branch")
            return self._kernel.branches.deactivate_branch(branch_id, scope.actor_id)

        return self._run("deactivate_branch", actor, work)

    # =========================================================================
    # Asset registry
    # =========================================================================

    def register_asset(
        self,
        actor: Actor,
        serial_number: str,
        kind: AssetKind,
        branch_id: UUID,
        model: str | None = None,
        manufacturer: str | None = None,
        status: AssetStatus | None = None,
    ) -> Asset:
        return self._run(
            "register_asset",
            actor,
            lambda scope: self._kernel.registry.register_asset(
                scope, serial_number, kind, branch_id,
                model=model, manufacturer=manufacturer, status=status,
            ),
            serial_number=serial_number,
        )

    def import_assets(
        self, actor: Actor, branch_id: UUID, rows: list[AssetImportRow]
    ) -> list[Asset]:
        return self._run(
            "import_assets",
            actor,
            lambda scope: self._kernel.registry.import_assets(scope, branch_id, rows),
        )

    def import_assets_from_file(
        self,
        actor: Actor,
        branch_id: UUID,
        path: Path | str,
        default_kind: AssetKind = AssetKind.MACHINE,
    ) -> list[Asset]:
        """Bulk import from a .csv or .xlsx export; see ``import_sources``."""
        rows = read_import_rows(path, default_kind=default_kind)
        return self.import_assets(actor, branch_id, rows)

    def register_customer_return(
        self,
        actor: Actor,
        branch_id: UUID,
        serial_number: str,
        customer_ref: str,
        model: str | None = None,
        manufacturer: str | None = None,
    ) -> Asset:
        return self._run(
            "register_customer_return",
            actor,
            lambda scope: self._kernel.registry.register_customer_return(
                scope, branch_id, serial_number, customer_ref,
                model=model, manufacturer=manufacturer,
            ),
            serial_number=serial_number,
        )

    def mark_sold(
        self, actor: Actor, serial_number: str, customer_ref: str | None = None
    ) -> Asset:
        return self._run(
            "mark_sold",
            actor,
            lambda scope: self._kernel.registry.mark_sold(scope, serial_number, customer_ref),
            serial_number=serial_number,
        )

    def mark_scrapped(self, actor: Actor, serial_number: str, reason: str) -> Asset:
        return self._run(
            "mark_scrapped",
            actor,
            lambda scope: self._kernel.registry.mark_scrapped(scope, serial_number, reason),
            serial_number=serial_number,
        )

    def get_asset(self, actor: Actor, asset_id: UUID) -> Asset:
        return self._run(
            "get_asset",
            actor,
            lambda scope: self._kernel.machines.get_asset(asset_id, scope),
            mutating=False,
        )

    def asset_history(self, actor: Actor, serial_number: str) -> list[MovementLog]:
        def work(scope: AuthorizationScope) -> list[MovementLog]:
            self._kernel.registry.get_by_serial(scope, serial_number)
            return self._kernel.auditor.movements_for(serial_number)

        return self._run(
            "asset_history", actor, work, mutating=False, serial_number=serial_number
        )

    def open_ticket(
        self, actor: Actor, serial_number: str, complaint: str | None = None
    ) -> MaintenanceTicket:
        return self._run(
            "open_ticket",
            actor,
            lambda scope: self._kernel.registry.open_ticket(scope, serial_number, complaint),
            serial_number=serial_number,
        )

    def get_ticket(self, actor: Actor, ticket_id: UUID) -> MaintenanceTicket:
        def work(scope: AuthorizationScope) -> MaintenanceTicket:
            ticket = self._kernel.registry.get_ticket(ticket_id)
            self._kernel.guard.require_visible(
                scope,
                ticket.branch_id,
                ticket.serviced_by_branch_id,
                not_found=TicketNotFoundError(str(ticket_id)),
                action="view maintenance ticket",
            )
            return ticket

        return self._run("get_ticket", actor, work, mutating=False)

    # =========================================================================
    # Transfer orders
    # =========================================================================

    def create_transfer_order(
        self,
        actor: Actor,
        source_branch_id: UUID,
        destination_branch_id: UUID,
        purpose: TransferPurpose,
        serials: list[str],
        *,
        requester_name: str | None = None,
        notes: str | None = None,
        override_binding: bool = False,
    ) -> OrderResult:
        return self._run(
            "create_transfer_order",
            actor,
            lambda scope: self._kernel.transfers.create_order(
                scope, source_branch_id, destination_branch_id, purpose, serials,
                requester_name=requester_name, notes=notes,
                override_binding=override_binding,
            ),
            purpose=purpose.value,
        )

    def create_inbound_order(
        self,
        actor: Actor,
        destination_branch_id: UUID,
        items: list[InboundItem],
        *,
        requester_name: str | None = None,
        notes: str | None = None,
    ) -> OrderResult:
        return self._run(
            "create_inbound_order",
            actor,
            lambda scope: self._kernel.transfers.create_inbound_order(
                scope, destination_branch_id, items,
                requester_name=requester_name, notes=notes,
            ),
        )

    def create_return_package(
        self,
        actor: Actor,
        center_branch_id: UUID,
        serials: list[str],
        notes: str | None = None,
    ) -> list[OrderResult]:
        return self._run(
            "create_return_package",
            actor,
            lambda scope: self._kernel.transfers.create_return_package(
                scope, center_branch_id, serials, notes
            ),
        )

    def receive_transfer_order(
        self,
        actor: Actor,
        order_id: UUID,
        received_serials: list[str] | None = None,
    ) -> ReceiveResult:
        return self._run(
            "receive_transfer_order",
            actor,
            lambda scope: self._kernel.transfers.receive_order(scope, order_id, received_serials),
            order_id=order_id,
        )

    def reject_order(self, actor: Actor, order_id: UUID, reason: str) -> TransferOrder:
        return self._run(
            "reject_order",
            actor,
            lambda scope: self._kernel.transfers.reject_order(scope, order_id, reason),
            order_id=order_id,
        )

    def cancel_order(
        self, actor: Actor, order_id: UUID, reason: str | None = None
    ) -> TransferOrder:
        return self._run(
            "cancel_order",
            actor,
            lambda scope: self._kernel.transfers.cancel_order(scope, order_id, reason),
            order_id=order_id,
        )

    def get_order(self, actor: Actor, order_id: UUID) -> TransferOrder:
        return self._run(
            "get_order",
            actor,
            lambda scope: self._kernel.transfers.get_order(scope, order_id),
            mutating=False,
            order_id=order_id,
        )

    def list_pending_orders(
        self, actor: Actor, branch_id: UUID, incoming: bool = True
    ) -> list[TransferOrder]:
        return self._run(
            "list_pending_orders",
            actor,
            lambda scope: self._kernel.transfers.list_pending_orders(scope, branch_id, incoming),
            mutating=False,
        )

    # =========================================================================
    # Machine state machine
    # =========================================================================

    def transition_machine(
        self,
        actor: Actor,
        asset_id: UUID,
        target: AssetStatus,
        *,
        notes: str | None = None,
        resolution: Resolution | str | None = None,
        parts: Sequence[PartLine] = (),
        cost: Decimal | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TransitionResult:
        def work(scope: AuthorizationScope) -> TransitionResult:
            machines = self._kernel.machines
            asset = machines.get_asset(asset_id, scope)
            self._kernel.guard.require_branch(scope, asset.branch_id, "transition machine")
            return machines.transition(
                asset,
                target,
                scope.actor_id,
                notes=notes,
                resolution=resolution,
                parts=parts,
                cost=cost,
                payload=payload,
                assignment=machines.active_assignment(asset.id),
            )

        return self._run("transition_machine", actor, work, target_status=target.value)

    def force_intake(
        self,
        actor: Actor,
        asset_id: UUID,
        center_branch_id: UUID,
        reason: str | None = None,
    ) -> MovementLog:
        def work(scope: AuthorizationScope) -> MovementLog:
            center = self._kernel.branches.get(center_branch_id)
            self._kernel.guard.require_branch(scope, center.id, "force intake")
            asset = self._kernel.session.get(Asset, asset_id)
            if asset is None:
                raise AssetNotFoundError(str(asset_id))
            return self._kernel.machines.force_intake(asset, center, scope.actor_id, reason)

        return self._run("force_intake", actor, work)

    def status_summary(self, actor: Actor, branch_id: UUID | None = None) -> dict[str, int]:
        """Asset counts by status; non-global actors default to their own branch."""

        def work(scope: AuthorizationScope) -> dict[str, int]:
            target = branch_id
            if target is None and not scope.is_global:
                target = scope.own_branch_id
                if target is None:
                    raise ForbiddenError("view status summary")
            if target is not None:
                self._require_branch_visible(scope, target, "view status summary")
            return self._kernel.machines.status_summary(target)

        return self._run("status_summary", actor, work, mutating=False)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def assign_technician(
        self,
        actor: Actor,
        asset_id: UUID,
        technician_id: UUID,
        technician_name: str | None = None,
    ) -> ServiceAssignment:
        return self._run(
            "assign_technician",
            actor,
            lambda scope: self._kernel.maintenance.assign_technician(
                scope, asset_id, technician_id, technician_name
            ),
        )

    def request_approval(
        self,
        actor: Actor,
        assignment_id: UUID,
        parts: Sequence[PartLine],
        cost: Decimal | None = None,
        notes: str | None = None,
    ) -> MaintenanceApprovalRequest:
        return self._run(
            "request_approval",
            actor,
            lambda scope: self._kernel.maintenance.request_approval(
                scope, assignment_id, parts, cost, notes
            ),
        )

    def respond_approval(
        self,
        actor: Actor,
        approval_id: UUID,
        decision: ApprovalDecision,
        reason: str | None = None,
    ) -> ApprovalResponse:
        return self._run(
            "respond_approval",
            actor,
            lambda scope: self._kernel.maintenance.respond_approval(
                scope, approval_id, decision, reason
            ),
            decision=decision.value,
        )

    def complete_direct(
        self,
        actor: Actor,
        assignment_id: UUID,
        used_parts: Sequence[PartLine],
        action_taken: str | None = None,
    ) -> CompletionResult:
        return self._run(
            "complete_direct",
            actor,
            lambda scope: self._kernel.maintenance.complete_direct(
                scope, assignment_id, used_parts, action_taken
            ),
        )

    def complete_after_approval(
        self,
        actor: Actor,
        assignment_id: UUID,
        used_parts: Sequence[PartLine],
        action_taken: str | None = None,
    ) -> CompletionResult:
        return self._run(
            "complete_after_approval",
            actor,
            lambda scope: self._kernel.maintenance.complete_after_approval(
                scope, assignment_id, used_parts, action_taken
            ),
        )

    def mark_total_loss(self, actor: Actor, assignment_id: UUID, reason: str) -> CompletionResult:
        return self._run(
            "mark_total_loss",
            actor,
            lambda scope: self._kernel.maintenance.mark_total_loss(scope, assignment_id, reason),
        )

    def pending_approvals(
        self, actor: Actor, branch_id: UUID
    ) -> list[MaintenanceApprovalRequest]:
        return self._run(
            "pending_approvals",
            actor,
            lambda scope: self._kernel.maintenance.pending_approvals(scope, branch_id),
            mutating=False,
        )

    # =========================================================================
    # Inventory
    # =========================================================================

    def register_part(
        self,
        actor: Actor,
        part_number: str,
        name: str,
        unit_price: Decimal = Decimal("0"),
    ) -> SparePart:
        def work(scope: AuthorizationScope) -> SparePart:
            self._require_global(scope, "register spare part")
            return self._kernel.ledger.register_part(
                part_number, name, scope.actor_id, unit_price=unit_price
            )

        return self._run("register_part", actor, work)

    def stock_in(
        self,
        actor: Actor,
        part_id: UUID,
        branch_id: UUID,
        quantity: int,
        reason: str = "STOCK_IN",
    ) -> InventoryItem:
        def work(scope: AuthorizationScope) -> InventoryItem:
            self._kernel.guard.require_branch(scope, branch_id, "stock in")
            return self._kernel.ledger.stock_in(
                part_id, branch_id, quantity, scope.actor_id, reason=reason
            )

        return self._run("stock_in", actor, work)

    def stock_out(
        self,
        actor: Actor,
        part_id: UUID,
        branch_id: UUID,
        quantity: int,
        reason: str = "STOCK_OUT",
    ) -> StockMovement:
        def work(scope: AuthorizationScope) -> StockMovement:
            self._kernel.guard.require_branch(scope, branch_id, "stock out")
            return self._kernel.ledger.stock_out(
                part_id, branch_id, quantity, scope.actor_id, reason=reason
            )

        return self._run("stock_out", actor, work)

    def transfer_stock(
        self,
        actor: Actor,
        part_id: UUID,
        from_branch_id: UUID,
        to_branch_id: UUID,
        quantity: int,
    ) -> tuple[StockMovement, InventoryItem]:
        def work(scope: AuthorizationScope) -> tuple[StockMovement, InventoryItem]:
            self._kernel.guard.require_branch(scope, from_branch_id, "transfer stock")
            self._kernel.branches.get(to_branch_id)
            return self._kernel.ledger.transfer_stock(
                part_id, from_branch_id, to_branch_id, quantity, scope.actor_id
            )

        return self._run("transfer_stock", actor, work)

    def adjust_quantity(
        self,
        actor: Actor,
        part_id: UUID,
        branch_id: UUID,
        new_quantity: int,
        reason: str,
        min_level: int | None = None,
    ) -> InventoryItem:
        def work(scope: AuthorizationScope) -> InventoryItem:
            self._kernel.guard.require_branch(scope, branch_id, "adjust stock")
            return self._kernel.ledger.adjust_quantity(
                part_id, branch_id, new_quantity, scope.actor_id, reason, min_level=min_level
            )

        return self._run("adjust_quantity", actor, work)

    def check_availability(
        self, actor: Actor, parts: list[PartLine], branch_id: UUID
    ) -> list[StockShortfall]:
        def work(scope: AuthorizationScope) -> list[StockShortfall]:
            self._require_branch_visible(scope, branch_id, "check stock")
            return self._kernel.ledger.check_availability(parts, branch_id)

        return self._run("check_availability", actor, work, mutating=False)

    def current_stock(self, actor: Actor, branch_id: UUID) -> list[InventoryItem]:
        def work(scope: AuthorizationScope) -> list[InventoryItem]:
            self._require_branch_visible(scope, branch_id, "view stock")
            return self._kernel.ledger.current_stock(branch_id)

        return self._run("current_stock", actor, work, mutating=False)

    def low_stock_items(self, actor: Actor, branch_id: UUID) -> list[InventoryItem]:
        def work(scope: AuthorizationScope) -> list[InventoryItem]:
            self._require_branch_visible(scope, branch_id, "view stock")
            return self._kernel.ledger.low_stock_items(branch_id)

        return self._run("low_stock_items", actor, work, mutating=False)

    # =========================================================================
    # Settlement
    # =========================================================================

    def record_payment(
        self,
        actor: Actor,
        debt_id: UUID,
        amount: Decimal,
        receipt_number: str | None = None,
    ) -> BranchDebt:
        return self._run(
            "record_payment",
            actor,
            lambda scope: self._kernel.settlement.record_payment(
                scope, debt_id, amount, receipt_number
            ),
        )

    def get_debt(self, actor: Actor, debt_id: UUID) -> BranchDebt:
        return self._run(
            "get_debt",
            actor,
            lambda scope: self._kernel.settlement.get_debt(scope, debt_id),
            mutating=False,
        )

    def outstanding_debts(
        self, actor: Actor, branch_id: UUID, as_debtor: bool = True
    ) -> list[BranchDebt]:
        def work(scope: AuthorizationScope) -> list[BranchDebt]:
            self._require_branch_visible(scope, branch_id, "view debts")
            return self._kernel.settlement.outstanding_debts(branch_id, as_debtor=as_debtor)

        return self._run("outstanding_debts", actor, work, mutating=False)

    # =========================================================================
    # Audit
    # =========================================================================

    def validate_audit_chain(self, actor: Actor) -> bool:
        def work(scope: AuthorizationScope) -> bool:
            self._require_global(scope, "validate audit chain")
            return self._kernel.auditor.validate_chain()

        return self._run("validate_audit_chain", actor, work, mutating=False)

    def audit_trace(
        self, actor: Actor, entity_type: str, entity_id: UUID
    ) -> tuple[AuditTraceEntry, ...]:
        def work(scope: AuthorizationScope) -> tuple[AuditTraceEntry, ...]:
            self._require_global(scope, "view audit trace")
            return self._kernel.auditor.get_trace(entity_type, entity_id)

        return self._run("audit_trace", actor, work, mutating=False)


# =============================================================================
# Construction from settings
# =============================================================================


def init_database(settings: KernelSettings | None = None) -> None:
    """Initialise the engine from settings and create all tables."""
    settings = settings or get_active_settings()
    db = settings.database
    init_engine_from_url(
        db.url, echo=db.echo, pool_size=db.pool_size, max_overflow=db.max_overflow
    )
    create_tables()


def create_workflow_service(
    session: Session,
    settings: KernelSettings | None = None,
    *,
    clock: Clock | None = None,
    sink: NotificationSink | None = None,
    resolver: BranchResolver | None = None,
    stats: StatsCache | None = None,
) -> AssetWorkflowService:
    """Build an ``AssetWorkflowService`` with the policy compiled from settings."""
    settings = settings or get_active_settings()
    return AssetWorkflowService(
        session,
        build_workflow_policy(settings),
        clock=clock,
        sink=sink,
        resolver=resolver,
        stats=stats,
    )
