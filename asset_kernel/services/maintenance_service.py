"""
MaintenanceService -- technician assignments, repair quotes and completion.

Responsibility:
    Runs the work done on a machine at a maintenance center: assigning a
    technician, quoting parts to the paying branch, recording its decision,
    and completing the repair.

Architecture position:
    Kernel > Services.  Drives MachineStateService for every asset status
    change; stock deduction and billing happen inside the READY_FOR_RETURN
    transition via SettlementService.

The timing rule:
    Direct completion       UNDER_MAINTENANCE --complete_direct--> COMPLETED
                            (one step, deducts stock)
    Approval-gated          UNDER_MAINTENANCE --request_approval--> PENDING_APPROVAL
                            (quote only, stock checked not reserved)
                            --respond_approval(APPROVED)--> APPROVED
                            --complete_after_approval--> COMPLETED
                            (only this last step deducts stock)

Invariants enforced:
    - At most one non-terminal assignment per asset.
    - Only the origin branch itself answers a quote; a parent branch does
      not (global roles by override).
    - Direct completion is refused while a quote for the asset is PENDING.
    - A rejected quote sends the asset to READY_FOR_RETURN as
      REJECTED_REPAIR without touching stock.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_kernel.domain.clock import Clock
from asset_kernel.domain.dtos import AuthorizationScope, PartLine
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.domain.values import (
    ApprovalDecision,
    ApprovalStatus,
    AssetStatus,
    AssignmentStatus,
    NotificationType,
    Resolution,
    TicketStatus,
)
from asset_kernel.exceptions import (
    ApprovalAlreadyRespondedError,
    ApprovalNotFoundError,
    ApprovalPendingError,
    AssignmentNotFoundError,
    DuplicateAssignmentError,
    InsufficientStockError,
    InvalidAssignmentStatusError,
    RejectionReasonRequiredError,
)
from asset_kernel.logging_config import LogContext, get_logger
from asset_kernel.models.asset import Asset
from asset_kernel.models.audit_event import AuditAction
from asset_kernel.models.inventory import StockMovement
from asset_kernel.models.maintenance import MaintenanceApprovalRequest, ServiceAssignment
from asset_kernel.models.settlement import BranchDebt
from asset_kernel.services.auditor_service import AuditorService
from asset_kernel.services.branch_service import ScopeGuard
from asset_kernel.services.identifier_service import IdentifierService
from asset_kernel.services.inventory_service import InventoryLedger
from asset_kernel.services.machine_state_service import MachineStateService
from asset_kernel.services.notification_service import NotificationOutbox

logger = get_logger("services.maintenance")


@dataclass(frozen=True)
class ApprovalResponse:
    approval: MaintenanceApprovalRequest
    assignment: ServiceAssignment | None
    asset: Asset


@dataclass(frozen=True)
class CompletionResult:
    assignment: ServiceAssignment
    asset: Asset
    debt: BranchDebt | None = None
    movements: tuple[StockMovement, ...] = ()


class MaintenanceService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        auditor: AuditorService,
        identifiers: IdentifierService,
        machines: MachineStateService,
        ledger: InventoryLedger,
        guard: ScopeGuard,
        outbox: NotificationOutbox,
        policy: WorkflowPolicy,
    ):
        self._session = session
        self._clock = clock
        self._auditor = auditor
        self._identifiers = identifiers
        self._machines = machines
        self._ledger = ledger
        self._guard = guard
        self._outbox = outbox
        self._policy = policy

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_assignment(self, scope: AuthorizationScope, assignment_id: UUID) -> ServiceAssignment:
        assignment = self._session.get(ServiceAssignment, assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(str(assignment_id))
        self._guard.require_visible(
            scope,
            assignment.center_branch_id,
            assignment.origin_branch_id,
            not_found=AssignmentNotFoundError(str(assignment_id)),
            action="view assignment",
        )
        return assignment

    def get_approval(
        self, scope: AuthorizationScope, approval_id: UUID
    ) -> MaintenanceApprovalRequest:
        approval = self._session.get(MaintenanceApprovalRequest, approval_id)
        if approval is None:
            raise ApprovalNotFoundError(str(approval_id))
        self._guard.require_visible(
            scope,
            approval.origin_branch_id,
            approval.center_branch_id,
            not_found=ApprovalNotFoundError(str(approval_id)),
            action="view approval",
        )
        return approval

    def pending_approvals(
        self, scope: AuthorizationScope, branch_id: UUID
    ) -> list[MaintenanceApprovalRequest]:
        """PENDING quotes the given branch has to answer."""
        self._guard.require_visible(
            scope,
            branch_id,
            not_found=ApprovalNotFoundError(f"approvals for branch {branch_id}"),
            action="list approvals",
        )
        return list(
            self._session.execute(
                select(MaintenanceApprovalRequest)
                .where(
                    MaintenanceApprovalRequest.origin_branch_id == branch_id,
                    MaintenanceApprovalRequest.status == ApprovalStatus.PENDING,
                )
                .order_by(MaintenanceApprovalRequest.created_at)
            ).scalars()
        )

    def _require_status(
        self, assignment: ServiceAssignment, *allowed: AssignmentStatus
    ) -> None:
        if assignment.status not in allowed:
            raise InvalidAssignmentStatusError(
                str(assignment.id),
                assignment.status.value,
                " or ".join(s.value for s in allowed),
            )

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign_technician(
        self,
        scope: AuthorizationScope,
        asset_id: UUID,
        technician_id: UUID,
        technician_name: str | None = None,
    ) -> ServiceAssignment:
        asset = self._machines.get_asset(asset_id, scope)
        self._guard.require_branch(scope, asset.branch_id, "assign technician")

        existing = self._machines.active_assignment(asset.id)
        if existing is not None:
            raise DuplicateAssignmentError(asset.serial_number, str(existing.id))

        self._machines.transition(asset, AssetStatus.ASSIGNED, scope.actor_id)

        assignment = ServiceAssignment(
            asset_id=asset.id,
            serial_number=asset.serial_number,
            center_branch_id=asset.branch_id,
            origin_branch_id=asset.origin_branch_id,
            technician_id=technician_id,
            technician_name=technician_name,
            status=AssignmentStatus.UNDER_MAINTENANCE,
            started_at=self._clock.now(),
            created_by_id=scope.actor_id,
        )
        self._session.add(assignment)
        if asset.ticket is not None and asset.ticket.status == TicketStatus.OPEN:
            asset.ticket.status = TicketStatus.IN_PROGRESS
            asset.ticket.updated_by_id = scope.actor_id
        self._session.flush()

        self._auditor.record(
            "ServiceAssignment",
            assignment.id,
            AuditAction.ASSIGNMENT_CREATED,
            scope.actor_id,
            {"serial_number": asset.serial_number, "technician_id": technician_id},
        )
        logger.info(
            "technician_assigned",
            extra={"serial": asset.serial_number, "assignment_id": str(assignment.id)},
        )
        return assignment

    # ------------------------------------------------------------------
    # Quote and decision
    # ------------------------------------------------------------------

    def request_approval(
        self,
        scope: AuthorizationScope,
        assignment_id: UUID,
        parts: Sequence[PartLine],
        cost: Decimal | None = None,
        notes: str | None = None,
    ) -> MaintenanceApprovalRequest:
        """
        Quote the repair to the origin branch.  Nothing is deducted.

        Stock is checked at the center so a quote that could never be
        fulfilled is refused, but it is not reserved: the authoritative
        check happens again at completion.
        """
        assignment = self.get_assignment(scope, assignment_id)
        self._guard.require_branch(scope, assignment.center_branch_id, "request approval")
        self._require_status(assignment, AssignmentStatus.UNDER_MAINTENANCE)

        shortfalls = self._ledger.check_availability(list(parts), assignment.center_branch_id)
        if shortfalls:
            raise InsufficientStockError(str(assignment.center_branch_id), shortfalls)

        asset = self._machines.get_asset(assignment.asset_id)
        with LogContext.bind(serial_number=asset.serial_number):
            if asset.status == AssetStatus.ASSIGNED:
                self._machines.transition(
                    asset, AssetStatus.UNDER_INSPECTION, scope.actor_id, assignment=assignment
                )
            result = self._machines.transition(
                asset,
                AssetStatus.AWAITING_APPROVAL,
                scope.actor_id,
                notes=notes,
                parts=parts,
                cost=cost,
                assignment=assignment,
            )
            approval = result.approval

            logger.info(
                "approval_requested",
                extra={
                    "approval_id": str(approval.id),
                    "proposed_total": str(approval.proposed_total),
                },
            )
        return approval

    def respond_approval(
        self,
        scope: AuthorizationScope,
        approval_id: UUID,
        decision: ApprovalDecision,
        reason: str | None = None,
    ) -> ApprovalResponse:
        approval = self.get_approval(scope, approval_id)
        if approval.status != ApprovalStatus.PENDING:
            raise ApprovalAlreadyRespondedError(str(approval.id), approval.status.value)
        self._guard.require_own_branch(scope, approval.origin_branch_id, "respond to approval")

        decision = ApprovalDecision(decision)
        reason = (reason or "").strip() or None
        if decision == ApprovalDecision.REJECTED and reason is None:
            raise RejectionReasonRequiredError("MaintenanceApprovalRequest", str(approval.id))

        assignment = (
            self._session.get(ServiceAssignment, approval.assignment_id)
            if approval.assignment_id is not None
            else None
        )
        asset = self._machines.get_asset(approval.asset_id)

        approval.responded_by_id = scope.actor_id
        approval.responding_branch_id = scope.own_branch_id
        approval.responded_at = self._clock.now()
        approval.updated_by_id = scope.actor_id

        with LogContext.bind(serial_number=asset.serial_number):
            if decision == ApprovalDecision.APPROVED:
                approval.status = ApprovalStatus.APPROVED
                if assignment is not None:
                    assignment.status = AssignmentStatus.APPROVED
                self._machines.transition(
                    asset, AssetStatus.IN_PROGRESS, scope.actor_id, assignment=assignment
                )
                action = AuditAction.APPROVAL_GRANTED
            else:
                approval.status = ApprovalStatus.REJECTED
                approval.rejection_reason = reason
                if assignment is not None:
                    assignment.status = AssignmentStatus.REJECTED
                    assignment.resolution = Resolution.REJECTED_REPAIR
                self._machines.transition(
                    asset,
                    AssetStatus.READY_FOR_RETURN,
                    scope.actor_id,
                    notes=reason,
                    resolution=Resolution.REJECTED_REPAIR,
                    assignment=assignment,
                )
                action = AuditAction.APPROVAL_REJECTED
            if assignment is not None:
                assignment.updated_by_id = scope.actor_id
            self._session.flush()

            self._auditor.record(
                "MaintenanceApprovalRequest",
                approval.id,
                action,
                scope.actor_id,
                {"decision": decision, "reason": reason},
            )
            self._outbox.queue(
                approval.center_branch_id,
                NotificationType.APPROVAL_RESPONDED,
                "Repair quote answered",
                f"{approval.serial_number}: {decision.value}",
                {"approval_id": approval.id, "decision": decision},
            )
            logger.info(
                "approval_responded",
                extra={"approval_id": str(approval.id), "decision": decision.value},
            )
        return ApprovalResponse(approval=approval, assignment=assignment, asset=asset)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_direct(
        self,
        scope: AuthorizationScope,
        assignment_id: UUID,
        used_parts: Sequence[PartLine],
        action_taken: str | None = None,
    ) -> CompletionResult:
        """Finish a repair that needed no quote; deducts and bills now."""
        assignment = self.get_assignment(scope, assignment_id)
        self._guard.require_branch(scope, assignment.center_branch_id, "complete assignment")
        pending = self._machines.pending_approval(assignment.asset_id)
        if pending is not None:
            raise ApprovalPendingError(assignment.serial_number, str(pending.id))
        self._require_status(assignment, AssignmentStatus.UNDER_MAINTENANCE)
        return self._complete(scope, assignment, used_parts, action_taken)

    def complete_after_approval(
        self,
        scope: AuthorizationScope,
        assignment_id: UUID,
        used_parts: Sequence[PartLine],
        action_taken: str | None = None,
    ) -> CompletionResult:
        """Finish an approved repair; the only step of that path that deducts."""
        assignment = self.get_assignment(scope, assignment_id)
        self._guard.require_branch(scope, assignment.center_branch_id, "complete assignment")
        self._require_status(assignment, AssignmentStatus.APPROVED)
        return self._complete(scope, assignment, used_parts, action_taken)

    def _complete(
        self,
        scope: AuthorizationScope,
        assignment: ServiceAssignment,
        used_parts: Sequence[PartLine],
        action_taken: str | None,
    ) -> CompletionResult:
        asset = self._machines.get_asset(assignment.asset_id)
        with LogContext.bind(serial_number=asset.serial_number):
            if asset.status == AssetStatus.ASSIGNED:
                self._machines.transition(
                    asset, AssetStatus.IN_PROGRESS, scope.actor_id, assignment=assignment
                )
            result = self._machines.transition(
                asset,
                AssetStatus.READY_FOR_RETURN,
                scope.actor_id,
                notes=action_taken,
                resolution=Resolution.REPAIRED,
                parts=used_parts,
                assignment=assignment,
            )

            now = self._clock.now()
            assignment.status = AssignmentStatus.COMPLETED
            assignment.used_parts = [p.snapshot() for p in used_parts]
            assignment.total_cost = sum((p.total for p in used_parts), Decimal("0"))
            assignment.resolution = Resolution.REPAIRED
            assignment.action_taken = action_taken
            assignment.voucher_number = self._identifiers.next_identifier(
                self._policy.repair_voucher_id, ServiceAssignment.voucher_number
            )
            assignment.completed_at = now
            assignment.updated_by_id = scope.actor_id
            self._session.flush()

            settlement = result.settlement
            debt = settlement.debt if settlement is not None else None
            self._auditor.record(
                "ServiceAssignment",
                assignment.id,
                AuditAction.ASSIGNMENT_COMPLETED,
                scope.actor_id,
                {
                    "voucher_number": assignment.voucher_number,
                    "resolution": Resolution.REPAIRED,
                    "total_cost": assignment.total_cost,
                    "debt_id": debt.id if debt is not None else None,
                },
            )
            logger.info(
                "assignment_completed",
                extra={
                    "assignment_id": str(assignment.id),
                    "voucher_number": assignment.voucher_number,
                    "line_count": len(used_parts),
                },
            )
        return CompletionResult(
            assignment=assignment,
            asset=asset,
            debt=debt,
            movements=settlement.movements if settlement is not None else (),
        )

    def mark_total_loss(
        self, scope: AuthorizationScope, assignment_id: UUID, reason: str
    ) -> CompletionResult:
        """Close a repair as unrecoverable: READY_FOR_RETURN as SCRAPPED, no stock."""
        assignment = self.get_assignment(scope, assignment_id)
        self._guard.require_branch(scope, assignment.center_branch_id, "mark total loss")
        self._require_status(
            assignment, AssignmentStatus.UNDER_MAINTENANCE, AssignmentStatus.APPROVED
        )
        reason = (reason or "").strip()
        if not reason:
            raise RejectionReasonRequiredError("ServiceAssignment", str(assignment.id))

        asset = self._machines.get_asset(assignment.asset_id)
        with LogContext.bind(serial_number=asset.serial_number):
            if asset.status == AssetStatus.ASSIGNED:
                self._machines.transition(
                    asset, AssetStatus.UNDER_INSPECTION, scope.actor_id, assignment=assignment
                )
            self._machines.transition(
                asset,
                AssetStatus.READY_FOR_RETURN,
                scope.actor_id,
                notes=reason,
                resolution=Resolution.SCRAPPED,
                assignment=assignment,
            )
            assignment.status = AssignmentStatus.COMPLETED
            assignment.resolution = Resolution.SCRAPPED
            assignment.action_taken = reason
            assignment.completed_at = self._clock.now()
            assignment.updated_by_id = scope.actor_id
            self._session.flush()

            self._auditor.record(
                "ServiceAssignment",
                assignment.id,
                AuditAction.ASSIGNMENT_COMPLETED,
                scope.actor_id,
                {"resolution": Resolution.SCRAPPED, "reason": reason},
            )
            logger.info("total_loss_recorded", extra={"assignment_id": str(assignment.id)})
        return CompletionResult(assignment=assignment, asset=asset)
