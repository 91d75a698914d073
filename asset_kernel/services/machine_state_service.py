"""
MachineStateService -- the machine repair-cycle state machine.

Responsibility:
    Moves a machine through IN_TRANSIT -> RECEIVED_AT_CENTER -> ... ->
    COMPLETED strictly along ``MACHINE_TRANSITIONS`` and runs the side
    effects keyed by the target state.

Architecture position:
    Kernel > Services.  Called by TransferOrderService (dispatch, intake,
    return legs) and MaintenanceService (assignment, quote, completion).

Invariants enforced:
    - ``transition()`` accepts only table moves (or same-status updates).
    - The two out-of-table moves exist only as ``dispatch_to_transit`` and
      ``force_intake``; each writes its own movement row and audit event.
    - READY_FOR_RETURN carries a resolution.
    - READY_FOR_RETURN with REPAIRED and parts deducts stock (and bills)
      before the status changes; a shortfall leaves the asset untouched.
    - Every status write appends exactly one MovementLog row.
    - AWAITING_APPROVAL is left only after the quote is answered, and never
      as REPAIRED; entering it moves the active assignment to PENDING_APPROVAL.

Failure modes:
    - InvalidMachineTransitionError for moves outside the table.
    - ApprovalPendingError leaving AWAITING_APPROVAL with the quote unanswered.
    - MissingResolutionError entering READY_FOR_RETURN without a resolution.
    - AssetKindMismatchError for SIM assets.
    - AssetUnavailableError when a bypass precondition does not hold.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from asset_kernel.domain.clock import Clock
from asset_kernel.domain.dtos import AuthorizationScope, PartLine
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.domain.values import (
    TERMINAL_ASSIGNMENT_STATUSES,
    TRANSIT_STATUSES,
    ApprovalStatus,
    AssetKind,
    AssetStatus,
    AssignmentStatus,
    BranchType,
    NotificationType,
    Resolution,
    is_allowed_transition,
)
from asset_kernel.exceptions import (
    ApprovalPendingError,
    AssetKindMismatchError,
    AssetNotFoundError,
    AssetUnavailableError,
    InvalidBranchPairError,
    InvalidMachineTransitionError,
    MissingResolutionError,
)
from asset_kernel.logging_config import get_logger
from asset_kernel.models.asset import Asset
from asset_kernel.models.audit_event import AuditAction
from asset_kernel.models.branch import Branch
from asset_kernel.models.maintenance import MaintenanceApprovalRequest, ServiceAssignment
from asset_kernel.models.movement_log import MovementLog
from asset_kernel.services.auditor_service import AuditorService
from asset_kernel.services.branch_service import ScopeGuard
from asset_kernel.services.notification_service import NotificationOutbox
from asset_kernel.services.settlement_service import SettlementOutcome, SettlementService
from asset_kernel.services.stats_cache import StatsCache

logger = get_logger("services.machine_state")


@dataclass(frozen=True)
class TransitionResult:
    asset: Asset
    from_status: AssetStatus
    to_status: AssetStatus
    movement: MovementLog
    approval: MaintenanceApprovalRequest | None = None
    settlement: SettlementOutcome | None = None


def _coerce_resolution(serial_number: str, resolution: Resolution | str | None) -> Resolution:
    if isinstance(resolution, Resolution):
        return resolution
    try:
        return Resolution(resolution)
    except ValueError:
        raise MissingResolutionError(serial_number, resolution) from None


class MachineStateService:
    """
    Strict repair-cycle state machine with two named bypasses.

    Non-goals:
        - Does NOT check authorization scope for transitions; callers apply
          ScopeGuard before handing the asset over.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        auditor: AuditorService,
        settlement: SettlementService,
        guard: ScopeGuard,
        outbox: NotificationOutbox,
        policy: WorkflowPolicy,
        stats: StatsCache,
    ):
        self._session = session
        self._clock = clock
        self._auditor = auditor
        self._settlement = settlement
        self._guard = guard
        self._outbox = outbox
        self._policy = policy
        self._stats = stats

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_asset(self, asset_id: UUID, scope: AuthorizationScope | None = None) -> Asset:
        asset = self._session.get(Asset, asset_id)
        if asset is None:
            raise AssetNotFoundError(str(asset_id))
        if scope is not None:
            self._guard.require_visible(
                scope,
                asset.branch_id,
                asset.origin_branch_id,
                not_found=AssetNotFoundError(str(asset_id)),
                action="view asset",
            )
        return asset

    def get_by_serial(self, serial_number: str, lock: bool = False) -> Asset | None:
        stmt = select(Asset).where(Asset.serial_number == serial_number)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def active_assignment(self, asset_id: UUID) -> ServiceAssignment | None:
        return self._session.execute(
            select(ServiceAssignment).where(
                ServiceAssignment.asset_id == asset_id,
                ServiceAssignment.status.not_in(TERMINAL_ASSIGNMENT_STATUSES),
            )
        ).scalar_one_or_none()

    def pending_approval(self, asset_id: UUID) -> MaintenanceApprovalRequest | None:
        return self._session.execute(
            select(MaintenanceApprovalRequest).where(
                MaintenanceApprovalRequest.asset_id == asset_id,
                MaintenanceApprovalRequest.status == ApprovalStatus.PENDING,
            )
        ).scalar_one_or_none()

    def _require_machine(self, asset: Asset) -> None:
        if asset.kind != AssetKind.MACHINE:
            raise AssetKindMismatchError(
                asset.serial_number, AssetKind.MACHINE.value, asset.kind.value
            )

    # ------------------------------------------------------------------
    # Table-driven transition
    # ------------------------------------------------------------------

    def transition(
        self,
        asset: Asset,
        target: AssetStatus,
        actor_id: UUID,
        *,
        notes: str | None = None,
        resolution: Resolution | str | None = None,
        parts: Sequence[PartLine] = (),
        cost: Decimal | None = None,
        payload: dict[str, Any] | None = None,
        assignment: ServiceAssignment | None = None,
    ) -> TransitionResult:
        """
        Move ``asset`` to ``target``.

        Side effects keyed by target state:
            AWAITING_APPROVAL: upsert the PENDING approval request for the
                asset, linked to its active assignment and ticket.
            READY_FOR_RETURN + REPAIRED + parts: deduct the parts at the
                asset's current branch and bill the origin branch.

        Raises:
            InvalidMachineTransitionError, ApprovalPendingError, MissingResolutionError,
            InsufficientStockError (nothing written).
        """
        self._require_machine(asset)
        from_status = asset.status

        if not is_allowed_transition(from_status, target):
            logger.warning(
                "invalid_transition",
                extra={
                    "serial": asset.serial_number,
                    "from_status": from_status.value,
                    "to_status": target.value,
                },
            )
            raise InvalidMachineTransitionError(
                asset.serial_number, from_status.value, target.value
            )

        resolved: Resolution | None = None
        if target == AssetStatus.READY_FOR_RETURN:
            resolved = _coerce_resolution(asset.serial_number, resolution)

        changed = from_status != target
        if changed and from_status == AssetStatus.AWAITING_APPROVAL:
            # A quoted repair may only end as REJECTED_REPAIR from here.
            if resolved == Resolution.REPAIRED:
                raise InvalidMachineTransitionError(
                    asset.serial_number,
                    from_status.value,
                    f"{target.value} ({Resolution.REPAIRED.value})",
                )
            pending = self.pending_approval(asset.id)
            if pending is not None:
                logger.warning(
                    "transition_blocked_by_pending_approval",
                    extra={"serial": asset.serial_number, "approval_id": str(pending.id)},
                )
                raise ApprovalPendingError(asset.serial_number, str(pending.id))

        movement_id = uuid4()
        if assignment is None:
            assignment = self.active_assignment(asset.id)

        settlement = None
        if changed and resolved == Resolution.REPAIRED and parts:
            if assignment is not None:
                reference = ("ServiceAssignment", assignment.id)
            else:
                reference = ("MovementLog", movement_id)
            settlement = self._settlement.settle_consumption(
                parts=list(parts),
                repair_branch_id=asset.branch_id,
                debtor_branch_id=asset.origin_branch_id,
                serial_number=asset.serial_number,
                actor_id=actor_id,
                reference_type=reference[0],
                reference_id=reference[1],
            )

        asset.status = target
        if resolved is not None:
            asset.resolution = resolved
        asset.updated_by_id = actor_id

        details: dict[str, Any] = {"payload": payload or {}}
        if resolved is not None:
            details["resolution"] = resolved
        if parts:
            details["parts"] = [p.snapshot() for p in parts]
        if settlement is not None and settlement.debt is not None:
            details["debt_id"] = settlement.debt.id

        movement = self._auditor.log_movement(
            serial_number=asset.serial_number,
            action=f"TRANSITION_{target.value}",
            actor_id=actor_id,
            asset=asset,
            from_status=from_status,
            to_status=target,
            notes=notes,
            details=details,
            movement_id=movement_id,
        )

        approval = None
        if target == AssetStatus.AWAITING_APPROVAL:
            approval = self._upsert_approval(asset, parts, cost, notes, actor_id, assignment)

        self._session.flush()
        logger.info(
            "asset_transitioned",
            extra={
                "serial": asset.serial_number,
                "from_status": from_status.value,
                "to_status": target.value,
                "resolution": resolved.value if resolved else None,
            },
        )
        return TransitionResult(
            asset=asset,
            from_status=from_status,
            to_status=target,
            movement=movement,
            approval=approval,
            settlement=settlement,
        )

    def _upsert_approval(
        self,
        asset: Asset,
        parts: Sequence[PartLine],
        cost: Decimal | None,
        notes: str | None,
        actor_id: UUID,
        assignment: ServiceAssignment | None,
    ) -> MaintenanceApprovalRequest:
        proposed_total = cost if cost is not None else sum(
            (p.total for p in parts), Decimal("0")
        )
        approval = self.pending_approval(asset.id)
        if approval is None:
            approval = MaintenanceApprovalRequest(
                asset_id=asset.id,
                serial_number=asset.serial_number,
                center_branch_id=asset.branch_id,
                origin_branch_id=asset.origin_branch_id or asset.branch_id,
                status=ApprovalStatus.PENDING,
                created_by_id=actor_id,
            )
            self._session.add(approval)
        else:
            approval.updated_by_id = actor_id

        approval.assignment_id = assignment.id if assignment is not None else None
        approval.ticket_id = asset.ticket_id
        approval.proposed_parts = [p.snapshot() for p in parts]
        approval.proposed_total = Decimal(str(proposed_total))
        approval.notes = notes
        if assignment is not None and assignment.status == AssignmentStatus.UNDER_MAINTENANCE:
            assignment.status = AssignmentStatus.PENDING_APPROVAL
            assignment.proposed_parts = approval.proposed_parts
            assignment.proposed_cost = approval.proposed_total
            assignment.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record(
            "MaintenanceApprovalRequest",
            approval.id,
            AuditAction.APPROVAL_REQUESTED,
            actor_id,
            {
                "serial_number": asset.serial_number,
                "proposed_total": approval.proposed_total,
                "line_count": len(parts),
            },
        )
        self._outbox.queue(
            approval.origin_branch_id,
            NotificationType.APPROVAL_REQUESTED,
            "Repair quote awaiting approval",
            f"{asset.serial_number}: proposed cost {approval.proposed_total}",
            {"approval_id": approval.id, "serial_number": asset.serial_number},
        )
        return approval

    # ------------------------------------------------------------------
    # Named bypasses
    # ------------------------------------------------------------------

    def dispatch_to_transit(
        self,
        asset: Asset,
        actor_id: UUID,
        *,
        order_number: str,
        destination_branch_id: UUID,
        notes: str | None = None,
    ) -> MovementLog:
        """
        Legacy pre-center status -> IN_TRANSIT, outside the table.

        The eligible statuses come from ``WorkflowPolicy.legacy_transit_statuses``.
        """
        self._require_machine(asset)
        from_status = asset.status
        if from_status not in self._policy.legacy_transit_statuses:
            raise AssetUnavailableError(
                asset.serial_number, from_status.value, "not eligible for maintenance dispatch"
            )

        asset.status = AssetStatus.IN_TRANSIT
        asset.resolution = None
        asset.updated_by_id = actor_id
        movement = self._auditor.log_movement(
            serial_number=asset.serial_number,
            action="LEGACY_DISPATCH",
            actor_id=actor_id,
            asset=asset,
            from_status=from_status,
            to_status=AssetStatus.IN_TRANSIT,
            notes=notes,
            details={"order_number": order_number, "destination_branch_id": destination_branch_id},
        )
        self._session.flush()
        self._auditor.record(
            "Asset",
            asset.id,
            AuditAction.LEGACY_DISPATCH,
            actor_id,
            {"order_number": order_number, "from_status": from_status},
        )
        logger.info(
            "legacy_dispatch",
            extra={"serial": asset.serial_number, "from_status": from_status.value},
        )
        return movement

    def force_intake(
        self,
        asset: Asset,
        center: Branch,
        actor_id: UUID,
        reason: str | None = None,
    ) -> MovementLog:
        """
        Any status -> RECEIVED_AT_CENTER, the cycle's re-entry point.

        Moves the asset to ``center`` and stamps its origin when it arrives
        from another branch.  Assets on a pending shipment must be received
        through their order instead.
        """
        self._require_machine(asset)
        if center.branch_type != BranchType.MAINTENANCE_CENTER:
            raise InvalidBranchPairError(
                "FORCE_INTAKE", ["intake branch must be a maintenance center"]
            )
        from_status = asset.status
        if from_status in TRANSIT_STATUSES:
            raise AssetUnavailableError(
                asset.serial_number, from_status.value, "on a pending transfer order"
            )

        previous_branch_id = asset.branch_id
        if previous_branch_id != center.id and asset.origin_branch_id is None:
            asset.origin_branch_id = previous_branch_id
        asset.branch_id = center.id
        asset.status = AssetStatus.RECEIVED_AT_CENTER
        asset.resolution = None
        asset.updated_by_id = actor_id

        movement = self._auditor.log_movement(
            serial_number=asset.serial_number,
            action="FORCE_INTAKE",
            actor_id=actor_id,
            asset=asset,
            from_status=from_status,
            to_status=AssetStatus.RECEIVED_AT_CENTER,
            notes=reason,
            details={"previous_branch_id": previous_branch_id},
        )
        self._session.flush()
        self._auditor.record(
            "Asset",
            asset.id,
            AuditAction.FORCE_INTAKE,
            actor_id,
            {
                "from_status": from_status,
                "previous_branch_id": previous_branch_id,
                "center_branch_id": center.id,
                "reason": reason,
            },
        )
        logger.warning(
            "force_intake_used",
            extra={"serial": asset.serial_number, "from_status": from_status.value},
        )
        return movement

    # ------------------------------------------------------------------
    # Transfer support
    # ------------------------------------------------------------------

    def restore_after_aborted_transfer(
        self,
        asset: Asset,
        status: AssetStatus,
        actor_id: UUID,
        *,
        action: str,
        order_number: str,
        notes: str | None = None,
    ) -> MovementLog:
        """Put an asset back after its order was rejected or cancelled."""
        from_status = asset.status
        asset.status = status
        asset.updated_by_id = actor_id
        return self._auditor.log_movement(
            serial_number=asset.serial_number,
            action=action,
            actor_id=actor_id,
            asset=asset,
            from_status=from_status,
            to_status=status,
            notes=notes,
            details={"order_number": order_number},
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def status_summary(self, branch_id: UUID | None = None) -> dict[str, int]:
        """Asset counts by status, optionally for one branch."""

        def load() -> dict[str, int]:
            stmt = select(Asset.status, func.count(Asset.id)).group_by(Asset.status)
            if branch_id is not None:
                stmt = stmt.where(Asset.branch_id == branch_id)
            return {status.value: count for status, count in self._session.execute(stmt)}

        return dict(self._stats.get_or_load(("status_summary", branch_id), load))
