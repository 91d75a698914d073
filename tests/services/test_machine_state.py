"""
Tests for the machine repair-cycle state machine.

Covers:
- Only table moves are accepted; same-status updates are allowed
- READY_FOR_RETURN requires a resolution
- The two named bypasses: legacy dispatch and force intake
- Status summaries served through the stats cache
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from asset_kernel.domain.dtos import PartLine
from asset_kernel.domain.values import AssetStatus, Resolution, TransferPurpose
from asset_kernel.exceptions import (
    AssetUnavailableError,
    ForbiddenError,
    InvalidBranchPairError,
    InvalidMachineTransitionError,
    MissingResolutionError,
)
from asset_kernel.models.audit_event import AuditAction, AuditEvent
from asset_kernel.models.maintenance import MaintenanceApprovalRequest
from asset_kernel.models.movement_log import MovementLog


class TestStrictTable:
    @pytest.mark.parametrize(
        "target",
        [AssetStatus.IN_PROGRESS, AssetStatus.READY_FOR_RETURN, AssetStatus.COMPLETED, AssetStatus.NEW],
    )
    def test_moves_outside_the_table_are_refused(
        self, service, machine_at_center, center_actor, target
    ):
        with pytest.raises(InvalidMachineTransitionError) as exc_info:
            service.transition_machine(
                center_actor, machine_at_center.id, target, resolution=Resolution.REPAIRED
            )
        assert exc_info.value.from_status == "RECEIVED_AT_CENTER"
        assert exc_info.value.to_status == target.value

    def test_table_move_writes_one_movement(
        self, service, session, machine_at_center, center_actor
    ):
        result = service.transition_machine(
            center_actor, machine_at_center.id, AssetStatus.UNDER_INSPECTION, notes="bench 3"
        )
        assert result.from_status == AssetStatus.RECEIVED_AT_CENTER
        assert result.to_status == AssetStatus.UNDER_INSPECTION
        assert result.movement.action == "TRANSITION_UNDER_INSPECTION"
        assert result.movement.notes == "bench 3"

    def test_same_status_update_is_recorded(self, service, machine_at_center, center_actor):
        result = service.transition_machine(
            center_actor,
            machine_at_center.id,
            AssetStatus.RECEIVED_AT_CENTER,
            notes="photographed",
        )
        assert result.from_status == result.to_status == AssetStatus.RECEIVED_AT_CENTER
        assert result.movement.notes == "photographed"

    def test_branch_role_cannot_move_a_machine_it_only_sees(
        self, service, machine_at_center, branch_a_actor
    ):
        with pytest.raises(ForbiddenError):
            service.transition_machine(
                branch_a_actor, machine_at_center.id, AssetStatus.UNDER_INSPECTION
            )


class TestResolution:
    def _inspect(self, service, asset, actor):
        service.transition_machine(actor, asset.id, AssetStatus.UNDER_INSPECTION)

    def test_ready_for_return_requires_resolution(
        self, service, machine_at_center, center_actor
    ):
        self._inspect(service, machine_at_center, center_actor)
        with pytest.raises(MissingResolutionError):
            service.transition_machine(
                center_actor, machine_at_center.id, AssetStatus.READY_FOR_RETURN
            )

    def test_unknown_resolution_is_refused(self, service, machine_at_center, center_actor):
        self._inspect(service, machine_at_center, center_actor)
        with pytest.raises(MissingResolutionError):
            service.transition_machine(
                center_actor,
                machine_at_center.id,
                AssetStatus.READY_FOR_RETURN,
                resolution="FIXED_ISH",
            )

    def test_resolution_accepts_its_string_value(self, service, machine_at_center, center_actor):
        self._inspect(service, machine_at_center, center_actor)
        result = service.transition_machine(
            center_actor, machine_at_center.id, AssetStatus.READY_FOR_RETURN, resolution="SCRAPPED"
        )
        assert result.asset.resolution == Resolution.SCRAPPED
        assert result.settlement is None

    def test_repair_without_assignment_references_the_movement(
        self, service, stocked_part, machine_at_center, center, center_actor, branch_a
    ):
        self._inspect(service, machine_at_center, center_actor)
        line = PartLine(part_id=stocked_part.id, quantity=1, total=Decimal("60"), is_billable=True)
        result = service.transition_machine(
            center_actor,
            machine_at_center.id,
            AssetStatus.READY_FOR_RETURN,
            resolution=Resolution.REPAIRED,
            parts=[line],
        )
        debt = result.settlement.debt
        assert debt.debtor_branch_id == branch_a.id
        assert debt.reference_type == "MovementLog"
        assert debt.reference_id == result.movement.id
        assert service.kernel.ledger.quantity(stocked_part.id, center.id) == 9


class TestAwaitingApproval:
    def test_quote_total_defaults_to_line_totals(
        self, service, session, stocked_part, machine_at_center, center_actor
    ):
        service.transition_machine(center_actor, machine_at_center.id, AssetStatus.UNDER_INSPECTION)
        lines = [
            PartLine(part_id=stocked_part.id, quantity=1, total=Decimal("40")),
            PartLine(part_id=stocked_part.id, quantity=1, total=Decimal("35.50")),
        ]
        result = service.transition_machine(
            center_actor, machine_at_center.id, AssetStatus.AWAITING_APPROVAL, parts=lines
        )
        assert result.approval.proposed_total == Decimal("75.50")
        count = len(session.execute(select(MaintenanceApprovalRequest)).scalars().all())
        assert count == 1


class TestLegacyDispatch:
    def test_defective_machine_ships_straight_to_transit(
        self, service, session, register_machine, branch_a, branch_a_actor, center
    ):
        register_machine("SN-OLD", status=AssetStatus.DEFECTIVE)
        service.create_transfer_order(
            branch_a_actor, branch_a.id, center.id, TransferPurpose.MAINTENANCE, ["SN-OLD"]
        )
        actions = session.execute(
            select(MovementLog.action).where(MovementLog.serial_number == "SN-OLD")
        ).scalars().all()
        assert "LEGACY_DISPATCH" in actions
        assert service.kernel.machines.get_by_serial("SN-OLD").status == AssetStatus.IN_TRANSIT


class TestForceIntake:
    def test_pulls_machine_into_the_center(
        self, service, session, machine, branch_a, center, center_actor
    ):
        movement = service.force_intake(center_actor, machine.id, center.id, "walk-in")

        assert movement.action == "FORCE_INTAKE"
        assert movement.from_status == AssetStatus.NEW.value
        asset = service.kernel.machines.get_asset(machine.id)
        assert asset.status == AssetStatus.RECEIVED_AT_CENTER
        assert asset.branch_id == center.id
        assert asset.origin_branch_id == branch_a.id
        events = session.execute(
            select(AuditEvent).where(AuditEvent.action == AuditAction.FORCE_INTAKE)
        ).scalars().all()
        assert len(events) == 1

    def test_machine_on_a_pending_order_is_refused(
        self, service, machine, branch_a, branch_a_actor, center, center_actor
    ):
        service.create_transfer_order(
            branch_a_actor, branch_a.id, center.id, TransferPurpose.MAINTENANCE, ["SN-1000"]
        )
        with pytest.raises(AssetUnavailableError):
            service.force_intake(center_actor, machine.id, center.id)

    def test_intake_branch_must_be_a_center(self, service, machine, branch_b, admin):
        with pytest.raises(InvalidBranchPairError):
            service.force_intake(admin, machine.id, branch_b.id)


class TestStatusSummary:
    def test_counts_by_status(self, service, register_machine, branch_a_actor):
        register_machine("SN-1")
        register_machine("SN-2", status=AssetStatus.DEFECTIVE)
        assert service.status_summary(branch_a_actor) == {"NEW": 1, "DEFECTIVE": 1}

    def test_reads_are_cached(self, service, machine, branch_a_actor):
        service.status_summary(branch_a_actor)
        service.status_summary(branch_a_actor)
        assert service.stats.stats.hits == 1

    def test_mutations_invalidate(self, service, machine, register_machine, branch_a_actor):
        assert service.status_summary(branch_a_actor) == {"NEW": 1}
        register_machine("SN-2")
        assert service.status_summary(branch_a_actor) == {"NEW": 2}

    def test_global_summary_spans_branches(self, service, machine, machine_at_center, admin):
        summary = service.status_summary(admin)
        assert summary == {"RECEIVED_AT_CENTER": 1}
