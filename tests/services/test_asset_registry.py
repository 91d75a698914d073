"""
Tests for asset registration, bulk import, retirement and tickets.
"""

import pytest
from sqlalchemy import func, select

from asset_kernel.domain.dtos import AssetImportRow
from asset_kernel.domain.values import AssetKind, AssetStatus, TicketStatus, TransferPurpose
from asset_kernel.exceptions import (
    AssetKindMismatchError,
    AssetUnavailableError,
    DuplicateSerialError,
    ForbiddenError,
    ImportRowError,
)
from asset_kernel.models.asset import Asset
from asset_kernel.models.movement_log import MovementLog


class TestRegistration:
    def test_machine_defaults_to_new(self, machine, branch_a):
        assert machine.status == AssetStatus.NEW
        assert machine.kind == AssetKind.MACHINE
        assert machine.branch_id == branch_a.id
        assert machine.origin_branch_id is None

    def test_sim_defaults_to_active(self, service, branch_a, branch_a_actor):
        sim = service.register_asset(branch_a_actor, "SIM-1", AssetKind.SIM, branch_a.id)
        assert sim.status == AssetStatus.ACTIVE

    def test_kind_and_status_accept_plain_strings(self, service, branch_a, branch_a_actor):
        asset = service.register_asset(branch_a_actor, "SN-STR", "MACHINE", branch_a.id)
        assert asset.kind == AssetKind.MACHINE
        assert asset.status == AssetStatus.NEW

        standby = service.register_asset(
            branch_a_actor, "SN-STBY", "MACHINE", branch_a.id, status="STANDBY"
        )
        assert standby.status == AssetStatus.STANDBY

    def test_registration_is_logged(self, service, session, machine):
        (movement,) = session.execute(
            select(MovementLog).where(MovementLog.serial_number == "SN-1000")
        ).scalars().all()
        assert movement.action == "REGISTERED"
        assert movement.to_status == AssetStatus.NEW.value

    def test_duplicate_serial(self, service, machine, branch_a, branch_a_actor):
        with pytest.raises(DuplicateSerialError):
            service.register_asset(branch_a_actor, " SN-1000 ", AssetKind.MACHINE, branch_a.id)

    def test_repair_cycle_status_is_not_an_initial_status(
        self, service, branch_a, branch_a_actor
    ):
        with pytest.raises(ImportRowError):
            service.register_asset(
                branch_a_actor,
                "SN-X",
                AssetKind.MACHINE,
                branch_a.id,
                status=AssetStatus.IN_PROGRESS,
            )

    def test_cannot_register_for_another_branch(self, service, branch_b, branch_a_actor):
        with pytest.raises(ForbiddenError):
            service.register_asset(branch_a_actor, "SN-X", AssetKind.MACHINE, branch_b.id)


class TestImport:
    def test_valid_batch(self, service, branch_a, branch_a_actor):
        assets = service.import_assets(
            branch_a_actor,
            branch_a.id,
            [
                AssetImportRow("IMP-1", "machine", model="POS-X1"),
                AssetImportRow("IMP-2", AssetKind.SIM, status="active"),
                AssetImportRow("IMP-3", "MACHINE", status=AssetStatus.DEFECTIVE),
            ],
        )
        assert [(a.serial_number, a.status) for a in assets] == [
            ("IMP-1", AssetStatus.NEW),
            ("IMP-2", AssetStatus.ACTIVE),
            ("IMP-3", AssetStatus.DEFECTIVE),
        ]

    def test_every_bad_row_is_reported_and_nothing_is_inserted(
        self, service, session, machine, branch_a, branch_a_actor
    ):
        rows = [
            AssetImportRow("IMP-1", "MACHINE"),
            AssetImportRow("", "MACHINE"),
            AssetImportRow("IMP-1", "MACHINE"),
            AssetImportRow("SN-1000", "MACHINE"),
            AssetImportRow("IMP-5", "TOASTER"),
            AssetImportRow("IMP-6", "MACHINE", status="IN_TRANSIT"),
        ]
        with pytest.raises(ImportRowError) as exc_info:
            service.import_assets(branch_a_actor, branch_a.id, rows)

        assert [number for number, _ in exc_info.value.errors] == [2, 3, 4, 5, 6]
        assert session.execute(select(func.count(Asset.id))).scalar_one() == 1


class TestCustomerReturn:
    def test_unknown_serial_becomes_client_repair(self, service, branch_a, branch_a_actor):
        asset = service.register_customer_return(
            branch_a_actor, branch_a.id, "CUST-SN-1", "CUST-42", model="POS-X1"
        )
        assert asset.status == AssetStatus.CLIENT_REPAIR
        assert asset.is_customer_owned
        assert asset.customer_ref == "CUST-42"

    def test_sold_machine_comes_back(self, service, machine, branch_a, branch_a_actor):
        service.mark_sold(branch_a_actor, "SN-1000", "CUST-7")
        asset = service.register_customer_return(branch_a_actor, branch_a.id, "SN-1000", "CUST-7")
        assert asset.id == machine.id
        assert asset.status == AssetStatus.CLIENT_REPAIR

    def test_machine_in_repair_cycle_cannot_be_taken_back(
        self, service, machine_at_center, branch_a, branch_a_actor
    ):
        with pytest.raises(AssetUnavailableError):
            service.register_customer_return(branch_a_actor, branch_a.id, "SN-1000", "CUST-7")

    def test_sim_cannot_be_a_customer_return(self, service, branch_a, branch_a_actor):
        service.register_asset(branch_a_actor, "SIM-9", AssetKind.SIM, branch_a.id)
        with pytest.raises(AssetKindMismatchError):
            service.register_customer_return(branch_a_actor, branch_a.id, "SIM-9", "CUST-1")


class TestRetirement:
    def test_mark_sold(self, service, machine, branch_a_actor):
        asset = service.mark_sold(branch_a_actor, "SN-1000", "CUST-1")
        assert asset.status == AssetStatus.SOLD
        assert asset.customer_ref == "CUST-1"

    def test_mark_scrapped(self, service, machine, branch_a_actor):
        assert service.mark_scrapped(branch_a_actor, "SN-1000", "fire").status == AssetStatus.SCRAPPED

    def test_retired_asset_cannot_be_retired_again(self, service, machine, branch_a_actor):
        service.mark_scrapped(branch_a_actor, "SN-1000", "fire")
        with pytest.raises(AssetUnavailableError):
            service.mark_sold(branch_a_actor, "SN-1000")

    def test_assets_are_never_deleted(self, service, session, machine, branch_a_actor):
        service.mark_scrapped(branch_a_actor, "SN-1000", "fire")
        assert session.execute(select(func.count(Asset.id))).scalar_one() == 1


class TestTickets:
    def test_ticket_numbering(self, service, register_machine, branch_a_actor):
        register_machine("SN-1")
        register_machine("SN-2")
        first = service.open_ticket(branch_a_actor, "SN-1", "no power")
        second = service.open_ticket(branch_a_actor, "SN-2")
        assert first.ticket_number == "MR-20240315-0001"
        assert second.ticket_number == "MR-20240315-0002"
        assert first.status == TicketStatus.OPEN

    def test_one_open_ticket_per_machine(self, service, machine, branch_a_actor):
        service.open_ticket(branch_a_actor, "SN-1000")
        with pytest.raises(AssetUnavailableError):
            service.open_ticket(branch_a_actor, "SN-1000")

    def test_ticket_visible_to_the_servicing_center(
        self, service, machine, branch_a, branch_a_actor, center, center_actor
    ):
        ticket = service.open_ticket(branch_a_actor, "SN-1000")
        order = service.create_transfer_order(
            branch_a_actor, branch_a.id, center.id, TransferPurpose.MAINTENANCE, ["SN-1000"]
        ).order
        service.receive_transfer_order(center_actor, order.id)
        assert service.get_ticket(center_actor, ticket.id).id == ticket.id
