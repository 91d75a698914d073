"""
Tests for date-scoped document numbers.

Format is PREFIX-YYYYMMDD-NNN; the sequence restarts every calendar day per
prefix and continues from the highest number already stored.
"""

import pytest
from sqlalchemy import delete

from asset_kernel.domain.policy import IdentifierFormat
from asset_kernel.domain.values import TransferPurpose
from asset_kernel.models.sequence import SequenceCounter
from asset_kernel.models.transfer import TransferOrder
from asset_kernel.services.identifier_service import parse_sequence


class TestIdentifierFormat:
    def test_render_pads_the_sequence(self):
        assert IdentifierFormat("TO", 3).render("20240315", 7) == "TO-20240315-007"

    def test_sequence_may_outgrow_the_width(self):
        assert IdentifierFormat("TO", 3).render("20240315", 1234) == "TO-20240315-1234"

    @pytest.mark.parametrize("prefix", ["", "T-O", "T O"])
    def test_prefix_must_be_alphanumeric(self, prefix):
        with pytest.raises(ValueError):
            IdentifierFormat(prefix, 3)

    @pytest.mark.parametrize("width", [0, 10])
    def test_width_bounds(self, width):
        with pytest.raises(ValueError):
            IdentifierFormat("TO", width)


class TestParseSequence:
    def test_trailing_number(self):
        assert parse_sequence("RV-20240315-0042") == 42

    @pytest.mark.parametrize("value", ["RV-20240315-", "RV20240315", "RV-20240315-00A1"])
    def test_malformed(self, value):
        assert parse_sequence(value) is None


class TestAllocation:
    def _order(self, service, serial, actor, source, destination):
        return service.create_transfer_order(
            actor, source.id, destination.id, TransferPurpose.MAINTENANCE, [serial]
        ).order

    def test_orders_number_consecutively(
        self, service, register_machine, branch_a, branch_a_actor, center
    ):
        register_machine("SN-1")
        register_machine("SN-2")
        first = self._order(service, "SN-1", branch_a_actor, branch_a, center)
        second = self._order(service, "SN-2", branch_a_actor, branch_a, center)
        assert first.order_number == "TO-20240315-001"
        assert second.order_number == "TO-20240315-002"

    def test_sequence_restarts_each_day(
        self, service, register_machine, branch_a, branch_a_actor, center, deterministic_clock
    ):
        register_machine("SN-1")
        register_machine("SN-2")
        self._order(service, "SN-1", branch_a_actor, branch_a, center)
        deterministic_clock.advance_days(1)
        order = self._order(service, "SN-2", branch_a_actor, branch_a, center)
        assert order.order_number == "TO-20240316-001"

    def test_lost_counter_is_reseeded_from_stored_numbers(
        self, service, session, policy, machine, branch_a, branch_a_actor, center
    ):
        self._order(service, "SN-1000", branch_a_actor, branch_a, center)
        session.execute(delete(SequenceCounter))
        session.commit()

        identifier = service.kernel.identifiers.next_identifier(
            policy.transfer_order_id, TransferOrder.order_number
        )
        assert identifier == "TO-20240315-002"

    def test_prefixes_have_independent_counters(self, service, policy):
        identifiers = service.kernel.identifiers
        assert identifiers.next_identifier(
            policy.transfer_order_id, TransferOrder.order_number
        ) == "TO-20240315-001"
        assert identifiers.next_identifier(
            policy.return_order_id, TransferOrder.order_number
        ) == "RET-20240315-001"
