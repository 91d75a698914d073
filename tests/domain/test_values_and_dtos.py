"""
Tests for the machine transition table, DTO validation and WorkflowPolicy.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from asset_kernel.domain.dtos import PartLine, StockShortfall, billable_total
from asset_kernel.domain.policy import IdentifierFormat, WorkflowPolicy
from asset_kernel.domain.values import (
    MACHINE_TRANSITIONS,
    AssetStatus,
    Role,
    is_allowed_transition,
)
from asset_kernel.exceptions import InvalidPartLineError


class TestTransitionTable:
    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (AssetStatus.IN_TRANSIT, AssetStatus.RECEIVED_AT_CENTER),
            (AssetStatus.RECEIVED_AT_CENTER, AssetStatus.ASSIGNED),
            (AssetStatus.ASSIGNED, AssetStatus.UNDER_INSPECTION),
            (AssetStatus.UNDER_INSPECTION, AssetStatus.AWAITING_APPROVAL),
            (AssetStatus.UNDER_INSPECTION, AssetStatus.ASSIGNED),
            (AssetStatus.AWAITING_APPROVAL, AssetStatus.IN_PROGRESS),
            (AssetStatus.AWAITING_APPROVAL, AssetStatus.READY_FOR_RETURN),
            (AssetStatus.IN_PROGRESS, AssetStatus.READY_FOR_RETURN),
            (AssetStatus.READY_FOR_RETURN, AssetStatus.RETURNING),
            (AssetStatus.RETURNING, AssetStatus.COMPLETED),
        ],
    )
    def test_declared_edges_are_allowed(self, from_status, to_status):
        assert is_allowed_transition(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (AssetStatus.NEW, AssetStatus.IN_TRANSIT),
            (AssetStatus.IN_TRANSIT, AssetStatus.COMPLETED),
            (AssetStatus.IN_PROGRESS, AssetStatus.AWAITING_APPROVAL),
            (AssetStatus.COMPLETED, AssetStatus.RECEIVED_AT_CENTER),
            (AssetStatus.RETURNING, AssetStatus.READY_FOR_RETURN),
        ],
    )
    def test_undeclared_edges_are_refused(self, from_status, to_status):
        assert not is_allowed_transition(from_status, to_status)

    @given(st.sampled_from(AssetStatus))
    def test_same_status_is_a_data_update(self, status):
        assert is_allowed_transition(status, status)

    @given(st.sampled_from(AssetStatus), st.sampled_from(AssetStatus))
    def test_allowed_moves_are_exactly_the_table(self, from_status, to_status):
        expected = from_status == to_status or to_status in MACHINE_TRANSITIONS.get(
            from_status, frozenset()
        )
        assert is_allowed_transition(from_status, to_status) == expected

    def test_bypass_targets_are_not_in_the_table(self):
        # force intake and legacy dispatch stay outside the declared table
        assert AssetStatus.RECEIVED_AT_CENTER not in MACHINE_TRANSITIONS[AssetStatus.RETURNING]
        assert AssetStatus.NEW not in MACHINE_TRANSITIONS


class TestPartLine:
    def test_total_is_coerced_to_decimal(self):
        line = PartLine(part_id=uuid4(), quantity=2, total=100)
        assert line.total == Decimal("100")
        assert isinstance(line.total, Decimal)

    @pytest.mark.parametrize("quantity", [0, -1, 1.5])
    def test_non_positive_quantity_is_rejected(self, quantity):
        with pytest.raises(InvalidPartLineError):
            PartLine(part_id=uuid4(), quantity=quantity)

    def test_negative_total_is_rejected(self):
        with pytest.raises(InvalidPartLineError):
            PartLine(part_id=uuid4(), quantity=1, total=Decimal("-1"))

    def test_billable_total_ignores_free_lines(self):
        lines = [
            PartLine(part_id=uuid4(), quantity=1, total=Decimal("40"), is_billable=True),
            PartLine(part_id=uuid4(), quantity=3, total=Decimal("75"), is_billable=False),
            PartLine(part_id=uuid4(), quantity=2, total=Decimal("60"), is_billable=True),
        ]
        assert billable_total(lines) == Decimal("100")

    def test_snapshot_is_json_friendly(self):
        part_id = uuid4()
        snap = PartLine(part_id=part_id, quantity=2, total=Decimal("9.5"), name="Belt").snapshot()
        assert snap == {
            "part_id": str(part_id),
            "name": "Belt",
            "quantity": 2,
            "total": "9.5",
            "is_billable": False,
        }

    def test_shortfall_missing(self):
        assert StockShortfall(uuid4(), "Belt", requested=5, available=2).missing == 3


class TestWorkflowPolicy:
    def test_defaults(self):
        policy = WorkflowPolicy()
        assert policy.transfer_order_id.render("20240315", 7) == "TO-20240315-007"
        assert policy.return_order_id.render("20240315", 7) == "RET-20240315-007"
        assert policy.repair_voucher_id.render("20240315", 7) == "RV-20240315-0007"
        assert policy.ticket_id.render("20240315", 12) == "MR-20240315-0012"
        assert Role.SUPER_ADMIN in policy.global_roles
        assert Role.BRANCH_MANAGER not in policy.global_roles

    def test_prefixes_must_be_distinct(self):
        with pytest.raises(ValueError, match="distinct"):
            WorkflowPolicy(return_order_id=IdentifierFormat("TO", 3))

    def test_transit_states_cannot_be_legacy_statuses(self):
        with pytest.raises(ValueError):
            WorkflowPolicy(legacy_transit_statuses=frozenset({AssetStatus.IN_TRANSIT}))

    @pytest.mark.parametrize("prefix,width", [("", 3), ("T-O", 3), ("TO", 0), ("TO", 10)])
    def test_identifier_format_validation(self, prefix, width):
        with pytest.raises(ValueError):
            IdentifierFormat(prefix, width)
