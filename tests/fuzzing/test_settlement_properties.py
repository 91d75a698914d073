"""
Property-based tests for the pure settlement and state-machine rules.

Boundaries fuzzed here:
- Debt status for any (amount, paid) pair, and across payment sequences
- The machine transition table: every move stays inside the repair cycle,
  every cycle state can still reach COMPLETED, COMPLETED is terminal
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from asset_kernel.domain.values import (
    MACHINE_TRANSITIONS,
    REPAIR_CYCLE_STATUSES,
    AssetStatus,
    DebtStatus,
    is_allowed_transition,
)
from asset_kernel.services.settlement_service import compute_debt_status

amounts = st.decimals(
    min_value=Decimal("0.01"), max_value=Decimal("1000000"), places=2, allow_nan=False
)


@given(amount=amounts, fraction=st.fractions(min_value=0, max_value=2))
def test_status_follows_paid_portion(amount, fraction):
    paid = (amount * Decimal(fraction.numerator) / Decimal(fraction.denominator)).quantize(
        Decimal("0.01")
    )
    status = compute_debt_status(amount, paid)
    if paid >= amount:
        assert status == DebtStatus.PAID
    elif paid > 0:
        assert status == DebtStatus.PARTIALLY_PAID
    else:
        assert status == DebtStatus.PENDING


@settings(max_examples=200)
@given(amount=amounts, cuts=st.lists(st.integers(min_value=1, max_value=100), max_size=10))
def test_payment_sequence_never_moves_backwards(amount, cuts):
    order = [DebtStatus.PENDING, DebtStatus.PARTIALLY_PAID, DebtStatus.PAID]
    paid = Decimal("0")
    previous = compute_debt_status(amount, paid)
    for cut in cuts:
        remaining = amount - paid
        if remaining <= 0:
            break
        payment = min(remaining, (amount * cut / 100).quantize(Decimal("0.01")) or Decimal("0.01"))
        paid += payment
        status = compute_debt_status(amount, paid)
        assert order.index(status) >= order.index(previous)
        previous = status
    assert paid <= amount


@given(
    from_status=st.sampled_from(sorted(REPAIR_CYCLE_STATUSES, key=lambda s: s.value)),
    to_status=st.sampled_from(list(AssetStatus)),
)
def test_table_moves_stay_inside_the_cycle(from_status, to_status):
    if from_status != to_status and is_allowed_transition(from_status, to_status):
        assert to_status in REPAIR_CYCLE_STATUSES


@given(status=st.sampled_from(list(AssetStatus)))
def test_same_status_is_always_allowed(status):
    assert is_allowed_transition(status, status)


def test_completed_is_terminal():
    assert MACHINE_TRANSITIONS.get(AssetStatus.COMPLETED, frozenset()) == frozenset()


def test_every_cycle_state_can_reach_completed():
    for start in REPAIR_CYCLE_STATUSES:
        seen = {start}
        frontier = [start]
        while frontier:
            current = frontier.pop()
            for nxt in MACHINE_TRANSITIONS.get(current, frozenset()):
                if nxt not in seen:
                    seen.add(nxt)
                    frontier.append(nxt)
        assert AssetStatus.COMPLETED in seen, start
