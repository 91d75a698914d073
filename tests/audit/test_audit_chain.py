"""
Audit chain and append-only record tests.

Verifies:
- Every audit event links to its predecessor; the genesis event has no link
- Tamper detection via hash chain validation
- MovementLog, StockMovement and AuditEvent rows reject ORM updates and deletes
- Per-entity audit traces
"""

from contextlib import contextmanager

import pytest
from sqlalchemy import select

from asset_kernel.exceptions import (
    AuditChainBrokenError,
    ForbiddenError,
    ImmutabilityViolationError,
)
from asset_kernel.models.audit_event import AuditAction, AuditEvent
from asset_kernel.models.inventory import StockMovement
from asset_kernel.models.movement_log import MovementLog


@contextmanager
def disabled_immutability():
    """Temporarily lift the ORM append-only listeners to simulate tampering."""
    from asset_kernel.db.immutability import (
        register_immutability_listeners,
        unregister_immutability_listeners,
    )

    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


def all_events(session) -> list[AuditEvent]:
    return list(session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars())


class TestChainValidation:
    def test_chain_links_every_event(self, session, branch_a, branch_b, center):
        events = all_events(session)
        assert len(events) == 3
        assert events[0].is_genesis
        for prev, event in zip(events, events[1:]):
            assert event.prev_hash == prev.hash
            assert event.seq == prev.seq + 1

    def test_untouched_chain_is_valid(self, service, machine_at_center, admin):
        assert service.validate_audit_chain(admin) is True

    def test_tampered_payload_is_detected(self, service, session, branch_a, center, admin):
        with disabled_immutability():
            event = all_events(session)[0]
            event.payload = {"code": "BR-EVIL"}
            session.commit()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            service.validate_audit_chain(admin)
        assert exc_info.value.event_id == str(event.id)

    def test_broken_link_is_detected(self, service, session, branch_a, center, admin):
        with disabled_immutability():
            event = all_events(session)[1]
            event.prev_hash = "0" * 64
            session.commit()

        with pytest.raises(AuditChainBrokenError):
            service.validate_audit_chain(admin)

    def test_only_global_roles_validate(self, service, branch_a_actor):
        with pytest.raises(ForbiddenError):
            service.validate_audit_chain(branch_a_actor)


class TestAppendOnly:
    def test_movement_log_update_is_blocked(self, session, machine):
        movement = session.execute(select(MovementLog)).scalars().first()
        movement.notes = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_movement_log_delete_is_blocked(self, session, machine):
        movement = session.execute(select(MovementLog)).scalars().first()
        session.delete(movement)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_stock_movement_update_is_blocked(self, session, stocked_part):
        movement = session.execute(select(StockMovement)).scalars().first()
        movement.quantity = 1000
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "StockMovement"
        session.rollback()

    def test_audit_event_update_is_blocked(self, session, branch_a):
        event = all_events(session)[0]
        event.actor_id = event.entity_id
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestTrace:
    def test_trace_lists_events_for_one_entity(self, service, admin, branch_a):
        service.deactivate_branch(admin, branch_a.id)
        trace = service.audit_trace(admin, "Branch", branch_a.id)
        assert [entry.action for entry in trace] == [
            AuditAction.BRANCH_CREATED,
            AuditAction.BRANCH_DEACTIVATED,
        ]
        assert trace[0].seq < trace[1].seq
