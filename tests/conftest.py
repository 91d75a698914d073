"""
Pytest fixtures for the asset kernel test suite.

Provides:
- A fresh database per test with real commit/rollback (in-memory SQLite by
  default; set ASSET_KERNEL_TEST_DATABASE_URL to use another server)
- Deterministic clock, branches, actors, machines and spare parts
- Log capture and notification sinks (recording and failing)
"""

import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Any, Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from asset_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from asset_kernel.domain.clock import DeterministicClock
from asset_kernel.domain.dtos import Actor
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.domain.values import AssetKind, BranchType, Role, TransferPurpose
from asset_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from asset_services.workflow_service import AssetWorkflowService


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture asset_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.create_transfer_order(...)
            logs = captured_logs()
            assert any(r["message"] == "create_transfer_order_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("asset_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("ASSET_KERNEL_TEST_DATABASE_URL", "sqlite://")


@pytest.fixture
def engine():
    """A fresh schema per test; dropped again afterwards."""
    engine = init_engine_from_url(get_database_url())
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    session = get_session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Collaborators
# =============================================================================


class RecordingNotificationSink:
    """Keeps every delivered notification for assertions."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def notify(
        self,
        branch_id: UUID,
        type: str,
        title: str,
        message: str,
        payload: dict[str, Any],
    ) -> None:
        self.sent.append(
            {
                "branch_id": branch_id,
                "type": type,
                "title": title,
                "message": message,
                "payload": payload,
            }
        )

    def types_for(self, branch_id: UUID) -> list[str]:
        return [n["type"] for n in self.sent if n["branch_id"] == branch_id]


class FailingNotificationSink:
    """A sink whose transport is down."""

    def __init__(self) -> None:
        self.attempts = 0

    def notify(self, branch_id, type, title, message, payload) -> None:
        self.attempts += 1
        raise ConnectionError("notification gateway unreachable")


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 15, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> WorkflowPolicy:
    return WorkflowPolicy()


@pytest.fixture
def recording_sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def failing_sink() -> FailingNotificationSink:
    return FailingNotificationSink()


@pytest.fixture
def service(session, policy, deterministic_clock, recording_sink) -> AssetWorkflowService:
    """The workflow facade wired to the test session."""
    return AssetWorkflowService(
        session, policy, clock=deterministic_clock, sink=recording_sink
    )


# =============================================================================
# Actors and branches
# =============================================================================


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id=uuid4(), role=Role.SUPER_ADMIN, name="Head office admin")


@pytest.fixture
def branch_a(service, admin):
    return service.create_branch(admin, "BR-A", "Branch A", BranchType.BRANCH)


@pytest.fixture
def branch_b(service, admin):
    return service.create_branch(admin, "BR-B", "Branch B", BranchType.BRANCH)


@pytest.fixture
def center(service, admin):
    return service.create_branch(
        admin, "MC-1", "Central Maintenance", BranchType.MAINTENANCE_CENTER
    )


@pytest.fixture
def branch_a_actor(branch_a) -> Actor:
    return Actor(actor_id=uuid4(), role=Role.BRANCH_MANAGER, branch_id=branch_a.id, name="Alia")


@pytest.fixture
def branch_b_actor(branch_b) -> Actor:
    return Actor(actor_id=uuid4(), role=Role.BRANCH_MANAGER, branch_id=branch_b.id, name="Badr")


@pytest.fixture
def center_actor(center) -> Actor:
    return Actor(actor_id=uuid4(), role=Role.CENTER_MANAGER, branch_id=center.id, name="Camal")


# =============================================================================
# Assets and parts
# =============================================================================


@pytest.fixture
def register_machine(service, branch_a, branch_a_actor):
    """Factory: register a machine at branch A (or another branch)."""

    def _register(serial: str = "SN-1000", actor: Actor | None = None, branch=None, **kwargs):
        return service.register_asset(
            actor or branch_a_actor,
            serial,
            AssetKind.MACHINE,
            (branch or branch_a).id,
            **kwargs,
        )

    return _register


@pytest.fixture
def machine(register_machine):
    return register_machine("SN-1000", model="POS-X1", manufacturer="Acme")


@pytest.fixture
def part(service, admin):
    return service.register_part(admin, "P-100", "Print head", unit_price=Decimal("50"))


@pytest.fixture
def stocked_part(service, part, center, center_actor):
    """``part`` with 10 units on hand at the maintenance center."""
    service.stock_in(center_actor, part.id, center.id, 10)
    return part


@pytest.fixture
def machine_at_center(service, machine, branch_a, branch_a_actor, center, center_actor):
    """A branch A machine shipped to the center and received there."""
    result = service.create_transfer_order(
        branch_a_actor, branch_a.id, center.id, TransferPurpose.MAINTENANCE, [machine.serial_number]
    )
    service.receive_transfer_order(center_actor, result.order.id)
    return machine


@pytest.fixture
def assignment(service, machine_at_center, center_actor):
    """An active assignment on ``machine_at_center``."""
    return service.assign_technician(
        center_actor, machine_at_center.id, uuid4(), technician_name="Tariq"
    )
