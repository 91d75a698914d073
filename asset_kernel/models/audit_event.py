"""
Module: asset_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - Append-only; no UPDATE or DELETE (db/immutability.py).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditorService.validate_chain().
    - seq is monotonically increasing, allocated by SequenceService.
Audit relevance:
    Order lifecycle, approvals, debts, payments, stock adjustments, and every
    use of a sanctioned bypass or scope override produce one AuditEvent.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from asset_kernel.db.base import Base, UUIDString, enum_column


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Transfer orders
    ORDER_CREATED = "order_created"
    ORDER_RECEIVED = "order_received"
    ORDER_REJECTED = "order_rejected"
    ORDER_CANCELLED = "order_cancelled"

    # State machine bypasses
    FORCE_INTAKE = "force_intake"
    LEGACY_DISPATCH = "legacy_dispatch"

    # Maintenance workflow
    ASSIGNMENT_CREATED = "assignment_created"
    ASSIGNMENT_COMPLETED = "assignment_completed"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"

    # Ledgers
    STOCK_ADJUSTED = "stock_adjusted"
    DEBT_CREATED = "debt_created"
    PAYMENT_RECORDED = "payment_recorded"

    # Registry
    ASSETS_IMPORTED = "assets_imported"
    ASSET_RETIRED = "asset_retired"
    BRANCH_CREATED = "branch_created"
    BRANCH_DEACTIVATED = "branch_deactivated"

    # Authorization
    SCOPE_OVERRIDE = "scope_override"
    BINDING_OVERRIDE = "binding_override"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(enum_column(AuditAction, 40), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action.value} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
