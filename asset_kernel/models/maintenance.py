"""
Module: asset_kernel.models.maintenance
Responsibility: ORM persistence for technician assignments and the repair
    quotes (approval requests) raised against them.
Architecture position: Kernel > Models.
Invariants enforced:
    - At most one non-terminal ServiceAssignment per asset: checked by
      MaintenanceService and backed by a partial unique index.
    - Approval requests are answered once; answered rows keep the decision,
      the responding branch and actor.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from asset_kernel.db.base import TrackedBase, UUIDString, enum_column
from asset_kernel.domain.values import ApprovalStatus, AssignmentStatus, Resolution

_ACTIVE_ASSIGNMENT = "status NOT IN ('COMPLETED', 'RETURNED')"


class ServiceAssignment(TrackedBase):
    """A technician's work record against one asset during a repair cycle."""

    __tablename__ = "service_assignments"

    __table_args__ = (
        Index(
            "uq_assignment_active_asset",
            "asset_id",
            unique=True,
            postgresql_where=text(_ACTIVE_ASSIGNMENT),
            sqlite_where=text(_ACTIVE_ASSIGNMENT),
        ),
        Index("idx_assignment_center_status", "center_branch_id", "status"),
    )

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("assets.id"), nullable=False
    )

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)

    center_branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    origin_branch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=True
    )

    technician_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    technician_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[AssignmentStatus] = mapped_column(
        enum_column(AssignmentStatus),
        nullable=False,
        default=AssignmentStatus.UNDER_MAINTENANCE,
    )

    proposed_parts: Mapped[list | None] = mapped_column(JSON, nullable=True)
    proposed_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    used_parts: Mapped[list | None] = mapped_column(JSON, nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    resolution: Mapped[Resolution | None] = mapped_column(
        enum_column(Resolution, 20), nullable=True
    )
    action_taken: Mapped[str | None] = mapped_column(Text, nullable=True)
    voucher_number: Mapped[str | None] = mapped_column(String(40), nullable=True, unique=True)

    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ServiceAssignment {self.serial_number} {self.status.value}>"


class MaintenanceApprovalRequest(TrackedBase):
    """
    A repair quote awaiting the origin branch's decision.

    Created (or refreshed while still PENDING) whenever an asset enters
    AWAITING_APPROVAL.  Linked to the active assignment when there is one
    and to the originating ticket when there is one.
    """

    __tablename__ = "maintenance_approval_requests"

    __table_args__ = (
        Index("idx_approval_asset_status", "asset_id", "status"),
        Index("idx_approval_origin_status", "origin_branch_id", "status"),
    )

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("assets.id"), nullable=False
    )

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)

    assignment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("service_assignments.id"), nullable=True
    )

    ticket_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("maintenance_tickets.id"), nullable=True
    )

    center_branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    # Branch that pays and therefore decides
    origin_branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    proposed_parts: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    proposed_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[ApprovalStatus] = mapped_column(
        enum_column(ApprovalStatus, 20), nullable=False, default=ApprovalStatus.PENDING
    )

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    responding_branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<MaintenanceApprovalRequest {self.serial_number} {self.status.value}>"
