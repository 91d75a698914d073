"""
Module: asset_kernel.models.movement_log
Responsibility: Append-only lifecycle trail for individual assets.
Architecture position: Kernel > Models.
Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py).
    - Every asset status change writes exactly one row.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from asset_kernel.db.base import Base, UUIDString


class MovementLog(Base):
    """One asset lifecycle event: transition, transfer leg, registration."""

    __tablename__ = "movement_logs"

    __table_args__ = (
        Index("idx_movement_serial", "serial_number", "occurred_at"),
        Index("idx_movement_branch", "branch_id"),
    )

    asset_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("assets.id"), nullable=True
    )
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)

    # e.g. TRANSITION_IN_PROGRESS, TRANSFER_OUT, TRANSFER_IN, FORCE_INTAKE
    action: Mapped[str] = mapped_column(String(60), nullable=False)

    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<MovementLog {self.serial_number} {self.action}>"
