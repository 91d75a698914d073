"""
Module: asset_kernel.models.asset
Responsibility: ORM persistence for serialized assets and the maintenance
    tickets raised against them.
Architecture position: Kernel > Models.
Invariants enforced:
    - serial_number is globally unique.
    - kind is fixed at creation.
    - origin_branch_id is stamped at center intake and cleared only when the
      return shipment is confirmed at that branch.
    - version column: concurrent status changes lose with StaleDataError.
Audit relevance:
    Rows are never deleted; SOLD / SCRAPPED retire an asset.  Every status
    change has a matching MovementLog row.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_kernel.db.base import TrackedBase, UUIDString, enum_column
from asset_kernel.domain.values import AssetKind, AssetStatus, Resolution, TicketStatus


class MaintenanceTicket(TrackedBase):
    """A customer or branch maintenance request for one serial."""

    __tablename__ = "maintenance_tickets"

    __table_args__ = (
        Index("idx_ticket_serial_status", "serial_number", "status"),
    )

    ticket_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)

    branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    serviced_by_branch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=True
    )

    status: Mapped[TicketStatus] = mapped_column(
        enum_column(TicketStatus), nullable=False, default=TicketStatus.OPEN
    )

    complaint: Mapped[str | None] = mapped_column(Text, nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<MaintenanceTicket {self.ticket_number} {self.status.value}>"


class Asset(TrackedBase):
    """A serialized machine or SIM card."""

    __tablename__ = "assets"

    __table_args__ = (
        Index("idx_asset_branch_status", "branch_id", "status"),
        Index("idx_asset_origin", "origin_branch_id"),
    )

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    kind: Mapped[AssetKind] = mapped_column(enum_column(AssetKind, 10), nullable=False)

    model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    manufacturer: Mapped[str | None] = mapped_column(String(100), nullable=True)

    branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    status: Mapped[AssetStatus] = mapped_column(enum_column(AssetStatus), nullable=False)

    # Home branch owed a return after a maintenance cycle
    origin_branch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=True
    )

    ticket_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("maintenance_tickets.id"), nullable=True
    )

    # Set for customer-owned machines under repair
    customer_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    resolution: Mapped[Resolution | None] = mapped_column(
        enum_column(Resolution, 20), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    ticket: Mapped[MaintenanceTicket | None] = relationship(MaintenanceTicket)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Asset {self.serial_number} {self.status.value}>"

    @property
    def is_customer_owned(self) -> bool:
        return bool(self.customer_ref)
