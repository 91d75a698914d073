"""
Module: asset_kernel.models.transfer
Responsibility: ORM persistence for transfer orders and their serial lines.
Architecture position: Kernel > Models.
Invariants enforced:
    - order_number is unique (``<PREFIX>-<YYYYMMDD>-<seq>``).
    - (order_id, serial_number) is unique: a serial appears once per order.
    - version column: two requests racing on the same order cannot both
      commit a status change.
Audit relevance:
    Orders are never deleted.  Rejection and cancellation keep the order row
    with reason, actor and timestamp.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_kernel.db.base import Base, TrackedBase, UUIDString, enum_column
from asset_kernel.domain.values import AssetKind, OrderStatus, TransferPurpose


class TransferOrder(TrackedBase):
    """A manifest moving serialized assets between two branches."""

    __tablename__ = "transfer_orders"

    __table_args__ = (
        Index("idx_order_destination_status", "destination_branch_id", "status"),
        Index("idx_order_source_status", "source_branch_id", "status"),
    )

    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)

    purpose: Mapped[TransferPurpose] = mapped_column(
        enum_column(TransferPurpose, 20), nullable=False
    )

    status: Mapped[OrderStatus] = mapped_column(
        enum_column(OrderStatus, 20), nullable=False, default=OrderStatus.PENDING
    )

    # NULL only for INBOUND orders
    source_branch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=True
    )

    destination_branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    created_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set when a global role skipped the binding law
    binding_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    items: Mapped[list["TransferOrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="TransferOrderItem.serial_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<TransferOrder {self.order_number} {self.purpose.value} {self.status.value}>"

    @property
    def serial_numbers(self) -> list[str]:
        return [item.serial_number for item in self.items]

    @property
    def pending_items(self) -> list["TransferOrderItem"]:
        return [item for item in self.items if not item.is_received]


class TransferOrderItem(Base):
    """One serial line on a transfer order."""

    __tablename__ = "transfer_order_items"

    __table_args__ = (
        UniqueConstraint("order_id", "serial_number", name="uq_order_item_serial"),
        Index("idx_order_item_serial", "serial_number"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transfer_orders.id"), nullable=False
    )

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)

    kind: Mapped[AssetKind] = mapped_column(enum_column(AssetKind, 10), nullable=False)

    # Carried for INBOUND lines whose asset does not exist yet
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    order: Mapped[TransferOrder] = relationship(back_populates="items")

    def __repr__(self) -> str:
        flag = "received" if self.is_received else "pending"
        return f"<TransferOrderItem {self.serial_number} {flag}>"
