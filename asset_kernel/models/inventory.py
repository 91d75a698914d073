"""
Module: asset_kernel.models.inventory
Responsibility: ORM persistence for the spare-part catalogue, per-branch
    stock levels, and the append-only stock movement journal.
Architecture position: Kernel > Models.
Invariants enforced:
    - InventoryItem.quantity >= 0 (check constraint backs the ledger check).
    - One InventoryItem per (part, branch).
    - StockMovement rows are append-only (db/immutability.py).
Audit relevance:
    Every quantity change has a StockMovement carrying the triggering
    reference (type + id), the actor, and whether the line is billable.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_kernel.db.base import Base, TrackedBase, UUIDString, enum_column
from asset_kernel.domain.values import MovementDirection


class SparePart(TrackedBase):
    """Catalogue entry for a consumable part."""

    __tablename__ = "spare_parts"

    part_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SparePart {self.part_number}>"


class InventoryItem(TrackedBase):
    """Quantity of one part held by one branch."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("part_id", "branch_id", name="uq_inventory_part_branch"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
    )

    part_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("spare_parts.id"), nullable=False
    )
    branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Low-stock alert fires at or below this level
    min_level: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    part: Mapped[SparePart] = relationship(SparePart, lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<InventoryItem part={self.part_id} branch={self.branch_id} qty={self.quantity}>"

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.min_level


class StockMovement(Base):
    """Append-only IN/OUT journal line for one part at one branch."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_stock_movement_reference", "reference_type", "reference_id"),
        Index("idx_stock_movement_branch_part", "branch_id", "part_id"),
        CheckConstraint("quantity > 0", name="ck_stock_movement_quantity_positive"),
    )

    part_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("spare_parts.id"), nullable=False
    )
    branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    direction: Mapped[MovementDirection] = mapped_column(
        enum_column(MovementDirection, 5), nullable=False
    )
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reason: Mapped[str] = mapped_column(String(100), nullable=False)

    # Triggering event, e.g. ("ServiceAssignment", <id>) or ("Asset", <id>)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<StockMovement {self.direction.value} {self.quantity} part={self.part_id}>"
