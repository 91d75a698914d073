"""
Module: asset_kernel.models.branch
Responsibility: ORM persistence for organizational branches and their support
    hierarchy (a maintenance center or administrative unit may parent
    ordinary outlets).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.
Invariants enforced:
    - code is unique.
    - Branches are never deleted; ``is_active=False`` retires them and the
      binding law refuses inactive branches on new orders.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_kernel.db.base import TrackedBase, UUIDString, enum_column
from asset_kernel.domain.binding import BranchRef
from asset_kernel.domain.values import BranchType


class Branch(TrackedBase):
    """An organizational node owning assets, inventory and staff."""

    __tablename__ = "branches"

    __table_args__ = (
        Index("idx_branch_parent", "parent_id"),
        Index("idx_branch_type", "branch_type"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    branch_type: Mapped[BranchType] = mapped_column(
        enum_column(BranchType),
        nullable=False,
        default=BranchType.BRANCH,
    )

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("branches.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    parent: Mapped["Branch | None"] = relationship(
        "Branch",
        remote_side="Branch.id",
        back_populates="children",
    )
    children: Mapped[list["Branch"]] = relationship(
        "Branch",
        back_populates="parent",
    )

    def __repr__(self) -> str:
        return f"<Branch {self.code} ({self.branch_type.value})>"

    @property
    def is_center(self) -> bool:
        return self.branch_type == BranchType.MAINTENANCE_CENTER

    def to_ref(self) -> BranchRef:
        return BranchRef(
            id=self.id,
            branch_type=self.branch_type,
            is_active=self.is_active,
            name=self.name,
        )
