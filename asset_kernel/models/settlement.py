"""
Module: asset_kernel.models.settlement
Responsibility: ORM persistence for inter-branch debts and their payments.
Architecture position: Kernel > Models.
Invariants enforced:
    - amount == paid_amount + remaining_amount at every commit.
    - remaining_amount >= 0 and paid_amount >= 0 (check constraints).
    - One debt per settlement reference (reference_type, reference_id).
    - DebtPayment rows are append-only.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_kernel.db.base import Base, TrackedBase, UUIDString, enum_column
from asset_kernel.domain.values import DebtStatus, DebtType


class BranchDebt(TrackedBase):
    """Money a debtor branch owes a creditor branch for consumed parts."""

    __tablename__ = "branch_debts"

    __table_args__ = (
        UniqueConstraint("reference_type", "reference_id", name="uq_debt_reference"),
        Index("idx_debt_debtor_status", "debtor_branch_id", "status"),
        Index("idx_debt_creditor_status", "creditor_branch_id", "status"),
        CheckConstraint("remaining_amount >= 0", name="ck_debt_remaining_non_negative"),
        CheckConstraint("paid_amount >= 0", name="ck_debt_paid_non_negative"),
    )

    debt_type: Mapped[DebtType] = mapped_column(
        enum_column(DebtType, 20), nullable=False, default=DebtType.MAINTENANCE
    )

    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    creditor_branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )
    debtor_branch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branches.id"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[DebtStatus] = mapped_column(
        enum_column(DebtStatus, 20), nullable=False, default=DebtStatus.PENDING
    )

    parts_snapshot: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    payments: Mapped[list["DebtPayment"]] = relationship(
        back_populates="debt",
        order_by="DebtPayment.paid_at",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<BranchDebt {self.amount} remaining={self.remaining_amount} {self.status.value}>"


class DebtPayment(Base):
    """One payment applied to a BranchDebt."""

    __tablename__ = "debt_payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_debt_payment_positive"),
    )

    debt_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("branch_debts.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    receipt_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(nullable=False)

    debt: Mapped[BranchDebt] = relationship(back_populates="payments")
