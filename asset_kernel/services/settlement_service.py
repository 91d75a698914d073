"""
SettlementService -- consumption settlement and the inter-branch debt ledger.

Responsibility:
    Turns consumed parts into inventory deductions and, for billable lines,
    a single BranchDebt owed by the asset's origin branch to the repairing
    branch.  Applies payments against debts.

Architecture position:
    Kernel > Services.  Called by MachineStateService when an asset reaches
    READY_FOR_RETURN as REPAIRED with parts, and by the workflow facade for
    payments.

Invariants enforced:
    - One settlement event -> one ``deduct`` call -> at most one debt; the
      (reference_type, reference_id) pair is unique on branch_debts.
    - debt.amount == sum of billable line totals of that event.
    - Non-billable lines never create debt.
    - amount == paid_amount + remaining_amount after every payment.

Failure modes:
    - InsufficientStockError from the ledger aborts the whole settlement.
    - InvalidPaymentAmountError / PaymentExceedsBalanceError on payments.
    - DebtNotFoundError (not visible) / ForbiddenError (not the debtor).
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_kernel.domain.clock import Clock
from asset_kernel.domain.dtos import AuthorizationScope, PartLine, billable_total
from asset_kernel.domain.values import DebtStatus, DebtType, NotificationType
from asset_kernel.exceptions import (
    DebtNotFoundError,
    InvalidPaymentAmountError,
    PaymentExceedsBalanceError,
)
from asset_kernel.logging_config import get_logger
from asset_kernel.models.audit_event import AuditAction
from asset_kernel.models.inventory import StockMovement
from asset_kernel.models.settlement import BranchDebt, DebtPayment
from asset_kernel.services.auditor_service import AuditorService
from asset_kernel.services.branch_service import ScopeGuard
from asset_kernel.services.inventory_service import InventoryLedger
from asset_kernel.services.notification_service import NotificationOutbox

logger = get_logger("services.settlement")


def compute_debt_status(amount: Decimal, paid: Decimal) -> DebtStatus:
    """Status implied by the paid portion of ``amount``."""
    if paid >= amount:
        return DebtStatus.PAID
    if paid > 0:
        return DebtStatus.PARTIALLY_PAID
    return DebtStatus.PENDING


@dataclass(frozen=True)
class SettlementOutcome:
    movements: tuple[StockMovement, ...]
    debt: BranchDebt | None


class SettlementService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        auditor: AuditorService,
        ledger: InventoryLedger,
        guard: ScopeGuard,
        outbox: NotificationOutbox,
    ):
        self._session = session
        self._clock = clock
        self._auditor = auditor
        self._ledger = ledger
        self._guard = guard
        self._outbox = outbox

    def settle_consumption(
        self,
        *,
        parts: list[PartLine],
        repair_branch_id: UUID,
        debtor_branch_id: UUID | None,
        serial_number: str,
        actor_id: UUID,
        reference_type: str,
        reference_id: UUID,
    ) -> SettlementOutcome:
        """Deduct all consumed parts, then bill the billable ones."""
        movements = self._ledger.deduct(
            parts,
            repair_branch_id,
            actor_id,
            reason="MAINTENANCE",
            reference_type=reference_type,
            reference_id=reference_id,
        )
        debt = self.create_branch_debt(
            parts=parts,
            creditor_branch_id=repair_branch_id,
            debtor_branch_id=debtor_branch_id,
            serial_number=serial_number,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        return SettlementOutcome(movements=tuple(movements), debt=debt)

    def create_branch_debt(
        self,
        *,
        parts: list[PartLine],
        creditor_branch_id: UUID,
        debtor_branch_id: UUID | None,
        serial_number: str | None,
        actor_id: UUID,
        reference_type: str,
        reference_id: UUID,
    ) -> BranchDebt | None:
        billable = [p for p in parts if p.is_billable]
        amount = billable_total(billable)
        if not billable or amount <= 0:
            return None
        if debtor_branch_id is None or debtor_branch_id == creditor_branch_id:
            logger.info(
                "debt_skipped_same_branch",
                extra={"serial": serial_number, "amount": str(amount)},
            )
            return None

        debt = BranchDebt(
            debt_type=DebtType.MAINTENANCE,
            reference_type=reference_type,
            reference_id=reference_id,
            serial_number=serial_number,
            creditor_branch_id=creditor_branch_id,
            debtor_branch_id=debtor_branch_id,
            amount=amount,
            paid_amount=Decimal("0"),
            remaining_amount=amount,
            status=DebtStatus.PENDING,
            parts_snapshot=[p.snapshot() for p in billable],
            created_by_id=actor_id,
        )
        self._session.add(debt)
        self._session.flush()

        self._auditor.record(
            "BranchDebt",
            debt.id,
            AuditAction.DEBT_CREATED,
            actor_id,
            {
                "amount": amount,
                "creditor_branch_id": creditor_branch_id,
                "debtor_branch_id": debtor_branch_id,
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
        )
        self._outbox.queue(
            debtor_branch_id,
            NotificationType.DEBT_CREATED,
            "Maintenance charge",
            f"Parts for {serial_number} billed: {amount}",
            {"debt_id": debt.id, "amount": amount},
        )
        logger.info(
            "debt_created",
            extra={"debt_id": str(debt.id), "amount": str(amount), "serial": serial_number},
        )
        return debt

    def get_debt(self, scope: AuthorizationScope, debt_id: UUID) -> BranchDebt:
        debt = self._session.get(BranchDebt, debt_id)
        if debt is None:
            raise DebtNotFoundError(str(debt_id))
        self._guard.require_visible(
            scope,
            debt.debtor_branch_id,
            debt.creditor_branch_id,
            not_found=DebtNotFoundError(str(debt_id)),
            action="view debt",
        )
        return debt

    def record_payment(
        self,
        scope: AuthorizationScope,
        debt_id: UUID,
        amount: Decimal,
        receipt_number: str | None = None,
    ) -> BranchDebt:
        """
        Apply a payment from the debtor branch.

        Postconditions:
            - paid_amount += amount, remaining_amount -= amount.
            - status is PAID, PARTIALLY_PAID or PENDING accordingly.
            - One DebtPayment row and one PAYMENT_RECORDED audit event.
        """
        debt = self.get_debt(scope, debt_id)
        self._guard.require_own_branch(scope, debt.debtor_branch_id, "record payment")

        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount))
        if amount <= 0:
            raise InvalidPaymentAmountError(amount)
        if amount > debt.remaining_amount:
            raise PaymentExceedsBalanceError(str(debt.id), amount, debt.remaining_amount)

        now = self._clock.now()
        debt.paid_amount = debt.paid_amount + amount
        debt.remaining_amount = debt.amount - debt.paid_amount
        debt.status = compute_debt_status(debt.amount, debt.paid_amount)
        debt.updated_by_id = scope.actor_id
        if debt.status == DebtStatus.PAID:
            debt.paid_at = now

        self._session.add(
            DebtPayment(
                debt_id=debt.id,
                amount=amount,
                receipt_number=receipt_number,
                paid_by_id=scope.actor_id,
                paid_at=now,
            )
        )
        self._session.flush()

        self._auditor.record(
            "BranchDebt",
            debt.id,
            AuditAction.PAYMENT_RECORDED,
            scope.actor_id,
            {
                "amount": amount,
                "receipt_number": receipt_number,
                "remaining": debt.remaining_amount,
                "status": debt.status,
            },
        )
        self._outbox.queue(
            debt.creditor_branch_id,
            NotificationType.PAYMENT_RECEIVED,
            "Payment received",
            f"Payment of {amount} received, remaining {debt.remaining_amount}",
            {"debt_id": debt.id, "amount": amount},
        )
        logger.info(
            "payment_recorded",
            extra={
                "debt_id": str(debt.id),
                "amount": str(amount),
                "debt_status": debt.status.value,
            },
        )
        return debt

    def outstanding_debts(self, branch_id: UUID, as_debtor: bool = True) -> list[BranchDebt]:
        column = BranchDebt.debtor_branch_id if as_debtor else BranchDebt.creditor_branch_id
        return list(
            self._session.execute(
                select(BranchDebt)
                .where(column == branch_id, BranchDebt.status != DebtStatus.PAID)
                .order_by(BranchDebt.created_at)
            ).scalars()
        )
