"""
InventoryLedger -- per-branch part quantities and the stock movement journal.

Responsibility:
    Every change to InventoryItem.quantity goes through this service and is
    paired with exactly one append-only StockMovement row carrying the
    triggering reference.

Architecture position:
    Kernel > Services.  Called by MachineStateService (repair deduction),
    SettlementService, and the workflow facade (stock in/out/transfer).

Invariants enforced:
    - quantity never goes negative: every line of a multi-line request is
      checked before the first write, so a shortfall leaves nothing behind.
    - Shortfall errors enumerate every insufficient line.
    - Reaching the item's minimum level queues a LOW_STOCK notification.

Failure modes:
    - InsufficientStockError (ConflictError) with per-line shortfalls.
    - PartNotFoundError for unknown parts.
    - InvalidPartLineError for non-positive quantities.
"""

from collections import OrderedDict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_kernel.domain.clock import Clock
from asset_kernel.domain.dtos import PartLine, StockShortfall
from asset_kernel.domain.values import MovementDirection, NotificationType
from asset_kernel.exceptions import InsufficientStockError, InvalidPartLineError, PartNotFoundError
from asset_kernel.logging_config import get_logger
from asset_kernel.models.audit_event import AuditAction
from asset_kernel.models.inventory import InventoryItem, SparePart, StockMovement
from asset_kernel.services.auditor_service import AuditorService
from asset_kernel.services.notification_service import NotificationOutbox

logger = get_logger("services.inventory")


class InventoryLedger:
    """
    Per-branch stock ledger.

    Non-goals:
        - Does NOT reserve stock.  ``check_availability`` is a point-in-time
          read; the authoritative check happens again inside ``deduct``.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        auditor: AuditorService,
        outbox: NotificationOutbox,
        default_min_level: int = 0,
    ):
        self._session = session
        self._clock = clock
        self._auditor = auditor
        self._outbox = outbox
        self._default_min_level = default_min_level

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def register_part(
        self,
        part_number: str,
        name: str,
        actor_id: UUID,
        unit_price: Decimal = Decimal("0"),
    ) -> SparePart:
        part = SparePart(
            part_number=part_number,
            name=name,
            unit_price=unit_price,
            is_active=True,
            created_by_id=actor_id,
        )
        self._session.add(part)
        self._session.flush()
        logger.info("part_registered", extra={"part_number": part_number})
        return part

    def get_part(self, part_id: UUID) -> SparePart:
        part = self._session.get(SparePart, part_id)
        if part is None:
            raise PartNotFoundError(str(part_id))
        return part

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _item(self, part_id: UUID, branch_id: UUID, lock: bool = False) -> InventoryItem | None:
        stmt = select(InventoryItem).where(
            InventoryItem.part_id == part_id,
            InventoryItem.branch_id == branch_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def quantity(self, part_id: UUID, branch_id: UUID) -> int:
        item = self._item(part_id, branch_id)
        return item.quantity if item is not None else 0

    def current_stock(self, branch_id: UUID) -> list[InventoryItem]:
        return list(
            self._session.execute(
                select(InventoryItem)
                .where(InventoryItem.branch_id == branch_id)
                .order_by(InventoryItem.part_id)
            ).scalars()
        )

    def low_stock_items(self, branch_id: UUID) -> list[InventoryItem]:
        return list(
            self._session.execute(
                select(InventoryItem).where(
                    InventoryItem.branch_id == branch_id,
                    InventoryItem.quantity <= InventoryItem.min_level,
                )
            ).scalars()
        )

    def check_availability(
        self, parts: list[PartLine], branch_id: UUID, lock: bool = False
    ) -> list[StockShortfall]:
        """Every line (aggregated per part) that the branch cannot cover."""
        requested: OrderedDict[UUID, int] = OrderedDict()
        names: dict[UUID, str | None] = {}
        for line in parts:
            requested[line.part_id] = requested.get(line.part_id, 0) + line.quantity
            names.setdefault(line.part_id, line.name)

        shortfalls = []
        for part_id, qty in requested.items():
            item = self._item(part_id, branch_id, lock=lock)
            available = item.quantity if item is not None else 0
            if qty > available:
                name = item.part.name if item is not None else names.get(part_id)
                shortfalls.append(
                    StockShortfall(
                        part_id=part_id,
                        part_name=name,
                        requested=qty,
                        available=available,
                    )
                )
        return shortfalls

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _movement(
        self,
        item: InventoryItem,
        direction: MovementDirection,
        quantity: int,
        actor_id: UUID,
        reason: str,
        reference_type: str | None,
        reference_id: UUID | None,
        is_billable: bool = False,
        line_total: Decimal = Decimal("0"),
    ) -> StockMovement:
        movement = StockMovement(
            part_id=item.part_id,
            branch_id=item.branch_id,
            direction=direction,
            quantity=quantity,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            is_billable=is_billable,
            line_total=line_total,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
        )
        self._session.add(movement)
        return movement

    def _alert_if_low(self, item: InventoryItem) -> None:
        if not item.is_low:
            return
        logger.warning(
            "low_stock_alert",
            extra={
                "part_id": str(item.part_id),
                "target_branch_id": str(item.branch_id),
                "quantity": item.quantity,
                "min_level": item.min_level,
            },
        )
        self._outbox.queue(
            item.branch_id,
            NotificationType.LOW_STOCK,
            "Low stock",
            f"{item.part.name} is down to {item.quantity} (minimum {item.min_level})",
            {"part_id": item.part_id, "quantity": item.quantity},
        )

    def stock_in(
        self,
        part_id: UUID,
        branch_id: UUID,
        quantity: int,
        actor_id: UUID,
        reason: str = "STOCK_IN",
        reference_type: str | None = None,
        reference_id: UUID | None = None,
    ) -> InventoryItem:
        if quantity <= 0:
            raise InvalidPartLineError(str(part_id), "quantity must be a positive integer")
        self.get_part(part_id)

        item = self._item(part_id, branch_id, lock=True)
        if item is None:
            item = InventoryItem(
                part_id=part_id,
                branch_id=branch_id,
                quantity=0,
                min_level=self._default_min_level,
                created_by_id=actor_id,
            )
            self._session.add(item)
            self._session.flush()

        item.quantity += quantity
        item.updated_by_id = actor_id
        self._movement(
            item, MovementDirection.IN, quantity, actor_id, reason, reference_type, reference_id
        )
        self._session.flush()
        logger.info(
            "stock_in",
            extra={"part_id": str(part_id), "quantity": quantity, "new_quantity": item.quantity},
        )
        return item

    def deduct(
        self,
        parts: list[PartLine],
        branch_id: UUID,
        actor_id: UUID,
        reason: str,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
    ) -> list[StockMovement]:
        """
        Deduct every line or nothing.

        Postconditions:
            - One OUT StockMovement per line, carrying the line's billable
              flag and total.
            - No InventoryItem quantity is negative.

        Raises:
            InsufficientStockError: listing every short line; no rows written.
        """
        if not parts:
            return []

        shortfalls = self.check_availability(parts, branch_id, lock=True)
        if shortfalls:
            logger.warning(
                "stock_shortfall",
                extra={
                    "target_branch_id": str(branch_id),
                    "shortfalls": [
                        {"part_id": str(s.part_id), "requested": s.requested, "available": s.available}
                        for s in shortfalls
                    ],
                },
            )
            raise InsufficientStockError(str(branch_id), shortfalls)

        movements = []
        touched: dict[UUID, InventoryItem] = {}
        for line in parts:
            item = touched.get(line.part_id) or self._item(line.part_id, branch_id, lock=True)
            touched[line.part_id] = item
            item.quantity -= line.quantity
            item.updated_by_id = actor_id
            movements.append(
                self._movement(
                    item,
                    MovementDirection.OUT,
                    line.quantity,
                    actor_id,
                    reason,
                    reference_type,
                    reference_id,
                    is_billable=line.is_billable,
                    line_total=line.total,
                )
            )
        self._session.flush()

        for item in touched.values():
            self._alert_if_low(item)

        logger.info(
            "inventory_deducted",
            extra={
                "target_branch_id": str(branch_id),
                "line_count": len(parts),
                "reference_type": reference_type,
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        return movements

    def stock_out(
        self,
        part_id: UUID,
        branch_id: UUID,
        quantity: int,
        actor_id: UUID,
        reason: str = "STOCK_OUT",
        reference_type: str | None = None,
        reference_id: UUID | None = None,
    ) -> StockMovement:
        part = self.get_part(part_id)
        line = PartLine(part_id=part_id, quantity=quantity, name=part.name)
        (movement,) = self.deduct([line], branch_id, actor_id, reason, reference_type, reference_id)
        return movement

    def transfer_stock(
        self,
        part_id: UUID,
        from_branch_id: UUID,
        to_branch_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> tuple[StockMovement, InventoryItem]:
        """Immediate bulk move: OUT at the source, IN at the destination."""
        if from_branch_id == to_branch_id:
            raise InvalidPartLineError(str(part_id), "source and destination must differ")
        out = self.stock_out(
            part_id,
            from_branch_id,
            quantity,
            actor_id,
            reason="TRANSFER_OUT",
            reference_type="Branch",
            reference_id=to_branch_id,
        )
        received = self.stock_in(
            part_id,
            to_branch_id,
            quantity,
            actor_id,
            reason="TRANSFER_IN",
            reference_type="Branch",
            reference_id=from_branch_id,
        )
        return out, received

    def adjust_quantity(
        self,
        part_id: UUID,
        branch_id: UUID,
        new_quantity: int,
        actor_id: UUID,
        reason: str,
        min_level: int | None = None,
    ) -> InventoryItem:
        """Stock count correction; the delta is journaled and audited."""
        if new_quantity < 0:
            raise InvalidPartLineError(str(part_id), "quantity must not be negative")
        if min_level is not None and min_level < 0:
            raise InvalidPartLineError(str(part_id), "minimum level must not be negative")
        self.get_part(part_id)

        item = self._item(part_id, branch_id, lock=True)
        if item is None:
            item = InventoryItem(
                part_id=part_id,
                branch_id=branch_id,
                quantity=0,
                min_level=self._default_min_level,
                created_by_id=actor_id,
            )
            self._session.add(item)
            self._session.flush()

        previous = item.quantity
        delta = new_quantity - previous
        if delta:
            direction = MovementDirection.IN if delta > 0 else MovementDirection.OUT
            self._movement(item, direction, abs(delta), actor_id, f"ADJUSTMENT: {reason}", None, None)
            item.quantity = new_quantity
        if min_level is not None:
            item.min_level = min_level
        item.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record(
            "InventoryItem",
            item.id,
            AuditAction.STOCK_ADJUSTED,
            actor_id,
            {
                "part_id": part_id,
                "previous": previous,
                "new": new_quantity,
                "min_level": item.min_level,
                "reason": reason,
            },
        )
        self._alert_if_low(item)
        return item
