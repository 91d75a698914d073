"""
TransferOrderService -- shipments of serialized assets between branches.

Responsibility:
    Creates, receives, rejects and cancels transfer orders, keeping every
    referenced asset's status and any held maintenance ticket in step with
    the order.

Architecture position:
    Kernel > Services.  Uses MachineStateService for every machine that
    enters or leaves the repair cycle and AssetRegistry for ticket holds and
    INBOUND asset creation.

Invariants enforced:
    - Binding law: the branch pair must suit the purpose (pure check in
      domain.binding); a global role may skip it only through an explicit,
      logged and audited override.
    - A serial is never on two receivable orders at once: assets leave their
      available statuses when the order is created, and the pending-item
      check rejects any serial still awaiting receipt elsewhere.
    - Receipt is idempotent per item.
    - Rejection/cancellation restores a purpose-determined status, not the
      literal previous one.

Failure modes:
    - InvalidBranchPairError / AssetKindMismatchError / InvalidOrderItemsError
      (validation)
    - AssetNotFoundError / BranchNotFoundError / OrderNotFoundError
    - AssetUnavailableError (every unavailable serial listed),
      InvalidOrderStatusError, DuplicateSerialError (conflict)
    - ForbiddenError for cancel by a non-creator, non-admin, or a binding
      override by a non-global role.
"""

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_kernel.domain.binding import check_branch_pair, check_return_destination
from asset_kernel.domain.clock import Clock
from asset_kernel.domain.dtos import AuthorizationScope, InboundItem
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.domain.values import (
    RECEIVABLE_ORDER_STATUSES,
    UNAVAILABLE_FOR_DISPATCH,
    AssetKind,
    AssetStatus,
    AssignmentStatus,
    NotificationType,
    OrderStatus,
    TicketStatus,
    TransferPurpose,
)
from asset_kernel.exceptions import (
    AssetKindMismatchError,
    AssetNotFoundError,
    AssetUnavailableError,
    DuplicateSerialError,
    ForbiddenError,
    InvalidBranchPairError,
    InvalidOrderItemsError,
    InvalidOrderStatusError,
    OrderNotFoundError,
    RejectionReasonRequiredError,
)
from asset_kernel.logging_config import LogContext, get_logger
from asset_kernel.models.asset import Asset
from asset_kernel.models.audit_event import AuditAction
from asset_kernel.models.transfer import TransferOrder, TransferOrderItem
from asset_kernel.services.asset_registry import DEFAULT_STATUS, AssetRegistry
from asset_kernel.services.auditor_service import AuditorService
from asset_kernel.services.branch_service import BranchDirectory, ScopeGuard
from asset_kernel.services.identifier_service import IdentifierService
from asset_kernel.services.machine_state_service import MachineStateService
from asset_kernel.services.notification_service import NotificationOutbox

logger = get_logger("services.transfer_orders")

# Asset kind each purpose ships
PURPOSE_KIND = {
    TransferPurpose.MACHINE: AssetKind.MACHINE,
    TransferPurpose.SIM: AssetKind.SIM,
    TransferPurpose.MAINTENANCE: AssetKind.MACHINE,
    TransferPurpose.RETURN: AssetKind.MACHINE,
}


@dataclass(frozen=True)
class OrderResult:
    order: TransferOrder
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReceiveResult:
    order: TransferOrder
    received: tuple[str, ...] = ()
    already_received: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.received)


@dataclass
class _Validation:
    """Problems gathered in one pass over an order's serials."""

    binding: list[str] = field(default_factory=list)
    kind: list[tuple[str, str]] = field(default_factory=list)
    unavailable: list[tuple[str, str, str]] = field(default_factory=list)


def _normalize_serials(serials: list[str]) -> list[str]:
    cleaned = [s.strip() for s in serials]
    problems = []
    if not cleaned:
        problems.append("at least one serial is required")
    if any(not s for s in cleaned):
        problems.append("serial numbers must not be blank")
    duplicates = sorted({s for s in cleaned if s and cleaned.count(s) > 1})
    if duplicates:
        problems.append(f"duplicated serials: {', '.join(duplicates)}")
    if problems:
        raise InvalidOrderItemsError(problems)
    return cleaned


def restore_status(purpose: TransferPurpose, asset: Asset) -> AssetStatus | None:
    """Status an asset returns to when its order is rejected or cancelled."""
    if purpose == TransferPurpose.MAINTENANCE:
        return AssetStatus.CLIENT_REPAIR if asset.is_customer_owned else AssetStatus.DEFECTIVE
    if purpose == TransferPurpose.RETURN:
        return AssetStatus.READY_FOR_RETURN
    if purpose in (TransferPurpose.MACHINE, TransferPurpose.SIM):
        return DEFAULT_STATUS[asset.kind]
    return None


class TransferOrderService:
    """
    Transfer order engine.

    Non-goals:
        - Does NOT move bulk stock; see InventoryLedger.transfer_stock.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        auditor: AuditorService,
        identifiers: IdentifierService,
        branches: BranchDirectory,
        registry: AssetRegistry,
        machines: MachineStateService,
        guard: ScopeGuard,
        outbox: NotificationOutbox,
        policy: WorkflowPolicy,
    ):
        self._session = session
        self._clock = clock
        self._auditor = auditor
        self._identifiers = identifiers
        self._branches = branches
        self._registry = registry
        self._machines = machines
        self._guard = guard
        self._outbox = outbox
        self._policy = policy

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_order(
        self, scope: AuthorizationScope, order_id: UUID, lock: bool = False
    ) -> TransferOrder:
        order = self._session.get(TransferOrder, order_id, with_for_update=lock or None)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        self._guard.require_visible(
            scope,
            order.source_branch_id,
            order.destination_branch_id,
            not_found=OrderNotFoundError(str(order_id)),
            action="view transfer order",
        )
        return order

    def _pending_orders_by_serial(self, serials: list[str]) -> dict[str, str]:
        rows = self._session.execute(
            select(TransferOrderItem.serial_number, TransferOrder.order_number)
            .join(TransferOrder, TransferOrderItem.order_id == TransferOrder.id)
            .where(
                TransferOrderItem.serial_number.in_(serials),
                TransferOrderItem.is_received.is_(False),
                TransferOrder.status.in_(RECEIVABLE_ORDER_STATUSES),
            )
        )
        return {serial: number for serial, number in rows}

    def pending_serials(self) -> set[str]:
        """Serials currently awaiting receipt on any order."""
        return set(
            self._session.execute(
                select(TransferOrderItem.serial_number)
                .join(TransferOrder, TransferOrderItem.order_id == TransferOrder.id)
                .where(
                    TransferOrderItem.is_received.is_(False),
                    TransferOrder.status.in_(RECEIVABLE_ORDER_STATUSES),
                )
            ).scalars()
        )

    def list_pending_orders(
        self, scope: AuthorizationScope, branch_id: UUID, incoming: bool = True
    ) -> list[TransferOrder]:
        self._guard.require_visible(
            scope,
            branch_id,
            not_found=OrderNotFoundError(f"orders for branch {branch_id}"),
            action="list transfer orders",
        )
        column = (
            TransferOrder.destination_branch_id if incoming else TransferOrder.source_branch_id
        )
        return list(
            self._session.execute(
                select(TransferOrder)
                .where(column == branch_id, TransferOrder.status.in_(RECEIVABLE_ORDER_STATUSES))
                .order_by(TransferOrder.order_number)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _load_assets(self, serials: list[str]) -> dict[str, Asset]:
        assets = {
            a.serial_number: a
            for a in self._session.execute(
                select(Asset).where(Asset.serial_number.in_(serials)).with_for_update()
            ).scalars()
        }
        missing = [s for s in serials if s not in assets]
        if missing:
            raise AssetNotFoundError(", ".join(missing))
        return assets

    def _validate(
        self,
        purpose: TransferPurpose,
        source_id: UUID,
        destination_id: UUID,
        assets: dict[str, Asset],
        check: _Validation,
    ) -> None:
        pending = self._pending_orders_by_serial(list(assets))
        expected_kind = PURPOSE_KIND[purpose]

        for serial, asset in assets.items():
            if asset.kind != expected_kind:
                check.kind.append((serial, asset.kind.value))
                continue
            status = asset.status.value
            if serial in pending:
                check.unavailable.append((serial, status, f"already on order {pending[serial]}"))
            elif asset.branch_id != source_id:
                check.unavailable.append((serial, status, "not held by the source branch"))
            elif purpose == TransferPurpose.MAINTENANCE:
                if asset.status not in self._policy.legacy_transit_statuses:
                    check.unavailable.append((serial, status, "not eligible for maintenance"))
            elif purpose == TransferPurpose.RETURN:
                if asset.status != AssetStatus.READY_FOR_RETURN:
                    check.unavailable.append((serial, status, "not ready for return"))
            elif asset.status in UNAVAILABLE_FOR_DISPATCH:
                check.unavailable.append((serial, status, "in transit, in repair or retired"))

        if purpose == TransferPurpose.RETURN:
            check.binding.extend(
                check_return_destination(
                    destination_id,
                    {s: a.origin_branch_id for s, a in assets.items()},
                )
            )

    def _apply_binding_override(
        self, scope: AuthorizationScope, purpose: TransferPurpose, violations: list[str]
    ) -> None:
        if not scope.is_global:
            raise ForbiddenError("override branch binding")
        logger.warning(
            "binding_override_used",
            extra={
                "purpose": purpose.value,
                "role": scope.role.value,
                "violations": violations,
            },
        )

    def create_order(
        self,
        scope: AuthorizationScope,
        source_branch_id: UUID,
        destination_branch_id: UUID,
        purpose: TransferPurpose,
        serials: list[str],
        *,
        requester_name: str | None = None,
        notes: str | None = None,
        override_binding: bool = False,
    ) -> OrderResult:
        """
        Create a shipment and put every listed asset in transit.

        Preconditions:
            - The actor acts for the source branch.
            - Every serial exists, is held by the source, is of the kind the
              purpose ships, and is available for that purpose.

        Postconditions:
            - One PENDING order with one item per serial.
            - MACHINE/SIM assets are IN_TRANSIT; MAINTENANCE assets entered
              transit through the legacy dispatch; RETURN assets are
              RETURNING and their open assignments RETURNED.
            - Open tickets on the serials are held as PENDING_TRANSFER.
        """
        purpose = TransferPurpose(purpose)
        if purpose == TransferPurpose.INBOUND:
            raise InvalidBranchPairError(
                purpose.value, ["inbound orders are created without a source branch"]
            )
        serials = _normalize_serials(serials)
        if source_branch_id == destination_branch_id:
            raise InvalidBranchPairError(purpose.value, ["source and destination must differ"])

        source = self._branches.get(source_branch_id)
        destination = self._branches.get(destination_branch_id)
        self._guard.require_branch(scope, source.id, "create transfer order")

        assets = self._load_assets(serials)
        check = _Validation(
            binding=check_branch_pair(purpose, source.to_ref(), destination.to_ref())
        )
        self._validate(purpose, source.id, destination.id, assets, check)

        if check.binding:
            if override_binding:
                self._apply_binding_override(scope, purpose, check.binding)
            else:
                logger.info(
                    "binding_violation",
                    extra={"purpose": purpose.value, "violations": check.binding},
                )
                raise InvalidBranchPairError(purpose.value, check.binding)
        if check.kind:
            serial, actual = check.kind[0]
            raise AssetKindMismatchError(serial, PURPOSE_KIND[purpose].value, actual)
        if check.unavailable:
            first = check.unavailable[0]
            raise AssetUnavailableError(*first, problems=check.unavailable)

        fmt = (
            self._policy.return_order_id
            if purpose == TransferPurpose.RETURN
            else self._policy.transfer_order_id
        )
        order = TransferOrder(
            order_number=self._identifiers.next_identifier(fmt, TransferOrder.order_number),
            purpose=purpose,
            status=OrderStatus.PENDING,
            source_branch_id=source.id,
            destination_branch_id=destination.id,
            created_by_name=requester_name,
            notes=notes,
            binding_overridden=bool(check.binding),
            created_by_id=scope.actor_id,
        )
        order.items = [
            TransferOrderItem(
                serial_number=serial,
                kind=assets[serial].kind,
                model=assets[serial].model,
                manufacturer=assets[serial].manufacturer,
            )
            for serial in serials
        ]
        self._session.add(order)
        self._session.flush()

        with LogContext.bind(order_id=str(order.id)):
            for serial in serials:
                self._dispatch(order, assets[serial], scope.actor_id)
            warnings = self._hold_tickets(order, serials, scope.actor_id)
            self._session.flush()

            self._auditor.record(
                "TransferOrder",
                order.id,
                AuditAction.ORDER_CREATED,
                scope.actor_id,
                {
                    "order_number": order.order_number,
                    "purpose": purpose,
                    "source_branch_id": source.id,
                    "destination_branch_id": destination.id,
                    "serials": serials,
                },
            )
            if check.binding:
                self._auditor.record(
                    "TransferOrder",
                    order.id,
                    AuditAction.BINDING_OVERRIDE,
                    scope.actor_id,
                    {"violations": check.binding, "role": scope.role},
                )
            self._outbox.queue(
                destination.id,
                NotificationType.TRANSFER_ORDER,
                "Incoming transfer",
                f"Order {order.order_number} from {source.name}: {len(serials)} item(s)",
                {"order_id": order.id, "order_number": order.order_number},
            )
            logger.info(
                "transfer_order_created",
                extra={
                    "order_number": order.order_number,
                    "purpose": purpose.value,
                    "item_count": len(serials),
                },
            )
        return OrderResult(order=order, warnings=tuple(warnings))

    def _dispatch(self, order: TransferOrder, asset: Asset, actor_id: UUID) -> None:
        if order.purpose == TransferPurpose.MAINTENANCE:
            self._machines.dispatch_to_transit(
                asset,
                actor_id,
                order_number=order.order_number,
                destination_branch_id=order.destination_branch_id,
            )
        elif order.purpose == TransferPurpose.RETURN:
            assignment = self._machines.active_assignment(asset.id)
            if assignment is not None:
                assignment.status = AssignmentStatus.RETURNED
                assignment.updated_by_id = actor_id
            self._machines.transition(
                asset,
                AssetStatus.RETURNING,
                actor_id,
                payload={"order_number": order.order_number},
                assignment=assignment,
            )
        else:
            from_status = asset.status
            asset.status = AssetStatus.IN_TRANSIT
            asset.updated_by_id = actor_id
            self._auditor.log_movement(
                serial_number=asset.serial_number,
                action="TRANSFER_OUT",
                actor_id=actor_id,
                asset=asset,
                from_status=from_status,
                to_status=AssetStatus.IN_TRANSIT,
                details={"order_number": order.order_number},
            )

    def _hold_tickets(self, order: TransferOrder, serials: list[str], actor_id: UUID) -> list[str]:
        if order.purpose == TransferPurpose.RETURN:
            return []
        warnings = []
        for serial, ticket in sorted(self._registry.open_tickets(serials).items()):
            ticket.status = TicketStatus.PENDING_TRANSFER
            ticket.updated_by_id = actor_id
            if order.purpose != TransferPurpose.MAINTENANCE:
                warnings.append(
                    f"{serial} has an open maintenance request {ticket.ticket_number}"
                )
        if warnings:
            logger.warning(
                "transfer_with_open_tickets",
                extra={"order_number": order.order_number, "warning_count": len(warnings)},
            )
        return warnings

    def create_inbound_order(
        self,
        scope: AuthorizationScope,
        destination_branch_id: UUID,
        items: list[InboundItem],
        *,
        requester_name: str | None = None,
        notes: str | None = None,
    ) -> OrderResult:
        """Announce new serials arriving from outside; receipt creates them."""
        destination = self._branches.get(destination_branch_id)
        self._guard.require_branch(scope, destination.id, "create inbound order")

        violations = check_branch_pair(TransferPurpose.INBOUND, None, destination.to_ref())
        if violations:
            raise InvalidBranchPairError(TransferPurpose.INBOUND.value, violations)
        serials = _normalize_serials([item.serial_number for item in items])

        existing = sorted(self._registry.existing_serials(serials))
        if existing:
            raise DuplicateSerialError(", ".join(existing))
        pending = self._pending_orders_by_serial(serials)
        if pending:
            problems = [(s, "INBOUND", f"already on order {n}") for s, n in sorted(pending.items())]
            raise AssetUnavailableError(*problems[0], problems=problems)

        order = TransferOrder(
            order_number=self._identifiers.next_identifier(
                self._policy.transfer_order_id, TransferOrder.order_number
            ),
            purpose=TransferPurpose.INBOUND,
            status=OrderStatus.PENDING,
            source_branch_id=None,
            destination_branch_id=destination.id,
            created_by_name=requester_name,
            notes=notes,
            created_by_id=scope.actor_id,
        )
        order.items = [
            TransferOrderItem(
                serial_number=serial,
                kind=AssetKind(item.kind),
                model=item.model,
                manufacturer=item.manufacturer,
            )
            for serial, item in zip(serials, items)
        ]
        self._session.add(order)
        self._session.flush()

        self._auditor.record(
            "TransferOrder",
            order.id,
            AuditAction.ORDER_CREATED,
            scope.actor_id,
            {
                "order_number": order.order_number,
                "purpose": TransferPurpose.INBOUND,
                "destination_branch_id": destination.id,
                "serials": serials,
            },
        )
        self._outbox.queue(
            destination.id,
            NotificationType.TRANSFER_ORDER,
            "Incoming shipment",
            f"Order {order.order_number}: {len(serials)} new item(s)",
            {"order_id": order.id, "order_number": order.order_number},
        )
        logger.info(
            "transfer_order_created",
            extra={
                "order_number": order.order_number,
                "purpose": TransferPurpose.INBOUND.value,
                "item_count": len(serials),
            },
        )
        return OrderResult(order=order)

    def create_return_package(
        self,
        scope: AuthorizationScope,
        center_branch_id: UUID,
        serials: list[str],
        notes: str | None = None,
    ) -> list[OrderResult]:
        """One RETURN order per origin branch for the given ready assets."""
        serials = _normalize_serials(serials)
        self._guard.require_branch(scope, center_branch_id, "create return package")
        assets = self._load_assets(serials)

        groups: dict[UUID, list[str]] = {}
        orphans = []
        for serial in serials:
            asset = assets[serial]
            if asset.origin_branch_id is None:
                orphans.append((serial, asset.status.value, "no recorded origin branch"))
            else:
                groups.setdefault(asset.origin_branch_id, []).append(serial)
        if orphans:
            raise AssetUnavailableError(*orphans[0], problems=orphans)

        return [
            self.create_order(
                scope,
                center_branch_id,
                origin_id,
                TransferPurpose.RETURN,
                group,
                notes=notes,
            )
            for origin_id, group in sorted(groups.items(), key=lambda kv: str(kv[0]))
        ]

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    def receive_order(
        self,
        scope: AuthorizationScope,
        order_id: UUID,
        received_serials: list[str] | None = None,
    ) -> ReceiveResult:
        """
        Confirm arrival of some or all items.

        ``received_serials=None`` receives everything still pending.  Items
        already received are skipped; a call that receives nothing new is a
        no-op (also on a fully RECEIVED order).

        Raises:
            InvalidOrderItemsError: a serial is not on the order.
            InvalidOrderStatusError: the order was rejected or cancelled.
        """
        order = self.get_order(scope, order_id, lock=True)
        self._guard.require_branch(scope, order.destination_branch_id, "receive transfer order")

        by_serial = {item.serial_number: item for item in order.items}
        if received_serials is None:
            requested = list(by_serial)
        else:
            requested = [s.strip() for s in received_serials]
            unknown = [s for s in requested if s not in by_serial]
            if unknown:
                raise InvalidOrderItemsError(
                    [f"{s} is not on order {order.order_number}" for s in unknown]
                )

        to_receive = [by_serial[s] for s in dict.fromkeys(requested) if not by_serial[s].is_received]
        already = tuple(s for s in dict.fromkeys(requested) if by_serial[s].is_received)

        if order.status not in RECEIVABLE_ORDER_STATUSES and (
            to_receive or order.status != OrderStatus.RECEIVED
        ):
            raise InvalidOrderStatusError(order.order_number, order.status.value, "receive")
        if not to_receive:
            logger.info(
                "receive_noop",
                extra={"order_number": order.order_number, "already_received": len(already)},
            )
            return ReceiveResult(order=order, already_received=already)

        now = self._clock.now()
        with LogContext.bind(order_id=str(order.id)):
            for item in to_receive:
                self._receive_item(order, item, scope.actor_id)
                item.is_received = True
                item.received_at = now
                item.received_by_id = scope.actor_id

            if all(item.is_received for item in order.items):
                order.status = OrderStatus.RECEIVED
                order.received_at = now
                order.received_by_id = scope.actor_id
            else:
                order.status = OrderStatus.PARTIAL
            order.updated_by_id = scope.actor_id
            self._session.flush()

            received = tuple(item.serial_number for item in to_receive)
            self._auditor.record(
                "TransferOrder",
                order.id,
                AuditAction.ORDER_RECEIVED,
                scope.actor_id,
                {"serials": list(received), "status": order.status},
            )
            self._outbox.queue(
                order.source_branch_id,
                NotificationType.TRANSFER_RECEIVED,
                "Transfer received",
                f"Order {order.order_number}: {len(received)} item(s) received",
                {"order_id": order.id, "status": order.status},
            )
            logger.info(
                "transfer_order_received",
                extra={
                    "order_number": order.order_number,
                    "order_status": order.status.value,
                    "item_count": len(received),
                },
            )
        return ReceiveResult(order=order, received=received, already_received=already)

    def _receive_item(self, order: TransferOrder, item: TransferOrderItem, actor_id: UUID) -> None:
        destination_id = order.destination_branch_id
        payload = {"order_number": order.order_number}

        if order.purpose == TransferPurpose.INBOUND:
            if self._registry.find(item.serial_number) is not None:
                raise DuplicateSerialError(item.serial_number)
            self._registry.create_asset(
                serial_number=item.serial_number,
                kind=item.kind,
                branch_id=destination_id,
                status=DEFAULT_STATUS[item.kind],
                actor_id=actor_id,
                model=item.model,
                manufacturer=item.manufacturer,
                action="TRANSFER_IN",
            )
            return

        asset = self._machines.get_by_serial(item.serial_number, lock=True)
        if asset is None:
            raise AssetNotFoundError(item.serial_number)

        if order.purpose == TransferPurpose.MAINTENANCE:
            asset.origin_branch_id = order.source_branch_id
            asset.branch_id = destination_id
            self._machines.transition(
                asset, AssetStatus.RECEIVED_AT_CENTER, actor_id, payload=payload
            )
            ticket = asset.ticket
            if ticket is not None and ticket.status == TicketStatus.PENDING_TRANSFER:
                ticket.status = TicketStatus.OPEN
                ticket.serviced_by_branch_id = destination_id
                ticket.updated_by_id = actor_id
            return

        if order.purpose == TransferPurpose.RETURN:
            asset.branch_id = destination_id
            self._machines.transition(asset, AssetStatus.COMPLETED, actor_id, payload=payload)
            asset.origin_branch_id = None
            self._registry.close_ticket(asset, actor_id)
            return

        from_status = asset.status
        asset.branch_id = destination_id
        asset.status = DEFAULT_STATUS[asset.kind]
        asset.updated_by_id = actor_id
        self._auditor.log_movement(
            serial_number=asset.serial_number,
            action="TRANSFER_IN",
            actor_id=actor_id,
            asset=asset,
            from_status=from_status,
            to_status=asset.status,
            details=payload,
        )
        for ticket in self._registry.held_tickets([asset.serial_number]):
            self._registry.release_ticket(ticket, actor_id)

    # ------------------------------------------------------------------
    # Reject / cancel
    # ------------------------------------------------------------------

    def _abort(
        self,
        order: TransferOrder,
        status: OrderStatus,
        actor_id: UUID,
        action: str,
        reason: str | None,
    ) -> None:
        if order.status != OrderStatus.PENDING:
            raise InvalidOrderStatusError(
                order.order_number, order.status.value, action.split("_")[-1].lower()
            )

        serials = [item.serial_number for item in order.pending_items]
        if order.purpose != TransferPurpose.INBOUND:
            for serial in serials:
                asset = self._machines.get_by_serial(serial, lock=True)
                if asset is None:
                    raise AssetNotFoundError(serial)
                target = restore_status(order.purpose, asset)
                self._machines.restore_after_aborted_transfer(
                    asset,
                    target,
                    actor_id,
                    action=action,
                    order_number=order.order_number,
                    notes=reason,
                )
            for ticket in self._registry.held_tickets(serials):
                self._registry.release_ticket(ticket, actor_id)

        order.status = status
        order.rejection_reason = reason
        order.closed_at = self._clock.now()
        order.closed_by_id = actor_id
        order.updated_by_id = actor_id
        self._session.flush()

    def reject_order(self, scope: AuthorizationScope, order_id: UUID, reason: str) -> TransferOrder:
        """Receiving branch refuses the shipment; a reason is mandatory."""
        order = self.get_order(scope, order_id, lock=True)
        self._guard.require_branch(scope, order.destination_branch_id, "reject transfer order")
        reason = (reason or "").strip()
        if not reason:
            raise RejectionReasonRequiredError("TransferOrder", order.order_number)

        with LogContext.bind(order_id=str(order.id)):
            self._abort(order, OrderStatus.REJECTED, scope.actor_id, "TRANSFER_REJECTED", reason)
            self._auditor.record(
                "TransferOrder",
                order.id,
                AuditAction.ORDER_REJECTED,
                scope.actor_id,
                {"reason": reason},
            )
            self._outbox.queue(
                order.source_branch_id,
                NotificationType.TRANSFER_REJECTED,
                "Transfer rejected",
                f"Order {order.order_number} was rejected: {reason}",
                {"order_id": order.id, "reason": reason},
            )
            logger.info("transfer_order_rejected", extra={"order_number": order.order_number})
        return order

    def cancel_order(
        self, scope: AuthorizationScope, order_id: UUID, reason: str | None = None
    ) -> TransferOrder:
        """Sender withdraws a PENDING order; creator or an order admin only."""
        order = self.get_order(scope, order_id, lock=True)
        if order.created_by_id != scope.actor_id and scope.role not in self._policy.order_admin_roles:
            raise ForbiddenError("cancel transfer order")

        with LogContext.bind(order_id=str(order.id)):
            self._abort(order, OrderStatus.CANCELLED, scope.actor_id, "TRANSFER_CANCELLED", reason)
            self._auditor.record(
                "TransferOrder",
                order.id,
                AuditAction.ORDER_CANCELLED,
                scope.actor_id,
                {"reason": reason},
            )
            self._outbox.queue(
                order.destination_branch_id,
                NotificationType.TRANSFER_CANCELLED,
                "Transfer cancelled",
                f"Order {order.order_number} was cancelled by the sender",
                {"order_id": order.id},
            )
            logger.info("transfer_order_cancelled", extra={"order_number": order.order_number})
        return order
