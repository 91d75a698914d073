"""
AssetRegistry -- creation, bulk import, retirement and tickets.

Responsibility:
    Brings serialized assets into the system (single registration, bulk
    import of pre-parsed rows, customer returns), retires them logically
    (SOLD / SCRAPPED), and opens maintenance tickets against them.

Architecture position:
    Kernel > Services.  Used by the workflow facade and by
    TransferOrderService for ticket holds.

Invariants enforced:
    - serial_number is unique across the store.
    - ``kind`` is set here, once, from an explicit field.
    - Imports are all-or-nothing: every row is validated before the first
      insert and all row errors are reported together.
    - Assets are never deleted; retirement is a status.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_kernel.domain.clock import Clock
from asset_kernel.domain.dtos import AssetImportRow, AuthorizationScope
from asset_kernel.domain.policy import WorkflowPolicy
from asset_kernel.domain.values import (
    HOLDABLE_TICKET_STATUSES,
    REPAIR_CYCLE_STATUSES,
    UNAVAILABLE_FOR_DISPATCH,
    AssetKind,
    AssetStatus,
    TicketStatus,
)
from asset_kernel.exceptions import (
    AssetKindMismatchError,
    AssetNotFoundError,
    AssetUnavailableError,
    DuplicateSerialError,
    ImportRowError,
    TicketNotFoundError,
)
from asset_kernel.logging_config import get_logger
from asset_kernel.models.asset import Asset, MaintenanceTicket
from asset_kernel.models.audit_event import AuditAction
from asset_kernel.services.auditor_service import AuditorService
from asset_kernel.services.branch_service import ScopeGuard
from asset_kernel.services.identifier_service import IdentifierService

logger = get_logger("services.asset_registry")

# Statuses an asset may be imported or registered with
_INITIAL_STATUSES = frozenset(AssetStatus) - REPAIR_CYCLE_STATUSES

DEFAULT_STATUS = {
    AssetKind.MACHINE: AssetStatus.NEW,
    AssetKind.SIM: AssetStatus.ACTIVE,
}


class AssetRegistry:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        auditor: AuditorService,
        identifiers: IdentifierService,
        guard: ScopeGuard,
        policy: WorkflowPolicy,
    ):
        self._session = session
        self._clock = clock
        self._auditor = auditor
        self._identifiers = identifiers
        self._guard = guard
        self._policy = policy

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find(self, serial_number: str) -> Asset | None:
        return self._session.execute(
            select(Asset).where(Asset.serial_number == serial_number)
        ).scalar_one_or_none()

    def get_by_serial(self, scope: AuthorizationScope, serial_number: str) -> Asset:
        asset = self.find(serial_number)
        if asset is None:
            raise AssetNotFoundError(serial_number)
        self._guard.require_visible(
            scope,
            asset.branch_id,
            asset.origin_branch_id,
            not_found=AssetNotFoundError(serial_number),
            action="view asset",
        )
        return asset

    def existing_serials(self, serials: Iterable[str]) -> set[str]:
        serials = list(serials)
        if not serials:
            return set()
        return set(
            self._session.execute(
                select(Asset.serial_number).where(Asset.serial_number.in_(serials))
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def create_asset(
        self,
        *,
        serial_number: str,
        kind: AssetKind,
        branch_id: UUID,
        status: AssetStatus,
        actor_id: UUID,
        model: str | None = None,
        manufacturer: str | None = None,
        customer_ref: str | None = None,
        action: str = "REGISTERED",
    ) -> Asset:
        asset = Asset(
            serial_number=serial_number,
            kind=kind,
            model=model,
            manufacturer=manufacturer,
            branch_id=branch_id,
            status=status,
            customer_ref=customer_ref,
            created_by_id=actor_id,
        )
        self._session.add(asset)
        self._session.flush()
        self._auditor.log_movement(
            serial_number=serial_number,
            action=action,
            actor_id=actor_id,
            asset=asset,
            to_status=status,
            branch_id=branch_id,
        )
        return asset

    def register_asset(
        self,
        scope: AuthorizationScope,
        serial_number: str,
        kind: AssetKind,
        branch_id: UUID,
        model: str | None = None,
        manufacturer: str | None = None,
        status: AssetStatus | None = None,
    ) -> Asset:
        self._guard.require_branch(scope, branch_id, "register asset")
        kind = AssetKind(kind)
        if status is not None:
            status = AssetStatus(status)
        serial_number = serial_number.strip()
        if self.find(serial_number) is not None:
            raise DuplicateSerialError(serial_number)
        status = status or DEFAULT_STATUS[kind]
        if status not in _INITIAL_STATUSES:
            raise ImportRowError(
                [(1, f"{serial_number}: status {status.value} is not an initial status")]
            )

        asset = self.create_asset(
            serial_number=serial_number,
            kind=kind,
            branch_id=branch_id,
            status=status,
            actor_id=scope.actor_id,
            model=model,
            manufacturer=manufacturer,
        )
        logger.info("asset_registered", extra={"serial": serial_number, "kind": kind.value})
        return asset

    def import_assets(
        self,
        scope: AuthorizationScope,
        branch_id: UUID,
        rows: list[AssetImportRow],
    ) -> list[Asset]:
        """
        Validate and insert a pre-parsed batch.

        Raises:
            ImportRowError: every invalid row, by 1-based row number; nothing
                is inserted.
        """
        self._guard.require_branch(scope, branch_id, "import assets")

        errors: list[tuple[int, str]] = []
        parsed: list[tuple[str, AssetKind, AssetStatus, AssetImportRow]] = []
        seen: set[str] = set()
        existing = self.existing_serials(
            (row.serial_number or "").strip() for row in rows
        )

        for number, row in enumerate(rows, start=1):
            serial = (row.serial_number or "").strip()
            if not serial:
                errors.append((number, "serial number is required"))
                continue
            if serial in seen:
                errors.append((number, f"{serial}: duplicated in this batch"))
                continue
            seen.add(serial)
            if serial in existing:
                errors.append((number, f"{serial}: already registered"))
                continue

            try:
                kind = AssetKind(str(getattr(row.kind, "value", row.kind)).strip().upper())
            except ValueError:
                errors.append((number, f"{serial}: unknown kind {row.kind!r}"))
                continue
            try:
                status = AssetStatus(str(getattr(row.status, "value", row.status)).strip().upper())
            except ValueError:
                errors.append((number, f"{serial}: unknown status {row.status!r}"))
                continue
            if status not in _INITIAL_STATUSES:
                errors.append((number, f"{serial}: status {status.value} is not an initial status"))
                continue
            parsed.append((serial, kind, status, row))

        if errors:
            logger.warning(
                "asset_import_rejected",
                extra={"row_count": len(rows), "error_count": len(errors)},
            )
            raise ImportRowError(errors)

        assets = [
            self.create_asset(
                serial_number=serial,
                kind=kind,
                branch_id=branch_id,
                status=status,
                actor_id=scope.actor_id,
                model=row.model,
                manufacturer=row.manufacturer,
                customer_ref=row.customer_ref,
                action="IMPORTED",
            )
            for serial, kind, status, row in parsed
        ]
        self._auditor.record(
            "Branch",
            branch_id,
            AuditAction.ASSETS_IMPORTED,
            scope.actor_id,
            {"count": len(assets), "serials": [a.serial_number for a in assets]},
        )
        logger.info("assets_imported", extra={"row_count": len(assets)})
        return assets

    def register_customer_return(
        self,
        scope: AuthorizationScope,
        branch_id: UUID,
        serial_number: str,
        customer_ref: str,
        model: str | None = None,
        manufacturer: str | None = None,
    ) -> Asset:
        """A customer-owned machine handed in for repair: status CLIENT_REPAIR."""
        self._guard.require_branch(scope, branch_id, "register customer return")
        serial_number = serial_number.strip()
        asset = self.find(serial_number)

        if asset is None:
            asset = self.create_asset(
                serial_number=serial_number,
                kind=AssetKind.MACHINE,
                branch_id=branch_id,
                status=AssetStatus.CLIENT_REPAIR,
                actor_id=scope.actor_id,
                model=model,
                manufacturer=manufacturer,
                customer_ref=customer_ref,
                action="CUSTOMER_RETURN",
            )
        else:
            if asset.kind != AssetKind.MACHINE:
                raise AssetKindMismatchError(
                    serial_number, AssetKind.MACHINE.value, asset.kind.value
                )
            if asset.status in UNAVAILABLE_FOR_DISPATCH and asset.status != AssetStatus.SOLD:
                raise AssetUnavailableError(
                    serial_number, asset.status.value, "cannot be taken back in its current state"
                )
            from_status = asset.status
            asset.branch_id = branch_id
            asset.status = AssetStatus.CLIENT_REPAIR
            asset.customer_ref = customer_ref
            asset.resolution = None
            asset.updated_by_id = scope.actor_id
            self._auditor.log_movement(
                serial_number=serial_number,
                action="CUSTOMER_RETURN",
                actor_id=scope.actor_id,
                asset=asset,
                from_status=from_status,
                to_status=AssetStatus.CLIENT_REPAIR,
            )
            self._session.flush()

        logger.info("customer_return_registered", extra={"serial": serial_number})
        return asset

    def _retire(
        self,
        scope: AuthorizationScope,
        serial_number: str,
        status: AssetStatus,
        notes: str | None,
    ) -> Asset:
        asset = self.get_by_serial(scope, serial_number)
        self._guard.require_branch(scope, asset.branch_id, f"mark asset {status.value.lower()}")
        if asset.status in UNAVAILABLE_FOR_DISPATCH:
            raise AssetUnavailableError(
                serial_number, asset.status.value, f"cannot be marked {status.value}"
            )

        from_status = asset.status
        asset.status = status
        asset.updated_by_id = scope.actor_id
        self._auditor.log_movement(
            serial_number=serial_number,
            action=status.value,
            actor_id=scope.actor_id,
            asset=asset,
            from_status=from_status,
            to_status=status,
            notes=notes,
        )
        self._session.flush()
        self._auditor.record(
            "Asset",
            asset.id,
            AuditAction.ASSET_RETIRED,
            scope.actor_id,
            {"status": status, "from_status": from_status, "notes": notes},
        )
        return asset

    def mark_sold(
        self, scope: AuthorizationScope, serial_number: str, customer_ref: str | None = None
    ) -> Asset:
        asset = self._retire(scope, serial_number, AssetStatus.SOLD, None)
        if customer_ref:
            asset.customer_ref = customer_ref
        return asset

    def mark_scrapped(self, scope: AuthorizationScope, serial_number: str, reason: str) -> Asset:
        return self._retire(scope, serial_number, AssetStatus.SCRAPPED, reason)

    # ------------------------------------------------------------------
    # Maintenance tickets
    # ------------------------------------------------------------------

    def open_ticket(
        self,
        scope: AuthorizationScope,
        serial_number: str,
        complaint: str | None = None,
    ) -> MaintenanceTicket:
        asset = self.get_by_serial(scope, serial_number)
        self._guard.require_branch(scope, asset.branch_id, "open maintenance ticket")
        if asset.kind != AssetKind.MACHINE:
            raise AssetKindMismatchError(serial_number, AssetKind.MACHINE.value, asset.kind.value)
        if asset.ticket is not None and asset.ticket.status not in (
            TicketStatus.CLOSED,
            TicketStatus.CANCELLED,
        ):
            raise AssetUnavailableError(
                serial_number, asset.status.value, "already has an open maintenance ticket"
            )

        ticket = MaintenanceTicket(
            ticket_number=self._identifiers.next_identifier(
                self._policy.ticket_id, MaintenanceTicket.ticket_number
            ),
            serial_number=serial_number,
            branch_id=asset.branch_id,
            status=TicketStatus.OPEN,
            complaint=complaint,
            created_by_id=scope.actor_id,
        )
        self._session.add(ticket)
        self._session.flush()
        asset.ticket = ticket
        asset.updated_by_id = scope.actor_id
        self._session.flush()
        logger.info(
            "ticket_opened",
            extra={"serial": serial_number, "ticket_number": ticket.ticket_number},
        )
        return ticket

    def get_ticket(self, ticket_id: UUID) -> MaintenanceTicket:
        ticket = self._session.get(MaintenanceTicket, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(str(ticket_id))
        return ticket

    def open_tickets(self, serials: Iterable[str]) -> dict[str, MaintenanceTicket]:
        """Open or in-progress tickets per serial."""
        serials = list(serials)
        if not serials:
            return {}
        rows = self._session.execute(
            select(MaintenanceTicket).where(
                MaintenanceTicket.serial_number.in_(serials),
                MaintenanceTicket.status.in_(HOLDABLE_TICKET_STATUSES),
            )
        ).scalars()
        return {t.serial_number: t for t in rows}

    def release_ticket(self, ticket: MaintenanceTicket | None, actor_id: UUID) -> None:
        """Put a ticket held for transfer back to OPEN."""
        if ticket is not None and ticket.status == TicketStatus.PENDING_TRANSFER:
            ticket.status = TicketStatus.OPEN
            ticket.updated_by_id = actor_id

    def close_ticket(self, asset: Asset, actor_id: UUID) -> None:
        ticket = asset.ticket
        if ticket is not None and ticket.status not in (TicketStatus.CLOSED, TicketStatus.CANCELLED):
            ticket.status = TicketStatus.CLOSED
            ticket.closed_at = self._clock.now()
            ticket.updated_by_id = actor_id
        asset.ticket = None

    def held_tickets(self, serials: Iterable[str]) -> list[MaintenanceTicket]:
        serials = list(serials)
        if not serials:
            return []
        return list(
            self._session.execute(
                select(MaintenanceTicket).where(
                    MaintenanceTicket.serial_number.in_(serials),
                    MaintenanceTicket.status == TicketStatus.PENDING_TRANSFER,
                )
            ).scalars()
        )
