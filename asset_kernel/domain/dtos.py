"""
Frozen data transfer objects crossing the service boundary.

All DTOs are immutable and validate their own shape in ``__post_init__``;
state-dependent checks (stock, statuses, scope) belong to services.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from asset_kernel.domain.values import AssetKind, AssetStatus, Role
from asset_kernel.exceptions import InvalidPartLineError


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as handed over by the outer layer."""

    actor_id: UUID
    role: Role
    branch_id: UUID | None = None
    name: str = ""


@dataclass(frozen=True)
class AuthorizationScope:
    """
    Resolved authorization scope for one actor.

    ``authorized_branch_ids`` always contains ``own_branch_id`` when set.
    ``is_global`` marks roles that may reach any branch, but only through an
    explicit, logged override (see ScopeGuard).
    """

    actor_id: UUID
    role: Role
    own_branch_id: UUID | None
    authorized_branch_ids: frozenset[UUID] = frozenset()
    is_global: bool = False

    def covers(self, branch_id: UUID | None) -> bool:
        """True when the branch is reachable without any override."""
        return branch_id is not None and branch_id in self.authorized_branch_ids


@dataclass(frozen=True)
class PartLine:
    """
    One consumed or proposed spare-part line.

    ``total`` is the line total charged to the origin branch; only lines
    with ``is_billable`` contribute to a BranchDebt.
    """

    part_id: UUID
    quantity: int
    total: Decimal = Decimal("0")
    is_billable: bool = False
    name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.quantity, int) or self.quantity <= 0:
            raise InvalidPartLineError(str(self.part_id), "quantity must be a positive integer")
        if not isinstance(self.total, Decimal):
            object.__setattr__(self, "total", Decimal(str(self.total)))
        if self.total < 0:
            raise InvalidPartLineError(str(self.part_id), "total must not be negative")

    def snapshot(self) -> dict[str, Any]:
        return {
            "part_id": str(self.part_id),
            "name": self.name,
            "quantity": self.quantity,
            "total": str(self.total),
            "is_billable": self.is_billable,
        }


def billable_total(parts: list[PartLine] | tuple[PartLine, ...]) -> Decimal:
    """Sum of billable line totals."""
    return sum((p.total for p in parts if p.is_billable), Decimal("0"))


@dataclass(frozen=True)
class StockShortfall:
    part_id: UUID
    part_name: str | None
    requested: int
    available: int

    @property
    def missing(self) -> int:
        return self.requested - self.available


@dataclass(frozen=True)
class InboundItem:
    """A serial arriving from outside the branch network."""

    serial_number: str
    kind: AssetKind
    model: str | None = None
    manufacturer: str | None = None


@dataclass(frozen=True)
class AssetImportRow:
    """A pre-parsed bulk-import row; validated by AssetRegistry."""

    serial_number: str
    kind: AssetKind | str
    model: str | None = None
    manufacturer: str | None = None
    status: AssetStatus | str = AssetStatus.NEW
    customer_ref: str | None = None


@dataclass(frozen=True)
class Notification:
    branch_id: UUID
    type: str
    title: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)
