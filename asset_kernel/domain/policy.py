"""
WorkflowPolicy -- the kernel's runtime configuration artifact.

The kernel never reads configuration files.  ``asset_config`` compiles YAML
into a ``WorkflowPolicy`` (see asset_config.bridges) and the service layer
hands it to kernel services by constructor injection.
"""

from dataclasses import dataclass, field

from asset_kernel.domain.values import AssetStatus, Role


@dataclass(frozen=True)
class IdentifierFormat:
    """``<prefix>-<YYYYMMDD>-<seq zero-padded to width>``."""

    prefix: str
    width: int

    def __post_init__(self) -> None:
        if not self.prefix or not self.prefix.isalnum():
            raise ValueError(f"Identifier prefix must be alphanumeric: {self.prefix!r}")
        if not 1 <= self.width <= 9:
            raise ValueError(f"Identifier width must be between 1 and 9: {self.width}")

    def render(self, day: str, value: int) -> str:
        return f"{self.prefix}-{day}-{value:0{self.width}d}"


DEFAULT_LEGACY_TRANSIT_STATUSES = frozenset(
    {
        AssetStatus.NEW,
        AssetStatus.STANDBY,
        AssetStatus.DEFECTIVE,
        AssetStatus.CLIENT_REPAIR,
        AssetStatus.AT_CENTER,
        AssetStatus.REPAIRED,
        AssetStatus.COMPLETED,
    }
)


@dataclass(frozen=True)
class WorkflowPolicy:
    transfer_order_id: IdentifierFormat = IdentifierFormat("TO", 3)
    return_order_id: IdentifierFormat = IdentifierFormat("RET", 3)
    repair_voucher_id: IdentifierFormat = IdentifierFormat("RV", 4)
    ticket_id: IdentifierFormat = IdentifierFormat("MR", 4)

    # Roles that may reach any branch through a logged override
    global_roles: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.MANAGEMENT})

    # Roles that may cancel orders they did not create
    order_admin_roles: frozenset[Role] = frozenset(
        {Role.SUPER_ADMIN, Role.MANAGEMENT, Role.ADMIN_AFFAIRS}
    )

    # Pre-center statuses allowed straight into IN_TRANSIT on MAINTENANCE orders
    legacy_transit_statuses: frozenset[AssetStatus] = field(
        default=DEFAULT_LEGACY_TRANSIT_STATUSES
    )

    default_min_level: int = 0

    stats_cache_ttl_seconds: int = 60

    def __post_init__(self) -> None:
        prefixes = [
            self.transfer_order_id.prefix,
            self.return_order_id.prefix,
            self.repair_voucher_id.prefix,
            self.ticket_id.prefix,
        ]
        if len(set(prefixes)) != len(prefixes):
            raise ValueError(f"Identifier prefixes must be distinct: {prefixes}")
        if not self.order_admin_roles:
            raise ValueError("At least one order admin role is required")
        cycle_states = {
            AssetStatus.IN_TRANSIT,
            AssetStatus.RETURNING,
            AssetStatus.SOLD,
            AssetStatus.SCRAPPED,
        }
        if self.legacy_transit_statuses & cycle_states:
            raise ValueError("Legacy transit statuses may not include transit or retired states")
        if self.default_min_level < 0:
            raise ValueError("default_min_level must be >= 0")
        if self.stats_cache_ttl_seconds < 0:
            raise ValueError("stats_cache_ttl_seconds must be >= 0")
