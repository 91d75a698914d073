"""
KernelSettings schema.

The human-authored settings for an asset kernel deployment, parsed from
YAML by ``asset_config.loader``.  Plain frozen dataclasses holding strings
and numbers; ``asset_config.bridges`` turns them into the kernel's
``WorkflowPolicy``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class IdentifierDef:
    """Prefix and zero-padding width of one document number series."""

    prefix: str
    width: int

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("Identifier prefix must not be empty")
        if self.width < 1:
            raise ValueError(f"Identifier width must be positive: {self.width}")


@dataclass(frozen=True)
class IdentifierSettings:
    transfer_order: IdentifierDef = IdentifierDef("TO", 3)
    return_order: IdentifierDef = IdentifierDef("RET", 3)
    repair_voucher: IdentifierDef = IdentifierDef("RV", 4)
    maintenance_ticket: IdentifierDef = IdentifierDef("MR", 4)


@dataclass(frozen=True)
class AccessSettings:
    global_roles: tuple[str, ...] = ("SUPER_ADMIN", "MANAGEMENT")
    order_admin_roles: tuple[str, ...] = ("SUPER_ADMIN", "MANAGEMENT", "ADMIN_AFFAIRS")


@dataclass(frozen=True)
class WorkflowSettings:
    # Statuses a machine may leave for a maintenance center from
    legacy_transit_statuses: tuple[str, ...] = (
        "NEW",
        "STANDBY",
        "DEFECTIVE",
        "CLIENT_REPAIR",
        "AT_CENTER",
        "REPAIRED",
        "COMPLETED",
    )


@dataclass(frozen=True)
class InventorySettings:
    default_min_level: int = 0

    def __post_init__(self) -> None:
        if self.default_min_level < 0:
            raise ValueError("default_min_level must be >= 0")


@dataclass(frozen=True)
class StatsSettings:
    cache_ttl_seconds: int = 60

    def __post_init__(self) -> None:
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class KernelSettings:
    """Root of the settings tree; ``checksum`` identifies the source text."""

    identifiers: IdentifierSettings = field(default_factory=IdentifierSettings)
    access: AccessSettings = field(default_factory=AccessSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    inventory: InventorySettings = field(default_factory=InventorySettings)
    stats: StatsSettings = field(default_factory=StatsSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
