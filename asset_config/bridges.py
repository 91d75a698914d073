"""
Config -> Kernel bridges.

Converts ``KernelSettings`` into kernel inputs.  Lives in asset_config
because the kernel must never import asset_config.

Usage:
    from asset_config import get_active_settings
    from asset_config.bridges import build_workflow_policy

    settings = get_active_settings()
    policy = build_workflow_policy(settings)
"""

from __future__ import annotations

from asset_config.schema import IdentifierDef, KernelSettings
from asset_kernel.domain.policy import IdentifierFormat, WorkflowPolicy
from asset_kernel.domain.values import AssetStatus, Role


def _identifier(definition: IdentifierDef) -> IdentifierFormat:
    return IdentifierFormat(prefix=definition.prefix, width=definition.width)


def _roles(names: tuple[str, ...], key: str) -> frozenset[Role]:
    try:
        return frozenset(Role(name) for name in names)
    except ValueError as exc:
        raise ValueError(f"Unknown role in '{key}': {exc}") from exc


def build_workflow_policy(settings: KernelSettings) -> WorkflowPolicy:
    """Build the kernel's ``WorkflowPolicy``; raises ValueError on bad values."""
    try:
        legacy = frozenset(AssetStatus(name) for name in settings.workflow.legacy_transit_statuses)
    except ValueError as exc:
        raise ValueError(f"Unknown status in 'legacy_transit_statuses': {exc}") from exc

    ids = settings.identifiers
    return WorkflowPolicy(
        transfer_order_id=_identifier(ids.transfer_order),
        return_order_id=_identifier(ids.return_order),
        repair_voucher_id=_identifier(ids.repair_voucher),
        ticket_id=_identifier(ids.maintenance_ticket),
        global_roles=_roles(settings.access.global_roles, "global_roles"),
        order_admin_roles=_roles(settings.access.order_admin_roles, "order_admin_roles"),
        legacy_transit_statuses=legacy,
        default_min_level=settings.inventory.default_min_level,
        stats_cache_ttl_seconds=settings.stats.cache_ttl_seconds,
    )
