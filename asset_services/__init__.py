"""
asset_services -- Package init and public API.

Responsibility:
    Transactional orchestration over the asset kernel.  This is the only
    layer that commits or rolls back sessions, delivers notifications and
    turns configuration into kernel policy.

Architecture position:
    Services -- composition over the kernel and config.

    Dependency direction:
        asset_services/ -> asset_kernel/   (allowed)
        asset_services/ -> asset_config/   (allowed)
        asset_kernel/   -> asset_services/ (FORBIDDEN)
        asset_config/   -> asset_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: asset_kernel never imports from this package.
    - DI transparency: all kernel service wiring is centralised in
      WorkflowOrchestrator.
"""

from asset_services.workflow_orchestrator import WorkflowOrchestrator
from asset_services.workflow_service import (
    AssetWorkflowService,
    create_workflow_service,
    init_database,
)

__all__ = [
    "AssetWorkflowService",
    "WorkflowOrchestrator",
    "create_workflow_service",
    "init_database",
]
