"""
ORM-Level Append-Only Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable          | Why
----------------|-------------------------|------------------------------------
MovementLog     | ALWAYS (from creation)  | Asset lifecycle trail
StockMovement   | ALWAYS (from creation)  | Inventory journal, debt evidence
AuditEvent      | ALWAYS (from creation)  | Hash chain would break
DebtPayment     | ALWAYS (from creation)  | Receipts are settled history

SQLAlchemy fires ``before_update`` / ``before_delete`` before SQL reaches the
database.  The listeners below raise ImmutabilityViolationError, aborting the
flush; the enclosing unit of work then rolls back.

Usage:
    from asset_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup (create_tables does it)
"""

from sqlalchemy import event

from asset_kernel.exceptions import ImmutabilityViolationError
from asset_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(operation: str):
    def _listener(mapper, connection, target):
        entity_type = type(target).__name__
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": entity_type,
                "entity_id": str(target.id),
                "operation": operation,
            },
        )
        raise ImmutabilityViolationError(
            entity_type=entity_type,
            entity_id=str(target.id),
            reason=f"{entity_type} rows are append-only ({operation} rejected)",
        )

    _listener.__name__ = f"_block_{operation.lower()}"
    return _listener


_block_update = _block("UPDATE")
_block_delete = _block("DELETE")


def _append_only_models() -> tuple:
    from asset_kernel.models.audit_event import AuditEvent
    from asset_kernel.models.inventory import StockMovement
    from asset_kernel.models.movement_log import MovementLog
    from asset_kernel.models.settlement import DebtPayment

    return (MovementLog, StockMovement, AuditEvent, DebtPayment)


def register_immutability_listeners() -> None:
    """Register append-only listeners (idempotent)."""
    for model in _append_only_models():
        if not event.contains(model, "before_update", _block_update):
            event.listen(model, "before_update", _block_update)
        if not event.contains(model, "before_delete", _block_delete):
            event.listen(model, "before_delete", _block_delete)


def unregister_immutability_listeners() -> None:
    """
    Remove append-only listeners.

    WARNING: Only for tests that deliberately violate the rule.
    """
    for model in _append_only_models():
        if event.contains(model, "before_update", _block_update):
            event.remove(model, "before_update", _block_update)
        if event.contains(model, "before_delete", _block_delete):
            event.remove(model, "before_delete", _block_delete)
