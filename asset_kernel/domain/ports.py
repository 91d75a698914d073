"""
Collaborator protocols consumed by the kernel.

The kernel depends only on these shapes; concrete implementations live in
services (database-backed defaults) or in the embedding application.
"""

from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from asset_kernel.domain.dtos import Actor, AuthorizationScope


# =========================================================================
# BranchResolver Protocol
# =========================================================================


@runtime_checkable
class BranchResolver(Protocol):
    """Turns an authenticated actor into an authorization scope."""

    def resolve(self, actor: Actor) -> AuthorizationScope:
        ...


# =========================================================================
# NotificationSink Protocol
# =========================================================================


@runtime_checkable
class NotificationSink(Protocol):
    """
    Fire-and-forget delivery of branch notifications.

    Implementations may raise; the dispatcher catches, logs, and carries on.
    """

    def notify(
        self,
        branch_id: UUID,
        type: str,
        title: str,
        message: str,
        payload: dict[str, Any],
    ) -> None:
        ...
