"""
Post-commit branch notifications.

Services queue notifications on a ``NotificationOutbox`` while the unit of
work is open.  The workflow facade hands the outbox to a
``NotificationDispatcher`` only after the transaction has committed, and
discards it on rollback, so a notification is never sent for work that did
not happen.  Sink failures are logged and swallowed here and nowhere else.
"""

from typing import Any
from uuid import UUID

from asset_kernel.domain.dtos import Notification
from asset_kernel.domain.ports import NotificationSink
from asset_kernel.domain.values import NotificationType
from asset_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationOutbox:
    """In-memory queue scoped to one unit of work."""

    def __init__(self) -> None:
        self._pending: list[Notification] = []

    def queue(
        self,
        branch_id: UUID | None,
        type: NotificationType,
        title: str,
        message: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if branch_id is None:
            return
        self._pending.append(
            Notification(
                branch_id=branch_id,
                type=type.value,
                title=title,
                message=message,
                payload=payload or {},
            )
        )

    def drain(self) -> list[Notification]:
        pending, self._pending = self._pending, []
        return pending

    def clear(self) -> None:
        self._pending = []

    def __len__(self) -> int:
        return len(self._pending)


class NotificationDispatcher:
    """Delivers drained notifications; failures never reach the caller."""

    def __init__(self, sink: NotificationSink):
        self._sink = sink

    def dispatch(self, notifications: list[Notification]) -> int:
        """Returns the number of notifications the sink accepted."""
        delivered = 0
        for note in notifications:
            try:
                self._sink.notify(
                    note.branch_id, note.type, note.title, note.message, note.payload
                )
                delivered += 1
            except Exception:
                logger.warning(
                    "notification_failed",
                    extra={"branch_id": str(note.branch_id), "notification_type": note.type},
                    exc_info=True,
                )
        return delivered


class LoggingNotificationSink:
    """Default sink: writes each notification to the structured log."""

    def notify(
        self,
        branch_id: UUID,
        type: str,
        title: str,
        message: str,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "notification_sent",
            extra={
                "target_branch_id": str(branch_id),
                "notification_type": type,
                "title": title,
                "body": message,
            },
        )
