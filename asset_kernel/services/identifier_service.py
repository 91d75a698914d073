"""
IdentifierService -- date-scoped document numbers.

Format: ``<PREFIX>-<YYYYMMDD>-<seq>``, sequence zero-padded and restarting
every calendar day per prefix (TO-20240115-001, RV-20240115-0001).

The counter for a (prefix, day) scope is seeded from the greatest number
already stored under that scope, then advanced through SequenceService so
two writers in the same day never receive the same value.
"""

from sqlalchemy import select
from sqlalchemy.orm import InstrumentedAttribute, Session

from asset_kernel.domain.clock import Clock
from asset_kernel.domain.policy import IdentifierFormat
from asset_kernel.logging_config import get_logger
from asset_kernel.services.sequence_service import SequenceService

logger = get_logger("services.identifier")


def parse_sequence(identifier: str) -> int | None:
    """Trailing sequence of ``PREFIX-YYYYMMDD-NNN``; None if malformed."""
    parts = identifier.rsplit("-", 1)
    if len(parts) != 2 or not parts[1].isdigit():
        return None
    return int(parts[1])


class IdentifierService:
    def __init__(self, session: Session, clock: Clock, sequences: SequenceService):
        self._session = session
        self._clock = clock
        self._sequences = sequences

    def next_identifier(
        self,
        fmt: IdentifierFormat,
        column: InstrumentedAttribute,
    ) -> str:
        """
        Allocate the next identifier for ``fmt`` on today's date.

        Args:
            fmt: Prefix and padding width.
            column: The unique column the identifier will be stored in; used to
                seed the day's counter from existing rows.
        """
        day = self._clock.today().strftime("%Y%m%d")
        scope = f"{fmt.prefix}-{day}"

        def _highest_existing() -> int:
            rows = self._session.execute(
                select(column).where(column.like(f"{scope}-%"))
            ).scalars()
            return max((parse_sequence(v) or 0 for v in rows), default=0)

        value = self._sequences.next_value(scope, seed=_highest_existing)
        identifier = fmt.render(day, value)
        logger.debug("identifier_allocated", extra={"identifier": identifier})
        return identifier

