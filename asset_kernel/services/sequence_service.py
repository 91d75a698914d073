"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing integers per named counter.  Used for the
    audit chain ``seq`` and, through IdentifierService, for date-scoped
    document numbers.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Values are unique per counter name: the counter row is read with
      ``SELECT ... FOR UPDATE`` and incremented in place.
    - Transactional: an allocation is only visible once the caller commits;
      a rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent first-use race, absorbed through a
      savepoint and a locked re-read.
"""

from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from asset_kernel.logging_config import get_logger
from asset_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, name: str, seed: Callable[[], int] | None = None) -> int:
        """
        Allocate the next value for ``name``.

        ``seed`` is consulted only when the counter row does not exist yet; it
        returns the highest value already in use so numbering continues from
        existing data instead of restarting at 1.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for this name.
        """
        counter = self._locked_counter(name)

        if counter is None:
            start = seed() if seed is not None else 0
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=name, current_value=start + 1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": name, "value": counter.current_value},
                )
                return counter.current_value
            except IntegrityError:
                logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
                savepoint.rollback()
                counter = self._locked_counter(name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
