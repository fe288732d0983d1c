"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing counters for generating human-readable
    transaction ids of the form ``{prefix}{YYMMDD}{NNNN}``.  Each
    (prefix, date key) pair is its own named counter row, locked with
    ``SELECT ... FOR UPDATE`` so concurrent allocations never collide.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the Transaction Engine inside its Unit-of-Work.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth.
      The aggregate-max-plus-one pattern is not used for transaction ids.
    - Transactional: an increment is visible only after the caller's
      Unit-of-Work commits; rollback returns the value.

Failure modes:
    - IntegrityError: concurrent first use of a counter (handled via
      savepoint rollback and re-read).
"""

from datetime import date

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # e.g. "PO240101" for purchase ids issued on 2024-01-01
    name: Mapped[str] = mapped_column(
        String(60),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


def date_key(value: date) -> str:
    """``YYMMDD`` key used in transaction ids."""
    return value.strftime("%y%m%d")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        ``next_sequence(prefix, date_key)`` returns the next value of the
        counter for that pair.  ``next_transaction_id`` formats it.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the Unit-of-Work owns that.
        - Does NOT gap-fill; a rolled-back allocation is simply reused by the
          next caller because the increment never committed.
    """

    def __init__(self, session: Session, width: int = 4):
        self._session = session
        self._width = width

    def next_sequence(self, prefix: str, key: str) -> int:
        """
        Atomically increment and return the counter for ``prefix`` + ``key``.

        Preconditions:
            - The caller is within an active Unit-of-Work.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously committed for this pair.
            - The counter row stays locked until the Unit-of-Work ends.
        """
        return self.next_value(f"{prefix}{key}")

    def next_transaction_id(self, prefix: str, on: date) -> str:
        """Allocate ``{prefix}{YYMMDD}{NNNN}`` for a transaction dated ``on``."""
        key = date_key(on)
        value = self.next_sequence(prefix, key)
        return f"{prefix}{key}{value:0{self._width}d}"

    def next_value(self, sequence_name: str) -> int:
        """Get the next value for a named sequence."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            # First use of this counter. Another Unit-of-Work may create it
            # concurrently, so isolate the insert in a savepoint.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._session.execute(
                    select(SequenceCounter)
                    .where(SequenceCounter.name == sequence_name)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one()

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
