"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing numbers for posting groups
    and human-facing document numbers (settlements, invoices).  Uses a
    dedicated counter table with row-level locking (``SELECT ... FOR
    UPDATE``) to guarantee uniqueness and ordering under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by LedgerStore (posting group seq), SettlementService and
    InvoiceService (document numbers).

Invariants enforced:
    - Sequences are strictly monotonic.  The aggregate-max-plus-one
      anti-pattern is never used; the locked counter row is the sole
      source of truth for the next value.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from agri_kernel.db.base import Base
from agri_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "posting_group", "settlement")
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        seq = SequenceService(session).next_value(SequenceService.POSTING_GROUP)
        number = SequenceService(session).next_document_number(
            SequenceService.SETTLEMENT, "STL"
        )  # "STL-000001"
    """

    # Well-known sequence names
    POSTING_GROUP = "posting_group"
    SETTLEMENT = "settlement"
    INVOICE = "invoice"

    DOCUMENT_NUMBER_WIDTH = 6

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this sequence name.
            - The counter row stays locked until the transaction completes.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use. Another transaction may create it at the same time;
            # the savepoint keeps the rest of the caller's work intact.
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
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        assert counter.current_value > 0, "sequence value must be strictly positive"
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_document_number(self, sequence_name: str, prefix: str) -> str:
        """Next human-facing number, e.g. ``STL-000042``."""
        value = self.next_value(sequence_name)
        return f"{prefix}-{value:0{self.DOCUMENT_NUMBER_WIDTH}d}"

    def initialize_sequences(self) -> None:
        """
        Initialize all well-known sequences.

        Called during database setup to ensure sequences exist.
        """
        for name in (self.POSTING_GROUP, self.SETTLEMENT, self.INVOICE):
            existing = self._session.execute(
                select(SequenceCounter).where(SequenceCounter.name == name)
            ).scalar_one_or_none()

            if existing is None:
                self._session.add(SequenceCounter(name=name, current_value=0))

        self._session.flush()
