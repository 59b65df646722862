"""
PeriodService -- accounting period lifecycle and the posting-date guard.

Responsibility:
    Creates, closes and reopens accounting periods, and tells LedgerStore
    whether a posting or reversal date may be written.

Architecture position:
    Kernel > Services -- imperative shell.
    Consulted by LedgerStore before every ``write_group`` and
    ``write_reversal``.

Invariants enforced:
    - Period date ranges never overlap.
    - No posting group is written with a posting_date inside a CLOSED
      period.
    - A reversal dated on its original's posting date is always allowed;
      any other reversal date must not fall in a CLOSED period.
    - A date covered by no period is open.

Failure modes:
    - InvalidArgumentError: start_date after end_date, bad month.
    - PeriodOverlapError: new range overlaps an existing period.
    - PeriodNotFoundError: close/reopen of an unknown period code.
    - PeriodStatusError: close of a CLOSED period, reopen of an OPEN one.
    - ClosedPeriodError: posting or reversal date in a CLOSED period.

Audit relevance:
    Create, close and reopen are logged with period_code and actor_id.
    Rejected posting dates are logged at WARNING.
"""

import calendar
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from agri_kernel.db.base import SYSTEM_ACTOR_ID
from agri_kernel.domain.clock import Clock
from agri_kernel.exceptions import (
    ClosedPeriodError,
    InvalidArgumentError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PeriodStatusError,
)
from agri_kernel.logging_config import get_logger
from agri_kernel.models.period import AccountingPeriod, PeriodStatus
from agri_kernel.services.base import BaseService

logger = get_logger("services.period")


class PeriodService(BaseService):
    """
    Accounting period maintenance and date checks.

    Contract:
        All methods flush within the caller's transaction.

    Non-goals:
        - Does NOT create periods on demand for unmapped dates.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_period(
        self,
        period_code: str,
        name: str,
        start_date: date,
        end_date: date,
        actor_id: UUID | None = None,
    ) -> AccountingPeriod:
        """
        Create an OPEN period covering start_date..end_date inclusive.

        Raises:
            InvalidArgumentError: If start_date > end_date or the code is blank.
            PeriodOverlapError: If the range overlaps an existing period.
        """
        if not period_code or not period_code.strip():
            raise InvalidArgumentError("period_code", period_code, "must not be empty")
        if start_date > end_date:
            raise InvalidArgumentError(
                "start_date", start_date, f"is after end_date {end_date}"
            )

        self._validate_no_overlap(period_code, start_date, end_date)

        period = AccountingPeriod(
            period_code=period_code.strip(),
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN.value,
            created_by_id=actor_id or SYSTEM_ACTOR_ID,
        )
        self.session.add(period)
        self.session.flush()

        logger.info("period_created", extra={
            "period_code": period.period_code,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        })
        return period

    def create_monthly_period(
        self,
        year: int,
        month: int,
        actor_id: UUID | None = None,
    ) -> AccountingPeriod:
        """Create the calendar-month period coded ``YYYY-MM``."""
        if not 1 <= month <= 12:
            raise InvalidArgumentError("month", month, "must be 1..12")
        last_day = calendar.monthrange(year, month)[1]
        start = date(year, month, 1)
        return self.create_period(
            f"{year:04d}-{month:02d}",
            start.strftime("%B %Y"),
            start,
            date(year, month, last_day),
            actor_id=actor_id,
        )

    def _validate_no_overlap(self, period_code: str, start_date: date, end_date: date) -> None:
        # Ranges overlap when start1 <= end2 and start2 <= end1.
        overlapping = self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.start_date <= end_date,
                AccountingPeriod.end_date >= start_date,
            )
            .limit(1)
        ).scalar_one_or_none()
        if overlapping is not None:
            raise PeriodOverlapError(period_code, overlapping.period_code)

    def close_period(self, period_code: str, actor_id: UUID | None = None) -> AccountingPeriod:
        """
        Close a period.  Postings dated inside it are refused afterwards.

        Raises:
            PeriodNotFoundError: Unknown period code.
            PeriodStatusError: Period is already CLOSED.
        """
        period = self.get_period(period_code, for_update=True)
        if period.is_closed:
            raise PeriodStatusError(period_code, period.status)

        period.status = PeriodStatus.CLOSED.value
        period.closed_at = self.clock.now()
        period.closed_by_id = actor_id or SYSTEM_ACTOR_ID
        self.session.flush()

        logger.info("period_closed", extra={
            "period_code": period_code,
            "actor_id": str(period.closed_by_id),
        })
        return period

    def reopen_period(self, period_code: str, actor_id: UUID | None = None) -> AccountingPeriod:
        """
        Reopen a CLOSED period.

        Raises:
            PeriodNotFoundError: Unknown period code.
            PeriodStatusError: Period is already OPEN.
        """
        period = self.get_period(period_code, for_update=True)
        if not period.is_closed:
            raise PeriodStatusError(period_code, period.status)

        period.status = PeriodStatus.OPEN.value
        period.reopened_at = self.clock.now()
        period.reopened_by_id = actor_id or SYSTEM_ACTOR_ID
        self.session.flush()

        logger.info("period_reopened", extra={
            "period_code": period_code,
            "actor_id": str(period.reopened_by_id),
        })
        return period

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_period(self, period_code: str, *, for_update: bool = False) -> AccountingPeriod:
        stmt = select(AccountingPeriod).where(AccountingPeriod.period_code == period_code)
        if for_update:
            stmt = stmt.with_for_update()
        period = self.session.execute(stmt).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_code)
        return period

    def get_period_for_date(self, day: date) -> AccountingPeriod | None:
        return self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.start_date <= day,
                AccountingPeriod.end_date >= day,
            )
        ).scalar_one_or_none()

    def list_periods(
        self,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[AccountingPeriod]:
        """Periods overlapping from_date..to_date, oldest first."""
        stmt = select(AccountingPeriod)
        if from_date is not None:
            stmt = stmt.where(AccountingPeriod.end_date >= from_date)
        if to_date is not None:
            stmt = stmt.where(AccountingPeriod.start_date <= to_date)
        return list(self.session.execute(stmt.order_by(AccountingPeriod.start_date)).scalars())

    def is_date_locked(self, day: date) -> bool:
        period = self.get_period_for_date(day)
        return period is not None and period.is_closed

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def assert_posting_date_allowed(self, posting_date: date) -> None:
        """
        Raises:
            ClosedPeriodError: posting_date falls in a CLOSED period.
        """
        period = self.get_period_for_date(posting_date)
        if period is not None and period.is_closed:
            logger.warning("period_closed_violation", extra={
                "period_code": period.period_code,
                "posting_date": posting_date.isoformat(),
            })
            raise ClosedPeriodError(period.period_code, posting_date.isoformat())

    def assert_reversal_date_allowed(self, original_date: date, reversal_date: date) -> None:
        """
        A reversal on the original's own date always passes, even into a
        CLOSED period; any other date follows the posting rule.

        Raises:
            ClosedPeriodError: reversal_date differs from original_date and
                falls in a CLOSED period.
        """
        if reversal_date == original_date:
            return
        self.assert_posting_date_allowed(reversal_date)
