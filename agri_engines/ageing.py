"""
Module: agri_engines.ageing
Responsibility:
    Classify open receivables into the four ageing buckets (0-30, 31-60,
    61-90, 90+) as of a cutoff date and roll them up per buyer.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import agri_kernel.domain and agri_kernel.logging_config.

Invariants enforced:
    - Partition: every open item lands in exactly one bucket; negative ages
      (posting date after the cutoff) clamp into 0-30.
    - total_outstanding == bucket_0_30 + bucket_31_60 + bucket_61_90 +
      bucket_90_plus for every row and every totals row, exactly, because
      all sums are integer minor units and the total is derived from the
      buckets.
    - Determinism: identical inputs give identical rows in identical order.

Failure modes:
    - ValueError when a bucket sequence leaves an age uncovered.

Usage:
    from agri_engines.ageing import AgeingClassifier, OpenItem

    report = AgeingClassifier().build_report(
        cutoff=date(2024, 3, 31),
        items=[OpenItem(document_id=inv_id, buyer_party_id=buyer_id,
                        buyer_name="Acme Mills", posting_date=date(2024, 1, 15),
                        open_minor=100000, currency="GBP")],
    )
    report.rows[0].bucket_61_90  # 100000
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import date
from typing import Sequence
from uuid import UUID

from agri_engines.tracer import traced_engine
from agri_kernel.logging_config import get_logger

logger = get_logger("engines.ageing")


@dataclass(frozen=True)
class AgeBucket:
    """
    Definition of an ageing bucket.

    Contract:
        Frozen dataclass representing a contiguous range of days.
    Guarantees:
        - min_days >= 0.
        - max_days >= min_days (when bounded).
    """

    name: str
    key: str
    min_days: int
    max_days: int | None  # None = unbounded (90+)

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        """Check if age falls within this bucket."""
        if age_days < self.min_days:
            return False
        if self.max_days is None:
            return True
        return age_days <= self.max_days


AGEING_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("0-30", "bucket_0_30", 0, 30),
    AgeBucket("31-60", "bucket_31_60", 31, 60),
    AgeBucket("61-90", "bucket_61_90", 61, 90),
    AgeBucket("90+", "bucket_90_plus", 91, None),
)

BUCKET_NAMES: tuple[str, ...] = tuple(b.name for b in AGEING_BUCKETS)


@dataclass(frozen=True)
class OpenItem:
    """An invoice with its open balance (minor units) as of the cutoff."""

    document_id: str | UUID
    buyer_party_id: str | UUID
    posting_date: date
    open_minor: int
    currency: str
    buyer_name: str | None = None
    reference: str | None = None
    due_date: date | None = None
    amount_minor: int | None = None


@dataclass(frozen=True)
class AgedItem:
    """An open item with its computed age and bucket."""

    item: OpenItem
    age_days: int
    bucket: AgeBucket


@dataclass(frozen=True)
class AgeingRow:
    """
    Per-buyer (or totals) ageing row in integer minor units.

    Guarantees:
        - total_outstanding is derived from the four buckets, so the
          partition invariant holds by construction.
    """

    currency: str
    buyer_party_id: str | UUID | None = None
    buyer_name: str | None = None
    bucket_0_30: int = 0
    bucket_31_60: int = 0
    bucket_61_90: int = 0
    bucket_90_plus: int = 0

    @property
    def total_outstanding(self) -> int:
        return self.bucket_0_30 + self.bucket_31_60 + self.bucket_61_90 + self.bucket_90_plus

    def bucket_amount(self, key: str) -> int:
        return getattr(self, key)

    def add(self, bucket: AgeBucket, minor: int) -> AgeingRow:
        """Return a copy with ``minor`` added to ``bucket``."""
        return replace(self, **{bucket.key: self.bucket_amount(bucket.key) + minor})

    def plus(self, other: AgeingRow) -> AgeingRow:
        """Bucket-wise sum of two rows in the same currency."""
        if other.currency != self.currency:
            raise ValueError(
                f"Cannot add ageing rows in {self.currency} and {other.currency}"
            )
        return replace(
            self,
            **{b.key: self.bucket_amount(b.key) + other.bucket_amount(b.key) for b in AGEING_BUCKETS},
        )


@dataclass(frozen=True)
class AgeingReport:
    """
    Complete ageing report as of one cutoff.

    Guarantees:
        - ``rows`` holds only buyers with a positive total.
        - ``totals`` has one row per currency present in ``rows``; an empty
          report has no totals entries and callers render zeros.
    """

    cutoff: date
    rows: tuple[AgeingRow, ...]
    totals: dict[str, AgeingRow]
    items: tuple[AgedItem, ...]

    def totals_for(self, currency: str) -> AgeingRow:
        """Totals row for a currency; all zeros when nothing is outstanding."""
        return self.totals.get(currency, AgeingRow(currency=currency))


class AgeingClassifier:
    """
    Classify receivables into ageing buckets.

    Contract:
        Pure functions -- no I/O, no database access, no clock.  The cutoff
        is always passed in.
    Guarantees:
        - ``classify`` maps every integer age to exactly one bucket.
        - ``build_report`` preserves every open minor unit it is given.
    """

    BUCKETS = AGEING_BUCKETS

    def calculate_age(self, posting_date: date, cutoff: date) -> int:
        """Age in days; negative when the invoice is dated after the cutoff."""
        return (cutoff - posting_date).days

    def classify(
        self,
        age_days: int,
        buckets: Sequence[AgeBucket] | None = None,
    ) -> AgeBucket:
        """
        Classify age into a bucket.

        Postconditions:
            - Returns exactly one bucket; negative ages map to the bucket
              starting at day 0.
        Raises:
            ValueError: If age doesn't fit any bucket.
        """
        if buckets is None:
            buckets = self.BUCKETS

        if age_days < 0:
            for bucket in buckets:
                if bucket.min_days == 0:
                    return bucket
            return buckets[0]

        for bucket in buckets:
            if bucket.contains(age_days):
                return bucket

        logger.warning("age_classification_no_bucket", extra={
            "age_days": age_days,
            "bucket_count": len(buckets),
        })
        raise ValueError(f"Age {age_days} does not fit any bucket")

    def age_item(self, item: OpenItem, cutoff: date) -> AgedItem:
        age_days = self.calculate_age(item.posting_date, cutoff)
        return AgedItem(item=item, age_days=age_days, bucket=self.classify(age_days))

    @traced_engine("ageing", "1.0", fingerprint_fields=("cutoff",))
    def build_report(
        self,
        *,
        cutoff: date,
        items: Sequence[OpenItem],
    ) -> AgeingReport:
        """
        Age every open item and roll up per (buyer, currency).

        Preconditions:
            - ``items`` carry open balances already net of payments applied
              on or before ``cutoff``.
        Postconditions:
            - Items with open_minor <= 0 are ignored.
            - Rows ordered by buyer name, buyer id, currency.
            - sum(row totals) == sum(open_minor of positive items), per
              currency.
        """
        t0 = time.monotonic()

        aged: list[AgedItem] = []
        rows: dict[tuple[str, str], AgeingRow] = {}
        totals: dict[str, AgeingRow] = {}
        skipped = 0

        for item in items:
            if item.open_minor <= 0:
                skipped += 1
                continue
            aged_item = self.age_item(item, cutoff)
            aged.append(aged_item)

            key = (str(item.buyer_party_id), item.currency)
            row = rows.get(key) or AgeingRow(
                currency=item.currency,
                buyer_party_id=item.buyer_party_id,
                buyer_name=item.buyer_name,
            )
            rows[key] = row.add(aged_item.bucket, item.open_minor)

            total = totals.get(item.currency) or AgeingRow(currency=item.currency)
            totals[item.currency] = total.add(aged_item.bucket, item.open_minor)

        ordered = tuple(
            sorted(
                rows.values(),
                key=lambda r: (r.buyer_name or "", str(r.buyer_party_id), r.currency),
            )
        )

        # Totals are accumulated independently of rows; both must agree.
        for currency, total in totals.items():
            row_sum = sum(r.total_outstanding for r in ordered if r.currency == currency)
            assert row_sum == total.total_outstanding, (
                f"Ageing totals drift in {currency}: rows={row_sum} totals={total.total_outstanding}"
            )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("ageing_report_built", extra={
            "cutoff": cutoff.isoformat(),
            "item_count": len(aged),
            "skipped_items": skipped,
            "row_count": len(ordered),
            "currencies": sorted(totals),
            "duration_ms": duration_ms,
        })

        aged.sort(key=lambda a: (
            a.item.buyer_name or "",
            str(a.item.buyer_party_id),
            a.item.posting_date,
            str(a.item.document_id),
        ))
        return AgeingReport(
            cutoff=cutoff,
            rows=ordered,
            totals=totals,
            items=tuple(aged),
        )
