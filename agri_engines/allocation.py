"""
Module: agri_engines.allocation
Responsibility:
    Split an amount across parties by share-rule percentages, and apply a
    payment across open invoices oldest first, with exact integer
    minor-unit conservation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: sum(allocations) == basis exactly, for every basis and
      every percentage set that sums to 100.
    - Rounding: every non-primary share is rounded ROUND_HALF_UP to the
      minor unit; the single primary recipient absorbs the remainder.
      When half-up would over-allocate the basis, the largest round-ups
      are stepped back down, so the primary share is never negative.
    - FIFO application never exceeds a target's eligible amount.

Failure modes:
    - ValueError when targets are empty or a percentage is outside 0..100.

Usage:
    from agri_engines.allocation import AllocationEngine, ShareTarget

    result = AllocationEngine().allocate_shares(
        basis_minor=100000,
        currency="GBP",
        targets=[
            ShareTarget(party_id=a, role="LANDLORD", percentage=Decimal("60")),
            ShareTarget(party_id=b, role="GROWER", percentage=Decimal("40")),
        ],
    )
    [line.amount_minor for line in result.lines]  # [60000, 40000]
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID

from agri_engines.tracer import traced_engine
from agri_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

FULL_SHARE = Decimal("100")


class AllocationMethod(str, Enum):
    """Method for allocating amounts."""

    SHARE = "share"  # By share-rule percentage
    FIFO = "fifo"  # Oldest first by date


@dataclass(frozen=True)
class ShareTarget:
    """
    One recipient of a share split.

    Guarantees:
        - 0 <= percentage <= 100.
    """

    party_id: str | UUID
    role: str
    percentage: Decimal
    is_primary: bool = False
    line_order: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.percentage, Decimal):
            object.__setattr__(self, "percentage", Decimal(str(self.percentage)))
        if self.percentage < 0 or self.percentage > FULL_SHARE:
            raise ValueError(f"Percentage {self.percentage} outside 0..100")


@dataclass(frozen=True)
class ShareAllocation:
    """Outcome of a share split for one recipient."""

    party_id: str | UUID
    role: str
    percentage: Decimal
    amount_minor: int
    is_primary: bool
    line_order: int


@dataclass(frozen=True)
class ShareAllocationResult:
    """
    Complete share split.

    Guarantees:
        - sum(line.amount_minor) == basis_minor.
        - rounding_adjustment is what the primary received beyond its own
          rounded share (may be negative).
    """

    basis_minor: int
    currency: str
    lines: tuple[ShareAllocation, ...]
    rounding_adjustment: int

    @property
    def total_allocated(self) -> int:
        return sum(line.amount_minor for line in self.lines)

    def amount_for(self, party_id: str | UUID) -> int:
        return sum(line.amount_minor for line in self.lines if line.party_id == party_id)


@dataclass(frozen=True)
class OpenTarget:
    """A target that can absorb part of a payment, e.g. an open invoice."""

    target_id: str | UUID
    eligible_minor: int
    date: date | None = None
    priority: int = 0


@dataclass(frozen=True)
class AllocationLine:
    """
    Result of allocation to a single target.

    Guarantees:
        - allocated_minor + remaining_minor == eligible_minor.
    """

    target_id: str | UUID
    allocated_minor: int
    remaining_minor: int

    @property
    def is_fully_allocated(self) -> bool:
        return self.remaining_minor == 0


@dataclass(frozen=True)
class AllocationResult:
    """
    Sequential allocation result.

    Guarantees:
        - total_allocated + unallocated == source_minor.
    """

    source_minor: int
    method: AllocationMethod
    lines: tuple[AllocationLine, ...]
    total_allocated: int
    unallocated: int


def percentage_total(targets: Sequence[ShareTarget]) -> Decimal:
    """Sum of the targets' percentages."""
    return sum((t.percentage for t in targets), Decimal("0"))


def is_complete_split(targets: Sequence[ShareTarget]) -> bool:
    """True iff there is at least one target and percentages sum to exactly 100."""
    return bool(targets) and percentage_total(targets) == FULL_SHARE


def primary_index(targets: Sequence[ShareTarget]) -> int:
    """
    Index of the recipient that absorbs the rounding remainder.

    The first target flagged ``is_primary``; otherwise the largest
    percentage, ties going to the lowest line_order, then list position.
    """
    if not targets:
        raise ValueError("No share targets")
    for i, target in enumerate(targets):
        if target.is_primary:
            return i
    return min(
        range(len(targets)),
        key=lambda i: (-targets[i].percentage, targets[i].line_order, i),
    )


class AllocationEngine:
    """
    Allocate amounts across recipients or open documents.

    Contract:
        Pure functions with deterministic rounding.  No I/O.
    Guarantees:
        - All arithmetic is on integer minor units; Decimal is used only for
          the percentage product before rounding to a whole minor unit.
        - Identical inputs always give identical penny assignments.
    """

    @traced_engine("allocation", "1.0", fingerprint_fields=("basis_minor", "currency"))
    def allocate_shares(
        self,
        *,
        basis_minor: int,
        currency: str,
        targets: Sequence[ShareTarget],
    ) -> ShareAllocationResult:
        """
        Split ``basis_minor`` by percentage.

        Preconditions:
            - ``targets`` is non-empty and its percentages sum to 100.
        Postconditions:
            - sum of allocations == basis_minor exactly.
            - the primary recipient holds the rounding remainder.
            - every allocation is >= 0 when basis_minor >= 0.
        Raises:
            ValueError: If targets are empty or do not sum to 100.
        """
        t0 = time.monotonic()
        if not targets:
            raise ValueError("Cannot allocate to an empty target list")
        total_pct = percentage_total(targets)
        if total_pct != FULL_SHARE:
            raise ValueError(f"Percentages sum to {total_pct}, expected {FULL_SHARE}")

        basis = Decimal(basis_minor)
        rounding_index = primary_index(targets)
        amounts: list[int] = [0] * len(targets)
        round_ups: list[tuple[Decimal, int]] = []

        for i, target in enumerate(targets):
            if i == rounding_index:
                continue
            exact = basis * target.percentage / FULL_SHARE
            amounts[i] = int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
            if amounts[i] > exact:
                round_ups.append((amounts[i] - exact, i))

        primary_amount = basis_minor - sum(amounts)
        if basis_minor >= 0 and primary_amount < 0:
            # Half-up over-allocated the basis.  Take a unit back from the
            # largest round-ups (later lines first on ties) until the
            # primary share is non-negative.
            overshoot = -primary_amount
            for _, i in sorted(round_ups, reverse=True)[:overshoot]:
                amounts[i] -= 1
            logger.info("allocation_round_ups_stepped_down", extra={
                "basis_minor": basis_minor,
                "stepped_count": overshoot,
            })
            primary_amount = basis_minor - sum(amounts)
        amounts[rounding_index] = primary_amount

        naive_primary = int(
            (basis * targets[rounding_index].percentage / FULL_SHARE).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )

        lines = tuple(
            ShareAllocation(
                party_id=t.party_id,
                role=t.role,
                percentage=t.percentage,
                amount_minor=amounts[i],
                is_primary=i == rounding_index,
                line_order=t.line_order,
            )
            for i, t in enumerate(targets)
        )
        result = ShareAllocationResult(
            basis_minor=basis_minor,
            currency=currency,
            lines=lines,
            rounding_adjustment=primary_amount - naive_primary,
        )

        assert result.total_allocated == basis_minor, (
            f"Allocation conservation violated: {result.total_allocated} != {basis_minor}"
        )

        logger.info("share_allocation_completed", extra={
            "basis_minor": basis_minor,
            "currency": currency,
            "line_count": len(lines),
            "primary_party_id": str(targets[rounding_index].party_id),
            "rounding_adjustment": result.rounding_adjustment,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return result

    def allocate_fifo(
        self,
        amount_minor: int,
        targets: Sequence[OpenTarget],
    ) -> AllocationResult:
        """Allocate to the oldest target first (by date, then priority)."""
        sorted_targets = sorted(
            targets,
            key=lambda t: (t.date or date.min, t.priority),
        )
        return self._allocate_sequential(amount_minor, sorted_targets, AllocationMethod.FIFO)

    def _allocate_sequential(
        self,
        amount_minor: int,
        sorted_targets: Sequence[OpenTarget],
        method: AllocationMethod,
    ) -> AllocationResult:
        """
        Allocate sequentially until the amount is exhausted.

        Each target receives up to its eligible amount.
        """
        if amount_minor < 0:
            raise ValueError(f"Cannot allocate a negative amount: {amount_minor}")

        remaining_to_allocate = amount_minor
        lines: list[AllocationLine] = []

        for target in sorted_targets:
            eligible = max(target.eligible_minor, 0)
            to_allocate = min(remaining_to_allocate, eligible)
            remaining_to_allocate -= to_allocate
            lines.append(
                AllocationLine(
                    target_id=target.target_id,
                    allocated_minor=to_allocate,
                    remaining_minor=eligible - to_allocate,
                )
            )

        total_allocated = amount_minor - remaining_to_allocate

        logger.info("allocation_sequential_completed", extra={
            "method": method.value,
            "source_minor": amount_minor,
            "total_allocated": total_allocated,
            "unallocated": remaining_to_allocate,
            "targets_funded": sum(1 for l in lines if l.allocated_minor),
            "line_count": len(lines),
        })

        return AllocationResult(
            source_minor=amount_minor,
            method=method,
            lines=tuple(lines),
            total_allocated=total_allocated,
            unallocated=remaining_to_allocate,
        )
