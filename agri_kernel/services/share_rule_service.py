"""
ShareRuleService -- named, versioned percentage splits among parties.

Responsibility:
    Creates share rules, replaces their lines (bumping the version),
    deactivates them, resolves the rule in force for a date, and produces
    the frozen snapshot a settlement records at post.

Architecture position:
    Kernel > Services -- imperative shell.  Read by SettlementService.

Invariants enforced:
    - Line percentages are 0..100 with at most four decimals and sum to
      exactly 100.
    - At most one line is flagged primary.
    - A rule used by a POSTED settlement cannot have its lines changed.
    - Every successful line change increments ``version`` by one.

Failure modes:
    - InvalidShareRuleError: empty line set, bad percentage, sum != 100,
      more than one primary line, duplicate (party, role).
    - ShareRuleLockedError: update of a rule used by a POSTED settlement.
    - ShareRuleNotFoundError / PartyNotFoundError.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from agri_engines.allocation import ShareTarget, percentage_total
from agri_kernel.domain.clock import Clock
from agri_kernel.exceptions import (
    InvalidArgumentError,
    InvalidShareRuleError,
    ShareRuleLockedError,
    ShareRuleNotFoundError,
)
from agri_kernel.logging_config import get_logger
from agri_kernel.models.settlement import (
    Settlement,
    SettlementStatus,
    ShareRole,
    ShareRule,
    ShareRuleAppliesTo,
    ShareRuleBasis,
    ShareRuleLine,
)
from agri_kernel.services.base import BaseService
from agri_kernel.services.invoice_service import require_party

logger = get_logger("services.share_rule")

FULL_SHARE = Decimal("100")
PERCENT_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class ShareLineInput:
    """One requested line of a share rule."""

    party_id: UUID
    role: str
    percentage: Decimal | str | int
    is_primary: bool = False


def _as_line_input(raw: ShareLineInput | dict[str, Any]) -> ShareLineInput:
    if isinstance(raw, ShareLineInput):
        return raw
    return ShareLineInput(
        party_id=raw["party_id"] if isinstance(raw["party_id"], UUID) else UUID(str(raw["party_id"])),
        role=raw["role"],
        percentage=raw["percentage"],
        is_primary=bool(raw.get("is_primary", False)),
    )


def rule_targets(lines: Sequence[ShareRuleLine]) -> list[ShareTarget]:
    """Engine targets for a rule's lines, in line order."""
    return [
        ShareTarget(
            party_id=line.party_id,
            role=line.role,
            percentage=Decimal(line.percentage),
            is_primary=line.is_primary,
            line_order=line.line_order,
        )
        for line in sorted(lines, key=lambda l: l.line_order)
    ]


def rule_snapshot(rule: ShareRule) -> dict[str, Any]:
    """JSON-safe frozen copy of a rule's current state."""
    return {
        "share_rule_id": str(rule.id),
        "name": rule.name,
        "version": rule.version,
        "applies_to": rule.applies_to,
        "basis": rule.basis,
        "lines": [
            {
                "party_id": str(line.party_id),
                "role": line.role,
                "percentage": str(Decimal(line.percentage).quantize(PERCENT_QUANTUM)),
                "is_primary": line.is_primary,
                "line_order": line.line_order,
            }
            for line in sorted(rule.lines, key=lambda l: l.line_order)
        ],
    }


class ShareRuleService(BaseService):
    """
    Share rule maintenance.

    Contract:
        All methods flush within the caller's transaction.

    Non-goals:
        - Does NOT allocate amounts; see agri_engines.allocation.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_lines(
        self,
        share_rule_id: UUID | None,
        lines: Sequence[ShareLineInput],
    ) -> Decimal:
        """
        Validate a requested line set and return its percentage total.

        Raises:
            InvalidShareRuleError: On any violation.
        """
        rule_ref = str(share_rule_id) if share_rule_id else None
        if not lines:
            raise InvalidShareRuleError(rule_ref, "0", "a share rule needs at least one line")

        seen: set[tuple[UUID, str]] = set()
        total = Decimal("0")
        for line in lines:
            try:
                pct = Decimal(str(line.percentage))
            except InvalidOperation:
                raise InvalidShareRuleError(
                    rule_ref, "?", f"percentage {line.percentage!r} is not a number"
                ) from None
            if not pct.is_finite() or pct < 0 or pct > FULL_SHARE:
                raise InvalidShareRuleError(rule_ref, str(pct), f"percentage {pct} outside 0..100")
            if pct != pct.quantize(PERCENT_QUANTUM):
                raise InvalidShareRuleError(
                    rule_ref, str(pct), f"percentage {pct} has more than four decimals"
                )
            if line.role not in ShareRole.__members__:
                raise InvalidShareRuleError(rule_ref, str(pct), f"unknown role {line.role!r}")
            key = (line.party_id, line.role)
            if key in seen:
                raise InvalidShareRuleError(
                    rule_ref, str(pct), f"party {line.party_id} appears twice as {line.role}"
                )
            seen.add(key)
            require_party(self.session, line.party_id)
            total += pct

        if sum(1 for l in lines if l.is_primary) > 1:
            raise InvalidShareRuleError(rule_ref, str(total), "more than one primary line")
        if total != FULL_SHARE:
            raise InvalidShareRuleError(rule_ref, str(total))
        return total

    def check_complete(self, rule: ShareRule) -> Decimal:
        """
        Re-validate a stored rule's lines sum to exactly 100.

        Raises:
            InvalidShareRuleError: If the rule has no lines or the sum is off.
        """
        total = percentage_total(rule_targets(rule.lines))
        if not rule.lines or total != FULL_SHARE:
            logger.warning("share_rule_invalid", extra={
                "share_rule_id": str(rule.id),
                "version": rule.version,
                "percentage_total": str(total),
                "line_count": len(rule.lines),
            })
            raise InvalidShareRuleError(str(rule.id), str(total))
        return total

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _build_lines(self, lines: Sequence[ShareLineInput]) -> list[ShareRuleLine]:
        return [
            ShareRuleLine(
                party_id=line.party_id,
                role=line.role,
                percentage=Decimal(str(line.percentage)),
                is_primary=line.is_primary,
                line_order=i,
            )
            for i, line in enumerate(lines)
        ]

    def create_rule(
        self,
        *,
        name: str,
        lines: Sequence[ShareLineInput | dict[str, Any]],
        effective_from: date,
        effective_to: date | None = None,
        applies_to: ShareRuleAppliesTo | str = ShareRuleAppliesTo.CROP_CYCLE,
        basis: ShareRuleBasis | str = ShareRuleBasis.MARGIN,
    ) -> ShareRule:
        if not name or not name.strip():
            raise InvalidArgumentError("name", name, "must not be empty")
        if effective_to is not None and effective_to < effective_from:
            raise InvalidArgumentError("effective_to", effective_to, "is before effective_from")
        try:
            applies_to = ShareRuleAppliesTo(applies_to)
            basis = ShareRuleBasis(basis)
        except ValueError as e:
            raise InvalidArgumentError("share_rule", (applies_to, basis), str(e)) from e

        inputs = [_as_line_input(l) for l in lines]
        self.validate_lines(None, inputs)

        rule = ShareRule(
            name=name.strip(),
            applies_to=applies_to.value,
            basis=basis.value,
            effective_from=effective_from,
            effective_to=effective_to,
            is_active=True,
            version=1,
            lines=self._build_lines(inputs),
        )
        self.session.add(rule)
        self.session.flush()

        logger.info("share_rule_created", extra={
            "share_rule_id": str(rule.id),
            "rule_name": rule.name,
            "line_count": len(inputs),
            "applies_to": rule.applies_to,
        })
        return rule

    def get(self, share_rule_id: UUID, *, for_update: bool = False) -> ShareRule:
        stmt = select(ShareRule).where(ShareRule.id == share_rule_id)
        if for_update:
            stmt = stmt.with_for_update()
        rule = self.session.execute(stmt).scalar_one_or_none()
        if rule is None:
            raise ShareRuleNotFoundError(str(share_rule_id))
        return rule

    def posted_user(self, share_rule_id: UUID) -> Settlement | None:
        """A POSTED settlement that used this rule, if any."""
        return self.session.execute(
            select(Settlement)
            .where(
                Settlement.share_rule_id == share_rule_id,
                Settlement.status == SettlementStatus.POSTED.value,
            )
            .limit(1)
        ).scalar_one_or_none()

    def update_lines(
        self,
        share_rule_id: UUID,
        lines: Sequence[ShareLineInput | dict[str, Any]],
    ) -> ShareRule:
        """
        Replace a rule's lines and bump its version.

        Raises:
            ShareRuleLockedError: If a POSTED settlement used the rule.
            InvalidShareRuleError: If the new lines are invalid.
        """
        rule = self.get(share_rule_id, for_update=True)
        user = self.posted_user(rule.id)
        if user is not None:
            raise ShareRuleLockedError(str(rule.id), str(user.id))

        inputs = [_as_line_input(l) for l in lines]
        self.validate_lines(rule.id, inputs)

        rule.lines.clear()
        self.session.flush()
        rule.lines.extend(self._build_lines(inputs))
        rule.version += 1
        self.session.flush()

        logger.info("share_rule_lines_updated", extra={
            "share_rule_id": str(rule.id),
            "version": rule.version,
            "line_count": len(inputs),
        })
        return rule

    def deactivate(self, share_rule_id: UUID) -> ShareRule:
        rule = self.get(share_rule_id, for_update=True)
        rule.is_active = False
        self.session.flush()
        logger.info("share_rule_deactivated", extra={"share_rule_id": str(rule.id)})
        return rule

    def resolve(
        self,
        applies_to: ShareRuleAppliesTo | str,
        on_date: date,
    ) -> ShareRule:
        """
        Active rule for ``applies_to`` whose window covers ``on_date``.

        Highest version wins, then the latest effective_from.
        """
        applies_to = ShareRuleAppliesTo(applies_to)
        rule = self.session.execute(
            select(ShareRule)
            .where(
                ShareRule.applies_to == applies_to.value,
                ShareRule.is_active.is_(True),
                ShareRule.effective_from <= on_date,
                or_(ShareRule.effective_to.is_(None), ShareRule.effective_to >= on_date),
            )
            .order_by(ShareRule.version.desc(), ShareRule.effective_from.desc())
            .limit(1)
        ).scalar_one_or_none()
        if rule is None:
            raise ShareRuleNotFoundError(f"{applies_to.value}@{on_date.isoformat()}")
        return rule
