"""
ShareRuleService tests.

Tests cover:
- Line validation: total exactly 100, range, precision, roles, duplicates
- Versioned line replacement and the lock once a settlement has posted
- Resolution of the active rule for a date
"""

from datetime import date
from decimal import Decimal

import pytest

from agri_kernel.exceptions import (
    InvalidArgumentError,
    InvalidShareRuleError,
    ShareRuleLockedError,
    ShareRuleNotFoundError,
)
from agri_kernel.services.share_rule_service import ShareLineInput, rule_snapshot


def _lines(parties, landlord="60", grower="40"):
    return [
        ShareLineInput(parties["landlord"].id, "LANDLORD", Decimal(landlord), is_primary=True),
        ShareLineInput(parties["grower"].id, "GROWER", Decimal(grower)),
    ]


class TestLineValidation:
    """Percentages must sum to exactly 100 with at most one primary."""

    @pytest.mark.parametrize("landlord,grower", [("60", "39"), ("60", "41"), ("59.9999", "40")])
    def test_total_not_100(self, share_rule_service, parties, landlord, grower):
        with pytest.raises(InvalidShareRuleError) as exc_info:
            share_rule_service.create_rule(
                name="Bad", effective_from=date(2024, 1, 1), lines=_lines(parties, landlord, grower)
            )
        assert "100" in str(exc_info.value)

    def test_four_decimals_accepted(self, share_rule_service, parties):
        rule = share_rule_service.create_rule(
            name="Fine",
            effective_from=date(2024, 1, 1),
            lines=_lines(parties, "66.6667", "33.3333"),
        )
        assert sum(Decimal(l.percentage) for l in rule.lines) == Decimal("100")

    def test_five_decimals_rejected(self, share_rule_service, parties):
        with pytest.raises(InvalidShareRuleError):
            share_rule_service.create_rule(
                name="Too fine",
                effective_from=date(2024, 1, 1),
                lines=_lines(parties, "66.66667", "33.33333"),
            )

    def test_negative_percentage(self, share_rule_service, parties):
        with pytest.raises(InvalidShareRuleError):
            share_rule_service.create_rule(
                name="Neg", effective_from=date(2024, 1, 1), lines=_lines(parties, "110", "-10")
            )

    def test_unknown_role(self, share_rule_service, parties):
        with pytest.raises(InvalidShareRuleError):
            share_rule_service.create_rule(
                name="Role",
                effective_from=date(2024, 1, 1),
                lines=[ShareLineInput(parties["grower"].id, "BANKER", Decimal("100"))],
            )

    def test_duplicate_party_role(self, share_rule_service, parties):
        grower = parties["grower"].id
        with pytest.raises(InvalidShareRuleError):
            share_rule_service.create_rule(
                name="Dup",
                effective_from=date(2024, 1, 1),
                lines=[
                    ShareLineInput(grower, "GROWER", Decimal("50")),
                    ShareLineInput(grower, "GROWER", Decimal("50")),
                ],
            )

    def test_two_primaries(self, share_rule_service, parties):
        lines = [
            ShareLineInput(parties["landlord"].id, "LANDLORD", Decimal("50"), is_primary=True),
            ShareLineInput(parties["grower"].id, "GROWER", Decimal("50"), is_primary=True),
        ]
        with pytest.raises(InvalidShareRuleError):
            share_rule_service.create_rule(name="2P", effective_from=date(2024, 1, 1), lines=lines)

    def test_empty_name(self, share_rule_service, parties):
        with pytest.raises(InvalidArgumentError):
            share_rule_service.create_rule(name=" ", effective_from=date(2024, 1, 1), lines=_lines(parties))

    def test_dict_lines_accepted(self, share_rule_service, parties):
        rule = share_rule_service.create_rule(
            name="From dicts",
            effective_from=date(2024, 1, 1),
            lines=[
                {"party_id": str(parties["landlord"].id), "role": "LANDLORD", "percentage": "70"},
                {"party_id": parties["grower"].id, "role": "GROWER", "percentage": "30"},
            ],
        )
        assert [l.role for l in sorted(rule.lines, key=lambda l: l.line_order)] == [
            "LANDLORD",
            "GROWER",
        ]


class TestCreateRule:
    """A valid rule is persisted and logged."""

    def test_created_rule_logged(self, share_rule_service, parties, captured_logs):
        rule = share_rule_service.create_rule(
            name="Barley share", effective_from=date(2024, 1, 1), lines=_lines(parties)
        )

        created = [r for r in captured_logs() if r["message"] == "share_rule_created"]
        assert len(created) == 1
        assert created[0]["share_rule_id"] == str(rule.id)
        assert created[0]["rule_name"] == "Barley share"
        assert created[0]["line_count"] == 2
        assert rule.version == 1


class TestVersioning:
    """Line replacement bumps the version until a settlement posts."""

    def test_update_bumps_version(self, share_rule_service, landlord_grower_rule, parties):
        rule = share_rule_service.update_lines(landlord_grower_rule.id, _lines(parties, "50", "50"))

        assert rule.version == 2
        assert rule_snapshot(rule)["lines"][0]["percentage"] == "50.0000"

    def test_invalid_update_keeps_old_lines(self, share_rule_service, landlord_grower_rule, parties):
        with pytest.raises(InvalidShareRuleError):
            share_rule_service.update_lines(landlord_grower_rule.id, _lines(parties, "50", "49"))

        assert landlord_grower_rule.version == 1
        assert rule_snapshot(landlord_grower_rule)["lines"][0]["percentage"] == "60.0000"

    def test_locked_after_posted_settlement(
        self, share_rule_service, settlement_service, landlord_grower_rule, parties
    ):
        settlement = settlement_service.create(
            basis_minor=100000, currency="GBP", share_rule_id=landlord_grower_rule.id
        )
        settlement_service.post(settlement.id, posting_date=date(2024, 3, 31))

        with pytest.raises(ShareRuleLockedError):
            share_rule_service.update_lines(landlord_grower_rule.id, _lines(parties, "50", "50"))


class TestResolve:
    """The active rule whose window covers the date."""

    def test_resolves_within_window(self, share_rule_service, landlord_grower_rule):
        assert share_rule_service.resolve("CROP_CYCLE", date(2024, 6, 1)).id == landlord_grower_rule.id

    def test_before_window(self, share_rule_service, landlord_grower_rule):
        with pytest.raises(ShareRuleNotFoundError):
            share_rule_service.resolve("CROP_CYCLE", date(2023, 12, 31))

    def test_deactivated_rule_not_resolved(self, share_rule_service, landlord_grower_rule):
        share_rule_service.deactivate(landlord_grower_rule.id)
        with pytest.raises(ShareRuleNotFoundError):
            share_rule_service.resolve("CROP_CYCLE", date(2024, 6, 1))
