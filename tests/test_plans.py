"""Tests for fitbill.plans -- tier table and plan identifier resolution.

Covers:
- Tier table values and upgrade order
- PlanTier.to_dict
- normalize_plan_id: case, separators, digits, SKU prefix
- resolve_plan_tier: success and InvalidPlanError
- next_tier at every position
- find_plan_for_units boundaries
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from fitbill.plans import (
    PLAN_TIERS,
    TIER_ORDER,
    InvalidPlanError,
    find_plan_for_units,
    list_tiers,
    next_tier,
    normalize_plan_id,
    resolve_plan_tier,
)


# ---------------------------------------------------------------------------
# Tier table
# ---------------------------------------------------------------------------


class TestTierTable:
    """The static tier configuration."""

    @pytest.mark.parametrize(
        "tier_id,included,overage,monthly",
        [
            ("starter", 15, "6.47", "97.00"),
            ("pro", 25, "5.88", "147.00"),
            ("business", 40, "4.93", "197.00"),
            ("premium", 70, "4.24", "297.00"),
            ("enterprise", 150, "3.31", "497.00"),
        ],
    )
    def test_tier_values(self, tier_id, included, overage, monthly):
        tier = PLAN_TIERS[tier_id]
        assert tier.id == tier_id
        assert tier.included_units == included
        assert tier.overage_unit_price == Decimal(overage)
        assert tier.monthly_price == Decimal(monthly)

    def test_order_covers_every_tier(self):
        assert set(TIER_ORDER) == set(PLAN_TIERS)
        assert [t.id for t in list_tiers()] == list(TIER_ORDER)

    def test_allowance_grows_and_unit_price_falls(self):
        tiers = list_tiers()
        for lower, upper in zip(tiers, tiers[1:]):
            assert upper.included_units > lower.included_units
            assert upper.overage_unit_price < lower.overage_unit_price

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            PLAN_TIERS["free"] = PLAN_TIERS["starter"]  # type: ignore[index]

    def test_to_dict(self):
        d = PLAN_TIERS["pro"].to_dict()
        assert d == {
            "id": "pro",
            "name": "Pro",
            "included_units": 25,
            "overage_unit_price": "5.88",
            "monthly_price": "147.00",
        }


# ---------------------------------------------------------------------------
# Normalization / resolution
# ---------------------------------------------------------------------------


class TestNormalizePlanId:
    """Plan identifier normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("starter", "starter"),
            ("STARTER", "starter"),
            ("  Pro ", "pro"),
            ("fitprime_br_starter", "starter"),
            ("FitPrime_BR_Business", "business"),
            ("premium-2", "premium"),
            ("", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_plan_id(raw) == expected

    def test_idempotent(self):
        once = normalize_plan_id("FitPrime_BR_Enterprise")
        assert normalize_plan_id(once) == once


class TestResolvePlanTier:
    """resolve_plan_tier lookup and failure."""

    def test_equivalent_identifiers_resolve_to_same_tier(self):
        tier = resolve_plan_tier("starter")
        assert resolve_plan_tier("STARTER") is tier
        assert resolve_plan_tier("fitprime_br_starter") is tier

    def test_unknown_plan_raises(self):
        with pytest.raises(InvalidPlanError) as exc_info:
            resolve_plan_tier("invalid")
        assert exc_info.value.plan_identifier == "invalid"
        assert exc_info.value.normalized == "invalid"
        assert "invalid" in str(exc_info.value)

    def test_unknown_sku_keeps_normalized_form(self):
        with pytest.raises(InvalidPlanError) as exc_info:
            resolve_plan_tier("fitprime_br_growth")
        assert exc_info.value.normalized == "growth"

    def test_empty_identifier_raises(self):
        with pytest.raises(InvalidPlanError):
            resolve_plan_tier("")

    def test_invalid_plan_error_is_value_error(self):
        assert issubclass(InvalidPlanError, ValueError)

    def test_failed_lookup_is_logged(self, caplog):
        with caplog.at_level("WARNING", logger="fitbill.plans"), pytest.raises(InvalidPlanError):
            resolve_plan_tier("gold")
        assert "gold" in caplog.text


# ---------------------------------------------------------------------------
# next_tier / find_plan_for_units
# ---------------------------------------------------------------------------


class TestNextTier:

    @pytest.mark.parametrize(
        "current,expected",
        [
            ("starter", "pro"),
            ("pro", "business"),
            ("business", "premium"),
            ("premium", "enterprise"),
        ],
    )
    def test_next(self, current, expected):
        assert next_tier(current).id == expected

    def test_top_tier_has_no_next(self):
        assert next_tier("enterprise") is None


class TestFindPlanForUnits:
    """Cheapest tier that includes the requested students."""

    @pytest.mark.parametrize(
        "units,expected",
        [
            (0, "starter"),
            (15, "starter"),
            (16, "pro"),
            (25, "pro"),
            (26, "business"),
            (70, "premium"),
            (71, "enterprise"),
            (150, "enterprise"),
        ],
    )
    def test_boundaries(self, units, expected):
        assert find_plan_for_units(units).id == expected

    def test_beyond_every_tier(self):
        assert find_plan_for_units(151) is None
