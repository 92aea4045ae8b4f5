"""Plan tiers -- included student allowance and overage pricing.

Every subscription sits on one of five tiers.  A tier includes a number
of active students; each student beyond that allowance is billed at the
tier's overage price.  Larger tiers include more students at a lower
marginal rate.

Tier table
~~~~~~~~~~
============  ========  ==========  =============
Tier          Included  Overage/un  Monthly price
============  ========  ==========  =============
starter       15        6.47        97.00
pro           25        5.88        147.00
business      40        4.93        197.00
premium       70        4.24        297.00
enterprise    150       3.31        497.00
============  ========  ==========  =============

Plan identifiers arriving from checkout providers are SKU strings such as
``"fitprime_br_starter"``.  :func:`normalize_plan_id` lower-cases the
value, drops every non-letter and then the ``fitprimebr`` SKU prefix,
so ``"FitPrime_BR_Starter"`` and ``"starter"`` resolve to the same tier.

Example::

    tier = resolve_plan_tier("fitprime_br_pro")
    print(tier.included_units, tier.overage_unit_price)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

logger = logging.getLogger(__name__)

_NON_LETTERS = re.compile(r"[^a-z]")

# Checkout SKUs look like "fitprime_br_starter"; the prefix survives letter
# stripping as "fitprimebr".
_SKU_PREFIX = "fitprimebr"


class InvalidPlanError(ValueError):
    """Raised when a plan identifier does not match any configured tier."""

    def __init__(self, plan_identifier: str, normalized: str | None = None) -> None:
        self.plan_identifier = plan_identifier
        self.normalized = normalized if normalized is not None else normalize_plan_id(plan_identifier)
        super().__init__(f"Invalid plan: {plan_identifier!r}")


@dataclass(frozen=True)
class PlanTier:
    """A subscription tier.

    Attributes:
        id: Canonical tier identifier (``"starter"`` ... ``"enterprise"``).
        name: Display name.
        included_units: Active students included before overage applies.
        overage_unit_price: Charge per student beyond ``included_units``.
        monthly_price: Base subscription price for the tier.
    """

    id: str
    name: str
    included_units: int
    overage_unit_price: Decimal
    monthly_price: Decimal

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "included_units": self.included_units,
            "overage_unit_price": str(self.overage_unit_price),
            "monthly_price": str(self.monthly_price),
        }


TIER_ORDER: tuple[str, ...] = ("starter", "pro", "business", "premium", "enterprise")

PLAN_TIERS: Mapping[str, PlanTier] = MappingProxyType(
    {
        "starter": PlanTier("starter", "Starter", 15, Decimal("6.47"), Decimal("97.00")),
        "pro": PlanTier("pro", "Pro", 25, Decimal("5.88"), Decimal("147.00")),
        "business": PlanTier("business", "Business", 40, Decimal("4.93"), Decimal("197.00")),
        "premium": PlanTier("premium", "Premium", 70, Decimal("4.24"), Decimal("297.00")),
        "enterprise": PlanTier("enterprise", "Enterprise", 150, Decimal("3.31"), Decimal("497.00")),
    }
)


def normalize_plan_id(plan_identifier: str) -> str:
    """Lower-case *plan_identifier*, strip everything but ``a-z`` and drop
    the checkout SKU prefix.

    ``"FitPrime_BR_Starter"`` -> ``"starter"``.
    """
    letters = _NON_LETTERS.sub("", plan_identifier.lower())
    if letters.startswith(_SKU_PREFIX):
        return letters[len(_SKU_PREFIX):]
    return letters


def resolve_plan_tier(plan_identifier: str) -> PlanTier:
    """Resolve a (possibly noisy) plan identifier to its tier.

    Raises:
        InvalidPlanError: If the normalized identifier matches no tier.
    """
    normalized = normalize_plan_id(plan_identifier)
    tier = PLAN_TIERS.get(normalized)
    if tier is None:
        logger.warning("Plan lookup failed for %r (normalized %r)", plan_identifier, normalized)
        raise InvalidPlanError(plan_identifier, normalized)
    return tier


def next_tier(tier_id: str) -> PlanTier | None:
    """Return the tier after *tier_id* in :data:`TIER_ORDER`, or ``None`` at the top."""
    index = TIER_ORDER.index(tier_id)
    if index == len(TIER_ORDER) - 1:
        return None
    return PLAN_TIERS[TIER_ORDER[index + 1]]


def find_plan_for_units(units: int) -> PlanTier | None:
    """Return the cheapest tier that includes at least *units* students.

    Returns ``None`` when *units* exceeds every tier's allowance.
    """
    suitable = [t for t in PLAN_TIERS.values() if t.included_units >= units]
    if not suitable:
        return None
    return min(suitable, key=lambda t: t.monthly_price)


def list_tiers() -> list[PlanTier]:
    """Return all tiers in upgrade order."""
    return [PLAN_TIERS[tier_id] for tier_id in TIER_ORDER]
