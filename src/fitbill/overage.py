"""Overage calculation -- charges for students beyond a plan's allowance.

All functions here are pure: they read no global state other than the
static tier table and perform no I/O.  The only ambient input, the wall
clock used for ``next_charge_date``, is injected through ``clock``.

Example::

    calc = calculate_overage("starter", 20)
    calc.overage_units      # 5
    calc.period_charge      # Decimal("32.35")
    suggest_upgrade("starter", calc).next_plan_id   # "pro"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Callable

from fitbill.plans import (
    PLAN_TIERS,
    PlanTier,
    next_tier,
    normalize_plan_id,
    resolve_plan_tier,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Amount = Decimal | int | float | str

DEFAULT_CYCLE_DAYS = 30
MAX_CYCLE_DAYS = 366
DEFAULT_UNIT_RATIO = 0.10
DEFAULT_BALANCE_RATIO = 0.50

_CENT = Decimal("0.01")


def utc_now() -> datetime:
    """Default clock: the current time in UTC."""
    return datetime.now(timezone.utc)


def to_amount(value: Amount) -> Decimal:
    """Coerce *value* to :class:`Decimal` without binary-float drift."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_amount(value: Decimal) -> Decimal:
    """Round a currency amount to cents (half-up)."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OverageCalculation:
    """Result of one overage evaluation.

    Attributes:
        plan_id: Canonical tier id the plan identifier resolved to.
        current_units: Active students supplied by the caller.
        included_units: Allowance of the resolved tier.
        overage_units: ``max(0, current_units - included_units)``.
        unit_price: Overage price per student for the tier.
        period_charge: ``overage_units * unit_price`` rounded to cents.
        running_balance: Prior balance plus ``period_charge``.
        next_charge_date: Date the running balance is next invoiced.
    """

    plan_id: str
    current_units: int
    included_units: int
    overage_units: int
    unit_price: Decimal
    period_charge: Decimal
    running_balance: Decimal
    next_charge_date: date

    @property
    def within_limit(self) -> bool:
        return self.overage_units == 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dictionary."""
        return {
            "plan_id": self.plan_id,
            "current_units": self.current_units,
            "included_units": self.included_units,
            "overage_units": self.overage_units,
            "unit_price": f"{self.unit_price:.2f}",
            "period_charge": f"{self.period_charge:.2f}",
            "running_balance": f"{self.running_balance:.2f}",
            "next_charge_date": self.next_charge_date.isoformat(),
        }


class SuggestionStatus(str, Enum):
    """Outcome of :func:`suggest_upgrade`."""

    SUGGESTED = "suggested"
    TOP_TIER = "top_tier"
    UNKNOWN_PLAN = "unknown_plan"


@dataclass(frozen=True)
class UpgradeSuggestion:
    """Tagged result of an upgrade lookup.

    ``next_plan_id`` and ``savings`` are only meaningful when ``status``
    is :attr:`SuggestionStatus.SUGGESTED`.
    """

    status: SuggestionStatus
    next_plan_id: str | None = None
    savings: Decimal = Decimal("0.00")

    @property
    def available(self) -> bool:
        return self.status is SuggestionStatus.SUGGESTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "next_plan_id": self.next_plan_id,
            "savings": f"{self.savings:.2f}",
        }


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def _charge_for(tier: PlanTier, units: int) -> tuple[int, Decimal]:
    overage_units = max(0, units - tier.included_units)
    return overage_units, quantize_amount(overage_units * tier.overage_unit_price)


def calculate_overage(
    plan_identifier: str,
    current_units: int,
    prior_balance: Amount = 0,
    *,
    clock: Clock | None = None,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
) -> OverageCalculation:
    """Compute the overage charge for *current_units* on a plan.

    Args:
        plan_identifier: Plan id or SKU string (normalized before lookup).
        current_units: Number of active students.  Must be >= 0.
        prior_balance: Unbilled overage carried from earlier cycles.
        clock: Zero-arg callable returning the evaluation time.
            Defaults to :func:`utc_now`.
        cycle_days: Calendar days until the next charge, ``1..MAX_CYCLE_DAYS``.

    Returns:
        A fresh :class:`OverageCalculation`.

    Raises:
        InvalidPlanError: If the plan identifier matches no tier.
        ValueError: If *current_units* is negative or *cycle_days* is out
            of range.
    """
    tier = resolve_plan_tier(plan_identifier)
    if current_units < 0:
        raise ValueError(f"current_units must be >= 0, got {current_units}")
    if not 1 <= cycle_days <= MAX_CYCLE_DAYS:
        raise ValueError(f"cycle_days must be between 1 and {MAX_CYCLE_DAYS}, got {cycle_days}")

    overage_units, period_charge = _charge_for(tier, current_units)
    running_balance = to_amount(prior_balance) + period_charge

    now = (clock or utc_now)()
    next_charge_date = now.date() + timedelta(days=cycle_days)

    logger.debug(
        "Overage for plan %s: units=%d included=%d excess=%d charge=%s balance=%s",
        tier.id,
        current_units,
        tier.included_units,
        overage_units,
        period_charge,
        running_balance,
    )
    return OverageCalculation(
        plan_id=tier.id,
        current_units=current_units,
        included_units=tier.included_units,
        overage_units=overage_units,
        unit_price=tier.overage_unit_price,
        period_charge=period_charge,
        running_balance=running_balance,
        next_charge_date=next_charge_date,
    )


def should_recommend_upgrade(
    calculation: OverageCalculation,
    current_plan_price: Amount,
    *,
    unit_ratio: float = DEFAULT_UNIT_RATIO,
    balance_ratio: float = DEFAULT_BALANCE_RATIO,
) -> bool:
    """Decide whether the tenant should be nudged towards a bigger plan.

    Recommends when the excess exceeds ``unit_ratio`` of the allowance or
    the running balance exceeds ``balance_ratio`` of the plan price.
    *current_plan_price* must be positive; it is not validated here.
    """
    over_allowance = Decimal(calculation.overage_units) / Decimal(calculation.included_units)
    over_price = calculation.running_balance / to_amount(current_plan_price)
    return over_allowance > to_amount(unit_ratio) or over_price > to_amount(balance_ratio)


def suggest_upgrade(
    current_plan_identifier: str,
    calculation: OverageCalculation,
) -> UpgradeSuggestion:
    """Suggest the next tier and how much overage it would save.

    The tenant's ``current_units`` are re-billed against the next tier;
    savings are floored at zero.
    """
    tier_id = normalize_plan_id(current_plan_identifier)
    if tier_id not in PLAN_TIERS:
        logger.info("No upgrade suggestion: unknown plan %r", current_plan_identifier)
        return UpgradeSuggestion(SuggestionStatus.UNKNOWN_PLAN)

    candidate = next_tier(tier_id)
    if candidate is None:
        return UpgradeSuggestion(SuggestionStatus.TOP_TIER)

    _, next_charge = _charge_for(candidate, calculation.current_units)
    savings = max(Decimal("0.00"), calculation.period_charge - next_charge)
    return UpgradeSuggestion(
        SuggestionStatus.SUGGESTED,
        next_plan_id=candidate.id,
        savings=quantize_amount(savings),
    )
