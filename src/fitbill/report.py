"""Human-readable overage summaries and upgrade reports.

Presentation only: every number shown here comes from
:func:`~fitbill.overage.calculate_overage`,
:func:`~fitbill.overage.should_recommend_upgrade` and
:func:`~fitbill.overage.suggest_upgrade`.

Report templates
~~~~~~~~~~~~~~~~
- **within limit** -- the tenant has no excess students.
- **upgrade** -- excess students, the upgrade rule fired and a next tier
  exists.
- **extra charges** -- excess students without an upgrade to offer.

Text is available in ``pt-BR`` (default) and ``en-US``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from fitbill.overage import (
    DEFAULT_BALANCE_RATIO,
    DEFAULT_CYCLE_DAYS,
    DEFAULT_UNIT_RATIO,
    Amount,
    Clock,
    OverageCalculation,
    UpgradeSuggestion,
    calculate_overage,
    should_recommend_upgrade,
    suggest_upgrade,
    to_amount,
)
from fitbill.plans import resolve_plan_tier

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "pt-BR"
DEFAULT_CURRENCY_SYMBOL = "R$"

_TEMPLATES: dict[str, dict[str, Any]] = {
    "pt-BR": {
        "date_format": "%d/%m/%Y",
        "summary_ok": "✅ Nenhum aluno excedente. Você tem {current}/{included} alunos.",
        "summary_over": (
            "⚠️ ALUNOS EXCEDENTES DETECTADOS\n"
            "\n"
            "Limite do plano: {included} alunos\n"
            "Alunos ativos: {current}\n"
            "Alunos excedentes: {excess}\n"
            "\n"
            "Preço por aluno extra: {cur} {unit_price}\n"
            "Cobrança desta vez: {cur} {period_charge}\n"
            "Acumulado para próxima fatura: {cur} {balance}\n"
            "\n"
            "Próxima cobrança: {next_date}"
        ),
        "rec_ok": "✅ Você está dentro do limite de alunos do seu plano.",
        "steps_ok": [
            "Continue monitorando o número de alunos",
            "Considere fazer upgrade quando atingir 80% do limite",
        ],
        "rec_upgrade": (
            "⭐ RECOMENDAÇÃO DE UPGRADE\n"
            "\n"
            "Você tem {excess} alunos excedentes, o que está custando "
            "{cur} {period_charge}/mês.\n"
            "\n"
            "Fazendo upgrade para o plano {next_plan}, você economizaria "
            "{cur} {savings}/mês!\n"
            "\n"
            "Isso representa uma economia de {savings_pct}% em cobranças extras."
        ),
        "steps_upgrade": [
            "Fazer upgrade para {next_plan}",
            "Economizar {cur} {yearly_savings}/ano",
        ],
        "rec_extra": (
            "⚠️ COBRANÇAS EXTRAS\n"
            "\n"
            "Você tem {excess} alunos excedentes.\n"
            "Cobrança acumulada: {cur} {balance}\n"
            "\n"
            "Será cobrado na próxima renovação: {next_date}"
        ),
        "steps_extra": [
            "Pagar {cur} {balance} na próxima fatura",
            "Considerar upgrade se continuar crescendo",
        ],
    },
    "en-US": {
        "date_format": "%m/%d/%Y",
        "summary_ok": "✅ No excess students. You have {current}/{included} students.",
        "summary_over": (
            "⚠️ EXCESS STUDENTS DETECTED\n"
            "\n"
            "Plan limit: {included} students\n"
            "Active students: {current}\n"
            "Excess students: {excess}\n"
            "\n"
            "Price per extra student: {cur} {unit_price}\n"
            "Charge this cycle: {cur} {period_charge}\n"
            "Accumulated for next invoice: {cur} {balance}\n"
            "\n"
            "Next charge: {next_date}"
        ),
        "rec_ok": "✅ You are within your plan's student limit.",
        "steps_ok": [
            "Keep monitoring your student count",
            "Consider upgrading when you reach 80% of the limit",
        ],
        "rec_upgrade": (
            "⭐ UPGRADE RECOMMENDED\n"
            "\n"
            "You have {excess} excess students, costing {cur} {period_charge}/month.\n"
            "\n"
            "Upgrading to the {next_plan} plan would save you {cur} {savings}/month!\n"
            "\n"
            "That is a {savings_pct}% saving on extra charges."
        ),
        "steps_upgrade": [
            "Upgrade to {next_plan}",
            "Save {cur} {yearly_savings}/year",
        ],
        "rec_extra": (
            "⚠️ EXTRA CHARGES\n"
            "\n"
            "You have {excess} excess students.\n"
            "Accumulated charge: {cur} {balance}\n"
            "\n"
            "It will be charged at the next renewal: {next_date}"
        ),
        "steps_extra": [
            "Pay {cur} {balance} on the next invoice",
            "Consider upgrading if you keep growing",
        ],
    },
}


def available_locales() -> list[str]:
    return sorted(_TEMPLATES)


def _templates(locale: str) -> dict[str, Any]:
    try:
        return _TEMPLATES[locale]
    except KeyError:
        raise ValueError(
            f"Unsupported locale {locale!r}. Available: {', '.join(available_locales())}"
        ) from None


def _fields(calculation: OverageCalculation, templates: dict[str, Any], currency_symbol: str) -> dict[str, Any]:
    return {
        "cur": currency_symbol,
        "current": calculation.current_units,
        "included": calculation.included_units,
        "excess": calculation.overage_units,
        "unit_price": f"{calculation.unit_price:.2f}",
        "period_charge": f"{calculation.period_charge:.2f}",
        "balance": f"{calculation.running_balance:.2f}",
        "next_date": calculation.next_charge_date.strftime(templates["date_format"]),
    }


@dataclass
class BillingReport:
    """Advisory report for one tenant's billing cycle."""

    summary: str
    recommendation: str
    next_steps: list[str]
    calculation: OverageCalculation
    should_upgrade: bool
    suggestion: UpgradeSuggestion
    current_plan_price: Decimal = Decimal("0.00")
    locale: str = DEFAULT_LOCALE

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dictionary."""
        return {
            "summary": self.summary,
            "recommendation": self.recommendation,
            "next_steps": list(self.next_steps),
            "calculation": self.calculation.to_dict(),
            "should_upgrade": self.should_upgrade,
            "suggestion": self.suggestion.to_dict(),
            "current_plan_price": f"{self.current_plan_price:.2f}",
            "locale": self.locale,
        }


def format_summary(
    calculation: OverageCalculation,
    *,
    locale: str = DEFAULT_LOCALE,
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
) -> str:
    """Render the short summary block for *calculation*."""
    templates = _templates(locale)
    values = _fields(calculation, templates, currency_symbol)
    if calculation.within_limit:
        return templates["summary_ok"].format(**values)
    return templates["summary_over"].format(**values)


def generate_report(
    plan_identifier: str,
    current_units: int,
    prior_balance: Amount = 0,
    current_plan_price: Amount | None = None,
    *,
    clock: Clock | None = None,
    locale: str = DEFAULT_LOCALE,
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
    unit_ratio: float = DEFAULT_UNIT_RATIO,
    balance_ratio: float = DEFAULT_BALANCE_RATIO,
) -> BillingReport:
    """Build the full advisory report for a tenant.

    Args:
        plan_identifier: Plan id or SKU string.
        current_units: Active students.
        prior_balance: Unbilled overage from earlier cycles.
        current_plan_price: Base subscription price.  Defaults to the
            tier's catalog price.
        clock: Injected clock, see :func:`~fitbill.overage.calculate_overage`.
        locale: ``"pt-BR"`` or ``"en-US"``.
        currency_symbol: Prefix for amounts.
        cycle_days: Days until the next charge.
        unit_ratio: Excess-over-allowance threshold for recommending upgrades.
        balance_ratio: Balance-over-price threshold for recommending upgrades.

    Raises:
        InvalidPlanError: If the plan identifier matches no tier.
        ValueError: For an unsupported locale or negative usage.
    """
    templates = _templates(locale)
    calculation = calculate_overage(
        plan_identifier,
        current_units,
        prior_balance,
        clock=clock,
        cycle_days=cycle_days,
    )
    if current_plan_price is None:
        current_plan_price = resolve_plan_tier(plan_identifier).monthly_price

    should_upgrade = should_recommend_upgrade(
        calculation,
        current_plan_price,
        unit_ratio=unit_ratio,
        balance_ratio=balance_ratio,
    )
    suggestion = suggest_upgrade(plan_identifier, calculation)

    values = _fields(calculation, templates, currency_symbol)
    if calculation.within_limit:
        recommendation = templates["rec_ok"]
        steps = templates["steps_ok"]
    elif should_upgrade and suggestion.available:
        savings = suggestion.savings
        savings_pct = savings / calculation.period_charge * 100 if calculation.period_charge else Decimal(0)
        values.update(
            next_plan=(suggestion.next_plan_id or "").upper(),
            savings=f"{savings:.2f}",
            yearly_savings=f"{savings * 12:.2f}",
            savings_pct=f"{savings_pct:.0f}",
        )
        recommendation = templates["rec_upgrade"].format(**values)
        steps = templates["steps_upgrade"]
    else:
        recommendation = templates["rec_extra"].format(**values)
        steps = templates["steps_extra"]

    logger.info(
        "Report for plan %s: units=%d excess=%d upgrade=%s suggestion=%s",
        calculation.plan_id,
        calculation.current_units,
        calculation.overage_units,
        should_upgrade,
        suggestion.status.value,
    )
    return BillingReport(
        summary=format_summary(calculation, locale=locale, currency_symbol=currency_symbol),
        recommendation=recommendation,
        next_steps=[step.format(**values) for step in steps],
        calculation=calculation,
        should_upgrade=should_upgrade,
        suggestion=suggestion,
        current_plan_price=to_amount(current_plan_price),
        locale=locale,
    )
