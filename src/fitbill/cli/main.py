"""fitbill CLI -- overage billing for personal-trainer subscriptions.

Provides a ``fitbill`` command with subcommands for inspecting the plan
catalog, calculating overage, generating tenant reports and running a
billing cycle over a file of tenants.  Every subcommand supports a
``--json`` flag for machine-parseable output; errors exit with the codes
in :mod:`fitbill.cli.exit_codes`.
"""

from __future__ import annotations

import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, NoReturn

import click
import yaml

from fitbill.cli.config import (
    BillingSettings,
    ConfigError,
    get_config_path,
    load_billing_settings,
    save_billing_setting,
)
from fitbill.cli.exit_codes import exit_code_for
from fitbill.cli.output import (
    format_calculation,
    format_cycle,
    format_error,
    format_plans,
    format_recommend_plan,
    format_report,
    format_response,
    format_settings,
    format_suggestion,
)
from fitbill.ledger import ChargeLedger
from fitbill.log_config import configure_logging
from fitbill.overage import SuggestionStatus, UpgradeSuggestion, calculate_overage, suggest_upgrade
from fitbill.plans import InvalidPlanError, find_plan_for_units, list_tiers
from fitbill.report import available_locales, generate_report

logger = logging.getLogger(__name__)


def _emit_error(
    code: str,
    message: str,
    json_mode: bool,
    exit_code: int | None = None,
) -> NoReturn:
    """Emit a structured error and exit."""
    if exit_code is None:
        exit_code = exit_code_for(code)
    click.echo(format_error(message, code=code, json_mode=json_mode))
    sys.exit(exit_code)


def _settings(ctx: click.Context) -> BillingSettings:
    return ctx.obj["settings"]


def _parse_amount(value: str | None, name: str, json_mode: bool) -> Decimal | None:
    """Parse a currency amount option, exiting with VALIDATION_ERROR if bad."""
    if value is None:
        return None
    try:
        amount = Decimal(value)
    except InvalidOperation:
        _emit_error("VALIDATION_ERROR", f"{name} must be a number, got {value!r}", json_mode)
    if not amount.is_finite():
        _emit_error("VALIDATION_ERROR", f"{name} must be a finite number, got {value!r}", json_mode)
    return amount


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "config_path",
    default=None,
    envvar="FITBILL_CONFIG",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file to use (default ~/.fitbill/config.yaml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.version_option(package_name="fitbill")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """fitbill -- tiered overage billing for trainer subscriptions."""
    ctx.ensure_object(dict)
    if verbose:
        configure_logging(level="DEBUG", console=True)
    ctx.obj["config_path"] = config_path or get_config_path()
    ctx.obj["settings"] = load_billing_settings(config_path=ctx.obj["config_path"])


# ---------------------------------------------------------------------------
# plans
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def plans(ctx: click.Context, json_mode: bool) -> None:
    """List plan tiers with their allowance and prices."""
    tiers = [tier.to_dict() for tier in list_tiers()]
    click.echo(format_plans(tiers, currency_symbol=_settings(ctx).currency_symbol, json_mode=json_mode))


@cli.command("recommend-plan")
@click.argument("units", type=int)
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def recommend_plan(ctx: click.Context, units: int, json_mode: bool) -> None:
    """Show the cheapest plan that includes UNITS students."""
    if units < 0:
        _emit_error("VALIDATION_ERROR", f"units must be >= 0, got {units}", json_mode)
    tier = find_plan_for_units(units)
    click.echo(
        format_recommend_plan(
            units,
            tier.to_dict() if tier is not None else None,
            currency_symbol=_settings(ctx).currency_symbol,
            json_mode=json_mode,
        )
    )


# ---------------------------------------------------------------------------
# calculate / suggest / report
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("plan")
@click.argument("units", type=int)
@click.option("--prior-balance", default=None, help="Unbilled overage carried from earlier cycles.")
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def calculate(
    ctx: click.Context,
    plan: str,
    units: int,
    prior_balance: str | None,
    json_mode: bool,
) -> None:
    """Calculate overage for UNITS active students on PLAN."""
    settings = _settings(ctx)
    balance = _parse_amount(prior_balance, "--prior-balance", json_mode) or Decimal("0")
    try:
        calc = calculate_overage(plan, units, balance, cycle_days=settings.cycle_days)
    except InvalidPlanError as exc:
        _emit_error("INVALID_PLAN", str(exc), json_mode)
    except ValueError as exc:
        _emit_error("VALIDATION_ERROR", str(exc), json_mode)

    click.echo(format_calculation(calc.to_dict(), currency_symbol=settings.currency_symbol, json_mode=json_mode))


@cli.command()
@click.argument("plan")
@click.argument("units", type=int)
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def suggest(ctx: click.Context, plan: str, units: int, json_mode: bool) -> None:
    """Suggest the next tier for PLAN and the overage it would save.

    An unknown PLAN is reported as a suggestion status, not an error.
    """
    settings = _settings(ctx)
    if units < 0:
        _emit_error("VALIDATION_ERROR", f"units must be >= 0, got {units}", json_mode)
    try:
        calc = calculate_overage(plan, units, cycle_days=settings.cycle_days)
    except InvalidPlanError:
        calc = None
    except ValueError as exc:
        _emit_error("VALIDATION_ERROR", str(exc), json_mode)

    if calc is None:
        suggestion = UpgradeSuggestion(SuggestionStatus.UNKNOWN_PLAN)
    else:
        suggestion = suggest_upgrade(plan, calc)
    click.echo(
        format_suggestion(
            plan,
            suggestion.to_dict(),
            currency_symbol=settings.currency_symbol,
            json_mode=json_mode,
        )
    )


@cli.command()
@click.argument("plan")
@click.argument("units", type=int)
@click.option("--prior-balance", default=None, help="Unbilled overage carried from earlier cycles.")
@click.option("--plan-price", default=None, help="Current subscription price (default: catalog price).")
@click.option(
    "--locale",
    default=None,
    type=click.Choice(available_locales()),
    help="Report language (default from config).",
)
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def report(
    ctx: click.Context,
    plan: str,
    units: int,
    prior_balance: str | None,
    plan_price: str | None,
    locale: str | None,
    json_mode: bool,
) -> None:
    """Generate the billing report for UNITS students on PLAN."""
    settings = _settings(ctx)
    balance = _parse_amount(prior_balance, "--prior-balance", json_mode) or Decimal("0")
    price = _parse_amount(plan_price, "--plan-price", json_mode)
    if price is not None and price <= 0:
        _emit_error("VALIDATION_ERROR", f"--plan-price must be positive, got {plan_price}", json_mode)

    try:
        result = generate_report(
            plan,
            units,
            balance,
            price,
            locale=locale or settings.locale,
            currency_symbol=settings.currency_symbol,
            cycle_days=settings.cycle_days,
            unit_ratio=settings.upgrade_unit_ratio,
            balance_ratio=settings.upgrade_balance_ratio,
        )
    except InvalidPlanError as exc:
        _emit_error("INVALID_PLAN", str(exc), json_mode)
    except ValueError as exc:
        _emit_error("VALIDATION_ERROR", str(exc), json_mode)

    click.echo(format_report(result.to_dict(), json_mode=json_mode))


# ---------------------------------------------------------------------------
# cycle
# ---------------------------------------------------------------------------


def _load_cycle_file(path: Path) -> list[dict[str, Any]]:
    """Read and validate a cycle file.

    Raises:
        ValueError: If the file is not a mapping with a ``tenants`` list of
            ``{id, plan, units}`` entries.
    """
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if not isinstance(data, dict) or not isinstance(data.get("tenants"), list):
        raise ValueError(f"{path} must contain a 'tenants' list")

    tenants = []
    for index, raw in enumerate(data["tenants"]):
        if not isinstance(raw, dict):
            raise ValueError(f"tenants[{index}] must be a mapping")
        missing = [key for key in ("id", "plan", "units") if key not in raw]
        if missing:
            raise ValueError(f"tenants[{index}] is missing {', '.join(missing)}")
        if not isinstance(raw["units"], int) or isinstance(raw["units"], bool):
            raise ValueError(f"tenants[{index}].units must be an integer")
        tenants.append(raw)
    return tenants


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def cycle(ctx: click.Context, file: Path, json_mode: bool) -> None:
    """Run one billing cycle over the tenants listed in FILE.

    FILE is YAML of the form::

        tenants:
          - id: tenant-1
            plan: starter
            units: 20
            prior_balance: "12.50"
    """
    settings = _settings(ctx)
    try:
        tenants = _load_cycle_file(file)
    except yaml.YAMLError as exc:
        _emit_error("FILE_ERROR", f"Invalid YAML in {file}: {exc}", json_mode)
    except (OSError, ValueError) as exc:
        _emit_error("FILE_ERROR", str(exc), json_mode)

    ledger = ChargeLedger(cycle_days=settings.cycle_days)
    results: list[dict[str, Any]] = []
    for tenant in tenants:
        tenant_id = str(tenant["id"])
        prior = tenant.get("prior_balance")
        try:
            calc, entry_id = ledger.accrue(
                tenant_id,
                str(tenant["plan"]),
                tenant["units"],
                prior_balance=str(prior) if prior is not None else None,
            )
        except InvalidPlanError as exc:
            _emit_error("INVALID_PLAN", f"Tenant {tenant_id}: {exc}", json_mode)
        except (ValueError, InvalidOperation) as exc:
            _emit_error("VALIDATION_ERROR", f"Tenant {tenant_id}: {exc}", json_mode)
        results.append({"tenant_id": tenant_id, "entry_id": entry_id, "calculation": calc.to_dict()})

    logger.info("Billing cycle over %s: %d tenants", file, len(results))
    click.echo(
        format_cycle(
            results,
            ledger.stats(),
            currency_symbol=settings.currency_symbol,
            json_mode=json_mode,
        )
    )


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.group()
def config() -> None:
    """Show or change billing settings."""


@config.command("show")
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def config_show(ctx: click.Context, json_mode: bool) -> None:
    """Show resolved billing settings (file, env and defaults)."""
    click.echo(format_settings(_settings(ctx).to_dict(), str(ctx.obj["config_path"]), json_mode=json_mode))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--json", "json_mode", is_flag=True, help="Output JSON.")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str, json_mode: bool) -> None:
    """Save billing setting KEY=VALUE to the config file."""
    try:
        path = save_billing_setting(key, value, config_path=ctx.obj["config_path"])
    except ConfigError as exc:
        _emit_error("CONFIG_ERROR", str(exc), json_mode)
    except OSError as exc:
        _emit_error("CONFIG_ERROR", f"Could not write config: {exc}", json_mode)

    click.echo(
        format_response(
            "success",
            data={"key": key, "value": value, "config_path": str(path)},
            json_mode=json_mode,
        )
    )


if __name__ == "__main__":
    cli()
