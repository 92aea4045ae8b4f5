"""Output formatting for the fitbill CLI.

Provides both JSON (machine-parseable) and human-readable (Rich) output.
All public functions accept a ``json_mode`` flag:
    - ``True``  → JSON ``{status, data}`` envelope for billing scripts
    - ``False`` → Rich tables and panels for operators
"""

from __future__ import annotations

import json
from io import StringIO
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


def _render(renderable: Any) -> str:
    """Render a Rich object to a string."""
    buf = StringIO()
    console = Console(file=buf, force_terminal=True, width=100)
    console.print(renderable)
    return buf.getvalue().rstrip("\n")


def _success(data: Dict[str, Any]) -> str:
    return json.dumps({"status": "success", "data": data}, indent=2, sort_keys=False, ensure_ascii=False)


def _money(symbol: str, value: Any) -> str:
    return f"{symbol} {value}"


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def format_response(
    status: str,
    data: Optional[Dict[str, Any]] = None,
    error: Optional[Dict[str, Any]] = None,
    *,
    json_mode: bool = False,
) -> str:
    """Build a standard ``{status, data, error}`` response."""
    if json_mode:
        envelope: Dict[str, Any] = {"status": status}
        if data is not None:
            envelope["data"] = data
        if error is not None:
            envelope["error"] = error
        return json.dumps(envelope, indent=2, sort_keys=False, ensure_ascii=False)

    if status == "error" and error:
        code = error.get("code", "UNKNOWN")
        msg = error.get("message", "An unknown error occurred.")
        t = Text()
        t.append("Error", style="bold red")
        t.append(f" [{code}]: ", style="red")
        t.append(msg)
        return _render(Panel(t, title="Error", border_style="red"))

    if data:
        lines = [f"[bold]{k}:[/bold] {v}" for k, v in data.items()]
        return _render(Panel("\n".join(lines), border_style="green"))

    return f"Status: {status}"


def format_error(
    message: str,
    code: str = "ERROR",
    *,
    json_mode: bool = False,
) -> str:
    """Shortcut for a standard error response."""
    return format_response(
        "error",
        error={"code": code, "message": message},
        json_mode=json_mode,
    )


# ---------------------------------------------------------------------------
# Plan catalog
# ---------------------------------------------------------------------------


def format_plans(
    plans: List[Dict[str, Any]],
    *,
    currency_symbol: str = "R$",
    json_mode: bool = False,
) -> str:
    """Format the tier table.  Expects dicts from ``PlanTier.to_dict()``."""
    if json_mode:
        return _success({"plans": plans, "count": len(plans)})

    table = Table(title="Plan Tiers", border_style="blue")
    table.add_column("Plan", style="bold")
    table.add_column("Included", justify="right")
    table.add_column("Overage / student", justify="right")
    table.add_column("Monthly", justify="right")
    for p in plans:
        table.add_row(
            p["name"],
            str(p["included_units"]),
            _money(currency_symbol, p["overage_unit_price"]),
            _money(currency_symbol, p["monthly_price"]),
        )
    return _render(table)


def format_recommend_plan(
    units: int,
    plan: Optional[Dict[str, Any]],
    *,
    currency_symbol: str = "R$",
    json_mode: bool = False,
) -> str:
    """Format the cheapest-plan lookup for *units* students."""
    if json_mode:
        return _success({"units": units, "plan": plan})

    if plan is None:
        msg = f"No plan includes {units} students.  Overage applies on every tier."
        return _render(Panel(msg, border_style="yellow"))
    msg = (
        f"[bold]{plan['name']}[/bold] includes {plan['included_units']} students "
        f"for {_money(currency_symbol, plan['monthly_price'])}/month."
    )
    return _render(Panel(msg, title=f"Best plan for {units} students", border_style="green"))


# ---------------------------------------------------------------------------
# Calculations
# ---------------------------------------------------------------------------


def format_calculation(
    calc: Dict[str, Any],
    *,
    currency_symbol: str = "R$",
    json_mode: bool = False,
) -> str:
    """Format one overage calculation.

    Expects a dict from ``OverageCalculation.to_dict()``.
    """
    if json_mode:
        return _success(calc)

    excess = calc["overage_units"]
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Plan", calc["plan_id"])
    table.add_row("Students", f"{calc['current_units']} / {calc['included_units']}")
    table.add_row("Excess", f"[yellow]{excess}[/yellow]" if excess else "[green]0[/green]")
    table.add_row("Unit price", _money(currency_symbol, calc["unit_price"]))
    table.add_row("Charge", _money(currency_symbol, calc["period_charge"]))
    table.add_row("Balance", _money(currency_symbol, calc["running_balance"]))
    table.add_row("Next charge", calc["next_charge_date"])

    color = "yellow" if excess else "green"
    return _render(Panel(table, title="Overage", border_style=color))


def format_suggestion(
    plan_id: str,
    suggestion: Dict[str, Any],
    *,
    currency_symbol: str = "R$",
    json_mode: bool = False,
) -> str:
    """Format an upgrade suggestion from ``UpgradeSuggestion.to_dict()``."""
    if json_mode:
        return _success({"plan": plan_id, "suggestion": suggestion})

    status = suggestion["status"]
    if status == "suggested":
        msg = (
            f"Upgrade to [bold]{suggestion['next_plan_id']}[/bold] to save "
            f"{_money(currency_symbol, suggestion['savings'])} in overage per cycle."
        )
        return _render(Panel(msg, title="Upgrade", border_style="green"))
    if status == "top_tier":
        return _render(Panel(f"{plan_id} is already the top tier.", border_style="yellow"))
    return _render(Panel(f"Unknown plan {plan_id!r}.", border_style="red"))


def format_report(
    report: Dict[str, Any],
    *,
    json_mode: bool = False,
) -> str:
    """Format a billing report from ``BillingReport.to_dict()``."""
    if json_mode:
        return _success(report)

    border = "green" if report["calculation"]["overage_units"] == 0 else "yellow"
    if report["should_upgrade"] and report["suggestion"]["status"] == "suggested":
        border = "magenta"
    steps = "\n".join(f"• {step}" for step in report["next_steps"])
    parts = [
        _render(Panel(report["summary"], title="Summary", border_style=border)),
        _render(Panel(report["recommendation"], title="Recommendation", border_style=border)),
        _render(Panel(steps, title="Next steps", border_style="blue")),
    ]
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Billing cycle
# ---------------------------------------------------------------------------


def format_cycle(
    results: List[Dict[str, Any]],
    stats: Dict[str, Any],
    *,
    currency_symbol: str = "R$",
    json_mode: bool = False,
) -> str:
    """Format a billing-cycle run: one row per tenant, then totals."""
    if json_mode:
        return _success({"tenants": results, "stats": stats})

    if not results:
        return _render(Panel("No tenants in cycle file.", border_style="yellow"))

    table = Table(title="Billing Cycle", border_style="blue")
    table.add_column("Tenant", style="bold")
    table.add_column("Plan")
    table.add_column("Students", justify="right")
    table.add_column("Excess", justify="right")
    table.add_column("Charge", justify="right")
    table.add_column("Balance", justify="right")
    for r in results:
        calc = r["calculation"]
        table.add_row(
            r["tenant_id"],
            calc["plan_id"],
            str(calc["current_units"]),
            str(calc["overage_units"]),
            _money(currency_symbol, calc["period_charge"]),
            _money(currency_symbol, calc["running_balance"]),
        )

    summary = (
        f"[bold]Charges:[/bold] {stats['total_charges']}   "
        f"[bold]Total:[/bold] {_money(currency_symbol, stats['total_amount'])}   "
        f"[bold]Average:[/bold] {_money(currency_symbol, stats['average_charge'])}"
    )
    return "\n".join([_render(table), _render(Panel(summary, border_style="green"))])


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def format_settings(
    settings: Dict[str, Any],
    path: str,
    *,
    json_mode: bool = False,
) -> str:
    """Format resolved billing settings."""
    if json_mode:
        return _success({"settings": settings, "config_path": path})

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    for key, value in settings.items():
        table.add_row(key, str(value))
    return _render(Panel(table, title=f"Billing settings ({path})", border_style="blue"))
