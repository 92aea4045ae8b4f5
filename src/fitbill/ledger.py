"""Charge ledger -- accumulates overage across billing cycles.

The billing-cycle job calls :meth:`ChargeLedger.accrue` once per tenant
per cycle.  The ledger feeds the tenant's carried balance back into
:func:`~fitbill.overage.calculate_overage` as ``prior_balance`` and stores
the resulting running balance.  After the tenant's invoice is paid the
job calls :meth:`ChargeLedger.reset`.

Entries are kept in memory; durable storage belongs to the caller, which
can replay :meth:`ChargeLedger.history` into its own store.

Example::

    ledger = ChargeLedger()
    calc, entry_id = ledger.accrue("tenant-7", "starter", 20)
    ledger.balance("tenant-7")        # Decimal("32.35")
    ledger.reset("tenant-7")
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from fitbill.overage import (
    DEFAULT_CYCLE_DAYS,
    Amount,
    Clock,
    OverageCalculation,
    calculate_overage,
    quantize_amount,
    to_amount,
    utc_now,
)

logger = logging.getLogger(__name__)

_MAX_HISTORY = 100
_TOP_TENANTS = 10


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


class LedgerEvent(str, Enum):
    """Event types recorded in the ledger."""

    ACCRUED = "accrued"
    RESET = "reset"


@dataclass
class LedgerEntry:
    """One ledger event for a tenant."""

    id: str
    tenant_id: str
    plan_id: str
    event_type: LedgerEvent
    charge_amount: Decimal
    overage_units: int
    balance_after: Decimal
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dictionary."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "plan_id": self.plan_id,
            "event_type": self.event_type.value,
            "charge_amount": f"{self.charge_amount:.2f}",
            "overage_units": self.overage_units,
            "balance_after": f"{self.balance_after:.2f}",
            "created_at": self.created_at.isoformat(),
            "details": dict(self.details),
        }


def _end_of_day(day: date, tzinfo: Any) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tzinfo)


def _start_of_day(day: date, tzinfo: Any) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tzinfo)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class ChargeLedger:
    """Thread-safe in-memory ledger of overage accruals.

    :param clock: Zero-arg callable returning an aware ``datetime``;
        stamps entries and drives ``next_charge_date``.
    :param cycle_days: Billing cycle length passed to the calculator.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        cycle_days: int = DEFAULT_CYCLE_DAYS,
    ) -> None:
        self._clock: Clock = clock or utc_now
        self._cycle_days = cycle_days
        self._entries: list[LedgerEntry] = []
        self._balances: dict[str, Decimal] = {}
        self._plans: dict[str, str] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def accrue(
        self,
        tenant_id: str,
        plan_id: str,
        current_units: int,
        *,
        prior_balance: Amount | None = None,
    ) -> tuple[OverageCalculation, str]:
        """Calculate this cycle's overage and add it to the tenant's balance.

        Holds the lock across read-calculate-write so concurrent accruals
        for the same tenant never lose a charge.

        Args:
            tenant_id: Tenant (trainer) identifier.
            plan_id: Plan id or SKU string.
            current_units: Active students this cycle.
            prior_balance: Seed balance for a tenant the ledger has not
                seen yet (e.g. loaded from the caller's store).  Ignored
                once the tenant has a balance in the ledger.

        Returns:
            Tuple of ``(OverageCalculation, entry_id)``.

        Raises:
            InvalidPlanError: If *plan_id* matches no tier.
        """
        with self._lock:
            if tenant_id in self._balances or prior_balance is None:
                carried = self._balances.get(tenant_id, Decimal("0.00"))
            else:
                carried = to_amount(prior_balance)

            calc = calculate_overage(
                plan_id,
                current_units,
                carried,
                clock=self._clock,
                cycle_days=self._cycle_days,
            )
            entry = LedgerEntry(
                id=secrets.token_hex(8),
                tenant_id=tenant_id,
                plan_id=calc.plan_id,
                event_type=LedgerEvent.ACCRUED,
                charge_amount=calc.period_charge,
                overage_units=calc.overage_units,
                balance_after=calc.running_balance,
                created_at=self._clock(),
                details={
                    "current_units": calc.current_units,
                    "included_units": calc.included_units,
                    "unit_price": f"{calc.unit_price:.2f}",
                    "next_charge_date": calc.next_charge_date.isoformat(),
                },
            )
            self._entries.append(entry)
            self._balances[tenant_id] = calc.running_balance
            self._plans[tenant_id] = calc.plan_id

        logger.info(
            "Accrued %s for tenant %s on plan %s (%d excess, balance %s)",
            calc.period_charge,
            tenant_id,
            calc.plan_id,
            calc.overage_units,
            calc.running_balance,
        )
        return calc, entry.id

    def reset(self, tenant_id: str) -> Decimal:
        """Clear the tenant's balance after it has been invoiced.

        Returns:
            The balance that was cleared.

        Raises:
            ValueError: If the tenant has never accrued.
        """
        with self._lock:
            if tenant_id not in self._balances:
                raise ValueError(f"Tenant {tenant_id!r} has no ledger balance")
            cleared = self._balances[tenant_id]
            now = self._clock()
            self._entries.append(
                LedgerEntry(
                    id=secrets.token_hex(8),
                    tenant_id=tenant_id,
                    plan_id=self._plans.get(tenant_id, ""),
                    event_type=LedgerEvent.RESET,
                    charge_amount=Decimal("0.00"),
                    overage_units=0,
                    balance_after=Decimal("0.00"),
                    created_at=now,
                    details={"cleared_balance": f"{cleared:.2f}", "reset_at": now.isoformat()},
                )
            )
            self._balances[tenant_id] = Decimal("0.00")

        logger.info("Reset balance for tenant %s (cleared %s)", tenant_id, cleared)
        return cleared

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance(self, tenant_id: str) -> Decimal:
        """Current unbilled balance for *tenant_id* (zero if unknown)."""
        with self._lock:
            return self._balances.get(tenant_id, Decimal("0.00"))

    def history(self, tenant_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Return the tenant's ledger entries, newest first.

        Raises:
            ValueError: If *limit* is outside ``1..100``.
        """
        if not 1 <= limit <= _MAX_HISTORY:
            raise ValueError(f"limit must be between 1 and {_MAX_HISTORY}, got {limit}")
        with self._lock:
            entries = [e for e in reversed(self._entries) if e.tenant_id == tenant_id]
        return [e.to_dict() for e in entries[:limit]]

    def _accruals(
        self,
        start: date | None,
        end: date | None,
    ) -> list[LedgerEntry]:
        """Accrual entries inside ``[start, end]`` (whole days), oldest first."""
        with self._lock:
            entries = [e for e in self._entries if e.event_type is LedgerEvent.ACCRUED]
        if start is not None:
            entries = [e for e in entries if e.created_at >= _start_of_day(start, e.created_at.tzinfo)]
        if end is not None:
            entries = [e for e in entries if e.created_at <= _end_of_day(end, e.created_at.tzinfo)]
        return entries

    def list_charges(
        self,
        *,
        start: date | None = None,
        end: date | None = None,
        tenant_id: str | None = None,
        min_amount: Amount | None = None,
        max_amount: Amount | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Filter and paginate accrual entries for operator review.

        ``end`` is inclusive through the end of that day.

        Returns:
            Dictionary with ``charges`` (newest first), ``total`` (matches
            before pagination), ``limit`` and ``offset``.
        """
        if limit < 1 or offset < 0:
            raise ValueError("limit must be >= 1 and offset >= 0")

        entries = list(reversed(self._accruals(start, end)))
        if tenant_id is not None:
            entries = [e for e in entries if e.tenant_id == tenant_id]
        if min_amount is not None:
            low = to_amount(min_amount)
            entries = [e for e in entries if e.charge_amount >= low]
        if max_amount is not None:
            high = to_amount(max_amount)
            entries = [e for e in entries if e.charge_amount <= high]

        page = entries[offset:offset + limit]
        return {
            "charges": [e.to_dict() for e in page],
            "total": len(entries),
            "limit": limit,
            "offset": offset,
        }

    def stats(
        self,
        *,
        start: date | None = None,
        end: date | None = None,
    ) -> dict[str, Any]:
        """Aggregate accruals: totals, top tenants and a per-month series."""
        entries = self._accruals(start, end)

        total_amount = sum((e.charge_amount for e in entries), Decimal("0.00"))
        total_charges = len(entries)

        by_tenant: dict[str, dict[str, Any]] = {}
        by_month: dict[str, dict[str, Any]] = {}
        for e in entries:
            tenant = by_tenant.setdefault(e.tenant_id, {"count": 0, "amount": Decimal("0.00")})
            tenant["count"] += 1
            tenant["amount"] += e.charge_amount

            month = by_month.setdefault(e.created_at.strftime("%Y-%m"), {"count": 0, "amount": Decimal("0.00")})
            month["count"] += 1
            month["amount"] += e.charge_amount

        top_tenants = [
            {
                "tenant_id": tenant_id,
                "charges_count": s["count"],
                "total_amount": f"{s['amount']:.2f}",
                "average_charge": f"{quantize_amount(s['amount'] / s['count']):.2f}",
            }
            for tenant_id, s in sorted(by_tenant.items(), key=lambda kv: kv[1]["amount"], reverse=True)[
                :_TOP_TENANTS
            ]
        ]
        charges_by_month = [
            {
                "month": month,
                "charges_count": s["count"],
                "total_amount": f"{s['amount']:.2f}",
                "average_charge": f"{quantize_amount(s['amount'] / s['count']):.2f}",
            }
            for month, s in sorted(by_month.items())
        ]
        average = quantize_amount(total_amount / total_charges) if total_charges else Decimal("0.00")

        return {
            "total_charges": total_charges,
            "total_amount": f"{total_amount:.2f}",
            "average_charge": f"{average:.2f}",
            "unique_tenants": len(by_tenant),
            "top_tenants": top_tenants,
            "charges_by_month": charges_by_month,
        }

    def tenants(self) -> list[dict[str, Any]]:
        """Return every tenant with its plan and current balance."""
        with self._lock:
            return [
                {
                    "tenant_id": tenant_id,
                    "plan_id": self._plans.get(tenant_id, ""),
                    "balance": f"{balance:.2f}",
                }
                for tenant_id, balance in self._balances.items()
            ]