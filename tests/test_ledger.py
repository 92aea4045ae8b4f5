"""Tests for fitbill.ledger -- accrual ledger for the billing-cycle job.

Covers:
- Accrual carries the balance across cycles
- prior_balance seeding for unseen tenants only
- Reset clears the balance and records an event
- History ordering and limit validation
- list_charges filters and pagination
- stats totals, top tenants and monthly series
- Thread safety of concurrent accruals
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from fitbill.ledger import ChargeLedger, LedgerEvent
from fitbill.plans import InvalidPlanError


class _SteppingClock:
    """Clock whose current time can be moved between calls."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return _SteppingClock(datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(clock):
    return ChargeLedger(clock=clock)


# ---------------------------------------------------------------------------
# Accrual
# ---------------------------------------------------------------------------


class TestAccrue:
    """Running balance across cycles."""

    def test_first_accrual(self, ledger):
        calc, entry_id = ledger.accrue("t1", "starter", 20)
        assert calc.period_charge == Decimal("32.35")
        assert calc.running_balance == Decimal("32.35")
        assert ledger.balance("t1") == Decimal("32.35")
        assert isinstance(entry_id, str) and len(entry_id) == 16

    def test_balance_carries_to_next_cycle(self, ledger):
        ledger.accrue("t1", "starter", 20)
        calc, _ = ledger.accrue("t1", "starter", 20)
        assert calc.running_balance == Decimal("64.70")
        assert ledger.balance("t1") == Decimal("64.70")

    def test_tenants_are_independent(self, ledger):
        ledger.accrue("t1", "starter", 20)
        ledger.accrue("t2", "pro", 28)
        assert ledger.balance("t1") == Decimal("32.35")
        assert ledger.balance("t2") == Decimal("17.64")

    def test_prior_balance_seeds_new_tenant(self, ledger):
        calc, _ = ledger.accrue("t1", "pro", 28, prior_balance="50")
        assert calc.running_balance == Decimal("67.64")

    def test_prior_balance_ignored_once_known(self, ledger):
        ledger.accrue("t1", "starter", 20)
        calc, _ = ledger.accrue("t1", "starter", 20, prior_balance=1000)
        assert calc.running_balance == Decimal("64.70")

    def test_unknown_tenant_balance_is_zero(self, ledger):
        assert ledger.balance("nobody") == Decimal("0.00")

    def test_invalid_plan_leaves_ledger_untouched(self, ledger):
        with pytest.raises(InvalidPlanError):
            ledger.accrue("t1", "gold", 20)
        assert ledger.tenants() == []
        assert ledger.history("t1") == []

    def test_next_charge_date_uses_cycle_days(self, clock):
        ledger = ChargeLedger(clock=clock, cycle_days=14)
        calc, _ = ledger.accrue("t1", "starter", 20)
        assert calc.next_charge_date == date(2026, 1, 24)

    def test_plan_change_between_cycles(self, ledger):
        ledger.accrue("t1", "starter", 20)
        ledger.accrue("t1", "pro", 28)
        assert ledger.balance("t1") == Decimal("49.99")
        assert ledger.tenants() == [{"tenant_id": "t1", "plan_id": "pro", "balance": "49.99"}]


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------


class TestReset:

    def test_reset_returns_cleared_balance(self, ledger):
        ledger.accrue("t1", "starter", 20)
        assert ledger.reset("t1") == Decimal("32.35")
        assert ledger.balance("t1") == Decimal("0.00")

    def test_next_accrual_starts_from_zero(self, ledger):
        ledger.accrue("t1", "starter", 20)
        ledger.reset("t1")
        calc, _ = ledger.accrue("t1", "starter", 16)
        assert calc.running_balance == Decimal("6.47")

    def test_reset_unknown_tenant(self, ledger):
        with pytest.raises(ValueError, match="no ledger balance"):
            ledger.reset("nobody")

    def test_reset_is_recorded(self, ledger):
        ledger.accrue("t1", "starter", 20)
        ledger.reset("t1")
        latest = ledger.history("t1")[0]
        assert latest["event_type"] == LedgerEvent.RESET.value
        assert latest["details"]["cleared_balance"] == "32.35"
        assert latest["balance_after"] == "0.00"


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestHistory:

    def test_newest_first(self, ledger, clock):
        ledger.accrue("t1", "starter", 16)
        clock.now = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)
        ledger.accrue("t1", "starter", 20)
        entries = ledger.history("t1")
        assert [e["charge_amount"] for e in entries] == ["32.35", "6.47"]
        assert entries[0]["created_at"].startswith("2026-02-10")

    def test_limit(self, ledger):
        for _ in range(5):
            ledger.accrue("t1", "starter", 16)
        assert len(ledger.history("t1", limit=3)) == 3

    @pytest.mark.parametrize("limit", [0, 101, -1])
    def test_limit_out_of_range(self, ledger, limit):
        with pytest.raises(ValueError, match="limit"):
            ledger.history("t1", limit=limit)

    def test_entry_shape(self, ledger):
        ledger.accrue("t1", "pro", 28)
        entry = ledger.history("t1")[0]
        assert entry["tenant_id"] == "t1"
        assert entry["plan_id"] == "pro"
        assert entry["event_type"] == "accrued"
        assert entry["overage_units"] == 3
        assert entry["details"]["next_charge_date"] == "2026-02-09"
        assert entry["details"]["unit_price"] == "5.88"


# ---------------------------------------------------------------------------
# Admin listing
# ---------------------------------------------------------------------------


@pytest.fixture
def populated(ledger, clock):
    """Three tenants accrued across January and February 2026."""
    ledger.accrue("t1", "starter", 20)      # 32.35
    ledger.accrue("t2", "pro", 28)          # 17.64
    clock.now = datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc)
    ledger.accrue("t1", "starter", 16)      # 6.47
    ledger.accrue("t3", "business", 50)     # 49.30
    ledger.reset("t2")
    return ledger


class TestListCharges:
    """Filtering and pagination for operator review."""

    def test_all_accruals_newest_first(self, populated):
        result = populated.list_charges()
        assert result["total"] == 4
        assert [c["tenant_id"] for c in result["charges"]] == ["t3", "t1", "t2", "t1"]

    def test_reset_events_excluded(self, populated):
        result = populated.list_charges()
        assert all(c["event_type"] == "accrued" for c in result["charges"])

    def test_filter_by_tenant(self, populated):
        result = populated.list_charges(tenant_id="t1")
        assert result["total"] == 2

    def test_filter_by_amount(self, populated):
        result = populated.list_charges(min_amount="10", max_amount=40)
        assert sorted(c["charge_amount"] for c in result["charges"]) == ["17.64", "32.35"]

    def test_end_date_is_inclusive(self, populated):
        result = populated.list_charges(end=date(2026, 1, 10))
        assert result["total"] == 2

    def test_start_date(self, populated):
        result = populated.list_charges(start=date(2026, 2, 1))
        assert {c["tenant_id"] for c in result["charges"]} == {"t1", "t3"}

    def test_pagination(self, populated):
        page = populated.list_charges(limit=2, offset=2)
        assert page["total"] == 4
        assert page["limit"] == 2
        assert page["offset"] == 2
        assert [c["tenant_id"] for c in page["charges"]] == ["t2", "t1"]

    def test_bad_pagination(self, populated):
        with pytest.raises(ValueError):
            populated.list_charges(limit=0)
        with pytest.raises(ValueError):
            populated.list_charges(offset=-1)


class TestStats:
    """Aggregates for the operator dashboard."""

    def test_totals(self, populated):
        stats = populated.stats()
        assert stats["total_charges"] == 4
        assert stats["total_amount"] == "105.76"
        assert stats["average_charge"] == "26.44"
        assert stats["unique_tenants"] == 3

    def test_top_tenants_sorted_by_amount(self, populated):
        top = populated.stats()["top_tenants"]
        assert [t["tenant_id"] for t in top] == ["t3", "t1", "t2"]
        assert top[1] == {
            "tenant_id": "t1",
            "charges_count": 2,
            "total_amount": "38.82",
            "average_charge": "19.41",
        }

    def test_top_tenants_capped_at_ten(self, ledger):
        for i in range(12):
            ledger.accrue(f"t{i}", "starter", 16 + i)
        assert len(ledger.stats()["top_tenants"]) == 10

    def test_monthly_series(self, populated):
        months = populated.stats()["charges_by_month"]
        assert [m["month"] for m in months] == ["2026-01", "2026-02"]
        assert months[0]["total_amount"] == "49.99"
        assert months[1]["charges_count"] == 2

    def test_date_window(self, populated):
        stats = populated.stats(start=date(2026, 2, 1), end=date(2026, 2, 28))
        assert stats["total_charges"] == 2
        assert stats["total_amount"] == "55.77"

    def test_empty_ledger(self, ledger):
        stats = ledger.stats()
        assert stats["total_charges"] == 0
        assert stats["total_amount"] == "0.00"
        assert stats["average_charge"] == "0.00"
        assert stats["top_tenants"] == []
        assert stats["charges_by_month"] == []


# ---------------------------------------------------------------------------
# Thread safety
# ---------------------------------------------------------------------------


class TestThreadSafety:

    def test_concurrent_accruals_lose_nothing(self, ledger):
        def worker():
            for _ in range(25):
                ledger.accrue("t1", "starter", 16)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert ledger.balance("t1") == Decimal("6.47") * 200
        assert ledger.list_charges(limit=1000)["total"] == 200
