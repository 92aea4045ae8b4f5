"""Shared fixtures for the fitbill test suite.

Provides a fixed clock so ``next_charge_date`` is deterministic, and
isolates every test from the developer's real ``~/.fitbill`` directory
and ``FITBILL_*`` environment variables.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

FIXED_NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Point ``Path.home()`` at a temp dir and clear fitbill env vars."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for var in (
        "FITBILL_CONFIG",
        "FITBILL_LOCALE",
        "FITBILL_CURRENCY_SYMBOL",
        "FITBILL_CYCLE_DAYS",
        "FITBILL_UPGRADE_UNIT_RATIO",
        "FITBILL_UPGRADE_BALANCE_RATIO",
        "FITBILL_LOG_DIR",
        "FITBILL_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def fixed_clock():
    """Zero-arg clock that always returns :data:`FIXED_NOW`."""
    return lambda: FIXED_NOW
