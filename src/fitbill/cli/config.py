"""Configuration management for the fitbill CLI.

Billing settings live in the ``billing`` section of
``~/.fitbill/config.yaml``.

Precedence (highest first):
    1. CLI flags (``--locale``, ``--plan-price``, etc.)
    2. Environment variables (``FITBILL_LOCALE``, ``FITBILL_CURRENCY_SYMBOL``,
       ``FITBILL_CYCLE_DAYS``, ``FITBILL_UPGRADE_UNIT_RATIO``,
       ``FITBILL_UPGRADE_BALANCE_RATIO``)
    3. Config file (``~/.fitbill/config.yaml``)
    4. Built-in defaults
"""

from __future__ import annotations

import contextlib
import logging
import os
import stat
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import yaml

from fitbill import parse_float_env, parse_int_env
from fitbill.overage import DEFAULT_BALANCE_RATIO, DEFAULT_CYCLE_DAYS, DEFAULT_UNIT_RATIO, MAX_CYCLE_DAYS
from fitbill.report import DEFAULT_CURRENCY_SYMBOL, DEFAULT_LOCALE, available_locales

logger = logging.getLogger(__name__)

# Valid top-level keys in the config file.  Used for schema validation.
_KNOWN_KEYS: set[str] = {
    "billing",
}


class ConfigError(ValueError):
    """Raised when a configuration value cannot be applied."""


@dataclass
class BillingSettings:
    """Resolved billing settings.

    Attributes:
        locale: Report language (``"pt-BR"`` or ``"en-US"``).
        currency_symbol: Prefix for rendered amounts.
        cycle_days: Days between charges.
        upgrade_unit_ratio: Excess/allowance ratio above which an upgrade
            is recommended.
        upgrade_balance_ratio: Balance/plan-price ratio above which an
            upgrade is recommended.
    """

    locale: str = DEFAULT_LOCALE
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL
    cycle_days: int = DEFAULT_CYCLE_DAYS
    upgrade_unit_ratio: float = DEFAULT_UNIT_RATIO
    upgrade_balance_ratio: float = DEFAULT_BALANCE_RATIO

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_SETTING_TYPES: dict[str, type] = {
    "locale": str,
    "currency_symbol": str,
    "cycle_days": int,
    "upgrade_unit_ratio": float,
    "upgrade_balance_ratio": float,
}


def get_config_path() -> Path:
    """Return the default config file path (``~/.fitbill/config.yaml``)."""
    return Path.home() / ".fitbill" / "config.yaml"


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


def _check_file_permissions(path: Path) -> None:
    """Warn if *path* is readable by group or others.

    Skipped on Windows where POSIX permission semantics do not apply.
    """
    if sys.platform == "win32":
        return
    try:
        mode = path.stat().st_mode
        if mode & (stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH):
            logger.warning(
                "Config file %s has overly permissive permissions (mode %04o). Recommended: chmod 600 %s",
                path,
                stat.S_IMODE(mode),
                path,
            )
    except OSError:
        pass


def _validate_config_schema(data: dict[str, Any], path: Path) -> None:
    """Log warnings for unknown keys in the config file."""
    unknown = set(data.keys()) - _KNOWN_KEYS
    for key in sorted(unknown):
        logger.warning(
            "Config file %s contains unknown key %r (expected one of: %s)",
            path,
            key,
            ", ".join(sorted(_KNOWN_KEYS)),
        )

    billing = data.get("billing")
    if isinstance(billing, dict):
        for key in sorted(set(billing) - set(_SETTING_TYPES)):
            logger.warning("Config file %s has unknown billing setting %r", path, key)


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read and parse the YAML config file; return ``{}`` on any failure."""
    if not path.is_file():
        return {}
    _check_file_permissions(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        if not isinstance(data, dict):
            return {}
        _validate_config_schema(data, path)
        return data
    except yaml.YAMLError as exc:
        logger.warning(
            "Config file %s has invalid YAML: %s -- using defaults. Fix the file or run 'fitbill config set'.",
            path,
            exc,
        )
        return {}
    except OSError as exc:
        logger.warning("Could not read config file %s: %s", path, exc)
        return {}


def _write_config_file(path: Path, data: dict[str, Any]) -> None:
    """Write *data* to the YAML config file, creating dirs as needed.

    File mode is ``0600`` and the parent directory ``0700``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if sys.platform != "win32":
        with contextlib.suppress(OSError):
            path.parent.chmod(0o700)
    with path.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(data, fh, default_flow_style=False, sort_keys=False)
    if sys.platform != "win32":
        with contextlib.suppress(OSError):
            path.chmod(0o600)


def _coerce(key: str, value: Any) -> Any:
    """Convert *value* to the type of billing setting *key*.

    Raises :class:`ConfigError` for unknown keys or bad values.
    """
    if key not in _SETTING_TYPES:
        raise ConfigError(f"Unknown billing setting {key!r}. Valid keys: {', '.join(sorted(_SETTING_TYPES))}")
    kind = _SETTING_TYPES[key]
    try:
        coerced = kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {key}: {value!r} ({exc})") from exc

    if key == "locale" and coerced not in available_locales():
        raise ConfigError(f"Unsupported locale {coerced!r}. Available: {', '.join(available_locales())}")
    if key == "cycle_days" and not 1 <= coerced <= MAX_CYCLE_DAYS:
        raise ConfigError(f"cycle_days must be between 1 and {MAX_CYCLE_DAYS}")
    if key in ("upgrade_unit_ratio", "upgrade_balance_ratio") and coerced < 0:
        raise ConfigError(f"{key} must be >= 0")
    return coerced


def load_billing_settings(
    *,
    config_path: Path | None = None,
) -> BillingSettings:
    """Resolve billing settings from defaults, config file and env vars.

    Invalid values in the file are logged and skipped.
    """
    path = config_path or get_config_path()
    raw = _read_config_file(path)
    section = raw.get("billing", {})
    if not isinstance(section, dict):
        section = {}

    settings = BillingSettings()
    for key, value in section.items():
        try:
            setattr(settings, key, _coerce(key, value))
        except ConfigError as exc:
            logger.warning("Ignoring billing setting in %s: %s", path, exc)

    env_locale = os.environ.get("FITBILL_LOCALE", "").strip()
    if env_locale:
        try:
            settings.locale = _coerce("locale", env_locale)
        except ConfigError as exc:
            logger.warning("Ignoring FITBILL_LOCALE: %s", exc)
    env_symbol = os.environ.get("FITBILL_CURRENCY_SYMBOL", "").strip()
    if env_symbol:
        settings.currency_symbol = env_symbol
    settings.cycle_days = min(
        MAX_CYCLE_DAYS, max(1, parse_int_env("FITBILL_CYCLE_DAYS", settings.cycle_days))
    )
    settings.upgrade_unit_ratio = max(
        0.0, parse_float_env("FITBILL_UPGRADE_UNIT_RATIO", settings.upgrade_unit_ratio)
    )
    settings.upgrade_balance_ratio = max(
        0.0, parse_float_env("FITBILL_UPGRADE_BALANCE_RATIO", settings.upgrade_balance_ratio)
    )

    return settings


# ---------------------------------------------------------------------------
# Save / mutate
# ---------------------------------------------------------------------------


def save_billing_setting(
    key: str,
    value: Any,
    *,
    config_path: Path | None = None,
) -> Path:
    """Set one billing setting in the config file.

    Merges into the existing ``billing`` section (does not clobber other
    config sections).  Returns the path to the config file.

    Raises :class:`ConfigError` if the key or value is invalid.
    """
    coerced = _coerce(key, value)
    path = config_path or get_config_path()
    raw = _read_config_file(path)
    billing = raw.get("billing", {})
    if not isinstance(billing, dict):
        billing = {}
    billing[key] = coerced
    raw["billing"] = billing
    _write_config_file(path, raw)
    logger.info("Saved billing setting %s=%r to %s", key, coerced, path)
    return path
