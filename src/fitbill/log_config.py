"""Log rotation and sensitive data scrubbing for fitbill.

Provides a logging filter that redacts tokens, passwords, e-mail
addresses and Brazilian tax ids (CPF/CNPJ) from log output, and a helper
to configure a rotating file handler with the scrub filter installed.
Billing logs carry tenant identifiers; payment provider payloads that end
up in them can carry the rest.
"""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


_DEFAULT_LOG_DIR = os.path.join(str(Path.home()), ".fitbill", "logs")

# Patterns that match sensitive values in log messages.
_SCRUB_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r'(api_key["\x27]?\s*[:=]\s*["\x27]?)([^"\x27\s,}{\]]+)', re.IGNORECASE),
     r'\1***REDACTED***'),
    (re.compile(r'(token["\x27]?\s*[:=]\s*["\x27]?)([^"\x27\s,}{\]]+)', re.IGNORECASE),
     r'\1***REDACTED***'),
    (re.compile(r'(password["\x27]?\s*[:=]\s*["\x27]?)([^"\x27\s,}{\]]+)', re.IGNORECASE),
     r'\1***REDACTED***'),
    (re.compile(r'(secret["\x27]?\s*[:=]\s*["\x27]?)([^"\x27\s,}{\]]+)', re.IGNORECASE),
     r'\1***REDACTED***'),
    (re.compile(r'(Authorization:\s*Bearer\s+)(\S+)', re.IGNORECASE),
     r'\1***REDACTED***'),
    # Only the punctuated forms; bare digit runs are ids and amounts.
    (re.compile(r'\b\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}\b'),
     '***CNPJ***'),
    (re.compile(r'\b\d{3}\.\d{3}\.\d{3}-\d{2}\b'),
     '***CPF***'),
    (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'),
     '***EMAIL***'),
]


class ScrubFilter(logging.Filter):
    """Logging filter that redacts sensitive data from log messages.

    Applies to both the format string and string arguments, so values
    passed with ``%s`` placeholders are redacted too.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg and isinstance(record.msg, str):
            record.msg = _scrub(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: _scrub(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    _scrub(a) if isinstance(a, str) else a
                    for a in record.args
                )
        return True


def _scrub(text: str) -> str:
    """Apply all scrub patterns to *text*."""
    for pattern, replacement in _SCRUB_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def configure_logging(
    log_dir: Optional[str] = None,
    *,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
    level: Optional[str] = None,
    console: bool = False,
) -> None:
    """Configure logging with rotation and sensitive data scrubbing.

    :param log_dir: Directory for log files.  Reads ``FITBILL_LOG_DIR`` env
        var, then falls back to ``~/.fitbill/logs/``.
    :param max_bytes: Maximum log file size before rotation (default 10 MB).
    :param backup_count: Number of rotated log files to keep (default 5).
    :param level: Log level string.  Reads ``FITBILL_LOG_LEVEL`` env var,
        then falls back to ``"INFO"``.
    :param console: Also log to stderr (used by ``fitbill --verbose``).
    """
    log_dir = log_dir or os.environ.get("FITBILL_LOG_DIR", _DEFAULT_LOG_DIR)
    level = level or os.environ.get("FITBILL_LOG_LEVEL", "INFO")

    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "fitbill.log")

    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    scrub_filter = ScrubFilter()

    root = logging.getLogger()
    root.setLevel(log_level)

    # Add rotating file handler if not already present.
    has_rotating = any(
        isinstance(h, RotatingFileHandler) for h in root.handlers
    )
    if not has_rotating:
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if console and not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(log_level)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    # Install scrub filter on all existing handlers.
    for handler in root.handlers:
        if not any(isinstance(f, ScrubFilter) for f in handler.filters):
            handler.addFilter(scrub_filter)
