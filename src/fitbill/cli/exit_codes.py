"""Exit codes for scriptable error handling.

Billing jobs that shell out to ``fitbill`` can branch on the category of
failure without parsing error messages.
"""

from __future__ import annotations

# Success
SUCCESS = 0

# Anything not covered below
OTHER_ERROR = 1

# Plan identifier did not match a tier
INVALID_PLAN = 2

# Bad argument or input file contents
VALIDATION_ERROR = 3

# Config file or setting could not be applied
CONFIG_ERROR = 4


ERROR_CODE_MAP: dict[str, int] = {
    "INVALID_PLAN": INVALID_PLAN,
    "VALIDATION_ERROR": VALIDATION_ERROR,
    "FILE_ERROR": VALIDATION_ERROR,
    "CONFIG_ERROR": CONFIG_ERROR,
}


def exit_code_for(error_code: str) -> int:
    """Map an error code string to a CLI exit code."""
    return ERROR_CODE_MAP.get(error_code, OTHER_ERROR)
