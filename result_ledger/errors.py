"""Stable error taxonomy for the result ledger.

Every failure a transition can report is a `LedgerError` carrying a stable
machine-readable `code`. The typed variants below are what callers match on:

- `AlreadyPublished`: publish attempted for a key that already exists.
- `NotFound`: amend attempted for a key that was never published.
- `TesterLabelEmpty`: empty tester label (only raised when the opt-in check
  is enabled via `LEDGER_REQUIRE_TESTER_LABEL`).

`http_status` is used by the HTTP host to pick a response code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


# Transitions
LEDGER_E_ALREADY_PUBLISHED = "LEDGER_E_ALREADY_PUBLISHED"
LEDGER_E_NOT_FOUND = "LEDGER_E_NOT_FOUND"
LEDGER_E_TESTER_LABEL_EMPTY = "LEDGER_E_TESTER_LABEL_EMPTY"

# Host / auth
LEDGER_E_AUTH_REQUIRED = "LEDGER_E_AUTH_REQUIRED"

# Generic
LEDGER_E_BAD_REQUEST = "LEDGER_E_BAD_REQUEST"


@dataclass
class LedgerError(Exception):
    """Base ledger exception with stable error code."""

    code: str
    message: str
    retryable: bool = False
    http_status: int = 400
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
            "http_status": int(self.http_status),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class AlreadyPublished(LedgerError):
    """A result is already stored under the derived key."""

    def __init__(self, key_hex: str):
        super().__init__(
            code=LEDGER_E_ALREADY_PUBLISHED,
            message="test result already published",
            http_status=409,
            details={"key": key_hex},
        )


class NotFound(LedgerError):
    """No result is stored under the derived key, so it can't be amended."""

    def __init__(self, key_hex: str):
        super().__init__(
            code=LEDGER_E_NOT_FOUND,
            message="no such test result",
            http_status=404,
            details={"key": key_hex},
        )


class TesterLabelEmpty(LedgerError):
    """Tester label was empty."""

    def __init__(self) -> None:
        super().__init__(
            code=LEDGER_E_TESTER_LABEL_EMPTY,
            message="tester label must not be empty",
            http_status=400,
        )


def ledger_error(
    code: str,
    message: str,
    *,
    retryable: bool = False,
    http_status: int = 400,
    **details: Any,
) -> LedgerError:
    return LedgerError(code=code, message=message, retryable=retryable, http_status=http_status, details=details)
