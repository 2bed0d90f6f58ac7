"""
Error taxonomy for the ledger engine.

Every failure is reported synchronously to the caller of the operation in
progress and aborts that operation as a whole. Callers branch on the
exception class or on its stable ``code``; the ``reason`` text is for humans.

    TimemintError
    ├── AuthorizationError   not allowed
    ├── BudgetError          nothing available yet / asked for too much
    └── LedgerError          insufficient funds / malformed request
"""

from __future__ import annotations

from typing import Any


class TimemintError(Exception):
    """Base class for every failure raised by the engine."""

    code = "timemint_error"

    def __init__(self, reason: str = "", details: Any | None = None) -> None:
        self.reason = reason or self.code
        self.details = details
        super().__init__(self.reason)

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "reason": self.reason}
        if self.details is not None:
            body["details"] = self.details
        return body


# ── Authorization ──────────────────────────────────────────────


class AuthorizationError(TimemintError):
    code = "authorization_error"


class NotAuthorized(AuthorizationError):
    code = "not_authorized"


class PermissionLocked(AuthorizationError):
    code = "permission_locked"


class NotOwner(AuthorizationError):
    code = "not_owner"


class CannotRevokeOwner(AuthorizationError):
    code = "cannot_revoke_owner"


class UnknownPermission(AuthorizationError):
    code = "unknown_permission"


# ── Budget ─────────────────────────────────────────────────────


class BudgetError(TimemintError):
    code = "budget_error"


class NothingToClaim(BudgetError):
    code = "nothing_to_claim"


class BudgetExceeded(BudgetError):
    code = "budget_exceeded"


class StillLocked(BudgetError):
    code = "still_locked"


class EmissionInactive(BudgetError):
    code = "emission_inactive"


# ── Ledger ─────────────────────────────────────────────────────


class LedgerError(TimemintError):
    code = "ledger_error"


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"


class InsufficientAllowance(LedgerError):
    code = "insufficient_allowance"


class ZeroAddress(LedgerError):
    code = "zero_address"


class AmountZero(LedgerError):
    code = "amount_zero"


class InvalidParameter(LedgerError):
    code = "invalid_parameter"
