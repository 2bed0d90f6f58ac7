"""
Ledger Core — balances, supply, allowances and fee-on-transfer.

Invariant: the sum of all balances equals ``total_supply`` and no balance
is ever negative. ``mint`` is the only way supply grows; every balance
movement emits a ``transfer`` audit event (mints come from the zero
address).
"""

from __future__ import annotations

import logging

from timemint.core.schema import (
    MAX_FEE_PERCENT,
    ZERO_ADDRESS,
    Account,
    AuditEventType,
    EngineState,
    Transition,
)
from timemint.errors import (
    AmountZero,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidParameter,
    ZeroAddress,
)

logger = logging.getLogger(__name__)


def _require_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidParameter(f"Amount must be a non-negative integer, got {amount!r}")


class LedgerCore:
    """Balance bookkeeping over ``EngineState``."""

    # ── Queries ──────────────────────────────────────────────────

    @staticmethod
    def balance_of(state: EngineState, account: Account) -> int:
        return state.balances.get(account, 0)

    @staticmethod
    def allowance(state: EngineState, owner: Account, spender: Account) -> int:
        return state.allowances.get(owner, {}).get(spender, 0)

    # ── Primitives ───────────────────────────────────────────────

    def mint(self, tx: Transition, account: Account, amount: int) -> None:
        """Create ``amount`` new units for ``account``."""
        _require_amount(amount)
        if account == ZERO_ADDRESS:
            raise ZeroAddress("Cannot mint to the zero address")
        tx.state.total_supply += amount
        self.credit(tx, account, amount)
        tx.emit(AuditEventType.TRANSFER, sender=ZERO_ADDRESS, recipient=account, amount=amount)
        logger.info("Minted: account=%s amount=%d supply=%d", account, amount, tx.state.total_supply)

    def debit(self, tx: Transition, account: Account, amount: int) -> None:
        balance = self.balance_of(tx.state, account)
        if amount > balance:
            raise InsufficientBalance(
                f"{account} holds {balance}, needs {amount}",
                details={"account": account, "balance": balance, "amount": amount},
            )
        tx.state.balances[account] = balance - amount

    def credit(self, tx: Transition, account: Account, amount: int) -> None:
        tx.state.balances[account] = self.balance_of(tx.state, account) + amount

    # ── Transfers ────────────────────────────────────────────────

    def fee_for(self, state: EngineState, sender: Account, recipient: Account, amount: int) -> int:
        """Fee charged when either side is a taxed pair and neither side is exempt."""
        fees = state.fees
        if fees.fee_percent == 0 or not fees.fee_recipient:
            return 0
        if sender in fees.exempt or recipient in fees.exempt:
            return 0
        if sender not in fees.taxed_pairs and recipient not in fees.taxed_pairs:
            return 0
        return amount * fees.fee_percent // 100

    def transfer(self, tx: Transition, sender: Account, recipient: Account, amount: int) -> int:
        """
        Move ``amount`` from ``sender`` to ``recipient`` net of any fee.

        Returns:
            The amount credited to ``recipient``.
        """
        _require_amount(amount)
        if amount == 0:
            raise AmountZero("Transfer amount must be greater than zero")
        if sender == ZERO_ADDRESS or recipient == ZERO_ADDRESS:
            raise ZeroAddress("Transfers to or from the zero address are not allowed")

        fee = self.fee_for(tx.state, sender, recipient, amount)
        self.debit(tx, sender, amount)
        received = amount - fee
        self.credit(tx, recipient, received)
        tx.emit(AuditEventType.TRANSFER, sender=sender, recipient=recipient, amount=received)
        if fee:
            fee_recipient = tx.state.fees.fee_recipient
            self.credit(tx, fee_recipient, fee)
            tx.emit(AuditEventType.TRANSFER, sender=sender, recipient=fee_recipient, amount=fee)
        logger.info(
            "Transfer: %s -> %s amount=%d fee=%d", sender, recipient, amount, fee,
        )
        return received

    def approve(self, tx: Transition, owner: Account, spender: Account, amount: int) -> None:
        _require_amount(amount)
        if spender == ZERO_ADDRESS:
            raise ZeroAddress("Cannot approve the zero address")
        tx.state.allowances.setdefault(owner, {})[spender] = amount
        tx.emit(AuditEventType.APPROVAL, owner=owner, spender=spender, amount=amount)

    def spend_allowance(self, tx: Transition, owner: Account, spender: Account, amount: int) -> None:
        current = self.allowance(tx.state, owner, spender)
        if amount > current:
            raise InsufficientAllowance(
                f"{spender} may spend {current} of {owner}, needs {amount}",
                details={"allowance": current, "amount": amount},
            )
        tx.state.allowances.setdefault(owner, {})[spender] = current - amount

    # ── Fee administration ───────────────────────────────────────

    def set_fee_percent(self, tx: Transition, fee_percent: int) -> None:
        _require_amount(fee_percent)
        if fee_percent > MAX_FEE_PERCENT:
            raise InvalidParameter(
                f"Fee percent must be between 0 and {MAX_FEE_PERCENT}, got {fee_percent!r}"
            )
        tx.state.fees.fee_percent = fee_percent
        tx.emit(AuditEventType.PARAMETER_CHANGED, name="fee_percent", value=fee_percent)

    def set_fee_recipient(self, tx: Transition, recipient: Account) -> None:
        if recipient == ZERO_ADDRESS:
            raise ZeroAddress("Fee recipient cannot be the zero address")
        tx.state.fees.fee_recipient = recipient
        tx.emit(AuditEventType.PARAMETER_CHANGED, name="fee_recipient", value=recipient)

    def set_taxed_pair(self, tx: Transition, account: Account, taxed: bool) -> None:
        self._toggle(tx.state.fees.taxed_pairs, account, taxed)
        tx.emit(AuditEventType.PARAMETER_CHANGED, name="taxed_pair", account=account, value=taxed)

    def set_fee_exempt(self, tx: Transition, account: Account, exempt: bool) -> None:
        self._toggle(tx.state.fees.exempt, account, exempt)
        tx.emit(AuditEventType.PARAMETER_CHANGED, name="fee_exempt", account=account, value=exempt)

    @staticmethod
    def _toggle(members: set[Account], account: Account, present: bool) -> None:
        if present:
            members.add(account)
        else:
            members.discard(account)
