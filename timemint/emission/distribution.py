"""
Game Reward Distribution — batch minting against the game emission budget.

Two policies consume the same budget and differ only in what happens when
the batch outgrows it:

- best effort: mint entries in order and stop at the first one that would
  overflow the budget. The prefix is committed and the remainder can be
  resubmitted once more budget has accrued.
- strict: the caller declares the batch total up front; if that total or
  any running total exceeds the budget, the whole batch fails with
  ``BudgetExceeded`` and nothing is minted.

Both settle the game channel with the total actually minted. Callers are
gated on ``GameEmission`` before reaching this module.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from timemint.core.schema import Account, DistributionResult, RewardEntry, Transition
from timemint.emission.budget import EmissionBudget
from timemint.errors import BudgetExceeded, InvalidParameter
from timemint.ledger.core import LedgerCore

logger = logging.getLogger(__name__)


class DistributionPolicy:
    """Applies reward batches to the ledger under one emission budget."""

    def __init__(self, ledger: LedgerCore, budget: EmissionBudget) -> None:
        self.ledger = ledger
        self.budget = budget

    def best_effort(self, tx: Transition, entries: Sequence[RewardEntry]) -> DistributionResult:
        available = self.budget.require_available(tx)
        result = DistributionResult(budget=available)
        running = 0
        for index, entry in enumerate(entries):
            if running + entry.amount > available:
                result.skipped = len(entries) - index
                break
            self.ledger.mint(tx, entry.account, entry.amount)
            running += entry.amount
            result.minted.append(entry)

        self.budget.settle(tx, available, running)
        logger.info(
            "Best-effort rewards: minted=%d entries=%d skipped=%d budget=%d",
            running, len(result.minted), result.skipped, available,
        )
        return result

    def strict(
        self,
        tx: Transition,
        entries: Sequence[RewardEntry],
        declared_total: int,
    ) -> DistributionResult:
        available = self.budget.require_available(tx)
        if declared_total < 0:
            raise InvalidParameter(f"Declared total must be non-negative, got {declared_total}")
        if declared_total > available:
            raise BudgetExceeded(
                f"Declared total {declared_total} exceeds game budget {available}",
                details={"declared_total": declared_total, "available": available},
            )

        result = DistributionResult(budget=available)
        running = 0
        for entry in entries:
            if running + entry.amount > available:
                raise BudgetExceeded(
                    f"Reward to {entry.account} overflows game budget {available}",
                    details={"running_total": running, "amount": entry.amount},
                )
            self.ledger.mint(tx, entry.account, entry.amount)
            running += entry.amount
            result.minted.append(entry)

        self.budget.settle(tx, available, running)
        logger.info(
            "Strict rewards: minted=%d entries=%d budget=%d",
            running, len(result.minted), available,
        )
        return result

    def fixed_award(
        self,
        tx: Transition,
        accounts: Sequence[Account],
        amount: int,
    ) -> DistributionResult:
        entries = [RewardEntry(account=account, amount=amount) for account in accounts]
        return self.strict(tx, entries, declared_total=amount * len(entries))
