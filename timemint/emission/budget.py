"""
Emission Budget — converts elapsed time into a spendable minting budget.

Each channel accrues ``rate_per_second`` tokens for every second since its
last claim, saturating at ``cap``. Claims debit the channel by moving its
clock forward by the time equivalent of what was actually minted:

    consumed = amount_claimed // rate_per_second

    saturated (mintable >= cap):
        last = now - cap // rate_per_second + consumed
    otherwise:
        last = last + consumed

The saturated branch rebases the clock so that only the time needed to
regenerate the cap counts as banked. A channel left idle therefore never
accumulates more than ``cap`` of backlog, however long it waits.

The arithmetic is on Python integers and cannot overflow.

The floor in ``consumed`` is kept as is: a claim smaller than
``rate_per_second`` mints tokens without moving the clock, so a caller that
repeats such claims is not bounded by the budget. Conservation across claims
only holds for amounts that are multiples of the rate. Channels that take
arbitrary amounts (special emission, reward batches) are open only to
holders of ``Emission`` and ``GameEmission``.
"""

from __future__ import annotations

import logging

from timemint.core.schema import EmissionChannel, EmissionState, Transition
from timemint.errors import BudgetExceeded, NothingToClaim

logger = logging.getLogger(__name__)


def mintable(last_claim_timestamp: int, rate_per_second: int, cap: int, now: int) -> int:
    """Budget available at ``now``. Zero if the clock reads before the last claim."""
    if last_claim_timestamp > now:
        return 0
    return min((now - last_claim_timestamp) * rate_per_second, cap)


def advanced_timestamp(
    emission: EmissionState,
    mintable_at_claim: int,
    amount_claimed: int,
    now: int,
) -> int:
    """
    Claim clock after ``amount_claimed`` was taken from ``mintable_at_claim``.

    The remainder ``amount_claimed % rate`` consumes no time.
    """
    rate = emission.rate_per_second
    if rate == 0:
        return emission.last_claim_timestamp
    consumed = amount_claimed // rate
    if mintable_at_claim >= emission.cap:
        return now - emission.cap // rate + consumed
    return emission.last_claim_timestamp + consumed


class EmissionBudget:
    """
    One emission channel of an ``EngineState``.

    Reads are side-effect free; only ``settle`` (and ``claim``, which calls
    it) moves the channel clock.
    """

    def __init__(self, channel: EmissionChannel) -> None:
        self.channel = channel

    def state(self, tx: Transition) -> EmissionState:
        return tx.state.emission[self.channel]

    def available(self, tx: Transition) -> int:
        emission = self.state(tx)
        return mintable(
            emission.last_claim_timestamp,
            emission.rate_per_second,
            emission.cap,
            tx.now,
        )

    def require_available(self, tx: Transition) -> int:
        budget = self.available(tx)
        if budget == 0:
            raise NothingToClaim(
                f"No {self.channel.value} emission available yet",
                details={"channel": self.channel.value},
            )
        return budget

    def claim(self, tx: Transition, amount: int) -> int:
        """
        Reserve ``amount`` from the channel and move its clock.

        Raises:
            NothingToClaim: if the channel has no budget.
            BudgetExceeded: if ``amount`` is larger than the budget.
        """
        budget = self.require_available(tx)
        if amount > budget:
            raise BudgetExceeded(
                f"Requested {amount} exceeds {self.channel.value} budget {budget}",
                details={"requested": amount, "available": budget},
            )
        self.settle(tx, budget, amount)
        return budget

    def settle(self, tx: Transition, mintable_at_claim: int, amount_claimed: int) -> None:
        emission = self.state(tx)
        previous = emission.last_claim_timestamp
        emission.last_claim_timestamp = advanced_timestamp(
            emission, mintable_at_claim, amount_claimed, tx.now
        )
        logger.debug(
            "Emission settled: channel=%s budget=%d claimed=%d last=%d->%d",
            self.channel.value, mintable_at_claim, amount_claimed,
            previous, emission.last_claim_timestamp,
        )
