"""
Ledger Engine — the operation surface of the permissioned ledger.

The engine owns one ``EngineState`` and exposes every externally invoked
operation. Each operation is a single transition:

1. a process-wide lock serialises it against every other operation;
2. the clock is read exactly once;
3. the operation runs against a private copy of the state, gated by
   ``authorized_for`` before anything is changed;
4. on success the pending audit events are appended to the audit log (and
   its sink) as one batch, and only then does the copy replace the state;
   on any failure, a rejected audit write included, both are discarded.

Transfers claim accrued staking emission as an explicit first step, before
any balance is computed, and never re-enter the ledger from inside that
claim.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager

from timemint.config import TimemintSettings
from timemint.core.clock import SystemClock
from timemint.core.schema import (
    ZERO_ADDRESS,
    Account,
    AuditEventType,
    DistributionResult,
    EmissionChannel,
    EmissionState,
    EngineState,
    FixedAward,
    Permission,
    PermissionLock,
    RewardEntry,
    Transition,
)
from timemint.emission.budget import EmissionBudget
from timemint.emission.distribution import DistributionPolicy
from timemint.errors import (
    AmountZero,
    EmissionInactive,
    InvalidParameter,
    TimemintError,
    ZeroAddress,
)
from timemint.governance.locks import LockPolicy, PermissionLockTable
from timemint.governance.permissions import AuthorizationStore, PermissionRegistry
from timemint.ledger.core import LedgerCore
from timemint.ledger.service import AuditLog

logger = logging.getLogger(__name__)

PermissionRef = str | int | Permission
RewardInput = RewardEntry | tuple[Account, int]


def _non_negative(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidParameter(f"{name} must be a non-negative integer, got {value!r}")
    return value


class LedgerEngine:
    """
    Permissioned ledger with lockable permissions and three time-budgeted
    emission channels.

    Usage:
        engine = LedgerEngine(owner="0xowner", clock=ManualClock(0))
        engine.grant("0xowner", "0xgame", "GameEmission")
        engine.distribute_game_rewards_best_effort(
            "0xgame", [("0xalice", 300), ("0xbob", 200)],
        )
    """

    def __init__(
        self,
        owner: Account,
        *,
        clock: Callable[[], int] | None = None,
        lock_policy: LockPolicy | None = None,
        audit_log: AuditLog | None = None,
        staking: tuple[int, int] = (10, 1_000_000),
        special: tuple[int, int] = (10, 1_000_000),
        game: tuple[int, int] = (10, 1_000_000),
        initial_supply: int = 0,
        winner_amount: int = 0,
        loser_amount: int = 0,
        emission_active: bool = False,
        staking_address: Account = "",
    ) -> None:
        if owner == ZERO_ADDRESS:
            raise ZeroAddress("Owner cannot be the zero address")

        self.clock = clock if clock is not None else SystemClock()
        self.audit_log = audit_log if audit_log is not None else AuditLog()
        self.registry = PermissionRegistry()
        self.auth = AuthorizationStore(PermissionLockTable(lock_policy))
        self.ledger = LedgerCore()
        self.budgets = {channel: EmissionBudget(channel) for channel in EmissionChannel}
        self.distribution = DistributionPolicy(self.ledger, self.budgets[EmissionChannel.GAME])
        self._mutex = threading.RLock()

        now = self.clock()
        channels = {
            EmissionChannel.STAKING: staking,
            EmissionChannel.SPECIAL: special,
            EmissionChannel.GAME: game,
        }
        emission = {}
        for channel, (rate, cap) in channels.items():
            emission[channel] = EmissionState(
                rate_per_second=_non_negative(f"{channel.value} rate", rate),
                cap=_non_negative(f"{channel.value} cap", cap),
                last_claim_timestamp=now,
            )
        self.state = EngineState(
            owner=owner,
            emission=emission,
            emission_active=emission_active,
            staking_address=staking_address,
            winner_amount=_non_negative("winner amount", winner_amount),
            loser_amount=_non_negative("loser amount", loser_amount),
        )
        self.auth.bootstrap(self.state, owner)

        tx = Transition(state=self.state, caller=owner, now=now)
        tx.emit(AuditEventType.OWNERSHIP_TRANSFERRED, previous_owner=ZERO_ADDRESS, new_owner=owner)
        if initial_supply:
            self.ledger.mint(tx, owner, _non_negative("initial supply", initial_supply))
        self.audit_log.extend(tx.events)
        logger.info("Ledger engine constructed: owner=%s now=%d", owner, now)

    @classmethod
    def from_settings(
        cls,
        config: TimemintSettings,
        *,
        clock: Callable[[], int] | None = None,
        audit_log: AuditLog | None = None,
    ) -> LedgerEngine:
        engine = cls(
            config.owner_account,
            clock=clock,
            audit_log=audit_log,
            staking=(config.staking_rate_per_second, config.staking_cap),
            special=(config.special_rate_per_second, config.special_cap),
            game=(config.game_rate_per_second, config.game_cap),
            initial_supply=config.initial_supply,
            winner_amount=config.winner_amount,
            loser_amount=config.loser_amount,
            emission_active=config.emission_active,
            staking_address=config.staking_address,
        )
        if config.fee_recipient:
            engine.set_fee_recipient(config.owner_account, config.fee_recipient)
        if config.fee_percent:
            engine.set_fee_percent(config.owner_account, config.fee_percent)
        return engine

    # ════════════════════════════════════════════════════════════
    # Transition machinery
    # ════════════════════════════════════════════════════════════

    @contextmanager
    def _transition(self, caller: Account, operation: str) -> Iterator[Transition]:
        with self._mutex:
            tx = Transition(
                state=self.state.model_copy(deep=True),
                caller=caller,
                now=self.clock(),
            )
            try:
                yield tx
            except TimemintError as exc:
                logger.warning(
                    "Operation rejected: op=%s caller=%s code=%s reason=%s",
                    operation, caller, exc.code, exc.reason,
                )
                raise
            try:
                self.audit_log.extend(tx.events)
            except Exception:
                logger.exception("Audit publish failed, transition discarded: op=%s", operation)
                raise
            self.state = tx.state

    def _gate(self, tx: Transition, permission: Permission) -> None:
        self.auth.authorized_for(tx, tx.caller, permission)

    # ════════════════════════════════════════════════════════════
    # Authorization
    # ════════════════════════════════════════════════════════════

    def authorized_for(self, caller: Account, permission: PermissionRef) -> None:
        """Raise ``PermissionLocked`` or ``NotAuthorized`` unless ``caller`` may act."""
        with self._transition(caller, "authorized_for") as tx:
            self.auth.authorized_for(tx, caller, self.registry.resolve(permission))

    def grant(self, caller: Account, actor: Account, permission: PermissionRef) -> None:
        with self._transition(caller, "grant") as tx:
            self.auth.grant(tx, actor, self.registry.resolve(permission))

    def grant_many(self, caller: Account, actor: Account, permissions: Iterable[PermissionRef]) -> None:
        with self._transition(caller, "grant_many") as tx:
            self.auth.grant_many(tx, actor, self.registry.resolve_many(permissions))

    def grant_all(self, caller: Account, actor: Account) -> None:
        with self._transition(caller, "grant_all") as tx:
            self.auth.grant_all(tx, actor)

    def revoke(self, caller: Account, actor: Account, permission: PermissionRef) -> None:
        with self._transition(caller, "revoke") as tx:
            self.auth.revoke(tx, actor, self.registry.resolve(permission))

    def revoke_many(self, caller: Account, actor: Account, permissions: Iterable[PermissionRef]) -> None:
        with self._transition(caller, "revoke_many") as tx:
            self.auth.revoke_many(tx, actor, self.registry.resolve_many(permissions))

    def revoke_all(self, caller: Account, actor: Account) -> None:
        with self._transition(caller, "revoke_all") as tx:
            self.auth.revoke_all(tx, actor)

    def transfer_ownership(self, caller: Account, new_owner: Account) -> None:
        with self._transition(caller, "transfer_ownership") as tx:
            self.auth.transfer_ownership(tx, new_owner)

    def lock_permission(self, caller: Account, permission: PermissionRef, duration: int) -> PermissionLock:
        with self._transition(caller, "lock_permission") as tx:
            lock = self.auth.lock_permission(tx, self.registry.resolve(permission), duration)
        return lock.model_copy()

    def unlock_permission(self, caller: Account, permission: PermissionRef) -> PermissionLock:
        with self._transition(caller, "unlock_permission") as tx:
            lock = self.auth.unlock_permission(tx, self.registry.resolve(permission))
        return lock.model_copy()

    # ════════════════════════════════════════════════════════════
    # Emission parameters (AdjustMinting)
    # ════════════════════════════════════════════════════════════

    def set_emission_active(self, caller: Account, active: bool) -> None:
        with self._transition(caller, "set_emission_active") as tx:
            self._gate(tx, Permission.ADJUST_MINTING)
            tx.state.emission_active = bool(active)
            tx.emit(AuditEventType.PARAMETER_CHANGED, name="emission_active", value=bool(active))

    def set_staking_address(self, caller: Account, account: Account) -> None:
        with self._transition(caller, "set_staking_address") as tx:
            self._gate(tx, Permission.ADJUST_MINTING)
            if account == ZERO_ADDRESS:
                raise ZeroAddress("Staking address cannot be the zero address")
            tx.state.staking_address = account
            tx.emit(AuditEventType.PARAMETER_CHANGED, name="staking_address", value=account)

    def set_rate(self, caller: Account, channel: EmissionChannel | str, rate: int) -> None:
        with self._transition(caller, "set_rate") as tx:
            self._gate(tx, Permission.ADJUST_MINTING)
            emission = tx.state.emission[self._channel(channel)]
            emission.rate_per_second = _non_negative("rate", rate)
            tx.emit(
                AuditEventType.PARAMETER_CHANGED,
                name="rate_per_second", channel=self._channel(channel).value, value=rate,
            )

    def set_cap(self, caller: Account, channel: EmissionChannel | str, cap: int) -> None:
        with self._transition(caller, "set_cap") as tx:
            self._gate(tx, Permission.ADJUST_MINTING)
            emission = tx.state.emission[self._channel(channel)]
            emission.cap = _non_negative("cap", cap)
            tx.emit(
                AuditEventType.PARAMETER_CHANGED,
                name="cap", channel=self._channel(channel).value, value=cap,
            )

    # ════════════════════════════════════════════════════════════
    # Ledger parameters (AdjustVariables)
    # ════════════════════════════════════════════════════════════

    def set_fixed_award(self, caller: Account, award: FixedAward | str, amount: int) -> None:
        with self._transition(caller, "set_fixed_award") as tx:
            self._gate(tx, Permission.ADJUST_VARIABLES)
            kind = self._award(award)
            _non_negative(f"{kind.value} amount", amount)
            if kind is FixedAward.WINNER:
                tx.state.winner_amount = amount
            else:
                tx.state.loser_amount = amount
            tx.emit(AuditEventType.PARAMETER_CHANGED, name=f"{kind.value}_amount", value=amount)

    def set_fee_percent(self, caller: Account, fee_percent: int) -> None:
        with self._transition(caller, "set_fee_percent") as tx:
            self._gate(tx, Permission.ADJUST_VARIABLES)
            self.ledger.set_fee_percent(tx, fee_percent)

    def set_fee_recipient(self, caller: Account, recipient: Account) -> None:
        with self._transition(caller, "set_fee_recipient") as tx:
            self._gate(tx, Permission.ADJUST_VARIABLES)
            self.ledger.set_fee_recipient(tx, recipient)

    def set_taxed_pair(self, caller: Account, account: Account, taxed: bool = True) -> None:
        with self._transition(caller, "set_taxed_pair") as tx:
            self._gate(tx, Permission.ADJUST_VARIABLES)
            self.ledger.set_taxed_pair(tx, account, taxed)

    def set_fee_exempt(self, caller: Account, account: Account, exempt: bool = True) -> None:
        with self._transition(caller, "set_fee_exempt") as tx:
            self._gate(tx, Permission.ADJUST_VARIABLES)
            self.ledger.set_fee_exempt(tx, account, exempt)

    # ════════════════════════════════════════════════════════════
    # Emission
    # ════════════════════════════════════════════════════════════

    def claim_staking_emission(self, caller: Account) -> int:
        """
        Mint all accrued staking emission to the staking address.

        Raises:
            EmissionInactive: if emission is off or no staking address is set.
            NothingToClaim: if nothing has accrued since the last claim.
        """
        with self._transition(caller, "claim_staking_emission") as tx:
            if not tx.state.emission_active or not tx.state.staking_address:
                raise EmissionInactive("Staking emission is not active")
            budget = self.budgets[EmissionChannel.STAKING]
            available = budget.require_available(tx)
            self._mint_staking(tx, available)
        return available

    def special_emission(self, caller: Account, amount: int) -> int:
        """Mint ``amount`` from the admin special channel to the caller."""
        with self._transition(caller, "special_emission") as tx:
            self._gate(tx, Permission.EMISSION)
            _non_negative("amount", amount)
            if amount == 0:
                raise AmountZero("Special emission amount must be greater than zero")
            self.budgets[EmissionChannel.SPECIAL].claim(tx, amount)
            self.ledger.mint(tx, caller, amount)
        return amount

    def distribute_game_rewards_best_effort(
        self,
        caller: Account,
        entries: Sequence[RewardInput],
    ) -> DistributionResult:
        with self._transition(caller, "distribute_game_rewards_best_effort") as tx:
            self._gate(tx, Permission.GAME_EMISSION)
            return self.distribution.best_effort(tx, self._entries(entries))

    def distribute_game_rewards_strict(
        self,
        caller: Account,
        entries: Sequence[RewardInput],
        declared_total: int,
    ) -> DistributionResult:
        with self._transition(caller, "distribute_game_rewards_strict") as tx:
            self._gate(tx, Permission.GAME_EMISSION)
            return self.distribution.strict(tx, self._entries(entries), declared_total)

    def distribute_fixed_award(
        self,
        caller: Account,
        award: FixedAward | str,
        accounts: Sequence[Account],
    ) -> DistributionResult:
        with self._transition(caller, "distribute_fixed_award") as tx:
            self._gate(tx, Permission.GAME_EMISSION)
            kind = self._award(award)
            amount = tx.state.winner_amount if kind is FixedAward.WINNER else tx.state.loser_amount
            return self.distribution.fixed_award(tx, accounts, amount)

    # ════════════════════════════════════════════════════════════
    # Transfers
    # ════════════════════════════════════════════════════════════

    def transfer(self, caller: Account, recipient: Account, amount: int) -> int:
        with self._transition(caller, "transfer") as tx:
            self._accrue_staking(tx)
            return self.ledger.transfer(tx, caller, recipient, amount)

    def approve(self, caller: Account, spender: Account, amount: int) -> None:
        with self._transition(caller, "approve") as tx:
            self.ledger.approve(tx, caller, spender, amount)

    def transfer_from(self, caller: Account, owner: Account, recipient: Account, amount: int) -> int:
        with self._transition(caller, "transfer_from") as tx:
            self._accrue_staking(tx)
            self.ledger.spend_allowance(tx, owner, caller, amount)
            return self.ledger.transfer(tx, owner, recipient, amount)

    # ════════════════════════════════════════════════════════════
    # Queries
    # ════════════════════════════════════════════════════════════

    @property
    def owner(self) -> Account:
        return self.state.owner

    @property
    def total_supply(self) -> int:
        return self.state.total_supply

    def balance_of(self, account: Account) -> int:
        return self.ledger.balance_of(self.state, account)

    def allowance(self, owner: Account, spender: Account) -> int:
        return self.ledger.allowance(self.state, owner, spender)

    def has_permission(self, account: Account, permission: PermissionRef) -> bool:
        return self.auth.has_permission(self.state, account, self.registry.resolve(permission))

    def permissions_of(self, account: Account) -> list[str]:
        return [p.label for p in self.auth.permissions_of(self.state, account)]

    def lock_of(self, permission: PermissionRef) -> PermissionLock:
        lock = self.state.locks.get(self.registry.resolve(permission), PermissionLock())
        return lock.model_copy()

    def emission_state(self, channel: EmissionChannel | str) -> EmissionState:
        return self.state.emission[self._channel(channel)].model_copy()

    def mintable(self, channel: EmissionChannel | str) -> int:
        """Budget a claim on ``channel`` would see right now."""
        with self._mutex:
            tx = Transition(state=self.state, caller="", now=self.clock())
            return self.budgets[self._channel(channel)].available(tx)

    # ── Internal ─────────────────────────────────────────────────

    def _accrue_staking(self, tx: Transition) -> None:
        if not tx.state.emission_active or not tx.state.staking_address:
            return
        available = self.budgets[EmissionChannel.STAKING].available(tx)
        if available > 0:
            self._mint_staking(tx, available)

    def _mint_staking(self, tx: Transition, amount: int) -> None:
        budget = self.budgets[EmissionChannel.STAKING]
        self.ledger.mint(tx, tx.state.staking_address, amount)
        budget.settle(tx, amount, amount)

    @staticmethod
    def _channel(channel: EmissionChannel | str) -> EmissionChannel:
        try:
            return EmissionChannel(channel)
        except ValueError:
            raise InvalidParameter(f"Unknown emission channel: {channel!r}") from None

    @staticmethod
    def _award(award: FixedAward | str) -> FixedAward:
        try:
            return FixedAward(award)
        except ValueError:
            raise InvalidParameter(f"Unknown fixed award: {award!r}") from None

    @staticmethod
    def _entries(entries: Sequence[RewardInput]) -> list[RewardEntry]:
        parsed = []
        for entry in entries:
            if isinstance(entry, RewardEntry):
                parsed.append(entry)
                continue
            account, amount = entry
            parsed.append(RewardEntry(account=account, amount=_non_negative("reward amount", amount)))
        return parsed
