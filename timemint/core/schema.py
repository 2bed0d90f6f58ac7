"""
Ledger Schema — Pydantic models for every entity the engine keeps.

These models are the canonical data structures of the permissioned ledger:
the closed permission set, per-permission locks, the three emission channels,
balances and allowances, and the append-only audit events that record every
state change.

All mutable engine state lives in a single ``EngineState`` object. Operations
receive it explicitly through a ``Transition`` and never reach for module
level state.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, computed_field

Account = str

ZERO_ADDRESS: Account = "0x0000000000000000000000000000000000000000"

MAX_FEE_PERCENT = 10


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Permission(enum.IntEnum):
    """The closed set of named permissions. Identifiers are stable."""

    AUTHORIZE = 0
    UNAUTHORIZE = 1
    LOCK_PERMISSIONS = 2
    ADJUST_VARIABLES = 3
    EMISSION = 4
    ADJUST_MINTING = 5
    GAME_EMISSION = 6

    @property
    def label(self) -> str:
        return PERMISSION_NAMES[self]


PERMISSION_NAMES: dict[Permission, str] = {
    Permission.AUTHORIZE: "Authorize",
    Permission.UNAUTHORIZE: "Unauthorize",
    Permission.LOCK_PERMISSIONS: "LockPermissions",
    Permission.ADJUST_VARIABLES: "AdjustVariables",
    Permission.EMISSION: "Emission",
    Permission.ADJUST_MINTING: "AdjustMinting",
    Permission.GAME_EMISSION: "GameEmission",
}


class EmissionChannel(str, enum.Enum):
    """Independent time-budgeted minting pools."""

    STAKING = "staking"
    SPECIAL = "special"  # Administrator special emission
    GAME = "game"  # Game reward distribution


class AuditEventType(str, enum.Enum):
    """Types of audit events. Mints are transfers from the zero address."""

    GRANT_CHANGED = "grant_changed"
    REVOKE_CHANGED = "revoke_changed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    PERMISSION_LOCKED = "permission_locked"
    PERMISSION_UNLOCKED = "permission_unlocked"
    TRANSFER = "transfer"
    APPROVAL = "approval"
    PARAMETER_CHANGED = "parameter_changed"


class FixedAward(str, enum.Enum):
    """Fixed per-recipient game awards."""

    WINNER = "winner"
    LOSER = "loser"


# ════════════════════════════════════════════════════════════════
# State Models
# ════════════════════════════════════════════════════════════════


class PermissionLock(BaseModel):
    """
    Time lock on a single permission.

    While ``locked`` is set the permission can be neither exercised nor
    granted/revoked. The flag is only cleared by an explicit unlock issued
    strictly after ``expiry``.
    """

    locked: bool = False
    expiry: int = Field(default=0, description="Unix timestamp the lock runs until")


class EmissionState(BaseModel):
    """Rate, cap and claim clock of one emission channel."""

    rate_per_second: int = Field(ge=0)
    cap: int = Field(ge=0)
    last_claim_timestamp: int = Field(
        description="Only moves forward, by the time equivalent of claimed tokens"
    )


class FeeConfig(BaseModel):
    """Fee-on-transfer parameters."""

    fee_percent: int = Field(default=0, ge=0, le=MAX_FEE_PERCENT)
    fee_recipient: Account = ""
    taxed_pairs: set[Account] = Field(
        default_factory=set, description="Trading pairs whose transfers pay the fee"
    )
    exempt: set[Account] = Field(
        default_factory=set, description="Accounts that never pay the fee"
    )


def _unlocked_table() -> dict[Permission, PermissionLock]:
    return {permission: PermissionLock() for permission in Permission}


class EngineState(BaseModel):
    """Complete mutable state of one ledger engine."""

    owner: Account
    grants: dict[Account, set[Permission]] = Field(default_factory=dict)
    locks: dict[Permission, PermissionLock] = Field(default_factory=_unlocked_table)

    balances: dict[Account, int] = Field(default_factory=dict)
    allowances: dict[Account, dict[Account, int]] = Field(default_factory=dict)
    total_supply: int = 0

    emission: dict[EmissionChannel, EmissionState]
    emission_active: bool = False
    staking_address: Account = ""

    winner_amount: int = Field(default=0, ge=0)
    loser_amount: int = Field(default=0, ge=0)

    fees: FeeConfig = Field(default_factory=FeeConfig)


# ════════════════════════════════════════════════════════════════
# Audit Models
# ════════════════════════════════════════════════════════════════


class AuditEvent(BaseModel):
    """
    A single audit event.

    Events are hash chained: each stores the SHA-256 of its predecessor so
    that any retroactive alteration of the trail is detectable.
    """

    sequence_number: int = Field(default=0, description="Assigned when the event is committed")
    event_type: AuditEventType
    timestamp: int
    caller: Account = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = ""
    event_hash: str = ""

    def compute_hash(self) -> str:
        """Hash = SHA-256(previous_hash || canonical_json(event fields))."""
        hashable = {
            "sequence_number": self.sequence_number,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "caller": self.caller,
            "payload": self.payload,
            "previous_hash": self.previous_hash,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256(
            (self.previous_hash + canonical).encode("utf-8")
        ).hexdigest()


# ════════════════════════════════════════════════════════════════
# Distribution Models
# ════════════════════════════════════════════════════════════════


class RewardEntry(BaseModel):
    """One (recipient, amount) pair of a game reward batch."""

    account: Account
    amount: int = Field(ge=0)


class DistributionResult(BaseModel):
    """Outcome of a committed reward batch."""

    minted: list[RewardEntry] = Field(default_factory=list)
    budget: int = Field(description="Game budget available when the batch started")
    skipped: int = Field(default=0, description="Entries left unprocessed")

    @computed_field
    @property
    def total(self) -> int:
        return sum(entry.amount for entry in self.minted)


# ════════════════════════════════════════════════════════════════
# Transition Context
# ════════════════════════════════════════════════════════════════


@dataclass
class Transition:
    """
    Context of one state transition.

    ``state`` is a private working copy; ``now`` is read from the clock once.
    Events accumulate in order and are published only if the transition
    commits.
    """

    state: EngineState
    caller: Account
    now: int
    events: list[AuditEvent] = field(default_factory=list)

    def emit(self, event_type: AuditEventType, **payload: Any) -> None:
        self.events.append(
            AuditEvent(
                event_type=event_type,
                timestamp=self.now,
                caller=self.caller,
                payload=payload,
            )
        )
