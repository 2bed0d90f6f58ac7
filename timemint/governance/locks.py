"""
Permission Locks — time-limited freezes on individual permissions.

A locked permission can neither be exercised nor granted or revoked by
anyone. Locks run until an expiry timestamp and are never cleared
automatically: once ``now > expiry`` anybody may issue the unlock, and until
that happens the permission stays frozen.

The lock/unlock behaviour itself is a strategy (``LockPolicy``) so that a
deployment can substitute its own rules, for example a maximum duration,
without subclassing the table.
"""

from __future__ import annotations

import logging

from timemint.core.schema import (
    AuditEventType,
    Permission,
    PermissionLock,
    Transition,
)
from timemint.errors import InvalidParameter, PermissionLocked, StillLocked

logger = logging.getLogger(__name__)


class LockPolicy:
    """Default lock/unlock rules. Override either method to customise."""

    def lock(self, lock: PermissionLock, now: int, duration: int) -> None:
        if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
            raise InvalidParameter(f"Lock duration must be a non-negative integer, got {duration!r}")
        lock.locked = True
        lock.expiry = now + duration

    def unlock(self, lock: PermissionLock, now: int) -> None:
        if now <= lock.expiry:
            raise StillLocked(
                f"Lock runs until {lock.expiry}; unlock allowed after that",
                details={"expiry": lock.expiry, "now": now},
            )
        lock.locked = False


class PermissionLockTable:
    """Per-permission lock flags and expiries stored in ``EngineState.locks``."""

    def __init__(self, policy: LockPolicy | None = None) -> None:
        self.policy = policy if policy is not None else LockPolicy()

    @staticmethod
    def get(tx: Transition, permission: Permission) -> PermissionLock:
        return tx.state.locks.setdefault(permission, PermissionLock())

    def is_locked(self, tx: Transition, permission: Permission) -> bool:
        return self.get(tx, permission).locked

    def require_unlocked(self, tx: Transition, permission: Permission) -> None:
        lock = self.get(tx, permission)
        if lock.locked:
            raise PermissionLocked(
                f"Permission {permission.label} is locked",
                details={"permission": permission.label, "expiry": lock.expiry},
            )

    def lock(self, tx: Transition, permission: Permission, duration: int) -> PermissionLock:
        """Lock ``permission`` until ``now + duration``. Caller gating is done upstream."""
        lock = self.get(tx, permission)
        self.policy.lock(lock, tx.now, duration)
        tx.emit(
            AuditEventType.PERMISSION_LOCKED,
            permission=permission.label,
            expiry=lock.expiry,
        )
        logger.info(
            "Permission locked: permission=%s expiry=%d by=%s",
            permission.label, lock.expiry, tx.caller,
        )
        return lock

    def unlock(self, tx: Transition, permission: Permission) -> PermissionLock:
        """Clear the lock once its expiry has passed. Open to any caller."""
        was_locked = self.is_locked(tx, permission)
        lock = self.get(tx, permission)
        self.policy.unlock(lock, tx.now)
        if was_locked:
            tx.emit(AuditEventType.PERMISSION_UNLOCKED, permission=permission.label)
            logger.info("Permission unlocked: permission=%s", permission.label)
        return lock
