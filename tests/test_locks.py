"""
Tests for permission locks.

Validates:
- Locked permissions cannot be exercised, granted or revoked
- Unlock only succeeds strictly after expiry and never happens on its own
- Lock / unlock audit events
- Custom lock policies
"""

from __future__ import annotations

import pytest

from timemint.core.clock import ManualClock
from timemint.core.schema import AuditEventType, PermissionLock
from timemint.engine import LedgerEngine
from timemint.errors import (
    InvalidParameter,
    NotAuthorized,
    PermissionLocked,
    StillLocked,
    UnknownPermission,
)
from timemint.governance.locks import LockPolicy

OWNER = "0xowner"
ALICE = "0xalice"
BOB = "0xbob"


class TestLockGating:
    """authorizedFor fails with PermissionLocked while a lock is set."""

    def setup_method(self):
        self.clock = ManualClock(1_000)
        self.engine = LedgerEngine(OWNER, clock=self.clock)
        self.engine.grant(OWNER, ALICE, "Emission")

    def test_lock_sets_expiry(self):
        lock = self.engine.lock_permission(OWNER, "Emission", 100)
        assert lock == PermissionLock(locked=True, expiry=1_100)
        assert self.engine.lock_of("Emission").locked

    def test_locked_permission_blocks_everyone(self):
        self.engine.lock_permission(OWNER, "Emission", 100)
        for caller in (OWNER, ALICE):
            with pytest.raises(PermissionLocked):
                self.engine.authorized_for(caller, "Emission")
        with pytest.raises(PermissionLocked):
            self.engine.special_emission(OWNER, 10)

    def test_locked_check_precedes_grant_check(self):
        """A caller without the grant still sees PermissionLocked."""
        self.engine.lock_permission(OWNER, "Emission", 100)
        with pytest.raises(PermissionLocked):
            self.engine.authorized_for(BOB, "Emission")

    def test_lock_blocks_grant_and_revoke_of_that_permission(self):
        self.engine.lock_permission(OWNER, "Emission", 100)
        with pytest.raises(PermissionLocked):
            self.engine.grant(OWNER, BOB, "Emission")
        with pytest.raises(PermissionLocked):
            self.engine.revoke(OWNER, ALICE, "Emission")
        assert self.engine.has_permission(ALICE, "Emission")
        assert not self.engine.has_permission(BOB, "Emission")

    def test_other_permissions_unaffected(self):
        self.engine.lock_permission(OWNER, "Emission", 100)
        self.engine.grant(OWNER, BOB, "GameEmission")
        self.engine.authorized_for(BOB, "GameEmission")

    def test_lock_requires_lock_permissions(self):
        with pytest.raises(NotAuthorized):
            self.engine.lock_permission(ALICE, "Emission", 100)
        assert not self.engine.lock_of("Emission").locked

    def test_locking_lock_permissions_freezes_locking(self):
        self.engine.lock_permission(OWNER, "LockPermissions", 50)
        with pytest.raises(PermissionLocked):
            self.engine.lock_permission(OWNER, "Emission", 10)

    def test_lock_unknown_permission(self):
        with pytest.raises(UnknownPermission):
            self.engine.lock_permission(OWNER, "Everything", 10)

    def test_negative_duration_rejected(self):
        with pytest.raises(InvalidParameter):
            self.engine.lock_permission(OWNER, "Emission", -1)


class TestUnlock:
    """unlockPermission succeeds only strictly after expiry."""

    def setup_method(self):
        self.clock = ManualClock(1_000)
        self.engine = LedgerEngine(OWNER, clock=self.clock)
        self.engine.lock_permission(OWNER, "GameEmission", 100)

    def test_unlock_before_and_at_expiry_fails(self):
        for now in (1_000, 1_050, 1_100):
            self.clock.set(now)
            with pytest.raises(StillLocked):
                self.engine.unlock_permission(BOB, "GameEmission")
        assert self.engine.lock_of("GameEmission").locked

    def test_unlock_after_expiry_by_anyone(self):
        self.clock.set(1_101)
        lock = self.engine.unlock_permission(BOB, "GameEmission")
        assert not lock.locked
        self.engine.authorized_for(OWNER, "GameEmission")

    def test_lock_does_not_clear_itself(self):
        self.clock.set(10_000)
        with pytest.raises(PermissionLocked):
            self.engine.authorized_for(OWNER, "GameEmission")

    def test_zero_duration_lock(self):
        self.engine.lock_permission(OWNER, "Emission", 0)
        with pytest.raises(PermissionLocked):
            self.engine.authorized_for(OWNER, "Emission")
        with pytest.raises(StillLocked):
            self.engine.unlock_permission(OWNER, "Emission")
        self.clock.advance(1)
        self.engine.unlock_permission(OWNER, "Emission")
        self.engine.authorized_for(OWNER, "Emission")

    def test_events(self):
        self.clock.set(1_101)
        self.engine.unlock_permission(BOB, "GameEmission")
        # Unlocking an unlocked permission changes nothing and records nothing
        self.engine.unlock_permission(BOB, "GameEmission")

        locked = self.engine.audit_log.events(AuditEventType.PERMISSION_LOCKED)
        unlocked = self.engine.audit_log.events(AuditEventType.PERMISSION_UNLOCKED)
        assert [e.payload for e in locked] == [{"permission": "GameEmission", "expiry": 1_100}]
        assert [e.payload for e in unlocked] == [{"permission": "GameEmission"}]
        assert unlocked[0].caller == BOB


class CappedLockPolicy(LockPolicy):
    """Refuses locks longer than a day."""

    def lock(self, lock, now, duration):
        if duration > 86_400:
            raise InvalidParameter("Lock longer than a day")
        super().lock(lock, now, duration)


class TestLockPolicy:
    """The lock behaviour is a replaceable strategy."""

    def test_custom_policy_applies(self):
        engine = LedgerEngine(OWNER, clock=ManualClock(0), lock_policy=CappedLockPolicy())
        with pytest.raises(InvalidParameter):
            engine.lock_permission(OWNER, "Emission", 86_401)
        assert not engine.lock_of("Emission").locked
        engine.lock_permission(OWNER, "Emission", 3_600)
        assert engine.lock_of("Emission").expiry == 3_600
