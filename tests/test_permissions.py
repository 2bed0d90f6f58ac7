"""
Tests for permission enforcement.

Validates:
- Closed permission registry and unknown-name rejection
- Owner bootstrap and the owner invariant
- Grant / revoke semantics and their audit events
- Ownership transfer
"""

from __future__ import annotations

import pytest

from timemint.core.clock import ManualClock
from timemint.core.schema import AuditEventType, Permission
from timemint.engine import LedgerEngine
from timemint.errors import (
    AuthorizationError,
    CannotRevokeOwner,
    NotAuthorized,
    NotOwner,
    UnknownPermission,
    ZeroAddress,
)
from timemint.governance.permissions import PermissionRegistry

OWNER = "0xowner"
ALICE = "0xalice"
BOB = "0xbob"

ALL_NAMES = [
    "Authorize",
    "Unauthorize",
    "LockPermissions",
    "AdjustVariables",
    "Emission",
    "AdjustMinting",
    "GameEmission",
]


class TestPermissionRegistry:
    """The name <-> identifier mapping is fixed and strict."""

    def setup_method(self):
        self.registry = PermissionRegistry()

    def test_names_map_to_stable_ids(self):
        for expected_id, name in enumerate(ALL_NAMES):
            assert self.registry.resolve(name) == expected_id
            assert self.registry.name_of(Permission(expected_id)) == name

    def test_accepts_ids_and_members(self):
        assert self.registry.resolve(4) is Permission.EMISSION
        assert self.registry.resolve(Permission.GAME_EMISSION) is Permission.GAME_EMISSION

    def test_unknown_name_rejected(self):
        """Unknown names must not alias to Authorize."""
        with pytest.raises(UnknownPermission):
            self.registry.resolve("Mint")

    def test_unknown_id_rejected(self):
        with pytest.raises(UnknownPermission):
            self.registry.resolve(7)
        with pytest.raises(UnknownPermission):
            self.registry.resolve(True)

    def test_names_are_case_sensitive(self):
        with pytest.raises(UnknownPermission):
            self.registry.resolve("authorize")

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            self.registry._by_name["Mint"] = Permission.AUTHORIZE

    def test_all_lists_seven_permissions(self):
        assert len(self.registry.all()) == 7
        assert self.registry.names() == ALL_NAMES


class TestGrants:
    """Grant and revoke operations."""

    def setup_method(self):
        self.clock = ManualClock(1_000)
        self.engine = LedgerEngine(OWNER, clock=self.clock)

    def test_owner_holds_everything_at_construction(self):
        assert self.engine.permissions_of(OWNER) == ALL_NAMES
        for name in ALL_NAMES:
            self.engine.authorized_for(OWNER, name)

    def test_stranger_not_authorized(self):
        with pytest.raises(NotAuthorized) as excinfo:
            self.engine.authorized_for(ALICE, "Emission")
        assert excinfo.value.code == "not_authorized"
        assert isinstance(excinfo.value, AuthorizationError)

    def test_grant_single_permission(self):
        self.engine.grant(OWNER, ALICE, "Emission")
        assert self.engine.has_permission(ALICE, "Emission")
        assert not self.engine.has_permission(ALICE, "GameEmission")

    def test_grant_requires_authorize(self):
        with pytest.raises(NotAuthorized):
            self.engine.grant(ALICE, BOB, "Emission")
        assert self.engine.permissions_of(BOB) == []

    def test_delegated_authorizer_can_grant(self):
        self.engine.grant(OWNER, ALICE, "Authorize")
        self.engine.grant(ALICE, BOB, "GameEmission")
        assert self.engine.has_permission(BOB, "GameEmission")

    def test_grant_many_and_all(self):
        self.engine.grant_many(OWNER, ALICE, ["Emission", "AdjustMinting"])
        assert self.engine.permissions_of(ALICE) == ["Emission", "AdjustMinting"]
        self.engine.grant_all(OWNER, BOB)
        assert self.engine.permissions_of(BOB) == ALL_NAMES

    def test_grant_many_with_unknown_name_changes_nothing(self):
        with pytest.raises(UnknownPermission):
            self.engine.grant_many(OWNER, ALICE, ["Emission", "Mint"])
        assert self.engine.permissions_of(ALICE) == []

    def test_grant_to_zero_address_rejected(self):
        with pytest.raises(ZeroAddress):
            self.engine.grant(OWNER, "0x0000000000000000000000000000000000000000", "Emission")

    def test_grant_events_only_for_changes(self):
        before = len(self.engine.audit_log.events(AuditEventType.GRANT_CHANGED))
        self.engine.grant(OWNER, ALICE, "Emission")
        self.engine.grant(OWNER, ALICE, "Emission")
        events = self.engine.audit_log.events(AuditEventType.GRANT_CHANGED)
        assert len(events) == before + 1
        assert events[-1].payload == {"account": ALICE, "permission": "Emission", "granted": True}
        assert events[-1].caller == OWNER

    def test_revoke(self):
        self.engine.grant_all(OWNER, ALICE)
        self.engine.revoke(OWNER, ALICE, "Emission")
        assert not self.engine.has_permission(ALICE, "Emission")
        self.engine.revoke_many(OWNER, ALICE, ["Authorize", "Unauthorize"])
        assert self.engine.permissions_of(ALICE) == [
            "LockPermissions", "AdjustVariables", "AdjustMinting", "GameEmission",
        ]
        self.engine.revoke_all(OWNER, ALICE)
        assert self.engine.permissions_of(ALICE) == []

    def test_revoke_requires_unauthorize(self):
        self.engine.grant(OWNER, ALICE, "Authorize")
        self.engine.grant(OWNER, BOB, "Emission")
        with pytest.raises(NotAuthorized):
            self.engine.revoke(ALICE, BOB, "Emission")
        assert self.engine.has_permission(BOB, "Emission")

    def test_revoke_emits_events(self):
        self.engine.grant_many(OWNER, ALICE, ["Emission", "GameEmission"])
        self.engine.revoke_all(OWNER, ALICE)
        events = self.engine.audit_log.events(AuditEventType.REVOKE_CHANGED)
        assert [e.payload["permission"] for e in events] == ["Emission", "GameEmission"]


class TestOwnerInvariant:
    """The owner always holds every permission."""

    def setup_method(self):
        self.engine = LedgerEngine(OWNER, clock=ManualClock(1_000))
        self.engine.grant_all(OWNER, ALICE)

    def test_owner_cannot_revoke_self(self):
        with pytest.raises(CannotRevokeOwner):
            self.engine.revoke(OWNER, OWNER, "Authorize")

    @pytest.mark.parametrize("caller", [OWNER, ALICE, BOB])
    def test_revoke_owner_fails_regardless_of_caller(self, caller):
        with pytest.raises(CannotRevokeOwner):
            self.engine.revoke(caller, OWNER, "Emission")
        with pytest.raises(CannotRevokeOwner):
            self.engine.revoke_all(caller, OWNER)
        assert self.engine.permissions_of(OWNER) == ALL_NAMES


class TestOwnershipTransfer:
    """transferOwnership moves every grant atomically."""

    def setup_method(self):
        self.engine = LedgerEngine(OWNER, clock=ManualClock(1_000))

    def test_transfer_moves_all_grants(self):
        self.engine.transfer_ownership(OWNER, BOB)
        assert self.engine.owner == BOB
        assert self.engine.permissions_of(OWNER) == []
        assert self.engine.permissions_of(BOB) == ALL_NAMES

    def test_old_owner_loses_authority(self):
        self.engine.transfer_ownership(OWNER, BOB)
        with pytest.raises(NotAuthorized):
            self.engine.grant(OWNER, ALICE, "Emission")
        with pytest.raises(NotOwner):
            self.engine.transfer_ownership(OWNER, OWNER)

    def test_new_owner_is_protected(self):
        self.engine.transfer_ownership(OWNER, BOB)
        with pytest.raises(CannotRevokeOwner):
            self.engine.revoke(BOB, BOB, "Authorize")
        # The former owner is now an ordinary account
        self.engine.grant(BOB, OWNER, "Emission")
        self.engine.revoke(BOB, OWNER, "Emission")

    def test_only_owner_may_transfer(self):
        self.engine.grant_all(OWNER, ALICE)
        with pytest.raises(NotOwner):
            self.engine.transfer_ownership(ALICE, ALICE)
        assert self.engine.owner == OWNER

    def test_transfer_to_zero_address_rejected(self):
        with pytest.raises(ZeroAddress):
            self.engine.transfer_ownership(OWNER, "0x0000000000000000000000000000000000000000")

    def test_transfer_event_follows_grant_changes(self):
        self.engine.transfer_ownership(OWNER, BOB)
        events = self.engine.audit_log.events()
        tail = events[-15:]
        assert [e.event_type for e in tail[:7]] == [AuditEventType.REVOKE_CHANGED] * 7
        assert [e.event_type for e in tail[7:14]] == [AuditEventType.GRANT_CHANGED] * 7
        assert tail[14].event_type == AuditEventType.OWNERSHIP_TRANSFERRED
        assert tail[14].payload == {"previous_owner": OWNER, "new_owner": BOB}
