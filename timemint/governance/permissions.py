"""
Permission Enforcement — named permissions, grants and ownership.

Every privileged operation passes through ``AuthorizationStore.authorized_for``
before it touches balances or emission budgets. The check fails with
``PermissionLocked`` while the permission is frozen and with
``NotAuthorized`` when the caller does not hold it.

Permission names are resolved at the boundary by ``PermissionRegistry``.
Unknown names are rejected with ``UnknownPermission``; they never alias to
the first permission.

Ownership invariant: the current owner always holds every permission. The
owner's grants cannot be revoked, and transferring ownership moves the full
grant set to the new owner within the same transition.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from types import MappingProxyType

from timemint.core.schema import (
    PERMISSION_NAMES,
    ZERO_ADDRESS,
    Account,
    AuditEventType,
    EngineState,
    Permission,
    PermissionLock,
    Transition,
)
from timemint.errors import (
    CannotRevokeOwner,
    NotAuthorized,
    NotOwner,
    UnknownPermission,
    ZeroAddress,
)
from timemint.governance.locks import PermissionLockTable

logger = logging.getLogger(__name__)


class PermissionRegistry:
    """Immutable mapping between permission names and identifiers."""

    def __init__(self) -> None:
        self._by_name = MappingProxyType(
            {name: permission for permission, name in PERMISSION_NAMES.items()}
        )

    def resolve(self, value: str | int | Permission) -> Permission:
        """
        Resolve a name, identifier or enum member to a ``Permission``.

        Raises:
            UnknownPermission: for names or identifiers outside the closed set.
        """
        if isinstance(value, Permission):
            return value
        if isinstance(value, bool):
            raise UnknownPermission(f"Not a permission: {value!r}")
        if isinstance(value, int):
            try:
                return Permission(value)
            except ValueError:
                raise UnknownPermission(f"Unknown permission id: {value}") from None
        if isinstance(value, str):
            permission = self._by_name.get(value)
            if permission is None:
                raise UnknownPermission(
                    f"Unknown permission name: {value!r}",
                    details={"known": list(self._by_name)},
                )
            return permission
        raise UnknownPermission(f"Not a permission: {value!r}")

    def resolve_many(self, values: Iterable[str | int | Permission]) -> list[Permission]:
        return [self.resolve(value) for value in values]

    def name_of(self, permission: Permission) -> str:
        return PERMISSION_NAMES[permission]

    def names(self) -> list[str]:
        return list(self._by_name)

    def all(self) -> list[Permission]:
        return list(Permission)


class AuthorizationStore:
    """
    Per-account grants, ownership and permission locks.

    The store holds no state of its own: grants live in ``EngineState.grants``
    and every operation receives the transition it acts on.
    """

    def __init__(self, locks: PermissionLockTable | None = None) -> None:
        self.locks = locks if locks is not None else PermissionLockTable()

    # ── Queries ──────────────────────────────────────────────────

    @staticmethod
    def bootstrap(state: EngineState, owner: Account) -> None:
        """Seed the owner with every permission."""
        state.owner = owner
        state.grants[owner] = set(Permission)

    @staticmethod
    def has_permission(state: EngineState, account: Account, permission: Permission) -> bool:
        return permission in state.grants.get(account, set())

    @staticmethod
    def permissions_of(state: EngineState, account: Account) -> list[Permission]:
        return sorted(state.grants.get(account, set()))

    def authorized_for(self, tx: Transition, caller: Account, permission: Permission) -> None:
        """
        Gate a privileged call.

        Raises:
            PermissionLocked: if the permission is currently locked.
            NotAuthorized: if ``caller`` does not hold the permission.
        """
        self.locks.require_unlocked(tx, permission)
        if not self.has_permission(tx.state, caller, permission):
            raise NotAuthorized(
                f"{caller} lacks permission {permission.label}",
                details={"caller": caller, "permission": permission.label},
            )

    # ── Grants ───────────────────────────────────────────────────

    def grant(self, tx: Transition, actor: Account, permission: Permission) -> None:
        self.grant_many(tx, actor, [permission])

    def grant_all(self, tx: Transition, actor: Account) -> None:
        self.grant_many(tx, actor, list(Permission))

    def grant_many(self, tx: Transition, actor: Account, permissions: Iterable[Permission]) -> None:
        permissions = list(permissions)
        self.authorized_for(tx, tx.caller, Permission.AUTHORIZE)
        if actor == ZERO_ADDRESS:
            raise ZeroAddress("Cannot grant permissions to the zero address")
        for permission in permissions:
            self.locks.require_unlocked(tx, permission)
        self._set(tx, actor, permissions, granted=True)

    # ── Revocations ──────────────────────────────────────────────

    def revoke(self, tx: Transition, actor: Account, permission: Permission) -> None:
        self.revoke_many(tx, actor, [permission])

    def revoke_all(self, tx: Transition, actor: Account) -> None:
        self.revoke_many(tx, actor, list(Permission))

    def revoke_many(self, tx: Transition, actor: Account, permissions: Iterable[Permission]) -> None:
        permissions = list(permissions)
        if actor == tx.state.owner:
            raise CannotRevokeOwner(
                "The owner's permissions cannot be revoked",
                details={"owner": actor},
            )
        self.authorized_for(tx, tx.caller, Permission.UNAUTHORIZE)
        for permission in permissions:
            self.locks.require_unlocked(tx, permission)
        self._set(tx, actor, permissions, granted=False)

    # ── Ownership ────────────────────────────────────────────────

    def transfer_ownership(self, tx: Transition, new_owner: Account) -> None:
        """Move ownership and the complete grant set to ``new_owner``."""
        old_owner = tx.state.owner
        if tx.caller != old_owner:
            raise NotOwner(f"{tx.caller} is not the owner")
        if new_owner == ZERO_ADDRESS:
            raise ZeroAddress("Ownership cannot be transferred to the zero address")

        if new_owner != old_owner:
            self._set(tx, old_owner, list(Permission), granted=False)
            self._set(tx, new_owner, list(Permission), granted=True)
            tx.state.owner = new_owner
        tx.emit(
            AuditEventType.OWNERSHIP_TRANSFERRED,
            previous_owner=old_owner,
            new_owner=new_owner,
        )
        logger.info("Ownership transferred: %s -> %s", old_owner, new_owner)

    # ── Locks ────────────────────────────────────────────────────

    def lock_permission(self, tx: Transition, permission: Permission, duration: int) -> PermissionLock:
        self.authorized_for(tx, tx.caller, Permission.LOCK_PERMISSIONS)
        return self.locks.lock(tx, permission, duration)

    def unlock_permission(self, tx: Transition, permission: Permission) -> PermissionLock:
        return self.locks.unlock(tx, permission)

    # ── Internal ─────────────────────────────────────────────────

    @staticmethod
    def _set(tx: Transition, actor: Account, permissions: list[Permission], granted: bool) -> None:
        held = tx.state.grants.setdefault(actor, set())
        event_type = AuditEventType.GRANT_CHANGED if granted else AuditEventType.REVOKE_CHANGED
        for permission in permissions:
            if (permission in held) == granted:
                continue
            if granted:
                held.add(permission)
            else:
                held.discard(permission)
            tx.emit(event_type, account=actor, permission=permission.label, granted=granted)
            logger.info(
                "Grant changed: account=%s permission=%s granted=%s by=%s",
                actor, permission.label, granted, tx.caller,
            )
