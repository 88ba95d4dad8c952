"""
access.py - Role-based permission checks for privileged lending operations

Privileged calls (configuration changes, vault borrow/repay on behalf of
the core) are gated by an explicit capability check against the caller
identity, independent of any class hierarchy.

Roles:
- ADMIN: grants and revokes roles
- MANAGER: loads protocol configuration
- CORE: the lending core's account; may move vault funds for positions
"""

from __future__ import annotations
from contextlib import contextmanager
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set
import logging

from .core import AlreadyInitialized, Unauthorized, ZeroAddress

logger = logging.getLogger(__name__)


class Role(Enum):
    """Roles recognised by the lending core and vault."""
    ADMIN = "admin"
    MANAGER = "manager"
    CORE = "core"


class AccessControl:
    """
    Role -> accounts table with an audit trail of grants and revocations.

    Usage:
        access = AccessControl()
        access.bootstrap("governor")
        access.grant_role("governor", Role.CORE, "lending_core")
        access.require_role(Role.CORE, caller)   # raises Unauthorized
    """

    def __init__(self):
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}
        self._bootstrapped = False
        self.audit_log: List[Dict[str, str]] = []

    def bootstrap(self, admin: str) -> None:
        """
        Install the first ADMIN (who is also MANAGER). Allowed exactly once.

        Raises:
            AlreadyInitialized: on a second call
            ZeroAddress: if admin is empty
        """
        if self._bootstrapped:
            raise AlreadyInitialized("Access control already bootstrapped")
        if not admin:
            raise ZeroAddress("admin cannot be empty")
        self._members[Role.ADMIN].add(admin)
        self._members[Role.MANAGER].add(admin)
        self._bootstrapped = True
        self._audit("bootstrap", Role.ADMIN, admin, admin)
        logger.info("Access control bootstrapped with admin %s", admin)

    @property
    def is_bootstrapped(self) -> bool:
        return self._bootstrapped

    def has_role(self, role: Role, account: Optional[str]) -> bool:
        return bool(account) and account in self._members[role]

    def require_role(self, role: Role, caller: Optional[str]) -> None:
        """Raise Unauthorized unless caller holds role."""
        if not self.has_role(role, caller):
            logger.warning("Unauthorized: %s lacks role %s", caller, role.value)
            raise Unauthorized(f"{caller} lacks role {role.value}")

    def require_any_role(self, roles: List[Role], caller: Optional[str]) -> None:
        if not any(self.has_role(role, caller) for role in roles):
            names = ", ".join(r.value for r in roles)
            logger.warning("Unauthorized: %s lacks any of %s", caller, names)
            raise Unauthorized(f"{caller} lacks any of roles [{names}]")

    def grant_role(self, caller: str, role: Role, account: str) -> None:
        self.require_role(Role.ADMIN, caller)
        if not account:
            raise ZeroAddress("account cannot be empty")
        self._members[role].add(account)
        self._audit("grant", role, account, caller)
        logger.info("%s granted %s to %s", caller, role.value, account)

    def revoke_role(self, caller: str, role: Role, account: str) -> None:
        self.require_role(Role.ADMIN, caller)
        if role == Role.ADMIN and self._members[Role.ADMIN] == {account}:
            raise Unauthorized("Cannot revoke the last admin")
        self._members[role].discard(account)
        self._audit("revoke", role, account, caller)
        logger.info("%s revoked %s from %s", caller, role.value, account)

    def members(self, role: Role) -> Set[str]:
        return set(self._members[role])

    @contextmanager
    def atomic(self) -> Iterator[AccessControl]:
        """Restore roles, bootstrap flag and audit log if the block raises."""
        members = {role: set(accounts) for role, accounts in self._members.items()}
        bootstrapped = self._bootstrapped
        log_length = len(self.audit_log)
        try:
            yield self
        except BaseException:
            self._members = members
            self._bootstrapped = bootstrapped
            del self.audit_log[log_length:]
            raise

    def _audit(self, action: str, role: Role, account: str, caller: str) -> None:
        self.audit_log.append({
            'action': action,
            'role': role.value,
            'account': account,
            'caller': caller,
        })
