"""
test_access_guards.py - Unit tests for access.py and guards.py

Tests:
- Role bootstrap, grants, revocations and audit trail
- Slippage checks in both directions
- Same-block guard
- Reentrancy guard
"""

import pytest
from decimal import Decimal

from lending import (
    Role, AccessControl, SameBlockGuard, ReentrancyGuard,
    validate_slippage_bps, check_min_slippage, check_max_slippage,
    AlreadyInitialized, Unauthorized, ZeroAddress, InvalidSlippage,
    MEVSameBlockOperation, MEVSlippageExceeded, ReentrantCall,
)


class TestAccessControl:

    def _access(self):
        access = AccessControl()
        access.bootstrap("governor")
        return access

    def test_bootstrap_grants_admin_and_manager(self):
        access = self._access()
        assert access.has_role(Role.ADMIN, "governor")
        assert access.has_role(Role.MANAGER, "governor")
        assert not access.has_role(Role.CORE, "governor")

    def test_bootstrap_once(self):
        access = self._access()
        with pytest.raises(AlreadyInitialized):
            access.bootstrap("mallory")

    def test_bootstrap_requires_account(self):
        with pytest.raises(ZeroAddress):
            AccessControl().bootstrap("")

    def test_grant_and_require(self):
        access = self._access()
        access.grant_role("governor", Role.CORE, "lending_core")
        access.require_role(Role.CORE, "lending_core")
        with pytest.raises(Unauthorized):
            access.require_role(Role.CORE, "alice")

    def test_only_admin_grants(self):
        access = self._access()
        with pytest.raises(Unauthorized):
            access.grant_role("alice", Role.MANAGER, "alice")

    def test_require_any_role(self):
        access = self._access()
        access.require_any_role([Role.CORE, Role.ADMIN], "governor")
        with pytest.raises(Unauthorized):
            access.require_any_role([Role.CORE, Role.ADMIN], "alice")

    def test_revoke(self):
        access = self._access()
        access.grant_role("governor", Role.MANAGER, "ops")
        access.revoke_role("governor", Role.MANAGER, "ops")
        assert not access.has_role(Role.MANAGER, "ops")

    def test_cannot_revoke_last_admin(self):
        access = self._access()
        with pytest.raises(Unauthorized, match="last admin"):
            access.revoke_role("governor", Role.ADMIN, "governor")

    def test_audit_log(self):
        access = self._access()
        access.grant_role("governor", Role.CORE, "lending_core")
        assert [entry['action'] for entry in access.audit_log] == ["bootstrap", "grant"]
        assert access.members(Role.CORE) == {"lending_core"}

    def test_atomic_restores_on_error(self):
        access = self._access()
        with pytest.raises(RuntimeError):
            with access.atomic():
                access.grant_role("governor", Role.CORE, "lending_core")
                raise RuntimeError("later step failed")
        assert not access.has_role(Role.CORE, "lending_core")
        assert [entry['action'] for entry in access.audit_log] == ["bootstrap"]

    def test_atomic_keeps_successful_changes(self):
        access = AccessControl()
        with access.atomic():
            access.bootstrap("governor")
        assert access.is_bootstrapped


class TestSlippage:

    def test_bps_bounds(self):
        assert validate_slippage_bps(100) == Decimal("0.01")
        for bad in (-1, 10001, Decimal("NaN")):
            with pytest.raises(InvalidSlippage):
                validate_slippage_bps(bad)

    def test_min_check(self):
        check_min_slippage(Decimal("99"), Decimal("100"), 100)
        with pytest.raises(MEVSlippageExceeded):
            check_min_slippage(Decimal("98.99"), Decimal("100"), 100)

    def test_max_check(self):
        check_max_slippage(Decimal("101"), Decimal("100"), 100)
        with pytest.raises(MEVSlippageExceeded):
            check_max_slippage(Decimal("101.01"), Decimal("100"), 100)

    def test_zero_tolerance_is_exact(self):
        check_min_slippage(Decimal("100"), Decimal("100"), 0)
        check_max_slippage(Decimal("100"), Decimal("100"), 0)
        with pytest.raises(MEVSlippageExceeded):
            check_max_slippage(Decimal("100.000001"), Decimal("100"), 0)

    def test_invalid_bps_checked_before_values(self):
        with pytest.raises(InvalidSlippage):
            check_min_slippage(Decimal("100"), Decimal("100"), 20000)


class TestSameBlockGuard:

    def test_one_operation_per_block(self):
        guard = SameBlockGuard()
        guard.check("alice", 5)
        guard.record("alice", 5)
        with pytest.raises(MEVSameBlockOperation):
            guard.check("alice", 5)
        guard.check("bob", 5)
        guard.check("alice", 6)

    def test_check_alone_does_not_consume_block(self):
        guard = SameBlockGuard()
        guard.check("alice", 5)
        guard.check("alice", 5)
        assert guard.last_block("alice") is None


class TestReentrancyGuard:

    def test_hold_blocks_nested_calls(self):
        guard = ReentrancyGuard("vault")
        with guard.hold():
            assert guard.busy
            with pytest.raises(ReentrantCall):
                guard.check()
        assert not guard.busy

    def test_released_after_exception(self):
        guard = ReentrancyGuard("vault")
        with pytest.raises(RuntimeError):
            with guard.hold():
                raise RuntimeError("callback failed")
        guard.check()
