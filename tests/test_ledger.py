"""
test_ledger.py - Unit tests for ledger.py

Tests:
- Ledger creation and configuration
- Wallet and unit registration
- Balance operations
- Transaction execution (validation, idempotency, rejection)
- execute() with state changes and stale-state rejection
- Blocks and time
- atomic() scopes
- clone()
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lending import (
    Ledger, Move, ExecuteResult, UnitStateChange, TransactionOrigin, OriginType,
    build_transaction, token, market_unit,
    SYSTEM_WALLET,
    LedgerError, WalletNotRegistered, UnitNotRegistered,
)


def _usdc_ledger() -> Ledger:
    ledger = Ledger("test", datetime(2025, 1, 1), verbose=False, test_mode=True)
    ledger.register_unit(token("USDC", "USD Coin", 6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.set_balance("alice", "USDC", Decimal("1000"))
    return ledger


def _pay(ledger: Ledger, amount: str, source: str = "alice", dest: str = "bob", ref: str = "payment"):
    return build_transaction(ledger, [Move(Decimal(amount), "USDC", source, dest, ref)])


class TestLedgerCreation:
    """Tests for Ledger initialization."""

    def test_create_ledger(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.name == "test"
        assert ledger.verbose is False
        assert ledger.block_height == 0

    def test_create_with_initial_time(self):
        t = datetime(2025, 1, 1, 9, 30)
        ledger = Ledger("test", initial_time=t, verbose=False)
        assert ledger.current_time == t

    def test_system_wallet_preregistered(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.is_registered(SYSTEM_WALLET)


class TestRegistration:
    """Tests for wallet and unit registration."""

    def test_register_wallet(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.register_wallet("alice") == "alice"
        assert "alice" in ledger.list_wallets()

    def test_register_duplicate_wallet_raises(self):
        ledger = Ledger("test", verbose=False)
        ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_register_empty_wallet_raises(self):
        ledger = Ledger("test", verbose=False)
        with pytest.raises(ValueError, match="empty"):
            ledger.register_wallet("  ")

    def test_ensure_wallet_is_idempotent(self):
        ledger = Ledger("test", verbose=False)
        ledger.ensure_wallet("alice")
        ledger.ensure_wallet("alice")
        assert ledger.is_registered("alice")

    def test_register_duplicate_unit_raises(self):
        ledger = Ledger("test", verbose=False)
        ledger.register_unit(token("USDC", "USD Coin", 6))
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_unit(token("USDC", "USD Coin", 6))

    def test_unknown_unit_state_raises(self):
        ledger = Ledger("test", verbose=False)
        with pytest.raises(UnitNotRegistered):
            ledger.get_unit_state("NOPE")

    def test_balance_of_unknown_wallet_raises(self):
        ledger = _usdc_ledger()
        with pytest.raises(WalletNotRegistered):
            ledger.get_balance("carol", "USDC")


class TestSetBalance:
    """set_balance() is a test-mode shortcut."""

    def test_disabled_outside_test_mode(self):
        ledger = Ledger("test", verbose=False)
        ledger.register_unit(token("USDC", "USD Coin", 6))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "USDC", Decimal("1"))

    def test_updates_positions_index(self):
        ledger = _usdc_ledger()
        assert ledger.get_positions("USDC") == {"alice": Decimal("1000")}


class TestExecute:
    """Tests for transaction execution."""

    def test_applied_transfer(self):
        ledger = _usdc_ledger()
        assert ledger.execute(_pay(ledger, "250")) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "USDC") == Decimal("750")
        assert ledger.get_balance("bob", "USDC") == Decimal("250")
        assert len(ledger.transaction_log) == 1

    def test_same_intent_is_applied_once(self):
        ledger = _usdc_ledger()
        tx = _pay(ledger, "100")
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", "USDC") == Decimal("100")

    def test_overdraft_rejected_with_reason(self):
        ledger = _usdc_ledger()
        assert ledger.execute(_pay(ledger, "1000.000001")) == ExecuteResult.REJECTED
        assert "alice USDC" in ledger.last_rejection
        assert ledger.get_balance("alice", "USDC") == Decimal("1000")

    def test_unregistered_wallet_rejected(self):
        ledger = _usdc_ledger()
        result = ledger.execute(_pay(ledger, "1", dest="carol"))
        assert result == ExecuteResult.REJECTED
        assert "carol" in ledger.last_rejection

    def test_system_wallet_may_go_negative(self):
        ledger = _usdc_ledger()
        tx = build_transaction(ledger, [Move(Decimal("5"), "USDC", SYSTEM_WALLET, "bob", "mint")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.get_balance(SYSTEM_WALLET, "USDC") == Decimal("-5")
        assert ledger.verify_double_entry({"USDC": Decimal("1000")})["valid"]

    def test_quantities_round_down_to_unit_decimals(self):
        ledger = _usdc_ledger()
        ledger.execute(_pay(ledger, "0.0000019"))
        assert ledger.get_balance("bob", "USDC") == Decimal("0.000001")

    def test_events_filtered_by_type(self):
        ledger = _usdc_ledger()
        origin = TransactionOrigin(OriginType.USER_ACTION, "alice#0", None, "PAID")
        ledger.execute(build_transaction(ledger, [Move(Decimal("1"), "USDC", "alice", "bob", "p")], origin=origin))
        ledger.execute(_pay(ledger, "2"))
        assert [tx.event_type for tx in ledger.events("PAID")] == ["PAID"]
        assert len(ledger.events()) == 2


class TestStateChanges:
    """State changes must be built from the unit's current state."""

    def _market(self, ledger: Ledger) -> None:
        ledger.register_unit(market_unit("MARKET:USDC", "market", {"version": 1}))

    def test_state_change_applied(self):
        ledger = _usdc_ledger()
        self._market(ledger)
        change = UnitStateChange("MARKET:USDC", {"version": 1}, {"version": 2})
        assert ledger.execute(build_transaction(ledger, [], [change])) == ExecuteResult.APPLIED
        assert ledger.get_unit_state("MARKET:USDC") == {"version": 2}

    def test_stale_state_rejected(self):
        ledger = _usdc_ledger()
        self._market(ledger)
        first = UnitStateChange("MARKET:USDC", {"version": 1}, {"version": 2})
        stale = UnitStateChange("MARKET:USDC", {"version": 1}, {"version": 3})
        ledger.execute(build_transaction(ledger, [], [first]))
        assert ledger.execute(build_transaction(ledger, [], [stale])) == ExecuteResult.REJECTED
        assert "stale state" in ledger.last_rejection
        assert ledger.get_unit_state("MARKET:USDC") == {"version": 2}

    def test_market_unit_is_not_transferable(self):
        ledger = _usdc_ledger()
        self._market(ledger)
        tx = build_transaction(ledger, [Move(Decimal("1"), "MARKET:USDC", SYSTEM_WALLET, "alice", "x")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert "not transferable" in ledger.last_rejection


class TestBlocks:
    """Each forward move of the clock opens a new block."""

    def test_advance_time_increments_block(self):
        ledger = _usdc_ledger()
        ledger.advance_time(ledger.current_time + timedelta(seconds=1))
        assert ledger.block_height == 1

    def test_same_time_keeps_block(self):
        ledger = _usdc_ledger()
        ledger.advance_time(ledger.current_time)
        assert ledger.block_height == 0

    def test_time_cannot_go_backwards(self):
        ledger = _usdc_ledger()
        with pytest.raises(ValueError, match="backwards"):
            ledger.advance_time(datetime(2024, 12, 31))

    def test_advance_block_uses_block_time(self):
        ledger = _usdc_ledger()
        start = ledger.current_time
        ledger.advance_block(3)
        assert ledger.block_height == 3
        assert ledger.current_time == start + timedelta(seconds=36)

    def test_transactions_record_block(self):
        ledger = _usdc_ledger()
        ledger.advance_block()
        ledger.execute(_pay(ledger, "1"))
        assert ledger.transaction_log[-1].block_height == 1


class TestAtomic:
    """atomic() restores everything on failure."""

    def test_commit_on_success(self):
        ledger = _usdc_ledger()
        with ledger.atomic():
            ledger.execute(_pay(ledger, "10", ref="a"))
            ledger.execute(_pay(ledger, "20", ref="b"))
        assert ledger.get_balance("bob", "USDC") == Decimal("30")

    def test_rollback_on_exception(self):
        ledger = _usdc_ledger()
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.execute(_pay(ledger, "10"))
                ledger.register_wallet("carol")
                raise RuntimeError("abort")
        assert ledger.get_balance("bob", "USDC") == Decimal("0")
        assert not ledger.is_registered("carol")
        assert ledger.transaction_log == []
        assert ledger.next_sequence == 0
        assert ledger.get_positions("USDC") == {"alice": Decimal("1000")}

    def test_rolled_back_intent_can_be_replayed(self):
        ledger = _usdc_ledger()
        tx = _pay(ledger, "10")
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.execute(tx)
                raise RuntimeError("abort")
        assert ledger.execute(tx) == ExecuteResult.APPLIED

    def test_nested_inner_failure_only_undoes_inner(self):
        ledger = _usdc_ledger()
        with ledger.atomic():
            ledger.execute(_pay(ledger, "10", ref="outer"))
            try:
                with ledger.atomic():
                    ledger.execute(_pay(ledger, "20", ref="inner"))
                    raise RuntimeError("inner")
            except RuntimeError:
                pass
        assert ledger.get_balance("bob", "USDC") == Decimal("10")


class TestClone:
    """clone() is fully independent."""

    def test_clone_is_independent(self):
        ledger = _usdc_ledger()
        ledger.advance_block()
        copy = ledger.clone()
        copy.execute(_pay(copy, "10"))
        assert ledger.get_balance("bob", "USDC") == Decimal("0")
        assert copy.get_balance("bob", "USDC") == Decimal("10")
        assert copy.block_height == ledger.block_height
