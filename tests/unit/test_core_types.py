"""
test_core_types.py - Unit tests for core data types

Tests:
- Move validation
- Intent ids (content hash, timestamp independent)
- Fixed-point helpers
- Unit factories
- Error taxonomy
"""

import pytest
from datetime import datetime
from decimal import Decimal

from lending import (
    Move, TransactionOrigin, OriginType, UnitStateChange, build_transaction,
    token, vault_share, market_unit, quantize_down, quantize_up,
    UNIT_TYPE_TOKEN, UNIT_TYPE_VAULT_SHARE, UNIT_TYPE_MARKET,
    LedgerError, LendingError, ValidationError, PolicyViolation, TimingError,
    FlashLoanError, LiquidationStateError,
    ZeroAmount, InsufficientShares, IsolatedAssetViolation, AssetNotActive,
    MEVSameBlockOperation, MEVSlippageExceeded, FlashLoanFailed, RepaymentFailed,
    ReentrantCall, NotLiquidatable, NotEnoughGovernanceTokens,
    InterestOverflow, InvalidConfiguration, LowLiquidity, Unauthorized,
)
from tests.fake_view import FakeView


class TestMove:
    """Move rejects malformed transfers at construction."""

    def test_valid_move(self):
        move = Move(Decimal("1"), "USDC", "alice", "bob", "ref")
        assert move.quantity == Decimal("1")

    @pytest.mark.parametrize("kwargs,match", [
        ({"source": ""}, "source"),
        ({"dest": " "}, "dest"),
        ({"unit_symbol": ""}, "unit_symbol"),
        ({"contract_id": ""}, "contract_id"),
        ({"dest": "alice"}, "different"),
        ({"quantity": Decimal("0")}, "zero"),
        ({"quantity": Decimal("Infinity")}, "finite"),
    ])
    def test_invalid_moves(self, kwargs, match):
        fields = dict(quantity=Decimal("1"), unit_symbol="USDC", source="alice", dest="bob", contract_id="ref")
        fields.update(kwargs)
        with pytest.raises(ValueError, match=match):
            Move(**fields)

    def test_float_quantity_rejected(self):
        with pytest.raises(ValueError, match="Decimal"):
            Move(1.0, "USDC", "alice", "bob", "ref")


class TestIntentId:
    """Intent ids hash content, never time."""

    def _tx(self, time, qty="1", source_id="alice#0"):
        view = FakeView({}, time=time)
        origin = TransactionOrigin(OriginType.USER_ACTION, source_id, "USDC", "PAID")
        return build_transaction(view, [Move(Decimal(qty), "USDC", "alice", "bob", "ref")], origin=origin)

    def test_same_content_same_id_across_time(self):
        a = self._tx(datetime(2025, 1, 1))
        b = self._tx(datetime(2025, 6, 1))
        assert a.intent_id == b.intent_id

    def test_decimal_representation_does_not_matter(self):
        assert self._tx(datetime(2025, 1, 1), "1.0").intent_id == self._tx(datetime(2025, 1, 1), "1.00").intent_id

    def test_source_id_distinguishes_repeats(self):
        assert self._tx(datetime(2025, 1, 1), source_id="alice#0").intent_id != \
            self._tx(datetime(2025, 1, 1), source_id="alice#1").intent_id

    def test_state_changes_are_deep_copied(self):
        view = FakeView({}, time=datetime(2025, 1, 1))
        new_state = {"debt": Decimal("1")}
        tx = build_transaction(view, [], [UnitStateChange("POS:alice:0", {}, new_state)])
        new_state["debt"] = Decimal("999")
        assert tx.state_changes[0].new_state == {"debt": Decimal("1")}


class TestFixedPoint:
    """Round down when extracting value, up when computing amounts owed."""

    def test_quantize_down(self):
        assert quantize_down(Decimal("1.2345679"), 6) == Decimal("1.234567")

    def test_quantize_up(self):
        assert quantize_up(Decimal("1.2345671"), 6) == Decimal("1.234568")

    def test_exact_values_unchanged(self):
        assert quantize_up(Decimal("2.5"), 6) == quantize_down(Decimal("2.5"), 6) == Decimal("2.5")


class TestUnitFactories:
    """token(), vault_share() and market_unit()."""

    def test_token(self):
        unit = token("USDC", "USD Coin", 6)
        assert unit.unit_type == UNIT_TYPE_TOKEN
        assert unit.decimal_places == 6
        assert unit.round(Decimal("1.0000009")) == Decimal("1.000000")

    def test_token_decimals_bounds(self):
        with pytest.raises(ValueError):
            token("BAD", "Bad", 37)

    def test_vault_share_carries_state(self):
        unit = vault_share("lpUSDC", "shares", {"total_base": Decimal("5")})
        assert unit.unit_type == UNIT_TYPE_VAULT_SHARE
        assert unit.state == {"total_base": Decimal("5")}

    def test_market_unit(self):
        unit = market_unit("MARKET:USDC", "market", {"version": 1})
        assert unit.unit_type == UNIT_TYPE_MARKET
        assert unit.transfer_rule is not None


class TestErrorTaxonomy:
    """Errors are grouped by cause under LendingError."""

    @pytest.mark.parametrize("error,group", [
        (ZeroAmount, ValidationError),
        (InsufficientShares, ValidationError),
        (IsolatedAssetViolation, PolicyViolation),
        (AssetNotActive, PolicyViolation),
        (MEVSameBlockOperation, TimingError),
        (MEVSlippageExceeded, TimingError),
        (FlashLoanFailed, FlashLoanError),
        (RepaymentFailed, FlashLoanError),
        (ReentrantCall, FlashLoanError),
        (NotLiquidatable, LiquidationStateError),
        (NotEnoughGovernanceTokens, LiquidationStateError),
    ])
    def test_grouping(self, error, group):
        assert issubclass(error, group)
        assert issubclass(error, LendingError)
        assert issubclass(error, LedgerError)

    def test_standalone_causes(self):
        for error in (LowLiquidity, Unauthorized):
            assert issubclass(error, LendingError)

    def test_builtin_compatibility(self):
        assert issubclass(InterestOverflow, ArithmeticError)
        assert issubclass(InvalidConfiguration, ValueError)
