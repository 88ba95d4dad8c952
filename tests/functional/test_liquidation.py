"""
test_liquidation.py - Liquidation of unhealthy positions

Tests:
- Price drops and accrued interest both make a position liquidatable
- The liquidator pays debt plus tier fee and takes all collateral
- The fee is paid to the vault as yield
- Stake, slippage and state preconditions
"""

import pytest
from decimal import Decimal, ROUND_UP

from lending import (
    POSITION_STATUS_ACTIVE, POSITION_STATUS_LIQUIDATED,
    EVENT_LIQUIDATED, EVENT_YIELD_BOOSTED,
    InsufficientFunds, InvalidPosition, MEVSameBlockOperation, MEVSlippageExceeded,
    NotEnoughGovernanceTokens, NotLiquidatable,
)
from tests.helpers import advance


@pytest.fixture
def underwater(alice_position, funded_market, registry, ledger):
    """Alice borrowed her full credit limit, then WETH fell to 2000."""
    funded_market.borrow("alice", alice_position, Decimal("2900"), Decimal("2900"), 0)
    registry.update_price("WETH", Decimal("2000"))
    ledger.advance_block()
    return alice_position


def _cost(market, owner, pid):
    debt = market.calculate_debt_with_interest(owner, pid)
    return debt, market.quote_liquidation_fee(owner, pid)


class TestEligibility:

    def test_price_drop(self, underwater, funded_market):
        assert funded_market.is_liquidatable("alice", underwater)
        assert funded_market.health_factor("alice", underwater) < 1

    def test_healthy_position(self, alice_position, funded_market, ledger):
        funded_market.borrow("alice", alice_position, Decimal("2900"), Decimal("2900"), 0)
        ledger.advance_block()
        assert not funded_market.is_liquidatable("alice", alice_position)
        with pytest.raises(NotLiquidatable):
            funded_market.liquidate("liquidator", "alice", alice_position, Decimal("4000"), 0)

    def test_interest_alone(self, alice_position, funded_market, ledger):
        funded_market.borrow("alice", alice_position, Decimal("2900"), Decimal("2900"), 0)
        advance(ledger, days=400)
        assert funded_market.calculate_debt_with_interest("alice", alice_position) > Decimal("3075")
        assert funded_market.is_liquidatable("alice", alice_position)

    def test_protocol_undercollateralized(self, underwater, funded_market, registry):
        registry.update_price("WETH", Decimal("1000"))
        ok, total_value = funded_market.is_collateralized()
        assert not ok
        assert total_value == Decimal("2000")


class TestSettlement:

    def test_liquidation(self, underwater, funded_market, ledger):
        debt, fee = _cost(funded_market, "alice", underwater)
        assert fee == (debt * Decimal("0.02")).quantize(Decimal("0.000001"), rounding=ROUND_UP)
        total_base_before = funded_market.vault.total_assets()

        quote = funded_market.liquidate("liquidator", "alice", underwater, debt + fee, 0)

        assert quote.debt == debt
        assert quote.fee == fee
        assert quote.total_cost == debt + fee
        assert dict(quote.collateral) == {"WETH": Decimal("1"), "DAI": Decimal("1000")}
        assert ledger.get_balance("liquidator", "USDC") == Decimal("1000000") - debt - fee
        assert ledger.get_balance("liquidator", "WETH") == Decimal("1")
        assert ledger.get_balance("liquidator", "DAI") == Decimal("1000")
        assert ledger.get_balance("custody:alice:0", "WETH") == 0

        position = funded_market.get_user_position("alice", underwater)
        assert position.status == POSITION_STATUS_LIQUIDATED
        assert position.debt == 0
        assert not funded_market.is_liquidatable("alice", underwater)

        vault = funded_market.vault
        assert vault.total_borrow() == 0
        # interest booked during the liquidation plus the fee
        assert vault.total_assets() == total_base_before + (debt - Decimal("2900")) + fee
        assert ledger.get_balance(vault.vault_wallet, "USDC") == vault.total_assets()
        assert len(funded_market.events(EVENT_LIQUIDATED)) == 1
        assert funded_market.events(EVENT_YIELD_BOOSTED)[-1].moves[0].metadata == {"attributed_to": "liquidator"}

    def test_borrower_keeps_borrowed_funds(self, underwater, funded_market, ledger):
        debt, fee = _cost(funded_market, "alice", underwater)
        funded_market.liquidate("liquidator", "alice", underwater, debt + fee, 0)
        assert ledger.get_balance("alice", "USDC") == Decimal("102900")

    def test_isolated_tier_fee(self, funded_market, registry, ledger):
        pid = funded_market.open_position("alice", "RWA", isolated=True)
        funded_market.supply_collateral("alice", "RWA", Decimal("2000"), pid)
        ledger.advance_block()
        funded_market.borrow("alice", pid, Decimal("13000"), Decimal("13000"), 0)
        registry.update_price("RWA", Decimal("8"))
        ledger.advance_block()

        debt, fee = _cost(funded_market, "alice", pid)
        assert funded_market.get_position_liquidation_fee("alice", pid) == Decimal("0.04")
        quote = funded_market.liquidate("liquidator", "alice", pid, debt + fee, 0)
        assert quote.fee == fee
        assert ledger.get_balance("liquidator", "RWA") == Decimal("2000")


class TestPreconditions:

    def test_stake_required(self, underwater, funded_market):
        with pytest.raises(NotEnoughGovernanceTokens):
            funded_market.liquidate("bob", "alice", underwater, Decimal("4000"), 0)

    def test_cost_slippage(self, underwater, funded_market):
        debt, _ = _cost(funded_market, "alice", underwater)
        with pytest.raises(MEVSlippageExceeded):
            funded_market.liquidate("liquidator", "alice", underwater, debt, 0)
        assert funded_market.get_user_position("alice", underwater).status == POSITION_STATUS_ACTIVE

    def test_liquidator_short_of_funds(self, underwater, funded_market, ledger):
        ledger.set_balance("liquidator", "USDC", Decimal("100"))
        debt, fee = _cost(funded_market, "alice", underwater)
        with pytest.raises(InsufficientFunds):
            funded_market.liquidate("liquidator", "alice", underwater, debt + fee, 0)
        position = funded_market.get_user_position("alice", underwater)
        assert position.status == POSITION_STATUS_ACTIVE
        assert position.debt == Decimal("2900")
        assert ledger.get_balance("custody:alice:0", "WETH") == Decimal("1")

    def test_second_liquidation(self, underwater, funded_market, ledger):
        debt, fee = _cost(funded_market, "alice", underwater)
        funded_market.liquidate("liquidator", "alice", underwater, debt + fee, 0)
        with pytest.raises(MEVSameBlockOperation):
            funded_market.liquidate("liquidator", "alice", underwater, debt + fee, 0)
        ledger.advance_block()
        with pytest.raises(InvalidPosition):
            funded_market.liquidate("liquidator", "alice", underwater, debt + fee, 0)

    def test_borrower_not_stamped(self, underwater, funded_market):
        debt, fee = _cost(funded_market, "alice", underwater)
        funded_market.liquidate("liquidator", "alice", underwater, debt + fee, 0)
        vault = funded_market.vault
        vault.deposit_liquidity("alice", Decimal("100"), vault.preview_deposit(Decimal("100")), 0)
