"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with the test tokens and funded wallets
- A static registry with one asset per tier
- An initialized market (vault + lending core), with and without liquidity
- A borrower position with collateral in place
"""

import pytest
from decimal import Decimal

from lending import Ledger, StaticAssetRegistry, ProtocolConfig, create_market

from tests.helpers import T0, PRICES, asset_configs, register_tokens, fund


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Ledger with the test tokens and funded wallets."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    register_tokens(ledger)

    fund(ledger, "lender", "USDC", "1000000")
    fund(ledger, "lender2", "USDC", "1000000")
    fund(ledger, "alice", "USDC", "100000")
    fund(ledger, "alice", "WETH", "10")
    fund(ledger, "alice", "WBTC", "1")
    fund(ledger, "alice", "DAI", "10000")
    fund(ledger, "alice", "RWA", "10000")
    fund(ledger, "bob", "USDC", "100000")
    fund(ledger, "bob", "WETH", "10")
    fund(ledger, "liquidator", "USDC", "1000000")
    fund(ledger, "liquidator", "GOV", "50000")
    return ledger


@pytest.fixture
def registry():
    return StaticAssetRegistry(asset_configs(), dict(PRICES), base_currency="USDC")


@pytest.fixture
def config():
    return ProtocolConfig()


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market(ledger, registry, config):
    """Initialized market; the vault is empty."""
    return create_market(ledger, registry, config, admin="governor", treasury="treasury")


@pytest.fixture
def vault(market):
    return market.vault


@pytest.fixture
def funded_market(market, ledger):
    """Market whose vault holds 500,000 USDC from `lender`."""
    market.vault.deposit_liquidity("lender", Decimal("500000"), Decimal("500000"), 0)
    ledger.advance_block()
    return market


@pytest.fixture
def alice_position(funded_market, ledger):
    """Alice's cross position 0 holding 1 WETH and 1000 DAI (credit limit 2900)."""
    pid = funded_market.open_position("alice", "WETH", isolated=False)
    funded_market.supply_collateral("alice", "WETH", Decimal("1"), pid)
    funded_market.supply_collateral("alice", "DAI", Decimal("1000"), pid)
    ledger.advance_block()
    return pid
