"""
helpers.py - Test helpers shared by the lending tests

- Asset configurations and prices used by the fixtures
- Funding and donation shortcuts (test mode)
- Ledger snapshots for before/after comparisons
- Flash-loan receivers
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict

from lending import (
    Ledger, Move, TransactionOrigin, OriginType, build_transaction,
    token,
    AssetConfig, AssetTier,
)


T0 = datetime(2025, 1, 1)

PRICES = {
    "DAI": Decimal("1"),
    "WETH": Decimal("2500"),
    "WBTC": Decimal("60000"),
    "RWA": Decimal("10"),
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def asset_configs() -> Dict[str, AssetConfig]:
    """One listed asset per tier, plus the base currency as STABLE collateral."""
    return {
        "USDC": AssetConfig("USDC", 6, AssetTier.STABLE, Decimal("0.90"), Decimal("0.95"), Decimal("10000000")),
        "DAI": AssetConfig("DAI", 18, AssetTier.STABLE, Decimal("0.90"), Decimal("0.95"), Decimal("1000000")),
        "WETH": AssetConfig("WETH", 18, AssetTier.CROSS_A, Decimal("0.80"), Decimal("0.85"), Decimal("10000")),
        "WBTC": AssetConfig("WBTC", 8, AssetTier.CROSS_B, Decimal("0.70"), Decimal("0.77"), Decimal("500")),
        "RWA": AssetConfig(
            "RWA", 18, AssetTier.ISOLATED, Decimal("0.65"), Decimal("0.75"), Decimal("100000"),
            isolation_debt_cap=Decimal("20000"),
        ),
    }


def register_tokens(ledger: Ledger) -> None:
    ledger.register_unit(token("USDC", "USD Coin", 6))
    ledger.register_unit(token("DAI", "Dai Stablecoin", 18))
    ledger.register_unit(token("WETH", "Wrapped Ether", 18))
    ledger.register_unit(token("WBTC", "Wrapped Bitcoin", 8))
    ledger.register_unit(token("RWA", "Tokenized Real-World Asset", 18))
    ledger.register_unit(token("GOV", "Governance Token", 18))


def fund(ledger: Ledger, wallet: str, unit: str, amount) -> None:
    """Add to a wallet's balance (test mode), registering the wallet if needed."""
    ledger.ensure_wallet(wallet)
    ledger.set_balance(wallet, unit, ledger.get_balance(wallet, unit) + Decimal(str(amount)))


def donate(ledger: Ledger, source: str, dest: str, unit: str, amount) -> None:
    """Plain ledger transfer that bypasses every lending component."""
    tx = build_transaction(
        ledger,
        [Move(Decimal(str(amount)), unit, source, dest, "donation")],
        origin=TransactionOrigin(OriginType.EXTERNAL, f"{source}#{ledger.next_sequence}"),
    )
    ledger.execute(tx)


def balances_snapshot(ledger: Ledger) -> Dict:
    """Every non-zero balance plus every unit state, for before/after comparisons."""
    balances = {
        (wallet, unit): qty
        for wallet in ledger.list_wallets()
        for unit, qty in ledger.get_wallet_balances(wallet).items()
        if qty != 0
    }
    states = {symbol: ledger.get_unit_state(symbol) for symbol in ledger.list_units()}
    return {"balances": balances, "states": states, "log": len(ledger.transaction_log)}


def advance(ledger: Ledger, **kwargs) -> None:
    """Move the clock forward (opens a new block)."""
    ledger.advance_time(ledger.current_time + timedelta(**kwargs))


# =============================================================================
# FLASH LOAN RECEIVERS
# =============================================================================

class RepayingReceiver:
    """Flash-loan receiver that pays back amount + fee - shortfall and returns `result`."""

    def __init__(self, ledger: Ledger, vault_wallet: str, wallet: str = "flash_bot",
                 shortfall: Decimal = Decimal("0"), result: bool = True):
        self.ledger = ledger
        self.vault_wallet = vault_wallet
        self.wallet = wallet
        self.shortfall = shortfall
        self.result = result
        self.calls = []

    def execute_operation(self, asset, amount, fee, initiator, data):
        self.calls.append((asset, amount, fee, initiator, data))
        repayment = amount + fee - self.shortfall
        if repayment > 0:
            tx = build_transaction(
                self.ledger,
                [Move(repayment, asset, self.wallet, self.vault_wallet, "flash_repay")],
                origin=TransactionOrigin(OriginType.EXTERNAL, f"{self.wallet}#{self.ledger.next_sequence}"),
            )
            self.ledger.execute(tx)
        return self.result


class ReentrantReceiver(RepayingReceiver):
    """Tries to deposit into the vault from inside the callback."""

    def __init__(self, ledger: Ledger, vault, wallet: str = "flash_bot"):
        super().__init__(ledger, vault.vault_wallet, wallet)
        self.vault = vault

    def execute_operation(self, asset, amount, fee, initiator, data):
        self.vault.deposit_liquidity(self.wallet, Decimal("1"), Decimal("1"), 0)
        return super().execute_operation(asset, amount, fee, initiator, data)
