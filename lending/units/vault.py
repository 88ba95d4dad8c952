"""
vault.py - Liquidity Vault State and Share Math

The vault's totals live in the state of its share unit (e.g. "lpUSDC"),
so every change to them goes through a ledger transaction and rolls back
with it. Share balances are ordinary balances of that unit; shares are
minted from and burned to SYSTEM_WALLET.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS: VaultState (totals, cost basis, deposit times)
2. PURE FUNCTIONS (preview_* / calculate_*): share conversion, commission,
   supply rate, reward eligibility
3. ADAPTERS: load_vault_state / to_state_dict / calculate_share_supply

Accounting model:
    total_base      = liquid assets + outstanding loans (principal and interest)
    liquid          = total_base - total_borrow
    share price     = total_base / share supply
    direct transfers into the vault wallet never touch total_base, so they
    cannot move the share price

Commission model:
    Each account carries a cost basis (assets paid in for its shares).
    On redemption the realized profit is gross - basis released; the
    treasury receives commission_rate of that profit as newly minted shares
    priced at the pre-redemption share price, which leaves the price seen by
    remaining holders unchanged.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from ..core import (
    LedgerView, SECONDS_PER_DAY, SECONDS_PER_YEAR, SYSTEM_WALLET,
    quantize_down, quantize_up, to_decimal,
)


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class VaultState:
    """
    Snapshot of the vault totals.

    total_supplied_liquidity is the principal lenders have paid in and not
    yet withdrawn (the sum of open cost bases). total_accrued_interest is
    lifetime yield (loan interest, flash-loan fees, boosts).
    """
    asset: str
    share_symbol: str
    vault_wallet: str
    treasury_wallet: str
    asset_decimals: int
    share_decimals: int
    inception_time: Optional[datetime]
    total_base: Decimal = Decimal("0")
    total_borrow: Decimal = Decimal("0")
    total_supplied_liquidity: Decimal = Decimal("0")
    total_accrued_interest: Decimal = Decimal("0")
    total_commission: Decimal = Decimal("0")
    cost_basis: Mapping[str, Decimal] = field(default_factory=dict)
    last_deposit: Mapping[str, datetime] = field(default_factory=dict)

    def __post_init__(self):
        for name in ('total_base', 'total_borrow', 'total_supplied_liquidity',
                     'total_accrued_interest', 'total_commission'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        object.__setattr__(self, 'cost_basis', {k: to_decimal(v) for k, v in self.cost_basis.items()})
        object.__setattr__(self, 'last_deposit', dict(self.last_deposit))
        if self.total_base < 0 or self.total_borrow < 0:
            raise ValueError("vault totals cannot be negative")

    @property
    def liquid(self) -> Decimal:
        """Assets the vault can pay out right now."""
        return max(self.total_base - self.total_borrow, Decimal("0"))


def to_state_dict(state: VaultState) -> Dict[str, Any]:
    """Inverse of load_vault_state()."""
    return {
        'asset': state.asset,
        'share_symbol': state.share_symbol,
        'vault_wallet': state.vault_wallet,
        'treasury_wallet': state.treasury_wallet,
        'asset_decimals': state.asset_decimals,
        'share_decimals': state.share_decimals,
        'inception_time': state.inception_time,
        'total_base': state.total_base,
        'total_borrow': state.total_borrow,
        'total_supplied_liquidity': state.total_supplied_liquidity,
        'total_accrued_interest': state.total_accrued_interest,
        'total_commission': state.total_commission,
        'cost_basis': dict(state.cost_basis),
        'last_deposit': dict(state.last_deposit),
    }


def load_vault_state(view: LedgerView, share_symbol: str) -> VaultState:
    raw = view.get_unit_state(share_symbol)
    return VaultState(
        asset=raw['asset'],
        share_symbol=raw['share_symbol'],
        vault_wallet=raw['vault_wallet'],
        treasury_wallet=raw['treasury_wallet'],
        asset_decimals=int(raw['asset_decimals']),
        share_decimals=int(raw['share_decimals']),
        inception_time=raw.get('inception_time'),
        total_base=Decimal(str(raw.get('total_base', 0))),
        total_borrow=Decimal(str(raw.get('total_borrow', 0))),
        total_supplied_liquidity=Decimal(str(raw.get('total_supplied_liquidity', 0))),
        total_accrued_interest=Decimal(str(raw.get('total_accrued_interest', 0))),
        total_commission=Decimal(str(raw.get('total_commission', 0))),
        cost_basis=raw.get('cost_basis', {}),
        last_deposit=raw.get('last_deposit', {}),
    )


def calculate_share_supply(view: LedgerView, share_symbol: str) -> Decimal:
    """Outstanding shares: every holder except the issuing system wallet."""
    return sum(
        (qty for wallet, qty in view.get_positions(share_symbol).items() if wallet != SYSTEM_WALLET),
        Decimal("0"),
    )


# ============================================================================
# SHARE CONVERSION
# ============================================================================

def preview_deposit(amount: Decimal, total_base: Decimal, supply: Decimal, share_decimals: int) -> Decimal:
    """Shares minted for `amount` assets (rounded down; 1:1 for an empty vault)."""
    if supply <= 0 or total_base <= 0:
        return quantize_down(amount, share_decimals)
    return quantize_down(amount * supply / total_base, share_decimals)


def preview_mint(shares: Decimal, total_base: Decimal, supply: Decimal, asset_decimals: int) -> Decimal:
    """Assets required to mint `shares` (rounded up; 1:1 for an empty vault)."""
    if supply <= 0 or total_base <= 0:
        return quantize_up(shares, asset_decimals)
    return quantize_up(shares * total_base / supply, asset_decimals)


def preview_redeem_gross(shares: Decimal, total_base: Decimal, supply: Decimal, asset_decimals: int) -> Decimal:
    """Asset value of `shares` before commission (rounded down)."""
    if supply <= 0:
        return Decimal("0")
    return quantize_down(shares * total_base / supply, asset_decimals)


def share_price(total_base: Decimal, supply: Decimal) -> Decimal:
    if supply <= 0:
        return Decimal("1")
    return total_base / supply


# ============================================================================
# COMMISSION
# ============================================================================

@dataclass(frozen=True, slots=True)
class Redemption:
    """Outcome of burning `shares` from one account."""
    shares: Decimal
    gross: Decimal
    basis_released: Decimal
    profit: Decimal
    commission: Decimal
    net: Decimal
    commission_shares: Decimal


def calculate_basis_released(cost_basis: Decimal, shares: Decimal, account_shares: Decimal, asset_decimals: int) -> Decimal:
    """Pro-rata part of the account's cost basis carried by `shares`."""
    if account_shares <= 0 or cost_basis <= 0:
        return Decimal("0")
    if shares >= account_shares:
        return cost_basis
    return min(quantize_up(cost_basis * shares / account_shares, asset_decimals), cost_basis)


def calculate_redemption(
    shares: Decimal,
    account_shares: Decimal,
    cost_basis: Decimal,
    total_base: Decimal,
    supply: Decimal,
    commission_rate: Decimal,
    asset_decimals: int,
    share_decimals: int,
) -> Redemption:
    """
    Split a redemption into payout and commission.

    PURE FUNCTION.

        gross      = shares * total_base / supply
        profit     = max(gross - basis_released, 0)
        commission = profit * commission_rate
        net        = gross - commission                  (paid to the account)
        commission_shares = commission * supply / total_base  (minted to treasury)
    """
    if shares <= 0:
        raise ValueError(f"shares must be positive, got {shares}")
    if shares > account_shares:
        raise ValueError(f"cannot redeem {shares} of {account_shares} shares")
    gross = preview_redeem_gross(shares, total_base, supply, asset_decimals)
    basis = calculate_basis_released(cost_basis, shares, account_shares, asset_decimals)
    profit = max(gross - basis, Decimal("0"))
    commission = quantize_down(profit * commission_rate, asset_decimals)
    commission_shares = Decimal("0")
    if commission > 0:
        commission_shares = quantize_down(commission * supply / total_base, share_decimals)
    return Redemption(
        shares=shares,
        gross=gross,
        basis_released=basis,
        profit=profit,
        commission=commission,
        net=gross - commission,
        commission_shares=commission_shares,
    )


def calculate_withdraw_shares(
    amount: Decimal,
    account_shares: Decimal,
    cost_basis: Decimal,
    total_base: Decimal,
    supply: Decimal,
    commission_rate: Decimal,
    share_decimals: int,
) -> Decimal:
    """
    Shares to burn so that the payout after commission covers `amount`.

    With price p and basis per share b, each share nets
    p - commission_rate * max(p - b, 0); the result is rounded up.
    """
    if supply <= 0 or total_base <= 0:
        return quantize_up(amount, share_decimals)
    price = total_base / supply
    basis_per_share = cost_basis / account_shares if account_shares > 0 else Decimal("0")
    net_per_share = price - commission_rate * max(price - basis_per_share, Decimal("0"))
    return quantize_up(amount / net_per_share, share_decimals)


# ============================================================================
# STATE TRANSITIONS
# ============================================================================

def calculate_deposit(state: VaultState, account: str, amount: Decimal, now: datetime) -> VaultState:
    basis = dict(state.cost_basis)
    basis[account] = basis.get(account, Decimal("0")) + amount
    deposits = dict(state.last_deposit)
    deposits[account] = now
    return replace(
        state,
        total_base=state.total_base + amount,
        total_supplied_liquidity=state.total_supplied_liquidity + amount,
        cost_basis=basis,
        last_deposit=deposits,
    )


def calculate_withdrawal(state: VaultState, account: str, redemption: Redemption, payout: Decimal) -> VaultState:
    """Apply a redemption that pays `payout` assets out of the vault."""
    basis = dict(state.cost_basis)
    remaining = basis.get(account, Decimal("0")) - redemption.basis_released
    if remaining > 0:
        basis[account] = remaining
    else:
        basis.pop(account, None)
    return replace(
        state,
        total_base=state.total_base - payout,
        total_supplied_liquidity=max(state.total_supplied_liquidity - redemption.basis_released, Decimal("0")),
        total_commission=state.total_commission + redemption.commission,
        cost_basis=basis,
    )


def calculate_borrow(state: VaultState, amount: Decimal) -> VaultState:
    return replace(state, total_borrow=state.total_borrow + amount)


def calculate_repay(state: VaultState, amount: Decimal) -> VaultState:
    """
    Reduce outstanding loans by `amount`.

    Anything beyond total_borrow (rounding dust) is treated as yield.
    """
    excess = max(amount - state.total_borrow, Decimal("0"))
    return replace(
        state,
        total_borrow=max(state.total_borrow - amount, Decimal("0")),
        total_base=state.total_base + excess,
        total_accrued_interest=state.total_accrued_interest + excess,
    )


def calculate_interest(state: VaultState, amount: Decimal) -> VaultState:
    """Interest added to loans is owed to the vault: loans and base both grow."""
    return replace(
        state,
        total_borrow=state.total_borrow + amount,
        total_base=state.total_base + amount,
        total_accrued_interest=state.total_accrued_interest + amount,
    )


def calculate_yield(state: VaultState, amount: Decimal) -> VaultState:
    """External profit paid into the vault (liquidation fees, flash-loan fees, boosts)."""
    return replace(
        state,
        total_base=state.total_base + amount,
        total_accrued_interest=state.total_accrued_interest + amount,
    )


# ============================================================================
# RATES AND REWARDS
# ============================================================================

def calculate_supply_rate(
    total_base: Decimal,
    share_supply: Decimal,
    commission_rate: Decimal,
    seconds_since_inception: int,
) -> Decimal:
    """
    Annualized realized yield of the vault, net of commission.

    Shares start at a price of 1, so growth = total_base / share_supply - 1
    is the realized share-price growth. share_supply includes the treasury's
    commission shares. Growth is scaled to a year over the time since
    inception (at least one day).
    """
    if share_supply <= 0:
        return Decimal("0")
    growth = total_base / share_supply - Decimal("1")
    if growth <= 0:
        return Decimal("0")
    period = max(seconds_since_inception, SECONDS_PER_DAY)
    return growth * (Decimal("1") - commission_rate) * Decimal(SECONDS_PER_YEAR) / Decimal(period)


def calculate_rewardable(
    share_value: Decimal,
    last_deposit: Optional[datetime],
    now: datetime,
    rewardable_supply: Decimal,
    reward_interval: int,
) -> bool:
    """Eligible when the holding is large enough and untouched by deposits for reward_interval."""
    if last_deposit is None or share_value < rewardable_supply:
        return False
    return (now - last_deposit).total_seconds() >= reward_interval
