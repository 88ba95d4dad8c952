"""
liquidation.py - Health factor, liquidation eligibility and liquidation cost

PURE FUNCTIONS only. The lending core settles a liquidation as one atomic
step: the liquidator pays debt plus fee into the vault and receives all of
the position's collateral. Partial liquidation does not exist.

Key Formulas:
    health_factor   = liquidation_level * HEALTH_FACTOR_SCALE / debt
                      (HEALTH_FACTOR_MAX when debt == 0)
    liquidatable   <=> liquidation_level < debt
    liquidation_fee = debt * tier_fee (rounded up)
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from .core import HEALTH_FACTOR_MAX, HEALTH_FACTOR_SCALE, quantize_up


@dataclass(frozen=True, slots=True)
class LiquidationQuote:
    """What a liquidator pays and receives for a position."""
    debt: Decimal
    fee: Decimal
    collateral: Mapping[str, Decimal]
    collateral_value: Decimal

    @property
    def total_cost(self) -> Decimal:
        return self.debt + self.fee


def calculate_health_factor(liquidation_level: Decimal, debt: Decimal) -> Decimal:
    if debt <= 0:
        return HEALTH_FACTOR_MAX
    return liquidation_level * HEALTH_FACTOR_SCALE / debt


def is_liquidatable(liquidation_level: Decimal, debt: Decimal) -> bool:
    """True iff the position owes more than its liquidation level."""
    return debt > 0 and liquidation_level < debt


def calculate_liquidation_fee(debt: Decimal, fee_rate: Decimal, base_decimals: int) -> Decimal:
    if debt < 0:
        raise ValueError(f"debt cannot be negative, got {debt}")
    if fee_rate < 0:
        raise ValueError(f"fee_rate cannot be negative, got {fee_rate}")
    return quantize_up(debt * fee_rate, base_decimals)


def quote_liquidation(
    debt: Decimal,
    fee_rate: Decimal,
    collateral: Mapping[str, Decimal],
    collateral_value: Decimal,
    base_decimals: int,
) -> LiquidationQuote:
    return LiquidationQuote(
        debt=debt,
        fee=calculate_liquidation_fee(debt, fee_rate, base_decimals),
        collateral=dict(collateral),
        collateral_value=collateral_value,
    )
