"""
credit.py - Collateral valuation, credit limits and position tiers

PURE FUNCTIONS (calculate_*): all inputs explicit; no LedgerView, no registry.
ADAPTERS (compute_*): read the position and prices once, then call the pure
functions.

Key Formulas (per held asset, base-currency decimals, rounded down):
    value             = amount * price
    credit_limit     += value * borrow_threshold
    liquidation_level += value * liquidation_threshold
    total_value      += value

The per-asset weighting lets a mixed basket produce a blended limit without
a basket-level tier.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from .core import LedgerView, quantize_down
from .registry import AssetConfig, AssetRegistry, AssetTier
from .units.position import Position, get_holdings


@dataclass(frozen=True, slots=True)
class CreditLimits:
    """Limits of a position in base-currency units."""
    credit_limit: Decimal
    liquidation_level: Decimal
    total_value: Decimal

    def __add__(self, other: CreditLimits) -> CreditLimits:
        return CreditLimits(
            credit_limit=self.credit_limit + other.credit_limit,
            liquidation_level=self.liquidation_level + other.liquidation_level,
            total_value=self.total_value + other.total_value,
        )


ZERO_LIMITS = CreditLimits(Decimal("0"), Decimal("0"), Decimal("0"))


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_asset_value(amount: Decimal, price: Decimal, base_decimals: int) -> Decimal:
    """Base-currency value of `amount` tokens at `price`, rounded down."""
    if amount < 0:
        raise ValueError(f"amount cannot be negative, got {amount}")
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    return quantize_down(amount * price, base_decimals)


def calculate_asset_limits(
    amount: Decimal,
    price: Decimal,
    config: AssetConfig,
    base_decimals: int,
) -> CreditLimits:
    """Contribution of a single holding to a position's limits."""
    value = calculate_asset_value(amount, price, base_decimals)
    return CreditLimits(
        credit_limit=quantize_down(value * config.borrow_threshold, base_decimals),
        liquidation_level=quantize_down(value * config.liquidation_threshold, base_decimals),
        total_value=value,
    )


def calculate_limits(
    holdings: Mapping[str, Decimal],
    prices: Mapping[str, Decimal],
    configs: Mapping[str, AssetConfig],
    base_decimals: int,
) -> CreditLimits:
    """
    Sum of per-asset contributions. An empty basket yields all zeros.

    Raises:
        ValueError: if a held asset has no price or no config

    Example:
        # 1 CROSS_A @ 2500 (80%/85%) + 1000 STABLE @ 1 (90%/95%)
        limits = calculate_limits(
            {"WETH": Decimal("1"), "USDC": Decimal("1000")},
            {"WETH": Decimal("2500"), "USDC": Decimal("1")},
            configs, 6,
        )
        # -> CreditLimits(credit_limit=2900, liquidation_level=3075, total_value=3500)
    """
    total = ZERO_LIMITS
    for asset, amount in sorted(holdings.items()):
        if asset not in prices:
            raise ValueError(f"Missing price for collateral asset '{asset}'")
        if asset not in configs:
            raise ValueError(f"Missing config for collateral asset '{asset}'")
        total = total + calculate_asset_limits(amount, prices[asset], configs[asset], base_decimals)
    return total


def calculate_position_tier(
    assets: Iterable[str],
    configs: Mapping[str, AssetConfig],
    isolated_asset: Optional[str] = None,
) -> AssetTier:
    """
    Tier that prices a position's debt.

    Isolated positions take their isolated asset's tier. Cross positions
    take the highest-risk tier among held assets, STABLE when empty.
    """
    if isolated_asset is not None:
        return configs[isolated_asset].tier
    tier = AssetTier.STABLE
    for asset in assets:
        asset_tier = configs[asset].tier
        if asset_tier.risk > tier.risk:
            tier = asset_tier
    return tier


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def compute_limits(
    view: LedgerView,
    registry: AssetRegistry,
    position: Position,
    base_decimals: int,
    holdings: Optional[Mapping[str, Decimal]] = None,
) -> CreditLimits:
    """
    Limits of `position` at the view's current time.

    `holdings` overrides the custody balances, which is how callers value a
    hypothetical post-withdrawal basket. Registry failures (AssetNotListed,
    PriceUnavailable, StalePrice) propagate.
    """
    if holdings is None:
        holdings = get_holdings(view, position)
    prices = {asset: registry.get_price(asset, view.current_time) for asset in holdings}
    configs = {asset: registry.get_asset_config(asset) for asset in holdings}
    return calculate_limits(holdings, prices, configs, base_decimals)


def compute_position_tier(registry: AssetRegistry, position: Position) -> AssetTier:
    assets = [position.isolated_asset] if position.isolated else list(position.assets)
    configs = {asset: registry.get_asset_config(asset) for asset in assets}
    return calculate_position_tier(assets, configs, position.isolated_asset)
