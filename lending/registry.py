"""
registry.py - Asset configuration and pricing consumed by the lending core

The core never prices assets itself. It reads per-asset configuration and
prices through the AssetRegistry protocol and treats a missing or stale
price as a hard failure.

Classes:
- AssetTier: risk tier of a collateral asset
- AssetConfig: immutable per-asset configuration
- AssetRegistry: Protocol the core consumes
- StaticAssetRegistry: prices set explicitly, each stamped with its update time
- TimeSeriesAssetRegistry: time-varying prices with historical data

All prices are quoted in the base currency (the vault asset) per whole token.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .core import (
    AssetNotListed, InvalidConfiguration, PriceUnavailable, StalePrice,
    to_decimal,
)


class AssetTier(Enum):
    """Collateral risk tier, lowest risk first."""
    STABLE = "STABLE"
    CROSS_A = "CROSS_A"
    CROSS_B = "CROSS_B"
    ISOLATED = "ISOLATED"

    @property
    def risk(self) -> int:
        return _TIER_RISK[self]


_TIER_RISK = {
    AssetTier.STABLE: 0,
    AssetTier.CROSS_A: 1,
    AssetTier.CROSS_B: 2,
    AssetTier.ISOLATED: 3,
}


@dataclass(frozen=True, slots=True)
class AssetConfig:
    """
    Immutable configuration of a listed collateral asset.

    Thresholds are fractions of collateral value (0.80 = 80%).
    max_supply_threshold caps the protocol-wide amount held as collateral.
    isolation_debt_cap is only meaningful for ISOLATED-tier assets.
    pool_liquidity is the asset's external pool depth; 0 disables the pool check.
    """
    symbol: str
    decimals: int
    tier: AssetTier
    borrow_threshold: Decimal
    liquidation_threshold: Decimal
    max_supply_threshold: Decimal
    isolation_debt_cap: Decimal = Decimal("0")
    pool_liquidity: Decimal = Decimal("0")
    active: bool = True

    def __post_init__(self):
        for name in ('borrow_threshold', 'liquidation_threshold',
                     'max_supply_threshold', 'isolation_debt_cap', 'pool_liquidity'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        if isinstance(self.tier, str):
            object.__setattr__(self, 'tier', AssetTier(self.tier))

        if not self.symbol or not self.symbol.strip():
            raise InvalidConfiguration("asset symbol cannot be empty")
        if self.decimals < 0 or self.decimals > 36:
            raise InvalidConfiguration(f"{self.symbol}: decimals must be in [0, 36], got {self.decimals}")
        if not (Decimal("0") <= self.borrow_threshold <= self.liquidation_threshold <= Decimal("1")):
            raise InvalidConfiguration(
                f"{self.symbol}: need 0 <= borrow_threshold ({self.borrow_threshold}) <= "
                f"liquidation_threshold ({self.liquidation_threshold}) <= 1"
            )
        if self.max_supply_threshold < 0:
            raise InvalidConfiguration(f"{self.symbol}: max_supply_threshold cannot be negative")
        if self.pool_liquidity < 0:
            raise InvalidConfiguration(f"{self.symbol}: pool_liquidity cannot be negative")
        if self.isolation_debt_cap < 0:
            raise InvalidConfiguration(f"{self.symbol}: isolation_debt_cap cannot be negative")
        if self.tier != AssetTier.ISOLATED and self.isolation_debt_cap != 0:
            raise InvalidConfiguration(
                f"{self.symbol}: isolation_debt_cap is only allowed for ISOLATED tier"
            )


@runtime_checkable
class AssetRegistry(Protocol):
    """
    Protocol for the asset registry consumed by the lending core.

    get_asset_config() raises AssetNotListed for unknown assets.
    get_price() raises PriceUnavailable or StalePrice, never returns a default.
    """
    base_currency: str

    def get_asset_config(self, asset: str) -> AssetConfig:
        ...

    def get_price(self, asset: str, timestamp: datetime) -> Decimal:
        ...

    def list_assets(self) -> List[str]:
        ...


class _ConfigTable:
    """Asset configuration storage shared by both registry implementations."""

    def __init__(self, configs: Optional[Mapping[str, AssetConfig]] = None):
        self.configs: Dict[str, AssetConfig] = dict(configs or {})

    def get_asset_config(self, asset: str) -> AssetConfig:
        try:
            return self.configs[asset]
        except KeyError:
            raise AssetNotListed(f"Asset {asset} is not listed") from None

    def list_assets(self) -> List[str]:
        return sorted(self.configs)

    def update_asset_config(self, config: AssetConfig) -> None:
        """List a new asset or replace the configuration of a listed one."""
        self.configs[config.symbol] = config

    def set_active(self, asset: str, active: bool) -> None:
        self.configs[asset] = replace(self.get_asset_config(asset), active=active)


class StaticAssetRegistry(_ConfigTable):
    """
    Registry with explicitly set prices.

    Each price remembers when it was set. With max_price_age, a price older
    than that at the requested timestamp raises StalePrice. The base
    currency always prices at 1.
    """

    def __init__(
        self,
        configs: Optional[Mapping[str, AssetConfig]] = None,
        prices: Optional[Mapping[str, Decimal]] = None,
        base_currency: str = "USDC",
        max_price_age: Optional[timedelta] = None,
        as_of: Optional[datetime] = None,
    ):
        """
        Args:
            configs: symbol -> AssetConfig
            prices: symbol -> price in base currency
            base_currency: Currency prices are quoted in
            max_price_age: Maximum age before a price is stale (None = never stale)
            as_of: Update time recorded for the initial prices
        """
        super().__init__(configs)
        self.base_currency = base_currency
        self.max_price_age = max_price_age
        self.prices: Dict[str, Tuple[Decimal, Optional[datetime]]] = {}
        for symbol, price in (prices or {}).items():
            self.prices[symbol] = (to_decimal(price), as_of)

    def update_price(self, asset: str, price: Decimal, as_of: Optional[datetime] = None) -> None:
        """Set the price of an asset, stamped with its update time."""
        self.prices[asset] = (to_decimal(price), as_of)

    def update_prices(self, prices: Mapping[str, Decimal], as_of: Optional[datetime] = None) -> None:
        for asset, price in prices.items():
            self.update_price(asset, price, as_of)

    def get_price(self, asset: str, timestamp: datetime) -> Decimal:
        if asset == self.base_currency:
            return Decimal("1")
        if asset not in self.prices:
            raise PriceUnavailable(f"No price for {asset}")
        price, updated_at = self.prices[asset]
        if price <= 0:
            raise PriceUnavailable(f"Non-positive price for {asset}: {price}")
        if self.max_price_age is not None and updated_at is not None:
            if timestamp - updated_at > self.max_price_age:
                raise StalePrice(f"Price for {asset} from {updated_at} is stale at {timestamp}")
        return price

    def __repr__(self):
        return (f"StaticAssetRegistry({len(self.configs)} assets, "
                f"{len(self.prices)} prices, base={self.base_currency})")


class TimeSeriesAssetRegistry(_ConfigTable):
    """
    Registry with time-varying prices.

    Uses the most recent observation at or before the requested timestamp.
    No observation means PriceUnavailable; an observation older than
    max_price_age means StalePrice.
    """

    def __init__(
        self,
        configs: Optional[Mapping[str, AssetConfig]] = None,
        price_paths: Optional[Mapping[str, List[Tuple[datetime, Decimal]]]] = None,
        base_currency: str = "USDC",
        max_price_age: Optional[timedelta] = None,
    ):
        """
        Examples:
            registry = TimeSeriesAssetRegistry(configs, {
                'WETH': [(t0, Decimal("2500")), (t1, Decimal("2400"))],
            }, max_price_age=timedelta(hours=1))
        """
        super().__init__(configs)
        self.base_currency = base_currency
        self.max_price_age = max_price_age
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        for asset, path in (price_paths or {}).items():
            if path:
                self.price_history[asset] = sorted(
                    ((ts, to_decimal(p)) for ts, p in path), key=lambda x: x[0]
                )

    def add_price(self, asset: str, timestamp: datetime, price: Decimal) -> None:
        """Add a price observation, keeping history in timestamp order."""
        history = self.price_history.setdefault(asset, [])
        history.append((timestamp, to_decimal(price)))
        history.sort(key=lambda x: x[0])

    def get_price(self, asset: str, timestamp: datetime) -> Decimal:
        if asset == self.base_currency:
            return Decimal("1")
        history = self.price_history.get(asset)
        if not history:
            raise PriceUnavailable(f"No price history for {asset}")

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            raise PriceUnavailable(f"No price for {asset} at or before {timestamp}")

        observed_at, price = history[idx - 1]
        if price <= 0:
            raise PriceUnavailable(f"Non-positive price for {asset}: {price}")
        if self.max_price_age is not None and timestamp - observed_at > self.max_price_age:
            raise StalePrice(f"Price for {asset} from {observed_at} is stale at {timestamp}")
        return price

    def __repr__(self):
        total_observations = sum(len(h) for h in self.price_history.values())
        return (f"TimeSeriesAssetRegistry({len(self.price_history)} assets, "
                f"{total_observations} observations, base={self.base_currency})")
