"""
config.py - Versioned protocol configuration

ProtocolConfig is an immutable, validated parameter set injected into the
lending core and the liquidity vault. It is never edited in place: a change
is a new ProtocolConfig with a higher version, produced by migrate_config()
and installed through LendingCore.load_protocol_config().

Out-of-bounds values raise InvalidConfiguration; nothing is clamped.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Union
import logging

import yaml

from .core import BPS_DENOMINATOR, SECONDS_PER_DAY, InvalidConfiguration, to_decimal
from .registry import AssetTier

logger = logging.getLogger(__name__)


# Bounds
MIN_PROFIT_TARGET_RATE = Decimal("0.0025")
MIN_BORROW_RATE = Decimal("0.01")
MAX_RATE = Decimal("1")
MIN_REWARD_INTERVAL = 90 * SECONDS_PER_DAY
MIN_REWARDABLE_SUPPLY = Decimal("20000")
MIN_LIQUIDATOR_THRESHOLD = Decimal("10")
MAX_FLASH_LOAN_FEE_BPS = 100
MAX_COMMISSION_RATE = Decimal("0.5")
MAX_LIQUIDATION_FEE = Decimal("0.1")


@dataclass(frozen=True, slots=True)
class TierParameters:
    """Per-tier rate premium at full utilization and liquidation fee (fractions)."""
    jump_rate: Decimal
    liquidation_fee: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'jump_rate', to_decimal(self.jump_rate))
        object.__setattr__(self, 'liquidation_fee', to_decimal(self.liquidation_fee))
        if not (Decimal("0") <= self.jump_rate <= MAX_RATE):
            raise InvalidConfiguration(f"jump_rate must be in [0, {MAX_RATE}], got {self.jump_rate}")
        if not (Decimal("0") <= self.liquidation_fee <= MAX_LIQUIDATION_FEE):
            raise InvalidConfiguration(
                f"liquidation_fee must be in [0, {MAX_LIQUIDATION_FEE}], got {self.liquidation_fee}"
            )


def default_tier_parameters() -> Dict[AssetTier, TierParameters]:
    return {
        AssetTier.STABLE: TierParameters(Decimal("0.05"), Decimal("0.01")),
        AssetTier.CROSS_A: TierParameters(Decimal("0.08"), Decimal("0.02")),
        AssetTier.CROSS_B: TierParameters(Decimal("0.12"), Decimal("0.03")),
        AssetTier.ISOLATED: TierParameters(Decimal("0.15"), Decimal("0.04")),
    }


@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    """
    Protocol parameters shared by the lending core and the vault.

    Rates are annual fractions. reward_interval is in seconds.
    rewardable_supply is a base-currency value; liquidator_threshold is an
    amount of governance_token.
    """
    profit_target_rate: Decimal = Decimal("0.01")
    borrow_rate: Decimal = Decimal("0.06")
    reward_amount: Decimal = Decimal("2000")
    reward_interval: int = 180 * SECONDS_PER_DAY
    rewardable_supply: Decimal = Decimal("100000")
    liquidator_threshold: Decimal = Decimal("20000")
    flash_loan_fee_bps: int = 9
    commission_rate: Decimal = Decimal("0.01")
    governance_token: str = "GOV"
    tier_parameters: Mapping[AssetTier, TierParameters] = field(default_factory=default_tier_parameters)
    version: int = 1

    def __post_init__(self):
        for name in ('profit_target_rate', 'borrow_rate', 'reward_amount',
                     'rewardable_supply', 'liquidator_threshold', 'commission_rate'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        self._validate()

    def _validate(self) -> None:
        if not (MIN_PROFIT_TARGET_RATE <= self.profit_target_rate <= MAX_RATE):
            raise InvalidConfiguration(
                f"profit_target_rate must be in [{MIN_PROFIT_TARGET_RATE}, {MAX_RATE}], "
                f"got {self.profit_target_rate}"
            )
        if not (MIN_BORROW_RATE <= self.borrow_rate <= MAX_RATE):
            raise InvalidConfiguration(
                f"borrow_rate must be in [{MIN_BORROW_RATE}, {MAX_RATE}], got {self.borrow_rate}"
            )
        if self.reward_amount < 0:
            raise InvalidConfiguration(f"reward_amount cannot be negative, got {self.reward_amount}")
        if self.reward_interval < MIN_REWARD_INTERVAL:
            raise InvalidConfiguration(
                f"reward_interval must be at least {MIN_REWARD_INTERVAL}s, got {self.reward_interval}"
            )
        if self.rewardable_supply < MIN_REWARDABLE_SUPPLY:
            raise InvalidConfiguration(
                f"rewardable_supply must be at least {MIN_REWARDABLE_SUPPLY}, got {self.rewardable_supply}"
            )
        if self.liquidator_threshold < MIN_LIQUIDATOR_THRESHOLD:
            raise InvalidConfiguration(
                f"liquidator_threshold must be at least {MIN_LIQUIDATOR_THRESHOLD}, "
                f"got {self.liquidator_threshold}"
            )
        if not (0 <= self.flash_loan_fee_bps <= MAX_FLASH_LOAN_FEE_BPS):
            raise InvalidConfiguration(
                f"flash_loan_fee_bps must be in [0, {MAX_FLASH_LOAN_FEE_BPS}], got {self.flash_loan_fee_bps}"
            )
        if not (Decimal("0") <= self.commission_rate <= MAX_COMMISSION_RATE):
            raise InvalidConfiguration(
                f"commission_rate must be in [0, {MAX_COMMISSION_RATE}], got {self.commission_rate}"
            )
        if not self.governance_token:
            raise InvalidConfiguration("governance_token cannot be empty")
        missing = [tier.value for tier in AssetTier if tier not in self.tier_parameters]
        if missing:
            raise InvalidConfiguration(f"tier_parameters missing tiers: {missing}")
        if self.version < 1:
            raise InvalidConfiguration(f"version must be >= 1, got {self.version}")

    @property
    def flash_loan_fee_rate(self) -> Decimal:
        return Decimal(self.flash_loan_fee_bps) / BPS_DENOMINATOR

    def jump_rate(self, tier: AssetTier) -> Decimal:
        return self.tier_parameters[tier].jump_rate

    def liquidation_fee(self, tier: AssetTier) -> Decimal:
        return self.tier_parameters[tier].liquidation_fee

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProtocolConfig:
        """
        Build a config from plain data (YAML/JSON shaped).

        Unknown keys raise InvalidConfiguration. tier_parameters entries may
        cover only some tiers; the rest keep their defaults.
        """
        known = set(cls.__dataclass_fields__)
        unknown = set(raw) - known
        if unknown:
            raise InvalidConfiguration(f"Unknown protocol config keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {k: v for k, v in raw.items() if k != 'tier_parameters'}
        for key in ('reward_interval', 'flash_loan_fee_bps', 'version'):
            if key in kwargs:
                kwargs[key] = int(kwargs[key])
        if 'governance_token' in kwargs:
            kwargs['governance_token'] = str(kwargs['governance_token'])

        tiers = default_tier_parameters()
        for tier_name, params in (raw.get('tier_parameters') or {}).items():
            try:
                tier = AssetTier(tier_name)
            except ValueError:
                raise InvalidConfiguration(f"Unknown tier {tier_name!r}") from None
            tiers[tier] = TierParameters(
                jump_rate=params.get('jump_rate', tiers[tier].jump_rate),
                liquidation_fee=params.get('liquidation_fee', tiers[tier].liquidation_fee),
            )
        kwargs['tier_parameters'] = tiers
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Inverse of from_mapping()."""
        return {
            'profit_target_rate': self.profit_target_rate,
            'borrow_rate': self.borrow_rate,
            'reward_amount': self.reward_amount,
            'reward_interval': self.reward_interval,
            'rewardable_supply': self.rewardable_supply,
            'liquidator_threshold': self.liquidator_threshold,
            'flash_loan_fee_bps': self.flash_loan_fee_bps,
            'commission_rate': self.commission_rate,
            'governance_token': self.governance_token,
            'tier_parameters': {
                tier.value: {
                    'jump_rate': params.jump_rate,
                    'liquidation_fee': params.liquidation_fee,
                }
                for tier, params in self.tier_parameters.items()
            },
            'version': self.version,
        }


def migrate_config(config: ProtocolConfig, **changes: Any) -> ProtocolConfig:
    """
    Return the next version of `config` with `changes` applied.

    The result is fully re-validated. Passing `version` is not allowed;
    the version always increases by one.
    """
    if 'version' in changes:
        raise InvalidConfiguration("version is assigned by migrate_config")
    return replace(config, version=config.version + 1, **changes)


def load_protocol_config_file(path: Union[str, Path]) -> ProtocolConfig:
    """
    Load a ProtocolConfig from a YAML file.

    The document is either the config mapping itself or has it under a
    top-level `protocol` key. Rates are read through str() so 0.06 stays 0.06.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise InvalidConfiguration(f"{path}: expected a mapping, got {type(raw).__name__}")
    if 'protocol' in raw:
        raw = raw['protocol']

    config = ProtocolConfig.from_mapping(raw)
    logger.info("Protocol config v%d loaded from %s", config.version, path)
    return config
