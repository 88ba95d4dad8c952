"""
lending - Collateralized Lending Accounting Core

Borrowers lock collateral in positions and borrow the base asset from a
share-based liquidity vault. Every operation is an atomic step on a
double-entry Ledger.

Usage:
    from decimal import Decimal
    from lending import (
        Ledger, token, AssetConfig, AssetTier, StaticAssetRegistry,
        ProtocolConfig, create_market,
    )

    ledger = Ledger("main")
    ledger.register_unit(token("USDC", "USD Coin", 6))
    ledger.register_unit(token("WETH", "Wrapped Ether", 18))

    registry = StaticAssetRegistry(
        {"WETH": AssetConfig("WETH", 18, AssetTier.CROSS_A,
                             Decimal("0.80"), Decimal("0.85"), Decimal("10000"))},
        {"WETH": Decimal("2500")},
    )
    core = create_market(ledger, registry, ProtocolConfig())

    core.vault.deposit_liquidity("lender", Decimal("100000"), Decimal("100000"), 0)
    pid = core.open_position("alice", "WETH", isolated=False)
    core.supply_collateral("alice", "WETH", Decimal("1"), pid)
    core.borrow("alice", pid, Decimal("1000"), Decimal("2000"), 100)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    vault_share,
    market_unit,
    quantize_down,
    quantize_up,
    SYSTEM_WALLET,
    MAX_AMOUNT,
    HEALTH_FACTOR_MAX,
    MAX_ASSETS_PER_POSITION,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_VAULT_SHARE,
    UNIT_TYPE_POSITION,
    UNIT_TYPE_MARKET,
    # Events
    EVENT_MARKET_INITIALIZED,
    EVENT_VAULT_INITIALIZED,
    EVENT_POSITION_OPENED,
    EVENT_POSITION_CLOSED,
    EVENT_COLLATERAL_SUPPLIED,
    EVENT_COLLATERAL_WITHDRAWN,
    EVENT_BORROWED,
    EVENT_REPAID,
    EVENT_INTEREST_ACCRUED,
    EVENT_LIQUIDATED,
    EVENT_LIQUIDITY_DEPOSITED,
    EVENT_LIQUIDITY_WITHDRAWN,
    EVENT_SHARES_MINTED,
    EVENT_SHARES_REDEEMED,
    EVENT_YIELD_BOOSTED,
    EVENT_FLASH_LOAN,
    EVENT_FLASH_LOAN_ISSUED,
    EVENT_PROTOCOL_CONFIG_UPDATED,
    EVENT_VAULT_BORROW,
    EVENT_VAULT_REPAY,
    EVENT_VAULT_INTEREST_ACCRUED,
    # Errors
    LedgerError,
    InsufficientFunds,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    TransactionRejected,
    LendingError,
    ValidationError,
    ZeroAmount,
    ZeroAddress,
    InvalidPosition,
    InvalidSlippage,
    NoOutstandingDebt,
    InsufficientCollateral,
    InsufficientShares,
    PolicyViolation,
    IsolatedAssetViolation,
    InvalidAssetForIsolation,
    CreditLimitExceeded,
    IsolationDebtCapExceeded,
    AssetCapacityReached,
    PoolLiquidityLimitReached,
    MaximumAssetsReached,
    AssetNotListed,
    AssetNotActive,
    LowLiquidity,
    LiquidationStateError,
    NotLiquidatable,
    NotEnoughGovernanceTokens,
    TimingError,
    MEVSameBlockOperation,
    MEVSlippageExceeded,
    FlashLoanError,
    FlashLoanFailed,
    RepaymentFailed,
    ReentrantCall,
    Unauthorized,
    AlreadyInitialized,
    NotInitialized,
    PriceUnavailable,
    StalePrice,
    InterestOverflow,
    InvalidConfiguration,
)

# Ledger
from .ledger import Ledger

# Assets and prices
from .registry import (
    AssetTier,
    AssetConfig,
    AssetRegistry,
    StaticAssetRegistry,
    TimeSeriesAssetRegistry,
)

# Configuration
from .config import (
    TierParameters,
    ProtocolConfig,
    default_tier_parameters,
    migrate_config,
    load_protocol_config_file,
)

# Access control and guards
from .access import Role, AccessControl
from .guards import (
    SameBlockGuard,
    ReentrancyGuard,
    validate_slippage_bps,
    check_min_slippage,
    check_max_slippage,
)

# Pure calculators
from .credit import (
    CreditLimits,
    calculate_asset_value,
    calculate_limits,
    calculate_position_tier,
    compute_limits,
    compute_position_tier,
)
from .interest import (
    calculate_utilization,
    calculate_borrow_rate,
    calculate_compound_factor,
    calculate_debt_with_interest,
    calculate_accrued_interest,
)
from .liquidation import (
    LiquidationQuote,
    calculate_health_factor,
    is_liquidatable,
    calculate_liquidation_fee,
    quote_liquidation,
)

# Units
from .units.position import (
    Position,
    POSITION_STATUS_ACTIVE,
    POSITION_STATUS_CLOSED,
    POSITION_STATUS_LIQUIDATED,
    load_position,
)
from .units.vault import VaultState, Redemption

# Stateful components
from .vault import LiquidityVault, FlashLoanReceiver
from .market import LendingCore, create_market

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'token', 'vault_share', 'market_unit', 'quantize_down', 'quantize_up',
    'SYSTEM_WALLET', 'MAX_AMOUNT', 'HEALTH_FACTOR_MAX', 'MAX_ASSETS_PER_POSITION',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_VAULT_SHARE', 'UNIT_TYPE_POSITION', 'UNIT_TYPE_MARKET',
    # Events
    'EVENT_MARKET_INITIALIZED', 'EVENT_VAULT_INITIALIZED',
    'EVENT_POSITION_OPENED', 'EVENT_POSITION_CLOSED',
    'EVENT_COLLATERAL_SUPPLIED', 'EVENT_COLLATERAL_WITHDRAWN',
    'EVENT_BORROWED', 'EVENT_REPAID', 'EVENT_INTEREST_ACCRUED', 'EVENT_LIQUIDATED',
    'EVENT_LIQUIDITY_DEPOSITED', 'EVENT_LIQUIDITY_WITHDRAWN',
    'EVENT_SHARES_MINTED', 'EVENT_SHARES_REDEEMED', 'EVENT_YIELD_BOOSTED',
    'EVENT_FLASH_LOAN', 'EVENT_FLASH_LOAN_ISSUED', 'EVENT_PROTOCOL_CONFIG_UPDATED',
    'EVENT_VAULT_BORROW', 'EVENT_VAULT_REPAY', 'EVENT_VAULT_INTEREST_ACCRUED',
    # Errors
    'LedgerError', 'InsufficientFunds', 'TransferRuleViolation', 'UnitNotRegistered',
    'WalletNotRegistered', 'TransactionRejected', 'LendingError',
    'ValidationError', 'ZeroAmount', 'ZeroAddress', 'InvalidPosition', 'InvalidSlippage',
    'NoOutstandingDebt', 'InsufficientCollateral', 'InsufficientShares',
    'PolicyViolation', 'IsolatedAssetViolation', 'InvalidAssetForIsolation',
    'CreditLimitExceeded', 'IsolationDebtCapExceeded', 'AssetCapacityReached',
    'PoolLiquidityLimitReached', 'MaximumAssetsReached', 'AssetNotListed', 'AssetNotActive',
    'LowLiquidity', 'LiquidationStateError', 'NotLiquidatable', 'NotEnoughGovernanceTokens',
    'TimingError', 'MEVSameBlockOperation', 'MEVSlippageExceeded',
    'FlashLoanError', 'FlashLoanFailed', 'RepaymentFailed', 'ReentrantCall',
    'Unauthorized', 'AlreadyInitialized', 'NotInitialized',
    'PriceUnavailable', 'StalePrice', 'InterestOverflow', 'InvalidConfiguration',
    # Ledger
    'Ledger',
    # Registry
    'AssetTier', 'AssetConfig', 'AssetRegistry', 'StaticAssetRegistry', 'TimeSeriesAssetRegistry',
    # Config
    'TierParameters', 'ProtocolConfig', 'default_tier_parameters', 'migrate_config',
    'load_protocol_config_file',
    # Access and guards
    'Role', 'AccessControl', 'SameBlockGuard', 'ReentrancyGuard',
    'validate_slippage_bps', 'check_min_slippage', 'check_max_slippage',
    # Calculators
    'CreditLimits', 'calculate_asset_value', 'calculate_limits', 'calculate_position_tier',
    'compute_limits', 'compute_position_tier',
    'calculate_utilization', 'calculate_borrow_rate', 'calculate_compound_factor',
    'calculate_debt_with_interest', 'calculate_accrued_interest',
    'LiquidationQuote', 'calculate_health_factor', 'is_liquidatable',
    'calculate_liquidation_fee', 'quote_liquidation',
    # Units
    'Position', 'POSITION_STATUS_ACTIVE', 'POSITION_STATUS_CLOSED', 'POSITION_STATUS_LIQUIDATED',
    'load_position', 'VaultState', 'Redemption',
    # Stateful components
    'LiquidityVault', 'FlashLoanReceiver', 'LendingCore', 'create_market',
]

__version__ = '1.0.0'
