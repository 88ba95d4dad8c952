"""
market.py - The lending core: borrower positions against a liquidity vault

LendingCore ties the pieces together:
- positions (lending.units.position) record collateral and debt
- credit (lending.credit) values collateral into credit limits
- interest (lending.interest) compounds debt before every debt change
- liquidation (lending.liquidation) decides eligibility and cost
- the LiquidityVault lends the base asset and receives repayments

Each public mutation is one ledger.atomic() scope. A failure at any step,
including inside the vault, restores every balance and unit state touched
by the operation.

Usage:
    core = create_market(ledger, registry, ProtocolConfig(), admin="governor")
    pid = core.open_position("alice", "WETH", isolated=False)
    core.supply_collateral("alice", "WETH", Decimal("1"), pid)
    core.borrow("alice", pid, Decimal("1000"), expected_credit_limit, 100)
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from .access import AccessControl, Role
from .config import ProtocolConfig
from .core import (
    EVENT_BORROWED, EVENT_COLLATERAL_SUPPLIED, EVENT_COLLATERAL_WITHDRAWN,
    EVENT_INTEREST_ACCRUED, EVENT_LIQUIDATED, EVENT_MARKET_INITIALIZED,
    EVENT_POSITION_CLOSED, EVENT_POSITION_OPENED, EVENT_PROTOCOL_CONFIG_UPDATED,
    EVENT_REPAID,
    MAX_AMOUNT, POOL_LIQUIDITY_LIMIT, QUANTITY_EPSILON, UNIT_TYPE_POSITION,
    ExecuteResult, Move, OriginType, PendingTransaction, Transaction, TransactionOrigin,
    UnitStateChange,
    AlreadyInitialized, AssetCapacityReached, AssetNotActive, CreditLimitExceeded,
    InsufficientCollateral, InsufficientFunds, InvalidConfiguration, InvalidPosition,
    IsolatedAssetViolation, IsolationDebtCapExceeded, LowLiquidity, NoOutstandingDebt,
    NotEnoughGovernanceTokens, NotInitialized, NotLiquidatable, PoolLiquidityLimitReached,
    TransactionRejected, ValidationError, ZeroAddress, ZeroAmount,
    build_transaction, market_unit, quantize_down, to_decimal,
)
from .credit import CreditLimits, compute_limits, compute_position_tier
from .guards import (
    SameBlockGuard, check_max_slippage, check_min_slippage, validate_slippage_bps,
)
from .interest import calculate_accrued_interest, calculate_borrow_rate, elapsed_seconds
from .ledger import Ledger
from .liquidation import (
    LiquidationQuote, calculate_health_factor, calculate_liquidation_fee, quote_liquidation,
)
from .liquidation import is_liquidatable as position_is_liquidatable
from .registry import AssetRegistry, AssetTier
from .units.position import (
    Position,
    calculate_accrual, calculate_borrow, calculate_closed, calculate_liquidated,
    calculate_repay, calculate_supply, calculate_withdraw,
    collateral_moves, get_holdings, is_custody_wallet, load_position, new_position,
    open_position_transaction, position_symbol, position_transaction,
)
from .vault import LiquidityVault

logger = logging.getLogger(__name__)


class LendingCore:
    """
    Collateralized lending against a single-asset liquidity vault.

    Positions are keyed by (owner, index); indices start at 0 per owner and
    are never reused. Every mutating method takes the caller identity first;
    position methods act on the caller's own positions.
    """

    def __init__(
        self,
        ledger: Ledger,
        registry: AssetRegistry,
        vault: LiquidityVault,
        config: ProtocolConfig,
        access: AccessControl,
        guard: Optional[SameBlockGuard] = None,
        account: str = "lending_core",
    ):
        if registry.base_currency != vault.asset:
            raise InvalidConfiguration(
                f"Registry quotes in {registry.base_currency} but the vault lends {vault.asset}"
            )
        self.ledger = ledger
        self.registry = registry
        self.vault = vault
        self.access = access
        self.guard = guard or vault.guard
        self.account = account
        self.market_symbol = f"MARKET:{vault.asset}"
        self._config = config

    @property
    def config(self) -> ProtocolConfig:
        return self._config

    @property
    def base_asset(self) -> str:
        return self.vault.asset

    @property
    def base_decimals(self) -> int:
        return self.vault.vault_state().asset_decimals

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @property
    def initialized(self) -> bool:
        return self.ledger.has_unit(self.market_symbol)

    def initialize(self, admin: str) -> None:
        """
        Record the market and its protocol configuration on the ledger.

        The vault must already be initialized with this core's account as CORE.

        Raises:
            AlreadyInitialized: on a second call
            NotInitialized: vault not initialized
            Unauthorized: admin lacks ADMIN
        """
        if self.initialized:
            raise AlreadyInitialized(f"Market {self.market_symbol} already initialized")
        if not admin:
            raise ZeroAddress("admin cannot be empty")
        if not self.vault.initialized:
            raise NotInitialized(f"Vault {self.vault.share_symbol} not initialized")
        self.access.require_role(Role.ADMIN, admin)
        self.access.require_role(Role.CORE, self.account)

        unit = market_unit(self.market_symbol, f"{self.base_asset} lending market", self._market_state(self._config))
        origin = TransactionOrigin(OriginType.SYSTEM, admin, self.market_symbol, EVENT_MARKET_INITIALIZED)
        with self.ledger.atomic():
            self._execute(build_transaction(self.ledger, [], None, origin, units_to_create=(unit,)))
        logger.info("Market %s initialized with config v%d", self.market_symbol, self._config.version)

    def load_protocol_config(self, caller: str, config: ProtocolConfig) -> None:
        """
        Replace the protocol configuration. MANAGER only; the version must increase.

        Raises:
            Unauthorized: caller lacks MANAGER
            InvalidConfiguration: version not greater than the current one
        """
        self._require_initialized()
        self.access.require_role(Role.MANAGER, caller)
        if config.version <= self._config.version:
            raise InvalidConfiguration(
                f"config version must increase (current v{self._config.version}, got v{config.version})"
            )
        change = UnitStateChange(
            unit=self.market_symbol,
            old_state=self.ledger.get_unit_state(self.market_symbol),
            new_state=self._market_state(config),
        )
        with self.ledger.atomic():
            self._execute(build_transaction(
                self.ledger, [], [change], self._origin(caller, EVENT_PROTOCOL_CONFIG_UPDATED, self.market_symbol),
            ))
            self.vault.set_config(self.account, config)
        self._config = config
        logger.info("Protocol config v%d loaded by %s", config.version, caller)

    def _market_state(self, config: ProtocolConfig) -> Dict:
        return {
            'base_asset': self.base_asset,
            'vault': self.vault.share_symbol,
            'core_account': self.account,
            'config': config.to_dict(),
        }

    # ========================================================================
    # POSITION OPERATIONS
    # ========================================================================

    def open_position(self, caller: str, asset: str, isolated: bool) -> int:
        """
        Open an empty position and return its index.

        Raises:
            AssetNotListed, AssetNotActive: asset unusable
            IsolatedAssetViolation: cross position opened on an ISOLATED-tier asset
        """
        self._require_initialized()
        self._require_caller(caller)
        asset_config = self._listed_active(asset)
        if not isolated and asset_config.tier == AssetTier.ISOLATED:
            raise IsolatedAssetViolation(f"{asset} is ISOLATED tier; open an isolated position")

        index = self.get_user_positions_count(caller)
        position = new_position(caller, index, asset, isolated, self.ledger.current_time)
        with self.ledger.atomic():
            self.ledger.ensure_wallet(caller)
            self.ledger.ensure_wallet(position.custody_wallet)
            self._execute(open_position_transaction(
                self.ledger, position, self._origin(caller, EVENT_POSITION_OPENED, position.symbol),
            ))
        logger.info("%s opened %s position %s", caller, "isolated" if isolated else "cross", position.symbol)
        return index

    def supply_collateral(self, caller: str, asset: str, amount: Decimal, position_id: int) -> None:
        """
        Move `amount` of `asset` from the caller into the position's custody.

        Raises:
            ZeroAmount, InvalidPosition, IsolatedAssetViolation, InvalidAssetForIsolation,
            MaximumAssetsReached, AssetCapacityReached, PoolLiquidityLimitReached,
            InsufficientFunds
        """
        self._require_initialized()
        self._require_caller(caller)
        position = self._active_position(caller, position_id)
        asset_config = self._listed_active(asset)
        amount = self._amount(amount, asset_config.decimals)

        if not position.isolated and asset_config.tier == AssetTier.ISOLATED:
            raise IsolatedAssetViolation(f"{asset} is ISOLATED tier and cannot back cross position {position.symbol}")
        updated = calculate_supply(position, asset)

        held_by_protocol = self._protocol_collateral(asset)
        if held_by_protocol + amount > asset_config.max_supply_threshold:
            raise AssetCapacityReached(
                f"{asset}: {held_by_protocol} held + {amount} exceeds cap {asset_config.max_supply_threshold}"
            )
        if asset_config.pool_liquidity > 0 and amount > asset_config.pool_liquidity * POOL_LIQUIDITY_LIMIT:
            raise PoolLiquidityLimitReached(
                f"{asset}: {amount} exceeds {POOL_LIQUIDITY_LIMIT:%} of pool liquidity {asset_config.pool_liquidity}"
            )
        self._require_balance(caller, asset, amount)

        with self.ledger.atomic():
            moves = [Move(amount, asset, caller, position.custody_wallet, f"{position.symbol}:supply")]
            self._execute(position_transaction(
                self.ledger, updated, moves, self._origin(caller, EVENT_COLLATERAL_SUPPLIED, position.symbol),
            ))
        logger.info("%s supplied %s %s to %s", caller, amount, asset, position.symbol)

    def withdraw_collateral(
        self,
        caller: str,
        asset: str,
        amount: Decimal,
        position_id: int,
        expected_credit_limit: Decimal,
        max_slippage_bps: int,
    ) -> Decimal:
        """
        Return collateral to the caller if the remaining basket still covers the debt.

        Returns:
            the credit limit after the withdrawal

        Raises:
            InsufficientCollateral: more than the position holds
            CreditLimitExceeded: debt would exceed the remaining credit limit
            MEVSlippageExceeded: remaining credit limit below expected - tolerance
        """
        self._enter(caller, max_slippage_bps)
        position = self._active_position(caller, position_id)
        amount = self._amount(amount, self._decimals(asset))
        held = self.ledger.get_balance(position.custody_wallet, asset) if asset in position.assets else Decimal("0")
        if amount > held:
            raise InsufficientCollateral(f"{position.symbol} holds {held} {asset}, asked {amount}")

        with self.ledger.atomic():
            position = self._accrue(position)
            remaining = get_holdings(self.ledger, position)
            remaining[asset] = held - amount
            remaining = {a: q for a, q in remaining.items() if q > QUANTITY_EPSILON}
            limits = compute_limits(self.ledger, self.registry, position, self.base_decimals, remaining)
            if position.debt > limits.credit_limit:
                raise CreditLimitExceeded(
                    f"{position.symbol} owes {position.debt}, credit limit after withdrawal {limits.credit_limit}"
                )
            check_min_slippage(limits.credit_limit, expected_credit_limit, max_slippage_bps, "credit limit")

            updated = calculate_withdraw(position, asset, held - amount)
            moves = [Move(amount, asset, position.custody_wallet, caller, f"{position.symbol}:withdraw")]
            self._execute(position_transaction(
                self.ledger, updated, moves, self._origin(caller, EVENT_COLLATERAL_WITHDRAWN, position.symbol),
            ))

        self.guard.record(caller, self.ledger.block_height)
        logger.info("%s withdrew %s %s from %s", caller, amount, asset, position.symbol)
        return limits.credit_limit

    def borrow(
        self,
        caller: str,
        position_id: int,
        amount: Decimal,
        expected_credit_limit: Decimal,
        max_slippage_bps: int,
    ) -> None:
        """
        Draw `amount` of the base asset from the vault against the position.

        Existing debt accrues first; the new principal is added after.

        Raises:
            CreditLimitExceeded, IsolationDebtCapExceeded, LowLiquidity, MEVSlippageExceeded
        """
        self._enter(caller, max_slippage_bps)
        position = self._active_position(caller, position_id)
        amount = self._amount(amount, self.base_decimals)

        with self.ledger.atomic():
            position = self._accrue(position)
            limits = compute_limits(self.ledger, self.registry, position, self.base_decimals)
            new_debt = position.debt + amount
            if new_debt > limits.credit_limit:
                raise CreditLimitExceeded(
                    f"{position.symbol}: debt {new_debt} would exceed credit limit {limits.credit_limit}"
                )
            if position.isolated:
                isolated_config = self.registry.get_asset_config(position.isolated_asset)
                if isolated_config.tier == AssetTier.ISOLATED and new_debt > isolated_config.isolation_debt_cap:
                    raise IsolationDebtCapExceeded(
                        f"{position.symbol}: debt {new_debt} exceeds {position.isolated_asset} "
                        f"isolation cap {isolated_config.isolation_debt_cap}"
                    )
            available = self.vault.available_liquidity()
            if amount > available:
                raise LowLiquidity(f"Vault can lend {available} {self.base_asset}, asked {amount}")
            check_min_slippage(limits.credit_limit, expected_credit_limit, max_slippage_bps, "credit limit")

            updated = calculate_borrow(position, amount, self.ledger.current_time)
            self._execute(position_transaction(
                self.ledger, updated, [], self._origin(caller, EVENT_BORROWED, position.symbol),
            ))
            self.vault.borrow(self.account, amount, caller)

        self.guard.record(caller, self.ledger.block_height)
        logger.info("%s borrowed %s %s on %s", caller, amount, self.base_asset, position.symbol)

    def repay(
        self,
        caller: str,
        position_id: int,
        amount: Decimal,
        expected_debt: Decimal,
        max_slippage_bps: int,
    ) -> Decimal:
        """
        Repay min(amount, debt). MAX_AMOUNT repays everything owed.

        Returns:
            the amount actually paid

        Raises:
            NoOutstandingDebt: nothing owed after accrual
            MEVSlippageExceeded: debt above expected + tolerance
        """
        self._enter(caller, max_slippage_bps)
        position = self._active_position(caller, position_id)
        amount = self._amount(amount, self.base_decimals, allow_max=True)

        with self.ledger.atomic():
            position = self._accrue(position)
            if position.debt <= 0:
                raise NoOutstandingDebt(f"{position.symbol} owes nothing")
            check_max_slippage(position.debt, expected_debt, max_slippage_bps, "debt")
            paid = min(amount, position.debt)
            self._settle_debt(caller, position, paid)

        self.guard.record(caller, self.ledger.block_height)
        logger.info("%s repaid %s %s on %s", caller, paid, self.base_asset, position.symbol)
        return paid

    def exit_position(
        self,
        caller: str,
        position_id: int,
        expected_cost: Decimal,
        max_slippage_bps: int,
    ) -> Decimal:
        """
        Repay all debt, return all collateral to the caller and close the position.

        Returns:
            the debt repaid (0 for a debt-free position)
        """
        self._enter(caller, max_slippage_bps)
        position = self._active_position(caller, position_id)

        with self.ledger.atomic():
            position = self._accrue(position)
            check_max_slippage(position.debt, expected_cost, max_slippage_bps, "exit cost")
            paid = position.debt
            if paid > 0:
                position = self._settle_debt(caller, position, paid)

            moves = collateral_moves(
                get_holdings(self.ledger, position), position.custody_wallet, caller, f"{position.symbol}:exit",
            )
            closed = calculate_closed(position, self.ledger.current_time)
            self._execute(position_transaction(
                self.ledger, closed, moves, self._origin(caller, EVENT_POSITION_CLOSED, position.symbol),
            ))

        self.guard.record(caller, self.ledger.block_height)
        logger.info("%s closed %s after repaying %s", caller, position.symbol, paid)
        return paid

    def liquidate(
        self,
        caller: str,
        owner: str,
        position_id: int,
        max_repay_amount: Decimal,
        max_slippage_bps: int,
    ) -> LiquidationQuote:
        """
        Repay an unhealthy position's whole debt plus fee and take all its collateral.

        Raises:
            NotEnoughGovernanceTokens: caller stakes less than liquidator_threshold
            InvalidPosition: position missing or not ACTIVE
            NotLiquidatable: liquidation level covers the debt
            MEVSlippageExceeded: debt + fee above max_repay_amount + tolerance
        """
        self._enter(caller, max_slippage_bps)
        stake = self._balance(caller, self._config.governance_token)
        if stake < self._config.liquidator_threshold:
            raise NotEnoughGovernanceTokens(
                f"{caller} holds {stake} {self._config.governance_token}, "
                f"needs {self._config.liquidator_threshold}"
            )
        position = self._active_position(owner, position_id)

        with self.ledger.atomic():
            position = self._accrue(position)
            holdings = get_holdings(self.ledger, position)
            limits = compute_limits(self.ledger, self.registry, position, self.base_decimals, holdings)
            if not position_is_liquidatable(limits.liquidation_level, position.debt):
                raise NotLiquidatable(
                    f"{position.symbol}: liquidation level {limits.liquidation_level} covers debt {position.debt}"
                )
            tier = compute_position_tier(self.registry, position)
            quote = quote_liquidation(
                position.debt, self._config.liquidation_fee(tier), holdings,
                limits.total_value, self.base_decimals,
            )
            check_max_slippage(quote.total_cost, max_repay_amount, max_slippage_bps, "liquidation cost")

            liquidated = calculate_liquidated(position, self.ledger.current_time)
            moves = collateral_moves(holdings, position.custody_wallet, caller, f"{position.symbol}:liquidate")
            self._execute(position_transaction(
                self.ledger, liquidated, moves, self._origin(caller, EVENT_LIQUIDATED, position.symbol),
            ))
            self.vault.repay(self.account, quote.debt, caller)
            if quote.fee > 0:
                self.vault.boost_yield(self.account, caller, quote.fee, payer=caller)

        self.guard.record(caller, self.ledger.block_height)
        logger.info(
            "%s liquidated %s: debt %s, fee %s, collateral %s",
            caller, position.symbol, quote.debt, quote.fee, dict(quote.collateral),
        )
        return quote

    # ========================================================================
    # VIEWS
    # ========================================================================

    def get_user_positions_count(self, owner: str) -> int:
        count = 0
        while self.ledger.has_unit(position_symbol(owner, count)):
            count += 1
        return count

    def get_user_position(self, owner: str, position_id: int) -> Position:
        if position_id < 0:
            raise InvalidPosition(f"Position index cannot be negative, got {position_id}")
        return load_position(self.ledger, position_symbol(owner, position_id))

    def get_user_positions(self, owner: str) -> List[Position]:
        return [self.get_user_position(owner, i) for i in range(self.get_user_positions_count(owner))]

    def get_position_collateral_assets(self, owner: str, position_id: int) -> List[str]:
        return list(self.get_user_position(owner, position_id).assets)

    def get_collateral_amount(self, owner: str, position_id: int, asset: str) -> Decimal:
        position = self.get_user_position(owner, position_id)
        if asset not in position.assets:
            return Decimal("0")
        return self.ledger.get_balance(position.custody_wallet, asset)

    def calculate_limits(self, owner: str, position_id: int) -> CreditLimits:
        position = self.get_user_position(owner, position_id)
        return compute_limits(self.ledger, self.registry, position, self.base_decimals)

    def calculate_credit_limit(self, owner: str, position_id: int) -> Decimal:
        return self.calculate_limits(owner, position_id).credit_limit

    def calculate_debt_with_interest(self, owner: str, position_id: int) -> Decimal:
        """Debt including interest up to now, without committing it."""
        position = self.get_user_position(owner, position_id)
        if not position.is_active or position.debt <= 0:
            return position.debt
        new_debt, _ = calculate_accrued_interest(
            position.debt, self._position_rate(position),
            position.last_interest_accrual, self.ledger.current_time, self.base_decimals,
        )
        return new_debt

    def health_factor(self, owner: str, position_id: int) -> Decimal:
        limits = self.calculate_limits(owner, position_id)
        return calculate_health_factor(limits.liquidation_level, self.calculate_debt_with_interest(owner, position_id))

    def is_liquidatable(self, owner: str, position_id: int) -> bool:
        position = self.get_user_position(owner, position_id)
        if not position.is_active:
            return False
        limits = self.calculate_limits(owner, position_id)
        return position_is_liquidatable(limits.liquidation_level, self.calculate_debt_with_interest(owner, position_id))

    def get_position_tier(self, owner: str, position_id: int) -> AssetTier:
        return compute_position_tier(self.registry, self.get_user_position(owner, position_id))

    def get_position_liquidation_fee(self, owner: str, position_id: int) -> Decimal:
        """Fee rate charged on the position's debt if it were liquidated."""
        return self._config.liquidation_fee(self.get_position_tier(owner, position_id))

    def quote_liquidation_fee(self, owner: str, position_id: int) -> Decimal:
        """Fee amount a liquidator would pay now."""
        return calculate_liquidation_fee(
            self.calculate_debt_with_interest(owner, position_id),
            self.get_position_liquidation_fee(owner, position_id),
            self.base_decimals,
        )

    def total_borrow(self) -> Decimal:
        return self.vault.total_borrow()

    def utilization(self) -> Decimal:
        return self.vault.utilization()

    def get_supply_rate(self) -> Decimal:
        return self.vault.get_supply_rate()

    def get_borrow_rate(self, tier: AssetTier) -> Decimal:
        """Annual borrow rate for `tier` at the vault's current utilization."""
        return calculate_borrow_rate(
            self.utilization(),
            self._config.borrow_rate,
            self._config.profit_target_rate,
            self._config.jump_rate(tier),
        )

    def is_collateralized(self) -> Tuple[bool, Decimal]:
        """
        Protocol-wide solvency check.

        Returns:
            (total collateral value >= vault total_borrow, total collateral value)
        """
        total_value = Decimal("0")
        for symbol in self.ledger.list_units():
            if self.ledger.get_unit(symbol).unit_type != UNIT_TYPE_POSITION:
                continue
            position = load_position(self.ledger, symbol)
            if position.is_active:
                total_value += compute_limits(self.ledger, self.registry, position, self.base_decimals).total_value
        return total_value >= self.total_borrow(), total_value

    def events(self, event_type: Optional[str] = None) -> List[Transaction]:
        return self.ledger.events(event_type)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise NotInitialized(f"Market {self.market_symbol} not initialized")

    @staticmethod
    def _require_caller(caller: str) -> None:
        if not caller:
            raise ZeroAddress("caller cannot be empty")

    def _enter(self, caller: str, max_slippage_bps: int) -> None:
        """Preconditions shared by guarded operations; record() happens on success."""
        self._require_initialized()
        self._require_caller(caller)
        validate_slippage_bps(max_slippage_bps)
        self.guard.check(caller, self.ledger.block_height)

    def _active_position(self, owner: str, position_id: int) -> Position:
        position = self.get_user_position(owner, position_id)
        if not position.is_active:
            raise InvalidPosition(f"{position.symbol} is {position.status}")
        return position

    def _listed_active(self, asset: str):
        asset_config = self.registry.get_asset_config(asset)
        if not asset_config.active:
            raise AssetNotActive(f"{asset} is not active")
        return asset_config

    def _decimals(self, asset: str) -> int:
        return self.ledger.get_unit(asset).decimal_places or 0

    @staticmethod
    def _amount(amount: Decimal, decimals: int, allow_max: bool = False) -> Decimal:
        amount = to_decimal(amount)
        if allow_max and amount == MAX_AMOUNT:
            return amount
        if not amount.is_finite():
            raise ValidationError(f"amount must be finite, got {amount}")
        amount = quantize_down(amount, decimals)
        if amount <= 0:
            raise ZeroAmount(f"amount must be positive at {decimals} decimals")
        return amount

    def _balance(self, wallet: str, unit: str) -> Decimal:
        if not self.ledger.is_registered(wallet) or not self.ledger.has_unit(unit):
            return Decimal("0")
        return self.ledger.get_balance(wallet, unit)

    def _require_balance(self, wallet: str, unit: str, amount: Decimal) -> None:
        held = self._balance(wallet, unit)
        if held < amount:
            raise InsufficientFunds(f"{wallet} holds {held} {unit}, needs {amount}")

    def _protocol_collateral(self, asset: str) -> Decimal:
        """Total of `asset` held across all position custody wallets."""
        if not self.ledger.has_unit(asset):
            return Decimal("0")
        return sum(
            (qty for wallet, qty in self.ledger.get_positions(asset).items() if is_custody_wallet(wallet)),
            Decimal("0"),
        )

    def _position_rate(self, position: Position) -> Decimal:
        return self.get_borrow_rate(compute_position_tier(self.registry, position))

    def _accrue(self, position: Position) -> Position:
        """
        Commit interest owed since the last accrual and book it in the vault.

        Must run inside the caller's atomic scope. Returns the position as
        committed (unchanged when no interest is due).
        """
        if position.debt <= 0:
            return position
        now = self.ledger.current_time
        if elapsed_seconds(position.last_interest_accrual, now) == 0:
            return position
        new_debt, interest = calculate_accrued_interest(
            position.debt, self._position_rate(position),
            position.last_interest_accrual, now, self.base_decimals,
        )
        if interest <= 0:
            return position
        updated = calculate_accrual(position, new_debt, now)
        self._execute(position_transaction(
            self.ledger, updated, [], self._origin(self.account, EVENT_INTEREST_ACCRUED, position.symbol),
        ))
        self.vault.record_interest(self.account, interest)
        logger.debug("%s accrued %s interest (debt %s)", position.symbol, interest, new_debt)
        return updated

    def _settle_debt(self, payer: str, position: Position, paid: Decimal) -> Position:
        self._require_balance(payer, self.base_asset, paid)
        updated = calculate_repay(position, paid, self.ledger.current_time)
        self._execute(position_transaction(
            self.ledger, updated, [], self._origin(payer, EVENT_REPAID, position.symbol),
        ))
        self.vault.repay(self.account, paid, payer)
        return updated

    def _origin(self, caller: str, event: str, unit_symbol: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.USER_ACTION, f"{caller}#{self.ledger.next_sequence}", unit_symbol, event)

    def _execute(self, pending: PendingTransaction) -> None:
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise TransactionRejected(
                f"{pending.origin.event_type} rejected: {self.ledger.last_rejection or result.value}"
            )


def create_market(
    ledger: Ledger,
    registry: AssetRegistry,
    config: Optional[ProtocolConfig] = None,
    admin: str = "governor",
    treasury: str = "treasury",
    access: Optional[AccessControl] = None,
    account: str = "lending_core",
) -> LendingCore:
    """
    Build and initialize a vault plus lending core for registry.base_currency.

    The base asset must already be registered on the ledger. Both share one
    same-block guard and one access table.
    """
    config = config or ProtocolConfig()
    access = access or AccessControl()
    guard = SameBlockGuard()
    vault = LiquidityVault(ledger, registry.base_currency, config, access, guard)
    core = LendingCore(ledger, registry, vault, config, access, guard, account)
    with ledger.atomic(), access.atomic():
        vault.initialize(admin, account, treasury)
        core.initialize(admin)
    return core
