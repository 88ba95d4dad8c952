"""
vault.py - Share-based liquidity vault

LiquidityVault pools the base asset that funds loans. Lenders hold vault
shares; the lending core (CORE role) borrows from and repays into the pool;
anyone may flash-borrow against a fee.

Every mutating method runs inside one ledger.atomic() scope and records its
totals in the share unit's state (see lending.units.vault), so a failure
anywhere leaves balances, shares and totals exactly as they were.

Lender entry points (deposit/mint/withdraw/redeem) carry the same-block
guard and a slippage band. Nothing that mutates the vault may run while a
flash-loan callback is executing.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, List, Optional, Protocol, runtime_checkable
import logging

from .access import AccessControl, Role
from .config import ProtocolConfig
from .core import (
    DEFAULT_SHARE_DECIMALS, EVENT_FLASH_LOAN, EVENT_FLASH_LOAN_ISSUED,
    EVENT_LIQUIDITY_DEPOSITED, EVENT_LIQUIDITY_WITHDRAWN, EVENT_SHARES_MINTED,
    EVENT_SHARES_REDEEMED, EVENT_VAULT_BORROW, EVENT_VAULT_INITIALIZED,
    EVENT_VAULT_INTEREST_ACCRUED, EVENT_VAULT_REPAY, EVENT_YIELD_BOOSTED,
    SYSTEM_WALLET,
    ExecuteResult, Move, OriginType, PendingTransaction, TransactionOrigin, UnitStateChange,
    AlreadyInitialized, FlashLoanFailed, InsufficientFunds, InsufficientShares,
    LowLiquidity, NotInitialized, RepaymentFailed, TransactionRejected,
    ValidationError, ZeroAddress, ZeroAmount,
    build_transaction, quantize_down, quantize_up, to_decimal, vault_share,
)
from .guards import (
    ReentrancyGuard, SameBlockGuard,
    check_max_slippage, check_min_slippage, validate_slippage_bps,
)
from .interest import calculate_utilization, elapsed_seconds
from .ledger import Ledger
from .units.vault import (
    Redemption, VaultState,
    calculate_borrow, calculate_deposit, calculate_interest, calculate_redemption,
    calculate_repay, calculate_rewardable, calculate_share_supply, calculate_supply_rate,
    calculate_withdraw_shares, calculate_withdrawal, calculate_yield,
    load_vault_state, preview_deposit, preview_mint, share_price, to_state_dict,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class FlashLoanReceiver(Protocol):
    """
    Callee of LiquidityVault.flash_loan().

    `wallet` receives the principal. execute_operation() must move
    amount + fee back into the vault wallet before returning True.
    """
    wallet: str

    def execute_operation(
        self, asset: str, amount: Decimal, fee: Decimal, initiator: str, data: Any
    ) -> bool:
        ...


class LiquidityVault:
    """
    Share-based pool of one base asset.

    Example:
        vault = LiquidityVault(ledger, "USDC", ProtocolConfig(), access)
        vault.initialize("governor", core_account="lending_core", treasury="treasury")
        shares = vault.deposit_liquidity("alice", Decimal("1000"), Decimal("1000"), 0)
    """

    def __init__(
        self,
        ledger: Ledger,
        asset: str,
        config: ProtocolConfig,
        access: AccessControl,
        guard: Optional[SameBlockGuard] = None,
        share_symbol: Optional[str] = None,
        vault_wallet: Optional[str] = None,
        share_decimals: int = DEFAULT_SHARE_DECIMALS,
    ):
        self.ledger = ledger
        self.asset = asset
        self.config = config
        self.access = access
        self.guard = guard or SameBlockGuard()
        self.share_symbol = share_symbol or f"lp{asset}"
        self.vault_wallet = vault_wallet or f"vault:{asset}"
        self.share_decimals = share_decimals
        self._reentrancy = ReentrancyGuard(f"vault {self.share_symbol}")

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @property
    def initialized(self) -> bool:
        return self.ledger.has_unit(self.share_symbol)

    def initialize(self, admin: str, core_account: str, treasury: str) -> None:
        """
        Create the share unit, the vault wallet and the treasury wallet, and
        grant CORE to the lending core's account.

        Raises:
            AlreadyInitialized: on a second call
            ZeroAddress: empty admin, core account or treasury
            Unauthorized: admin does not hold ADMIN on an existing access table
        """
        if self.initialized:
            raise AlreadyInitialized(f"Vault {self.share_symbol} already initialized")
        for name, value in (('admin', admin), ('core_account', core_account), ('treasury', treasury)):
            if not value:
                raise ZeroAddress(f"{name} cannot be empty")
        asset_unit = self.ledger.get_unit(self.asset)

        with self.ledger.atomic(), self.access.atomic():
            self.ledger.ensure_wallet(self.vault_wallet)
            self.ledger.ensure_wallet(treasury)
            state = VaultState(
                asset=self.asset,
                share_symbol=self.share_symbol,
                vault_wallet=self.vault_wallet,
                treasury_wallet=treasury,
                asset_decimals=asset_unit.decimal_places or 0,
                share_decimals=self.share_decimals,
                inception_time=self.ledger.current_time,
            )
            unit = vault_share(
                self.share_symbol, f"{self.asset} liquidity shares",
                to_state_dict(state), self.share_decimals,
            )
            pending = build_transaction(
                self.ledger, [], None,
                TransactionOrigin(OriginType.SYSTEM, admin, self.share_symbol, EVENT_VAULT_INITIALIZED),
                units_to_create=(unit,),
            )
            self._execute(pending)
            if not self.access.is_bootstrapped:
                self.access.bootstrap(admin)
            self.access.grant_role(admin, Role.CORE, core_account)

        logger.info("Vault %s initialized (treasury=%s, core=%s)", self.share_symbol, treasury, core_account)

    def set_config(self, caller: str, config: ProtocolConfig) -> None:
        self.access.require_any_role([Role.CORE, Role.ADMIN], caller)
        self.config = config
        logger.info("Vault %s now on protocol config v%d", self.share_symbol, config.version)

    # ========================================================================
    # VIEWS
    # ========================================================================

    def vault_state(self) -> VaultState:
        if not self.initialized:
            raise NotInitialized(f"Vault {self.share_symbol} not initialized")
        return load_vault_state(self.ledger, self.share_symbol)

    def total_assets(self) -> Decimal:
        return self.vault_state().total_base

    def total_borrow(self) -> Decimal:
        return self.vault_state().total_borrow

    def available_liquidity(self) -> Decimal:
        return self.vault_state().liquid

    def share_supply(self) -> Decimal:
        return calculate_share_supply(self.ledger, self.share_symbol)

    def share_balance(self, account: str) -> Decimal:
        if not self.ledger.is_registered(account):
            return Decimal("0")
        return self.ledger.get_balance(account, self.share_symbol)

    def share_price(self) -> Decimal:
        return share_price(self.total_assets(), self.share_supply())

    def utilization(self) -> Decimal:
        state = self.vault_state()
        return calculate_utilization(state.total_borrow, state.total_supplied_liquidity)

    def get_supply_rate(self) -> Decimal:
        state = self.vault_state()
        return calculate_supply_rate(
            state.total_base,
            self.share_supply(),
            self.config.commission_rate,
            elapsed_seconds(state.inception_time, self.ledger.current_time),
        )

    def preview_deposit(self, amount: Decimal) -> Decimal:
        state = self.vault_state()
        return preview_deposit(to_decimal(amount), state.total_base, self.share_supply(), state.share_decimals)

    def preview_mint(self, shares: Decimal) -> Decimal:
        state = self.vault_state()
        return preview_mint(to_decimal(shares), state.total_base, self.share_supply(), state.asset_decimals)

    def preview_redeem(self, account: str, shares: Decimal) -> Redemption:
        """Payout breakdown if `account` redeemed `shares` now."""
        state = self.vault_state()
        return self._redemption(state, account, to_decimal(shares))

    def preview_withdraw(self, account: str, amount: Decimal) -> Decimal:
        """Shares `account` would burn to receive `amount`."""
        state = self.vault_state()
        return self._withdraw_shares(state, account, to_decimal(amount))

    def is_rewardable(self, account: str) -> bool:
        """Large enough holding, untouched by new deposits for the reward interval."""
        state = self.vault_state()
        shares = self.share_balance(account)
        if shares <= 0:
            return False
        value = shares * share_price(state.total_base, self.share_supply())
        return calculate_rewardable(
            value,
            state.last_deposit.get(account),
            self.ledger.current_time,
            self.config.rewardable_supply,
            self.config.reward_interval,
        )

    # ========================================================================
    # LENDER OPERATIONS
    # ========================================================================

    def deposit_liquidity(
        self, caller: str, amount: Decimal, expected_shares: Decimal, max_slippage_bps: int
    ) -> Decimal:
        """
        Pay `amount` assets in and receive shares at the current price.

        Raises:
            ZeroAmount, InsufficientFunds, MEVSameBlockOperation, MEVSlippageExceeded
        """
        self._enter_lender_op(caller, max_slippage_bps)
        state = self.vault_state()
        amount = self._asset_amount(amount, state)
        shares = preview_deposit(amount, state.total_base, self.share_supply(), state.share_decimals)
        if shares <= 0:
            raise ZeroAmount(f"Deposit of {amount} {self.asset} mints no shares")
        check_min_slippage(shares, expected_shares, max_slippage_bps, "shares minted")

        with self.ledger.atomic():
            self._pay_in(caller, amount, shares, state, EVENT_LIQUIDITY_DEPOSITED)

        self.guard.record(caller, self.ledger.block_height)
        logger.info("%s deposited %s %s for %s %s", caller, amount, self.asset, shares, self.share_symbol)
        return shares

    def mint_shares(
        self, caller: str, shares: Decimal, expected_amount: Decimal, max_slippage_bps: int
    ) -> Decimal:
        """
        Receive exactly `shares`, paying whatever they cost (rounded up).

        Returns:
            assets paid
        """
        self._enter_lender_op(caller, max_slippage_bps)
        state = self.vault_state()
        shares = self._share_amount(shares, state)
        amount = preview_mint(shares, state.total_base, self.share_supply(), state.asset_decimals)
        check_max_slippage(amount, expected_amount, max_slippage_bps, "assets paid")

        with self.ledger.atomic():
            self._pay_in(caller, amount, shares, state, EVENT_SHARES_MINTED)

        self.guard.record(caller, self.ledger.block_height)
        logger.info("%s minted %s %s for %s %s", caller, shares, self.share_symbol, amount, self.asset)
        return amount

    def redeem_liquidity_shares(
        self, caller: str, shares: Decimal, expected_amount: Decimal, max_slippage_bps: int
    ) -> Decimal:
        """
        Burn `shares` and receive their value less commission on realized profit.

        Returns:
            assets received
        """
        self._enter_lender_op(caller, max_slippage_bps)
        state = self.vault_state()
        shares = self._share_amount(shares, state)
        redemption = self._redemption(state, caller, shares)
        if redemption.net <= 0:
            raise ZeroAmount(f"Redeeming {shares} {self.share_symbol} pays nothing")
        check_min_slippage(redemption.net, expected_amount, max_slippage_bps, "assets received")

        with self.ledger.atomic():
            self._pay_out(caller, redemption, redemption.net, state, EVENT_SHARES_REDEEMED)

        self.guard.record(caller, self.ledger.block_height)
        logger.info(
            "%s redeemed %s %s for %s %s (commission %s)",
            caller, shares, self.share_symbol, redemption.net, self.asset, redemption.commission,
        )
        return redemption.net

    def withdraw_liquidity(
        self, caller: str, amount: Decimal, expected_shares: Decimal, max_slippage_bps: int
    ) -> Decimal:
        """
        Receive exactly `amount` assets, burning the shares that cover it
        after commission.

        Returns:
            shares burned
        """
        self._enter_lender_op(caller, max_slippage_bps)
        state = self.vault_state()
        amount = self._asset_amount(amount, state)
        shares = self._withdraw_shares(state, caller, amount)
        check_max_slippage(shares, expected_shares, max_slippage_bps, "shares burned")
        redemption = self._redemption(state, caller, shares)

        with self.ledger.atomic():
            self._pay_out(caller, redemption, amount, state, EVENT_LIQUIDITY_WITHDRAWN)

        self.guard.record(caller, self.ledger.block_height)
        logger.info("%s withdrew %s %s burning %s %s", caller, amount, self.asset, shares, self.share_symbol)
        return shares

    # ========================================================================
    # CORE OPERATIONS (CORE role)
    # ========================================================================

    def borrow(self, caller: str, amount: Decimal, recipient: str) -> None:
        """
        Lend `amount` to `recipient` on behalf of a position.

        Raises:
            Unauthorized: caller lacks CORE
            LowLiquidity: amount exceeds total_base - total_borrow
        """
        self.access.require_role(Role.CORE, caller)
        self._reentrancy.check()
        if not recipient:
            raise ZeroAddress("recipient cannot be empty")
        state = self.vault_state()
        amount = self._asset_amount(amount, state)
        if amount > state.liquid or amount > self.ledger.get_balance(self.vault_wallet, self.asset):
            raise LowLiquidity(f"Vault can lend {state.liquid} {self.asset}, asked {amount}")

        with self.ledger.atomic():
            self.ledger.ensure_wallet(recipient)
            moves = [Move(amount, self.asset, self.vault_wallet, recipient, f"{self.share_symbol}:borrow")]
            self._commit(moves, state, calculate_borrow(state, amount), caller, EVENT_VAULT_BORROW, OriginType.CONTRACT)

    def repay(self, caller: str, amount: Decimal, payer: str) -> None:
        """Pull `amount` from `payer` against outstanding loans."""
        self.access.require_role(Role.CORE, caller)
        self._reentrancy.check()
        state = self.vault_state()
        amount = self._asset_amount(amount, state)
        self._require_balance(payer, self.asset, amount)

        with self.ledger.atomic():
            moves = [Move(amount, self.asset, payer, self.vault_wallet, f"{self.share_symbol}:repay")]
            self._commit(moves, state, calculate_repay(state, amount), caller, EVENT_VAULT_REPAY, OriginType.CONTRACT)

    def record_interest(self, caller: str, amount: Decimal) -> None:
        """Book interest that positions now owe the vault."""
        self.access.require_role(Role.CORE, caller)
        self._reentrancy.check()
        amount = to_decimal(amount)
        if amount < 0:
            raise ValidationError(f"interest cannot be negative, got {amount}")
        if amount == 0:
            return
        state = self.vault_state()
        with self.ledger.atomic():
            self._commit([], state, calculate_interest(state, amount), caller,
                         EVENT_VAULT_INTEREST_ACCRUED, OriginType.CONTRACT)

    def boost_yield(
        self, caller: str, attributed_to: str, amount: Decimal, payer: Optional[str] = None
    ) -> None:
        """
        Pay profit into the vault without minting shares; the share price rises.

        `payer` defaults to the caller; only CORE may pull from someone else.
        """
        if not attributed_to:
            raise ZeroAddress("attributed_to cannot be empty")
        payer = payer or caller
        if payer != caller:
            self.access.require_role(Role.CORE, caller)
        self._reentrancy.check()
        state = self.vault_state()
        amount = self._asset_amount(amount, state)
        self._require_balance(payer, self.asset, amount)

        with self.ledger.atomic():
            moves = [Move(amount, self.asset, payer, self.vault_wallet, f"{self.share_symbol}:boost",
                          metadata={'attributed_to': attributed_to})]
            self._commit(moves, state, calculate_yield(state, amount), caller, EVENT_YIELD_BOOSTED)

        logger.info("Yield boost of %s %s attributed to %s", amount, self.asset, attributed_to)

    # ========================================================================
    # FLASH LOANS
    # ========================================================================

    def flash_loan(
        self, caller: str, receiver: Optional[FlashLoanReceiver], amount: Decimal, data: Any = None
    ) -> Decimal:
        """
        Lend `amount` for the duration of receiver.execute_operation().

        The callback must return True and leave the vault wallet holding at
        least its prior balance plus the fee. Otherwise the whole operation,
        callback effects included, is rolled back.

        Returns:
            the fee charged

        Raises:
            ZeroAddress, ZeroAmount, LowLiquidity: before any funds move
            FlashLoanFailed: callback returned a falsy value
            RepaymentFailed: vault balance short of principal plus fee
            ReentrantCall: called from inside another flash-loan callback
        """
        if not caller:
            raise ZeroAddress("caller cannot be empty")
        if receiver is None or not getattr(receiver, 'wallet', None):
            raise ZeroAddress("receiver cannot be empty")
        self._reentrancy.check()
        state = self.vault_state()
        amount = self._asset_amount(amount, state)
        if amount > state.liquid or amount > self.ledger.get_balance(self.vault_wallet, self.asset):
            raise LowLiquidity(f"Vault can flash-lend {state.liquid} {self.asset}, asked {amount}")
        fee = quantize_up(amount * self.config.flash_loan_fee_rate, state.asset_decimals)

        with self.ledger.atomic():
            before = self.ledger.get_balance(self.vault_wallet, self.asset)
            self.ledger.ensure_wallet(receiver.wallet)
            out = build_transaction(
                self.ledger,
                [Move(amount, self.asset, self.vault_wallet, receiver.wallet, f"{self.share_symbol}:flash")],
                None,
                self._origin(caller, EVENT_FLASH_LOAN_ISSUED, OriginType.EXTERNAL),
            )
            self._execute(out)

            with self._reentrancy.hold():
                ok = receiver.execute_operation(self.asset, amount, fee, caller, data)
            if not ok:
                raise FlashLoanFailed(f"Receiver {receiver.wallet} rejected the flash loan")

            after = self.ledger.get_balance(self.vault_wallet, self.asset)
            if after < before + fee:
                raise RepaymentFailed(
                    f"Vault holds {after} {self.asset} after flash loan, needs {before + fee}"
                )
            state = self.vault_state()
            self._commit([], state, calculate_yield(state, fee), caller, EVENT_FLASH_LOAN, OriginType.EXTERNAL)

        logger.info("Flash loan of %s %s to %s, fee %s", amount, self.asset, receiver.wallet, fee)
        return fee

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _enter_lender_op(self, caller: str, max_slippage_bps: int) -> None:
        if not caller:
            raise ZeroAddress("caller cannot be empty")
        validate_slippage_bps(max_slippage_bps)
        self._reentrancy.check()
        self.guard.check(caller, self.ledger.block_height)

    def _asset_amount(self, amount: Decimal, state: VaultState) -> Decimal:
        amount = to_decimal(amount)
        if not amount.is_finite():
            raise ValidationError(f"amount must be finite, got {amount}")
        amount = quantize_down(amount, state.asset_decimals)
        if amount <= 0:
            raise ZeroAmount(f"amount must be positive at {state.asset_decimals} decimals")
        return amount

    def _share_amount(self, shares: Decimal, state: VaultState) -> Decimal:
        shares = to_decimal(shares)
        if not shares.is_finite():
            raise ValidationError(f"shares must be finite, got {shares}")
        shares = quantize_down(shares, state.share_decimals)
        if shares <= 0:
            raise ZeroAmount("shares must be positive")
        return shares

    def _require_balance(self, wallet: str, unit: str, amount: Decimal) -> None:
        if not wallet:
            raise ZeroAddress("payer cannot be empty")
        held = self.ledger.get_balance(wallet, unit) if self.ledger.is_registered(wallet) else Decimal("0")
        if held < amount:
            if unit == self.share_symbol:
                raise InsufficientShares(f"{wallet} holds {held} {unit}, needs {amount}")
            raise InsufficientFunds(f"{wallet} holds {held} {unit}, needs {amount}")

    def _redemption(self, state: VaultState, account: str, shares: Decimal) -> Redemption:
        held = self.share_balance(account)
        if shares > held:
            raise InsufficientShares(f"{account} holds {held} {self.share_symbol}, redeeming {shares}")
        return calculate_redemption(
            shares=shares,
            account_shares=held,
            cost_basis=state.cost_basis.get(account, Decimal("0")),
            total_base=state.total_base,
            supply=self.share_supply(),
            commission_rate=self.config.commission_rate,
            asset_decimals=state.asset_decimals,
            share_decimals=state.share_decimals,
        )

    def _withdraw_shares(self, state: VaultState, account: str, amount: Decimal) -> Decimal:
        """Shares covering `amount` net of commission, with one asset unit of headroom for rounding."""
        held = self.share_balance(account)
        headroom = Decimal(10) ** -state.asset_decimals
        shares = calculate_withdraw_shares(
            amount + headroom,
            held,
            state.cost_basis.get(account, Decimal("0")),
            state.total_base,
            self.share_supply(),
            self.config.commission_rate,
            state.share_decimals,
        )
        if shares > held:
            if held > 0 and self._redemption(state, account, held).net >= amount:
                return held
            raise InsufficientShares(f"{account} cannot withdraw {amount} {self.asset}")
        return shares

    def _pay_in(self, caller: str, amount: Decimal, shares: Decimal, state: VaultState, event: str) -> None:
        self._require_balance(caller, self.asset, amount)
        moves = [
            Move(amount, self.asset, caller, self.vault_wallet, f"{self.share_symbol}:deposit"),
            Move(shares, self.share_symbol, SYSTEM_WALLET, caller, f"{self.share_symbol}:mint"),
        ]
        new_state = calculate_deposit(state, caller, amount, self.ledger.current_time)
        self._commit(moves, state, new_state, caller, event)

    def _pay_out(self, caller: str, redemption: Redemption, payout: Decimal, state: VaultState, event: str) -> None:
        if payout > state.liquid or payout > self.ledger.get_balance(self.vault_wallet, self.asset):
            raise LowLiquidity(f"Vault can pay out {state.liquid} {self.asset}, asked {payout}")
        moves = [
            Move(redemption.shares, self.share_symbol, caller, SYSTEM_WALLET, f"{self.share_symbol}:burn"),
            Move(payout, self.asset, self.vault_wallet, caller, f"{self.share_symbol}:withdraw"),
        ]
        if redemption.commission_shares > 0:
            moves.append(Move(redemption.commission_shares, self.share_symbol, SYSTEM_WALLET,
                              state.treasury_wallet, f"{self.share_symbol}:commission"))
        self._commit(moves, state, calculate_withdrawal(state, caller, redemption, payout), caller, event)

    def _origin(self, caller: str, event: str, origin_type: OriginType = OriginType.USER_ACTION) -> TransactionOrigin:
        # The sequence number keeps otherwise identical intents distinct.
        return TransactionOrigin(origin_type, f"{caller}#{self.ledger.next_sequence}", self.share_symbol, event)

    def _commit(
        self,
        moves: List[Move],
        old: VaultState,
        new: VaultState,
        caller: str,
        event: str,
        origin_type: OriginType = OriginType.USER_ACTION,
    ) -> None:
        change = UnitStateChange(
            unit=self.share_symbol,
            old_state=to_state_dict(old),
            new_state=to_state_dict(new),
        )
        self._execute(build_transaction(self.ledger, moves, [change], self._origin(caller, event, origin_type)))

    def _execute(self, pending: PendingTransaction) -> None:
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise TransactionRejected(
                f"{pending.origin.event_type} rejected: {self.ledger.last_rejection or result.value}"
            )
