"""
Core types and pure functions for the lending accounting system.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the lending error taxonomy
4. Type aliases: Positions, BalanceMap, UnitState
5. Fixed-point helpers: quantize_down / quantize_up
6. Unit factories: token and vault share units

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Deterministic Decimal arithmetic is configured once at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
# Context parameters:
#   - prec=50: enough for 18-decimal tokens multiplied by prices and
#     per-second compounding factors
#   - rounding=ROUND_HALF_EVEN: only used for intermediates; every stored
#     amount is quantized explicitly with quantize_down / quantize_up
#
_LENDING_DECIMAL_CONTEXT = getcontext()
_LENDING_DECIMAL_CONTEXT.prec = 50
_LENDING_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption (vault shares are minted from
# and burned to it). Exempt from balance validation.
SYSTEM_WALLET = "system"

# Unit type constants
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_VAULT_SHARE = "VAULT_SHARE"
UNIT_TYPE_POSITION = "POSITION"
UNIT_TYPE_MARKET = "MARKET"

# Quantities with absolute value below this threshold are treated as zero.
# Must stay well below the smallest 18-decimal token increment.
QUANTITY_EPSILON = Decimal("1e-30")

# Basis point denominator (10000 bps = 100%)
BPS_DENOMINATOR = Decimal("10000")

# Health factor scale: a position is liquidatable below this value
HEALTH_FACTOR_SCALE = Decimal("1")

# Returned as the health factor of a position without debt
HEALTH_FACTOR_MAX = Decimal("Infinity")

# Sentinel amount meaning "the whole outstanding balance". Never placed in a Move.
MAX_AMOUNT = Decimal("Infinity")

SECONDS_PER_YEAR = 365 * 24 * 60 * 60
SECONDS_PER_DAY = 24 * 60 * 60

# Distinct collateral assets a cross position may hold
MAX_ASSETS_PER_POSITION = 20

# A single supply may not exceed this fraction of an asset's external pool liquidity
POOL_LIQUIDITY_LIMIT = Decimal("0.03")

DEFAULT_SHARE_DECIMALS = 18

DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
    UNIT_TYPE_VAULT_SHARE: ROUND_DOWN,
}

# Event types carried in TransactionOrigin.event_type
EVENT_MARKET_INITIALIZED = "MARKET_INITIALIZED"
EVENT_VAULT_INITIALIZED = "VAULT_INITIALIZED"
EVENT_POSITION_OPENED = "POSITION_OPENED"
EVENT_POSITION_CLOSED = "POSITION_CLOSED"
EVENT_COLLATERAL_SUPPLIED = "COLLATERAL_SUPPLIED"
EVENT_COLLATERAL_WITHDRAWN = "COLLATERAL_WITHDRAWN"
EVENT_BORROWED = "BORROWED"
EVENT_REPAID = "REPAID"
EVENT_INTEREST_ACCRUED = "INTEREST_ACCRUED"
EVENT_LIQUIDATED = "LIQUIDATED"
EVENT_LIQUIDITY_DEPOSITED = "LIQUIDITY_DEPOSITED"
EVENT_LIQUIDITY_WITHDRAWN = "LIQUIDITY_WITHDRAWN"
EVENT_SHARES_MINTED = "SHARES_MINTED"
EVENT_SHARES_REDEEMED = "SHARES_REDEEMED"
EVENT_YIELD_BOOSTED = "YIELD_BOOSTED"
EVENT_FLASH_LOAN = "FLASH_LOAN"
EVENT_FLASH_LOAN_ISSUED = "FLASH_LOAN_ISSUED"
EVENT_PROTOCOL_CONFIG_UPDATED = "PROTOCOL_CONFIG_UPDATED"
EVENT_VAULT_BORROW = "VAULT_BORROW"
EVENT_VAULT_REPAY = "VAULT_REPAY"
EVENT_VAULT_INTEREST_ACCRUED = "VAULT_INTEREST_ACCRUED"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (position record, vault totals, market config).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Valuation and transaction-building functions accept a LedgerView to
    declare that they only read. The Ledger class implements this protocol
    but also provides mutation methods; FakeView in the tests provides a
    truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balance constraints, transfer
              rules, stale state, unknown units or wallets).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Borrower or lender initiated
    CONTRACT = "contract"                 # Issued by a lending component
    SYSTEM = "system"                     # Initialization and setup
    EXTERNAL = "external"                 # Flash-loan receivers and other callers


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a payer does not hold the amount an operation needs."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered."""
    pass


class TransactionRejected(LedgerError):
    """Raised when the ledger refuses a transaction built by a lending component."""
    pass


class LendingError(LedgerError):
    """Base exception for lending operations. Every subclass aborts the whole operation."""
    pass


# --- input validation ---

class ValidationError(LendingError):
    pass


class ZeroAmount(ValidationError):
    """Amount is zero (or rounds to zero at the asset's precision)."""


class ZeroAddress(ValidationError):
    """Caller, recipient or receiver identity is empty."""


class InvalidPosition(ValidationError):
    """Position index out of range for the owner, or position no longer ACTIVE."""


class InvalidSlippage(ValidationError):
    """Slippage tolerance outside [0, 10000] basis points."""


class NoOutstandingDebt(ValidationError):
    """Repay called on a position without debt."""


class InsufficientCollateral(ValidationError):
    """Withdrawal larger than the position's holding of the asset."""


class InsufficientShares(ValidationError):
    """Redemption larger than the account's share balance."""


# --- policy violation ---

class PolicyViolation(LendingError):
    pass


class IsolatedAssetViolation(PolicyViolation):
    """An ISOLATED-tier asset was used with a cross-collateral position."""


class InvalidAssetForIsolation(PolicyViolation):
    """An isolated position was given an asset other than its isolated asset."""


class CreditLimitExceeded(PolicyViolation):
    """Debt would exceed the position's credit limit."""


class IsolationDebtCapExceeded(PolicyViolation):
    """Debt of an isolated position would exceed the asset's isolation debt cap."""


class AssetCapacityReached(PolicyViolation):
    """Protocol-wide collateral of the asset would exceed its supply cap."""


class PoolLiquidityLimitReached(PolicyViolation):
    """A single supply exceeds the allowed share of the asset's pool liquidity."""


class MaximumAssetsReached(PolicyViolation):
    """A cross position already holds the maximum number of distinct assets."""


class AssetNotListed(PolicyViolation):
    """Asset is unknown to the registry."""


class AssetNotActive(PolicyViolation):
    """Asset is listed but does not accept new collateral."""


# --- liquidity ---

class LowLiquidity(LendingError):
    """The vault cannot pay out the requested amount."""


# --- liquidation state ---

class LiquidationStateError(LendingError):
    pass


class NotLiquidatable(LiquidationStateError):
    """Position is healthy (liquidation level >= debt)."""


class NotEnoughGovernanceTokens(LiquidationStateError):
    """Caller's governance-token stake is below the liquidator threshold."""


# --- timing / MEV ---

class TimingError(LendingError):
    pass


class MEVSameBlockOperation(TimingError):
    """Second state-changing operation for the same account in one block."""


class MEVSlippageExceeded(TimingError):
    """Executed value fell outside the caller's slippage band."""


# --- flash loans ---

class FlashLoanError(LendingError):
    pass


class FlashLoanFailed(FlashLoanError):
    """Receiver callback returned a falsy result."""


class RepaymentFailed(FlashLoanError):
    """Vault balance after the callback is below principal plus fee."""


class ReentrantCall(FlashLoanError):
    """Vault mutation attempted while an external callback is running."""


# --- authorization / lifecycle ---

class Unauthorized(LendingError):
    """Caller lacks the role required by a privileged operation."""


class AlreadyInitialized(LendingError):
    """Initialization invoked a second time."""


class NotInitialized(LendingError):
    """Operation invoked before initialization."""


# --- pricing / arithmetic / configuration ---

class PriceUnavailable(LendingError):
    """Registry has no usable price for the asset."""


class StalePrice(LendingError):
    """Registry price is older than the allowed age."""


class InterestOverflow(LendingError, ArithmeticError):
    """Accrual inputs or result exceed the supported range."""


class InvalidConfiguration(LendingError, ValueError):
    """Configuration value outside its allowed bounds."""


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (caller, component)
        unit_symbol: Symbol of the unit the transaction is about (if any)
        event_type: Event emitted by this transaction (e.g. "BORROWED")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    The ledger rejects the change when old_state no longer matches the unit's
    current state, so a change built from a stale read never lands.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The symbol of the unit being transferred (e.g., "USDC").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    if not d.is_finite():
        return str(d)
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """Produce a canonical, order-independent string of a value for hashing."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, set):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on the semantic content (moves, state changes, origin,
    units to create), never on timestamps. Used for idempotency: the same
    intent is applied at most once.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution: it represents INTENT.

    Built by the lending components and submitted to Ledger.execute().
    intent_id is auto-computed from content.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state changes.

    This is the standard way to create transactions. State snapshots are
    deep-copied so later mutation of the caller's dicts cannot leak in.

    Example:
        old_state = view.get_unit_state(symbol)
        new_state = {**old_state, "debt": Decimal("100")}
        changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
        return build_transaction(view, [], changes, origin)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction; origin.event_type is the event
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        block_height: Ledger block in which the transaction was applied
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    block_height: int = 0
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    @property
    def event_type(self) -> Optional[str]:
        return self.origin.event_type

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id} [{self.origin}]",
            f"  intent={self.intent_id} seq={self.sequence_number} "
            f"block={self.block_height} at={self.execution_time.isoformat()}",
        ]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} ({unit.unit_type})")
        for move in self.moves:
            lines.append(f"  {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sorted(sc.changed_fields().items()):
                lines.append(f"  {sc.unit}.{field_name}: {old_val!r} → {new_val!r}")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger.

    Tokens and vault shares carry balances. Position and market units carry
    only state (the position record, the market configuration).

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "POS:alice:0").
        name: Human-readable name for the unit.
        unit_type: TOKEN, VAULT_SHARE, POSITION or MARKET.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's decimal precision (unchanged if decimal_places is None)."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/float to Decimal via str() so floats keep their printed value."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_down(value: Decimal, decimals: int) -> Decimal:
    """Round toward zero at `decimals` places. Used when extracting value."""
    return value.quantize(Decimal(10) ** -decimals, rounding=ROUND_DOWN)


def quantize_up(value: Decimal, decimals: int) -> Decimal:
    """Round away from zero at `decimals` places. Used for amounts owed."""
    return value.quantize(Decimal(10) ** -decimals, rounding=ROUND_UP)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def non_transferable_rule(view: LedgerView, move: Move) -> None:
    """
    Reject every move of a state-only unit.

    Position and market units exist to carry state; no wallet may hold them.

    Raises:
        TransferRuleViolation: always
    """
    raise TransferRuleViolation(f"{move.unit_symbol} is not transferable")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimals: int = 18) -> Unit:
    """
    Create a fungible token unit (collateral assets, the base asset, governance token).

    Args:
        symbol: Token symbol (e.g., "USDC", "WETH").
        name: Full token name.
        decimals: Token precision (default 18).

    Returns:
        A Unit with zero minimum balance that rounds down at its precision.
    """
    if decimals < 0 or decimals > 36:
        raise ValueError(f"decimals must be in [0, 36], got {decimals}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimal_places=decimals,
        min_balance=Decimal("0"),
    )


def vault_share(
    symbol: str,
    name: str,
    state: UnitState,
    decimals: int = DEFAULT_SHARE_DECIMALS,
) -> Unit:
    """
    Create the share unit of a liquidity vault.

    The unit's state holds the vault totals (see lending.units.vault).
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_VAULT_SHARE,
        decimal_places=decimals,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state(state),
    )


def market_unit(symbol: str, name: str, state: UnitState) -> Unit:
    """Create the state-only unit that records a market's configuration."""
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_MARKET,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state(state),
    )
