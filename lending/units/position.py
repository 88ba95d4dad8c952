"""
position.py - Borrower Position Units

A position is a borrower's accounting unit: collateral held in a dedicated
custody wallet plus a debt owed to the liquidity vault. Each position is a
state-only ledger unit `POS:<owner>:<index>`; its collateral is the
balance of each asset in the custody wallet `custody:<owner>:<index>`.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS (explicit inputs):
   - Position: immutable snapshot of the position record

2. PURE TRANSITION FUNCTIONS (calculate_*):
   - Take a Position and explicit parameters, return a new Position
   - Enforce the state machine and the isolation / asset-count rules

3. ADAPTER FUNCTIONS (load_position / to_state_dict / get_holdings):
   - The only place that touches LedgerView for position reads

4. TRANSACTION BUILDERS (*_transaction):
   - Combine a transition with the moves it needs into a PendingTransaction

State machine:
    open -> ACTIVE
    ACTIVE --supply/withdraw/borrow/repay--> ACTIVE
    ACTIVE --exit (debt 0, no collateral)--> CLOSED
    ACTIVE --liquidate--> LIQUIDATED
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, Unit, UnitStateChange,
    MAX_ASSETS_PER_POSITION, QUANTITY_EPSILON, UNIT_TYPE_POSITION,
    InvalidAssetForIsolation, InvalidPosition, MaximumAssetsReached, UnitNotRegistered,
    build_transaction, non_transferable_rule, to_decimal,
    _freeze_state,
)


POSITION_STATUS_ACTIVE = "ACTIVE"
POSITION_STATUS_CLOSED = "CLOSED"
POSITION_STATUS_LIQUIDATED = "LIQUIDATED"

CUSTODY_PREFIX = "custody:"


def position_symbol(owner: str, index: int) -> str:
    return f"POS:{owner}:{index}"


def custody_wallet_id(owner: str, index: int) -> str:
    return f"{CUSTODY_PREFIX}{owner}:{index}"


def is_custody_wallet(wallet_id: str) -> bool:
    return wallet_id.startswith(CUSTODY_PREFIX)


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    Immutable snapshot of a borrower position.

    debt is in base-currency units and includes interest committed up to
    last_interest_accrual. assets lists the distinct collateral assets
    currently held, in supply order. isolated_asset is fixed at open for
    isolated positions and None for cross positions.
    """
    owner: str
    index: int
    isolated: bool
    isolated_asset: Optional[str]
    status: str
    debt: Decimal
    last_interest_accrual: Optional[datetime]
    custody_wallet: str
    assets: Tuple[str, ...] = ()
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    total_interest: Decimal = Decimal("0")

    def __post_init__(self):
        object.__setattr__(self, 'debt', to_decimal(self.debt))
        object.__setattr__(self, 'total_interest', to_decimal(self.total_interest))
        object.__setattr__(self, 'assets', tuple(self.assets))
        if self.debt < 0:
            raise ValueError(f"Position debt cannot be negative, got {self.debt}")
        if self.status not in (POSITION_STATUS_ACTIVE, POSITION_STATUS_CLOSED, POSITION_STATUS_LIQUIDATED):
            raise ValueError(f"Unknown position status {self.status!r}")
        if self.isolated and not self.isolated_asset:
            raise ValueError("Isolated position requires isolated_asset")
        if not self.isolated and self.isolated_asset:
            raise ValueError("Cross position cannot have isolated_asset")

    @property
    def symbol(self) -> str:
        return position_symbol(self.owner, self.index)

    @property
    def is_active(self) -> bool:
        return self.status == POSITION_STATUS_ACTIVE


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def new_position(
    owner: str,
    index: int,
    asset: str,
    isolated: bool,
    opened_at: datetime,
) -> Position:
    """Position record for a freshly opened position (no collateral, no debt)."""
    return Position(
        owner=owner,
        index=index,
        isolated=isolated,
        isolated_asset=asset if isolated else None,
        status=POSITION_STATUS_ACTIVE,
        debt=Decimal("0"),
        last_interest_accrual=opened_at,
        custody_wallet=custody_wallet_id(owner, index),
        opened_at=opened_at,
    )


def to_state_dict(position: Position) -> Dict[str, Any]:
    """Inverse of load_position()."""
    return {
        'owner': position.owner,
        'index': position.index,
        'isolated': position.isolated,
        'isolated_asset': position.isolated_asset,
        'status': position.status,
        'debt': position.debt,
        'last_interest_accrual': position.last_interest_accrual,
        'custody_wallet': position.custody_wallet,
        'assets': position.assets,
        'opened_at': position.opened_at,
        'closed_at': position.closed_at,
        'total_interest': position.total_interest,
    }


def create_position_unit(position: Position) -> Unit:
    """State-only, non-transferable unit carrying the position record."""
    return Unit(
        symbol=position.symbol,
        name=f"Position {position.index} of {position.owner}",
        unit_type=UNIT_TYPE_POSITION,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state(to_state_dict(position)),
    )


def load_position(view: LedgerView, symbol: str) -> Position:
    """
    Load a position record from ledger state.

    Raises:
        InvalidPosition: if the unit does not exist or is not a position
    """
    try:
        unit = view.get_unit(symbol)
    except UnitNotRegistered:
        raise InvalidPosition(f"No position {symbol}") from None
    if unit.unit_type != UNIT_TYPE_POSITION:
        raise InvalidPosition(f"{symbol} is not a position")

    raw = view.get_unit_state(symbol)
    return Position(
        owner=raw['owner'],
        index=int(raw['index']),
        isolated=bool(raw['isolated']),
        isolated_asset=raw.get('isolated_asset'),
        status=raw['status'],
        debt=Decimal(str(raw.get('debt', 0))),
        last_interest_accrual=raw.get('last_interest_accrual'),
        custody_wallet=raw['custody_wallet'],
        assets=tuple(raw.get('assets', ())),
        opened_at=raw.get('opened_at'),
        closed_at=raw.get('closed_at'),
        total_interest=Decimal(str(raw.get('total_interest', 0))),
    )


def get_holdings(view: LedgerView, position: Position) -> Dict[str, Decimal]:
    """Collateral held by the position: asset -> custody balance (zero balances omitted)."""
    holdings: Dict[str, Decimal] = {}
    for asset in position.assets:
        amount = view.get_balance(position.custody_wallet, asset)
        if amount > QUANTITY_EPSILON:
            holdings[asset] = amount
    return holdings


# ============================================================================
# PURE TRANSITION FUNCTIONS
# ============================================================================

def _require_active(position: Position) -> None:
    if not position.is_active:
        raise InvalidPosition(f"{position.symbol} is {position.status}")


def calculate_supply(position: Position, asset: str) -> Position:
    """
    Record that `asset` is (now) held by the position.

    Raises:
        InvalidPosition: position not ACTIVE
        InvalidAssetForIsolation: isolated position given a different asset
        MaximumAssetsReached: cross position already holds the maximum distinct assets
    """
    _require_active(position)
    if position.isolated and asset != position.isolated_asset:
        raise InvalidAssetForIsolation(
            f"{position.symbol} is isolated to {position.isolated_asset}, got {asset}"
        )
    if asset in position.assets:
        return position
    if len(position.assets) >= MAX_ASSETS_PER_POSITION:
        raise MaximumAssetsReached(
            f"{position.symbol} already holds {MAX_ASSETS_PER_POSITION} assets"
        )
    return replace(position, assets=position.assets + (asset,))


def calculate_withdraw(position: Position, asset: str, remaining: Decimal) -> Position:
    """Drop `asset` from the held set once nothing of it remains."""
    _require_active(position)
    if asset not in position.assets:
        raise ValueError(f"{position.symbol} does not hold {asset}")
    if remaining > QUANTITY_EPSILON:
        return position
    return replace(position, assets=tuple(a for a in position.assets if a != asset))


def calculate_accrual(position: Position, new_debt: Decimal, now: datetime) -> Position:
    """Commit accrued debt and move the accrual timestamp to `now`."""
    _require_active(position)
    if new_debt < position.debt:
        raise ValueError(f"Accrual cannot reduce debt ({position.debt} -> {new_debt})")
    return replace(
        position,
        debt=new_debt,
        last_interest_accrual=now,
        total_interest=position.total_interest + (new_debt - position.debt),
    )


def calculate_borrow(position: Position, amount: Decimal, now: datetime) -> Position:
    _require_active(position)
    if amount <= 0:
        raise ValueError(f"Borrow amount must be positive, got {amount}")
    return replace(position, debt=position.debt + amount, last_interest_accrual=now)


def calculate_repay(position: Position, amount: Decimal, now: datetime) -> Position:
    _require_active(position)
    if amount <= 0 or amount > position.debt:
        raise ValueError(f"Repay amount must be in (0, {position.debt}], got {amount}")
    return replace(position, debt=position.debt - amount, last_interest_accrual=now)


def calculate_closed(position: Position, now: datetime) -> Position:
    """ACTIVE -> CLOSED. The debt must already be repaid."""
    _require_active(position)
    if position.debt > 0:
        raise ValueError(f"{position.symbol} still owes {position.debt}")
    return replace(
        position, status=POSITION_STATUS_CLOSED, assets=(),
        last_interest_accrual=now, closed_at=now,
    )


def calculate_liquidated(position: Position, now: datetime) -> Position:
    """ACTIVE -> LIQUIDATED with debt forced to zero and no collateral."""
    _require_active(position)
    return replace(
        position, status=POSITION_STATUS_LIQUIDATED, debt=Decimal("0"), assets=(),
        last_interest_accrual=now, closed_at=now,
    )


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def position_transaction(
    view: LedgerView,
    updated: Position,
    moves: List[Move],
    origin: TransactionOrigin,
) -> PendingTransaction:
    """Moves plus the position state change from the unit's current state to `updated`."""
    old_state = view.get_unit_state(updated.symbol)
    new_state = to_state_dict(updated)
    changes = [UnitStateChange(unit=updated.symbol, old_state=old_state, new_state=new_state)]
    return build_transaction(view, moves, changes, origin)


def open_position_transaction(
    view: LedgerView,
    position: Position,
    origin: TransactionOrigin,
) -> PendingTransaction:
    return build_transaction(view, [], None, origin, units_to_create=(create_position_unit(position),))


def collateral_moves(
    holdings: Mapping[str, Decimal],
    source: str,
    dest: str,
    contract_id: str,
) -> List[Move]:
    """One move per held asset, in asset order."""
    return [
        Move(amount, asset, source, dest, contract_id)
        for asset, amount in sorted(holdings.items())
        if amount > QUANTITY_EPSILON
    ]
