"""
guards.py - Execution guards for lending operations

- SameBlockGuard: at most one state-changing operation per account per block
- check_min_slippage / check_max_slippage: executed value against a quoted
  value with a basis-point tolerance
- ReentrancyGuard: busy flag held while an external callback runs

Each check raises its named error; none of them mutate lending state.
"""

from __future__ import annotations
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterator, Optional
import logging

from .core import (
    BPS_DENOMINATOR,
    InvalidSlippage, MEVSameBlockOperation, MEVSlippageExceeded, ReentrantCall,
    to_decimal,
)

logger = logging.getLogger(__name__)


def validate_slippage_bps(max_slippage_bps) -> Decimal:
    """Return bps as a Decimal fraction of 1, or raise InvalidSlippage outside [0, 10000]."""
    bps = to_decimal(max_slippage_bps)
    if not bps.is_finite() or bps < 0 or bps > BPS_DENOMINATOR:
        raise InvalidSlippage(f"max_slippage_bps must be in [0, 10000], got {max_slippage_bps}")
    return bps / BPS_DENOMINATOR


def check_min_slippage(actual: Decimal, expected: Decimal, max_slippage_bps, what: str = "value") -> None:
    """
    Fail when `actual` fell below `expected` by more than the tolerance.

    Used where more is better for the caller (credit limit, shares received,
    assets received).
    """
    tolerance = validate_slippage_bps(max_slippage_bps)
    floor = to_decimal(expected) * (Decimal("1") - tolerance)
    if actual < floor:
        logger.warning("Slippage: %s %s below floor %s", what, actual, floor)
        raise MEVSlippageExceeded(f"{what} {actual} below {floor} (expected {expected}, {max_slippage_bps} bps)")


def check_max_slippage(actual: Decimal, expected: Decimal, max_slippage_bps, what: str = "value") -> None:
    """
    Fail when `actual` exceeded `expected` by more than the tolerance.

    Used where less is better for the caller (debt to repay, assets paid,
    shares burned).
    """
    tolerance = validate_slippage_bps(max_slippage_bps)
    ceiling = to_decimal(expected) * (Decimal("1") + tolerance)
    if actual > ceiling:
        logger.warning("Slippage: %s %s above ceiling %s", what, actual, ceiling)
        raise MEVSlippageExceeded(f"{what} {actual} above {ceiling} (expected {expected}, {max_slippage_bps} bps)")


class SameBlockGuard:
    """
    Remembers the last block in which each account completed an operation.

    check() is called before the operation; record() only after it
    succeeded, so a failed attempt does not consume the account's block.
    """

    def __init__(self):
        self._last_block: Dict[str, int] = {}

    def check(self, account: str, block_height: int) -> None:
        if self._last_block.get(account) == block_height:
            logger.warning("Same-block operation rejected for %s at block %d", account, block_height)
            raise MEVSameBlockOperation(f"{account} already operated in block {block_height}")

    def record(self, account: str, block_height: int) -> None:
        self._last_block[account] = block_height

    def last_block(self, account: str) -> Optional[int]:
        return self._last_block.get(account)


class ReentrancyGuard:
    """Per-resource busy flag. Mutations call check(); callbacks run inside hold()."""

    def __init__(self, name: str):
        self.name = name
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def check(self) -> None:
        if self._busy:
            logger.warning("Re-entrant call into %s rejected", self.name)
            raise ReentrantCall(f"{self.name} is executing an external callback")

    @contextmanager
    def hold(self) -> Iterator[None]:
        self.check()
        self._busy = True
        try:
            yield
        finally:
            self._busy = False
