"""
interest.py - Utilization-based borrow rates and compounding debt

PURE FUNCTIONS only; the lending core decides when to commit the result.

Key Formulas:
    utilization = total_borrow / total_supplied_liquidity, clamped to [0, 1]
    borrow_rate = base_rate + profit_target_rate * u + jump_rate(tier) * u
    debt(t)     = debt * (1 + borrow_rate / SECONDS_PER_YEAR) ** elapsed_seconds
                  (rounded up to base-currency decimals)

Inputs outside the supported range raise InterestOverflow instead of
producing a truncated or wrapped result.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation, Overflow
from typing import Optional, Tuple

from .core import SECONDS_PER_YEAR, InterestOverflow, quantize_up

# 1000% annual
MAX_ANNUAL_RATE = Decimal("10")
MAX_ACCRUAL_SECONDS = 100 * SECONDS_PER_YEAR
MAX_DEBT = Decimal("1e30")


def calculate_utilization(total_borrow: Decimal, total_supplied: Decimal) -> Decimal:
    """Fraction of supplied liquidity lent out, clamped to [0, 1]."""
    if total_supplied <= 0 or total_borrow <= 0:
        return Decimal("0")
    u = total_borrow / total_supplied
    return min(u, Decimal("1"))


def calculate_borrow_rate(
    utilization: Decimal,
    base_rate: Decimal,
    profit_target_rate: Decimal,
    jump_rate: Decimal,
) -> Decimal:
    """
    Annual borrow rate at `utilization` for a tier with `jump_rate`.

    Non-decreasing in utilization because every coefficient is non-negative.
    """
    if utilization < 0 or utilization > 1:
        raise ValueError(f"utilization must be in [0, 1], got {utilization}")
    if base_rate < 0 or profit_target_rate < 0 or jump_rate < 0:
        raise ValueError("rate components cannot be negative")
    return base_rate + (profit_target_rate + jump_rate) * utilization


def elapsed_seconds(since: Optional[datetime], now: datetime) -> int:
    """Whole seconds between two timestamps (0 when `since` is None or in the future)."""
    if since is None or now <= since:
        return 0
    return int((now - since).total_seconds())


def calculate_compound_factor(annual_rate: Decimal, seconds: int) -> Decimal:
    """
    (1 + annual_rate / SECONDS_PER_YEAR) ** seconds

    Raises:
        InterestOverflow: negative or excessive rate or elapsed time
    """
    if annual_rate < 0 or annual_rate > MAX_ANNUAL_RATE:
        raise InterestOverflow(f"annual rate {annual_rate} outside [0, {MAX_ANNUAL_RATE}]")
    if seconds < 0 or seconds > MAX_ACCRUAL_SECONDS:
        raise InterestOverflow(f"elapsed {seconds}s outside [0, {MAX_ACCRUAL_SECONDS}]")
    if seconds == 0 or annual_rate == 0:
        return Decimal("1")
    per_second = Decimal("1") + annual_rate / Decimal(SECONDS_PER_YEAR)
    try:
        return per_second ** seconds
    except (Overflow, InvalidOperation) as e:
        raise InterestOverflow(f"compounding {annual_rate} over {seconds}s overflowed") from e


def calculate_debt_with_interest(
    debt: Decimal,
    annual_rate: Decimal,
    seconds: int,
    base_decimals: int,
) -> Decimal:
    """
    Debt after `seconds` of per-second compounding, rounded up.

    Raises:
        InterestOverflow: inputs out of range, or result above MAX_DEBT
    """
    if debt < 0:
        raise InterestOverflow(f"debt cannot be negative, got {debt}")
    if debt == 0:
        return Decimal("0")
    factor = calculate_compound_factor(annual_rate, seconds)
    result = debt * factor
    if result > MAX_DEBT:
        raise InterestOverflow(f"debt {result:.6E} exceeds {MAX_DEBT:.0E}")
    return quantize_up(result, base_decimals)


def calculate_accrued_interest(
    debt: Decimal,
    annual_rate: Decimal,
    last_accrual: Optional[datetime],
    now: datetime,
    base_decimals: int,
) -> Tuple[Decimal, Decimal]:
    """
    Returns:
        (debt_with_interest, interest) between last_accrual and now
    """
    seconds = elapsed_seconds(last_accrual, now)
    new_debt = calculate_debt_with_interest(debt, annual_rate, seconds, base_decimals)
    return new_debt, new_debt - debt
