"""Numeric primitives for performance calculations.

All functions are pure. Division by zero and non-finite results never raise;
they resolve to the documented fallback values instead.
"""

import math
from collections.abc import Iterable

from .models import Purchase

DAYS_PER_YEAR = 365


def calculate_gain_loss(cost_basis: float, current_value: float) -> float:
    """Gain (positive) or loss (negative) amount."""
    return current_value - cost_basis


def calculate_gain_loss_percent(cost_basis: float, current_value: float) -> float:
    """Gain or loss as a percentage of cost basis.

    Returns 0 when the cost basis is 0.
    """
    if cost_basis == 0:
        return 0.0
    return (current_value - cost_basis) / cost_basis * 100


def calculate_weighted_average_cost(purchases: Iterable[Purchase]) -> float:
    """Average cost per share, weighted by the shares in each purchase.

    Example: 10 shares for 1000 and 20 shares for 2400 give 3400 / 30.
    """
    purchases = list(purchases)
    if not purchases:
        return 0.0

    total_shares = sum(p.shares for p in purchases)
    total_cost = sum(p.total_cost for p in purchases)

    if total_shares == 0:
        return 0.0
    return total_cost / total_shares


def calculate_annualized_return(start_value: float, end_value: float, days: int) -> float:
    """Annualized return (CAGR) as a percentage.

    CAGR = (end_value / start_value) ^ (365 / days) - 1

    Args:
        start_value: Initial investment value
        end_value: Current value
        days: Number of days the investment was held

    Returns:
        0 when start_value <= 0 or days <= 0, -100 when end_value <= 0 (total
        loss), and 0 when the result is not finite.
    """
    if start_value <= 0 or days <= 0:
        return 0.0

    if end_value <= 0:
        return -100.0

    ratio = end_value / start_value
    years_held = days / DAYS_PER_YEAR

    try:
        cagr = math.pow(ratio, 1 / years_held) - 1
    except OverflowError:
        return 0.0

    result = cagr * 100
    if not math.isfinite(result):
        return 0.0
    return result


def calculate_portfolio_weight(holding_value: float, total_value: float) -> float:
    """Holding value as a percentage of total portfolio value (0 if total is 0)."""
    if total_value == 0:
        return 0.0
    return holding_value / total_value * 100
