"""Portfolio, per-ETF and per-purchase performance metrics.

Every function here is synchronous and side-effect free. The current time is
passed in as ``now`` so results are reproducible; it defaults to the wall clock.
"""

from collections import defaultdict
from collections.abc import Mapping
from datetime import date, datetime
from typing import Optional

from .calculations import (
    calculate_annualized_return,
    calculate_gain_loss,
    calculate_gain_loss_percent,
    calculate_portfolio_weight,
    calculate_weighted_average_cost,
)
from .market_hours import to_market_time
from .models import (
    ETFHoldingMetrics,
    ETFPriceData,
    Portfolio,
    PortfolioMetrics,
    Purchase,
    PurchaseMetrics,
    YTDPerformance,
    normalize_symbol,
    utc_now,
)


def get_year_start(now: datetime) -> date:
    """January 1st of the market-calendar year containing ``now``."""
    return date(to_market_time(now).year, 1, 1)


def get_holding_period_days(purchase_date: date, now: datetime) -> int:
    """Whole days between the purchase date and ``now`` on the market calendar."""
    return (to_market_time(now).date() - purchase_date).days


def group_purchases_by_symbol(purchases: list[Purchase]) -> dict[str, list[Purchase]]:
    """Group purchases by normalized symbol, keeping insertion order."""
    grouped: dict[str, list[Purchase]] = defaultdict(list)
    for purchase in purchases:
        grouped[normalize_symbol(purchase.etf_symbol)].append(purchase)
    return dict(grouped)


def _normalize_price_data(price_data: Mapping[str, ETFPriceData]) -> dict[str, ETFPriceData]:
    return {normalize_symbol(symbol): quote for symbol, quote in price_data.items()}


def calculate_purchase_metrics(
    purchase: Purchase,
    current_price: float,
    now: Optional[datetime] = None,
) -> PurchaseMetrics:
    """Calculate performance metrics for a single purchase.

    Args:
        purchase: The purchase transaction
        current_price: Current market price per share
        now: Reference time for the holding period (defaults to now)

    Returns:
        PurchaseMetrics with gain/loss and annualized return
    """
    if now is None:
        now = utc_now()

    cost_basis = purchase.total_cost
    current_value = purchase.shares * current_price
    holding_period_days = get_holding_period_days(purchase.purchase_date, now)

    return PurchaseMetrics(
        purchase_id=purchase.id,
        etf_symbol=purchase.etf_symbol,
        shares=purchase.shares,
        cost_basis=cost_basis,
        current_value=current_value,
        gain_loss=calculate_gain_loss(cost_basis, current_value),
        gain_loss_percent=calculate_gain_loss_percent(cost_basis, current_value),
        holding_period_days=holding_period_days,
        annualized_return=calculate_annualized_return(
            cost_basis, current_value, holding_period_days
        ),
    )


def calculate_etf_holding_metrics(
    purchases: list[Purchase],
    etf_name: str,
    current_price: float,
    total_portfolio_value: float,
    now: Optional[datetime] = None,
) -> ETFHoldingMetrics:
    """Aggregate all purchases of one ETF into a holding.

    Args:
        purchases: Purchases sharing one symbol
        etf_name: Display name of the ETF
        current_price: Current market price per share
        total_portfolio_value: Current value of the whole portfolio, for weight
        now: Reference time for per-purchase holding periods

    Returns:
        ETFHoldingMetrics; an empty purchase list yields an all-zero holding
        with an empty symbol.
    """
    if not purchases:
        return ETFHoldingMetrics(
            etf_symbol="",
            etf_name=etf_name,
            total_shares=0.0,
            average_cost_per_share=0.0,
            total_cost_basis=0.0,
            current_price=current_price,
            current_value=0.0,
            total_gain_loss=0.0,
            total_gain_loss_percent=0.0,
            weight_in_portfolio=0.0,
            purchases=[],
        )

    if now is None:
        now = utc_now()

    total_shares = sum(p.shares for p in purchases)
    total_cost_basis = sum(p.total_cost for p in purchases)
    current_value = total_shares * current_price

    return ETFHoldingMetrics(
        etf_symbol=purchases[0].etf_symbol,
        etf_name=etf_name,
        total_shares=total_shares,
        average_cost_per_share=calculate_weighted_average_cost(purchases),
        total_cost_basis=total_cost_basis,
        current_price=current_price,
        current_value=current_value,
        total_gain_loss=calculate_gain_loss(total_cost_basis, current_value),
        total_gain_loss_percent=calculate_gain_loss_percent(total_cost_basis, current_value),
        weight_in_portfolio=calculate_portfolio_weight(current_value, total_portfolio_value),
        purchases=[calculate_purchase_metrics(p, current_price, now) for p in purchases],
    )


def calculate_ytd_performance(
    purchases: list[Purchase],
    price_data: Mapping[str, ETFPriceData],
    now: Optional[datetime] = None,
) -> YTDPerformance:
    """Calculate year-to-date performance.

    Holdings bought before this year are measured from their value at the
    start of the year; purchases made this year are measured from their cost
    basis. The percentage base is the year-start value plus new investments.
    Symbols without a quote contribute nothing.
    """
    if now is None:
        now = utc_now()

    year_start = get_year_start(now)
    quotes = _normalize_price_data(price_data)

    ytd_gain_loss = 0.0
    value_at_year_start = 0.0
    new_investments_this_year = 0.0

    for symbol, etf_purchases in group_purchases_by_symbol(purchases).items():
        quote = quotes.get(symbol)
        if quote is None:
            continue

        current_price = quote.current_price
        ytd_start_price = quote.ytd_start_price

        for purchase in etf_purchases:
            current_value = purchase.shares * current_price

            if purchase.purchase_date < year_start:
                value_at_start = purchase.shares * ytd_start_price
                value_at_year_start += value_at_start
                ytd_gain_loss += current_value - value_at_start
            else:
                ytd_gain_loss += current_value - purchase.total_cost
                new_investments_this_year += purchase.total_cost

    base = value_at_year_start + new_investments_this_year
    ytd_gain_loss_percent = ytd_gain_loss / base * 100 if base > 0 else 0.0

    return YTDPerformance(
        ytd_gain_loss=ytd_gain_loss,
        ytd_gain_loss_percent=ytd_gain_loss_percent,
    )


def calculate_portfolio_metrics(
    portfolio: Portfolio,
    price_data: Mapping[str, ETFPriceData],
    now: Optional[datetime] = None,
) -> PortfolioMetrics:
    """Calculate metrics for an entire portfolio.

    Only symbols present in ``price_data`` contribute to current value and
    holdings, while total invested covers every purchase.

    Args:
        portfolio: Portfolio with purchases and ETF cache (for display names)
        price_data: Mapping of symbol to current quote
        now: Reference time (defaults to now)

    Returns:
        PortfolioMetrics with holdings sorted by current value, descending
    """
    if now is None:
        now = utc_now()

    purchases = portfolio.purchases
    if not purchases:
        return PortfolioMetrics(
            total_invested=0.0,
            current_value=0.0,
            total_gain_loss=0.0,
            total_gain_loss_percent=0.0,
            ytd_gain_loss=0.0,
            ytd_gain_loss_percent=0.0,
            holdings=[],
            last_updated=now,
        )

    quotes = _normalize_price_data(price_data)
    purchases_by_symbol = group_purchases_by_symbol(purchases)

    # Total value first, it is needed for the weights
    total_current_value = 0.0
    for symbol, etf_purchases in purchases_by_symbol.items():
        quote = quotes.get(symbol)
        if quote is not None:
            total_current_value += sum(p.shares for p in etf_purchases) * quote.current_price

    holdings: list[ETFHoldingMetrics] = []
    for symbol, etf_purchases in purchases_by_symbol.items():
        quote = quotes.get(symbol)
        if quote is None:
            continue

        cache_entry = portfolio.etf_cache.get(symbol)
        etf_name = cache_entry.etf.name if cache_entry and cache_entry.etf.name else symbol

        holdings.append(
            calculate_etf_holding_metrics(
                etf_purchases,
                etf_name,
                quote.current_price,
                total_current_value,
                now,
            )
        )

    # sorted() is stable, equal values keep their input order
    holdings = sorted(holdings, key=lambda h: h.current_value, reverse=True)

    total_invested = sum(p.total_cost for p in purchases)
    ytd = calculate_ytd_performance(purchases, quotes, now)

    return PortfolioMetrics(
        total_invested=total_invested,
        current_value=total_current_value,
        total_gain_loss=calculate_gain_loss(total_invested, total_current_value),
        total_gain_loss_percent=calculate_gain_loss_percent(total_invested, total_current_value),
        ytd_gain_loss=ytd.ytd_gain_loss,
        ytd_gain_loss_percent=ytd.ytd_gain_loss_percent,
        holdings=holdings,
        last_updated=now,
    )
