"""Curated list of commonly traded ETFs."""

from typing import NamedTuple, Optional

from .models import normalize_symbol


class PopularETF(NamedTuple):
    symbol: str
    name: str
    category: str


POPULAR_ETFS: list[PopularETF] = [
    # US Total Market
    PopularETF("VTI", "Vanguard Total Stock Market ETF", "US Total Market"),
    PopularETF("ITOT", "iShares Core S&P Total US Stock Market ETF", "US Total Market"),
    # S&P 500
    PopularETF("VOO", "Vanguard S&P 500 ETF", "S&P 500"),
    PopularETF("SPY", "SPDR S&P 500 ETF Trust", "S&P 500"),
    PopularETF("IVV", "iShares Core S&P 500 ETF", "S&P 500"),
    # Tech
    PopularETF("QQQ", "Invesco QQQ Trust (NASDAQ-100)", "Tech"),
    PopularETF("VGT", "Vanguard Information Technology ETF", "Tech"),
    # International
    PopularETF("VEA", "Vanguard FTSE Developed Markets ETF", "International"),
    PopularETF("VWO", "Vanguard FTSE Emerging Markets ETF", "International"),
    PopularETF("VXUS", "Vanguard Total International Stock ETF", "International"),
    PopularETF("IWM", "iShares Russell 2000 ETF", "US Total Market"),
    # Bonds
    PopularETF("BND", "Vanguard Total Bond Market ETF", "Bonds"),
    PopularETF("AGG", "iShares Core U.S. Aggregate Bond ETF", "Bonds"),
    PopularETF("TLT", "iShares 20+ Year Treasury Bond ETF", "Bonds"),
    # Commodities
    PopularETF("GLD", "SPDR Gold Shares", "Commodities"),
]

_BY_SYMBOL = {etf.symbol: etf for etf in POPULAR_ETFS}


def find_etf_by_symbol(symbol: str) -> Optional[PopularETF]:
    return _BY_SYMBOL.get(normalize_symbol(symbol))


def get_etfs_by_category(category: str) -> list[PopularETF]:
    return [etf for etf in POPULAR_ETFS if etf.category == category]


def get_categories() -> list[str]:
    """Categories in first-seen order."""
    return list(dict.fromkeys(etf.category for etf in POPULAR_ETFS))


def search_etfs(query: str, limit: int = 10) -> list[PopularETF]:
    """Match ETFs whose symbol or name contains the query; symbol prefixes first."""
    query = query.strip()
    if not query:
        return []

    upper = query.upper()
    lower = query.lower()

    prefix = [etf for etf in POPULAR_ETFS if etf.symbol.startswith(upper)]
    rest = [
        etf for etf in POPULAR_ETFS
        if etf not in prefix and (upper in etf.symbol or lower in etf.name.lower())
    ]
    return (prefix + rest)[:limit]
