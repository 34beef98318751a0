"""ETF portfolio tracker: purchase records, price cache and performance metrics."""

__version__ = "1.0.0"
