"""Exceptions raised by the portfolio tracker."""

from typing import Optional


class InvestoError(Exception):
    """Base class for all tracker errors."""


class PortfolioValidationError(InvestoError):
    """Raised for malformed import documents and invalid purchase input."""


class InvalidSymbolError(PortfolioValidationError):
    """Raised when an ETF symbol is not 1-10 uppercase letters or digits."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(
            f"Invalid symbol '{symbol}'. Symbol must be 1-10 letters or numbers."
        )


class PurchaseNotFoundError(InvestoError):
    """Raised when editing or deleting an unknown purchase."""

    def __init__(self, purchase_id: str):
        self.purchase_id = purchase_id
        super().__init__(f"Purchase with ID {purchase_id} not found")


class QuoteFetchError(InvestoError):
    """Raised when a quote cannot be retrieved for a symbol."""

    def __init__(self, message: str, code: str, symbol: Optional[str] = None):
        self.code = code
        self.symbol = symbol
        super().__init__(message)


class PersistenceError(InvestoError):
    """Raised when the backing store is unavailable or a write fails."""
