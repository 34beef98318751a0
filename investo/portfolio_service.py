"""Portfolio lifecycle: purchases, export/import and reset."""

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from .exceptions import PortfolioValidationError, PurchaseNotFoundError
from .models import (
    CURRENT_SCHEMA_VERSION,
    Portfolio,
    Purchase,
    PurchaseInput,
    PurchaseUpdate,
    normalize_symbol,
    utc_now,
)
from .storage import PortfolioStorage

logger = logging.getLogger(__name__)

DEFAULT_PORTFOLIO_NAME = "My Portfolio"


def generate_id() -> str:
    return str(uuid.uuid4())


def _is_positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


class PortfolioService:
    """Creates, edits and persists the portfolio.

    Every mutating method saves the portfolio and returns the updated copy.
    """

    def __init__(
        self,
        storage: PortfolioStorage,
        clock: Callable[[], datetime] = utc_now,
        default_name: str = DEFAULT_PORTFOLIO_NAME,
    ):
        self.storage = storage
        self.clock = clock
        self.default_name = default_name

    def get_portfolio(self) -> Optional[Portfolio]:
        return self.storage.load()

    def get_or_create_portfolio(self) -> Portfolio:
        portfolio = self.get_portfolio()
        if portfolio is None:
            portfolio = self.initialize_portfolio()
        return portfolio

    def initialize_portfolio(self, name: Optional[str] = None) -> Portfolio:
        """Create and save an empty portfolio."""
        now = self.clock()
        portfolio = Portfolio(
            id=generate_id(),
            name=name or self.default_name,
            purchases=[],
            etf_cache={},
            created_at=now,
            updated_at=now,
            version=CURRENT_SCHEMA_VERSION,
        )
        logger.info(f"Created portfolio '{portfolio.name}'")
        return self.save_portfolio(portfolio)

    def save_portfolio(self, portfolio: Portfolio) -> Portfolio:
        return self.storage.save(portfolio, self.clock())

    def rename_portfolio(self, portfolio: Portfolio, name: str) -> Portfolio:
        name = name.strip()
        if not name:
            raise PortfolioValidationError("Portfolio name cannot be empty")
        return self.save_portfolio(portfolio.model_copy(update={"name": name}))

    def add_purchase(self, portfolio: Portfolio, data: PurchaseInput) -> Portfolio:
        """Record a new purchase.

        Args:
            portfolio: The current portfolio
            data: Validated purchase fields

        Returns:
            The updated portfolio
        """
        now = self.clock()
        purchase = Purchase(
            id=generate_id(),
            etf_symbol=data.etf_symbol,
            purchase_date=data.purchase_date,
            shares=data.shares,
            price_per_share=data.price_per_share,
            fees=data.fees,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        updated = portfolio.model_copy(update={"purchases": [*portfolio.purchases, purchase]})
        return self.save_portfolio(updated)

    def _find_index(self, portfolio: Portfolio, purchase_id: str) -> int:
        for index, purchase in enumerate(portfolio.purchases):
            if purchase.id == purchase_id:
                return index
        raise PurchaseNotFoundError(purchase_id)

    def update_purchase(
        self,
        portfolio: Portfolio,
        purchase_id: str,
        data: PurchaseUpdate,
    ) -> Portfolio:
        """Apply a partial edit to a purchase; total cost follows the new values.

        Raises:
            PurchaseNotFoundError: If no purchase has this id
            PortfolioValidationError: If the edited purchase is invalid
        """
        index = self._find_index(portfolio, purchase_id)
        existing = portfolio.purchases[index]

        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field == "notes"
        }
        try:
            edited = Purchase.model_validate({
                **existing.model_dump(exclude={"total_cost"}),
                **changes,
                "updated_at": self.clock(),
            })
        except ValidationError as e:
            raise PortfolioValidationError(f"Invalid purchase: {e}") from e

        purchases = list(portfolio.purchases)
        purchases[index] = edited
        return self.save_portfolio(portfolio.model_copy(update={"purchases": purchases}))

    def delete_purchase(self, portfolio: Portfolio, purchase_id: str) -> Portfolio:
        """Remove a purchase.

        Raises:
            PurchaseNotFoundError: If no purchase has this id
        """
        self._find_index(portfolio, purchase_id)
        purchases = [p for p in portfolio.purchases if p.id != purchase_id]
        return self.save_portfolio(portfolio.model_copy(update={"purchases": purchases}))

    @staticmethod
    def get_purchases_by_etf(portfolio: Portfolio, symbol: str) -> list[Purchase]:
        symbol = normalize_symbol(symbol)
        return [p for p in portfolio.purchases if p.etf_symbol == symbol]

    def export_portfolio(self, portfolio: Portfolio) -> str:
        """Serialize the portfolio to the JSON export document."""
        data = portfolio.model_dump(mode="json", by_alias=True)
        data["exportedAt"] = self.clock().isoformat()
        data["version"] = CURRENT_SCHEMA_VERSION
        return json.dumps(data, indent=2)

    def import_portfolio(self, document: str) -> Portfolio:
        """Replace the stored portfolio with an exported document.

        Missing timestamps are filled with the current time.

        Raises:
            PortfolioValidationError: If the document is malformed
        """
        try:
            data = json.loads(document)
        except (json.JSONDecodeError, TypeError) as e:
            raise PortfolioValidationError("Invalid JSON format") from e

        if not isinstance(data, dict):
            raise PortfolioValidationError("Invalid JSON format")

        if not _is_non_empty_string(data.get("id")):
            raise PortfolioValidationError("Invalid portfolio: missing or invalid id")
        if not _is_non_empty_string(data.get("name")):
            raise PortfolioValidationError("Invalid portfolio: missing or invalid name")
        if not isinstance(data.get("purchases"), list):
            raise PortfolioValidationError("Invalid portfolio: purchases must be an array")

        for purchase in data["purchases"]:
            if not isinstance(purchase, dict):
                raise PortfolioValidationError("Invalid purchase: expected an object")
            if not _is_non_empty_string(purchase.get("id")):
                raise PortfolioValidationError("Invalid purchase: missing or invalid id")
            if not _is_non_empty_string(purchase.get("etfSymbol")):
                raise PortfolioValidationError("Invalid purchase: missing or invalid etfSymbol")
            if not _is_positive_number(purchase.get("shares")):
                raise PortfolioValidationError("Invalid purchase: shares must be a positive number")
            if not _is_positive_number(purchase.get("pricePerShare")):
                raise PortfolioValidationError(
                    "Invalid purchase: pricePerShare must be a positive number"
                )

        now = self.clock()
        now_iso = now.isoformat()

        document_data = {
            "id": data["id"],
            "name": data["name"],
            "purchases": [
                {
                    **purchase,
                    "createdAt": purchase.get("createdAt") or now_iso,
                    "updatedAt": purchase.get("updatedAt") or now_iso,
                }
                for purchase in data["purchases"]
            ],
            "etfCache": data.get("etfCache") or {},
            "createdAt": data.get("createdAt") or now_iso,
            "updatedAt": now_iso,
            "version": CURRENT_SCHEMA_VERSION,
        }

        try:
            portfolio = Portfolio.model_validate(document_data)
        except ValidationError as e:
            raise PortfolioValidationError(f"Invalid portfolio: {e}") from e

        saved = self.storage.save(portfolio, now)
        logger.info(f"Imported portfolio '{saved.name}' with {len(saved.purchases)} purchases")
        return saved

    def reset(self) -> None:
        """Delete all stored data."""
        self.storage.clear_all()
