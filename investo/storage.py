"""Persistence for the portfolio document and the price cache.

Documents are stored as JSON strings in a key-value store, either a SQLite
table or an in-memory dict.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from pydantic import TypeAdapter, ValidationError

from .exceptions import PersistenceError
from .models import CURRENT_SCHEMA_VERSION, ETFCacheEntry, Portfolio, utc_now

logger = logging.getLogger(__name__)


class StorageKeys:
    """Keys used in the key-value store."""
    PORTFOLIO = "investo_portfolio"
    SETTINGS = "investo_settings"  # reserved for user preferences; never written, cleared on reset
    PRICE_CACHE = "investo_price_cache"
    SCHEMA_VERSION = "investo_schema_version"

    ALL = (PORTFOLIO, SETTINGS, PRICE_CACHE, SCHEMA_VERSION)


ETFCache = dict[str, ETFCacheEntry]

_cache_adapter = TypeAdapter(ETFCache)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class SQLiteStore:
    """SQLite-backed key-value store."""

    def __init__(self, db_path: Path):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file. The table is created on
                first use.
        """
        self.db_path = db_path
        self._initialized = False

    def _init_db(self) -> None:
        """Create the schema if needed."""
        if self._initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

        self._initialized = True
        logger.info(f"Storage database initialized at {self.db_path}")

    def get(self, key: str) -> Optional[str]:
        try:
            self._init_db()
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
                row = cursor.fetchone()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Failed to read '{key}': {e}") from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            self._init_db()
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                       VALUES (?, ?, CURRENT_TIMESTAMP)""",
                    (key, value),
                )
                conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._init_db()
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e


class MemoryStore:
    """In-memory key-value store. ``available=False`` simulates disabled storage."""

    def __init__(self, available: bool = True):
        self.available = available
        self._data: dict[str, str] = {}

    def _check(self) -> None:
        if not self.available:
            raise PersistenceError("Storage is unavailable")

    def get(self, key: str) -> Optional[str]:
        self._check()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check()
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._check()
        self._data.pop(key, None)


class PortfolioStorage:
    """Loads and saves the portfolio document and the price cache."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> Optional[Portfolio]:
        """Load the stored portfolio.

        Returns:
            The portfolio, or None if nothing is stored, the store is
            unavailable or the document cannot be parsed
        """
        try:
            raw = self.store.get(StorageKeys.PORTFOLIO)
        except PersistenceError as e:
            logger.warning(f"Storage unavailable, treating portfolio as empty: {e}")
            return None

        if not raw:
            return None

        try:
            return Portfolio.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable portfolio document: {e}")
            return None

    def save(self, portfolio: Portfolio, now: Optional[datetime] = None) -> Portfolio:
        """Save the portfolio, stamping ``updated_at``.

        Returns:
            The saved portfolio

        Raises:
            PersistenceError: If the store is unavailable or the write fails
        """
        if now is None:
            now = utc_now()

        saved = portfolio.model_copy(update={"updated_at": now})
        self.store.set(StorageKeys.PORTFOLIO, saved.model_dump_json(by_alias=True))
        self.store.set(StorageKeys.SCHEMA_VERSION, str(CURRENT_SCHEMA_VERSION))
        return saved

    def load_cache(self) -> ETFCache:
        """Load the price cache, or an empty cache if unavailable or unreadable."""
        try:
            raw = self.store.get(StorageKeys.PRICE_CACHE)
        except PersistenceError as e:
            logger.warning(f"Storage unavailable, treating price cache as empty: {e}")
            return {}

        if not raw:
            return {}

        try:
            return _cache_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable price cache: {e}")
            return {}

    def save_cache(self, cache: ETFCache) -> bool:
        """Save the price cache. Returns False if the write failed."""
        try:
            self.store.set(
                StorageKeys.PRICE_CACHE,
                _cache_adapter.dump_json(cache, by_alias=True).decode("utf-8"),
            )
        except PersistenceError as e:
            logger.warning(f"Failed to save price cache: {e}")
            return False
        return True

    def clear_cache(self) -> bool:
        try:
            self.store.delete(StorageKeys.PRICE_CACHE)
        except PersistenceError as e:
            logger.warning(f"Failed to clear price cache: {e}")
            return False
        return True

    def clear_all(self) -> None:
        """Remove the portfolio, settings, price cache and schema version.

        Raises:
            PersistenceError: If the store is unavailable
        """
        for key in StorageKeys.ALL:
            self.store.delete(key)
        logger.info("All stored data cleared")
