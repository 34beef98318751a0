"""Application settings, loaded from INVESTO_* environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Runtime configuration for the tracker."""

    model_config = SettingsConfigDict(
        env_prefix="INVESTO_",
        env_file=".env",
        extra="ignore",
    )

    data_dir: Path = BASE_DIR / "data"
    db_filename: str = "investo.db"
    quote_provider: str = "yfinance"  # yfinance | mock
    log_level: str = "INFO"
    market_timezone: str = "US/Eastern"
    cache_prune_max_age_hours: float = 24
    default_portfolio_name: str = "My Portfolio"

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename


@lru_cache
def get_settings() -> Settings:
    return Settings()
