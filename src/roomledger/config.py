"""Configuration management for RoomLedger."""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .currencies import Currency


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Currencies
    base_currency: Currency = Currency.USD  # Common unit for all balances
    primary_currency: Currency = Currency.USD  # Personal entries abroad
    home_currency: Currency = Currency.USD  # Personal entries at home

    # Exchange rates
    live_rates_enabled: bool = True
    exchange_rate_api_url: str = "https://api.exchangerate-api.com/v4"
    rate_cache_ttl_seconds: int = 3600
    rate_fetch_timeout: float = 10.0

    # Identity used by the CLI when --user is omitted
    current_user_id: str | None = None

    # Database path
    database_path: Path = Path.home() / ".roomledger" / "roomledger.db"

    @field_validator(
        "base_currency", "primary_currency", "home_currency", mode="before"
    )
    @classmethod
    def _upper_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    def currency_for_context(self, is_home_country: bool) -> Currency:
        """Pick the personal-finance currency for home or abroad entries."""
        return self.home_currency if is_home_country else self.primary_currency


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ValueError(
            f"Failed to load settings. Check the .env file and environment "
            f"variables (see .env.example for reference).\n"
            f"Error: {e}"
        ) from e
