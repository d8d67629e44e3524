"""Configuration management for Trip Expenses."""

from decimal import Decimal
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DEFAULT_RATES, Currency, RateTable, check_positive_rates

# Values shipped in .env.example; a store configured with these is not real
_PLACEHOLDER_MARKERS = ("your-project-url", "your-anon-key", "your_project_id")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Trip
    trip_id: str = "hokkaido-2024"
    members: list[str] = []  # JSON list, e.g. MEMBERS='["Nook", "Isabelle"]'

    # Currency settings
    reference_currency: Currency = Currency.HKD
    exchange_rates: dict[str, Decimal] = dict(DEFAULT_RATES)

    # Store selection: remote Supabase table, local SQLite file, or in-memory demo
    store: Literal["supabase", "sqlite", "demo"] = "sqlite"

    # Supabase API
    supabase_url: str | None = None
    supabase_key: str | None = None
    supabase_table: str = "expenses"

    # Database path
    database_path: Path = Path.home() / ".trip_expenses" / "trip_expenses.db"

    # Seconds between polls for `trip-expenses watch`
    poll_interval: float = 5.0

    def __init__(self, **kwargs):
        """Initialize settings and create the database directory if needed."""
        super().__init__(**kwargs)
        if self.store == "sqlite":
            self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @field_validator("exchange_rates")
    @classmethod
    def _positive_rates(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        return check_positive_rates(value)

    @property
    def rate_table(self) -> RateTable:
        """Conversion rates into the reference currency."""
        return RateTable(
            reference=self.reference_currency,
            rates={code.upper(): rate for code, rate in self.exchange_rates.items()},
        )

    @property
    def supabase_configured(self) -> bool:
        """Whether real Supabase credentials are present."""
        return not is_placeholder_credentials(self.supabase_url, self.supabase_key)


def is_placeholder_credentials(url: str | None, key: str | None) -> bool:
    """Detect missing or template Supabase credentials."""
    if not url or not key:
        return True
    if not url.startswith("https://"):
        return True
    lowered = f"{url} {key}".lower()
    return any(marker in lowered for marker in _PLACEHOLDER_MARKERS)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ValueError(
            f"Failed to load settings. Check your .env file against "
            f".env.example.\n"
            f"Error: {e}"
        ) from e
