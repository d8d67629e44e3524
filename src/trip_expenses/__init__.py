"""Trip Expenses - Shared trip expenses settled in one reference currency."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .engine import SettlementEngine, build_engine
from .models import (
    Currency,
    ExpenseDraft,
    ExpenseRecord,
    RateTable,
    TripSummary,
    WriteResult,
    WriteStatus,
)
from .settlement import (
    aggregate_total,
    convert_to_reference,
    per_person_share,
    to_display_units,
)

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "SettlementEngine",
    "build_engine",
    "Currency",
    "ExpenseDraft",
    "ExpenseRecord",
    "RateTable",
    "TripSummary",
    "WriteResult",
    "WriteStatus",
    "aggregate_total",
    "convert_to_reference",
    "per_person_share",
    "to_display_units",
]
