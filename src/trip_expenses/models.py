"""Pydantic domain models for Trip Expenses."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .exceptions import TripExpensesError

# ============================================================================
# Currencies
# ============================================================================


class Currency(StrEnum):
    """Currencies an expense can be entered in."""

    JPY = "JPY"
    HKD = "HKD"


DEFAULT_RATES: dict[str, Decimal] = {"JPY": Decimal("0.0518")}


def check_positive_rates(rates: dict[str, Decimal]) -> dict[str, Decimal]:
    """Reject zero, negative or non-finite conversion rates."""
    for code, rate in rates.items():
        if not rate.is_finite() or rate <= 0:
            raise ValueError(f"rate for {code} must be a positive number, got {rate}")
    return rates


class RateTable(BaseModel):
    """Fixed conversion rates into the reference currency.

    A rate is the number of reference-currency units per unit of the keyed
    currency. The reference currency always converts at 1.
    """

    reference: Currency = Currency.HKD
    rates: dict[str, Decimal] = Field(default_factory=lambda: dict(DEFAULT_RATES))

    @field_validator("rates")
    @classmethod
    def _positive_rates(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        return check_positive_rates(value)

    def rate_for(self, currency: str) -> Decimal | None:
        """Get the rate for a currency code, or None if it is unsupported."""
        code = str(currency).upper()
        if code == self.reference.value:
            return Decimal("1")
        return self.rates.get(code)

    def supports(self, currency: str) -> bool:
        """Whether a currency code can be converted."""
        return self.rate_for(currency) is not None


def _to_decimal(value: Any) -> Any:
    """Parse user-entered amounts without turning floats into binary noise."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("amount is required")
        try:
            return Decimal(value)
        except InvalidOperation as e:
            raise ValueError(f"'{value}' is not a number") from e
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _split_count_or_one(value: Any) -> int:
    """Missing, unparseable or non-positive split counts become 1."""
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 1
    return count if count >= 1 else 1


# ============================================================================
# Expense Models
# ============================================================================


class ExpenseDraft(BaseModel):
    """The editable fields of an expense, before it is persisted."""

    title: str
    amount: Decimal
    currency: Currency = Currency.JPY
    payer: str
    split_count: int = 1
    category: str | None = None
    spent_on: date | None = None

    @field_validator("title", "payer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Any:
        return _to_decimal(value)

    @field_validator("amount")
    @classmethod
    def _finite_non_negative(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise ValueError("amount must be a finite number")
        if value < 0:
            raise ValueError("amount must not be negative")
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("split_count", mode="before")
    @classmethod
    def _coerce_split_count(cls, value: Any) -> int:
        return _split_count_or_one(value)

    @field_validator("category", mode="before")
    @classmethod
    def _blank_category(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_row(self) -> dict[str, Any]:
        """Serialize the editable fields for a store write."""
        return self.model_dump(mode="json")


class ExpenseRecord(BaseModel):
    """A persisted expense belonging to one trip.

    Rows read back from a store may carry a currency code outside
    ``Currency``; such records are kept with the raw code so that
    aggregation can treat them as reference currency.
    """

    id: str
    trip_id: str
    title: str
    amount: Decimal
    currency: Currency | str = Field(union_mode="left_to_right")
    payer: str
    split_count: int = 1
    category: str | None = None
    spent_on: date | None = None
    created_at: datetime

    @field_validator("id", "trip_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Any:
        return _to_decimal(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("split_count", mode="before")
    @classmethod
    def _coerce_split_count(cls, value: Any) -> int:
        return _split_count_or_one(value)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ExpenseRecord":
        """Build a record from a raw store row."""
        return cls.model_validate(row)

    def form_values(self) -> dict[str, Any]:
        """Editable fields, used to prefill a draft when the record is edited."""
        return self.model_dump(include=set(ExpenseDraft.model_fields))


# ============================================================================
# Write Results
# ============================================================================


class WriteStatus(StrEnum):
    """Outcome of an upsert or remove."""

    APPLIED = "applied"
    NOOP = "noop"  # target id vanished, nothing changed
    CANCELLED = "cancelled"  # caller declined the confirmation
    REJECTED = "rejected"  # validation failed, store never contacted
    FAILED = "failed"  # store unreachable or write refused


@dataclass(frozen=True)
class WriteResult:
    """Result of a write through the settlement engine."""

    status: WriteStatus
    record: ExpenseRecord | None = None
    error: TripExpensesError | None = None

    @property
    def ok(self) -> bool:
        """True when the write succeeded or was a harmless no-op."""
        return self.status in (WriteStatus.APPLIED, WriteStatus.NOOP)

    @property
    def message(self) -> str:
        """Human-readable description of the outcome."""
        if self.error is not None:
            return str(self.error)
        if self.status is WriteStatus.NOOP:
            return "Expense no longer exists; nothing changed"
        if self.status is WriteStatus.CANCELLED:
            return "Cancelled"
        return "OK"


# ============================================================================
# Summary Models
# ============================================================================


class TripSummary(BaseModel):
    """Aggregates for a trip's expenses, in reference currency unless noted."""

    reference_currency: Currency
    record_count: int
    total: Decimal
    currency_totals: dict[str, Decimal]  # raw amounts per entered currency
    paid_by_member: dict[str, Decimal]
    average_per_member: Decimal
