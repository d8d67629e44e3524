"""Currency normalization and settlement arithmetic for trip expenses.

All functions here are pure. Conversions keep full Decimal precision;
rounding to whole reference units happens only in ``to_display_units``
so that totals never accumulate per-record rounding error.
"""

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from .models import Currency, ExpenseRecord, RateTable, TripSummary

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def to_display_units(value: Decimal) -> int:
    """
    Round a reference-currency value to the nearest whole unit.

    Uses ROUND_HALF_UP so that 0.5 always rounds away from zero.
    """
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def convert_to_reference(
    amount: Decimal | int | float | str,
    currency: Currency | str,
    rates: RateTable | None = None,
) -> Decimal:
    """
    Convert an amount into the reference currency, unrounded.

    Unsupported currencies are treated as already being in the reference
    currency rather than raising, so one odd row never blocks a total.

    Args:
        amount: Amount in ``currency``
        currency: Currency code the amount was entered in
        rates: Rate table (defaults to 1 JPY = 0.0518 HKD)

    Returns:
        Amount in reference-currency units
    """
    rates = rates or RateTable()
    rate = rates.rate_for(currency)
    if rate is None:
        logger.warning(
            f"Unsupported currency {currency!r}; counting it as {rates.reference}"
        )
        rate = Decimal("1")

    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount * rate


def aggregate_total(
    records: Iterable[ExpenseRecord], rates: RateTable | None = None
) -> Decimal:
    """Sum of all records in reference currency (0 for no records)."""
    return sum(
        (convert_to_reference(r.amount, r.currency, rates) for r in records), ZERO
    )


def per_person_share(record: ExpenseRecord, rates: RateTable | None = None) -> Decimal:
    """Reference-currency cost of a record for each person sharing it."""
    value = convert_to_reference(record.amount, record.currency, rates)
    return value / max(1, record.split_count)


def currency_totals(records: Iterable[ExpenseRecord]) -> dict[str, Decimal]:
    """Raw totals per entered currency, before any conversion."""
    totals: dict[str, Decimal] = {}
    for record in records:
        code = str(record.currency)
        totals[code] = totals.get(code, ZERO) + record.amount
    return totals


def paid_by_member(
    records: Iterable[ExpenseRecord], rates: RateTable | None = None
) -> dict[str, Decimal]:
    """Reference-currency amount each payer has laid out."""
    paid: dict[str, Decimal] = {}
    for record in records:
        value = convert_to_reference(record.amount, record.currency, rates)
        paid[record.payer] = paid.get(record.payer, ZERO) + value
    return paid


def average_per_member(
    records: Iterable[ExpenseRecord],
    member_count: int,
    rates: RateTable | None = None,
) -> Decimal:
    """Trip total divided evenly across members (the total itself if count < 1)."""
    total = aggregate_total(records, rates)
    return total / max(1, member_count)


def summarize(
    records: list[ExpenseRecord],
    rates: RateTable | None = None,
    members: list[str] | None = None,
) -> TripSummary:
    """
    Compute the trip dashboard aggregates for a list of records.

    When no member list is configured, the distinct payers stand in for
    the members when averaging.
    """
    rates = rates or RateTable()
    paid = paid_by_member(records, rates)
    member_count = len(members) if members else len(paid)

    return TripSummary(
        reference_currency=rates.reference,
        record_count=len(records),
        total=aggregate_total(records, rates),
        currency_totals=currency_totals(records),
        paid_by_member=paid,
        average_per_member=average_per_member(records, member_count, rates),
    )
