"""Settlement engine: the per-trip expense working set and its writes.

The engine owns the in-memory list of a trip's expenses. Reads go through
``list_expenses`` (or ``resync`` when a change notification delivers a fresh
snapshot) and writes go through ``upsert``/``remove``, so the aggregates
computed from ``records`` always match the authoritative list.

Without a store the engine runs in demo mode: writes touch only the
in-memory working set and are lost when the process exits.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from .clients.supabase import SupabaseClient
from .config import Settings
from .db import Database
from .exceptions import ExpenseValidationError, TransportError
from .models import (
    Currency,
    ExpenseDraft,
    ExpenseRecord,
    RateTable,
    TripSummary,
    WriteResult,
    WriteStatus,
)
from .settlement import aggregate_total, summarize

logger = logging.getLogger(__name__)


class ExpenseStore(Protocol):
    """A remote or local table of expense rows keyed by trip."""

    def query(self, trip_id: str) -> list[dict[str, Any]]: ...

    def insert(self, row: dict[str, Any]) -> dict[str, Any]: ...

    def update(
        self, trip_id: str, expense_id: str, row: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    def delete(self, trip_id: str, expense_id: str) -> bool: ...


@runtime_checkable
class SubscribableStore(ExpenseStore, Protocol):
    """A store that can push change notifications for a trip."""

    def subscribe(
        self, trip_id: str, on_change: Callable[[], None]
    ) -> Callable[[], None]: ...


class SettlementEngine:
    """Expense list, writes and aggregates for a single trip."""

    def __init__(
        self,
        trip_id: str,
        rates: RateTable | None = None,
        store: ExpenseStore | None = None,
        members: list[str] | None = None,
        clock: Callable[[], datetime] | None = None,
        snapshot: Iterable[ExpenseRecord] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            trip_id: Trip whose expenses this engine manages
            rates: Conversion rates into the reference currency
            store: Persistent store; None runs in demo mode
            members: Known payers; empty disables the payer check
            clock: Source of creation timestamps in demo mode
            snapshot: Initial working set (demo mode seed data)
        """
        self.trip_id = trip_id
        self.rates = rates or RateTable()
        self.store = store
        self.members = list(members or [])
        self._clock = clock or (lambda: datetime.now(UTC))
        self._records: list[ExpenseRecord] = [
            r for r in (snapshot or []) if r.trip_id == trip_id
        ]

    @property
    def is_demo(self) -> bool:
        """True when no store is attached and writes stay in memory."""
        return self.store is None

    @property
    def records(self) -> list[ExpenseRecord]:
        """Current working set, newest first."""
        return _newest_first(self._records)

    def close(self):
        """Close the underlying store, if it holds a connection."""
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    # ========================================================================
    # Reads
    # ========================================================================

    def fetch(self, trip_id: str | None = None) -> list[ExpenseRecord]:
        """
        Read a trip's records from the store without touching the working set.

        Raises:
            TransportError: If the store cannot be read
        """
        trip_id = trip_id or self.trip_id
        if self.store is None:
            return _newest_first(r for r in self._records if r.trip_id == trip_id)
        rows = self.store.query(trip_id)
        return _newest_first(_parse_rows(rows, trip_id))

    def list_expenses(self, trip_id: str | None = None) -> list[ExpenseRecord]:
        """
        List a trip's expenses, newest first.

        With a store, the fetched list also replaces the working set when it
        belongs to this engine's trip.

        Raises:
            TransportError: If the store cannot be read
        """
        trip_id = trip_id or self.trip_id
        records = self.fetch(trip_id)
        if self.store is not None and trip_id == self.trip_id:
            self.resync(records)
        return records

    def resync(
        self, snapshot: Iterable[ExpenseRecord | Mapping[str, Any]]
    ) -> list[ExpenseRecord]:
        """
        Replace the entire working set with a fresh snapshot.

        The snapshot is fully parsed before anything is replaced, so a bad
        row leaves the previous working set in place.
        """
        parsed = [
            r if isinstance(r, ExpenseRecord) else ExpenseRecord.from_row(dict(r))
            for r in snapshot
        ]
        self._records = [r for r in parsed if r.trip_id == self.trip_id]
        logger.debug(f"Resynced {len(self._records)} expenses for {self.trip_id}")
        return self.records

    def follow_changes(self) -> Callable[[], None] | None:
        """
        Re-list on every change notification from the store.

        Returns:
            An unsubscribe callable, or None if the store cannot push changes
        """
        if not isinstance(self.store, SubscribableStore):
            logger.info("Store has no change notifications; working set is static")
            return None
        return self.store.subscribe(self.trip_id, self._on_store_change)

    def _on_store_change(self):
        try:
            self.list_expenses()
        except TransportError as e:
            logger.warning(f"Refetch after change notification failed: {e}")

    # ========================================================================
    # Writes
    # ========================================================================

    def validate(self, draft: ExpenseDraft | Mapping[str, Any]) -> ExpenseDraft:
        """
        Validate a draft before it is written.

        Raises:
            ExpenseValidationError: On an empty title or payer, a missing,
                non-numeric or negative amount, an unsupported currency, or
                a payer who is not a trip member
        """
        if isinstance(draft, ExpenseDraft):
            data: dict[str, Any] = draft.model_dump()
        else:
            data = dict(draft)

        try:
            validated = ExpenseDraft.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "draft"
            raise ExpenseValidationError(field, error["msg"]) from e

        if not self.rates.supports(validated.currency):
            raise ExpenseValidationError(
                "currency", f"no conversion rate for {validated.currency}"
            )
        if self.members and validated.payer not in self.members:
            raise ExpenseValidationError(
                "payer", f"{validated.payer!r} is not a member of this trip"
            )
        return validated

    def upsert(
        self,
        draft: ExpenseDraft | Mapping[str, Any],
        existing_id: str | None = None,
    ) -> WriteResult:
        """
        Create an expense, or replace the editable fields of an existing one.

        Args:
            draft: The submitted form values
            existing_id: Id of the expense being edited; None creates a new one

        Returns:
            REJECTED if validation fails (nothing is written), FAILED if the
            store refuses the write, NOOP if the edited expense has vanished,
            otherwise APPLIED with the saved record
        """
        try:
            validated = self.validate(draft)
        except ExpenseValidationError as e:
            logger.info(f"Rejected expense draft: {e}")
            return WriteResult(WriteStatus.REJECTED, error=e)

        if existing_id is None:
            return self._create(validated)
        return self._replace(str(existing_id), validated)

    def _create(self, draft: ExpenseDraft) -> WriteResult:
        if self.store is None:
            now = self._clock()
            record = ExpenseRecord(
                id=_local_id(now),
                trip_id=self.trip_id,
                created_at=now,
                **draft.model_dump(),
            )
            self._records.append(record)
        else:
            try:
                row = self.store.insert({**draft.to_row(), "trip_id": self.trip_id})
            except TransportError as e:
                logger.error(f"Failed to save expense {draft.title!r}: {e}")
                return WriteResult(WriteStatus.FAILED, error=e)
            record = ExpenseRecord.from_row(row)
            self._put(record)

        logger.info(
            f"Added expense {record.id}: {record.title} "
            f"{record.amount} {record.currency}"
        )
        return WriteResult(WriteStatus.APPLIED, record=record)

    def _replace(self, expense_id: str, draft: ExpenseDraft) -> WriteResult:
        index = self._index_of(expense_id)

        if self.store is None:
            if index is None:
                logger.info(f"Expense {expense_id} not found; nothing to update")
                return WriteResult(WriteStatus.NOOP)
            record = self._records[index].model_copy(update=draft.model_dump())
        else:
            try:
                row = self.store.update(self.trip_id, expense_id, draft.to_row())
            except TransportError as e:
                logger.error(f"Failed to update expense {expense_id}: {e}")
                return WriteResult(WriteStatus.FAILED, error=e)
            if row is None or str(row.get("trip_id")) != self.trip_id:
                logger.info(f"Expense {expense_id} not in this trip; not updated")
                return WriteResult(WriteStatus.NOOP)
            record = ExpenseRecord.from_row(row)

        self._put(record)
        logger.info(f"Updated expense {record.id}: {record.title}")
        return WriteResult(WriteStatus.APPLIED, record=record)

    def remove(
        self, expense_id: str, confirm: Callable[[ExpenseRecord], bool]
    ) -> WriteResult:
        """
        Delete an expense after the caller confirms it.

        Args:
            expense_id: Id of the expense to delete
            confirm: Yes/no gate, called with the record about to be deleted

        Returns:
            NOOP if the trip has no expense with this id, CANCELLED if the
            caller declines, FAILED if the store refuses, otherwise APPLIED
        """
        index = self._index_of(str(expense_id))
        if index is None and self.store is not None:
            # Not listed yet, or added elsewhere since; ask the store.
            try:
                self.list_expenses()
            except TransportError as e:
                logger.error(f"Failed to look up expense {expense_id}: {e}")
                return WriteResult(WriteStatus.FAILED, error=e)
            index = self._index_of(str(expense_id))
        if index is None:
            logger.info(f"Expense {expense_id} not found; nothing to delete")
            return WriteResult(WriteStatus.NOOP)

        record = self._records[index]
        if not confirm(record):
            return WriteResult(WriteStatus.CANCELLED, record=record)

        status = WriteStatus.APPLIED
        if self.store is not None:
            try:
                deleted = self.store.delete(self.trip_id, record.id)
            except TransportError as e:
                logger.error(f"Failed to delete expense {record.id}: {e}")
                return WriteResult(WriteStatus.FAILED, record=record, error=e)
            if not deleted:
                status = WriteStatus.NOOP

        self._discard(record.id)
        logger.info(f"Removed expense {record.id}: {record.title}")
        return WriteResult(status, record=record)

    def _index_of(self, expense_id: str) -> int | None:
        # Demo ids are millisecond timestamps and may collide; first match wins.
        for index, record in enumerate(self._records):
            if record.id == expense_id:
                return index
        return None

    def _put(self, record: ExpenseRecord):
        # A change notification may already have resynced the working set
        # during the write, so locate the record again by id.
        index = self._index_of(record.id)
        if index is None:
            self._records.append(record)
        else:
            self._records[index] = record

    def _discard(self, expense_id: str):
        index = self._index_of(expense_id)
        if index is not None:
            del self._records[index]

    # ========================================================================
    # Aggregates
    # ========================================================================

    def total(self) -> Decimal:
        """Trip total in reference currency, unrounded."""
        return aggregate_total(self._records, self.rates)

    def summary(self) -> TripSummary:
        """Dashboard aggregates for the current working set."""
        return summarize(self.records, self.rates, self.members)


def _local_id(now: datetime) -> str:
    """Timestamp-derived id for records created without a store."""
    return str(int(now.timestamp() * 1000))


def _newest_first(records: Iterable[ExpenseRecord]) -> list[ExpenseRecord]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


def _parse_rows(rows: Iterable[Mapping[str, Any]], trip_id: str) -> list[ExpenseRecord]:
    records = []
    for row in rows:
        record = ExpenseRecord.from_row(dict(row))
        if record.trip_id != trip_id:
            continue
        if not isinstance(record.currency, Currency):
            logger.warning(
                f"Expense {record.id} uses unsupported currency {record.currency!r}"
            )
        records.append(record)
    return records


# ============================================================================
# Wiring
# ============================================================================


def demo_expenses(trip_id: str) -> list[ExpenseRecord]:
    """Sample expenses shown when no store is reachable."""
    samples = [
        ("札幌拉麵", "1400", "狸克", "food", date(2024, 5, 12), 10),
        ("機場巴士", "1100", "西施惠", "transport", date(2024, 5, 12), 14),
        ("伴手禮", "8500", "狸克", "shopping", date(2024, 5, 13), 18),
    ]
    records = []
    for index, (title, amount, payer, category, spent_on, hour) in enumerate(samples):
        records.append(
            ExpenseRecord(
                id=f"demo-{index + 1}",
                trip_id=trip_id,
                title=title,
                amount=Decimal(amount),
                currency=Currency.JPY,
                payer=payer,
                split_count=1,
                category=category,
                spent_on=spent_on,
                created_at=datetime(
                    spent_on.year, spent_on.month, spent_on.day, hour, tzinfo=UTC
                ),
            )
        )
    return records


def build_store(settings: Settings) -> ExpenseStore | None:
    """Create the store selected in settings, or None for demo mode."""
    if settings.store == "supabase":
        if not settings.supabase_configured:
            logger.warning(
                "Supabase credentials missing or placeholders; using demo mode"
            )
            return None
        assert settings.supabase_url and settings.supabase_key
        return SupabaseClient(
            settings.supabase_url, settings.supabase_key, settings.supabase_table
        )
    if settings.store == "sqlite":
        return Database(settings.database_path)
    return None


def build_engine(settings: Settings) -> SettlementEngine:
    """Create a settlement engine wired to the configured store."""
    store = build_store(settings)
    snapshot = demo_expenses(settings.trip_id) if store is None else None
    return SettlementEngine(
        trip_id=settings.trip_id,
        rates=settings.rate_table,
        store=store,
        members=settings.members,
        snapshot=snapshot,
    )
