"""SQLite expense store for Trip Expenses."""

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .exceptions import DatabaseError

EDITABLE_COLUMNS = (
    "title",
    "amount",
    "currency",
    "payer",
    "split_count",
    "category",
    "spent_on",
)


class Database:
    """SQLite database manager implementing the expense store interface.

    Writes notify in-process subscribers of the affected trip, which is how
    several engines sharing one database file stay in sync.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self._listeners: dict[str, list[Callable[[], None]]] = {}
        try:
            self.conn = sqlite3.connect(str(db_path))
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot open database {db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                trip_id TEXT NOT NULL,
                title TEXT NOT NULL,
                amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                payer TEXT NOT NULL,
                split_count INTEGER NOT NULL DEFAULT 1,
                category TEXT,
                spent_on DATE,
                created_at TIMESTAMP NOT NULL
            )
        """
        )
        cursor.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_expenses_trip
            ON expenses (trip_id, created_at)
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        """Surface sqlite failures as store transport errors."""
        try:
            yield
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to {action}: {e}") from e

    # ========================================================================
    # Expense operations
    # ========================================================================

    def query(self, trip_id: str) -> list[dict[str, Any]]:
        """Get all expense rows for a trip, newest first."""
        with self._translate_errors("query expenses"):
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, trip_id, title, amount, currency, payer,
                       split_count, category, spent_on, created_at
                FROM expenses
                WHERE trip_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (trip_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    def get(self, expense_id: str | int) -> dict[str, Any] | None:
        """Get a single expense row by id."""
        with self._translate_errors("get expense"):
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, trip_id, title, amount, currency, payer,
                       split_count, category, spent_on, created_at
                FROM expenses
                WHERE id = ?
                """,
                (expense_id,),
            )
            row = cursor.fetchone()
        return dict(row) if row else None

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        """Insert an expense row; the database assigns id and created_at."""
        with self._translate_errors("insert expense"):
            cursor = self.conn.cursor()
            cursor.execute(
                """
                INSERT INTO expenses (
                    trip_id, title, amount, currency, payer,
                    split_count, category, spent_on, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row["trip_id"],
                    row["title"],
                    str(row["amount"]),
                    row["currency"],
                    row["payer"],
                    row.get("split_count", 1),
                    row.get("category"),
                    row.get("spent_on"),
                    datetime.now(UTC).isoformat(),
                ),
            )
            self.conn.commit()
            row_id = cursor.lastrowid

        if row_id is None:
            raise DatabaseError("Failed to insert expense record")

        created = self.get(row_id)
        if created is None:
            raise DatabaseError(f"Inserted expense {row_id} could not be read back")
        self._notify(created["trip_id"])
        return created

    def update(
        self, trip_id: str, expense_id: str, row: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Replace the editable fields of one of a trip's expenses.

        Returns:
            The updated row, or None if the trip has no expense with this id
        """
        columns = [col for col in EDITABLE_COLUMNS if col in row]
        values = [str(row[col]) if col == "amount" else row[col] for col in columns]
        assignments = ", ".join(f"{col} = ?" for col in columns) or "id = id"

        with self._translate_errors("update expense"):
            cursor = self.conn.cursor()
            cursor.execute(
                f"UPDATE expenses SET {assignments} WHERE id = ? AND trip_id = ?",
                (*values, expense_id, trip_id),
            )
            self.conn.commit()
            updated_count = cursor.rowcount

        if updated_count == 0:
            return None

        updated = self.get(expense_id)
        self._notify(trip_id)
        return updated

    def delete(self, trip_id: str, expense_id: str) -> bool:
        """Delete one of a trip's expenses. Returns False if it was already gone."""
        with self._translate_errors("delete expense"):
            cursor = self.conn.cursor()
            cursor.execute(
                "DELETE FROM expenses WHERE id = ? AND trip_id = ?",
                (expense_id, trip_id),
            )
            self.conn.commit()
            deleted_count = cursor.rowcount

        if deleted_count:
            self._notify(trip_id)
        return deleted_count > 0

    # ========================================================================
    # Change notification
    # ========================================================================

    def subscribe(
        self, trip_id: str, on_change: Callable[[], None]
    ) -> Callable[[], None]:
        """
        Call ``on_change`` after every write to the trip.

        Returns:
            A callable that removes the subscription
        """
        self._listeners.setdefault(trip_id, []).append(on_change)

        def unsubscribe():
            listeners = self._listeners.get(trip_id, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return unsubscribe

    def _notify(self, trip_id: str):
        for listener in list(self._listeners.get(trip_id, [])):
            listener()
