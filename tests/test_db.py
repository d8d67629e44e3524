"""Tests for the SQLite expense store."""

from unittest.mock import MagicMock

import pytest

from trip_expenses.db import Database
from trip_expenses.exceptions import DatabaseError


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


def make_row(**overrides):
    row = {
        "trip_id": "trip-1",
        "title": "Taxi",
        "amount": "150",
        "currency": "HKD",
        "payer": "B",
        "split_count": 1,
        "category": "transport",
        "spent_on": "2024-05-12",
    }
    row.update(overrides)
    return row


class TestDatabase:
    """Tests for Database CRUD."""

    def test_insert_assigns_id_and_created_at(self, db):
        """The database fills in id and created_at."""
        created = db.insert(make_row())

        assert created["id"] == 1
        assert created["created_at"]
        assert created["title"] == "Taxi"
        assert created["amount"] == "150"

    def test_amount_keeps_decimal_text(self, db):
        """Amounts are stored as text so no precision is lost."""
        created = db.insert(make_row(amount="88.50"))

        assert created["amount"] == "88.50"

    def test_query_is_scoped_and_newest_first(self, db):
        """Only the trip's rows come back, newest first."""
        db.insert(make_row(title="First"))
        db.insert(make_row(title="Other trip", trip_id="trip-2"))
        db.insert(make_row(title="Second"))

        titles = [row["title"] for row in db.query("trip-1")]

        assert titles == ["Second", "First"]

    def test_update_changes_editable_fields_only(self, db):
        """Updates never move a row to another trip or change its timestamp."""
        created = db.insert(make_row())

        updated = db.update(
            "trip-1",
            str(created["id"]),
            {"amount": "200", "trip_id": "trip-2", "created_at": "1999-01-01"},
        )

        assert updated is not None
        assert updated["amount"] == "200"
        assert updated["trip_id"] == "trip-1"
        assert updated["created_at"] == created["created_at"]

    def test_update_missing_row_returns_none(self, db):
        """Updating an id that does not exist reports nothing changed."""
        assert db.update("trip-1", "42", {"amount": "1"}) is None

    def test_delete(self, db):
        """Deleting returns True once, then False."""
        created = db.insert(make_row())

        assert db.delete("trip-1", str(created["id"])) is True
        assert db.delete("trip-1", str(created["id"])) is False
        assert db.query("trip-1") == []

    def test_update_is_scoped_to_trip(self, db):
        """Another trip's row cannot be updated through its id."""
        created = db.insert(make_row(trip_id="osaka"))

        assert db.update("trip-1", str(created["id"]), {"title": "Cab"}) is None
        assert db.get(created["id"])["title"] == "Taxi"

    def test_delete_is_scoped_to_trip(self, db):
        """Another trip's row cannot be deleted through its id."""
        created = db.insert(make_row(trip_id="osaka"))
        listener = MagicMock()
        db.subscribe("trip-1", listener)

        assert db.delete("trip-1", str(created["id"])) is False
        assert len(db.query("osaka")) == 1
        listener.assert_not_called()

    def test_get_missing_row(self, db):
        """get returns None for an unknown id."""
        assert db.get("404") is None

    def test_closed_connection_raises_database_error(self, db):
        """SQLite errors are surfaced as DatabaseError."""
        db.close()

        with pytest.raises(DatabaseError, match="query expenses"):
            db.query("trip-1")


class TestSubscriptions:
    """Tests for in-process change notifications."""

    def test_writes_notify_trip_subscribers(self, db):
        """Insert, update and delete each notify the trip's listeners."""
        listener = MagicMock()
        other_trip = MagicMock()
        db.subscribe("trip-1", listener)
        db.subscribe("trip-2", other_trip)

        created = db.insert(make_row())
        db.update("trip-1", str(created["id"]), {"title": "Cab"})
        db.delete("trip-1", str(created["id"]))

        assert listener.call_count == 3
        other_trip.assert_not_called()

    def test_noop_writes_do_not_notify(self, db):
        """Updates and deletes of missing rows stay silent."""
        listener = MagicMock()
        db.subscribe("trip-1", listener)

        db.update("trip-1", "42", {"title": "Cab"})
        db.delete("trip-1", "42")

        listener.assert_not_called()

    def test_unsubscribe(self, db):
        """An unsubscribed listener receives no further notifications."""
        listener = MagicMock()
        unsubscribe = db.subscribe("trip-1", listener)

        unsubscribe()
        unsubscribe()
        db.insert(make_row())

        listener.assert_not_called()
