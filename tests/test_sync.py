"""Tests for the polling watcher."""

from unittest.mock import MagicMock

import pytest

from trip_expenses.db import Database
from trip_expenses.engine import SettlementEngine
from trip_expenses.exceptions import ConfigurationError, DatabaseError
from trip_expenses.sync import PollingWatcher


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


def taxi_row(title="Taxi"):
    return {
        "trip_id": "trip-1",
        "title": title,
        "amount": "150",
        "currency": "HKD",
        "payer": "B",
        "split_count": 1,
    }


class TestPollingWatcher:
    """Tests for PollingWatcher."""

    def test_requires_store(self):
        """Demo engines have nothing to watch."""
        with pytest.raises(ConfigurationError):
            PollingWatcher(SettlementEngine(trip_id="trip-1"))

    def test_poll_once_detects_external_write(self, db):
        """A row written behind the engine's back triggers a resync."""
        engine = SettlementEngine(trip_id="trip-1", store=db)
        engine.list_expenses()
        watcher = PollingWatcher(engine)

        assert watcher.poll_once() is False

        db.insert(taxi_row())

        assert watcher.poll_once() is True
        assert [r.title for r in engine.records] == ["Taxi"]
        assert watcher.poll_once() is False

    def test_run_reports_changes_and_sleeps_between_polls(self, db):
        """run calls on_change once per change and never sleeps after the last poll."""
        engine = SettlementEngine(trip_id="trip-1", store=db)
        sleep = MagicMock(side_effect=lambda seconds: db.insert(taxi_row()))
        on_change = MagicMock()
        watcher = PollingWatcher(engine, interval=2.5, sleep=sleep)

        watcher.run(on_change=on_change, max_polls=3)

        assert sleep.call_count == 2
        sleep.assert_called_with(2.5)
        assert on_change.call_count == 2
        assert len(engine.records) == 2

    def test_run_survives_transport_errors(self):
        """A failed poll is logged and the next poll still runs."""
        store = MagicMock(spec=["query", "insert", "update", "delete"])
        store.query.side_effect = [
            DatabaseError("disk I/O error"),
            [{**taxi_row(), "id": 1, "created_at": "2024-05-12T10:00:00+00:00"}],
        ]
        engine = SettlementEngine(trip_id="trip-1", store=store)
        on_change = MagicMock()
        watcher = PollingWatcher(engine, sleep=lambda seconds: None)

        watcher.run(on_change=on_change, max_polls=2)

        assert store.query.call_count == 2
        on_change.assert_called_once()
        assert [r.id for r in engine.records] == ["1"]
