"""Tests for the Supabase REST client."""

import json

import httpx
import pytest

from trip_expenses.clients.supabase import SupabaseClient
from trip_expenses.exceptions import SupabaseAPIError, TransportError

ROW = {
    "id": 7,
    "trip_id": "trip-1",
    "title": "Taxi",
    "amount": 150,
    "currency": "HKD",
    "payer": "B",
    "split_count": 1,
    "category": None,
    "spent_on": None,
    "created_at": "2024-05-12T10:00:00+00:00",
}


def make_client(handler) -> SupabaseClient:
    return SupabaseClient(
        "https://abc.supabase.co/",
        "secret-key",
        transport=httpx.MockTransport(handler),
    )


class TestSupabaseClient:
    """Tests for SupabaseClient requests and error mapping."""

    def test_query_filters_by_trip(self):
        """Rows are fetched for one trip, newest first, with auth headers."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[ROW])

        with make_client(handler) as client:
            rows = client.query("trip-1")

        assert rows == [ROW]
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/expenses"
        assert request.url.params["trip_id"] == "eq.trip-1"
        assert request.url.params["order"] == "created_at.desc"
        assert request.headers["apikey"] == "secret-key"
        assert request.headers["authorization"] == "Bearer secret-key"

    def test_insert_returns_representation(self):
        """Insert asks for the stored row back and returns it."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json=[ROW])

        with make_client(handler) as client:
            row = client.insert({"title": "Taxi", "trip_id": "trip-1"})

        assert row == ROW
        assert seen[0].method == "POST"
        assert seen[0].headers["prefer"] == "return=representation"
        assert json.loads(seen[0].content) == {"title": "Taxi", "trip_id": "trip-1"}

    def test_insert_without_row_raises(self):
        """An insert that returns nothing is an error."""
        with make_client(lambda request: httpx.Response(201, json=[])) as client:
            with pytest.raises(SupabaseAPIError, match="no row"):
                client.insert({"title": "Taxi"})

    def test_update_matches_trip_and_id(self):
        """Update patches by trip and id and returns the new row."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{**ROW, "amount": 200}])

        with make_client(handler) as client:
            row = client.update("trip-1", "7", {"amount": "200"})

        assert row is not None
        assert row["amount"] == 200
        assert seen[0].method == "PATCH"
        assert seen[0].url.params["id"] == "eq.7"
        assert seen[0].url.params["trip_id"] == "eq.trip-1"

    def test_update_of_missing_row_returns_none(self):
        """No matching row means None, not an error."""
        with make_client(lambda request: httpx.Response(200, json=[])) as client:
            assert client.update("trip-1", "7", {"amount": "200"}) is None

    def test_delete(self):
        """Delete reports whether a row was removed."""
        responses = iter([[ROW], []])

        def handler(request):
            assert request.method == "DELETE"
            assert request.url.params["trip_id"] == "eq.trip-1"
            return httpx.Response(200, json=next(responses))

        with make_client(handler) as client:
            assert client.delete("trip-1", "7") is True
            assert client.delete("trip-1", "7") is False

    def test_empty_body_is_no_rows(self):
        """A 204 with no body reads as an empty result."""
        with make_client(lambda request: httpx.Response(204)) as client:
            assert client.delete("trip-1", "7") is False

    def test_http_error_status(self):
        """Rejected requests raise SupabaseAPIError with the status code."""

        def handler(request):
            return httpx.Response(401, json={"message": "Invalid API key"})

        with make_client(handler) as client:
            with pytest.raises(SupabaseAPIError, match="401"):
                client.query("trip-1")

    def test_network_failure_is_transport_error(self):
        """Connection failures surface as a TransportError."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(TransportError, match="unreachable"):
                client.query("trip-1")
