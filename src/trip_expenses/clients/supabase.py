"""Supabase (PostgREST) expense table client."""

import logging
from typing import Any

import httpx

from ..exceptions import SupabaseAPIError

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Client for an expense table exposed through Supabase's REST API."""

    REST_PATH = "/rest/v1"

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = "expenses",
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the Supabase client."""
        self.table = table
        self.client = httpx.Client(
            base_url=url.rstrip("/") + self.REST_PATH,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def _request(self, method: str, **kwargs: Any) -> list[dict[str, Any]]:
        """Send a request to the table endpoint and return the JSON rows."""
        try:
            response = self.client.request(method, f"/{self.table}", **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SupabaseAPIError(
                f"Supabase rejected {method} {self.table}: "
                f"{e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Supabase network failure: {e}")
            raise SupabaseAPIError(f"Supabase is unreachable: {e}") from e

        if not response.content:
            return []
        rows: list[dict[str, Any]] = response.json()
        return rows

    def query(self, trip_id: str) -> list[dict[str, Any]]:
        """
        Get all expense rows for a trip.

        Args:
            trip_id: The trip to filter on

        Returns:
            Rows ordered by created_at, newest first
        """
        return self._request(
            "GET",
            params={
                "select": "*",
                "trip_id": f"eq.{trip_id}",
                "order": "created_at.desc",
            },
        )

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it with its server-assigned id and created_at."""
        rows = self._request(
            "POST",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise SupabaseAPIError("Supabase insert returned no row")
        return rows[0]

    def update(
        self, trip_id: str, expense_id: str, row: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Patch one of a trip's rows by id.

        Returns:
            The updated row, or None if the trip has no row with this id
        """
        rows = self._request(
            "PATCH",
            params={"id": f"eq.{expense_id}", "trip_id": f"eq.{trip_id}"},
            json=row,
            headers={"Prefer": "return=representation"},
        )
        return rows[0] if rows else None

    def delete(self, trip_id: str, expense_id: str) -> bool:
        """Delete one of a trip's rows by id. Returns False if it was already gone."""
        rows = self._request(
            "DELETE",
            params={"id": f"eq.{expense_id}", "trip_id": f"eq.{trip_id}"},
            headers={"Prefer": "return=representation"},
        )
        return bool(rows)
